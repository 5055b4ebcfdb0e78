import socket
from collections import namedtuple

import pytest

from obsctl.core.topology import SERVICE_SPECS
from obsctl.preflight.checker import (
    GIB,
    PreconditionChecker,
    nearest_existing_path,
    port_in_use,
    read_os_release,
)

DiskUsage = namedtuple("DiskUsage", "total used free")


def _codes(report):
    return [f.code for f in report.findings]


def _checker(settings, runner, supervisor=None):
    return PreconditionChecker(settings, SERVICE_SPECS, runner, supervisor)


def test_clean_host_proceeds(settings, fake_runner, fake_supervisor, as_root, free_ports):
    report = _checker(settings, fake_runner, fake_supervisor).run(require_privilege=True)

    assert report.proceed, [str(f) for f in report.findings if f.is_failure]
    assert "GeneratorFound" in _codes(report)
    assert "DetectedOs" in _codes(report)
    assert "UnsupportedOs" not in _codes(report)


def test_port_conflict_is_fail_naming_port(settings, fake_runner, fake_supervisor, as_root, monkeypatch):
    monkeypatch.setattr("obsctl.preflight.checker.port_in_use", lambda port, host="0.0.0.0": port == 3000)

    report = _checker(settings, fake_runner, fake_supervisor).run(require_privilege=True)

    conflicts = [f for f in report.findings if f.code == "PortInUse"]
    assert not report.proceed
    assert [f.subject for f in conflicts] == ["port 3000"]
    assert "3000" in conflicts[0].message


def test_port_held_by_managed_service_is_info(settings, fake_runner, fake_supervisor, as_root, monkeypatch):
    monkeypatch.setattr("obsctl.preflight.checker.port_in_use", lambda port, host="0.0.0.0": True)
    fake_supervisor.active = {"grafana.service", "influxdb.service", "prometheus.service", "loki.service"}

    report = _checker(settings, fake_runner, fake_supervisor).run(require_privilege=True)

    assert report.proceed
    assert _codes(report).count("PortHeldByService") == 4


def _listener():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # Like the Go services in the stack, the listener opts into address reuse.
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    return server, server.getsockname()[1]


def test_live_listener_is_in_use():
    server, port = _listener()
    try:
        assert port_in_use(port, "127.0.0.1") is True
    finally:
        server.close()


def test_time_wait_leftovers_are_not_in_use():
    server, port = _listener()
    client = socket.create_connection(("127.0.0.1", port))
    conn, _ = server.accept()
    # Server side closes first, leaving its end of the connection in TIME_WAIT.
    conn.close()
    client.close()
    server.close()

    assert port_in_use(port, "127.0.0.1") is False


def test_missing_commands_and_generator(settings, as_root, free_ports, tmp_path):
    from conftest import FakeRunner

    settings = settings.model_copy(update={"generator_path": tmp_path / "nope"})
    report = _checker(settings, FakeRunner(available=("systemctl",))).run(require_privilege=True)

    failures = [(f.code, f.subject) for f in report.findings if f.is_failure]
    assert ("MissingCommand", "podman") in failures
    assert ("MissingGenerator", str(tmp_path / "nope")) in failures
    assert "MissingSelinuxTool" in _codes(report)


def test_every_check_runs_despite_failures(settings, free_ports, monkeypatch):
    from conftest import FakeRunner

    monkeypatch.setattr("obsctl.preflight.checker.effective_uid", lambda: 1000)
    report = _checker(settings, FakeRunner(available=())).run(require_privilege=True)

    codes = _codes(report)
    assert "InsufficientPrivilege" in codes
    assert "MissingCommand" in codes
    assert "SelinuxUnknown" in codes
    assert "DiskSpace" in codes


def test_non_root_is_warning_when_not_mutating(settings, fake_runner, free_ports, monkeypatch):
    monkeypatch.setattr("obsctl.preflight.checker.effective_uid", lambda: 1000)

    report = _checker(settings, fake_runner).run(require_privilege=False)

    privilege = [f for f in report.findings if f.code == "InsufficientPrivilege"]
    assert [f.severity for f in privilege] == ["warn"]


@pytest.mark.parametrize(
    "free_gb,code,severity",
    [(10, "InsufficientDisk", "fail"), (100, "LowDisk", "warn"), (800, "DiskSpace", "info")],
)
def test_disk_floors(settings, fake_runner, monkeypatch, free_gb, code, severity):
    settings = settings.model_copy(update={"disk_fail_floor_gb": 50, "disk_warn_floor_gb": 500})
    monkeypatch.setattr(
        "obsctl.preflight.checker.shutil.disk_usage",
        lambda path: DiskUsage(total=1000 * GIB, used=(1000 - free_gb) * GIB, free=free_gb * GIB),
    )

    findings = _checker(settings, fake_runner).check_disk_space()

    assert [(f.code, f.severity) for f in findings] == [(code, severity)]


def test_os_release_warnings(settings, fake_runner, tmp_path):
    os_release = tmp_path / "os-release-debian"
    os_release.write_text('ID=debian\nVERSION_ID="12"\nPRETTY_NAME="Debian GNU/Linux 12"\n')
    settings = settings.model_copy(update={"os_release_path": os_release})

    findings = _checker(settings, fake_runner).check_os_release()

    assert [f.code for f in findings] == ["DetectedOs", "UnsupportedOs", "UnsupportedOsVersion"]


def test_read_os_release_strips_quotes(tmp_path):
    path = tmp_path / "os-release"
    path.write_text('# comment\nID="rhel"\nID_LIKE="fedora"\n')
    assert read_os_release(path) == {"ID": "rhel", "ID_LIKE": "fedora"}


def test_nearest_existing_path(tmp_path):
    assert nearest_existing_path(tmp_path / "a" / "b" / "c") == tmp_path


def test_preflight_never_mutates(settings, fake_runner, as_root, free_ports):
    _checker(settings, fake_runner).run(require_privilege=True)

    assert not settings.data_root.exists()
    assert not settings.unit_dir.exists()
    assert all(call[0] == "getenforce" for call in fake_runner.calls)
