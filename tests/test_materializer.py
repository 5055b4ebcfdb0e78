import os

import pytest

from obsctl.core.topology import SERVICE_SPECS
from obsctl.host.commands import CommandResult
from obsctl.materialize.resources import ResourceMaterializer, selinux_fcontext_pattern
from obsctl.utils.diagnostics import MaterializationError


def _snapshot(root):
    state = {}
    for path in sorted(root.rglob("*")):
        key = str(path.relative_to(root))
        state[key] = path.read_bytes() if path.is_file() else None
    return state


def _materializer(settings, runner, **kwargs):
    kwargs.setdefault("manage_ownership", False)
    return ResourceMaterializer(settings, SERVICE_SPECS, runner, **kwargs)


def test_materialize_creates_layout(settings, fake_runner):
    report = _materializer(settings, fake_runner).materialize()
    root = settings.data_root

    for name in ("influxdb", "prometheus", "loki", "alloy"):
        assert (root / name / "data").is_dir()
        assert (root / name / "config").is_dir()
    assert (root / "grafana" / "data").is_dir()
    assert (root / "grafana" / "provisioning").is_dir()
    assert not (root / "obs-network").exists()

    assert (root / "prometheus" / "config" / "prometheus.yml").is_file()
    assert (root / "loki" / "config" / "loki.yaml").is_file()
    assert (root / "alloy" / "config" / "config.alloy").is_file()
    assert (root / "grafana" / "provisioning" / "datasources" / "datasources.yaml").is_file()
    assert (root.stat().st_mode & 0o777) == 0o755
    assert report.changed


def test_materialize_twice_reports_no_changes(settings, fake_runner):
    materializer = _materializer(settings, fake_runner)
    materializer.materialize()
    before = _snapshot(settings.data_root)

    second = materializer.materialize()

    assert second.changes == []
    assert _snapshot(settings.data_root) == before


def test_materialize_restores_modified_config(settings, fake_runner):
    materializer = _materializer(settings, fake_runner)
    materializer.materialize()
    target = settings.data_root / "loki" / "config" / "loki.yaml"
    target.write_text("tampered")

    report = materializer.materialize()

    assert target.read_bytes() == (settings.configs_dir / "loki" / "loki.yaml").read_bytes()
    assert len(report.changes) == 1


def test_missing_config_source_is_warning(settings, fake_runner, tmp_path):
    settings = settings.model_copy(update={"configs_dir": tmp_path / "empty-configs"})

    report = _materializer(settings, fake_runner).materialize()

    missing = [f for f in report.findings if f.code == "MissingConfigSource"]
    assert len(missing) == 4
    assert all(f.severity == "warn" for f in missing)


def test_selinux_context_added_once(settings, fake_runner):
    materializer = _materializer(settings, fake_runner)
    materializer.materialize()
    materializer.materialize()

    pattern = selinux_fcontext_pattern(settings.data_root)
    adds = [c for c in fake_runner.calls if c[:3] == ("semanage", "fcontext", "-a")]
    assert adds == [("semanage", "fcontext", "-a", "-t", "container_file_t", pattern)]
    restores = [c for c in fake_runner.calls if c[0] == "restorecon"]
    assert len(restores) == 2


def test_selinux_skipped_without_tools(settings):
    from conftest import FakeRunner

    runner = FakeRunner(available=("podman", "systemctl"))
    report = _materializer(settings, runner).materialize()

    assert "SelinuxSkipped" in [f.code for f in report.findings]
    assert runner.calls == []


def test_restorecon_failure_is_warning(settings, fake_runner):
    fake_runner.failing[("restorecon",)] = CommandResult(args=("restorecon",), returncode=1, stderr="denied")

    report = _materializer(settings, fake_runner).materialize()

    assert "RestoreconFailed" in [f.code for f in report.findings]


def test_ownership_changed_only_when_different(settings, fake_runner, monkeypatch):
    owners = {}
    chowned = []

    def current_owner(path):
        return owners.get(str(path), (0, 0))

    def chown(path, uid, gid, follow_symlinks=True):
        chowned.append((str(path), uid, gid))
        owners[str(path)] = (uid, gid)

    monkeypatch.setattr("obsctl.materialize.resources.current_owner", current_owner)
    monkeypatch.setattr(os, "chown", chown)

    materializer = _materializer(settings, fake_runner, manage_ownership=True, manage_labels=False)
    materializer.materialize()

    root = settings.data_root
    assert (str(root / "grafana" / "data"), 472, 472) in chowned
    assert (str(root / "influxdb" / "config"), 1000, 1000) in chowned
    assert (str(root / "prometheus" / "data"), 65534, 65534) in chowned
    assert not [c for c in chowned if c[0].startswith(str(root / "alloy"))]
    assert not [c for c in chowned if c[0] == str(root / "grafana" / "provisioning")]

    chowned.clear()
    second = materializer.materialize()
    assert chowned == []
    assert second.changes == []


def test_unwritable_data_root_raises(settings, fake_runner, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    settings = settings.model_copy(update={"data_root": blocker / "obs"})

    with pytest.raises(MaterializationError) as exc:
        _materializer(settings, fake_runner).materialize()
    assert str(blocker / "obs") in str(exc.value)


def test_remove_data_root_and_selinux_context(settings, fake_runner):
    materializer = _materializer(settings, fake_runner)
    materializer.materialize()

    assert materializer.remove_data_root() is True
    assert not settings.data_root.exists()
    assert materializer.remove_data_root() is False

    finding = materializer.remove_selinux_context()
    assert finding.code == "SelinuxContextRemoved"
    assert fake_runner.fcontexts == []
