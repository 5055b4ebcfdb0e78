import fcntl
import pytest
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from obsctl.core.models import StackSettings
from obsctl.host.commands import CommandResult
from obsctl.runtime.lock import RunLockMetadata

REPO_CONFIGS = Path(__file__).parent.parent / "configs"

DEFAULT_COMMANDS = ("podman", "systemctl", "semanage", "restorecon", "getenforce")


class FakeRunner:
    """
    Stand-in for CommandRunner. Records every call and keeps just enough
    SELinux fcontext state for the materializer to converge.
    """

    def __init__(self, available: Sequence[str] = DEFAULT_COMMANDS):
        self.available = set(available)
        self.calls: List[tuple] = []
        self.fcontexts: List[str] = []
        self.failing: Dict[tuple, CommandResult] = {}

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.available else None

    def run(self, args, timeout_seconds=None) -> CommandResult:
        argv = tuple(args)
        self.calls.append(argv)
        for prefix, result in self.failing.items():
            if argv[:len(prefix)] == prefix:
                return result

        if argv[:1] == ("getenforce",):
            return CommandResult(args=argv, returncode=0, stdout="Enforcing\n")
        if argv[:3] == ("semanage", "fcontext", "-l"):
            listing = "".join(f"{pattern}    all files    system_u:object_r:container_file_t:s0\n" for pattern in self.fcontexts)
            return CommandResult(args=argv, returncode=0, stdout=listing)
        if argv[:3] == ("semanage", "fcontext", "-a"):
            self.fcontexts.append(argv[-1])
        if argv[:3] == ("semanage", "fcontext", "-d"):
            self.fcontexts = [p for p in self.fcontexts if p != argv[-1]]
        return CommandResult(args=argv, returncode=0)


class FakeSupervisor:
    """In-memory supervisor: units, containers and networks are plain sets."""

    def __init__(self):
        self.active: set = set()
        self.enabled: set = set()
        self.containers: Dict[str, str] = {}
        self.networks: set = set()
        self.fail_start: set = set()
        self.fail_enable: set = set()
        self.fail_stop: set = set()
        self.memory: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.reloads = 0

    def _ok(self, *args) -> CommandResult:
        return CommandResult(args=args, returncode=0)

    def _fail(self, *args) -> CommandResult:
        return CommandResult(args=args, returncode=1, stderr="Job failed. See journalctl for details.")

    def enable(self, unit):
        self.calls.append(("enable", unit))
        if unit in self.fail_enable:
            return self._fail("systemctl", "enable", unit)
        self.enabled.add(unit)
        return self._ok("systemctl", "enable", unit)

    def disable(self, unit):
        self.calls.append(("disable", unit))
        self.enabled.discard(unit)
        return self._ok("systemctl", "disable", unit)

    def start(self, unit):
        self.calls.append(("start", unit))
        if unit in self.fail_start:
            return self._fail("systemctl", "start", unit)
        self.active.add(unit)
        return self._ok("systemctl", "start", unit)

    def stop(self, unit):
        self.calls.append(("stop", unit))
        if unit in self.fail_stop:
            return self._fail("systemctl", "stop", unit)
        self.active.discard(unit)
        return self._ok("systemctl", "stop", unit)

    def is_active(self, unit):
        return unit in self.active

    def is_enabled(self, unit):
        return unit in self.enabled

    def daemon_reload(self):
        self.reloads += 1
        self.calls.append(("daemon-reload",))
        return self._ok("systemctl", "daemon-reload")

    def pull_image(self, image):
        self.calls.append(("pull", image))
        return self._ok("podman", "pull", image)

    def container_exists(self, name):
        return name in self.containers

    def container_state(self, name):
        return self.containers.get(name)

    def container_memory_usage(self, name):
        return self.memory.get(name)

    def remove_container(self, name):
        self.calls.append(("rm", name))
        self.containers.pop(name, None)
        return self._ok("podman", "rm", "-f", name)

    def network_exists(self, name):
        return name in self.networks

    def remove_network(self, name):
        self.calls.append(("network-rm", name))
        self.networks.discard(name)
        return self._ok("podman", "network", "rm", name)

    def started_units(self) -> List[str]:
        return [unit for action, *rest in self.calls if action == "start" for unit in rest]

    def stopped_units(self) -> List[str]:
        return [unit for action, *rest in self.calls if action == "stop" for unit in rest]


VALID_ENV: Dict[str, str] = {
    "INFLUXDB_ADMIN_USER": "admin",
    "INFLUXDB_ADMIN_PASSWORD": "influx-admin-password-0123",
    "INFLUXDB_ORG": "observability",
    "INFLUXDB_BUCKET": "metrics",
    "INFLUXDB_TOKEN": "0123456789abcdef0123456789abcdef0123",
    "GRAFANA_ADMIN_USER": "admin",
    "GRAFANA_ADMIN_PASSWORD": "grafana-admin-password-0123",
    "GRAFANA_DOMAIN": "grafana.example.internal",
    "GRAFANA_INSTALL_ZABBIX_PLUGIN": "true",
    "GRAFANA_ZABBIX_PLUGIN_ID": "alexanderzobnin-zabbix-app",
    "GRAFANA_ZABBIX_TRENDS_THRESHOLD_DAYS": "7",
    "ZABBIX_URL": "https://zabbix.example.internal/api_jsonrpc.php",
    "ZABBIX_API_TOKEN": "zabbix-api-token-0123456789",
}


def render_env(values: Dict[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in values.items())


def hold_lock(path: Path, pid: int = 424242):
    """
    Hold the run lock through a separate open file, the way another obsctl
    process would. Close the returned handle to let go.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    metadata = RunLockMetadata(pid=pid, command="install", acquired_at="2026-10-19T00:00:00+00:00")
    path.write_text(metadata.model_dump_json(indent=2))
    handle = open(path, "rb")
    fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    return handle


@pytest.fixture
def root_dir(tmp_path):
    """
    Returns a temporary directory standing in for the host filesystem.
    """
    return tmp_path


@pytest.fixture
def valid_env() -> Dict[str, str]:
    return dict(VALID_ENV)


@pytest.fixture
def env_file(tmp_path, valid_env) -> Path:
    path = tmp_path / ".env"
    path.write_text(render_env(valid_env))
    return path


@pytest.fixture
def settings(tmp_path, env_file) -> StackSettings:
    generator = tmp_path / "podman-system-generator"
    generator.write_text("#!/bin/sh\n")
    generator.chmod(0o755)

    os_release = tmp_path / "os-release"
    os_release.write_text('ID="rhel"\nVERSION_ID="10.0"\nPRETTY_NAME="Red Hat Enterprise Linux 10.0"\n')

    return StackSettings(
        env_file=env_file,
        configs_dir=REPO_CONFIGS,
        data_root=tmp_path / "srv" / "obs",
        unit_dir=tmp_path / "etc" / "containers" / "systemd",
        generator_path=generator,
        lock_path=tmp_path / "run" / "obsctl.lock",
        os_release_path=os_release,
        settle_delay_seconds=0,
        disk_fail_floor_gb=0,
        disk_warn_floor_gb=0,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def as_root(monkeypatch):
    """Pretend the process runs with euid 0."""
    monkeypatch.setattr("obsctl.preflight.checker.effective_uid", lambda: 0)
    monkeypatch.setattr("obsctl.runtime.uninstall.effective_uid", lambda: 0)


@pytest.fixture
def free_ports(monkeypatch):
    """Report every published port as free regardless of the test host."""
    monkeypatch.setattr("obsctl.preflight.checker.port_in_use", lambda port, host="0.0.0.0": False)
