from __future__ import annotations

from typing import Optional, Protocol

from obsctl.host.commands import CommandResult, CommandRunner


class Supervisor(Protocol):
    """
    Host process supervisor. Everything the lifecycle sequencer and health
    probes know about running services comes through this interface.
    """

    def enable(self, unit: str) -> CommandResult: ...

    def disable(self, unit: str) -> CommandResult: ...

    def start(self, unit: str) -> CommandResult: ...

    def stop(self, unit: str) -> CommandResult: ...

    def is_active(self, unit: str) -> bool: ...

    def is_enabled(self, unit: str) -> bool: ...

    def daemon_reload(self) -> CommandResult: ...

    def pull_image(self, image: str) -> CommandResult: ...

    def container_exists(self, name: str) -> bool: ...

    def container_state(self, name: str) -> Optional[str]: ...

    def container_memory_usage(self, name: str) -> Optional[str]: ...

    def remove_container(self, name: str) -> CommandResult: ...

    def network_exists(self, name: str) -> bool: ...

    def remove_network(self, name: str) -> CommandResult: ...


class SystemdSupervisor:
    """Supervisor backed by systemctl and podman (Quadlet-generated units)."""

    def __init__(self, runner: CommandRunner, status_timeout_seconds: float = 30.0) -> None:
        self.runner = runner
        self.status_timeout_seconds = status_timeout_seconds

    def _systemctl(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return self.runner.run(["systemctl", *args], timeout_seconds=timeout)

    def _podman(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return self.runner.run(["podman", *args], timeout_seconds=timeout)

    def enable(self, unit: str) -> CommandResult:
        return self._systemctl("enable", unit)

    def disable(self, unit: str) -> CommandResult:
        return self._systemctl("disable", unit)

    def start(self, unit: str) -> CommandResult:
        return self._systemctl("start", unit)

    def stop(self, unit: str) -> CommandResult:
        return self._systemctl("stop", unit)

    def is_active(self, unit: str) -> bool:
        return self._systemctl("is-active", "--quiet", unit, timeout=self.status_timeout_seconds).ok

    def is_enabled(self, unit: str) -> bool:
        return self._systemctl("is-enabled", "--quiet", unit, timeout=self.status_timeout_seconds).ok

    def daemon_reload(self) -> CommandResult:
        return self._systemctl("daemon-reload")

    def pull_image(self, image: str) -> CommandResult:
        return self._podman("pull", image)

    def container_exists(self, name: str) -> bool:
        return self._podman("container", "exists", name, timeout=self.status_timeout_seconds).ok

    def container_state(self, name: str) -> Optional[str]:
        result = self._podman(
            "inspect", "--format", "{{.State.Status}}", name,
            timeout=self.status_timeout_seconds,
        )
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def container_memory_usage(self, name: str) -> Optional[str]:
        result = self._podman(
            "stats", "--no-stream", "--format", "{{.MemPerc}}", name,
            timeout=self.status_timeout_seconds,
        )
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def remove_container(self, name: str) -> CommandResult:
        return self._podman("rm", "-f", name)

    def network_exists(self, name: str) -> bool:
        return self._podman("network", "exists", name, timeout=self.status_timeout_seconds).ok

    def remove_network(self, name: str) -> CommandResult:
        return self._podman("network", "rm", name)
