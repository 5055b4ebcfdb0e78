from __future__ import annotations

import errno
import os
import shutil
import socket
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from obsctl.core.models import ServiceSpec, StackSettings
from obsctl.host.commands import CommandRunner, effective_uid
from obsctl.host.supervisor import Supervisor
from obsctl.utils.diagnostics import (
    SEVERITY_INFO,
    SEVERITY_WARN,
    Finding,
    failures,
)

REQUIRED_COMMANDS = ("podman", "systemctl")
SELINUX_COMMANDS = ("semanage", "restorecon")
GIB = 1024 ** 3


class PreflightReport(BaseModel):
    """Every finding from one precondition pass."""
    findings: List[Finding] = Field(default_factory=list)

    @property
    def proceed(self) -> bool:
        return not failures(self.findings)


def port_in_use(port: int, host: str = "0.0.0.0") -> bool:
    """Return True when binding `host:port` fails because something already listens there."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        # TIME_WAIT leftovers from a recently stopped service are not a conflict.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as exc:
        return exc.errno == errno.EADDRINUSE
    finally:
        sock.close()
    return False


def nearest_existing_path(path: Path) -> Path:
    candidate = path
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


def read_os_release(path: Path) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, value = line.split("=", 1)
        fields[key.strip()] = value.strip().strip('"').strip("'")
    return fields


class PreconditionChecker:
    """
    Read-only host inspection. Collects every finding; never stops at the
    first failure and never changes host state.
    """

    def __init__(
        self,
        settings: StackSettings,
        specs: Sequence[ServiceSpec],
        runner: CommandRunner,
        supervisor: Optional[Supervisor] = None,
    ) -> None:
        self.settings = settings
        self.specs = list(specs)
        self.runner = runner
        self.supervisor = supervisor

    def run(self, require_privilege: bool) -> PreflightReport:
        findings: List[Finding] = []
        findings.extend(self.check_privilege(require_privilege))
        findings.extend(self.check_os_release())
        findings.extend(self.check_commands())
        findings.extend(self.check_generator())
        findings.extend(self.check_selinux())
        findings.extend(self.check_ports())
        findings.extend(self.check_data_root())
        findings.extend(self.check_disk_space())
        return PreflightReport(findings=findings)

    def check_privilege(self, require_privilege: bool) -> List[Finding]:
        if effective_uid() == 0:
            return []
        if require_privilege:
            return [Finding(
                subject="euid",
                code="InsufficientPrivilege",
                message="This operation must be run as root",
                suggestion="Re-run with sudo.",
            )]
        return [Finding(
            subject="euid",
            code="InsufficientPrivilege",
            message="Not running as root; installation will require root privileges",
            severity=SEVERITY_WARN,
        )]

    def check_os_release(self) -> List[Finding]:
        path = self.settings.os_release_path
        try:
            fields = read_os_release(path)
        except (OSError, UnicodeDecodeError):
            return [Finding(
                subject=str(path),
                code="UnknownOs",
                message=f"Cannot read {path}; skipping OS identification",
                severity=SEVERITY_WARN,
            )]

        findings = [Finding(
            subject=str(path),
            code="DetectedOs",
            message=f"Detected OS: {fields.get('PRETTY_NAME', 'unknown')}",
            severity=SEVERITY_INFO,
        )]
        os_id = fields.get("ID", "")
        id_like = fields.get("ID_LIKE", "")
        if os_id != "rhel" and "rhel" not in id_like and "fedora" not in id_like:
            findings.append(Finding(
                subject=str(path),
                code="UnsupportedOs",
                message="OS does not appear to be RHEL-family",
                severity=SEVERITY_WARN,
            ))
        if not fields.get("VERSION_ID", "").startswith("10"):
            findings.append(Finding(
                subject=str(path),
                code="UnsupportedOsVersion",
                message="VERSION_ID is not 10.x; this stack targets RHEL 10",
                severity=SEVERITY_WARN,
            ))
        return findings

    def check_commands(self) -> List[Finding]:
        findings: List[Finding] = []
        for command in REQUIRED_COMMANDS:
            if self.runner.which(command) is None:
                findings.append(Finding(
                    subject=command,
                    code="MissingCommand",
                    message=f"Missing required command: {command}",
                    suggestion="dnf install -y podman systemd",
                ))
        for command in SELINUX_COMMANDS:
            if self.runner.which(command) is None:
                findings.append(Finding(
                    subject=command,
                    code="MissingSelinuxTool",
                    message=f"{command} not found; SELinux labels will not be applied",
                    severity=SEVERITY_WARN,
                    suggestion="dnf install -y policycoreutils-python-utils",
                ))
        return findings

    def check_generator(self) -> List[Finding]:
        generator = self.settings.generator_path
        if generator.is_file() and os.access(generator, os.X_OK):
            return [Finding(
                subject=str(generator),
                code="GeneratorFound",
                message=f"Podman Quadlet generator found: {generator}",
                severity=SEVERITY_INFO,
            )]
        return [Finding(
            subject=str(generator),
            code="MissingGenerator",
            message=f"Podman Quadlet generator not found at {generator}",
            suggestion="Install podman 4.4+ with Quadlet support (rpm -q podman).",
        )]

    def check_selinux(self) -> List[Finding]:
        if self.runner.which("getenforce") is None:
            return [Finding(
                subject="getenforce",
                code="SelinuxUnknown",
                message="getenforce not found; cannot determine SELinux status",
                severity=SEVERITY_WARN,
            )]

        result = self.runner.run(["getenforce"], timeout_seconds=10)
        mode = result.stdout.strip() or "unknown"
        if mode == "Enforcing":
            return [Finding(
                subject="selinux",
                code="SelinuxMode",
                message="SELinux is enforcing",
                severity=SEVERITY_INFO,
            )]
        return [Finding(
            subject="selinux",
            code="SelinuxMode",
            message=f"SELinux is not in enforcing mode ({mode})",
            severity=SEVERITY_WARN,
        )]

    def check_ports(self) -> List[Finding]:
        findings: List[Finding] = []
        for spec in self.specs:
            for mapping in spec.published_ports():
                if not port_in_use(mapping.host_port, mapping.host_ip):
                    continue
                if self.supervisor is not None and self.supervisor.is_active(spec.supervisor_unit):
                    findings.append(Finding(
                        subject=f"port {mapping.host_port}",
                        code="PortHeldByService",
                        message=f"Port {mapping.host_port} is held by the running {spec.name} service",
                        severity=SEVERITY_INFO,
                    ))
                    continue
                findings.append(Finding(
                    subject=f"port {mapping.host_port}",
                    code="PortInUse",
                    message=f"Local TCP port {mapping.host_port} ({spec.name}) is already in use",
                    suggestion="Stop the conflicting service or change the port mapping.",
                ))
        return findings

    def check_data_root(self) -> List[Finding]:
        data_root = self.settings.data_root
        if not data_root.is_dir():
            return [Finding(
                subject=str(data_root),
                code="DataRootAbsent",
                message=f"Data root {data_root} does not exist yet; the installer will create it",
                severity=SEVERITY_INFO,
            )]
        if not os.access(data_root, os.W_OK):
            return [Finding(
                subject=str(data_root),
                code="DataRootNotWritable",
                message=f"{data_root} is not writable by the current user",
                severity=SEVERITY_WARN,
            )]
        return [Finding(
            subject=str(data_root),
            code="DataRootPresent",
            message=f"Data root exists: {data_root}",
            severity=SEVERITY_INFO,
        )]

    def check_disk_space(self) -> List[Finding]:
        target = nearest_existing_path(self.settings.data_root)
        try:
            usage = shutil.disk_usage(target)
        except OSError as exc:
            return [Finding(
                subject=str(target),
                code="DiskUnknown",
                message=f"Cannot determine free space on {target}: {exc}",
                severity=SEVERITY_WARN,
            )]

        free_gb = usage.free // GIB
        if usage.free < self.settings.disk_fail_floor_gb * GIB:
            return [Finding(
                subject=str(target),
                code="InsufficientDisk",
                message=(
                    f"Only {free_gb}GB free on {target}; "
                    f"at least {self.settings.disk_fail_floor_gb}GB is required"
                ),
            )]
        if usage.free < self.settings.disk_warn_floor_gb * GIB:
            return [Finding(
                subject=str(target),
                code="LowDisk",
                message=(
                    f"Only {free_gb}GB free on {target}; "
                    f"{self.settings.disk_warn_floor_gb}GB+ recommended for one year of retention"
                ),
                severity=SEVERITY_WARN,
            )]
        return [Finding(
            subject=str(target),
            code="DiskSpace",
            message=f"Available space on {target}: {free_gb}GB",
            severity=SEVERITY_INFO,
        )]
