from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict

from obsctl.core.models import ServiceSpec
from obsctl.host.supervisor import Supervisor
from obsctl.utils.diagnostics import ProbeError


class ProbeKind(str, Enum):
    SERVICE_ACTIVE = "service-active"
    CONTAINER_RUNNING = "container-running"
    NETWORK_EXISTS = "network-exists"
    HTTP_ENDPOINT = "http-endpoint"
    DIRECTORY_WRITABLE = "directory-writable"
    DISK_THRESHOLD = "disk-threshold"
    CONTAINER_RESOURCES = "container-resources"


class ProbeOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class HealthCheckResult(BaseModel):
    """Result of one probe. Created fresh on every health-check run."""
    model_config = ConfigDict(frozen=True)

    target: str
    kind: ProbeKind
    outcome: ProbeOutcome
    detail: str


def _result(target: str, kind: ProbeKind, outcome: ProbeOutcome, detail: str) -> HealthCheckResult:
    return HealthCheckResult(target=target, kind=kind, outcome=outcome, detail=detail)


def probe_service_active(supervisor: Supervisor, spec: ServiceSpec) -> HealthCheckResult:
    if supervisor.is_active(spec.supervisor_unit):
        return _result(spec.name, ProbeKind.SERVICE_ACTIVE, ProbeOutcome.PASS, f"{spec.supervisor_unit} is active")
    return _result(spec.name, ProbeKind.SERVICE_ACTIVE, ProbeOutcome.FAIL, f"{spec.supervisor_unit} is not active")


def probe_container_running(supervisor: Supervisor, spec: ServiceSpec) -> HealthCheckResult:
    name = spec.container_name or spec.name
    if not supervisor.container_exists(name):
        return _result(name, ProbeKind.CONTAINER_RUNNING, ProbeOutcome.FAIL, f"container {name} does not exist")

    state = supervisor.container_state(name)
    if state == "running":
        return _result(name, ProbeKind.CONTAINER_RUNNING, ProbeOutcome.PASS, f"container {name} is running")
    return _result(
        name,
        ProbeKind.CONTAINER_RUNNING,
        ProbeOutcome.FAIL,
        f"container {name} is in state '{state or 'unknown'}'",
    )


def probe_network_exists(supervisor: Supervisor, network_name: str) -> HealthCheckResult:
    if supervisor.network_exists(network_name):
        return _result(network_name, ProbeKind.NETWORK_EXISTS, ProbeOutcome.PASS, f"network {network_name} exists")
    return _result(network_name, ProbeKind.NETWORK_EXISTS, ProbeOutcome.FAIL, f"network {network_name} not found")


def probe_http_endpoint(
    client: httpx.Client,
    label: str,
    url: str,
    expected_status: int = 200,
) -> HealthCheckResult:
    """
    GET `url` once. The client carries the per-probe timeout, so an
    unreachable endpoint fails this probe only.
    """
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        error = ProbeError(f"{type(exc).__name__}: {exc}", url)
        return _result(label, ProbeKind.HTTP_ENDPOINT, ProbeOutcome.FAIL, str(error))

    if response.status_code == expected_status:
        return _result(label, ProbeKind.HTTP_ENDPOINT, ProbeOutcome.PASS, f"{url} returned {response.status_code}")
    return _result(
        label,
        ProbeKind.HTTP_ENDPOINT,
        ProbeOutcome.FAIL,
        f"{url} returned {response.status_code}, expected {expected_status}",
    )


def probe_directory_writable(path: Path) -> HealthCheckResult:
    target = str(path)
    if not path.is_dir():
        return _result(target, ProbeKind.DIRECTORY_WRITABLE, ProbeOutcome.FAIL, f"{path} does not exist")
    if os.access(path, os.W_OK):
        return _result(target, ProbeKind.DIRECTORY_WRITABLE, ProbeOutcome.PASS, f"{path} is writable")
    return _result(target, ProbeKind.DIRECTORY_WRITABLE, ProbeOutcome.WARN, f"{path} is not writable by this user")


def probe_disk_threshold(path: Path, threshold_percent: int) -> HealthCheckResult:
    target = str(path)
    if not path.exists():
        return _result(target, ProbeKind.DISK_THRESHOLD, ProbeOutcome.WARN, f"{path} does not exist")

    try:
        usage = shutil.disk_usage(path)
    except OSError as exc:
        return _result(target, ProbeKind.DISK_THRESHOLD, ProbeOutcome.WARN, f"cannot read disk usage: {exc.strerror}")

    percent = int(usage.used * 100 / usage.total) if usage.total else 0
    if percent >= threshold_percent:
        return _result(
            target,
            ProbeKind.DISK_THRESHOLD,
            ProbeOutcome.WARN,
            f"disk usage {percent}% is at or above {threshold_percent}%",
        )
    return _result(target, ProbeKind.DISK_THRESHOLD, ProbeOutcome.PASS, f"disk usage {percent}%")


def probe_container_resources(supervisor: Supervisor, spec: ServiceSpec) -> HealthCheckResult:
    name = spec.container_name or spec.name
    usage = supervisor.container_memory_usage(name)
    if usage is None:
        return _result(name, ProbeKind.CONTAINER_RESOURCES, ProbeOutcome.WARN, f"no resource stats for {name}")
    return _result(name, ProbeKind.CONTAINER_RESOURCES, ProbeOutcome.PASS, f"memory {usage}")
