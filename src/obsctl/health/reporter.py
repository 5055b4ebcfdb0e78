from __future__ import annotations

from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from obsctl.core.models import ServiceSpec, StackSettings
from obsctl.core.registry import Registry
from obsctl.health.probes import (
    HealthCheckResult,
    ProbeOutcome,
    probe_container_resources,
    probe_container_running,
    probe_directory_writable,
    probe_disk_threshold,
    probe_http_endpoint,
    probe_network_exists,
    probe_service_active,
)
from obsctl.host.commands import effective_uid
from obsctl.host.supervisor import Supervisor

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class Summary(BaseModel):
    """
    Pass/fail/warn counts. Immutable: callers combine summaries with `merge`
    rather than sharing a counter.
    """
    model_config = ConfigDict(frozen=True)

    passed: int = 0
    failed: int = 0
    warned: int = 0

    @classmethod
    def of(cls, result: HealthCheckResult) -> "Summary":
        return cls(
            passed=int(result.outcome == ProbeOutcome.PASS),
            failed=int(result.outcome == ProbeOutcome.FAIL),
            warned=int(result.outcome == ProbeOutcome.WARN),
        )

    def merge(self, other: "Summary") -> "Summary":
        return Summary(
            passed=self.passed + other.passed,
            failed=self.failed + other.failed,
            warned=self.warned + other.warned,
        )

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.warned

    @property
    def healthy(self) -> bool:
        return self.failed == 0

    @property
    def verdict(self) -> str:
        return HEALTHY if self.healthy else UNHEALTHY

    @property
    def exit_code(self) -> int:
        return 0 if self.healthy else 1


def summarize(results: List[HealthCheckResult]) -> Summary:
    summary = Summary()
    for result in results:
        summary = summary.merge(Summary.of(result))
    return summary


class HealthReport(BaseModel):
    results: List[HealthCheckResult] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)


class StatusReporter:
    """
    Runs every probe against the live stack, one after another. Each network
    probe has its own timeout; no probe can abort the others.
    """

    def __init__(
        self,
        settings: StackSettings,
        registry: Registry[ServiceSpec],
        supervisor: Supervisor,
        transport: Optional[httpx.BaseTransport] = None,
        is_root: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.supervisor = supervisor
        self.transport = transport
        self.is_root = is_root or (lambda: effective_uid() == 0)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.settings.http_timeout_seconds),
            transport=self.transport,
            follow_redirects=False,
        )

    def endpoint_url(self, spec: ServiceSpec) -> Optional[str]:
        if spec.health_endpoint is None:
            return None
        endpoint = spec.health_endpoint
        return f"http://{self.settings.health_host}:{endpoint.port}{endpoint.path}"

    def run(self) -> HealthReport:
        results: List[HealthCheckResult] = []
        containers = [spec for spec in self.registry.start_order() if spec.is_container]

        for spec in self.registry.start_order():
            if not spec.is_container and spec.network_name:
                results.append(probe_network_exists(self.supervisor, spec.network_name))

        for spec in containers:
            results.append(probe_service_active(self.supervisor, spec))
            results.append(probe_container_running(self.supervisor, spec))

        with self._client() as client:
            for spec in containers:
                url = self.endpoint_url(spec)
                if url is None:
                    continue
                results.append(probe_http_endpoint(
                    client,
                    spec.health_endpoint.label,
                    url,
                    spec.health_endpoint.expected_status,
                ))

        data_root = self.settings.data_root
        results.append(probe_directory_writable(data_root))
        for spec in containers:
            results.append(probe_directory_writable(spec.data_dir(data_root)))

        results.append(probe_disk_threshold(data_root, self.settings.disk_usage_threshold_percent))

        if self.is_root():
            for spec in containers:
                results.append(probe_container_resources(self.supervisor, spec))

        return HealthReport(results=results, summary=summarize(results))
