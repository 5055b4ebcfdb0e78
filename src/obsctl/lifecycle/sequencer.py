from __future__ import annotations

import time
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from obsctl.core.models import ServiceSpec
from obsctl.core.registry import Registry
from obsctl.host.supervisor import Supervisor
from obsctl.lifecycle.states import ServiceEvent, ServiceState, transition_service_state
from obsctl.utils.diagnostics import (
    SEVERITY_INFO,
    SEVERITY_WARN,
    Finding,
    LifecycleError,
)


class ServiceOutcome(BaseModel):
    """Result of driving one service through a start or stop pass."""

    name: str
    unit: str
    state: ServiceState = ServiceState.UNKNOWN
    initial_state: ServiceState = ServiceState.UNKNOWN
    enabled: Optional[bool] = None
    notes: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.state == ServiceState.FAILED


class SequenceReport(BaseModel):
    outcomes: List[ServiceOutcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(outcome.failed for outcome in self.outcomes)

    @property
    def failed_services(self) -> List[str]:
        return [outcome.name for outcome in self.outcomes if outcome.failed]


class LifecycleSequencer:
    """
    Drives services through the supervisor in dependency order.

    Start waits only for the supervisor's synchronous acknowledgement, never
    for readiness. A failed service is recorded and the sequence continues.
    This class never touches the filesystem.
    """

    def __init__(
        self,
        registry: Registry[ServiceSpec],
        supervisor: Supervisor,
        settle_delay_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.supervisor = supervisor
        self.settle_delay_seconds = settle_delay_seconds
        self.sleep = sleep

    def _probe(self, spec: ServiceSpec) -> ServiceState:
        event = (
            ServiceEvent.PROBED_ACTIVE
            if self.supervisor.is_active(spec.supervisor_unit)
            else ServiceEvent.PROBED_INACTIVE
        )
        return transition_service_state(ServiceState.UNKNOWN, event)

    def start_service(self, spec: ServiceSpec) -> ServiceOutcome:
        outcome = ServiceOutcome(name=spec.name, unit=spec.supervisor_unit)
        state = self._probe(spec)
        outcome.initial_state = state

        enabled = self.supervisor.enable(spec.supervisor_unit)
        outcome.enabled = enabled.ok
        if not enabled.ok:
            # Quadlet-generated units cannot be enabled; [Install] covers boot.
            outcome.notes.append(f"enable skipped: {enabled.describe()}")

        state = transition_service_state(state, ServiceEvent.START_ISSUED)
        started = self.supervisor.start(spec.supervisor_unit)
        if started.ok:
            state = transition_service_state(state, ServiceEvent.START_ACKNOWLEDGED)
        else:
            state = transition_service_state(state, ServiceEvent.START_FAILED)
            outcome.error = str(LifecycleError(started.describe(), service=spec.name))

        outcome.state = state
        return outcome

    def start_all(self) -> SequenceReport:
        report = SequenceReport()
        specs = self.registry.start_order()
        for index, spec in enumerate(specs):
            report.outcomes.append(self.start_service(spec))
            if index < len(specs) - 1 and self.settle_delay_seconds > 0:
                self.sleep(self.settle_delay_seconds)
        return report

    def stop_service(self, spec: ServiceSpec) -> ServiceOutcome:
        outcome = ServiceOutcome(name=spec.name, unit=spec.supervisor_unit)
        state = self._probe(spec)
        outcome.initial_state = state

        if state == ServiceState.RUNNING:
            stopped = self.supervisor.stop(spec.supervisor_unit)
            if stopped.ok:
                state = transition_service_state(state, ServiceEvent.STOP_ACKNOWLEDGED)
            else:
                state = transition_service_state(state, ServiceEvent.STOP_FAILED)
                outcome.error = str(LifecycleError(stopped.describe(), service=spec.name))

        if self.supervisor.is_enabled(spec.supervisor_unit):
            disabled = self.supervisor.disable(spec.supervisor_unit)
            outcome.enabled = not disabled.ok
            if not disabled.ok:
                outcome.notes.append(f"disable failed: {disabled.describe()}")
        else:
            outcome.enabled = False

        outcome.state = state
        return outcome

    def stop_all(self) -> SequenceReport:
        """Stop then disable every service in reverse dependency order, best-effort."""
        report = SequenceReport()
        for spec in self.registry.stop_order():
            report.outcomes.append(self.stop_service(spec))
        return report

    def pull_images(self) -> List[Finding]:
        findings: List[Finding] = []
        for spec in self.registry.start_order():
            if not spec.image:
                continue
            pulled = self.supervisor.pull_image(spec.image)
            if pulled.ok:
                findings.append(Finding(
                    subject=spec.image,
                    code="ImagePulled",
                    message=f"Pulled {spec.image}",
                    severity=SEVERITY_INFO,
                ))
            else:
                findings.append(Finding(
                    subject=spec.image,
                    code="ImagePullFailed",
                    message=f"Failed to pull {spec.image}; the supervisor will retry on start",
                    severity=SEVERITY_WARN,
                ))
        return findings

    def remove_containers(self) -> List[Finding]:
        findings: List[Finding] = []
        for spec in self.registry.stop_order():
            if not spec.is_container:
                continue
            name = spec.container_name or spec.name
            if not self.supervisor.container_exists(name):
                continue
            removed = self.supervisor.remove_container(name)
            findings.append(Finding(
                subject=name,
                code="ContainerRemoved" if removed.ok else "ContainerRemovalFailed",
                message=f"Removed container {name}" if removed.ok else f"Failed to remove {name}: {removed.describe()}",
                severity=SEVERITY_INFO if removed.ok else SEVERITY_WARN,
            ))
        return findings

    def remove_networks(self) -> List[Finding]:
        findings: List[Finding] = []
        for spec in self.registry.stop_order():
            if spec.is_container or not spec.network_name:
                continue
            if not self.supervisor.network_exists(spec.network_name):
                continue
            removed = self.supervisor.remove_network(spec.network_name)
            findings.append(Finding(
                subject=spec.network_name,
                code="NetworkRemoved" if removed.ok else "NetworkRemovalFailed",
                message=(
                    f"Removed network {spec.network_name}"
                    if removed.ok
                    else f"Failed to remove network {spec.network_name}: {removed.describe()}"
                ),
                severity=SEVERITY_INFO if removed.ok else SEVERITY_WARN,
            ))
        return findings

    def leftovers(self) -> List[Finding]:
        """Report containers or networks that survived teardown."""
        findings: List[Finding] = []
        for spec in self.registry.stop_order():
            if spec.is_container:
                name = spec.container_name or spec.name
                if self.supervisor.container_exists(name):
                    findings.append(Finding(
                        subject=name,
                        code="LeftoverContainer",
                        message=f"Container {name} still exists after teardown",
                        severity=SEVERITY_WARN,
                        suggestion=f"podman rm -f {name}",
                    ))
            elif spec.network_name and self.supervisor.network_exists(spec.network_name):
                findings.append(Finding(
                    subject=spec.network_name,
                    code="LeftoverNetwork",
                    message=f"Network {spec.network_name} still exists after teardown",
                    severity=SEVERITY_WARN,
                    suggestion=f"podman network rm {spec.network_name}",
                ))
        if not findings:
            findings.append(Finding(
                subject="teardown",
                code="TeardownVerified",
                message="No managed containers or networks remain",
                severity=SEVERITY_INFO,
            ))
        return findings

    def reload_supervisor(self) -> Finding:
        reloaded = self.supervisor.daemon_reload()
        if reloaded.ok:
            return Finding(
                subject="daemon-reload",
                code="SupervisorReloaded",
                message="Supervisor reloaded",
                severity=SEVERITY_INFO,
            )
        return Finding(
            subject="daemon-reload",
            code="SupervisorReloadFailed",
            message=f"Supervisor reload failed: {reloaded.describe()}",
        )
