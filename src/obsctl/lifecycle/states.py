from __future__ import annotations

from enum import Enum


class ServiceState(str, Enum):
    """Per-service lifecycle state, re-derived from the supervisor on every run."""

    UNKNOWN = "unknown"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


class ServiceEvent(str, Enum):
    """Events that drive service state transitions."""

    PROBED_ACTIVE = "probed_active"
    PROBED_INACTIVE = "probed_inactive"
    START_ISSUED = "start_issued"
    START_ACKNOWLEDGED = "start_acknowledged"
    START_FAILED = "start_failed"
    STOP_ACKNOWLEDGED = "stop_acknowledged"
    STOP_FAILED = "stop_failed"


def transition_service_state(current: ServiceState, event: ServiceEvent) -> ServiceState:
    """Compute the next service state for a given event.

    Failed is terminal for the current run. Invalid transitions raise ValueError.
    """

    if current == ServiceState.UNKNOWN:
        if event == ServiceEvent.PROBED_ACTIVE:
            return ServiceState.RUNNING
        if event == ServiceEvent.PROBED_INACTIVE:
            return ServiceState.STOPPED
        if event == ServiceEvent.START_ISSUED:
            return ServiceState.STARTING
        raise ValueError(f"Invalid service transition: {current} -> {event}")

    if current == ServiceState.STOPPED:
        if event == ServiceEvent.START_ISSUED:
            return ServiceState.STARTING
        raise ValueError(f"Invalid service transition: {current} -> {event}")

    if current == ServiceState.STARTING:
        if event == ServiceEvent.START_ACKNOWLEDGED:
            return ServiceState.RUNNING
        if event == ServiceEvent.START_FAILED:
            return ServiceState.FAILED
        raise ValueError(f"Invalid service transition: {current} -> {event}")

    if current == ServiceState.RUNNING:
        # systemctl start on an active unit is a no-op acknowledgement.
        if event == ServiceEvent.START_ISSUED:
            return ServiceState.STARTING
        if event == ServiceEvent.STOP_ACKNOWLEDGED:
            return ServiceState.STOPPED
        if event == ServiceEvent.STOP_FAILED:
            return ServiceState.FAILED
        raise ValueError(f"Invalid service transition: {current} -> {event}")

    if current == ServiceState.FAILED:
        raise ValueError(f"Service already failed in this run: {current} -> {event}")

    raise ValueError(f"Unknown service state: {current}")
