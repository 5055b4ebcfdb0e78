"""Health probes and the status reporter."""

from obsctl.health.probes import HealthCheckResult, ProbeKind, ProbeOutcome
from obsctl.health.reporter import HealthReport, StatusReporter, Summary, summarize

__all__ = [
	"HealthCheckResult",
	"HealthReport",
	"ProbeKind",
	"ProbeOutcome",
	"StatusReporter",
	"Summary",
	"summarize",
]
