"""Idempotent lifecycle orchestrator for a Podman Quadlet observability stack."""

from obsctl.core.models import Configuration, ServiceSpec, StackSettings
from obsctl.core.topology import SERVICE_SPECS, build_registry

__version__ = "0.1.0"

__all__ = [
	"Configuration",
	"SERVICE_SPECS",
	"ServiceSpec",
	"StackSettings",
	"build_registry",
	"__version__",
]
