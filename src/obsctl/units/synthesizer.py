from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError, UndefinedError
from pydantic import BaseModel, Field

from obsctl.core.models import BindMount, Configuration, ServiceSpec, StackSettings
from obsctl.core.registry import Registry
from obsctl.core.topology import NETWORK_UNIT_FILE
from obsctl.units.model import (
    ContainerUnit,
    NetworkUnit,
    UnitFile,
    quote_word,
    render_unit_file,
)
from obsctl.utils.diagnostics import (
    SEVERITY_INFO,
    SEVERITY_WARN,
    ConfigError,
    Finding,
    MaterializationError,
)

UNIT_FILE_MODE = 0o644

_VALUES = Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=False)


class UnitWriteReport(BaseModel):
    written: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)


def render_value(expression: str, configuration: Configuration, service: str) -> str:
    """Render one jinja2 value expression against the configuration."""
    try:
        return _VALUES.from_string(expression).render(configuration.as_mapping())
    except UndefinedError as e:
        raise ConfigError([Finding(
            subject=service,
            code="MissingRequiredKey",
            message=f"Unit for {service} references an undefined key: {e.message}",
        )])
    except TemplateError as e:
        raise ConfigError([Finding(
            subject=service,
            code="InvalidValue",
            message=f"Cannot render unit value '{expression}' for {service}: {e}",
        )])


def _volume(mount: BindMount, spec: ServiceSpec, data_root: Path) -> str:
    host = Path(mount.host_path)
    if not host.is_absolute():
        host = spec.service_dir(data_root) / host
    suffix = ":ro" if mount.read_only else ""
    return f"{host}:{mount.container_path}{suffix}"


def build_unit(
    spec: ServiceSpec,
    configuration: Configuration,
    registry: Registry[ServiceSpec],
    data_root: Path,
) -> UnitFile:
    """Build the structured unit for `spec`. Pure: no filesystem or supervisor access."""
    if not spec.is_container:
        return NetworkUnit(
            file_name=spec.unit_file,
            description=spec.description,
            network_name=spec.network_name or spec.name,
        )

    predecessors = [registry.get(name).supervisor_unit for name in spec.depends_on]

    environment = [
        (var.name, render_value(var.value, configuration, spec.name))
        for var in spec.environment
        if var.when is None or configuration.is_enabled(var.when)
    ]

    plugin_install = None
    if spec.plugin_toggle and spec.plugin_id_key and configuration.is_enabled(spec.plugin_toggle):
        plugin_install = configuration.get(spec.plugin_id_key) or None

    exec_line = None
    if spec.exec_args:
        exec_line = " ".join(
            quote_word(render_value(arg, configuration, spec.name)) for arg in spec.exec_args
        )

    return ContainerUnit(
        file_name=spec.unit_file,
        description=spec.description,
        after=["network-online.target", *predecessors],
        requires=predecessors,
        container_name=spec.container_name or spec.name,
        image=spec.image or "",
        network=NETWORK_UNIT_FILE,
        publish=[mapping.directive() for mapping in spec.ports],
        volumes=[_volume(mount, spec, data_root) for mount in spec.mounts],
        environment=environment,
        plugin_install=plugin_install,
        extra=list(spec.extra_container_directives),
        exec_line=exec_line,
    )


def render_unit(
    spec: ServiceSpec,
    configuration: Configuration,
    registry: Registry[ServiceSpec],
    data_root: Path,
) -> str:
    return render_unit_file(build_unit(spec, configuration, registry, data_root))


class UnitSynthesizer:
    """Writes rendered unit files into the supervisor-managed directory."""

    def __init__(self, settings: StackSettings, registry: Registry[ServiceSpec]) -> None:
        self.settings = settings
        self.registry = registry

    @property
    def unit_dir(self) -> Path:
        return self.settings.unit_dir

    def render_all(self, configuration: Configuration) -> Dict[str, str]:
        return {
            spec.unit_file: render_unit(spec, configuration, self.registry, self.settings.data_root)
            for spec in self.registry.start_order()
        }

    def write_all(self, configuration: Configuration) -> UnitWriteReport:
        """
        Render every unit first, then write only files whose bytes changed.
        Rendering failures therefore never leave a half-written set.
        """
        rendered = self.render_all(configuration)
        report = UnitWriteReport()

        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise MaterializationError(f"Cannot create unit directory ({exc.strerror})", str(self.unit_dir))

        for file_name, text in rendered.items():
            destination = self.unit_dir / file_name
            payload = text.encode("utf-8")
            try:
                if destination.is_file() and destination.read_bytes() == payload:
                    report.unchanged.append(file_name)
                else:
                    destination.write_bytes(payload)
                    report.written.append(file_name)
                if (destination.stat().st_mode & 0o7777) != UNIT_FILE_MODE:
                    destination.chmod(UNIT_FILE_MODE)
            except OSError as exc:
                raise MaterializationError(f"Cannot write unit file ({exc.strerror})", str(destination))

        return report

    def remove_all(self) -> List[Finding]:
        """Delete every managed unit file, best-effort, in stop order."""
        findings: List[Finding] = []
        for spec in self.registry.stop_order():
            path = self.unit_dir / spec.unit_file
            if not path.exists():
                continue
            try:
                path.unlink()
                findings.append(Finding(
                    subject=str(path),
                    code="UnitRemoved",
                    message=f"Removed {spec.unit_file}",
                    severity=SEVERITY_INFO,
                ))
            except OSError as exc:
                findings.append(Finding(
                    subject=str(path),
                    code="UnitRemovalFailed",
                    message=f"Failed to remove {spec.unit_file}: {exc.strerror}",
                    severity=SEVERITY_WARN,
                ))
        return findings
