from __future__ import annotations

from typing import List, Optional, Tuple, Union

from jinja2 import BaseLoader, Environment
from pydantic import BaseModel, ConfigDict, Field

HEADER = "# {{ unit.file_name }} - managed by obsctl; local edits are overwritten on install\n"

CONTAINER_TEMPLATE = HEADER + """\
[Unit]
Description={{ unit.description }}
Wants=network-online.target
After={{ unit.after | join(' ') }}
{% if unit.requires %}
Requires={{ unit.requires | join(' ') }}
{% endif %}

[Container]
ContainerName={{ unit.container_name }}
Image={{ unit.image }}
Network={{ unit.network }}
{% for port in unit.publish %}
PublishPort={{ port }}
{% endfor %}
{% for volume in unit.volumes %}
Volume={{ volume }}
{% endfor %}
{% for name, value in unit.environment %}
{{ name | environment_directive(value) }}
{% endfor %}
{% if unit.plugin_install is not none %}
{{ 'GF_INSTALL_PLUGINS' | environment_directive(unit.plugin_install) }}
{% endif %}
{% for key, value in unit.extra %}
{{ key }}={{ value }}
{% endfor %}
{% if unit.exec_line %}
Exec={{ unit.exec_line }}
{% endif %}

[Service]
Restart=always
TimeoutStartSec=900

[Install]
WantedBy=multi-user.target default.target
"""

NETWORK_TEMPLATE = HEADER + """\
[Unit]
Description={{ unit.description }}

[Network]
NetworkName={{ unit.network_name }}

[Install]
WantedBy=multi-user.target default.target
"""


class ContainerUnit(BaseModel):
    """Structured form of a Quadlet .container unit."""
    model_config = ConfigDict(frozen=True)

    file_name: str
    description: str
    after: List[str] = Field(default_factory=list)
    requires: List[str] = Field(default_factory=list)
    container_name: str
    image: str
    network: str
    publish: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    environment: List[Tuple[str, str]] = Field(default_factory=list)
    # Rendered as one GF_INSTALL_PLUGINS line when set, omitted when None.
    plugin_install: Optional[str] = None
    extra: List[Tuple[str, str]] = Field(default_factory=list)
    exec_line: Optional[str] = None


class NetworkUnit(BaseModel):
    """Structured form of a Quadlet .network unit."""
    model_config = ConfigDict(frozen=True)

    file_name: str
    description: str
    network_name: str


UnitFile = Union[ContainerUnit, NetworkUnit]


def _needs_quoting(value: str) -> bool:
    return any(ch.isspace() for ch in value) or '"' in value or "\\" in value


def quote_word(value: str) -> str:
    if not _needs_quoting(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def environment_directive(name: str, value: str) -> str:
    """Format one systemd Environment= assignment, quoting only when required."""
    return f"Environment={quote_word(f'{name}={value}')}"


def _build_environment() -> Environment:
    env = Environment(
        loader=BaseLoader(),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["environment_directive"] = environment_directive
    return env


_ENV = _build_environment()
_CONTAINER = _ENV.from_string(CONTAINER_TEMPLATE)
_NETWORK = _ENV.from_string(NETWORK_TEMPLATE)


def render_unit_file(unit: UnitFile) -> str:
    """Render a structured unit to its on-disk text. Pure and deterministic."""
    if isinstance(unit, NetworkUnit):
        return _NETWORK.render(unit=unit)
    return _CONTAINER.render(unit=unit)
