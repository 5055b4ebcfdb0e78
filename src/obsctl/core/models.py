from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Literal, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_TRUE = "true"


class StackSettings(BaseSettings):
    """
    Host-level tool settings (the 'obsctl' section in obsctl.yaml).
    """
    model_config = SettingsConfigDict(env_prefix='OBSCTL_', extra='ignore')

    env_file: Path = Path(".env")
    configs_dir: Path = Path("configs")
    data_root: Path = Path("/srv/obs")
    unit_dir: Path = Path("/etc/containers/systemd")
    generator_path: Path = Path("/usr/lib/systemd/system-generators/podman-system-generator")
    lock_path: Path = Path("/run/obsctl.lock")
    os_release_path: Path = Path("/etc/os-release")

    settle_delay_seconds: float = Field(default=2.0, ge=0)
    pull_images: bool = True
    command_timeout_seconds: float = Field(default=300.0, gt=0)

    http_timeout_seconds: float = Field(default=5.0, gt=0)
    health_host: str = "localhost"

    disk_fail_floor_gb: int = Field(default=50, ge=0)
    disk_warn_floor_gb: int = Field(default=500, ge=0)
    disk_usage_threshold_percent: int = Field(default=90, ge=1, le=100)


class Configuration(BaseModel):
    """
    Validated, read-only key/value configuration loaded from the env file.
    """
    model_config = ConfigDict(frozen=True)

    values: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    source: Optional[str] = None

    @field_validator("values", mode="after")
    @classmethod
    def freeze_values(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("values")
    def dump_values(self, value: Mapping[str, str]) -> Dict[str, str]:
        return dict(value)

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self.values)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def is_enabled(self, toggle: str) -> bool:
        return self.values.get(toggle) == _TRUE

    def as_mapping(self) -> Mapping[str, str]:
        return dict(self.values)


class PortMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    host_port: int = Field(ge=1, le=65535)
    container_port: int = Field(ge=1, le=65535)
    host_ip: str = "0.0.0.0"
    external: bool = False

    def directive(self) -> str:
        if self.host_ip == "0.0.0.0":
            return f"{self.host_port}:{self.container_port}"
        return f"{self.host_ip}:{self.host_port}:{self.container_port}"


class BindMount(BaseModel):
    """
    A bind mount. `host_path` is relative to the service directory under the
    data root unless it is absolute.
    """
    model_config = ConfigDict(frozen=True)

    host_path: str
    container_path: str
    read_only: bool = False


class EnvVar(BaseModel):
    """One container environment variable; `value` is a jinja2 expression."""
    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    when: Optional[str] = None # toggle key that must be 'true'


class HealthEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    port: int
    path: str
    expected_status: int = 200


class ConfigSource(BaseModel):
    """A static configuration blob (file or directory) copied into the config dir."""
    model_config = ConfigDict(frozen=True)

    source: str
    tree: bool = False


class ServiceSpec(BaseModel):
    """
    Static description of one managed service (or the shared network).
    """
    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["container", "network"] = "container"
    description: str
    unit_file: str
    supervisor_unit: str
    image: Optional[str] = None
    container_name: Optional[str] = None
    network_name: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    ports: Tuple[PortMapping, ...] = ()
    internal_ports: Tuple[int, ...] = ()
    mounts: Tuple[BindMount, ...] = ()
    environment: Tuple[EnvVar, ...] = ()
    exec_args: Tuple[str, ...] = ()
    extra_container_directives: Tuple[Tuple[str, str], ...] = ()
    required_keys: Tuple[str, ...] = ()
    config_dir_name: str = "config"
    config_sources: Tuple[ConfigSource, ...] = ()
    owner: Optional[Tuple[int, int]] = None
    owner_scope: Literal["data", "service"] = "data"
    health_endpoint: Optional[HealthEndpoint] = None
    plugin_toggle: Optional[str] = None
    plugin_id_key: Optional[str] = None

    @property
    def is_container(self) -> bool:
        return self.kind == "container"

    def service_dir(self, data_root: Path) -> Path:
        return data_root / self.name

    def data_dir(self, data_root: Path) -> Path:
        return self.service_dir(data_root) / "data"

    def config_dir(self, data_root: Path) -> Path:
        return self.service_dir(data_root) / self.config_dir_name

    def published_ports(self) -> List[PortMapping]:
        return list(self.ports)
