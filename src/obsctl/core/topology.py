"""Compiled-in description of the managed observability stack."""

from typing import List

from obsctl.core.models import (
    BindMount,
    ConfigSource,
    EnvVar,
    HealthEndpoint,
    PortMapping,
    ServiceSpec,
)
from obsctl.core.registry import Registry

NETWORK_NAME = "obs-net"
NETWORK_UNIT_FILE = "obs-network.network"

PLUGIN_TOGGLE = "GRAFANA_INSTALL_ZABBIX_PLUGIN"
PLUGIN_ID_KEY = "GRAFANA_ZABBIX_PLUGIN_ID"
DEFAULT_PLUGIN_ID = "alexanderzobnin-zabbix-app"
FIREWALL_TOGGLE = "CONFIGURE_FIREWALL"

NETWORK = ServiceSpec(
    name="obs-network",
    kind="network",
    description="Observability stack shared container network",
    unit_file=NETWORK_UNIT_FILE,
    supervisor_unit="obs-network-network.service",
    network_name=NETWORK_NAME,
)

INFLUXDB = ServiceSpec(
    name="influxdb",
    description="InfluxDB time-series storage",
    unit_file="influxdb.container",
    supervisor_unit="influxdb.service",
    image="docker.io/influxdb:2.7",
    container_name="influxdb",
    depends_on=("obs-network",),
    ports=(PortMapping(host_port=8086, container_port=8086, external=True),),
    mounts=(
        BindMount(host_path="data", container_path="/var/lib/influxdb2"),
        BindMount(host_path="config", container_path="/etc/influxdb2"),
    ),
    environment=(
        EnvVar(name="DOCKER_INFLUXDB_INIT_MODE", value="setup"),
        EnvVar(name="DOCKER_INFLUXDB_INIT_USERNAME", value="{{ INFLUXDB_ADMIN_USER }}"),
        EnvVar(name="DOCKER_INFLUXDB_INIT_PASSWORD", value="{{ INFLUXDB_ADMIN_PASSWORD }}"),
        EnvVar(name="DOCKER_INFLUXDB_INIT_ORG", value="{{ INFLUXDB_ORG }}"),
        EnvVar(name="DOCKER_INFLUXDB_INIT_BUCKET", value="{{ INFLUXDB_BUCKET }}"),
        EnvVar(name="DOCKER_INFLUXDB_INIT_ADMIN_TOKEN", value="{{ INFLUXDB_TOKEN }}"),
    ),
    required_keys=(
        "INFLUXDB_ADMIN_USER",
        "INFLUXDB_ADMIN_PASSWORD",
        "INFLUXDB_ORG",
        "INFLUXDB_BUCKET",
        "INFLUXDB_TOKEN",
    ),
    owner=(1000, 1000),
    owner_scope="service",
    health_endpoint=HealthEndpoint(label="InfluxDB", port=8086, path="/health"),
)

PROMETHEUS = ServiceSpec(
    name="prometheus",
    description="Prometheus metrics backend",
    unit_file="prometheus.container",
    supervisor_unit="prometheus.service",
    image="quay.io/prometheus/prometheus:latest",
    container_name="prometheus",
    depends_on=("obs-network",),
    ports=(PortMapping(host_port=9090, container_port=9090, host_ip="127.0.0.1"),),
    mounts=(
        BindMount(host_path="config", container_path="/etc/prometheus", read_only=True),
        BindMount(host_path="data", container_path="/prometheus"),
    ),
    exec_args=(
        "--config.file=/etc/prometheus/prometheus.yml",
        "--storage.tsdb.path=/prometheus",
        "--storage.tsdb.retention.time={{ PROMETHEUS_RETENTION }}",
        "--web.enable-lifecycle",
    ),
    required_keys=("PROMETHEUS_RETENTION",),
    config_sources=(ConfigSource(source="prometheus/prometheus.yml"),),
    owner=(65534, 65534),
    health_endpoint=HealthEndpoint(label="Prometheus", port=9090, path="/-/healthy"),
)

LOKI = ServiceSpec(
    name="loki",
    description="Loki log storage backend",
    unit_file="loki.container",
    supervisor_unit="loki.service",
    image="docker.io/grafana/loki:latest",
    container_name="loki",
    depends_on=("obs-network",),
    ports=(PortMapping(host_port=3100, container_port=3100, host_ip="127.0.0.1"),),
    mounts=(
        BindMount(host_path="config", container_path="/etc/loki", read_only=True),
        BindMount(host_path="data", container_path="/loki"),
    ),
    exec_args=("-config.file=/etc/loki/loki.yaml",),
    config_sources=(ConfigSource(source="loki/loki.yaml"),),
    owner=(10001, 10001),
    health_endpoint=HealthEndpoint(label="Loki", port=3100, path="/ready"),
)

ALLOY = ServiceSpec(
    name="alloy",
    description="Grafana Alloy log and metric agent",
    unit_file="alloy.container",
    supervisor_unit="alloy.service",
    image="docker.io/grafana/alloy:latest",
    container_name="alloy",
    depends_on=("obs-network", "prometheus", "loki"),
    internal_ports=(12345,),
    mounts=(
        BindMount(host_path="config", container_path="/etc/alloy", read_only=True),
        BindMount(host_path="data", container_path="/var/lib/alloy/data"),
        BindMount(host_path="/var/log/journal", container_path="/var/log/journal", read_only=True),
        BindMount(host_path="/run/log/journal", container_path="/run/log/journal", read_only=True),
        BindMount(host_path="/etc/machine-id", container_path="/etc/machine-id", read_only=True),
    ),
    exec_args=(
        "run",
        "--server.http.listen-addr=0.0.0.0:12345",
        "--storage.path=/var/lib/alloy/data",
        "/etc/alloy/config.alloy",
    ),
    extra_container_directives=(("SecurityLabelDisable", "true"),),
    config_sources=(ConfigSource(source="alloy/config.alloy"),),
    owner=(0, 0),
    owner_scope="service",
)

GRAFANA = ServiceSpec(
    name="grafana",
    description="Grafana visualization front-end",
    unit_file="grafana.container",
    supervisor_unit="grafana.service",
    image="docker.io/grafana/grafana:latest",
    container_name="grafana",
    depends_on=("obs-network", "influxdb", "prometheus", "loki"),
    ports=(PortMapping(host_port=3000, container_port=3000, external=True),),
    mounts=(
        BindMount(host_path="data", container_path="/var/lib/grafana"),
        BindMount(host_path="provisioning", container_path="/etc/grafana/provisioning", read_only=True),
    ),
    environment=(
        EnvVar(name="GF_SECURITY_ADMIN_USER", value="{{ GRAFANA_ADMIN_USER }}"),
        EnvVar(name="GF_SECURITY_ADMIN_PASSWORD", value="{{ GRAFANA_ADMIN_PASSWORD }}"),
        EnvVar(name="GF_SERVER_DOMAIN", value="{{ GRAFANA_DOMAIN }}"),
        EnvVar(name="GF_SERVER_ROOT_URL", value="http://{{ GRAFANA_DOMAIN }}:3000/"),
        EnvVar(name="GF_USERS_ALLOW_SIGN_UP", value="false"),
        EnvVar(name="GF_ANALYTICS_REPORTING_ENABLED", value="false"),
        EnvVar(name="INFLUXDB_ORG", value="{{ INFLUXDB_ORG }}"),
        EnvVar(name="INFLUXDB_BUCKET", value="{{ INFLUXDB_BUCKET }}"),
        EnvVar(name="INFLUXDB_TOKEN", value="{{ INFLUXDB_TOKEN }}"),
        EnvVar(name="ZABBIX_URL", value="{{ ZABBIX_URL }}", when=PLUGIN_TOGGLE),
        EnvVar(name="ZABBIX_API_TOKEN", value="{{ ZABBIX_API_TOKEN }}", when=PLUGIN_TOGGLE),
        EnvVar(
            name="ZABBIX_TRENDS_THRESHOLD_DAYS",
            value="{{ GRAFANA_ZABBIX_TRENDS_THRESHOLD_DAYS }}",
            when=PLUGIN_TOGGLE,
        ),
    ),
    required_keys=(
        "GRAFANA_ADMIN_USER",
        "GRAFANA_ADMIN_PASSWORD",
        "GRAFANA_DOMAIN",
        PLUGIN_TOGGLE,
        "INFLUXDB_ORG",
        "INFLUXDB_BUCKET",
        "INFLUXDB_TOKEN",
    ),
    config_dir_name="provisioning",
    config_sources=(ConfigSource(source="grafana/provisioning", tree=True),),
    owner=(472, 472),
    health_endpoint=HealthEndpoint(label="Grafana", port=3000, path="/api/health"),
    plugin_toggle=PLUGIN_TOGGLE,
    plugin_id_key=PLUGIN_ID_KEY,
)

SERVICE_SPECS: List[ServiceSpec] = [NETWORK, INFLUXDB, PROMETHEUS, LOKI, ALLOY, GRAFANA]


def build_registry() -> Registry[ServiceSpec]:
    """Return the stack registry; registration order is the start order."""
    registry: Registry[ServiceSpec] = Registry()
    registry.register_all(SERVICE_SPECS)
    return registry


def container_specs(registry: Registry[ServiceSpec]) -> List[ServiceSpec]:
    return [spec for spec in registry if spec.is_container]
