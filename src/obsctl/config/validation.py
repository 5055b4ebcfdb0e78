from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import BaseModel, Field

from obsctl.config.loader import parse_env_file
from obsctl.core.models import Configuration, ServiceSpec
from obsctl.core.topology import (
    DEFAULT_PLUGIN_ID,
    FIREWALL_TOGGLE,
    PLUGIN_ID_KEY,
    PLUGIN_TOGGLE,
    SERVICE_SPECS,
)
from obsctl.utils.diagnostics import (
    SEVERITY_FAIL,
    SEVERITY_INFO,
    SEVERITY_WARN,
    ConfigError,
    Finding,
    failures,
)

PLACEHOLDER = "changeme"
ZABBIX_API_SUFFIX = "/api_jsonrpc.php"

_UNSIGNED_INT = re.compile(r"^[0-9]+$")
_HTTP_URL = re.compile(r"^https?://")
_IPV4 = re.compile(r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}$")
_IPV4_CIDR = re.compile(r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}/[0-9]{1,2}$")

DEFAULTS: Dict[str, str] = {
    FIREWALL_TOGGLE: "false",
    "PROMETHEUS_RETENTION": "365d",
}

# Conditionally required keys, keyed by the toggle that pulls them in.
CONDITIONAL_KEYS: Dict[str, tuple[str, ...]] = {
    PLUGIN_TOGGLE: (
        PLUGIN_ID_KEY,
        "GRAFANA_ZABBIX_TRENDS_THRESHOLD_DAYS",
        "ZABBIX_URL",
        "ZABBIX_API_TOKEN",
    ),
    FIREWALL_TOGGLE: (
        "GRAFANA_ADMIN_SUBNET",
        "LIBRENMS_VM_IP",
    ),
}

# Deprecated key -> replacement hint.
DEPRECATED_KEYS: Dict[str, str] = {
    "ZABBIX_USER": "ZABBIX_API_TOKEN",
    "ZABBIX_PASSWORD": "ZABBIX_API_TOKEN",
}

OPTIONAL_KEYS: tuple[str, ...] = ("INFLUXDB_URL", "INFLUXDB_PORT", FIREWALL_TOGGLE)


Check = Callable[[str, str], Optional[Finding]]


def _invalid(key: str, message: str, suggestion: Optional[str] = None) -> Finding:
    return Finding(subject=key, code="InvalidValue", message=message, suggestion=suggestion)


def check_boolean(key: str, value: str) -> Optional[Finding]:
    if value not in {"true", "false"}:
        return _invalid(key, f"{key} must be 'true' or 'false' (got '{value}')")
    return None


def check_unsigned_int(key: str, value: str) -> Optional[Finding]:
    if not _UNSIGNED_INT.match(value):
        return _invalid(key, f"{key} must be an unsigned integer (e.g., 7)")
    return None


def check_http_url(key: str, value: str) -> Optional[Finding]:
    if not _HTTP_URL.match(value):
        return _invalid(key, f"{key} must start with http:// or https://")
    return None


def check_zabbix_api_url(key: str, value: str) -> Optional[Finding]:
    if not value.endswith(ZABBIX_API_SUFFIX):
        return _invalid(key, f"{key} must end with {ZABBIX_API_SUFFIX}")
    return None


def check_no_placeholder(key: str, value: str) -> Optional[Finding]:
    if PLACEHOLDER in value:
        return _invalid(
            key,
            f"{key} contains '{PLACEHOLDER}'",
            suggestion="Generate a real secret, e.g. openssl rand -base64 32",
        )
    return None


def min_length(length: int) -> Check:
    def check(key: str, value: str) -> Optional[Finding]:
        if len(value) < length:
            return Finding(
                subject=key,
                code="WeakSecret",
                message=f"{key} is shorter than {length} characters",
                severity=SEVERITY_WARN,
            )
        return None
    return check


def check_ipv4(key: str, value: str) -> Optional[Finding]:
    if not _IPV4.match(value):
        return _invalid(key, f"{key} must be a dotted-quad IP address (e.g., 10.2.2.100)")
    return None


def check_ipv4_cidr(key: str, value: str) -> Optional[Finding]:
    if not _IPV4_CIDR.match(value):
        return _invalid(key, f"{key} must be in CIDR format (e.g., 10.1.10.0/24)")
    return None


def check_known_plugin_id(key: str, value: str) -> Optional[Finding]:
    if value != DEFAULT_PLUGIN_ID:
        return Finding(
            subject=key,
            code="UnexpectedPluginId",
            message=f"{key} is not '{DEFAULT_PLUGIN_ID}'",
            severity=SEVERITY_WARN,
            suggestion="If intentional, make sure the Grafana provisioning files match.",
        )
    return None


VALIDATORS: Dict[str, Sequence[Check]] = {
    PLUGIN_TOGGLE: (check_boolean,),
    FIREWALL_TOGGLE: (check_boolean,),
    "GRAFANA_ZABBIX_TRENDS_THRESHOLD_DAYS": (check_unsigned_int,),
    "INFLUXDB_PORT": (check_unsigned_int,),
    "INFLUXDB_URL": (check_http_url,),
    "ZABBIX_URL": (check_http_url, check_zabbix_api_url),
    "INFLUXDB_TOKEN": (check_no_placeholder, min_length(32)),
    "INFLUXDB_ADMIN_PASSWORD": (check_no_placeholder, min_length(16)),
    "GRAFANA_ADMIN_PASSWORD": (check_no_placeholder, min_length(16)),
    "ZABBIX_API_TOKEN": (check_no_placeholder,),
    PLUGIN_ID_KEY: (check_known_plugin_id,),
    "GRAFANA_ADMIN_SUBNET": (check_ipv4_cidr,),
    "LIBRENMS_VM_IP": (check_ipv4,),
}


class ConfigurationLoadResult(BaseModel):
    configuration: Configuration
    findings: List[Finding] = Field(default_factory=list)


def base_required_keys(specs: Sequence[ServiceSpec] = SERVICE_SPECS) -> List[str]:
    """Union of every managed service's required keys, in first-seen order."""
    seen: Dict[str, None] = {}
    for spec in specs:
        for key in spec.required_keys:
            seen.setdefault(key, None)
    return list(seen)


@dataclass
class _KeyPlan:
    required: List[str] = field(default_factory=list)
    active_toggles: Set[str] = field(default_factory=set)


def _plan_required_keys(values: Mapping[str, str], specs: Sequence[ServiceSpec]) -> _KeyPlan:
    # First pass: read toggles. Second pass: expand the required set.
    plan = _KeyPlan(required=base_required_keys(specs))
    for toggle, keys in CONDITIONAL_KEYS.items():
        if values.get(toggle) == "true":
            plan.active_toggles.add(toggle)
            for key in keys:
                if key not in plan.required:
                    plan.required.append(key)
    return plan


def validate_values(
    values: Mapping[str, str],
    specs: Sequence[ServiceSpec] = SERVICE_SPECS,
) -> List[Finding]:
    """
    Validate a key/value mapping (defaults already applied). Returns every
    finding; fail findings make the configuration unusable.
    """
    findings: List[Finding] = []

    for key, replacement in DEPRECATED_KEYS.items():
        if key in values:
            findings.append(Finding(
                subject=key,
                code="DeprecatedKeyPresent",
                message=f"Deprecated key present: {key}",
                suggestion=f"Remove {key} and use {replacement} instead.",
            ))

    plan = _plan_required_keys(values, specs)
    for key in plan.required:
        if not values.get(key):
            state = "is set but empty" if key in values else "is missing"
            findings.append(Finding(
                subject=key,
                code="MissingRequiredKey",
                message=f"Required key {state}: {key}",
            ))

    for toggle in CONDITIONAL_KEYS:
        if toggle not in plan.active_toggles and values.get(toggle) == "false":
            findings.append(Finding(
                subject=toggle,
                code="ToggleDisabled",
                message=f"{toggle}=false; skipping validation of {', '.join(CONDITIONAL_KEYS[toggle])}",
                severity=SEVERITY_INFO,
            ))

    active_keys = set(plan.required) | {k for k in OPTIONAL_KEYS if k in values}
    for key, checks in VALIDATORS.items():
        value = values.get(key)
        if key not in active_keys or not value:
            continue
        for check in checks:
            finding = check(key, value)
            if finding is not None:
                findings.append(finding)

    return findings


def apply_defaults(values: Mapping[str, str]) -> Dict[str, str]:
    merged = dict(DEFAULTS)
    merged.update(values)
    return merged


def load_configuration(
    path: Path,
    specs: Sequence[ServiceSpec] = SERVICE_SPECS,
) -> ConfigurationLoadResult:
    """
    Load, default and validate the env file at `path`.

    Raises ConfigError with every fail finding when the file is missing,
    unreadable, uses deprecated keys, misses required keys or carries
    invalid values.
    """
    parsed = parse_env_file(path)
    values = apply_defaults(parsed.values)
    findings = parsed.findings + validate_values(values, specs)

    failed = failures(findings)
    if failed:
        raise ConfigError(failed)

    configuration = Configuration(values=values, source=str(path))
    return ConfigurationLoadResult(
        configuration=configuration,
        findings=[f for f in findings if f.severity != SEVERITY_FAIL],
    )
