import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from obsctl.core.models import StackSettings
from obsctl.utils.diagnostics import SEVERITY_WARN, ConfigError, Finding

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")
ENV_LINE_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$")

SETTINGS_FILE_ENV = "OBSCTL_SETTINGS_FILE"
DEFAULT_SETTINGS_FILE = Path("obsctl.yaml")


class ParsedEnvFile(BaseModel):
    """Raw result of reading an env file: key/value pairs plus soft warnings."""
    values: Dict[str, str] = Field(default_factory=dict)
    findings: List[Finding] = Field(default_factory=list)
    source: str


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def parse_env_text(content: str, source: str = "<env>") -> ParsedEnvFile:
    """
    Parse newline-delimited KEY=VALUE text without evaluating it.

    Blank lines and '#' comments are skipped. A single layer of matching
    surrounding quotes is removed. Anything else is reported as a
    MalformedLine warning and ignored.
    """
    values: Dict[str, str] = {}
    findings: List[Finding] = []

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        match = ENV_LINE_PATTERN.match(line)
        if not match:
            findings.append(Finding(
                subject=source,
                code="MalformedLine",
                message=f"Skipping unrecognized line: {line}",
                severity=SEVERITY_WARN,
                suggestion="Use KEY=VALUE syntax.",
                line_number=line_number,
            ))
            continue

        key, value = match.group(1), match.group(2)
        values[key] = _strip_quotes(value)

    return ParsedEnvFile(values=values, findings=findings, source=source)


def parse_env_file(path: Path) -> ParsedEnvFile:
    """
    Read and parse an env file. Raises ConfigError when the file is missing or
    cannot be read.
    """
    if not path.is_file():
        raise ConfigError([Finding(
            subject=str(path),
            code="MissingFile",
            message=f"Environment file not found: {path}",
            suggestion="Copy .env.example to .env and fill in the values.",
        )])

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError([Finding(
            subject=str(path),
            code="Unreadable",
            message=f"Cannot read environment file: {e}",
            suggestion="Check file permissions.",
        )])

    return parse_env_text(content, source=str(path))


def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)


def load_settings_file(path: Path) -> Dict[str, Any]:
    """
    Load obsctl.yaml with environment variable interpolation.

    Only the 'obsctl' top-level section is kept.
    """
    if not path.exists():
        return {}

    content = path.read_text(encoding="utf-8")
    interpolated_content = interpolate_env_vars(content)
    full_config = yaml.safe_load(interpolated_content) or {}
    if not isinstance(full_config, dict):
        raise ValueError(f"Settings file {path} must contain a mapping.")

    allowed_keys = {"obsctl"}
    return {k: v for k, v in full_config.items() if k in allowed_keys}


def load_settings(path: Optional[Path] = None) -> StackSettings:
    """Build StackSettings from the settings file (if any) and OBSCTL_* variables."""
    if path is None:
        path = Path(os.environ.get(SETTINGS_FILE_ENV, str(DEFAULT_SETTINGS_FILE)))

    section = load_settings_file(path).get("obsctl") or {}
    return StackSettings(**section)
