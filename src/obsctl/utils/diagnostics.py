from typing import List, Optional
from pydantic import BaseModel

SEVERITY_FAIL = "fail"
SEVERITY_WARN = "warn"
SEVERITY_INFO = "info"


class Finding(BaseModel):
    """
    Standardized report object for configuration and host precondition issues.
    """
    subject: str
    code: str
    message: str
    severity: str = SEVERITY_FAIL # 'fail', 'warn', 'info'
    suggestion: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def is_failure(self) -> bool:
        return self.severity == SEVERITY_FAIL

    def __str__(self) -> str:
        loc = f"{self.subject}"
        if self.line_number:
            loc += f":{self.line_number}"
        return f"[{self.code}] {self.message} (at {loc})"


def failures(findings: List[Finding]) -> List[Finding]:
    return [f for f in findings if f.is_failure]


def warnings(findings: List[Finding]) -> List[Finding]:
    return [f for f in findings if f.severity == SEVERITY_WARN]


class ObsctlError(Exception):
    """Base class for every error raised by obsctl."""


class ConfigError(ObsctlError):
    """
    Raised when the environment file is missing, malformed or insecure.
    Carries every fail finding collected during validation.
    """
    def __init__(self, findings: List[Finding]):
        self.findings = list(findings)
        names = ", ".join(f"{f.code}({f.subject})" for f in self.findings)
        super().__init__(f"Configuration invalid: {names}")


class PreconditionError(ObsctlError):
    """Raised when the host is unsuitable for the requested operation."""

    MISSING_DEPENDENCY_CODES = {"MissingCommand", "MissingGenerator"}

    def __init__(self, findings: List[Finding]):
        self.findings = list(findings)
        names = ", ".join(f"{f.code}({f.subject})" for f in self.findings)
        super().__init__(f"Host preconditions not met: {names}")

    @property
    def missing_dependency(self) -> bool:
        return any(f.code in self.MISSING_DEPENDENCY_CODES for f in self.findings)


class MaterializationError(ObsctlError):
    """Raised when a filesystem operation fails mid-run."""
    def __init__(self, message: str, path: str):
        self.message = message
        self.path = path
        super().__init__(f"{message}: {path}")


class LifecycleError(ObsctlError):
    """
    Raised for a single service transition failure. The sequencer records
    these per service instead of letting them escape the run.
    """
    def __init__(self, message: str, service: Optional[str] = None):
        self.message = message
        self.service = service
        ctx = f" for service '{service}'" if service else ""
        super().__init__(f"Lifecycle Error{ctx}: {message}")


class ProbeError(ObsctlError):
    """Raised when a health probe cannot complete."""
    def __init__(self, message: str, target: str):
        self.message = message
        self.target = target
        super().__init__(f"Probe '{target}' failed: {message}")


class LockHeldError(ObsctlError):
    """Raised when another obsctl process holds the run lock."""
    def __init__(self, lock_path: str, pid: Optional[int] = None):
        self.lock_path = lock_path
        self.pid = pid
        holder = f" by pid={pid}" if pid else ""
        super().__init__(f"Run lock {lock_path} is held{holder}.")
