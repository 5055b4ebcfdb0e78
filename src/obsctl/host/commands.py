from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

COMMAND_NOT_FOUND = 127
COMMAND_TIMED_OUT = 124


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        head = " ".join(self.args)
        if detail:
            return f"'{head}' exited {self.returncode}: {detail}"
        return f"'{head}' exited {self.returncode}"


class CommandRunner:
    """Runs host commands with a bounded timeout and never raises on failure."""

    def __init__(self, timeout_seconds: float = 300.0) -> None:
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        args: Sequence[str],
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        argv = tuple(args)
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            completed = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(args=argv, returncode=COMMAND_NOT_FOUND, stderr=f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(args=argv, returncode=COMMAND_TIMED_OUT, stderr=f"timed out after {timeout}s")

        return CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)


def effective_uid() -> int:
    """Return the effective uid of this process."""
    return os.geteuid()
