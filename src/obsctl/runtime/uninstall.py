from __future__ import annotations

from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from obsctl.core.models import ServiceSpec, StackSettings
from obsctl.core.registry import Registry
from obsctl.core.topology import build_registry
from obsctl.host.commands import CommandRunner, effective_uid
from obsctl.host.supervisor import Supervisor, SystemdSupervisor
from obsctl.lifecycle.sequencer import LifecycleSequencer, SequenceReport
from obsctl.materialize.resources import ResourceMaterializer
from obsctl.runtime.install import EXIT_FAILURE, EXIT_OK, LogCallback, noop_log
from obsctl.runtime.lock import run_lock
from obsctl.units.synthesizer import UnitSynthesizer
from obsctl.utils.diagnostics import (
    SEVERITY_INFO,
    Finding,
    LockHeldError,
    MaterializationError,
)

CONFIRM_ANSWERS = {"y", "Y"}
DELETE_PHRASE = "DELETE"

Prompt = Callable[[str], str]


class UninstallResult(BaseModel):
    exit_code: int = EXIT_OK
    cancelled: bool = False
    data_removed: bool = False
    findings: List[Finding] = Field(default_factory=list)
    sequence: Optional[SequenceReport] = None
    error: Optional[str] = None


class Uninstaller:
    """
    Stops and removes the stack. Data under the data root survives unless
    removal was requested and the operator typed the exact delete phrase.
    """

    def __init__(
        self,
        settings: StackSettings,
        prompt: Prompt,
        runner: Optional[CommandRunner] = None,
        supervisor: Optional[Supervisor] = None,
        registry: Optional[Registry[ServiceSpec]] = None,
        log: Optional[LogCallback] = None,
        manage_labels: bool = True,
    ) -> None:
        self.settings = settings
        self.prompt = prompt
        self.runner = runner or CommandRunner(settings.command_timeout_seconds)
        self.supervisor = supervisor or SystemdSupervisor(self.runner)
        self.registry = registry or build_registry()
        self.log = log or noop_log
        self.manage_labels = manage_labels

    def run(self, remove_data: bool = False, assume_yes: bool = False) -> UninstallResult:
        result = UninstallResult()

        if effective_uid() != 0:
            result.error = "Uninstall must be run as root"
            result.exit_code = EXIT_FAILURE
            return result

        if not assume_yes:
            answer = self.prompt("Stop and remove all observability services? [y/N]")
            if answer.strip() not in CONFIRM_ANSWERS:
                result.cancelled = True
                self.log("Uninstall cancelled", "warning")
                return result

        try:
            with run_lock(self.settings.lock_path, "uninstall"):
                self._teardown(result)
                if remove_data:
                    self._remove_data(result)
                else:
                    result.findings.append(Finding(
                        subject=str(self.settings.data_root),
                        code="DataPreserved",
                        message=f"Data preserved at {self.settings.data_root}",
                        severity=SEVERITY_INFO,
                    ))
        except LockHeldError as e:
            result.error = str(e)
            result.exit_code = EXIT_FAILURE
        except MaterializationError as e:
            result.error = str(e)
            result.exit_code = EXIT_FAILURE

        return result

    def _teardown(self, result: UninstallResult) -> None:
        sequencer = LifecycleSequencer(self.registry, self.supervisor, settle_delay_seconds=0)

        self.log("Stopping services", "info")
        result.sequence = sequencer.stop_all()

        self.log("Removing containers and network", "info")
        result.findings.extend(sequencer.remove_containers())
        result.findings.extend(sequencer.remove_networks())

        self.log(f"Removing units from {self.settings.unit_dir}", "info")
        result.findings.extend(UnitSynthesizer(self.settings, self.registry).remove_all())
        result.findings.append(sequencer.reload_supervisor())
        result.findings.extend(sequencer.leftovers())

    def _remove_data(self, result: UninstallResult) -> None:
        data_root = self.settings.data_root
        answer = self.prompt(
            f"This permanently deletes everything under {data_root}. Type {DELETE_PHRASE} to confirm"
        )
        if answer != DELETE_PHRASE:
            self.log("Confirmation phrase not entered; data preserved", "warning")
            result.findings.append(Finding(
                subject=str(data_root),
                code="DataPreserved",
                message=f"Data preserved at {data_root}",
                severity=SEVERITY_INFO,
            ))
            return

        materializer = ResourceMaterializer(self.settings, self.registry.start_order(), self.runner)
        result.data_removed = materializer.remove_data_root()
        if self.manage_labels:
            result.findings.append(materializer.remove_selinux_context())
