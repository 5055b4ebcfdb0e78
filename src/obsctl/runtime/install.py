from __future__ import annotations

import time
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from obsctl.config.validation import load_configuration
from obsctl.core.models import Configuration, ServiceSpec, StackSettings
from obsctl.core.registry import Registry
from obsctl.core.topology import build_registry
from obsctl.host.commands import CommandRunner
from obsctl.host.supervisor import Supervisor, SystemdSupervisor
from obsctl.lifecycle.sequencer import LifecycleSequencer, SequenceReport
from obsctl.materialize.resources import MaterializationReport, ResourceMaterializer
from obsctl.preflight.checker import PreconditionChecker
from obsctl.runtime.lock import run_lock
from obsctl.units.synthesizer import UnitSynthesizer, UnitWriteReport
from obsctl.utils.diagnostics import (
    ConfigError,
    Finding,
    LockHeldError,
    MaterializationError,
    PreconditionError,
    failures,
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_MISSING_DEPENDENCY = 3

LogCallback = Callable[[str, str], None]


def noop_log(message: str, severity: str = "info") -> None:
    return None


class InstallResult(BaseModel):
    exit_code: int = EXIT_OK
    findings: List[Finding] = Field(default_factory=list)
    materialization: Optional[MaterializationReport] = None
    units: Optional[UnitWriteReport] = None
    sequence: Optional[SequenceReport] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK


class Installer:
    """
    Runs the install pipeline: configuration, preconditions, materialization,
    unit synthesis, supervisor reload and the start sequence.

    Configuration and precondition failures abort before anything on disk is
    touched. Everything after that point is idempotent, so a failed run can
    simply be repeated.
    """

    def __init__(
        self,
        settings: StackSettings,
        runner: Optional[CommandRunner] = None,
        supervisor: Optional[Supervisor] = None,
        registry: Optional[Registry[ServiceSpec]] = None,
        log: Optional[LogCallback] = None,
        manage_ownership: bool = True,
        manage_labels: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.runner = runner or CommandRunner(settings.command_timeout_seconds)
        self.supervisor = supervisor or SystemdSupervisor(self.runner)
        self.registry = registry or build_registry()
        self.log = log or noop_log
        self.manage_ownership = manage_ownership
        self.manage_labels = manage_labels
        self.sleep = sleep

    def run(self) -> InstallResult:
        result = InstallResult()
        specs = self.registry.start_order()

        self.log(f"Loading configuration from {self.settings.env_file}", "info")
        try:
            loaded = load_configuration(self.settings.env_file, specs)
        except ConfigError as e:
            result.findings.extend(e.findings)
            result.error = str(e)
            result.exit_code = EXIT_CONFIG
            return result
        result.findings.extend(loaded.findings)

        self.log("Checking host preconditions", "info")
        checker = PreconditionChecker(self.settings, specs, self.runner, self.supervisor)
        preflight = checker.run(require_privilege=True)
        result.findings.extend(preflight.findings)
        if not preflight.proceed:
            error = PreconditionError(failures(preflight.findings))
            result.error = str(error)
            result.exit_code = EXIT_MISSING_DEPENDENCY if error.missing_dependency else EXIT_FAILURE
            return result

        try:
            with run_lock(self.settings.lock_path, "install"):
                self._apply(loaded.configuration, result)
        except LockHeldError as e:
            result.error = str(e)
            result.exit_code = EXIT_FAILURE
        except MaterializationError as e:
            result.error = str(e)
            result.exit_code = EXIT_FAILURE
        except ConfigError as e:
            result.findings.extend(e.findings)
            result.error = str(e)
            result.exit_code = EXIT_CONFIG

        return result

    def _apply(self, configuration: Configuration, result: InstallResult) -> None:
        self.log(f"Preparing directories under {self.settings.data_root}", "info")
        materializer = ResourceMaterializer(
            self.settings,
            self.registry.start_order(),
            self.runner,
            manage_ownership=self.manage_ownership,
            manage_labels=self.manage_labels,
        )
        result.materialization = materializer.materialize()
        result.findings.extend(result.materialization.findings)

        self.log(f"Writing units to {self.settings.unit_dir}", "info")
        synthesizer = UnitSynthesizer(self.settings, self.registry)
        result.units = synthesizer.write_all(configuration)

        sequencer = LifecycleSequencer(
            self.registry,
            self.supervisor,
            self.settings.settle_delay_seconds,
            sleep=self.sleep,
        )
        reloaded = sequencer.reload_supervisor()
        result.findings.append(reloaded)
        if reloaded.is_failure:
            result.error = reloaded.message
            result.exit_code = EXIT_FAILURE
            return

        if self.settings.pull_images:
            self.log("Pulling container images", "info")
            result.findings.extend(sequencer.pull_images())

        self.log("Starting services", "info")
        result.sequence = sequencer.start_all()
        if not result.sequence.ok:
            failed = ", ".join(result.sequence.failed_services)
            result.error = f"Services failed to start: {failed}"
            result.exit_code = EXIT_FAILURE
