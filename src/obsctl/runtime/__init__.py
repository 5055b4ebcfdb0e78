"""Install, uninstall and run-lock orchestration."""

from obsctl.runtime.install import (
	EXIT_CONFIG,
	EXIT_FAILURE,
	EXIT_MISSING_DEPENDENCY,
	EXIT_OK,
	InstallResult,
	Installer,
)
from obsctl.runtime.lock import (
	LockProbeResult,
	LockState,
	RunLockMetadata,
	acquire_run_lock,
	is_process_alive,
	probe_lock_state,
	release_run_lock,
	run_lock,
)
from obsctl.runtime.uninstall import DELETE_PHRASE, UninstallResult, Uninstaller

__all__ = [
	"DELETE_PHRASE",
	"EXIT_CONFIG",
	"EXIT_FAILURE",
	"EXIT_MISSING_DEPENDENCY",
	"EXIT_OK",
	"InstallResult",
	"Installer",
	"LockProbeResult",
	"LockState",
	"RunLockMetadata",
	"UninstallResult",
	"Uninstaller",
	"acquire_run_lock",
	"is_process_alive",
	"probe_lock_state",
	"release_run_lock",
	"run_lock",
]
