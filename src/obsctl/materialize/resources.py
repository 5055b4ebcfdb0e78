from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import List, Sequence, Tuple

from pydantic import BaseModel, Field

from obsctl.core.models import ConfigSource, ServiceSpec, StackSettings
from obsctl.host.commands import CommandRunner
from obsctl.utils.diagnostics import SEVERITY_INFO, SEVERITY_WARN, Finding, MaterializationError

DIR_MODE = 0o755
FILE_MODE = 0o644
SELINUX_TYPE = "container_file_t"


class MaterializationReport(BaseModel):
    """What a materialization pass changed. Empty `changes` means already converged."""
    changes: List[str] = Field(default_factory=list)
    findings: List[Finding] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def current_owner(path: Path) -> Tuple[int, int]:
    stat = path.lstat()
    return stat.st_uid, stat.st_gid


def selinux_fcontext_pattern(data_root: Path) -> str:
    return f"{data_root}(/.*)?"


class ResourceMaterializer:
    """
    Converges directories, configuration blobs, ownership and SELinux labels
    for every managed service. Only ever creates or corrects; deletion lives
    in the explicit teardown methods used by uninstall.
    """

    def __init__(
        self,
        settings: StackSettings,
        specs: Sequence[ServiceSpec],
        runner: CommandRunner,
        manage_ownership: bool = True,
        manage_labels: bool = True,
    ) -> None:
        self.settings = settings
        self.specs = [spec for spec in specs if spec.is_container]
        self.runner = runner
        self.manage_ownership = manage_ownership
        self.manage_labels = manage_labels

    @property
    def data_root(self) -> Path:
        return self.settings.data_root

    def materialize(self) -> MaterializationReport:
        report = MaterializationReport()
        self._ensure_dir(self.data_root, report)

        for spec in self.specs:
            self._ensure_dir(spec.service_dir(self.data_root), report)
            self._ensure_dir(spec.data_dir(self.data_root), report)
            self._ensure_dir(spec.config_dir(self.data_root), report)
            for source in spec.config_sources:
                self._copy_source(spec, source, report)
            if self.manage_ownership:
                self._apply_ownership(spec, report)

        if self.manage_labels:
            self._apply_labels(report)
        return report

    # -- directories and files -------------------------------------------------

    def _ensure_dir(self, path: Path, report: MaterializationReport) -> None:
        try:
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                report.changes.append(f"created {path}")
            if (path.stat().st_mode & 0o7777) != DIR_MODE:
                path.chmod(DIR_MODE)
                report.changes.append(f"chmod {DIR_MODE:o} {path}")
        except OSError as exc:
            raise MaterializationError(f"Cannot prepare directory ({exc.strerror})", str(path))

    def _copy_file(self, source: Path, destination: Path, report: MaterializationReport) -> None:
        try:
            payload = source.read_bytes()
            if not destination.is_file() or destination.read_bytes() != payload:
                destination.write_bytes(payload)
                report.changes.append(f"copied {source} -> {destination}")
            if (destination.stat().st_mode & 0o7777) != FILE_MODE:
                destination.chmod(FILE_MODE)
                report.changes.append(f"chmod {FILE_MODE:o} {destination}")
        except OSError as exc:
            raise MaterializationError(f"Cannot copy configuration ({exc.strerror})", str(destination))

    def _copy_source(self, spec: ServiceSpec, source: ConfigSource, report: MaterializationReport) -> None:
        origin = self.settings.configs_dir / source.source
        config_dir = spec.config_dir(self.data_root)

        if source.tree:
            if not origin.is_dir():
                report.findings.append(self._missing_source(spec, origin))
                return
            for root, dirs, files in os.walk(origin):
                dirs.sort()
                relative = Path(root).relative_to(origin)
                target_dir = config_dir / relative
                self._ensure_dir(target_dir, report)
                for name in sorted(files):
                    self._copy_file(Path(root) / name, target_dir / name, report)
            return

        if not origin.is_file():
            report.findings.append(self._missing_source(spec, origin))
            return
        self._copy_file(origin, config_dir / origin.name, report)

    def _missing_source(self, spec: ServiceSpec, origin: Path) -> Finding:
        return Finding(
            subject=str(origin),
            code="MissingConfigSource",
            message=f"No {spec.name} configuration found at {origin}; skipping copy",
            severity=SEVERITY_WARN,
        )

    # -- ownership ------------------------------------------------------------

    def _ownership_root(self, spec: ServiceSpec) -> Path:
        if spec.owner_scope == "service":
            return spec.service_dir(self.data_root)
        return spec.data_dir(self.data_root)

    def _apply_ownership(self, spec: ServiceSpec, report: MaterializationReport) -> None:
        if spec.owner is None:
            return
        uid, gid = spec.owner
        root = self._ownership_root(spec)

        paths = [root]
        for walk_root, dirs, files in os.walk(root):
            paths.extend(Path(walk_root) / name for name in dirs + files)

        changed = 0
        for path in paths:
            try:
                if current_owner(path) != (uid, gid):
                    os.chown(path, uid, gid, follow_symlinks=False)
                    changed += 1
            except OSError as exc:
                raise MaterializationError(f"Cannot set ownership {uid}:{gid} ({exc.strerror})", str(path))

        if changed:
            report.changes.append(f"chown {uid}:{gid} {root} ({changed} paths)")

    # -- SELinux --------------------------------------------------------------

    def _selinux_tools_present(self) -> bool:
        return self.runner.which("semanage") is not None and self.runner.which("restorecon") is not None

    def _apply_labels(self, report: MaterializationReport) -> None:
        if not self._selinux_tools_present():
            report.findings.append(Finding(
                subject="selinux",
                code="SelinuxSkipped",
                message="semanage/restorecon not found; skipping SELinux labels",
                severity=SEVERITY_WARN,
            ))
            return

        pattern = selinux_fcontext_pattern(self.data_root)
        listing = self.runner.run(["semanage", "fcontext", "-l"])
        if not listing.ok:
            raise MaterializationError(f"Cannot list SELinux file contexts: {listing.describe()}", pattern)

        if str(self.data_root) not in listing.stdout:
            added = self.runner.run(["semanage", "fcontext", "-a", "-t", SELINUX_TYPE, pattern])
            if not added.ok:
                raise MaterializationError(f"Cannot add SELinux file context: {added.describe()}", pattern)
            report.changes.append(f"added SELinux fcontext {SELINUX_TYPE} {pattern}")

        restored = self.runner.run(["restorecon", "-R", "-v", str(self.data_root)])
        if not restored.ok:
            report.findings.append(Finding(
                subject=str(self.data_root),
                code="RestoreconFailed",
                message=f"restorecon did not complete: {restored.describe()}",
                severity=SEVERITY_WARN,
            ))
        elif restored.stdout.strip():
            report.changes.append(f"relabeled {self.data_root}")

    # -- teardown (uninstall only) ---------------------------------------------

    def remove_data_root(self) -> bool:
        """Delete the whole data root. Returns False when nothing was there."""
        if not self.data_root.exists():
            return False
        try:
            shutil.rmtree(self.data_root)
        except OSError as exc:
            raise MaterializationError(f"Cannot remove data root ({exc.strerror})", str(self.data_root))
        return True

    def remove_selinux_context(self) -> Finding:
        pattern = selinux_fcontext_pattern(self.data_root)
        if self.runner.which("semanage") is None:
            return Finding(
                subject="selinux",
                code="SelinuxSkipped",
                message="semanage not found; skipping SELinux cleanup",
                severity=SEVERITY_WARN,
            )

        listing = self.runner.run(["semanage", "fcontext", "-l"])
        if str(self.data_root) not in listing.stdout:
            return Finding(
                subject=pattern,
                code="SelinuxContextAbsent",
                message=f"No SELinux context found for {self.data_root}",
                severity=SEVERITY_INFO,
            )

        removed = self.runner.run(["semanage", "fcontext", "-d", pattern])
        if not removed.ok:
            return Finding(
                subject=pattern,
                code="SelinuxCleanupFailed",
                message=f"Failed to remove SELinux context: {removed.describe()}",
                severity=SEVERITY_WARN,
            )
        return Finding(
            subject=pattern,
            code="SelinuxContextRemoved",
            message=f"Removed SELinux context {pattern}",
            severity=SEVERITY_INFO,
        )
