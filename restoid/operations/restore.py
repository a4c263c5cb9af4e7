"""Restore of selected apps from one snapshot."""

import logging
import os
import shlex
import tempfile
from typing import Any, Dict, List, Optional, Tuple

from ..engine.restic import restore_args
from ..errors import (CommitFailed, EngineCommandError, PreflightError, RestoidError,
                      SessionCreateFailed, SplitWriteFailed)
from ..models.app import BackupTypeSet, TYPE_APK
from ..models.snapshot import BackupDetail, SnapshotInfo
from ..utils.output_parser import parse
from .pipeline import Operation, OperationContext, Stage, require_repository
from .planner import FIXED_DIRS
from .snapshots import match_path, paths_for_restore


logger = logging.getLogger(__name__)


def format_elapsed(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class RestoreOperation(Operation):
    """Restores snapshot paths into scratch space, then installs and copies back per app."""

    name = "Restore"

    def __init__(self, services, snapshot: SnapshotInfo, details: List[BackupDetail],
                 types: BackupTypeSet, allow_downgrade: bool = False):
        self.services = services
        self.snapshot = snapshot
        self.types = types
        self.allow_downgrade = allow_downgrade
        self.selected = [
            d for d in details
            if d.app.is_selected and (allow_downgrade or not d.is_downgrade)
        ]

        self.repository = None
        self.password = None
        self.work_dir: Optional[str] = None
        self.paths: List[str] = []
        self.successes = 0
        self.failures = 0
        self.failure_details: List[str] = []

    @property
    def executor(self):
        return self.services.executor

    def preflight(self):
        if self.snapshot is None:
            raise PreflightError("Snapshot not found.")
        if not self.types.any_enabled():
            raise PreflightError("No restore types selected.", "No restore types were selected.")
        self.repository, self.password = require_repository(
            self.services.engine, self.services.repositories
        )
        if not self.selected:
            raise PreflightError("No apps selected.", "No apps were selected for restore.")

    def stages(self) -> List[Stage]:
        return [
            Stage("Preparing restore", self.prepare),
            Stage("Restoring files", self.restore_files),
            Stage("Processing apps", self.process_apps),
            Stage("Cleanup", self.cleanup),
        ]

    def prepare(self, context: OperationContext):
        self.paths = paths_for_restore(self.selected, self.snapshot, self.types)
        if not self.paths:
            raise RestoidError("No files found in the snapshot for the selected apps.")

        self.work_dir = tempfile.mkdtemp(prefix="restic-restore-", dir=self.services.config.cache_dir)
        context.add_cleanup(self._remove_work_dir)
        context.update(stage_percentage=1.0, total_items=len(self.selected))

    def restore_files(self, context: OperationContext):
        def on_line(line: str):
            event = parse(line)
            if event is None:
                return
            if event.is_finished:
                context.update(stage_percentage=1.0)
            else:
                context.report(event)

        config = self.services.config
        env = {'HOME': config.home, 'TMPDIR': config.cache_dir}
        args = restore_args(self.snapshot.id, self.work_dir, self.paths)
        result = self.services.engine.stream(
            self.repository.path, self.password, args, on_line, context.cancel_event, env=env
        )
        if not result.is_success:
            raise EngineCommandError(result.err or "Restic restore command failed.",
                                     exit_code=result.exit_code, stderr=result.err)

    def process_apps(self, context: OperationContext):
        total = len(self.selected)
        for index, detail in enumerate(self.selected):
            context.check_cancelled()
            context.update(
                stage_percentage=(index + 1) / total,
                current_item=detail.app.display_name,
                items_processed=index + 1,
                total_items=total,
                total_bytes=0,
                bytes_processed=0,
            )
            try:
                ok, messages = self.process_app(detail)
            except Exception as e:
                logger.error(f"Restoring {detail.package_name} failed: {e}")
                ok, messages = False, [f"{detail.app.display_name}: {e}"]
            self.failure_details.extend(messages)
            if ok:
                self.successes += 1
            else:
                self.failures += 1

    def process_app(self, detail: BackupDetail) -> Tuple[bool, List[str]]:
        """Install and copy back one app; failures are recorded, never raised."""
        name = detail.app.display_name
        package_name = detail.package_name

        if self.types.apk:
            apk_files = self.find_apk_files(package_name)
            if not apk_files:
                return False, [f"{name}: No APK files found in restored data."]
            try:
                self.services.installer.install(apk_files, self.allow_downgrade)
            except SessionCreateFailed:
                return False, [f"{name}: Failed to create install session."]
            except SplitWriteFailed:
                return False, [f"{name}: Failed to write APK splits."]
            except CommitFailed as e:
                return False, [f"{name}: {e}"]
            logger.info(f"Installed {package_name}")

        if self.types.any_data_enabled() and not self.restore_app_data(package_name):
            return False, [f"{name}: Data restore failed or incomplete."]
        return True, []

    def find_apk_files(self, package_name: str) -> List[str]:
        apk_path = next((p for p in self.paths if match_path(p, package_name) == TYPE_APK), None)
        if apk_path is None:
            return []
        restored = os.path.join(self.work_dir, apk_path.lstrip("/"))
        apk_files = []
        for root, _, files in os.walk(restored):
            apk_files.extend(os.path.join(root, f) for f in files if f.endswith(".apk"))
        return sorted(apk_files)

    def restore_app_data(self, package_name: str) -> bool:
        """Copy restored data directories back in place and restore their ownership."""
        pkg = shlex.quote(package_name)
        owner_result = self.executor.run(f"stat -c '%U:%G' /data/data/{pkg}")
        if not owner_result.is_success or not owner_result.stdout:
            logger.error(f"Cannot determine owner of {package_name} data")
            return False
        owner = owner_result.stdout[0].strip()

        self.executor.run(f"am force-stop {pkg}")

        all_succeeded = True
        for _, flag, root in FIXED_DIRS:
            if not getattr(self.types, flag):
                continue
            destination = f"{root}/{package_name}"
            source = os.path.join(self.work_dir, destination.lstrip("/"))
            if not self.executor.succeeds(f"[ -e {shlex.quote(source)} ]"):
                continue

            dest = shlex.quote(destination)
            self.executor.run(f"mkdir -p {dest}")
            copy = self.executor.run(f"cp -a {shlex.quote(source + '/.')} {shlex.quote(destination + '/')}")
            if not copy.is_success:
                logger.error(f"Copying {destination} failed: {copy.err}")
                all_succeeded = False
                continue
            chown = self.executor.run(f"chown -R {shlex.quote(owner)} {dest}")
            if not chown.is_success:
                logger.error(f"Restoring ownership of {destination} failed: {chown.err}")
                all_succeeded = False
        return all_succeeded

    def cleanup(self, context: OperationContext):
        context.update(stage_percentage=0.0)
        try:
            self._remove_work_dir()
        except RestoidError as e:
            context.warn(f"Warning: {e}")
        context.update(stage_percentage=1.0)

    def _remove_work_dir(self):
        work_dir, self.work_dir = self.work_dir, None
        if work_dir is None:
            return
        result = self.executor.run(f"rm -rf {shlex.quote(work_dir)}")
        if not result.is_success:
            raise RestoidError(f"Failed to remove temporary restore directory: {result.err}")

    def finish(self, context: OperationContext) -> Dict[str, Any]:
        summary = (f"Restore finished in {format_elapsed(context.elapsed)}. "
                   f"Successfully processed {self.successes} app(s).")
        if self.failures:
            summary += f" Failed to restore {self.failures} app(s)."
        if self.failure_details:
            summary += "\n\nDetails:\n- " + "\n- ".join(self.failure_details)
        if context.warnings:
            summary += "\n" + "\n".join(context.warnings)

        return {
            'final_summary': summary,
            'error': ", ".join(self.failure_details) if self.failures else None,
            'items_processed': self.successes,
            'total_items': len(self.selected),
            'current_item': "",
            'stage_percentage': 1.0,
            'overall_percentage': 1.0,
        }
