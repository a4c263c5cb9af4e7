"""Backup of selected apps into the selected repository."""

import logging
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional

from ..engine.restic import BACKUP_TAGS, backup_args
from ..errors import EngineCommandError, PreflightError, RestoidError
from ..models.app import BackupTypeSet, SelectableApp
from ..models.metadata import METADATA_FILENAME, RestoidMetadata, encode
from ..utils.output_parser import ProgressEvent, parse
from .pipeline import Operation, OperationContext, Stage, require_repository
from .planner import plan_backup


logger = logging.getLogger(__name__)


class BackupOperation(Operation):
    """Plans paths, runs `restic backup` and persists the metadata sidecar."""

    name = "Backup"

    def __init__(self, services, apps: List[SelectableApp], types: BackupTypeSet):
        self.services = services
        self.apps = [app for app in apps if app.is_selected]
        self.types = types

        self.repository = None
        self.password = None
        self.work_dir: Optional[str] = None
        self.sidecar_path: Optional[str] = None
        self.file_list_path: Optional[str] = None
        self.excludes: List[str] = []
        self.metadata: Optional[RestoidMetadata] = None
        self.summary_event: Optional[ProgressEvent] = None

    def preflight(self):
        if not self.apps:
            raise PreflightError("No apps selected.", "No apps were selected.")
        if not self.types.any_enabled():
            raise PreflightError("No backup types selected.", "No backup types were selected.")
        self.repository, self.password = require_repository(
            self.services.engine, self.services.repositories
        )

    def stages(self) -> List[Stage]:
        return [
            Stage("Preparing backup...", self.prepare),
            Stage("Backing up apps...", self.backup),
            Stage("Finalizing backup...", self.finalize),
        ]

    def prepare(self, context: OperationContext):
        if not self.repository.id:
            raise RestoidError("Repository ID not found. Cannot save metadata.")

        paths, self.excludes, self.metadata = plan_backup(self.apps, self.types, self.services.inspector)

        self.work_dir = tempfile.mkdtemp(prefix="restoid-backup-", dir=self.services.config.cache_dir)
        context.add_cleanup(lambda: shutil.rmtree(self.work_dir))

        self.sidecar_path = os.path.join(self.work_dir, METADATA_FILENAME)
        with open(self.sidecar_path, 'wb') as f:
            f.write(encode(self.metadata))
        paths.insert(0, self.sidecar_path)

        if len(paths) <= 1:
            raise RestoidError("No files found to back up for the selected apps.")

        self.file_list_path = os.path.join(self.work_dir, "files.txt")
        with open(self.file_list_path, 'w') as f:
            f.write("\n".join(paths))

        context.update(stage_percentage=1.0, total_items=len(self.metadata.apps))

    def backup(self, context: OperationContext):
        def on_line(line: str):
            event = parse(line)
            if event is None:
                return
            if event.is_finished:
                self.summary_event = event
            context.report(event)

        args = backup_args(self.file_list_path, BACKUP_TAGS, self.excludes)
        result = self.services.engine.stream(
            self.repository.path, self.password, args, on_line, context.cancel_event
        )

        if not result.is_success or self.summary_event is None or not self.summary_event.snapshot_id:
            raise EngineCommandError(
                result.err or f"Restic command failed with exit code {result.exit_code}.",
                exit_code=result.exit_code, stderr=result.err,
            )
        logger.info(f"Created snapshot {self.summary_event.snapshot_id[:8]}")

    def finalize(self, context: OperationContext):
        snapshot_id = self.summary_event.snapshot_id
        try:
            self.services.metadata_store.save(self.repository.id, snapshot_id, self.sidecar_path)
        except OSError as e:
            logger.error(f"Saving metadata for {snapshot_id[:8]} failed: {e}")
            context.warn("Warning: Could not save backup metadata file locally.")

        warning = self.services.engine.backup_metadata(
            self.repository.id, self.repository.path, self.password, context.cancel_event
        )
        if warning:
            context.warn(f"Warning: {warning}")
        context.update(stage_percentage=1.0)

    def finish(self, context: OperationContext) -> Dict[str, Any]:
        event = self.summary_event
        summary = event.final_summary or f"Backed up {len(self.apps)} app(s)."
        if context.warnings:
            summary += "\n" + "\n".join(context.warnings)
        return {
            'final_summary': summary,
            'error': None,
            'snapshot_id': event.snapshot_id,
            'files_new': event.files_new,
            'files_changed': event.files_changed,
            'data_added': event.data_added,
            'total_duration': event.total_duration or float(context.elapsed),
            'stage_percentage': 1.0,
            'overall_percentage': 1.0,
        }

    def after_success(self):
        self.services.engine.refresh_snapshots(self.repository.path, self.password)
