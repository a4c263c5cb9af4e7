"""Multi-stage operation pipeline shared by backup, restore and maintenance."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import OperationCancelled, PreflightError
from ..models.progress import OperationProgress
from ..models.state import PipelineState
from ..utils.observable import Observable
from ..utils.output_parser import ProgressEvent


logger = logging.getLogger(__name__)


@dataclass
class Stage:
    """One sequential phase of an operation."""
    title: str
    run: Callable[['OperationContext'], None]


class OperationContext:
    """Per-run state handed to every stage.

    Publishes progress, tracks temporary resources and exposes the cancel
    event. Cleanups run in reverse registration order on every exit path.
    """

    def __init__(self, progress: Observable, cancel_event: threading.Event):
        self.progress = progress
        self.cancel_event = cancel_event
        self.start_time = time.monotonic()
        self.stage_index = 0
        self.stage_count = 0
        self.stage_title = ""
        self.warnings: List[str] = []
        self._cleanups: List[Callable[[], Any]] = []

    @property
    def elapsed(self) -> int:
        return int(time.monotonic() - self.start_time)

    def _overall(self, stage_percentage: float) -> float:
        if not self.stage_count:
            return 0.0
        return (self.stage_index - 1 + stage_percentage) / self.stage_count

    def begin_stage(self, index: int, title: str):
        self.stage_index = index
        self.stage_title = f"[{index}/{self.stage_count}] {title}"
        logger.info(self.stage_title)
        self.update(stage_percentage=0.0)

    def update(self, stage_percentage: Optional[float] = None, **fields):
        """Merge ``fields`` into the published progress of the current stage."""
        def apply(progress: OperationProgress) -> OperationProgress:
            changes: Dict[str, Any] = {
                'stage_title': self.stage_title,
                'elapsed_seconds': self.elapsed,
            }
            if stage_percentage is not None:
                changes['stage_percentage'] = stage_percentage
                changes['overall_percentage'] = self._overall(stage_percentage)
            changes.update(fields)
            return progress.copy(**changes)

        self.progress.update(apply)

    def report(self, event: ProgressEvent):
        """Publish a parsed engine progress line for the current stage."""
        self.update(
            stage_percentage=event.stage_percentage,
            total_items=event.total_items,
            items_processed=event.items_processed,
            total_bytes=event.total_bytes,
            bytes_processed=event.bytes_processed,
            current_item=event.current_item,
        )

    def add_cleanup(self, func: Callable[[], Any]):
        self._cleanups.append(func)

    def warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)

    def check_cancelled(self):
        if self.cancel_event.is_set():
            raise OperationCancelled()

    def run_cleanups(self):
        while self._cleanups:
            func = self._cleanups.pop()
            try:
                func()
            except Exception as e:
                self.warn(f"Cleanup failed: {e}")


class Operation:
    """Base class of a pipeline operation.

    Subclasses validate their inputs in ``preflight`` (raising
    PreflightError), return their stage list from ``stages`` and build the
    final progress fields in ``finish`` once every stage has succeeded.
    """

    name = "Operation"

    def preflight(self):
        pass

    def stages(self) -> List[Stage]:
        raise NotImplementedError

    def finish(self, context: OperationContext) -> Dict[str, Any]:
        return {'final_summary': f"{self.name} finished."}

    def after_success(self):
        """Side effects once the final progress is published."""


def require_repository(engine, repositories):
    """Engine, repository and password preconditions shared by every operation.

    Returns the selected LocalRepository and its password.
    """
    if not engine.state.value.is_installed:
        raise PreflightError("Restic is not installed.", "Restic binary is not installed.")
    repo = repositories.selected
    if repo is None:
        raise PreflightError("No backup repository selected.", "No backup repository is selected.")
    password = repositories.get_password(repo.path)
    if password is None:
        raise PreflightError("Password for repository not found.", "Could not find the password.")
    return repo, password


class OperationPipeline:
    """Runs one operation at a time and publishes its progress."""

    def __init__(self):
        self.progress = Observable(OperationProgress())
        self.is_running = Observable(False)
        self.state = Observable(PipelineState.IDLE)
        self._lock = threading.Lock()

    def run(self, operation: Operation, cancel_event: Optional[threading.Event] = None) -> bool:
        """Run ``operation`` to completion; returns False without side effects if busy."""
        with self._lock:
            if self.is_running.value:
                logger.warning(f"{operation.name} rejected, an operation is already running")
                return False
            self.is_running.set(True)

        try:
            self._execute(operation, cancel_event or threading.Event())
        finally:
            self.is_running.set(False)
        return True

    def reset(self):
        """Dismiss a finished operation."""
        with self._lock:
            if self.is_running.value:
                return
            self.progress.set(OperationProgress())
            self.state.set(PipelineState.IDLE)

    def _execute(self, operation: Operation, cancel_event: threading.Event):
        logger.info(f"Starting {operation.name.lower()}")
        self.state.set(PipelineState.PREFLIGHT)
        self.progress.set(OperationProgress())

        try:
            operation.preflight()
        except PreflightError as e:
            logger.error(f"{operation.name} preflight failed: {e}")
            self.progress.set(OperationProgress(is_finished=True, error=str(e), final_summary=e.summary))
            self.state.set(PipelineState.FINISHED)
            return

        context = OperationContext(self.progress, cancel_event)
        error = None
        self.state.set(PipelineState.RUNNING)
        try:
            stages = operation.stages()
            context.stage_count = len(stages)
            for index, stage in enumerate(stages, 1):
                context.check_cancelled()
                context.begin_stage(index, stage.title)
                stage.run(context)
            context.check_cancelled()
        except OperationCancelled as e:
            logger.warning(f"{operation.name} cancelled")
            error = str(e)
        except Exception as e:
            logger.error(f"{operation.name} failed: {e}")
            error = f"A fatal error occurred: {e}"
        finally:
            self.state.set(PipelineState.FINALIZING)
            context.run_cleanups()

        if error is None:
            try:
                fields = operation.finish(context)
            except Exception as e:
                logger.error(f"{operation.name} failed while finalizing: {e}")
                error = f"A fatal error occurred: {e}"
        if error is not None:
            fields = {'error': error, 'final_summary': error}

        final = self.progress.value.copy(is_finished=True, elapsed_seconds=context.elapsed, **fields)
        self.progress.set(final)
        self.state.set(PipelineState.FINISHED)
        logger.info(f"{operation.name} finished: {final.final_summary}")

        if final.error is None:
            operation.after_success()
