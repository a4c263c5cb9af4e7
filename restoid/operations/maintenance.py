"""Repository maintenance: unlock, forget, prune and check."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import EngineError, PreflightError
from ..utils.maintenance_parser import summarize
from .pipeline import Operation, OperationContext, Stage, require_repository


logger = logging.getLogger(__name__)

# Unlock first so a previously interrupted run does not block the others.
TASK_ORDER = ("unlock", "forget", "prune", "check")


@dataclass
class MaintenanceOptions:
    unlock: bool = False
    forget: bool = False
    prune: bool = False
    check: bool = True
    read_data: bool = False
    keep_last: int = 0
    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MaintenanceOptions':
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})

    def tasks(self) -> List[str]:
        return [task for task in TASK_ORDER if getattr(self, task)]


@dataclass
class TaskResult:
    task: str
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def paragraph(self) -> str:
        title = self.task.capitalize()
        if self.succeeded:
            return f"{title}: {summarize(self.task, self.output or '')}"
        return f"{title} failed: {self.error}"


class MaintenanceOperation(Operation):
    """Runs every enabled task in order; one failure never stops the rest."""

    name = "Maintenance"

    def __init__(self, services, options: MaintenanceOptions):
        self.services = services
        self.options = options
        self.repository = None
        self.password = None
        self.results: List[TaskResult] = []

    def preflight(self):
        if not self.options.tasks():
            raise PreflightError("No maintenance tasks selected.", "No maintenance tasks were selected.")
        self.repository, self.password = require_repository(
            self.services.engine, self.services.repositories
        )

    def stages(self) -> List[Stage]:
        return [Stage(task.capitalize(), self._task_runner(task)) for task in self.options.tasks()]

    def _task_runner(self, task: str):
        def run(context: OperationContext):
            context.update(current_item=task)
            try:
                output = self.run_task(task, context.cancel_event)
                self.results.append(TaskResult(task, output=output))
            except EngineError as e:
                logger.error(f"Maintenance task {task} failed: {e}")
                self.results.append(TaskResult(task, error=str(e)))
            context.update(stage_percentage=1.0)
        return run

    def run_task(self, task: str, cancel_event=None) -> str:
        engine = self.services.engine
        repo_path = self.repository.path
        if task == "unlock":
            return engine.unlock(repo_path, self.password, cancel_event=cancel_event)
        if task == "forget":
            return engine.forget(
                repo_path, self.password,
                keep_last=self.options.keep_last,
                keep_daily=self.options.keep_daily,
                keep_weekly=self.options.keep_weekly,
                keep_monthly=self.options.keep_monthly,
                cancel_event=cancel_event,
            )
        if task == "prune":
            return engine.prune(repo_path, self.password, cancel_event=cancel_event)
        if task == "check":
            return engine.check(repo_path, self.password, read_data=self.options.read_data,
                                cancel_event=cancel_event)
        raise ValueError(f"Unknown maintenance task: {task}")

    @property
    def all_succeeded(self) -> bool:
        return all(result.succeeded for result in self.results)

    def finish(self, context: OperationContext) -> Dict[str, Any]:
        summary = "\n\n".join(result.paragraph() for result in self.results)
        failed = [result.task for result in self.results if not result.succeeded]
        return {
            'final_summary': summary,
            'error': f"Maintenance task(s) failed: {', '.join(failed)}" if failed else None,
            'current_item': "",
            'stage_percentage': 1.0,
            'overall_percentage': 1.0,
        }

    def after_success(self):
        if self.options.prune or self.options.forget:
            self.services.engine.refresh_snapshots(self.repository.path, self.password)
