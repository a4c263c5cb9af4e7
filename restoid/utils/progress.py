"""Progress reporting utilities."""

import sys

from tqdm import tqdm

from ..models.progress import OperationProgress
from .observable import Observable


class ProgressReporter:
    """Renders an operation's published progress as a terminal progress bar."""

    def __init__(self, progress: Observable, description: str = "Processing"):
        self.progress = progress
        self.description = description
        self.progress_bar = None
        self._unsubscribe = None
        self._stage_title = None

    def start(self):
        """Start progress reporting."""
        self.progress_bar = tqdm(
            total=100,
            desc=self.description,
            unit="%",
            file=sys.stderr,
            bar_format="{desc}: {percentage:3.0f}%|{bar}| [{elapsed}{postfix}]"
        )
        self._unsubscribe = self.progress.subscribe(self.update)

    def update(self, progress: OperationProgress):
        """Update the bar from the latest published progress."""
        if not self.progress_bar:
            return

        if progress.stage_title != self._stage_title:
            self._stage_title = progress.stage_title
            self.progress_bar.set_description(f"{self.description} {progress.stage_title}")

        postfix = {}
        if progress.total_items:
            postfix['items'] = f"{progress.items_processed}/{progress.total_items}"
        if progress.current_item:
            postfix['current'] = progress.current_item[-40:]
        self.progress_bar.set_postfix(postfix, refresh=False)

        self.progress_bar.n = round(progress.overall_percentage * 100, 1)
        self.progress_bar.refresh()

    def finish(self):
        """Finish progress reporting."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.progress_bar:
            self.progress_bar.close()
            self.progress_bar = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()
