"""Background execution of pipeline operations."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from ..operations.pipeline import Operation, OperationPipeline


logger = logging.getLogger(__name__)


class OperationWorker:
    """Runs operations of one pipeline on a single background thread."""

    def __init__(self, pipeline: OperationPipeline):
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="restoid-op")
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._cancel_event: Optional[threading.Event] = None

    @property
    def is_busy(self) -> bool:
        return (self._future is not None and not self._future.done()) or self.pipeline.is_running.value

    def start(self, operation: Operation) -> Optional[Future]:
        """Submit ``operation``; returns None when an operation is already in flight."""
        with self._lock:
            if self.is_busy:
                logger.warning(f"Not starting {operation.name.lower()}, worker is busy")
                return None
            self._cancel_event = threading.Event()
            self._future = self._executor.submit(self.pipeline.run, operation, self._cancel_event)
            return self._future

    def cancel(self) -> bool:
        """Cancel the running operation, killing its subprocess."""
        with self._lock:
            if not self.is_busy or self._cancel_event is None:
                return False
            logger.info("Cancelling running operation")
            self._cancel_event.set()
            return True

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
