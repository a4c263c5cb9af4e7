"""Progress model shared by every operation."""

from dataclasses import dataclass, replace, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class OperationProgress:
    """Snapshot of a running (or finished) operation's progress."""
    stage_title: str = "Initializing..."
    stage_percentage: float = 0.0
    overall_percentage: float = 0.0

    # Details for the current stage
    total_items: int = 0
    items_processed: int = 0
    total_bytes: int = 0
    bytes_processed: int = 0
    current_item: str = ""

    elapsed_seconds: int = 0
    error: Optional[str] = None
    is_finished: bool = False
    final_summary: str = ""
    snapshot_id: Optional[str] = None

    # Backup summary
    files_new: int = 0
    files_changed: int = 0
    data_added: int = 0
    total_duration: float = 0.0

    def copy(self, **changes) -> 'OperationProgress':
        return replace(self, **changes)

    @property
    def succeeded(self) -> bool:
        return self.is_finished and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
