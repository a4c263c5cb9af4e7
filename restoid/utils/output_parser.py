"""Parser for restic's streaming ``--json`` output."""

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """One decoded status or summary line."""
    stage_percentage: float = 0.0
    total_items: int = 0
    items_processed: int = 0
    total_bytes: int = 0
    bytes_processed: int = 0
    current_item: str = ""
    is_finished: bool = False
    final_summary: str = ""
    snapshot_id: Optional[str] = None
    files_new: int = 0
    files_changed: int = 0
    files_unmodified: int = 0
    data_added: int = 0
    total_duration: float = 0.0


def parse(line: str) -> Optional[ProgressEvent]:
    """Decode one stdout line; anything that is not a status or summary yields None."""
    try:
        data = json.loads(line)
    except (TypeError, ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        message_type = data.get("message_type")
        if message_type == "status":
            return _parse_status(data)
        if message_type == "summary":
            return _parse_summary(data)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug(f"Ignoring unparsable progress line: {e}")
    return None


def _int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return 0
    return int(value)


def _float(data: Dict[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return 0.0
    return float(value)


def _parse_status(data: Dict[str, Any]) -> ProgressEvent:
    percentage = min(max(_float(data, "percent_done"), 0.0), 1.0)

    if "files_restored" in data or "bytes_restored" in data:
        return ProgressEvent(
            stage_percentage=percentage,
            total_items=_int(data, "total_files"),
            items_processed=_int(data, "files_restored"),
            total_bytes=_int(data, "total_bytes"),
            bytes_processed=_int(data, "bytes_restored"),
        )

    current_files = data.get("current_files")
    current_item = ""
    if isinstance(current_files, list) and current_files:
        current_item = str(current_files[0])

    return ProgressEvent(
        stage_percentage=percentage,
        total_items=_int(data, "total_files"),
        items_processed=_int(data, "files_done"),
        total_bytes=_int(data, "total_bytes"),
        bytes_processed=_int(data, "bytes_done"),
        current_item=current_item,
    )


def _parse_summary(data: Dict[str, Any]) -> ProgressEvent:
    total_files = _int(data, "total_files_processed")
    total_bytes = _int(data, "total_bytes_processed")
    snapshot_id = data.get("snapshot_id") or None

    event = ProgressEvent(
        stage_percentage=1.0,
        total_items=total_files,
        items_processed=total_files,
        total_bytes=total_bytes,
        bytes_processed=total_bytes,
        is_finished=True,
        snapshot_id=str(snapshot_id) if snapshot_id else None,
        files_new=_int(data, "files_new"),
        files_changed=_int(data, "files_changed"),
        files_unmodified=_int(data, "files_unmodified"),
        data_added=_int(data, "data_added"),
        total_duration=_float(data, "total_duration"),
    )
    return _with_summary(event)


def _with_summary(event: ProgressEvent) -> ProgressEvent:
    summary = (f"Added {format_size(event.data_added)} "
               f"({event.files_new} new, {event.files_changed} changed files) "
               f"in {format_duration(event.total_duration)}.")
    return replace(event, final_summary=summary)


def format_size(num_bytes: int) -> str:
    """Short human readable size, e.g. ``1.5 MB``."""
    size = float(num_bytes)
    for unit in ("B", "kB", "MB", "GB", "TB"):
        if abs(size) < 1000 or unit == "TB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1000
    return f"{size:.1f} TB"


def format_duration(seconds: float) -> str:
    """``HH:MM:SS`` for a duration in seconds."""
    total = int(seconds)
    return f"{total // 3600:02d}:{(total // 60) % 60:02d}:{total % 60:02d}"
