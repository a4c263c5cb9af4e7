"""Snapshot and per-app backup detail models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .app import SelectableApp


TAG_PRODUCT = "restoid"
TAG_BACKUP = "backup"
TAG_METADATA = "metadata"


@dataclass(frozen=True)
class SnapshotInfo:
    """A snapshot as reported by `restic snapshots --json`."""
    id: str
    time: str
    tags: frozenset = frozenset()
    paths: tuple = ()

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['SnapshotInfo']:
        snapshot_id = data.get("id") or data.get("short_id")
        if not snapshot_id:
            return None
        return cls(
            id=snapshot_id,
            time=data.get("time") or "unknown",
            tags=frozenset(data.get("tags") or []),
            paths=tuple(data.get("paths") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "time": self.time,
            "tags": sorted(self.tags),
            "paths": list(self.paths),
        }


@dataclass
class BackupDetail:
    """What one snapshot holds for one app, joined with current install state."""
    app: SelectableApp
    backed_up_items: List[str] = field(default_factory=list)
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    backup_size: Optional[int] = None
    is_downgrade: bool = False
    is_installed: bool = False

    @property
    def package_name(self) -> str:
        return self.app.package_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Package": self.app.package_name,
            "Name": self.app.display_name,
            "Items": self.backed_up_items,
            "VersionName": self.version_name,
            "VersionCode": self.version_code,
            "Size": self.backup_size,
            "Installed": self.is_installed,
            "Downgrade": self.is_downgrade,
            "Selected": self.app.is_selected,
        }
