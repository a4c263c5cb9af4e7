"""Local repository bookkeeping model."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class LocalRepository:
    """A restic repository known to restoid.

    ``id`` is the engine-assigned repository id; it is only known once the
    repository has been opened successfully and is the key of the local
    metadata store.
    """
    path: str
    id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1] or self.path

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "id": self.id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocalRepository':
        return cls(path=data["path"], id=data.get("id"))
