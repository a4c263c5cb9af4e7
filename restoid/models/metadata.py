"""Metadata sidecar models and JSON codec.

Restic has no notion of an application, so every backup writes a
``restoid.json`` sidecar describing which packages (and which of their
backup types) a snapshot covers. The sidecar is the first entry of the
backup file list and a copy is kept in the local metadata store.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..errors import MalformedMetadata


METADATA_FILENAME = "restoid.json"


@dataclass
class AppMetadata:
    """Per-application entry of a metadata sidecar."""
    size: int
    types: List[str]
    version_code: int
    version_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "types": list(self.types),
            "versionCode": self.version_code,
            "versionName": self.version_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppMetadata':
        if not isinstance(data, dict):
            raise MalformedMetadata("App entry must be an object")
        try:
            size = data["size"]
            types = data["types"]
            version_code = data["versionCode"]
            version_name = data["versionName"]
        except KeyError as e:
            raise MalformedMetadata(f"Missing field {e.args[0]!r} in app entry")

        if isinstance(size, bool) or not isinstance(size, int):
            raise MalformedMetadata("'size' must be an integer")
        if isinstance(version_code, bool) or not isinstance(version_code, int):
            raise MalformedMetadata("'versionCode' must be an integer")
        if not isinstance(types, list) or not all(isinstance(t, str) for t in types):
            raise MalformedMetadata("'types' must be a list of strings")
        if not isinstance(version_name, str):
            raise MalformedMetadata("'versionName' must be a string")

        return cls(size=size, types=types, version_code=version_code, version_name=version_name)


@dataclass
class RestoidMetadata:
    """Top-level sidecar document: package name -> AppMetadata."""
    apps: Dict[str, AppMetadata] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"apps": {name: meta.to_dict() for name, meta in self.apps.items()}}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RestoidMetadata':
        if not isinstance(data, dict):
            raise MalformedMetadata("Metadata document must be an object")
        apps = data.get("apps")
        if not isinstance(apps, dict):
            raise MalformedMetadata("Metadata document has no 'apps' object")
        return cls(apps={name: AppMetadata.from_dict(entry) for name, entry in apps.items()})


def encode(metadata: RestoidMetadata) -> bytes:
    """Serialize a sidecar document."""
    return json.dumps(metadata.to_dict(), indent=2).encode("utf-8")


def decode(raw: bytes) -> RestoidMetadata:
    """Parse a sidecar document, ignoring unknown fields."""
    try:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedMetadata(f"Invalid metadata JSON: {e}")
    return RestoidMetadata.from_dict(data)
