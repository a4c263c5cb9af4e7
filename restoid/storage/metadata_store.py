"""Local store of metadata sidecars, one file per (repository, snapshot)."""

import logging
import os
import shutil
from typing import Dict, Optional, Union

from ..errors import MalformedMetadata
from ..models.metadata import RestoidMetadata, decode, encode


logger = logging.getLogger(__name__)


class MetadataStore:
    """Sidecar copies under ``<root>/<repository_id>/<snapshot_id>.json``.

    The store lets snapshot details load without restoring the sidecar out
    of the snapshot. It is itself backed up (tagged ``metadata``) so it can
    be recovered when the repository is opened on another device.
    """

    def __init__(self, root: str):
        self.root = root

    def get_repository_dir(self, repository_id: str) -> str:
        return os.path.join(self.root, repository_id)

    def get_metadata_path(self, repository_id: str, snapshot_id: str) -> str:
        return os.path.join(self.get_repository_dir(repository_id), f"{snapshot_id}.json")

    def save(self, repository_id: str, snapshot_id: str,
             data: Union[RestoidMetadata, bytes, str]) -> str:
        """Store a sidecar given as a model, raw bytes or a path to a sidecar file."""
        repo_dir = self.get_repository_dir(repository_id)
        os.makedirs(repo_dir, exist_ok=True)
        dest = self.get_metadata_path(repository_id, snapshot_id)

        if isinstance(data, RestoidMetadata):
            with open(dest, 'wb') as f:
                f.write(encode(data))
        elif isinstance(data, bytes):
            with open(dest, 'wb') as f:
                f.write(data)
        else:
            shutil.copyfile(data, dest)

        logger.info(f"Saved metadata for snapshot {snapshot_id[:8]} of repository {repository_id[:8]}")
        return dest

    def get(self, repository_id: str, snapshot_id: str) -> Optional[RestoidMetadata]:
        """Metadata for one snapshot, or None when absent or unreadable."""
        path = self.get_metadata_path(repository_id, snapshot_id)
        if not os.path.isfile(path):
            return None

        try:
            with open(path, 'rb') as f:
                return decode(f.read())
        except (OSError, MalformedMetadata) as e:
            logger.warning(f"Ignoring unreadable metadata {path}: {e}")
            return None

    def list_all(self, repository_id: str) -> Dict[str, RestoidMetadata]:
        """All decodable sidecars of a repository, keyed by snapshot id."""
        repo_dir = self.get_repository_dir(repository_id)
        if not os.path.isdir(repo_dir):
            return {}

        result = {}
        for filename in sorted(os.listdir(repo_dir)):
            if not filename.endswith('.json'):
                continue
            snapshot_id = filename[:-len('.json')]
            metadata = self.get(repository_id, snapshot_id)
            if metadata is not None:
                result[snapshot_id] = metadata
        return result

    def delete(self, repository_id: str, snapshot_id: str) -> bool:
        """Remove one sidecar; an already missing file counts as deleted."""
        path = self.get_metadata_path(repository_id, snapshot_id)
        try:
            os.remove(path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error(f"Failed to delete metadata {path}: {e}")
            return False
        return True
