"""Repository list, selection and password bookkeeping."""

import logging
import os
import shlex
import shutil
import tempfile
from typing import Dict, List, Optional

import yaml

from ..engine.restic import ResticEngine
from ..errors import EngineCommandError, EngineError
from ..models.repository import LocalRepository
from ..models.state import AddRepositoryState
from ..operations.snapshots import latest_metadata_snapshot
from ..storage.metadata_store import MetadataStore
from ..utils.observable import Observable
from .settings import Config


logger = logging.getLogger(__name__)


class PasswordStore:
    """Repository passwords, stored (0600 YAML file) or kept for this process only."""

    def __init__(self, path: str):
        self.path = path
        self._temporary: Dict[str, str] = {}

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid password file {self.path}")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False)

    def get(self, repo_path: str) -> Optional[str]:
        if repo_path in self._temporary:
            return self._temporary[repo_path]
        return self._load().get(repo_path)

    def has(self, repo_path: str) -> bool:
        return self.get(repo_path) is not None

    def has_stored(self, repo_path: str) -> bool:
        return repo_path in self._load()

    def save(self, repo_path: str, password: str):
        data = self._load()
        data[repo_path] = password
        self._write(data)
        self._temporary.pop(repo_path, None)

    def save_temporary(self, repo_path: str, password: str):
        self._temporary[repo_path] = password

    def remove_stored(self, repo_path: str):
        data = self._load()
        if data.pop(repo_path, None) is not None:
            self._write(data)

    def remove(self, repo_path: str):
        self._temporary.pop(repo_path, None)
        self.remove_stored(repo_path)


class RepositoryStore:
    """Known repositories and the currently selected one."""

    def __init__(self, config: Config, engine: ResticEngine, metadata_store: MetadataStore,
                 passwords: PasswordStore):
        self.config = config
        self.engine = engine
        self.metadata_store = metadata_store
        self.passwords = passwords
        self.repositories = Observable([])
        self.selected_repository = Observable(None)
        self.load()

    def load(self):
        repos = []
        for entry in self.config.repositories:
            try:
                repos.append(LocalRepository.from_dict(entry))
            except (KeyError, TypeError):
                logger.warning(f"Skipping invalid repository entry: {entry!r}")
        self.repositories.set(sorted(repos, key=lambda r: r.name))
        self.selected_repository.set(self.config.selected_repository)

        # The environment password applies to the selected repository only.
        if self.config.temporary_password and self.config.selected_repository:
            self.passwords.save_temporary(self.config.selected_repository,
                                          self.config.temporary_password)

    def _persist(self, repos: List[LocalRepository]):
        self.config.repositories = [r.to_dict() for r in repos]
        self.config.save()
        self.load()

    def find(self, path: Optional[str]) -> Optional[LocalRepository]:
        if path is None:
            return None
        return next((r for r in self.repositories.value if r.path == path), None)

    @property
    def selected(self) -> Optional[LocalRepository]:
        return self.find(self.selected_repository.value)

    def select(self, path: str):
        if self.find(path) is None:
            raise ValueError(f"Unknown repository: {path}")
        self.config.selected_repository = path
        self.config.save()
        self.selected_repository.set(path)

    def get_password(self, path: str) -> Optional[str]:
        return self.passwords.get(path)

    def has_password(self, path: str) -> bool:
        return self.passwords.has(path)

    def remove_repository(self, path: str) -> bool:
        repos = [r for r in self.repositories.value if r.path != path]
        if len(repos) == len(self.repositories.value):
            return False
        self.passwords.remove(path)
        if self.config.selected_repository == path:
            self.config.selected_repository = None
        self._persist(repos)
        return True

    def add_repository(self, path: str, password: str, save_password: bool = False):
        """Open an existing repository or initialize a new one, then register it.

        Returns an AddRepositoryState.
        """
        path = os.path.abspath(os.path.expanduser(path))
        if self.find(path) is not None:
            return AddRepositoryState.error("Repository already exists.")
        if not self.engine.state.value.is_installed:
            return AddRepositoryState.error("Restic binary not ready.")

        was_empty = not self.repositories.value
        executor = self.engine.executor

        if executor.succeeds(f"[ -f {shlex.quote(os.path.join(path, 'config'))} ]"):
            if not self.engine.verify_password(path, password):
                return AddRepositoryState.error("Invalid password or corrupted repository.")
        else:
            if not executor.succeeds(f"mkdir -p {shlex.quote(path)}"):
                return AddRepositoryState.error("Failed to create directory.")
            try:
                self.engine.init(path, password)
            except EngineError as e:
                logger.error(f"Failed to initialize repository {path}: {e}")
                executor.run(f"rm -rf {shlex.quote(path)}")
                return AddRepositoryState.error("Failed to initialize repository.")

        try:
            repo_id = self.engine.get_config(path, password)["id"]
        except EngineError as e:
            logger.error(f"Failed to read repository id: {e}")
            return AddRepositoryState.error("Repo valid, but failed to get ID.")

        self.restore_metadata(repo_id, path, password)
        self.engine.clear_snapshots()

        repos = list(self.repositories.value) + [LocalRepository(path=path, id=repo_id)]
        if save_password:
            self.passwords.save(path, password)
        else:
            self.passwords.save_temporary(path, password)
        if was_empty:
            self.config.selected_repository = path
        self._persist(repos)
        logger.info(f"Added repository {path} ({repo_id[:8]})")
        return AddRepositoryState.success()

    def restore_metadata(self, repository_id: str, repo_path: str, password: str) -> bool:
        """Recover the local metadata store from the newest metadata snapshot (best effort)."""
        tmp_dir = tempfile.mkdtemp(prefix="metadata_restore_", dir=self.config.cache_dir)
        try:
            snapshots = self.engine.get_snapshots(repo_path, password)
            metadata_snapshot = latest_metadata_snapshot(snapshots)
            if metadata_snapshot is None:
                return False

            self.engine.restore(repo_path, password, metadata_snapshot.id, tmp_dir)

            restored = os.path.join(tmp_dir, repository_id)
            if not os.path.isdir(restored):
                logger.warning(f"Metadata snapshot {metadata_snapshot.short_id} has no entries for this repository")
                return False

            restored_count = 0
            for filename in os.listdir(restored):
                if filename.endswith('.json'):
                    self.metadata_store.save(repository_id, filename[:-len('.json')],
                                             os.path.join(restored, filename))
                    restored_count += 1
            logger.info(f"Restored {restored_count} metadata file(s)")
            return True
        except (EngineCommandError, EngineError, OSError) as e:
            logger.error(f"Error during metadata restore: {e}")
            return False
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
