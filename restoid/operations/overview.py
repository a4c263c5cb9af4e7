"""Derived list of owned snapshots for the selected repository."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.metadata import RestoidMetadata
from ..models.snapshot import SnapshotInfo
from ..models.state import EngineState
from ..utils.observable import combine
from .snapshots import filter_owned, resolve_packages


logger = logging.getLogger(__name__)


@dataclass
class SnapshotWithMetadata:
    snapshot: SnapshotInfo
    metadata: Optional[RestoidMetadata] = None

    @property
    def packages(self) -> List[str]:
        """Covered packages, largest recorded size first."""
        packages = resolve_packages(self.snapshot, self.metadata)
        if self.metadata is None:
            return packages
        apps = self.metadata.apps
        return sorted(packages, key=lambda p: -(apps[p].size if p in apps else 0))

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot.to_dict()
        data["apps"] = self.packages
        data["has_metadata"] = self.metadata is not None
        return data


@dataclass
class OverviewState:
    selected_repository: Optional[str] = None
    engine_state: EngineState = field(default_factory=EngineState.idle)
    snapshots: List[SnapshotWithMetadata] = field(default_factory=list)
    needs_load: bool = False
    error: Optional[str] = None


class SnapshotOverview:
    """Recomputes the snapshot list whenever the repository, engine or cache changes."""

    def __init__(self, repositories, engine, metadata_store):
        self.repositories = repositories
        self.engine = engine
        self.metadata_store = metadata_store
        self.state = combine(
            [repositories.selected_repository, engine.state, engine.snapshots, repositories.repositories],
            self._compute,
        )

    def _compute(self, repo_path, engine_state, snapshots, repos) -> OverviewState:
        state = OverviewState(selected_repository=repo_path, engine_state=engine_state)
        if repo_path is None or not engine_state.is_installed:
            return state
        if snapshots is None:
            state.needs_load = True
            return state

        repo = next((r for r in repos if r.path == repo_path), None)
        if repo is None or not repo.id:
            state.error = "Repository ID not found"
            return state

        state.snapshots = [
            SnapshotWithMetadata(s, self.metadata_store.get(repo.id, s.id))
            for s in filter_owned(snapshots)
        ]
        return state

    def load(self) -> OverviewState:
        """Fetch snapshots if the cache is empty and return the current state."""
        state = self.state.value
        if state.needs_load:
            password = self.repositories.get_password(state.selected_repository)
            if password is None:
                state.error = "Password for repository not found."
                return state
            self.engine.get_snapshots(state.selected_repository, password)
        return self.state.value

    def close(self):
        self.state.close()
