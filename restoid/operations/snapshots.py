"""Snapshot lookup, ownership filtering and per-app snapshot details."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import RestoidError
from ..models.app import BackupTypeSet, SelectableApp, TYPE_APK
from ..models.metadata import RestoidMetadata
from ..models.snapshot import BackupDetail, SnapshotInfo, TAG_BACKUP, TAG_METADATA, TAG_PRODUCT
from .planner import APK_ROOT, FIXED_DIRS, ITEM_LABELS


logger = logging.getLogger(__name__)


def find_by_partial_id(snapshots: Sequence[SnapshotInfo], prefix: str) -> Optional[SnapshotInfo]:
    """First snapshot whose id starts with ``prefix``."""
    if not prefix:
        return None
    return next((s for s in snapshots if s.id.startswith(prefix)), None)


def filter_owned(snapshots: Sequence[SnapshotInfo], kind: str = TAG_BACKUP) -> List[SnapshotInfo]:
    """Snapshots tagged with both the product tag and ``kind``."""
    return [s for s in snapshots if TAG_PRODUCT in s.tags and kind in s.tags]


def latest_snapshot(snapshots: Sequence[SnapshotInfo]) -> Optional[SnapshotInfo]:
    if not snapshots:
        return None
    return max(snapshots, key=lambda s: s.time)


def latest_metadata_snapshot(snapshots: Sequence[SnapshotInfo]) -> Optional[SnapshotInfo]:
    return latest_snapshot(filter_owned(snapshots, TAG_METADATA))


# Path rules shared by package inference, item detection and restore planning.

def _is_apk_path(path: str, package_name: str) -> bool:
    if not path.startswith(APK_ROOT):
        return False
    segments = path[len(APK_ROOT):].split("/")
    return any(seg == package_name or seg.startswith(f"{package_name}-") for seg in segments)


def match_path(path: str, package_name: str) -> Optional[str]:
    """The backup type a recorded path belongs to for ``package_name``, if any."""
    if _is_apk_path(path, package_name):
        return TYPE_APK
    for type_name, _, root in FIXED_DIRS:
        if path == f"{root}/{package_name}":
            return type_name
    return None


def infer_package(path: str) -> Optional[str]:
    """Package name implied by the shape of a recorded path."""
    if path.startswith(APK_ROOT):
        for seg in path[len(APK_ROOT):].split("/"):
            # Randomized parent directories look like "~~AbC==".
            if not seg or seg.startswith("~~"):
                continue
            name = seg.split("-", 1)[0]
            if "." in name:
                return name
        return None

    for _, _, root in FIXED_DIRS:
        prefix = f"{root}/"
        if path.startswith(prefix):
            rest = path[len(prefix):]
            if rest and "/" not in rest:
                return rest
    return None


def resolve_packages(snapshot: SnapshotInfo, metadata: Optional[RestoidMetadata]) -> List[str]:
    """Packages a snapshot covers: sidecar keys when known, else inferred from its paths."""
    if metadata is not None and metadata.apps:
        return list(metadata.apps.keys())

    packages = []
    for path in snapshot.paths:
        package_name = infer_package(path)
        if package_name and package_name not in packages:
            packages.append(package_name)
    return packages


def find_backed_up_items(snapshot: SnapshotInfo, package_name: str) -> List[str]:
    """Display labels of the types a snapshot holds for one package."""
    items = []
    for path in snapshot.paths:
        type_name = match_path(path, package_name)
        if type_name:
            label = ITEM_LABELS[type_name]
            if label not in items:
                items.append(label)
    return items or ["Unknown items"]


def paths_for_restore(details: Sequence[BackupDetail], snapshot: SnapshotInfo,
                      types: BackupTypeSet) -> List[str]:
    """Recorded snapshot paths to include when restoring ``details`` with ``types``."""
    paths: List[str] = []

    def add(path):
        if path not in paths:
            paths.append(path)

    for detail in details:
        package_name = detail.package_name
        if types.apk:
            apk_path = next((p for p in snapshot.paths if _is_apk_path(p, package_name)), None)
            if apk_path:
                add(apk_path)
        for type_name, flag, root in FIXED_DIRS:
            path = f"{root}/{package_name}"
            if getattr(types, flag) and path in snapshot.paths:
                add(path)
    return paths


def is_downgrade(recorded_version_code: Optional[int], installed_app: Optional[SelectableApp]) -> bool:
    """True when restoring would replace a newer installed version."""
    if installed_app is None or recorded_version_code is None:
        return False
    return recorded_version_code < installed_app.version_code


def sort_details(details: List[BackupDetail]) -> List[BackupDetail]:
    return sorted(details, key=lambda d: (-(d.backup_size or 0), d.app.display_name.lower()))


class SnapshotDetailsLoader:
    """Joins a snapshot, its sidecar metadata and current install state."""

    def __init__(self, engine, repositories, metadata_store, inspector, own_package: str):
        self.engine = engine
        self.repositories = repositories
        self.metadata_store = metadata_store
        self.inspector = inspector
        self.own_package = own_package

    def _selected(self):
        repo = self.repositories.selected
        password = self.repositories.get_password(repo.path) if repo else None
        if repo is None or password is None or not repo.id:
            raise RestoidError("Repository, password, or repo ID not found")
        return repo, password

    def load(self, snapshot_id: str) -> Tuple[SnapshotInfo, List[BackupDetail]]:
        repo, password = self._selected()
        snapshots = self.engine.get_snapshots(repo.path, password)
        snapshot = find_by_partial_id(snapshots, snapshot_id)
        if snapshot is None:
            raise RestoidError("Snapshot not found.")

        metadata = self.metadata_store.get(repo.id, snapshot.id)
        return snapshot, self.build_details(snapshot, metadata)

    def build_details(self, snapshot: SnapshotInfo,
                      metadata: Optional[RestoidMetadata]) -> List[BackupDetail]:
        packages = [p for p in resolve_packages(snapshot, metadata) if p != self.own_package]
        installed: Dict[str, SelectableApp] = {
            app.package_name: app for app in self.inspector.get_apps(packages)
        }

        details = []
        for package_name in packages:
            app_meta = metadata.apps.get(package_name) if metadata else None
            app = installed.get(package_name)
            version_code = app_meta.version_code if app_meta else None
            version_name = app_meta.version_name if app_meta else None

            display_app = app or SelectableApp(
                display_name=package_name,
                package_name=package_name,
                version_name=version_name or "N/A",
                version_code=version_code or 0,
            )
            details.append(BackupDetail(
                app=display_app,
                backed_up_items=find_backed_up_items(snapshot, package_name),
                version_name=version_name,
                version_code=version_code,
                backup_size=app_meta.size if app_meta else None,
                is_downgrade=is_downgrade(version_code, app),
                is_installed=app is not None,
            ))
        return sort_details(details)


def forget_snapshot(engine, metadata_store, repository, password: str, snapshot_id: str) -> Optional[str]:
    """Forget one snapshot, drop its local metadata and back up the metadata store again.

    Returns the metadata backup warning, if any.
    """
    engine.forget_snapshot(repository.path, password, snapshot_id)
    if not repository.id:
        return None
    if metadata_store.delete(repository.id, snapshot_id):
        return engine.backup_metadata(repository.id, repository.path, password)
    return None
