"""Maps apps and backup types onto device paths."""

import logging
import posixpath
from typing import Callable, List, Tuple

from ..models.app import (BackupTypeSet, SelectableApp, TYPE_APK, TYPE_DATA, TYPE_EXTERNAL_DATA,
                          TYPE_MEDIA, TYPE_OBB, TYPE_USER_DE)
from ..models.metadata import AppMetadata, RestoidMetadata


logger = logging.getLogger(__name__)

APK_ROOT = "/data/app/"
DATA_ROOT = "/data/data"
USER_DE_ROOT = "/data/user_de/0"
EXTERNAL_DATA_ROOT = "/storage/emulated/0/Android/data"
OBB_ROOT = "/storage/emulated/0/Android/obb"
MEDIA_ROOT = "/storage/emulated/0/Android/media"

# Fixed per-package directories, in planning order after the APK directory.
FIXED_DIRS = (
    (TYPE_DATA, "data", DATA_ROOT),
    (TYPE_USER_DE, "device_protected_data", USER_DE_ROOT),
    (TYPE_EXTERNAL_DATA, "external_data", EXTERNAL_DATA_ROOT),
    (TYPE_OBB, "obb", OBB_ROOT),
    (TYPE_MEDIA, "media", MEDIA_ROOT),
)

ITEM_LABELS = {
    TYPE_APK: "APK",
    TYPE_DATA: "Data",
    TYPE_USER_DE: "Device Protected Data",
    TYPE_EXTERNAL_DATA: "External Data",
    TYPE_OBB: "OBB",
    TYPE_MEDIA: "Media",
}


def type_dir(type_name: str, package_name: str) -> str:
    """The fixed directory of a non-APK type for one package."""
    for name, _, root in FIXED_DIRS:
        if name == type_name:
            return f"{root}/{package_name}"
    raise ValueError(f"No fixed directory for type {type_name!r}")


def type_excludes(type_name: str, package_name: str) -> List[str]:
    if type_name == TYPE_DATA:
        base = type_dir(TYPE_DATA, package_name)
        return [f"{base}/cache", f"{base}/code_cache"]
    if type_name == TYPE_EXTERNAL_DATA:
        return [f"{type_dir(TYPE_EXTERNAL_DATA, package_name)}/cache"]
    return []


def candidate_paths(app: SelectableApp, types: BackupTypeSet) -> List[Tuple[str, str]]:
    """(type name, path) pairs for the enabled types, before existence checks."""
    candidates = []
    if types.apk and app.apk_paths:
        candidates.append((TYPE_APK, posixpath.dirname(app.apk_paths[0])))
    for type_name, flag, _ in FIXED_DIRS:
        if getattr(types, flag):
            candidates.append((type_name, type_dir(type_name, app.package_name)))
    return candidates


def plan_app_paths(app: SelectableApp, types: BackupTypeSet,
                   exists: Callable[[str], bool]) -> Tuple[List[str], List[str]]:
    """Paths to back up for one app, and the exclusion patterns for its enabled types.

    Missing paths are dropped. Exclusions are emitted for every enabled type
    whether or not its directory exists.
    """
    paths = [path for _, path in candidate_paths(app, types) if exists(path)]
    excludes = []
    for type_name, flag, _ in FIXED_DIRS:
        if getattr(types, flag):
            excludes.extend(type_excludes(type_name, app.package_name))
    return paths, excludes


def plan_backup(apps: List[SelectableApp], types: BackupTypeSet,
                inspector) -> Tuple[List[str], List[str], RestoidMetadata]:
    """Aggregate paths, exclusions and sidecar metadata for all selected apps.

    ``inspector`` provides ``path_exists(path)`` and ``directory_size(paths)``.
    Apps with no existing path are left out of the metadata.
    """
    all_paths: List[str] = []
    all_excludes: List[str] = []
    metadata = RestoidMetadata()
    type_names = types.type_names()

    for app in apps:
        paths, excludes = plan_app_paths(app, types, inspector.path_exists)
        for exclude in excludes:
            if exclude not in all_excludes:
                all_excludes.append(exclude)
        if not paths:
            logger.warning(f"No existing paths for {app.package_name}, skipping")
            continue
        for path in paths:
            if path not in all_paths:
                all_paths.append(path)

        metadata.apps[app.package_name] = AppMetadata(
            size=inspector.directory_size(paths),
            types=list(type_names),
            version_code=app.version_code,
            version_name=app.version_name,
        )

    logger.info(f"Planned {len(all_paths)} path(s) for {len(metadata.apps)} app(s)")
    return all_paths, all_excludes, metadata
