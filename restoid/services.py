"""Process-wide service construction."""

import logging
from dataclasses import dataclass

from .config.repositories import PasswordStore, RepositoryStore
from .config.settings import Config
from .device.installer import InstallSessionManager
from .device.packages import PackageInspector
from .engine.executor import ShellExecutor
from .engine.restic import ResticEngine
from .operations.snapshots import SnapshotDetailsLoader
from .storage.metadata_store import MetadataStore


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every long-lived collaborator, built once and passed to operations."""
    config: Config
    executor: ShellExecutor
    engine: ResticEngine
    metadata_store: MetadataStore
    repositories: RepositoryStore
    inspector: PackageInspector
    installer: InstallSessionManager
    details_loader: SnapshotDetailsLoader


def build_services(config: Config, executor: ShellExecutor = None) -> Services:
    executor = executor or ShellExecutor(config.shell)
    engine = ResticEngine(config, executor)
    metadata_store = MetadataStore(config.metadata_dir)
    repositories = RepositoryStore(config, engine, metadata_store, PasswordStore(config.passwords_path))
    inspector = PackageInspector(executor)
    logger.debug(f"Services ready (home {config.home}, shell {config.shell})")
    return Services(
        config=config,
        executor=executor,
        engine=engine,
        metadata_store=metadata_store,
        repositories=repositories,
        inspector=inspector,
        installer=InstallSessionManager(executor),
        details_loader=SnapshotDetailsLoader(engine, repositories, metadata_store, inspector,
                                             config.own_package),
    )
