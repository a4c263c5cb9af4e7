"""Configuration management for restoid."""

import os
import yaml
from typing import Dict, Any, Optional

from ..models.app import BackupTypeSet


DEFAULT_HOME = os.path.join("~", ".restoid")
DEFAULT_OWN_PACKAGE = "io.github.hddq.restoid"

DEFAULT_MAINTENANCE = {
    'unlock': False,
    'forget': False,
    'prune': False,
    'check': True,
    'read_data': False,
    'keep_last': 5,
    'keep_daily': 7,
    'keep_weekly': 4,
    'keep_monthly': 6,
}


class Config:
    """Configuration manager for restoid.

    Settings come from ``$RESTOID_HOME/config.yaml`` with environment
    overrides. Preferences changed at runtime (selected repository, last
    used backup types...) are written back with ``save()``.
    """

    def __init__(self, home: Optional[str] = None):
        self.home = os.path.abspath(os.path.expanduser(
            home or os.environ.get('RESTOID_HOME') or DEFAULT_HOME
        ))
        self.config_path = os.path.join(self.home, 'config.yaml')

        self._data = self._load()

        self.restic_binary = os.environ.get('RESTOID_RESTIC_BINARY') or self._data.get('restic_binary', 'restic')
        self.shell = os.environ.get('RESTOID_SHELL') or self._data.get('shell', 'sh')
        self.temporary_password = os.environ.get('RESTOID_PASSWORD')

    def _load(self) -> Dict[str, Any]:
        """Load the YAML configuration file, if present."""
        if not os.path.exists(self.config_path):
            return {}

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid configuration file {self.config_path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid configuration file {self.config_path}: expected a mapping")
        return data

    def save(self):
        """Persist the current settings and preferences."""
        os.makedirs(self.home, exist_ok=True)
        tmp_path = f"{self.config_path}.tmp"
        with open(tmp_path, 'w') as f:
            yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=True)
        os.replace(tmp_path, self.config_path)

    def _ensure_dir(self, path: str) -> str:
        os.makedirs(path, exist_ok=True)
        return path

    @property
    def metadata_dir(self) -> str:
        """Root of the local metadata store."""
        return self._ensure_dir(os.path.join(self.home, 'metadata'))

    @property
    def cache_dir(self) -> str:
        """Scratch space for password files, file lists and restores."""
        return self._ensure_dir(self._data.get('cache_dir') or os.path.join(self.home, 'cache'))

    @property
    def passwords_path(self) -> str:
        return os.path.join(self.home, 'passwords.yaml')

    @property
    def own_package(self) -> str:
        return self._data.get('own_package', DEFAULT_OWN_PACKAGE)

    # Repository list

    @property
    def repositories(self) -> list:
        return list(self._data.get('repositories') or [])

    @repositories.setter
    def repositories(self, value: list):
        self._data['repositories'] = list(value)

    @property
    def selected_repository(self) -> Optional[str]:
        return self._data.get('selected_repository')

    @selected_repository.setter
    def selected_repository(self, path: Optional[str]):
        if path is None:
            self._data.pop('selected_repository', None)
        else:
            self._data['selected_repository'] = path

    # Preferences

    @property
    def backup_types(self) -> BackupTypeSet:
        return BackupTypeSet.from_dict(self._data.get('backup_types'))

    @backup_types.setter
    def backup_types(self, types: BackupTypeSet):
        self._data['backup_types'] = types.to_dict()

    @property
    def restore_types(self) -> BackupTypeSet:
        return BackupTypeSet.from_dict(self._data.get('restore_types'))

    @restore_types.setter
    def restore_types(self, types: BackupTypeSet):
        self._data['restore_types'] = types.to_dict()

    @property
    def allow_downgrade(self) -> bool:
        return bool(self._data.get('allow_downgrade', False))

    @allow_downgrade.setter
    def allow_downgrade(self, value: bool):
        self._data['allow_downgrade'] = bool(value)

    @property
    def maintenance(self) -> Dict[str, Any]:
        settings = dict(DEFAULT_MAINTENANCE)
        settings.update(self._data.get('maintenance') or {})
        return settings

    @maintenance.setter
    def maintenance(self, value: Dict[str, Any]):
        settings = dict(DEFAULT_MAINTENANCE)
        settings.update(value)
        self._data['maintenance'] = settings
