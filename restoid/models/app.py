"""Installed application and backup type models."""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional


# Type names as recorded in the metadata sidecar, in planning order.
TYPE_APK = "apk"
TYPE_DATA = "data"
TYPE_USER_DE = "user_de"
TYPE_EXTERNAL_DATA = "external_data"
TYPE_OBB = "obb"
TYPE_MEDIA = "media"


@dataclass(frozen=True)
class BackupTypeSet:
    """Which categories of app data take part in an operation."""
    apk: bool = True
    data: bool = True
    device_protected_data: bool = True
    external_data: bool = False
    obb: bool = False
    media: bool = False

    def any_enabled(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def any_data_enabled(self) -> bool:
        """True if any type other than the APK itself is enabled."""
        return (self.data or self.device_protected_data or self.external_data
                or self.obb or self.media)

    def type_names(self) -> List[str]:
        """Metadata type strings for the enabled types."""
        names = []
        if self.apk:
            names.append(TYPE_APK)
        if self.data:
            names.append(TYPE_DATA)
        if self.device_protected_data:
            names.append(TYPE_USER_DE)
        if self.external_data:
            names.append(TYPE_EXTERNAL_DATA)
        if self.obb:
            names.append(TYPE_OBB)
        if self.media:
            names.append(TYPE_MEDIA)
        return names

    @classmethod
    def from_names(cls, names: List[str]) -> 'BackupTypeSet':
        """Build a set from metadata type strings; unknown names raise ValueError."""
        known = {TYPE_APK, TYPE_DATA, TYPE_USER_DE, TYPE_EXTERNAL_DATA, TYPE_OBB, TYPE_MEDIA}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ValueError(f"Unknown backup types: {', '.join(unknown)}")
        return cls(
            apk=TYPE_APK in names,
            data=TYPE_DATA in names,
            device_protected_data=TYPE_USER_DE in names,
            external_data=TYPE_EXTERNAL_DATA in names,
            obb=TYPE_OBB in names,
            media=TYPE_MEDIA in names,
        )

    def to_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'BackupTypeSet':
        default = cls()
        if not data:
            return default
        values = {f.name: bool(data.get(f.name, getattr(default, f.name))) for f in fields(cls)}
        return cls(**values)


@dataclass
class SelectableApp:
    """An installed third-party package the user can select."""
    display_name: str
    package_name: str
    version_name: str
    version_code: int
    apk_paths: List[str] = field(default_factory=list)
    icon: Any = None
    is_selected: bool = True

    def toggled(self) -> 'SelectableApp':
        return replace(self, is_selected=not self.is_selected)
