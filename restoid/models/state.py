"""Tagged state values for the engine, repositories, root access and pipelines."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EngineStatus(Enum):
    IDLE = "idle"
    NOT_INSTALLED = "not_installed"
    INSTALLED = "installed"
    ERROR = "error"


@dataclass(frozen=True)
class EngineState:
    """State of the restic binary; payload fields depend on the status."""
    status: EngineStatus
    path: Optional[str] = None
    version: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> 'EngineState':
        return cls(EngineStatus.IDLE)

    @classmethod
    def not_installed(cls) -> 'EngineState':
        return cls(EngineStatus.NOT_INSTALLED)

    @classmethod
    def installed(cls, path: str, version: str) -> 'EngineState':
        return cls(EngineStatus.INSTALLED, path=path, version=version)

    @classmethod
    def error(cls, message: str) -> 'EngineState':
        return cls(EngineStatus.ERROR, message=message)

    @property
    def is_installed(self) -> bool:
        return self.status is EngineStatus.INSTALLED

    def describe(self) -> str:
        if self.status is EngineStatus.INSTALLED:
            return f"Installed ({self.version})"
        if self.status is EngineStatus.ERROR:
            return f"Error: {self.message}"
        if self.status is EngineStatus.NOT_INSTALLED:
            return "Not installed"
        return "Not checked"


class AddRepositoryStatus(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class AddRepositoryState:
    status: AddRepositoryStatus
    message: Optional[str] = None

    @classmethod
    def success(cls) -> 'AddRepositoryState':
        return cls(AddRepositoryStatus.SUCCESS)

    @classmethod
    def error(cls, message: str) -> 'AddRepositoryState':
        return cls(AddRepositoryStatus.ERROR, message)


class RootState(Enum):
    CHECKING = "checking"
    GRANTED = "granted"
    DENIED = "denied"


class PipelineState(Enum):
    IDLE = "idle"
    PREFLIGHT = "preflight"
    RUNNING = "running"
    FINALIZING = "finalizing"
    FINISHED = "finished"
