"""Exception hierarchy for restoid."""


class RestoidError(Exception):
    """Base class for all restoid errors."""


class PreflightError(RestoidError):
    """A precondition for starting an operation is not met."""

    def __init__(self, message: str, summary: str = None):
        super().__init__(message)
        self.summary = summary or message


class EngineError(RestoidError):
    """Base class for restic engine failures."""


class EngineNotInstalled(EngineError):
    """The restic binary is missing or unusable."""

    def __init__(self, message: str = "Restic is not installed or ready."):
        super().__init__(message)


class EngineCommandError(EngineError):
    """A restic command exited unsuccessfully."""

    def __init__(self, message: str, exit_code: int = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class OperationCancelled(RestoidError):
    """The running operation was cancelled."""

    def __init__(self, message: str = "Operation cancelled."):
        super().__init__(message)


class MalformedMetadata(RestoidError):
    """A metadata sidecar does not match the expected schema."""


class InstallSessionError(RestoidError):
    """Base class for package installer session failures."""


class SessionCreateFailed(InstallSessionError):
    """`pm install-create` did not return a session id."""


class SplitWriteFailed(InstallSessionError):
    """Writing one APK split into a session failed."""


class CommitFailed(InstallSessionError):
    """The installer did not report success on commit."""
