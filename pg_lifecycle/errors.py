"""Error hierarchy for backup, restore and migration operations."""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .runner import Outcome


class LifecycleError(Exception):
    """Base exception for lifecycle operations."""
    category = "error"

    def describe(self) -> str:
        return f"[{self.category}] {self}"


class InvalidArgumentError(LifecycleError):
    """Bad backup class, selector or configuration value."""
    category = "invalid-argument"


class IntegrityCheckError(LifecycleError):
    """A dump artifact failed streaming decompression."""
    category = "integrity-check-failed"


class BackupNotFoundError(LifecycleError):
    """Selector resolution yielded no existing, non-empty artifact."""
    category = "backup-not-found"


class TransferError(LifecycleError):
    """Copying an artifact between hosts failed."""
    category = "transfer-failed"


class CommandFailedError(LifecycleError):
    """A fail-fast command exited non-zero."""
    category = "command-failed"

    def __init__(self, message: str, outcome: Optional["Outcome"] = None):
        super().__init__(message)
        self.outcome = outcome


class RemoteCommandError(CommandFailedError):
    """A fail-fast command on a remote host exited non-zero."""
    category = "remote-command-failed"


class CommandTimeoutError(LifecycleError):
    """A command exceeded its bounded wait."""
    category = "timeout"

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class RemoteTimeoutError(CommandTimeoutError):
    """A remote-shell call exceeded its bounded wait."""
    category = "remote-timeout"
