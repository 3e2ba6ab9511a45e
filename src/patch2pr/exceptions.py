"""Exceptions for patch2pr."""

from __future__ import annotations


class Patch2PRError(Exception):
    """Base class for all patch2pr errors."""


# ---------------------------------------------------------------------------
# Consistency errors: the patch series does not match the base state
# ---------------------------------------------------------------------------

class ApplyError(Patch2PRError):
    """Raised when a patch cannot be staged against the current base."""


class ExistingEntryError(ApplyError):
    """Raised when a patch creates a file that already exists."""


class MissingEntryError(ApplyError):
    """Raised when a patch modifies or deletes a file that does not exist."""


class NothingPendingError(ApplyError):
    """Raised when a tree or commit is requested with no staged changes."""


class UnsupportedError(Patch2PRError):
    """Raised when a patch needs a feature the selected strategy lacks.

    Callers can catch this to retry the patch with the tree strategy.
    """

    def __str__(self) -> str:
        return f"unsupported: {super().__str__()}"


def is_unsupported(exc: BaseException | None) -> bool:
    """Return True if *exc* or any exception in its chain is unsupported."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, UnsupportedError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False


class PatchApplyError(Patch2PRError):
    """Raised when a file patch does not apply to its prior content."""


class PatchParseError(Patch2PRError, ValueError):
    """Raised when patch text is not a valid unified diff."""


# ---------------------------------------------------------------------------
# Remote errors
# ---------------------------------------------------------------------------

class RemoteError(Patch2PRError):
    """Raised when a remote API call fails.

    *operation* and *target* are filled in by the caller that issued the
    request (e.g. ``"get tree"`` and the tree hash) so the message names
    the object involved.
    """

    status: int | None = None

    def __init__(self, message: str, *, status: int | None = None,
                 operation: str | None = None, target: str | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.operation = operation
        self.target = target

    def annotate(self, operation: str, target: str | None) -> None:
        """Record the failing operation unless a deeper call already did."""
        if self.operation is None:
            self.operation = operation
            self.target = target

    def __str__(self) -> str:
        if self.operation is None:
            return self.message
        if self.target:
            return f"{self.operation} {self.target} failed: {self.message}"
        return f"{self.operation} failed: {self.message}"


class NotFoundError(RemoteError):
    """Raised when a remote object, ref, or repository does not exist."""

    status = 404


class ConflictError(RemoteError):
    """Raised when a branch no longer references the expected commit."""

    status = 409


class NotFastForwardError(ConflictError):
    """Raised when a ref update is not a fast-forward and force is off."""

    status = 422


# ---------------------------------------------------------------------------
# Cancellation and polling
# ---------------------------------------------------------------------------

class CancelledError(Patch2PRError):
    """Raised when an operation is cancelled before it completes."""


class DeadlineExceededError(CancelledError):
    """Raised when an operation's deadline passes."""


class ForkTimeoutError(Patch2PRError):
    """Raised when a new fork does not become ready before the deadline."""
