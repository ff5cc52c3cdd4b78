"""Error taxonomy for scanvault.

Every failure is reported to the immediate caller. Filesystem errors are
chained onto these exceptions (``raise ... from exc``) with the offending
vault-relative path attached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models.vault import VaultFileOperation


class ScanVaultError(Exception):
    """Base class for all scanvault errors."""


class InvalidJSONError(ScanVaultError):
    """No parseable JSON object was found, or it did not match the schema."""


class PathOutsideVaultError(ScanVaultError):
    """A vault-relative path would resolve outside the vault root."""

    def __init__(self, path: str, reason: str = "resolves outside the vault root"):
        self.path = path
        self.reason = reason
        super().__init__(f"Path {path!r} {reason}")


class CaptureTimeUnresolvableError(ScanVaultError):
    """A capture timestamp could not be normalized to a calendar date."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Cannot resolve capture time from {value!r}")


class PartialBatchError(ScanVaultError):
    """An operation failed mid-batch.

    Operations before the failing one were applied and stay applied; nothing
    after it was attempted. Callers decide whether to compensate.

    Attributes:
        applied: Operations applied before the failure, in order
        failed: The operation that raised
        path: Normalized vault-relative path of the failed operation
        cause: Underlying exception
    """

    def __init__(
        self,
        applied: list["VaultFileOperation"],
        failed: "VaultFileOperation",
        path: str,
        cause: BaseException,
    ):
        self.applied = applied
        self.failed = failed
        self.path = path
        self.cause = cause
        super().__init__(
            f"{failed.action.value} {path!r} failed after {len(applied)} applied operation(s): {cause}"
        )

    @property
    def applied_paths(self) -> list[str]:
        return [op.path for op in self.applied]


class VaultWriteError(ScanVaultError):
    """The writer could not compute its operations from current vault state."""


class FolderSyncError(ScanVaultError):
    """Mirroring the vault stopped at a file (or destination) that failed."""

    def __init__(self, path: str, cause: BaseException | None = None, message: str | None = None):
        self.path = path
        self.cause = cause
        detail = message or (str(cause) if cause else "sync failed")
        super().__init__(f"Sync failed at {path!r}: {detail}")


class ProcessingError(ScanVaultError):
    """A model response decoded but failed content validation."""


class EmptyTranscriptError(ProcessingError):
    """The transcription step returned blank text."""


class EmptyMarkdownError(ProcessingError):
    """The structuring step returned blank markdown."""


class MissingTitleError(ProcessingError):
    """The structuring step returned a note without a title."""
