"""Pydantic models for scanvault."""

from .ledger import LedgerEvent, LedgerEventType
from .payloads import (
    Classification,
    FastProcessingPayload,
    NoteMeta,
    StructurePayload,
    TranscriptionPayload,
)
from .vault import (
    NoteMetadataSidecar,
    ScanRecord,
    VaultApplySummary,
    VaultFileAction,
    VaultFileOperation,
    VaultWriterInput,
    VaultWriterResult,
)

__all__ = [
    "LedgerEvent",
    "LedgerEventType",
    # Payloads
    "NoteMeta",
    "Classification",
    "TranscriptionPayload",
    "StructurePayload",
    "FastProcessingPayload",
    # Vault writes
    "VaultFileAction",
    "VaultFileOperation",
    "VaultApplySummary",
    "VaultWriterInput",
    "VaultWriterResult",
    "ScanRecord",
    "NoteMetadataSidecar",
]
