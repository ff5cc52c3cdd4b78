"""Pydantic models for vault writes, file operations and sidecar records."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .payloads import (
    Classification,
    NoteMeta,
    PayloadModel,
    StructurePayload,
    TranscriptionPayload,
)


class VaultFileAction(str, Enum):
    """Action carried by a file operation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class VaultFileOperation(PayloadModel):
    """One create/update/delete against a vault-relative path.

    Content is required for create and update and must be absent for delete.
    ``note_meta`` is set when the written file should also be registered in
    the vault index.
    """

    action: VaultFileAction
    path: str
    content: str | None = None
    note_meta: NoteMeta | None = None

    @model_validator(mode="after")
    def _check_content(self) -> "VaultFileOperation":
        if self.action is VaultFileAction.DELETE:
            if self.content is not None:
                raise ValueError("delete operations must not carry content")
        elif self.content is None:
            raise ValueError(f"{self.action.value} operations require content")
        return self

    @property
    def is_write(self) -> bool:
        return self.action is not VaultFileAction.DELETE


class VaultApplySummary(BaseModel):
    """Final-state outcome of a batch apply."""

    created_or_updated: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    model_config = {"frozen": False}


class VaultWriterInput(BaseModel):
    """Everything recorded for one scanned page.

    ``captured_at`` is deliberately loose (datetime, date, ISO string or None)
    so the writer, not model validation, reports an unresolvable capture time.
    """

    scan_id: str
    batch_id: str | None = None
    captured_at: datetime | date | str | None
    image_path: str
    processed_image_path: str | None = None
    transcript: TranscriptionPayload
    transcript_json: str | None = None
    structured: StructurePayload
    structured_json: str | None = None

    model_config = {"frozen": True}


class VaultWriterResult(BaseModel):
    """Paths written for one VaultWriterInput."""

    note_path: str
    metadata_path: str
    entity_paths: list[str] = Field(default_factory=list)
    summary: VaultApplySummary = Field(default_factory=VaultApplySummary)


class ScanRecord(PayloadModel):
    """Provenance for one scan filed into a daily note."""

    scan_id: str
    batch_id: Optional[str] = None
    captured_at: str = Field(description="ISO8601 UTC with Z suffix")
    image_path: str
    processed_image_path: Optional[str] = None
    note_title: str
    classification: Classification
    transcript: TranscriptionPayload
    structured: StructurePayload
    transcript_json: Optional[str] = None
    structured_json: Optional[str] = None


class NoteMetadataSidecar(BaseModel):
    """Versioned sidecar kept next to each daily note.

    Written as ``01_daily/YYYY-MM-DD.meta.json``; one record per scan.
    """

    version: int = Field(default=1)
    note_path: str
    scans: list[ScanRecord] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def upsert(self, record: ScanRecord) -> None:
        """Replace the record with the same scan id, or append it."""
        for index, existing in enumerate(self.scans):
            if existing.scan_id == record.scan_id:
                self.scans[index] = record
                return
        self.scans.append(record)
