"""Pydantic models for transcription and structuring payloads.

These mirror the JSON a model returns, so field names are camelCase on the
wire (``rawTranscript``, ``noteMeta``) and snake_case in Python.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PayloadModel(BaseModel):
    """Shared configuration for wire payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class NoteMeta(PayloadModel):
    """Title, summary, tags and wiki-link targets for a structured note.

    Tags behave as a set (duplicates collapse, first-seen order kept so
    serialized output is deterministic). Links keep order and may repeat;
    repeats are collapsed when entity files are materialized.
    """

    title: str
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="after")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        return list(dict.fromkeys(tags))


class Classification(PayloadModel):
    """Target taxonomy folder chosen by the structuring step."""

    folder: str
    reason: str | None = None


class TranscriptionPayload(PayloadModel):
    """Verbatim transcription of one scanned page."""

    raw_transcript: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    uncertain_segments: list[str] | None = None
    warnings: list[str] | None = None


class StructurePayload(PayloadModel):
    """Markdown note derived from a transcription, plus its classification."""

    markdown: str
    note_meta: NoteMeta
    classification: Classification
    warnings: list[str] | None = None


class FastProcessingPayload(PayloadModel):
    """Single-pass response carrying both transcription and structure."""

    raw_transcript: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    uncertain_segments: list[str] | None = None
    markdown: str
    note_meta: NoteMeta
    classification: Classification
    warnings: list[str] | None = None

    def split(self) -> tuple[TranscriptionPayload, StructurePayload]:
        """Split into the transcription and structure halves."""
        transcript = TranscriptionPayload(
            raw_transcript=self.raw_transcript,
            confidence=self.confidence,
            uncertain_segments=self.uncertain_segments,
            warnings=self.warnings,
        )
        structured = StructurePayload(
            markdown=self.markdown,
            note_meta=self.note_meta,
            classification=self.classification,
            warnings=self.warnings,
        )
        return transcript, structured
