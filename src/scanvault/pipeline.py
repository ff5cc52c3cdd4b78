"""Scan processing pipeline.

Turns one page image into transcription and structure payloads by prompting a
text-producing model client. The number of passes depends on the quality mode:

- fast: one combined transcribe-and-structure request
- balanced: transcribe, then structure the transcript
- best: balanced, then a refine pass over the structured JSON
"""

import hashlib
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .config import ProcessingQualityMode
from .errors import (
    EmptyMarkdownError,
    EmptyTranscriptError,
    InvalidJSONError,
    MissingTitleError,
)
from .extractor import DecodedResponse, decode_response
from .models.payloads import (
    FastProcessingPayload,
    StructurePayload,
    TranscriptionPayload,
)
from .models.vault import VaultWriterInput
from .paths import VaultFolder

logger = logging.getLogger(__name__)


class ModelStep(str, Enum):
    """Which pass a model request belongs to."""

    TRANSCRIBE = "transcribe"
    STRUCTURE = "structure"
    REFINE = "refine"
    FAST = "fast"


class ScanImage(BaseModel):
    """Encoded page image handed to the model."""

    data: bytes
    mime_type: str = Field(default="image/jpeg")

    model_config = {"frozen": True}


class ModelRequest(BaseModel):
    """One prompt (and optionally the page image) sent to a model client."""

    step: ModelStep
    prompt: str
    image: Optional[ScanImage] = None
    temperature: float = Field(default=0.2)

    model_config = {"frozen": True}


class ModelClient(ABC):
    """Abstract interface for the model that reads and structures pages.

    Implementations return the raw response text; JSON extraction and
    validation happen in the pipeline.
    """

    @abstractmethod
    def generate(self, request: ModelRequest) -> str:
        """Run one request and return the model's text response."""
        pass

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine identifier (e.g., 'fake')."""
        pass


_SCHEMA_TRANSCRIPTION = """{
  "rawTranscript": "string",
  "confidence": 0.0,
  "uncertainSegments": ["string"],
  "warnings": ["string"]
}"""

_SCHEMA_NOTE = """  "markdown": "string",
  "noteMeta": {{
    "title": "string",
    "summary": "string",
    "tags": ["string"],
    "links": ["string"]
  }},
  "classification": {{
    "folder": "{folders}",
    "reason": "string"
  }},
  "warnings": ["string"]"""

_LINK_RULES = (
    "- Mark entities and projects with [[Wiki Link]] syntax in markdown.\n"
    "- Put every distinct wiki-link title (no brackets) in noteMeta.links.\n"
    "- Return bare JSON: no markdown fences, no extra keys."
)


def _note_schema() -> str:
    return "{\n" + _SCHEMA_NOTE.format(folders=VaultFolder.prompt_list()) + "\n}"


def _with_rules(prompt: str, system_rules: str) -> str:
    if system_rules.strip():
        prompt += f"\n\nSystem rules:\n{system_rules.strip()}"
    return prompt


def transcription_prompt() -> str:
    return (
        "Transcribe the handwritten notebook page in the attached image.\n"
        f"Respond with JSON matching this schema:\n{_SCHEMA_TRANSCRIPTION}\n"
        "Rules:\n"
        "- rawTranscript holds the page text verbatim, without interpretation.\n"
        "- Keep line breaks where they aid reading.\n"
        "- Copy any snippet you are unsure about into uncertainSegments.\n"
        "- Return bare JSON: no markdown fences, no extra keys."
    )


def structure_prompt(transcript: str, system_rules: str = "") -> str:
    prompt = (
        "Turn the transcript below into a Markdown note and classify it.\n"
        f"Respond with JSON matching this schema:\n{_note_schema()}\n"
        "Rules:\n"
        "- markdown is a clean note, with sections where they help.\n"
        "- noteMeta.title is required.\n"
        "- classification.folder is one of the listed folders.\n"
        f"{_LINK_RULES}"
    )
    prompt = _with_rules(prompt, system_rules)
    return prompt + f"\n\nTranscript:\n{transcript}"


def refine_prompt(structured_json: str, system_rules: str = "") -> str:
    prompt = (
        "Improve the structured note below using the system rules.\n"
        f"Respond with JSON matching this schema:\n{_note_schema()}\n"
        "Rules:\n"
        "- Do not change the meaning; only improve structure, links and classification.\n"
        f"{_LINK_RULES}"
    )
    prompt = _with_rules(prompt, system_rules)
    return prompt + f"\n\nCurrent structured JSON:\n{structured_json}"


def fast_prompt(system_rules: str = "") -> str:
    schema = (
        "{\n"
        '  "rawTranscript": "string",\n'
        '  "confidence": 0.0,\n'
        '  "uncertainSegments": ["string"],\n'
        + _SCHEMA_NOTE.format(folders=VaultFolder.prompt_list())
        + "\n}"
    )
    prompt = (
        "Transcribe and structure the attached notebook page in a single pass.\n"
        f"Respond with JSON matching this schema:\n{schema}\n"
        "Rules:\n"
        "- rawTranscript holds the page text verbatim, without interpretation.\n"
        "- markdown is a clean note, with sections where they help.\n"
        "- noteMeta.title is required.\n"
        "- classification.folder is one of the listed folders.\n"
        f"{_LINK_RULES}"
    )
    return _with_rules(prompt, system_rules)


def validate_transcript(transcript: TranscriptionPayload) -> None:
    """Raise EmptyTranscriptError for a blank transcript."""
    if not transcript.raw_transcript.strip():
        raise EmptyTranscriptError("Transcription returned no text")


def validate_structure(structured: StructurePayload) -> None:
    """Check markdown, title and classification of a structured note.

    Raises:
        EmptyMarkdownError: Blank markdown
        MissingTitleError: Blank title
        InvalidJSONError: Classification folder outside the taxonomy
    """
    if not structured.markdown.strip():
        raise EmptyMarkdownError("Structuring returned empty markdown")
    if not structured.note_meta.title.strip():
        raise MissingTitleError("Structured note has no title")
    if VaultFolder.from_classification(structured.classification.folder) is None:
        raise InvalidJSONError(
            f"Unknown classification folder {structured.classification.folder!r}"
        )


@dataclass(frozen=True)
class ScanProcessingOutput:
    """Validated payloads for one page plus the JSON they were decoded from."""

    transcript: TranscriptionPayload
    transcript_json: str
    structured: StructurePayload
    structured_json: str


class ScanProcessingPipeline:
    """Runs the model passes for one page according to the quality mode."""

    def __init__(
        self,
        client: ModelClient,
        mode: ProcessingQualityMode = ProcessingQualityMode.BALANCED,
        system_rules: str = "",
    ):
        self.client = client
        self.mode = mode
        self.system_rules = system_rules

    def process(self, image: ScanImage) -> ScanProcessingOutput:
        """Transcribe and structure one page image.

        Raises:
            InvalidJSONError: A response held no usable JSON or an unknown folder
            EmptyTranscriptError: Blank transcript
            EmptyMarkdownError: Blank markdown
            MissingTitleError: Blank title
        """
        logger.debug("Processing page with %s in %s mode", self.client.engine_name, self.mode.value)
        if self.mode is ProcessingQualityMode.FAST:
            return self._process_fast(image)

        transcript = self._transcribe(image)
        validate_transcript(transcript.value)

        structured = self._request(
            StructurePayload,
            ModelStep.STRUCTURE,
            structure_prompt(transcript.value.raw_transcript, self.system_rules),
            temperature=0.2,
        )
        validate_structure(structured.value)

        if self.mode is ProcessingQualityMode.BEST:
            structured = self._request(
                StructurePayload,
                ModelStep.REFINE,
                refine_prompt(structured.raw_json, self.system_rules),
                temperature=0.15,
            )
            validate_structure(structured.value)

        return ScanProcessingOutput(
            transcript=transcript.value,
            transcript_json=transcript.raw_json,
            structured=structured.value,
            structured_json=structured.raw_json,
        )

    def _process_fast(self, image: ScanImage) -> ScanProcessingOutput:
        decoded = self._request(
            FastProcessingPayload,
            ModelStep.FAST,
            fast_prompt(self.system_rules),
            image=image,
            temperature=0.2,
        )
        transcript, structured = decoded.value.split()
        validate_transcript(transcript)
        validate_structure(structured)
        return ScanProcessingOutput(
            transcript=transcript,
            transcript_json=decoded.raw_json,
            structured=structured,
            structured_json=decoded.raw_json,
        )

    def _transcribe(self, image: ScanImage) -> DecodedResponse[TranscriptionPayload]:
        return self._request(
            TranscriptionPayload,
            ModelStep.TRANSCRIBE,
            transcription_prompt(),
            image=image,
            temperature=0.1,
        )

    def _request(self, model_cls, step, prompt, image=None, temperature=0.2):
        text = self.client.generate(
            ModelRequest(step=step, prompt=prompt, image=image, temperature=temperature)
        )
        return decode_response(model_cls, text)


def build_writer_input(
    output: ScanProcessingOutput,
    scan_id: str,
    captured_at: datetime | date | str,
    image_path: str,
    batch_id: Optional[str] = None,
    processed_image_path: Optional[str] = None,
) -> VaultWriterInput:
    """Assemble the writer input for a processed page."""
    return VaultWriterInput(
        scan_id=scan_id,
        batch_id=batch_id,
        captured_at=captured_at,
        image_path=image_path,
        processed_image_path=processed_image_path,
        transcript=output.transcript,
        transcript_json=output.transcript_json,
        structured=output.structured,
        structured_json=output.structured_json,
    )


class FakeModelClient(ModelClient):
    """Deterministic fake model client for testing.

    The page image bytes are read as UTF-8 text and treated as the
    handwriting. Structure is derived from that text with simple heuristics:
    the first line is the title and ``[[...]]`` spans become links. Responses
    wrap the JSON in a line of prose and a code fence, like real models do.
    Every request is kept in ``requests``.
    """

    def __init__(self, folder: str = VaultFolder.DAILY.value):
        self.folder = folder
        self.requests: list[ModelRequest] = []

    @property
    def engine_name(self) -> str:
        return "fake"

    def generate(self, request: ModelRequest) -> str:
        self.requests.append(request)
        if request.step is ModelStep.TRANSCRIBE:
            payload = self._transcription(self._page_text(request))
        elif request.step is ModelStep.STRUCTURE:
            transcript = request.prompt.rsplit("\n\nTranscript:\n", 1)[-1]
            payload = self._structure(transcript)
        elif request.step is ModelStep.REFINE:
            current = request.prompt.rsplit("\n\nCurrent structured JSON:\n", 1)[-1]
            payload = json.loads(current)
            tags = payload["noteMeta"].get("tags", [])
            payload["noteMeta"]["tags"] = tags + ["refined"] if "refined" not in tags else tags
        else:
            text = self._page_text(request)
            payload = {**self._transcription(text), **self._structure(text)}
        return f"Here is the result:\n```json\n{json.dumps(payload, indent=2)}\n```\n"

    def _page_text(self, request: ModelRequest) -> str:
        if request.image is None:
            return ""
        return request.image.data.decode("utf-8", errors="replace")

    def _transcription(self, text: str) -> dict:
        digest = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        return {
            "rawTranscript": text,
            "confidence": round(0.7 + (digest % 30) / 100.0, 2),
            "uncertainSegments": [],
            "warnings": [],
        }

    def _structure(self, transcript: str) -> dict:
        lines = [line.strip() for line in transcript.splitlines() if line.strip()]
        title = lines[0].lstrip("#").strip() if lines else ""
        body = "\n".join(lines[1:])
        links = list(dict.fromkeys(re.findall(r"\[\[([^\]|]+)(?:\|[^\]]*)?\]\]", transcript)))
        tags = sorted({word.lstrip("#").lower() for word in transcript.split() if word.startswith("#") and len(word) > 1})
        return {
            "markdown": f"# {title}\n\n{body}".strip() if title else "",
            "noteMeta": {
                "title": title,
                "summary": lines[1][:120] if len(lines) > 1 else None,
                "tags": tags,
                "links": links,
            },
            "classification": {"folder": self.folder, "reason": "fake classifier"},
            "warnings": [],
        }


MODEL_ENGINES = ("fake", "auto")


def get_model_client(engine: str = "auto", folder: str = VaultFolder.DAILY.value) -> ModelClient:
    """Get the model client for an engine name.

    Args:
        engine: 'fake' or 'auto' (the deterministic offline client is the only
            one bundled, so 'auto' resolves to it)
        folder: Classification folder the fake client reports

    Returns:
        ModelClient implementation

    Raises:
        ValueError: If the engine is unknown
    """
    if engine in MODEL_ENGINES:
        return FakeModelClient(folder=folder)
    raise ValueError(f"Unknown engine {engine!r} (expected one of: {', '.join(MODEL_ENGINES)})")
