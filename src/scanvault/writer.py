"""File a processed scan into the vault.

One scan becomes one marker-delimited section in the daily note for its
capture date, one record in that note's metadata sidecar, and a stub note
for every linked entity that does not exist yet. The writer only computes
operations; VaultApplyService performs them as a single batch.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .apply import VaultApplyService
from .errors import VaultWriteError
from .ledger import LedgerWriter
from .models.payloads import NoteMeta
from .models.vault import (
    NoteMetadataSidecar,
    ScanRecord,
    VaultFileAction,
    VaultFileOperation,
    VaultWriterInput,
    VaultWriterResult,
)
from .paths import (
    capture_date,
    capture_datetime,
    daily_note_path,
    entity_path,
    metadata_path,
    resolve_in_vault,
    slugify_entity_name,
)

logger = logging.getLogger(__name__)

# Delimiter markers around each scan section (one per scan id)
SECTION_START_MARKER = "<!-- SCANVAULT_SECTION_START:{scan_id} -->"
SECTION_END_MARKER = "<!-- SCANVAULT_SECTION_END:{scan_id} -->"

DEFAULT_TITLE = "Scan Notes"
SECTION_SEPARATOR = "---"


@dataclass
class WritePlan:
    """Operations computed for one scan, before they are applied."""

    note_path: str
    metadata_path: str
    operations: list[VaultFileOperation] = field(default_factory=list)
    entity_paths: list[str] = field(default_factory=list)
    section_appended: bool = True


def raw_transcript_fence(text: str) -> str:
    """Backtick fence longer than any backtick run inside text (minimum 3)."""
    longest = max((len(run) for run in re.findall(r"`+", text)), default=0)
    return "`" * max(3, longest + 1)


def entity_stub(name: str, date_str: str, note_path: str) -> str:
    """Initial content of a newly discovered entity note."""
    note_link = note_path[:-3] if note_path.endswith(".md") else note_path
    return f"# {name}\n\n- First mentioned in [[{note_link}|{date_str}]]\n"


def unique_entity_links(links: list[str]) -> list[tuple[str, str]]:
    """Strip, drop empties and dedupe links by slug, keeping first spelling.

    Returns:
        List of (display name, slug) pairs in first-seen order
    """
    seen: set[str] = set()
    result = []
    for link in links:
        name = link.strip()
        if not name:
            continue
        slug = slugify_entity_name(name)
        if slug is None:
            logger.warning("Skipping link with no filename-safe characters: %r", link)
            continue
        if slug in seen:
            continue
        seen.add(slug)
        result.append((name, slug))
    return result


def build_section(writer_input: VaultWriterInput) -> str:
    """Render the daily note section for one scan."""
    structured = writer_input.structured
    transcript = writer_input.transcript
    meta = structured.note_meta
    title = meta.title.strip() or DEFAULT_TITLE

    captured = capture_datetime(writer_input.captured_at)
    captured_str = (
        captured.strftime("%H:%M UTC")
        if captured
        else capture_date(writer_input.captured_at).isoformat()
    )
    folder_line = f"Folder: {structured.classification.folder}"
    if structured.classification.reason:
        folder_line += f" ({structured.classification.reason.strip()})"

    lines = [
        SECTION_START_MARKER.format(scan_id=writer_input.scan_id),
        f"## {title}",
        f"Captured: {captured_str}",
        f"Batch: {writer_input.batch_id or '-'}",
        f"Scan: {writer_input.scan_id}",
        folder_line,
    ]
    if meta.tags:
        lines.append("Tags: " + " ".join(f"#{tag}" for tag in meta.tags))
    entities = unique_entity_links(meta.links)
    if entities:
        lines.append(
            "Links: " + ", ".join(f"[[10_projects/{slug}|{name}]]" for name, slug in entities)
        )
    lines.append("")

    if meta.summary and meta.summary.strip():
        lines.append(f"**Summary:** {meta.summary.strip()}")
        lines.append("")

    markdown = structured.markdown.strip()
    if markdown:
        lines.append(markdown)
        lines.append("")

    fence = raw_transcript_fence(transcript.raw_transcript)
    lines.append("### Raw transcription")
    lines.append(fence)
    lines.append(transcript.raw_transcript.rstrip("\n"))
    lines.append(fence)
    lines.append("")

    if transcript.uncertain_segments:
        lines.append("### Uncertain segments")
        for segment in transcript.uncertain_segments:
            lines.append(f"- {segment}")
        lines.append("")

    warnings = list(dict.fromkeys((transcript.warnings or []) + (structured.warnings or [])))
    if warnings:
        lines.append("### Warnings")
        for warning in warnings:
            lines.append(f"- {warning}")
        lines.append("")

    lines.append(SECTION_END_MARKER.format(scan_id=writer_input.scan_id))
    return "\n".join(lines)


def build_scan_record(writer_input: VaultWriterInput) -> ScanRecord:
    """Sidecar record for one scan."""
    captured = capture_datetime(writer_input.captured_at)
    captured_str = (
        captured.strftime("%Y-%m-%dT%H:%M:%SZ")
        if captured
        else capture_date(writer_input.captured_at).isoformat()
    )
    structured = writer_input.structured
    return ScanRecord(
        scan_id=writer_input.scan_id,
        batch_id=writer_input.batch_id,
        captured_at=captured_str,
        image_path=writer_input.image_path,
        processed_image_path=writer_input.processed_image_path,
        note_title=structured.note_meta.title.strip() or DEFAULT_TITLE,
        classification=structured.classification,
        transcript=writer_input.transcript,
        structured=structured,
        transcript_json=writer_input.transcript_json,
        structured_json=writer_input.structured_json,
    )


def daily_note_meta(date_str: str, sidecar: NoteMetadataSidecar) -> NoteMeta:
    """Index metadata for a daily note, aggregated over all of its scans."""
    tags: list[str] = []
    links: list[str] = []
    for record in sidecar.scans:
        tags.extend(record.structured.note_meta.tags)
        links.extend(name for name, _ in unique_entity_links(record.structured.note_meta.links))
    titles = [record.note_title for record in sidecar.scans]
    return NoteMeta(
        title=date_str,
        summary="; ".join(dict.fromkeys(titles)) or None,
        tags=tags,
        links=list(dict.fromkeys(links)),
    )


class VaultWriter:
    """Turns a VaultWriterInput into vault file operations and applies them."""

    def __init__(
        self,
        vault_root: Path,
        apply_service: Optional[VaultApplyService] = None,
        ledger_writer: Optional[LedgerWriter] = None,
    ):
        """Initialize the writer.

        Args:
            vault_root: Root directory of the vault
            apply_service: Service that executes the batch (default: one for vault_root)
            ledger_writer: Optional ledger for SCAN_WRITTEN events
        """
        self.vault_root = vault_root
        self.apply_service = apply_service or VaultApplyService(vault_root, ledger_writer)
        self.ledger_writer = ledger_writer

    def apply(self, writer_input: VaultWriterInput) -> VaultWriterResult:
        """Write one scan into the vault.

        Raises:
            CaptureTimeUnresolvableError: If captured_at cannot be dated
            VaultWriteError: If the existing note or sidecar cannot be read
            PathOutsideVaultError: Propagated from the apply service
            PartialBatchError: Propagated from the apply service
        """
        plan = self.build_operations(writer_input)
        summary = self.apply_service.apply(plan.operations)

        if self.ledger_writer:
            self.ledger_writer.append_event(
                event_type="SCAN_WRITTEN",
                scan_id=writer_input.scan_id,
                payload={
                    "note_path": plan.note_path,
                    "metadata_path": plan.metadata_path,
                    "entity_paths": plan.entity_paths,
                    "section_appended": plan.section_appended,
                },
            )
        logger.info("Filed scan %s into %s", writer_input.scan_id, plan.note_path)

        return VaultWriterResult(
            note_path=plan.note_path,
            metadata_path=plan.metadata_path,
            entity_paths=plan.entity_paths,
            summary=summary,
        )

    def build_operations(self, writer_input: VaultWriterInput) -> WritePlan:
        """Compute the operations for one scan from the current vault state."""
        note_path = daily_note_path(writer_input.captured_at)
        sidecar_path = metadata_path(note_path)
        date_str = capture_date(writer_input.captured_at).isoformat()
        plan = WritePlan(note_path=note_path, metadata_path=sidecar_path)

        # Sidecar first so the note's index entry reflects every scan
        existing_sidecar = self._read_existing(sidecar_path)
        if existing_sidecar is None:
            sidecar = NoteMetadataSidecar(note_path=note_path)
        else:
            try:
                sidecar = NoteMetadataSidecar.model_validate_json(existing_sidecar)
            except ValidationError as e:
                raise VaultWriteError(f"Unreadable metadata sidecar {sidecar_path}: {e}") from e
            sidecar.note_path = note_path
        sidecar.upsert(build_scan_record(writer_input))

        existing_note = self._read_existing(note_path)
        start_marker = SECTION_START_MARKER.format(scan_id=writer_input.scan_id)
        if existing_note is not None and start_marker in existing_note:
            logger.info("Scan %s already filed in %s", writer_input.scan_id, note_path)
            plan.section_appended = False
        else:
            section = build_section(writer_input)
            action = VaultFileAction.CREATE if existing_note is None else VaultFileAction.UPDATE
            if existing_note is None or not existing_note.strip():
                content = f"# {date_str}\n\n{section}\n"
            else:
                content = _append_section(existing_note, section)
            plan.operations.append(
                VaultFileOperation(
                    action=action,
                    path=note_path,
                    content=content,
                    note_meta=daily_note_meta(date_str, sidecar),
                )
            )

        plan.operations.append(
            VaultFileOperation(
                action=VaultFileAction.UPDATE if existing_sidecar is not None else VaultFileAction.CREATE,
                path=sidecar_path,
                content=sidecar.model_dump_json(by_alias=True, indent=2) + "\n",
            )
        )

        for name, _slug in unique_entity_links(writer_input.structured.note_meta.links):
            path = entity_path(name)
            if resolve_in_vault(self.vault_root, path).exists():
                continue
            plan.operations.append(
                VaultFileOperation(
                    action=VaultFileAction.CREATE,
                    path=path,
                    content=entity_stub(name, date_str, note_path),
                    note_meta=NoteMeta(title=name),
                )
            )
            plan.entity_paths.append(path)

        return plan

    def _read_existing(self, relative_path: str) -> Optional[str]:
        target = resolve_in_vault(self.vault_root, relative_path)
        if not target.exists():
            return None
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise VaultWriteError(f"Cannot read {relative_path}: {e}") from e


def _append_section(existing: str, section: str) -> str:
    """Append a section without touching the existing text."""
    prefix = existing if existing.endswith("\n") else existing + "\n"
    has_section = "\n## " in existing or "<!-- SCANVAULT_SECTION_START:" in existing
    separator = f"\n{SECTION_SEPARATOR}\n\n" if has_section else "\n"
    return f"{prefix}{separator}{section}\n"
