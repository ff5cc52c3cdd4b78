"""Path management and vault structure for scanvault.

Module-level functions map domain identity (capture date, note, entity name)
to vault-relative POSIX paths and never touch the filesystem, except
``resolve_in_vault`` which resolves symlinks to confirm containment.
``VaultPaths`` materializes the layout under a concrete root.
"""

import re
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional

from .errors import CaptureTimeUnresolvableError, PathOutsideVaultError

SYSTEM_DIRNAME = "_system"
TOPICS_DIRNAME = "_topics"
METADATA_SUFFIX = ".meta.json"


class VaultFolder(str, Enum):
    """Fixed top-level classification taxonomy."""

    INBOX = "00_inbox"
    DAILY = "01_daily"
    PROJECTS = "10_projects"
    MEETINGS = "11_meetings"
    TASKS = "13_tasks"
    LEARNING = "20_learning"

    @classmethod
    def from_classification(cls, folder: str) -> Optional["VaultFolder"]:
        """Map a classification folder (or its simple alias) onto the taxonomy.

        Args:
            folder: Folder identifier as returned by the structuring step

        Returns:
            Matching VaultFolder, or None if it is not part of the taxonomy
        """
        return _FOLDER_ALIASES.get(folder.strip().lower())

    @classmethod
    def prompt_list(cls) -> str:
        """Folder ids joined for inclusion in a prompt schema."""
        return "|".join(folder.value for folder in cls)


_FOLDER_ALIASES = {
    "00_inbox": VaultFolder.INBOX,
    "inbox": VaultFolder.INBOX,
    "01_daily": VaultFolder.DAILY,
    "daily": VaultFolder.DAILY,
    "10_projects": VaultFolder.PROJECTS,
    "projects": VaultFolder.PROJECTS,
    "project": VaultFolder.PROJECTS,
    "11_meetings": VaultFolder.MEETINGS,
    "meetings": VaultFolder.MEETINGS,
    "meeting": VaultFolder.MEETINGS,
    "13_tasks": VaultFolder.TASKS,
    "tasks": VaultFolder.TASKS,
    "task": VaultFolder.TASKS,
    "20_learning": VaultFolder.LEARNING,
    "learning": VaultFolder.LEARNING,
    "learn": VaultFolder.LEARNING,
}


def _parse_capture(captured_at: datetime | date | str | None) -> datetime | date:
    value = captured_at
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # Date-only strings carry no time of day
        parse = date.fromisoformat if len(text) <= 10 else datetime.fromisoformat
        try:
            value = parse(text)
        except ValueError:
            raise CaptureTimeUnresolvableError(captured_at) from None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return value
    raise CaptureTimeUnresolvableError(captured_at)


def capture_date(captured_at: datetime | date | str | None) -> date:
    """Normalize a capture timestamp to its UTC calendar date.

    Naive datetimes are taken to be UTC already. Strings are parsed as
    ISO 8601 (a trailing ``Z`` is accepted).

    Args:
        captured_at: Capture timestamp

    Returns:
        Calendar date of the capture in UTC

    Raises:
        CaptureTimeUnresolvableError: If the value cannot be read as a date
    """
    value = _parse_capture(captured_at)
    if isinstance(value, datetime):
        return value.date()
    return value


def capture_datetime(captured_at: datetime | date | str | None) -> Optional[datetime]:
    """Normalize a capture timestamp to an aware UTC datetime.

    Returns None when only a calendar date is known.

    Raises:
        CaptureTimeUnresolvableError: If the value cannot be read as a date
    """
    value = _parse_capture(captured_at)
    return value if isinstance(value, datetime) else None


def daily_note_path(captured_at: datetime | date | str | None) -> str:
    """Vault-relative path of the daily note for a capture.

    Returns:
        ``01_daily/YYYY-MM-DD.md``
    """
    day = capture_date(captured_at)
    return f"{VaultFolder.DAILY.value}/{day.isoformat()}.md"


def metadata_path(note_path: str) -> str:
    """Vault-relative path of the metadata sidecar paired with a note.

    ``01_daily/2026-01-20.md`` -> ``01_daily/2026-01-20.meta.json``
    """
    normalized = PurePosixPath(normalize_vault_path(note_path))
    return str(normalized.with_name(normalized.stem + METADATA_SUFFIX))


def slugify_entity_name(name: str) -> Optional[str]:
    """Turn an entity/link name into a filename-safe slug.

    Whitespace becomes ``-``, case is preserved and anything that is not a
    word character, ``-`` or ``.`` is dropped. Returns None when nothing
    usable remains.
    """
    slug = re.sub(r"\s+", "-", name.strip())
    slug = re.sub(r"[^\w\-.]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    slug = slug.strip("-._")
    return slug or None


def entity_path(link_name: str) -> str:
    """Vault-relative path of the entity stub for a link name.

    Raises:
        ValueError: If the name has no filename-safe characters
    """
    slug = slugify_entity_name(link_name)
    if slug is None:
        raise ValueError(f"Entity name {link_name!r} has no filename-safe characters")
    return f"{VaultFolder.PROJECTS.value}/{slug}.md"


def normalize_vault_path(path: str) -> str:
    """Normalize a vault-relative path.

    Leading separators and a leading ``vault/`` prefix are dropped, empty and
    ``.`` segments are collapsed and backslashes become ``/``.

    Raises:
        PathOutsideVaultError: On ``..`` segments or a path naming the root
    """
    text = path.strip().replace("\\", "/")
    segments = [segment for segment in text.split("/") if segment not in ("", ".")]
    if segments and segments[0] == "vault" and len(segments) > 1:
        segments = segments[1:]
    if ".." in segments:
        raise PathOutsideVaultError(path)
    if not segments:
        raise PathOutsideVaultError(path, "does not name a file inside the vault")
    return "/".join(segments)


def is_reserved_path(path: str) -> bool:
    """Whether a normalized path lives under the vault's system folder."""
    return path.split("/", 1)[0] == SYSTEM_DIRNAME


def resolve_in_vault(vault_root: Path, path: str) -> Path:
    """Resolve a vault-relative path to an absolute path inside the root.

    Symlinks are resolved, so a link pointing out of the vault is rejected.

    Raises:
        PathOutsideVaultError: If the resolved path leaves the vault root
    """
    normalized = normalize_vault_path(path)
    root = vault_root.resolve()
    candidate = (root / normalized).resolve()
    if candidate == root or root not in candidate.parents:
        raise PathOutsideVaultError(path)
    return candidate


class VaultPaths:
    """Manages paths within the vault structure."""

    def __init__(self, vault_root: Path):
        """Initialize vault paths from root directory.

        Args:
            vault_root: Root directory of the vault
        """
        self.root = vault_root

        # Taxonomy folders
        self.inbox = vault_root / VaultFolder.INBOX.value
        self.daily = vault_root / VaultFolder.DAILY.value
        self.projects = vault_root / VaultFolder.PROJECTS.value
        self.meetings = vault_root / VaultFolder.MEETINGS.value
        self.tasks = vault_root / VaultFolder.TASKS.value
        self.learning = vault_root / VaultFolder.LEARNING.value

        # System
        self.system = vault_root / SYSTEM_DIRNAME
        self.ledger_file = self.system / "ledger.jsonl"
        self.index_file = self.system / "INDEX.json"
        self.structure_file = self.system / "STRUCTURE.txt"

        # Generated topic pages (created on demand)
        self.topics = vault_root / TOPICS_DIRNAME

    @classmethod
    def from_config(cls, config) -> "VaultPaths":
        """Create VaultPaths from a ScanVaultConfig."""
        return cls(config.vault_path)

    def get_all_directories(self) -> list[Path]:
        """Get list of all directories that should exist in the vault."""
        return [
            self.inbox,
            self.daily,
            self.projects,
            self.meetings,
            self.tasks,
            self.learning,
            self.system,
        ]

    def absolute(self, relative_path: str) -> Path:
        """Join a vault-relative path onto the root (no containment check)."""
        return self.root / normalize_vault_path(relative_path)

    def relative(self, path: Path) -> str:
        """Express an absolute path under the root as a vault-relative path."""
        return path.relative_to(self.root).as_posix()
