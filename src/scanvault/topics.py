"""Generated topic pages under _topics/, one per tag found in the vault index.

A topic page lists every indexed note carrying its tag. Generated pages start
with TOPIC_PAGE_MARKER; a page without the marker belongs to the user and is
never overwritten or pruned.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from .errors import VaultWriteError
from .fileio import write_if_changed
from .models.payloads import NoteMeta
from .paths import SYSTEM_DIRNAME, TOPICS_DIRNAME, VaultFolder, VaultPaths

logger = logging.getLogger(__name__)

TOPIC_PAGE_MARKER = "<!-- scanvault:topic-page -->"

# Roots whose notes never feed topic pages
EXCLUDED_ROOTS = {SYSTEM_DIRNAME, TOPICS_DIRNAME, "scans", VaultFolder.TASKS.value, "tasks"}


@dataclass
class TopicPage:
    """One tag and the notes that carry it."""

    title: str
    notes: list[tuple[str, str]] = field(default_factory=list)  # (title, path)

    @property
    def file_name(self) -> str:
        return topic_file_name(self.title)

    @property
    def path(self) -> str:
        return f"{TOPICS_DIRNAME}/{self.file_name}"


def clean_tag(tag: str) -> str:
    """Strip whitespace and leading '#' characters."""
    return tag.strip().lstrip("#").strip()


def tag_key(tag: str) -> str:
    """Key under which spellings of the same tag are merged."""
    return tag.lower().strip().replace("_", " ").replace("-", " ")


def topic_file_name(title: str) -> str:
    """File name for a topic page title ('topic.md' if nothing usable is left)."""
    mapped = "".join(ch if ch.isalnum() or ch in " -_" else "-" for ch in title)
    base = re.sub(r"-{2,}", "-", mapped.replace(" ", "-")).strip("-_ ")
    return f"{base or 'topic'}.md"


def _includes(path: str) -> bool:
    root = path.split("/", 1)[0]
    return root not in EXCLUDED_ROOTS and path.lower().endswith(".md")


def _note_title(path: str, title: str) -> str:
    if title.strip():
        return title.strip()
    return Path(path).stem.replace("-", " ") or path


def build_topic_pages(notes: dict) -> list[TopicPage]:
    """Group indexed notes by tag.

    Args:
        notes: Index entries keyed by vault-relative path

    Returns:
        Topic pages sorted by title, each with notes sorted by title
    """
    pages: dict[str, TopicPage] = {}
    for path, entry in notes.items():
        if not _includes(path):
            continue
        note = (_note_title(path, entry.get("title") or ""), path)
        for tag in entry.get("tags") or []:
            cleaned = clean_tag(tag)
            key = tag_key(cleaned)
            if not key:
                continue
            page = pages.setdefault(key, TopicPage(title=cleaned))
            if note not in page.notes:
                page.notes.append(note)

    for page in pages.values():
        page.notes.sort(key=lambda note: (note[0].casefold(), note[1]))
    return sorted(pages.values(), key=lambda page: (page.title.casefold(), page.title))


def render_topic_page(page: TopicPage) -> str:
    lines = [TOPIC_PAGE_MARKER, f"# Topic: {page.title}", "", "## Notes"]
    for title, path in page.notes:
        lines.append(f"- [{title}]({quote('../' + path, safe='/.')})")
    return "\n".join(lines) + "\n"


def topic_meta(page: TopicPage) -> NoteMeta:
    return NoteMeta(title=page.title, summary=f"Topic page for {page.title}.", tags=["topic"])


class TopicPageStore:
    """Keep _topics/ in step with the tags of the indexed notes."""

    def __init__(self, paths: VaultPaths):
        self.paths = paths

    def refresh(self, notes: dict) -> dict:
        """Write current topic pages and prune stale generated ones.

        Args:
            notes: Index entries keyed by vault-relative path

        Returns:
            The entries with topic pages added or removed

        Raises:
            VaultWriteError: If a topic page cannot be read, written or removed
        """
        notes = dict(notes)
        pages = build_topic_pages(notes)
        expected = {page.file_name for page in pages}

        try:
            for removed in self._prune(expected):
                notes.pop(removed, None)
            for page in pages:
                if self._write(page):
                    notes[page.path] = topic_meta(page).model_dump(mode="json")
        except (OSError, UnicodeDecodeError) as e:
            raise VaultWriteError(f"Cannot refresh topic pages in {self.paths.topics}: {e}") from e
        return notes

    def _prune(self, expected: set[str]) -> list[str]:
        if not self.paths.topics.is_dir():
            return []
        removed = []
        for item in sorted(self.paths.topics.iterdir()):
            if item.name.startswith(".") or item.suffix.lower() != ".md" or not item.is_file():
                continue
            if item.name in expected or not self._is_generated(item):
                continue
            item.unlink()
            removed.append(self.paths.relative(item))
            logger.info("Removed stale topic page %s", item.name)
        return removed

    def _write(self, page: TopicPage) -> bool:
        """Write a page unless the user owns the file. Returns False if skipped."""
        target = self.paths.absolute(page.path)
        if target.exists() and target.read_text(encoding="utf-8").strip() and not self._is_generated(target):
            logger.warning("Leaving hand-written topic page %s untouched", page.path)
            return False
        write_if_changed(target, render_topic_page(page))
        return True

    @staticmethod
    def _is_generated(path: Path) -> bool:
        return TOPIC_PAGE_MARKER in path.read_text(encoding="utf-8")
