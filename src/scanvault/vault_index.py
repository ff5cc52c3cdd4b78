"""Derived vault metadata under _system/.

INDEX.json maps note paths to their NoteMeta. STRUCTURE.txt lists the top two
levels of the vault tree. Both, along with the topic pages, are regenerated
after every successful batch that touches indexed notes, and are rewritten
only when their content changes.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from .errors import VaultWriteError
from .fileio import write_if_changed
from .models.vault import VaultFileOperation
from .paths import VaultPaths
from .topics import TopicPageStore

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


def render_index(notes: dict) -> str:
    return json.dumps(
        {"version": INDEX_VERSION, "notes": notes},
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
    ) + "\n"


def _visible_children(directory: Path) -> list[Path]:
    return sorted(
        (item for item in directory.iterdir() if not item.name.startswith(".")),
        key=lambda item: item.name,
    )


def render_structure(paths: VaultPaths) -> str:
    """Two-level listing of the vault, directories suffixed with '/'.

    STRUCTURE.txt is always listed under _system/, so the listing does not
    change between the run that creates the file and the next one.
    """
    lines = ["vault/"]
    for item in _visible_children(paths.root):
        if not item.is_dir():
            lines.append(item.name)
            continue
        lines.append(f"{item.name}/")
        names = [f"{child.name}/" if child.is_dir() else child.name for child in _visible_children(item)]
        if item == paths.system and paths.structure_file.name not in names:
            names = sorted(names + [paths.structure_file.name])
        lines.extend(f"  {name}" for name in names)
    return "\n".join(lines) + "\n"


class VaultIndex:
    """Maintain INDEX.json, topic pages and STRUCTURE.txt for a vault."""

    def __init__(self, paths: VaultPaths):
        self.paths = paths
        self.topics = TopicPageStore(paths)

    def load(self) -> tuple[dict, Optional[str]]:
        """Read the current index.

        Returns:
            (notes keyed by path, raw file text or None if there is no index)

        Raises:
            VaultWriteError: If the index exists but cannot be read
        """
        index_file = self.paths.index_file
        if not index_file.exists():
            return {}, None
        try:
            text = index_file.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("Rebuilding undecodable vault index %s", index_file)
            return {}, ""
        except OSError as e:
            raise VaultWriteError(f"Cannot read vault index {index_file}: {e}") from e
        try:
            return dict(json.loads(text).get("notes", {})), text
        except (ValueError, AttributeError, TypeError):
            logger.warning("Rebuilding unreadable vault index %s", index_file)
            return {}, text

    def update(self, applied: Iterable[VaultFileOperation]) -> None:
        """Fold applied operations into the index and refresh derived files.

        Nothing is written for a vault that has no index and gains no
        indexed notes.

        Raises:
            VaultWriteError: If any derived file cannot be read or written
        """
        notes, existing_text = self.load()
        for op in applied:
            if not op.is_write:
                notes.pop(op.path, None)
            elif op.note_meta is not None:
                notes[op.path] = op.note_meta.model_dump(mode="json")

        if not notes and existing_text is None:
            return

        notes = self.topics.refresh(notes)
        try:
            if write_if_changed(self.paths.index_file, render_index(notes)):
                logger.debug("Updated vault index with %d note(s)", len(notes))
            write_if_changed(self.paths.structure_file, render_structure(self.paths))
        except OSError as e:
            raise VaultWriteError(f"Cannot write vault index files in {self.paths.system}: {e}") from e
