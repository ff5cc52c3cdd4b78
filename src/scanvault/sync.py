"""Mirror the vault tree into an external folder."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import FolderSyncError
from .ledger import LedgerWriter

logger = logging.getLogger(__name__)


@dataclass
class FolderSyncResult:
    """Vault-relative paths copied and skipped by one sync."""

    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class FolderSyncer:
    """Copy every regular file of the vault to the same path under a destination.

    Files that exist only at the destination are left alone. Symlinks and
    other non-regular entries are skipped. The first folder that cannot be
    listed or file that cannot be copied stops the sync; files copied before
    it stay in place.
    """

    def __init__(self, vault_root: Path, ledger_writer: Optional[LedgerWriter] = None):
        self.vault_root = vault_root
        self.ledger_writer = ledger_writer

    def sync_vault(self, destination: Path) -> FolderSyncResult:
        """Mirror the vault into destination.

        Args:
            destination: Directory to copy into (created if missing)

        Returns:
            FolderSyncResult listing copied and skipped vault-relative paths

        Raises:
            FileNotFoundError: If the vault root does not exist
            FolderSyncError: If the destination is inside the vault, a folder
                cannot be listed or a copy fails
        """
        if not self.vault_root.is_dir():
            raise FileNotFoundError(f"Vault root does not exist: {self.vault_root}")

        root = self.vault_root.resolve()
        dest = destination.expanduser().resolve()
        if dest == root or root in dest.parents:
            raise FolderSyncError(str(destination), message="destination is inside the vault")

        result = FolderSyncResult()
        try:
            self._copy_tree(root, dest, result)
        except FolderSyncError as e:
            if self.ledger_writer:
                self.ledger_writer.append_event(
                    event_type="VAULT_SYNC_FAILED",
                    payload={
                        "destination": str(dest),
                        "failed_path": e.path,
                        "copied": len(result.copied),
                        "error": str(e.cause),
                    },
                )
            raise

        if self.ledger_writer:
            self.ledger_writer.append_event(
                event_type="VAULT_SYNCED",
                payload={
                    "destination": str(dest),
                    "copied": len(result.copied),
                    "skipped": result.skipped,
                },
            )
        logger.info("Synced %d file(s) to %s", len(result.copied), dest)
        return result

    def _copy_tree(self, root: Path, dest: Path, result: FolderSyncResult) -> None:
        def listing_failed(error: OSError) -> None:
            failed = Path(error.filename) if error.filename else root
            raise FolderSyncError(failed.relative_to(root).as_posix(), error) from error

        for dirpath, dirnames, filenames in os.walk(root, onerror=listing_failed, followlinks=False):
            current = Path(dirpath)
            relative_dir = current.relative_to(root)

            # Directory symlinks are listed but never descended into
            for name in sorted(dirnames):
                if (current / name).is_symlink():
                    result.skipped.append((relative_dir / name).as_posix())
            dirnames[:] = sorted(name for name in dirnames if not (current / name).is_symlink())

            target_dir = dest / relative_dir
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FolderSyncError(relative_dir.as_posix(), e) from e

            for name in sorted(filenames):
                source = current / name
                relative = (relative_dir / name).as_posix()
                if source.is_symlink() or not source.is_file():
                    logger.warning("Skipping non-regular file %s", relative)
                    result.skipped.append(relative)
                    continue
                try:
                    shutil.copy2(source, target_dir / name)
                except OSError as e:
                    raise FolderSyncError(relative, e) from e
                result.copied.append(relative)
