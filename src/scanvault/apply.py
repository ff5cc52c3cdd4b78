"""Apply batches of file operations to the vault."""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .errors import PartialBatchError, PathOutsideVaultError
from .fileio import atomic_write_text
from .ledger import LedgerWriter
from .models.vault import VaultApplySummary, VaultFileAction, VaultFileOperation
from .paths import VaultPaths, is_reserved_path, normalize_vault_path, resolve_in_vault
from .vault_index import VaultIndex

logger = logging.getLogger(__name__)


class VaultApplyService:
    """Execute create/update/delete operations as one logical batch.

    Every path is validated before anything touches disk. Operations then run
    in input order; the first failure stops the batch and is reported with the
    operations that were already applied. Applied operations are not rolled
    back.
    """

    def __init__(self, vault_root: Path, ledger_writer: Optional[LedgerWriter] = None):
        """Initialize the apply service.

        Args:
            vault_root: Root directory of the vault
            ledger_writer: Optional ledger for batch events
        """
        self.vault_root = vault_root
        self.paths = VaultPaths(vault_root)
        self.index = VaultIndex(self.paths)
        self.ledger_writer = ledger_writer

    def apply(self, operations: Sequence[VaultFileOperation]) -> VaultApplySummary:
        """Apply operations in order.

        Args:
            operations: File operations with vault-relative paths

        Returns:
            Final-state summary of created/updated and deleted paths

        Raises:
            PathOutsideVaultError: If any path escapes the vault or targets
                _system/ (nothing applied)
            PartialBatchError: If an operation fails after validation
            VaultWriteError: If the vault index or its derived files cannot be
                read or written
        """
        planned = self._validate(operations)

        applied: list[VaultFileOperation] = []
        for op, target in planned:
            try:
                self._execute(op, target)
            except OSError as e:
                logger.error("Failed to %s %s: %s", op.action.value, op.path, e)
                if self.ledger_writer:
                    self.ledger_writer.append_event(
                        event_type="VAULT_BATCH_FAILED",
                        payload={
                            "applied": [done.path for done in applied],
                            "failed_path": op.path,
                            "action": op.action.value,
                            "error": str(e),
                        },
                    )
                raise PartialBatchError(applied, op, op.path, e) from e
            applied.append(op)
            logger.debug("Applied %s %s", op.action.value, op.path)

        summary = summarize(applied)
        self.index.update(applied)

        if self.ledger_writer:
            self.ledger_writer.append_event(
                event_type="VAULT_BATCH_APPLIED",
                payload=summary.model_dump(),
            )
        logger.info(
            "Applied %d operation(s): %d written, %d deleted",
            len(applied),
            len(summary.created_or_updated),
            len(summary.deleted),
        )
        return summary

    async def apply_async(self, operations: Sequence[VaultFileOperation]) -> VaultApplySummary:
        """Run apply() in a worker thread."""
        return await asyncio.to_thread(self.apply, operations)

    def _validate(
        self, operations: Sequence[VaultFileOperation]
    ) -> list[tuple[VaultFileOperation, Path]]:
        planned = []
        for op in operations:
            normalized = normalize_vault_path(op.path)
            if is_reserved_path(normalized):
                raise PathOutsideVaultError(op.path, "is reserved for vault system files")
            target = resolve_in_vault(self.vault_root, normalized)
            if normalized != op.path:
                op = op.model_copy(update={"path": normalized})
            planned.append((op, target))
        return planned

    def _execute(self, op: VaultFileOperation, target: Path) -> None:
        if op.is_write:
            atomic_write_text(target, op.content or "")
        else:
            target.unlink(missing_ok=True)


def summarize(operations: Iterable[VaultFileOperation]) -> VaultApplySummary:
    """Report the final state of each touched path.

    A path lands in exactly one list, decided by its last operation, and the
    lists keep the order in which paths first appeared.
    """
    final_action: dict[str, VaultFileAction] = {}
    for op in operations:
        path = normalize_vault_path(op.path)
        final_action[path] = op.action

    summary = VaultApplySummary()
    for path, action in final_action.items():
        if action is VaultFileAction.DELETE:
            summary.deleted.append(path)
        else:
            summary.created_or_updated.append(path)
    return summary

