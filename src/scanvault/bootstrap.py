"""Vault bootstrap and reset."""

import logging
import shutil
from pathlib import Path

from .paths import VaultPaths

logger = logging.getLogger(__name__)


def bootstrap_if_needed(vault_root: Path) -> list[Path]:
    """Create the vault root, every taxonomy folder and the system folder.

    Idempotent: existing directories and all files are left alone.

    Args:
        vault_root: Root directory of the vault

    Returns:
        Directories created by this call, in creation order
    """
    paths = VaultPaths(vault_root)
    created: list[Path] = []
    for directory in [vault_root, *paths.get_all_directories()]:
        if not directory.is_dir():
            directory.mkdir(parents=True, exist_ok=True)
            created.append(directory)

    if created:
        logger.info("Bootstrapped vault at %s (%d directories)", vault_root, len(created))
    return created


def reset_vault(vault_root: Path) -> bool:
    """Recursively delete the vault root. Test/debug use only.

    Returns:
        True if anything was removed
    """
    if not vault_root.exists():
        return False
    logger.warning("Removing vault at %s", vault_root)
    shutil.rmtree(vault_root)
    return True
