"""Configuration management for scanvault."""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python < 3.11

from .paths import SYSTEM_DIRNAME

logger = logging.getLogger(__name__)

DEFAULT_VAULT_DIRNAME = "scanvault_vault"


class ProcessingQualityMode(str, Enum):
    """How many model passes a scan gets."""

    FAST = "fast"
    BALANCED = "balanced"
    BEST = "best"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProcessingQualityMode":
        """Parse a mode name, falling back to balanced for unknown values."""
        if value:
            try:
                return cls(value.strip().lower())
            except ValueError:
                logger.warning("Unknown quality mode %r, using balanced", value)
        return cls.BALANCED


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent
        if parent_dir == current_dir:
            # No repo found
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .scanvault/config.toml if it exists."""
    config_file = repo_root / ".scanvault" / "config.toml"

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", config_file, e)
        return None


def _get_repo_config_value(data: Optional[dict], key: str) -> Optional[str]:
    """Get a top-level string or bool value from repo config."""
    if not data:
        return None
    value = data.get(key)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return None


def _has_vault_markers(vault_path: Path) -> bool:
    """Check if a directory looks like a bootstrapped vault."""
    return (vault_path / SYSTEM_DIRNAME).is_dir()


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def resolve_vault_root(
    mode: Literal["use_existing", "create_ok"],
    cli_vault_path: Optional[str] = None,
) -> Path:
    """Resolve vault root path with the following precedence:

    1. CLI --vault option (if provided)
    2. repo-local .scanvault/config.toml (walk upward from CWD)
    3. SCANVAULT_VAULT environment variable
    4. Auto-discovery by walking up from cwd looking for a _system folder
    5. ./scanvault_vault for "create_ok", otherwise an error

    Args:
        mode: "use_existing" requires an existing vault, "create_ok" allows new vaults
        cli_vault_path: Vault path from CLI --vault option

    Returns:
        Absolute path to vault root directory

    Raises:
        FileNotFoundError: If vault cannot be found and mode is "use_existing"
    """
    candidates = [
        ("--vault", cli_vault_path),
        (".scanvault/config.toml", _get_repo_config_value(
            _load_repo_config_data(_find_repo_root(Path.cwd())), "vault_root"
        )),
        ("SCANVAULT_VAULT", os.environ.get("SCANVAULT_VAULT")),
    ]
    for source, value in candidates:
        if not value:
            continue
        vault_path = Path(value).expanduser().resolve()
        if mode == "use_existing" and not _has_vault_markers(vault_path):
            raise FileNotFoundError(
                f"Vault path from {source} is not an initialized vault: {vault_path}"
            )
        return vault_path

    current_dir = Path.cwd()
    while True:
        if _has_vault_markers(current_dir):
            return current_dir
        if _has_vault_markers(current_dir / DEFAULT_VAULT_DIRNAME):
            return current_dir / DEFAULT_VAULT_DIRNAME

        parent_dir = current_dir.parent
        if parent_dir == current_dir:
            break
        current_dir = parent_dir

    if mode == "use_existing":
        raise FileNotFoundError(
            "Vault not found. Searched for:\n"
            f"  - _system/ upward from {Path.cwd()}\n"
            f"  - .scanvault/config.toml in repo at {_find_repo_root(Path.cwd())}\n"
            "  - SCANVAULT_VAULT environment variable\n"
            "Try one of:\n"
            "  • scanvault init --vault \"/path/to/vault\"\n"
            "  • scanvault <command> --vault \"/path/to/vault\"\n"
            "  • export SCANVAULT_VAULT=\"/path/to/vault\""
        )
    return (Path.cwd() / DEFAULT_VAULT_DIRNAME).resolve()


class ScanVaultConfig(BaseModel):
    """Configuration for a scanvault vault and its operations."""

    vault_path: Path = Field(default_factory=lambda: Path(DEFAULT_VAULT_DIRNAME))
    quality_mode: ProcessingQualityMode = Field(default=ProcessingQualityMode.BALANCED)
    sync_destination: Optional[Path] = Field(default=None)
    ledger_enabled: bool = Field(default=True)
    log_level: str = Field(default="WARNING")

    model_config = {"frozen": False}

    @classmethod
    def from_env(
        cls,
        cli_vault_path: Optional[str] = None,
        mode: Literal["use_existing", "create_ok"] = "use_existing",
    ) -> "ScanVaultConfig":
        """Load configuration from CLI, repo config, environment or defaults.

        Args:
            cli_vault_path: Vault path from CLI --vault option (highest precedence)
            mode: Vault resolution mode
        """
        vault_path = resolve_vault_root(mode, cli_vault_path)
        repo_config = _load_repo_config_data(_find_repo_root(Path.cwd()))

        def setting(env_name: str, key: str) -> Optional[str]:
            return os.environ.get(env_name) or _get_repo_config_value(repo_config, key)

        sync_destination = setting("SCANVAULT_SYNC_DESTINATION", "sync_destination")
        return cls(
            vault_path=vault_path,
            quality_mode=ProcessingQualityMode.parse(
                setting("SCANVAULT_QUALITY_MODE", "quality_mode")
            ),
            sync_destination=Path(sync_destination).expanduser() if sync_destination else None,
            ledger_enabled=_parse_bool(setting("SCANVAULT_LEDGER_ENABLED", "ledger_enabled"), True),
            log_level=(setting("SCANVAULT_LOG_LEVEL", "log_level") or "WARNING").upper(),
        )
