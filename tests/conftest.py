"""Pytest fixtures for scanvault tests."""

import pytest

from scanvault.bootstrap import bootstrap_if_needed
from scanvault.config import ScanVaultConfig
from scanvault.models.payloads import (
    Classification,
    NoteMeta,
    StructurePayload,
    TranscriptionPayload,
)
from scanvault.models.vault import VaultWriterInput
from scanvault.paths import VaultPaths


@pytest.fixture
def temp_vault(tmp_path):
    """Create a temporary vault root for testing.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary vault root
    """
    vault_root = tmp_path / "test_vault"
    vault_root.mkdir()
    return vault_root


@pytest.fixture
def vault_config(temp_vault):
    """Create ScanVaultConfig pointing to temporary vault."""
    return ScanVaultConfig(vault_path=temp_vault)


@pytest.fixture
def vault_paths(vault_config):
    """Create VaultPaths for a bootstrapped temporary vault."""
    bootstrap_if_needed(vault_config.vault_path)
    return VaultPaths.from_config(vault_config)


@pytest.fixture
def make_writer_input():
    """Factory for VaultWriterInput with sensible defaults."""

    def _make(
        scan_id: str = "scan-1",
        captured_at="2023-11-14T22:13:20Z",
        title: str = "Standup",
        markdown: str = "- shipped the parser",
        raw_transcript: str = "standup\nshipped the parser",
        links: list[str] | None = None,
        tags: list[str] | None = None,
        folder: str = "01_daily",
        batch_id: str | None = "batch-1",
    ) -> VaultWriterInput:
        return VaultWriterInput(
            scan_id=scan_id,
            batch_id=batch_id,
            captured_at=captured_at,
            image_path=f"scans/{scan_id}.jpg",
            transcript=TranscriptionPayload(raw_transcript=raw_transcript, confidence=0.9),
            transcript_json='{"rawTranscript": "..."}',
            structured=StructurePayload(
                markdown=markdown,
                note_meta=NoteMeta(title=title, tags=tags or [], links=links or []),
                classification=Classification(folder=folder, reason="notes from a meeting"),
            ),
            structured_json='{"markdown": "..."}',
        )

    return _make
