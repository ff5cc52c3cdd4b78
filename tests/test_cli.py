"""CLI smoke tests."""

import json

import pytest
from typer.testing import CliRunner

from scanvault.cli import app

runner = CliRunner()

TRANSCRIPT_RESPONSE = 'Sure:\n{"rawTranscript": "standup\\nshipped it", "confidence": 0.8}\n'
STRUCTURE_RESPONSE = (
    "```json\n"
    '{"markdown": "# Standup\\n\\nshipped it", '
    '"noteMeta": {"title": "Standup", "tags": ["work"], "links": ["Project Atlas"]}, '
    '"classification": {"folder": "11_meetings", "reason": "daily standup"}}\n'
    "```"
)


@pytest.fixture
def cli_vault(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in (
        "SCANVAULT_VAULT",
        "SCANVAULT_SYNC_DESTINATION",
        "SCANVAULT_LEDGER_ENABLED",
        "SCANVAULT_QUALITY_MODE",
    ):
        monkeypatch.delenv(name, raising=False)
    vault = tmp_path / "vault"
    result = runner.invoke(app, ["init", "--vault", str(vault)])
    assert result.exit_code == 0, result.output
    return vault


def test_init_creates_vault(cli_vault):
    assert (cli_vault / "01_daily").is_dir()
    assert (cli_vault / "_system").is_dir()

    result = runner.invoke(app, ["init", "--vault", str(cli_vault)])

    assert result.exit_code == 0
    assert "already exists" in result.output


def test_write_files_scan(cli_vault, tmp_path):
    transcript = tmp_path / "transcript.txt"
    structure = tmp_path / "structure.txt"
    transcript.write_text(TRANSCRIPT_RESPONSE, encoding="utf-8")
    structure.write_text(STRUCTURE_RESPONSE, encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "write",
            "--transcript", str(transcript),
            "--structure", str(structure),
            "--captured-at", "2023-11-14T22:13:20Z",
            "--scan-id", "scan-cli",
            "--vault", str(cli_vault),
        ],
    )

    assert result.exit_code == 0, result.output
    note = (cli_vault / "01_daily" / "2023-11-14.md").read_text(encoding="utf-8")
    assert "## Standup" in note
    assert "Folder: 11_meetings (daily standup)" in note
    assert (cli_vault / "10_projects" / "Project-Atlas.md").exists()


def test_write_rejects_bad_response(cli_vault, tmp_path):
    transcript = tmp_path / "transcript.txt"
    structure = tmp_path / "structure.txt"
    transcript.write_text("no json at all", encoding="utf-8")
    structure.write_text(STRUCTURE_RESPONSE, encoding="utf-8")

    result = runner.invoke(
        app,
        ["write", "-t", str(transcript), "-s", str(structure), "--vault", str(cli_vault)],
    )

    assert result.exit_code == 1
    assert "Error" in result.output


@pytest.fixture
def page_file(tmp_path):
    page = tmp_path / "page.txt"
    page.write_text("# Atlas sync\nTalked with [[Bob]] #work\nship friday", encoding="utf-8")
    return page


def process(page_file, vault, *args):
    return runner.invoke(
        app,
        [
            "process", str(page_file),
            "--captured-at", "2023-11-14T09:30:00Z",
            "--scan-id", "scan-page",
            "--vault", str(vault),
            *args,
        ],
    )


def test_process_files_page(cli_vault, page_file):
    result = process(page_file, cli_vault, "--engine", "fake")

    assert result.exit_code == 0, result.output
    assert "(balanced)" in result.output
    note = (cli_vault / "01_daily" / "2023-11-14.md").read_text(encoding="utf-8")
    assert "## Atlas sync" in note
    assert (cli_vault / "10_projects" / "Bob.md").exists()
    assert (cli_vault / "_topics" / "work.md").exists()


def test_process_uses_configured_quality_mode(cli_vault, page_file, monkeypatch):
    monkeypatch.setenv("SCANVAULT_QUALITY_MODE", "best")

    result = process(page_file, cli_vault)

    assert result.exit_code == 0, result.output
    assert "(best)" in result.output
    assert (cli_vault / "_topics" / "refined.md").exists()


def test_process_mode_option_wins(cli_vault, page_file, monkeypatch):
    monkeypatch.setenv("SCANVAULT_QUALITY_MODE", "best")

    result = process(page_file, cli_vault, "--mode", "fast")

    assert result.exit_code == 0, result.output
    assert "(fast)" in result.output
    assert not (cli_vault / "_topics" / "refined.md").exists()


def test_process_rejects_bad_options(cli_vault, page_file):
    assert process(page_file, cli_vault, "--mode", "turbo").exit_code == 1
    assert process(page_file, cli_vault, "--engine", "openai").exit_code == 1
    assert not (cli_vault / "01_daily" / "2023-11-14.md").exists()


def test_process_blank_page_fails(cli_vault, tmp_path):
    blank = tmp_path / "blank.txt"
    blank.write_text("   ", encoding="utf-8")

    result = process(blank, cli_vault)

    assert result.exit_code == 1
    assert "Error" in result.output

def test_apply_file_ops(cli_vault, tmp_path):
    ops_file = tmp_path / "ops.json"
    ops_file.write_text(
        json.dumps(
            {
                "fileOps": [
                    {"action": "create", "path": "vault/13_tasks/todo.md", "content": "- [ ] ship\n"},
                    {"action": "delete", "path": "00_inbox/old.md"},
                ]
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["apply", str(ops_file), "--vault", str(cli_vault)])

    assert result.exit_code == 0, result.output
    assert (cli_vault / "13_tasks" / "todo.md").read_text(encoding="utf-8") == "- [ ] ship\n"


def test_apply_rejects_escaping_path(cli_vault, tmp_path):
    ops_file = tmp_path / "ops.json"
    ops_file.write_text(
        json.dumps([{"action": "create", "path": "../evil.md", "content": "x"}]),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["apply", str(ops_file), "--vault", str(cli_vault)])

    assert result.exit_code == 1
    assert not (cli_vault.parent / "evil.md").exists()


def test_sync_to_destination(cli_vault, tmp_path):
    (cli_vault / "01_daily" / "2023-11-14.md").write_text("# day\n", encoding="utf-8")
    mirror = tmp_path / "mirror"

    result = runner.invoke(app, ["sync", "--to", str(mirror), "--vault", str(cli_vault)])

    assert result.exit_code == 0, result.output
    assert (mirror / "01_daily" / "2023-11-14.md").read_text(encoding="utf-8") == "# day\n"


def test_sync_without_destination(cli_vault):
    result = runner.invoke(app, ["sync", "--vault", str(cli_vault)])

    assert result.exit_code == 1


def test_ledger_tail_shows_events(cli_vault):
    result = runner.invoke(app, ["ledger", "tail", "--full", "--vault", str(cli_vault)])

    assert result.exit_code == 0, result.output
    assert "VAULT_BOOTSTRAPPED" in result.output


def test_reset_requires_confirmation(cli_vault):
    result = runner.invoke(app, ["reset", "--vault", str(cli_vault)])
    assert result.exit_code == 1
    assert cli_vault.exists()

    result = runner.invoke(app, ["reset", "--yes", "--vault", str(cli_vault)])
    assert result.exit_code == 0
    assert not cli_vault.exists()


def test_command_on_missing_vault(tmp_path):
    result = runner.invoke(app, ["ledger", "tail", "--vault", str(tmp_path / "missing")])

    assert result.exit_code == 1


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "scanvault v" in result.output
