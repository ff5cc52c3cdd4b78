"""Tests for batch application of vault file operations."""

import asyncio
import json

import pytest
from pydantic import ValidationError

from scanvault.apply import VaultApplyService, summarize
from scanvault.errors import PartialBatchError, PathOutsideVaultError, VaultWriteError
from scanvault.ledger import LedgerWriter, read_ledger_tail
from scanvault.models.payloads import NoteMeta
from scanvault.models.vault import VaultFileAction, VaultFileOperation


def create(path, content="x", note_meta=None):
    return VaultFileOperation(
        action=VaultFileAction.CREATE, path=path, content=content, note_meta=note_meta
    )


def update(path, content="x"):
    return VaultFileOperation(action=VaultFileAction.UPDATE, path=path, content=content)


def delete(path):
    return VaultFileOperation(action=VaultFileAction.DELETE, path=path)


def snapshot(root):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class TestOperationModel:
    def test_write_requires_content(self):
        with pytest.raises(ValidationError):
            VaultFileOperation(action=VaultFileAction.CREATE, path="a.md")

    def test_delete_forbids_content(self):
        with pytest.raises(ValidationError):
            VaultFileOperation(action=VaultFileAction.DELETE, path="a.md", content="x")

    def test_parses_camel_case_wire_format(self):
        op = VaultFileOperation.model_validate(
            {"action": "update", "path": "a.md", "content": "x", "noteMeta": {"title": "A"}}
        )
        assert op.action is VaultFileAction.UPDATE
        assert op.note_meta.title == "A"


def test_create_and_update_write_content(temp_vault):
    service = VaultApplyService(temp_vault)

    service.apply([create("01_daily/2023-11-14.md", "# 2023-11-14\n")])
    service.apply([update("01_daily/2023-11-14.md", "# replaced\n")])

    assert (temp_vault / "01_daily" / "2023-11-14.md").read_text(encoding="utf-8") == "# replaced\n"


def test_parent_directories_are_created(temp_vault):
    VaultApplyService(temp_vault).apply([create("20_learning/deep/nested/note.md")])

    assert (temp_vault / "20_learning" / "deep" / "nested" / "note.md").exists()


def test_delete_missing_file_is_not_an_error(temp_vault):
    summary = VaultApplyService(temp_vault).apply([delete("00_inbox/never-existed.md")])

    assert summary.deleted == ["00_inbox/never-existed.md"]
    assert summary.created_or_updated == []


def test_apply_is_idempotent(temp_vault):
    """Applying the same batch twice leaves the same bytes on disk."""
    service = VaultApplyService(temp_vault)
    ops = [
        create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas")),
        update("01_daily/2023-11-14.md", "# day\n"),
        delete("00_inbox/old.md"),
    ]

    first_summary = service.apply(ops)
    first = snapshot(temp_vault)
    second_summary = service.apply(ops)

    assert snapshot(temp_vault) == first
    assert first_summary == second_summary


def test_operations_run_in_input_order(temp_vault):
    """Later operations on the same path win."""
    service = VaultApplyService(temp_vault)

    service.apply([create("a.md", "one"), update("a.md", "two"), delete("a.md"), create("a.md", "three")])

    assert (temp_vault / "a.md").read_text(encoding="utf-8") == "three"


class TestSummary:
    def test_delete_of_written_path_reports_only_delete(self):
        summary = summarize([create("a.md"), delete("a.md")])
        assert summary.created_or_updated == []
        assert summary.deleted == ["a.md"]

    def test_recreate_after_delete_reports_only_write(self):
        summary = summarize([delete("a.md"), create("a.md")])
        assert summary.created_or_updated == ["a.md"]
        assert summary.deleted == []

    def test_distinct_paths_in_first_appearance_order(self):
        summary = summarize(
            [create("b.md"), create("a.md"), update("b.md"), delete("c.md"), delete("c.md")]
        )
        assert summary.created_or_updated == ["b.md", "a.md"]
        assert summary.deleted == ["c.md"]

    def test_paths_are_normalized(self):
        summary = summarize([create("/vault/a.md"), update("a.md")])
        assert summary.created_or_updated == ["a.md"]


def test_escaping_path_rejects_whole_batch(temp_vault):
    """A bad path anywhere in the batch means nothing is applied."""
    service = VaultApplyService(temp_vault)
    before = snapshot(temp_vault)

    with pytest.raises(PathOutsideVaultError):
        service.apply([create("01_daily/ok.md"), create("../escape.md")])

    assert snapshot(temp_vault) == before
    assert not (temp_vault.parent / "escape.md").exists()


def test_partial_failure_reports_applied_operations(temp_vault):
    service = VaultApplyService(temp_vault)
    # A directory where a file should go makes the second write fail
    (temp_vault / "10_projects" / "Blocked.md").mkdir(parents=True)
    ops = [
        create("01_daily/2023-11-14.md", "# day\n"),
        create("10_projects/Blocked.md", "# blocked\n"),
        create("10_projects/Never.md", "# never\n"),
    ]

    with pytest.raises(PartialBatchError) as exc_info:
        service.apply(ops)

    error = exc_info.value
    assert error.applied_paths == ["01_daily/2023-11-14.md"]
    assert error.path == "10_projects/Blocked.md"
    assert isinstance(error.cause, OSError)
    assert (temp_vault / "01_daily" / "2023-11-14.md").exists()
    assert not (temp_vault / "10_projects" / "Never.md").exists()


def test_failure_is_recorded_in_ledger(vault_paths):
    ledger = LedgerWriter(vault_paths.ledger_file)
    service = VaultApplyService(vault_paths.root, ledger_writer=ledger)
    (vault_paths.projects / "Blocked.md").mkdir()

    with pytest.raises(PartialBatchError):
        service.apply([create("10_projects/Blocked.md")])

    events = read_ledger_tail(vault_paths.ledger_file)
    assert [e.event_type for e in events] == ["VAULT_BATCH_FAILED"]
    assert events[0].payload["failed_path"] == "10_projects/Blocked.md"


class TestIndex:
    def test_note_meta_is_indexed(self, vault_paths):
        service = VaultApplyService(vault_paths.root)
        meta = NoteMeta(title="Atlas", tags=["work", "work"], links=["Bob"])

        service.apply([create("10_projects/Atlas.md", "# Atlas\n", meta)])

        index = json.loads(vault_paths.index_file.read_text(encoding="utf-8"))
        assert index["version"] == 1
        assert index["notes"]["10_projects/Atlas.md"]["title"] == "Atlas"
        assert index["notes"]["10_projects/Atlas.md"]["tags"] == ["work"]

    def test_delete_drops_index_entry(self, vault_paths):
        service = VaultApplyService(vault_paths.root)
        service.apply([create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))])

        service.apply([delete("10_projects/Atlas.md")])

        index = json.loads(vault_paths.index_file.read_text(encoding="utf-8"))
        assert index["notes"] == {}

    def test_no_index_without_note_meta(self, vault_paths):
        VaultApplyService(vault_paths.root).apply([create("00_inbox/raw.md")])

        assert not vault_paths.index_file.exists()

    def test_unchanged_index_is_not_rewritten(self, vault_paths):
        service = VaultApplyService(vault_paths.root)
        ops = [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
        service.apply(ops)
        mtime = vault_paths.index_file.stat().st_mtime_ns

        service.apply(ops)

        assert vault_paths.index_file.stat().st_mtime_ns == mtime


def test_success_is_recorded_in_ledger(vault_paths):
    ledger = LedgerWriter(vault_paths.ledger_file)
    service = VaultApplyService(vault_paths.root, ledger_writer=ledger)

    service.apply([create("a.md"), delete("b.md")])

    events = read_ledger_tail(vault_paths.ledger_file)
    assert events[-1].event_type == "VAULT_BATCH_APPLIED"
    assert events[-1].payload == {"created_or_updated": ["a.md"], "deleted": ["b.md"]}


def test_apply_async(temp_vault):
    service = VaultApplyService(temp_vault)

    summary = asyncio.run(service.apply_async([create("a.md", "async")]))

    assert summary.created_or_updated == ["a.md"]
    assert (temp_vault / "a.md").read_text(encoding="utf-8") == "async"


def test_single_note_create(temp_vault):
    summary = VaultApplyService(temp_vault).apply(
        [create("01_daily/qa-note.md", "# QA Note\n\nBody\n")]
    )

    assert (temp_vault / "01_daily" / "qa-note.md").read_bytes() == b"# QA Note\n\nBody\n"
    assert summary.created_or_updated == ["01_daily/qa-note.md"]
    assert summary.deleted == []


class TestSystemFolder:
    @pytest.mark.parametrize(
        "path", ["_system/ledger.jsonl", "vault/_system/INDEX.json", "/_system/new.md"]
    )
    def test_system_paths_reject_whole_batch(self, vault_paths, path):
        ledger = LedgerWriter(vault_paths.ledger_file)
        ledger.append_event(event_type="SCAN_WRITTEN", payload={}, scan_id="scan-1")
        before = snapshot(vault_paths.root)

        with pytest.raises(PathOutsideVaultError) as exc_info:
            VaultApplyService(vault_paths.root, ledger_writer=ledger).apply(
                [create("01_daily/ok.md"), update(path, "")]
            )

        assert "reserved" in str(exc_info.value)
        assert snapshot(vault_paths.root) == before
        assert [e.event_type for e in read_ledger_tail(vault_paths.ledger_file)] == ["SCAN_WRITTEN"]

    def test_similar_names_are_allowed(self, temp_vault):
        summary = VaultApplyService(temp_vault).apply([create("00_inbox/_system/note.md")])

        assert summary.created_or_updated == ["00_inbox/_system/note.md"]


class TestIndexFailures:
    def test_unreadable_index_raises(self, vault_paths):
        vault_paths.index_file.mkdir()

        with pytest.raises(VaultWriteError):
            VaultApplyService(vault_paths.root).apply(
                [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
            )

        assert (vault_paths.projects / "Atlas.md").exists()

    def test_unwritable_index_raises(self, temp_vault):
        (temp_vault / "_system").write_text("not a folder", encoding="utf-8")

        with pytest.raises(VaultWriteError):
            VaultApplyService(temp_vault).apply(
                [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
            )

    def test_corrupt_index_is_rebuilt(self, vault_paths, caplog):
        vault_paths.index_file.write_text("{broken", encoding="utf-8")

        with caplog.at_level("WARNING", logger="scanvault.vault_index"):
            VaultApplyService(vault_paths.root).apply(
                [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
            )

        index = json.loads(vault_paths.index_file.read_text(encoding="utf-8"))
        assert list(index["notes"]) == ["10_projects/Atlas.md"]
        assert "Rebuilding unreadable vault index" in caplog.text


class TestStructureFile:
    def test_lists_two_levels(self, vault_paths):
        VaultApplyService(vault_paths.root).apply(
            [
                create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas")),
                create("10_projects/deep/inner.md"),
                create("README.md"),
            ]
        )

        lines = vault_paths.structure_file.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "vault/"
        assert "README.md" in lines
        assert lines[lines.index("10_projects/") + 1 : lines.index("10_projects/") + 3] == [
            "  Atlas.md",
            "  deep/",
        ]
        assert "  inner.md" not in lines
        system = lines.index("_system/")
        assert "  INDEX.json" in lines[system:]
        assert "  STRUCTURE.txt" in lines[system:]

    def test_hidden_entries_are_left_out(self, vault_paths):
        (vault_paths.root / ".obsidian").mkdir()

        VaultApplyService(vault_paths.root).apply(
            [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
        )

        assert ".obsidian" not in vault_paths.structure_file.read_text(encoding="utf-8")

    def test_not_written_without_index(self, vault_paths):
        VaultApplyService(vault_paths.root).apply([create("00_inbox/raw.md")])

        assert not vault_paths.structure_file.exists()

    def test_stable_across_identical_batches(self, vault_paths):
        service = VaultApplyService(vault_paths.root)
        ops = [create("10_projects/Atlas.md", "# Atlas\n", NoteMeta(title="Atlas"))]
        service.apply(ops)
        first = vault_paths.structure_file.read_text(encoding="utf-8")
        mtime = vault_paths.structure_file.stat().st_mtime_ns

        service.apply(ops)

        assert vault_paths.structure_file.read_text(encoding="utf-8") == first
        assert vault_paths.structure_file.stat().st_mtime_ns == mtime
