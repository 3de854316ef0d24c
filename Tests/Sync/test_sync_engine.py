"""
Tests for the reconciliation engine: full and incremental passes, lifecycle
buckets, rename cascade and the cleanup sweep.
"""

import pytest
from unittest.mock import MagicMock

from taskvault.Sync.errors import ConfigurationError, TransportError
from taskvault.Sync.models import Bucket, EntityKind, MutationAction, SyncMode, SyncStatus
from taskvault.Sync.state import SyncState
from taskvault.Sync.cursor_store import CursorStore
from taskvault.Sync.location_resolver import LocationResolver
from taskvault.Sync.sync_engine import ReconciliationEngine
from taskvault.Todoist.todoist_client import TodoistSyncClient


INBOX_DOC = "Todoist/Inbox/Inbox.md"
MILK_DOC = "Todoist/Inbox/Buy milk.md"


def _inbox_with_milk(remote):
    remote.add_project("P1", "Inbox")
    remote.add_task("T1", "Buy milk", project_id="P1")


def _tree_snapshot(store):
    """Every document with its raw text, for before/after comparisons."""
    return {path: (store.root / path).read_text(encoding="utf-8") for path in store.list_documents()}


@pytest.mark.unit
class TestFullPass:
    """Full snapshot passes, including the first pass into an empty vault."""

    @pytest.mark.asyncio
    async def test_scenario_a_creates_project_folder_and_task(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)

        progress = await service.engine.sync(full=True)

        assert progress.status is SyncStatus.COMPLETED
        assert progress.mode is SyncMode.FULL
        assert store.is_folder("Todoist/Inbox")
        assert store.exists(INBOX_DOC)
        assert store.exists(MILK_DOC)
        assert service.state.index.get(EntityKind.PROJECT, "P1") == INBOX_DOC
        assert service.state.index.get(EntityKind.TASK, "T1") == MILK_DOC

        record = store.read_metadata(MILK_DOC)
        assert record.todoist_id == "T1"
        assert record.content == "Buy milk"
        assert record.project_id == "P1"
        assert record.completed is False
        assert record.url == "https://app.todoist.com/app/task/T1"

    @pytest.mark.asyncio
    async def test_cursor_is_persisted_after_the_pass(self, service, fake_remote):
        _inbox_with_milk(fake_remote)

        progress = await service.engine.sync(full=True)

        assert progress.cursor == fake_remote.cursor
        assert service.state.cursor_store.load() == fake_remote.cursor

    @pytest.mark.asyncio
    async def test_failing_host_callbacks_do_not_break_the_pass(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        service.on_sync_started = MagicMock(side_effect=RuntimeError("host crashed"))
        service.on_sync_completed = MagicMock(side_effect=RuntimeError("host crashed"))

        progress = await service.engine.sync(full=True)

        assert progress.status is SyncStatus.COMPLETED
        service.on_sync_completed.assert_called_once_with(progress)
        assert service.state.cursor_store.load() == fake_remote.cursor
        assert store.exists("Todoist/Inbox/Buy milk.md")
        assert service.state.reconciling is False

    @pytest.mark.asyncio
    async def test_second_full_pass_is_idempotent(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        fake_remote.add_section("S1", "Later", project_id="P1")
        fake_remote.add_task("T2", "Call mom", project_id="P1", section_id="S1", priority=3,
                             labels=["family"], due={"date": "2026-01-15", "string": "Jan 15"})
        await service.engine.sync(full=True)
        before = _tree_snapshot(store)

        progress = await service.engine.sync(full=True)

        assert progress.mutations == []
        assert progress.relocated == []
        assert _tree_snapshot(store) == before

    @pytest.mark.asyncio
    async def test_scenario_d_same_sanitized_name_is_disambiguated(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Inbox")
        fake_remote.add_task("T1", "My/Task", project_id="P1")
        fake_remote.add_task("T2", "My:Task", project_id="P1")

        await service.engine.sync(full=True)

        first = service.state.index.get(EntityKind.TASK, "T1")
        second = service.state.index.get(EntityKind.TASK, "T2")
        assert first == "Todoist/Inbox/My_Task.md"
        assert second == "Todoist/Inbox/My_Task_1.md"
        assert store.read_metadata(first).todoist_id == "T1"
        assert store.read_metadata(second).todoist_id == "T2"

        # Disambiguated names are stable across passes
        progress = await service.engine.sync(full=True)
        assert progress.mutations == []
        assert service.state.index.get(EntityKind.TASK, "T2") == second

    @pytest.mark.asyncio
    async def test_task_location_follows_section_then_project_then_root(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Work")
        fake_remote.add_section("S1", "Backlog", project_id="P1")
        fake_remote.add_task("T1", "In section", project_id="P1", section_id="S1")
        fake_remote.add_task("T2", "In project", project_id="P1")
        fake_remote.add_task("T3", "Orphan", project_id="P404")

        await service.engine.sync(full=True)

        index = service.state.index
        assert index.get(EntityKind.SECTION, "S1") == "Todoist/Work/Backlog/Backlog.md"
        assert index.get(EntityKind.TASK, "T1") == "Todoist/Work/Backlog/In section.md"
        assert index.get(EntityKind.TASK, "T2") == "Todoist/Work/In project.md"
        assert index.get(EntityKind.TASK, "T3") == "Todoist/Orphan.md"
        section = store.read_metadata("Todoist/Work/Backlog/Backlog.md")
        assert section.project_name == "Work"

    @pytest.mark.asyncio
    async def test_empty_name_is_skipped_and_pass_continues(self, service, fake_remote, store):
        fake_remote.add_project("P1", "   ")
        fake_remote.add_project("P2", "Home")

        progress = await service.engine.sync(full=True)

        assert progress.status is SyncStatus.COMPLETED
        assert [item for item, _reason in progress.skipped_items] == ["project:P1"]
        assert service.state.index.get(EntityKind.PROJECT, "P1") is None
        assert store.exists("Todoist/Home/Home.md")

    @pytest.mark.asyncio
    async def test_subtask_links_to_parent_document(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Inbox")
        fake_remote.add_task("T2", "Get oat milk", project_id="P1", parent_id="T1")
        fake_remote.add_task("T1", "Buy milk", project_id="P1")

        await service.engine.sync(full=True)

        child = store.read_metadata("Todoist/Inbox/Get oat milk.md")
        parent = store.read_metadata(MILK_DOC)
        assert child.parent_id == "T1"
        assert child.parent_link == "[[Buy milk]]"
        assert parent.parent_link is None

    @pytest.mark.asyncio
    async def test_index_is_rebuilt_from_tree_on_full_pass(self, service, fake_remote, store, settings):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        # A fresh process with an empty index and cache finds the existing documents
        state = SyncState(cursor_store=CursorStore(settings.cursor_path))
        resolver = LocationResolver(store, state)
        engine = ReconciliationEngine(fake_remote, store, state, resolver)

        progress = await engine.sync()

        assert progress.escalated is True
        assert progress.mutations == []
        assert state.index.get(EntityKind.TASK, "T1") == MILK_DOC


@pytest.mark.unit
class TestIncrementalPass:
    """Delta passes on top of a completed full pass."""

    @pytest.mark.asyncio
    async def test_scenario_b_completed_task_moves_to_done(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", checked=True, completed_at="2026-01-02T10:00:00Z")
        progress = await service.engine.sync()

        assert progress.mode is SyncMode.DELTA
        assert not store.exists(MILK_DOC)
        assert store.exists("Todoist/Done/Buy milk.md")
        assert service.state.index.get(EntityKind.TASK, "T1") is None
        record = store.read_metadata("Todoist/Done/Buy milk.md")
        assert record.completed is True
        assert record.completed_at == "2026-01-02T10:00:00Z"
        assert progress.relocated[0].bucket is Bucket.DONE

    @pytest.mark.asyncio
    async def test_delta_requests_only_changes_since_cursor(self, service, fake_remote):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        cursor = service.state.cursor_store.load()

        fake_remote.update("task", "T1", description="2 litres")
        await service.engine.sync()

        assert fake_remote.fetch_calls[-1] == (cursor, False)

    @pytest.mark.asyncio
    async def test_field_change_rewrites_only_that_document(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", description="2 litres", priority=4)
        progress = await service.engine.sync()

        assert [(m.action, m.path) for m in progress.mutations] == [(MutationAction.WRITE_METADATA, MILK_DOC)]
        record = store.read_metadata(MILK_DOC)
        assert record.description == "2 litres"
        assert record.priority == 4

    @pytest.mark.asyncio
    async def test_project_rename_cascades_to_descendants(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Work")
        fake_remote.add_section("S1", "Backlog", project_id="P1")
        fake_remote.add_task("T1", "Draft plan", project_id="P1", section_id="S1")
        fake_remote.add_task("T2", "Email Bob", project_id="P1")
        fake_remote.add_project("P2", "Home")
        fake_remote.add_task("T3", "Water plants", project_id="P2")
        await service.engine.sync(full=True)
        home_before = store.read_metadata("Todoist/Home/Water plants.md")

        fake_remote.update("project", "P1", name="Job")
        progress = await service.engine.sync()

        index = service.state.index
        assert index.get(EntityKind.PROJECT, "P1") == "Todoist/Job/Job.md"
        assert index.get(EntityKind.SECTION, "S1") == "Todoist/Job/Backlog/Backlog.md"
        assert index.get(EntityKind.TASK, "T1") == "Todoist/Job/Backlog/Draft plan.md"
        assert index.get(EntityKind.TASK, "T2") == "Todoist/Job/Email Bob.md"
        assert not store.exists("Todoist/Work")
        assert store.read_metadata("Todoist/Job/Job.md").name == "Job"
        assert store.read_metadata("Todoist/Job/Backlog/Draft plan.md").todoist_id == "T1"

        # Only the renamed project's own nodes were touched
        assert {m.entity_id for m in progress.mutations} == {"P1"}
        assert store.read_metadata("Todoist/Home/Water plants.md") == home_before

    @pytest.mark.asyncio
    async def test_task_content_change_renames_document(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", content="Buy oat milk")
        await service.engine.sync()

        assert not store.exists(MILK_DOC)
        assert service.state.index.get(EntityKind.TASK, "T1") == "Todoist/Inbox/Buy oat milk.md"
        assert store.read_metadata("Todoist/Inbox/Buy oat milk.md").content == "Buy oat milk"

    @pytest.mark.asyncio
    async def test_rename_to_a_prefix_of_the_old_name_moves(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Q1_2024")
        fake_remote.add_task("T1", "Step_2", project_id="P1")
        await service.engine.sync(full=True)

        fake_remote.update("project", "P1", name="Q1")
        fake_remote.update("task", "T1", content="Step")
        await service.engine.sync()

        assert service.state.index.get(EntityKind.PROJECT, "P1") == "Todoist/Q1/Q1.md"
        assert service.state.index.get(EntityKind.TASK, "T1") == "Todoist/Q1/Step.md"
        assert sorted(store.list_documents()) == ["Todoist/Q1/Q1.md", "Todoist/Q1/Step.md"]
        assert not store.exists("Todoist/Q1_2024")

    @pytest.mark.asyncio
    async def test_suffixed_document_takes_canonical_name_once_free(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Inbox")
        fake_remote.add_task("T1", "My/Task", project_id="P1")
        fake_remote.add_task("T2", "My:Task", project_id="P1")
        await service.engine.sync(full=True)
        assert service.state.index.get(EntityKind.TASK, "T2") == "Todoist/Inbox/My_Task_1.md"

        fake_remote.update("task", "T1", content="Other task")
        fake_remote.update("task", "T2", priority=2)
        await service.engine.sync()

        assert service.state.index.get(EntityKind.TASK, "T1") == "Todoist/Inbox/Other task.md"
        assert service.state.index.get(EntityKind.TASK, "T2") == "Todoist/Inbox/My_Task.md"
        assert not store.exists("Todoist/Inbox/My_Task_1.md")

    @pytest.mark.asyncio
    async def test_task_moved_to_other_project_follows(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        fake_remote.add_project("P2", "Groceries")
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", project_id="P2")
        await service.engine.sync()

        assert service.state.index.get(EntityKind.TASK, "T1") == "Todoist/Groceries/Buy milk.md"
        assert not store.exists(MILK_DOC)

    @pytest.mark.asyncio
    async def test_deleted_project_moves_folder_to_trash(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.update("project", "P1", is_deleted=True)
        progress = await service.engine.sync()

        assert not store.exists("Todoist/Inbox")
        assert store.exists("Todoist/Trash/Inbox/Inbox.md")
        assert store.exists("Todoist/Trash/Inbox/Buy milk.md")
        assert store.read_metadata("Todoist/Trash/Inbox/Inbox.md").is_deleted is True
        assert service.state.index.get(EntityKind.PROJECT, "P1") is None
        # Descendants left the index with the folder
        assert service.state.index.get(EntityKind.TASK, "T1") is None
        assert progress.relocated[0].path == "Todoist/Trash/Inbox/Inbox.md"

    @pytest.mark.asyncio
    async def test_archived_section_moves_to_archive(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Work")
        fake_remote.add_section("S1", "Later", project_id="P1")
        await service.engine.sync(full=True)

        fake_remote.update("section", "S1", is_archived=True)
        await service.engine.sync()

        assert store.exists("Todoist/Archive/Later/Later.md")
        assert store.read_metadata("Todoist/Archive/Later/Later.md").is_archived is True
        assert not store.exists("Todoist/Work/Later")
        assert store.exists("Todoist/Work/Work.md")

    @pytest.mark.asyncio
    async def test_deletion_wins_over_completion(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", checked=True, is_deleted=True)
        await service.engine.sync()

        assert store.exists("Todoist/Trash/Buy milk.md")
        assert not store.exists("Todoist/Done/Buy milk.md")

    @pytest.mark.asyncio
    async def test_bucket_name_conflict_gets_suffix(self, service, fake_remote, store):
        fake_remote.add_project("P1", "Inbox")
        fake_remote.add_project("P2", "Work")
        fake_remote.add_task("T1", "Report", project_id="P1")
        fake_remote.add_task("T2", "Report", project_id="P2")
        await service.engine.sync(full=True)

        fake_remote.update("task", "T1", checked=True)
        fake_remote.update("task", "T2", checked=True)
        await service.engine.sync()

        assert store.read_metadata("Todoist/Done/Report.md").todoist_id == "T1"
        assert store.read_metadata("Todoist/Done/Report_1.md").todoist_id == "T2"

    @pytest.mark.asyncio
    async def test_reactivated_task_is_recreated_at_active_location(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        fake_remote.update("task", "T1", checked=True, completed_at="2026-01-02T10:00:00Z")
        await service.engine.sync()

        fake_remote.update("task", "T1", checked=False, completed_at=None)
        await service.engine.sync()

        assert store.exists(MILK_DOC)
        assert service.state.index.get(EntityKind.TASK, "T1") == MILK_DOC
        assert store.read_metadata(MILK_DOC).completed is False

    @pytest.mark.asyncio
    async def test_stale_index_entry_is_dropped_and_entity_recreated(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        (store.root / MILK_DOC).unlink()

        fake_remote.update("task", "T1", description="2 litres")
        progress = await service.engine.sync()

        assert progress.errors == []
        assert store.read_metadata(MILK_DOC).description == "2 litres"
        assert service.state.index.get(EntityKind.TASK, "T1") == MILK_DOC

    @pytest.mark.asyncio
    async def test_entity_error_does_not_abort_pass(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        fake_remote.add_task("T2", "Bake bread", project_id="P1")
        await service.engine.sync(full=True)
        # Corrupt frontmatter makes T1's document unreadable
        (store.root / MILK_DOC).write_text("---\ntype: [task\n---\n", encoding="utf-8")

        fake_remote.update("task", "T1", description="2 litres")
        fake_remote.update("task", "T2", description="rye")
        progress = await service.engine.sync()

        assert progress.status is SyncStatus.COMPLETED
        assert [item for item, _error in progress.errors] == ["task:T1"]
        assert store.read_metadata("Todoist/Inbox/Bake bread.md").description == "rye"
        assert service.state.cursor_store.load() == fake_remote.cursor


@pytest.mark.unit
class TestEscalationAndFailures:
    """Escalation to full passes and fetch-level failures."""

    @pytest.mark.asyncio
    async def test_incremental_without_cursor_escalates(self, service, fake_remote):
        _inbox_with_milk(fake_remote)

        progress = await service.engine.sync()

        assert progress.escalated is True
        assert progress.mode is SyncMode.FULL
        assert fake_remote.fetch_calls == [(None, True)]

    @pytest.mark.asyncio
    async def test_empty_index_kind_escalates(self, service, fake_remote):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        service.state.index.remove(EntityKind.TASK, "T1")

        progress = await service.engine.sync()

        assert progress.escalated is True
        assert service.state.index.get(EntityKind.TASK, "T1") == MILK_DOC

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_everything_unchanged(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        cursor = service.state.cursor_store.load()
        tree_before = _tree_snapshot(store)
        index_before = service.state.index.entries(EntityKind.TASK)
        on_error = MagicMock()
        service.on_sync_error = on_error

        fake_remote.update("task", "T1", checked=True)
        fake_remote.fetch_error = TransportError("connection reset")
        with pytest.raises(TransportError):
            await service.engine.sync()

        assert service.state.cursor_store.load() == cursor
        assert _tree_snapshot(store) == tree_before
        assert service.state.index.entries(EntityKind.TASK) == index_before
        assert service.state.cache.get(EntityKind.TASK, "T1").is_completed is False
        on_error.assert_called_once()
        assert service.state.reconciling is False

    @pytest.mark.asyncio
    async def test_run_sync_reports_failure_without_raising(self, service, fake_remote):
        fake_remote.fetch_error = TransportError("offline")

        assert await service.run_sync() is None

    @pytest.mark.asyncio
    async def test_missing_token_aborts_before_any_mutation(self, store, settings):
        state = SyncState(cursor_store=CursorStore(settings.cursor_path))
        resolver = LocationResolver(store, state)
        engine = ReconciliationEngine(TodoistSyncClient(""), store, state, resolver)

        with pytest.raises(ConfigurationError):
            await engine.sync(full=True)

        assert store.list_documents() == []
        assert state.cursor_store.load() is None

    @pytest.mark.asyncio
    async def test_server_full_snapshot_on_delta_is_reconciled_as_full(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        fake_remote.hard_delete("task", "T1")
        # Unknown cursor: the remote answers with everything
        service.state.cursor_store.save("cursor-expired")
        original_fetch = fake_remote.fetch

        async def fetch_everything(cursor, full):
            return await original_fetch(cursor, True)

        fake_remote.fetch = fetch_everything
        progress = await service.engine.sync()

        assert progress.mode is SyncMode.FULL
        assert store.exists("Todoist/Trash/Buy milk.md")


@pytest.mark.unit
class TestCleanupSweep:
    """Entities the remote dropped without flagging them."""

    @pytest.mark.asyncio
    async def test_hard_deleted_task_goes_to_trash(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.hard_delete("task", "T1")
        progress = await service.engine.sync(full=True)

        assert not store.exists(MILK_DOC)
        assert store.read_metadata("Todoist/Trash/Buy milk.md").is_deleted is True
        assert service.state.index.get(EntityKind.TASK, "T1") is None
        assert [loc.bucket for loc in progress.relocated] == [Bucket.TRASHED]

    @pytest.mark.asyncio
    async def test_hard_deleted_project_takes_its_folder_to_trash(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)

        fake_remote.hard_delete("project", "P1")
        fake_remote.hard_delete("task", "T1")
        await service.engine.sync(full=True)

        assert store.exists("Todoist/Trash/Inbox/Inbox.md")
        assert store.exists("Todoist/Trash/Inbox/Buy milk.md")
        assert service.state.index.is_empty(EntityKind.PROJECT)
        assert service.state.index.is_empty(EntityKind.TASK)

    @pytest.mark.asyncio
    async def test_documents_in_buckets_are_not_swept_again(self, service, fake_remote, store):
        _inbox_with_milk(fake_remote)
        await service.engine.sync(full=True)
        fake_remote.update("task", "T1", checked=True)
        await service.engine.sync()
        fake_remote.hard_delete("task", "T1")

        progress = await service.engine.sync(full=True)

        assert progress.relocated == []
        assert store.exists("Todoist/Done/Buy milk.md")
