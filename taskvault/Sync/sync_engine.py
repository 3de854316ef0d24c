# sync_engine.py
# Description: Reconciliation engine mapping remote Todoist state onto the local document tree
#
# Imports
from datetime import datetime, timezone
from typing import Callable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .errors import ConfigurationError, InvariantViolation, TaskVaultError, TransportError
from .location_resolver import LocationResolver, index_document
from .models import (
    Bucket, Entity, EntityKind, LocalLocation, SnapshotCache, SyncMode, SyncProgress, SyncStatus,
    derive_bucket, entity_name
)
from .state import SyncState
from .tree_writer import TreeWriter
from ..Todoist.remote_service import FetchResult, RemoteTaskService
from ..Todoist.schemas import Project, Section, Task
from ..Utils.path_validation import parent_of, sanitize_name
#
########################################################################################################################
#
# Classes:

class ReconciliationEngine:
    """Runs full and incremental sync passes from the remote into the local tree."""

    def __init__(self,
                 remote: RemoteTaskService,
                 store,
                 state: SyncState,
                 resolver: LocationResolver,
                 writer: Optional[TreeWriter] = None):
        """
        Initialize the engine.

        Args:
            remote: Service to fetch projects/sections/tasks from
            store: Local tree store the mirror lives in
            state: Shared handle on index, cache and cursor store
            resolver: Computes canonical locations
            writer: Tree writer (one is built when omitted)
        """
        self.remote = remote
        self.store = store
        self.state = state
        self.resolver = resolver
        self.writer = writer or TreeWriter(store, state, resolver)

        # Host notifications
        self.on_sync_started: Optional[Callable[[SyncMode], None]] = None
        self.on_sync_completed: Optional[Callable[[SyncProgress], None]] = None
        self.on_sync_error: Optional[Callable[[Exception], None]] = None

    # ---- pass orchestration ----------------------------------------------------------------

    def _escalation_reason(self, cursor: Optional[str]) -> Optional[str]:
        """Why an incremental pass must become a full one, if it must."""
        if not cursor:
            return "no sync cursor"
        if self.state.cache.is_empty():
            return "snapshot cache is empty"
        for kind in EntityKind:
            if self.state.index.is_empty(kind) and self.state.cache.count_active(kind) > 0:
                return f"identity index holds no {kind.value}s"
        return None

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Sync callback {getattr(callback, '__name__', callback)} failed: {e}")

    async def sync(self, full: bool = False) -> SyncProgress:
        """
        Run one reconciliation pass.

        Args:
            full: Request a full pass; incremental passes may escalate on their own

        Returns:
            SyncProgress describing what the pass did

        Raises:
            ConfigurationError, TransportError: The fetch failed; nothing changed
        """
        async with self.state.mutation_lock:
            cursor = self.state.cursor_store.load()
            progress = SyncProgress(mode=SyncMode.FULL if full else SyncMode.DELTA)
            if not full:
                reason = self._escalation_reason(cursor)
                if reason:
                    logger.info(f"Escalating to a full pass: {reason}")
                    progress.mode = SyncMode.FULL
                    progress.escalated = True

            self._notify(self.on_sync_started, progress.mode)
            logger.info(f"Starting {progress.mode.value} sync pass")

            try:
                fetched = await self.remote.fetch(cursor, progress.mode is SyncMode.FULL)
            except (TransportError, ConfigurationError) as e:
                progress.status = SyncStatus.FAILED
                progress.finished_at = datetime.now(timezone.utc)
                progress.errors.append(("fetch", e))
                logger.error(f"Sync pass aborted, fetch failed: {e}")
                self._notify(self.on_sync_error, e)
                raise

            if fetched.full and progress.mode is SyncMode.DELTA:
                logger.info("Remote answered with a full snapshot; reconciling as a full pass")
                progress.mode = SyncMode.FULL

            self.state.reconciling = True
            try:
                self._reconcile(fetched, progress)
            finally:
                self.state.reconciling = False
                progress.mutations.extend(self.writer.take_journal())

            self.state.cursor_store.save(fetched.next_cursor)
            progress.cursor = fetched.next_cursor
            progress.status = SyncStatus.COMPLETED
            progress.finished_at = datetime.now(timezone.utc)
            logger.info(progress.summary())

            self._notify(self.on_sync_completed, progress)
            return progress

    def _reconcile(self, fetched: FetchResult, progress: SyncProgress) -> None:
        full = progress.mode is SyncMode.FULL
        previous_cache = self.state.cache.copy()

        if full:
            self.state.index.rebuild(self.store, self.resolver.base_root, self.resolver.bucket_roots)
            self.state.cache.replace(fetched.projects, fetched.sections, fetched.tasks)
        else:
            self.state.cache.upsert(fetched.projects, fetched.sections, fetched.tasks)

        for project in fetched.projects:
            self._guarded(EntityKind.PROJECT, project, progress, self._process_project)
        for section in fetched.sections:
            self._guarded(EntityKind.SECTION, section, progress, self._process_section)
        for task in self._parents_first(fetched.tasks):
            self._guarded(EntityKind.TASK, task, progress, self._process_task)

        if full:
            self._cleanup_sweep(previous_cache, progress)

    def _guarded(self, kind: EntityKind, entity: Entity, progress: SyncProgress, handler) -> None:
        """Run one entity's handler; its failure is recorded and the pass goes on."""
        try:
            handler(entity, progress)
        except TaskVaultError as e:
            logger.error(f"Error processing {kind.value} {entity.id}: {e}")
            progress.errors.append((f"{kind.value}:{entity.id}", e))
        except Exception as e:
            logger.exception(f"Unexpected error processing {kind.value} {entity.id}: {e}")
            progress.errors.append((f"{kind.value}:{entity.id}", e))

    def _parents_first(self, tasks: List[Task]) -> List[Task]:
        """Order tasks so a parent task is always handled before its subtasks."""
        def depth(task: Task) -> int:
            seen = {task.id}
            level, parent_id = 0, task.parent_id
            while parent_id and parent_id not in seen:
                seen.add(parent_id)
                level += 1
                parent = self.state.cache.get(EntityKind.TASK, parent_id)
                parent_id = parent.parent_id if parent is not None else None
            return level

        return sorted(tasks, key=depth)

    # ---- per-entity steps ------------------------------------------------------------------

    def _validated_path(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        """Index path of the entity, or None after dropping a stale entry."""
        path = self.state.index.get(kind, entity_id)
        if path is None:
            return None
        try:
            if not self.store.exists(path):
                raise InvariantViolation(kind, entity_id, path, "document is missing")
            record = self.store.read_metadata(path)
            if record is None or record.kind is not kind:
                raise InvariantViolation(kind, entity_id, path, "document has the wrong kind")
            if record.todoist_id != entity_id:
                raise InvariantViolation(kind, entity_id, path, f"document belongs to {record.todoist_id}")
        except InvariantViolation as e:
            logger.warning(f"Dropping stale index entry, treating as new: {e}")
            self.state.index.remove(kind, entity_id)
            return None
        return path

    def _apply_lifecycle(self, kind: EntityKind, entity: Entity, progress: SyncProgress) -> bool:
        """Relocate an inactive entity to its bucket. Returns False for active entities."""
        bucket = derive_bucket(entity)
        if bucket is Bucket.ACTIVE:
            return False

        path = self._validated_path(kind, entity.id)
        if path is None:
            logger.debug(f"{kind.value} {entity.id} is {bucket.value} and has no local document")
            return True

        new_path = self.writer.relocate_to_bucket(kind, entity.id, path, bucket, entity)
        progress.relocated.append(LocalLocation(entity.id, kind, new_path, bucket))
        return True

    def _skip(self, kind: EntityKind, entity: Entity, progress: SyncProgress, reason: str) -> None:
        logger.warning(f"Skipping {kind.value} {entity.id} ({entity_name(kind, entity)!r}): {reason}")
        progress.skipped_items.append((f"{kind.value}:{entity.id}", reason))

    def _process_project(self, project: Project, progress: SyncProgress) -> None:
        if self._apply_lifecycle(EntityKind.PROJECT, project, progress):
            return
        canonical = self.resolver.project_folder(project)
        if canonical is None:
            self._skip(EntityKind.PROJECT, project, progress, "name is empty after sanitising")
            return
        self._reconcile_container(EntityKind.PROJECT, project, canonical)

    def _process_section(self, section: Section, progress: SyncProgress) -> None:
        if self._apply_lifecycle(EntityKind.SECTION, section, progress):
            return
        if not sanitize_name(section.name):
            self._skip(EntityKind.SECTION, section, progress, "name is empty after sanitising")
            return
        canonical = self.resolver.section_folder(section)
        if canonical is None:
            self._skip(EntityKind.SECTION, section, progress,
                       f"project {section.project_id} has no active local folder")
            return
        self._reconcile_container(EntityKind.SECTION, section, canonical)

    def _reconcile_container(self, kind: EntityKind, entity: Entity, canonical: str) -> None:
        """Folder-plus-index-document entities: detect renames, ensure folder, upsert document."""
        prior = self._validated_path(kind, entity.id)

        if prior is not None:
            folder = parent_of(prior)
            if folder != canonical:
                target = self.resolver.free_folder_path(canonical, entity.id, for_move=True)
                if target != folder:
                    self.writer.move_folder(folder, target, kind, entity.id)
                    folder = target
                    prior = self.state.index.get(kind, entity.id)
        else:
            folder = self.resolver.free_folder_path(canonical, entity.id)

        self.writer.ensure_folder(folder)
        document = index_document(folder)

        if prior is not None and prior != document:
            if self.store.exists(document):
                document = prior
            else:
                self.writer.move(prior, document, kind, entity.id)

        if prior is not None or self.store.exists(document):
            self.writer.refresh(document, kind, entity)
        else:
            document = self.writer.create_document(document, kind, entity)
        self.state.index.set(kind, entity.id, document)

    def _process_task(self, task: Task, progress: SyncProgress) -> None:
        if self._apply_lifecycle(EntityKind.TASK, task, progress):
            return
        canonical = self.resolver.task_document(task)
        if canonical is None:
            self._skip(EntityKind.TASK, task, progress, "content is empty after sanitising")
            return

        prior = self._validated_path(EntityKind.TASK, task.id)
        if prior is not None:
            path = prior
            if prior != canonical:
                path = self.resolver.free_document_path(canonical, task.id)
                self.writer.move(prior, path, EntityKind.TASK, task.id)
            self.writer.refresh(path, EntityKind.TASK, task)
        else:
            path = self.resolver.free_document_path(canonical, task.id)
            if self.store.exists(path):
                self.writer.refresh(path, EntityKind.TASK, task)
            else:
                path = self.writer.create_document(path, EntityKind.TASK, task)
        self.state.index.set(EntityKind.TASK, task.id, path)

    # ---- cleanup ---------------------------------------------------------------------------

    def _cleanup_sweep(self, previous_cache: SnapshotCache, progress: SyncProgress) -> None:
        """Relocate indexed entities the full snapshot no longer contains."""
        stale = [loc for loc in self.state.index.locations()
                 if not self.state.cache.has(loc.kind, loc.entity_id)]
        if stale:
            logger.info(f"Cleanup sweep: {len(stale)} indexed entities are gone remotely")

        for location in stale:
            kind, entity_id = location.kind, location.entity_id
            if self.state.index.get(kind, entity_id) != location.path:
                continue  # left the index together with an ancestor folder
            try:
                path = self._validated_path(kind, entity_id)
                if path is None:
                    continue
                last_known = previous_cache.get(kind, entity_id)
                completed = isinstance(last_known, Task) and last_known.is_completed
                if kind is EntityKind.TASK and last_known is None:
                    record = self.store.read_metadata(path)
                    completed = bool(record is not None and getattr(record, "completed", False))
                bucket = Bucket.DONE if completed else Bucket.TRASHED
                new_path = self.writer.relocate_to_bucket(
                    kind, entity_id, path, bucket, last_known if completed else None
                )
                progress.relocated.append(LocalLocation(entity_id, kind, new_path, bucket))
            except TaskVaultError as e:
                logger.error(f"Cleanup of {kind.value} {entity_id} failed: {e}")
                progress.errors.append((f"{kind.value}:{entity_id}", e))

#
# End of sync_engine.py
########################################################################################################################
