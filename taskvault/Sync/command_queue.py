# command_queue.py
# Description: Debounced, coalescing outbound command queue and its result application
#
# Imports
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .errors import ConfigurationError, RemoteRejection, TaskVaultError, TransportError
from .intents import Intent, IntentType, fields_to_task_changes, merge_intents
from .models import Bucket, EntityKind, TreeMutation
from .state import SyncState
from .tree_writer import TreeWriter
from ..Todoist.remote_service import DispatchResult, RemoteTaskService
from ..Todoist.schemas import Due, Task
#
########################################################################################################################
#
# Classes:

class SchedulerState(Enum):
    """Single-slot debounce scheduler."""
    IDLE = "idle"
    ARMED = "armed"
    DRAINING = "draining"
    ARMED_WHILE_DRAINING = "armed_while_draining"


@dataclass
class BatchOutcome:
    """What happened to one dispatched batch."""
    intents: List[Intent] = field(default_factory=list)
    accepted: List[Intent] = field(default_factory=list)
    rejected: List[RemoteRejection] = field(default_factory=list)
    failure: Optional[TaskVaultError] = None
    errors: List[tuple] = field(default_factory=list)  # (intent key, exception)
    mutations: List[TreeMutation] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class CommandQueue:
    """Turns intents into batched remote commands.

    Intents are keyed by entity id and coalesced while pending. Every enqueue
    restarts one shared debounce timer; when it fires the whole pending set is
    sent as a single batch. Nothing is armed while a batch is in flight; if
    intents arrived meanwhile the timer is re-armed once the batch is applied.
    """

    def __init__(self,
                 remote: RemoteTaskService,
                 state: SyncState,
                 writer: TreeWriter,
                 debounce_seconds: float = 1.0):
        self.remote = remote
        self.state = state
        self.writer = writer
        self.debounce_seconds = debounce_seconds

        self.pending: Dict[str, Intent] = {}
        self.scheduler_state = SchedulerState.IDLE
        self._in_flight: Dict[str, Intent] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._drain_task: Optional[asyncio.Task] = None
        self.last_outcome: Optional[BatchOutcome] = None

        # Host notifications
        self.on_command_rejected: Optional[Callable[[RemoteRejection], None]] = None
        self.on_batch_failed: Optional[Callable[[List[Intent], TaskVaultError], None]] = None
        self.on_batch_applied: Optional[Callable[[BatchOutcome], None]] = None

    # ---- intake ------------------------------------------------------------------------------

    def enqueue(self, intent: Intent) -> Intent:
        """Queue an intent, merging with any pending one for the same key."""
        existing = self.pending.get(intent.key)
        merged = merge_intents(existing, intent) if existing is not None else intent
        self.pending[intent.key] = merged
        logger.debug(f"Queued {merged.intent_type.value} for {merged.key} ({len(self.pending)} pending)")
        self._arm()
        return merged

    def pending_create_for(self, path: str) -> Optional[Intent]:
        for intent in self.pending.values():
            if intent.intent_type is IntentType.CREATE and intent.document_path == path:
                return intent
        return None

    def is_creating(self, path: str) -> bool:
        """True while a create for ``path`` is in flight."""
        return any(
            intent.intent_type is IntentType.CREATE and intent.document_path == path
            for intent in self._in_flight.values()
        )

    # ---- scheduling ----------------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            if self.scheduler_state is SchedulerState.ARMED:
                self.scheduler_state = SchedulerState.IDLE

    def _arm(self) -> None:
        if self.scheduler_state in (SchedulerState.DRAINING, SchedulerState.ARMED_WHILE_DRAINING):
            self.scheduler_state = SchedulerState.ARMED_WHILE_DRAINING
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)
        self.scheduler_state = SchedulerState.ARMED

    def _on_timer(self) -> None:
        self._timer = None
        self._drain_task = asyncio.ensure_future(self._drain())

    async def flush(self) -> Optional[BatchOutcome]:
        """Dispatch everything pending now, after any batch already in flight."""
        self._cancel_timer()
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task
            self._cancel_timer()
        if not self.pending:
            return None
        self._drain_task = asyncio.ensure_future(self._drain())
        return await self._drain_task

    async def close(self) -> None:
        """Flush what is pending and stop the timer."""
        await self.flush()
        self._cancel_timer()

    async def _drain(self) -> Optional[BatchOutcome]:
        if not self.pending:
            self.scheduler_state = SchedulerState.IDLE
            return None

        batch, self.pending = self.pending, {}
        self._in_flight = batch
        self.scheduler_state = SchedulerState.DRAINING
        try:
            outcome = await self._dispatch(list(batch.values()))
        finally:
            self._in_flight = {}
            self.scheduler_state = SchedulerState.IDLE
            if self.pending:
                logger.debug(f"Re-arming debounce for {len(self.pending)} intents queued during dispatch")
                self._arm()

        self.last_outcome = outcome
        return outcome

    # ---- dispatch and result application -------------------------------------------------------

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Queue callback {getattr(callback, '__name__', callback)} failed: {e}")

    async def _dispatch(self, intents: List[Intent]) -> BatchOutcome:
        outcome = BatchOutcome(intents=intents)
        correlated = {str(uuid.uuid4()): intent for intent in intents}
        commands = [intent.to_command(cid) for cid, intent in correlated.items()]
        logger.info(f"Dispatching batch of {len(commands)} command(s)")

        try:
            result = await self.remote.dispatch(commands)
        except (TransportError, ConfigurationError) as e:
            logger.error(f"Batch of {len(commands)} command(s) failed, local state untouched: {e}")
            outcome.failure = e
            self._notify(self.on_batch_failed, intents, e)
            return outcome

        async with self.state.mutation_lock:
            for correlation_id, intent in correlated.items():
                status = result.statuses.get(correlation_id)
                if status is None or not status.accepted:
                    rejection = RemoteRejection(
                        intent.entity_id,
                        code=status.error_code if status else None,
                        message=status.error_message if status else "no status returned",
                        correlation_id=correlation_id,
                        command_type=intent.intent_type.value,
                    )
                    logger.warning(str(rejection))
                    outcome.rejected.append(rejection)
                    self._notify(self.on_command_rejected, rejection)
                    continue

                try:
                    self._apply_accepted(intent, result)
                    outcome.accepted.append(intent)
                except TaskVaultError as e:
                    logger.error(f"Accepted {intent.intent_type.value} for {intent.key} could not be applied locally: {e}")
                    outcome.errors.append((intent.key, e))
            outcome.mutations = self.writer.take_journal()

        logger.info(
            f"Batch applied: {len(outcome.accepted)} accepted, {len(outcome.rejected)} rejected, "
            f"{len(outcome.errors)} local errors"
        )
        self._notify(self.on_batch_applied, outcome)
        return outcome

    def _apply_accepted(self, intent: Intent, result: DispatchResult) -> None:
        handlers = {
            IntentType.COMPLETE: self._apply_complete,
            IntentType.UNCOMPLETE: self._apply_uncomplete,
            IntentType.UPDATE: self._apply_update,
            IntentType.CREATE: self._apply_create,
        }
        handlers[intent.intent_type](intent, result)

    def _apply_complete(self, intent: Intent, result: DispatchResult) -> None:
        now = datetime.now(timezone.utc).isoformat()
        task = self.state.cache.patch(EntityKind.TASK, intent.entity_id, checked=True, completed_at=now)
        path = self.state.index.get(EntityKind.TASK, intent.entity_id) or intent.document_path
        if path is None:
            logger.warning(f"Completed task {intent.entity_id} has no local document to move")
            self._queue_follow_up(intent, None)
            return
        new_path = self.writer.relocate_to_bucket(EntityKind.TASK, intent.entity_id, path, Bucket.DONE, task)
        self._queue_follow_up(intent, new_path)

    def _apply_uncomplete(self, intent: Intent, result: DispatchResult) -> None:
        task = self.state.cache.patch(EntityKind.TASK, intent.entity_id, checked=False, completed_at=None)
        path = intent.document_path or self.state.index.get(EntityKind.TASK, intent.entity_id)
        if path is None:
            self._queue_follow_up(intent, None)
            return
        if task is None:
            self.writer.write_fields(path, EntityKind.TASK, intent.entity_id, completed=False, completed_at=None)
        else:
            self.writer.refresh(path, EntityKind.TASK, task)
            canonical = self.writer.resolver.task_document(task)
            if canonical is not None and canonical != path:
                target = self.writer.resolver.free_document_path(canonical, task.id)
                self.writer.move(path, target, EntityKind.TASK, task.id)
                path = target
        self.state.index.set(EntityKind.TASK, intent.entity_id, path)
        self._queue_follow_up(intent, path)

    def _queue_follow_up(self, intent: Intent, path: Optional[str]) -> None:
        """Put field edits held behind a lifecycle command back into the document and the queue."""
        if not intent.follow_up:
            return
        if path is not None:
            self.writer.write_fields(path, EntityKind.TASK, intent.entity_id, **intent.follow_up)
        logger.info(f"Queuing held edits of {', '.join(sorted(intent.follow_up))} for task {intent.entity_id}")
        self.enqueue(Intent(IntentType.UPDATE, intent.entity_id, fields=dict(intent.follow_up)))

    def _apply_update(self, intent: Intent, result: DispatchResult) -> None:
        task = self.state.cache.get(EntityKind.TASK, intent.entity_id)
        if task is not None:
            self.state.cache.patch(EntityKind.TASK, intent.entity_id, **fields_to_task_changes(task, intent.fields))
        if intent.document_path:
            self.state.index.set(EntityKind.TASK, intent.entity_id, intent.document_path)

    def _apply_create(self, intent: Intent, result: DispatchResult) -> None:
        temp_id = intent.temp_id or intent.entity_id
        real_id = result.temp_id_mapping.get(temp_id)
        if not real_id:
            raise TaskVaultError(f"Create {temp_id} accepted without a real id")

        values = intent.fields
        due_string = values.get("due_string")
        task = Task(
            id=real_id,
            content=values.get("content", ""),
            description=values.get("description") or "",
            project_id=values.get("project_id"),
            section_id=values.get("section_id"),
            parent_id=values.get("parent_id"),
            priority=values.get("priority") or 1,
            labels=values.get("labels") or [],
            due=Due(string=due_string) if due_string else None,
        )
        self.state.cache.put(EntityKind.TASK, task)
        self.state.index.remove(EntityKind.TASK, temp_id)
        if intent.document_path:
            self.writer.refresh(intent.document_path, EntityKind.TASK, task)
            self.state.index.set(EntityKind.TASK, real_id, intent.document_path)
        logger.info(f"Created task {real_id} (was {temp_id})")

#
# End of command_queue.py
########################################################################################################################
