# change_detector.py
# Description: Turns local document edits into intents for the command queue
#
# Imports
import uuid
from typing import Any, Dict, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .command_queue import CommandQueue
from .errors import LocalTreeError
from .intents import MAX_PRIORITY, MIN_PRIORITY, Intent, IntentType
from .location_resolver import LocationResolver, index_document
from .models import EntityKind
from .state import SyncState
from ..Todoist.schemas import Task
from ..Vault.frontmatter import TaskRecord
from ..Utils.path_validation import is_within, is_within_any, parent_of, stem_of
#
########################################################################################################################
#
# Classes:

class ChangeDetector:
    """Diffs edited task documents against the SnapshotCache.

    Reads the index and cache, never writes them; everything it finds goes to
    the command queue.
    """

    def __init__(self, store, state: SyncState, resolver: LocationResolver, queue: CommandQueue):
        self.store = store
        self.state = state
        self.resolver = resolver
        self.queue = queue

    def handle_edit(self, path: str, old_path: Optional[str] = None) -> Optional[Intent]:
        """
        Inspect one edited (or renamed) document and queue what changed.

        Args:
            path: Vault-relative path of the document after the edit
            old_path: Previous path when the document was renamed

        Returns:
            The intent that was queued, if any
        """
        if self.state.reconciling:
            logger.debug(f"Ignoring edit of {path}: reconciliation in progress")
            return None
        if not path.endswith(".md") or not is_within(path, self.resolver.base_root):
            return None

        try:
            record = self.store.read_metadata(path)
        except LocalTreeError as e:
            logger.warning(f"Could not read edited document {path}: {e}")
            return None
        if not isinstance(record, TaskRecord):
            return None

        owner = self._resolve_owner(path, old_path, record)
        if owner is None:
            if not record.todoist_id:
                return self._creation_intent(path, record)
            logger.debug(f"Ignoring edit of {path}: not a tracked document")
            return None

        kind, entity_id = owner
        if kind is not EntityKind.TASK:
            logger.debug(f"Ignoring edit of {kind.value} document {path}")
            return None

        cached = self.state.cache.get(EntityKind.TASK, entity_id)
        if cached is None:
            logger.info(f"Ignoring edit of {path}: task {entity_id} is not in the snapshot cache")
            return None

        renamed = old_path is not None and old_path != path
        intent = self._diff(entity_id, cached, record, path, renamed)
        if intent is None:
            return None
        return self.queue.enqueue(intent)

    def _resolve_owner(self, path: str, old_path: Optional[str],
                       record: TaskRecord) -> Optional[Tuple[EntityKind, str]]:
        owner = self.state.index.reverse_lookup(path)
        if owner is None and old_path:
            owner = self.state.index.reverse_lookup(old_path)
        if owner is None and record.todoist_id and is_within(path, self.resolver.done_root):
            # Documents in Done left the index; their own id addresses them
            owner = (EntityKind.TASK, record.todoist_id)
        return owner

    def _valid_priority(self, path: str, priority: Optional[int]) -> Optional[int]:
        if priority is None:
            return None
        if MIN_PRIORITY <= priority <= MAX_PRIORITY:
            return priority
        logger.warning(f"Priority {priority} in {path} is outside {MIN_PRIORITY}-{MAX_PRIORITY}; not sent")
        return None

    def _diff(self, entity_id: str, cached: Task, record: TaskRecord, path: str,
              renamed: bool) -> Optional[Intent]:
        changes = self._field_changes(cached, record, path, renamed)

        if record.completed and not cached.is_completed:
            logger.info(f"Detected completion of task {entity_id} in {path}")
            return Intent(IntentType.COMPLETE, entity_id, document_path=path, follow_up=changes)
        if not record.completed and cached.is_completed:
            logger.info(f"Detected re-open of task {entity_id} in {path}")
            return Intent(IntentType.UNCOMPLETE, entity_id, document_path=path, follow_up=changes)

        if not changes:
            return None
        logger.info(f"Detected changes to task {entity_id} in {path}: {', '.join(sorted(changes))}")
        return Intent(IntentType.UPDATE, entity_id, fields=changes,
                      document_path=path if renamed else None)

    def _field_changes(self, cached: Task, record: TaskRecord, path: str, renamed: bool) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if record.content.strip() and record.content != cached.content:
            changes["content"] = record.content
        if record.description != cached.description:
            changes["description"] = record.description
        priority = self._valid_priority(path, record.priority)
        if priority is not None and priority != cached.priority:
            changes["priority"] = priority
        cached_due = cached.due.string if cached.due and cached.due.string else ""
        if (record.due_string or "") != cached_due:
            changes["due_string"] = record.due_string or ""
        if list(record.labels) != list(cached.labels):
            changes["labels"] = list(record.labels)

        if not changes and renamed and not record.content.strip():
            new_name = stem_of(path)
            if new_name and new_name != cached.content:
                changes["content"] = new_name
        return changes

    def _enclosing_container(self, path: str) -> Tuple[Optional[str], Optional[str]]:
        """(project_id, section_id) of the nearest project/section folder above ``path``."""
        folder = parent_of(path)
        while folder and folder != self.resolver.base_root and is_within(folder, self.resolver.base_root):
            owner = self.state.index.reverse_lookup(index_document(folder))
            if owner is not None:
                kind, entity_id = owner
                if kind is EntityKind.SECTION:
                    section = self.state.cache.get(EntityKind.SECTION, entity_id)
                    return (section.project_id if section else None), entity_id
                if kind is EntityKind.PROJECT:
                    return entity_id, None
            folder = parent_of(folder)
        return None, None

    def _creation_intent(self, path: str, record: TaskRecord) -> Optional[Intent]:
        if is_within_any(path, self.resolver.bucket_roots):
            return None
        if self.queue.is_creating(path):
            logger.debug(f"Creation of {path} is in flight; edit picked up after it lands")
            return None

        content = record.content.strip() or stem_of(path)
        if not content:
            return None

        project_id, section_id = self._enclosing_container(path)
        values: Dict[str, Any] = {"content": content}
        if project_id:
            values["project_id"] = project_id
        if section_id:
            values["section_id"] = section_id
        if record.description:
            values["description"] = record.description
        priority = self._valid_priority(path, record.priority)
        if priority is not None:
            values["priority"] = priority
        if record.due_string:
            values["due_string"] = record.due_string
        if record.labels:
            values["labels"] = list(record.labels)

        pending = self.queue.pending_create_for(path)
        temp_id = pending.temp_id if pending is not None else str(uuid.uuid4())
        logger.info(f"Detected new task document {path} (temp id {temp_id})")
        return self.queue.enqueue(
            Intent(IntentType.CREATE, temp_id, fields=values, document_path=path, temp_id=temp_id)
        )

#
# End of change_detector.py
########################################################################################################################
