# tree_writer.py
# Description: Applies tree mutations for the engine and the command queue, journaling only real changes
#
# Imports
from pathlib import PurePosixPath
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .errors import LocalTreeError, NameConflict
from .location_resolver import LocationResolver
from .models import Bucket, Entity, EntityKind, MutationAction, TreeMutation
from .state import SyncState
from ..Vault.frontmatter import (
    DocumentRecord, ProjectRecord, SectionRecord, TaskRecord, empty_record
)
from ..Utils.path_validation import parent_of, stem_of
#
########################################################################################################################
#
# Classes:

class TreeWriter:
    """The only component that changes the local tree on behalf of the sync core."""

    def __init__(self, store, state: SyncState, resolver: LocationResolver):
        self.store = store
        self.state = state
        self.resolver = resolver
        self.journal: List[TreeMutation] = []

    def take_journal(self) -> List[TreeMutation]:
        journal, self.journal = self.journal, []
        return journal

    def _record(self, action: MutationAction, path: str, target: Optional[str] = None,
                kind: Optional[EntityKind] = None, entity_id: Optional[str] = None) -> None:
        mutation = TreeMutation(action, path, target, kind, entity_id)
        logger.debug(f"Tree mutation: {mutation.describe()}")
        self.journal.append(mutation)

    # ---- record population -----------------------------------------------------------------

    def _parent_link(self, parent_id: Optional[str]) -> Optional[str]:
        if not parent_id:
            return None
        path = self.state.index.get(EntityKind.TASK, parent_id)
        if not path:
            return None
        return f"[[{stem_of(path)}]]"

    def fill_record(self, record: DocumentRecord, entity: Entity) -> None:
        """Copy every synced field of ``entity`` into ``record``."""
        record.todoist_id = entity.id
        if isinstance(record, ProjectRecord):
            record.name = entity.name
            record.is_archived = entity.is_archived
            record.is_deleted = entity.is_deleted
        elif isinstance(record, SectionRecord):
            project = self.state.cache.get(EntityKind.PROJECT, entity.project_id) if entity.project_id else None
            record.name = entity.name
            record.project_id = entity.project_id
            record.project_name = project.name if project is not None else None
            record.is_archived = entity.is_archived
            record.is_deleted = entity.is_deleted
        elif isinstance(record, TaskRecord):
            record.content = entity.content
            record.description = entity.description
            record.project_id = entity.project_id
            record.section_id = entity.section_id
            record.created_at = entity.created_at
            record.due_date = entity.due.date if entity.due else None
            record.due_string = entity.due.string if entity.due else None
            record.due_is_recurring = entity.due.is_recurring if entity.due else False
            record.priority = entity.priority
            record.completed = entity.is_completed
            record.completed_at = entity.completed_at
            record.labels = list(entity.labels)
            record.url = entity.canonical_url
            record.parent_id = entity.parent_id
            record.parent_link = self._parent_link(entity.parent_id)
            record.is_deleted = entity.is_deleted

    def build_record(self, kind: EntityKind, entity: Entity) -> DocumentRecord:
        record = empty_record(kind)
        self.fill_record(record, entity)
        return record

    # ---- primitive mutations ---------------------------------------------------------------

    def ensure_folder(self, path: str) -> None:
        if not path or self.store.is_folder(path):
            return
        self.store.create_folder(path)
        self._record(MutationAction.CREATE_FOLDER, path)

    def create_document(self, path: str, kind: EntityKind, entity: Entity) -> str:
        """Create the entity's document, falling back to a disambiguated name on conflict."""
        self.ensure_folder(parent_of(path))
        try:
            self.store.create_document(path, self.build_record(kind, entity))
        except NameConflict:
            path = self.resolver.free_document_path(path, entity.id)
            self.store.create_document(path, self.build_record(kind, entity))
        self._record(MutationAction.CREATE_DOCUMENT, path, kind=kind, entity_id=entity.id)
        return path

    def move(self, path: str, new_path: str, kind: Optional[EntityKind] = None,
             entity_id: Optional[str] = None) -> None:
        if path == new_path:
            return
        self.ensure_folder(parent_of(new_path))
        self.store.rename_or_move(path, new_path)
        self._record(MutationAction.MOVE, path, new_path, kind, entity_id)

    def move_folder(self, folder: str, new_folder: str, kind: EntityKind, entity_id: str) -> None:
        """Rename a folder and cascade the new prefix through the Identity Index."""
        self.move(folder, new_folder, kind, entity_id)
        changes = self.state.index.rebase(folder, new_folder)
        logger.info(f"Renamed {folder} -> {new_folder}; rewrote {len(changes)} index entries")

    def refresh(self, path: str, kind: EntityKind, entity: Entity) -> bool:
        """Rewrite the document's metadata from ``entity``; True if anything changed."""
        changed = self.store.write_metadata(path, kind, lambda record: self.fill_record(record, entity))
        if changed:
            self._record(MutationAction.WRITE_METADATA, path, kind=kind, entity_id=entity.id)
        return changed

    def write_fields(self, path: str, kind: EntityKind, entity_id: str, **values) -> bool:
        """Set individual record fields, leaving the rest of the metadata as it is."""
        def _apply(record: DocumentRecord) -> None:
            record.todoist_id = record.todoist_id or entity_id
            for name, value in values.items():
                setattr(record, name, value)

        changed = self.store.write_metadata(path, kind, _apply)
        if changed:
            self._record(MutationAction.WRITE_METADATA, path, kind=kind, entity_id=entity_id)
        return changed

    # ---- lifecycle ---------------------------------------------------------------------------

    def _relocation_node(self, kind: EntityKind, path: str) -> str:
        """The enclosing folder when it is named after the entity's document, else the document."""
        folder = parent_of(path)
        if kind is not EntityKind.TASK and folder and PurePosixPath(folder).name == stem_of(path):
            return folder
        return path

    def relocate_to_bucket(self, kind: EntityKind, entity_id: str, path: str, bucket: Bucket,
                           entity: Optional[Entity] = None) -> str:
        """
        Move an entity's document (or its folder) under a lifecycle bucket root.

        The metadata is marked first, then the node moves, then the entity and
        anything that moved with it leave the Identity Index.

        Returns:
            The new path of the entity's document
        """
        if entity is not None:
            self.refresh(path, kind, entity)
        if bucket is Bucket.TRASHED:
            self.write_fields(path, kind, entity_id, is_deleted=True)
        elif bucket is Bucket.ARCHIVED:
            self.write_fields(path, kind, entity_id, is_archived=True)
        elif bucket is Bucket.DONE:
            self.write_fields(path, kind, entity_id, completed=True)

        node = self._relocation_node(kind, path)
        is_document = node == path
        target = self.resolver.unique_path(self.resolver.bucket_target(bucket, node), is_document)
        try:
            self.move(node, target, kind, entity_id)
        except LocalTreeError as e:
            if bucket is not Bucket.TRASHED:
                raise
            logger.warning(f"Could not move {node} to {target} ({e}); soft-deleting instead")
            target = self.store.soft_delete(node)
            self._record(MutationAction.MOVE, node, target, kind, entity_id)

        self.state.index.remove(kind, entity_id)
        if not is_document:
            dropped = self.state.index.remove_under(node)
            if dropped:
                logger.debug(f"{len(dropped)} descendant entries left the index with {node}")

        new_path = target if is_document else target + path[len(node):]
        logger.info(f"Relocated {kind.value} {entity_id} to {bucket.value}: {new_path}")
        return new_path

#
# End of tree_writer.py
########################################################################################################################
