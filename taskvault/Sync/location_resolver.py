# location_resolver.py
# Description: Computes where an entity's folder/document belongs in the local tree
#
# Imports
from pathlib import PurePosixPath
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .errors import LocalTreeError
from .models import Bucket, EntityKind, derive_bucket
from .state import SyncState
from ..Todoist.schemas import Project, Section, Task
from ..Utils.path_validation import join_vault_path, parent_of, sanitize_name
#
########################################################################################################################
#
# Classes and Functions:

DOCUMENT_EXTENSION = ".md"


def index_document(folder: str) -> str:
    """The document that represents a project/section folder: ``Name/Name.md``."""
    name = PurePosixPath(folder).name
    return join_vault_path(folder, f"{name}{DOCUMENT_EXTENSION}")


def _split_name(path: str, is_document: bool):
    pure = PurePosixPath(path)
    if is_document:
        return pure.stem, pure.suffix
    return pure.name, ""


def with_disambiguator(path: str, counter: int, is_document: bool = True) -> str:
    """``a/My_Task.md`` -> ``a/My_Task_1.md``; folders get the suffix on their whole name."""
    stem, suffix = _split_name(path, is_document)
    return join_vault_path(parent_of(path), f"{stem}_{counter}{suffix}")


class LocationResolver:
    """Canonical locations of entities, including lifecycle overrides.

    Hierarchy is read from the Identity Index (where parents currently are)
    and the SnapshotCache (whether parents are still active).
    """

    def __init__(self, store, state: SyncState, base_folder: str = "Todoist",
                 done_folder: str = "Done", archive_folder: str = "Archive",
                 trash_folder: str = "Trash"):
        self.store = store
        self.state = state
        self.base_root = join_vault_path(base_folder)
        self.done_root = join_vault_path(self.base_root, done_folder)
        self.archive_root = join_vault_path(self.base_root, archive_folder)
        self.trash_root = join_vault_path(self.base_root, trash_folder)

    @classmethod
    def from_settings(cls, store, state: SyncState, settings) -> "LocationResolver":
        return cls(
            store, state,
            base_folder=settings.base_folder,
            done_folder=settings.done_folder,
            archive_folder=settings.archive_folder,
            trash_folder=settings.trash_folder,
        )

    @property
    def bucket_roots(self) -> List[str]:
        return [self.done_root, self.archive_root, self.trash_root]

    def bucket_root(self, bucket: Bucket) -> str:
        return {
            Bucket.ACTIVE: self.base_root,
            Bucket.DONE: self.done_root,
            Bucket.ARCHIVED: self.archive_root,
            Bucket.TRASHED: self.trash_root,
        }[bucket]

    # ---- hierarchy -------------------------------------------------------------------------

    def _active_folder_of(self, kind: EntityKind, entity_id: Optional[str]) -> Optional[str]:
        """Current folder of an active, indexed project or section."""
        if not entity_id:
            return None
        parent = self.state.cache.get(kind, entity_id)
        if parent is None or derive_bucket(parent) is not Bucket.ACTIVE:
            return None
        path = self.state.index.get(kind, entity_id)
        return parent_of(path) if path else None

    def project_folder(self, project: Project) -> Optional[str]:
        name = sanitize_name(project.name)
        if not name:
            return None
        return join_vault_path(self.base_root, name)

    def section_folder(self, section: Section) -> Optional[str]:
        """Canonical folder of a section, or None if its project has no active folder."""
        name = sanitize_name(section.name)
        project_folder = self._active_folder_of(EntityKind.PROJECT, section.project_id)
        if not name or project_folder is None:
            return None
        return join_vault_path(project_folder, name)

    def task_parent_folder(self, task: Task) -> str:
        """Active section's folder, else active project's folder, else the base root."""
        return (
            self._active_folder_of(EntityKind.SECTION, task.section_id)
            or self._active_folder_of(EntityKind.PROJECT, task.project_id)
            or self.base_root
        )

    def task_document(self, task: Task) -> Optional[str]:
        name = sanitize_name(task.content)
        if not name:
            return None
        return join_vault_path(self.task_parent_folder(task), f"{name}{DOCUMENT_EXTENSION}")

    def bucket_target(self, bucket: Bucket, node_path: str) -> str:
        """Lifecycle override: the node keeps its name but moves under the bucket root."""
        return join_vault_path(self.bucket_root(bucket), PurePosixPath(node_path).name)

    # ---- collisions ------------------------------------------------------------------------

    def document_owner(self, path: str) -> Optional[str]:
        """Id recorded in the document at *path*, if any."""
        owner = self.state.index.reverse_lookup(path)
        if owner is not None:
            return owner[1]
        try:
            record = self.store.read_metadata(path)
        except LocalTreeError as e:
            logger.warning(f"Treating unreadable {path} as occupied: {e}")
            return ""
        if record is None:
            return None
        return record.todoist_id

    def _folder_available(self, folder: str, entity_id: str, for_move: bool) -> bool:
        if not self.store.exists(folder):
            return True
        if not self.store.is_folder(folder):
            return False
        doc = index_document(folder)
        if not self.store.exists(doc):
            # An unowned folder with no index document can be adopted, unless a move must land there
            return not for_move
        owner = self.document_owner(doc)
        if owner == entity_id:
            return True
        return owner is None and not for_move

    def free_folder_path(self, canonical: str, entity_id: str, for_move: bool = False) -> str:
        """First of ``canonical``, ``canonical_1``, ... this entity may occupy.

        A ``_N`` variant is only handed out while every earlier candidate is
        held by something else; the entity's own folder always qualifies.
        """
        candidate, counter = canonical, 1
        while not self._folder_available(candidate, entity_id, for_move):
            candidate = with_disambiguator(canonical, counter, is_document=False)
            counter += 1
        if candidate != canonical:
            logger.info(f"Name conflict at {canonical}; using {candidate}")
        return candidate

    def free_document_path(self, canonical: str, entity_id: str) -> str:
        """First of ``Name.md``, ``Name_1.md``, ... that is free or already ours.

        Comparing this with an entity's current path tells whether a ``_N``
        name is still needed or a rename has to move the document.
        """
        candidate, counter = canonical, 1
        while self.store.exists(candidate) and self.document_owner(candidate) != entity_id:
            candidate = with_disambiguator(canonical, counter)
            counter += 1
        if candidate != canonical:
            logger.info(f"Name conflict at {canonical}; using {candidate}")
        return candidate

    def unique_path(self, path: str, is_document: bool = True) -> str:
        """``path`` or the first ``_N`` variant that does not exist yet."""
        candidate, counter = path, 1
        while self.store.exists(candidate):
            candidate = with_disambiguator(path, counter, is_document)
            counter += 1
        return candidate

#
# End of location_resolver.py
########################################################################################################################
