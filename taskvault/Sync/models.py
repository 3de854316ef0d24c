# models.py
# Description: Shared data types of the sync core: kinds, buckets, locations, the snapshot cache
#
# Imports
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
#
# Local Imports
from ..Todoist.schemas import Project, Section, Task
#
########################################################################################################################
#
# Classes and Functions:

Entity = Union[Project, Section, Task]


class EntityKind(Enum):
    """The three levels of the remote hierarchy."""
    PROJECT = "project"
    SECTION = "section"
    TASK = "task"


class Bucket(Enum):
    """Where in the local tree a document lives."""
    ACTIVE = "active"
    DONE = "done"
    ARCHIVED = "archived"
    TRASHED = "trashed"


class SyncMode(Enum):
    FULL = "full"
    DELTA = "delta"


class SyncStatus(Enum):
    """Enumeration for sync pass status."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class MutationAction(Enum):
    CREATE_FOLDER = "create_folder"
    CREATE_DOCUMENT = "create_document"
    MOVE = "move"
    WRITE_METADATA = "write_metadata"


def derive_bucket(entity: Entity) -> Bucket:
    """Map an entity's lifecycle flags onto exactly one bucket.

    Deletion wins over archival, archival over completion; only tasks can be
    completed.
    """
    if entity.is_deleted:
        return Bucket.TRASHED
    if getattr(entity, "is_archived", False):
        return Bucket.ARCHIVED
    if isinstance(entity, Task) and entity.is_completed:
        return Bucket.DONE
    return Bucket.ACTIVE


def entity_name(kind: EntityKind, entity: Entity) -> str:
    if kind is EntityKind.TASK:
        return entity.content
    return entity.name


@dataclass
class LocalLocation:
    """Where one entity currently lives locally."""
    entity_id: str
    kind: EntityKind
    path: str
    bucket: Bucket = Bucket.ACTIVE


@dataclass
class TreeMutation:
    """One change applied to the local tree."""
    action: MutationAction
    path: str
    target: Optional[str] = None
    kind: Optional[EntityKind] = None
    entity_id: Optional[str] = None

    def describe(self) -> str:
        if self.target:
            return f"{self.action.value} {self.path} -> {self.target}"
        return f"{self.action.value} {self.path}"


@dataclass
class SyncProgress:
    """Tracks the outcome of one reconciliation pass."""
    mode: SyncMode = SyncMode.DELTA
    status: SyncStatus = SyncStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    mutations: List[TreeMutation] = field(default_factory=list)
    relocated: List[LocalLocation] = field(default_factory=list)
    errors: List[Tuple[str, Exception]] = field(default_factory=list)
    skipped_items: List[Tuple[str, str]] = field(default_factory=list)  # (item, reason)
    escalated: bool = False
    cursor: Optional[str] = None

    def summary(self) -> str:
        return (
            f"{self.mode.value} pass {self.status.value}: {len(self.mutations)} mutations, "
            f"{len(self.relocated)} relocated, {len(self.skipped_items)} skipped, {len(self.errors)} errors"
        )


class SnapshotCache:
    """Last known merged copy of every remote entity, keyed by kind and id."""

    def __init__(self):
        self._entities: Dict[EntityKind, Dict[str, Entity]] = {kind: {} for kind in EntityKind}

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        return self._entities[kind].get(entity_id)

    def has(self, kind: EntityKind, entity_id: str) -> bool:
        return entity_id in self._entities[kind]

    def is_empty(self) -> bool:
        return all(not entities for entities in self._entities.values())

    def count_active(self, kind: EntityKind) -> int:
        return sum(1 for e in self._entities[kind].values() if derive_bucket(e) is Bucket.ACTIVE)

    def put(self, kind: EntityKind, entity: Entity) -> None:
        self._entities[kind][entity.id] = entity

    def remove(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        return self._entities[kind].pop(entity_id, None)

    def patch(self, kind: EntityKind, entity_id: str, **changes: Any) -> Optional[Entity]:
        """Apply field changes to one cached entity, returning the patched copy."""
        current = self._entities[kind].get(entity_id)
        if current is None:
            return None
        patched = current.model_copy(update=changes)
        self._entities[kind][entity_id] = patched
        return patched

    def replace(self, projects: Iterable[Project], sections: Iterable[Section], tasks: Iterable[Task]) -> None:
        """Full pass: the fetched sets become the whole cache."""
        self._entities = {kind: {} for kind in EntityKind}
        self.upsert(projects, sections, tasks)

    def upsert(self, projects: Iterable[Project], sections: Iterable[Section], tasks: Iterable[Task]) -> None:
        """Delta pass: fetched entities overwrite by id, everything else stays."""
        for kind, entities in ((EntityKind.PROJECT, projects),
                               (EntityKind.SECTION, sections),
                               (EntityKind.TASK, tasks)):
            for entity in entities:
                self._entities[kind][entity.id] = entity

    def copy(self) -> "SnapshotCache":
        clone = SnapshotCache()
        clone._entities = {kind: dict(entities) for kind, entities in self._entities.items()}
        return clone

#
# End of models.py
########################################################################################################################
