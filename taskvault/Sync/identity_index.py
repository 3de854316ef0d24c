# identity_index.py
# Description: id -> local path cache per entity kind, rebuildable from the tree
#
# Imports
from typing import Dict, Iterable, List, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .errors import LocalTreeError
from .models import EntityKind, LocalLocation
from ..Utils.path_validation import is_within, is_within_any, rebase_paths
#
########################################################################################################################
#
# Classes:

class IdentityIndex:
    """Where each known entity's document currently lives.

    Every (kind, id) maps to at most one path and every path to at most one
    (kind, id); the reverse map is kept in step with the forward one.
    """

    def __init__(self):
        self._paths: Dict[EntityKind, Dict[str, str]] = {kind: {} for kind in EntityKind}
        self._owners: Dict[str, Tuple[EntityKind, str]] = {}

    def get(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        return self._paths[kind].get(entity_id)

    def set(self, kind: EntityKind, entity_id: str, path: str) -> None:
        previous_path = self._paths[kind].get(entity_id)
        if previous_path is not None and self._owners.get(previous_path) == (kind, entity_id):
            del self._owners[previous_path]

        previous_owner = self._owners.get(path)
        if previous_owner is not None and previous_owner != (kind, entity_id):
            logger.warning(
                f"Path {path} moved from {previous_owner[0].value} {previous_owner[1]} "
                f"to {kind.value} {entity_id}"
            )
            self._paths[previous_owner[0]].pop(previous_owner[1], None)

        self._paths[kind][entity_id] = path
        self._owners[path] = (kind, entity_id)

    def remove(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        path = self._paths[kind].pop(entity_id, None)
        if path is not None and self._owners.get(path) == (kind, entity_id):
            del self._owners[path]
        return path

    def reverse_lookup(self, path: str) -> Optional[Tuple[EntityKind, str]]:
        return self._owners.get(path)

    def is_empty(self, kind: EntityKind) -> bool:
        return not self._paths[kind]

    def count(self, kind: EntityKind) -> int:
        return len(self._paths[kind])

    def entries(self, kind: EntityKind) -> Dict[str, str]:
        return dict(self._paths[kind])

    def locations(self) -> List[LocalLocation]:
        return [
            LocalLocation(entity_id=entity_id, kind=kind, path=path)
            for kind in EntityKind
            for entity_id, path in self._paths[kind].items()
        ]

    def clear(self) -> None:
        self._paths = {kind: {} for kind in EntityKind}
        self._owners = {}

    def rebuild(self, store, root: str = "", excluded_roots: Iterable[str] = ()) -> int:
        """
        Repopulate the index from document metadata below ``root``.

        Documents under ``excluded_roots`` (the lifecycle buckets) are ignored.
        When two documents claim the same id, the first one found wins.

        Returns:
            Number of entries recorded
        """
        self.clear()
        excluded = [r for r in excluded_roots if r]
        try:
            documents = store.list_documents(root)
        except LocalTreeError as e:
            logger.error(f"Could not enumerate {root or 'vault root'} for index rebuild: {e}")
            return 0

        recorded = 0
        for path in documents:
            if is_within_any(path, excluded):
                continue
            try:
                record = store.read_metadata(path)
            except LocalTreeError as e:
                logger.warning(f"Skipping unreadable document {path} during index rebuild: {e}")
                continue
            if record is None or not record.todoist_id:
                continue

            existing = self.get(record.kind, record.todoist_id)
            if existing is not None:
                logger.warning(
                    f"Duplicate {record.kind.value} {record.todoist_id}: keeping {existing}, ignoring {path}"
                )
                continue
            self.set(record.kind, record.todoist_id, path)
            recorded += 1

        logger.info(
            "Identity index rebuilt: "
            + ", ".join(f"{self.count(kind)} {kind.value}s" for kind in EntityKind)
        )
        return recorded

    def rebase(self, old_prefix: str, new_prefix: str) -> List[Tuple[EntityKind, str, str, str]]:
        """Rewrite every entry under ``old_prefix`` after a folder rename.

        Returns:
            (kind, id, old path, new path) for each rewritten entry
        """
        rebased = rebase_paths(old_prefix, new_prefix, list(self._owners))
        changes = []
        for old_path, new_path in rebased.items():
            kind, entity_id = self._owners[old_path]
            changes.append((kind, entity_id, old_path, new_path))
        for kind, entity_id, _old_path, _new_path in changes:
            self.remove(kind, entity_id)
        for kind, entity_id, _old_path, new_path in changes:
            self.set(kind, entity_id, new_path)
        return changes

    def remove_under(self, prefix: str) -> List[Tuple[EntityKind, str, str]]:
        """Drop every entry whose path lies under ``prefix``."""
        dropped = []
        for path, (kind, entity_id) in list(self._owners.items()):
            if is_within(path, prefix):
                self.remove(kind, entity_id)
                dropped.append((kind, entity_id, path))
        return dropped

#
# End of identity_index.py
########################################################################################################################
