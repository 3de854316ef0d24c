# tree_store.py
# Description: Interface of the local document tree consumed by the sync core
#
# Imports
from abc import ABC, abstractmethod
from typing import Callable, List, Optional
#
# Local Imports
from .frontmatter import DocumentRecord
from ..Sync.models import EntityKind
#
########################################################################################################################
#
# Classes:

RecordMutator = Callable[[DocumentRecord], None]


class LocalTreeStore(ABC):
    """Hierarchical store of folders and metadata-carrying documents.

    Paths are vault-relative POSIX strings. Failures raise ``LocalTreeError``;
    a create or move onto an occupied path raises ``NameConflict``.
    """

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_folder(self, path: str) -> bool:
        pass

    @abstractmethod
    def create_folder(self, path: str) -> None:
        """Create a folder and any missing parents."""
        pass

    @abstractmethod
    def create_document(self, path: str, record: Optional[DocumentRecord] = None, body: str = "") -> None:
        """Create a new document with the given initial metadata."""
        pass

    @abstractmethod
    def rename_or_move(self, path: str, new_path: str) -> None:
        """Rename or move a document or a whole folder."""
        pass

    @abstractmethod
    def list_documents(self, root: str = "") -> List[str]:
        """Every document below ``root``, sorted."""
        pass

    @abstractmethod
    def read_metadata(self, path: str) -> Optional[DocumentRecord]:
        """Decoded metadata of a document, or None if it carries none we know."""
        pass

    @abstractmethod
    def write_metadata(self, path: str, kind: EntityKind, mutator: RecordMutator) -> bool:
        """Read-modify-write a document's metadata.

        The mutator receives the current record of ``kind`` (a blank one if the
        document has none). Returns True when the stored metadata changed.
        """
        pass

    @abstractmethod
    def soft_delete(self, path: str) -> str:
        """Move a node out of the visible tree without destroying it."""
        pass

#
# End of tree_store.py
########################################################################################################################
