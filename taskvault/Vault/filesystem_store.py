# filesystem_store.py
# Description: Local tree store backed by a directory of markdown files with YAML frontmatter
#
# Imports
import os
from pathlib import Path
from typing import List, Optional, Union
#
# Third-Party Imports
import yaml
from loguru import logger
#
# Local Imports
from .frontmatter import (
    DocumentRecord, decode_record, empty_record, join_document, split_document
)
from .tree_store import LocalTreeStore, RecordMutator
from ..Sync.errors import LocalTreeError, NameConflict
from ..Sync.models import EntityKind
from ..Utils.atomic_file_ops import atomic_write_text
from ..Utils.path_validation import is_within, join_vault_path, stem_of, validate_path
#
########################################################################################################################
#
# Classes:

DOCUMENT_EXTENSION = ".md"
SOFT_DELETE_FOLDER = ".trash"


class FilesystemTreeStore(LocalTreeStore):
    """Markdown vault on the local file system."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _abs(self, path: str) -> Path:
        try:
            return validate_path(path, self.root) if path else self.root
        except ValueError as e:
            raise LocalTreeError(str(e), path=path) from e

    def to_relative(self, absolute: Union[str, Path]) -> Optional[str]:
        """Vault-relative POSIX path of an absolute path, or None if outside the vault."""
        try:
            return Path(absolute).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    def is_folder(self, path: str) -> bool:
        return self._abs(path).is_dir()

    def create_folder(self, path: str) -> None:
        target = self._abs(path)
        if target.exists() and not target.is_dir():
            raise LocalTreeError(f"Cannot create folder, a document exists at {path}", path=path)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalTreeError(f"Could not create folder {path}: {e}", path=path) from e

    def create_document(self, path: str, record: Optional[DocumentRecord] = None, body: str = "") -> None:
        target = self._abs(path)
        if target.exists():
            raise NameConflict(f"Document already exists at {path}", path=path)
        metadata = record.to_dict() if record is not None else {}
        try:
            atomic_write_text(target, join_document(metadata, body))
        except OSError as e:
            raise LocalTreeError(f"Could not create document {path}: {e}", path=path) from e

    def rename_or_move(self, path: str, new_path: str) -> None:
        if path == new_path:
            return
        if is_within(new_path, path):
            raise LocalTreeError(f"Cannot move {path} into itself ({new_path})", path=path)
        source = self._abs(path)
        target = self._abs(new_path)
        if not source.exists():
            raise LocalTreeError(f"Nothing to move at {path}", path=path)
        if target.exists():
            raise NameConflict(f"Move target already exists: {new_path}", path=new_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            source.rename(target)
        except OSError as e:
            raise LocalTreeError(f"Could not move {path} to {new_path}: {e}", path=path) from e

    def list_documents(self, root: str = "") -> List[str]:
        start = self._abs(root)
        if not start.is_dir():
            return []

        def _log_walk_error(error: OSError):
            logger.warning(f"Skipping unreadable folder {error.filename}: {error}")

        documents: List[str] = []
        for dirpath, dirnames, filenames in os.walk(start, onerror=_log_walk_error):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in filenames:
                if filename.endswith(DOCUMENT_EXTENSION) and not filename.startswith("."):
                    documents.append((Path(dirpath) / filename).relative_to(self.root).as_posix())
        return sorted(documents)

    def _read_text(self, path: str) -> str:
        try:
            return self._abs(path).read_text(encoding="utf-8")
        except OSError as e:
            raise LocalTreeError(f"Could not read {path}: {e}", path=path) from e

    def read_metadata(self, path: str) -> Optional[DocumentRecord]:
        try:
            metadata, _body = split_document(self._read_text(path))
        except yaml.YAMLError as e:
            raise LocalTreeError(f"Invalid frontmatter in {path}: {e}", path=path) from e
        return decode_record(metadata)

    def write_metadata(self, path: str, kind: EntityKind, mutator: RecordMutator) -> bool:
        text = self._read_text(path)
        try:
            metadata, body = split_document(text)
        except yaml.YAMLError as e:
            raise LocalTreeError(f"Invalid frontmatter in {path}: {e}", path=path) from e

        record = decode_record(metadata)
        if record is None or record.kind is not kind:
            record = empty_record(kind)
            # Keys of a foreign or untyped block survive the takeover
            record.extra = {k: v for k, v in metadata.items() if k not in record.to_dict()}
        mutator(record)

        updated = record.to_dict()
        if updated == metadata:
            return False
        try:
            atomic_write_text(self._abs(path), join_document(updated, body))
        except OSError as e:
            raise LocalTreeError(f"Could not write metadata of {path}: {e}", path=path) from e
        return True

    def soft_delete(self, path: str) -> str:
        """Move a node into the vault's hidden trash folder, returning its new path."""
        name = Path(path).name
        target = join_vault_path(SOFT_DELETE_FOLDER, name)
        counter = 1
        while self.exists(target):
            stem, suffix = stem_of(name), Path(name).suffix
            target = join_vault_path(SOFT_DELETE_FOLDER, f"{stem}_{counter}{suffix}")
            counter += 1
        self.rename_or_move(path, target)
        logger.info(f"Soft-deleted {path} to {target}")
        return target

#
# End of filesystem_store.py
########################################################################################################################
