# frontmatter.py
# Description: Typed, versioned frontmatter records and their YAML encoding
#
# Documents carry their sync metadata as a YAML block at the top of the file.
# Outside the tree store the metadata only ever exists as one of the record
# classes below; raw dictionaries are confined to this module.
#
# Imports
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple
#
# Third-Party Imports
import yaml
#
# Local Imports
from ..Sync.models import EntityKind
#
########################################################################################################################
#
# Classes and Functions:

SYNC_VERSION = 1
FRONTMATTER_DELIMITER = "---"


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class DocumentRecord:
    """Fields shared by every synced document."""
    todoist_id: Optional[str] = None
    sync_version: int = SYNC_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = None  # overridden by subclasses

    def _fields_dict(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Encode as an ordered frontmatter mapping; unknown keys are kept."""
        data: Dict[str, Any] = {
            "type": self.kind.value,
            "todoist_id": self.todoist_id,
        }
        data.update(self._fields_dict())
        data["sync_version"] = self.sync_version
        for key, value in self.extra.items():
            if key not in data:
                data[key] = value
        return data


@dataclass
class ProjectRecord(DocumentRecord):
    name: str = ""
    is_archived: bool = False
    is_deleted: bool = False

    kind = EntityKind.PROJECT

    def _fields_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "is_archived": self.is_archived,
            "is_deleted": self.is_deleted,
        }


@dataclass
class SectionRecord(DocumentRecord):
    name: str = ""
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    is_archived: bool = False
    is_deleted: bool = False

    kind = EntityKind.SECTION

    def _fields_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "is_archived": self.is_archived,
            "is_deleted": self.is_deleted,
        }


@dataclass
class TaskRecord(DocumentRecord):
    content: str = ""
    description: str = ""
    project_id: Optional[str] = None
    section_id: Optional[str] = None
    created_at: Optional[str] = None
    due_date: Optional[str] = None
    due_string: Optional[str] = None
    due_is_recurring: bool = False
    priority: Optional[int] = 1
    completed: bool = False
    completed_at: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    url: Optional[str] = None
    parent_id: Optional[str] = None
    parent_link: Optional[str] = None
    is_deleted: bool = False

    kind = EntityKind.TASK

    def _fields_dict(self) -> Dict[str, Any]:
        data = {
            "content": self.content,
            "description": self.description,
            "project_id": self.project_id,
            "section_id": self.section_id,
            "created_at": self.created_at,
            "due_date": self.due_date,
            "due_string": self.due_string,
            "due_is_recurring": self.due_is_recurring,
            "priority": self.priority,
            "completed": self.completed,
            "completed_at": self.completed_at,
            "labels": list(self.labels),
            "url": self.url,
            "parent_id": self.parent_id,
            "parent_link": self.parent_link,
            "is_deleted": self.is_deleted,
        }
        if not self.parent_id:
            data.pop("parent_link")
        return data


RECORD_TYPES = {
    EntityKind.PROJECT: ProjectRecord,
    EntityKind.SECTION: SectionRecord,
    EntityKind.TASK: TaskRecord,
}

_RESERVED_KEYS = {"type", "todoist_id", "sync_version"}


def _as_priority(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


_COERCERS = {
    "todoist_id": _as_id,
    "project_id": _as_id,
    "section_id": _as_id,
    "parent_id": _as_id,
    "is_archived": _as_bool,
    "is_deleted": _as_bool,
    "completed": _as_bool,
    "due_is_recurring": _as_bool,
    "name": _as_text,
    "content": _as_text,
    "description": _as_text,
    "priority": _as_priority,
    "labels": lambda v: [str(x) for x in v] if isinstance(v, (list, tuple)) else ([] if v in (None, "") else [str(v)]),
}


def empty_record(kind: EntityKind) -> DocumentRecord:
    return RECORD_TYPES[kind]()


def decode_record(metadata: Optional[Dict[str, Any]]) -> Optional[DocumentRecord]:
    """
    Turn a raw frontmatter mapping into a typed record.

    Returns:
        The record, or None when the mapping does not declare a known ``type``
    """
    if not metadata or not isinstance(metadata, dict):
        return None
    try:
        kind = EntityKind(str(metadata.get("type", "")).strip().lower())
    except ValueError:
        return None

    record_type = RECORD_TYPES[kind]
    known = {f.name for f in fields(record_type)} - {"extra"}
    values: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in metadata.items():
        if key == "type":
            continue
        if key in known:
            coerce = _COERCERS.get(key)
            values[key] = coerce(value) if coerce else value
        elif key not in _RESERVED_KEYS:
            extra[key] = value

    version = metadata.get("sync_version")
    values["sync_version"] = int(version) if isinstance(version, int) else SYNC_VERSION
    return record_type(extra=extra, **values)


def split_document(text: str) -> Tuple[Dict[str, Any], str]:
    """
    Split a markdown document into its frontmatter mapping and body.

    Raises:
        yaml.YAMLError: If the frontmatter block is not valid YAML
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_DELIMITER:
            block = "".join(lines[1:index])
            body = "".join(lines[index + 1:])
            data = yaml.safe_load(block) if block.strip() else {}
            if not isinstance(data, dict):
                data = {}
            return data, body

    # An opening delimiter without a closing one is plain text
    return {}, text


def join_document(metadata: Dict[str, Any], body: str) -> str:
    """Render frontmatter and body back into one document."""
    if not metadata:
        return body
    block = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"{FRONTMATTER_DELIMITER}\n{block}{FRONTMATTER_DELIMITER}\n{body}"

#
# End of frontmatter.py
########################################################################################################################
