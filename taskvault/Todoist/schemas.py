"""Pydantic models for the Todoist Sync API payloads."""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


TASK_URL_TEMPLATE = "https://app.todoist.com/app/task/{id}"


def _coerce_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class TodoistModel(BaseModel):
    """Base model; the API adds fields freely, so unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Project(TodoistModel):
    """A Todoist project."""
    id: str
    name: str = ""
    is_archived: bool = False
    is_deleted: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _coerce_id(v)


class Section(TodoistModel):
    """A section inside a project."""
    id: str
    name: str = ""
    project_id: Optional[str] = None
    is_archived: bool = False
    is_deleted: bool = False

    @field_validator("id", "project_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)


class Due(TodoistModel):
    """Due information attached to a task."""
    date: Optional[str] = None
    string: Optional[str] = None
    is_recurring: bool = False


class Task(TodoistModel):
    """A Todoist item (task or subtask)."""
    id: str
    content: str = ""
    description: str = ""
    project_id: Optional[str] = None
    section_id: Optional[str] = None
    parent_id: Optional[str] = None
    priority: int = 1
    due: Optional[Due] = None
    labels: List[str] = Field(default_factory=list)
    checked: bool = False
    completed_at: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_at", "added_at"))
    url: Optional[str] = None

    @field_validator("id", "project_id", "section_id", "parent_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("labels", mode="before")
    @classmethod
    def default_labels(cls, v):
        return [] if v is None else v

    @field_validator("description", "content", mode="before")
    @classmethod
    def default_text(cls, v):
        return "" if v is None else v

    @property
    def is_completed(self) -> bool:
        return self.checked or bool(self.completed_at)

    @property
    def canonical_url(self) -> str:
        return self.url or TASK_URL_TEMPLATE.format(id=self.id)


class SyncResponse(TodoistModel):
    """Response of a read (``sync_token`` + ``resource_types``) request."""
    sync_token: str
    full_sync: bool = False
    projects: List[Project] = Field(default_factory=list)
    sections: List[Section] = Field(default_factory=list)
    items: List[Task] = Field(default_factory=list)


class Command(TodoistModel):
    """One write command of a batch."""
    type: str
    uuid: str
    temp_id: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump()
        if payload.get("temp_id") is None:
            payload.pop("temp_id", None)
        return payload


class CommandResponse(TodoistModel):
    """Response of a write (``commands``) request."""
    sync_status: Dict[str, Any] = Field(default_factory=dict)
    temp_id_mapping: Dict[str, str] = Field(default_factory=dict)
    sync_token: Optional[str] = None

    @field_validator("temp_id_mapping", mode="before")
    @classmethod
    def coerce_mapping(cls, v):
        if not v:
            return {}
        return {str(k): str(val) for k, val in v.items()}
