# intents.py
# Description: Local change intents and the precedence rules used to coalesce them
#
# Imports
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Todoist.schemas import Command, Due, Task
#
########################################################################################################################
#
# Classes and Functions:

class IntentType(Enum):
    """Kinds of local change, valued by the remote command they become."""
    CREATE = "item_add"
    UPDATE = "item_update"
    COMPLETE = "item_complete"
    UNCOMPLETE = "item_uncomplete"


LIFECYCLE_INTENTS = (IntentType.COMPLETE, IntentType.UNCOMPLETE)

# Task fields the change detector watches and an update may carry
TRACKED_FIELDS = ("content", "description", "priority", "due_string", "labels")
MIN_PRIORITY = 1
MAX_PRIORITY = 4


@dataclass
class Intent:
    """A detected local change waiting to be sent to the remote.

    ``entity_id`` is the real task id, or for creations the temporary id the
    command is sent with. A complete/uncomplete may carry ``follow_up`` field
    edits; they are queued as an update once the lifecycle command is accepted.
    """
    intent_type: IntentType
    entity_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    document_path: Optional[str] = None
    temp_id: Optional[str] = None
    follow_up: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.entity_id

    def to_command(self, correlation_id: str) -> Command:
        if self.intent_type is IntentType.CREATE:
            args = fields_to_args(self.fields)
            return Command(type=self.intent_type.value, uuid=correlation_id,
                           temp_id=self.temp_id or self.entity_id, args=args)
        args: Dict[str, Any] = {"id": self.entity_id}
        if self.intent_type is IntentType.UPDATE:
            args.update(fields_to_args(self.fields))
        return Command(type=self.intent_type.value, uuid=correlation_id, args=args)


def fields_to_args(values: Dict[str, Any]) -> Dict[str, Any]:
    """Translate intent fields into Todoist command arguments."""
    args: Dict[str, Any] = {}
    for name, value in values.items():
        if name == "due_string":
            args["due"] = {"string": value} if value else None
        else:
            args[name] = value
    return args


def fields_to_task_changes(task: Task, values: Dict[str, Any]) -> Dict[str, Any]:
    """Translate accepted intent fields into SnapshotCache field updates."""
    changes: Dict[str, Any] = {}
    for name, value in values.items():
        if name == "due_string":
            if value:
                base = task.due or Due()
                changes["due"] = base.model_copy(update={"string": value})
            else:
                changes["due"] = None
        elif name in Task.model_fields:
            changes[name] = value
    return changes


def merge_intents(existing: Intent, incoming: Intent) -> Intent:
    """
    Coalesce two intents queued under the same key.

    - complete overwrites a pending update or uncomplete
    - uncomplete overwrites a pending update; complete/uncomplete against each
      other: the newer one wins
    - two updates (or two creates) merge field by field, newer values winning
    - an update on a pending create folds into the create
    - an update arriving after a pending complete/uncomplete is held as its
      follow-up and sent after the lifecycle command lands
    """
    if incoming.intent_type in LIFECYCLE_INTENTS:
        if existing.intent_type is IntentType.CREATE:
            logger.warning(f"Ignoring {incoming.intent_type.value} for {existing.key}: creation still pending")
            return existing
        if existing.intent_type in LIFECYCLE_INTENTS:
            return replace(incoming, follow_up={**existing.follow_up, **incoming.follow_up})
        return incoming

    if incoming.intent_type is IntentType.UPDATE:
        if existing.intent_type in LIFECYCLE_INTENTS:
            logger.info(
                f"Holding update of {', '.join(sorted(incoming.fields))} for {existing.key} "
                f"until its pending {existing.intent_type.value} is accepted"
            )
            return replace(
                existing,
                follow_up={**existing.follow_up, **incoming.fields},
                document_path=incoming.document_path or existing.document_path,
            )
        return replace(
            existing,
            fields={**existing.fields, **incoming.fields},
            document_path=incoming.document_path or existing.document_path,
        )

    # incoming create
    if existing.intent_type is IntentType.CREATE:
        return replace(
            existing,
            fields={**existing.fields, **incoming.fields},
            document_path=incoming.document_path or existing.document_path,
        )
    return incoming

#
# End of intents.py
########################################################################################################################
