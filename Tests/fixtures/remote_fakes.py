"""
In-memory stand-in for the Todoist Sync API.

Keeps projects/sections/tasks, hands out cursors, answers deltas with the
entities changed since a cursor and applies accepted commands to itself.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from taskvault.Todoist.remote_service import CommandStatus, DispatchResult, FetchResult, RemoteTaskService
from taskvault.Todoist.schemas import Command, Due, Project, Section, Task


class FakeTodoistRemote(RemoteTaskService):
    """Scriptable remote task service for tests."""

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.sections: Dict[str, Section] = {}
        self.tasks: Dict[str, Task] = {}
        self.version = 0
        self._changes: List[Tuple[int, str, str]] = []  # (version, kind, id)

        self.fetch_calls: List[Tuple[Optional[str], bool]] = []
        self.dispatched: List[List[Command]] = []
        self.fetch_error: Optional[Exception] = None
        self.dispatch_error: Optional[Exception] = None
        self.rejections: Dict[str, Tuple[str, str]] = {}  # entity id -> (code, message)
        self.drop_statuses = False
        self.dispatch_gate: Optional[asyncio.Event] = None
        self._next_id = 9000
        self.closed = False

    # ---- scripting helpers -------------------------------------------------------------------

    def _touch(self, kind: str, entity_id: str) -> None:
        self.version += 1
        self._changes.append((self.version, kind, entity_id))

    def add_project(self, project_id: str, name: str, **fields) -> Project:
        project = Project(id=project_id, name=name, **fields)
        self.projects[project_id] = project
        self._touch("project", project_id)
        return project

    def add_section(self, section_id: str, name: str, project_id: str, **fields) -> Section:
        section = Section(id=section_id, name=name, project_id=project_id, **fields)
        self.sections[section_id] = section
        self._touch("section", section_id)
        return section

    def add_task(self, task_id: str, content: str, project_id: Optional[str] = None, **fields) -> Task:
        task = Task(id=task_id, content=content, project_id=project_id, **fields)
        self.tasks[task_id] = task
        self._touch("task", task_id)
        return task

    def update(self, kind: str, entity_id: str, **changes) -> None:
        store = {"project": self.projects, "section": self.sections, "task": self.tasks}[kind]
        store[entity_id] = store[entity_id].model_copy(update=changes)
        self._touch(kind, entity_id)

    def hard_delete(self, kind: str, entity_id: str) -> None:
        """Remove an entity without reporting it in any delta."""
        store = {"project": self.projects, "section": self.sections, "task": self.tasks}[kind]
        store.pop(entity_id, None)

    @property
    def cursor(self) -> str:
        return f"cursor-{self.version}"

    # ---- RemoteTaskService ---------------------------------------------------------------------

    async def fetch(self, cursor: Optional[str], full: bool) -> FetchResult:
        self.fetch_calls.append((cursor, full))
        if self.fetch_error is not None:
            raise self.fetch_error

        if full or not cursor:
            return FetchResult(
                projects=list(self.projects.values()),
                sections=list(self.sections.values()),
                tasks=list(self.tasks.values()),
                next_cursor=self.cursor,
                full=True,
            )

        since = int(cursor.split("-")[1])
        changed: Set[Tuple[str, str]] = {(kind, eid) for version, kind, eid in self._changes if version > since}
        return FetchResult(
            projects=[p for pid, p in self.projects.items() if ("project", pid) in changed],
            sections=[s for sid, s in self.sections.items() if ("section", sid) in changed],
            tasks=[t for tid, t in self.tasks.items() if ("task", tid) in changed],
            next_cursor=self.cursor,
            full=False,
        )

    async def dispatch(self, commands: List[Command]) -> DispatchResult:
        self.dispatched.append(list(commands))
        if self.dispatch_gate is not None:
            await self.dispatch_gate.wait()
        if self.dispatch_error is not None:
            raise self.dispatch_error
        result = DispatchResult(next_cursor=self.cursor)
        if self.drop_statuses:
            return result
        for command in commands:
            target = command.args.get("id") or command.temp_id
            if target in self.rejections:
                code, message = self.rejections[target]
                result.statuses[command.uuid] = CommandStatus(command.uuid, False, code, message)
                continue
            self._apply(command, result)
            result.statuses[command.uuid] = CommandStatus(command.uuid, True)
        return result

    def _apply(self, command: Command, result: DispatchResult) -> None:
        args = command.args
        if command.type == "item_complete":
            self.update("task", args["id"], checked=True, completed_at="2026-01-01T00:00:00Z")
        elif command.type == "item_uncomplete":
            self.update("task", args["id"], checked=False, completed_at=None)
        elif command.type == "item_update":
            changes = {k: v for k, v in args.items() if k not in ("id", "due")}
            if "due" in args:
                changes["due"] = Due(**args["due"]) if args["due"] else None
            self.update("task", args["id"], **changes)
        elif command.type == "item_add":
            self._next_id += 1
            real_id = str(self._next_id)
            fields = {k: v for k, v in args.items() if k != "due"}
            self.add_task(real_id, **fields)
            result.temp_id_mapping[command.temp_id] = real_id

    async def close(self) -> None:
        self.closed = True
