"""Entity store for the task tracker.

Holds PRDs, epics and tasks in a single JSON-lines file. Every operation
loads the whole file, and every mutation rewrites it. Read-modify-write
cycles are serialized through one re-entrant lock so two mutations in the
same process cannot overwrite each other's changes.

Mutations are reported to an optional change notifier after the file has
been written.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from .errors import BadInputError, NotFoundError
from .models import (
    ENTITY_TYPES,
    PRIORITIES,
    TASK_STATUSES,
    Entity,
    Epic,
    PRD,
    ProjectData,
    Task,
    generate_id,
    utc_now_iso,
)
from .tracker_logging import log_error_with_context, log_operation, log_performance

if TYPE_CHECKING:
    from .changes import ChangeNotifier

logger = logging.getLogger("tasktracker.store")

PRD_UPDATABLE = ("title", "description", "status", "owner")
EPIC_UPDATABLE = ("title", "description", "status", "priority")
TASK_UPDATABLE = ("title", "description", "status", "priority", "assignee", "due_date", "dependencies", "notes")

# (action, entity_type, entity, old_entity)
PendingChange = Tuple[str, str, Entity, Optional[Entity]]


class TaskStore:
    """Load, mutate and query the PRD/epic/task record file."""

    def __init__(self, path: Path | str, notifier: Optional["ChangeNotifier"] = None):
        self.path = Path(path).expanduser().resolve()
        self._notifier = notifier
        self._lock = threading.RLock()
        logger.info(f"Task store using {self.path}")

    def set_notifier(self, notifier: Optional["ChangeNotifier"]) -> None:
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load_data(self) -> ProjectData:
        """Read the full record set; a missing file is an empty project."""
        with self._lock:
            if not self.path.exists():
                return ProjectData()

            data = ProjectData()
            text = self.path.read_text(encoding="utf-8")
            for number, line in enumerate(text.splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    log_error_with_context(e, {"operation": "load_data", "path": str(self.path), "line": number})
                    raise BadInputError(f"Malformed record on line {number} of {self.path}: {e.msg}") from e

                item_type = record.pop("type", None)
                if item_type == "prd":
                    data.prds.append(PRD.from_dict(record))
                elif item_type == "epic":
                    data.epics.append(Epic.from_dict(record))
                elif item_type == "task":
                    data.tasks.append(Task.from_dict(record))
                else:
                    logger.warning(f"Skipping record with unknown type {item_type!r} on line {number}")
            return data

    def save_data(self, data: ProjectData) -> None:
        """Rewrite the whole file from ``data``."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lines = [json.dumps(record) for record in data.to_records()]
            self.path.write_text("\n".join(lines), encoding="utf-8")
            logger.debug(
                f"Saved {len(data.prds)} PRDs, {len(data.epics)} epics, {len(data.tasks)} tasks to {self.path}"
            )

    def _emit(self, pending: Iterable[PendingChange]) -> None:
        if self._notifier is None:
            return
        for action, entity_type, entity, old_entity in pending:
            self._notifier.notify_change(action, entity_type, entity, old_entity)

    # ------------------------------------------------------------------
    # PRDs
    # ------------------------------------------------------------------

    def create_prd(self, title: str, description: str, owner: str) -> PRD:
        with self._lock, log_operation("create_prd", title=title, owner=owner):
            data = self.load_data()
            prd = PRD(id=generate_id("prd"), title=title, description=description, owner=owner)
            _raise_issues(prd.validate())
            data.prds.append(prd)
            self.save_data(data)

        self._emit([("created", "prd", prd, None)])
        return prd

    def update_prd(self, prd_id: str, **updates: Any) -> PRD:
        with self._lock, log_operation("update_prd", prd_id=prd_id):
            data = self.load_data()
            index = _index_of(data.prds, prd_id, "PRD")
            old = data.prds[index]
            new = replace(old, **_select_updates(updates, PRD_UPDATABLE), updated_at=utc_now_iso())
            _raise_issues(new.validate())
            data.prds[index] = new
            self.save_data(data)

        self._emit([("updated", "prd", new, old)])
        return new

    def delete_prd(self, prd_id: str) -> Dict[str, int]:
        """Delete a PRD together with its epics and their tasks."""
        with self._lock, log_operation("delete_prd", prd_id=prd_id):
            data = self.load_data()
            prd = data.prds[_index_of(data.prds, prd_id, "PRD")]

            epic_ids = {epic.id for epic in data.epics if epic.prd_id == prd_id}
            removed_tasks = [task for task in data.tasks if task.epic_id in epic_ids]
            removed_epics = [epic for epic in data.epics if epic.id in epic_ids]

            data.tasks = [task for task in data.tasks if task.epic_id not in epic_ids]
            data.epics = [epic for epic in data.epics if epic.prd_id != prd_id]
            data.prds = [item for item in data.prds if item.id != prd_id]
            self.save_data(data)

        pending: List[PendingChange] = [("deleted", "task", task, None) for task in removed_tasks]
        pending.extend(("deleted", "epic", epic, None) for epic in removed_epics)
        pending.append(("deleted", "prd", prd, None))
        self._emit(pending)
        return {"prds": 1, "epics": len(removed_epics), "tasks": len(removed_tasks)}

    # ------------------------------------------------------------------
    # Epics
    # ------------------------------------------------------------------

    def create_epics(self, epics: List[Dict[str, Any]]) -> List[Epic]:
        with self._lock, log_operation("create_epics", count=len(epics)):
            data = self.load_data()
            created: List[Epic] = []
            for entry in epics:
                prd_id = _required(entry, "prd_id", "epic")
                if data.find_prd(prd_id) is None:
                    raise NotFoundError(f"PRD with id {prd_id} not found")
                epic = Epic(
                    id=generate_id("epic"),
                    prd_id=prd_id,
                    title=_required(entry, "title", "epic"),
                    description=entry.get("description", ""),
                    priority=entry.get("priority") or "medium",
                )
                _raise_issues(epic.validate())
                created.append(epic)

            data.epics.extend(created)
            self.save_data(data)

        self._emit(("created", "epic", epic, None) for epic in created)
        return created

    def update_epic(self, epic_id: str, **updates: Any) -> Epic:
        with self._lock, log_operation("update_epic", epic_id=epic_id):
            data = self.load_data()
            index = _index_of(data.epics, epic_id, "Epic")
            old = data.epics[index]
            new = replace(old, **_select_updates(updates, EPIC_UPDATABLE))
            _raise_issues(new.validate())
            data.epics[index] = new
            self.save_data(data)

        self._emit([("updated", "epic", new, old)])
        return new

    def delete_epics(self, ids: List[str]) -> Dict[str, int]:
        """Delete epics and every task under them."""
        with self._lock, log_operation("delete_epics", count=len(ids)):
            data = self.load_data()
            targets = set(ids)
            for epic_id in ids:
                _index_of(data.epics, epic_id, "Epic")

            removed_tasks = [task for task in data.tasks if task.epic_id in targets]
            removed_epics = [epic for epic in data.epics if epic.id in targets]
            data.tasks = [task for task in data.tasks if task.epic_id not in targets]
            data.epics = [epic for epic in data.epics if epic.id not in targets]
            self.save_data(data)

        pending: List[PendingChange] = [("deleted", "task", task, None) for task in removed_tasks]
        pending.extend(("deleted", "epic", epic, None) for epic in removed_epics)
        self._emit(pending)
        return {"epics": len(removed_epics), "tasks": len(removed_tasks)}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_tasks(self, tasks: List[Dict[str, Any]]) -> List[Task]:
        with self._lock, log_operation("create_tasks", count=len(tasks)):
            data = self.load_data()
            now = utc_now_iso()
            created: List[Task] = []
            for entry in tasks:
                epic_id = _required(entry, "epic_id", "task")
                if data.find_epic(epic_id) is None:
                    raise NotFoundError(f"Epic with id {epic_id} not found")
                task = Task(
                    id=generate_id("task"),
                    epic_id=epic_id,
                    title=_required(entry, "title", "task"),
                    description=entry.get("description", ""),
                    priority=entry.get("priority") or "medium",
                    status=entry.get("status") or "todo",
                    assignee=entry.get("assignee") or None,
                    due_date=entry.get("due_date") or None,
                    dependencies=list(entry.get("dependencies") or []),
                    created_at=now,
                    updated_at=now,
                )
                _raise_issues(task.validate())
                created.append(task)

            data.tasks.extend(created)
            self.save_data(data)

        self._emit(("created", "task", task, None) for task in created)
        return created

    def update_task(self, task_id: str, **updates: Any) -> Task:
        with self._lock, log_operation("update_task", task_id=task_id):
            data = self.load_data()
            index = _index_of(data.tasks, task_id, "Task")
            old = data.tasks[index]
            changes = _select_updates(updates, TASK_UPDATABLE)
            # An empty string clears an optional field.
            for optional in ("assignee", "due_date"):
                if changes.get(optional) == "":
                    changes[optional] = None
            new = replace(old, **changes, updated_at=utc_now_iso())
            _raise_issues(new.validate())
            data.tasks[index] = new
            self.save_data(data)

        self._emit([("updated", "task", new, old)])
        return new

    def add_task_notes(self, task_id: str, notes: List[str]) -> Task:
        """Append notes; the task gets a new notes list, never an in-place append."""
        with self._lock, log_operation("add_task_notes", task_id=task_id, count=len(notes)):
            data = self.load_data()
            index = _index_of(data.tasks, task_id, "Task")
            old = data.tasks[index]
            new = replace(old, notes=[*old.notes, *notes], updated_at=utc_now_iso())
            data.tasks[index] = new
            self.save_data(data)

        self._emit([("updated", "task", new, old)])
        return new

    def delete_tasks(self, ids: List[str]) -> Dict[str, int]:
        with self._lock, log_operation("delete_tasks", count=len(ids)):
            data = self.load_data()
            targets = set(ids)
            for task_id in ids:
                _index_of(data.tasks, task_id, "Task")
            removed = [task for task in data.tasks if task.id in targets]
            data.tasks = [task for task in data.tasks if task.id not in targets]
            self.save_data(data)

        # Removed tasks still resolve to their project while their epic exists.
        self._emit(("deleted", "task", task, None) for task in removed)
        return {"tasks": len(removed)}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @log_performance("read_project")
    def read_project(self, prd_id: Optional[str] = None) -> Dict[str, Any] | List[Dict[str, Any]]:
        """Return one PRD with nested epics and tasks, or all of them when no id is given."""
        data = self.load_data()

        if prd_id:
            prd = data.find_prd(prd_id)
            if prd is None:
                raise NotFoundError(f"PRD with id {prd_id} not found")
            return _nest_project(prd, data)

        return [_nest_project(prd, data) for prd in data.prds]

    def search_items(self, query: str, item_type: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Case-insensitive substring search over titles, descriptions, owners, assignees and notes."""
        if item_type is not None and item_type not in ENTITY_TYPES:
            raise BadInputError(f"Invalid item_type: {item_type}")

        data = self.load_data()
        needle = query.lower()
        results: Dict[str, List[Dict[str, Any]]] = {}

        if item_type in (None, "prd"):
            results["prds"] = [
                prd.to_dict() for prd in data.prds
                if _contains(needle, prd.title, prd.description, prd.owner)
            ]
        if item_type in (None, "epic"):
            results["epics"] = [
                epic.to_dict() for epic in data.epics
                if _contains(needle, epic.title, epic.description)
            ]
        if item_type in (None, "task"):
            results["tasks"] = [
                task.to_dict() for task in data.tasks
                if _contains(needle, task.title, task.description, task.assignee, *task.notes)
            ]
        return results

    def get_tasks_by_status(self, status: str, epic_id: Optional[str] = None, assignee: Optional[str] = None) -> List[Task]:
        if status not in TASK_STATUSES:
            raise BadInputError(f"Invalid task status: {status}")
        data = self.load_data()
        return [
            task for task in data.tasks
            if task.status == status
            and (not epic_id or task.epic_id == epic_id)
            and (not assignee or task.assignee == assignee)
        ]

    def get_tasks_by_assignee(self, assignee: str) -> List[Task]:
        data = self.load_data()
        return [task for task in data.tasks if task.assignee == assignee]

    def assignees(self) -> List[str]:
        """Distinct assignees in first-seen order."""
        seen: Dict[str, None] = {}
        for task in self.load_data().tasks:
            if task.assignee:
                seen.setdefault(task.assignee, None)
        return list(seen)


def _nest_project(prd: PRD, data: ProjectData) -> Dict[str, Any]:
    epics = [epic for epic in data.epics if epic.prd_id == prd.id]
    return {
        **prd.to_dict(),
        "epics": [
            {
                **epic.to_dict(),
                "tasks": [task.to_dict() for task in data.tasks if task.epic_id == epic.id],
            }
            for epic in epics
        ],
    }


def _index_of(items: List[Any], item_id: str, label: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise NotFoundError(f"{label} with id {item_id} not found")


def _select_updates(updates: Dict[str, Any], allowed: Tuple[str, ...]) -> Dict[str, Any]:
    """Keep allowed fields that were actually supplied (``None`` means unchanged)."""
    selected = {key: value for key, value in updates.items() if key in allowed and value is not None}
    if "priority" in selected and selected["priority"] not in PRIORITIES:
        raise BadInputError(f"Invalid priority: {selected['priority']}")
    for key in ("dependencies", "notes"):
        if key in selected:
            selected[key] = list(selected[key])
    return selected


def _required(entry: Dict[str, Any], key: str, label: str) -> Any:
    value = entry.get(key)
    if not value:
        raise BadInputError(f"{key} is required for every {label}")
    return value


def _raise_issues(issues: List[str]) -> None:
    if issues:
        raise BadInputError("; ".join(issues))


def _contains(needle: str, *haystack: Optional[str]) -> bool:
    return any(value and needle in value.lower() for value in haystack)
