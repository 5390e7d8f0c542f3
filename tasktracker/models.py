"""Data models for the task tracker.

This module contains the core data structures used throughout the tracker:
the three-level PRD -> epic -> task hierarchy, the in-memory record set
loaded from the data file, and the change records pushed to resource
subscribers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


PRD_STATUSES = ("draft", "approved", "in_progress", "completed")
EPIC_STATUSES = ("not_started", "in_progress", "completed")
TASK_STATUSES = ("todo", "in_progress", "review", "done")
PRIORITIES = ("low", "medium", "high")

ENTITY_TYPES = ("prd", "epic", "task")
CHANGE_ACTIONS = ("created", "updated", "deleted")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_timestamp(utc_now())


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp or date; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


@dataclass(slots=True)
class PRD:
    """Product requirements document, the root of the hierarchy."""

    id: str
    title: str
    description: str
    owner: str
    status: str = "draft"
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "owner": self.owner,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PRD":
        """Create from dictionary representation."""
        now = utc_now_iso()
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            owner=data.get("owner", ""),
            status=data.get("status", "draft"),
            created_at=data.get("created_at", now),
            updated_at=data.get("updated_at", now),
        )

    def validate(self) -> List[str]:
        """Validate PRD data and return any issues."""
        issues = []
        if not self.id:
            issues.append("PRD id is required")
        if not self.title:
            issues.append("PRD title is required")
        if not self.owner:
            issues.append("PRD owner is required")
        if self.status not in PRD_STATUSES:
            issues.append(f"Invalid PRD status: {self.status}")
        return issues


@dataclass(slots=True)
class Epic:
    """Mid-level grouping of work under a PRD.

    Epics carry no ``updated_at`` field, unlike PRDs and tasks.
    """

    id: str
    prd_id: str
    title: str
    description: str
    priority: str = "medium"
    status: str = "not_started"
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "prd_id": self.prd_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Epic":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            prd_id=data["prd_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            priority=data.get("priority", "medium"),
            status=data.get("status", "not_started"),
            created_at=data.get("created_at", utc_now_iso()),
        )

    def validate(self) -> List[str]:
        """Validate epic data and return any issues."""
        issues = []
        if not self.id:
            issues.append("Epic id is required")
        if not self.prd_id:
            issues.append("Epic prd_id is required")
        if not self.title:
            issues.append("Epic title is required")
        if self.status not in EPIC_STATUSES:
            issues.append(f"Invalid epic status: {self.status}")
        if self.priority not in PRIORITIES:
            issues.append(f"Invalid epic priority: {self.priority}")
        return issues


@dataclass(slots=True)
class Task:
    """Leaf unit of work under an epic."""

    id: str
    epic_id: str
    title: str
    description: str
    priority: str = "medium"
    status: str = "todo"
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)  # task ids, never validated
    notes: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "epic_id": self.epic_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee,
            "due_date": self.due_date,
            "dependencies": list(self.dependencies),
            "notes": list(self.notes),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        now = utc_now_iso()
        return cls(
            id=data["id"],
            epic_id=data["epic_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            priority=data.get("priority", "medium"),
            status=data.get("status", "todo"),
            assignee=data.get("assignee") or None,
            due_date=data.get("due_date") or None,
            dependencies=list(data.get("dependencies", [])),
            notes=list(data.get("notes", [])),
            created_at=data.get("created_at", now),
            updated_at=data.get("updated_at", now),
        )

    def is_done(self) -> bool:
        return self.status == "done"

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []
        if not self.id:
            issues.append("Task id is required")
        if not self.epic_id:
            issues.append("Task epic_id is required")
        if not self.title:
            issues.append("Task title is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid task status: {self.status}")
        if self.priority not in PRIORITIES:
            issues.append(f"Invalid task priority: {self.priority}")
        if self.due_date is not None:
            try:
                parse_timestamp(self.due_date)
            except ValueError:
                issues.append(f"Invalid due_date: {self.due_date}")
        return issues


Entity = PRD | Epic | Task


@dataclass(slots=True)
class ProjectData:
    """Full record set held by the data file."""

    prds: List[PRD] = field(default_factory=list)
    epics: List[Epic] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)

    def find_prd(self, prd_id: str) -> Optional[PRD]:
        return next((prd for prd in self.prds if prd.id == prd_id), None)

    def find_epic(self, epic_id: str) -> Optional[Epic]:
        return next((epic for epic in self.epics if epic.id == epic_id), None)

    def to_records(self) -> List[Dict[str, Any]]:
        """Flatten into tagged records, PRDs first, then epics, then tasks."""
        records: List[Dict[str, Any]] = []
        records.extend({"type": "prd", **prd.to_dict()} for prd in self.prds)
        records.extend({"type": "epic", **epic.to_dict()} for epic in self.epics)
        records.extend({"type": "task", **task.to_dict()} for task in self.tasks)
        return records


@dataclass(slots=True)
class ChangeRecord:
    """Update pushed to resource subscribers.

    ``type`` is ``created``, ``updated`` or ``deleted`` for mutations and
    ``full`` for the snapshot sent right after subscribing, in which case
    ``data`` holds the whole resource view.
    """

    uri: str
    type: str
    entity_type: Optional[str] = None
    entity: Optional[Entity] = None
    old_entity: Optional[Entity] = None
    changes: Optional[Dict[str, Dict[str, Any]]] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result: Dict[str, Any] = {
            "uri": self.uri,
            "type": self.type,
            "timestamp": self.timestamp,
        }
        if self.type == "full":
            result["data"] = self.data
            return result
        result["entityType"] = self.entity_type
        result["entity"] = self.entity.to_dict() if self.entity is not None else None
        result["oldEntity"] = self.old_entity.to_dict() if self.old_entity is not None else None
        result["changes"] = self.changes
        return result


SubscriberCallback = Callable[[ChangeRecord], None]


@dataclass(slots=True, eq=False)
class Subscription:
    """A callback registered against one resource URI.

    Equality and hashing are by identity, so registering the same
    (uri, subscriber_id) pair twice yields two distinct subscriptions.
    """

    uri: str
    subscriber_id: str
    callback: SubscriberCallback


@dataclass(slots=True)
class ResourceTemplate:
    """URI template advertised to MCP clients."""

    uri_template: str
    name: str
    description: str
    mime_type: str = "application/json"


RESOURCE_TEMPLATES = {
    "project": ResourceTemplate(
        uri_template="project://{prd_id}",
        name="Project State",
        description="Live project state with PRD, epics, and tasks",
    ),
    "dashboard": ResourceTemplate(
        uri_template="dashboard://assignee/{name}",
        name="Personal Dashboard",
        description="Real-time task dashboard for an assignee",
    ),
    "metrics": ResourceTemplate(
        uri_template="metrics://burndown/{prd_id}",
        name="Burndown Chart",
        description="Project burndown metrics",
    ),
    "events": ResourceTemplate(
        uri_template="events://project/{prd_id}",
        name="Project Event Stream",
        description="Real-time event log for project changes",
        mime_type="text/event-stream",
    ),
}
