"""Derived resource views over the task store.

Four URI schemes are served, each recomputed from the data file on every
read with no caching:

- ``project://{prd_id}``: the PRD with nested epics and tasks plus statistics
- ``dashboard://assignee/{name}``: one assignee's tasks, optionally filtered
- ``metrics://burndown/{prd_id}``: burndown, velocity, epic progress, team load
- ``events://project/{prd_id}``: recent change events for the project
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from .config import DEFAULT_VELOCITY_DAYS
from .errors import BadInputError, InvariantViolationError, NotFoundError
from .models import parse_timestamp, utc_now
from .tracker_logging import log_performance

if TYPE_CHECKING:
    from .events import EventLog
    from .store import TaskStore
    from .subscriptions import SubscriptionRegistry

logger = logging.getLogger("tasktracker.resources")

SPRINT_DAYS = 14
UPCOMING_DEADLINE_LIMIT = 5

# Fixed first path component for schemes that have one.
NAMESPACES = {"dashboard": "assignee", "metrics": "burndown", "events": "project"}


@dataclass(slots=True)
class ResourceUri:
    """Parsed resource identifier."""

    scheme: str
    key: str
    params: Dict[str, str] = field(default_factory=dict)


def parse_resource_uri(uri: str) -> ResourceUri:
    """Split ``scheme://namespace/key?query`` (or ``scheme://key``) into its parts."""
    parts = urlsplit(uri)
    segments = [unquote(segment) for segment in parts.path.split("/") if segment]
    namespace = unquote(parts.netloc)

    expected = NAMESPACES.get(parts.scheme)
    if expected is not None:
        if namespace != expected:
            raise NotFoundError(f"Unknown resource: {uri}")
        key = segments[0] if segments else ""
    else:
        key = namespace

    return ResourceUri(scheme=parts.scheme, key=key, params=dict(parse_qsl(parts.query)))


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _int_param(params: Dict[str, str], name: str) -> Optional[int]:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise BadInputError(f"Query parameter '{name}' must be an integer, got '{raw}'") from None


def calculate_velocity(tasks: List[Dict[str, Any]], days: int, now: Optional[datetime] = None) -> int:
    """Done tasks updated in the last ``days`` days, scaled to a weekly rate."""
    since = (now or utc_now()) - timedelta(days=days)
    completed_recently = [
        task for task in tasks
        if task["status"] == "done" and parse_timestamp(task["updated_at"]) >= since
    ]
    return _round_half_up(len(completed_recently) * 7 / days)


def calculate_team_load(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Open task count per assignee, busiest first."""
    load: Dict[str, int] = {}
    for task in tasks:
        if task.get("assignee") and task["status"] != "done":
            load[task["assignee"]] = load.get(task["assignee"], 0) + 1

    ranked = [{"assignee": assignee, "taskCount": count} for assignee, count in load.items()]
    ranked.sort(key=lambda entry: entry["taskCount"], reverse=True)
    return ranked


class ResourceManager:
    """Builds resource views from the current store contents."""

    def __init__(
        self,
        store: "TaskStore",
        *,
        event_log: Optional["EventLog"] = None,
        velocity_days: int = DEFAULT_VELOCITY_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.event_log = event_log
        self.velocity_days = velocity_days
        self.clock = clock
        self.registry: Optional["SubscriptionRegistry"] = None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def list_resources(self) -> List[Dict[str, Any]]:
        """Concrete resources: one project per PRD, one dashboard per assignee."""
        data = self.store.load_data()
        resources: List[Dict[str, Any]] = [
            {
                "uri": f"project://{prd.id}",
                "name": f"Project: {prd.title}",
                "description": prd.description,
                "mimeType": "application/json",
            }
            for prd in data.prds
        ]

        resources.extend(
            {
                "uri": f"dashboard://assignee/{assignee}",
                "name": f"{assignee}'s Dashboard",
                "mimeType": "application/json",
            }
            for assignee in self.store.assignees()
        )
        return resources

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, uri: str) -> Dict[str, Any]:
        """Build the view for ``uri``, dispatching on its scheme."""
        parsed = parse_resource_uri(uri)

        if parsed.scheme == "project":
            return self.project_view(parsed.key)
        if parsed.scheme == "dashboard":
            return self.dashboard_view(parsed.key, parsed.params)
        if parsed.scheme == "metrics":
            return self.metrics_view(parsed.key)
        if parsed.scheme == "events":
            return self.event_stream_view(parsed.key, parsed.params)

        raise NotFoundError(f"Unknown resource type: {parsed.scheme}")

    def _single_project(self, prd_id: str) -> Dict[str, Any]:
        project = self.store.read_project(prd_id)
        if isinstance(project, list):
            raise InvariantViolationError(f"Expected single project for ID '{prd_id}', got a collection")
        return project

    def _subscriber_count(self, uri: str) -> int:
        return self.registry.subscriber_count(uri) if self.registry is not None else 0

    @log_performance("project_view")
    def project_view(self, prd_id: str) -> Dict[str, Any]:
        project = self._single_project(prd_id)
        tasks = [task for epic in project["epics"] for task in epic["tasks"]]

        return {
            **project,
            "_meta": {
                "subscriberCount": self._subscriber_count(f"project://{prd_id}"),
                "lastUpdated": self.clock().isoformat(),
                "liveUpdates": True,
            },
            "statistics": {
                "totalEpics": len(project["epics"]),
                "totalTasks": len(tasks),
                "completedTasks": sum(1 for task in tasks if task["status"] == "done"),
                "inProgressTasks": sum(1 for task in tasks if task["status"] == "in_progress"),
            },
        }

    @log_performance("dashboard_view")
    def dashboard_view(self, assignee: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Personal dashboard.

        Parameters:
            showCompleted: ``"false"`` hides done tasks
            days: only tasks updated within the last N days
            priority: exact priority match
        """
        params = params or {}
        now = self.clock()
        tasks = self.store.get_tasks_by_assignee(assignee)
        data = self.store.load_data()

        if params.get("showCompleted") == "false":
            tasks = [task for task in tasks if not task.is_done()]

        days = _int_param(params, "days")
        if days is not None:
            cutoff = now - timedelta(days=days)
            tasks = [task for task in tasks if parse_timestamp(task.updated_at) >= cutoff]

        if params.get("priority"):
            tasks = [task for task in tasks if task.priority == params["priority"]]

        by_status = {
            status: [task.to_dict() for task in tasks if task.status == status]
            for status in ("todo", "in_progress", "review", "done")
        }

        upcoming = sorted(
            (task for task in tasks if task.due_date and parse_timestamp(task.due_date) > now),
            key=lambda task: parse_timestamp(task.due_date),
        )[:UPCOMING_DEADLINE_LIMIT]

        epic_to_prd = {epic.id: epic.prd_id for epic in data.epics}
        task_prds = [epic_to_prd.get(task.epic_id) for task in tasks]
        projects = [
            {**prd.to_dict(), "taskCount": task_prds.count(prd.id)}
            for prd in data.prds
            if prd.id in task_prds
        ]

        return {
            "assignee": assignee,
            "summary": {
                "totalTasks": len(tasks),
                "todoCount": len(by_status["todo"]),
                "inProgressCount": len(by_status["in_progress"]),
                "reviewCount": len(by_status["review"]),
                "completedToday": sum(
                    1 for task in tasks
                    if task.is_done() and parse_timestamp(task.updated_at).date() == now.date()
                ),
            },
            "tasksByStatus": by_status,
            "upcomingDeadlines": [task.to_dict() for task in upcoming],
            "projects": projects,
        }

    @log_performance("metrics_view")
    def metrics_view(self, prd_id: str) -> Dict[str, Any]:
        """Burndown over a fixed two-week window starting at the PRD's creation date."""
        project = self._single_project(prd_id)
        tasks = [task for epic in project["epics"] for task in epic["tasks"]]

        start = parse_timestamp(project["created_at"]).date()
        dates = [(start + timedelta(days=offset)).isoformat() for offset in range(SPRINT_DAYS)]
        completed = sum(1 for task in tasks if task["status"] == "done")

        epic_progress = []
        for epic in project["epics"]:
            total = len(epic["tasks"])
            done = sum(1 for task in epic["tasks"] if task["status"] == "done")
            epic_progress.append({
                "id": epic["id"],
                "title": epic["title"],
                "totalTasks": total,
                "completedTasks": done,
                "percentComplete": _round_half_up(done / total * 100) if total else 0,
            })

        return {
            "burndown": {
                "dates": dates,
                "totalPoints": len(tasks),
                "remaining": len(tasks) - completed,
                "completed": completed,
                "velocity": calculate_velocity(tasks, self.velocity_days, now=self.clock()),
            },
            "epicProgress": epic_progress,
            "teamLoad": calculate_team_load(tasks),
        }

    def event_stream_view(self, prd_id: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        limit = _int_param(params or {}, "limit")
        events = self.event_log.recent(prd_id, limit) if self.event_log is not None else []
        return {
            "events": events,
            "_meta": {
                "streaming": True,
                "format": "json-lines",
                "retention": self.event_log.retention if self.event_log is not None else 0,
            },
        }
