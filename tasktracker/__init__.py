"""Task tracker MCP server: PRDs, epics and tasks with live resource views."""

from .changes import ChangeNotifier, affected_resources, compute_changes
from .config import Settings, load_settings
from .errors import BadInputError, InvariantViolationError, NotFoundError, TaskTrackerError
from .events import EventLog
from .models import PRD, ChangeRecord, Epic, ProjectData, Subscription, Task
from .resources import ResourceManager, parse_resource_uri
from .store import TaskStore
from .subscriptions import SubscriptionRegistry
from .tracker import TaskTracker

__all__ = [
    "PRD",
    "BadInputError",
    "ChangeNotifier",
    "ChangeRecord",
    "Epic",
    "EventLog",
    "InvariantViolationError",
    "NotFoundError",
    "ProjectData",
    "ResourceManager",
    "Settings",
    "Subscription",
    "SubscriptionRegistry",
    "Task",
    "TaskStore",
    "TaskTracker",
    "TaskTrackerError",
    "affected_resources",
    "compute_changes",
    "load_settings",
    "parse_resource_uri",
]
