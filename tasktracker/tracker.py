"""Task tracker facade.

Wires the store, change notifier, subscription registry, event log and
resource views together and exposes the operations behind the MCP tools.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .changes import ChangeNotifier
from .config import Settings, load_settings
from .events import EventLog
from .models import SubscriberCallback, Subscription
from .resources import ResourceManager
from .store import TaskStore
from .subscriptions import SubscriptionRegistry
from .tracker_logging import log_error_with_context

logger = logging.getLogger("tasktracker.tracker")


class TaskTracker:
    """One tracker per server process; call :meth:`close` on shutdown."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.event_log = EventLog(self.settings.event_retention)
        self.store = TaskStore(self.settings.task_file)
        self.resources = ResourceManager(
            self.store,
            event_log=self.event_log,
            velocity_days=self.settings.velocity_days,
        )
        self.registry = SubscriptionRegistry(self.resources.read)
        self.resources.registry = self.registry
        self.notifier = ChangeNotifier(self.store, self.registry, self.event_log)
        self.store.set_notifier(self.notifier)
        logger.info(f"Task tracker ready (data file {self.store.path})")

    def close(self) -> None:
        self.store.set_notifier(None)
        self.registry.close()
        self.event_log.clear()
        logger.info("Task tracker closed")

    # ------------------------------------------------------------------
    # PRDs
    # ------------------------------------------------------------------

    def create_prd(self, title: str, description: str, owner: str) -> Dict[str, Any]:
        return self.store.create_prd(title, description, owner).to_dict()

    def update_prd(self, prd_id: str, **updates: Any) -> Dict[str, Any]:
        return self.store.update_prd(prd_id, **updates).to_dict()

    def delete_prd(self, prd_id: str) -> Dict[str, Any]:
        deleted = self.store.delete_prd(prd_id)
        # Subscribers already received the deletion events; the history goes with the PRD.
        self.event_log.clear(prd_id)
        return {
            "deleted": deleted,
            "message": (
                f"PRD {prd_id} deleted with {deleted['epics']} epics and {deleted['tasks']} tasks"
            ),
        }

    # ------------------------------------------------------------------
    # Epics
    # ------------------------------------------------------------------

    def create_epics(self, epics: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [epic.to_dict() for epic in self.store.create_epics(epics)]

    def update_epic(self, epic_id: str, **updates: Any) -> Dict[str, Any]:
        return self.store.update_epic(epic_id, **updates).to_dict()

    def delete_epics(self, ids: List[str]) -> Dict[str, Any]:
        deleted = self.store.delete_epics(ids)
        return {
            "deleted": deleted,
            "message": f"Deleted {deleted['epics']} epics and {deleted['tasks']} associated tasks",
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_tasks(self, tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [task.to_dict() for task in self.store.create_tasks(tasks)]

    def update_task(self, task_id: str, **updates: Any) -> Dict[str, Any]:
        return self.store.update_task(task_id, **updates).to_dict()

    def add_task_notes(self, task_id: str, notes: List[str]) -> Dict[str, Any]:
        return self.store.add_task_notes(task_id, notes).to_dict()

    def delete_tasks(self, ids: List[str]) -> Dict[str, Any]:
        deleted = self.store.delete_tasks(ids)
        return {"deleted": deleted, "message": f"Deleted {deleted['tasks']} tasks"}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def read_project(self, prd_id: Optional[str] = None) -> Dict[str, Any] | List[Dict[str, Any]]:
        return self.store.read_project(prd_id)

    def search_items(self, query: str, item_type: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        return self.store.search_items(query, item_type)

    def get_tasks_by_status(
        self,
        status: str,
        epic_id: Optional[str] = None,
        assignee: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return [task.to_dict() for task in self.store.get_tasks_by_status(status, epic_id, assignee)]

    def get_tasks_by_assignee(self, assignee: str) -> List[Dict[str, Any]]:
        return [task.to_dict() for task in self.store.get_tasks_by_assignee(assignee)]

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def list_resources(self) -> List[Dict[str, Any]]:
        return self.resources.list_resources()

    def read_resource(self, uri: str) -> Dict[str, Any]:
        return self.resources.read(uri)

    def subscribe(self, uri: str, subscriber_id: str, callback: SubscriberCallback) -> Subscription:
        try:
            return self.registry.subscribe(uri, subscriber_id, callback)
        except Exception as e:
            log_error_with_context(e, {"operation": "subscribe", "uri": uri, "subscriber_id": subscriber_id})
            raise

    def unsubscribe(self, uri: str, subscriber_id: str) -> int:
        return self.registry.unsubscribe(uri, subscriber_id)
