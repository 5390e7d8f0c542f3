"""MCP server exposing PRD/epic/task tools and live project resources."""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp import types
from mcp.server.fastmcp import FastMCP
from mcp.server.lowlevel import NotificationOptions

from tasktracker import ChangeRecord, Settings, TaskTracker, load_settings
from tasktracker.models import RESOURCE_TEMPLATES
from tasktracker.tracker_logging import setup_logging

# Connection context carries no client identity; every subscription belongs to one logical client.
DEFAULT_CLIENT_ID = "default"

logger = logging.getLogger("tasktracker.server")


class TrackerLifecycle:
    """Owns the server's single tracker from startup to shutdown."""

    def __init__(self):
        self._tracker: Optional[TaskTracker] = None

    def start(self, settings: Optional[Settings] = None) -> TaskTracker:
        if self._tracker is not None:
            raise RuntimeError("Task tracker is already running")
        self._tracker = TaskTracker(settings or load_settings())
        return self._tracker

    def stop(self) -> None:
        if self._tracker is not None:
            self._tracker.close()
            self._tracker = None

    @property
    def tracker(self) -> TaskTracker:
        if self._tracker is None:
            raise RuntimeError("Task tracker is not running")
        return self._tracker


_lifecycle = TrackerLifecycle()


def _tracker() -> TaskTracker:
    return _lifecycle.tracker


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
    tracker = _lifecycle.start()
    try:
        yield {"tracker": tracker}
    finally:
        _lifecycle.stop()


mcp = FastMCP("task-manager", lifespan=lifespan)


def _render(uri: str) -> str:
    return json.dumps(_tracker().read_resource(uri), indent=2)


# ----------------------------------------------------------------------
# PRD tools
# ----------------------------------------------------------------------


@mcp.tool()
def create_prd(title: str, description: str, owner: str) -> Dict[str, Any]:
    """Create a new Product Requirements Document."""

    return _tracker().create_prd(title, description, owner)


@mcp.tool()
def update_prd(
    id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    owner: Optional[str] = None,
) -> Dict[str, Any]:
    """Update an existing PRD. Status is one of draft, approved, in_progress, completed."""

    return _tracker().update_prd(id, title=title, description=description, status=status, owner=owner)


@mcp.tool()
def delete_prd(id: str) -> Dict[str, Any]:
    """Delete a PRD and all its associated epics and tasks."""

    return _tracker().delete_prd(id)


# ----------------------------------------------------------------------
# Epic tools
# ----------------------------------------------------------------------


@mcp.tool()
def create_epics(epics: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Create multiple epics linked to a PRD.

    Each epic needs prd_id, title, description and priority (low, medium, high).
    """

    return _tracker().create_epics(epics)


@mcp.tool()
def update_epic(
    id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
) -> Dict[str, Any]:
    """Update an existing epic. Status is one of not_started, in_progress, completed."""

    return _tracker().update_epic(id, title=title, description=description, status=status, priority=priority)


@mcp.tool()
def delete_epics(ids: List[str]) -> Dict[str, Any]:
    """Delete epics and their associated tasks."""

    return _tracker().delete_epics(ids)


# ----------------------------------------------------------------------
# Task tools
# ----------------------------------------------------------------------


@mcp.tool()
def create_tasks(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Create multiple tasks linked to epics.

    Each task needs epic_id, title, description and priority; assignee,
    due_date (ISO format) and dependencies (task ids) are optional.
    """

    return _tracker().create_tasks(tasks)


@mcp.tool()
def update_task(
    id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assignee: Optional[str] = None,
    due_date: Optional[str] = None,
    dependencies: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Update an existing task. Status is one of todo, in_progress, review, done.
    Pass an empty string for assignee or due_date to clear it."""

    return _tracker().update_task(
        id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        assignee=assignee,
        due_date=due_date,
        dependencies=dependencies,
    )


@mcp.tool()
def add_task_notes(task_id: str, notes: List[str]) -> Dict[str, Any]:
    """Add progress notes to a task."""

    return _tracker().add_task_notes(task_id, notes)


@mcp.tool()
def delete_tasks(ids: List[str]) -> Dict[str, Any]:
    """Delete multiple tasks."""

    return _tracker().delete_tasks(ids)


# ----------------------------------------------------------------------
# Query tools
# ----------------------------------------------------------------------


@mcp.tool()
def read_project(prd_id: Optional[str] = None) -> Any:
    """Read project hierarchy (PRD with nested epics and tasks); all projects when prd_id is omitted."""

    return _tracker().read_project(prd_id)


@mcp.tool()
def search_items(query: str, item_type: Optional[str] = None) -> Dict[str, Any]:
    """Search across PRDs, epics, and tasks; item_type narrows to prd, epic or task."""

    return _tracker().search_items(query, item_type)


@mcp.tool()
def get_tasks_by_status(
    status: str,
    epic_id: Optional[str] = None,
    assignee: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Get tasks filtered by status, optionally narrowed to one epic or assignee."""

    return _tracker().get_tasks_by_status(status, epic_id, assignee)


@mcp.tool()
def get_tasks_by_assignee(assignee: str) -> List[Dict[str, Any]]:
    """Get all tasks assigned to a specific person."""

    return _tracker().get_tasks_by_assignee(assignee)


# ----------------------------------------------------------------------
# Resources
# ----------------------------------------------------------------------

_PROJECT = RESOURCE_TEMPLATES["project"]
_DASHBOARD = RESOURCE_TEMPLATES["dashboard"]
_METRICS = RESOURCE_TEMPLATES["metrics"]
_EVENTS = RESOURCE_TEMPLATES["events"]


@mcp.resource(_PROJECT.uri_template, name=_PROJECT.name, description=_PROJECT.description, mime_type=_PROJECT.mime_type)
def project_resource(prd_id: str) -> str:
    return _render(f"project://{prd_id}")


@mcp.resource(_DASHBOARD.uri_template, name=_DASHBOARD.name, description=_DASHBOARD.description, mime_type=_DASHBOARD.mime_type)
def dashboard_resource(name: str) -> str:
    """Query parameters (showCompleted, days, priority) arrive as part of ``name``."""
    return _render(f"dashboard://assignee/{name}")


@mcp.resource(_METRICS.uri_template, name=_METRICS.name, description=_METRICS.description, mime_type=_METRICS.mime_type)
def metrics_resource(prd_id: str) -> str:
    return _render(f"metrics://burndown/{prd_id}")


@mcp.resource(_EVENTS.uri_template, name=_EVENTS.name, description=_EVENTS.description, mime_type=_EVENTS.mime_type)
def events_resource(prd_id: str) -> str:
    return _render(f"events://project/{prd_id}")


_server = mcp._mcp_server
_base_get_capabilities = _server.get_capabilities


def _get_capabilities(
    notification_options: NotificationOptions,
    experimental_capabilities: Dict[str, Dict[str, Any]],
) -> types.ServerCapabilities:
    """Advertise resource subscriptions, which the low-level server reports as unsupported."""
    capabilities = _base_get_capabilities(notification_options, experimental_capabilities)
    if capabilities.resources is None:
        capabilities.resources = types.ResourcesCapability(subscribe=True, listChanged=False)
    else:
        capabilities.resources = capabilities.resources.model_copy(update={"subscribe": True})
    return capabilities


_server.get_capabilities = _get_capabilities


def _resource_updated(uri: Any, update: ChangeRecord) -> types.ServerNotification:
    """``notifications/resources/updated`` carrying the change record next to the URI."""
    return types.ServerNotification(
        types.ResourceUpdatedNotification(
            method="notifications/resources/updated",
            params=types.ResourceUpdatedNotificationParams(uri=uri, update=update.to_dict()),
        )
    )


def _log_failed_send(uri: str):
    def done(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                f"Failed to send update for {uri}: {error}",
                extra={"extra_fields": {"uri": uri, "error_type": type(error).__name__}},
                exc_info=error,
            )

    return done


@_server.list_resources()
async def list_resources() -> List[types.Resource]:
    return [
        types.Resource(
            uri=entry["uri"],
            name=entry["name"],
            description=entry.get("description"),
            mimeType=entry["mimeType"],
        )
        for entry in _tracker().list_resources()
    ]


@_server.subscribe_resource()
async def subscribe_resource(uri: Any) -> None:
    session = _server.request_context.session
    loop = asyncio.get_running_loop()

    def forward(update: ChangeRecord) -> None:
        # Hand the send to the event loop; a slow client must not block the store.
        future = asyncio.run_coroutine_threadsafe(session.send_notification(_resource_updated(uri, update)), loop)
        future.add_done_callback(_log_failed_send(str(uri)))

    _tracker().subscribe(str(uri), DEFAULT_CLIENT_ID, forward)
    logger.info(f"Client subscribed to {uri}")


@_server.unsubscribe_resource()
async def unsubscribe_resource(uri: Any) -> None:
    removed = _tracker().unsubscribe(str(uri), DEFAULT_CLIENT_ID)
    logger.info(f"Client unsubscribed from {uri} ({removed} subscriptions removed)")


def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting task tracker MCP server (data file {settings.task_file})")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
