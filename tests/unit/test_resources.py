"""Unit tests for resource URI parsing and the derived resource views."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from tasktracker.errors import BadInputError, InvariantViolationError, NotFoundError
from tasktracker.events import EventLog
from tasktracker.models import ChangeRecord, Task, format_timestamp
from tasktracker.resources import (
    ResourceManager,
    calculate_team_load,
    calculate_velocity,
    parse_resource_uri,
)
from tasktracker.store import TaskStore
from tasktracker.subscriptions import SubscriptionRegistry

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _set_task(store, task_id, **fields):
    """Rewrite a stored task in place, bypassing the update rules."""
    data = store.load_data()
    data.tasks = [replace(task, **fields) if task.id == task_id else task for task in data.tasks]
    store.save_data(data)


@pytest.fixture
def store(tmp_path):
    return TaskStore(tmp_path / "tasks.json")


@pytest.fixture
def project(store):
    prd = store.create_prd("Checkout", "Rebuild checkout", "alice")
    first, second = store.create_epics([
        {"prd_id": prd.id, "title": "Payments", "priority": "high"},
        {"prd_id": prd.id, "title": "Receipts", "priority": "low"},
    ])
    tasks = store.create_tasks([
        {"epic_id": first.id, "title": "Card form", "assignee": "bob"},
        {"epic_id": first.id, "title": "3DS", "assignee": "bob"},
        {"epic_id": first.id, "title": "Refunds", "assignee": "carol"},
    ])
    return prd, (first, second), tasks


class TestParseResourceUri:
    """Test cases for parse_resource_uri."""

    def test_project_uri_uses_authority(self):
        """Test the PRD id of a project URI is its authority."""
        parsed = parse_resource_uri("project://prd_1")
        assert (parsed.scheme, parsed.key, parsed.params) == ("project", "prd_1", {})

    def test_project_uri_ignores_trailing_path(self):
        """Test extra path segments after the PRD id do not replace it."""
        assert parse_resource_uri("project://prd_1/extra").key == "prd_1"

    def test_empty_project_uri(self):
        """Test a project URI with no id parses to an empty key."""
        assert parse_resource_uri("project://").key == ""

    def test_dashboard_with_query(self):
        """Test query parameters are split out of the key."""
        parsed = parse_resource_uri("dashboard://assignee/bob?showCompleted=false&priority=high")
        assert parsed.key == "bob"
        assert parsed.params == {"showCompleted": "false", "priority": "high"}

    def test_percent_encoded_name(self):
        """Test assignee names are unquoted."""
        assert parse_resource_uri("dashboard://assignee/Jane%20Doe").key == "Jane Doe"

    def test_wrong_namespace(self):
        """Test schemes with a fixed namespace reject other ones."""
        with pytest.raises(NotFoundError):
            parse_resource_uri("metrics://velocity/prd_1")


class TestProjectView:
    """Test cases for project://."""

    def test_statistics(self, store, project):
        """Test statistics count epics and task states."""
        prd, _, tasks = project
        store.update_task(tasks[0].id, status="done")
        store.update_task(tasks[1].id, status="in_progress")
        manager = ResourceManager(store, clock=lambda: NOW)

        view = manager.read(f"project://{prd.id}")

        assert view["id"] == prd.id
        assert view["statistics"] == {
            "totalEpics": 2,
            "totalTasks": 3,
            "completedTasks": 1,
            "inProgressTasks": 1,
        }
        assert view["_meta"]["liveUpdates"] is True
        assert view["_meta"]["lastUpdated"] == NOW.isoformat()
        assert view["_meta"]["subscriberCount"] == 0

    def test_subscriber_count(self, store, project):
        """Test the meta block counts subscriptions on the URI."""
        prd, _, _ = project
        manager = ResourceManager(store)
        manager.registry = SubscriptionRegistry(manager.read)
        received = []

        manager.registry.subscribe(f"project://{prd.id}", "default", received.append)

        assert received[0].data["_meta"]["subscriberCount"] == 1

    def test_unknown_prd(self, store):
        """Test reading an unknown PRD raises NotFound."""
        with pytest.raises(NotFoundError, match="prd_nope"):
            ResourceManager(store).read("project://prd_nope")

    def test_empty_id_is_an_invariant_violation(self, store, project):
        """Test a project URI without an id does not silently return every project."""
        with pytest.raises(InvariantViolationError):
            ResourceManager(store).read("project://")

    def test_unknown_scheme(self, store):
        """Test unknown schemes raise NotFound."""
        with pytest.raises(NotFoundError, match="Unknown resource type"):
            ResourceManager(store).read("calendar://prd_1")


class TestDashboardView:
    """Test cases for dashboard://assignee/{name}."""

    def test_summary_and_grouping(self, store, project):
        """Test a dashboard groups the assignee's tasks by status."""
        _, _, tasks = project
        store.update_task(tasks[0].id, status="done")
        store.update_task(tasks[1].id, status="review")

        view = ResourceManager(store).read("dashboard://assignee/bob")

        assert view["assignee"] == "bob"
        assert view["summary"] == {
            "totalTasks": 2,
            "todoCount": 0,
            "inProgressCount": 0,
            "reviewCount": 1,
            "completedToday": 1,
        }
        assert [task["id"] for task in view["tasksByStatus"]["done"]] == [tasks[0].id]
        assert set(view["tasksByStatus"]) == {"todo", "in_progress", "review", "done"}

    def test_hide_completed(self, store, project):
        """Test showCompleted=false removes done tasks."""
        _, _, tasks = project
        store.update_task(tasks[0].id, status="done")
        view = ResourceManager(store).read("dashboard://assignee/bob?showCompleted=false")
        assert view["summary"]["totalTasks"] == 1
        assert view["tasksByStatus"]["done"] == []

    def test_priority_filter(self, store, project):
        """Test filtering by exact priority."""
        _, _, tasks = project
        store.update_task(tasks[1].id, priority="high")
        view = ResourceManager(store).read("dashboard://assignee/bob?priority=high")
        assert [task["id"] for task in view["tasksByStatus"]["todo"]] == [tasks[1].id]

    def test_days_filter(self, store, project):
        """Test only recently updated tasks are kept."""
        _, _, tasks = project
        _set_task(store, tasks[0].id, updated_at=format_timestamp(NOW - timedelta(days=1)))
        _set_task(store, tasks[1].id, updated_at=format_timestamp(NOW - timedelta(days=30)))
        view = ResourceManager(store, clock=lambda: NOW).read("dashboard://assignee/bob?days=7")
        assert [task["id"] for task in view["tasksByStatus"]["todo"]] == [tasks[0].id]

    def test_bad_days_parameter(self, store, project):
        """Test a non-numeric days filter is rejected."""
        with pytest.raises(BadInputError, match="days"):
            ResourceManager(store).read("dashboard://assignee/bob?days=soon")

    def test_upcoming_deadlines(self, store, project):
        """Test only future due dates are listed, soonest first."""
        _, (epic, _), tasks = project
        extra = store.create_tasks([
            {"epic_id": epic.id, "title": f"Task {index}", "assignee": "bob", "due_date": f"2026-03-{11 + index:02d}"}
            for index in range(6)
        ])
        store.update_task(tasks[0].id, due_date="2026-03-01")

        view = ResourceManager(store, clock=lambda: NOW).read("dashboard://assignee/bob")

        assert [task["id"] for task in view["upcomingDeadlines"]] == [task.id for task in extra[:5]]

    def test_projects(self, store, project):
        """Test the PRDs an assignee works on carry task counts."""
        prd, _, _ = project
        view = ResourceManager(store).read("dashboard://assignee/bob")
        assert [(item["id"], item["taskCount"]) for item in view["projects"]] == [(prd.id, 2)]

    def test_unknown_assignee(self, store, project):
        """Test an assignee without tasks gets an empty dashboard."""
        view = ResourceManager(store).read("dashboard://assignee/nobody")
        assert view["summary"]["totalTasks"] == 0
        assert view["projects"] == []


class TestMetricsView:
    """Test cases for metrics://burndown/{prd_id}."""

    def test_burndown(self, store, project):
        """Test burndown totals and the fourteen day window."""
        prd, (first, second), tasks = project
        store.update_task(tasks[0].id, status="done")

        view = ResourceManager(store).read(f"metrics://burndown/{prd.id}")
        burndown = view["burndown"]

        assert len(burndown["dates"]) == 14
        assert burndown["dates"][0] == prd.created_at[:10]
        assert (burndown["totalPoints"], burndown["remaining"], burndown["completed"]) == (3, 2, 1)
        assert burndown["velocity"] == 1
        assert view["epicProgress"] == [
            {"id": first.id, "title": "Payments", "totalTasks": 3, "completedTasks": 1, "percentComplete": 33},
            {"id": second.id, "title": "Receipts", "totalTasks": 0, "completedTasks": 0, "percentComplete": 0},
        ]
        assert view["teamLoad"] == [
            {"assignee": "bob", "taskCount": 1},
            {"assignee": "carol", "taskCount": 1},
        ]

    def test_project_without_tasks(self, store):
        """Test an empty project reports zero points and zero progress."""
        prd = store.create_prd("Empty", "", "alice")
        store.create_epics([{"prd_id": prd.id, "title": "Later", "priority": "low"}])

        view = ResourceManager(store).read(f"metrics://burndown/{prd.id}")

        assert view["burndown"]["totalPoints"] == 0
        assert view["burndown"]["velocity"] == 0
        assert view["epicProgress"][0]["percentComplete"] == 0
        assert view["teamLoad"] == []

    def test_unknown_prd(self, store):
        """Test metrics for an unknown PRD raise NotFound."""
        with pytest.raises(NotFoundError):
            ResourceManager(store).read("metrics://burndown/prd_nope")


class TestCalculations:
    """Test cases for velocity and team load helpers."""

    def _task(self, status, days_ago, assignee=None):
        return Task(
            id="task_x",
            epic_id="epic_1",
            title="t",
            description="",
            status=status,
            assignee=assignee,
            updated_at=format_timestamp(NOW - timedelta(days=days_ago)),
        ).to_dict()

    def test_velocity_weekly_rate_rounds_half_up(self):
        """Test completions in the window are scaled to a seven day rate."""
        tasks = [self._task("done", 1), self._task("done", 3), self._task("done", 13), self._task("done", 20)]
        assert calculate_velocity(tasks, 14, now=NOW) == 2

    def test_velocity_ignores_open_tasks(self):
        """Test only done tasks count."""
        assert calculate_velocity([self._task("in_progress", 0)], 7, now=NOW) == 0

    def test_team_load_orders_busiest_first(self):
        """Test ranking by open task count, ties in first-seen order."""
        tasks = [
            self._task("todo", 0, "carol"),
            self._task("todo", 0, "bob"),
            self._task("review", 0, "bob"),
            self._task("done", 0, "bob"),
            self._task("todo", 0, "dave"),
            self._task("todo", 0),
        ]
        assert calculate_team_load(tasks) == [
            {"assignee": "bob", "taskCount": 2},
            {"assignee": "carol", "taskCount": 1},
            {"assignee": "dave", "taskCount": 1},
        ]


class TestEventStreamView:
    """Test cases for events://project/{prd_id}."""

    def test_recent_events(self, store, project):
        """Test the view returns logged events and honours limit."""
        prd, (epic, _), tasks = project
        log = EventLog(retention=50)
        for task in tasks:
            log.append(prd.id, ChangeRecord(uri=f"events://project/{prd.id}", type="created", entity_type="task", entity=task))
        manager = ResourceManager(store, event_log=log)

        view = manager.read(f"events://project/{prd.id}")
        limited = manager.read(f"events://project/{prd.id}?limit=2")

        assert [event["data"]["entityId"] for event in view["events"]] == [task.id for task in tasks]
        assert [event["data"]["entityId"] for event in limited["events"]] == [task.id for task in tasks[1:]]
        assert view["_meta"] == {"streaming": True, "format": "json-lines", "retention": 50}

    def test_no_events(self, store):
        """Test a project with no history has an empty stream."""
        view = ResourceManager(store, event_log=EventLog()).read("events://project/prd_quiet")
        assert view["events"] == []


class TestDiscovery:
    """Test cases for resource listing."""

    def test_list_resources(self, store, project):
        """Test one project resource per PRD and one dashboard per assignee."""
        prd, _, _ = project
        uris = [resource["uri"] for resource in ResourceManager(store).list_resources()]
        assert uris == [f"project://{prd.id}", "dashboard://assignee/bob", "dashboard://assignee/carol"]
