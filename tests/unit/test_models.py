"""Unit tests for task tracker models.

This module tests the core data structures, their validation,
serialization, and the timestamp helpers.
"""

from datetime import datetime, timezone

import pytest

from tasktracker.models import (
    RESOURCE_TEMPLATES,
    ChangeRecord,
    Epic,
    PRD,
    ProjectData,
    Subscription,
    Task,
    format_timestamp,
    generate_id,
    parse_timestamp,
)


class TestTimestamps:
    """Test cases for timestamp helpers."""

    def test_format_timestamp_uses_z_suffix(self):
        """Test that UTC timestamps render with millisecond precision and Z."""
        moment = datetime(2026, 3, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2026-03-01T12:30:05.123Z"

    def test_parse_timestamp_z_suffix(self):
        """Test parsing a JavaScript-style ISO timestamp."""
        parsed = parse_timestamp("2026-03-01T12:30:05.123Z")
        assert parsed.tzinfo is not None
        assert parsed.year == 2026 and parsed.hour == 12

    def test_parse_timestamp_date_only_is_utc(self):
        """Test that a bare date is treated as midnight UTC."""
        parsed = parse_timestamp("2026-03-01")
        assert parsed == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_generate_id_prefix(self):
        """Test generated identifiers carry their prefix and are unique."""
        first = generate_id("task")
        second = generate_id("task")
        assert first.startswith("task_")
        assert first != second


class TestPRD:
    """Test cases for PRD model."""

    def test_prd_defaults(self):
        """Test a new PRD starts as a draft with timestamps."""
        prd = PRD(id="prd_1", title="Checkout", description="New checkout", owner="alice")
        assert prd.status == "draft"
        assert prd.created_at.endswith("Z")
        assert prd.updated_at.endswith("Z")

    def test_prd_round_trip(self):
        """Test to_dict/from_dict preserve every field."""
        prd = PRD(id="prd_1", title="Checkout", description="d", owner="alice", status="approved")
        assert PRD.from_dict(prd.to_dict()) == prd

    def test_prd_validation_failures(self):
        """Test validation reports missing fields and bad status."""
        prd = PRD(id="prd_1", title="", description="", owner="", status="shipped")
        issues = prd.validate()
        assert "PRD title is required" in issues
        assert "PRD owner is required" in issues
        assert "Invalid PRD status: shipped" in issues


class TestEpic:
    """Test cases for Epic model."""

    def test_epic_has_no_updated_at(self):
        """Test epics serialize without an updated_at field."""
        epic = Epic(id="epic_1", prd_id="prd_1", title="Payments", description="")
        assert "updated_at" not in epic.to_dict()
        assert epic.status == "not_started"

    def test_epic_validation_priority(self):
        """Test invalid priorities are reported."""
        epic = Epic(id="epic_1", prd_id="prd_1", title="Payments", description="", priority="urgent")
        assert epic.validate() == ["Invalid epic priority: urgent"]


class TestTask:
    """Test cases for Task model."""

    def test_task_defaults(self):
        """Test task defaults."""
        task = Task(id="task_1", epic_id="epic_1", title="Build form", description="")
        assert task.status == "todo"
        assert task.assignee is None
        assert task.dependencies == []
        assert task.notes == []
        assert not task.is_done()

    def test_task_to_dict_copies_lists(self):
        """Test that to_dict does not hand out the task's own lists."""
        task = Task(id="task_1", epic_id="epic_1", title="t", description="", notes=["a"])
        result = task.to_dict()
        result["notes"].append("b")
        assert task.notes == ["a"]

    def test_task_from_dict_normalizes_empty_assignee(self):
        """Test that empty optional strings load as None."""
        task = Task.from_dict({"id": "task_1", "epic_id": "epic_1", "title": "t", "assignee": ""})
        assert task.assignee is None

    def test_task_validation_due_date(self):
        """Test that an unparseable due date is reported."""
        task = Task(id="task_1", epic_id="epic_1", title="t", description="", due_date="next week")
        assert task.validate() == ["Invalid due_date: next week"]

    def test_task_validation_status(self):
        """Test invalid status values are reported."""
        task = Task(id="task_1", epic_id="epic_1", title="t", description="", status="blocked")
        assert "Invalid task status: blocked" in task.validate()


class TestProjectData:
    """Test cases for ProjectData."""

    def test_to_records_tags_and_orders(self):
        """Test records are tagged and ordered PRDs, epics, tasks."""
        data = ProjectData(
            prds=[PRD(id="prd_1", title="p", description="", owner="o")],
            epics=[Epic(id="epic_1", prd_id="prd_1", title="e", description="")],
            tasks=[Task(id="task_1", epic_id="epic_1", title="t", description="")],
        )
        records = data.to_records()
        assert [record["type"] for record in records] == ["prd", "epic", "task"]
        assert records[2]["epic_id"] == "epic_1"

    def test_finders(self):
        """Test lookup helpers return None for unknown ids."""
        data = ProjectData(epics=[Epic(id="epic_1", prd_id="prd_1", title="e", description="")])
        assert data.find_epic("epic_1").prd_id == "prd_1"
        assert data.find_epic("epic_2") is None
        assert data.find_prd("prd_1") is None


class TestChangeRecord:
    """Test cases for ChangeRecord serialization."""

    def test_full_record(self):
        """Test a full snapshot record only carries data."""
        record = ChangeRecord(uri="project://prd_1", type="full", data={"id": "prd_1"})
        result = record.to_dict()
        assert result["type"] == "full"
        assert result["data"] == {"id": "prd_1"}
        assert "entity" not in result

    def test_mutation_record(self):
        """Test a mutation record serializes entities and changes."""
        old = Task(id="task_1", epic_id="epic_1", title="t", description="")
        new = Task(id="task_1", epic_id="epic_1", title="t", description="", status="done")
        record = ChangeRecord(
            uri="project://prd_1",
            type="updated",
            entity_type="task",
            entity=new,
            old_entity=old,
            changes={"status": {"from": "todo", "to": "done"}},
        )
        result = record.to_dict()
        assert result["entityType"] == "task"
        assert result["entity"]["status"] == "done"
        assert result["oldEntity"]["status"] == "todo"
        assert result["changes"]["status"]["to"] == "done"


class TestSubscription:
    """Test cases for Subscription identity semantics."""

    def test_identical_subscriptions_are_distinct(self):
        """Test two subscriptions with the same content are not equal."""
        callback = lambda update: None  # noqa: E731
        first = Subscription("project://prd_1", "default", callback)
        second = Subscription("project://prd_1", "default", callback)
        assert first != second
        assert len({first, second}) == 2


class TestResourceTemplates:
    """Test cases for advertised resource templates."""

    def test_template_mime_types(self):
        """Test every template is JSON except the event stream."""
        assert RESOURCE_TEMPLATES["events"].mime_type == "text/event-stream"
        for key in ("project", "dashboard", "metrics"):
            assert RESOURCE_TEMPLATES[key].mime_type == "application/json"
