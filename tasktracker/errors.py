"""Error types raised by the task tracker."""

from __future__ import annotations


class TaskTrackerError(Exception):
    """Base class for task tracker failures."""


class NotFoundError(TaskTrackerError, LookupError):
    """An entity id or resource URI does not resolve to anything."""


class BadInputError(TaskTrackerError, ValueError):
    """Malformed or missing input (fields, query parameters, settings)."""


class InvariantViolationError(TaskTrackerError, RuntimeError):
    """A result had an unexpected shape; indicates a programming error."""
