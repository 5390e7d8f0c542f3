"""Bounded, append-only per-project event log backing ``events://project/{id}``."""

from __future__ import annotations

import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .config import DEFAULT_EVENT_RETENTION
from .models import ChangeRecord

SYSTEM_ACTOR = "system"


class EventLog:
    """Keeps the most recent ``retention`` events of each project in memory."""

    def __init__(self, retention: int = DEFAULT_EVENT_RETENTION):
        if retention <= 0:
            raise ValueError("retention must be positive")
        self.retention = retention
        self._events: Dict[str, Deque[Dict[str, Any]]] = {}

    def append(self, prd_id: str, record: ChangeRecord) -> Dict[str, Any]:
        entity = record.entity
        data: Dict[str, Any] = {
            "entityType": record.entity_type,
            "entityId": entity.id if entity is not None else None,
            "title": getattr(entity, "title", None),
        }
        if record.changes:
            data["changes"] = record.changes

        event = {
            "id": f"evt_{uuid.uuid4().hex}",
            "timestamp": record.timestamp,
            "type": f"{record.entity_type}.{record.type}",
            "actor": SYSTEM_ACTOR,
            "data": data,
        }
        self._events.setdefault(prd_id, deque(maxlen=self.retention)).append(event)
        return event

    def recent(self, prd_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent events for a project, oldest first."""
        events = list(self._events.get(prd_id, ()))
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def clear(self, prd_id: Optional[str] = None) -> None:
        if prd_id is None:
            self._events.clear()
        else:
            self._events.pop(prd_id, None)
