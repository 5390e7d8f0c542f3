"""Change detection and fan-out of store mutations to derived resources.

A mutation is described by an action (``created``, ``updated``,
``deleted``), an entity type tag (``prd``, ``epic``, ``task``), the new
entity and, for updates, the entity as it was before. From that we compute
a field-level diff and the list of resource URIs whose views the mutation
affects, then push one change record per URI to the subscription registry.
"""

from __future__ import annotations

import logging
from dataclasses import fields, is_dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from .errors import BadInputError
from .models import CHANGE_ACTIONS, ChangeRecord, Entity, ProjectData, utc_now_iso

if TYPE_CHECKING:
    from .events import EventLog
    from .store import TaskStore
    from .subscriptions import SubscriptionRegistry

logger = logging.getLogger("tasktracker.changes")

VOLATILE_FIELDS = frozenset({"updated_at"})
EVENTS_PREFIX = "events://project/"


def _as_mapping(entity: Any) -> Mapping[str, Any]:
    # Read attributes directly; to_dict() copies lists and would break identity checks.
    if is_dataclass(entity):
        return {f.name: getattr(entity, f.name) for f in fields(entity)}
    return entity


def _differs(old_value: Any, new_value: Any) -> bool:
    if old_value is new_value:
        return False
    if isinstance(old_value, (list, dict)) or isinstance(new_value, (list, dict)):
        return True
    return old_value != new_value


def compute_changes(old_entity: Optional[Any], new_entity: Any) -> Optional[Dict[str, Dict[str, Any]]]:
    """Shallow field diff between two versions of an entity.

    Only keys present in both versions are compared and ``updated_at`` is
    ignored. Lists and dicts compare by identity: a replaced notes list shows
    up as the whole field changing. Returns None when there is no old version
    or nothing differs.
    """
    if old_entity is None:
        return None

    old_fields = _as_mapping(old_entity)
    new_fields = _as_mapping(new_entity)

    changes: Dict[str, Dict[str, Any]] = {}
    for key, new_value in new_fields.items():
        if key in VOLATILE_FIELDS or key not in old_fields:
            continue
        old_value = old_fields[key]
        if _differs(old_value, new_value):
            changes[key] = {"from": old_value, "to": new_value}

    return changes or None


def project_uris(prd_id: str, *, include_metrics: bool = True) -> List[str]:
    uris = [f"project://{prd_id}", f"{EVENTS_PREFIX}{prd_id}"]
    if include_metrics:
        uris.append(f"metrics://burndown/{prd_id}")
    return uris


def affected_resources(
    action: str,
    entity_type: str,
    entity: Entity,
    old_entity: Optional[Entity] = None,
    *,
    load_data: Optional[Callable[[], ProjectData]] = None,
) -> List[str]:
    """Resource URIs whose views a mutation affects, in notification order.

    Duplicates are not removed. Tasks are resolved to their PRD through a
    fresh ``load_data()``; a task whose epic no longer exists only reaches
    assignee dashboards.
    """
    if action not in CHANGE_ACTIONS:
        raise BadInputError(f"Unknown change action: {action}")

    if entity_type == "prd":
        return project_uris(entity.id, include_metrics=False)

    if entity_type == "epic":
        return project_uris(entity.prd_id)

    if entity_type == "task":
        uris: List[str] = []
        if load_data is not None:
            epic = load_data().find_epic(entity.epic_id)
            if epic is not None:
                uris.extend(project_uris(epic.prd_id))

        if entity.assignee:
            uris.append(f"dashboard://assignee/{entity.assignee}")
        old_assignee = getattr(old_entity, "assignee", None) if old_entity is not None else None
        if old_assignee and old_assignee != entity.assignee:
            uris.append(f"dashboard://assignee/{old_assignee}")
        return uris

    raise BadInputError(f"Unknown entity type: {entity_type}")


class ChangeNotifier:
    """Turns store mutations into change records for subscribers."""

    def __init__(
        self,
        store: "TaskStore",
        registry: "SubscriptionRegistry",
        event_log: Optional["EventLog"] = None,
    ):
        self.store = store
        self.registry = registry
        self.event_log = event_log

    def notify_change(
        self,
        action: str,
        entity_type: str,
        entity: Entity,
        old_entity: Optional[Entity] = None,
    ) -> List[str]:
        """Fan a mutation out to every affected URI; returns the URIs notified.

        A None diff does not suppress notification.
        """
        changes = compute_changes(old_entity, entity)
        uris = affected_resources(action, entity_type, entity, old_entity, load_data=self.store.load_data)
        timestamp = utc_now_iso()

        logger.debug(
            f"{entity_type} {entity.id} {action}: notifying {len(uris)} resources",
            extra={"extra_fields": {"uris": uris, "changed_fields": sorted(changes or {})}},
        )

        for uri in uris:
            record = ChangeRecord(
                uri=uri,
                type=action,
                entity_type=entity_type,
                entity=entity,
                old_entity=old_entity,
                changes=changes,
                timestamp=timestamp,
            )
            if self.event_log is not None and uri.startswith(EVENTS_PREFIX):
                self.event_log.append(uri[len(EVENTS_PREFIX):], record)
            self.registry.notify_all(uri, record)

        return uris
