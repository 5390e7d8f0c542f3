"""Per-resource subscriber bookkeeping.

The registry is owned by the tracker instance: it is created when the server
starts and cleared by :meth:`SubscriptionRegistry.close` on shutdown.

Subscriptions compare by identity. Subscribing the same subscriber to the
same URI twice without unsubscribing in between registers two entries, and
each mutation is then delivered twice. Delivery is at-least-once with
possible duplicates, and only to callbacks registered at the time of the
mutation; nothing is queued.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Set

from .models import ChangeRecord, SubscriberCallback, Subscription

logger = logging.getLogger("tasktracker.subscriptions")

ResourceReader = Callable[[str], Dict[str, Any]]


class SubscriptionRegistry:
    """Map of resource URI to the subscriptions registered on it."""

    def __init__(self, reader: ResourceReader):
        self._reader = reader
        self._subscriptions: Dict[str, Set[Subscription]] = {}

    def subscribe(self, uri: str, subscriber_id: str, callback: SubscriberCallback) -> Subscription:
        """Register ``callback`` and push the current view of ``uri`` to it once.

        If the view cannot be built (unknown entity, unknown scheme) the
        registration is rolled back and the error propagates.
        """
        subscription = Subscription(uri=uri, subscriber_id=subscriber_id, callback=callback)
        self._subscriptions.setdefault(uri, set()).add(subscription)

        try:
            snapshot = self._reader(uri)
        except Exception:
            self._discard(subscription)
            raise

        logger.info(f"Subscriber {subscriber_id} subscribed to {uri}")
        callback(ChangeRecord(uri=uri, type="full", data=snapshot))
        return subscription

    def unsubscribe(self, uri: str, subscriber_id: str) -> int:
        """Remove every subscription of ``subscriber_id`` on ``uri``; returns how many."""
        subs = self._subscriptions.get(uri)
        if not subs:
            return 0

        matching = [sub for sub in subs if sub.subscriber_id == subscriber_id]
        for sub in matching:
            subs.discard(sub)
        if not subs:
            del self._subscriptions[uri]

        if matching:
            logger.info(f"Subscriber {subscriber_id} unsubscribed from {uri}")
        return len(matching)

    def notify_all(self, uri: str, update: ChangeRecord) -> int:
        """Deliver ``update`` to every callback on ``uri``; returns successful deliveries.

        A failing callback is logged and skipped; the rest still receive the update.
        """
        subs = self._subscriptions.get(uri)
        if not subs:
            return 0

        delivered = 0
        # Copy: a callback may unsubscribe while we iterate.
        for sub in list(subs):
            try:
                sub.callback(update)
            except Exception as e:
                logger.error(
                    f"Subscriber {sub.subscriber_id} failed handling {update.type} on {uri}: {e}",
                    extra={"extra_fields": {"uri": uri, "subscriber_id": sub.subscriber_id, "error_type": type(e).__name__}},
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, uri: str) -> int:
        return len(self._subscriptions.get(uri, ()))

    def close(self) -> None:
        """Drop every subscription."""
        total = sum(len(subs) for subs in self._subscriptions.values())
        self._subscriptions.clear()
        logger.info(f"Subscription registry closed, dropped {total} subscriptions")

    def _discard(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.uri)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            del self._subscriptions[subscription.uri]
