"""In-process change feed for store events.

The conversation store publishes one ChangeEvent per confirmed row insert or
delete. Subscribers register for a (table, event type) pair with an optional
equality filter, mirroring the realtime channel filters a hosted backend
offers (e.g. ``conversation_id=eq.<id>``).

Usage:
    feed = ChangeFeed()
    sub = feed.subscribe('messages', ChangeType.INSERT, on_message,
                         filters={'conversation_id': conv_id})
    ...
    sub.unsubscribe()

Callbacks run synchronously on the publishing thread, after the write.
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from lf_server.utils.generator import generate_subscription_id

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    DELETE = "DELETE"


class ChangeEvent:
    """One row-level change. For DELETE events ``row`` is the removed row."""

    def __init__(self, table: str, change_type: ChangeType, row: Dict[str, Any]):
        self.table = table
        self.change_type = change_type
        self.row = row

    def to_dict(self) -> Dict[str, Any]:
        return {'table': self.table, 'type': self.change_type.value, 'row': self.row}

    def __repr__(self):
        return f"ChangeEvent({self.table!r}, {self.change_type.value}, id={self.row.get('id')!r})"


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(
        self,
        feed: 'ChangeFeed',
        table: str,
        change_type: ChangeType,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None
    ):
        self.subscription_id = generate_subscription_id()
        self.feed = feed
        self.table = table
        self.change_type = change_type
        self.callback = callback
        self.filters = dict(filters or {})
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if not self.active:
            return False
        if event.table != self.table or event.change_type != self.change_type:
            return False
        return all(event.row.get(k) == v for k, v in self.filters.items())

    def unsubscribe(self):
        self.feed.unsubscribe(self)

    def __repr__(self):
        return f"Subscription({self.table!r}, {self.change_type.value}, {self.filters!r})"


class ChangeFeed:
    """Fan-out of store change events to filtered subscribers."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        change_type: ChangeType,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None
    ) -> Subscription:
        sub = Subscription(self, table, ChangeType(change_type), callback, filters)
        with self._lock:
            self._subscriptions[sub.subscription_id] = sub
        logger.debug("CHANGE_FEED: subscribed %s", sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        subscription.active = False
        with self._lock:
            removed = self._subscriptions.pop(subscription.subscription_id, None)
        if removed:
            logger.debug("CHANGE_FEED: released %s", subscription)
        return removed is not None

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions.values() if s.table == table)

    def publish(self, table: str, change_type: ChangeType, row: Dict[str, Any]) -> int:
        """Deliver an event to every matching subscriber. Returns delivery count."""
        event = ChangeEvent(table, ChangeType(change_type), dict(row))
        with self._lock:
            targets: List[Subscription] = [s for s in self._subscriptions.values() if s.matches(event)]

        delivered = 0
        for sub in targets:
            # A subscription released by an earlier callback in this loop is skipped
            if not sub.active:
                continue
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                logger.exception("CHANGE_FEED: subscriber %s failed on %s", sub, event)
        logger.debug("CHANGE_FEED: %s delivered to %d subscriber(s)", event, delivered)
        return delivered
