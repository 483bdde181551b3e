"""
Subscription management for the message broker.
Keeps the subscription_id -> Subscription map and the pattern -> subscription_ids
index consistent with each other.
"""
import threading
import time
import logging
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Set, Tuple, Union
from dataclasses import dataclass, field

from .errors import InvalidCallback, UnknownSubscription
from .topic import validate_pattern
from .utils import new_subscription_id, synchronized


logger = logging.getLogger(__name__)

Callback = Callable[[str, Any], Union[None, Awaitable[None]]]


@dataclass
class Subscription:
    """A callback registered under a topic pattern"""
    subscription_id: str
    pattern: str
    callback: Callback
    created_at: float = field(default_factory=time.time)
    active: bool = True
    delivered_count: int = 0
    failure_count: int = 0


class SubscriptionRegistry:
    """Owns all subscriptions of a broker"""

    def __init__(self, id_prefix: str = 'sub'):
        self.id_prefix = id_prefix

        self._subscriptions: Dict[str, Subscription] = {}  # subscription_id -> Subscription
        self._pattern_index: Dict[str, Set[str]] = {}  # pattern -> set of subscription_ids

        self._lock = threading.RLock()

    @synchronized()
    def add(self, pattern: str, callback: Callback) -> str:
        """Register a callback under a pattern and return the new subscription id"""
        validate_pattern(pattern)
        if not callable(callback):
            raise InvalidCallback("Callback function is required for subscription")

        subscription_id = new_subscription_id(self.id_prefix)
        while subscription_id in self._subscriptions:
            subscription_id = new_subscription_id(self.id_prefix)

        self._subscriptions[subscription_id] = Subscription(
            subscription_id=subscription_id,
            pattern=pattern,
            callback=callback
        )
        self._pattern_index.setdefault(pattern, set()).add(subscription_id)

        logger.debug(f"Registered subscription {subscription_id} for pattern {pattern}")
        return subscription_id

    @synchronized()
    def remove(self, subscription_id: str) -> bool:
        """Remove a subscription; False if it was not registered"""
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False

        subscription.active = False

        ids = self._pattern_index.get(subscription.pattern)
        if ids is not None:
            ids.discard(subscription_id)
            if not ids:
                del self._pattern_index[subscription.pattern]

        logger.debug(f"Removed subscription {subscription_id} from pattern {subscription.pattern}")
        return True

    @synchronized()
    def get(self, subscription_id: str) -> Subscription:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise UnknownSubscription(subscription_id)
        return subscription

    @synchronized()
    def snapshot(self) -> List[Subscription]:
        """Subscriptions in insertion order, as of this call"""
        return list(self._subscriptions.values())

    def all(self) -> Iterator[Tuple[str, Subscription]]:
        """Iterate (pattern, subscription) pairs over a snapshot"""
        for subscription in self.snapshot():
            yield subscription.pattern, subscription

    @synchronized()
    def patterns(self) -> List[str]:
        return list(self._pattern_index.keys())

    @synchronized()
    def ids_for_pattern(self, pattern: str) -> Set[str]:
        return set(self._pattern_index.get(pattern, ()))

    @synchronized()
    def clear(self) -> int:
        """Remove every subscription and return how many there were"""
        count = len(self._subscriptions)
        for subscription in self._subscriptions.values():
            subscription.active = False
        self._subscriptions.clear()
        self._pattern_index.clear()
        return count

    @synchronized()
    def get_stats(self) -> Dict[str, Any]:
        return {
            'subscriptions': len(self._subscriptions),
            'patterns': len(self._pattern_index),
            'pattern_counts': {p: len(ids) for p, ids in self._pattern_index.items()},
        }

    def __contains__(self, subscription_id: object) -> bool:
        with self._lock:
            return subscription_id in self._subscriptions

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)
