"""
Main message broker implementation.
Matches published topics against subscription patterns and fans each message
out to every matching subscriber, isolating subscriber failures from each other
and from the publisher.
"""
import asyncio
import inspect
import threading
import time
import logging
from concurrent import futures
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .config import Config
from .delivery import DeliveryMode, EventLoopThread
from .errors import SubscriberFailure
from .subscription import Callback, Subscription, SubscriptionRegistry
from .topic import matches, validate_topic


logger = logging.getLogger(__name__)

ErrorHandler = Callable[[SubscriberFailure], None]


class MessageBroker:
    """In-process topic based publish/subscribe broker"""

    def __init__(self,
                 config: Optional[Config] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.config = config or Config.defaults()

        self.delivery_mode = DeliveryMode(str(self.config.get('broker.delivery_mode', 'inline')).lower())
        self.max_workers = int(self.config.get('broker.max_workers', 4))
        self.shutdown_timeout = float(self.config.get('broker.shutdown_timeout', 5))

        self.registry = SubscriptionRegistry(
            id_prefix=self.config.get('broker.subscription_id_prefix', 'sub')
        )

        self._running = False
        self._lock = threading.RLock()

        self._error_handlers: List[ErrorHandler] = []
        if error_handler is not None:
            self.add_error_handler(error_handler)

        # Delivery resources, created on first use
        self._executor: Optional[futures.ThreadPoolExecutor] = None
        self._loop_thread = EventLoopThread()

        self._inflight: Set[futures.Future] = set()  # executor and loop thread work
        self._tasks: Set[asyncio.Future] = set()  # tasks on the publisher's own loop

        self._stats = {
            'published': 0,
            'deliveries': 0,
            'failures': 0,
            'unknown_unsubscribes': 0,
        }

    def start(self) -> None:
        """Start the message broker"""
        with self._lock:
            if self._running:
                return

            if self.delivery_mode is DeliveryMode.THREADED:
                self._get_executor()

            self._running = True
            logger.info(f"Message broker started ({self.delivery_mode.value} delivery)")

    def stop(self) -> None:
        """Stop the message broker, waiting up to shutdown_timeout for in-flight deliveries"""
        with self._lock:
            was_running = self._running
            self._running = False

        if not self.flush(timeout=self.shutdown_timeout):
            logger.warning(f"Stopping with deliveries still in flight after {self.shutdown_timeout}s")

        with self._lock:
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=False)
        self._loop_thread.stop(timeout=self.shutdown_timeout)

        if was_running:
            logger.info("Message broker stopped")

    def __enter__(self) -> 'MessageBroker':
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()

    # Public API

    def subscribe(self, pattern: str, callback: Callback) -> str:
        """Register callback(topic, message) for every topic matching pattern"""
        subscription_id = self.registry.add(pattern, callback)
        logger.info(f"Subscribed {subscription_id} to {pattern}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription; unknown ids are reported, not raised"""
        try:
            removed = self.registry.remove(subscription_id)
        except TypeError:
            removed = False

        if not removed:
            with self._lock:
                self._stats['unknown_unsubscribes'] += 1
            logger.warning(f"Subscription ID {subscription_id} not found for unsubscribe")
            return False

        logger.info(f"Unsubscribed {subscription_id}")
        return True

    def publish(self, topic: str, message: Any) -> int:
        """
        Deliver message to every subscription whose pattern matches topic.
        Returns the number of subscriptions the delivery was initiated for.
        """
        validate_topic(topic)

        matched = [s for pattern, s in self.registry.all() if matches(topic, pattern)]

        with self._lock:
            self._stats['published'] += 1

        if not matched:
            logger.debug(f"No subscribers for topic {topic}")
            return 0

        if self.delivery_mode is DeliveryMode.THREADED:
            # stop() swaps the executor out under the same lock
            with self._lock:
                executor = self._get_executor()
                for subscription in matched:
                    self._track(executor.submit(self._deliver, subscription, topic, message))
        else:
            for subscription in matched:
                self._deliver(subscription, topic, message)

        logger.debug(f"Published to {topic}: {len(matched)} matching subscription(s)")
        return len(matched)

    def add_error_handler(self, handler: ErrorHandler) -> None:
        """Register a sink for isolated subscriber failures"""
        if not callable(handler):
            raise TypeError("Error handler must be callable")
        with self._lock:
            self._error_handlers.append(handler)

    def remove_error_handler(self, handler: ErrorHandler) -> bool:
        with self._lock:
            try:
                self._error_handlers.remove(handler)
                return True
            except ValueError:
                return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for deliveries running on the worker pool or the broker's event loop
        thread. Returns False if some were still running when timeout expired.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            with self._lock:
                pending = list(self._inflight)
            if not pending:
                return True

            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False

            futures.wait(pending, timeout=remaining)

    async def flush_async(self) -> None:
        """Wait for deliveries the broker scheduled on the running event loop"""
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                pending = [t for t in self._tasks if t.get_loop() is loop]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Management APIs

    def get_subscription(self, subscription_id: str) -> Subscription:
        return self.registry.get(subscription_id)

    def list_subscriptions(self) -> List[Subscription]:
        return self.registry.snapshot()

    def clear_subscriptions(self) -> int:
        """Remove every subscription"""
        count = self.registry.clear()
        logger.info(f"Cleared {count} subscription(s)")
        return count

    def get_broker_stats(self) -> Dict[str, Any]:
        """Get overall broker statistics"""
        registry_stats = self.registry.get_stats()
        with self._lock:
            stats = dict(self._stats)
            pending = len(self._inflight) + len(self._tasks)

        stats.update({
            'subscriptions': registry_stats['subscriptions'],
            'patterns': registry_stats['patterns'],
            'pending': pending,
            'delivery_mode': self.delivery_mode.value,
            'running': self._running,
        })
        return stats

    # Delivery

    def _deliver(self, subscription: Subscription, topic: str, message: Any) -> None:
        """Invoke one subscriber; never raises"""
        if not subscription.active:
            return

        with self._lock:
            self._stats['deliveries'] += 1
            subscription.delivered_count += 1

        try:
            result = subscription.callback(topic, message)
        except Exception as e:
            self._report_failure(subscription, topic, e)
            return

        if inspect.isawaitable(result):
            self._schedule(subscription, topic, result)

    def _schedule(self, subscription: Subscription, topic: str, awaitable: Awaitable[Any]) -> None:
        """Run an awaitable result without waiting for it"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        try:
            if loop is not None:
                task = asyncio.ensure_future(awaitable)
                with self._lock:
                    self._tasks.add(task)
                task.add_done_callback(partial(self._on_done, subscription, topic))
            else:
                future = self._loop_thread.submit(awaitable)
                # _on_done runs before _untrack, flush() depends on that order
                future.add_done_callback(partial(self._on_done, subscription, topic))
                self._track(future)
        except Exception as e:
            self._report_failure(subscription, topic, e)

    def _on_done(self, subscription: Subscription, topic: str, future) -> None:
        with self._lock:
            self._tasks.discard(future)

        if future.cancelled():
            logger.warning(f"Delivery to {subscription.subscription_id} for topic {topic} was cancelled")
            return

        error = future.exception()
        if error is not None:
            self._report_failure(subscription, topic, error)

    def _report_failure(self, subscription: Subscription, topic: str, error: BaseException) -> None:
        failure = SubscriberFailure(subscription.subscription_id, subscription.pattern, topic, error)

        with self._lock:
            self._stats['failures'] += 1
            subscription.failure_count += 1
            handlers = list(self._error_handlers)

        logger.error(
            f"Error in subscriber callback for topic {topic} (subId: {subscription.subscription_id}): {error}",
            exc_info=error
        )

        for handler in handlers:
            try:
                handler(failure)
            except Exception as e:
                logger.error(f"Error handler {handler!r} failed: {e}")

    def _track(self, future: futures.Future) -> None:
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._untrack)

    def _untrack(self, future: futures.Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _get_executor(self) -> futures.ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = futures.ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="TopicbusDelivery"
                )
            return self._executor
