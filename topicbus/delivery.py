"""
Delivery plumbing for subscriber callbacks.

Inline delivery calls the callback in the publishing thread; threaded delivery
hands each call to a worker pool. Awaitables returned by callbacks run on the
caller's event loop when there is one, otherwise on an EventLoopThread.
"""
import asyncio
import threading
import logging
from concurrent.futures import Future
from enum import Enum
from typing import Any, Awaitable, Optional


logger = logging.getLogger(__name__)


class DeliveryMode(str, Enum):
    """How matched callbacks are invoked"""
    INLINE = 'inline'
    THREADED = 'threaded'


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class EventLoopThread:
    """An asyncio event loop running forever in a daemon thread"""

    def __init__(self, name: str = "TopicbusEventLoop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        """Start the loop thread if it is not already running and return its loop"""
        with self._lock:
            return self._start_locked()

    def _start_locked(self) -> asyncio.AbstractEventLoop:
        if self.running:
            return self._loop

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._loop,),
            daemon=True,
            name=self.name
        )
        self._thread.start()
        logger.debug(f"Event loop thread {self.name} started")
        return self._loop

    def submit(self, awaitable: Awaitable[Any]) -> Future:
        """Schedule an awaitable on the loop and return a concurrent future for it"""
        # Queued ahead of any loop.stop issued by stop()
        with self._lock:
            loop = self._start_locked()
            return asyncio.run_coroutine_threadsafe(_await(awaitable), loop)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop, cancelling whatever is still pending on it"""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None

        if loop is None or thread is None:
            return

        if thread.is_alive():
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Event loop thread {self.name} did not stop within {timeout}s")
                return

        logger.debug(f"Event loop thread {self.name} stopped")

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            try:
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()
