"""
Per-claim wakeups and pass locks for the reconcile daemons.

Each IdentityClaim daemon sleeps between passes for the delay the
reconciler asked for. Watch events that make an earlier pass worthwhile
(a spec edit, a change on the managed Certificate) wake the sleeper
through this registry. Keys are (namespace, name).

Passes for one claim are serialized by a per-claim lock, so the deletion
pass never overlaps a daemon pass that kopf has not finished cancelling.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WakeupRegistry:
    """Registry of wakeup events, one per running claim daemon."""

    def __init__(self) -> None:
        self._events: dict[tuple[str, str], asyncio.Event] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def register(self, namespace: str, name: str) -> asyncio.Event:
        """Get or create the wakeup event of a claim."""
        key = (namespace, name)
        if key not in self._events:
            self._events[key] = asyncio.Event()
        return self._events[key]

    def unregister(self, namespace: str, name: str) -> None:
        """Forget the wakeup event of a claim whose daemon stopped."""
        self._events.pop((namespace, name), None)

    def wake(self, namespace: str, name: str) -> bool:
        """
        Wake the daemon of a claim.

        Returns:
            True if a daemon was registered for the claim
        """
        event = self._events.get((namespace, name))
        if event is None:
            return False
        logger.debug(f"Waking reconcile loop for IdentityClaim {namespace}/{name}")
        event.set()
        return True

    async def sleep(self, namespace: str, name: str, delay: float) -> bool:
        """
        Sleep for up to delay seconds, returning early when woken.

        Returns:
            True if the sleep was cut short by a wakeup
        """
        event = self.register(namespace, name)
        try:
            await asyncio.wait_for(event.wait(), timeout=max(delay, 0))
            return True
        except TimeoutError:
            return False
        finally:
            event.clear()

    def lock(self, namespace: str, name: str) -> asyncio.Lock:
        """Get or create the pass lock of a claim."""
        return self._locks.setdefault((namespace, name), asyncio.Lock())

    def forget(self, namespace: str, name: str) -> None:
        """Drop the pass lock of a claim that no longer exists."""
        lock = self._locks.get((namespace, name))
        if lock is not None and not lock.locked():
            del self._locks[(namespace, name)]

    async def run_exclusive(
        self, namespace: str, name: str, run: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Run one pass for a claim while holding its lock.

        The pass is shielded from cancellation of the caller. Its blocking
        API calls run in worker threads that cancellation cannot stop, so
        the lock is held until the pass has really finished.

        Args:
            namespace: Namespace of the claim
            name: Name of the claim
            run: Starts the pass

        Returns:
            Whatever the pass returned
        """
        lock = self.lock(namespace, name)

        async def exclusive() -> T:
            async with lock:
                return await run()

        task = asyncio.ensure_future(exclusive())
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_abandoned_pass)
            raise

    def __len__(self) -> int:
        return len(self._events)


def _log_abandoned_pass(task: asyncio.Future) -> None:
    """Retrieve the outcome of a pass whose caller was cancelled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Pass finished after its caller was cancelled: {error}")
