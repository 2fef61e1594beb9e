"""Per-key single-flight registry.

Concurrent callers asking for the same key share one underlying operation.
Unrelated keys run fully in parallel; there is no global lock.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Collapse concurrent identical requests into one awaited operation."""

    def __init__(self) -> None:
        self._inflight: Dict[str, "asyncio.Future[T]"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` for ``key`` unless one is already running.

        Check-and-register happens without a suspension point, so it is
        atomic on the event loop. The token is always removed before the
        leader returns or raises; failures are shared with waiters but never
        remembered.
        """

        existing = self._inflight.get(key)
        if existing is not None:
            # Shield so a cancelled waiter does not cancel the shared work.
            return await asyncio.shield(existing)

        future: "asyncio.Future[T]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await operation()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as exc:
            future.set_exception(exc)
            # Mark as retrieved; the leader re-raises it below.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]
