import asyncio
from typing import Awaitable, Optional, TypeVar

from localerank.core.errors import FetchAborted

T = TypeVar("T")


class AbortSignal:
    """Cooperative cancellation token created once per fetch cycle.

    Holders poll `aborted`, or race an awaitable against it with `guard()`.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the signal fires first, then cancel it and raise FetchAborted."""
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise FetchAborted(self.reason or "aborted")
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        raise FetchAborted(self.reason or "aborted")
