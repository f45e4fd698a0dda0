"""
chatstream - Cooperative Cancellation

CancellationToken lets a caller stop a running stream. The driver races
wait() against every transport read, so a stalled read is abandoned as
soon as cancel() is called, and sleeps on the token between attempts.
Child tokens inherit cancellation from their parent.
"""

import asyncio
from threading import Lock
from typing import List, Optional

from ..core.errors import StreamCancelledError


class CancellationToken:
    """
    A cooperative cancellation token with cascading children.

    Usage:
        token = CancellationToken()
        driver = StreamDriver("openai", transport, cancellation_token=token)
        task = asyncio.create_task(driver.run())
        token.cancel("user pressed stop")
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._lock = Lock()
        self._children: List["CancellationToken"] = []
        self._event: Optional[asyncio.Event] = None
        if parent is not None:
            parent.link_child(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None):
        """Request cancellation and cascade to children. Idempotent."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason
            children = list(self._children)
            event = self._event
        if event is not None:
            event.set()
        for child in children:
            child.cancel(reason)

    def link_child(self, token: "CancellationToken") -> "CancellationToken":
        """Link a child token so parent cancellation cascades (returns child)."""
        with self._lock:
            self._children.append(token)
            cancelled = self._cancelled
            reason = self._reason
        if cancelled:
            token.cancel(reason)
        return token

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def raise_if_cancelled(self, provider: str = ""):
        """Raise StreamCancelledError if cancellation was requested."""
        if self._cancelled:
            raise StreamCancelledError(self._reason or "operation cancelled", provider=provider)

    def _get_event(self) -> asyncio.Event:
        with self._lock:
            if self._event is None:
                self._event = asyncio.Event()
                if self._cancelled:
                    self._event.set()
            return self._event

    async def wait(self):
        """Block until the token is cancelled."""
        await self._get_event().wait()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for delay seconds, waking early on cancellation.

        Returns True if the token was cancelled.
        """
        try:
            await asyncio.wait_for(self.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        return self._cancelled

    def __repr__(self) -> str:
        return (
            f"CancellationToken(cancelled={self._cancelled}, "
            f"reason={self._reason!r}, children={len(self._children)})"
        )
