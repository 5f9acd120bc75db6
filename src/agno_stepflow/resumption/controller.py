"""External suspension handle.

A caller holding a ``SuspendController`` can ask a running execution to
suspend. The execution controller checks the handle before every step and
races each running step against it, so suspension takes effect at the step
that is running (or about to run).
"""

import asyncio
from typing import Optional


class SuspendController:
    """Caller-held handle for suspending a running execution."""

    DEFAULT_REASON = "Suspended by user"

    def __init__(self):
        self._requested = asyncio.Event()
        self._reason: Optional[str] = None

    def suspend(self, reason: Optional[str] = None) -> None:
        """Request suspension. Later calls keep the first reason."""
        if self._requested.is_set():
            return
        self._reason = reason or self.DEFAULT_REASON
        self._requested.set()

    @property
    def is_suspended(self) -> bool:
        return self._requested.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    async def wait(self) -> None:
        await self._requested.wait()

    def reset(self) -> None:
        """Clear a consumed request so the handle can be reused after resume."""
        self._requested.clear()
        self._reason = None
