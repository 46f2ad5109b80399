"""Time source used by the scheduler.

All scheduling decisions read time through a ``Clock`` so that cooldown
and pacing behaviour can be driven by a simulated clock in tests.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime


class Clock:
    """Wall clock backed by ``datetime.now`` and ``asyncio.sleep``."""

    def now(self) -> datetime:
        """Current UTC time."""
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
