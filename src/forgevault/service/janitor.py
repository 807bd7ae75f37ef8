"""Background sweep that expires stale drafts."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from forgevault.service.components import ComponentService
from forgevault.service.results import CleanupReport

logger = logging.getLogger("forgevault.service.janitor")


class DraftJanitor:
    """Periodically calls :meth:`ComponentService.cleanup_expired_drafts`.

    Call :meth:`start` from a running event loop to begin the sweep task and
    :meth:`stop` to cancel it.
    """

    def __init__(
        self,
        service: ComponentService,
        *,
        max_age_hours: float = 48,
        interval_seconds: float = 3600,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._service = service
        self._max_age_hours = max_age_hours
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the background sweep task."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="forgevault-draft-janitor"
        )
        logger.info(
            "Draft janitor started (max age %sh, every %ss)", self._max_age_hours, self._interval
        )

    async def stop(self) -> None:
        """Signal the sweep task to stop and wait for it."""
        self._stop_event.set()
        if self._task is not None:
            task, self._task = self._task, None
            try:
                await asyncio.wait_for(task, timeout=5)
            except TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    # -- sweeping ------------------------------------------------------------

    async def sweep(self) -> CleanupReport:
        return await self._service.cleanup_expired_drafts(self._max_age_hours)

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            else:
                return
            try:
                await self.sweep()
            except Exception:
                logger.exception("Draft sweep failed")
