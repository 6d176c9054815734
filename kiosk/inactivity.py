"""Idle timer that abandons an order when the customer walks away."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from kiosk.config import INACTIVITY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class InactivityTimer:
    def __init__(self, on_expire: Callable[[], None], timeout_seconds: float = INACTIVITY_TIMEOUT_SECONDS) -> None:
        self.on_expire = on_expire
        self.timeout_seconds = timeout_seconds
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        """Start (or restart) the countdown. Must be called from the event loop."""
        self._cancel_handle()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout_seconds, self._expire)

    def disarm(self) -> None:
        self._cancel_handle()

    def touch(self) -> None:
        """Customer activity; restarts the countdown only while armed."""
        if self.armed:
            self.arm()

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _expire(self) -> None:
        self._handle = None
        logger.info("inactivity_timeout seconds=%s", self.timeout_seconds)
        self.on_expire()
