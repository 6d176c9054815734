"""Online/offline tracking with change notification."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from kiosk.capabilities import guarded
from kiosk.config import CONNECTIVITY_PROBE_SECONDS

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the last known connectivity and tells listeners when it flips."""

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval_seconds: float = CONNECTIVITY_PROBE_SECONDS,
        is_online: bool = False,
    ) -> None:
        self.probe = probe
        self.interval_seconds = interval_seconds
        self.is_online = is_online
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def set_online(self, is_online: bool) -> None:
        if is_online == self.is_online:
            return
        self.is_online = is_online
        logger.info("connectivity_changed online=%s", is_online)
        for listener in list(self._listeners):
            try:
                listener(is_online)
            except Exception:
                logger.exception("connectivity_listener_failed")

    async def check(self) -> bool:
        self.set_online(bool(await guarded("connectivity_probe", self.probe, False)))
        return self.is_online

    async def run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval_seconds)
