"""
Connectivity signal.

A boolean online/offline flag with transition callbacks. Callbacks fire
only when the value actually changes. probe() offers a one-shot
reachability check for callers (like the CLI) with no OS-level signal.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

import httpx

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 5.0

TransitionCallback = Callable[[bool], Union[None, Awaitable[None]]]


class Connectivity:
    """Online/offline state with transition events."""

    def __init__(self, online: bool = True):
        self._online = online
        self._callbacks: list[TransitionCallback] = []

    @property
    def online(self) -> bool:
        return self._online

    def on_change(self, callback: TransitionCallback) -> None:
        """Register a callback receiving the new state on each transition."""
        self._callbacks.append(callback)

    async def set_online(self, online: bool) -> None:
        """Update the state, awaiting callbacks in registration order."""
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for callback in list(self._callbacks):
            result = callback(online)
            if inspect.isawaitable(result):
                await result


async def probe(url: str, timeout: float = PROBE_TIMEOUT,
                transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """True if the URL answers at all (any HTTP status)."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            await client.head(url)
        return True
    except httpx.HTTPError as e:
        logger.debug("Probe of %s failed: %s", url, e)
        return False
