"""Cooperative cancellation shared by the round loop, router and dispatcher."""

from __future__ import annotations

import asyncio


class CancelToken:
    """
    A one-shot interrupt flag.

    The UI calls ``cancel()`` (for example from a SIGINT handler); the
    orchestrator, router and dispatcher poll ``is_set()`` between stream
    chunks and between tool executions, or ``await wait()`` alongside work
    they want to abandon.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "interrupted by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
