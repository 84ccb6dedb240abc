"""
Incremental Update Batcher

Throttles partial-answer updates to the chat surface. Each ``update(text)``
carries the full text so far (a snapshot, not a delta).

An update is forwarded immediately when it is the first one, when at least
``min_chars`` new characters arrived since the last forward, or when
``max_delay`` has passed since the last forward. Otherwise a deferred
forward is scheduled after ``batch_delay``, replacing any earlier one.

``finish(text)`` flushes a pending snapshot and then sends the final text,
which is always the last thing sent.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .config import BatchingConfig

logger = logging.getLogger(__name__)

SendCallback = Callable[[str, bool], Awaitable[None]]


class UpdateBatcher:
    """Debounced forwarder of growing-text snapshots."""

    def __init__(
        self,
        send: SendCallback,
        batch_delay: float = 0.15,
        min_chars: int = 50,
        max_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            send: Coroutine called as ``send(text, final)``
            batch_delay: Debounce delay in seconds for deferred forwards
            min_chars: New characters that force an immediate forward
            max_delay: Seconds since last forward that force an immediate forward
            clock: Monotonic time source
        """
        self._send = send
        self.batch_delay = batch_delay
        self.min_chars = min_chars
        self.max_delay = max_delay
        self._clock = clock

        self._lock = asyncio.Lock()
        self._pending_task: Optional[asyncio.Task] = None
        self._pending_text: Optional[str] = None
        self._last_sent_text: Optional[str] = None
        self._last_sent_len = 0
        self._last_sent_at: Optional[float] = None
        self._finished = False
        self.sent_count = 0

    @classmethod
    def from_config(cls, send: SendCallback, config: BatchingConfig) -> "UpdateBatcher":
        return cls(
            send,
            batch_delay=config.batch_delay_ms / 1000,
            min_chars=config.min_chars,
            max_delay=config.max_delay_ms / 1000,
        )

    async def update(self, text: str) -> None:
        """Offer a new snapshot."""
        if self._finished:
            return

        if self._should_send_now(text):
            self._cancel_pending()
            await self._deliver(text, final=False)
            return

        self._cancel_pending()
        self._pending_text = text
        self._pending_task = asyncio.create_task(self._deferred_send())

    async def flush(self) -> None:
        """Send the pending snapshot, if any, right now."""
        text = self._pending_text
        self._cancel_pending()
        if text is not None:
            await self._deliver(text, final=False)

    async def finish(self, text: str) -> None:
        """Flush, then send the complete final text."""
        if self._finished:
            return
        await self.flush()
        self._finished = True
        await self._deliver(text, final=True)

    def _should_send_now(self, text: str) -> bool:
        if self._last_sent_at is None:
            return True
        if len(text) - self._last_sent_len >= self.min_chars:
            return True
        return self._clock() - self._last_sent_at >= self.max_delay

    def _cancel_pending(self) -> None:
        if self._pending_task is not None and not self._pending_task.done():
            self._pending_task.cancel()
        self._pending_task = None
        self._pending_text = None

    async def _deferred_send(self) -> None:
        await asyncio.sleep(self.batch_delay)
        text = self._pending_text
        # Detach before sending so a later update or flush does not cancel an in-flight send
        self._pending_task = None
        self._pending_text = None
        if text is not None:
            await self._deliver(text, final=False)

    async def _deliver(self, text: str, final: bool) -> None:
        async with self._lock:
            if self._finished and not final:
                return
            try:
                await self._send(text, final)
            except Exception as e:
                # Partial failures are dropped, final failures propagate
                if final:
                    raise
                logger.warning(f"[Batcher] Partial update failed: {e}")
                return
            self._last_sent_text = text
            self._last_sent_len = len(text)
            self._last_sent_at = self._clock()
            self.sent_count += 1
