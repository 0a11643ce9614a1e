"""Rate-limited refresh queue for per-group metadata.

Identifiers are processed one at a time, FIFO, with a growing wait before
each fetch (``base_delay + attempt * step_delay``: 2s, 5s, 8s, 11s). A
rate-limited fetch is retried later with ``attempt + 1`` until the retry
ceiling; any other failure drops the entry. Retries produced during a run
are deferred until the run ends and picked up by another drain after a
cooldown.

Only one drain runs at a time. An identifier is queued at most once while
it waits.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..transport.base import is_rate_limit, with_timeout

logger = logging.getLogger("pocketpa.groups.queue")

_PROGRESS_EVERY = 10


@dataclass
class RetryQueueEntry:
    identifier: str
    attempt_count: int = 0


@dataclass
class DrainResult:
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dropped: int = 0


class RefreshQueue:
    """FIFO of identifiers awaiting a throttled fetch.

    Args:
        fetch: Async ``identifier -> data`` call (e.g. group metadata).
        on_success: Called with ``(identifier, data)`` after a good fetch.
        base_delay: Wait before every fetch, seconds.
        step_delay: Extra wait per previous attempt, seconds.
        max_retries: Rate-limit retries before an entry is dropped.
        cooldown: Wait before draining deferred retries, seconds.
        timeout: Overall timeout per fetch (None disables).
        sleep: Injectable ``asyncio.sleep``.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[Any]],
        on_success: Callable[[str, Any], None],
        base_delay: float = 2.0,
        step_delay: float = 3.0,
        max_retries: int = 3,
        cooldown: float = 10.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._fetch = fetch
        self._on_success = on_success
        self.base_delay = base_delay
        self.step_delay = step_delay
        self.max_retries = max_retries
        self.cooldown = cooldown
        self.timeout = timeout
        self._sleep = sleep

        self._pending: deque[RetryQueueEntry] = deque()
        self._queued: set[str] = set()
        self._draining = False
        self._scheduled: Optional[asyncio.Task] = None

    # ── State ─────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def draining(self) -> bool:
        return self._draining

    def pending_ids(self) -> list[str]:
        return [e.identifier for e in self._pending]

    # ── Enqueue / schedule ────────────────────────────────────

    def enqueue(self, identifier: str, attempt_count: int = 0) -> bool:
        """Add ``identifier`` unless it is already waiting. Returns True if added."""
        if identifier in self._queued:
            for entry in self._pending:
                if entry.identifier == identifier and entry.attempt_count < attempt_count:
                    logger.debug(f"{identifier} already queued, raising attempt {entry.attempt_count} -> {attempt_count}")
                    entry.attempt_count = attempt_count
                    break
            else:
                logger.debug(f"{identifier} already queued, skipping")
            return False
        self._pending.append(RetryQueueEntry(identifier, attempt_count))
        self._queued.add(identifier)
        return True

    def schedule_drain(self, delay: float) -> asyncio.Task:
        """Run drain() after ``delay`` seconds, unless one is already scheduled."""
        if self._scheduled and not self._scheduled.done():
            return self._scheduled
        self._scheduled = asyncio.create_task(self._drain_later(delay))
        return self._scheduled

    async def _drain_later(self, delay: float):
        await self._sleep(delay)
        self._scheduled = None
        try:
            await self.drain()
        except Exception as e:
            logger.error(f"Scheduled queue drain failed: {e}", exc_info=True)

    # ── Drain ─────────────────────────────────────────────────

    async def drain(self) -> DrainResult:
        """Process every pending entry once.

        Returns:
            Counters for this run. A call made while another drain is
            running returns immediately with zero counters.
        """
        result = DrainResult()
        if self._draining:
            logger.debug("Queue processing already in progress")
            return result
        if not self._pending:
            logger.debug("Queue is empty, nothing to process")
            return result

        self._draining = True
        deferred: list[RetryQueueEntry] = []
        logger.info(f"Starting queue processing ({len(self._pending)} pending)")

        try:
            while self._pending:
                entry = self._pending.popleft()
                self._queued.discard(entry.identifier)
                result.processed += 1

                outcome = await self._process(entry)
                if outcome == "ok":
                    result.succeeded += 1
                elif outcome == "retry":
                    result.retried += 1
                    deferred.append(RetryQueueEntry(entry.identifier, entry.attempt_count + 1))
                else:
                    result.dropped += 1

                if result.processed % _PROGRESS_EVERY == 0:
                    logger.info(
                        f"Queue progress: {result.processed} processed, "
                        f"{result.succeeded} ok, {len(self._pending)} remaining"
                    )
        finally:
            self._draining = False

        logger.info(f"Queue processing completed: {result.processed} processed, {result.succeeded} ok")

        requeued = [e for e in deferred if self.enqueue(e.identifier, e.attempt_count)]
        if requeued:
            logger.info(f"{len(requeued)} retry(ies) queued, next round in {self.cooldown:.0f}s")
            self.schedule_drain(self.cooldown)
        return result

    async def _process(self, entry: RetryQueueEntry) -> str:
        delay = self.base_delay + entry.attempt_count * self.step_delay
        logger.debug(f"Fetching {entry.identifier} (attempt {entry.attempt_count}, wait {delay:.0f}s)")
        await self._sleep(delay)

        try:
            data = await with_timeout(self._fetch(entry.identifier), self.timeout, f"fetch {entry.identifier}")
        except Exception as e:
            if is_rate_limit(e) and entry.attempt_count < self.max_retries:
                logger.warning(f"Rate limit hit for {entry.identifier}, will retry (attempt {entry.attempt_count + 1})")
                return "retry"
            logger.error(f"Failed to refresh {entry.identifier} after {entry.attempt_count} retries: {e}")
            return "dropped"

        try:
            self._on_success(entry.identifier, data)
        except Exception as e:
            logger.error(f"Applying refresh for {entry.identifier} failed: {e}", exc_info=True)
            return "dropped"
        return "ok"

    # ── Lifecycle ──────────────────────────────────────────────

    async def wait_idle(self):
        """Wait until nothing is pending, scheduled or running."""
        while True:
            task = self._scheduled
            if task and not task.done():
                await task
                continue
            if self._draining:
                await asyncio.sleep(0)
                continue
            if self._pending:
                await self.drain()
                continue
            return

    async def stop(self):
        """Cancel a scheduled drain. Pending entries are discarded."""
        task = self._scheduled
        self._scheduled = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pending.clear()
        self._queued.clear()
