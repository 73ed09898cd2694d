# relay/transport/queue_consumer.py
"""
Queue ingress: blocking-read loop over the source Redis list.

Usage:
    consumer = QueueConsumer(dispatcher, store, "service:commands")
    await consumer.start()
    # ... on shutdown:
    await consumer.stop(timeout=10)
"""
from __future__ import annotations

import asyncio
import contextlib

from relay.core.dispatcher import Dispatcher
from relay.core.errors import InvalidDirective, DispatchError, SourceUnavailable
from relay.core.ports import AsyncQueueStore, QueueStoreError
from relay.infra.logging_config import get_logger, LogContext
from relay.infra.metrics import RelayMetrics

logger = get_logger(__name__)

ORIGIN = "queue"


class QueueConsumer:
    """
    Pulls directives from the head of the source queue and dispatches them.

    Each iteration does one BLPOP bounded by ``block_timeout``; the bound
    only exists so a stop request is noticed within one interval.

    Error handling:
    - Timeout (no message): loop again
    - Store read errors (or any other failure of the read): log, back off
      ``error_backoff`` seconds, retry
    - Undecodable / invalid directive: log and drop (never re-queued)
    - Dispatch errors: log and move on to the next message
    - Stop: finish the in-flight dispatch, start no new read
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        store: AsyncQueueStore,
        source_queue: str,
        *,
        block_timeout: float = 5.0,
        error_backoff: float = 1.0,
    ):
        self._dispatcher = dispatcher
        self._store = store
        self._source_queue = source_queue
        self._block_timeout = block_timeout
        self._error_backoff = error_backoff
        self._task: asyncio.Task | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._processed = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def processed(self) -> int:
        """Messages taken off the source queue (successful or not)."""
        return self._processed

    async def start(self) -> None:
        """Start the consume loop as a background task."""
        if self._running:
            logger.warning("Queue consumer already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="queue_consumer")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            f"Queue consumer started: source={self._source_queue}, "
            f"block_timeout={self._block_timeout}s"
        )

    async def stop(self, timeout: float | None = None) -> None:
        """
        Ask the loop to exit and wait for it.

        The current BLPOP returns within ``block_timeout`` and an in-flight
        dispatch is allowed to finish. If the loop is still alive after
        ``timeout`` seconds it is cancelled.
        """
        self._running = False
        self._stop_event.set()

        task = self._task
        if task is None or task.done():
            self._task = None
            logger.info("Queue consumer stopped")
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Queue consumer did not exit within {timeout}s, cancelling"
            )
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        logger.info(f"Queue consumer stopped (processed={self._processed})")

    async def _loop(self) -> None:
        """Main consume loop."""
        while self._running:
            try:
                message = await self._store.pop(
                    self._source_queue, timeout=self._block_timeout,
                )
            except QueueStoreError as exc:
                if not self._running:
                    break
                error = SourceUnavailable(self._source_queue, exc)
                RelayMetrics.source_error()
                logger.error(
                    f"Error reading from queue: {error}, "
                    f"backing off {self._error_backoff}s"
                )
                await self._backoff()
                continue
            except Exception as exc:
                if not self._running:
                    break
                RelayMetrics.source_error()
                logger.error(
                    f"Unexpected error reading from {self._source_queue}: "
                    f"{exc.__class__.__name__}: {exc}, backing off {self._error_backoff}s",
                    exc_info=True,
                )
                await self._backoff()
                continue

            if message is None:
                continue

            self._processed += 1
            await self._process(message)

    async def _process(self, message: str | bytes) -> None:
        """Dispatch a single message. Errors are logged, never raised."""
        log_ctx = LogContext(logger, origin=ORIGIN)
        log_ctx.info(f"Received message: {message[:200]!s}")

        try:
            await self._dispatcher.dispatch_raw(message, origin=ORIGIN)
        except InvalidDirective as exc:
            log_ctx.warning(f"Dropping invalid message: {exc.detail}")
        except DispatchError as exc:
            log_ctx.error(f"Error processing message: {exc.detail}")
        except Exception as exc:
            log_ctx.error(
                f"Unexpected error processing message: {exc.__class__.__name__}: {exc}",
                exc_info=True,
            )

    async def _backoff(self) -> None:
        """Sleep error_backoff seconds, waking early if stop() is called."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._error_backoff)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected consumer death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Queue consumer task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
