# relay/core/ports.py
from __future__ import annotations
from typing import Protocol, Optional


class QueueStoreError(Exception):
    """Store communication failed (connection, protocol, auth)."""


class AsyncQueueStore(Protocol):
    async def push(self, queue: str, payload: str) -> int:
        """Append payload to the tail of queue. Returns the new queue length."""
        ...

    async def pop(self, queue: str, timeout: float) -> Optional[str | bytes]:
        """
        Blocking pop from the head of queue.

        None  => nothing arrived within timeout
        str   => message body
        bytes => element that is not valid UTF-8 (rejected by the dispatcher)
        Raises QueueStoreError on any other failure.
        """
        ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
