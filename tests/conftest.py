# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from relay.core.dispatcher import Dispatcher  # noqa: E402
from relay.core.domain import ProjectDescriptor  # noqa: E402
from relay.core.registry import ProjectRegistry  # noqa: E402
from relay.infra.metrics import get_metrics_collector  # noqa: E402

DEFAULT_TARGET = "poppit:notifications"
SOURCE_LIST = "service:commands"


class InMemoryQueueStore:
    """
    AsyncQueueStore fake backed by in-process deques.

    ``push_error`` makes every push fail; ``pop_errors`` are raised by the
    next pops, one per call, before normal behaviour resumes.
    """

    def __init__(self):
        self.queues: dict[str, deque] = defaultdict(deque)
        self.pushes: list[tuple[str, str]] = []
        self.push_error: Exception | None = None
        self.pop_errors: list[Exception] = []
        self.pop_calls = 0
        self.ping_result = True
        self.ping_error: Exception | None = None
        self.closed = False

    async def push(self, queue: str, payload: str) -> int:
        if self.push_error is not None:
            raise self.push_error
        self.queues[queue].append(payload)
        self.pushes.append((queue, payload))
        return len(self.queues[queue])

    async def pop(self, queue: str, timeout: float):
        self.pop_calls += 1
        if self.pop_errors:
            raise self.pop_errors.pop(0)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.queues[queue]:
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(0.005)
        return self.queues[queue].popleft()

    async def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return self.ping_result

    async def close(self) -> None:
        self.closed = True

    def items(self, queue: str) -> list[str]:
        return list(self.queues[queue])


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def app_project():
    return ProjectDescriptor(
        repo="org/app",
        dir="/srv/app",
        up_commands=("start.sh",),
        down_commands=("stop.sh",),
        restart_commands=("stop.sh", "start.sh"),
    )


@pytest.fixture
def registry(app_project):
    return ProjectRegistry.from_descriptors([
        app_project,
        ProjectDescriptor(
            repo="org/custom",
            dir="/srv/custom",
            up_commands=("docker compose up -d", "docker compose ps"),
            down_commands=("docker compose down",),
            target_queue="custom:queue",
        ),
        ProjectDescriptor(
            repo="org/bare",
            dir="/srv/bare",
            up_commands=("./run",),
        ),
    ])


@pytest.fixture
def store():
    return InMemoryQueueStore()


@pytest.fixture
def dispatcher(registry, store):
    return Dispatcher(registry, store, default_target_queue=DEFAULT_TARGET)
