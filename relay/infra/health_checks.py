# relay/infra/health_checks.py
from __future__ import annotations
import time
from typing import Dict, Any
from enum import Enum

from relay.core.ports import AsyncQueueStore, QueueStoreError
from relay.infra.logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """
        Perform health check.
        Returns dict with 'status', 'details', and optionally 'error'
        """
        raise NotImplementedError


class QueueStoreHealthCheck(AsyncHealthCheck):
    """Check queue store connectivity"""

    def __init__(self, store: AsyncQueueStore, slow_threshold: float = 1.0):
        super().__init__("queue_store", critical=True)
        self._store = store
        self._slow_threshold = slow_threshold

    async def check(self) -> Dict[str, Any]:
        start = time.perf_counter()

        try:
            ok = await self._store.ping()
        except QueueStoreError as exc:
            logger.error(f"Queue store health check failed: {exc}")
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Queue store unreachable",
                "error": str(exc)[:200],
            }

        duration = time.perf_counter() - start
        if not ok:
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Queue store did not answer PING",
            }
        if duration > self._slow_threshold:
            return {
                "status": HealthStatus.DEGRADED,
                "details": f"Slow queue store response: {duration:.3f}s",
                "response_time": duration,
            }
        return {
            "status": HealthStatus.HEALTHY,
            "details": "Queue store operational",
            "response_time": duration,
        }


class ConsumerHealthCheck(AsyncHealthCheck):
    """Report whether the queue consumer loop is alive (non-critical)"""

    def __init__(self, consumer):
        super().__init__("queue_consumer", critical=False)
        self._consumer = consumer

    async def check(self) -> Dict[str, Any]:
        if self._consumer.is_running:
            return {"status": HealthStatus.HEALTHY, "details": "Consumer loop running"}
        return {"status": HealthStatus.DEGRADED, "details": "Consumer loop not running"}


class AsyncHealthChecker:
    """Run a set of health checks and aggregate the result"""

    def __init__(self, checks: list[AsyncHealthCheck] | None = None):
        self.checks: list[AsyncHealthCheck] = list(checks or [])

    def add(self, check: AsyncHealthCheck) -> None:
        self.checks.append(check)

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        overall = HealthStatus.HEALTHY

        for check in self.checks:
            if not check.critical and not include_non_critical:
                continue

            try:
                result = await check.check()
            except Exception as exc:
                logger.error(f"Health check {check.name} raised", exc_info=True)
                result = {
                    "status": HealthStatus.UNHEALTHY,
                    "details": "Health check raised",
                    "error": str(exc)[:200],
                }

            results[check.name] = result
            status = result["status"]

            if status == HealthStatus.UNHEALTHY and check.critical:
                overall = HealthStatus.UNHEALTHY
            elif status != HealthStatus.HEALTHY and overall == HealthStatus.HEALTHY:
                overall = HealthStatus.DEGRADED

        return {
            "status": overall.value,
            "checks": results,
            "timestamp": time.time(),
        }
