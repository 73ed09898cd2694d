# relay/main.py
"""
Process entrypoint: wiring, run modes and graceful shutdown.

    python -m relay                      # HTTP + queue consumer
    python -m relay --run-mode consumer  # queue consumer only
    RUN_MODE=web PORT=9000 relay         # HTTP only

Startup loads the project registry, connects to Redis (fatal if either
fails), then hands the HTTP server and the queue consumer to a
ShutdownCoordinator that owns SIGINT/SIGTERM.
"""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
from dataclasses import dataclass
from typing import Optional

import uvicorn

from relay.config import Settings, settings as default_settings, validate_or_warn
from relay.core.dispatcher import Dispatcher
from relay.core.errors import RegistryLoadError
from relay.core.ports import AsyncQueueStore, QueueStoreError
from relay.core.registry import ProjectRegistry, load_registry
from relay.infra.health_checks import (
    AsyncHealthChecker,
    ConsumerHealthCheck,
    QueueStoreHealthCheck,
)
from relay.infra.logging_config import get_logger, setup_logging
from relay.infra.redis_store import RedisQueueStore
from relay.transport.http_app import create_app
from relay.transport.queue_consumer import QueueConsumer

logger = get_logger(__name__)


# ============================================================================
# HTTP SERVER
# ============================================================================

class ManagedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to ShutdownCoordinator."""

    def install_signal_handlers(self) -> None:
        # uvicorn < 0.29
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        # uvicorn >= 0.29
        yield


# ============================================================================
# SHUTDOWN COORDINATOR
# ============================================================================

class ShutdownCoordinator:
    """
    Runs both ingress paths and stops them in order on SIGINT/SIGTERM.

    Shutdown sequence:
    1. HTTP: stop accepting connections, let in-flight requests finish
       (bounded by grace_period, then force exit)
    2. Consumer: signal stop
    3. Consumer: wait for the loop to exit (bounded by grace_period)

    Best-effort: nothing waits longer than the grace period per step.
    """

    def __init__(
        self,
        *,
        server: Optional[uvicorn.Server] = None,
        consumer: Optional[QueueConsumer] = None,
        grace_period: float = 10.0,
    ):
        self._server = server
        self._consumer = consumer
        self._grace_period = grace_period
        self._stop_requested = asyncio.Event()
        self._installed_signals: list[signal.Signals] = []

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_shutdown(self, sig: Optional[signal.Signals] = None) -> None:
        if self._stop_requested.is_set():
            logger.warning("Shutdown already in progress")
            return
        name = sig.name if sig is not None else "request"
        logger.info(f"Received shutdown signal ({name}), cleaning up...")
        self._stop_requested.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                logger.warning(f"Cannot install handler for {sig.name} on this platform")
                continue
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    async def run(self) -> None:
        """Start both ingress paths, block until shutdown, then stop them."""
        self.install_signal_handlers()
        server_task: asyncio.Task | None = None
        try:
            if self._consumer is not None:
                await self._consumer.start()

            if self._server is not None:
                server_task = asyncio.create_task(self._server.serve(), name="http_server")

            stop_waiter = asyncio.create_task(self._stop_requested.wait(), name="stop_waiter")
            waiters: set[asyncio.Task] = {stop_waiter}
            if server_task is not None:
                waiters.add(server_task)

            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            stop_waiter.cancel()

            if server_task is not None and server_task in done and not self.stop_requested:
                exc = None if server_task.cancelled() else server_task.exception()
                logger.error(f"HTTP server exited unexpectedly: {exc!r}")

            await self.shutdown(server_task)
        finally:
            self.remove_signal_handlers()

    async def shutdown(self, server_task: asyncio.Task | None = None) -> None:
        # (a) HTTP first: no new directives from callers that expect an answer
        if self._server is not None and server_task is not None and not server_task.done():
            self._server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(server_task), timeout=self._grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    f"HTTP server did not stop within {self._grace_period}s, forcing exit"
                )
                self._server.force_exit = True
                server_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await server_task
            logger.info("HTTP server stopped")

        # (b) + (c) consumer: finish in-flight dispatch, no new read
        if self._consumer is not None:
            await self._consumer.stop(timeout=self._grace_period)

        logger.info("Shutdown complete")


# ============================================================================
# RUNTIME ASSEMBLY
# ============================================================================

@dataclass
class Runtime:
    settings: Settings
    registry: ProjectRegistry
    store: AsyncQueueStore
    dispatcher: Dispatcher
    consumer: Optional[QueueConsumer] = None
    server: Optional[uvicorn.Server] = None

    def coordinator(self) -> ShutdownCoordinator:
        return ShutdownCoordinator(
            server=self.server,
            consumer=self.consumer,
            grace_period=self.settings.shutdown_grace_seconds,
        )


async def build_runtime(
    settings: Settings,
    *,
    store: AsyncQueueStore | None = None,
) -> Runtime:
    """
    Load the registry, connect the store and build the components
    selected by ``settings.run_mode``.

    Raises:
        RegistryLoadError: projects file missing or invalid
        QueueStoreError: store unreachable at startup
    """
    registry = load_registry(settings.config_file)

    store = store or RedisQueueStore.from_settings(settings)
    try:
        await store.ping()
    except QueueStoreError:
        await store.close()
        raise
    logger.info("Connected to queue store")

    dispatcher = Dispatcher(registry, store, default_target_queue=settings.target_queue)
    health_checker = AsyncHealthChecker([QueueStoreHealthCheck(store)])

    consumer = None
    if settings.runs_consumer:
        consumer = QueueConsumer(
            dispatcher,
            store,
            settings.source_list,
            block_timeout=settings.consumer_block_timeout,
            error_backoff=settings.consumer_error_backoff,
        )
        health_checker.add(ConsumerHealthCheck(consumer))
        logger.info(f"Listening for messages on list: {settings.source_list}")
    else:
        logger.info(f"Queue consumer skipped (run_mode={settings.run_mode})")

    server = None
    if settings.runs_http:
        app = create_app(dispatcher, health_checker=health_checker, settings=settings)
        config = uvicorn.Config(
            app,
            host=settings.http_host,
            port=settings.port,
            log_config=None,
            log_level=settings.log_level.lower(),
            access_log=False,  # RequestLoggingMiddleware covers it
            timeout_keep_alive=settings.http_timeout_keep_alive,
            timeout_graceful_shutdown=max(1, int(settings.shutdown_grace_seconds)),
            server_header=False,
            date_header=False,
        )
        server = ManagedServer(config)
        logger.info(f"HTTP server configured on {settings.http_host}:{settings.port}")
    else:
        logger.info(f"HTTP server skipped (run_mode={settings.run_mode})")

    return Runtime(
        settings=settings,
        registry=registry,
        store=store,
        dispatcher=dispatcher,
        consumer=consumer,
        server=server,
    )


async def serve(settings: Settings) -> None:
    runtime = await build_runtime(settings)
    try:
        await runtime.coordinator().run()
    finally:
        await runtime.store.close()


# ============================================================================
# CLI
# ============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="relay",
        description="Relay service up/down/restart directives to the executor queue.",
    )
    parser.add_argument("--config", "--config-file", dest="config_file", help="Projects JSON file (CONFIG_FILE)")
    parser.add_argument("--port", type=int, help="HTTP port (PORT)")
    parser.add_argument(
        "--run-mode",
        choices=["all", "web", "consumer"],
        help="Which ingress paths to run (RUN_MODE)",
    )
    parser.add_argument("--log-level", help="Log level (LOG_LEVEL)")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    base = base or default_settings
    overrides = {
        key: value
        for key, value in {
            "config_file": args.config_file,
            "port": args.port,
            "run_mode": args.run_mode,
            "log_level": args.log_level,
        }.items()
        if value is not None
    }
    return base.model_copy(update=overrides) if overrides else base


def main(argv: list[str] | None = None) -> int:
    app_settings = resolve_settings(parse_args(argv))

    setup_logging(level=app_settings.log_level, use_json=app_settings.is_production)
    logger.info(
        f"Starting service command relay: env={app_settings.app_env}, "
        f"run_mode={app_settings.run_mode}"
    )
    validate_or_warn(app_settings)

    try:
        asyncio.run(serve(app_settings))
    except RegistryLoadError as exc:
        logger.critical(f"Failed to load configuration: {exc.detail}")
        return 1
    except QueueStoreError as exc:
        logger.critical(f"Failed to connect to queue store: {exc}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
