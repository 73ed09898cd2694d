# relay/core/dispatcher.py
"""
Single entry point shared by every ingress path.

Both the queue consumer and the HTTP endpoint hand their raw payloads to
``Dispatcher.dispatch_raw``, so validation, registry resolution, encoding
and delivery are identical regardless of where a directive came from.

The dispatcher holds no mutable state: the registry is read-only and each
call builds its own Directive and WorkOrder. The store client is the only
shared resource and must tolerate concurrent use.
"""
from __future__ import annotations

from typing import Any, Optional

from relay.core.domain import Action, Directive, ProjectDescriptor, WorkOrder
from relay.core.encoder import build_work_order
from relay.core.errors import DeliveryFailed, DispatchError, InvalidDirective
from relay.core.ports import AsyncQueueStore, QueueStoreError
from relay.core.registry import ProjectRegistry
from relay.infra.logging_config import get_logger, LogContext
from relay.infra.metrics import RelayMetrics

logger = get_logger(__name__)

MISSING_ACTION_MESSAGE = "message must contain either 'up', 'down', or 'restart' field"


def validate_directive(directive: Directive) -> tuple[Action, str]:
    """
    Enforce the exactly-one-action rule.

    Returns:
        (action, repository id) of the single populated field.

    Raises:
        InvalidDirective: no field or more than one field populated.
    """
    populated = directive.populated()
    if not populated:
        raise InvalidDirective(MISSING_ACTION_MESSAGE)
    if len(populated) > 1:
        names = ", ".join(f"'{action.value}'" for action, _ in populated)
        raise InvalidDirective(
            f"message must contain exactly one of 'up', 'down', or 'restart' (got {names})"
        )
    return populated[0]


class Dispatcher:
    """
    Validate → resolve → encode → enqueue.

    Usage:
        dispatcher = Dispatcher(registry, store, default_target_queue="poppit:notifications")
        order = await dispatcher.dispatch_raw('{"up": "org/app"}', origin="http")
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        store: AsyncQueueStore,
        *,
        default_target_queue: str,
    ):
        if not default_target_queue:
            raise ValueError("default_target_queue must not be empty")
        self._registry = registry
        self._store = store
        self._default_target_queue = default_target_queue

    @property
    def registry(self) -> ProjectRegistry:
        return self._registry

    @property
    def default_target_queue(self) -> str:
        return self._default_target_queue

    def resolve_target_queue(self, project: ProjectDescriptor) -> str:
        return project.target_queue or self._default_target_queue

    async def dispatch_raw(
        self,
        raw: str | bytes | dict[str, Any],
        *,
        origin: str = "direct",
        request_id: Optional[str] = None,
    ) -> WorkOrder:
        """Decode a wire-format directive and dispatch it."""
        RelayMetrics.directive_received(origin)
        try:
            directive = Directive.from_json(raw)
        except InvalidDirective as exc:
            RelayMetrics.dispatch_failed(exc.reason, origin)
            raise
        return await self._dispatch(directive, origin, request_id)

    async def dispatch(
        self,
        directive: Directive,
        *,
        origin: str = "direct",
        request_id: Optional[str] = None,
    ) -> WorkOrder:
        """
        Dispatch one directive.

        Exactly one RPUSH to exactly one queue on success, none on failure.
        Delivery is not retried here; the caller owns retry policy.

        Raises:
            InvalidDirective, UnknownRepository, DeliveryFailed
        """
        RelayMetrics.directive_received(origin)
        return await self._dispatch(directive, origin, request_id)

    async def _dispatch(
        self,
        directive: Directive,
        origin: str,
        request_id: Optional[str],
    ) -> WorkOrder:
        log_ctx = LogContext(logger, request_id=request_id, origin=origin)
        try:
            with RelayMetrics.track_dispatch_time(origin):
                action, repo = validate_directive(directive)
                log_ctx = log_ctx.bind(repo=repo, action=action.value)

                project = self._registry.lookup(repo)
                log_ctx.info(f"Processing {action.value} command for {repo}")

                order = build_work_order(repo, action, project)
                queue = self.resolve_target_queue(project)
                await self._deliver(queue, order)
        except DispatchError as exc:
            RelayMetrics.dispatch_failed(exc.reason, origin)
            raise

        RelayMetrics.work_order_sent(action.value, origin)
        log_ctx.info(f"Sent notification to {queue} for {repo} ({action.value})")
        return order

    async def _deliver(self, queue: str, order: WorkOrder) -> None:
        try:
            await self._store.push(queue, order.to_json())
        except QueueStoreError as exc:
            raise DeliveryFailed(queue, exc) from exc
