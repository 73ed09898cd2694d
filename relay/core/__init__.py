# relay/core/__init__.py
"""
Dispatch engine -- transport-agnostic core.

Domain types, the immutable project registry, the work-order encoder and
the Dispatcher shared by the queue consumer and the HTTP endpoint.

Canonical imports:
    from relay.core import Dispatcher, ProjectRegistry, Directive
    from relay.core.errors import InvalidDirective, UnknownRepository
    from relay.core.ports import AsyncQueueStore, QueueStoreError
"""
from relay.core.domain import (  # noqa: F401
    Action,
    Directive,
    ProjectDescriptor,
    WorkOrder,
    DEFAULT_BRANCH,
)
from relay.core.registry import (  # noqa: F401
    ProjectRegistry,
    load_registry,
    parse_registry,
)
from relay.core.encoder import build_work_order, encode_work_order  # noqa: F401
from relay.core.dispatcher import Dispatcher, validate_directive  # noqa: F401
