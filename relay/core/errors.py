# relay/core/errors.py
"""
Typed errors for the dispatch engine.

Each error carries the HTTP status code the ingress layer should answer
with. The queue consumer ignores the code and only logs.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""

    status_code: int = 500
    reason: str = "internal_error"

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class RegistryLoadError(RelayError):
    """Project registry could not be read or parsed (fatal at startup)."""


class DispatchError(RelayError):
    """Base class for failures returned by Dispatcher.dispatch()."""


class InvalidDirective(DispatchError):
    """Zero or several action fields, or an undecodable message (400)."""

    status_code = 400
    reason = "invalid_directive"


class UnknownRepository(DispatchError):
    """Directive names a repository absent from the registry."""

    reason = "unknown_repository"

    def __init__(self, repo: str):
        self.repo = repo
        super().__init__(f"no configuration found for repository: {repo}")


class DeliveryFailed(DispatchError):
    """Work order could not be appended to the target queue."""

    reason = "delivery_failed"

    def __init__(self, queue: str, cause: BaseException):
        self.queue = queue
        self.cause = cause
        super().__init__(f"failed to push notification to {queue}: {cause}")


class SourceUnavailable(RelayError):
    """Source queue read failed for a reason other than timeout."""

    reason = "source_unavailable"

    def __init__(self, queue: str, cause: BaseException):
        self.queue = queue
        self.cause = cause
        super().__init__(f"failed to read from {queue}: {cause}")
