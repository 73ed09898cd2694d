# relay/transport/messages.py
"""
HTTP ingress for directives (POST /messages).

The body is handed to the same ``Dispatcher.dispatch_raw`` the queue
consumer uses, and the response is only sent once dispatch has returned:

- 200 → work order enqueued
- 400 → malformed JSON, no action field, several action fields
- 500 → unknown repository or queue store failure
"""
from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from relay.core.dispatcher import Dispatcher
from relay.core.errors import DispatchError, InvalidDirective
from relay.infra.logging_config import get_logger, LogContext
from relay.transport.schemas import MessageAccepted

logger = get_logger(__name__)

ORIGIN = "http"


def get_dispatcher(request: Request) -> Dispatcher:
    """Get dispatcher from app state"""
    return request.app.state.dispatcher


async def post_message_handler(request: Request) -> JSONResponse:
    dispatcher = get_dispatcher(request)
    request_id = getattr(request.state, "request_id", None)
    log_ctx = LogContext(logger, request_id=request_id, origin=ORIGIN)

    body = await request.body()

    try:
        await dispatcher.dispatch_raw(body, origin=ORIGIN, request_id=request_id)
    except InvalidDirective as exc:
        log_ctx.warning(f"Rejected message: {exc.detail}")
        raise HTTPException(status_code=exc.status_code, detail=exc.detail)
    except DispatchError as exc:
        log_ctx.error(f"Error processing message: {exc.detail}")
        raise HTTPException(
            status_code=exc.status_code,
            detail=f"Failed to process message: {exc.detail}",
        )

    return JSONResponse(status_code=200, content=MessageAccepted().model_dump())
