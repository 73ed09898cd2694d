# relay/transport/schemas.py
from pydantic import BaseModel, Field


class DirectiveIn(BaseModel):
    """Documentation-only shape of the POST /messages body (decoded by Directive.from_json)."""
    up: str | None = Field(default=None, max_length=256)
    down: str | None = Field(default=None, max_length=256)
    restart: str | None = Field(default=None, max_length=256)


class MessageAccepted(BaseModel):
    status: str = "success"
    message: str = "Message processed successfully"


class ErrorOut(BaseModel):
    error: str
