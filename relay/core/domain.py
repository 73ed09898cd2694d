# relay/core/domain.py
from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Optional

from relay.core.errors import InvalidDirective

# Executors check out this ref; directives never carry one.
DEFAULT_BRANCH = "refs/heads/main"


# ============================================================================
# ACTIONS
# ============================================================================

class Action(str, Enum):
    UP = "up"
    DOWN = "down"
    RESTART = "restart"

    @property
    def work_order_type(self) -> str:
        return f"service-{self.value}"


# ============================================================================
# PROJECT DESCRIPTOR (registry entry)
# ============================================================================

@dataclass(frozen=True)
class ProjectDescriptor:
    """Immutable execution descriptor for one repository."""
    repo: str
    dir: str
    up_commands: tuple[str, ...] = ()
    down_commands: tuple[str, ...] = ()
    restart_commands: tuple[str, ...] = ()
    target_queue: Optional[str] = None

    def commands_for(self, action: Action) -> tuple[str, ...]:
        if action is Action.UP:
            return self.up_commands
        if action is Action.DOWN:
            return self.down_commands
        return self.restart_commands


# ============================================================================
# INBOUND DIRECTIVE
# ============================================================================

@dataclass(frozen=True)
class Directive:
    """
    Inbound lifecycle request.

    Exactly one of ``up`` / ``down`` / ``restart`` should carry a repository
    identifier. ``None`` and ``""`` both count as absent. The dispatcher
    enforces the exactly-one rule; this class only decodes the wire form.
    """
    up: Optional[str] = None
    down: Optional[str] = None
    restart: Optional[str] = None

    def populated(self) -> list[tuple[Action, str]]:
        """Return (action, repo) pairs for every non-empty field, in up/down/restart order."""
        pairs = []
        for action in Action:
            value = getattr(self, action.value)
            if value:
                pairs.append((action, value))
        return pairs

    @classmethod
    def from_json(cls, raw: str | bytes | dict[str, Any]) -> "Directive":
        """
        Decode a directive from a queue message or request body.

        Unknown keys are ignored. Raises InvalidDirective on malformed JSON,
        a non-object document or a non-string action field.
        """
        if isinstance(raw, dict):
            data = raw
        else:
            try:
                data = json.loads(raw)
            except (ValueError, TypeError) as exc:
                raise InvalidDirective(f"Invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise InvalidDirective(
                f"Invalid JSON: expected an object, got {type(data).__name__}"
            )

        values: dict[str, Optional[str]] = {}
        for action in Action:
            value = data.get(action.value)
            if value is not None and not isinstance(value, str):
                raise InvalidDirective(
                    f"Invalid JSON: field '{action.value}' must be a string"
                )
            values[action.value] = value

        return cls(**values)

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


# ============================================================================
# OUTBOUND WORK ORDER
# ============================================================================

@dataclass(frozen=True)
class WorkOrder:
    """Payload appended to the target queue for the external executor."""
    repo: str
    type: str
    dir: str
    commands: list[str] = field(default_factory=list)
    branch: str = DEFAULT_BRANCH

    def to_dict(self) -> dict[str, Any]:
        # Key order is part of the wire format.
        return {
            "repo": self.repo,
            "branch": self.branch,
            "type": self.type,
            "dir": self.dir,
            "commands": list(self.commands),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
