# relay/core/encoder.py
"""Directive → work order translation. Pure functions, no I/O."""
from __future__ import annotations

from relay.core.domain import Action, ProjectDescriptor, WorkOrder


def build_work_order(repo: str, action: Action, project: ProjectDescriptor) -> WorkOrder:
    """
    Build the executor payload for ``action`` on ``repo``.

    An action with no configured commands still produces a work order
    with an empty command list; the executor decides whether that is a no-op.
    """
    return WorkOrder(
        repo=repo,
        type=action.work_order_type,
        dir=project.dir,
        commands=list(project.commands_for(action)),
    )


def encode_work_order(repo: str, action: Action, project: ProjectDescriptor) -> str:
    """Serialized form of build_work_order(); identical inputs give identical bytes."""
    return build_work_order(repo, action, project).to_json()
