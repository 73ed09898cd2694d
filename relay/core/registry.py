# relay/core/registry.py
"""
Immutable project registry.

Maps a repository identifier to its ProjectDescriptor. Built once at
startup (usually from ``CONFIG_FILE``) and only read afterwards, so
lookups from the consumer loop and from HTTP requests need no locking.

File format: either a top-level JSON array of projects or an object with
a ``projects`` array. Each project uses the camelCase keys the executor
tooling already writes::

    [{"repo": "org/app", "dir": "/srv/app",
      "upCommands": ["start.sh"], "downCommands": ["stop.sh"],
      "restartCommands": [], "targetQueue": "custom:queue"}]
"""
from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.core.domain import ProjectDescriptor
from relay.core.errors import RegistryLoadError, UnknownRepository
from relay.infra.logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------

class ProjectConfig(BaseModel):
    """One entry of the projects file."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    repo: str = Field(min_length=1)
    dir: str = ""
    up_commands: list[str] = Field(default_factory=list, alias="upCommands")
    down_commands: list[str] = Field(default_factory=list, alias="downCommands")
    restart_commands: list[str] | None = Field(default=None, alias="restartCommands")
    target_queue: str | None = Field(default=None, alias="targetQueue")

    def to_descriptor(self) -> ProjectDescriptor:
        return ProjectDescriptor(
            repo=self.repo,
            dir=self.dir,
            up_commands=tuple(self.up_commands),
            down_commands=tuple(self.down_commands),
            restart_commands=tuple(self.restart_commands or ()),
            target_queue=self.target_queue or None,
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProjectRegistry:
    """Read-only lookup table from repository id to ProjectDescriptor."""

    __slots__ = ("_projects",)

    def __init__(self, projects: Mapping[str, ProjectDescriptor]):
        self._projects = MappingProxyType(dict(projects))

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[ProjectDescriptor]) -> "ProjectRegistry":
        """Build a registry; a repeated repo id replaces the earlier entry."""
        table: dict[str, ProjectDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.repo in table:
                logger.warning(
                    f"Duplicate project configuration for {descriptor.repo}, "
                    f"keeping the last one"
                )
            table[descriptor.repo] = descriptor
        return cls(table)

    def get(self, repo: str) -> Optional[ProjectDescriptor]:
        return self._projects.get(repo)

    def lookup(self, repo: str) -> ProjectDescriptor:
        """Exact-match lookup. Raises UnknownRepository on a miss."""
        descriptor = self._projects.get(repo)
        if descriptor is None:
            raise UnknownRepository(repo)
        return descriptor

    def repositories(self) -> list[str]:
        return list(self._projects.keys())

    @property
    def projects(self) -> Mapping[str, ProjectDescriptor]:
        return self._projects

    def __contains__(self, repo: object) -> bool:
        return repo in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    def __iter__(self) -> Iterator[ProjectDescriptor]:
        return iter(self._projects.values())

    def __repr__(self) -> str:
        return f"ProjectRegistry({len(self._projects)} projects)"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def parse_registry(data: object) -> ProjectRegistry:
    """Build a registry from an already-decoded projects document."""
    if isinstance(data, dict) and "projects" in data:
        data = data["projects"]

    if not isinstance(data, list):
        raise RegistryLoadError(
            f"failed to parse config file: expected a list of projects, got {type(data).__name__}"
        )

    descriptors = []
    for index, entry in enumerate(data):
        try:
            descriptors.append(ProjectConfig.model_validate(entry).to_descriptor())
        except ValidationError as exc:
            raise RegistryLoadError(
                f"failed to parse config file: project #{index} is invalid: {exc}"
            ) from exc

    return ProjectRegistry.from_descriptors(descriptors)


def load_registry(path: str | Path) -> ProjectRegistry:
    """
    Read and parse the projects file.

    Raises:
        RegistryLoadError: file missing/unreadable or content invalid.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RegistryLoadError(f"failed to read config file {path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise RegistryLoadError(f"failed to parse config file {path}: {exc}") from exc

    registry = parse_registry(data)
    logger.info(f"Loaded {len(registry)} project configurations from {path}")
    return registry
