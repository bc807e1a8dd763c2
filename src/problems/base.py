"""
Problem Handler Base - Interface for cloud check problem types.

A problem handler re-verifies one detected divergence between the database
and reality, describes it, and offers a catalog of named resolutions. The
catalog is declared with the ``resolution`` decorator and collected once per
handler class.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, NoReturn, Optional, Union

from adapters.agent.base import AgentClientFactory
from adapters.cloud.base import CloudAdapter
from errors import UnknownResolution, ValidationError

logger = logging.getLogger(__name__)

PlanFn = Callable[[Any], str]
ActionFn = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class Resolution:
    """A catalog entry: a name, a side-effect free plan and an action."""

    name: str
    plan: PlanFn
    action: ActionFn


@dataclass(frozen=True)
class ResolutionOption:
    """A catalog entry bound to one handler instance."""

    name: str
    handler: "ProblemHandler"
    resolution: Resolution

    def plan(self) -> str:
        return self.resolution.plan(self.handler)

    async def action(self) -> None:
        await self.resolution.action(self.handler)


def resolution(name: str, plan: Union[str, PlanFn]) -> Callable[[ActionFn], ActionFn]:
    """
    Declare a handler method as a named resolution.

    Args:
        name: Resolution name offered to operators and policies
        plan: Plan text, or a function of the handler returning it
    """
    plan_fn: PlanFn = plan if callable(plan) else (lambda handler: plan)

    def decorator(action: ActionFn) -> ActionFn:
        action._resolution = Resolution(name=name, plan=plan_fn, action=action)
        return action

    return decorator


def handler_error(message: str) -> NoReturn:
    """Abort the current handler operation with a validation error."""
    raise ValidationError(message)


@dataclass
class ProblemContext:
    """
    Collaborators shared by every handler of a check run.

    ``repository`` is anything implementing find/save/destroy and
    find_active_disk, normally the DatabaseManager.
    """

    repository: Any
    cloud: CloudAdapter
    agents: AgentClientFactory
    strict_disk_delete: bool = False
    agent_timeout: float = 30


class ProblemHandler(ABC):
    """
    Abstract base class for problem handlers.

    Handlers are built from a resource id and auxiliary scan data, then
    ``load()`` resolves every referenced row from the repository.
    """

    problem_type: str = ""
    auto_resolution: Optional[str] = None
    resolution_catalog: Dict[str, Resolution] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        catalog = dict(cls.resolution_catalog)
        for attr in cls.__dict__.values():
            entry = getattr(attr, "_resolution", None)
            if isinstance(entry, Resolution):
                catalog[entry.name] = entry
        cls.resolution_catalog = catalog

    def __init__(
        self,
        ctx: ProblemContext,
        resource_id: int,
        data: Optional[Dict[str, Any]] = None,
    ):
        self.ctx = ctx
        self.resource_id = resource_id
        self.data = data or {}

    @property
    def repository(self) -> Any:
        return self.ctx.repository

    @property
    def cloud(self) -> CloudAdapter:
        return self.ctx.cloud

    @property
    def lock_key(self) -> str:
        """Key serializing resolutions that touch the same rows."""
        return f"{self.problem_type}:{self.resource_id}"

    @abstractmethod
    async def load(self) -> None:
        """
        Resolve referenced rows from the repository.

        Raises:
            ValidationError: If a referenced row no longer exists
        """
        pass

    @abstractmethod
    async def problem_still_exists(self) -> bool:
        """Re-read the current state and re-evaluate the detection predicate."""
        pass

    @abstractmethod
    def description(self) -> str:
        """Human-readable summary of the problem."""
        pass

    def resolutions(self) -> List[ResolutionOption]:
        """Get the resolution catalog bound to this handler, in order."""
        return [
            ResolutionOption(name=name, handler=self, resolution=entry)
            for name, entry in self.resolution_catalog.items()
        ]

    def get_resolution(self, name: str) -> ResolutionOption:
        entry = self.resolution_catalog.get(name)
        if entry is None:
            available = ", ".join(self.resolution_catalog) or "none"
            raise UnknownResolution(
                f"Unknown resolution '{name}' for {self.problem_type}. "
                f"Available resolutions: {available}"
            )
        return ResolutionOption(name=name, handler=self, resolution=entry)

    async def apply_resolution(self, name: str) -> None:
        """
        Run a resolution's action.

        Raises:
            UnknownResolution: If the name is not in the catalog
            ValidationError: If a precondition of the resolution fails
        """
        option = self.get_resolution(name)
        logger.info(f"Applying resolution '{name}' to {self.description()}")
        await option.action()
