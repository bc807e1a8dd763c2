"""
Problem Registry - Maps problem type tags to handler classes.

The registry is built once at startup, frozen, and handed to the engine.
Built-in handlers are registered first, then any third-party handlers
advertised under the ``cloudcheck.problem_handlers`` entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Tuple, Type

from errors import UnknownProblemType
from problems.base import ProblemContext, ProblemHandler

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "cloudcheck.problem_handlers"


class ProblemRegistry:
    """
    Table of problem handler classes keyed by problem type tag.

    Registration is only allowed until ``freeze()`` is called.
    """

    def __init__(self):
        self._handlers: Dict[str, Type[ProblemHandler]] = {}
        self._auto_resolutions: Dict[str, str] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        type_tag: str,
        handler_class: Type[ProblemHandler],
        auto_resolution: Optional[str] = None,
    ) -> None:
        """
        Register a handler class for a problem type.

        Args:
            type_tag: Problem type tag (e.g., 'inactive_disk')
            handler_class: The ProblemHandler subclass
            auto_resolution: Resolution applied when no operator input is
                given; defaults to the class's ``auto_resolution``

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the auto resolution is not in the class's catalog
        """
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{type_tag}': problem registry is frozen"
            )

        auto = auto_resolution or handler_class.auto_resolution
        if auto is None or auto not in handler_class.resolution_catalog:
            raise ValueError(
                f"Auto resolution '{auto}' is not a resolution of "
                f"{handler_class.__name__}"
            )

        if type_tag in self._handlers:
            logger.warning(f"Overwriting existing problem handler: {type_tag}")

        self._handlers[type_tag] = handler_class
        self._auto_resolutions[type_tag] = auto
        logger.info(
            f"Registered problem handler: {type_tag} "
            f"({handler_class.__name__}, auto resolution: {auto})"
        )

    def freeze(self) -> "ProblemRegistry":
        """Disallow further registration."""
        self._frozen = True
        return self

    def lookup(self, type_tag: str) -> Tuple[Type[ProblemHandler], str]:
        """
        Get the handler class and auto resolution for a problem type.

        Raises:
            UnknownProblemType: If no handler is registered for the tag
        """
        if type_tag not in self._handlers:
            available = ", ".join(self._handlers) or "none"
            raise UnknownProblemType(
                f"Unknown problem type: {type_tag}. Available types: {available}"
            )
        return self._handlers[type_tag], self._auto_resolutions[type_tag]

    def auto_resolution(self, type_tag: str) -> str:
        return self.lookup(type_tag)[1]

    def list_problem_types(self) -> List[str]:
        """List all registered problem type tags."""
        return list(self._handlers.keys())

    def has_problem_type(self, type_tag: str) -> bool:
        return type_tag in self._handlers

    async def build_handler(
        self,
        type_tag: str,
        ctx: ProblemContext,
        resource_id: int,
        data: Optional[Dict[str, Any]] = None,
    ) -> ProblemHandler:
        """
        Construct and load a handler.

        Raises:
            UnknownProblemType: If no handler is registered for the tag
            ValidationError: If the handler's rows are gone
        """
        handler_class, _ = self.lookup(type_tag)
        handler = handler_class(ctx, resource_id, data)
        handler.problem_type = type_tag
        await handler.load()
        return handler


def build_default_registry(discover: bool = True) -> ProblemRegistry:
    """
    Build the frozen registry of built-in problem handlers.

    Args:
        discover: Also register handlers found via entry points
    """
    from problems.handlers import BUILTIN_HANDLERS

    registry = ProblemRegistry()

    for handler_class in BUILTIN_HANDLERS:
        registry.register(handler_class.problem_type, handler_class)

    if discover:
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                handler_class = ep.load()
                registry.register(
                    getattr(handler_class, "problem_type", None) or ep.name,
                    handler_class,
                )
            except Exception as e:
                logger.warning(f"Could not load problem handler {ep.name}: {e}")

    return registry.freeze()
