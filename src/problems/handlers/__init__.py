"""Built-in problem handlers."""

from problems.handlers.inactive_disk import InactiveDiskHandler
from problems.handlers.missing_vm import MissingVmHandler
from problems.handlers.mount_info_mismatch import MountInfoMismatchHandler
from problems.handlers.unresponsive_agent import UnresponsiveAgentHandler

BUILTIN_HANDLERS = [
    InactiveDiskHandler,
    MountInfoMismatchHandler,
    UnresponsiveAgentHandler,
    MissingVmHandler,
]

__all__ = [
    "BUILTIN_HANDLERS",
    "InactiveDiskHandler",
    "MissingVmHandler",
    "MountInfoMismatchHandler",
    "UnresponsiveAgentHandler",
]
