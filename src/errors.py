"""
Error taxonomy for the cloud check engine.

Handlers, adapters and the engine raise these so that callers can tell a
violated precondition apart from an unreliable external call.
"""


class CloudCheckError(Exception):
    """Base class for all cloud check errors."""


class ValidationError(CloudCheckError):
    """A precondition for a resolution (or a handler) does not hold."""


class UnknownResolution(ValidationError):
    """The requested resolution is not in the handler's catalog."""


class UnknownProblemType(CloudCheckError):
    """No handler is registered for the problem type."""


class AdapterError(CloudCheckError):
    """Generic failure reported by the cloud adapter."""


class TransientAdapterError(AdapterError):
    """Timeout or connectivity failure talking to the cloud or an agent."""


class NotFoundAdapterError(AdapterError):
    """The target of a cloud operation no longer exists."""


class DiskNotFound(NotFoundAdapterError):
    pass


class VmNotFound(NotFoundAdapterError):
    pass


class AgentError(CloudCheckError):
    """The agent replied with an exception."""


class UnsupportedCapabilityError(AgentError):
    """The agent predates the requested message."""
