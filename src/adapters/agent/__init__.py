"""Agent clients."""

from adapters.agent.base import AgentClient, AgentClientFactory
from adapters.agent.http import HttpAgentClient, HttpAgentClientFactory

__all__ = [
    "AgentClient",
    "AgentClientFactory",
    "HttpAgentClient",
    "HttpAgentClientFactory",
]
