"""
External adapters consumed by the cloud check.

The cloud adapter wraps the IaaS control plane; the agent client talks to
the agent running on each VM.
"""

from adapters.agent.base import AgentClient, AgentClientFactory
from adapters.cloud.base import CloudAdapter

__all__ = ["AgentClient", "AgentClientFactory", "CloudAdapter"]
