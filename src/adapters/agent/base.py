"""
Agent Client Base - Abstract interface for the per-VM agent protocol.

Older agents do not understand every message; clients raise
UnsupportedCapabilityError for those so callers can fall back safely.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List

from errors import AgentError, TransientAdapterError

logger = logging.getLogger(__name__)


class AgentClient(ABC):
    """
    Abstract base class for agent clients.

    One client addresses exactly one agent, identified by its agent id.
    """

    def __init__(self, agent_id: str):
        self.agent_id = agent_id

    @abstractmethod
    async def ping(self) -> None:
        """
        Check that the agent answers.

        Raises:
            TransientAdapterError: If the agent does not reply in time
        """
        pass

    @abstractmethod
    async def list_disk(self) -> List[str]:
        """
        Get the disk cids the agent believes are mounted.

        Raises:
            UnsupportedCapabilityError: If the agent predates this message
        """
        pass

    @abstractmethod
    async def mount_disk(self, disk_cid: str) -> None:
        """Ask the agent to mount an attached disk."""
        pass

    async def wait_until_ready(self, timeout: float, interval: float = 1.0) -> bool:
        """
        Ping the agent until it answers or the timeout expires.

        Returns:
            True if the agent answered, False otherwise
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                await self.ping()
                return True
            except (TransientAdapterError, AgentError) as e:
                logger.debug(f"Agent {self.agent_id} not ready yet: {e}")

            if loop.time() + interval > deadline:
                return False
            await asyncio.sleep(interval)


class AgentClientFactory(ABC):
    """Builds an AgentClient for a given agent id."""

    @abstractmethod
    def for_agent(self, agent_id: str) -> AgentClient:
        pass
