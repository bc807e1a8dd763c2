"""
HTTP Agent Client - Implements AgentClient over a JSON message endpoint.

Each message is posted to ``{api_base_url}/agents/{agent_id}`` as
``{"method": ..., "arguments": [...]}``. The agent replies with either
``{"value": ...}`` or ``{"exception": {"message": ...}}``.
"""

import asyncio
import logging
from typing import Any, List

import aiohttp

from adapters.agent.base import AgentClient, AgentClientFactory
from errors import AgentError, TransientAdapterError, UnsupportedCapabilityError

logger = logging.getLogger(__name__)

# Message an agent replies with when it does not know the method
UNKNOWN_MESSAGE = "unknown message"


class HttpAgentClient(AgentClient):
    """Agent client that posts messages over HTTP."""

    def __init__(self, agent_id: str, api_base_url: str, timeout: float = 30):
        super().__init__(agent_id)
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout

    async def ping(self) -> None:
        await self._send_message("ping")

    async def list_disk(self) -> List[str]:
        value = await self._send_message("list_disk")
        return list(value or [])

    async def mount_disk(self, disk_cid: str) -> None:
        await self._send_message("mount_disk", disk_cid)
        logger.info(f"Agent {self.agent_id} mounted disk {disk_cid}")

    async def _send_message(self, method: str, *arguments: Any) -> Any:
        """
        Send a message to the agent and return its reply value.

        Raises:
            UnsupportedCapabilityError: If the agent does not know the method
            AgentError: If the agent replied with any other exception
            TransientAdapterError: On timeout or connection failure
        """
        url = f"{self.api_base_url}/agents/{self.agent_id}"
        payload = {"method": method, "arguments": list(arguments)}

        try:
            reply = await asyncio.wait_for(
                self._post(url, payload), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise TransientAdapterError(
                f"Agent {self.agent_id} did not reply to '{method}' "
                f"within {self.timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise TransientAdapterError(
                f"Cannot reach agent {self.agent_id}: {e}"
            ) from e

        exception = reply.get("exception")
        if exception:
            if isinstance(exception, dict):
                message = exception.get("message", "")
            else:
                message = str(exception)
            if UNKNOWN_MESSAGE in message.lower():
                raise UnsupportedCapabilityError(
                    f"Agent {self.agent_id} does not support '{method}'"
                )
            raise AgentError(f"Agent {self.agent_id} '{method}' failed: {message}")

        return reply.get("value")

    async def _post(self, url: str, payload: dict) -> dict:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as response:
                if response.status == 501:
                    raise UnsupportedCapabilityError(
                        f"Agent {self.agent_id} does not support "
                        f"'{payload['method']}'"
                    )
                if response.status >= 500:
                    raise TransientAdapterError(
                        f"Agent {self.agent_id}: {response.status} - "
                        f"{await response.text()}"
                    )
                if response.status >= 400:
                    raise AgentError(
                        f"Agent {self.agent_id}: {response.status} - "
                        f"{await response.text()}"
                    )
                return await response.json(content_type=None)


class HttpAgentClientFactory(AgentClientFactory):
    """Builds HttpAgentClient instances sharing one endpoint and timeout."""

    def __init__(self, api_base_url: str, timeout: float = 30):
        self.api_base_url = api_base_url
        self.timeout = timeout

    def for_agent(self, agent_id: str) -> HttpAgentClient:
        return HttpAgentClient(agent_id, self.api_base_url, timeout=self.timeout)
