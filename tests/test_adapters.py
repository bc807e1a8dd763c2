"""Unit tests for the cloud adapter and agent client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from adapters.agent.base import AgentClient
from adapters.agent.http import HttpAgentClient, HttpAgentClientFactory
from adapters.cloud.http import HttpCloudAdapter
from errors import (
    AdapterError,
    AgentError,
    DiskNotFound,
    TransientAdapterError,
    UnsupportedCapabilityError,
    VmNotFound,
)


def mock_session(status, json_data=None, text=""):
    """Patchable aiohttp.ClientSession returning one canned response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    request_cm = MagicMock()
    request_cm.__aenter__ = AsyncMock(return_value=response)
    request_cm.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.request = MagicMock(return_value=request_cm)
    session.post = MagicMock(return_value=request_cm)

    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=session)
    session_cm.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=session_cm), session


# ==================== HttpCloudAdapter ====================


@pytest.mark.asyncio
class TestHttpCloudAdapter:
    @pytest.fixture
    def adapter(self):
        return HttpCloudAdapter("https://iaas.example.com/", token="tok", timeout=5)

    async def test_delete_disk(self, adapter):
        session_class, session = mock_session(204)
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            await adapter.delete_disk("disk-1")

        method, url = session.request.call_args[0]
        assert method == "DELETE"
        assert url == "https://iaas.example.com/disks/disk-1"
        headers = session.request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer tok"

    async def test_delete_disk_not_found(self, adapter):
        session_class, _ = mock_session(404)
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            with pytest.raises(DiskNotFound):
                await adapter.delete_disk("disk-1")

    async def test_server_error_is_transient(self, adapter):
        session_class, _ = mock_session(503, text="unavailable")
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            with pytest.raises(TransientAdapterError):
                await adapter.detach_disk("vm-1", "disk-1")

    async def test_client_error(self, adapter):
        session_class, _ = mock_session(409, text="conflict")
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            with pytest.raises(AdapterError) as exc_info:
                await adapter.attach_disk("vm-1", "disk-1")
        assert not isinstance(exc_info.value, TransientAdapterError)

    async def test_has_vm(self, adapter):
        session_class, _ = mock_session(200, json_data={"cid": "vm-1"})
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            assert await adapter.has_vm("vm-1") is True

    async def test_has_vm_missing(self, adapter):
        session_class, _ = mock_session(404)
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            assert await adapter.has_vm("vm-1") is False

    async def test_reboot_missing_vm(self, adapter):
        session_class, _ = mock_session(404)
        with patch("adapters.cloud.http.aiohttp.ClientSession", session_class):
            with pytest.raises(VmNotFound):
                await adapter.reboot_vm("vm-1")

    async def test_connection_error_is_transient(self, adapter):
        with patch.object(
            adapter, "_send", AsyncMock(side_effect=aiohttp.ClientError("refused"))
        ):
            with pytest.raises(TransientAdapterError, match="refused"):
                await adapter.delete_vm("vm-1")

    async def test_timeout_is_transient(self, adapter):
        adapter.timeout = 0.01

        async def slow(*args):
            await asyncio.sleep(1)

        with patch.object(adapter, "_send", slow):
            with pytest.raises(TransientAdapterError, match="timed out"):
                await adapter.delete_disk("disk-1")


# ==================== HttpAgentClient ====================


@pytest.mark.asyncio
class TestHttpAgentClient:
    @pytest.fixture
    def client(self):
        return HttpAgentClientFactory("http://director:25555", timeout=5).for_agent(
            "agent-1"
        )

    async def test_list_disk(self, client):
        session_class, session = mock_session(200, json_data={"value": ["d1", "d2"]})
        with patch("adapters.agent.http.aiohttp.ClientSession", session_class):
            assert await client.list_disk() == ["d1", "d2"]

        url = session.post.call_args[0][0]
        assert url == "http://director:25555/agents/agent-1"
        assert session.post.call_args[1]["json"] == {
            "method": "list_disk",
            "arguments": [],
        }

    async def test_unknown_message_is_unsupported(self, client):
        reply = {"exception": {"message": "unknown message list_disk"}}
        with patch.object(client, "_post", AsyncMock(return_value=reply)):
            with pytest.raises(UnsupportedCapabilityError):
                await client.list_disk()

    async def test_agent_exception(self, client):
        reply = {"exception": {"message": "disk is busy"}}
        with patch.object(client, "_post", AsyncMock(return_value=reply)):
            with pytest.raises(AgentError, match="disk is busy") as exc_info:
                await client.mount_disk("d1")
        assert not isinstance(exc_info.value, UnsupportedCapabilityError)

    async def test_not_implemented_status(self, client):
        session_class, _ = mock_session(501)
        with patch("adapters.agent.http.aiohttp.ClientSession", session_class):
            with pytest.raises(UnsupportedCapabilityError):
                await client.list_disk()

    async def test_unreachable_agent_is_transient(self, client):
        with patch.object(
            client, "_post", AsyncMock(side_effect=aiohttp.ClientError("no route"))
        ):
            with pytest.raises(TransientAdapterError):
                await client.ping()


# ==================== AgentClient.wait_until_ready ====================


class FlakyAgent(AgentClient):
    def __init__(self, failures):
        super().__init__("agent-1")
        self.failures = failures
        self.pings = 0

    async def ping(self):
        self.pings += 1
        if self.pings <= self.failures:
            raise TransientAdapterError("not yet")

    async def list_disk(self):
        return []

    async def mount_disk(self, disk_cid):
        pass


@pytest.mark.asyncio
class TestWaitUntilReady:
    async def test_ready_after_retries(self):
        agent = FlakyAgent(failures=2)
        assert await agent.wait_until_ready(timeout=1, interval=0.01) is True
        assert agent.pings == 3

    async def test_gives_up(self):
        agent = FlakyAgent(failures=1000)
        assert await agent.wait_until_ready(timeout=0.05, interval=0.01) is False
