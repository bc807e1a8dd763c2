"""
HTTP Cloud Adapter - Implements CloudAdapter against a REST IaaS facade.

Verbs map onto plain REST calls:

    POST   /vms/{vm_cid}/disks/{disk_cid}/detach
    POST   /vms/{vm_cid}/disks/{disk_cid}/attach
    DELETE /disks/{disk_cid}
    GET    /vms/{vm_cid}
    POST   /vms/{vm_cid}/reboot
    DELETE /vms/{vm_cid}
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Type

import aiohttp

from adapters.cloud.base import CloudAdapter
from errors import (
    AdapterError,
    DiskNotFound,
    NotFoundAdapterError,
    TransientAdapterError,
    VmNotFound,
)

logger = logging.getLogger(__name__)


class HttpCloudAdapter(CloudAdapter):
    """Cloud adapter that talks to an HTTP IaaS facade."""

    def __init__(
        self,
        api_base_url: str,
        token: Optional[str] = None,
        timeout: float = 60,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    async def detach_disk(self, vm_cid: str, disk_cid: str) -> None:
        await self._request(
            "POST",
            f"/vms/{vm_cid}/disks/{disk_cid}/detach",
            not_found=DiskNotFound,
        )
        logger.info(f"Detached disk {disk_cid} from VM {vm_cid}")

    async def delete_disk(self, disk_cid: str) -> None:
        await self._request("DELETE", f"/disks/{disk_cid}", not_found=DiskNotFound)
        logger.info(f"Deleted disk {disk_cid}")

    async def attach_disk(self, vm_cid: str, disk_cid: str) -> None:
        await self._request(
            "POST",
            f"/vms/{vm_cid}/disks/{disk_cid}/attach",
            not_found=DiskNotFound,
        )
        logger.info(f"Attached disk {disk_cid} to VM {vm_cid}")

    async def has_vm(self, vm_cid: str) -> bool:
        try:
            await self._request("GET", f"/vms/{vm_cid}", not_found=VmNotFound)
        except VmNotFound:
            return False
        return True

    async def reboot_vm(self, vm_cid: str) -> None:
        await self._request("POST", f"/vms/{vm_cid}/reboot", not_found=VmNotFound)
        logger.info(f"Rebooted VM {vm_cid}")

    async def delete_vm(self, vm_cid: str) -> None:
        await self._request("DELETE", f"/vms/{vm_cid}", not_found=VmNotFound)
        logger.info(f"Deleted VM {vm_cid}")

    # Private helper methods

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for IaaS API requests."""
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        not_found: Type[NotFoundAdapterError] = NotFoundAdapterError,
    ) -> Optional[Dict[str, Any]]:
        """
        Issue a request and translate failures into adapter errors.

        Raises:
            NotFoundAdapterError: On HTTP 404 (as the ``not_found`` subclass)
            TransientAdapterError: On timeout, connection failure or HTTP 5xx
            AdapterError: On any other non-2xx response
        """
        url = f"{self.api_base_url}{path}"
        try:
            return await asyncio.wait_for(
                self._send(method, url, not_found), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise TransientAdapterError(
                f"{method} {path} timed out after {self.timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise TransientAdapterError(f"{method} {path} failed: {e}") from e

    async def _send(
        self, method: str, url: str, not_found: Type[NotFoundAdapterError]
    ) -> Optional[Dict[str, Any]]:
        async with aiohttp.ClientSession() as session:
            async with session.request(
                method, url, headers=self._get_headers()
            ) as response:
                if response.status == 404:
                    raise not_found(f"{url} not found")
                if response.status >= 500:
                    raise TransientAdapterError(
                        f"{method} {url}: {response.status} - {await response.text()}"
                    )
                if response.status >= 400:
                    raise AdapterError(
                        f"{method} {url}: {response.status} - {await response.text()}"
                    )
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
