"""
Inactive disk - a persistent disk row that is not the instance's active disk.

Such a disk is either left over from a failed migration (safe to delete once
nothing mounts it) or the disk the instance is really using (safe to activate
when the instance has no other active disk).
"""

import logging
from typing import Optional

from errors import NotFoundAdapterError, UnsupportedCapabilityError
from models import Instance, PersistentDisk, Vm
from problems.base import ProblemHandler, handler_error, resolution

logger = logging.getLogger(__name__)


class InactiveDiskHandler(ProblemHandler):
    """Handler for persistent disks with ``active = false``."""

    problem_type = "inactive_disk"
    auto_resolution = "ignore"

    def __init__(self, ctx, resource_id, data=None):
        super().__init__(ctx, resource_id, data)
        self.disk: Optional[PersistentDisk] = None
        self.instance: Optional[Instance] = None
        self.vm: Optional[Vm] = None

    async def load(self) -> None:
        self.disk = await self.repository.find(PersistentDisk, self.resource_id)
        if self.disk is None:
            handler_error(f"Disk `{self.resource_id}' is no longer in the database")

        self.instance = await self.repository.find(Instance, self.disk.instance_id)
        if self.instance is None:
            handler_error(f"Cannot find instance for disk `{self.resource_id}'")

        self.vm = await self.repository.find(Vm, self.instance.vm_id)

    @property
    def lock_key(self) -> str:
        return f"instance:{self.instance.id}"

    async def problem_still_exists(self) -> bool:
        disk = await self.repository.find(PersistentDisk, self.resource_id)
        if disk is None:
            return False
        self.disk = disk
        return not disk.active

    def disk_label(self) -> str:
        return f"{self.disk.disk_cid} ({self.instance.label}, {int(self.disk.size)}M)"

    def description(self) -> str:
        return f"Disk {self.disk_label()} is inactive"

    @resolution("ignore", plan="Ignore problem")
    async def ignore(self) -> None:
        pass

    @resolution("delete_disk", plan="Delete disk")
    async def delete_disk(self) -> None:
        if await self._refresh() is None:
            logger.info(f"Disk `{self.resource_id}' already deleted")
            return

        if await self.disk_mounted():
            handler_error("Disk is currently in use")

        disk_cid = self.disk.disk_cid

        if self.vm is not None:
            try:
                await self.cloud.detach_disk(self.vm.cid, disk_cid)
            except Exception as e:
                # The disk is not in use and is deleted next
                logger.warning(f"Failed to detach disk {disk_cid}: {e}")

        # FIXME: the cloud cannot tell us whether a failed delete left the
        # disk behind, so only strict mode treats it as fatal.
        try:
            await self.cloud.delete_disk(disk_cid)
        except NotFoundAdapterError as e:
            logger.warning(f"Disk {disk_cid} already deleted: {e}")
        except Exception as e:
            if self.ctx.strict_disk_delete:
                handler_error(f"Failed to delete disk {disk_cid}: {e}")
            logger.warning(f"Failed to delete disk {disk_cid}: {e}")

        await self.repository.destroy(self.disk)

    @resolution("activate_disk", plan="Activate disk")
    async def activate_disk(self) -> None:
        disk = await self._refresh()
        if disk is None:
            handler_error(f"Disk `{self.resource_id}' is no longer in the database")

        if not await self.disk_mounted():
            handler_error("Disk is not mounted")

        # Only one persistent disk per instance may be active
        if await self.repository.find_active_disk(self.instance.id) is not None:
            handler_error("Instance already has an active disk")

        disk.active = True
        await self.repository.save(disk)

    async def disk_mounted(self) -> bool:
        """Check whether the instance's agent reports this disk as mounted."""
        if self.vm is None:
            return False

        agent = self.ctx.agents.for_agent(self.vm.agent_id)
        try:
            return self.disk.disk_cid in await agent.list_disk()
        except UnsupportedCapabilityError:
            # Agents without list_disk may well be using the disk
            return True

    async def _refresh(self) -> Optional[PersistentDisk]:
        """Re-read the disk, its instance and VM. Returns None if the disk is gone."""
        disk = await self.repository.find(PersistentDisk, self.resource_id)
        if disk is None:
            return None
        self.disk = disk

        instance = await self.repository.find(Instance, disk.instance_id)
        if instance is None:
            handler_error(f"Cannot find instance for disk `{self.resource_id}'")
        self.instance = instance
        self.vm = await self.repository.find(Vm, instance.vm_id)

        return disk
