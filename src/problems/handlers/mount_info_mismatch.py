"""
Mount info mismatch - an active disk the agent does not report as mounted.
"""

import logging
from typing import Optional

from errors import UnsupportedCapabilityError
from models import Instance, PersistentDisk, Vm
from problems.base import ProblemHandler, handler_error, resolution

logger = logging.getLogger(__name__)


class MountInfoMismatchHandler(ProblemHandler):
    problem_type = "mount_info_mismatch"
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
        if disk is None or not disk.active:
            return False
        self.disk = disk

        instance = await self.repository.find(Instance, disk.instance_id)
        vm = await self.repository.find(Vm, instance.vm_id) if instance else None
        if vm is None:
            return False
        self.vm = vm

        agent = self.ctx.agents.for_agent(vm.agent_id)
        try:
            return disk.disk_cid not in await agent.list_disk()
        except UnsupportedCapabilityError:
            return False

    def description(self) -> str:
        return (
            f"Inconsistent mount information for disk {self.disk.disk_cid} "
            f"({self.instance.label}): not mounted in agent"
        )

    @resolution("ignore", plan="Ignore problem")
    async def ignore(self) -> None:
        pass

    @resolution("reattach_disk", plan="Reattach disk to instance")
    async def reattach_disk(self) -> None:
        instance = await self.repository.find(Instance, self.instance.id)
        if instance is None:
            handler_error(f"Instance `{self.instance.id}' is no longer in the database")

        vm = await self.repository.find(Vm, instance.vm_id)
        if vm is None:
            handler_error(f"Instance {instance.label} has no VM")

        disk_cid = self.disk.disk_cid
        await self.cloud.attach_disk(vm.cid, disk_cid)
        await self.ctx.agents.for_agent(vm.agent_id).mount_disk(disk_cid)
        logger.info(f"Reattached disk {disk_cid} to {instance.label}")
