"""
Missing VM - a VM row whose cloud handle no longer exists in the IaaS.
"""

import logging
from typing import Optional

from models import Instance, Vm
from problems.base import ProblemHandler, handler_error, resolution

logger = logging.getLogger(__name__)


async def remove_vm_reference(repository, vm: Vm) -> None:
    """Detach a VM row from its instance and destroy it."""
    instance = await repository.find_instance_for_vm(vm.id)
    if instance is not None:
        instance.vm_id = None
        await repository.save(instance)
    await repository.destroy(vm)
    logger.info(f"Removed reference to VM {vm.cid}")


class MissingVmHandler(ProblemHandler):
    problem_type = "missing_vm"
    auto_resolution = "ignore"

    def __init__(self, ctx, resource_id, data=None):
        super().__init__(ctx, resource_id, data)
        self.vm: Optional[Vm] = None
        self.instance: Optional[Instance] = None

    async def load(self) -> None:
        self.vm = await self.repository.find(Vm, self.resource_id)
        if self.vm is None:
            handler_error(f"VM `{self.resource_id}' is no longer in the database")
        self.instance = await self.repository.find_instance_for_vm(self.vm.id)

    @property
    def lock_key(self) -> str:
        if self.instance is not None:
            return f"instance:{self.instance.id}"
        return f"vm:{self.resource_id}"

    async def problem_still_exists(self) -> bool:
        vm = await self.repository.find(Vm, self.resource_id)
        if vm is None:
            return False
        self.vm = vm
        return not await self.cloud.has_vm(vm.cid)

    def description(self) -> str:
        label = self.instance.label if self.instance else "unknown job/unknown index"
        return f"VM with cloud ID `{self.vm.cid}' missing ({label})"

    @resolution("ignore", plan="Ignore problem")
    async def ignore(self) -> None:
        pass

    @resolution("delete_vm_reference", plan="Delete VM reference")
    async def delete_vm_reference(self) -> None:
        vm = await self.repository.find(Vm, self.resource_id)
        if vm is None:
            handler_error(f"VM `{self.resource_id}' is no longer in the database")
        await remove_vm_reference(self.repository, vm)
