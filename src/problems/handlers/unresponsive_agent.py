"""
Unresponsive agent - the agent on an instance's VM does not answer pings.
"""

import logging
from typing import Optional

from errors import (
    AgentError,
    NotFoundAdapterError,
    TransientAdapterError,
    UnsupportedCapabilityError,
)
from models import Instance, Vm
from problems.base import ProblemHandler, handler_error, resolution
from problems.handlers.missing_vm import remove_vm_reference

logger = logging.getLogger(__name__)


class UnresponsiveAgentHandler(ProblemHandler):
    problem_type = "unresponsive_agent"
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

        try:
            await self.ctx.agents.for_agent(vm.agent_id).ping()
        except UnsupportedCapabilityError:
            # It answered, just not to this message
            return False
        except (TransientAdapterError, AgentError) as e:
            logger.debug(f"Agent {vm.agent_id} unresponsive: {e}")
            return True
        return False

    def description(self) -> str:
        label = self.instance.label if self.instance else "unknown job/unknown index"
        return f"{label} ({self.vm.cid}) is not responding"

    @resolution("ignore", plan="Ignore problem")
    async def ignore(self) -> None:
        pass

    @resolution("reboot_vm", plan="Reboot VM")
    async def reboot_vm(self) -> None:
        vm = await self._fresh_vm()
        await self.cloud.reboot_vm(vm.cid)

        agent = self.ctx.agents.for_agent(vm.agent_id)
        if not await agent.wait_until_ready(self.ctx.agent_timeout):
            handler_error(f"Agent still unresponsive after reboot of {vm.cid}")

    @resolution("delete_vm_reference", plan="Delete VM reference (DANGEROUS!)")
    async def delete_vm_reference(self) -> None:
        vm = await self._fresh_vm()

        try:
            await self.cloud.delete_vm(vm.cid)
        except NotFoundAdapterError as e:
            logger.warning(f"VM {vm.cid} already deleted: {e}")
        except Exception as e:
            # The reference goes away regardless
            logger.warning(f"Failed to delete VM {vm.cid}: {e}")

        await remove_vm_reference(self.repository, vm)

    async def _fresh_vm(self) -> Vm:
        vm = await self.repository.find(Vm, self.resource_id)
        if vm is None:
            handler_error(f"VM `{self.resource_id}' is no longer in the database")
        self.vm = vm
        return vm
