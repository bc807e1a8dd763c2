"""
Problem Collector - Enumerates candidate problems for a cloud check scan.

The collector only nominates candidates; every candidate is re-verified by
its problem handler before it is reported.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from adapters.agent.base import AgentClientFactory
from adapters.cloud.base import CloudAdapter
from errors import AgentError, TransientAdapterError, UnsupportedCapabilityError
from models import Instance, PersistentDisk, Vm

logger = logging.getLogger(__name__)

Candidate = Tuple[str, int, Dict[str, Any]]


class ProblemCollector:
    """Collects candidate problems from the repository, cloud and agents."""

    def __init__(
        self,
        repository: Any,
        cloud: CloudAdapter,
        agents: AgentClientFactory,
        limit: int = 1000,
        max_concurrent_probes: int = 10,
    ):
        self.repository = repository
        self.cloud = cloud
        self.agents = agents
        self.limit = limit
        self.semaphore = asyncio.Semaphore(max_concurrent_probes)

    async def collect(self) -> List[Candidate]:
        """Return ``(problem_type, resource_id, data)`` candidates."""
        candidates: List[Candidate] = []

        for disk in await self.repository.list_inactive_disks(limit=self.limit):
            candidates.append(("inactive_disk", disk.id, {}))

        vms = await self.repository.list_vms(limit=self.limit)
        results = await asyncio.gather(*[self._probe_vm(vm) for vm in vms])

        responsive: Set[int] = set()
        for vm, problem_type in zip(vms, results):
            if problem_type is None:
                responsive.add(vm.id)
            elif problem_type != "error":
                candidates.append((problem_type, vm.id, {"vm_cid": vm.cid}))

        for disk in await self.repository.list_active_disks(limit=self.limit):
            if await self._disk_unmounted(disk, responsive):
                candidates.append(("mount_info_mismatch", disk.id, {}))

        logger.info(f"Collected {len(candidates)} candidate problems")
        return candidates

    async def _probe_vm(self, vm: Vm) -> Optional[str]:
        """
        Probe a VM in the cloud and through its agent.

        Returns:
            The problem type found, None if healthy, or "error" if the probe
            itself failed
        """
        async with self.semaphore:
            try:
                if not await self.cloud.has_vm(vm.cid):
                    return "missing_vm"
            except Exception as e:
                logger.warning(f"Could not check VM {vm.cid} in the cloud: {e}")
                return "error"

            try:
                await self.agents.for_agent(vm.agent_id).ping()
            except UnsupportedCapabilityError:
                return None
            except (TransientAdapterError, AgentError):
                return "unresponsive_agent"
            return None

    async def _disk_unmounted(self, disk: PersistentDisk, responsive: Set[int]) -> bool:
        try:
            instance = await self.repository.find(Instance, disk.instance_id)
            if instance is None or instance.vm_id not in responsive:
                return False
            vm = await self.repository.find(Vm, instance.vm_id)
            if vm is None:
                return False
            mounted = await self.agents.for_agent(vm.agent_id).list_disk()
        except UnsupportedCapabilityError:
            return False
        except Exception as e:
            logger.warning(f"Could not check mounts for disk {disk.disk_cid}: {e}")
            return False
        return disk.disk_cid not in mounted
