"""Pytest configuration and fixtures."""

import copy
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from adapters.agent.base import AgentClient
from errors import ValidationError
from models import Instance, PersistentDisk, Vm
from problems.base import ProblemContext


class FakeRepository:
    """
    In-memory stand-in for DatabaseManager.

    Lookups return copies so that handlers only change stored state through
    save() and destroy(), like they would with real rows.
    """

    def __init__(self):
        self.rows: Dict[type, Dict[int, Any]] = {
            Instance: {},
            PersistentDisk: {},
            Vm: {},
        }
        self.history: List[Dict[str, Any]] = []

    def add(self, entity):
        self.rows[type(entity)][entity.id] = copy.copy(entity)
        return entity

    def get(self, model, entity_id):
        """Peek at the stored row without going through the async API."""
        return self.rows[model].get(entity_id)

    async def find(self, model, entity_id: Optional[int]):
        if entity_id is None:
            return None
        row = self.rows[model].get(entity_id)
        return copy.copy(row) if row is not None else None

    async def find_active_disk(self, instance_id: int):
        for disk in self.rows[PersistentDisk].values():
            if disk.instance_id == instance_id and disk.active:
                return copy.copy(disk)
        return None

    async def find_instance_for_vm(self, vm_id: int):
        for instance in self.rows[Instance].values():
            if instance.vm_id == vm_id:
                return copy.copy(instance)
        return None

    async def save(self, entity) -> None:
        table = self.rows[type(entity)]
        if entity.id not in table:
            raise ValidationError(f"`{entity.id}' is no longer in the database")

        if isinstance(entity, PersistentDisk) and entity.active:
            for other in table.values():
                if (
                    other.id != entity.id
                    and other.instance_id == entity.instance_id
                    and other.active
                ):
                    raise ValidationError("Instance already has an active disk")

        table[entity.id] = copy.copy(entity)

    async def destroy(self, entity) -> None:
        self.rows[type(entity)].pop(entity.id, None)

    async def list_inactive_disks(self, limit: int = 1000):
        disks = [d for d in self.rows[PersistentDisk].values() if not d.active]
        return [copy.copy(d) for d in disks[:limit]]

    async def list_active_disks(self, limit: int = 1000):
        disks = [d for d in self.rows[PersistentDisk].values() if d.active]
        return [copy.copy(d) for d in disks[:limit]]

    async def list_vms(self, limit: int = 1000):
        return [copy.copy(vm) for vm in list(self.rows[Vm].values())[:limit]]

    async def record_check_outcome(self, **kwargs) -> None:
        self.history.append(kwargs)

    async def get_check_history(self, problem_type=None, limit: int = 50):
        entries = [
            e
            for e in reversed(self.history)
            if problem_type is None or e["problem_type"] == problem_type
        ]
        return entries[:limit]


@pytest.fixture
def repository():
    """Repository holding one instance with a VM and an inactive disk."""
    repo = FakeRepository()
    repo.add(Vm(id=10, cid="vm-cid-10", agent_id="agent-10"))
    repo.add(Instance(id=1, job="mysql_node", index=0, vm_id=10, deployment="cf"))
    repo.add(PersistentDisk(id=100, disk_cid="disk-cid-100", size=300, instance_id=1))
    return repo


@pytest.fixture
def cloud():
    """Cloud adapter whose verbs all succeed."""
    adapter = AsyncMock()
    adapter.name = "mock"
    adapter.has_vm = AsyncMock(return_value=True)
    return adapter


@pytest.fixture
def agent():
    """Agent that is responsive and has no disks mounted."""
    client = AsyncMock(spec=AgentClient)
    client.agent_id = "agent-10"
    client.list_disk = AsyncMock(return_value=[])
    client.ping = AsyncMock(return_value=None)
    client.wait_until_ready = AsyncMock(return_value=True)
    return client


@pytest.fixture
def agents(agent):
    """Agent factory handing out the same mock client for every agent id."""
    factory = MagicMock()
    factory.for_agent = MagicMock(return_value=agent)
    return factory


@pytest.fixture
def ctx(repository, cloud, agents):
    return ProblemContext(
        repository=repository,
        cloud=cloud,
        agents=agents,
        agent_timeout=1,
    )


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool
