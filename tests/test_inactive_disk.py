"""Unit tests for the inactive disk problem handler."""

from unittest.mock import AsyncMock

import pytest

from errors import (
    AdapterError,
    DiskNotFound,
    TransientAdapterError,
    UnsupportedCapabilityError,
    ValidationError,
)
from models import Instance, PersistentDisk, Vm
from problems.handlers.inactive_disk import InactiveDiskHandler

ALREADY_ACTIVE = "Instance already has an active disk"


async def build(ctx, disk_id=100):
    handler = InactiveDiskHandler(ctx, disk_id)
    await handler.load()
    return handler


class TestCatalog:
    """Tests for the declared resolutions."""

    def test_resolution_order(self):
        assert list(InactiveDiskHandler.resolution_catalog) == [
            "ignore",
            "delete_disk",
            "activate_disk",
        ]

    def test_auto_resolution_is_ignore(self):
        assert InactiveDiskHandler.auto_resolution == "ignore"

    @pytest.mark.asyncio
    async def test_plans(self, ctx):
        handler = await build(ctx)
        plans = {option.name: option.plan() for option in handler.resolutions()}
        assert plans == {
            "ignore": "Ignore problem",
            "delete_disk": "Delete disk",
            "activate_disk": "Activate disk",
        }


@pytest.mark.asyncio
class TestLoad:
    """Tests for resolving the referenced rows."""

    async def test_load_resolves_disk_instance_and_vm(self, ctx):
        handler = await build(ctx)
        assert handler.disk.disk_cid == "disk-cid-100"
        assert handler.instance.id == 1
        assert handler.vm.cid == "vm-cid-10"

    async def test_missing_disk(self, ctx):
        with pytest.raises(ValidationError) as exc_info:
            await build(ctx, disk_id=999)
        assert "Disk `999' is no longer in the database" in str(exc_info.value)

    async def test_missing_instance(self, ctx, repository):
        repository.add(PersistentDisk(id=101, disk_cid="orphan", instance_id=42))
        with pytest.raises(ValidationError) as exc_info:
            await build(ctx, disk_id=101)
        assert "Cannot find instance for disk `101'" in str(exc_info.value)

    async def test_vm_is_optional(self, ctx, repository):
        repository.rows[Instance][1].vm_id = None
        handler = await build(ctx)
        assert handler.vm is None

    async def test_description(self, ctx):
        handler = await build(ctx)
        assert handler.description() == (
            "Disk disk-cid-100 (mysql_node/0, 300M) is inactive"
        )

    async def test_description_with_unknown_job(self, ctx, repository):
        repository.rows[Instance][1].job = None
        repository.rows[Instance][1].index = None
        handler = await build(ctx)
        assert "unknown job/unknown index" in handler.description()

    async def test_lock_key_is_scoped_to_instance(self, ctx):
        handler = await build(ctx)
        assert handler.lock_key == "instance:1"


@pytest.mark.asyncio
class TestProblemStillExists:
    """Tests for re-verification against fresh state."""

    async def test_inactive_disk_is_a_problem(self, ctx):
        handler = await build(ctx)
        assert await handler.problem_still_exists() is True

    async def test_activated_elsewhere(self, ctx, repository):
        handler = await build(ctx)
        repository.rows[PersistentDisk][100].active = True
        assert await handler.problem_still_exists() is False

    async def test_row_deleted_elsewhere(self, ctx, repository):
        handler = await build(ctx)
        del repository.rows[PersistentDisk][100]
        assert await handler.problem_still_exists() is False


@pytest.mark.asyncio
class TestActivateDisk:
    """Tests for the activate_disk resolution."""

    async def test_no_vm_means_not_mounted(self, ctx, repository):
        repository.rows[PersistentDisk][100].disk_cid = "disk-1"
        repository.rows[PersistentDisk][100].size = 2048
        repository.rows[Instance][1].vm_id = None
        handler = await build(ctx)

        with pytest.raises(ValidationError) as exc_info:
            await handler.apply_resolution("activate_disk")

        assert str(exc_info.value) == "Disk is not mounted"
        assert repository.get(PersistentDisk, 100).active is False

    async def test_activates_mounted_disk(self, ctx, repository, agent):
        agent.list_disk.return_value = ["disk-cid-100"]
        handler = await build(ctx)

        await handler.apply_resolution("activate_disk")

        assert repository.get(PersistentDisk, 100).active is True
        assert await handler.problem_still_exists() is False

    async def test_not_mounted(self, ctx, repository, agent):
        agent.list_disk.return_value = ["some-other-disk"]
        handler = await build(ctx)

        with pytest.raises(ValidationError, match="Disk is not mounted"):
            await handler.apply_resolution("activate_disk")
        assert repository.get(PersistentDisk, 100).active is False

    async def test_instance_already_has_active_disk(self, ctx, repository, agent):
        repository.add(
            PersistentDisk(id=200, disk_cid="disk-cid-200", active=True, instance_id=1)
        )
        agent.list_disk.return_value = ["disk-cid-100", "disk-cid-200"]
        handler = await build(ctx)

        with pytest.raises(ValidationError, match=ALREADY_ACTIVE):
            await handler.apply_resolution("activate_disk")

        assert repository.get(PersistentDisk, 100).active is False
        assert repository.get(PersistentDisk, 200).active is True

    async def test_only_one_of_two_disks_can_be_activated(
        self, ctx, repository, agent
    ):
        repository.add(PersistentDisk(id=101, disk_cid="disk-cid-101", instance_id=1))
        agent.list_disk.return_value = ["disk-cid-100", "disk-cid-101"]
        first = await build(ctx, disk_id=100)
        second = await build(ctx, disk_id=101)

        await first.apply_resolution("activate_disk")
        with pytest.raises(ValidationError):
            await second.apply_resolution("activate_disk")

        active = [
            d for d in repository.rows[PersistentDisk].values()
            if d.instance_id == 1 and d.active
        ]
        assert [d.id for d in active] == [100]

    async def test_uses_fresh_state_not_cached(self, ctx, repository, agent):
        agent.list_disk.return_value = ["disk-cid-100"]
        handler = await build(ctx)
        # Another disk became active after the handler was built
        repository.add(
            PersistentDisk(id=300, disk_cid="disk-cid-300", active=True, instance_id=1)
        )

        with pytest.raises(ValidationError, match=ALREADY_ACTIVE):
            await handler.apply_resolution("activate_disk")

    async def test_unsupported_agent_counts_as_mounted(self, ctx, repository, agent):
        agent.list_disk.side_effect = UnsupportedCapabilityError("unknown message")
        handler = await build(ctx)

        await handler.apply_resolution("activate_disk")

        assert repository.get(PersistentDisk, 100).active is True

    async def test_unsupported_agent_still_checks_active_disk(
        self, ctx, repository, agent
    ):
        repository.add(
            PersistentDisk(id=200, disk_cid="disk-cid-200", active=True, instance_id=1)
        )
        agent.list_disk.side_effect = UnsupportedCapabilityError("unknown message")
        handler = await build(ctx)

        with pytest.raises(ValidationError, match=ALREADY_ACTIVE):
            await handler.apply_resolution("activate_disk")

    async def test_disk_deleted_before_activation(self, ctx, repository, agent):
        agent.list_disk.return_value = ["disk-cid-100"]
        handler = await build(ctx)
        del repository.rows[PersistentDisk][100]

        with pytest.raises(ValidationError, match="no longer in the database"):
            await handler.apply_resolution("activate_disk")

    async def test_instance_deleted_before_activation(self, ctx, repository, agent):
        agent.list_disk.return_value = ["disk-cid-100"]
        handler = await build(ctx)
        del repository.rows[Instance][1]

        with pytest.raises(ValidationError, match="Cannot find instance for disk `100'"):
            await handler.apply_resolution("activate_disk")

        agent.list_disk.assert_not_awaited()
        assert repository.get(PersistentDisk, 100).active is False


@pytest.mark.asyncio
class TestDeleteDisk:
    """Tests for the delete_disk resolution."""

    async def test_deletes_unmounted_disk(self, ctx, repository, cloud):
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        cloud.detach_disk.assert_awaited_once_with("vm-cid-10", "disk-cid-100")
        cloud.delete_disk.assert_awaited_once_with("disk-cid-100")
        assert repository.get(PersistentDisk, 100) is None

    async def test_detach_failure_is_ignored(self, ctx, repository, cloud):
        cloud.detach_disk.side_effect = TransientAdapterError("timed out")
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        cloud.delete_disk.assert_awaited_once_with("disk-cid-100")
        assert repository.get(PersistentDisk, 100) is None

    async def test_delete_not_found_is_success(self, ctx, repository, cloud):
        cloud.delete_disk.side_effect = DiskNotFound("gone")
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        cloud.detach_disk.assert_awaited_once()
        assert repository.get(PersistentDisk, 100) is None

    async def test_delete_twice_is_idempotent(self, ctx, repository, cloud):
        handler = await build(ctx)
        await handler.apply_resolution("delete_disk")

        await handler.apply_resolution("delete_disk")

        cloud.delete_disk.assert_awaited_once_with("disk-cid-100")
        assert repository.get(PersistentDisk, 100) is None

    async def test_disk_deleted_before_delete(self, ctx, repository, cloud):
        handler = await build(ctx)
        del repository.rows[PersistentDisk][100]

        await handler.apply_resolution("delete_disk")

        cloud.detach_disk.assert_not_awaited()
        cloud.delete_disk.assert_not_awaited()

    async def test_instance_deleted_before_delete(self, ctx, repository, cloud):
        handler = await build(ctx)
        del repository.rows[Instance][1]

        with pytest.raises(ValidationError, match="Cannot find instance for disk `100'"):
            await handler.apply_resolution("delete_disk")

        cloud.delete_disk.assert_not_awaited()
        assert repository.get(PersistentDisk, 100) is not None

    async def test_mounted_disk_is_in_use(self, ctx, repository, cloud, agent):
        agent.list_disk.return_value = ["disk-cid-100"]
        handler = await build(ctx)

        with pytest.raises(ValidationError, match="Disk is currently in use"):
            await handler.apply_resolution("delete_disk")

        cloud.delete_disk.assert_not_awaited()
        assert repository.get(PersistentDisk, 100) is not None

    async def test_unsupported_agent_counts_as_in_use(
        self, ctx, repository, cloud, agent
    ):
        agent.list_disk.side_effect = UnsupportedCapabilityError("unknown message")
        handler = await build(ctx)

        with pytest.raises(ValidationError, match="Disk is currently in use"):
            await handler.apply_resolution("delete_disk")

        cloud.delete_disk.assert_not_awaited()
        assert repository.get(PersistentDisk, 100) is not None

    async def test_no_vm_skips_detach(self, ctx, repository, cloud):
        repository.rows[Instance][1].vm_id = None
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        cloud.detach_disk.assert_not_awaited()
        cloud.delete_disk.assert_awaited_once_with("disk-cid-100")
        assert repository.get(PersistentDisk, 100) is None

    async def test_other_delete_errors_are_lenient_by_default(
        self, ctx, repository, cloud
    ):
        cloud.delete_disk.side_effect = AdapterError("quota exceeded")
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        assert repository.get(PersistentDisk, 100) is None

    async def test_strict_mode_keeps_row_on_delete_error(
        self, ctx, repository, cloud
    ):
        ctx.strict_disk_delete = True
        cloud.delete_disk.side_effect = AdapterError("quota exceeded")
        handler = await build(ctx)

        with pytest.raises(ValidationError, match="Failed to delete disk"):
            await handler.apply_resolution("delete_disk")

        assert repository.get(PersistentDisk, 100) is not None

    async def test_strict_mode_still_accepts_not_found(self, ctx, repository, cloud):
        ctx.strict_disk_delete = True
        cloud.delete_disk.side_effect = DiskNotFound("gone")
        handler = await build(ctx)

        await handler.apply_resolution("delete_disk")

        assert repository.get(PersistentDisk, 100) is None


@pytest.mark.asyncio
class TestIgnore:
    async def test_ignore_changes_nothing(self, ctx, repository, cloud):
        handler = await build(ctx)

        await handler.apply_resolution("ignore")

        assert repository.get(PersistentDisk, 100).active is False
        cloud.delete_disk.assert_not_awaited()
        cloud.detach_disk.assert_not_awaited()

    async def test_unknown_resolution(self, ctx):
        handler = await build(ctx)
        with pytest.raises(ValidationError, match="Unknown resolution 'explode'"):
            await handler.apply_resolution("explode")


@pytest.mark.asyncio
async def test_vm_row_replaced_between_load_and_delete(ctx, repository, cloud):
    """The action detaches from the VM the instance points at now."""
    handler = await build(ctx)
    repository.add(Vm(id=11, cid="vm-cid-11", agent_id="agent-11"))
    repository.rows[Instance][1].vm_id = 11

    await handler.apply_resolution("delete_disk")

    cloud.detach_disk.assert_awaited_once_with("vm-cid-11", "disk-cid-100")


@pytest.mark.asyncio
async def test_agent_is_asked_for_the_vms_agent(ctx, agents):
    handler = await build(ctx)
    await handler.disk_mounted()
    agents.for_agent.assert_called_with("agent-10")


@pytest.mark.asyncio
async def test_agent_transport_errors_propagate(ctx, agent):
    agent.list_disk = AsyncMock(side_effect=TransientAdapterError("no reply"))
    handler = await build(ctx)
    with pytest.raises(TransientAdapterError):
        await handler.apply_resolution("delete_disk")
