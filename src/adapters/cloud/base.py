"""
Cloud Adapter Base - Abstract interface over the IaaS control plane.

Each verb documents how it signals failure so that problem handlers can
decide whether an error invalidates the resolution they are running.
"""

from abc import ABC, abstractmethod


class CloudAdapter(ABC):
    """
    Abstract base class for cloud adapters.

    Implementations raise errors from the ``errors`` module:
    NotFoundAdapterError subclasses when the target is gone,
    TransientAdapterError on timeouts and connectivity failures, and
    AdapterError for everything else.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this adapter (e.g., 'http')."""
        pass

    @abstractmethod
    async def detach_disk(self, vm_cid: str, disk_cid: str) -> None:
        """
        Detach a disk from a VM.

        Best effort: callers deleting the disk afterwards tolerate any error.
        """
        pass

    @abstractmethod
    async def delete_disk(self, disk_cid: str) -> None:
        """
        Delete a disk.

        Raises:
            DiskNotFound: If the disk no longer exists
        """
        pass

    @abstractmethod
    async def attach_disk(self, vm_cid: str, disk_cid: str) -> None:
        """Attach a disk to a VM."""
        pass

    @abstractmethod
    async def has_vm(self, vm_cid: str) -> bool:
        """Check whether the VM still exists in the IaaS."""
        pass

    @abstractmethod
    async def reboot_vm(self, vm_cid: str) -> None:
        """
        Reboot a VM.

        Raises:
            VmNotFound: If the VM no longer exists
        """
        pass

    @abstractmethod
    async def delete_vm(self, vm_cid: str) -> None:
        """
        Delete a VM.

        Raises:
            VmNotFound: If the VM no longer exists
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
