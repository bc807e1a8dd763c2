"""
Resource models - Instances, VMs and persistent disks.

Rows are owned by the deployment side of the director; the cloud check only
reads them and applies the narrow mutations its resolutions need.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class Vm:
    """A virtual machine created through the cloud adapter."""

    id: int
    cid: str
    agent_id: str

    table = "vms"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Vm":
        return cls(id=row["id"], cid=row["cid"], agent_id=row["agent_id"])


@dataclass
class Instance:
    """A deployed job occurrence."""

    id: int
    job: Optional[str] = None
    index: Optional[int] = None
    vm_id: Optional[int] = None
    deployment: Optional[str] = None

    table = "instances"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Instance":
        return cls(
            id=row["id"],
            job=row.get("job"),
            index=row.get("index"),
            vm_id=row.get("vm_id"),
            deployment=row.get("deployment"),
        )

    @property
    def label(self) -> str:
        job = self.job or "unknown job"
        index = self.index if self.index is not None else "unknown index"
        return f"{job}/{index}"


@dataclass
class PersistentDisk:
    """A persistent disk attached (or once attached) to an instance."""

    id: int
    disk_cid: str
    size: int = 0
    active: bool = False
    instance_id: Optional[int] = None

    table = "persistent_disks"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PersistentDisk":
        return cls(
            id=row["id"],
            disk_cid=row["disk_cid"],
            size=row.get("size") or 0,
            active=bool(row.get("active")),
            instance_id=row.get("instance_id"),
        )
