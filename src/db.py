"""
Database Manager - PostgreSQL repository for instances, VMs and disks.

Every lookup goes straight to the database so callers always see the latest
committed state. Also stores the cloud check outcome history.
"""

import asyncpg
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from errors import ValidationError
from models import Instance, PersistentDisk, Vm

logger = logging.getLogger(__name__)

Entity = Union[Instance, PersistentDisk, Vm]
E = TypeVar("E", Instance, PersistentDisk, Vm)


class DatabaseManager:
    """Manages PostgreSQL database operations for the cloud check."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def ping(self) -> None:
        """Check that the schema the cloud check reads is reachable."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.fetchval(
                "SELECT COUNT(*) FROM persistent_disks WHERE FALSE"
            )
        logger.info("Database schema reachable")

    # ==================== Repository contract ====================

    async def find(self, model: Type[E], entity_id: Optional[int]) -> Optional[E]:
        """
        Look up an entity by primary key.

        Args:
            model: One of Instance, Vm or PersistentDisk
            entity_id: Primary key; None always yields None

        Returns:
            The entity, or None if the row does not exist
        """
        if entity_id is None:
            return None

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {model.table} WHERE id = $1",
                entity_id,
            )
            if not row:
                return None
            return model.from_row(dict(row))

    async def find_active_disk(self, instance_id: int) -> Optional[PersistentDisk]:
        """Get the active persistent disk of an instance, if any."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM persistent_disks
                WHERE instance_id = $1 AND active = TRUE
                ORDER BY id
                LIMIT 1
                """,
                instance_id,
            )
            if not row:
                return None
            return PersistentDisk.from_row(dict(row))

    async def find_instance_for_vm(self, vm_id: int) -> Optional[Instance]:
        """Get the instance currently referencing a VM."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM instances WHERE vm_id = $1",
                vm_id,
            )
            if not row:
                return None
            return Instance.from_row(dict(row))

    async def save(self, entity: Entity) -> None:
        """
        Persist the mutable fields of an entity.

        Saving an active persistent disk only commits when no other disk of
        the same instance is active.

        Raises:
            ValidationError: If the row vanished or the instance already has
                a different active disk
        """
        if isinstance(entity, PersistentDisk):
            await self._save_disk(entity)
        elif isinstance(entity, Instance):
            await self._save_instance(entity)
        elif isinstance(entity, Vm):
            await self._save_vm(entity)
        else:
            raise TypeError(f"Cannot save {type(entity).__name__}")

    async def _save_disk(self, disk: PersistentDisk) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if disk.active:
                    # Serializes activations of disks sharing an instance
                    await conn.execute(
                        "SELECT id FROM instances WHERE id = $1 FOR UPDATE",
                        disk.instance_id,
                    )

                updated = await conn.fetchval(
                    """
                    UPDATE persistent_disks
                    SET active = $2, size = $3, instance_id = $4, updated_at = NOW()
                    WHERE id = $1
                      AND (
                        NOT $2
                        OR NOT EXISTS (
                            SELECT 1 FROM persistent_disks other
                            WHERE other.instance_id = $4
                              AND other.active = TRUE
                              AND other.id != $1
                        )
                      )
                    RETURNING id
                    """,
                    disk.id,
                    disk.active,
                    disk.size,
                    disk.instance_id,
                )

                if updated is None:
                    exists = await conn.fetchval(
                        "SELECT id FROM persistent_disks WHERE id = $1", disk.id
                    )
                    if exists is None:
                        raise ValidationError(
                            f"Disk `{disk.id}' is no longer in the database"
                        )
                    raise ValidationError("Instance already has an active disk")

        logger.info(f"Saved persistent disk {disk.disk_cid} (active={disk.active})")

    async def _save_instance(self, instance: Instance) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE instances
                SET job = $2, index = $3, vm_id = $4, deployment = $5,
                    updated_at = NOW()
                WHERE id = $1
                """,
                instance.id,
                instance.job,
                instance.index,
                instance.vm_id,
                instance.deployment,
            )
            if result == "UPDATE 0":
                raise ValidationError(
                    f"Instance `{instance.id}' is no longer in the database"
                )

        logger.info(f"Saved instance {instance.label}")

    async def _save_vm(self, vm: Vm) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE vms SET cid = $2, agent_id = $3, updated_at = NOW() "
                "WHERE id = $1",
                vm.id,
                vm.cid,
                vm.agent_id,
            )
            if result == "UPDATE 0":
                raise ValidationError(f"VM `{vm.id}' is no longer in the database")

        logger.info(f"Saved VM {vm.cid}")

    async def destroy(self, entity: Entity) -> None:
        """Delete the row backing an entity. Deleting a missing row is a no-op."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"DELETE FROM {entity.table} WHERE id = $1",
                entity.id,
            )
        logger.info(f"Destroyed {type(entity).__name__} {entity.id}")

    # ==================== Enumeration ====================

    async def list_inactive_disks(self, limit: int = 1000) -> List[PersistentDisk]:
        """List persistent disks that are not active."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM persistent_disks
                WHERE active = FALSE
                ORDER BY id
                LIMIT $1
                """,
                limit,
            )
            return [PersistentDisk.from_row(dict(row)) for row in rows]

    async def list_active_disks(self, limit: int = 1000) -> List[PersistentDisk]:
        """List active persistent disks."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM persistent_disks
                WHERE active = TRUE
                ORDER BY id
                LIMIT $1
                """,
                limit,
            )
            return [PersistentDisk.from_row(dict(row)) for row in rows]

    async def list_vms(self, limit: int = 1000) -> List[Vm]:
        """List VMs."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM vms ORDER BY id LIMIT $1",
                limit,
            )
            return [Vm.from_row(dict(row)) for row in rows]

    # ==================== Outcome history ====================

    async def record_check_outcome(
        self,
        problem_id: str,
        problem_type: str,
        resource_id: int,
        disposition: str,
        resolution: Optional[str] = None,
        reason: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record the final disposition of a problem."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO cloudcheck_history (
                    problem_id, problem_type, resource_id, disposition,
                    resolution, reason, duration_seconds
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                problem_id,
                problem_type,
                resource_id,
                disposition,
                resolution,
                reason,
                duration_seconds,
            )

    async def get_check_history(
        self, problem_type: Optional[str] = None, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Get recorded cloud check outcomes, newest first."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM cloudcheck_history WHERE 1=1"
            params: List[Any] = []
            param_count = 0

            if problem_type:
                param_count += 1
                query += f" AND problem_type = ${param_count}"
                params.append(problem_type)

            param_count += 1
            query += f" ORDER BY recorded_at DESC LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [dict(row) for row in rows]
