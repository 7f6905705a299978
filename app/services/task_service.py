"""Reads and prunes coordinator tasks linked to appointments."""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.tasks import tasks

RELATED_ENTITY_APPOINTMENT = "appointment"


class TaskService:
    """Service for the appointment/task linkage."""

    # Keeps IN lists well under driver bind-parameter limits
    LOOKUP_CHUNK_SIZE = 500

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def list_appointment_tasks(self, appointment_ids: Sequence[UUID]) -> list[dict[str, Any]]:
        """
        Tasks linked to the given appointments, oldest first.

        Ties on creation time are broken by task id.
        """
        found: list[dict[str, Any]] = []
        ids = list(appointment_ids)
        for offset in range(0, len(ids), self.LOOKUP_CHUNK_SIZE):
            chunk = ids[offset : offset + self.LOOKUP_CHUNK_SIZE]
            stmt = (
                select(tasks)
                .where(
                    and_(
                        tasks.c.related_entity_type == RELATED_ENTITY_APPOINTMENT,
                        tasks.c.related_entity_id.in_(chunk),
                    )
                )
                .order_by(tasks.c.created_at.asc(), tasks.c.id.asc())
            )
            result = await self.db.execute(stmt)
            found.extend(dict(row) for row in result.mappings().all())

        found.sort(key=lambda task: (task["created_at"], task["id"]))
        return found

    async def get_appointment_coordinators(
        self,
        appointment_ids: Sequence[UUID],
    ) -> dict[UUID, UUID | None]:
        """
        Resolve the coordinator of each appointment.

        The coordinator is the assignee of the oldest task linked to the
        appointment, or None when no task is linked.

        Args:
            appointment_ids: Appointments to resolve

        Returns:
            Mapping of appointment id to coordinator employee id (or None)
        """
        coordinators: dict[UUID, UUID | None] = dict.fromkeys(appointment_ids)
        resolved: set[UUID] = set()

        for task in await self.list_appointment_tasks(appointment_ids):
            appointment_id = task["related_entity_id"]
            if appointment_id in resolved:
                continue
            resolved.add(appointment_id)
            coordinators[appointment_id] = task["assigned_to_id"]

        return coordinators

    async def delete_tasks(self, task_ids: Sequence[UUID]) -> int:
        """Delete tasks by id, returning how many were requested."""
        if not task_ids:
            return 0
        await self.db.execute(delete(tasks).where(tasks.c.id.in_(list(task_ids))))
        return len(task_ids)

    async def annotate_merge(
        self,
        task: dict[str, Any],
        merged_specialties: list[str],
        merged_from_appointments: list[UUID],
    ) -> None:
        """Record on the surviving task what a merge folded into it."""
        task_metadata = dict(task.get("metadata") or {})
        task_metadata["merged_specialties"] = merged_specialties
        task_metadata["merged_from_appointments"] = [str(i) for i in merged_from_appointments]

        await self.db.execute(
            update(tasks)
            .where(tasks.c.id == task["id"])
            .values({tasks.c["metadata"]: task_metadata, tasks.c.updated_at: utcnow()})
        )
