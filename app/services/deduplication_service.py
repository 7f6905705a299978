"""Finds and merges duplicate open appointments."""

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.locks import lock_appointment_day
from app.core.retry import run_in_transaction
from app.models.appointments import appointment_specialities, appointments
from app.models.base import utcnow
from app.schemas.appointments import ACTIVE_STATUSES, AppointmentStatus
from app.schemas.consolidation import (
    DuplicateGroup,
    GroupKey,
    GroupMergeOutcome,
    MergeResult,
    ReconciliationReport,
)
from app.services.appointment_service import AppointmentService
from app.services.task_service import TaskService
from app.utils.dates import ensure_utc, round_to_minute, utc_day, utc_day_bounds
from app.utils.specialities import join_speciality_names, split_speciality_names, union_names

logger = structlog.get_logger(__name__)

BookingKey = tuple[UUID, UUID, datetime]


def booking_key(booking: dict[str, Any]) -> BookingKey:
    """Identity of a booked slot: specialty, doctor and minute."""
    return (booking["speciality_id"], booking["doctor_id"], round_to_minute(booking["scheduled_time"]))


def plan_specialty_consolidation(
    primary_bookings: Sequence[dict[str, Any]],
    duplicate_bookings: Sequence[dict[str, Any]],
) -> list[dict[str, Any]]:
    """
    Pick the bookings that must be created on the primary appointment.

    All bookings are considered in order, primary first, and deduplicated by
    ``booking_key`` keeping the first occurrence. When the primary already
    has bookings only keys contributed solely by duplicates are returned.
    When it has none (a legacy row carrying only the specialty string) every
    unique key is returned.
    """
    primary_keys = {booking_key(booking) for booking in primary_bookings}
    primary_has_bookings = bool(primary_bookings)

    tagged = [(booking, True) for booking in primary_bookings]
    tagged.extend((booking, False) for booking in duplicate_bookings)

    seen: set[BookingKey] = set()
    planned: list[dict[str, Any]] = []
    for booking, from_primary in tagged:
        key = booking_key(booking)
        if key in seen:
            continue
        seen.add(key)
        if not primary_has_bookings:
            planned.append(booking)
        elif not from_primary and key not in primary_keys:
            planned.append(booking)
    return planned


class DeduplicationService:
    """Service for consolidating duplicate appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db
        self.appointments = AppointmentService(db)
        self.tasks = TaskService(db)

    async def merge_duplicates_for_patient_day(
        self,
        patient_id: UUID,
        scheduled_date: datetime,
        hospital_id: UUID,
        coordinator_id: UUID | None = None,
    ) -> MergeResult | None:
        """
        Merge open appointments sharing patient, UTC day, hospital and coordinator.

        The oldest appointment survives and absorbs the bookings of the
        others; the others and their tasks are deleted.

        Args:
            patient_id: Patient whose appointments are merged
            scheduled_date: Any moment inside the UTC day to merge
            hospital_id: Hospital the appointments belong to
            coordinator_id: Coordinator to match, None for appointments without a task

        Returns:
            Merge result, or None when fewer than two appointments matched or
            the merge could not be performed
        """
        try:
            return await self._merge_duplicates(patient_id, scheduled_date, hospital_id, coordinator_id)
        except Exception as e:
            logger.error(
                "duplicate_merge_failed",
                patient_id=str(patient_id),
                hospital_id=str(hospital_id),
                scheduled_date=ensure_utc(scheduled_date).isoformat(),
                coordinator_id=str(coordinator_id) if coordinator_id else None,
                error=str(e),
                exc_info=True,
            )
            return None

    async def find_duplicate_groups(self) -> list[DuplicateGroup]:
        """
        Group every open appointment by patient, UTC day, hospital and coordinator.

        Returns:
            Groups with two or more appointments, members ordered oldest first
        """

        async def work() -> tuple[list[dict[str, Any]], dict[UUID, UUID | None]]:
            result = await self.db.execute(
                select(
                    appointments.c.id,
                    appointments.c.patient_id,
                    appointments.c.hospital_id,
                    appointments.c.scheduled_date,
                )
                .where(appointments.c.status.in_(ACTIVE_STATUSES))
                .order_by(appointments.c.created_at.asc(), appointments.c.id.asc())
            )
            rows = [dict(row) for row in result.mappings().all()]
            coordinators = await self.tasks.get_appointment_coordinators([row["id"] for row in rows])
            return rows, coordinators

        rows, coordinators = await run_in_transaction(self.db, work, operation="find_duplicate_groups")

        grouped: dict[GroupKey, list[dict[str, Any]]] = {}
        for row in rows:
            key = GroupKey(
                patient_id=row["patient_id"],
                day=utc_day(row["scheduled_date"]),
                hospital_id=row["hospital_id"],
                coordinator_id=coordinators.get(row["id"]),
            )
            grouped.setdefault(key, []).append(row)

        groups: list[DuplicateGroup] = []
        for key, members in grouped.items():
            if len(members) < 2:
                continue
            logger.debug("duplicate_group_found", group=key.label, appointments=len(members))
            groups.append(
                DuplicateGroup(
                    patient_id=key.patient_id,
                    scheduled_date=members[0]["scheduled_date"],
                    hospital_id=key.hospital_id,
                    coordinator_id=key.coordinator_id,
                    appointment_ids=[member["id"] for member in members],
                )
            )

        logger.info(
            "duplicate_groups_found",
            appointments_scanned=len(rows),
            unique_groups=len(grouped),
            duplicate_groups=len(groups),
        )
        return groups

    async def reconcile_all_duplicates(self) -> ReconciliationReport:
        """
        Find every duplicate group and merge each one in turn.

        Groups are merged sequentially. A failing group is recorded in its
        outcome and does not stop the remaining groups; a failure to find
        the groups fails the whole call.
        """
        groups = await self.find_duplicate_groups()
        report = ReconciliationReport(groups_processed=len(groups))

        for group in groups:
            outcome = await self._merge_group(group)
            report.results.append(outcome)
            if outcome.merged:
                report.groups_merged += 1
                report.appointments_merged += outcome.merged_count
                # One coordinating task per absorbed appointment
                report.tasks_merged += outcome.merged_count

        logger.info(
            "reconciliation_completed",
            groups_processed=report.groups_processed,
            groups_merged=report.groups_merged,
            appointments_merged=report.appointments_merged,
            failed_groups=sum(1 for outcome in report.results if outcome.error),
        )
        return report

    async def _merge_group(self, group: DuplicateGroup) -> GroupMergeOutcome:
        outcome = GroupMergeOutcome(
            patient_id=group.patient_id,
            scheduled_date=group.scheduled_date,
            hospital_id=group.hospital_id,
            coordinator_id=group.coordinator_id,
        )
        try:
            result = await self._merge_duplicates(
                group.patient_id,
                group.scheduled_date,
                group.hospital_id,
                group.coordinator_id,
            )
        except Exception as e:
            logger.error(
                "reconciliation_group_failed",
                patient_id=str(group.patient_id),
                hospital_id=str(group.hospital_id),
                appointment_ids=[str(i) for i in group.appointment_ids],
                error=str(e),
                exc_info=True,
            )
            outcome.error = str(e) or e.__class__.__name__
            return outcome

        if result is not None:
            outcome.merged = True
            outcome.merged_count = result.merged_count
            outcome.primary_appointment_id = result.primary_appointment_id
            outcome.deleted_appointment_ids = result.deleted_appointment_ids
        return outcome

    async def _merge_duplicates(
        self,
        patient_id: UUID,
        scheduled_date: datetime,
        hospital_id: UUID,
        coordinator_id: UUID | None,
    ) -> MergeResult | None:
        reference_date = ensure_utc(scheduled_date)

        async def work() -> MergeResult | None:
            await lock_appointment_day(self.db, patient_id, hospital_id, reference_date)
            return await self._merge_in_transaction(patient_id, reference_date, hospital_id, coordinator_id)

        return await run_in_transaction(self.db, work, operation="merge_duplicate_appointments")

    async def _load_open_appointments(
        self,
        patient_id: UUID,
        hospital_id: UUID,
        reference_date: datetime,
    ) -> list[dict[str, Any]]:
        day_start, day_end = utc_day_bounds(reference_date)
        result = await self.db.execute(
            select(appointments)
            .where(
                and_(
                    appointments.c.patient_id == patient_id,
                    appointments.c.hospital_id == hospital_id,
                    appointments.c.scheduled_date >= day_start,
                    appointments.c.scheduled_date < day_end,
                    appointments.c.status.in_(ACTIVE_STATUSES),
                )
            )
            .order_by(appointments.c.created_at.asc(), appointments.c.id.asc())
        )
        return [dict(row) for row in result.mappings().all()]

    async def _booking_exists(self, appointment_id: UUID, booking: dict[str, Any]) -> bool:
        minute = round_to_minute(booking["scheduled_time"])
        result = await self.db.execute(
            select(func.count())
            .select_from(appointment_specialities)
            .where(
                and_(
                    appointment_specialities.c.appointment_id == appointment_id,
                    appointment_specialities.c.speciality_id == booking["speciality_id"],
                    appointment_specialities.c.doctor_id == booking["doctor_id"],
                    appointment_specialities.c.scheduled_time >= minute,
                    appointment_specialities.c.scheduled_time < minute + timedelta(minutes=1),
                )
            )
        )
        return (result.scalar() or 0) > 0

    async def _merge_in_transaction(
        self,
        patient_id: UUID,
        reference_date: datetime,
        hospital_id: UUID,
        coordinator_id: UUID | None,
    ) -> MergeResult | None:
        candidates = await self._load_open_appointments(patient_id, hospital_id, reference_date)
        coordinators = await self.tasks.get_appointment_coordinators([c["id"] for c in candidates])
        matching = [c for c in candidates if coordinators[c["id"]] == coordinator_id]

        logger.info(
            "duplicate_merge_candidates",
            patient_id=str(patient_id),
            hospital_id=str(hospital_id),
            day=utc_day(reference_date).isoformat(),
            coordinator_id=str(coordinator_id) if coordinator_id else None,
            found=len(candidates),
            matching=len(matching),
        )

        if len(matching) < 2:
            logger.info("duplicate_merge_skipped", patient_id=str(patient_id), matching=len(matching))
            return None

        primary, duplicates = matching[0], matching[1:]
        duplicate_ids = [duplicate["id"] for duplicate in duplicates]

        bookings = await self.appointments.list_specialities([primary["id"], *duplicate_ids])
        primary_bookings = bookings[primary["id"]]
        duplicate_bookings = [booking for i in duplicate_ids for booking in bookings[i]]

        planned = plan_specialty_consolidation(primary_bookings, duplicate_bookings)
        merged_names = union_names(
            (booking["speciality_name"] for booking in primary_bookings),
            (booking["speciality_name"] for booking in duplicate_bookings),
            split_speciality_names(primary["speciality"]),
            *(split_speciality_names(duplicate["speciality"]) for duplicate in duplicates),
        )

        created = 0
        now = utcnow()
        for booking in planned:
            if await self._booking_exists(primary["id"], booking):
                logger.debug("duplicate_booking_skipped", booking_id=str(booking["id"]))
                continue
            await self.db.execute(
                insert(appointment_specialities).values(
                    id=uuid4(),
                    appointment_id=primary["id"],
                    speciality_id=booking["speciality_id"],
                    doctor_id=booking["doctor_id"],
                    scheduled_time=booking["scheduled_time"],
                    status=AppointmentStatus.SCHEDULED.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            created += 1

        merged_speciality = join_speciality_names(merged_names)
        await self.db.execute(
            update(appointments)
            .where(appointments.c.id == primary["id"])
            .values(speciality=merged_speciality, updated_at=now)
        )

        # Tasks: keep only the oldest on the primary, drop every task of the duplicates
        deleted_tasks = 0
        primary_tasks = await self.tasks.list_appointment_tasks([primary["id"]])
        if len(primary_tasks) > 1:
            deleted_tasks += await self.tasks.delete_tasks([task["id"] for task in primary_tasks[1:]])
        if primary_tasks:
            await self.tasks.annotate_merge(primary_tasks[0], merged_names, duplicate_ids)

        duplicate_tasks = await self.tasks.list_appointment_tasks(duplicate_ids)
        deleted_tasks += await self.tasks.delete_tasks([task["id"] for task in duplicate_tasks])

        # Bookings before their appointments to respect the foreign key
        await self.db.execute(
            delete(appointment_specialities).where(
                appointment_specialities.c.appointment_id.in_(duplicate_ids)
            )
        )
        await self.db.execute(delete(appointments).where(appointments.c.id.in_(duplicate_ids)))

        total_result = await self.db.execute(
            select(func.count())
            .select_from(appointment_specialities)
            .where(appointment_specialities.c.appointment_id == primary["id"])
        )
        total_bookings = total_result.scalar() or 0

        logger.info(
            "duplicate_merge_completed",
            patient_id=str(patient_id),
            primary_appointment_id=str(primary["id"]),
            deleted_appointment_ids=[str(i) for i in duplicate_ids],
            bookings_created=created,
            bookings_total=total_bookings,
            tasks_deleted=deleted_tasks,
            speciality=merged_speciality,
        )
        return MergeResult(
            primary_appointment_id=primary["id"],
            merged_count=len(duplicates),
            deleted_appointment_ids=duplicate_ids,
            merged_specialty_count=created,
            deleted_task_count=deleted_tasks,
            total_specialties_after_merge=total_bookings,
            speciality=merged_speciality,
        )
