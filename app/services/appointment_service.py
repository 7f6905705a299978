"""Appointment service for creating appointments without duplicating them."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.core.locks import lock_appointment_day
from app.core.retry import run_in_transaction
from app.models.appointments import appointment_specialities, appointments
from app.models.base import utcnow
from app.models.reference import doctors, employees, hospitals, specialities
from app.schemas.appointments import (
    ACTIVE_STATUSES,
    AppointmentResponse,
    AppointmentSpecialityInput,
    AppointmentSpecialityResponse,
    AppointmentStatus,
    AppointmentUpsert,
    AppointmentUpsertResult,
)
from app.utils.dates import ensure_utc, round_to_minute, utc_day_bounds
from app.utils.specialities import join_speciality_names, split_speciality_names, union_names

logger = structlog.get_logger(__name__)


def dedupe_bookings(bookings: Sequence[AppointmentSpecialityInput]) -> list[AppointmentSpecialityInput]:
    """
    Collapse bookings sharing a specialty and doctor.

    The last occurrence wins, so a later time in the input replaces an earlier one.
    """
    unique: dict[tuple[UUID | None, UUID | None], AppointmentSpecialityInput] = {}
    for booking in bookings:
        unique[(booking.speciality_id, booking.doctor_id)] = booking
    return list(unique.values())


class AppointmentService:
    """Service for creating, merging into and reading appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    @staticmethod
    def _validate_upsert(data: AppointmentUpsert) -> None:
        """
        Reject incomplete upsert input before touching the store.

        Raises:
            ValidationException: If a required field or booking field is missing
        """
        missing = [
            field
            for field in ("patient_id", "hospital_id", "sales_person_id", "created_by_id")
            if getattr(data, field) is None
        ]
        if missing:
            raise ValidationException(
                f"Missing required fields: {', '.join(missing)}",
                context={"missing": missing},
            )

        if not data.appointment_specialities:
            raise ValidationException("At least one appointment specialty is required")

        for index, booking in enumerate(data.appointment_specialities):
            if booking.speciality_id is None or booking.doctor_id is None or booking.scheduled_time is None:
                raise ValidationException(
                    "Each specialty must have speciality_id, doctor_id, and scheduled_time",
                    context={"booking_index": index},
                )

    async def upsert_appointment(self, data: AppointmentUpsert) -> AppointmentUpsertResult:
        """
        Create an appointment or fold the bookings into an existing one.

        With ``appointment_id`` the given appointment is updated. Otherwise an
        open appointment for the same patient, hospital and UTC day is reused
        when one exists; a new appointment is created only when none does.

        Args:
            data: Upsert input

        Returns:
            Final appointment with its bookings and merge counters

        Raises:
            ValidationException: If required input is missing
            NotFoundException: If the hospital or explicit appointment does not exist
            TransientStoreException: If the store stayed unavailable across retries
        """
        self._validate_upsert(data)

        first_booking_time = data.appointment_specialities[0].scheduled_time
        appointment_date = ensure_utc(data.scheduled_date or first_booking_time)

        async def work() -> AppointmentUpsertResult:
            await self._ensure_hospital(data.hospital_id)

            if data.appointment_id is not None:
                target = await self._get_appointment_row(data.appointment_id)
                if target is None:
                    raise NotFoundException(
                        "Appointment not found",
                        context={"appointment_id": str(data.appointment_id)},
                    )
            else:
                await lock_appointment_day(self.db, data.patient_id, data.hospital_id, appointment_date)
                target = await self._find_open_appointment(
                    data.patient_id, data.hospital_id, appointment_date
                )

            if target is None:
                return await self._create_appointment(data, appointment_date)
            if data.replace_specialities:
                return await self._replace_specialities(target, data, appointment_date)
            return await self._merge_specialities(target, data, appointment_date)

        result = await run_in_transaction(self.db, work, operation="upsert_appointment")

        logger.info(
            "appointment_upserted",
            appointment_id=str(result.appointment.id),
            patient_id=str(result.appointment.patient_id),
            hospital_id=str(result.appointment.hospital_id),
            merged=result.merged,
            merged_count=result.merged_count,
            skipped_count=result.skipped_count,
        )
        return result

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID with its specialty bookings.

        Raises:
            NotFoundException: If appointment not found
        """
        appointment = await self._load_appointment(appointment_id)
        if appointment is None:
            raise NotFoundException(
                "Appointment not found",
                context={"appointment_id": str(appointment_id)},
            )
        return appointment

    async def list_specialities(
        self,
        appointment_ids: Sequence[UUID],
    ) -> dict[UUID, list[dict[str, Any]]]:
        """Bookings of each appointment with specialty and doctor names, by time."""
        grouped: dict[UUID, list[dict[str, Any]]] = {appointment_id: [] for appointment_id in appointment_ids}
        if not appointment_ids:
            return grouped

        stmt = (
            select(
                appointment_specialities,
                specialities.c.name.label("speciality_name"),
                doctors.c.name.label("doctor_name"),
            )
            .select_from(
                appointment_specialities.outerjoin(
                    specialities, specialities.c.id == appointment_specialities.c.speciality_id
                ).outerjoin(doctors, doctors.c.id == appointment_specialities.c.doctor_id)
            )
            .where(appointment_specialities.c.appointment_id.in_(list(appointment_ids)))
            .order_by(
                appointment_specialities.c.scheduled_time.asc(),
                appointment_specialities.c.id.asc(),
            )
        )
        result = await self.db.execute(stmt)
        for row in result.mappings().all():
            grouped[row["appointment_id"]].append(dict(row))
        return grouped

    async def _ensure_hospital(self, hospital_id: UUID) -> None:
        result = await self.db.execute(select(hospitals.c.id).where(hospitals.c.id == hospital_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundException(
                f"Hospital with id {hospital_id} not found",
                context={"hospital_id": str(hospital_id)},
            )

    async def _get_appointment_row(self, appointment_id: UUID) -> dict[str, Any] | None:
        result = await self.db.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def _find_open_appointment(
        self,
        patient_id: UUID,
        hospital_id: UUID,
        appointment_date: datetime,
    ) -> dict[str, Any] | None:
        """Oldest scheduled/assigned appointment for the patient at the hospital that day."""
        day_start, day_end = utc_day_bounds(appointment_date)
        stmt = (
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
            .limit(1)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def _speciality_names(self, speciality_ids: Sequence[UUID]) -> dict[UUID, str]:
        if not speciality_ids:
            return {}
        result = await self.db.execute(
            select(specialities.c.id, specialities.c.name).where(
                specialities.c.id.in_(list(set(speciality_ids)))
            )
        )
        return {row.id: row.name for row in result}

    async def _resolve_driver(self, driver_id: UUID | None) -> UUID | None:
        """Keep the driver only if it is an existing employee."""
        if driver_id is None:
            return None
        result = await self.db.execute(select(employees.c.id).where(employees.c.id == driver_id))
        return driver_id if result.scalar_one_or_none() is not None else None

    async def _insert_bookings(
        self,
        appointment_id: UUID,
        bookings: Sequence[AppointmentSpecialityInput],
    ) -> None:
        if not bookings:
            return
        now = utcnow()
        await self.db.execute(
            insert(appointment_specialities),
            [
                {
                    "id": uuid4(),
                    "appointment_id": appointment_id,
                    "speciality_id": booking.speciality_id,
                    "doctor_id": booking.doctor_id,
                    "scheduled_time": ensure_utc(booking.scheduled_time),
                    "status": AppointmentStatus.SCHEDULED.value,
                    "created_at": now,
                    "updated_at": now,
                }
                for booking in bookings
            ],
        )

    async def _create_appointment(
        self,
        data: AppointmentUpsert,
        appointment_date: datetime,
    ) -> AppointmentUpsertResult:
        bookings = dedupe_bookings(data.appointment_specialities)
        names = await self._speciality_names([b.speciality_id for b in bookings])
        appointment_id = uuid4()
        now = utcnow()

        await self.db.execute(
            insert(appointments).values(
                id=appointment_id,
                patient_id=data.patient_id,
                hospital_id=data.hospital_id,
                sales_person_id=data.sales_person_id,
                created_by_id=data.created_by_id,
                scheduled_date=appointment_date,
                status=AppointmentStatus.SCHEDULED.value,
                speciality=join_speciality_names(
                    union_names(names.get(b.speciality_id) for b in bookings)
                ),
                driver_needed=bool(data.driver_needed),
                driver_id=await self._resolve_driver(data.driver_id),
                notes=data.notes,
                is_new_patient_at_creation=bool(data.is_new_patient_at_creation),
                is_not_booked=bool(data.is_not_booked),
                created_from_follow_up_task_id=data.created_from_follow_up_task_id,
                created_at=now,
                updated_at=now,
            )
        )
        await self._insert_bookings(appointment_id, bookings)

        logger.info(
            "appointment_created",
            appointment_id=str(appointment_id),
            patient_id=str(data.patient_id),
            hospital_id=str(data.hospital_id),
            bookings=len(bookings),
        )
        return AppointmentUpsertResult(
            appointment=await self._load_appointment(appointment_id),
            created=True,
            merged=False,
        )

    async def _replace_specialities(
        self,
        target: dict[str, Any],
        data: AppointmentUpsert,
        appointment_date: datetime,
    ) -> AppointmentUpsertResult:
        bookings = dedupe_bookings(data.appointment_specialities)
        names = await self._speciality_names([b.speciality_id for b in bookings])

        await self.db.execute(
            delete(appointment_specialities).where(
                appointment_specialities.c.appointment_id == target["id"]
            )
        )
        await self._insert_bookings(target["id"], bookings)
        await self._update_appointment_fields(
            target,
            data,
            appointment_date,
            union_names(names.get(b.speciality_id) for b in bookings),
        )

        logger.info(
            "appointment_specialities_replaced",
            appointment_id=str(target["id"]),
            bookings=len(bookings),
        )
        return AppointmentUpsertResult(
            appointment=await self._load_appointment(target["id"]),
            merged=False,
            merged_count=len(bookings),
            skipped_count=0,
        )

    async def _merge_specialities(
        self,
        target: dict[str, Any],
        data: AppointmentUpsert,
        appointment_date: datetime,
    ) -> AppointmentUpsertResult:
        existing = (await self.list_specialities([target["id"]]))[target["id"]]
        existing_by_pair: dict[tuple[UUID, UUID], dict[str, Any]] = {}
        existing_slots: set[tuple[UUID, UUID, datetime]] = set()
        for row in existing:
            existing_by_pair.setdefault((row["speciality_id"], row["doctor_id"]), row)
            existing_slots.add(
                (row["speciality_id"], row["doctor_id"], round_to_minute(row["scheduled_time"]))
            )

        to_add: list[AppointmentSpecialityInput] = []
        for booking in dedupe_bookings(data.appointment_specialities):
            scheduled_time = ensure_utc(booking.scheduled_time)
            slot = (booking.speciality_id, booking.doctor_id, round_to_minute(scheduled_time))
            # Already booked at that minute, possibly on a row other than the first pair match
            if slot in existing_slots:
                continue

            current = existing_by_pair.get((booking.speciality_id, booking.doctor_id))
            if current is None:
                to_add.append(booking)
                existing_slots.add(slot)
                continue

            await self.db.execute(
                update(appointment_specialities)
                .where(appointment_specialities.c.id == current["id"])
                .values(scheduled_time=scheduled_time, updated_at=utcnow())
            )
            previous_minute = round_to_minute(current["scheduled_time"])
            existing_slots.discard((current["speciality_id"], current["doctor_id"], previous_minute))
            existing_slots.add(slot)
            current["scheduled_time"] = scheduled_time

        await self._insert_bookings(target["id"], to_add)
        new_names = await self._speciality_names([b.speciality_id for b in to_add])
        await self._update_appointment_fields(
            target,
            data,
            appointment_date,
            union_names(
                (row["speciality_name"] for row in existing),
                split_speciality_names(target["speciality"]),
                (new_names.get(b.speciality_id) for b in to_add),
            ),
        )

        logger.info(
            "appointment_merged",
            appointment_id=str(target["id"]),
            added=len(to_add),
            existing=len(existing),
        )
        return AppointmentUpsertResult(
            appointment=await self._load_appointment(target["id"]),
            merged=True,
            merged_count=len(to_add),
            skipped_count=len(data.appointment_specialities) - len(to_add),
        )

    async def _update_appointment_fields(
        self,
        target: dict[str, Any],
        data: AppointmentUpsert,
        appointment_date: datetime,
        speciality_names: list[str],
    ) -> None:
        """Write only the fields the caller supplied, plus the derived ones."""
        supplied = data.model_fields_set
        values: dict[str, Any] = {
            "speciality": join_speciality_names(speciality_names),
            "scheduled_date": appointment_date,
            "updated_at": utcnow(),
        }

        # An implicit merge already matched on hospital; only explicit updates may move it
        if data.appointment_id is not None and data.hospital_id is not None:
            values["hospital_id"] = data.hospital_id
        if data.sales_person_id is not None:
            values["sales_person_id"] = data.sales_person_id
        if "driver_needed" in supplied and data.driver_needed is not None:
            values["driver_needed"] = data.driver_needed
        if "driver_id" in supplied:
            values["driver_id"] = await self._resolve_driver(data.driver_id)
        if "notes" in supplied:
            values["notes"] = data.notes
        if "is_new_patient_at_creation" in supplied and data.is_new_patient_at_creation is not None:
            values["is_new_patient_at_creation"] = data.is_new_patient_at_creation
        if "is_not_booked" in supplied and data.is_not_booked is not None:
            values["is_not_booked"] = data.is_not_booked
        if "created_from_follow_up_task_id" in supplied:
            values["created_from_follow_up_task_id"] = data.created_from_follow_up_task_id

        await self.db.execute(update(appointments).where(appointments.c.id == target["id"]).values(**values))

    async def _load_appointment(self, appointment_id: UUID) -> AppointmentResponse | None:
        row = await self._get_appointment_row(appointment_id)
        if row is None:
            return None
        bookings = (await self.list_specialities([appointment_id]))[appointment_id]
        return AppointmentResponse.model_validate(
            {
                **row,
                "appointment_specialities": [
                    AppointmentSpecialityResponse.model_validate(booking) for booking in bookings
                ],
            }
        )
