"""Tests for creating appointments and merging bookings into them."""

from collections import Counter
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.models import appointment_specialities, appointments
from app.schemas.appointments import AppointmentSpecialityInput, AppointmentUpsert
from app.services.appointment_service import AppointmentService, dedupe_bookings
from app.services.deduplication_service import DeduplicationService
from tests.conftest import DAY, at


async def count_appointments(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(appointments))
    return result.scalar_one()


async def count_bookings(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(appointment_specialities))
    return result.scalar_one()


@pytest.fixture
def service(db_session: AsyncSession) -> AppointmentService:
    return AppointmentService(db_session)


@pytest.fixture
def upsert(service, upsert_payload):
    async def run(*bookings, **overrides):
        return await service.upsert_appointment(
            AppointmentUpsert.model_validate(upsert_payload(*bookings, **overrides))
        )

    return run


class TestValidation:
    async def test_missing_patient_is_rejected(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        with pytest.raises(ValidationException) as exc_info:
            await upsert((ref["cardiology"], ref["dr_heart"], at(9)), patient_id=None)

        assert "patient_id" in exc_info.value.context["missing"]
        assert await count_appointments(db_session) == 0

    async def test_empty_specialities_are_rejected(self, upsert, db_session) -> None:
        with pytest.raises(ValidationException):
            await upsert()
        assert await count_appointments(db_session) == 0

    async def test_incomplete_booking_is_rejected(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        with pytest.raises(ValidationException) as exc_info:
            await upsert(
                (ref["cardiology"], ref["dr_heart"], at(9)),
                (ref["dermatology"], None, at(10)),
            )

        assert exc_info.value.context["booking_index"] == 1
        assert await count_appointments(db_session) == 0

    async def test_unknown_hospital_is_not_found(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        with pytest.raises(NotFoundException):
            await upsert((ref["cardiology"], ref["dr_heart"], at(9)), hospital_id=uuid4())
        assert await count_appointments(db_session) == 0

    async def test_unknown_explicit_appointment_is_not_found(self, upsert, reference_data) -> None:
        ref = reference_data
        with pytest.raises(NotFoundException):
            await upsert((ref["cardiology"], ref["dr_heart"], at(9)), appointment_id=uuid4())


class TestCreate:
    async def test_creates_appointment_with_bookings(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            (ref["dermatology"], ref["dr_skin"], at(11)),
        )

        assert result.created is True
        assert result.merged is False
        assert result.merged_count == 0
        appointment = result.appointment
        assert appointment.status == "scheduled"
        assert appointment.scheduled_date == at(9)
        assert appointment.speciality == "Cardiology, Dermatology"
        assert [b.speciality_name for b in result.specialities] == ["Cardiology", "Dermatology"]
        assert [b.doctor_name for b in result.specialities] == ["Dr. Heart", "Dr. Skin"]
        assert await count_appointments(db_session) == 1

    async def test_scheduled_date_defaults_to_first_booking(self, upsert, reference_data) -> None:
        ref = reference_data
        result = await upsert(
            (ref["dermatology"], ref["dr_skin"], at(15)),
            (ref["cardiology"], ref["dr_heart"], at(8)),
        )
        assert result.appointment.scheduled_date == at(15)

    async def test_explicit_scheduled_date_wins(self, upsert, reference_data) -> None:
        ref = reference_data
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            scheduled_date=at(7, 30),
        )
        assert result.appointment.scheduled_date == at(7, 30)

    async def test_repeated_pair_in_input_keeps_last_time(self, upsert, reference_data) -> None:
        ref = reference_data
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            (ref["cardiology"], ref["dr_heart"], at(13)),
        )

        assert len(result.specialities) == 1
        assert result.specialities[0].scheduled_time == at(13)

    async def test_optional_fields_are_stored(self, upsert, reference_data) -> None:
        ref = reference_data
        follow_up = uuid4()
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            notes="Bring previous reports",
            driver_needed=True,
            driver_id=ref["driver"],
            is_new_patient_at_creation=True,
            created_from_follow_up_task_id=follow_up,
        )

        appointment = result.appointment
        assert appointment.notes == "Bring previous reports"
        assert appointment.driver_needed is True
        assert appointment.driver_id == ref["driver"]
        assert appointment.is_new_patient_at_creation is True
        assert appointment.is_not_booked is False
        assert appointment.created_from_follow_up_task_id == follow_up

    async def test_unknown_driver_is_dropped(self, upsert, reference_data) -> None:
        ref = reference_data
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            driver_needed=True,
            driver_id=uuid4(),
        )
        assert result.appointment.driver_needed is True
        assert result.appointment.driver_id is None

    async def test_blank_driver_is_treated_as_absent(self, upsert, reference_data) -> None:
        ref = reference_data
        result = await upsert((ref["cardiology"], ref["dr_heart"], at(9)), driver_id="  ")
        assert result.appointment.driver_id is None


class TestMerge:
    async def test_same_day_same_hospital_reuses_appointment(
        self, upsert, reference_data, db_session
    ) -> None:
        ref = reference_data
        first = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        second = await upsert((ref["dermatology"], ref["dr_skin"], at(16)))

        assert second.created is False
        assert second.merged is True
        assert second.merged_count == 1
        assert second.skipped_count == 0
        assert second.appointment.id == first.appointment.id
        assert second.appointment.speciality == "Cardiology, Dermatology"
        assert len(second.specialities) == 2
        assert await count_appointments(db_session) == 1

    async def test_booking_times_do_not_affect_matching(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        await upsert((ref["cardiology"], ref["dr_heart"], at(0, 5)))
        await upsert((ref["dermatology"], ref["dr_skin"], at(23, 55)))
        assert await count_appointments(db_session) == 1

    async def test_other_hospital_gets_its_own_appointment(
        self, upsert, reference_data, db_session
    ) -> None:
        ref = reference_data
        first = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        second = await upsert(
            (ref["dermatology"], ref["dr_skin"], at(10)),
            hospital_id=ref["other_hospital"],
        )

        assert second.created is True
        assert second.appointment.id != first.appointment.id
        assert await count_appointments(db_session) == 2

    async def test_next_day_gets_its_own_appointment(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        await upsert((ref["cardiology"], ref["dr_heart"], at(23, 59)))
        result = await upsert(
            (ref["dermatology"], ref["dr_skin"], at(0, 0, day=DAY + timedelta(days=1)))
        )

        assert result.created is True
        assert await count_appointments(db_session) == 2

    async def test_closed_appointment_is_not_reused(
        self, upsert, make_appointment, reference_data, db_session
    ) -> None:
        ref = reference_data
        cancelled = await make_appointment(
            at(9),
            bookings=[(ref["cardiology"], ref["dr_heart"], at(9))],
            speciality="Cardiology",
            status="cancelled",
        )
        result = await upsert((ref["dermatology"], ref["dr_skin"], at(10)))

        assert result.created is True
        assert result.appointment.id != cancelled

    async def test_same_pair_updates_time_without_new_row(
        self, upsert, reference_data, db_session
    ) -> None:
        ref = reference_data
        await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        result = await upsert((ref["cardiology"], ref["dr_heart"], at(14)))

        assert result.merged is True
        assert result.merged_count == 0
        assert result.skipped_count == 1
        assert len(result.specialities) == 1
        assert result.specialities[0].scheduled_time == at(14)
        assert await count_bookings(db_session) == 1

    async def test_resubmitted_slot_after_merge_is_not_duplicated(
        self, upsert, make_appointment, reference_data, db_session
    ) -> None:
        ref = reference_data
        primary = await make_appointment(
            at(10), bookings=[(ref["cardiology"], ref["dr_heart"], at(10))], created_at=at(1)
        )
        await make_appointment(
            at(14), bookings=[(ref["cardiology"], ref["dr_heart"], at(14))], created_at=at(2)
        )
        merged = await DeduplicationService(db_session).merge_duplicates_for_patient_day(
            ref["patient"], at(10), ref["hospital"]
        )
        assert merged is not None
        assert merged.total_specialties_after_merge == 2

        result = await upsert((ref["cardiology"], ref["dr_heart"], at(14)))

        assert result.appointment.id == primary
        assert result.merged_count == 0
        assert result.skipped_count == 1
        slots = Counter(
            (b.speciality_id, b.doctor_id, b.scheduled_time) for b in result.specialities
        )
        assert slots == Counter(
            {
                (ref["cardiology"], ref["dr_heart"], at(10)): 1,
                (ref["cardiology"], ref["dr_heart"], at(14)): 1,
            }
        )
        assert await count_bookings(db_session) == 2

    async def test_same_minute_on_second_row_leaves_rows_alone(
        self, upsert, make_appointment, reference_data, db_session
    ) -> None:
        ref = reference_data
        await make_appointment(
            at(10),
            bookings=[
                (ref["cardiology"], ref["dr_heart"], at(10)),
                (ref["cardiology"], ref["dr_heart"], at(14)),
            ],
        )

        result = await upsert((ref["cardiology"], ref["dr_heart"], at(14).replace(second=20)))

        assert sorted(b.scheduled_time for b in result.specialities) == [at(10), at(14)]
        assert await count_bookings(db_session) == 2

    async def test_speciality_string_has_no_repeats(self, upsert, reference_data) -> None:
        ref = reference_data
        await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        result = await upsert((ref["cardiology"], ref["dr_brain"], at(10)))

        assert len(result.specialities) == 2
        assert result.appointment.speciality == "Cardiology"

    async def test_legacy_speciality_names_are_kept(
        self, upsert, make_appointment, reference_data
    ) -> None:
        ref = reference_data
        legacy = await make_appointment(at(8), speciality="Orthopedics")
        result = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))

        assert result.appointment.id == legacy
        assert result.appointment.speciality == "Orthopedics, Cardiology"

    async def test_oldest_open_appointment_is_the_target(
        self, upsert, make_appointment, reference_data
    ) -> None:
        ref = reference_data
        newer = await make_appointment(at(9), created_at=at(6))
        older = await make_appointment(at(12), created_at=at(5))
        result = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))

        assert result.appointment.id == older
        assert result.appointment.id != newer

    async def test_unsupplied_fields_are_left_alone(self, upsert, reference_data) -> None:
        ref = reference_data
        await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            notes="Fasting required",
            driver_needed=True,
            driver_id=ref["driver"],
        )
        result = await upsert((ref["dermatology"], ref["dr_skin"], at(10)))

        assert result.appointment.notes == "Fasting required"
        assert result.appointment.driver_needed is True
        assert result.appointment.driver_id == ref["driver"]

    async def test_supplied_fields_overwrite(self, upsert, reference_data) -> None:
        ref = reference_data
        await upsert((ref["cardiology"], ref["dr_heart"], at(9)), notes="Old note")
        result = await upsert(
            (ref["dermatology"], ref["dr_skin"], at(10)),
            notes=None,
            is_not_booked=True,
        )

        assert result.appointment.notes is None
        assert result.appointment.is_not_booked is True


class TestReplace:
    async def test_replace_drops_previous_bookings(self, upsert, reference_data, db_session) -> None:
        ref = reference_data
        await upsert(
            (ref["cardiology"], ref["dr_heart"], at(9)),
            (ref["dermatology"], ref["dr_skin"], at(10)),
        )
        result = await upsert(
            (ref["neurology"], ref["dr_brain"], at(12)),
            replace_specialities=True,
        )

        assert result.created is False
        assert result.merged is False
        assert result.merged_count == 1
        assert [b.speciality_name for b in result.specialities] == ["Neurology"]
        assert result.appointment.speciality == "Neurology"
        assert await count_bookings(db_session) == 1


class TestExplicitUpdate:
    async def test_explicit_id_updates_and_moves_hospital(
        self, upsert, reference_data, db_session
    ) -> None:
        ref = reference_data
        created = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        result = await upsert(
            (ref["dermatology"], ref["dr_skin"], at(10)),
            appointment_id=created.appointment.id,
            hospital_id=ref["other_hospital"],
        )

        assert result.created is False
        assert result.appointment.id == created.appointment.id
        assert result.appointment.hospital_id == ref["other_hospital"]
        assert len(result.specialities) == 2
        assert await count_appointments(db_session) == 1

    async def test_explicit_id_can_move_to_another_day(self, upsert, reference_data) -> None:
        ref = reference_data
        created = await upsert((ref["cardiology"], ref["dr_heart"], at(9)))
        next_day = at(9, day=DAY + timedelta(days=1))
        result = await upsert(
            (ref["cardiology"], ref["dr_heart"], next_day),
            appointment_id=created.appointment.id,
        )

        assert result.appointment.scheduled_date == next_day
        assert result.specialities[0].scheduled_time == next_day


def test_dedupe_bookings_keeps_last_occurrence() -> None:
    speciality, doctor, other_doctor = uuid4(), uuid4(), uuid4()
    bookings = [
        AppointmentSpecialityInput(speciality_id=speciality, doctor_id=doctor, scheduled_time=at(9)),
        AppointmentSpecialityInput(speciality_id=speciality, doctor_id=other_doctor, scheduled_time=at(10)),
        AppointmentSpecialityInput(speciality_id=speciality, doctor_id=doctor, scheduled_time=at(11)),
    ]

    deduped = dedupe_bookings(bookings)

    assert [(b.doctor_id, b.scheduled_time) for b in deduped] == [(doctor, at(11)), (other_doctor, at(10))]
