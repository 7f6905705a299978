"""Tests for duplicate group discovery and bulk reconciliation."""

from datetime import timedelta
from unittest.mock import patch
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import appointments, patients
from app.schemas.consolidation import UNASSIGNED_COORDINATOR, GroupKey
from app.services.deduplication_service import DeduplicationService
from app.services.task_service import TaskService
from tests.conftest import DAY, at


@pytest.fixture
def service(db_session: AsyncSession) -> DeduplicationService:
    return DeduplicationService(db_session)


async def remaining_ids(db: AsyncSession) -> set:
    result = await db.execute(select(appointments.c.id))
    return set(result.scalars().all())


@pytest_asyncio.fixture
async def mixed_day(make_appointment, make_task, reference_data) -> dict:
    """Four open appointments on one day: two unassigned, two for one coordinator."""
    ref = reference_data
    unassigned_first = await make_appointment(
        at(8), bookings=[(ref["cardiology"], ref["dr_heart"], at(8))], created_at=at(1)
    )
    unassigned_second = await make_appointment(
        at(9), bookings=[(ref["neurology"], ref["dr_brain"], at(9))], created_at=at(2)
    )
    assigned_first = await make_appointment(
        at(10), bookings=[(ref["dermatology"], ref["dr_skin"], at(10))], created_at=at(3)
    )
    assigned_second = await make_appointment(
        at(11), bookings=[(ref["cardiology"], ref["dr_heart"], at(11))], created_at=at(4)
    )
    await make_task(assigned_first, ref["coordinator"], created_at=at(3))
    await make_task(assigned_second, ref["coordinator"], created_at=at(4))
    return {
        "unassigned": [unassigned_first, unassigned_second],
        "assigned": [assigned_first, assigned_second],
    }


class TestFindDuplicateGroups:
    async def test_groups_by_coordinator(self, service, mixed_day, reference_data) -> None:
        groups = await service.find_duplicate_groups()

        by_coordinator = {group.coordinator_id: group for group in groups}
        assert set(by_coordinator) == {None, reference_data["coordinator"]}
        assert by_coordinator[None].appointment_ids == mixed_day["unassigned"]
        assert by_coordinator[reference_data["coordinator"]].appointment_ids == mixed_day["assigned"]
        assert all(group.appointment_count == 2 for group in groups)

    async def test_singletons_are_not_groups(self, service, make_appointment, reference_data) -> None:
        await make_appointment(at(9), created_at=at(1))
        await make_appointment(at(9, day=DAY + timedelta(days=1)), created_at=at(2))
        await make_appointment(at(9), created_at=at(3), hospital_id=reference_data["other_hospital"])

        assert await service.find_duplicate_groups() == []

    async def test_patients_are_kept_apart(
        self, service, make_appointment, reference_data, db_session
    ) -> None:
        other_patient = uuid4()
        await db_session.execute(insert(patients).values(id=other_patient, name_english="Omar"))
        await db_session.commit()

        await make_appointment(at(9), created_at=at(1))
        await make_appointment(at(10), created_at=at(2), patient_id=other_patient)

        assert await service.find_duplicate_groups() == []

    async def test_lookup_failure_propagates(self, service, mixed_day) -> None:
        with patch.object(
            TaskService,
            "get_appointment_coordinators",
            side_effect=RuntimeError("tasks unavailable"),
        ):
            with pytest.raises(RuntimeError):
                await service.find_duplicate_groups()


class TestReconcileAllDuplicates:
    async def test_merges_every_group(self, service, mixed_day, db_session) -> None:
        report = await service.reconcile_all_duplicates()

        assert report.groups_processed == 2
        assert report.groups_merged == 2
        assert report.appointments_merged == 2
        assert report.tasks_merged == 2
        assert all(outcome.error is None for outcome in report.results)
        assert await remaining_ids(db_session) == {
            mixed_day["unassigned"][0],
            mixed_day["assigned"][0],
        }

    async def test_second_pass_finds_nothing(self, service, mixed_day, db_session) -> None:
        await service.reconcile_all_duplicates()
        after_first = await remaining_ids(db_session)

        report = await service.reconcile_all_duplicates()

        assert report.groups_processed == 0
        assert report.groups_merged == 0
        assert report.results == []
        assert await remaining_ids(db_session) == after_first

    async def test_failing_group_does_not_stop_the_rest(
        self, service, mixed_day, reference_data, db_session
    ) -> None:
        real_merge = DeduplicationService._merge_duplicates

        async def flaky(self, patient_id, scheduled_date, hospital_id, coordinator_id):
            if coordinator_id == reference_data["coordinator"]:
                raise RuntimeError("lock timeout")
            return await real_merge(self, patient_id, scheduled_date, hospital_id, coordinator_id)

        with patch.object(DeduplicationService, "_merge_duplicates", flaky):
            report = await service.reconcile_all_duplicates()

        assert report.groups_processed == 2
        assert report.groups_merged == 1
        assert report.appointments_merged == 1

        failed = [outcome for outcome in report.results if outcome.error]
        assert len(failed) == 1
        assert failed[0].coordinator_id == reference_data["coordinator"]
        assert failed[0].merged is False
        assert "lock timeout" in failed[0].error

        assert await remaining_ids(db_session) == {
            mixed_day["unassigned"][0],
            *mixed_day["assigned"],
        }

    async def test_group_finder_failure_fails_the_call(self, service, mixed_day) -> None:
        with patch.object(
            DeduplicationService,
            "find_duplicate_groups",
            side_effect=RuntimeError("store down"),
        ):
            with pytest.raises(RuntimeError):
                await service.reconcile_all_duplicates()


def test_group_label_uses_placeholder_for_unassigned() -> None:
    key = GroupKey(
        patient_id=UUID(int=1),
        day=DAY.date(),
        hospital_id=UUID(int=2),
        coordinator_id=None,
    )
    assert key.label.endswith(f"-{UNASSIGNED_COORDINATOR}")
    assert DAY.date().isoformat() in key.label
