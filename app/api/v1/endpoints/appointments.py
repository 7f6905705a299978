"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Response, status

from app.dependencies import AppointmentServiceDep, DeduplicationServiceDep
from app.schemas.appointments import AppointmentResponse, AppointmentUpsert, AppointmentUpsertResult
from app.schemas.consolidation import (
    DuplicateGroup,
    MergeDuplicatesRequest,
    MergeResult,
    ReconciliationReport,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentUpsertResult,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create appointment or merge into an existing one",
)
async def upsert_appointment(
    data: AppointmentUpsert,
    response: Response,
    service: AppointmentServiceDep,
) -> AppointmentUpsertResult:
    """
    Create an appointment, or fold the bookings into the patient's open
    appointment at the same hospital on the same day.

    Responds 201 when a new appointment was created and 200 otherwise.
    """
    result = await service.upsert_appointment(data)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result


@router.get(
    "/duplicate-groups",
    response_model=list[DuplicateGroup],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List duplicate appointment groups",
)
async def list_duplicate_groups(service: DeduplicationServiceDep) -> list[DuplicateGroup]:
    """List open appointments sharing patient, day, hospital and coordinator."""
    return await service.find_duplicate_groups()


@router.post(
    "/merge-duplicates",
    response_model=MergeResult | None,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Merge duplicates for one patient, day and hospital",
)
async def merge_duplicates(
    data: MergeDuplicatesRequest,
    service: DeduplicationServiceDep,
) -> MergeResult | None:
    """
    Merge duplicates of a single patient/day/hospital/coordinator.

    Returns null when there was nothing to merge.
    """
    return await service.merge_duplicates_for_patient_day(
        data.patient_id,
        data.scheduled_date,
        data.hospital_id,
        data.coordinator_id,
    )


@router.post(
    "/bulk-merge-duplicates",
    response_model=ReconciliationReport,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Merge every duplicate group",
)
async def bulk_merge_duplicates(service: DeduplicationServiceDep) -> ReconciliationReport:
    """Run a full reconciliation pass over all open appointments."""
    return await service.reconcile_all_duplicates()


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Get a specific appointment with its specialty bookings."""
    return await service.get_appointment(appointment_id)
