"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Appointments still open for merging
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.ASSIGNED.value)


class AppointmentSpecialityInput(BaseModel):
    """One requested doctor/specialty booking.

    Fields are optional here so that missing values surface as a domain
    validation error from the service rather than a request parsing error.
    """

    speciality_id: UUID | None = None
    doctor_id: UUID | None = None
    scheduled_time: datetime | None = None


class AppointmentUpsert(BaseModel):
    """Schema for creating an appointment or merging into an existing one.

    Optional appointment fields are only written when explicitly supplied.
    """

    appointment_id: UUID | None = Field(
        None,
        description="Update this appointment instead of searching by patient, hospital and day",
    )
    patient_id: UUID | None = None
    hospital_id: UUID | None = None
    sales_person_id: UUID | None = None
    created_by_id: UUID | None = None
    scheduled_date: datetime | None = Field(
        None,
        description="Defaults to the first booking's scheduled time",
    )
    appointment_specialities: list[AppointmentSpecialityInput] = Field(default_factory=list)
    driver_needed: bool | None = None
    driver_id: UUID | None = None
    notes: str | None = Field(None, max_length=2000)
    is_new_patient_at_creation: bool | None = None
    is_not_booked: bool | None = None
    created_from_follow_up_task_id: UUID | None = None
    replace_specialities: bool = Field(
        False,
        description="Replace all existing bookings instead of merging into them",
    )

    @field_validator("driver_id", "created_from_follow_up_task_id", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat blank identifiers as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class AppointmentSpecialityResponse(BaseModel):
    """Schema for a booked specialty slot."""

    id: UUID
    appointment_id: UUID
    speciality_id: UUID
    doctor_id: UUID
    scheduled_time: datetime
    status: str
    speciality_name: str | None = None
    doctor_name: str | None = None

    model_config = {"from_attributes": True}


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    hospital_id: UUID
    sales_person_id: UUID
    created_by_id: UUID
    scheduled_date: datetime
    status: AppointmentStatus
    speciality: str | None = None
    driver_needed: bool
    driver_id: UUID | None = None
    notes: str | None = None
    is_new_patient_at_creation: bool
    is_not_booked: bool
    created_from_follow_up_task_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    appointment_specialities: list[AppointmentSpecialityResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class AppointmentUpsertResult(BaseModel):
    """Outcome of an upsert: the final appointment and what happened to the bookings."""

    appointment: AppointmentResponse
    created: bool = False
    merged: bool
    merged_count: int = 0
    skipped_count: int = 0

    @property
    def specialities(self) -> list[AppointmentSpecialityResponse]:
        """Final specialty bookings of the appointment."""
        return self.appointment.appointment_specialities
