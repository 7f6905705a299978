"""Appointment tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Table,
    Text,
    Uuid,
)

from app.models.base import UTCDateTime, metadata, utcnow

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column("patient_id", Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
    Column("hospital_id", Uuid, ForeignKey("hospitals.id"), nullable=False),
    Column("sales_person_id", Uuid, ForeignKey("employees.id"), nullable=False),
    Column("created_by_id", Uuid, ForeignKey("employees.id"), nullable=False),
    # Appointment details
    Column("scheduled_date", UTCDateTime, nullable=False),
    Column("status", Text, nullable=False, default="scheduled"),
    # Denormalized comma-joined specialty names (legacy rows may only have this)
    Column("speciality", Text, nullable=True),
    # Transport
    Column("driver_needed", Boolean, nullable=False, default=False),
    Column("driver_id", Uuid, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True),
    # Metadata
    Column("notes", Text, nullable=True),
    Column("is_new_patient_at_creation", Boolean, nullable=False, default=False),
    Column("is_not_booked", Boolean, nullable=False, default=False),
    Column("created_from_follow_up_task_id", Uuid, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'assigned', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    Index("idx_appointments_patient_hospital_day", "patient_id", "hospital_id", "scheduled_date"),
    Index("idx_appointments_status", "status"),
)

# One booked doctor/specialty slot, owned by exactly one appointment
appointment_specialities = Table(
    "appointment_specialities",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("speciality_id", Uuid, ForeignKey("specialities.id"), nullable=False),
    Column("doctor_id", Uuid, ForeignKey("doctors.id"), nullable=False),
    Column("scheduled_time", UTCDateTime, nullable=False),
    Column("status", Text, nullable=False, default="scheduled"),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Index("idx_appointment_specialities_appointment_id", "appointment_id"),
)
