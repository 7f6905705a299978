"""Reference tables the appointment engine reads by id."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, Table, Text, Uuid

from app.models.base import UTCDateTime, metadata, utcnow

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name_english", Text, nullable=False),
    Column("national_id", Text, nullable=True),
    Column("phone_number", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)

hospitals = Table(
    "hospitals",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)

specialities = Table(
    "specialities",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("name_arabic", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)

# Sales people, coordinators, drivers and data-entry staff
employees = Table(
    "employees",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("employee_id", Text, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)
