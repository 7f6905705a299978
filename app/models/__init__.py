"""Database models."""

from app.models.appointments import appointment_specialities, appointments
from app.models.base import metadata
from app.models.reference import doctors, employees, hospitals, patients, specialities
from app.models.tasks import tasks

__all__ = [
    "appointment_specialities",
    "appointments",
    "doctors",
    "employees",
    "hospitals",
    "metadata",
    "patients",
    "specialities",
    "tasks",
]
