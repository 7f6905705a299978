"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.deduplication_service import DeduplicationService


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AppointmentService:
    """Appointment service bound to the request's session."""
    return AppointmentService(db)


def get_deduplication_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DeduplicationService:
    """Deduplication service bound to the request's session."""
    return DeduplicationService(db)


# Type aliases for dependency injection
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
DeduplicationServiceDep = Annotated[DeduplicationService, Depends(get_deduplication_service)]
