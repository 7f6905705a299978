"""Transaction-scoped advisory locks on the (patient, hospital, day) key."""

import hashlib
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.utils.dates import utc_day

logger = structlog.get_logger(__name__)


def appointment_day_lock_key(patient_id: UUID, hospital_id: UUID, day: datetime) -> int:
    """Signed 64-bit key for ``pg_advisory_xact_lock``."""
    raw = f"appointment:{patient_id}:{hospital_id}:{utc_day(day).isoformat()}".encode()
    digest = hashlib.blake2b(raw, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def lock_appointment_day(
    db: AsyncSession,
    patient_id: UUID,
    hospital_id: UUID,
    day: datetime,
) -> bool:
    """
    Serialize writers for one patient, hospital and UTC day.

    The lock is released when the surrounding transaction ends. Only
    PostgreSQL supports it; on other backends this is a no-op.

    Returns:
        True if a lock was taken
    """
    if not settings.appointment_locks_enabled:
        return False
    if db.get_bind().dialect.name != "postgresql":
        return False

    key = appointment_day_lock_key(patient_id, hospital_id, day)
    await db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
    logger.debug(
        "appointment_day_locked",
        patient_id=str(patient_id),
        hospital_id=str(hospital_id),
        lock_key=key,
    )
    return True
