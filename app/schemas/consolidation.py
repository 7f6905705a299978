"""Schemas for duplicate detection and reconciliation."""

from datetime import date, datetime
from typing import NamedTuple
from uuid import UUID

from pydantic import BaseModel, Field

# Printable stand-in for "no coordinating task" in group labels
UNASSIGNED_COORDINATOR = "scheduled"


class GroupKey(NamedTuple):
    """Composite duplicate key; ``coordinator_id`` is None when no task exists."""

    patient_id: UUID
    day: date
    hospital_id: UUID
    coordinator_id: UUID | None

    @property
    def label(self) -> str:
        coordinator = self.coordinator_id or UNASSIGNED_COORDINATOR
        return f"{self.patient_id}-{self.day.isoformat()}-{self.hospital_id}-{coordinator}"


class MergeDuplicatesRequest(BaseModel):
    """Schema for merging duplicates of one patient, day and hospital."""

    patient_id: UUID
    scheduled_date: datetime
    hospital_id: UUID
    coordinator_id: UUID | None = None


class MergeResult(BaseModel):
    """Outcome of a pairwise merge that absorbed at least one duplicate."""

    merged: bool = True
    primary_appointment_id: UUID
    merged_count: int
    deleted_appointment_ids: list[UUID]
    merged_specialty_count: int
    deleted_task_count: int = 0
    total_specialties_after_merge: int = 0
    speciality: str = ""


class DuplicateGroup(BaseModel):
    """Two or more open appointments sharing patient, day, hospital and coordinator."""

    patient_id: UUID
    scheduled_date: datetime
    hospital_id: UUID
    coordinator_id: UUID | None = None
    appointment_ids: list[UUID]

    @property
    def appointment_count(self) -> int:
        return len(self.appointment_ids)


class GroupMergeOutcome(BaseModel):
    """Per-group line of a reconciliation report."""

    patient_id: UUID
    scheduled_date: datetime
    hospital_id: UUID
    coordinator_id: UUID | None = None
    merged: bool = False
    merged_count: int = 0
    primary_appointment_id: UUID | None = None
    deleted_appointment_ids: list[UUID] = Field(default_factory=list)
    error: str | None = None


class ReconciliationReport(BaseModel):
    """Summary of a full duplicate reconciliation pass."""

    groups_processed: int = 0
    groups_merged: int = 0
    appointments_merged: int = 0
    tasks_merged: int = 0
    results: list[GroupMergeOutcome] = Field(default_factory=list)
