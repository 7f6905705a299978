"""Create reference, appointment and task tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=sa.text("NOW()"),
        nullable=False,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Reference tables
    op.create_table(
        "patients",
        _id_column(),
        sa.Column("name_english", sa.Text(), nullable=False),
        sa.Column("national_id", sa.Text(), nullable=True),
        sa.Column("phone_number", sa.Text(), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "hospitals",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "specialities",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("name_arabic", sa.Text(), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "doctors",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "employees",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("employee_id", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # Appointments
    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("hospital_id", postgresql.UUID(), nullable=False),
        sa.Column("sales_person_id", postgresql.UUID(), nullable=False),
        sa.Column("created_by_id", postgresql.UUID(), nullable=False),
        sa.Column("scheduled_date", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        sa.Column("speciality", sa.Text(), nullable=True),
        sa.Column("driver_needed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("driver_id", postgresql.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "is_new_patient_at_creation", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("is_not_booked", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_from_follow_up_task_id", postgresql.UUID(), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'assigned', 'completed', 'cancelled', 'no_show')",
            name="appointments_status_check",
        ),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["hospital_id"], ["hospitals.id"]),
        sa.ForeignKeyConstraint(["sales_person_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["driver_id"], ["employees.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_appointments_patient_hospital_day",
        "appointments",
        ["patient_id", "hospital_id", "scheduled_date"],
    )
    op.create_index("idx_appointments_status", "appointments", ["status"])

    op.create_table(
        "appointment_specialities",
        _id_column(),
        sa.Column("appointment_id", postgresql.UUID(), nullable=False),
        sa.Column("speciality_id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("scheduled_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["speciality_id"], ["specialities.id"]),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_appointment_specialities_appointment_id",
        "appointment_specialities",
        ["appointment_id"],
    )

    # Coordinator tasks, loosely linked to appointments
    op.create_table(
        "tasks",
        _id_column(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("task_type", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("assigned_to_id", postgresql.UUID(), nullable=True),
        sa.Column("assigned_by_id", postgresql.UUID(), nullable=True),
        sa.Column("related_entity_type", sa.Text(), nullable=True),
        sa.Column("related_entity_id", postgresql.UUID(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_tasks_related_entity", "tasks", ["related_entity_type", "related_entity_id"]
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_tasks_related_entity", table_name="tasks")
    op.drop_table("tasks")

    op.drop_index(
        "idx_appointment_specialities_appointment_id", table_name="appointment_specialities"
    )
    op.drop_table("appointment_specialities")

    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_patient_hospital_day", table_name="appointments")
    op.drop_table("appointments")

    op.drop_table("employees")
    op.drop_table("doctors")
    op.drop_table("specialities")
    op.drop_table("hospitals")
    op.drop_table("patients")
