"""Coordinator task table.

Tasks reference other entities loosely through
(``related_entity_type``, ``related_entity_id``) with no foreign key.
"""

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, Table, Text, Uuid

from app.models.base import JSONType, UTCDateTime, metadata, utcnow

tasks = Table(
    "tasks",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=True),
    Column("task_type", Text, nullable=True),
    Column("status", Text, nullable=False, default="pending"),
    Column("assigned_to_id", Uuid, ForeignKey("employees.id"), nullable=True),
    Column("assigned_by_id", Uuid, ForeignKey("employees.id"), nullable=True),
    Column("related_entity_type", Text, nullable=True),
    Column("related_entity_id", Uuid, nullable=True),
    Column("metadata", JSONType, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Index("idx_tasks_related_entity", "related_entity_type", "related_entity_id"),
)
