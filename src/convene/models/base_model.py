"""
Column factories shared by the scheduling models.

Primary keys are generated client-side (uuid4) so rows can be created the same
way on PostgreSQL and on the SQLite databases used in tests.
"""
import uuid

from sqlalchemy import Column, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime


def uuid_pk():
    return Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)


def uuid_fk(table: str, nullable: bool = False, ondelete: str = "CASCADE"):
    """Indexed UUID foreign key to ``{table}.id``."""
    return Column(
        UUID(as_uuid=True),
        ForeignKey(f"{table}.id", ondelete=ondelete),
        nullable=nullable,
        index=True,
    )


def aware_datetime(nullable: bool = True):
    return Column(DateTime(timezone=True), nullable=nullable)


def timestamp_created():
    return Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
