"""
Mixins for SQLAlchemy models.
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class TimestampMixin:
    """
    Adds created_at / updated_at columns.

    - created_at: set by the database when the row is inserted
    - updated_at: refreshed on every UPDATE, including the conditional
      UPDATEs the repositories issue
    """

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="UTC timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        comment="UTC timestamp when record was last updated"
    )
