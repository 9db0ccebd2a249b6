"""
db/base.py

Declarative base for the dictionary tables plus the timestamp columns they
share. Dictionaries track both creation and last status change; variables
are rewritten in place by upserts and only keep their creation time.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for dictionaries, variables and remote instances.

    Row payloads (``dict[str, Any]``) are stored as JSONB and identifiers as
    native PostgreSQL UUIDs unless a column says otherwise.
    """

    type_annotation_map: dict[Any, Any] = {
        dict[str, Any]: JSONB,
        uuid.UUID: UUID(as_uuid=True),
    }


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class TimestampMixin(CreatedAtMixin):
    """
    Adds ``updated_at``, refreshed on every UPDATE so finalizing a
    dictionary records when its status last changed.
    """

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )
