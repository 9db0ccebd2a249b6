"""
db/models/remote_instance.py

Registered DHIS2 instance and its stored credentials.
"""

from __future__ import annotations

import uuid

from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class RemoteInstance(Base, TimestampMixin):
    __tablename__ = "dhis2_instances"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_url: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password_encrypted: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Fernet token",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
