"""
db/models/dictionary_variable.py

One catalog entry of a metadata dictionary.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin

VARIABLE_UPSERT_CONSTRAINT = "uq_dictionary_variables_dictionary_uid"


class VariableStatus:
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


class DictionaryVariable(Base, CreatedAtMixin):
    """
    ``metadata_json`` keeps the mapped SQL view row verbatim for exports.

    The unique constraint on ``(dictionary_id, variable_uid)`` drives upsert
    semantics: reprocessing a dictionary updates rows in place.
    """

    __tablename__ = "dictionary_variables"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    dictionary_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("metadata_dictionaries.id", ondelete="CASCADE"),
        nullable=False,
    )
    variable_uid: Mapped[str] = mapped_column(String(11), nullable=False)
    variable_name: Mapped[str] = mapped_column(String(500), nullable=False)
    variable_type: Mapped[str] = mapped_column(String(50), nullable=False)
    quality_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_time: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Per-row mapping time in milliseconds",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=VariableStatus.PENDING)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    analytics_api: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_api: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_values_api: Mapped[str | None] = mapped_column(Text, nullable=True)
    export_api: Mapped[str | None] = mapped_column(Text, nullable=True)
    web_ui_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    __table_args__ = (
        UniqueConstraint("dictionary_id", "variable_uid", name=VARIABLE_UPSERT_CONSTRAINT),
        Index("ix_dictionary_variables_dictionary_id", "dictionary_id"),
        Index("ix_dictionary_variables_status", "status"),
    )
