"""
db/models/dictionary.py

Metadata dictionary generated from one SQL view execution.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class DictionaryStatus:
    GENERATING = "generating"
    ACTIVE = "active"
    ERROR = "error"


class MetadataType:
    DATA_ELEMENTS = "dataElements"
    INDICATORS = "indicators"
    PROGRAM_INDICATORS = "programIndicators"
    DATA_ELEMENT_GROUPS = "dataElementGroups"
    INDICATOR_GROUPS = "indicatorGroups"

    ALL = frozenset(
        {
            DATA_ELEMENTS,
            INDICATORS,
            PROGRAM_INDICATORS,
            DATA_ELEMENT_GROUPS,
            INDICATOR_GROUPS,
        }
    )


class ProcessingMethod:
    BATCH = "batch"
    INDIVIDUAL = "individual"
    PREVIEW = "preview"


class MetadataDictionary(Base, TimestampMixin):
    __tablename__ = "metadata_dictionaries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instance_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    instance_name: Mapped[str] = mapped_column(String(255), nullable=False)
    metadata_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="dataElements, indicators, programIndicators, dataElementGroups, indicatorGroups",
    )
    sql_view_id: Mapped[str] = mapped_column(String(50), nullable=False)
    group_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    processing_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProcessingMethod.BATCH,
    )
    period: Mapped[str | None] = mapped_column(String(50), nullable=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="v1.0")
    variables_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DictionaryStatus.GENERATING,
    )
    quality_average: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    success_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    processing_time: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Job wall time in seconds",
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Detected columns and column metadata captured at preview time",
    )

    __table_args__ = (
        CheckConstraint(
            "metadata_type IN ('dataElements', 'indicators', 'programIndicators', "
            "'dataElementGroups', 'indicatorGroups')",
            name="ck_metadata_dictionaries_metadata_type",
        ),
        CheckConstraint(
            "status IN ('generating', 'active', 'error')",
            name="ck_metadata_dictionaries_status",
        ),
        Index("ix_metadata_dictionaries_status", "status"),
        Index("ix_metadata_dictionaries_instance_id", "instance_id"),
        Index("ix_metadata_dictionaries_created_at", "created_at"),
    )
