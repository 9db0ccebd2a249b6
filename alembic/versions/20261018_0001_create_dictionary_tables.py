"""create dictionary tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "dhis2_instances",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("base_url", sa.String(length=500), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("password_encrypted", sa.Text(), nullable=False, comment="Fernet token"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("base_url"),
    )

    op.create_table(
        "metadata_dictionaries",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("instance_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("instance_name", sa.String(length=255), nullable=False),
        sa.Column(
            "metadata_type",
            sa.String(length=50),
            nullable=False,
            comment="dataElements, indicators, programIndicators, dataElementGroups, indicatorGroups",
        ),
        sa.Column("sql_view_id", sa.String(length=50), nullable=False),
        sa.Column("group_id", sa.String(length=50), nullable=True),
        sa.Column("processing_method", sa.String(length=20), nullable=False),
        sa.Column("period", sa.String(length=50), nullable=True),
        sa.Column("version", sa.String(length=20), nullable=False),
        sa.Column("variables_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("quality_average", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("success_rate", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("processing_time", sa.Integer(), nullable=True, comment="Job wall time in seconds"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Detected columns and column metadata captured at preview time",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "metadata_type IN ('dataElements', 'indicators', 'programIndicators', "
            "'dataElementGroups', 'indicatorGroups')",
            name="ck_metadata_dictionaries_metadata_type",
        ),
        sa.CheckConstraint(
            "status IN ('generating', 'active', 'error')",
            name="ck_metadata_dictionaries_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_metadata_dictionaries_status", "metadata_dictionaries", ["status"], unique=False)
    op.create_index("ix_metadata_dictionaries_instance_id", "metadata_dictionaries", ["instance_id"], unique=False)
    op.create_index("ix_metadata_dictionaries_created_at", "metadata_dictionaries", ["created_at"], unique=False)

    op.create_table(
        "dictionary_variables",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dictionary_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("variable_uid", sa.String(length=11), nullable=False),
        sa.Column("variable_name", sa.String(length=500), nullable=False),
        sa.Column("variable_type", sa.String(length=50), nullable=False),
        sa.Column("quality_score", sa.Integer(), nullable=False),
        sa.Column("processing_time", sa.Integer(), nullable=True, comment="Per-row mapping time in milliseconds"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("analytics_api", sa.Text(), nullable=True),
        sa.Column("metadata_api", sa.Text(), nullable=True),
        sa.Column("data_values_api", sa.Text(), nullable=True),
        sa.Column("export_api", sa.Text(), nullable=True),
        sa.Column("web_ui_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["dictionary_id"], ["metadata_dictionaries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dictionary_id", "variable_uid", name="uq_dictionary_variables_dictionary_uid"),
    )
    op.create_index("ix_dictionary_variables_dictionary_id", "dictionary_variables", ["dictionary_id"], unique=False)
    op.create_index("ix_dictionary_variables_status", "dictionary_variables", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_dictionary_variables_status", table_name="dictionary_variables")
    op.drop_index("ix_dictionary_variables_dictionary_id", table_name="dictionary_variables")
    op.drop_table("dictionary_variables")
    op.drop_index("ix_metadata_dictionaries_created_at", table_name="metadata_dictionaries")
    op.drop_index("ix_metadata_dictionaries_instance_id", table_name="metadata_dictionaries")
    op.drop_index("ix_metadata_dictionaries_status", table_name="metadata_dictionaries")
    op.drop_table("metadata_dictionaries")
    op.drop_table("dhis2_instances")
