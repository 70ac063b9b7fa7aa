"""dynamic_document_engine

Creates the Dynamic Document Engine tables:
  - dynamic_document_types      — runtime-defined document schemas
  - dynamic_field_definitions   — header / line-item fields per type
  - dynamic_documents           — instances of a type
  - dynamic_document_lines      — ordered line rows per instance
  - dynamic_document_history    — append-only status log per instance
  - document_number_sequences   — per-namespace, per-year counters
  - audit_logs                  — append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7d3e9a1c5b20
Revises:
Create Date: 2026-10-19 09:12:44.318207
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7d3e9a1c5b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── DocumentType ──────────────────────────────────────────────────────
    if "dynamic_document_types" not in existing:
        op.create_table(
            "dynamic_document_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("name_ar", sa.String(length=200), nullable=True, comment="Localized display name"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("icon", sa.String(length=50), nullable=True),
            sa.Column("category", sa.String(length=50), nullable=False, server_default="custom"),
            sa.Column(
                "status_flow", sa.JSON(), nullable=False,
                comment="{initialStatus, statuses: [{key,label,color}], transitions: {status: [status]}}",
            ),
            sa.Column("approval_config", sa.JSON(), nullable=True, comment="Opaque; consumed by approval collaborator"),
            sa.Column("permission_config", sa.JSON(), nullable=True, comment="{createRoles, viewRoles, approveRoles}"),
            sa.Column("settings", sa.JSON(), nullable=False),
            sa.Column("visible_to_roles", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_dynamic_document_types_code", "dynamic_document_types", ["code"], unique=True)
        op.create_index("ix_ddt_active_category", "dynamic_document_types", ["is_active", "category"])

    # ── FieldDefinition ───────────────────────────────────────────────────
    if "dynamic_field_definitions" not in existing:
        op.create_table(
            "dynamic_field_definitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_type_id", sa.Integer(), nullable=False),
            sa.Column("field_key", sa.String(length=100), nullable=False),
            sa.Column("label", sa.String(length=200), nullable=False),
            sa.Column("field_type", sa.String(length=30), nullable=False, server_default="text"),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("show_in_grid", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("show_in_form", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("section_name", sa.String(length=100), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("validation_rules", sa.JSON(), nullable=True),
            sa.Column("default_value", sa.String(length=500), nullable=True),
            sa.Column("col_span", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("is_line_item", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_read_only", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("conditional_display", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["document_type_id"], ["dynamic_document_types.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_type_id", "field_key", name="uq_dfd_type_key"),
        )
        op.create_index(
            "ix_dynamic_field_definitions_document_type_id",
            "dynamic_field_definitions", ["document_type_id"],
        )
        op.create_index("ix_dfd_type_sort", "dynamic_field_definitions", ["document_type_id", "sort_order"])

    # ── DynamicDocument ───────────────────────────────────────────────────
    if "dynamic_documents" not in existing:
        op.create_table(
            "dynamic_documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_type_id", sa.Integer(), nullable=False),
            sa.Column("document_number", sa.String(length=60), nullable=False),
            sa.Column("status", sa.String(length=50), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("project_id", sa.String(length=64), nullable=True),
            sa.Column("warehouse_id", sa.String(length=64), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("updated_by", sa.String(length=150), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["document_type_id"], ["dynamic_document_types.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_type_id", "document_number", name="uq_dd_type_number"),
        )
        op.create_index("ix_dynamic_documents_document_number", "dynamic_documents", ["document_number"])
        op.create_index("ix_dynamic_documents_document_type_id", "dynamic_documents", ["document_type_id"])
        op.create_index("ix_dynamic_documents_project_id", "dynamic_documents", ["project_id"])
        op.create_index("ix_dynamic_documents_warehouse_id", "dynamic_documents", ["warehouse_id"])
        op.create_index("ix_dd_type_status", "dynamic_documents", ["document_type_id", "status"])

    # ── DynamicDocumentLine ───────────────────────────────────────────────
    if "dynamic_document_lines" not in existing:
        op.create_table(
            "dynamic_document_lines",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("line_number", sa.Integer(), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["document_id"], ["dynamic_documents.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_id", "line_number", name="uq_ddl_document_line"),
        )
        op.create_index("ix_dynamic_document_lines_document_id", "dynamic_document_lines", ["document_id"])

    # ── DynamicDocumentHistory ────────────────────────────────────────────
    if "dynamic_document_history" not in existing:
        op.create_table(
            "dynamic_document_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=50), nullable=True),
            sa.Column("to_status", sa.String(length=50), nullable=False),
            sa.Column("performed_by", sa.String(length=150), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["document_id"], ["dynamic_documents.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_dynamic_document_history_document_id", "dynamic_document_history", ["document_id"])

    # ── DocumentNumberSequence ────────────────────────────────────────────
    if "document_number_sequences" not in existing:
        op.create_table(
            "document_number_sequences",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("namespace", sa.String(length=80), nullable=False),
            sa.Column("period", sa.Integer(), nullable=False, comment="Calendar year"),
            sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("namespace", "period", name="uq_dns_namespace_period"),
        )

    # ── AuditLog ──────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=40), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("project_id", sa.String(length=64), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_project_id", "audit_logs", ["project_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # Children first; FKs point at dynamic_documents / dynamic_document_types.
    for table in (
        "audit_logs",
        "document_number_sequences",
        "dynamic_document_history",
        "dynamic_document_lines",
        "dynamic_documents",
        "dynamic_field_definitions",
        "dynamic_document_types",
    ):
        if table in existing:
            op.drop_table(table)
