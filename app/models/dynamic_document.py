"""
Dynamic Document Engine — runtime-defined document types and their instances.

Models:
    - DocumentType: administrator-authored schema (fields + status flow + permissions)
    - FieldDefinition: one data point of a type (header or line-item)
    - DynamicDocument: an instance created under a type
    - DynamicDocumentLine: ordered line rows owned by an instance
    - DynamicDocumentHistory: append-only status-change log owned by an instance

Ownership is arena-style: a type owns its fields, an instance owns its lines
and history. Cascades are performed explicitly by the service layer so that
business rules (e.g. "no delete while instances exist") are checked first.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

FIELD_TYPES = frozenset({
    "text", "textarea",
    "number", "currency",
    "email", "phone", "url",
    "date", "datetime",
    "select", "multiselect",
    "checkbox",
    "lookup_project", "lookup_warehouse", "lookup_supplier",
    "lookup_employee", "lookup_item",
    "file", "signature",
})

CHOICE_FIELD_TYPES = frozenset({"select", "multiselect"})

WILDCARD_ROLE = "*"


# ── Document Type ────────────────────────────────────────────────────────────

class DocumentType(db.Model):
    """
    Runtime-defined business document schema.

    ``code`` is the public identity of the type and never changes after
    creation. ``version`` is bumped on every update of the definition.
    """

    __tablename__ = "dynamic_document_types"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200), nullable=True, comment="Localized display name")
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(50), nullable=True)
    category = db.Column(db.String(50), nullable=False, default="custom")

    status_flow = db.Column(
        JSON, nullable=False,
        comment="{initialStatus, statuses: [{key,label,color}], transitions: {status: [status]}}",
    )
    approval_config = db.Column(JSON, nullable=True, comment="Opaque; consumed by approval collaborator")
    permission_config = db.Column(JSON, nullable=True, comment="{createRoles, viewRoles, approveRoles}")
    settings = db.Column(JSON, nullable=False, default=dict)
    visible_to_roles = db.Column(JSON, nullable=False, default=lambda: ["admin"])

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    fields = db.relationship(
        "FieldDefinition",
        back_populates="document_type",
        order_by="FieldDefinition.sort_order",
        lazy="select",
    )

    __table_args__ = (
        db.Index("ix_ddt_active_category", "is_active", "category"),
    )

    def to_dict(self, include_fields=False):
        result = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "name_ar": self.name_ar,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "status_flow": self.status_flow,
            "approval_config": self.approval_config,
            "permission_config": self.permission_config,
            "settings": self.settings or {},
            "visible_to_roles": self.visible_to_roles or [],
            "is_active": self.is_active,
            "version": self.version,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_fields:
            result["fields"] = [f.to_dict() for f in self.fields]
        return result

    def __repr__(self):
        return f"<DocumentType {self.id}: {self.code} v{self.version}>"


# ── Field Definition ─────────────────────────────────────────────────────────

class FieldDefinition(db.Model):
    """One schema entry of a DocumentType (header field or line-item column)."""

    __tablename__ = "dynamic_field_definitions"

    id = db.Column(db.Integer, primary_key=True)
    document_type_id = db.Column(
        db.Integer,
        db.ForeignKey("dynamic_document_types.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_key = db.Column(db.String(100), nullable=False)
    label = db.Column(db.String(200), nullable=False)
    field_type = db.Column(db.String(30), nullable=False, default="text")
    options = db.Column(JSON, nullable=True, comment='[{"value": "v", "label": "l"}, ...]')
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    show_in_grid = db.Column(db.Boolean, nullable=False, default=False)
    show_in_form = db.Column(db.Boolean, nullable=False, default=True)
    section_name = db.Column(db.String(100), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    validation_rules = db.Column(JSON, nullable=True, comment="min | max | minLength | maxLength | pattern")
    default_value = db.Column(db.String(500), nullable=True)
    col_span = db.Column(db.Integer, nullable=False, default=2)
    is_line_item = db.Column(db.Boolean, nullable=False, default=False)
    is_read_only = db.Column(db.Boolean, nullable=False, default=False)
    conditional_display = db.Column(JSON, nullable=True, comment="{dependsOn, operator: eq|ne|in, value}")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    document_type = db.relationship("DocumentType", back_populates="fields")

    __table_args__ = (
        db.UniqueConstraint("document_type_id", "field_key", name="uq_dfd_type_key"),
        db.Index("ix_dfd_type_sort", "document_type_id", "sort_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_type_id": self.document_type_id,
            "field_key": self.field_key,
            "label": self.label,
            "field_type": self.field_type,
            "options": self.options,
            "is_required": self.is_required,
            "show_in_grid": self.show_in_grid,
            "show_in_form": self.show_in_form,
            "section_name": self.section_name,
            "sort_order": self.sort_order,
            "validation_rules": self.validation_rules,
            "default_value": self.default_value,
            "col_span": self.col_span,
            "is_line_item": self.is_line_item,
            "is_read_only": self.is_read_only,
            "conditional_display": self.conditional_display,
        }

    def __repr__(self):
        return f"<FieldDefinition {self.id}: {self.field_key} ({self.field_type})>"


# ── Dynamic Document ─────────────────────────────────────────────────────────

class DynamicDocument(db.Model):
    """
    One instance of a DocumentType.

    ``version`` is a logical clock bumped on every update or transition.
    It only acts as an optimistic-lock token when the caller passes an
    expected version to the service layer.
    """

    __tablename__ = "dynamic_documents"

    id = db.Column(db.Integer, primary_key=True)
    document_type_id = db.Column(
        db.Integer,
        db.ForeignKey("dynamic_document_types.id"),
        nullable=False,
        index=True,
    )
    document_number = db.Column(db.String(60), nullable=False, index=True)
    status = db.Column(db.String(50), nullable=False)
    data = db.Column(JSON, nullable=False, default=dict)
    project_id = db.Column(db.String(64), nullable=True, index=True)
    warehouse_id = db.Column(db.String(64), nullable=True, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    document_type = db.relationship("DocumentType")
    lines = db.relationship(
        "DynamicDocumentLine",
        back_populates="document",
        order_by="DynamicDocumentLine.line_number",
        cascade="all, delete-orphan",
    )
    history = db.relationship(
        "DynamicDocumentHistory",
        back_populates="document",
        order_by="DynamicDocumentHistory.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("document_type_id", "document_number", name="uq_dd_type_number"),
        db.Index("ix_dd_type_status", "document_type_id", "status"),
    )

    def to_dict(self, include_lines=True, include_history=False):
        result = {
            "id": self.id,
            "document_type_id": self.document_type_id,
            "type_code": self.document_type.code if self.document_type else None,
            "document_number": self.document_number,
            "status": self.status,
            "data": self.data or {},
            "project_id": self.project_id,
            "warehouse_id": self.warehouse_id,
            "version": self.version,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_lines:
            result["lines"] = [line.to_dict() for line in self.lines]
        if include_history:
            result["history"] = [h.to_dict() for h in self.history]
        return result

    def __repr__(self):
        return f"<DynamicDocument {self.id}: {self.document_number} [{self.status}]>"


class DynamicDocumentLine(db.Model):
    """Line row of a DynamicDocument. Replaced wholesale, never edited in place."""

    __tablename__ = "dynamic_document_lines"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer,
        db.ForeignKey("dynamic_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number = db.Column(db.Integer, nullable=False)
    data = db.Column(JSON, nullable=False, default=dict)

    document = db.relationship("DynamicDocument", back_populates="lines")

    __table_args__ = (
        db.UniqueConstraint("document_id", "line_number", name="uq_ddl_document_line"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "line_number": self.line_number,
            "data": self.data or {},
        }


class DynamicDocumentHistory(db.Model):
    """Immutable status-change record. ``from_status`` is NULL only for creation."""

    __tablename__ = "dynamic_document_history"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer,
        db.ForeignKey("dynamic_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status = db.Column(db.String(50), nullable=True)
    to_status = db.Column(db.String(50), nullable=False)
    performed_by = db.Column(db.String(150), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    document = db.relationship("DynamicDocument", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "performed_by": self.performed_by,
            "comment": self.comment,
            "performed_at": _iso(self.performed_at),
        }

    def __repr__(self):
        return f"<DynamicDocumentHistory {self.id}: {self.from_status} -> {self.to_status}>"


# ── Document number sequences ────────────────────────────────────────────────

class DocumentNumberSequence(db.Model):
    """Per-namespace, per-year counter backing the document-number generator."""

    __tablename__ = "document_number_sequences"

    id = db.Column(db.Integer, primary_key=True)
    namespace = db.Column(db.String(80), nullable=False)
    period = db.Column(db.Integer, nullable=False, comment="Calendar year")
    last_value = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("namespace", "period", name="uq_dns_namespace_period"),
    )

    def __repr__(self):
        return f"<DocumentNumberSequence {self.namespace}/{self.period}={self.last_value}>"
