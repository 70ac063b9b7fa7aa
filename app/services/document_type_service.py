"""
Dynamic Document Types — Type Registry service layer.

Centralises all ORM queries and mutations for DocumentType and
FieldDefinition so that blueprints remain HTTP-only. Every
db.session.commit() in this module is intentional and constitutes the single
source of truth for transaction ownership.

Rules:
  - ``code`` is unique regardless of case and immutable after creation;
    ``version`` is bumped on every update.
  - A type that still has documents cannot be deleted (deactivate instead).
  - Field ``sort_order`` is dense: auto-assigned as max+1, rewritten as a
    single batch on reorder.
  - get_document_type_by_code() is the canonical read used by the instance
    and transition services; inactive types are reported as not found.
"""

import logging
import re

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    DuplicateCodeError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.dynamic_document import (
    CHOICE_FIELD_TYPES,
    FIELD_TYPES,
    WILDCARD_ROLE,
    DocumentType,
    DynamicDocument,
    FieldDefinition,
)
from app.services.status_flow import normalize_status_flow

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_\-]*$")
_FIELD_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TYPE_MUTABLE_ATTRS = (
    "name", "name_ar", "description", "icon", "category",
    "approval_config", "permission_config", "settings",
    "visible_to_roles", "is_active",
)

_FIELD_MUTABLE_ATTRS = (
    "label", "field_type", "options", "is_required", "show_in_grid",
    "show_in_form", "section_name", "sort_order", "validation_rules",
    "default_value", "col_span", "is_line_item", "is_read_only",
    "conditional_display",
)

# Upper bound for administrator-supplied regex rules.
MAX_PATTERN_LENGTH = 200

CONDITION_OPERATORS = frozenset({"eq", "ne", "in"})

_TYPE_STRING_ATTRS = {
    "name_ar": 200,
    "icon": 50,
    "category": 50,
    "description": 10000,
}

_TYPE_SORT_COLUMNS = {
    "name": DocumentType.name,
    "code": DocumentType.code,
    "category": DocumentType.category,
    "created_at": DocumentType.created_at,
    "updated_at": DocumentType.updated_at,
}


# ──────────────────────────────────────────────────────────────────────────────
# Internal helpers
# ──────────────────────────────────────────────────────────────────────────────

def _get_type_or_raise(type_id: int) -> DocumentType:
    doc_type = db.session.get(DocumentType, type_id)
    if not doc_type:
        raise NotFoundError(resource="DocumentType", resource_id=type_id)
    return doc_type


def _get_field_or_raise(type_id: int, field_id: int) -> FieldDefinition:
    field = db.session.get(FieldDefinition, field_id)
    if not field or field.document_type_id != type_id:
        raise NotFoundError(resource="FieldDefinition", resource_id=field_id)
    return field


def _validate_type_input(data: dict, creating: bool) -> list[dict]:
    errors: list[dict] = []

    if creating:
        code = data.get("code")
        if not isinstance(code, str) or not code.strip():
            errors.append({"field": "code", "message": "Code is required"})
        elif len(code) > 50 or not _CODE_RE.match(code):
            errors.append({
                "field": "code",
                "message": "Code must start with a letter, contain only letters, digits, '_' or '-', "
                           "and be at most 50 characters",
            })

    if creating or "name" in data:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append({"field": "name", "message": "Name is required"})

    for key in ("settings", "approval_config", "permission_config"):
        value = data.get(key)
        if value is not None and not isinstance(value, dict):
            errors.append({"field": key, "message": f"{key} must be an object"})

    permission_config = data.get("permission_config")
    if isinstance(permission_config, dict):
        for key in ("createRoles", "viewRoles", "approveRoles"):
            roles = permission_config.get(key)
            if roles is not None and not isinstance(roles, list):
                errors.append({"field": f"permission_config.{key}", "message": f"{key} must be a list"})

    for key, max_len in _TYPE_STRING_ATTRS.items():
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            errors.append({"field": key, "message": f"{key} must be a string"})
        elif value is not None and len(value) > max_len:
            errors.append({"field": key, "message": f"{key} must be at most {max_len} characters"})

    if "is_active" in data and not isinstance(data["is_active"], bool):
        errors.append({"field": "is_active", "message": "is_active must be a boolean"})

    if "visible_to_roles" in data and not isinstance(data["visible_to_roles"], list):
        errors.append({"field": "visible_to_roles", "message": "visible_to_roles must be a list"})

    return errors


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_rules(rules: dict) -> list[dict]:
    """Type-check the rule values the validation engine compares against."""
    errors: list[dict] = []
    for key in ("min", "max"):
        if rules.get(key) is not None and not _is_number(rules[key]):
            errors.append({"field": f"validation_rules.{key}", "message": f"{key} must be a number"})
    for key in ("minLength", "maxLength"):
        value = rules.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            errors.append({
                "field": f"validation_rules.{key}",
                "message": f"{key} must be a non-negative integer",
            })
    pattern = rules.get("pattern")
    if pattern is not None:
        if not isinstance(pattern, str):
            errors.append({"field": "validation_rules.pattern", "message": "pattern must be a string"})
        elif len(pattern) > MAX_PATTERN_LENGTH:
            errors.append({
                "field": "validation_rules.pattern",
                "message": f"pattern must be at most {MAX_PATTERN_LENGTH} characters",
            })
        else:
            try:
                re.compile(pattern)
            except re.error:
                errors.append({"field": "validation_rules.pattern", "message": "pattern is not a valid regular expression"})
    return errors


def _validate_conditional_display(cond) -> list[dict]:
    if not isinstance(cond, dict):
        return [{"field": "conditional_display", "message": "Conditional display must be an object"}]
    errors: list[dict] = []
    depends_on = cond.get("dependsOn")
    if not isinstance(depends_on, str) or not depends_on.strip():
        errors.append({
            "field": "conditional_display.dependsOn",
            "message": "dependsOn must be a field key",
        })
    if cond.get("operator") not in CONDITION_OPERATORS:
        errors.append({
            "field": "conditional_display.operator",
            "message": f"operator must be one of: {', '.join(sorted(CONDITION_OPERATORS))}",
        })
    elif cond["operator"] == "in" and not isinstance(cond.get("value"), list):
        errors.append({"field": "conditional_display.value", "message": "value must be a list for 'in'"})
    return errors


def _validate_field_input(data: dict, existing: FieldDefinition | None = None) -> list[dict]:
    errors: list[dict] = []

    if existing is None:
        key = data.get("field_key")
        if not isinstance(key, str) or not key.strip():
            errors.append({"field": "field_key", "message": "Field key is required"})
        elif len(key) > 100 or not _FIELD_KEY_RE.match(key):
            errors.append({"field": "field_key", "message": "Field key must be a valid identifier"})

    if existing is None or "label" in data:
        label = data.get("label")
        if not isinstance(label, str) or not label.strip():
            errors.append({"field": "label", "message": "Label is required"})

    field_type = data.get("field_type", existing.field_type if existing else None)
    if field_type not in FIELD_TYPES:
        errors.append({
            "field": "field_type",
            "message": f"Field type must be one of: {', '.join(sorted(FIELD_TYPES))}",
        })

    options = data.get("options", existing.options if existing else None)
    if options is not None and not isinstance(options, list):
        errors.append({"field": "options", "message": "Options must be a list"})
    elif field_type in CHOICE_FIELD_TYPES and not options:
        errors.append({"field": "options", "message": f"Options are required for {field_type} fields"})

    rules = data.get("validation_rules")
    if rules is not None and not isinstance(rules, dict):
        errors.append({"field": "validation_rules", "message": "Validation rules must be an object"})
    elif rules:
        errors.extend(_validate_rules(rules))

    cond = data.get("conditional_display")
    if cond is not None:
        errors.extend(_validate_conditional_display(cond))

    for key in ("sort_order", "col_span"):
        value = data.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            errors.append({"field": key, "message": f"{key} must be an integer"})

    return errors


def _commit_or_conflict(resource: str, field: str, value) -> None:
    """Commit, translating a unique-constraint race into ConflictError."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s commit: %s", resource, exc.orig)
        if resource == "DocumentType" and field == "code":
            raise DuplicateCodeError(value) from exc
        raise ConflictError(resource, field, value) from exc


# ──────────────────────────────────────────────────────────────────────────────
# Document Types
# ──────────────────────────────────────────────────────────────────────────────

def list_document_types(
    search: str | None = None,
    category: str | None = None,
    is_active: bool | None = None,
    sort_by: str = "name",
    sort_dir: str = "asc",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Return paginated document types with field and document counts.

    Args:
        search: Case-insensitive substring on name or code.
        category: Exact category filter.
        is_active: Optional active-flag filter.
        sort_by: One of name, code, category, created_at, updated_at.
        sort_dir: "asc" or "desc".
        limit: Maximum number of records to return.
        offset: Number of records to skip.

    Returns:
        Tuple of (list of dicts, total count).
    """
    q = DocumentType.query
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(DocumentType.name.ilike(pattern), DocumentType.code.ilike(pattern)))
    if category:
        q = q.filter(DocumentType.category == category)
    if is_active is not None:
        q = q.filter(DocumentType.is_active.is_(is_active))

    column = _TYPE_SORT_COLUMNS.get(sort_by, DocumentType.name)
    q = q.order_by(column.desc() if sort_dir == "desc" else column.asc(), DocumentType.id)

    total: int = q.count()
    items = q.limit(limit).offset(offset).all()

    ids = [t.id for t in items]
    field_counts: dict[int, int] = {}
    doc_counts: dict[int, int] = {}
    if ids:
        field_counts = dict(db.session.execute(
            select(FieldDefinition.document_type_id, func.count(FieldDefinition.id))
            .where(FieldDefinition.document_type_id.in_(ids))
            .group_by(FieldDefinition.document_type_id)
        ).all())
        doc_counts = dict(db.session.execute(
            select(DynamicDocument.document_type_id, func.count(DynamicDocument.id))
            .where(DynamicDocument.document_type_id.in_(ids))
            .group_by(DynamicDocument.document_type_id)
        ).all())

    results = []
    for t in items:
        row = t.to_dict()
        row["field_count"] = field_counts.get(t.id, 0)
        row["document_count"] = doc_counts.get(t.id, 0)
        results.append(row)
    return results, total


def get_document_type(type_id: int) -> dict:
    """Fetch a type (active or not) with its fields ordered by sort_order.

    Raises:
        NotFoundError: If no record with that PK exists.
    """
    return _get_type_or_raise(type_id).to_dict(include_fields=True)


def resolve_type(code: str) -> DocumentType:
    """Return the active DocumentType model for ``code``.

    Raises:
        NotFoundError: If the code is unknown or the type is inactive.
    """
    doc_type = DocumentType.query.filter_by(code=code).first()
    if not doc_type or not doc_type.is_active:
        raise NotFoundError(resource="DocumentType", resource_id=code, lookup="code")
    return doc_type


def get_document_type_by_code(code: str) -> dict:
    """Serialized form of resolve_type(), fields included."""
    return resolve_type(code).to_dict(include_fields=True)


def create_document_type(data: dict, user_id: str) -> dict:
    """Persist a new document type with version 1.

    Args:
        data: Input dict (code, name, status_flow, permission_config, ...).
        user_id: Acting principal, stored as created_by.

    Returns:
        Serialized DocumentType dict.

    Raises:
        ValidationError: On missing/invalid attributes or a malformed status flow.
        DuplicateCodeError: If the code already exists.
    """
    errors = _validate_type_input(data, creating=True)
    status_flow = None
    try:
        status_flow = normalize_status_flow(data.get("status_flow"))
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        raise ValidationError.from_errors(errors)

    code = data["code"].strip()
    if DocumentType.query.filter(func.lower(DocumentType.code) == code.lower()).first():
        raise DuplicateCodeError(code)

    doc_type = DocumentType(
        code=code,
        name=data["name"].strip(),
        name_ar=data.get("name_ar"),
        description=data.get("description"),
        icon=data.get("icon"),
        category=data.get("category") or "custom",
        status_flow=status_flow,
        approval_config=data.get("approval_config"),
        permission_config=data.get("permission_config"),
        settings=data.get("settings") or {},
        visible_to_roles=data.get("visible_to_roles") or ["admin"],
        is_active=data.get("is_active", True),
        version=1,
        created_by=user_id or "system",
    )
    db.session.add(doc_type)
    _commit_or_conflict("DocumentType", "code", code)
    logger.info("DocumentType created id=%s code=%s", doc_type.id, doc_type.code)
    return doc_type.to_dict(include_fields=True)


def update_document_type(type_id: int, data: dict) -> tuple[dict, dict]:
    """Merge supplied attributes into a type and bump its version.

    Returns:
        Tuple of (snapshot before update, serialized updated type).

    Raises:
        NotFoundError: If the type does not exist.
        ValidationError: On invalid input, a malformed flow, or a code change.
    """
    doc_type = _get_type_or_raise(type_id)
    existing = doc_type.to_dict()

    errors = _validate_type_input(data, creating=False)
    if "code" in data and data["code"] != doc_type.code:
        errors.append({"field": "code", "message": "Code cannot be changed after creation"})
    status_flow = None
    if "status_flow" in data:
        try:
            status_flow = normalize_status_flow(data["status_flow"])
        except ValidationError as exc:
            errors.extend(exc.errors)
    if errors:
        raise ValidationError.from_errors(errors)

    for attr in _TYPE_MUTABLE_ATTRS:
        if attr in data:
            setattr(doc_type, attr, data[attr])
    if status_flow is not None:
        doc_type.status_flow = status_flow
    doc_type.version = DocumentType.version + 1

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("DocumentType updated id=%s code=%s", type_id, doc_type.code)
    return existing, doc_type.to_dict(include_fields=True)


def delete_document_type(type_id: int) -> dict:
    """Delete a type and its field definitions.

    The instance count is checked before any delete is issued; fields are
    removed explicitly, then the type, in a single transaction.

    Returns:
        Snapshot of the deleted type (for the audit collaborator).

    Raises:
        NotFoundError: If the type does not exist.
        BusinessRuleError: If at least one document of the type exists.
    """
    doc_type = _get_type_or_raise(type_id)
    doc_count = db.session.execute(
        select(func.count(DynamicDocument.id)).where(DynamicDocument.document_type_id == type_id)
    ).scalar_one()
    if doc_count > 0:
        raise BusinessRuleError(
            f"Cannot delete document type '{doc_type.code}': {doc_count} documents exist. "
            "Deactivate instead."
        )

    snapshot = doc_type.to_dict(include_fields=True)
    try:
        FieldDefinition.query.filter_by(document_type_id=type_id).delete(synchronize_session=False)
        DocumentType.query.filter_by(id=type_id).delete(synchronize_session=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("DocumentType deleted id=%s code=%s", type_id, snapshot["code"])
    return snapshot


def list_types_for_role(role: str | None) -> list[dict]:
    """Active types whose visible_to_roles contains ``role`` or the wildcard.

    Visibility is plain list membership: admin gets no implicit bypass here.
    """
    types = (
        DocumentType.query
        .filter(DocumentType.is_active.is_(True))
        .order_by(DocumentType.category, DocumentType.name)
        .all()
    )
    visible = []
    for t in types:
        roles = t.visible_to_roles or []
        if WILDCARD_ROLE in roles or role in roles:
            visible.append({
                "code": t.code,
                "name": t.name,
                "name_ar": t.name_ar,
                "icon": t.icon,
                "category": t.category,
            })
    return visible


# ──────────────────────────────────────────────────────────────────────────────
# Field Definitions
# ──────────────────────────────────────────────────────────────────────────────

def add_field(type_id: int, data: dict) -> dict:
    """Add a field definition to a type.

    ``sort_order`` defaults to max(existing)+1, or 0 for the first field.

    Raises:
        NotFoundError: If the type does not exist.
        ValidationError: On invalid input.
        ConflictError: If field_key already exists within the type.
    """
    _get_type_or_raise(type_id)
    errors = _validate_field_input(data)
    if errors:
        raise ValidationError.from_errors(errors)

    field_key = data["field_key"].strip()
    duplicate = FieldDefinition.query.filter_by(document_type_id=type_id, field_key=field_key).first()
    if duplicate:
        raise ConflictError("FieldDefinition", "field_key", field_key)

    sort_order = data.get("sort_order")
    if sort_order is None:
        max_order = db.session.execute(
            select(func.max(FieldDefinition.sort_order)).where(FieldDefinition.document_type_id == type_id)
        ).scalar_one()
        sort_order = 0 if max_order is None else max_order + 1

    field = FieldDefinition(
        document_type_id=type_id,
        field_key=field_key,
        label=data["label"].strip(),
        field_type=data["field_type"],
        options=data.get("options"),
        is_required=bool(data.get("is_required", False)),
        show_in_grid=bool(data.get("show_in_grid", False)),
        show_in_form=bool(data.get("show_in_form", True)),
        section_name=data.get("section_name"),
        sort_order=sort_order,
        validation_rules=data.get("validation_rules"),
        default_value=data.get("default_value"),
        col_span=data.get("col_span", 2),
        is_line_item=bool(data.get("is_line_item", False)),
        is_read_only=bool(data.get("is_read_only", False)),
        conditional_display=data.get("conditional_display"),
    )
    db.session.add(field)
    _commit_or_conflict("FieldDefinition", "field_key", field_key)
    logger.info("FieldDefinition created id=%s type=%s key=%s", field.id, type_id, field_key)
    return field.to_dict()


def update_field(type_id: int, field_id: int, data: dict) -> dict:
    """Apply a partial update to a field definition.

    ``field_key`` is immutable. Existing document data is not touched.

    Raises:
        NotFoundError: If the field does not exist on this type.
        ValidationError: On invalid input or a key change.
    """
    field = _get_field_or_raise(type_id, field_id)
    errors = _validate_field_input(data, existing=field)
    if "field_key" in data and data["field_key"] != field.field_key:
        errors.append({"field": "field_key", "message": "Field key cannot be changed"})
    if errors:
        raise ValidationError.from_errors(errors)

    for attr in _FIELD_MUTABLE_ATTRS:
        if attr in data:
            setattr(field, attr, data[attr])

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("FieldDefinition updated id=%s type=%s", field_id, type_id)
    return field.to_dict()


def delete_field(type_id: int, field_id: int) -> None:
    """Delete a field definition. Stored document data keeps the old key."""
    field = _get_field_or_raise(type_id, field_id)
    try:
        db.session.delete(field)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("FieldDefinition deleted id=%s type=%s", field_id, type_id)


def reorder_fields(type_id: int, field_ids: list[int]) -> list[dict]:
    """Rewrite sort_order for a type's fields as one all-or-nothing batch.

    Listed fields get ``sort_order = index``; fields not listed follow in
    their previous relative order, so the result is always dense 0..N-1.
    Every id is checked before anything is written.

    Raises:
        NotFoundError: If the type, or any listed field on this type, does not exist.
        ValidationError: If the list is malformed or contains duplicates.
    """
    doc_type = _get_type_or_raise(type_id)
    if not isinstance(field_ids, list):
        raise ValidationError.from_errors([{"field": "field_ids", "message": "field_ids must be a list"}])
    if len(set(field_ids)) != len(field_ids):
        raise ValidationError.from_errors([{"field": "field_ids", "message": "field_ids contains duplicates"}])

    current = {f.id: f for f in doc_type.fields}
    for fid in field_ids:
        if fid not in current:
            raise NotFoundError(resource="FieldDefinition", resource_id=fid)

    listed_ids = set(field_ids)
    listed = [current[fid] for fid in field_ids]
    rest = sorted(
        (f for fid, f in current.items() if fid not in listed_ids),
        key=lambda f: (f.sort_order, f.id),
    )
    try:
        for index, field in enumerate(listed + rest):
            field.sort_order = index
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("FieldDefinitions reordered type=%s count=%s", type_id, len(current))
    fields = (
        FieldDefinition.query
        .filter_by(document_type_id=type_id)
        .order_by(FieldDefinition.sort_order)
        .all()
    )
    return [f.to_dict() for f in fields]
