"""
Dynamic Documents — Instance Manager and Transition Engine.

Creates, reads, updates and transitions instances of runtime-defined document
types. The schema (fields + status flow) always comes from the owning
DocumentType; the Validation Engine runs before every write.

Rules:
  - Every mutating call owns exactly one db.session.commit(); header, lines
    and history succeed or fail together. On any failure the session is
    rolled back before the exception propagates.
  - Updates are only allowed while the status is editable (see
    status_flow.editable_statuses).
  - Lines are replaced wholesale on update, renumbered 1..N.
  - History is append-only: one row on creation (from_status=None) and one
    per transition.
  - ``version`` is bumped atomically in SQL. It becomes a compare-and-swap
    token only when the caller passes ``expected_version``; otherwise
    concurrent writers are last-writer-wins.

Usage:
    from app.services.dynamic_document_service import create_document, transition_document

    doc = create_document("visitor_pass", {"data": {"visitorName": "Ali"}}, user_id="u-1")
    doc = transition_document("visitor_pass", doc["id"], "approved", user_id="u-2")
"""

import logging

from sqlalchemy import or_, update

from app.core.exceptions import (
    BusinessRuleError,
    InvalidTransitionError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
)
from app.models import db
from app.models.dynamic_document import (
    DynamicDocument,
    DynamicDocumentHistory,
    DynamicDocumentLine,
)
from app.services import document_number
from app.services.document_type_service import resolve_type
from app.services.dynamic_validation import validate_header, validate_lines
from app.services.status_flow import allowed_transitions, initial_status, is_editable

logger = logging.getLogger(__name__)

CREATION_COMMENT = "Document created"

_DOC_SORT_COLUMNS = {
    "created_at": DynamicDocument.created_at,
    "updated_at": DynamicDocument.updated_at,
    "document_number": DynamicDocument.document_number,
    "status": DynamicDocument.status,
    "version": DynamicDocument.version,
}


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_document_or_raise(doc_id: int, type_code: str | None = None) -> DynamicDocument:
    """Load a document; a type_code mismatch is reported as not found."""
    doc = db.session.get(DynamicDocument, doc_id)
    if not doc:
        raise NotFoundError(resource="DynamicDocument", resource_id=doc_id)
    if type_code is not None and doc.document_type.code != type_code:
        raise NotFoundError(resource="DynamicDocument", resource_id=doc_id)
    return doc


def _check_payload_shape(body: dict, require_data: bool) -> list[dict]:
    errors: list[dict] = []
    data = body.get("data")
    if data is None:
        if require_data:
            errors.append({"field": "data", "message": "data is required"})
    elif not isinstance(data, dict):
        errors.append({"field": "data", "message": "data must be an object"})

    lines = body.get("lines")
    if lines is not None:
        if not isinstance(lines, list):
            errors.append({"field": "lines", "message": "lines must be a list"})
        else:
            for idx, line in enumerate(lines):
                if not isinstance(line, dict):
                    errors.append({"field": f"lines[{idx}]", "message": "Each line must be an object"})
    return errors


def _check_expected_version(doc: DynamicDocument, expected_version: int | None) -> None:
    if expected_version is not None and doc.version != expected_version:
        raise StaleVersionError("DynamicDocument", doc.id, expected_version, doc.version)


def _bump_version(doc: DynamicDocument, expected_version: int | None) -> None:
    """Increment ``version`` in SQL; compare-and-swap when expected_version is given."""
    stmt = update(DynamicDocument).where(DynamicDocument.id == doc.id)
    if expected_version is not None:
        stmt = stmt.where(DynamicDocument.version == expected_version)
    result = db.session.execute(
        stmt.values(version=DynamicDocument.version + 1).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleVersionError("DynamicDocument", doc.id, expected_version)


def _build_lines(lines: list[dict]) -> list[DynamicDocumentLine]:
    return [
        DynamicDocumentLine(line_number=index + 1, data=line)
        for index, line in enumerate(lines)
    ]


# ── Read paths ─────────────────────────────────────────────────────────────────


def available_transitions(doc: DynamicDocument) -> list[str]:
    """Statuses reachable in one step from the document's current status."""
    return allowed_transitions(doc.document_type.status_flow, doc.status)


def get_document(doc_id: int, type_code: str | None = None) -> dict:
    """Fetch a document with lines, history and workflow hints.

    Raises:
        NotFoundError: If missing, or not of ``type_code`` when given.
    """
    doc = _get_document_or_raise(doc_id, type_code)
    result = doc.to_dict(include_lines=True, include_history=True)
    result["available_transitions"] = available_transitions(doc)
    result["is_editable"] = is_editable(doc.document_type.status_flow, doc.status)
    return result


def list_documents(
    type_code: str,
    status: str | None = None,
    project_id: str | None = None,
    warehouse_id: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_dir: str = "desc",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Paginated documents of one type with optional equality filters.

    ``search`` is a case-insensitive substring match on the document number.
    """
    doc_type = resolve_type(type_code)
    q = DynamicDocument.query.filter(DynamicDocument.document_type_id == doc_type.id)
    if status:
        q = q.filter(DynamicDocument.status == status)
    if project_id:
        q = q.filter(DynamicDocument.project_id == project_id)
    if warehouse_id:
        q = q.filter(DynamicDocument.warehouse_id == warehouse_id)
    if search:
        q = q.filter(or_(DynamicDocument.document_number.ilike(f"%{search}%")))

    column = _DOC_SORT_COLUMNS.get(sort_by, DynamicDocument.created_at)
    q = q.order_by(column.desc() if sort_dir == "desc" else column.asc(), DynamicDocument.id.desc())

    total: int = q.count()
    items = q.limit(limit).offset(offset).all()
    return [d.to_dict(include_lines=False) for d in items], total


def get_document_history(doc_id: int, type_code: str | None = None) -> list[dict]:
    """History entries, newest first."""
    _get_document_or_raise(doc_id, type_code)
    entries = (
        DynamicDocumentHistory.query
        .filter_by(document_id=doc_id)
        .order_by(DynamicDocumentHistory.performed_at.desc(), DynamicDocumentHistory.id.desc())
        .all()
    )
    return [h.to_dict() for h in entries]


# ── Create ─────────────────────────────────────────────────────────────────────


def create_document(type_code: str, body: dict, user_id: str) -> dict:
    """Validate and persist a new document in the type's initial status.

    Args:
        type_code: Code of an active DocumentType.
        body: {"data": {...}, "lines"?: [{...}], "project_id"?, "warehouse_id"?}
        user_id: Acting principal.

    Returns:
        Serialized document with lines and history.

    Raises:
        NotFoundError: Unknown or inactive type.
        ValidationError: With every header and line error; nothing is written.
    """
    doc_type = resolve_type(type_code)

    errors = _check_payload_shape(body, require_data=False)
    if errors:
        raise ValidationError.from_errors(errors)

    data = body.get("data") or {}
    lines = body.get("lines") or []
    errors = validate_header(doc_type.fields, data) + validate_lines(doc_type.fields, lines)
    if errors:
        raise ValidationError.from_errors(errors)

    status = initial_status(doc_type.status_flow)
    settings = doc_type.settings or {}

    try:
        number = document_number.generate(f"dyn:{doc_type.code}", settings.get("numberPrefix"))
        doc = DynamicDocument(
            document_type_id=doc_type.id,
            document_number=number,
            status=status,
            data=data,
            project_id=body.get("project_id"),
            warehouse_id=body.get("warehouse_id"),
            version=1,
            created_by=user_id,
            updated_by=user_id,
        )
        doc.lines = _build_lines(lines)
        doc.history = [
            DynamicDocumentHistory(
                from_status=None,
                to_status=status,
                performed_by=user_id,
                comment=CREATION_COMMENT,
            )
        ]
        db.session.add(doc)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "DynamicDocument created id=%s type=%s number=%s lines=%s",
        doc.id, type_code, doc.document_number, len(lines),
    )
    return doc.to_dict(include_lines=True, include_history=True)


# ── Update ─────────────────────────────────────────────────────────────────────


def update_document(
    doc_id: int,
    body: dict,
    user_id: str,
    expected_version: int | None = None,
    type_code: str | None = None,
) -> tuple[dict, dict]:
    """Replace data and/or lines of a document still in an editable status.

    Supplying ``lines`` deletes every existing line and inserts the new set
    numbered 1..N. ``data`` is replaced wholesale when supplied.

    Returns:
        Tuple of (snapshot before update, serialized updated document).

    Raises:
        NotFoundError: Unknown document (or type_code mismatch).
        BusinessRuleError: Current status is not editable.
        ValidationError: With every header and line error; nothing is written.
        StaleVersionError: expected_version given and no longer current.
    """
    doc = _get_document_or_raise(doc_id, type_code)
    doc_type = doc.document_type

    if not is_editable(doc_type.status_flow, doc.status):
        raise BusinessRuleError(f"Cannot edit document in '{doc.status}' status")
    _check_expected_version(doc, expected_version)

    errors = _check_payload_shape(body, require_data=False)
    if errors:
        raise ValidationError.from_errors(errors)

    new_data = body.get("data")
    new_lines = body.get("lines")
    if new_data is not None:
        errors.extend(validate_header(doc_type.fields, new_data))
    if new_lines is not None:
        errors.extend(validate_lines(doc_type.fields, new_lines))
    if errors:
        raise ValidationError.from_errors(errors)

    before = doc.to_dict(include_lines=True)

    try:
        _bump_version(doc, expected_version)
        if new_lines is not None:
            # Explicit delete of the old set before inserting the new one,
            # (document_id, line_number) is unique.
            doc.lines.clear()
            db.session.flush()
            doc.lines.extend(_build_lines(new_lines))
        if new_data is not None:
            doc.data = new_data
        for attr in ("project_id", "warehouse_id"):
            if attr in body:
                setattr(doc, attr, body[attr])
        doc.updated_by = user_id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("DynamicDocument updated id=%s version=%s", doc.id, doc.version)
    return before, doc.to_dict(include_lines=True)


# ── Transition ─────────────────────────────────────────────────────────────────


def transition_document(
    type_code: str,
    doc_id: int,
    target_status: str,
    user_id: str,
    comment: str | None = None,
    expected_version: int | None = None,
) -> dict:
    """Move a document along one edge of its type's status graph.

    The transition function is a table lookup on ``transitions[current]``.

    Returns:
        Serialized document after the transition.

    Raises:
        NotFoundError: Unknown document or type_code mismatch.
        InvalidTransitionError: Target not reachable; message lists allowed targets.
        StaleVersionError: expected_version given and no longer current.
    """
    doc = _get_document_or_raise(doc_id, type_code)
    current = doc.status
    allowed = allowed_transitions(doc.document_type.status_flow, current)
    if target_status not in allowed:
        raise InvalidTransitionError(current, target_status, allowed)
    _check_expected_version(doc, expected_version)

    try:
        _bump_version(doc, expected_version)
        doc.status = target_status
        doc.updated_by = user_id
        db.session.add(DynamicDocumentHistory(
            document_id=doc.id,
            from_status=current,
            to_status=target_status,
            performed_by=user_id,
            comment=(comment or "").strip() or None,
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "DynamicDocument transitioned id=%s type=%s %s -> %s by=%s",
        doc.id, type_code, current, target_status, user_id,
    )
    return doc.to_dict(include_lines=True)
