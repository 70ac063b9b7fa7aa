"""Dynamic document blueprint.

Generic REST surface for instances of any runtime-defined document type.
The type code in the URL selects the schema and the status flow.

Endpoint groups:
  Instances     GET/POST  /api/v1/dynamic/<code>
                GET/PUT   /api/v1/dynamic/<code>/<id>
  Workflow      POST      /api/v1/dynamic/<code>/<id>/transition
                GET       /api/v1/dynamic/<code>/<id>/history

Per-type permission_config is applied with has_access:
  createRoles → create, update
  viewRoles   → list, get, history
  approveRoles → transition

Optimistic locking is opt-in: send ``expected_version`` in the body or an
``If-Match`` header. Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import app.services.dynamic_document_service as dds
from app.auth import current_role, current_user
from app.blueprints import record_audit
from app.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
)
from app.services.access import can_approve, can_create, can_view
from app.services.document_type_service import resolve_type
from app.utils.errors import E, api_error
from app.utils.helpers import expected_version, pagination_args

logger = logging.getLogger(__name__)

dynamic_document_bp = Blueprint("dynamic_documents", __name__, url_prefix="/api/v1")

AUDIT_ENTITY = "dynamic_document"


# ── Error handlers ────────────────────────────────────────────────────────────


@dynamic_document_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@dynamic_document_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), errors=error.errors, details=error.details)


@dynamic_document_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@dynamic_document_bp.errorhandler(BusinessRuleError)
def _handle_business_rule(error: BusinessRuleError):
    return api_error(E.CONFLICT_STATE, str(error))


@dynamic_document_bp.errorhandler(StaleVersionError)
def _handle_stale(error: StaleVersionError):
    return api_error(
        E.CONFLICT_STALE, str(error),
        details={"expected_version": error.expected, "current_version": error.actual},
    )


@dynamic_document_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in dynamic_document_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Request helpers ───────────────────────────────────────────────────────────


def _json_body() -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, api_error(E.BAD_REQUEST, "Request body must be a JSON object")
    return data, None


def _expected_version(data: dict) -> tuple[int | None, tuple | None]:
    try:
        return expected_version(data), None
    except ValueError as exc:
        return None, api_error(E.BAD_REQUEST, str(exc))


def _forbidden(action: str, type_code: str):
    logger.warning(
        "Access denied: role '%s' cannot %s documents of type '%s'",
        current_role(), action, type_code,
    )
    return api_error(E.FORBIDDEN, "Insufficient permissions")


# ═════════════════════════════════════════════════════════════════════════
# Instances  (/api/v1/dynamic/<code>)
# ═════════════════════════════════════════════════════════════════════════


@dynamic_document_bp.route("/dynamic/<type_code>", methods=["GET"])
def list_documents(type_code: str):
    """Paginated documents of one type.

    Query params:
        status, project_id, warehouse_id, search, sort_by, sort_dir, limit, offset
    """
    doc_type = resolve_type(type_code)
    if not can_view(doc_type, current_role()):
        return _forbidden("view", type_code)

    limit, offset = pagination_args()
    items, total = dds.list_documents(
        type_code,
        status=request.args.get("status"),
        project_id=request.args.get("project_id"),
        warehouse_id=request.args.get("warehouse_id"),
        search=request.args.get("search"),
        sort_by=request.args.get("sort_by", "created_at"),
        sort_dir=request.args.get("sort_dir", "desc"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset}), 200


@dynamic_document_bp.route("/dynamic/<type_code>", methods=["POST"])
def create_document(type_code: str):
    """Create an instance in the type's initial status.

    Body: {data: {...}, lines?: [{...}], project_id?, warehouse_id?}
    Returns 201; 422 with every field error when validation fails.
    """
    doc_type = resolve_type(type_code)
    if not can_create(doc_type, current_role()):
        return _forbidden("create", type_code)

    data, err = _json_body()
    if err:
        return err

    actor = current_user()
    doc = dds.create_document(type_code, data, user_id=actor)
    record_audit(
        AUDIT_ENTITY, doc["id"], "create", actor,
        new_values=doc, project_id=doc.get("project_id"),
    )
    return jsonify(doc), 201


@dynamic_document_bp.route("/dynamic/<type_code>/<int:doc_id>", methods=["GET"])
def get_document(type_code: str, doc_id: int):
    doc_type = resolve_type(type_code)
    if not can_view(doc_type, current_role()):
        return _forbidden("view", type_code)
    return jsonify(dds.get_document(doc_id, type_code=type_code)), 200


@dynamic_document_bp.route("/dynamic/<type_code>/<int:doc_id>", methods=["PUT"])
def update_document(type_code: str, doc_id: int):
    """Replace data and/or lines while the status is editable.

    Body: {data?, lines?, project_id?, warehouse_id?, expected_version?}
    """
    doc_type = resolve_type(type_code)
    if not can_create(doc_type, current_role()):
        return _forbidden("edit", type_code)

    data, err = _json_body()
    if err:
        return err
    version, err = _expected_version(data)
    if err:
        return err

    actor = current_user()
    before, after = dds.update_document(
        doc_id, data, user_id=actor, expected_version=version, type_code=type_code,
    )
    record_audit(
        AUDIT_ENTITY, doc_id, "update", actor,
        old_values=before, new_values=after, project_id=after.get("project_id"),
    )
    return jsonify(after), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow  (/api/v1/dynamic/<code>/<id>/transition | history)
# ═════════════════════════════════════════════════════════════════════════


@dynamic_document_bp.route("/dynamic/<type_code>/<int:doc_id>/transition", methods=["POST"])
def transition_document(type_code: str, doc_id: int):
    """Move a document to a status reachable from its current one.

    Body: {to_status, comment?, expected_version?}
    Returns 409 with the allowed targets in the message when illegal.
    """
    doc_type = resolve_type(type_code)
    if not can_approve(doc_type, current_role()):
        return _forbidden("transition", type_code)

    data, err = _json_body()
    if err:
        return err
    to_status = data.get("to_status")
    if not to_status or not isinstance(to_status, str):
        return api_error(E.VALIDATION_REQUIRED, "to_status is required")
    version, err = _expected_version(data)
    if err:
        return err

    actor = current_user()
    doc = dds.transition_document(
        type_code, doc_id, to_status,
        user_id=actor, comment=data.get("comment"), expected_version=version,
    )
    record_audit(
        AUDIT_ENTITY, doc_id, "transition", actor,
        new_values={"status": doc["status"], "version": doc["version"], "comment": data.get("comment")},
        project_id=doc.get("project_id"),
    )
    return jsonify(doc), 200


@dynamic_document_bp.route("/dynamic/<type_code>/<int:doc_id>/history", methods=["GET"])
def get_history(type_code: str, doc_id: int):
    """Status history, newest first."""
    doc_type = resolve_type(type_code)
    if not can_view(doc_type, current_role()):
        return _forbidden("view", type_code)
    return jsonify({"items": dds.get_document_history(doc_id, type_code=type_code)}), 200
