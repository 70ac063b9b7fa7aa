"""Document-type administration blueprint.

REST API for the Type Registry: runtime definition of document types, their
field lists and status flows.

Endpoint groups:
  Types            GET/POST        /api/v1/dynamic-types
                   GET             /api/v1/dynamic-types/active
                   GET/PUT/DELETE  /api/v1/dynamic-types/<id>
  Fields           POST            /api/v1/dynamic-types/<id>/fields
                   PUT/DELETE      /api/v1/dynamic-types/<id>/fields/<fid>
                   POST            /api/v1/dynamic-types/<id>/fields/reorder

Everything except /active requires the admin role. Service layer owns all
business logic and commits; audit rows are written after a successful commit.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import app.services.document_type_service as dts
from app.auth import ADMIN_ROLE, current_role, current_user, require_role
from app.blueprints import record_audit
from app.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.utils.errors import E, api_error
from app.utils.helpers import pagination_args

logger = logging.getLogger(__name__)

document_type_bp = Blueprint("document_types", __name__, url_prefix="/api/v1")

AUDIT_ENTITY = "dynamic_document_type"


# ── Error handlers ────────────────────────────────────────────────────────────


@document_type_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@document_type_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), errors=error.errors, details=error.details)


@document_type_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@document_type_bp.errorhandler(BusinessRuleError)
def _handle_business_rule(error: BusinessRuleError):
    return api_error(E.CONFLICT_STATE, str(error))


@document_type_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in document_type_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Request helpers ───────────────────────────────────────────────────────────


def _json_body() -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, api_error(E.BAD_REQUEST, "Request body must be a JSON object")
    return data, None


def _bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════
# Document types  (/api/v1/dynamic-types)
# ═════════════════════════════════════════════════════════════════════════


@document_type_bp.route("/dynamic-types", methods=["GET"])
@require_role(ADMIN_ROLE)
def list_types():
    """Admin listing with search, category/active filters, sort and pagination.

    Query params:
        search, category, is_active, sort_by, sort_dir, limit, offset
    """
    limit, offset = pagination_args()
    items, total = dts.list_document_types(
        search=request.args.get("search"),
        category=request.args.get("category"),
        is_active=_bool_arg("is_active"),
        sort_by=request.args.get("sort_by", "name"),
        sort_dir=request.args.get("sort_dir", "asc"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset}), 200


@document_type_bp.route("/dynamic-types/active", methods=["GET"])
def list_active_types():
    """Types visible to the caller's role (navigation listing)."""
    return jsonify({"items": dts.list_types_for_role(current_role())}), 200


@document_type_bp.route("/dynamic-types/<int:type_id>", methods=["GET"])
@require_role(ADMIN_ROLE)
def get_type(type_id: int):
    return jsonify(dts.get_document_type(type_id)), 200


@document_type_bp.route("/dynamic-types", methods=["POST"])
@require_role(ADMIN_ROLE)
def create_type():
    """Create a document type.

    Body: {code, name, status_flow?, permission_config?, settings?, ...}
    Returns 201 with the serialized type.
    """
    data, err = _json_body()
    if err:
        return err
    if not data.get("code") or not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "code and name are required")

    actor = current_user()
    doc_type = dts.create_document_type(data, user_id=actor)
    record_audit(AUDIT_ENTITY, doc_type["id"], "create", actor, new_values=doc_type)
    return jsonify(doc_type), 201


@document_type_bp.route("/dynamic-types/<int:type_id>", methods=["PUT"])
@require_role(ADMIN_ROLE)
def update_type(type_id: int):
    data, err = _json_body()
    if err:
        return err

    existing, updated = dts.update_document_type(type_id, data)
    record_audit(
        AUDIT_ENTITY, type_id, "update", current_user(),
        old_values=existing, new_values=updated,
    )
    return jsonify(updated), 200


@document_type_bp.route("/dynamic-types/<int:type_id>", methods=["DELETE"])
@require_role(ADMIN_ROLE)
def delete_type(type_id: int):
    """Delete a type with no documents; 409 while documents exist."""
    snapshot = dts.delete_document_type(type_id)
    record_audit(AUDIT_ENTITY, type_id, "delete", current_user(), old_values=snapshot)
    return jsonify({"message": "Document type deleted", "id": type_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Field definitions  (/api/v1/dynamic-types/<id>/fields)
# ═════════════════════════════════════════════════════════════════════════


@document_type_bp.route("/dynamic-types/<int:type_id>/fields", methods=["POST"])
@require_role(ADMIN_ROLE)
def add_field(type_id: int):
    """Add a field. Body: {field_key, label, field_type, options?, is_required?, ...}"""
    data, err = _json_body()
    if err:
        return err
    missing = [k for k in ("field_key", "label", "field_type") if not data.get(k)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required keys: {', '.join(missing)}")

    field = dts.add_field(type_id, data)
    record_audit(AUDIT_ENTITY, type_id, "field.add", current_user(), new_values=field)
    return jsonify(field), 201


@document_type_bp.route("/dynamic-types/<int:type_id>/fields/<int:field_id>", methods=["PUT"])
@require_role(ADMIN_ROLE)
def update_field(type_id: int, field_id: int):
    data, err = _json_body()
    if err:
        return err

    field = dts.update_field(type_id, field_id, data)
    record_audit(AUDIT_ENTITY, type_id, "field.update", current_user(), new_values=field)
    return jsonify(field), 200


@document_type_bp.route("/dynamic-types/<int:type_id>/fields/<int:field_id>", methods=["DELETE"])
@require_role(ADMIN_ROLE)
def delete_field(type_id: int, field_id: int):
    dts.delete_field(type_id, field_id)
    record_audit(
        AUDIT_ENTITY, type_id, "field.delete", current_user(),
        new_values={"field_id": field_id},
    )
    return jsonify({"message": "Field deleted", "id": field_id}), 200


@document_type_bp.route("/dynamic-types/<int:type_id>/fields/reorder", methods=["POST"])
@require_role(ADMIN_ROLE)
def reorder_fields(type_id: int):
    """Body: {"field_ids": [3, 1, 2]}. All ids must belong to the type."""
    data, err = _json_body()
    if err:
        return err
    if "field_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "field_ids is required")

    fields = dts.reorder_fields(type_id, data["field_ids"])
    record_audit(
        AUDIT_ENTITY, type_id, "field.reorder", current_user(),
        new_values={"field_ids": [f["id"] for f in fields]},
    )
    return jsonify({"items": fields}), 200
