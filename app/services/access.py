"""
Role-based capability checks for dynamic document types.

A document type carries ``permission_config`` with three optional role lists:
``createRoles``, ``viewRoles``, ``approveRoles``. The engine never decides on
its own; callers wrapping it with authorization apply ``has_access``.

Usage:
    from app.services.access import can_create, has_access

    if not can_create(doc_type, role):
        return jsonify({"error": "Insufficient permissions"}), 403
"""

from app.models.dynamic_document import WILDCARD_ROLE

ADMIN_ROLE = "admin"

CREATE_ROLES = "createRoles"
VIEW_ROLES = "viewRoles"
APPROVE_ROLES = "approveRoles"


def has_access(role: str | None, allowed_roles: list[str] | None) -> bool:
    """Four-branch capability rule.

    - ``admin`` always passes
    - empty or absent list: any authenticated role passes
    - list containing ``"*"``: any role passes
    - otherwise: membership test
    """
    if role == ADMIN_ROLE:
        return True
    if not allowed_roles:
        return True
    if WILDCARD_ROLE in allowed_roles:
        return True
    return role in allowed_roles


def _roles_for(doc_type, key: str) -> list[str] | None:
    config = getattr(doc_type, "permission_config", None) or {}
    return config.get(key)


def can_create(doc_type, role: str | None) -> bool:
    return has_access(role, _roles_for(doc_type, CREATE_ROLES))


def can_view(doc_type, role: str | None) -> bool:
    return has_access(role, _roles_for(doc_type, VIEW_ROLES))


def can_approve(doc_type, role: str | None) -> bool:
    return has_access(role, _roles_for(doc_type, APPROVE_ROLES))


def is_visible_to(doc_type, role: str | None) -> bool:
    """Navigation visibility: plain role-list membership, no admin bypass."""
    roles = getattr(doc_type, "visible_to_roles", None) or []
    return WILDCARD_ROLE in roles or role in roles
