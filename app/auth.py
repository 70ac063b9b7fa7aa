"""
Dynamic Document Engine
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - Role decorator for admin-only endpoints
    - Content-Type enforcement for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid API key (except /api/v1/health)
    - Document-type administration requires the 'admin' role
    - Per-type create/view/approve rules are applied by the document
      blueprint through app.services.access.has_access
    - API keys, roles and principals are configured via environment variables

Configuration (env vars):
    API_KEYS          — comma-separated list of valid API keys
                        e.g. "key1:admin:alice,key2:security:bob,key3:hr"
                        Format: "<key>:<role>[:<user>]". Roles are free-form
                        strings matched against permission configs; the user
                        defaults to the role name.
    API_AUTH_ENABLED  — set to "false" to disable auth (development only).
                        With auth disabled the caller may assert its identity
                        with X-User / X-User-Role headers (role defaults to
                        'admin', user to 'system').
"""

import functools
import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
DEFAULT_USER = "system"


def _parse_api_keys() -> dict[str, tuple[str, str]]:
    """
    Parse API_KEYS env var into {key: (role, user)} mapping.

    Format: "key1:admin:alice,key2:security"
    Keys without a role default to 'viewer'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":")]
        key = parts[0]
        role = parts[1].lower() if len(parts) > 1 and parts[1] else "viewer"
        user = parts[2] if len(parts) > 2 and parts[2] else role
        keys[key] = (role, user)
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return current_app.config.get("API_AUTH_ENABLED", "true").lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def current_role() -> Optional[str]:
    return getattr(g, "current_user_role", None)


def current_user() -> str:
    return getattr(g, "current_user_id", None) or DEFAULT_USER


# ── Authorization decorator ──────────────────────────────────────────────────

def require_role(role: str):
    """
    Decorator: require an exact role; 'admin' always passes.

    Usage:
        @bp.route("/dynamic-types", methods=["POST"])
        @require_role("admin")
        def create_type(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = current_role()
            if not user_role:
                return jsonify({"error": "Authentication required"}), 401

            if user_role != ADMIN_ROLE and user_role != role:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. This acts as a lightweight CSRF mitigation
    because HTML forms cannot send application/json content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips the health check
    - Sets g.current_user_role and g.current_user_id
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health":
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            g.current_user_role = request.headers.get("X-User-Role", "").strip().lower() or ADMIN_ROLE
            g.current_user_id = request.headers.get("X-User", "").strip() or DEFAULT_USER
            g.api_key = "dev-mode"
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        principal = api_keys.get(api_key)
        if principal is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.current_user_role, g.current_user_id = principal
        g.api_key = api_key
        return None

    logger.info(
        "Auth middleware installed (enabled=%s)", _is_auth_enabled()
    )
