"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for document-type and
      document lifecycle events.
"""

import json
from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "dynamic_document_type",
    "dynamic_field_definition",
    "dynamic_document",
}

AUDIT_ACTIONS = {
    # Type registry
    "create",
    "update",
    "delete",
    "field.add",
    "field.update",
    "field.delete",
    "field.reorder",
    # Document lifecycle
    "transition",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action. ``diff_json`` carries
    ``{action, record_id, old_values?, new_values}``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(40), nullable=False,
        comment="dynamic_document_type | dynamic_document | …",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="create | update | delete | transition | field.add | …",
    )
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="Acting principal or 'system'",
    )
    project_id = db.Column(db.String(64), nullable=True, index=True)

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "project_id": self.project_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str | int,
    action: str,
    actor: str = "system",
    project_id: str | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    The stored diff has the shape
    ``{"action", "record_id", "old_values"?, "new_values"}``.

    Returns the (flushed) AuditLog instance.
    """
    diff: dict = {"action": action, "record_id": entity_id}
    if old_values is not None:
        diff["old_values"] = old_values
    diff["new_values"] = new_values

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        project_id=project_id,
        diff_json=json.dumps(diff, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
