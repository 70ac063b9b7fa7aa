"""
Dynamic Document Engine
Blueprint registry and shared blueprint helpers.
"""

import logging

from app.models import db
from app.models.audit import write_audit

logger = logging.getLogger(__name__)


def record_audit(
    entity_type: str,
    entity_id,
    action: str,
    actor: str,
    *,
    old_values: dict | None = None,
    new_values: dict | None = None,
    project_id: str | None = None,
) -> None:
    """Write and commit one audit row after the business commit succeeded.

    An audit failure is logged and rolled back; it never fails the request.
    """
    try:
        write_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            project_id=project_id,
            old_values=old_values,
            new_values=new_values,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(
            "Audit write failed entity=%s/%s action=%s", entity_type, entity_id, action
        )
