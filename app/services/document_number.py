"""
Document number generator.

Generates sequential, namespace-scoped document numbers:

    <PREFIX>-<YYYY>-<NNNN>     e.g. VISITOR_PASS-2026-0001, VP-2026-0042

The counter lives in ``document_number_sequences`` keyed by
(namespace, year) and is advanced with a single atomic
``UPDATE ... SET last_value = last_value + 1`` so two concurrent creators
never receive the same number. The caller owns the transaction: a failure
aborts the surrounding create.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update

from app.models import db
from app.models.dynamic_document import DocumentNumberSequence

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 4


def _padding() -> int:
    try:
        return int(current_app.config.get("DOCUMENT_NUMBER_PADDING", DEFAULT_PADDING))
    except RuntimeError:
        return DEFAULT_PADDING


def _prefix_from_namespace(namespace: str) -> str:
    # "dyn:visitor_pass" -> "VISITOR_PASS"
    return namespace.split(":")[-1].upper()


def _ensure_sequence_row(namespace: str, period: int) -> None:
    exists = db.session.execute(
        select(DocumentNumberSequence.id).where(
            DocumentNumberSequence.namespace == namespace,
            DocumentNumberSequence.period == period,
        )
    ).scalar_one_or_none()
    if exists is None:
        # First number of the period. A concurrent first creator loses on the
        # unique constraint and its create transaction fails; callers retry.
        db.session.add(DocumentNumberSequence(namespace=namespace, period=period, last_value=0))
        db.session.flush()


def generate(namespace: str, prefix: str | None = None) -> str:
    """Allocate the next document number in ``namespace``.

    Args:
        namespace: Uniqueness scope, e.g. ``"dyn:visitor_pass"``.
        prefix: Display prefix; defaults to the namespace suffix upper-cased.

    Returns:
        The formatted document number.
    """
    period = datetime.now(timezone.utc).year
    _ensure_sequence_row(namespace, period)

    db.session.execute(
        update(DocumentNumberSequence)
        .where(
            DocumentNumberSequence.namespace == namespace,
            DocumentNumberSequence.period == period,
        )
        .values(last_value=DocumentNumberSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    value = db.session.execute(
        select(DocumentNumberSequence.last_value).where(
            DocumentNumberSequence.namespace == namespace,
            DocumentNumberSequence.period == period,
        )
    ).scalar_one()

    number = f"{prefix or _prefix_from_namespace(namespace)}-{period}-{value:0{_padding()}d}"
    logger.debug("Document number allocated namespace=%s number=%s", namespace, number)
    return number
