"""
Shared pytest fixtures for the Dynamic Document Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - visitor_pass_type: Pre-created "visitor_pass" DocumentType with fields
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services import document_type_service as dts


VISITOR_PASS_FLOW = {
    "initialStatus": "pending",
    "statuses": [
        {"key": "pending", "label": "Pending", "color": "yellow"},
        {"key": "approved", "label": "Approved", "color": "green"},
        {"key": "rejected", "label": "Rejected", "color": "red"},
    ],
    "transitions": {"pending": ["approved", "rejected"]},
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def visitor_pass_type():
    """Create the visitor_pass type: 2 required header fields, 3-status flow."""
    doc_type = dts.create_document_type(
        {
            "code": "visitor_pass",
            "name": "Visitor Pass",
            "status_flow": VISITOR_PASS_FLOW,
            "visible_to_roles": ["*"],
        },
        user_id="admin-user",
    )
    dts.add_field(doc_type["id"], {
        "field_key": "visitorName",
        "label": "Visitor Name",
        "field_type": "text",
        "is_required": True,
    })
    dts.add_field(doc_type["id"], {
        "field_key": "visitDate",
        "label": "Visit Date",
        "field_type": "date",
        "is_required": True,
    })
    return dts.get_document_type(doc_type["id"])
