"""
Instance Manager and Transition Engine tests.

Coverage:
  1. visitor_pass scenario: create → approve → edit rejected → history
  2. validation completeness on create and update (header + lines at once)
  3. editable-status invariant and total line replacement
  4. transition legality, cycles, comment handling, type-code mismatch
  5. opt-in optimistic locking (stale expected_version writes nothing)
  6. document numbering per type, listing filters, history ordering
"""

from datetime import datetime, timezone

import pytest

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
from app.services import document_type_service as dts
from app.services import dynamic_document_service as dds

YEAR = datetime.now(timezone.utc).year

GOOD_VISIT = {"visitorName": "Ali", "visitDate": "2026-03-01"}

ORDER_FLOW = {
    "initialStatus": "draft",
    "statuses": [
        {"key": "draft", "label": "Draft", "color": "gray"},
        {"key": "submitted", "label": "Submitted", "color": "blue"},
        {"key": "approved", "label": "Approved", "color": "green"},
    ],
    "transitions": {"draft": ["submitted"], "submitted": ["draft", "approved"]},
}


@pytest.fixture()
def order_type():
    """Type with a header field, two line-item fields and a cyclic flow."""
    t = dts.create_document_type(
        {
            "code": "material_order",
            "name": "Material Order",
            "status_flow": ORDER_FLOW,
            "settings": {"numberPrefix": "MO"},
        },
        user_id="admin-user",
    )
    dts.add_field(t["id"], {"field_key": "supplier", "label": "Supplier", "field_type": "text", "is_required": True})
    dts.add_field(t["id"], {
        "field_key": "item", "label": "Item", "field_type": "text",
        "is_required": True, "is_line_item": True,
    })
    dts.add_field(t["id"], {
        "field_key": "qty", "label": "Qty", "field_type": "number",
        "is_line_item": True, "validation_rules": {"min": 1},
    })
    return dts.get_document_type(t["id"])


def _order(lines=None):
    return dds.create_document(
        "material_order",
        {"data": {"supplier": "ACME"}, "lines": lines or [{"item": "bolt", "qty": 10}]},
        user_id="clerk-1",
    )


# ═════════════════════════════════════════════════════════════════════════════
# visitor_pass end-to-end
# ═════════════════════════════════════════════════════════════════════════════


class TestVisitorPassScenario:
    def test_full_lifecycle(self, visitor_pass_type):
        doc = dds.create_document("visitor_pass", {"data": GOOD_VISIT}, user_id="u-1")
        assert doc["status"] == "pending"
        assert doc["version"] == 1
        assert doc["document_number"] == f"VISITOR_PASS-{YEAR}-0001"
        assert len(doc["history"]) == 1
        assert doc["history"][0]["from_status"] is None
        assert doc["history"][0]["to_status"] == "pending"
        assert doc["history"][0]["comment"] == "Document created"

        approved = dds.transition_document("visitor_pass", doc["id"], "approved", user_id="u-2")
        assert approved["status"] == "approved"
        assert approved["version"] == 2

        with pytest.raises(BusinessRuleError) as exc:
            dds.update_document(doc["id"], {"data": GOOD_VISIT}, user_id="u-1")
        assert str(exc.value) == "Cannot edit document in 'approved' status"

        history = dds.get_document_history(doc["id"])
        assert [(h["from_status"], h["to_status"]) for h in history] == [
            ("pending", "approved"),
            (None, "pending"),
        ]
        assert history[0]["performed_by"] == "u-2"

    def test_missing_required_fields_create_nothing(self, visitor_pass_type):
        with pytest.raises(ValidationError) as exc:
            dds.create_document("visitor_pass", {"data": {}}, user_id="u-1")
        assert exc.value.errors == [
            {"field": "visitorName", "message": "Visitor Name is required"},
            {"field": "visitDate", "message": "Visit Date is required"},
        ]
        assert DynamicDocument.query.count() == 0
        assert DynamicDocumentHistory.query.count() == 0

    def test_terminal_status_has_no_transitions(self, visitor_pass_type):
        doc = dds.create_document("visitor_pass", {"data": GOOD_VISIT}, user_id="u-1")
        dds.transition_document("visitor_pass", doc["id"], "rejected", user_id="u-2")
        with pytest.raises(InvalidTransitionError) as exc:
            dds.transition_document("visitor_pass", doc["id"], "approved", user_id="u-2")
        assert str(exc.value) == "Invalid status transition: 'rejected' → 'approved'. Allowed: none"


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_lines_numbered_and_prefix_used(self, order_type):
        doc = _order([{"item": "bolt", "qty": 10}, {"item": "nut", "qty": 20}])
        assert doc["document_number"] == f"MO-{YEAR}-0001"
        assert [line["line_number"] for line in doc["lines"]] == [1, 2]
        assert doc["lines"][1]["data"] == {"item": "nut", "qty": 20}
        assert doc["created_by"] == "clerk-1"
        assert doc["type_code"] == "material_order"

    def test_numbers_sequential_per_type(self, order_type, visitor_pass_type):
        first = _order()
        dds.create_document("visitor_pass", {"data": GOOD_VISIT}, user_id="u-1")
        second = _order()
        assert first["document_number"] == f"MO-{YEAR}-0001"
        assert second["document_number"] == f"MO-{YEAR}-0002"

    def test_header_and_line_errors_reported_together(self, order_type):
        with pytest.raises(ValidationError) as exc:
            dds.create_document(
                "material_order",
                {"data": {}, "lines": [{"item": "ok", "qty": 1}, {"qty": 0}]},
                user_id="clerk-1",
            )
        assert [e["field"] for e in exc.value.errors] == [
            "supplier", "lines[1].item", "lines[1].qty",
        ]
        assert DynamicDocumentLine.query.count() == 0

    def test_unknown_or_inactive_type(self, visitor_pass_type):
        with pytest.raises(NotFoundError):
            dds.create_document("ghost", {"data": {}}, user_id="u")
        dts.update_document_type(visitor_pass_type["id"], {"is_active": False})
        with pytest.raises(NotFoundError):
            dds.create_document("visitor_pass", {"data": GOOD_VISIT}, user_id="u")

    def test_malformed_lines_rejected(self, order_type):
        with pytest.raises(ValidationError) as exc:
            dds.create_document(
                "material_order", {"data": {"supplier": "A"}, "lines": "bolt"}, user_id="u",
            )
        assert exc.value.errors[0]["field"] == "lines"

    def test_scope_ids_stored(self, visitor_pass_type):
        doc = dds.create_document(
            "visitor_pass",
            {"data": GOOD_VISIT, "project_id": "p-1", "warehouse_id": "w-9"},
            user_id="u",
        )
        assert doc["project_id"] == "p-1"
        assert doc["warehouse_id"] == "w-9"


# ═════════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdate:
    def test_lines_replaced_wholesale(self, order_type):
        doc = _order([{"item": "a", "qty": 1}, {"item": "b", "qty": 2}, {"item": "c", "qty": 3}])
        before, after = dds.update_document(
            doc["id"],
            {"lines": [{"item": "x", "qty": 5}, {"item": "y", "qty": 6}]},
            user_id="clerk-2",
        )
        assert [line["data"]["item"] for line in before["lines"]] == ["a", "b", "c"]
        assert [(line["line_number"], line["data"]["item"]) for line in after["lines"]] == [
            (1, "x"), (2, "y"),
        ]
        assert DynamicDocumentLine.query.filter_by(document_id=doc["id"]).count() == 2
        assert after["version"] == 2
        assert after["updated_by"] == "clerk-2"
        assert after["data"] == {"supplier": "ACME"}

    def test_empty_lines_clears_all(self, order_type):
        doc = _order()
        _, after = dds.update_document(doc["id"], {"lines": []}, user_id="u")
        assert after["lines"] == []

    def test_data_replaced_and_lines_untouched_when_omitted(self, order_type):
        doc = _order([{"item": "a", "qty": 1}])
        _, after = dds.update_document(doc["id"], {"data": {"supplier": "Globex"}}, user_id="u")
        assert after["data"] == {"supplier": "Globex"}
        assert [line["data"]["item"] for line in after["lines"]] == ["a"]

    def test_invalid_update_writes_nothing(self, order_type):
        doc = _order()
        with pytest.raises(ValidationError) as exc:
            dds.update_document(
                doc["id"], {"data": {}, "lines": [{"qty": "many"}]}, user_id="u",
            )
        assert [e["field"] for e in exc.value.errors] == [
            "supplier", "lines[0].item", "lines[0].qty",
        ]
        db.session.expire_all()
        stored = db.session.get(DynamicDocument, doc["id"])
        assert stored.version == 1
        assert stored.data == {"supplier": "ACME"}
        assert len(stored.lines) == 1

    def test_editable_in_non_initial_status_with_outgoing_edges(self, order_type):
        doc = _order()
        dds.transition_document("material_order", doc["id"], "submitted", user_id="u")
        _, after = dds.update_document(doc["id"], {"data": {"supplier": "B"}}, user_id="u")
        assert after["status"] == "submitted"
        assert after["version"] == 3

    def test_terminal_status_not_editable(self, order_type):
        doc = _order()
        dds.transition_document("material_order", doc["id"], "submitted", user_id="u")
        dds.transition_document("material_order", doc["id"], "approved", user_id="u")
        with pytest.raises(BusinessRuleError):
            dds.update_document(doc["id"], {"lines": []}, user_id="u")
        assert DynamicDocumentLine.query.filter_by(document_id=doc["id"]).count() == 1

    def test_single_state_flow_never_editable(self):
        dts.create_document_type({"code": "memo", "name": "Memo"}, user_id="admin")
        doc = dds.create_document("memo", {"data": {}}, user_id="u")
        assert doc["status"] == "draft"
        with pytest.raises(BusinessRuleError):
            dds.update_document(doc["id"], {"data": {}}, user_id="u")

    def test_unknown_document(self):
        with pytest.raises(NotFoundError):
            dds.update_document(424242, {"data": {}}, user_id="u")


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════


class TestTransition:
    def test_invalid_target_lists_allowed_and_writes_nothing(self, order_type):
        doc = _order()
        with pytest.raises(InvalidTransitionError) as exc:
            dds.transition_document("material_order", doc["id"], "approved", user_id="u")
        assert str(exc.value) == (
            "Invalid status transition: 'draft' → 'approved'. Allowed: submitted"
        )
        assert exc.value.allowed == ["submitted"]
        db.session.expire_all()
        stored = db.session.get(DynamicDocument, doc["id"])
        assert stored.status == "draft"
        assert stored.version == 1
        assert DynamicDocumentHistory.query.filter_by(document_id=doc["id"]).count() == 1

    def test_cycles_allowed(self, order_type):
        doc = _order()
        for target in ("submitted", "draft", "submitted", "approved"):
            doc = dds.transition_document("material_order", doc["id"], target, user_id="u")
        assert doc["status"] == "approved"
        assert doc["version"] == 5
        assert len(dds.get_document_history(doc["id"])) == 5

    def test_comment_recorded(self, order_type):
        doc = _order()
        dds.transition_document(
            "material_order", doc["id"], "submitted", user_id="boss", comment="  looks good ",
        )
        latest = dds.get_document_history(doc["id"])[0]
        assert latest["comment"] == "looks good"
        assert latest["performed_by"] == "boss"

    def test_type_code_must_match(self, order_type, visitor_pass_type):
        doc = _order()
        with pytest.raises(NotFoundError):
            dds.transition_document("visitor_pass", doc["id"], "approved", user_id="u")

    def test_available_transitions_in_get(self, order_type):
        doc = _order()
        fetched = dds.get_document(doc["id"], type_code="material_order")
        assert fetched["available_transitions"] == ["submitted"]
        assert fetched["is_editable"] is True
        assert len(fetched["history"]) == 1


# ═════════════════════════════════════════════════════════════════════════════
# Optimistic locking
# ═════════════════════════════════════════════════════════════════════════════


class TestExpectedVersion:
    def test_matching_version_succeeds(self, order_type):
        doc = _order()
        _, after = dds.update_document(
            doc["id"], {"data": {"supplier": "B"}}, user_id="u", expected_version=1,
        )
        assert after["version"] == 2

    def test_stale_update_rejected(self, order_type):
        doc = _order()
        dds.update_document(doc["id"], {"data": {"supplier": "B"}}, user_id="u")
        with pytest.raises(StaleVersionError) as exc:
            dds.update_document(
                doc["id"], {"data": {"supplier": "C"}}, user_id="u", expected_version=1,
            )
        assert exc.value.actual == 2
        db.session.expire_all()
        assert db.session.get(DynamicDocument, doc["id"]).data == {"supplier": "B"}

    def test_stale_transition_rejected(self, order_type):
        doc = _order()
        dds.transition_document("material_order", doc["id"], "submitted", user_id="u")
        with pytest.raises(StaleVersionError):
            dds.transition_document(
                "material_order", doc["id"], "approved", user_id="u", expected_version=1,
            )
        db.session.expire_all()
        assert db.session.get(DynamicDocument, doc["id"]).status == "submitted"

    def test_without_expected_version_last_writer_wins(self, order_type):
        doc = _order()
        dds.update_document(doc["id"], {"data": {"supplier": "B"}}, user_id="u1")
        _, after = dds.update_document(doc["id"], {"data": {"supplier": "C"}}, user_id="u2")
        assert after["data"] == {"supplier": "C"}
        assert after["version"] == 3


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListing:
    def test_filters_and_pagination(self, order_type):
        a = _order()
        b = _order()
        dds.create_document(
            "material_order",
            {"data": {"supplier": "X"}, "lines": [], "project_id": "p-7"},
            user_id="u",
        )
        dds.transition_document("material_order", b["id"], "submitted", user_id="u")

        items, total = dds.list_documents("material_order")
        assert total == 3
        assert "lines" not in items[0]

        items, total = dds.list_documents("material_order", status="submitted")
        assert [i["id"] for i in items] == [b["id"]]

        items, total = dds.list_documents("material_order", project_id="p-7")
        assert total == 1

        items, total = dds.list_documents(
            "material_order", sort_by="document_number", sort_dir="asc", limit=2,
        )
        assert total == 3
        assert [i["id"] for i in items] == [a["id"], b["id"]]

        items, _ = dds.list_documents("material_order", search="0003")
        assert len(items) == 1

    def test_other_types_not_listed(self, order_type, visitor_pass_type):
        _order()
        dds.create_document("visitor_pass", {"data": GOOD_VISIT}, user_id="u")
        items, total = dds.list_documents("visitor_pass")
        assert total == 1
        assert items[0]["type_code"] == "visitor_pass"


# ═════════════════════════════════════════════════════════════════════════════
# Draft-initial visitor pass, default flow, shared number prefixes
# ═════════════════════════════════════════════════════════════════════════════


class TestDraftVisitorPass:
    """visitor_pass with one required field and a draft-initial flow."""

    @pytest.fixture()
    def draft_visitor_pass(self):
        t = dts.create_document_type(
            {
                "code": "visitor_pass",
                "name": "Visitor Pass",
                "status_flow": {
                    "initialStatus": "draft",
                    "statuses": [{"key": "draft"}, {"key": "approved"}, {"key": "rejected"}],
                    "transitions": {"draft": ["approved", "rejected"]},
                },
            },
            user_id="admin-user",
        )
        dts.add_field(t["id"], {
            "field_key": "visitorName", "label": "Visitor Name",
            "field_type": "text", "is_required": True,
        })
        return t

    def test_empty_data_reports_visitor_name_only(self, draft_visitor_pass):
        with pytest.raises(ValidationError) as exc:
            dds.create_document("visitor_pass", {"data": {}}, user_id="u-1")
        assert exc.value.errors == [{"field": "visitorName", "message": "Visitor Name is required"}]
        assert DynamicDocument.query.count() == 0

    def test_create_approve_then_edit_rejected(self, draft_visitor_pass):
        doc = dds.create_document("visitor_pass", {"data": {"visitorName": "Ali"}}, user_id="u-1")
        assert doc["status"] == "draft"
        assert doc["version"] == 1
        assert len(doc["history"]) == 1

        approved = dds.transition_document("visitor_pass", doc["id"], "approved", user_id="u-2")
        assert approved["status"] == "approved"
        assert approved["version"] == 2
        assert len(dds.get_document_history(doc["id"])) == 2

        with pytest.raises(BusinessRuleError):
            dds.update_document(doc["id"], {"data": {"visitorName": "Veli"}}, user_id="u-1")


class TestRequiredFieldsThroughCreate:
    def test_three_missing_fields_three_errors(self):
        t = dts.create_document_type({"code": "incident", "name": "Incident"}, user_id="admin")
        for key in ("title", "location", "reporter"):
            dts.add_field(t["id"], {
                "field_key": key, "label": key.title(), "field_type": "text", "is_required": True,
            })
        with pytest.raises(ValidationError) as exc:
            dds.create_document("incident", {"data": {}}, user_id="u")
        assert [e["field"] for e in exc.value.errors] == ["title", "location", "reporter"]


class TestDefaultFlow:
    def test_default_flow_instance_never_transitions(self):
        dts.create_document_type({"code": "memo", "name": "Memo"}, user_id="admin")
        doc = dds.create_document("memo", {"data": {}}, user_id="u")
        assert doc["status"] == "draft"
        with pytest.raises(InvalidTransitionError) as exc:
            dds.transition_document("memo", doc["id"], "submitted", user_id="u")
        assert str(exc.value) == (
            "Invalid status transition: 'draft' → 'submitted'. Allowed: none"
        )
        assert exc.value.allowed == []
        assert DynamicDocumentHistory.query.filter_by(document_id=doc["id"]).count() == 1


class TestNumberingAcrossTypes:
    def test_shared_number_prefix_does_not_collide(self):
        for code in ("gate_a", "gate_b"):
            dts.create_document_type(
                {"code": code, "name": code, "settings": {"numberPrefix": "GP"}}, user_id="admin",
            )
        a = dds.create_document("gate_a", {"data": {}}, user_id="u")
        b = dds.create_document("gate_b", {"data": {}}, user_id="u")
        assert a["document_number"] == f"GP-{YEAR}-0001"
        assert b["document_number"] == f"GP-{YEAR}-0001"
        assert DynamicDocument.query.count() == 2

    def test_prefix_matching_another_code(self):
        dts.create_document_type({"code": "vp", "name": "VP"}, user_id="admin")
        dts.create_document_type(
            {"code": "visit", "name": "Visit", "settings": {"numberPrefix": "VP"}}, user_id="admin",
        )
        assert dds.create_document("vp", {"data": {}}, user_id="u")["document_number"] == f"VP-{YEAR}-0001"
        assert dds.create_document("visit", {"data": {}}, user_id="u")["document_number"] == f"VP-{YEAR}-0001"
