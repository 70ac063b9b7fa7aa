"""
Status flow normalization and editability rules.

Covers:
    - default flow for a missing status_flow
    - every structural problem reported at once under status_flow.* fields
    - transition table lookup, terminal statuses and the editable set
"""

import pytest

from app.core.exceptions import ValidationError
from app.services.status_flow import (
    DEFAULT_STATUS_FLOW,
    allowed_transitions,
    editable_statuses,
    is_editable,
    is_terminal,
    normalize_status_flow,
)

PURCHASE_FLOW = {
    "initialStatus": "draft",
    "statuses": [
        {"key": "draft", "label": "Draft", "color": "gray"},
        {"key": "submitted", "label": "Submitted", "color": "blue"},
        {"key": "approved", "label": "Approved", "color": "green"},
        {"key": "rejected", "label": "Rejected", "color": "red"},
    ],
    "transitions": {
        "draft": ["submitted"],
        "submitted": ["approved", "rejected"],
        "rejected": ["draft"],
    },
}


class TestNormalize:
    def test_none_gives_default_flow(self):
        flow = normalize_status_flow(None)
        assert flow == DEFAULT_STATUS_FLOW
        assert flow is not DEFAULT_STATUS_FLOW

    def test_valid_flow_round_trips(self):
        assert normalize_status_flow(PURCHASE_FLOW) == PURCHASE_FLOW

    def test_label_and_color_default(self):
        flow = normalize_status_flow({
            "initialStatus": "open",
            "statuses": [{"key": "open"}],
            "transitions": {},
        })
        assert flow["statuses"] == [{"key": "open", "label": "open", "color": "gray"}]

    def test_initial_status_must_exist(self):
        with pytest.raises(ValidationError) as exc:
            normalize_status_flow({
                "initialStatus": "missing",
                "statuses": [{"key": "draft"}],
                "transitions": {},
            })
        fields = [e["field"] for e in exc.value.errors]
        assert fields == ["status_flow.initialStatus"]

    def test_all_problems_collected(self):
        with pytest.raises(ValidationError) as exc:
            normalize_status_flow({
                "initialStatus": "draft",
                "statuses": [{"key": "draft"}, {"key": "draft"}, {"label": "No key"}],
                "transitions": {"draft": ["ghost"], "phantom": ["draft"]},
            })
        messages = [e["message"] for e in exc.value.errors]
        assert "Duplicate status key 'draft'" in messages
        assert "Status key is required" in messages
        assert "Unknown target status 'ghost'" in messages
        assert "Unknown source status 'phantom'" in messages
        assert len(messages) == 4

    def test_targets_must_be_list(self):
        with pytest.raises(ValidationError) as exc:
            normalize_status_flow({
                "initialStatus": "draft",
                "statuses": [{"key": "draft"}],
                "transitions": {"draft": "draft"},
            })
        assert exc.value.errors[0]["message"] == "Transition targets must be a list"

    def test_non_string_targets_rejected(self):
        with pytest.raises(ValidationError) as exc:
            normalize_status_flow({
                "initialStatus": "draft",
                "statuses": [{"key": "draft"}],
                "transitions": {"draft": [["draft"]]},
            })
        assert exc.value.errors == [{
            "field": "status_flow.transitions.draft",
            "message": "Transition targets must be status keys",
        }]

    def test_empty_statuses_rejected(self):
        with pytest.raises(ValidationError) as exc:
            normalize_status_flow({"initialStatus": "draft", "statuses": [], "transitions": {}})
        assert exc.value.errors[0]["field"] == "status_flow.statuses"

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            normalize_status_flow(["draft"])

    def test_duplicate_targets_collapsed(self):
        flow = normalize_status_flow({
            "initialStatus": "a",
            "statuses": [{"key": "a"}, {"key": "b"}],
            "transitions": {"a": ["b", "b"]},
        })
        assert flow["transitions"]["a"] == ["b"]


class TestTransitionsAndEditability:
    def test_allowed_transitions_lookup(self):
        assert allowed_transitions(PURCHASE_FLOW, "submitted") == ["approved", "rejected"]
        assert allowed_transitions(PURCHASE_FLOW, "approved") == []
        assert allowed_transitions(PURCHASE_FLOW, "unknown") == []

    def test_terminal(self):
        assert is_terminal(PURCHASE_FLOW, "approved")
        assert not is_terminal(PURCHASE_FLOW, "rejected")

    def test_editable_set(self):
        assert editable_statuses(PURCHASE_FLOW) == ["draft", "submitted", "rejected"]
        assert is_editable(PURCHASE_FLOW, "rejected")
        assert not is_editable(PURCHASE_FLOW, "approved")

    def test_degenerate_single_status_not_editable(self):
        assert editable_statuses(DEFAULT_STATUS_FLOW) == []
        assert not is_editable(DEFAULT_STATUS_FLOW, "draft")

    def test_editable_statuses_all_have_outgoing_edges(self):
        for status in editable_statuses(PURCHASE_FLOW):
            assert allowed_transitions(PURCHASE_FLOW, status)
