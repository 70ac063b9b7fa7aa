"""Role capability rule (has_access) and navigation visibility."""

from types import SimpleNamespace

import pytest

from app.services.access import (
    can_approve,
    can_create,
    can_view,
    has_access,
    is_visible_to,
)


class TestHasAccess:
    @pytest.mark.parametrize("allowed", [None, [], ["hr"], ["*"]])
    def test_admin_always_passes(self, allowed):
        assert has_access("admin", allowed)

    @pytest.mark.parametrize("allowed", [None, []])
    def test_empty_list_allows_any_role(self, allowed):
        assert has_access("warehouse", allowed)

    def test_wildcard_allows_any_role(self):
        assert has_access("warehouse", ["hr", "*"])

    def test_membership(self):
        assert has_access("hr", ["hr", "security"])
        assert not has_access("warehouse", ["hr", "security"])

    def test_no_role_denied_when_list_is_restrictive(self):
        assert not has_access(None, ["hr"])


class TestTypeCapabilities:
    DOC_TYPE = SimpleNamespace(
        permission_config={
            "createRoles": ["clerk"],
            "viewRoles": ["*"],
            "approveRoles": ["manager"],
        },
        visible_to_roles=["clerk", "manager"],
    )

    def test_create_view_approve(self):
        assert can_create(self.DOC_TYPE, "clerk")
        assert not can_create(self.DOC_TYPE, "manager")
        assert can_view(self.DOC_TYPE, "anyone")
        assert can_approve(self.DOC_TYPE, "manager")
        assert not can_approve(self.DOC_TYPE, "clerk")

    def test_missing_permission_config_is_open(self):
        open_type = SimpleNamespace(permission_config=None, visible_to_roles=[])
        assert can_create(open_type, "anyone")
        assert can_approve(open_type, "anyone")

    def test_visibility_has_no_admin_bypass(self):
        assert is_visible_to(self.DOC_TYPE, "clerk")
        assert not is_visible_to(self.DOC_TYPE, "admin")

    def test_visibility_wildcard(self):
        assert is_visible_to(SimpleNamespace(visible_to_roles=["*"]), "admin")
