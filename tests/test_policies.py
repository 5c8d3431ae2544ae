"""Tests for the route policy table."""

import pytest

from trustbridge.core.policies import ROUTE_POLICIES, RoutePolicy, get_policy
from trustbridge.schemas.users import Role


class TestRoutePolicies:
    """Tests for the route policy table."""

    def test_unknown_route_has_no_policy(self):
        """Test an unlisted route cannot fall back to a default."""
        with pytest.raises(KeyError):
            get_policy("files.everything")

    def test_sensitive_routes_never_accept_partial_sessions(self):
        """Test a sensitive route rejects partial sessions even if marked otherwise."""
        policy = RoutePolicy(two_factor_sensitive=True, allow_partial=True)

        assert policy.permits_partial() is False

    def test_only_verification_accepts_partial_sessions(self):
        """Test the 2FA step is the only route reachable with a partial session."""
        partial_routes = [name for name, policy in ROUTE_POLICIES.items() if policy.permits_partial()]

        assert partial_routes == ["auth.verify_2fa"]

    def test_admin_routes_are_admin_only(self):
        """Test every admin route is limited to ADMIN."""
        for name, policy in ROUTE_POLICIES.items():
            if name.startswith("admin."):
                assert policy.permits_role(Role.ADMIN)
                assert not policy.permits_role(Role.PROVIDER)
                assert not policy.permits_role(Role.PATIENT)
