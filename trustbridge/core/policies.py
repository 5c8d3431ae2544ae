"""Route access policies.

Every protected route is listed here by name. Looking up a name that is not
in the table fails, so a new route cannot silently fall back to a default.
"""

from dataclasses import dataclass

from trustbridge.schemas.users import Role

ALL_ROLES = frozenset(Role)
ADMIN_ONLY = frozenset({Role.ADMIN})


@dataclass(frozen=True)
class RoutePolicy:
    """Who may call a route and in which 2FA state.

    Attributes:
        roles: Roles allowed on the route; empty means any authenticated caller
        two_factor_sensitive: Route handles PHI or privileged actions and
            always requires a fully verified session
        allow_partial: Route accepts a session whose second factor is still
            outstanding
    """

    roles: frozenset[Role] = ALL_ROLES
    two_factor_sensitive: bool = False
    allow_partial: bool = False

    def permits_role(self, role: Role) -> bool:
        return not self.roles or role in self.roles

    def permits_partial(self) -> bool:
        return self.allow_partial and not self.two_factor_sensitive


ROUTE_POLICIES: dict[str, RoutePolicy] = {
    # Authentication
    "auth.verify_2fa": RoutePolicy(allow_partial=True),
    "auth.totp.enroll": RoutePolicy(),
    "auth.totp.verify": RoutePolicy(),
    "auth.totp.disable": RoutePolicy(),
    # Users
    "users.me": RoutePolicy(),
    "users.providers": RoutePolicy(),
    # Administration
    "admin.users.list": RoutePolicy(roles=ADMIN_ONLY),
    "admin.users.role": RoutePolicy(roles=ADMIN_ONLY, two_factor_sensitive=True),
    "admin.promote": RoutePolicy(roles=ADMIN_ONLY, two_factor_sensitive=True),
    "admin.demote": RoutePolicy(roles=ADMIN_ONLY, two_factor_sensitive=True),
    "admin.audit_logs": RoutePolicy(roles=ADMIN_ONLY),
    # Files (PHI)
    "files.list": RoutePolicy(two_factor_sensitive=True),
    "files.presign_upload": RoutePolicy(two_factor_sensitive=True),
    "files.presign_download": RoutePolicy(two_factor_sensitive=True),
    "files.share": RoutePolicy(two_factor_sensitive=True),
    "files.share_revoke": RoutePolicy(two_factor_sensitive=True),
    "files.delete": RoutePolicy(two_factor_sensitive=True),
}


def get_policy(route: str) -> RoutePolicy:
    """Look up a route's policy; unknown routes raise ``KeyError``."""
    return ROUTE_POLICIES[route]
