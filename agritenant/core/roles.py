"""
Role enumeration and ranking

Global admin roles form a total order (most privileged first). Tenant-scoped
roles are not ranked against each other: a tenant role check is an exact match.
"""

from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Closed set of roles known to the platform"""
    # Global (platform) roles
    SUPER_ADMIN = "super_admin"
    PLATFORM_ADMIN = "platform_admin"
    ADMIN = "admin"

    # Tenant-scoped roles
    TENANT_OWNER = "tenant_owner"
    TENANT_ADMIN = "tenant_admin"
    TENANT_USER = "tenant_user"
    FARMER = "farmer"
    DEALER = "dealer"


# Lower index = more privileged
ADMIN_ROLE_ORDER = (
    Role.SUPER_ADMIN,
    Role.PLATFORM_ADMIN,
    Role.ADMIN,
)

TENANT_ROLES = frozenset({
    Role.TENANT_OWNER,
    Role.TENANT_ADMIN,
    Role.TENANT_USER,
    Role.FARMER,
    Role.DEALER,
})


def parse_role(value) -> Optional[Role]:
    """Coerce a stored role string into a Role, None if unknown"""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).lower())
    except ValueError:
        return None


def admin_rank(role) -> Optional[int]:
    """Rank of a global admin role, None for roles outside the admin ladder"""
    role = parse_role(role)
    if role is None or role not in ADMIN_ROLE_ORDER:
        return None
    return ADMIN_ROLE_ORDER.index(role)


def meets_admin_role(user_role, required_role) -> bool:
    """True if user_role is at or above required_role on the admin ladder"""
    user_rank = admin_rank(user_role)
    required_rank = admin_rank(required_role)
    if user_rank is None or required_rank is None:
        return False
    return user_rank <= required_rank


def is_system_role(role) -> bool:
    """Super admins and platform admins act across every tenant"""
    return parse_role(role) in (Role.SUPER_ADMIN, Role.PLATFORM_ADMIN)


def is_tenant_role(role) -> bool:
    return parse_role(role) in TENANT_ROLES
