"""
Unit tests for role ranking
"""

from agritenant.core.roles import (
    ADMIN_ROLE_ORDER,
    Role,
    admin_rank,
    is_system_role,
    is_tenant_role,
    meets_admin_role,
    parse_role,
)


def test_admin_ladder_order():
    """Super admin outranks platform admin, which outranks admin"""
    assert ADMIN_ROLE_ORDER == (Role.SUPER_ADMIN, Role.PLATFORM_ADMIN, Role.ADMIN)
    assert admin_rank(Role.SUPER_ADMIN) < admin_rank(Role.PLATFORM_ADMIN) < admin_rank(Role.ADMIN)


def test_meets_admin_role():
    assert meets_admin_role(Role.SUPER_ADMIN, Role.ADMIN)
    assert meets_admin_role(Role.PLATFORM_ADMIN, Role.PLATFORM_ADMIN)
    assert meets_admin_role("admin", "admin")
    assert not meets_admin_role(Role.ADMIN, Role.PLATFORM_ADMIN)
    assert not meets_admin_role(Role.ADMIN, Role.SUPER_ADMIN)


def test_tenant_roles_are_not_on_the_admin_ladder():
    assert admin_rank(Role.TENANT_OWNER) is None
    assert not meets_admin_role(Role.SUPER_ADMIN, Role.TENANT_USER)
    assert not meets_admin_role(Role.TENANT_ADMIN, Role.ADMIN)


def test_parse_role():
    assert parse_role("SUPER_ADMIN") == Role.SUPER_ADMIN
    assert parse_role(Role.FARMER) is Role.FARMER
    assert parse_role("janitor") is None
    assert parse_role(None) is None


def test_system_and_tenant_roles():
    assert is_system_role(Role.SUPER_ADMIN)
    assert is_system_role("platform_admin")
    assert not is_system_role(Role.ADMIN)
    assert not is_system_role(None)
    assert is_tenant_role(Role.DEALER)
    assert not is_tenant_role(Role.ADMIN)
