import pytest

from beacon_desk.core.errors import AccessDenied
from beacon_desk.core.rbac import (
    ADMIN_IT,
    ADMIN_TRAVEL,
    ENGINEER_TRAVEL,
    SUPER_ADMIN,
    Principal,
    admin_domains,
    can_administer,
    is_domain_engineer,
    require_roles,
)


def principal(*roles):
    return Principal(user_id=1, email="pat@acme-corp.com", roles=list(roles))


def test_admin_domains_by_role():
    assert admin_domains(principal(SUPER_ADMIN)) is None
    assert admin_domains(principal(ADMIN_IT)) == {"IT"}
    assert admin_domains(principal(ADMIN_IT, ADMIN_TRAVEL)) == {"IT", "TRAVEL"}
    assert admin_domains(principal("EMPLOYEE")) == set()


def test_roles_outside_the_desk_domains_grant_nothing():
    hr = principal("ADMIN_HR")
    assert admin_domains(hr) == set()
    assert not can_administer(hr, "IT")
    assert not can_administer(hr, "TRAVEL")
    assert not is_domain_engineer(hr, "IT")


def test_engineer_and_admin_scoping():
    assert is_domain_engineer(principal(ENGINEER_TRAVEL), "TRAVEL")
    assert not is_domain_engineer(principal(ENGINEER_TRAVEL), "IT")
    assert is_domain_engineer(principal(ADMIN_IT), "IT")
    assert can_administer(principal(SUPER_ADMIN), "TRAVEL")


def test_require_roles():
    require_roles(principal(ADMIN_IT), ADMIN_IT, SUPER_ADMIN)
    with pytest.raises(AccessDenied):
        require_roles(principal(ENGINEER_TRAVEL), ADMIN_IT, SUPER_ADMIN)
