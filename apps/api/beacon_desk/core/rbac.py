from dataclasses import dataclass, field

from .errors import AccessDenied

EMPLOYEE = "EMPLOYEE"
ENGINEER_IT = "ENGINEER_IT"
ENGINEER_TRAVEL = "ENGINEER_TRAVEL"
ADMIN_IT = "ADMIN_IT"
ADMIN_TRAVEL = "ADMIN_TRAVEL"
SUPER_ADMIN = "SUPER_ADMIN"

ADMIN_ROLES = (ADMIN_IT, ADMIN_TRAVEL, SUPER_ADMIN)

_DOMAIN_ADMIN = {"IT": ADMIN_IT, "TRAVEL": ADMIN_TRAVEL}
_DOMAIN_ENGINEER = {"IT": ENGINEER_IT, "TRAVEL": ENGINEER_TRAVEL}


@dataclass
class Principal:
    """Acting user as asserted by the identity provider."""

    user_id: int
    email: str
    roles: list[str] = field(default_factory=list)

    def has_any(self, *roles: str) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_super_admin(self) -> bool:
        return SUPER_ADMIN in self.roles


def require_roles(principal: Principal, *roles: str) -> None:
    if not principal.has_any(*roles):
        raise AccessDenied(f"Access denied. Required roles: {', '.join(roles)}")


def admin_domains(principal: Principal) -> set[str] | None:
    """Domains the principal administers. None means every domain."""
    if principal.is_super_admin:
        return None
    return {domain for domain, role in _DOMAIN_ADMIN.items() if role in principal.roles}


def can_administer(principal: Principal, domain: str) -> bool:
    domains = admin_domains(principal)
    return domains is None or domain in domains


def require_domain_admin(principal: Principal, domain: str) -> None:
    if not can_administer(principal, domain):
        raise AccessDenied()


def is_domain_engineer(principal: Principal, domain: str) -> bool:
    if can_administer(principal, domain):
        return True
    role = _DOMAIN_ENGINEER.get(domain)
    return role is not None and role in principal.roles
