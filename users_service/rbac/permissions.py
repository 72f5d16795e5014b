"""
Role → capability mapping.

Endpoints never compare role names.  They ask for a `Capability` and
`has_capability` answers from this table.  The role set is closed
(`UserRole`); adding a role means adding a row here.

Governance rule:
    • Only ADMIN manages users and sees the admin dashboard.
    • Business roles (suppliers, pharmacies, hospitals) hold no
      user-management capability.
"""

import enum

from users_service.models.user import UserRole


class Capability(str, enum.Enum):
    USERS_READ = "users.read"
    USERS_UPDATE = "users.update"
    USERS_DEACTIVATE = "users.deactivate"
    DASHBOARD_VIEW = "dashboard.view"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.ADMIN: frozenset(Capability),  # full access
    UserRole.ADMIN_FOURNISSEUR: frozenset(),
    UserRole.PHARMACIE_AUTORISEE: frozenset(),
    UserRole.PHARMACIE_STANDARD: frozenset(),
    UserRole.HOPITAL: frozenset(),
}

# Roles a visitor may pick for themselves at registration.
SELF_ASSIGNABLE_ROLES: frozenset[UserRole] = frozenset(
    role for role, caps in ROLE_CAPABILITIES.items() if not caps
)


def has_capability(role: UserRole, *capabilities: Capability) -> bool:
    granted = ROLE_CAPABILITIES.get(role, frozenset())
    return set(capabilities).issubset(granted)
