"""
Actor — the immutable identity snapshot the workflow engine reasons about.

The engine never touches User rows directly. The identity boundary
(middleware or tests) loads the user once and freezes its role grants and
project / discipline assignments into an Actor, so gate decisions are pure
functions of their inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from procurement.core.exceptions import ForbiddenError
from procurement.models.auth import ROLE_ADMINISTRATOR, User
from procurement.services.helpers.scoped_queries import get_scoped


@dataclass(frozen=True)
class Actor:
    id: int
    tenant_id: int
    roles: frozenset = field(default_factory=frozenset)  # {(name, level | None)}
    project_ids: frozenset = field(default_factory=frozenset)
    discipline_ids: frozenset = field(default_factory=frozenset)

    def has_role(self, name: str, level: int | None = None) -> bool:
        if level is None:
            return any(role_name == name for role_name, _ in self.roles)
        return (name, level) in self.roles

    def role_levels(self, name: str) -> set[int]:
        return {lvl for role_name, lvl in self.roles if role_name == name and lvl is not None}

    @property
    def is_admin(self) -> bool:
        return self.has_role(ROLE_ADMINISTRATOR)

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id,
            tenant_id=user.tenant_id,
            roles=frozenset((r.name, r.level) for r in user.roles),
            project_ids=frozenset(p.id for p in user.projects),
            discipline_ids=frozenset(d.id for d in user.disciplines),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "roles": [
                {"name": name, "level": level}
                for name, level in sorted(self.roles, key=lambda r: (r[0], r[1] or 0))
            ],
            "project_ids": sorted(self.project_ids),
            "discipline_ids": sorted(self.discipline_ids),
        }


def load_actor(tenant_id: int, user_id: int) -> Actor:
    """Load a user within a tenant and freeze it into an Actor.

    Raises:
        NotFoundError: unknown user or user of another tenant.
        ForbiddenError: the user is deactivated.
    """
    user = get_scoped(User, user_id, tenant_id=tenant_id, resource="User")
    if not user.is_active:
        raise ForbiddenError("act", "user_active", f"user id={user_id} is deactivated")
    return Actor.from_user(user)
