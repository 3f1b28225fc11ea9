"""
Identity Models — tenants, users, roles and the assignment tables that give a
user approval authority.

Approval authority is the product of three assignments:
  - roles        (name, level) pairs, e.g. ("MTF Approver", 2)
  - projects     which projects the user may act on
  - disciplines  which disciplines (budget lines) the user may act on

Authentication is out of scope; users carry no credentials.
"""

from datetime import datetime, timezone

from procurement.models import db


# ── Role names ───────────────────────────────────────────────────────────────

ROLE_ADMINISTRATOR = "Administrator"
ROLE_REQUESTER = "Requester"
ROLE_VIEWER = "Viewer"

APPROVER_ROLES = frozenset({"MTF Approver", "STF Approver", "OTF Approver", "MRF Approver"})
INITIATOR_ROLES = frozenset({"STF Initiator", "OTF Initiator", "MRF Initiator"})
ROLE_NAMES = APPROVER_ROLES | INITIATOR_ROLES | {ROLE_ADMINISTRATOR, ROLE_REQUESTER, ROLE_VIEWER}


# ── Association tables ───────────────────────────────────────────────────────

user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

user_projects = db.Table(
    "user_projects",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("project_id", db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
)

user_disciplines = db.Table(
    "user_disciplines",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column(
        "discipline_id", db.Integer,
        db.ForeignKey("disciplines.id", ondelete="CASCADE"), primary_key=True,
    ),
)


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    """A named role, optionally bound to one approval level.

    ``level`` is NULL for non-approval roles and 1..N for ``<TYPE> Approver``
    roles. Each level is a distinct grant: holding level 2 does not imply
    level 1.
    """

    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    level = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("name", "level", name="uq_roles_name_level"),
    )

    def to_dict(self):
        return {"id": self.id, "name": self.name, "level": self.level}

    def __repr__(self):
        suffix = f" L{self.level}" if self.level is not None else ""
        return f"<Role {self.name}{suffix}>"


# ═══════════════════════════════════════════════════════════════
# 3. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100), nullable=False, default="")
    last_name = db.Column(db.String(100), nullable=False, default="")
    phone = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    tenant = db.relationship("Tenant", back_populates="users")
    roles = db.relationship("Role", secondary=user_roles, lazy="selectin")
    projects = db.relationship("Project", secondary=user_projects, lazy="selectin")
    disciplines = db.relationship("Discipline", secondary=user_disciplines, lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "phone": self.phone,
            "is_active": self.is_active,
        }
        if include_assignments:
            d["roles"] = [r.to_dict() for r in self.roles]
            d["project_ids"] = sorted(p.id for p in self.projects)
            d["discipline_ids"] = sorted(dp.id for dp in self.disciplines)
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
