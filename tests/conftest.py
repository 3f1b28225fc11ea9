"""
Shared pytest fixtures for the procurement workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - env: one tenant with a project, discipline, item, supplier and the
      users every workflow test needs (requester, approvers per level,
      downstream initiator, administrator, an unassigned approver);
      ``build_env()`` builds the same data in any other app context
    - actor_of / headers_for: turn a User into an Actor or identity headers
    - mtf_factory: create MTFs through the document service

Entities are created through the ORM and committed, so the service layer
(which commits and rolls back on its own) always sees them.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from procurement import create_app
from procurement.models import db as _db
from procurement.models.auth import Role, Tenant, User
from procurement.models.master_data import Discipline, Item, Supplier
from procurement.models.project import Project
from procurement.services.actor import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM builders ─────────────────────────────────────────────────────────


def make_tenant(slug="acme"):
    t = Tenant(name=slug.title(), slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


def _role(name, level=None):
    role = Role.query.filter_by(name=name, level=level).first()
    if role is None:
        role = Role(name=name, level=level)
        _db.session.add(role)
        _db.session.flush()
    return role


def make_user(tenant, email, roles=(), projects=(), disciplines=()):
    u = User(tenant_id=tenant.id, email=email, first_name=email.split("@")[0], last_name="Test")
    u.roles = [_role(name, level) for name, level in roles]
    u.projects = list(projects)
    u.disciplines = list(disciplines)
    _db.session.add(u)
    _db.session.commit()
    return u


def make_project(tenant, code="PRJ-1", **levels):
    levels = {
        "max_mtf_approval_level": 2,
        "max_stf_approval_level": 1,
        "max_otf_approval_level": 1,
        "max_mrf_approval_level": 1,
        **levels,
    }
    p = Project(tenant_id=tenant.id, code=code, name=f"Project {code}", base_currency="USD", **levels)
    _db.session.add(p)
    _db.session.commit()
    return p


def make_discipline(tenant, code="MECH"):
    d = Discipline(
        tenant_id=tenant.id, discipline_code=code, discipline_name=code.title(),
        budget_code=f"B-{code}", budget_name=f"{code} budget",
    )
    _db.session.add(d)
    _db.session.commit()
    return d


def make_item(tenant, code="PIPE-01", price="10.00"):
    i = Item(
        tenant_id=tenant.id, material_code=code, material_name=f"Item {code}",
        material_description=f"Description of {code}", unit="pcs",
        budget_unit_price=Decimal(price),
    )
    _db.session.add(i)
    _db.session.commit()
    return i


def make_supplier(tenant, name="Gulf Supply", is_active=True):
    s = Supplier(tenant_id=tenant.id, name=name, is_active=is_active)
    _db.session.add(s)
    _db.session.commit()
    return s


APPROVER_TYPES = ("MTF", "STF", "OTF", "MRF")


def approver_roles(level):
    return [(f"{t} Approver", level) for t in APPROVER_TYPES]


def build_env():
    """A fully wired tenant: project (MTF ceiling 2, others 1) and its people.

    Built in whichever app context is current.
    """
    tenant = make_tenant("acme")
    project = make_project(tenant)
    discipline = make_discipline(tenant)
    item = make_item(tenant)
    supplier = make_supplier(tenant)
    scope = {"projects": [project], "disciplines": [discipline]}

    return SimpleNamespace(
        tenant=tenant,
        project=project,
        discipline=discipline,
        item=item,
        supplier=supplier,
        requester=make_user(tenant, "requester@acme.test", roles=[("Requester", None)], **scope),
        approver_l1=make_user(tenant, "l1@acme.test", roles=approver_roles(1), **scope),
        approver_l2=make_user(tenant, "l2@acme.test", roles=approver_roles(2), **scope),
        buyer=make_user(
            tenant, "buyer@acme.test",
            roles=[("STF Initiator", None), ("OTF Initiator", None), ("MRF Initiator", None)],
            **scope,
        ),
        admin=make_user(tenant, "admin@acme.test", roles=[("Administrator", None)], **scope),
        outsider=make_user(tenant, "outsider@acme.test", roles=approver_roles(1)),
    )


@pytest.fixture()
def env():
    return build_env()


@pytest.fixture()
def actor_of():
    """Freeze a User (re-read from the DB) into an Actor."""
    def _actor(user) -> Actor:
        return Actor.from_user(_db.session.get(User, user.id))
    return _actor


@pytest.fixture()
def headers_for():
    def _headers(user):
        return {"X-Tenant-ID": str(user.tenant_id), "X-User-Id": str(user.id)}
    return _headers


@pytest.fixture()
def mtf_factory(env, actor_of):
    """Create an MTF for ``env`` via the service and return its document dict."""
    from procurement.services.document_service import create_document

    def _create(quantities=(100,), user=None, project=None):
        result = create_document(
            "MTF",
            actor_of(user or env.requester),
            project_id=(project or env.project).id,
            discipline_id=env.discipline.id,
            lines=[{"item_id": env.item.id, "quantity": q} for q in quantities],
        )
        return result["document"]
    return _create


@pytest.fixture()
def chain(env, actor_of, mtf_factory):
    """Build documents down the MTF → STF → OTF → MRF → MDF chain for ``env``.

    ``approved(...)`` walks a document through every approval level of the
    ``env`` project; the ``stf``/``otf``/``mrf`` helpers create (and by
    default approve) one document with a line per ``(source_line_id, qty)``.
    """
    from procurement.services import approval_engine
    from procurement.services.delivery_service import create_mdf_issue
    from procurement.services.document_service import create_document

    def approved(doc_code, doc):
        levels = env.project.max_approval_level(doc_code)
        approvers = [env.approver_l1, env.approver_l2][:levels]
        for approver in approvers:
            doc = approval_engine.approve(doc_code, doc["id"], actor_of(approver))["document"]
        return doc

    def mtf(*quantities):
        return approved("MTF", mtf_factory(quantities=quantities or (100,)))

    def _downstream(doc_code, pairs, approve=True, **header_data):
        doc = create_document(
            doc_code, actor_of(env.buyer),
            project_id=env.project.id, discipline_id=env.discipline.id,
            lines=[{"source_line_id": src, "quantity": qty} for src, qty in pairs],
            **header_data,
        )["document"]
        return approved(doc_code, doc) if approve else doc

    def stf(pairs, approve=True):
        return _downstream("STF", pairs, approve, supplier_id=env.supplier.id)

    def otf(pairs, approve=True):
        return _downstream("OTF", pairs, approve, invoice_no="INV-1", invoice_date="2026-01-15")

    def mrf(pairs, approve=True):
        return _downstream("MRF", pairs, approve)

    def mdf(pairs):
        return create_mdf_issue(
            actor_of(env.buyer), project_id=env.project.id, discipline_id=env.discipline.id,
            lines=[{"source_line_id": src, "quantity": qty} for src, qty in pairs],
        )

    return SimpleNamespace(approved=approved, mtf=mtf, stf=stf, otf=otf, mrf=mrf, mdf=mdf)
