"""
Tests: Projects API (/api/v1/projects).

Project create/update is Administrator-only. Lowering an approval ceiling
to or below the level a pending document has already reached is refused,
as is dropping it below the level of any document that is not Closed.
"""

from procurement.models import db
from procurement.models.project import Project
from procurement.services import approval_engine

BASE = "/api/v1/projects"


def _project_body(**overrides):
    body = {
        "code": "NEW-1",
        "name": "New plant",
        "base_currency": "EUR",
        "max_mtf_approval_level": 3,
        "max_stf_approval_level": 1,
        "max_otf_approval_level": 0,
        "max_mrf_approval_level": 2,
    }
    body.update(overrides)
    return body


class TestCreateProject:

    def test_admin_creates_project(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(), headers=headers_for(env.admin))
        assert res.status_code == 201
        data = res.get_json()
        assert data["code"] == "NEW-1"
        assert data["tenant_id"] == env.tenant.id
        assert data["max_mtf_approval_level"] == 3
        assert data["max_otf_approval_level"] == 0

    def test_duplicate_code_is_409(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(code=env.project.code), headers=headers_for(env.admin))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_non_admin_is_403(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(), headers=headers_for(env.requester))
        assert res.status_code == 403

    def test_missing_name_is_400(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(name=""), headers=headers_for(env.admin))
        assert res.status_code == 400

    def test_negative_level_is_422(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(max_stf_approval_level=-1), headers=headers_for(env.admin))
        assert res.status_code == 422
        assert "max_stf_approval_level" in res.get_json()["details"]

    def test_unknown_currency_is_422(self, client, env, headers_for):
        res = client.post(BASE, json=_project_body(base_currency="XYZ"), headers=headers_for(env.admin))
        assert res.status_code == 422


class TestReadProjects:

    def test_non_admin_sees_assigned_projects(self, client, env, headers_for):
        client.post(BASE, json=_project_body(), headers=headers_for(env.admin))

        mine = client.get(BASE, headers=headers_for(env.requester)).get_json()
        everything = client.get(BASE, headers=headers_for(env.admin)).get_json()

        assert [p["code"] for p in mine["items"]] == [env.project.code]
        assert everything["total"] == 2

    def test_get_project(self, client, env, headers_for):
        res = client.get(f"{BASE}/{env.project.id}", headers=headers_for(env.requester))
        assert res.status_code == 200
        assert res.get_json()["max_mtf_approval_level"] == 2


class TestUpdateProject:

    def test_raise_ceiling(self, client, env, headers_for):
        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 4}, headers=headers_for(env.admin),
        )
        assert res.status_code == 200
        assert res.get_json()["max_mtf_approval_level"] == 4

    def test_lowering_below_pending_level_is_422(self, client, env, headers_for, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))

        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 1}, headers=headers_for(env.admin),
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_lowering_above_pending_level_is_allowed(self, client, env, headers_for, mtf_factory):
        mtf_factory()
        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 1}, headers=headers_for(env.admin),
        )
        assert res.status_code == 200

    def test_lowering_below_approved_level_is_422(self, client, env, headers_for, chain):
        doc = chain.mtf(100)
        assert (doc["status"], doc["current_approval_level"]) == ("Approved", 2)

        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 1}, headers=headers_for(env.admin),
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"
        assert db.session.get(Project, env.project.id).max_mtf_approval_level == 2

    def test_rejected_document_holds_ceiling_until_closed(self, client, env, headers_for, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l2))

        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 0}, headers=headers_for(env.admin),
        )
        assert res.status_code == 422

        approval_engine.close("MTF", doc["id"], actor_of(env.requester))
        res = client.put(
            f"{BASE}/{env.project.id}", json={"max_mtf_approval_level": 0}, headers=headers_for(env.admin),
        )
        assert res.status_code == 200
        assert res.get_json()["max_mtf_approval_level"] == 0

    def test_update_requires_admin(self, client, env, headers_for):
        res = client.put(
            f"{BASE}/{env.project.id}", json={"name": "Renamed"}, headers=headers_for(env.approver_l2),
        )
        assert res.status_code == 403

    def test_empty_body_is_400(self, client, env, headers_for):
        res = client.put(f"{BASE}/{env.project.id}", json={}, headers=headers_for(env.admin))
        assert res.status_code == 400
