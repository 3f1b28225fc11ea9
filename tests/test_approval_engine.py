"""
Tests: Level Advancer — approve / reject / revise / close.

Service-level tests that call procurement.services.approval_engine directly
with Actors built from real users (see conftest ``env``). The project in
``env`` needs two MTF approval levels.

Covers:
  - two-level approval to Approved with the exact history wording
  - wrong-level approver refused without any write
  - rejection at L2 blocks a later L1 reject
  - whole and partial (line-level) rejection
  - revision restarts the chain and keeps the discarded lines in history
  - close acknowledges a rejection
  - ceiling 0 creates documents already Approved
  - history rows are append-only
"""

import pytest

from procurement.core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from procurement.models import db
from procurement.models.documents import MTFHeader
from procurement.models.history import DocumentHistory, ImmutableHistoryError
from procurement.services import approval_engine
from procurement.services.document_service import create_document, list_history

from conftest import make_project, make_tenant, make_user


def _history(doc_id):
    return DocumentHistory.query.filter_by(doc_type="MTF", document_id=doc_id).order_by(DocumentHistory.id).all()


# ── Approve ──────────────────────────────────────────────────────────────────


class TestApprove:

    def test_two_level_approval_reaches_approved(self, env, actor_of, mtf_factory):
        doc = mtf_factory()

        first = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        assert first["document"]["status"] == "Pending Approval"
        assert first["document"]["current_approval_level"] == 1
        assert all(line["current_approval_level"] == 1 for line in first["document"]["lines"])
        assert first["history"]["details"] == "MTF approved to L1."

        second = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))
        assert second["document"]["status"] == "Approved"
        assert second["document"]["current_approval_level"] == 2
        assert all(line["status"] == "Approved" for line in second["document"]["lines"])
        assert second["history"]["details"] == "MTF fully approved at L2."
        assert second["history"]["from_status"] == "Pending Approval"
        assert second["history"]["to_status"] == "Approved"

        actions = [row.action for row in _history(doc["id"])]
        assert actions == ["Created", "Approved", "Approved"]

    def test_wrong_level_approver_is_refused_without_writes(self, env, actor_of, mtf_factory):
        doc = mtf_factory()

        with pytest.raises(ForbiddenError) as exc:
            approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))
        assert exc.value.check == "role_level"

        header = db.session.get(MTFHeader, doc["id"])
        assert header.current_approval_level == 0
        assert header.version == 1
        assert len(_history(doc["id"])) == 1

    def test_unassigned_approver_is_refused(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        with pytest.raises(ForbiddenError) as exc:
            approval_engine.approve("MTF", doc["id"], actor_of(env.outsider))
        assert exc.value.check == "discipline"

    def test_approving_past_ceiling_is_invalid_transition(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))

        with pytest.raises(InvalidTransitionError):
            approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))

    def test_each_approval_bumps_version(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        first = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        second = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))
        assert (doc["version"], first["document"]["version"], second["document"]["version"]) == (1, 2, 3)

    def test_document_of_another_tenant_is_not_found(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        other = make_tenant("other")
        stranger = make_user(other, "l1@other.test", roles=[("MTF Approver", 1)])

        with pytest.raises(NotFoundError):
            approval_engine.approve("MTF", doc["id"], actor_of(stranger))


# ── Reject ───────────────────────────────────────────────────────────────────


class TestReject:

    def test_whole_reject_marks_header_and_pending_lines(self, env, actor_of, mtf_factory):
        doc = mtf_factory(quantities=(10, 20))

        result = approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1))

        assert result["document"]["status"] == "Rejected"
        assert {line["status"] for line in result["document"]["lines"]} == {"Rejected"}
        assert result["history"]["details"] == "MTF rejected at L1."

    def test_reject_at_level_two_blocks_later_level_one_reject(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        result = approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l2))
        assert result["history"]["details"] == "MTF rejected at L2."

        with pytest.raises(InvalidTransitionError):
            approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1))

    def test_lower_level_approver_cannot_reject_later_level(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))

        with pytest.raises(ForbiddenError) as exc:
            approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1))
        assert exc.value.check == "role_level"

    def test_comment_is_appended_to_details(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        result = approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1), comment="Wrong item")
        assert result["history"]["details"] == "MTF rejected at L1. Comment: Wrong item"

    def test_partial_reject_keeps_header_pending(self, env, actor_of, mtf_factory):
        doc = mtf_factory(quantities=(10, 20))
        first_line, second_line = (line["id"] for line in doc["lines"])

        result = approval_engine.reject(
            "MTF", doc["id"], actor_of(env.approver_l1), line_ids=[first_line],
        )

        assert result["document"]["status"] == "Pending Approval"
        statuses = {line["id"]: line["status"] for line in result["document"]["lines"]}
        assert statuses == {first_line: "Rejected", second_line: "Pending Approval"}
        assert result["history"]["details"] == f"MTF lines {first_line} rejected at L1."

    def test_partially_rejected_document_approves_remaining_lines(self, env, actor_of, mtf_factory):
        doc = mtf_factory(quantities=(10, 20))
        first_line, second_line = (line["id"] for line in doc["lines"])
        approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1), line_ids=[first_line])

        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        final = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l2))

        assert final["document"]["status"] == "Approved"
        lines = {line["id"]: line for line in final["document"]["lines"]}
        assert lines[first_line]["status"] == "Rejected"
        assert lines[first_line]["current_approval_level"] == 0
        assert lines[second_line]["status"] == "Approved"
        assert lines[second_line]["current_approval_level"] == 2

    def test_partial_reject_of_every_pending_line_rejects_header(self, env, actor_of, mtf_factory):
        doc = mtf_factory(quantities=(10, 20))
        ids = [line["id"] for line in doc["lines"]]

        result = approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1), line_ids=ids)
        assert result["document"]["status"] == "Rejected"

    def test_partial_reject_with_foreign_line_is_invalid(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        other = mtf_factory()

        with pytest.raises(InvalidTransitionError):
            approval_engine.reject(
                "MTF", doc["id"], actor_of(env.approver_l1), line_ids=[other["lines"][0]["id"]],
            )
        assert db.session.get(MTFHeader, doc["id"]).status == "Pending Approval"
        assert len(_history(doc["id"])) == 1


# ── Revise / close ───────────────────────────────────────────────────────────


class TestReviseAndClose:

    def _rejected(self, env, actor_of, mtf_factory, quantities=(10,)):
        doc = mtf_factory(quantities=quantities)
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l2))
        return doc

    def test_revise_restarts_chain_with_new_lines(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory, quantities=(10, 20))
        old_ids = {line["id"] for line in doc["lines"]}

        result = approval_engine.revise(
            "MTF", doc["id"], actor_of(env.requester),
            lines=[{"item_id": env.item.id, "quantity": 15}],
        )

        revised = result["document"]
        assert revised["status"] == "Pending Approval"
        assert revised["current_approval_level"] == 0
        assert len(revised["lines"]) == 1
        assert revised["lines"][0]["quantity"] == 15.0
        assert revised["lines"][0]["id"] not in old_ids
        assert result["history"]["action"] == "Revised"
        assert result["history"]["from_status"] == "Rejected"

    def test_revision_history_keeps_discarded_lines(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory, quantities=(10, 20))

        result = approval_engine.revise(
            "MTF", doc["id"], actor_of(env.requester),
            lines=[{"item_id": env.item.id, "quantity": 5}],
        )

        snapshot = result["history"]["snapshot"]
        assert snapshot["previous_status"] == "Rejected"
        assert snapshot["previous_level"] == 1
        assert sorted(line["quantity"] for line in snapshot["previous_lines"]) == [10.0, 20.0]

    def test_revised_document_can_be_approved_again(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory)
        approval_engine.revise(
            "MTF", doc["id"], actor_of(env.requester), lines=[{"item_id": env.item.id, "quantity": 5}],
        )
        result = approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))
        assert result["document"]["current_approval_level"] == 1

    def test_only_creator_may_revise(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory)
        with pytest.raises(ForbiddenError) as exc:
            approval_engine.revise(
                "MTF", doc["id"], actor_of(env.approver_l1),
                lines=[{"item_id": env.item.id, "quantity": 5}],
            )
        assert exc.value.check == "creator"

    def test_pending_document_cannot_be_revised(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        with pytest.raises(InvalidTransitionError):
            approval_engine.revise(
                "MTF", doc["id"], actor_of(env.requester),
                lines=[{"item_id": env.item.id, "quantity": 5}],
            )

    def test_close_acknowledges_rejection(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory)

        result = approval_engine.close("MTF", doc["id"], actor_of(env.requester))

        assert result["document"]["status"] == "Closed"
        assert result["history"]["details"] == "MTF rejection acknowledged by initiator."
        assert result["history"]["from_status"] == "Rejected"

    def test_close_requires_creator(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory)
        with pytest.raises(ForbiddenError):
            approval_engine.close("MTF", doc["id"], actor_of(env.approver_l2))

    def test_closed_document_cannot_be_revised(self, env, actor_of, mtf_factory):
        doc = self._rejected(env, actor_of, mtf_factory)
        approval_engine.close("MTF", doc["id"], actor_of(env.requester))
        with pytest.raises(InvalidTransitionError):
            approval_engine.revise(
                "MTF", doc["id"], actor_of(env.requester),
                lines=[{"item_id": env.item.id, "quantity": 5}],
            )


# ── Creation side of the lifecycle ───────────────────────────────────────────


class TestCreation:

    def test_created_document_starts_pending_at_level_zero(self, env, mtf_factory):
        doc = mtf_factory(quantities=(3,))
        assert doc["status"] == "Pending Approval"
        assert doc["current_approval_level"] == 0
        assert doc["doc_number"] == "MTF-0001"
        line = doc["lines"][0]
        assert line["unit_price"] == 10.0
        assert line["total_price"] == 30.0
        assert line["material_description"] == env.item.material_description
        assert doc["total_value"] == 30.0

    def test_project_without_approval_creates_approved_document(self, env, actor_of):
        project = make_project(env.tenant, code="FAST", max_mtf_approval_level=0)
        requester = make_user(
            env.tenant, "fast@acme.test", roles=[("Requester", None)],
            projects=[project], disciplines=[env.discipline],
        )

        result = create_document(
            "MTF", actor_of(requester), project_id=project.id, discipline_id=env.discipline.id,
            lines=[{"item_id": env.item.id, "quantity": 1}],
        )

        assert result["document"]["status"] == "Approved"
        assert result["document"]["current_approval_level"] == 0
        assert result["history"]["to_status"] == "Approved"

    def test_quantity_rounding_to_zero_is_refused(self, env, mtf_factory):
        with pytest.raises(ValidationError) as exc:
            mtf_factory(quantities=("0.00001",))
        assert "lines[0].quantity" in exc.value.details
        assert MTFHeader.query.count() == 0

    def test_revision_with_unstorable_quantity_is_refused(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.reject("MTF", doc["id"], actor_of(env.approver_l1))
        with pytest.raises(ValidationError):
            approval_engine.revise(
                "MTF", doc["id"], actor_of(env.requester),
                lines=[{"item_id": env.item.id, "quantity": "1.00001"}],
            )
        assert db.session.get(MTFHeader, doc["id"]).status == "Rejected"

    def test_history_is_listed_oldest_first(self, env, actor_of, mtf_factory):
        doc = mtf_factory()
        approval_engine.approve("MTF", doc["id"], actor_of(env.approver_l1))

        rows = list_history("MTF", env.tenant.id, doc["id"])
        assert [r["action"] for r in rows] == ["Created", "Approved"]
        assert rows[0]["from_status"] is None


# ── History immutability ─────────────────────────────────────────────────────


class TestHistoryImmutability:

    def test_history_row_cannot_be_updated(self, mtf_factory):
        doc = mtf_factory()
        row = _history(doc["id"])[0]
        row.details = "tampered"
        with pytest.raises(ImmutableHistoryError):
            db.session.flush()
        db.session.rollback()

    def test_history_row_cannot_be_deleted(self, mtf_factory):
        doc = mtf_factory()
        row = _history(doc["id"])[0]
        db.session.delete(row)
        with pytest.raises(ImmutableHistoryError):
            db.session.flush()
        db.session.rollback()
