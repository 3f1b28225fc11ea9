"""
Tests: tiered consumption ledger.

Every downstream line consumes backlog from the line it references:

    MTF line ─▶ STF line ─▶ OTF line ─▶ MRF line ─▶ MDF line

Scenarios:
  1. creation within / beyond the upstream backlog
  2. several lines aimed at one upstream line are summed
  3. upstream line must be Approved and in the same project/discipline
  4. revising recomputes the backlog without the document's own old lines
  5. Closed documents release their quantity; Rejected ones still hold it
  6. a document whose lines are referenced downstream, even by a Closed
     document, cannot be revised
  7. MDF issues consume MRF backlog
"""

from decimal import Decimal

import pytest

from procurement.core.exceptions import InvalidTransitionError, NotFoundError, QuantityExceededError, ValidationError
from procurement.models import db
from procurement.models.documents import MTFLine, STFOrderLine
from procurement.services import approval_engine
from procurement.services.consumption_ledger import (
    backlog,
    consumed_by_source,
    consumed_quantity,
    has_downstream_consumption,
)
from procurement.services.document_service import create_document, get_line_backlog

from conftest import make_discipline, make_project


def _first_line(doc):
    return doc["lines"][0]["id"]


# ── 1. Within / beyond backlog ───────────────────────────────────────────────


class TestBacklog:

    def test_stf_within_backlog_reduces_mtf_backlog(self, chain):
        mtf = chain.mtf(100)
        mtf_line = _first_line(mtf)

        chain.stf([(mtf_line, 60)], approve=False)

        line = db.session.get(MTFLine, mtf_line)
        assert consumed_quantity("MTF", mtf_line) == Decimal("60")
        assert backlog("MTF", line) == Decimal("40")

    def test_stf_consuming_exact_backlog_is_allowed(self, chain):
        mtf_line = _first_line(chain.mtf(100))
        chain.stf([(mtf_line, 60)], approve=False)
        chain.stf([(mtf_line, 40)], approve=False)
        assert backlog("MTF", db.session.get(MTFLine, mtf_line)) == Decimal("0")

    def test_stf_beyond_backlog_is_refused(self, chain):
        mtf_line = _first_line(chain.mtf(100))
        chain.stf([(mtf_line, 60)], approve=False)

        with pytest.raises(QuantityExceededError) as exc:
            chain.stf([(mtf_line, 41)], approve=False)

        assert exc.value.source_line_id == mtf_line
        assert exc.value.available == Decimal("40")
        assert consumed_quantity("MTF", mtf_line) == Decimal("60")

    def test_lines_on_same_source_are_summed(self, chain):
        mtf_line = _first_line(chain.mtf(100))

        with pytest.raises(QuantityExceededError) as exc:
            chain.stf([(mtf_line, 60), (mtf_line, 50)], approve=False)
        assert exc.value.requested == Decimal("110")

    def test_consumed_by_source_reports_zero_for_untouched_lines(self, chain):
        mtf = chain.mtf(100, 50)
        first, second = (line["id"] for line in mtf["lines"])
        chain.stf([(first, 30)], approve=False)

        consumed = consumed_by_source("MTF", [first, second])
        assert consumed == {first: Decimal("30"), second: Decimal("0")}

    def test_line_backlog_summary(self, env, chain):
        mtf_line = _first_line(chain.mtf(100))
        chain.stf([(mtf_line, 25)], approve=False)

        summary = get_line_backlog("MTF", env.tenant.id, mtf_line)
        assert summary["quantity"] == 100.0
        assert summary["consumed"] == 25.0
        assert summary["backlog"] == 75.0
        assert summary["consumer_type"] == "STF"
        assert summary["status"] == "Approved"


# ── 2. Upstream line eligibility ─────────────────────────────────────────────


class TestSourceEligibility:

    def test_unapproved_source_line_is_refused(self, env, chain, mtf_factory):
        pending = mtf_factory(quantities=(100,))
        with pytest.raises(ValidationError) as exc:
            chain.stf([(_first_line(pending), 10)], approve=False)
        assert "lines[0].source_line_id" in exc.value.details

    def test_unknown_source_line_is_not_found(self, chain):
        with pytest.raises(NotFoundError):
            chain.stf([(999999, 10)], approve=False)

    def test_source_line_from_other_project_is_refused(self, env, actor_of, chain):
        other = make_project(env.tenant, code="PRJ-2")
        env.buyer.projects.append(other)
        db.session.commit()
        mtf_line = _first_line(chain.mtf(100))

        with pytest.raises(ValidationError) as exc:
            create_document(
                "STF", actor_of(env.buyer), project_id=other.id, discipline_id=env.discipline.id,
                lines=[{"source_line_id": mtf_line, "quantity": 10}], supplier_id=env.supplier.id,
            )
        assert "another project or discipline" in exc.value.details["lines[0].source_line_id"]

    def test_source_line_from_other_discipline_is_refused(self, env, actor_of, chain):
        elec = make_discipline(env.tenant, code="ELEC")
        env.buyer.disciplines.append(elec)
        db.session.commit()
        mtf_line = _first_line(chain.mtf(100))

        with pytest.raises(ValidationError):
            create_document(
                "STF", actor_of(env.buyer), project_id=env.project.id, discipline_id=elec.id,
                lines=[{"source_line_id": mtf_line, "quantity": 10}], supplier_id=env.supplier.id,
            )

    def test_stf_requires_active_supplier(self, env, actor_of, chain):
        env.supplier.is_active = False
        db.session.commit()
        mtf_line = _first_line(chain.mtf(100))

        with pytest.raises(ValidationError) as exc:
            chain.stf([(mtf_line, 10)], approve=False)
        assert "supplier_id" in exc.value.details


# ── 3. Revision against backlog ──────────────────────────────────────────────


class TestRevisionBacklog:

    def _otf_rejected(self, env, actor_of, chain, qty):
        mtf_line = _first_line(chain.mtf(500))
        stf_line = _first_line(chain.stf([(mtf_line, 200)]))
        otf = chain.otf([(stf_line, qty)], approve=False)
        approval_engine.reject("OTF", otf["id"], actor_of(env.approver_l1))
        return stf_line, otf

    def test_revision_beyond_backlog_is_refused(self, env, actor_of, chain):
        stf_line, otf = self._otf_rejected(env, actor_of, chain, 50)

        with pytest.raises(QuantityExceededError) as exc:
            approval_engine.revise(
                "OTF", otf["id"], actor_of(env.buyer),
                lines=[{"source_line_id": stf_line, "quantity": 250}],
            )
        assert exc.value.available == Decimal("200")

    def test_revision_ignores_own_previous_lines(self, env, actor_of, chain):
        stf_line, otf = self._otf_rejected(env, actor_of, chain, 50)

        result = approval_engine.revise(
            "OTF", otf["id"], actor_of(env.buyer),
            lines=[{"source_line_id": stf_line, "quantity": 200}],
        )

        assert result["document"]["status"] == "Pending Approval"
        assert consumed_quantity("STF", stf_line) == Decimal("200")

    def test_approved_otf_can_be_revised(self, env, actor_of, chain):
        mtf_line = _first_line(chain.mtf(500))
        stf_line = _first_line(chain.stf([(mtf_line, 200)]))
        otf = chain.otf([(stf_line, 50)])
        assert otf["status"] == "Approved"

        result = approval_engine.revise(
            "OTF", otf["id"], actor_of(env.buyer),
            lines=[{"source_line_id": stf_line, "quantity": 80}],
        )
        assert result["history"]["from_status"] == "Approved"
        assert result["document"]["current_approval_level"] == 0

    def test_revise_blocked_by_downstream_consumption(self, env, actor_of, chain):
        mtf_line = _first_line(chain.mtf(500))
        stf_line = _first_line(chain.stf([(mtf_line, 200)]))
        otf = chain.otf([(stf_line, 50)])
        chain.mrf([(_first_line(otf), 10)], approve=False)

        assert has_downstream_consumption("OTF", [_first_line(otf)])
        with pytest.raises(InvalidTransitionError):
            approval_engine.revise(
                "OTF", otf["id"], actor_of(env.buyer),
                lines=[{"source_line_id": stf_line, "quantity": 60}],
            )

    def test_closed_downstream_document_still_blocks_revise(self, env, actor_of, chain):
        mtf_line = _first_line(chain.mtf(500))
        stf_line = _first_line(chain.stf([(mtf_line, 200)]))
        otf = chain.otf([(stf_line, 50)])
        mrf = chain.mrf([(_first_line(otf), 10)], approve=False)
        approval_engine.reject("MRF", mrf["id"], actor_of(env.approver_l1))
        approval_engine.close("MRF", mrf["id"], actor_of(env.buyer))

        assert consumed_quantity("OTF", _first_line(otf)) == Decimal("0")
        with pytest.raises(InvalidTransitionError):
            approval_engine.revise(
                "OTF", otf["id"], actor_of(env.buyer),
                lines=[{"source_line_id": stf_line, "quantity": 60}],
            )


# ── 4. Closed releases, Rejected holds ───────────────────────────────────────


class TestReleaseOnClose:

    def test_rejected_document_still_consumes(self, env, actor_of, chain):
        mtf_line = _first_line(chain.mtf(100))
        stf = chain.stf([(mtf_line, 70)], approve=False)
        approval_engine.reject("STF", stf["id"], actor_of(env.approver_l1))

        assert consumed_quantity("MTF", mtf_line) == Decimal("70")
        with pytest.raises(QuantityExceededError):
            chain.stf([(mtf_line, 40)], approve=False)

    def test_closed_document_releases_quantity(self, env, actor_of, chain):
        mtf_line = _first_line(chain.mtf(100))
        stf = chain.stf([(mtf_line, 70)], approve=False)
        approval_engine.reject("STF", stf["id"], actor_of(env.approver_l1))
        approval_engine.close("STF", stf["id"], actor_of(env.buyer))

        assert consumed_quantity("MTF", mtf_line) == Decimal("0")
        chain.stf([(mtf_line, 100)], approve=False)


# ── 5. MDF ───────────────────────────────────────────────────────────────────


class TestDeliveryIssue:

    def _mrf_line(self, chain, qty=30):
        mtf_line = _first_line(chain.mtf(100))
        stf_line = _first_line(chain.stf([(mtf_line, 100)]))
        otf_line = _first_line(chain.otf([(stf_line, 100)]))
        return _first_line(chain.mrf([(otf_line, qty)]))

    def test_mdf_consumes_mrf_backlog(self, chain):
        mrf_line = self._mrf_line(chain)

        issue = chain.mdf([(mrf_line, 20)])

        assert issue["doc_number"] == "MDF-0001"
        assert issue["status"] == "Delivered"
        assert consumed_quantity("MRF", mrf_line) == Decimal("20")

    def test_mdf_beyond_received_quantity_is_refused(self, chain):
        mrf_line = self._mrf_line(chain)
        chain.mdf([(mrf_line, 20)])
        with pytest.raises(QuantityExceededError):
            chain.mdf([(mrf_line, 11)])

    def test_stf_lines_point_at_mtf_lines(self, chain):
        mtf_line = _first_line(chain.mtf(100))
        stf = chain.stf([(mtf_line, 10)], approve=False)
        line = db.session.get(STFOrderLine, _first_line(stf))
        assert line.source_line_id == mtf_line
        assert line.unit_price == Decimal("10.00")
