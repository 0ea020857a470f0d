"""
Verification workflow tests.

Covers services/verification_service.py:
    - review_file: validate state → resolve file → coverage check → gate → commit → recompute
    - partial success when the recompute fails after the review committed
    - review_batch: per-item isolation (malformed items and storage failures included),
      one recompute per distinct root
    - get_verifier_stats
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from evidence_portfolio.core.exceptions import (
    ForbiddenError,
    InvalidReviewStateError,
    ModuleDisabledError,
    NotFoundError,
    PersistenceError,
)
from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import TeachingAssignment, VerifierAssignment
from evidence_portfolio.models.directory import Subject, User
from evidence_portfolio.models.portfolio import PortfolioNode, UploadedFile
from evidence_portfolio.services import cycle_service, portfolio_service, verification_service


def _leaves(root_id):
    return PortfolioNode.query.filter_by(parent_id=root_id).order_by(PortfolioNode.id).all()


def _files(root, count, state="pending"):
    leaf = _leaves(root.id)[0]
    created = []
    for i in range(count):
        f = UploadedFile(
            node_id=leaf.id, original_name=f"doc{i}.pdf", blob_id=f"r{root.id}-{i}",
            size_bytes=100, review_state=state,
        )
        db.session.add(f)
        created.append(f)
    db.session.commit()
    return created


def _second_root(cycle_id, instructor, admin):
    subject = Subject(code="CS404", name="Networks")
    db.session.add(subject)
    db.session.flush()
    ta = TeachingAssignment(
        instructor_id=instructor.id, subject_id=subject.id, cycle_id=cycle_id, group_label="A",
    )
    db.session.add(ta)
    db.session.commit()
    root_id = portfolio_service.generate_for_assignment(ta.id, admin.id)["root"]["id"]
    return db.session.get(PortfolioNode, root_id)


class TestReviewFile:
    def test_approve_updates_progress(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 4)

        result = verification_service.review_file(files[0].id, "approved", verifier.id, comment="ok")

        assert result["state"] == "approved"
        assert result["outcome"] == "success"
        assert result["progress_stale"] is False
        assert result["root_id"] == portfolio.id
        assert result["completion_pct"] == 25
        assert result["reviewed_at"] is not None

        record = db.session.get(UploadedFile, files[0].id)
        assert record.reviewer_id == verifier.id
        assert record.comment == "ok"

    def test_any_to_any(self, portfolio, verifier, verifier_assignment):
        f = _files(portfolio, 1)[0]
        for state, pct in (("approved", 100), ("rejected", 0), ("under_review", 0), ("approved", 100)):
            result = verification_service.review_file(f.id, state, verifier.id)
            assert result["completion_pct"] == pct

    @pytest.mark.parametrize("state", ["pending", "accepted", "", None, ["approved"], 1])
    def test_invalid_state(self, portfolio, verifier, verifier_assignment, state):
        f = _files(portfolio, 1)[0]
        with pytest.raises(InvalidReviewStateError):
            verification_service.review_file(f.id, state, verifier.id)
        assert db.session.get(UploadedFile, f.id).review_state == "pending"

    def test_invalid_state_checked_before_lookup(self, verifier):
        with pytest.raises(InvalidReviewStateError):
            verification_service.review_file(9999, "done", verifier.id)

    def test_missing_file(self, portfolio, verifier, verifier_assignment):
        with pytest.raises(NotFoundError):
            verification_service.review_file(9999, "approved", verifier.id)

    def test_unassigned_verifier(self, portfolio, verifier):
        f = _files(portfolio, 1)[0]
        with pytest.raises(ForbiddenError):
            verification_service.review_file(f.id, "approved", verifier.id)
        assert db.session.get(UploadedFile, f.id).review_state == "pending"

    def test_inactive_assignment(self, portfolio, verifier, verifier_assignment):
        verifier_assignment.is_active = False
        db.session.commit()
        f = _files(portfolio, 1)[0]
        with pytest.raises(ForbiddenError):
            verification_service.review_file(f.id, "approved", verifier.id)

    def test_assignment_for_other_instructor(self, portfolio, verifier, admin):
        other = User(email="otto@uni.edu", full_name="Otto", role="instructor")
        db.session.add(other)
        db.session.flush()
        db.session.add(VerifierAssignment(
            verifier_id=verifier.id, instructor_id=other.id, cycle_id=portfolio.cycle_id,
        ))
        db.session.commit()
        f = _files(portfolio, 1)[0]
        with pytest.raises(ForbiddenError):
            verification_service.review_file(f.id, "approved", verifier.id)

    def test_commit_failure_is_a_persistence_error(self, portfolio, verifier, verifier_assignment):
        f = _files(portfolio, 1)[0]
        with patch.object(
            db.session, "commit",
            side_effect=OperationalError("UPDATE uploaded_files", {}, Exception("database is locked")),
        ):
            with pytest.raises(PersistenceError):
                verification_service.review_file(f.id, "approved", verifier.id)
        assert db.session.get(UploadedFile, f.id).review_state == "pending"

    def test_gate_disabled(self, portfolio, verifier, verifier_assignment, admin):
        cycle_service.set_module_gate(portfolio.cycle_id, "verification", False, admin.id)
        f = _files(portfolio, 1)[0]
        with pytest.raises(ModuleDisabledError):
            verification_service.review_file(f.id, "approved", verifier.id)
        assert db.session.get(UploadedFile, f.id).review_state == "pending"

    def test_partial_success_when_recompute_fails(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 2)

        with patch(
            "evidence_portfolio.services.portfolio_service.recompute_progress",
            side_effect=SQLAlchemyError("recompute unavailable"),
        ):
            result = verification_service.review_file(files[0].id, "approved", verifier.id)

        assert result["outcome"] == "partial_success"
        assert result["progress_stale"] is True
        assert result["completion_pct"] == 0
        # The review itself is durable
        assert db.session.get(UploadedFile, files[0].id).review_state == "approved"

        # Next recompute converges
        assert portfolio_service.recompute_progress(portfolio.id) == 50


class TestReviewBatch:
    def test_mixed_results_in_input_order(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 3)

        results = verification_service.review_batch([
            {"id": files[0].id, "state": "approved"},
            {"id": 9999, "state": "approved"},
            {"id": files[1].id, "state": "bogus"},
            {"id": files[2].id, "state": "rejected", "comment": "blurry"},
        ], verifier.id)

        assert [r["id"] for r in results] == [files[0].id, 9999, files[1].id, files[2].id]
        assert [r["success"] for r in results] == [True, False, False, True]
        assert results[0]["state"] == "approved"
        assert results[0]["progress_stale"] is False
        assert "error" in results[1]
        assert db.session.get(UploadedFile, files[2].id).comment == "blurry"
        assert db.session.get(PortfolioNode, portfolio.id).completion_pct == 33

    def test_one_recompute_per_root(self, portfolio, instructor, verifier, verifier_assignment, admin):
        other_root = _second_root(portfolio.cycle_id, instructor, admin)
        a = _files(portfolio, 2)
        b = _files(other_root, 2)

        real = portfolio_service.recompute_progress
        with patch(
            "evidence_portfolio.services.portfolio_service.recompute_progress",
            side_effect=real,
        ) as spy:
            results = verification_service.review_batch(
                [{"id": f.id, "state": "approved"} for f in a + b], verifier.id,
            )

        assert all(r["success"] for r in results)
        assert spy.call_count == 2
        assert sorted(call.args[0] for call in spy.call_args_list) == sorted([portfolio.id, other_root.id])
        assert db.session.get(PortfolioNode, portfolio.id).completion_pct == 100
        assert db.session.get(PortfolioNode, other_root.id).completion_pct == 100

    def test_no_successes_no_recompute(self, portfolio, verifier, verifier_assignment):
        with patch("evidence_portfolio.services.portfolio_service.recompute_progress") as spy:
            results = verification_service.review_batch(
                [{"id": 9999, "state": "approved"}], verifier.id,
            )
        assert results[0]["success"] is False
        spy.assert_not_called()

    def test_stale_flag_per_item(self, portfolio, verifier, verifier_assignment):
        f = _files(portfolio, 1)[0]
        with patch(
            "evidence_portfolio.services.portfolio_service.recompute_progress",
            side_effect=SQLAlchemyError("boom"),
        ):
            results = verification_service.review_batch(
                [{"id": f.id, "state": "approved"}], verifier.id,
            )
        assert results[0]["success"] is True
        assert results[0]["progress_stale"] is True

    def test_malformed_items_do_not_abort_batch(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 2)

        results = verification_service.review_batch([
            {"id": files[0].id, "state": "approved"},
            {"id": files[1].id, "state": ["approved"]},
            7,
            None,
            {"id": "abc", "state": "approved"},
        ], verifier.id)

        assert [r["success"] for r in results] == [True, False, False, False, False]
        assert [r["id"] for r in results] == [files[0].id, files[1].id, None, None, "abc"]
        assert "Invalid review state" in results[1]["error"]
        assert results[0]["progress_stale"] is False
        assert db.session.get(UploadedFile, files[1].id).review_state == "pending"
        # The earlier success is still rolled up
        assert db.session.get(PortfolioNode, portfolio.id).completion_pct == 50

    def test_storage_failure_is_isolated(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 3)
        real_commit = db.session.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 2:
                raise OperationalError("UPDATE uploaded_files", {}, Exception("database is locked"))
            return real_commit()

        with patch.object(db.session, "commit", side_effect=flaky_commit):
            results = verification_service.review_batch(
                [{"id": f.id, "state": "approved"} for f in files], verifier.id,
            )

        assert [r["success"] for r in results] == [True, False, True]
        assert "Storage failure" in results[1]["error"]
        assert db.session.get(UploadedFile, files[1].id).review_state == "pending"
        assert db.session.get(PortfolioNode, portfolio.id).completion_pct == 67


class TestVerifierStats:
    def test_counts(self, portfolio, verifier, verifier_assignment):
        files = _files(portfolio, 4)
        verification_service.review_file(files[0].id, "approved", verifier.id)
        verification_service.review_file(files[1].id, "rejected", verifier.id)

        stats = verification_service.get_verifier_stats(verifier.id)

        assert stats["assigned_instructors"] == 1
        assert stats["portfolios_in_scope"] == 1
        assert stats["reviewed"] == {"approved": 1, "rejected": 1, "under_review": 0}
        assert stats["reviewed_total"] == 2
        assert stats["pending_in_scope"] == 2

    def test_cycle_filter(self, portfolio, verifier, verifier_assignment):
        stats = verification_service.get_verifier_stats(verifier.id, cycle_id=portfolio.cycle_id + 100)
        assert stats["assigned_instructors"] == 0
        assert stats["portfolios_in_scope"] == 0


class TestVerificationApi:
    def test_review_endpoint(self, client, portfolio, verifier, verifier_assignment, headers):
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={"state": "approved"},
                          headers=headers(verifier))
        assert res.status_code == 200, res.get_json()
        assert res.get_json()["completion_pct"] == 100

    def test_missing_state_is_400(self, client, portfolio, verifier, verifier_assignment, headers):
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={}, headers=headers(verifier))
        assert res.status_code == 400

    def test_invalid_state_is_422(self, client, portfolio, verifier, verifier_assignment, headers):
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={"state": "pending"},
                          headers=headers(verifier))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVALID_REVIEW_STATE"

    def test_unassigned_is_403(self, client, portfolio, verifier, headers):
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={"state": "approved"},
                          headers=headers(verifier))
        assert res.status_code == 403

    def test_instructor_cannot_review(self, client, portfolio, instructor, headers):
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={"state": "approved"},
                          headers=headers(instructor))
        assert res.status_code == 403

    def test_gate_closed_is_423(self, client, portfolio, verifier, verifier_assignment, admin, headers):
        cycle_service.set_module_gate(portfolio.cycle_id, "verification", False, admin.id)
        f = _files(portfolio, 1)[0]
        res = client.post(f"/api/v1/files/{f.id}/review", json={"state": "approved"},
                          headers=headers(verifier))
        assert res.status_code == 423

    def test_batch_endpoint(self, client, portfolio, verifier, verifier_assignment, headers):
        files = _files(portfolio, 2)
        res = client.post("/api/v1/files/review-batch", json={"items": [
            {"id": files[0].id, "state": "approved"},
            {"id": files[1].id, "state": "nope"},
        ]}, headers=headers(verifier))
        assert res.status_code == 200
        body = res.get_json()
        assert body["succeeded"] == 1
        assert body["failed"] == 1

    def test_batch_endpoint_malformed_items(self, client, portfolio, verifier, verifier_assignment, headers):
        f = _files(portfolio, 1)[0]
        res = client.post("/api/v1/files/review-batch", json={"items": [
            {"id": f.id, "state": "approved"},
            {"id": f.id, "state": ["approved"]},
            7,
            "x",
        ]}, headers=headers(verifier))

        assert res.status_code == 200
        body = res.get_json()
        assert body["succeeded"] == 1
        assert body["failed"] == 3
        assert [r["success"] for r in body["results"]] == [True, False, False, False]
        assert db.session.get(PortfolioNode, portfolio.id).completion_pct == 100

    def test_batch_requires_items(self, client, verifier, headers):
        res = client.post("/api/v1/files/review-batch", json={"items": []}, headers=headers(verifier))
        assert res.status_code == 400

    def test_stats_endpoint(self, client, portfolio, verifier, verifier_assignment, headers):
        res = client.get("/api/v1/verifiers/me/stats", headers=headers(verifier))
        assert res.status_code == 200
        assert res.get_json()["verifier_id"] == verifier.id
