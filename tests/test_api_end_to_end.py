"""
End-to-end API scenario: one cycle from preparation to archive.

    create cycle → initializing → register assignment → active → generate
    → instructor uploads 4 files → verifier approves 3 → 75% → verifying
    → repeat generation is a no-op → closing → archived (every gate off)
"""

from evidence_portfolio.models import db
from evidence_portfolio.models.assignment import VerifierAssignment
from evidence_portfolio.models.portfolio import PortfolioNode


def _post(client, url, user, headers, **payload):
    return client.post(url, json=payload, headers=headers(user))


def test_full_cycle_scenario(client, template, admin, instructor, verifier, subject, headers):
    res = _post(client, "/api/v1/cycles", admin, headers,
                name="2025-I", start_date="2025-03-01", end_date="31.07.2025", period_label="2025-I")
    assert res.status_code == 201, res.get_json()
    cycle_id = res.get_json()["id"]

    for state in ("initializing", "active"):
        res = _post(client, f"/api/v1/cycles/{cycle_id}/transition", admin, headers, state=state)
        assert res.status_code == 200, res.get_json()

    res = _post(client, f"/api/v1/cycles/{cycle_id}/assignments", admin, headers,
                records=[{"instructor_id": instructor.id, "subject_id": subject.id, "group_label": "A"}])
    assert res.status_code == 201
    assignment_id = res.get_json()["created"][0]["id"]
    res = _post(client, f"/api/v1/cycles/{cycle_id}/verifier-assignments", admin, headers,
                records=[{"verifier_id": verifier.id, "instructor_id": instructor.id}])
    assert res.status_code == 201
    assert VerifierAssignment.query.count() == 1

    res = _post(client, f"/api/v1/cycles/{cycle_id}/portfolios/generate", admin, headers)
    assert res.status_code == 200
    assert res.get_json()["created_count"] == 1

    res = client.get("/api/v1/portfolios", headers=headers(instructor))
    tree = res.get_json()["items"][0]
    assert tree["name"] == "Algorithms - Group A"
    leaf_id = tree["children"][0]["id"]

    file_ids = []
    for i in range(4):
        res = _post(client, f"/api/v1/nodes/{leaf_id}/files", instructor, headers,
                    original_name=f"evidence-{i}.pdf", blob_id=f"blob-{i}", size_bytes=1000 + i)
        assert res.status_code == 201, res.get_json()
        file_ids.append(res.get_json()["file"]["id"])

    res = _post(client, "/api/v1/files/review-batch", verifier, headers,
                items=[{"id": fid, "state": "approved"} for fid in file_ids[:3]])
    assert res.status_code == 200
    assert res.get_json()["succeeded"] == 3

    res = client.get(f"/api/v1/portfolios/{tree['id']}", headers=headers(verifier))
    assert res.status_code == 200
    assert res.get_json()["completion_pct"] == 75

    res = client.get("/api/v1/verifiers/me/stats", headers=headers(verifier))
    assert res.get_json()["pending_in_scope"] == 1

    res = _post(client, f"/api/v1/cycles/{cycle_id}/transition", admin, headers, state="verifying")
    assert res.status_code == 200, res.get_json()

    # data_intake is off now; asking again returns the existing tree untouched
    node_count = PortfolioNode.query.count()
    res = _post(client, f"/api/v1/assignments/{assignment_id}/portfolio", admin, headers)
    assert res.status_code == 200, res.get_json()
    assert res.get_json()["created"] is False
    assert res.get_json()["root"]["id"] == tree["id"]
    assert PortfolioNode.query.count() == node_count

    for state in ("closing", "archived"):
        res = _post(client, f"/api/v1/cycles/{cycle_id}/transition", admin, headers, state=state)
        assert res.status_code == 200, res.get_json()

    body = res.get_json()
    assert body["state"] == "archived"
    assert not any(body["gates"].values())

    # Closed cycle: no more reviews
    res = _post(client, f"/api/v1/files/{file_ids[3]}/review", verifier, headers, state="approved")
    assert res.status_code == 423

    db.session.expire_all()
    res = client.get(f"/api/v1/cycles/{cycle_id}/status", headers=headers(admin))
    assert res.get_json()["available_transitions"] == []


def test_health_needs_no_identity(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_live_reports_template(client, template):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    checks = res.get_json()["checks"]
    assert checks["database"]["status"] == "ok"
    assert checks["structure_template"]["sections"] == 5


def test_invalid_identity_rejected(client):
    res = client.get("/api/v1/portfolios", headers={"X-User-Id": "abc", "X-User-Role": "instructor"})
    assert res.status_code == 401
    res = client.get("/api/v1/portfolios", headers={"X-User-Id": "1", "X-User-Role": "dean"})
    assert res.status_code == 401


def test_request_id_header(client, admin, headers):
    res = client.get("/api/v1/cycles", headers=headers(admin))
    assert res.status_code == 200
    assert res.headers.get("X-Request-ID")


def test_unknown_route_is_json_404(client, admin, headers):
    res = client.get("/api/v1/nowhere", headers=headers(admin))
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"
