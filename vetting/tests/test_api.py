"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database; audits are queued but never
actually run.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from vetting.auditor import AuditOrchestrator, BackgroundRunner
from vetting.config import get_settings
from vetting.models import SectionType

CHAIR = {"X-Member-Id": "chair-1", "X-Member-Roles": "committee_member,chair"}
MEMBER = {"X-Member-Id": "member-1", "X-Member-Roles": "committee_member"}
NATIONAL = {"X-Member-Id": "national-1", "X-Member-Roles": "national"}


def board(n: int) -> dict[str, str]:
    return {"X-Member-Id": f"board-{n}", "X-Member-Roles": "board_member"}


class _QueueOnlyRunner(BackgroundRunner):
    """Records dispatched audits without running them."""

    def __init__(self):
        super().__init__()
        self.spawned: list[str] = []

    def spawn(self, coro, *, name=None):
        self.spawned.append(name)
        coro.close()
        return None


async def _noop_research(vetting_id, audit_id, triggered_by=None):
    return None


@pytest.fixture()
def client(factory, tmp_path, monkeypatch):
    monkeypatch.setenv("VETTING_DB_PATH", str(tmp_path / "app.db"))
    monkeypatch.delenv("VETTING_REQUIRED_SECTIONS", raising=False)
    monkeypatch.delenv("VETTING_TIE_POLICY", raising=False)
    get_settings.cache_clear()

    from vetting.app import app, db_session, get_orchestrator

    def override_db_session():
        session = factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    runner = _QueueOnlyRunner()
    orchestrator = AuditOrchestrator(factory, _noop_research, runner=runner)
    app.dependency_overrides[db_session] = override_db_session
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, runner
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def _create(c, **body) -> dict:
    resp = c.post("/api/vettings", json={"candidate_name": "Jane Doe", "candidate_state": "tx",
                                         "candidate_office": "State Senate", **body}, headers=CHAIR)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _to_board_vote(c, vetting_id: str) -> None:
    for stage in ("committee_review", "interview", "recommendation"):
        assert c.patch(f"/api/vettings/{vetting_id}/stage", json={"stage": stage}, headers=MEMBER).status_code == 200
    c.patch(f"/api/vettings/{vetting_id}/recommendation", json={"recommendation": "endorse"}, headers=CHAIR)
    for section in get_settings().required_sections_for_board_vote:
        url = f"/api/vettings/{vetting_id}/sections/{section.value}"
        assert c.patch(url, json={"data": {}, "notes": "done"}, headers=CHAIR).status_code == 200
        assert c.patch(url, json={"status": "completed"}, headers=CHAIR).status_code == 200
    resp = c.patch(f"/api/vettings/{vetting_id}/stage", json={"stage": "board_vote"}, headers=CHAIR)
    assert resp.status_code == 200, resp.text


class TestAuth:
    def test_missing_identity(self, client):
        c, _ = client
        resp = c.get("/api/vettings")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_no_vetting_role(self, client):
        c, _ = client
        resp = c.get("/api/vettings", headers={"X-Member-Id": "x", "X-Member-Roles": "donor"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Vetting committee or board membership required", "code": "FORBIDDEN"}

    def test_member_cannot_open_vetting(self, client):
        c, _ = client
        resp = c.post("/api/vettings", json={"candidate_name": "X"}, headers=MEMBER)
        assert resp.status_code == 403


class TestVettingEndpoints:
    def test_create_and_get(self, client):
        c, _ = client
        created = _create(c)
        assert created["stage"] == "intake"
        assert created["candidate_state"] == "TX"
        assert len(created["sections"]) == len(SectionType)
        assert created["allowed_stages"] == ["committee_review"]
        assert created["progress"]["completed"] == 0

        resp = c.get(f"/api/vettings/{created['id']}", headers=board(1))
        assert resp.status_code == 200
        assert resp.json()["candidate_name"] == "Jane Doe"

    def test_get_404(self, client):
        c, _ = client
        resp = c.get("/api/vettings/nope", headers=MEMBER)
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_list_filters(self, client):
        c, _ = client
        _create(c)
        _create(c, candidate_name="John Roe", candidate_state="OK")
        resp = c.get("/api/vettings", params={"state": "ok"}, headers=MEMBER)
        assert [v["candidate_name"] for v in resp.json()] == ["John Roe"]
        assert c.get("/api/vettings", params={"stage": "bogus"}, headers=MEMBER).status_code == 400

    def test_invalid_transition(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.patch(f"/api/vettings/{vid}/stage", json={"stage": "board_vote"}, headers=CHAIR)
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["details"]["allowed"] == ["committee_review"]

    def test_board_vote_gate_lists_sections(self, client):
        c, _ = client
        vid = _create(c)["id"]
        for stage in ("committee_review", "interview", "recommendation"):
            c.patch(f"/api/vettings/{vid}/stage", json={"stage": stage}, headers=MEMBER)
        c.patch(f"/api/vettings/{vid}/recommendation", json={"recommendation": "endorse"}, headers=CHAIR)
        resp = c.patch(f"/api/vettings/{vid}/stage", json={"stage": "board_vote"}, headers=CHAIR)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_STAGE"
        assert "executive_summary" in resp.json()["details"]["incomplete_sections"]

    def test_interview(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.patch(f"/api/vettings/{vid}/interview", json={
            "interview_date": "2026-05-01T10:00:00Z", "interviewers": ["chair-1", "member-1"],
        }, headers=MEMBER)
        assert resp.status_code == 200
        assert resp.json()["interview_date"] == "2026-05-01T10:00:00"
        assert resp.json()["interviewers"] == ["chair-1", "member-1"]


class TestSectionEndpoints:
    def test_edit_review_cycle(self, client):
        c, _ = client
        vid = _create(c)["id"]
        url = f"/api/vettings/{vid}/sections/candidate_background"
        resp = c.post(f"{url}/assignments", json={"member_id": "member-1"}, headers=CHAIR)
        assert resp.status_code == 201
        assert resp.json()["assigned_member_ids"] == ["member-1"]
        resp = c.patch(url, json={"data": {"biography": "Small business owner"}}, headers=MEMBER)
        assert resp.json()["status"] == "in_progress"

        resp = c.post(f"{url}/review", json={"decision": "approved"}, headers=NATIONAL)
        assert resp.status_code == 400

        c.patch(url, json={"status": "completed"}, headers=MEMBER)
        resp = c.post(f"{url}/review", json={"decision": "rejected", "notes": "Add sources"}, headers=NATIONAL)
        assert resp.status_code == 200
        assert resp.json()["status"] == "in_progress"
        assert resp.json()["review_status"] == "rejected"

    def test_invalid_section_data(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.patch(f"/api/vettings/{vid}/sections/district_data", json={"data": {"population": 0}},
                       headers=CHAIR)
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_section(self, client):
        c, _ = client
        vid = _create(c)["id"]
        assert c.get(f"/api/vettings/{vid}/sections/horoscope", headers=MEMBER).status_code == 400

    def test_accept_draft_without_draft(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.post(f"/api/vettings/{vid}/sections/digital_presence_audit/accept-draft", headers=CHAIR)
        assert resp.status_code == 400

    def test_assignment_gates_editing(self, client):
        c, _ = client
        vid = _create(c)["id"]
        url = f"/api/vettings/{vid}/sections/district_data"
        resp = c.patch(url, json={"notes": "draft"}, headers=MEMBER)
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

        assert c.post(f"{url}/assignments", json={"member_id": "member-1"}, headers=MEMBER).status_code == 403
        assert c.post(f"{url}/assignments", json={"member_id": "member-1"}, headers=CHAIR).status_code == 201
        resp = c.post(f"{url}/assignments", json={"member_id": "member-1"}, headers=CHAIR)
        assert resp.status_code == 409
        assert c.patch(url, json={"notes": "draft"}, headers=MEMBER).status_code == 200

        resp = c.delete(f"{url}/assignments/member-1", headers=CHAIR)
        assert resp.status_code == 200
        assert resp.json()["assigned_member_ids"] == []
        assert c.patch(url, json={"notes": "again"}, headers=MEMBER).status_code == 403

    def test_list_sections(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.get(f"/api/vettings/{vid}/sections", headers=MEMBER)
        assert {s["section_type"] for s in resp.json()} == {t.value for t in SectionType}


class TestVoteEndpoints:
    def test_full_vote_and_finalize(self, client):
        c, _ = client
        vid = _create(c)["id"]
        _to_board_vote(c, vid)

        for n, choice in enumerate(["endorse", "endorse", "do_not_endorse", "abstain"]):
            resp = c.post(f"/api/vettings/{vid}/votes", json={"vote": choice}, headers=board(n))
            assert resp.status_code == 200

        preview = c.get(f"/api/vettings/{vid}/votes", headers=MEMBER).json()
        assert preview["projected_result"] == "endorse"
        assert preview["finalized"] is False

        resp = c.post(f"/api/vettings/{vid}/votes/finalize", headers=board(0))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["endorsement_result"] == "endorse"
        assert body["tally"] == {"endorse": 2, "do_not_endorse": 1, "no_position": 0, "abstain": 1, "total": 4}
        assert body["press_release_post_id"]
        assert body["vetting"]["stage"] == "press_release_created"

        again = c.post(f"/api/vettings/{vid}/votes/finalize", headers=board(1))
        assert again.status_code == 409
        assert again.json()["code"] == "ALREADY_FINALIZED"

        late = c.post(f"/api/vettings/{vid}/votes", json={"vote": "do_not_endorse"}, headers=board(5))
        assert late.status_code == 400

        retry = c.post(f"/api/vettings/{vid}/press-release", headers=CHAIR)
        assert retry.status_code == 400

    def test_finalize_only_abstentions(self, client):
        c, _ = client
        vid = _create(c)["id"]
        _to_board_vote(c, vid)
        c.post(f"/api/vettings/{vid}/votes", json={"vote": "abstain"}, headers=board(1))
        resp = c.post(f"/api/vettings/{vid}/votes/finalize", headers=board(1))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INSUFFICIENT_VOTES"

    def test_invalid_vote_value(self, client):
        c, _ = client
        vid = _create(c)["id"]
        resp = c.post(f"/api/vettings/{vid}/votes", json={"vote": "maybe"}, headers=board(1))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"


class TestAuditEndpoints:
    def test_trigger_and_read(self, client):
        c, runner = client
        vid = _create(c)["id"]
        assert c.get(f"/api/vettings/{vid}/audit", headers=MEMBER).json() == {"audit": None}
        assert c.get(f"/api/vettings/{vid}/audit/platforms", headers=MEMBER).status_code == 404

        resp = c.post(f"/api/vettings/{vid}/audit", headers=CHAIR)
        assert resp.status_code == 202
        audit_id = resp.json()["audit_id"]
        assert resp.json()["status"] == "running"
        assert runner.spawned == [f"audit-{audit_id}"]

        dup = c.post(f"/api/vettings/{vid}/audit", json={"force": True}, headers=CHAIR)
        assert dup.status_code == 409
        assert dup.json()["details"]["audit_id"] == audit_id

        audit = c.get(f"/api/vettings/{vid}/audit", headers=MEMBER).json()["audit"]
        assert audit["id"] == audit_id
        assert audit["status"] == "audit_pending"
        assert audit["platforms"] == []

    def test_trigger_requires_chair(self, client):
        c, _ = client
        vid = _create(c)["id"]
        assert c.post(f"/api/vettings/{vid}/audit", headers=MEMBER).status_code == 403

    def test_orphaned_listing(self, client):
        c, _ = client
        vid = _create(c)["id"]
        c.post(f"/api/vettings/{vid}/audit", headers=CHAIR)
        resp = c.get("/api/audits/orphaned", params={"older_than_minutes": 0}, headers=CHAIR)
        assert resp.status_code == 200
        assert [a["vetting_id"] for a in resp.json()] == [vid]
        assert c.get("/api/audits/orphaned", headers=CHAIR).json() == []
        assert c.get("/api/audits/orphaned", headers=MEMBER).status_code == 403


class TestStatsEndpoint:
    def test_stats(self, client):
        c, _ = client
        _create(c)
        resp = c.get("/api/stats", headers=MEMBER)
        assert resp.status_code == 200
        assert resp.json()["total"] == 1
        assert resp.json()["by_stage"]["intake"] == 1
