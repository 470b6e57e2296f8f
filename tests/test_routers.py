"""
tests/test_routers.py -- HTTP tests for every API router
Covers: health + request id, error envelopes, backfill run lifecycle over HTTP,
candidate review queue, proposals and thread links, status catalog config,
mailbox push hook and on-demand polling
Called by: pytest
Depends on: conftest client fixture (auth, mailbox and scorer overridden)
"""

import base64
import json
from datetime import datetime, timedelta, timezone

from plannercrm.models import BackfillRun, EmailMessage, EmailThread, RunStatus
from plannercrm.services import candidate_store, proposals
from plannercrm.services.mailbox_client import HistoryPage
from plannercrm.services.scorer import ScorerResult
from plannercrm.services.status_detection import Detection


def _candidate(db, owner_id, email="dj@beats.io", name="DJ Beats"):
    candidate, _ = candidate_store.record_sighting(
        db, owner_id, email, name, context={"subject": "Party", "content": "", "date": "2026-01-01"})
    db.commit()
    return candidate


# ── App ──────────────────────────────────────────────────────────────


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": "1.0.0"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_request_id_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"
    assert len(client.get("/health").headers["X-Request-ID"]) == 8


def test_validation_error_envelope(client):
    resp = client.post("/api/backfill/runs", json={"timeframe_months": 30})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "Validation error"
    assert body["status_code"] == 422
    assert body["detail"][0]["loc"][-1] == "timeframe_months"


# ── Backfill ─────────────────────────────────────────────────────────


def test_start_run_then_conflict(client):
    resp = client.post("/api/backfill/runs", json={"timeframe_months": 3})
    assert resp.status_code == 200
    run = resp.json()
    assert run["status"] == "PENDING"
    assert run["timeframe_months"] == 3
    assert run["event_context"] == "Weddings and corporate galas"

    again = client.post("/api/backfill/runs", json={})
    assert again.status_code == 409
    assert again.json()["status_code"] == 409
    assert again.json()["request_id"]

    active = client.get("/api/backfill/runs/active").json()["run"]
    assert active["id"] == run["id"]


def test_tick_to_completion_and_enrich(client, fake_mailbox, fake_scorer, make_message):
    fake_mailbox.pages = [HistoryPage(messages=[make_message()], next_cursor=None, has_more=False)]
    run_id = client.post("/api/backfill/runs", json={}).json()["id"]

    tick = client.post(f"/api/backfill/runs/{run_id}/tick").json()
    assert tick["done"] is True
    assert tick["status"] == "COMPLETED"
    assert tick["scanned"] == 1
    assert tick["created"] == 1
    assert client.get("/api/backfill/runs/active").json()["run"] is None

    fake_scorer.results["jane@bloomandco.com"] = ScorerResult(
        is_relevant=True, confidence=0.9, suggested_supplier_name="Bloom & Co",
        suggested_categories=["florist"])
    enriched = client.post(f"/api/backfill/runs/{run_id}/enrich").json()
    assert enriched["imported"] == 1
    assert enriched["run"]["enrichment_status"] == "COMPLETED"


def test_cancel_restart_and_list(client):
    run_id = client.post("/api/backfill/runs", json={}).json()["id"]
    assert client.post(f"/api/backfill/runs/{run_id}/cancel").json()["status"] == "CANCELLED"
    assert client.post(f"/api/backfill/runs/{run_id}/restart").json()["status"] == "PENDING"
    items = client.get("/api/backfill/runs").json()["items"]
    assert [r["id"] for r in items] == [run_id]


def test_restart_completed_run_conflicts(client, db_session, test_user):
    run = BackfillRun(owner_id=test_user.id, status=RunStatus.COMPLETED, timeframe_months=6,
                      created_at=datetime.now(timezone.utc))
    db_session.add(run)
    db_session.commit()
    assert client.post(f"/api/backfill/runs/{run.id}/restart").status_code == 409


def test_other_owners_run_forbidden(client, db_session, other_user):
    run = BackfillRun(owner_id=other_user.id, status=RunStatus.PENDING, timeframe_months=6,
                      created_at=datetime.now(timezone.utc))
    db_session.add(run)
    db_session.commit()
    assert client.get(f"/api/backfill/runs/{run.id}").status_code == 403
    assert client.get("/api/backfill/runs/9999").status_code == 404


# ── Candidates ───────────────────────────────────────────────────────


def test_list_and_get_candidates(client, db_session, test_user):
    candidate = _candidate(db_session, test_user.id)
    data = client.get("/api/supplier-candidates").json()
    assert data["total"] == 1
    assert data["items"][0]["email"] == "dj@beats.io"
    assert data["items"][0]["relevance"] == "unknown"

    one = client.get(f"/api/supplier-candidates/{candidate.id}").json()
    assert one["display_name"] == "DJ Beats"
    assert one["email_context"][0]["subject"] == "Party"


def test_accept_with_overrides(client, db_session, test_user):
    candidate = _candidate(db_session, test_user.id)
    resp = client.post(f"/api/supplier-candidates/{candidate.id}/accept",
                       json={"supplier_name": "Beats Entertainment", "categories": ["dj"]})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert resp.json()["supplier_id"] is not None


def test_dismiss_twice_conflicts(client, db_session, test_user):
    candidate = _candidate(db_session, test_user.id)
    assert client.post(f"/api/supplier-candidates/{candidate.id}/dismiss").json()["status"] == "DISMISSED"
    assert client.post(f"/api/supplier-candidates/{candidate.id}/dismiss").status_code == 409


def test_bulk_dismiss_reports_per_item(client, db_session, test_user):
    candidate = _candidate(db_session, test_user.id)
    data = client.post("/api/supplier-candidates/bulk-dismiss",
                       json={"ids": [candidate.id, 9999]}).json()
    assert data["succeeded"] == 1
    assert data["failed"] == 1
    assert data["results"][1]["ok"] is False


def test_bulk_accept_requires_ids(client):
    assert client.post("/api/supplier-candidates/bulk-accept", json={"ids": []}).status_code == 422


def test_merge_into_supplier(client, db_session, test_user, test_supplier):
    candidate = _candidate(db_session, test_user.id, "events@bloomandco.com", "Events")
    data = client.post(f"/api/supplier-candidates/{candidate.id}/merge",
                       json={"supplier_id": test_supplier.id}).json()
    assert data["status"] == "MERGED"
    assert data["supplier_id"] == test_supplier.id


def test_enrich_candidates(client, db_session, test_user, fake_scorer):
    candidate = _candidate(db_session, test_user.id)
    fake_scorer.results["dj@beats.io"] = ScorerResult(is_relevant=True, confidence=0.6)
    counts = client.post("/api/supplier-candidates/enrich", json={"ids": [candidate.id]}).json()
    assert counts["needs_review"] == 1
    assert fake_scorer.contexts == ["Weddings and corporate galas"]
    item = client.get(f"/api/supplier-candidates/{candidate.id}").json()
    assert item["relevance"] == "relevant"
    assert item["enriched"] is True


def test_other_owners_candidate_forbidden(client, db_session, other_user):
    theirs = _candidate(db_session, other_user.id)
    assert client.post(f"/api/supplier-candidates/{theirs.id}/accept").status_code == 403


# ── Proposals ────────────────────────────────────────────────────────


def _proposal(db, project, supplier):
    proposal = proposals.propose(
        db, project_id=project.id, supplier_id=supplier.id,
        detection=Detection(to_status="quote-received", confidence=0.8, matched_signals=["$"]))
    db.commit()
    return proposal


def test_proposal_list_count_resolve(client, db_session, test_project, test_supplier, project_supplier):
    proposal = _proposal(db_session, test_project, test_supplier)

    items = client.get("/api/proposals").json()["items"]
    assert items[0]["project_name"] == "Smith Wedding"
    assert items[0]["supplier_name"] == "Bloom & Co"
    assert client.get("/api/proposals/count").json() == {"proposals": 1, "threads": 0, "total": 1}

    resolved = client.post(f"/api/proposals/{proposal.id}/resolve", json={"action": "accept"})
    assert resolved.json()["status"] == "ACCEPTED"
    stale = client.post(f"/api/proposals/{proposal.id}/resolve", json={"action": "reject"})
    assert stale.status_code == 409


def test_resolve_unknown_action_rejected(client, db_session, test_project, test_supplier, project_supplier):
    proposal = _proposal(db_session, test_project, test_supplier)
    resp = client.post(f"/api/proposals/{proposal.id}/resolve", json={"action": "maybe"})
    assert resp.status_code == 422


def _pending_thread(db, owner, supplier, subject="Smith Wedding florals"):
    thread = EmailThread(owner_id=owner.id, provider_thread_id=f"t-{subject}", subject=subject,
                         participant_emails=[supplier.email])
    db.add(thread)
    db.add(EmailMessage(
        owner_id=owner.id, thread=thread, provider_message_id=f"m-{subject}",
        direction="inbound", from_email=supplier.email, to_emails=[owner.email],
        body="Attached is the quote, $1500 total",
        sent_at=datetime.now(timezone.utc) - timedelta(hours=1), supplier_id=supplier.id,
    ))
    db.commit()
    return thread


def test_thread_queue_link_and_dismiss(client, db_session, test_user, test_supplier,
                                       test_project, project_supplier):
    linked = _pending_thread(db_session, test_user, test_supplier)
    dismissed = _pending_thread(db_session, test_user, test_supplier, subject="Other florals")

    items = client.get("/api/proposals/threads").json()["items"]
    assert {t["thread_id"] for t in items} == {linked.id, dismissed.id}
    match = next(t for t in items if t["thread_id"] == linked.id)["matches"][0]
    assert match["project_id"] == test_project.id
    assert match["match_reasons"]

    resp = client.post(f"/api/proposals/threads/{linked.id}/link", json={"project_id": test_project.id})
    assert resp.json() == {"thread_id": linked.id, "project_id": test_project.id, "status": "linked"}
    resp = client.post(f"/api/proposals/threads/{dismissed.id}/dismiss")
    assert resp.json() == {"thread_id": dismissed.id, "status": "dismissed"}

    counts = client.get("/api/proposals/count").json()
    assert counts["threads"] == 0
    assert counts["proposals"] == 1


# ── Statuses ─────────────────────────────────────────────────────────


def test_status_catalog_and_config(client):
    items = client.get("/api/statuses").json()["items"]
    by_slug = {s["slug"]: s for s in items}
    assert by_slug["quote-received"]["is_enabled"] is True
    assert [s["order"] for s in items] == sorted(s["order"] for s in items)

    resp = client.patch("/api/statuses/quote-received/config", json={"is_enabled": False})
    assert resp.json() == {"slug": "quote-received", "is_enabled": False}
    items = client.get("/api/statuses").json()["items"]
    assert {s["slug"]: s for s in items}["quote-received"]["is_enabled"] is False


def test_configure_unknown_status_404(client):
    resp = client.patch("/api/statuses/not-a-status/config", json={"is_enabled": False})
    assert resp.status_code == 404
    assert "not-a-status" in resp.json()["error"]


# ── Mailbox ──────────────────────────────────────────────────────────


def _push(email):
    payload = json.dumps({"emailAddress": email, "historyId": 99}).encode()
    return {"message": {"data": base64.b64encode(payload).decode()}}


def test_push_notification(client, test_user):
    assert client.post("/api/mailbox/notifications", json=_push(test_user.email)).json() == {"status": "queued"}
    assert test_user.poll_requested_at is not None
    assert client.post("/api/mailbox/notifications", json=_push("x@y.com")).json() == {"status": "ignored"}


def test_push_notification_bad_body(client):
    resp = client.post("/api/mailbox/notifications", content=b"not json",
                       headers={"Content-Type": "application/json"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ignored"}


def test_process_new(client, fake_mailbox, make_message):
    fake_mailbox.pages = [HistoryPage(messages=[make_message(direction="inbound")],
                                      next_cursor=None, has_more=False)]
    assert client.get("/api/mailbox/process-new").json() == {"fetched": 1, "ingested": 1, "complete": True}
    assert fake_mailbox.calls[0]["sent_only"] is False
