from __future__ import annotations

import threading
from datetime import timedelta

import pytest

import api.jobs.manager as manager_mod
from app import create_app
from jobs.exhibit_crawler import ExhibitCrawler
from pytests.common import manifest_payload, submissions_payload
from utils.document_store import upsert_candidate
from utils.exhibit_detector import LABEL_TECHNICAL_REPORT_SUMMARY, CandidateDocument
from utils.run_tracker import RunTracker
from utils.time_utils import utc_today


class _FakeEdgar:
    def __init__(self, *, gate: threading.Event | None = None):
        self.gate = gate
        self.started = threading.Event()
        self.submissions = {
            "1001": submissions_payload(1001, "Alpha Mining", [("0000001001-24-000001", "10-K", "2024-02-01")]),
            "1002": submissions_payload(1002, "Beta Corp", [("0000001002-24-000001", "10-K", "2024-02-02")]),
        }
        self.manifests = {
            "0000001001-24-000001": manifest_payload("ex-96.1.htm"),
            "0000001002-24-000001": manifest_payload("ex-10.1.htm"),
        }

    def fetch_submissions(self, cik):
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        return self.submissions[str(cik)]

    def fetch_filing_manifest(self, cik, accession_number):
        return self.manifests.get(accession_number)

    def document_exists(self, url):
        return False


def _manager(sqlite_db, client) -> manager_mod.CrawlJobManager:
    return manager_mod.CrawlJobManager(
        crawler_factory=lambda config, tracker: ExhibitCrawler(
            config, client=client, session_factory=sqlite_db, tracker=tracker
        )
    )


@pytest.fixture()
def edgar():
    return _FakeEdgar()


@pytest.fixture()
def manager(sqlite_db, edgar, monkeypatch):
    mgr = _manager(sqlite_db, edgar)
    monkeypatch.setattr(manager_mod, "crawl_job_manager", mgr)
    yield mgr
    mgr.request_stop()
    mgr.wait(5)


@pytest.fixture()
def client(manager):
    app = create_app()
    app.config.update(TESTING=True)
    return app.test_client()


_BODY = {
    "mode": "full",
    "date_from": "2024-01-01",
    "date_to": "2024-03-01",
    "ciks": ["1001", "1002"],
}


def test_trigger_returns_202_and_run_can_be_polled(client, manager):
    resp = client.post("/api/v1/crawls", json=_BODY)
    assert resp.status_code == 202

    body = resp.get_json()
    assert set(body.keys()) == {"ok", "data", "error", "meta"}
    assert body["ok"] is True
    run_id = body["data"]["run_id"]
    assert body["data"]["status_url"] == f"/api/v1/crawls/{run_id}"

    assert manager.wait(5)

    resp = client.get(f"/api/v1/crawls/{run_id}")
    assert resp.status_code == 200
    run = resp.get_json()["data"]
    assert run["status"] == "completed"
    assert run["mode"] == "full"
    assert run["date_from"] == "2024-01-01"
    assert run["date_to"] == "2024-03-01"
    assert (run["checked"], run["found"], run["imported"]) == (2, 1, 1)


def test_list_recent_runs_newest_first(client, manager):
    ids = []
    for _ in range(2):
        ids.append(client.post("/api/v1/crawls", json=_BODY).get_json()["data"]["run_id"])
        assert manager.wait(5)

    resp = client.get("/api/v1/crawls?limit=5")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert [r["id"] for r in data["runs"]] == list(reversed(ids))
    assert data["job"]["running"] is False


def test_trigger_conflicts_with_running_run(client, sqlite_db):
    tracker = RunTracker(sqlite_db)
    busy = tracker.create()
    tracker.start(busy)

    resp = client.post("/api/v1/crawls", json=_BODY)

    assert resp.status_code == 409
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "already_running"
    assert body["error"]["details"] == {"run_id": busy}


@pytest.mark.parametrize(
    "payload",
    [
        {"mode": "full", "date_from": "2024-03-01", "date_to": "2024-01-01"},
        {"mode": "refresh", "date_from": "2024-13-01"},
        {"mode": "sideways"},
        {"mode": "full", "workers": 0},
        {"mode": "full", "surprise": True},
        {"ciks": ["not-a-cik"]},
    ],
)
def test_trigger_rejects_bad_requests(client, payload):
    resp = client.post("/api/v1/crawls", json=payload)

    assert resp.status_code == 400
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "bad_request"


def test_trigger_rejects_non_object_body(client):
    resp = client.post("/api/v1/crawls", json=["full"])
    assert resp.status_code == 400


def test_unknown_run_is_404(client):
    resp = client.get("/api/v1/crawls/999")

    assert resp.status_code == 404
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "not_found"


def test_cancel_running_crawl(sqlite_db, monkeypatch):
    gate = threading.Event()
    edgar = _FakeEdgar(gate=gate)
    mgr = _manager(sqlite_db, edgar)
    monkeypatch.setattr(manager_mod, "crawl_job_manager", mgr)
    client = create_app().test_client()

    try:
        run_id = client.post("/api/v1/crawls", json={**_BODY, "workers": 1}).get_json()["data"]["run_id"]
        assert edgar.started.wait(5)

        resp = client.post(f"/api/v1/crawls/{run_id}/cancel")
        assert resp.status_code == 202
        assert resp.get_json()["data"] == {"run_id": run_id, "stop_requested": True}
    finally:
        gate.set()
        assert mgr.wait(5)

    run = client.get(f"/api/v1/crawls/{run_id}").get_json()["data"]
    assert run["status"] == "cancelled"
    assert run["imported"] == 0


def test_cancel_finished_or_unknown_run(client, manager):
    run_id = client.post("/api/v1/crawls", json=_BODY).get_json()["data"]["run_id"]
    assert manager.wait(5)

    resp = client.post(f"/api/v1/crawls/{run_id}/cancel")
    assert resp.status_code == 409
    assert resp.get_json()["error"]["details"] == {"status": "completed"}

    assert client.post("/api/v1/crawls/4242/cancel").status_code == 404


def test_startup_fails_runs_left_running(sqlite_db, manager):
    tracker = RunTracker(sqlite_db)
    stale = tracker.create()
    tracker.start(stale)

    create_app()

    run = tracker.get(stale)
    assert run["status"] == "failed"
    assert "interrupted" in run["error_message"]


def test_unknown_route_returns_json_envelope(client):
    resp = client.get("/api/v1/nope")

    assert resp.status_code == 404
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "not_found"


def test_refresh_is_accepted_when_store_is_current(client, manager, sqlite_db):
    today = utc_today()
    with sqlite_db() as s:
        upsert_candidate(
            s,
            CandidateDocument(
                accession_number="0000001001-24-000009",
                cik="1001",
                company_name="Alpha Mining",
                form_type="8-K",
                filing_date=today,
                document_name="ex961.htm",
                document_url="https://www.sec.gov/Archives/edgar/data/1001/000000100124000009/ex961.htm",
                exhibit_label=LABEL_TECHNICAL_REPORT_SUMMARY,
            ),
        )

    resp = client.post("/api/v1/crawls", json={"mode": "refresh", "ciks": ["1001", "1002"]})
    assert resp.status_code == 202
    run_id = resp.get_json()["data"]["run_id"]

    assert manager.wait(5)
    run = client.get(f"/api/v1/crawls/{run_id}").get_json()["data"]
    assert run["status"] == "completed"
    assert run["date_from"] == today.isoformat()
    assert run["date_to"] == (today + timedelta(days=1)).isoformat()
    assert run["checked"] == 0


def test_trigger_passes_discovery_options(client, monkeypatch):
    seen = {}

    def _launch(**kwargs):
        seen.update(kwargs)
        return 77

    monkeypatch.setattr(manager_mod.crawl_job_manager, "launch", _launch)

    resp = client.post("/api/v1/crawls", json={"mode": "full", "discover": True, "discover_limit": 3})

    assert resp.status_code == 202
    assert resp.get_json()["data"]["run_id"] == 77
    assert (seen["discover"], seen["discover_limit"]) == (True, 3)


def test_trigger_rejects_bad_discover_limit(client):
    resp = client.post("/api/v1/crawls", json={"discover": True, "discover_limit": 0})
    assert resp.status_code == 400
