from __future__ import annotations

from datetime import date

import pytest

from app import create_app
from pytests.common import create_empty_sqlite_db, patch_app_db
from utils.document_store import upsert_candidate
from utils.exhibit_detector import LABEL_TECHNICAL_REPORT, LABEL_TECHNICAL_REPORT_SUMMARY, CandidateDocument


def _doc(acc: str, cik: str, form: str, filed: date, name: str = "ex961.htm", label: str = LABEL_TECHNICAL_REPORT_SUMMARY):
    return CandidateDocument(
        accession_number=acc,
        cik=cik,
        company_name=f"Company {cik}",
        form_type=form,
        filing_date=filed,
        document_name=name,
        document_url=f"https://www.sec.gov/Archives/edgar/data/{cik}/{acc.replace('-', '')}/{name}",
        exhibit_label=label,
        exhibit_number="96.1",
    )


@pytest.fixture()
def client(sqlite_db):
    with sqlite_db() as s:
        upsert_candidate(s, _doc("0001801368-24-000010", "1801368", "10-K", date(2024, 2, 22)))
        upsert_candidate(s, _doc("0001801368-24-000010", "1801368", "10-K", date(2024, 2, 22), name="ex962.htm"))
        upsert_candidate(
            s,
            _doc("0000215466-24-000003", "215466", "8-K", date(2024, 3, 5), name="d1.htm", label=LABEL_TECHNICAL_REPORT),
        )

    app = create_app()
    app.config.update(TESTING=True)
    return app.test_client()


def test_list_documents_newest_first(client):
    resp = client.get("/api/v1/documents")
    assert resp.status_code == 200

    body = resp.get_json()
    assert body["ok"] is True
    data = body["data"]
    assert data["count"] == 3
    assert data["results"][0]["cik"] == "215466"
    assert data["results"][0]["filing_date"] == "2024-03-05"
    assert data["results"][0]["exhibit_label"] == LABEL_TECHNICAL_REPORT


def test_filters(client):
    data = client.get("/api/v1/documents?cik=0001801368").get_json()["data"]
    assert {r["document_name"] for r in data["results"]} == {"ex961.htm", "ex962.htm"}

    data = client.get("/api/v1/documents?form_type=8-K").get_json()["data"]
    assert [r["accession_number"] for r in data["results"]] == ["0000215466-24-000003"]

    data = client.get("/api/v1/documents?date_from=2024-01-01&date_to=2024-03-05").get_json()["data"]
    assert data["count"] == 2

    data = client.get("/api/v1/documents?limit=1").get_json()["data"]
    assert data["count"] == 1


def test_processed_flag_round_trip(client):
    first = client.get("/api/v1/documents?cik=215466").get_json()["data"]["results"][0]

    resp = client.post(f"/api/v1/documents/{first['id']}/processed")
    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"id": first["id"], "processed": True}

    processed = client.get("/api/v1/documents?processed=true").get_json()["data"]
    assert [r["id"] for r in processed["results"]] == [first["id"]]
    assert processed["results"][0]["processed_at"] is not None

    pending = client.get("/api/v1/documents?processed=false").get_json()["data"]
    assert pending["count"] == 2


def test_mark_unknown_document_is_404(client):
    resp = client.post("/api/v1/documents/9999/processed")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "not_found"


@pytest.mark.parametrize("query", ["date_from=yesterday", "date_to=2024-02-30", "processed=maybe"])
def test_bad_query_params_are_400(client, query):
    resp = client.get(f"/api/v1/documents?{query}")

    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "bad_request"


def test_stats(client):
    resp = client.get("/api/v1/documents/stats")
    assert resp.status_code == 200

    data = resp.get_json()["data"]
    assert data == {"total": 3, "unprocessed": 3, "latest_filing_date": "2024-03-05"}


def test_stats_on_empty_store(tmp_path, monkeypatch):
    session, engine = create_empty_sqlite_db(tmp_path / "empty.sqlite")
    session.close()
    patch_app_db(monkeypatch, engine)

    data = create_app().test_client().get("/api/v1/documents/stats").get_json()["data"]

    assert data == {"total": 0, "unprocessed": 0, "latest_filing_date": None}
