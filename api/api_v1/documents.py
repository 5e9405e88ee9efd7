from __future__ import annotations

from flask import Blueprint, jsonify, request

import db
from api.schemas.api_responses import fail, ok
from utils.document_store import (
    count_documents,
    latest_filing_date,
    mark_processed,
    search_documents,
)
from utils.time_utils import iso_or_none, parse_ymd_date

documents_v1_bp = Blueprint("documents_v1", __name__)

_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}


def _bool_param(name: str) -> bool | None:
    raw = (request.args.get(name) or "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    if raw:
        raise ValueError(f"{name} must be true or false")
    return None


def _date_param(name: str):
    raw = (request.args.get(name) or "").strip()
    return parse_ymd_date(raw) if raw else None


@documents_v1_bp.get("/documents")
def list_documents():
    """Search stored technical documents.

    Query params:
    - cik, form_type: exact match (cik is compared without leading zeros)
    - date_from/date_to: YYYY-MM-DD, half-open window on filing_date
    - processed: true|false
    - limit: default 50, max 500
    """

    try:
        date_from = _date_param("date_from")
        date_to = _date_param("date_to")
        processed = _bool_param("processed")
    except ValueError as e:
        return jsonify(fail(str(e), code="bad_request")), 400

    try:
        limit = int((request.args.get("limit") or "").strip() or 50)
    except ValueError:
        limit = 50
    limit = max(1, min(limit, 500))

    session = db.SessionLocal()
    try:
        rows = search_documents(
            session,
            cik=(request.args.get("cik") or "").strip() or None,
            form_type=(request.args.get("form_type") or "").strip() or None,
            date_from=date_from,
            date_to=date_to,
            processed=processed,
            limit=limit,
        )
        return jsonify(ok({"count": len(rows), "results": [r.as_dict() for r in rows]}))
    finally:
        session.close()


@documents_v1_bp.get("/documents/stats")
def document_stats():
    session = db.SessionLocal()
    try:
        data = {
            "total": count_documents(session),
            "unprocessed": count_documents(session, processed=False),
            "latest_filing_date": iso_or_none(latest_filing_date(session)),
        }
        return jsonify(ok(data))
    finally:
        session.close()


@documents_v1_bp.post("/documents/<int:document_id>/processed")
def set_processed(document_id: int):
    """Flag a document as handled by downstream extraction."""

    session = db.SessionLocal()
    try:
        if not mark_processed(session, document_id):
            return jsonify(fail(f"Document {document_id} not found", code="not_found")), 404
        return jsonify(ok({"id": document_id, "processed": True}))
    finally:
        session.close()
