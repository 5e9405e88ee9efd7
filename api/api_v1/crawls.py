from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from api.jobs import manager as jobs_manager
from api.schemas.api_responses import fail, ok
from api.schemas.crawls import CrawlRequest
from logging_utils import get_logger
from utils.run_tracker import CrawlAlreadyRunning

logger = get_logger(__name__)

crawls_v1_bp = Blueprint("crawls_v1", __name__)


def _manager() -> jobs_manager.CrawlJobManager:
    return jobs_manager.crawl_job_manager


def _validation_details(err: ValidationError) -> dict:
    return {
        "errors": [
            {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
            for e in err.errors()
        ]
    }


@crawls_v1_bp.post("/crawls")
def start_crawl():
    """Create a crawl run and start it in the background.

    Always answers 202 once the run exists; poll ``GET /crawls/<id>`` for the
    outcome.
    """

    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        return jsonify(fail("Body must be a JSON object", code="bad_request")), 400

    try:
        req = CrawlRequest.model_validate(body)
    except ValidationError as e:
        return (
            jsonify(fail("Invalid crawl request", code="bad_request", details=_validation_details(e))),
            400,
        )

    try:
        run_id = _manager().launch(
            mode=req.mode,
            date_from=req.date_from,
            date_to=req.date_to,
            ciks=req.ciks,
            workers=req.workers,
            discover=req.discover,
            discover_limit=req.discover_limit,
            triggered_by="api",
        )
    except CrawlAlreadyRunning as e:
        return (
            jsonify(fail(str(e), code="already_running", details={"run_id": e.run_id})),
            409,
        )
    except ValueError as e:
        return jsonify(fail(str(e), code="bad_request")), 400

    return jsonify(ok({"run_id": run_id, "status_url": f"/api/v1/crawls/{run_id}"})), 202


@crawls_v1_bp.get("/crawls")
def list_crawls():
    try:
        limit = int((request.args.get("limit") or "").strip() or 10)
    except ValueError:
        limit = 10
    limit = max(1, min(limit, 100))

    mgr = _manager()
    return jsonify(ok({"runs": mgr.tracker.list_recent(limit), "job": mgr.get_state()}))


@crawls_v1_bp.get("/crawls/<int:run_id>")
def get_crawl(run_id: int):
    run = _manager().tracker.get(run_id)
    if run is None:
        return jsonify(fail(f"Crawl run {run_id} not found", code="not_found")), 404
    return jsonify(ok(run))


@crawls_v1_bp.post("/crawls/<int:run_id>/cancel")
def cancel_crawl(run_id: int):
    mgr = _manager()
    run = mgr.tracker.get(run_id)
    if run is None:
        return jsonify(fail(f"Crawl run {run_id} not found", code="not_found")), 404

    if not mgr.request_stop(run_id):
        return (
            jsonify(
                fail(
                    f"Crawl run {run_id} is not running",
                    code="not_running",
                    details={"status": run["status"]},
                )
            ),
            409,
        )
    return jsonify(ok({"run_id": run_id, "stop_requested": True})), 202
