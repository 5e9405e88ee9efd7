import re
import time
import uuid

from flask import Flask, g, jsonify, request

import db
from api.blueprint import create_api_blueprint
from api.jobs import manager as jobs_manager
from api.schemas.api_responses import fail
from config import Config, configure_logging
from logging_utils import configure_app_logging, get_logger


_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id() -> str:
    incoming = request.headers.get("X-Request-ID", "").strip()
    return incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex


def init_db() -> None:
    """Initialize DB schema.

    Kept out of default startup path to minimize app spin-up time.
    """

    db.Base.metadata.create_all(bind=db.engine)


def create_app() -> Flask:
    app = Flask(__name__)

    # Load config from file.
    app.config.from_pyfile("settings.py")

    # Configure unified app logging (UTC timestamps, per-file logs, daily rotation)
    configure_app_logging(app.config.get("LOG_LEVEL", "INFO"))
    logger = get_logger(__name__)

    configure_logging(app.logger, app.config.get("LOG_LEVEL", "INFO"))

    # --- slow request logging (opt-in by threshold; default 250ms) ---
    # Set SLOW_REQUEST_MS=0 to disable.
    slow_ms = Config.SLOW_REQUEST_MS

    @app.before_request
    def _start_timer():
        g.request_id = _request_id()
        if slow_ms > 0:
            request.environ["_req_start_ns"] = time.perf_counter_ns()

    @app.after_request
    def _log_slow_requests(resp):
        request_id = g.get("request_id")
        if request_id:
            resp.headers["X-Request-ID"] = request_id
        if slow_ms <= 0:
            return resp

        start_ns = request.environ.get("_req_start_ns")
        if not start_ns:
            return resp

        elapsed_ms = (time.perf_counter_ns() - int(start_ns)) / 1_000_000.0
        if elapsed_ms >= slow_ms:
            # Keep it compact and stable for grepping.
            logger.warning(
                "SLOW_REQUEST ms=%.1f status=%s method=%s path=%s query=%s request_id=%s",
                elapsed_ms,
                getattr(resp, "status_code", "?"),
                request.method,
                request.path,
                request.query_string.decode("utf-8", errors="replace"),
                request_id,
            )
        return resp

    app.register_blueprint(create_api_blueprint())

    # Error handlers
    @app.errorhandler(404)
    def not_found(_err):
        return jsonify(fail(f"No route for {request.path}", code="not_found")), 404

    @app.errorhandler(405)
    def method_not_allowed(_err):
        return jsonify(fail(f"{request.method} not allowed on {request.path}", code="method_not_allowed")), 405

    @app.errorhandler(500)
    def server_error(_err):
        logger.exception("Unhandled server error")
        return jsonify(fail("Internal server error", code="internal_error")), 500

    # Optional: initialize tables on startup only when explicitly requested.
    if Config.INIT_DB_ON_STARTUP:
        logger.info("INIT_DB_ON_STARTUP=1; initializing database schema")
        init_db()

    # A run still marked running here belongs to a process that died.
    if Config.RECOVER_RUNS_ON_STARTUP:
        try:
            recovered = jobs_manager.crawl_job_manager.recover_interrupted()
            if recovered:
                logger.warning("Marked interrupted crawl runs as failed | count=%s", recovered)
        except Exception:
            logger.exception("Could not recover interrupted crawl runs")

    return app


# NOTE: Do not instantiate the Flask app at import time.
# Tests patch the DB engine/sessionmaker before calling create_app().
app: Flask | None = None


if __name__ == "__main__":
    app = create_app()
    get_logger(__name__).info("Starting Flask app")
    app.run(debug=True, use_reloader=False)
