from flask import Blueprint

from api.api_v1.crawls import crawls_v1_bp
from api.api_v1.documents import documents_v1_bp


def create_api_v1_blueprint() -> Blueprint:
    """Create the /api/v1 blueprint and register sub-blueprints."""

    v1_bp = Blueprint("api_v1", __name__, url_prefix="/api/v1")
    v1_bp.register_blueprint(crawls_v1_bp)
    v1_bp.register_blueprint(documents_v1_bp)
    return v1_bp
