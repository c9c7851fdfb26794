from flask import Blueprint, jsonify

from app.coleta.constants import KIND_SLUGS

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"service": "coleta-ops", "resources": sorted(f"/api/{slug}" for slug in KIND_SLUGS)})


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    Configure the readiness probe to use this endpoint.
    """
    return "ok", 200
