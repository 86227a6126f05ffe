# Overview: Health endpoint.

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db


system_bp = Blueprint("system", __name__)


@system_bp.get("/health")
def health():
    """Database connectivity check."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
    except Exception:
        current_app.logger.exception("Health check failed")
        return jsonify({"status": "unhealthy", "database": "unreachable"}), 503

    return jsonify({
        "status": "ok",
        "database": "ok",
        "latency_ms": round((time.time() - start_time) * 1000, 2),
    })
