"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed health (database, SOP tables, file storage)
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from sopdesk.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

_SOP_TABLES = ("sop_documents", "sop_nodes", "sop_completions", "sop_assignments")


def _storage_writable(root: str) -> bool:
    """True when uploads can land under root, creating it first if needed."""
    path = root
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            return False
        path = parent
    return os.path.isdir(path) and os.access(path, os.W_OK)


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── SOP tables ───────────────────────────────────────────────────
    if overall:
        existing = set(db.inspect(db.engine).get_table_names())
        missing = [t for t in _SOP_TABLES if t not in existing]
        checks["sop_tables"] = (
            {"status": "ok", "tables": len(_SOP_TABLES)}
            if not missing
            else {"status": "missing", "missing": missing}
        )
        overall = overall and not missing

    # ── File storage ─────────────────────────────────────────────────
    storage = current_app.extensions.get("sop_storage")
    if storage is None:
        checks["file_storage"] = {"status": "skipped", "detail": "no storage configured"}
    else:
        root = getattr(storage, "root", None)
        writable = root is None or _storage_writable(root)
        checks["file_storage"] = {"status": "ok" if writable else "error", "root": root}
        # Storage only affects uploads; reads keep working
        if not writable:
            logger.warning("Health check — file storage root not writable: %s", root)

    # ── Autosave ─────────────────────────────────────────────────────
    autosave = current_app.extensions.get("sop_autosave")
    checks["autosave"] = (
        {"status": "ok", "delay_s": autosave.delay, "on_navigate": autosave.on_navigate}
        if autosave is not None
        else {"status": "skipped"}
    )

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "SOP Desk",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
