"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database, the SOP tables and the file storage root, then logs
a summary banner.
"""

import logging
import os
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from sopdesk.models import db

logger = logging.getLogger(__name__)

_SOP_TABLES = ("sop_documents", "sop_nodes", "sop_completions", "sop_assignments")


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        missing_tables: list[str] = []
        try:
            db.session.execute(db.text("SELECT 1"))
            existing = set(sa_inspect(db.engine).get_table_names())
            missing_tables = [t for t in _SOP_TABLES if t not in existing]
        except SQLAlchemyError as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")
        if missing_tables:
            issues.append(f"SOP tables missing: {', '.join(missing_tables)} — run 'flask db upgrade'")

        # ── File storage ─────────────────────────────────────────────
        storage = app.extensions.get("sop_storage")
        storage_root = getattr(storage, "root", None) or "not configured"
        if storage is not None and os.path.exists(storage_root) and not os.access(storage_root, os.W_OK):
            issues.append(f"Storage root not writable: {storage_root}")

        autosave = app.extensions.get("sop_autosave")
        autosave_desc = (
            f"{autosave.delay:.2f}s, on navigate: {autosave.on_navigate}" if autosave else "disabled"
        )

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  SOP Desk — Startup Diagnostics                              ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  SOP tables  : {f'{len(_SOP_TABLES) - len(missing_tables)}/{len(_SOP_TABLES)}':<46s}║
║  Storage     : {storage_root[:46]:<46s}║
║  Autosave    : {autosave_desc[:46]:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
