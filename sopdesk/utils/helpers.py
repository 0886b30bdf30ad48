"""Shared service helpers.

commit_or_raise:  single place where SOP services commit the session
flush_or_raise:   mid-transaction flush with the same error mapping
clean_title:      trim + validate section / document titles
parse_bool:       lenient query-string boolean
"""
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from sopdesk.core.exceptions import ConflictError, TransientStoreError, ValidationError
from sopdesk.models import db

logger = logging.getLogger(__name__)


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(operation: str, *, resource: str = "record") -> None:
    """Commit the current SQLAlchemy session or roll back and raise.

    Every service mutation ends here so a failed write never leaves
    half-applied ORM state in the session.

    IntegrityError   → ConflictError        (duplicate / constraint violation)
    OperationalError → TransientStoreError  (connection / lock / timeout)
    other DBAPIError → TransientStoreError

    Usage::

        node.title = title
        commit_or_raise("rename_node", resource="SOPNode")
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error during %s: %s", operation, exc.orig)
        raise ConflictError(resource, "constraint", str(exc.orig)) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error during %s", operation)
        raise TransientStoreError(operation, exc) from exc
    except DBAPIError as exc:
        db.session.rollback()
        logger.exception("Unexpected database error during %s", operation)
        raise TransientStoreError(operation, exc) from exc


def flush_or_raise(operation: str, *, resource: str = "record") -> None:
    """Flush pending changes inside the open transaction, same error mapping as commit_or_raise."""
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error during %s: %s", operation, exc.orig)
        raise ConflictError(resource, "constraint", str(exc.orig)) from exc
    except DBAPIError as exc:
        db.session.rollback()
        logger.exception("Database error while flushing %s", operation)
        raise TransientStoreError(operation, exc) from exc


def clean_title(value, *, field: str = "title", max_length: int = 255) -> str:
    """Return the trimmed title or raise ValidationError when blank / too long."""
    title = (value or "").strip() if isinstance(value, str) or value is None else str(value).strip()
    if not title:
        raise ValidationError(f"{field} is required", details={field: "must not be blank"})
    if len(title) > max_length:
        raise ValidationError(
            f"{field} must be ≤ {max_length} characters",
            details={field: f"max {max_length} characters"},
        )
    return title


def parse_bool(value) -> bool:
    """Interpret common truthy strings ("1", "true", "yes") as True."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")
