"""
Engine-wide exception hierarchy.

Services raise these types and nothing else for expected failures.
The SOP blueprint registers one handler per type, so status codes stay
consistent across every endpoint.

Usage:
    from sopdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="SOPDocument", resource_id=doc_id)
    raise ValidationError("Title is required", details={"title": "blank"})

Retry policy:
    Only TransientStoreError is worth retrying, and only by the caller.
    Validation, archive and cycle errors are deterministic.
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a caller cannot discover documents owned by another organization.

    Args:
        resource: Human-readable model name (e.g. "SOPDocument", "Member").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a rule
    (blank title, unknown direction, version out of range, ...).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class CycleError(ValidationError):
    """Raised when a reparent would make a node its own ancestor.

    Maps to HTTP 422, same family as ValidationError.
    """

    def __init__(self, node_id: str, new_parent_id: str | None) -> None:
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move node {node_id} under {new_parent_id}: "
            "the target is the node itself or one of its descendants",
            details={"parent_id": new_parent_id},
        )


class DocumentArchivedError(Exception):
    """Raised when a write is attempted on an archived (terminal) document.

    Reads keep working after archive; every mutation is rejected.
    Maps to HTTP 409.
    """

    def __init__(self, document_id: str, operation: str | None = None) -> None:
        self.document_id = document_id
        self.operation = operation
        msg = f"SOPDocument id={document_id} is archived"
        if operation:
            msg += f"; '{operation}' is not permitted"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised when an operation collides with the current stored state.

    Covers unique-constraint violations and stale ``expected_version``
    guards on publish.  Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} conflicts with stored state"
        super().__init__(msg)


class TransientStoreError(Exception):
    """Raised when the backing store fails for reasons outside the request.

    Connection drops, lock timeouts, statement timeouts.  The session has
    already been rolled back when this is raised.  Maps to HTTP 503.

    Callers that retry non-idempotent operations (publish) must re-check
    state first, e.g. by passing ``expected_version``.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store unavailable during {operation}")
