"""SOP Document Engine blueprint.

REST API over the SOP services.

Endpoint groups:
  Documents      GET/POST        /api/v1/sop/documents
                 GET/PUT/DELETE  /api/v1/sop/documents/<id>
                 POST            /api/v1/sop/documents/<id>/publish | /archive
                 GET             /api/v1/sop/documents/<id>/export
  Nodes          GET/POST        /api/v1/sop/documents/<id>/nodes
                 GET             /api/v1/sop/documents/<id>/tree
                 GET/PUT/DELETE  /api/v1/sop/nodes/<id>
                 GET             /api/v1/sop/nodes/<id>/delete-preview
                 POST            /api/v1/sop/nodes/<id>/move | /reparent
  Content        PUT             /api/v1/sop/nodes/<id>/content-type | /content
                 GET/POST        /api/v1/sop/nodes/<id>/draft
                 POST            /api/v1/sop/nodes/<id>/flush | /navigate
                 POST            /api/v1/sop/nodes/<id>/external
                 GET             /api/v1/sop/nodes/<id>/external-url
                 GET             /api/v1/sop/files/<token>
  Completions    GET/POST        /api/v1/sop/documents/<id>/completions
                 GET             /api/v1/sop/documents/<id>/completions/<member_id>
  Assignments    GET/POST/DELETE /api/v1/sop/documents/<id>/assignments
                 DELETE          /api/v1/sop/assignments/<id>
  Progress       GET             /api/v1/sop/documents/<id>/progress
                 GET             /api/v1/sop/members/<member_id>/documents

tenant_id is resolved from the query string, JSON body or multipart form.
Service layer owns all business logic and commits; the handlers below
only translate HTTP to service calls and exceptions to status codes.
"""

from __future__ import annotations

import logging
import os

from flask import Blueprint, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

import sopdesk.services.sop_assignment_service as assignments
import sopdesk.services.sop_completion_service as completions
import sopdesk.services.sop_content_service as content
import sopdesk.services.sop_lifecycle as lifecycle
import sopdesk.services.sop_node_service as nodes
from sopdesk.blueprints import paginate_list
from sopdesk.core.exceptions import (
    ConflictError,
    CycleError,
    DocumentArchivedError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from sopdesk.integrations.file_storage import get_storage
from sopdesk.services.sop_autosave import get_autosave
from sopdesk.utils.errors import E, api_error
from sopdesk.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

sop_bp = Blueprint("sop", __name__, url_prefix="/api/v1/sop")


# ── Request helpers ───────────────────────────────────────────────────────────


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _tenant_id() -> int | None:
    """Extract tenant_id from query string, JSON body or form."""
    tid = request.args.get("tenant_id", type=int)
    if tid:
        return tid
    raw = _json().get("tenant_id") or request.form.get("tenant_id")
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _tenant_required() -> tuple[int | None, tuple | None]:
    tid = _tenant_id()
    if not tid:
        return None, api_error(E.VALIDATION_REQUIRED, "tenant_id is required")
    return tid, None


def _optional_int(data: dict, key: str) -> tuple[int | None, tuple | None]:
    value = data.get(key)
    if value is None or value == "":
        return None, None
    if isinstance(value, bool):
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} must be an integer")
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} must be an integer")


def _document_node_ids(tenant_id: int, document_id: str) -> list[str]:
    return [n["id"] for n in nodes.list_nodes(tenant_id, document_id)]


# ── Error handlers ────────────────────────────────────────────────────────────


@sop_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@sop_bp.errorhandler(CycleError)
def _handle_cycle(error: CycleError):
    return api_error(E.CYCLE, str(error), details=error.details)


@sop_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@sop_bp.errorhandler(DocumentArchivedError)
def _handle_archived(error: DocumentArchivedError):
    return api_error(E.DOCUMENT_ARCHIVED, str(error), details={"document_id": error.document_id})


@sop_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, f"{error.resource} {error.field} conflicts with stored state",
                     details={"field": error.field})


@sop_bp.errorhandler(TransientStoreError)
def _handle_transient(error: TransientStoreError):
    logger.warning("Store unavailable during %s", error.operation)
    return api_error(E.STORE_UNAVAILABLE, "Store temporarily unavailable, retry later",
                     details={"operation": error.operation})


@sop_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in sop_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════


@sop_bp.route("/documents", methods=["GET"])
def list_documents():
    """Query params: tenant_id (required), status?, limit?, offset?"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    items = lifecycle.list_documents(tenant_id, status=request.args.get("status") or None)
    page, total = paginate_list(items)
    return jsonify({"items": page, "total": total}), 200


@sop_bp.route("/documents", methods=["POST"])
def create_document():
    """Body: {tenant_id, title, description?, created_by?}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    created_by, err = _optional_int(data, "created_by")
    if err:
        return err
    doc = lifecycle.create_document(
        tenant_id,
        data.get("title"),
        description=data.get("description"),
        created_by=created_by,
    )
    return jsonify(doc), 201


@sop_bp.route("/documents/<document_id>", methods=["GET"])
def get_document(document_id):
    """Query params: tenant_id, include_nodes? (adds flat nodes and tree)"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    include_nodes = parse_bool(request.args.get("include_nodes"))
    return jsonify(lifecycle.get_document(tenant_id, document_id, include_nodes=include_nodes)), 200


@sop_bp.route("/documents/<document_id>", methods=["PUT"])
def update_document(document_id):
    """Body: {tenant_id, title?, description?, actor_id?}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    actor_id, err = _optional_int(data, "actor_id")
    if err:
        return err
    changes = {k: v for k, v in data.items() if k not in ("tenant_id", "actor_id")}
    return jsonify(lifecycle.update_document(tenant_id, document_id, changes, actor_id=actor_id)), 200


@sop_bp.route("/documents/<document_id>", methods=["DELETE"])
def delete_document(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    node_ids = _document_node_ids(tenant_id, document_id)
    result = lifecycle.delete_document(tenant_id, document_id)
    get_autosave().discard_many(tenant_id, node_ids)
    return jsonify(result), 200


@sop_bp.route("/documents/<document_id>/publish", methods=["POST"])
def publish_document(document_id):
    """Body: {tenant_id, actor_id?, expected_version?}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    actor_id, err = _optional_int(data, "actor_id")
    if err:
        return err
    expected_version, err = _optional_int(data, "expected_version")
    if err:
        return err
    doc = lifecycle.publish(tenant_id, document_id, actor_id=actor_id, expected_version=expected_version)
    return jsonify(doc), 200


@sop_bp.route("/documents/<document_id>/archive", methods=["POST"])
def archive_document(document_id):
    """Body: {tenant_id, actor_id?}

    Pending editor drafts are written before the document is archived.
    """
    tenant_id, err = _tenant_required()
    if err:
        return err
    actor_id, err = _optional_int(_json(), "actor_id")
    if err:
        return err
    get_autosave().flush_many(tenant_id, _document_node_ids(tenant_id, document_id))
    return jsonify(lifecycle.archive(tenant_id, document_id, actor_id=actor_id)), 200


@sop_bp.route("/documents/<document_id>/export", methods=["GET"])
def export_document(document_id):
    """Sections in reading order with only their active content."""
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(content.export_document(tenant_id, document_id, storage=get_storage())), 200


# ═════════════════════════════════════════════════════════════════════════
# Nodes
# ═════════════════════════════════════════════════════════════════════════


@sop_bp.route("/documents/<document_id>/nodes", methods=["GET"])
def list_nodes(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(nodes.list_nodes(tenant_id, document_id)), 200


@sop_bp.route("/documents/<document_id>/tree", methods=["GET"])
def get_tree(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(nodes.get_node_tree(tenant_id, document_id)), 200


@sop_bp.route("/documents/<document_id>/nodes", methods=["POST"])
def create_node(document_id):
    """Body: {tenant_id, title, parent_id?, actor_id?}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    actor_id, err = _optional_int(data, "actor_id")
    if err:
        return err
    node = nodes.create_node(
        tenant_id,
        document_id,
        data.get("parent_id") or None,
        data.get("title"),
        actor_id=actor_id,
    )
    return jsonify(node), 201


@sop_bp.route("/nodes/<node_id>", methods=["GET"])
def get_node(node_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(nodes.get_node(tenant_id, node_id)), 200


@sop_bp.route("/nodes/<node_id>", methods=["PUT"])
def rename_node(node_id):
    """Body: {tenant_id, title}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(nodes.rename_node(tenant_id, node_id, _json().get("title"))), 200


@sop_bp.route("/nodes/<node_id>/delete-preview", methods=["GET"])
def delete_preview(node_id):
    """How many sections a delete would remove (for the confirmation prompt)."""
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(nodes.delete_preview(tenant_id, node_id)), 200


@sop_bp.route("/nodes/<node_id>", methods=["DELETE"])
def delete_node(node_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    result = nodes.delete_node(tenant_id, node_id)
    autosave = get_autosave()
    for deleted_id in result["deleted_ids"]:
        autosave.discard(tenant_id, deleted_id)
    return jsonify(result), 200


@sop_bp.route("/nodes/<node_id>/move", methods=["POST"])
def move_node(node_id):
    """Body: {tenant_id, direction: "up" | "down"}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    direction = _json().get("direction")
    if not direction:
        return api_error(E.VALIDATION_REQUIRED, "direction is required")
    return jsonify(nodes.move_node(tenant_id, node_id, direction)), 200


@sop_bp.route("/nodes/<node_id>/reparent", methods=["POST"])
def reparent_node(node_id):
    """Body: {tenant_id, parent_id: str | null}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    if "parent_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "parent_id is required (null for root level)")
    return jsonify(nodes.reparent_node(tenant_id, node_id, data.get("parent_id") or None)), 200


# ═════════════════════════════════════════════════════════════════════════
# Content
# ═════════════════════════════════════════════════════════════════════════


@sop_bp.route("/nodes/<node_id>/content-type", methods=["PUT"])
def set_content_type(node_id):
    """Body: {tenant_id, content_type}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    content_type = _json().get("content_type")
    if not content_type:
        return api_error(E.VALIDATION_REQUIRED, "content_type is required")
    return jsonify(content.set_content_type(tenant_id, node_id, content_type)), 200


@sop_bp.route("/nodes/<node_id>/content", methods=["PUT"])
def save_content(node_id):
    """Immediate save; supersedes any buffered draft for the node."""
    tenant_id, err = _tenant_required()
    if err:
        return err
    get_autosave().discard(tenant_id, node_id)
    return jsonify(content.save_rich_content(tenant_id, node_id, _json().get("rich_content"))), 200


@sop_bp.route("/nodes/<node_id>/draft", methods=["POST"])
def edit_draft(node_id):
    """Buffer an editor change; it is written after the quiet period.

    Body: {tenant_id, rich_content}
    Returns 202 with the draft status.
    """
    tenant_id, err = _tenant_required()
    if err:
        return err
    html = _json().get("rich_content")
    if html is None:
        html = ""
    if not isinstance(html, str):
        return api_error(E.VALIDATION_REQUIRED, "rich_content must be a string")
    content.ensure_node_editable(tenant_id, node_id)
    autosave = get_autosave()
    autosave.edit(tenant_id, node_id, html)
    return jsonify(autosave.status(tenant_id, node_id)), 202


@sop_bp.route("/nodes/<node_id>/draft", methods=["GET"])
def draft_status(node_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    nodes.get_node(tenant_id, node_id)
    return jsonify(get_autosave().status(tenant_id, node_id)), 200


@sop_bp.route("/nodes/<node_id>/flush", methods=["POST"])
def flush_draft(node_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    nodes.get_node(tenant_id, node_id)
    saved = get_autosave().flush(tenant_id, node_id)
    return jsonify({"node_id": node_id, "saved": saved}), 200


@sop_bp.route("/nodes/<node_id>/navigate", methods=["POST"])
def navigate_away(node_id):
    """The editor is leaving ``node_id``; apply the configured navigation policy."""
    tenant_id, err = _tenant_required()
    if err:
        return err
    nodes.get_node(tenant_id, node_id)
    result = get_autosave().navigate_away(tenant_id, node_id)
    result["node_id"] = node_id
    return jsonify(result), 200


@sop_bp.route("/nodes/<node_id>/external", methods=["POST"])
def upload_external_document(node_id):
    """Multipart form: tenant_id, file"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    node = content.attach_external_document(
        tenant_id, node_id, upload.filename, upload.stream, get_storage()
    )
    return jsonify(node), 201


@sop_bp.route("/nodes/<node_id>/external-url", methods=["GET"])
def external_document_url(node_id):
    """Query params: tenant_id, expires_in? (seconds, capped at SOP_SIGNED_URL_TTL)"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    expires_in = request.args.get("expires_in", type=int)
    return jsonify(content.external_document_url(tenant_id, node_id, get_storage(), expires_in)), 200


@sop_bp.route("/files/<token>", methods=["GET"])
def download_file(token):
    """Signed, expiring download link produced by external-url."""
    storage = get_storage()
    locator = storage.resolve_token(token)
    filename = os.path.basename(locator).split("_", 1)[-1]
    return send_file(storage.open(locator), download_name=filename, as_attachment=False)


# ═════════════════════════════════════════════════════════════════════════
# Completions
# ═════════════════════════════════════════════════════════════════════════


@sop_bp.route("/documents/<document_id>/completions", methods=["GET"])
def list_completions(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(completions.list_completions(tenant_id, document_id)), 200


@sop_bp.route("/documents/<document_id>/completions", methods=["POST"])
def mark_complete(document_id):
    """Body: {tenant_id, member_id, version}"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    member_id, err = _optional_int(data, "member_id")
    if err:
        return err
    version, err = _optional_int(data, "version")
    if err:
        return err
    if member_id is None or version is None:
        return api_error(E.VALIDATION_REQUIRED, "member_id and version are required")
    return jsonify(completions.mark_complete(tenant_id, document_id, version, member_id)), 200


@sop_bp.route("/documents/<document_id>/completions/<int:member_id>", methods=["GET"])
def get_member_completion(document_id, member_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    record = completions.get_member_completion(tenant_id, document_id, member_id)
    return jsonify({"completion": record}), 200


# ═════════════════════════════════════════════════════════════════════════
# Assignments & progress
# ═════════════════════════════════════════════════════════════════════════


@sop_bp.route("/documents/<document_id>/assignments", methods=["GET"])
def list_assignments(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(assignments.list_assignments(tenant_id, document_id)), 200


@sop_bp.route("/documents/<document_id>/assignments", methods=["POST"])
def create_assignment(document_id):
    """Body: {tenant_id, all_members: true} or {tenant_id, member_id}; assigned_by?"""
    tenant_id, err = _tenant_required()
    if err:
        return err
    data = _json()
    assigned_by, err = _optional_int(data, "assigned_by")
    if err:
        return err
    if parse_bool(data.get("all_members")):
        return jsonify(assignments.assign_to_all(tenant_id, document_id, assigned_by)), 201

    member_id, err = _optional_int(data, "member_id")
    if err:
        return err
    if member_id is None:
        return api_error(E.VALIDATION_REQUIRED, "member_id or all_members is required")
    return jsonify(assignments.assign_to_member(tenant_id, document_id, member_id, assigned_by)), 201


@sop_bp.route("/documents/<document_id>/assignments", methods=["DELETE"])
def remove_all_assignments(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(assignments.remove_all_assignments(tenant_id, document_id)), 200


@sop_bp.route("/assignments/<assignment_id>", methods=["DELETE"])
def remove_assignment(assignment_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(assignments.remove_assignment(tenant_id, assignment_id)), 200


@sop_bp.route("/documents/<document_id>/progress", methods=["GET"])
def member_progress(document_id):
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(assignments.member_progress(tenant_id, document_id)), 200


@sop_bp.route("/members/<int:member_id>/documents", methods=["GET"])
def my_documents(member_id):
    """Published documents assigned to the member, with their completion state."""
    tenant_id, err = _tenant_required()
    if err:
        return err
    return jsonify(assignments.my_documents(tenant_id, member_id)), 200
