"""
SOP Content Store — per-node content variants.

Each node has exactly one active variant, selected by content_type:

    rich_text          rich_content (opaque HTML from the editor)
    external_document  external_ref (opaque locator from the file storage)
    container          nothing; groups child sections only

Switching content_type never clears the inactive payload, so flipping
between rich text and an uploaded PDF is lossless.  Only the active
variant is rendered or exported.

Rich-text edits normally arrive through the debounced AutosaveBuffer
(sopdesk.services.sop_autosave), which calls save_rich_content once per
quiet period.
"""

from __future__ import annotations

import logging
from typing import BinaryIO

from sqlalchemy import select

from sopdesk.core.exceptions import ValidationError
from sopdesk.integrations.file_storage import FileStorage
from sopdesk.models import db
from sopdesk.models.sop import CONTENT_TYPES, SOPNode
from sopdesk.services.helpers.scoped_queries import get_scoped_node
from sopdesk.services.sop_lifecycle import ensure_editable, load_document
from sopdesk.services.sop_tree import build_node_tree, flatten_node_tree
from sopdesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def ensure_node_editable(tenant_id: int, node_id: str) -> dict:
    """Scope and archive checks for a node about to receive buffered edits."""
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "edit_draft")
    return {"node_id": node.id, "document_id": doc.id}


def set_content_type(tenant_id: int, node_id: str, content_type: str) -> dict:
    """Select which variant of a node is active.  Stored payloads are kept."""
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "set_content_type")
    if content_type not in CONTENT_TYPES:
        raise ValidationError(
            f"content_type must be one of: {', '.join(CONTENT_TYPES)}",
            details={"content_type": content_type},
        )
    if node.content_type != content_type:
        node.content_type = content_type
        commit_or_raise("set_content_type", resource="SOPNode")
    return node.to_dict()


def save_rich_content(tenant_id: int, node_id: str, html: str | None) -> dict:
    """Persist the rich text payload of a node.  content_type is not changed."""
    if html is not None and not isinstance(html, str):
        raise ValidationError("rich_content must be a string", details={"rich_content": "not a string"})
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "save_rich_content")
    node.rich_content = html or ""
    commit_or_raise("save_rich_content", resource="SOPNode")
    logger.debug(
        "Rich content saved (%d chars)",
        len(node.rich_content),
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return node.to_dict()


def attach_external_document(
    tenant_id: int,
    node_id: str,
    filename: str,
    stream: BinaryIO,
    storage: FileStorage,
) -> dict:
    """Upload a file through ``storage`` and make it the node's active variant.

    The archive guard runs before the upload so nothing is stored for a
    document that would reject the locator anyway.
    """
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "attach_external_document")

    locator = storage.upload(doc.id, node.id, filename, stream)
    node.external_ref = locator
    node.external_filename = filename
    node.content_type = "external_document"
    commit_or_raise("attach_external_document", resource="SOPNode")

    logger.info(
        "External document attached",
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return node.to_dict()


def external_document_url(
    tenant_id: int,
    node_id: str,
    storage: FileStorage,
    expires_in: int | None = None,
) -> dict:
    """Resolve a node's stored locator to a time-limited URL."""
    node, _doc = get_scoped_node(node_id, tenant_id=tenant_id)
    if not node.external_ref:
        raise ValidationError(
            "Node has no external document",
            details={"external_ref": None},
        )
    return {
        "node_id": node.id,
        "filename": node.external_filename,
        "url": storage.signed_url(node.external_ref, expires_in),
    }


def render_active_content(node, storage: FileStorage | None = None) -> dict:
    """Return only the active variant of ``node`` (model or dict).

    Shape:
        {"content_type": ..., "rich_content": str}                  rich_text
        {"content_type": ..., "filename": str, "url": str | None}   external_document
        {"content_type": "container"}                               container
    """
    data = node if isinstance(node, dict) else node.to_dict()
    content_type = data.get("content_type") or "rich_text"

    if content_type == "rich_text":
        return {"content_type": content_type, "rich_content": data.get("rich_content") or ""}
    if content_type == "external_document":
        ref = data.get("external_ref")
        url = storage.signed_url(ref) if (storage is not None and ref) else None
        return {
            "content_type": content_type,
            "filename": data.get("external_filename"),
            "url": url,
        }
    return {"content_type": "container"}


def export_document(tenant_id: int, document_id: str, storage: FileStorage | None = None) -> dict:
    """Document plus its sections in reading order, active content only."""
    doc = load_document(tenant_id, document_id)
    nodes = db.session.execute(
        select(SOPNode).where(SOPNode.document_id == doc.id)
    ).scalars().all()

    sections = []
    for node in flatten_node_tree(build_node_tree(nodes)):
        sections.append({
            "id": node["id"],
            "parent_id": node["parent_id"],
            "title": node["title"],
            "depth": node["depth"],
            "content": render_active_content(node, storage),
        })

    return {"document": doc.to_dict(), "sections": sections}
