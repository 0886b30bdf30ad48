"""
Tenant-scoped query helpers.

Every get-by-id in the SOP services MUST go through these helpers instead
of db.session.get(Model, pk).  A bare .get() would let one organization
read or edit another organization's documents by guessing an id.

Usage:
    doc = get_scoped(SOPDocument, document_id, tenant_id=tenant_id)

    # Nodes carry no tenant_id; they are scoped through their document
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
"""

import logging

from sqlalchemy import select

from sopdesk.core.exceptions import NotFoundError
from sopdesk.models import db
from sopdesk.models.sop import SOPDocument, SOPNode

logger = logging.getLogger(__name__)


def get_scoped(model, pk, *, tenant_id: int, for_update: bool = False):
    """Fetch a single entity by PK within one tenant.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError.

    Args:
        model: SQLAlchemy model class with ``id`` and ``tenant_id`` columns.
        pk: Primary key value to look up.
        tenant_id: Owning organization.
        for_update: Lock the row (SELECT ... FOR UPDATE) on backends that support it.

    Raises:
        ValueError: If tenant_id is None or the model has no tenant_id column.
        NotFoundError: If the entity does not exist OR belongs to another tenant.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires tenant_id. Unscoped lookups are forbidden."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(f"{model.__name__} has no tenant_id column; refusing an unscoped lookup.")

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found for tenant %s", model.__name__, pk, tenant_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_node(node_id: str, *, tenant_id: int, for_update: bool = False):
    """Fetch a node and its owning document, scoped through the document's tenant.

    Returns:
        (node, document)

    Raises:
        NotFoundError: when the node is missing or its document belongs to
                       another tenant.
    """
    stmt = (
        select(SOPNode, SOPDocument)
        .join(SOPDocument, SOPNode.document_id == SOPDocument.id)
        .where(SOPNode.id == node_id, SOPDocument.tenant_id == tenant_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    row = db.session.execute(stmt).first()
    if row is None:
        logger.debug("get_scoped_node: node id=%s not found for tenant %s", node_id, tenant_id)
        raise NotFoundError(resource="SOPNode", resource_id=node_id)
    return row[0], row[1]
