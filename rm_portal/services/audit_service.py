from __future__ import annotations

import logging

from rm_portal.errors import PersistenceError
from rm_portal.services.record_store import AuditEvent, RecordStore

logger = logging.getLogger(__name__)


async def log_audit(
    store: RecordStore,
    *,
    actor: str | None,
    action: str,
    table_id: int | None = None,
    requisition_id: int | None = None,
    metadata: dict | None = None,
) -> bool:
    """Append an audit event after the change it describes has been saved.

    A failed write is logged and reported as ``False``; the saved change stands.
    """
    try:
        await store.append_audit_event(
            AuditEvent(
                actor=actor,
                action=action,
                table_id=table_id,
                requisition_id=requisition_id,
                metadata=metadata or {},
            )
        )
    except PersistenceError as exc:
        logger.warning(
            'audit event not recorded',
            extra={'action': action, 'table_id': table_id, 'requisition_id': requisition_id, 'error': str(exc)},
        )
        return False
    return True
