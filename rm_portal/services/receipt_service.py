from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from rm_portal.auth import Principal
from rm_portal.errors import ValidationError
from rm_portal.models import ReceiptStatus
from rm_portal.services.audit_service import log_audit
from rm_portal.services.record_store import ReceiptRecord, RecordStore
from rm_portal.services.table_service import TableWorkspace, ensure_admin, ensure_owner_or_admin, optimistic

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


@dataclass(frozen=True)
class ReceiptDraft:
    po_number: str
    supplier: str = ''
    amount: Decimal | str | int = Decimal('0')
    receipt_date: date | None = None
    requisition_id: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    content_type: str | None = None
    file_url: str | None = None


def parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw if raw not in (None, '') else '0'))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Amount must be a number') from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError('Amount cannot be negative')
    return amount.quantize(CENT)


async def add_receipt(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    draft: ReceiptDraft,
    principal: Principal,
) -> ReceiptRecord:
    ensure_owner_or_admin(workspace, principal)
    po_number = (draft.po_number or '').strip()
    if not po_number:
        raise ValidationError('PO number is required')
    if draft.requisition_id is not None:
        workspace.find_requisition(draft.requisition_id)

    record = ReceiptRecord(
        table_id=workspace.table.id,
        requisition_id=draft.requisition_id,
        po_number=po_number,
        supplier=(draft.supplier or '').strip(),
        amount=parse_amount(draft.amount),
        receipt_date=draft.receipt_date,
        file_name=draft.file_name,
        file_size=draft.file_size,
        content_type=draft.content_type,
        file_url=draft.file_url,
        uploaded_by=principal.id,
    )
    async with optimistic(workspace, 'add_receipt'):
        workspace.receipts.append(record)
        record.id = await store.create_receipt(record)

    logger.info('receipt added', extra={'table_id': workspace.table.id, 'receipt_id': record.id})
    return record


async def review_receipt(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    receipt_id: int,
    status: ReceiptStatus,
    principal: Principal,
    now: datetime | None = None,
) -> ReceiptRecord:
    ensure_admin(principal)
    if status == ReceiptStatus.PENDING:
        raise ValidationError('A receipt can only be verified or rejected')
    stamp = now or datetime.now(tz=timezone.utc)
    async with optimistic(workspace, 'review_receipt'):
        receipt = workspace.find_receipt(receipt_id)
        receipt.status = status
        receipt.reviewed_by = principal.display_name
        receipt.reviewed_date = stamp
        await store.update_receipt(
            receipt_id,
            {'status': status, 'reviewed_by': receipt.reviewed_by, 'reviewed_date': stamp},
        )
    await log_audit(
        store,
        actor=principal.id,
        action=f'receipt.{status.value}',
        table_id=workspace.table.id,
        metadata={'receipt_id': receipt_id, 'po_number': receipt.po_number},
    )
    return receipt


async def delete_receipt(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    receipt_id: int,
    principal: Principal,
) -> None:
    ensure_owner_or_admin(workspace, principal)
    receipt = workspace.find_receipt(receipt_id)
    async with optimistic(workspace, 'delete_receipt'):
        workspace.receipts = [row for row in workspace.receipts if row.id != receipt_id]
        await store.delete_receipt(receipt_id)
    await log_audit(
        store,
        actor=principal.id,
        action='receipt.deleted',
        table_id=workspace.table.id,
        metadata={'receipt_id': receipt_id, 'po_number': receipt.po_number},
    )
