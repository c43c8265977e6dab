from __future__ import annotations

import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from rm_portal.auth import Principal, is_admin_role
from rm_portal.config import Settings, settings
from rm_portal.errors import NotFoundError, PermissionDeniedError, PersistenceError, PolicyWarning, ValidationError
from rm_portal.models import ReceiptStatus, RequisitionStatus, TableStatus
from rm_portal.services.audit_service import log_audit
from rm_portal.services.cutoff_service import evaluate_cutoff
from rm_portal.services.record_store import ReceiptRecord, RecordStore, RequisitionRecord, TableRecord
from rm_portal.services.requisition_status_service import approval_axis, derive_status, is_editable

logger = logging.getLogger(__name__)

GATE_RECEIPT_STATUSES = (ReceiptStatus.PENDING, ReceiptStatus.VERIFIED)
SUBMIT_REQUIRED_FIELDS = {'sku_code': 'SKU code', 'supplier': 'supplier', 'brand': 'brand', 'unit': 'unit'}
RESUBMITTABLE = (RequisitionStatus.DRAFT, RequisitionStatus.REJECTED)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class TableWorkspace:
    """One table with its requisitions and receipts, as the caller currently sees them."""

    table: TableRecord
    requisitions: list[RequisitionRecord] = field(default_factory=list)
    receipts: list[ReceiptRecord] = field(default_factory=list)

    def snapshot(self) -> tuple[TableRecord, list[RequisitionRecord], list[ReceiptRecord]]:
        return copy.deepcopy((self.table, self.requisitions, self.receipts))

    def restore(self, snapshot) -> None:
        self.table, self.requisitions, self.receipts = snapshot

    def find_requisition(self, requisition_id: int) -> RequisitionRecord:
        for requisition in self.requisitions:
            if requisition.id == requisition_id:
                return requisition
        raise NotFoundError(f'Requisition {requisition_id} is not in table {self.table.id}')

    def find_receipt(self, receipt_id: int) -> ReceiptRecord:
        for receipt in self.receipts:
            if receipt.id == receipt_id:
                return receipt
        raise NotFoundError(f'Receipt {receipt_id} is not attached to table {self.table.id}')


@asynccontextmanager
async def optimistic(workspace: TableWorkspace, operation: str):
    """Apply in-memory changes inside the block; restore them if a store call fails."""
    snapshot = workspace.snapshot()
    try:
        yield workspace
    except PersistenceError:
        workspace.restore(snapshot)
        logger.warning('optimistic change rolled back', extra={'operation': operation, 'table_id': workspace.table.id})
        raise


async def load_workspace(store: RecordStore, table_id: int) -> TableWorkspace:
    table = await store.get_table(table_id)
    if table is None:
        raise NotFoundError('Table not found')
    return TableWorkspace(
        table=table,
        requisitions=await store.get_requisitions_by_table(table_id),
        receipts=await store.get_receipts_by_table(table_id),
    )


def ensure_owner_or_admin(workspace: TableWorkspace, principal: Principal) -> None:
    if is_admin_role(principal.role) or workspace.table.user_id == principal.id:
        return
    raise PermissionDeniedError('Only the table owner or an admin can change this table')


def ensure_admin(principal: Principal) -> None:
    if not is_admin_role(principal.role):
        raise PermissionDeniedError('Admin role required')


def has_gate_receipt(receipts: list[ReceiptRecord]) -> bool:
    return any(receipt.status in GATE_RECEIPT_STATUSES for receipt in receipts)


def ensure_accepts_requisitions(workspace: TableWorkspace) -> None:
    """Draft and rejected tables take new requisitions; approved ones only once a PO receipt is on file.

    The missing-receipt warning is blocking, so ``confirm`` does not override it.
    """
    table = workspace.table
    if is_editable(table):
        return
    if table.status == TableStatus.APPROVED:
        if has_gate_receipt(workspace.receipts):
            return
        raise PolicyWarning(
            'Upload a PO receipt before adding requisitions to an approved table',
            code='receipt_required',
            blocking=True,
        )
    raise ValidationError(f'Table is {table.status.value} and cannot be edited')


def _clean_name(name: str) -> str:
    cleaned = (name or '').strip()
    if not cleaned:
        raise ValidationError('Table name is required')
    return cleaned


async def create_table(
    store: RecordStore,
    *,
    principal: Principal,
    name: str,
    date_needed: date | None = None,
) -> TableWorkspace:
    record = TableRecord(name=_clean_name(name), user_id=principal.id, date_needed=date_needed)
    record.id = await store.create_table(record)
    await log_audit(store, actor=principal.id, action='table.created', table_id=record.id, metadata={'name': record.name})
    logger.info('table created', extra={'table_id': record.id, 'user_id': principal.id})
    return await load_workspace(store, record.id)


async def rename_table(store: RecordStore, workspace: TableWorkspace, *, principal: Principal, name: str) -> TableRecord:
    ensure_owner_or_admin(workspace, principal)
    cleaned = _clean_name(name)
    async with optimistic(workspace, 'rename_table'):
        workspace.table.name = cleaned
        await store.update_table(workspace.table.id, {'name': cleaned})
    return workspace.table


async def list_user_tables(store: RecordStore, principal: Principal) -> list[TableRecord]:
    return await store.get_tables_by_user(principal.id)


async def list_pending_tables(store: RecordStore, principal: Principal) -> list[TableRecord]:
    ensure_admin(principal)
    return await store.get_pending_approval_tables()


async def sync_item_count(store: RecordStore, workspace: TableWorkspace) -> None:
    count = len(workspace.requisitions)
    if workspace.table.item_count == count:
        return
    workspace.table.item_count = count
    await store.update_table(workspace.table.id, {'item_count': count})


def move_approval(requisition: RequisitionRecord, approval: RequisitionStatus) -> dict:
    """Set the review position and re-derive the displayed status; returns the store patch."""
    requisition.approval_status = approval
    requisition.status = derive_status(requisition.materials, approval)
    return {'approval_status': approval, 'status': requisition.status}


def _missing_submit_fields(requisition: RequisitionRecord) -> list[str]:
    return [label for name, label in SUBMIT_REQUIRED_FIELDS.items() if not (getattr(requisition, name) or '').strip()]


def check_submit_cutoffs(workspace: TableWorkspace, *, now: datetime | None = None, config: Settings = settings) -> None:
    seen = set()
    for requisition in workspace.requisitions:
        if approval_axis(requisition) not in RESUBMITTABLE or requisition.requisition_type in seen:
            continue
        seen.add(requisition.requisition_type)
        check = evaluate_cutoff(requisition.requisition_type, now, config=config)
        if check.past_cutoff:
            raise PolicyWarning(check.message, code='cutoff', cutoff=check)


async def submit_table(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    principal: Principal,
    now: datetime | None = None,
    confirm: bool = False,
    config: Settings = settings,
) -> TableWorkspace:
    ensure_owner_or_admin(workspace, principal)
    table = workspace.table
    if not is_editable(table):
        raise ValidationError(f'Table is {table.status.value} and cannot be submitted')
    if not workspace.requisitions:
        raise ValidationError('Add at least one requisition before submitting')

    incomplete = []
    for requisition in workspace.requisitions:
        missing = _missing_submit_fields(requisition)
        if missing:
            incomplete.append(f'{requisition.requisition_number} ({", ".join(missing)})')
    if incomplete:
        raise ValidationError(f'Requisitions missing required fields: {"; ".join(incomplete)}')

    if not confirm:
        check_submit_cutoffs(workspace, now=now, config=config)

    stamp = now or _now()
    async with optimistic(workspace, 'submit_table'):
        table.status = TableStatus.SUBMITTED
        table.submitted_by = principal.display_name
        table.submitted_date = stamp
        table.item_count = len(workspace.requisitions)
        await store.update_table(
            table.id,
            {
                'status': table.status,
                'submitted_by': table.submitted_by,
                'submitted_date': stamp,
                'item_count': table.item_count,
            },
        )
        for requisition in workspace.requisitions:
            if approval_axis(requisition) not in RESUBMITTABLE:
                continue
            patch = move_approval(requisition, RequisitionStatus.SUBMITTED)
            requisition.submitted_by = principal.display_name
            requisition.submitted_date = stamp
            await store.update_requisition(
                requisition.id,
                {**patch, 'submitted_by': principal.display_name, 'submitted_date': stamp},
            )

    await log_audit(store, actor=principal.id, action='table.submitted', table_id=table.id, metadata={'items': table.item_count})
    logger.info('table submitted', extra={'table_id': table.id, 'items': table.item_count})
    return workspace


def _ensure_reviewable(workspace: TableWorkspace, principal: Principal) -> None:
    ensure_admin(principal)
    if workspace.table.status != TableStatus.SUBMITTED:
        raise ValidationError(f'Only submitted tables can be reviewed (table is {workspace.table.status.value})')


async def approve_table(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    principal: Principal,
    remarks: str | None = None,
    now: datetime | None = None,
) -> TableWorkspace:
    _ensure_reviewable(workspace, principal)
    stamp = now or _now()
    table = workspace.table
    reviewer = principal.display_name
    async with optimistic(workspace, 'approve_table'):
        table.status = TableStatus.APPROVED
        table.reviewed_by = table.approved_by = reviewer
        table.reviewed_date = table.approved_date = stamp
        table.remarks = (remarks or '').strip() or None
        await store.update_table(
            table.id,
            {
                'status': table.status,
                'reviewed_by': reviewer,
                'reviewed_date': stamp,
                'approved_by': reviewer,
                'approved_date': stamp,
                'remarks': table.remarks,
            },
        )
        for requisition in workspace.requisitions:
            if approval_axis(requisition) != RequisitionStatus.SUBMITTED:
                continue
            patch = move_approval(requisition, RequisitionStatus.APPROVED)
            requisition.reviewed_by = requisition.approved_by = reviewer
            requisition.reviewed_date = requisition.approved_date = stamp
            await store.update_requisition(
                requisition.id,
                {
                    **patch,
                    'reviewed_by': reviewer,
                    'reviewed_date': stamp,
                    'approved_by': reviewer,
                    'approved_date': stamp,
                },
            )

    await log_audit(store, actor=principal.id, action='table.approved', table_id=table.id, metadata={'remarks': table.remarks})
    logger.info('table approved', extra={'table_id': table.id, 'reviewer': principal.id})
    return workspace


async def reject_table(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    principal: Principal,
    remarks: str,
    now: datetime | None = None,
    config: Settings = settings,
) -> TableWorkspace:
    _ensure_reviewable(workspace, principal)
    cleaned = (remarks or '').strip()
    if not cleaned:
        raise ValidationError('Remarks are required when rejecting a table')
    stamp = now or _now()
    table = workspace.table
    reviewer = principal.display_name
    child_status = RequisitionStatus.DRAFT if config.reject_resets_requisitions else RequisitionStatus.REJECTED
    async with optimistic(workspace, 'reject_table'):
        table.status = TableStatus.REJECTED
        table.reviewed_by = reviewer
        table.reviewed_date = stamp
        table.remarks = cleaned
        await store.update_table(
            table.id,
            {'status': table.status, 'reviewed_by': reviewer, 'reviewed_date': stamp, 'remarks': cleaned},
        )
        for requisition in workspace.requisitions:
            if approval_axis(requisition) != RequisitionStatus.SUBMITTED:
                continue
            patch = move_approval(requisition, child_status)
            requisition.reviewed_by = reviewer
            requisition.reviewed_date = stamp
            await store.update_requisition(
                requisition.id,
                {**patch, 'reviewed_by': reviewer, 'reviewed_date': stamp},
            )

    await log_audit(store, actor=principal.id, action='table.rejected', table_id=table.id, metadata={'remarks': cleaned})
    logger.info('table rejected', extra={'table_id': table.id, 'reviewer': principal.id, 'child_status': child_status.value})
    return workspace


async def delete_table(store: RecordStore, workspace: TableWorkspace, *, principal: Principal) -> None:
    """Delete requisitions (materials first), detach receipts, then delete the table.

    Children are removed one by one. A failure stops the cascade and is raised;
    children already deleted stay deleted.
    """
    ensure_owner_or_admin(workspace, principal)
    table_id = workspace.table.id
    for requisition in list(workspace.requisitions):
        await store.delete_requisition(requisition.id)
        workspace.requisitions.remove(requisition)
    workspace.table.item_count = 0

    detached = await store.detach_receipts(table_id)
    for receipt in workspace.receipts:
        receipt.table_id = None
    workspace.receipts = []

    await store.delete_table(table_id)
    await log_audit(store, actor=principal.id, action='table.deleted', table_id=table_id, metadata={'detached_receipts': detached})
    logger.info('table deleted', extra={'table_id': table_id, 'detached_receipts': detached})
