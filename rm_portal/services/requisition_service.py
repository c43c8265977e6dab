from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from rm_portal.auth import Principal
from rm_portal.config import Settings, settings
from rm_portal.errors import NotFoundError, PolicyWarning, ValidationError
from rm_portal.models import RequisitionStatus, RequisitionType, TableStatus
from rm_portal.services.audit_service import log_audit
from rm_portal.services.cutoff_service import evaluate_cutoff
from rm_portal.services.material_explosion_service import (
    explode_materials,
    find_sku_rows,
    regenerate_materials,
    rescale_materials,
    validate_qty_needed,
)
from rm_portal.services.record_store import CatalogRecord, MaterialLine, RecordStore, RequisitionRecord
from rm_portal.services.requisition_status_service import approval_axis, can_serve, derive_status
from rm_portal.services.table_service import (
    TableWorkspace,
    ensure_accepts_requisitions,
    ensure_owner_or_admin,
    optimistic,
    sync_item_count,
)

logger = logging.getLogger(__name__)

OTHER_CHOICE = 'Other'


@dataclass(frozen=True)
class KnownChoice:
    name: str

    @property
    def value(self) -> str:
        return self.name


@dataclass(frozen=True)
class CustomChoice:
    text: str

    @property
    def value(self) -> str:
        return self.text


Choice = KnownChoice | CustomChoice


def resolve_choice(selected: str | None, custom_text: str | None = None, *, label: str = 'value') -> Choice:
    """Map a dropdown value plus its free-text box onto a choice. ``Other`` means the free text."""
    picked = (selected or '').strip()
    if picked.lower() == OTHER_CHOICE.lower():
        text = (custom_text or '').strip()
        if not text:
            raise ValidationError(f'Enter a {label} when choosing Other')
        return CustomChoice(text)
    if not picked:
        raise ValidationError(f'Select a {label}')
    return KnownChoice(picked)


@dataclass(frozen=True)
class RequisitionDraft:
    requisition_type: RequisitionType
    qty_needed: int
    supplier: Choice
    brand: Choice
    sku_code: str = ''
    sku_name: str = ''
    unit: str = ''
    date_needed: date | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class RequisitionDetails:
    supplier: Choice | None = None
    brand: Choice | None = None
    unit: str | None = None
    date_needed: date | None = None
    remarks: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def generate_requisition_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    moment = now or _now()
    suffix = (rng or random).randint(0, 999)
    return f'MR-{moment:%y%m%d}-{suffix:03d}'


def check_cutoff(
    requisition_type: RequisitionType,
    *,
    now: datetime | None = None,
    confirm: bool = False,
    config: Settings = settings,
) -> None:
    if confirm:
        return
    check = evaluate_cutoff(requisition_type, now, config=config)
    if check.past_cutoff:
        raise PolicyWarning(check.message, code='cutoff', cutoff=check)


def _build_record(
    workspace: TableWorkspace,
    *,
    draft: RequisitionDraft,
    qty: int,
    rows: list[CatalogRecord],
    materials: list[MaterialLine],
    now: datetime,
    rng: random.Random | None,
) -> RequisitionRecord:
    head = rows[0]
    table = workspace.table
    record = RequisitionRecord(
        requisition_number=generate_requisition_number(now, rng),
        requisition_type=draft.requisition_type,
        table_id=table.id,
        user_id=table.user_id,
        sku_code=head.sku_code,
        sku_name=head.sku_name,
        category=head.category or '',
        qty_needed=qty,
        supplier=draft.supplier.value,
        brand=draft.brand.value,
        unit=(draft.unit or head.unit).strip(),
        qty_per_unit=head.quantity_per_unit,
        qty_per_pack=head.quantity_per_pack,
        pack_unit=head.pack_unit,
        date_needed=draft.date_needed or table.date_needed,
        remarks=draft.remarks,
        materials=materials,
    )
    if table.status == TableStatus.APPROVED:
        # Late additions to an approved table (gated by a PO receipt) join it approved.
        record.status = RequisitionStatus.APPROVED
        record.approval_status = RequisitionStatus.APPROVED
        record.approved_by = table.approved_by
        record.approved_date = table.approved_date
    return record


async def add_requisition(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    catalog: list[CatalogRecord],
    draft: RequisitionDraft,
    principal: Principal,
    now: datetime | None = None,
    confirm: bool = False,
    rng: random.Random | None = None,
    config: Settings = settings,
) -> RequisitionRecord:
    ensure_owner_or_admin(workspace, principal)
    ensure_accepts_requisitions(workspace)
    qty = validate_qty_needed(draft.qty_needed)
    check_cutoff(draft.requisition_type, now=now, confirm=confirm, config=config)

    rows = find_sku_rows(catalog, sku_code=draft.sku_code, sku_name=draft.sku_name)
    materials = explode_materials(rows, qty)
    record = _build_record(
        workspace,
        draft=draft,
        qty=qty,
        rows=rows,
        materials=materials,
        now=now or _now(),
        rng=rng,
    )

    async with optimistic(workspace, 'add_requisition'):
        workspace.requisitions.append(record)
        record.id = await store.create_requisition(record, record.materials)
        await sync_item_count(store, workspace)

    logger.info(
        'requisition added',
        extra={
            'table_id': workspace.table.id,
            'requisition_id': record.id,
            'requisition_number': record.requisition_number,
            'materials': len(materials),
        },
    )
    return record


async def update_requisition_quantity(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    requisition_id: int,
    qty_needed: int,
    principal: Principal,
    catalog: list[CatalogRecord] | None = None,
) -> RequisitionRecord:
    ensure_owner_or_admin(workspace, principal)
    ensure_accepts_requisitions(workspace)
    qty = validate_qty_needed(qty_needed)
    requisition = workspace.find_requisition(requisition_id)

    rows: list[CatalogRecord] = []
    if catalog:
        try:
            rows = find_sku_rows(catalog, sku_code=requisition.sku_code, sku_name=requisition.sku_name)
        except NotFoundError:
            logger.warning('sku missing from catalog; rescaling stored materials', extra={'requisition_id': requisition_id})

    async with optimistic(workspace, 'update_requisition_quantity'):
        requisition = workspace.find_requisition(requisition_id)
        requisition.qty_needed = qty
        if rows:
            requisition.materials = regenerate_materials(requisition.materials, rows, qty)
        else:
            rescale_materials(requisition.materials, qty)
        requisition.status = derive_status(requisition.materials, approval_axis(requisition))

        await store.update_requisition(requisition_id, {'qty_needed': qty, 'status': requisition.status})
        if rows:
            await store.replace_materials(requisition_id, requisition.materials)
        else:
            for line in requisition.materials:
                await store.update_material(line.id, {'required_qty': line.required_qty})

    return requisition


async def update_requisition_details(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    requisition_id: int,
    details: RequisitionDetails,
    principal: Principal,
) -> RequisitionRecord:
    ensure_owner_or_admin(workspace, principal)
    ensure_accepts_requisitions(workspace)
    patch: dict = {}
    if details.supplier is not None:
        patch['supplier'] = details.supplier.value
    if details.brand is not None:
        patch['brand'] = details.brand.value
    if details.unit is not None:
        patch['unit'] = details.unit.strip()
    if details.date_needed is not None:
        patch['date_needed'] = details.date_needed
    if details.remarks is not None:
        patch['remarks'] = details.remarks.strip() or None
    if not patch:
        return workspace.find_requisition(requisition_id)

    async with optimistic(workspace, 'update_requisition_details'):
        requisition = workspace.find_requisition(requisition_id)
        for name, value in patch.items():
            setattr(requisition, name, value)
        await store.update_requisition(requisition_id, patch)
    return requisition


async def delete_requisition(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    requisition_id: int,
    principal: Principal,
) -> None:
    ensure_owner_or_admin(workspace, principal)
    ensure_accepts_requisitions(workspace)
    requisition = workspace.find_requisition(requisition_id)
    async with optimistic(workspace, 'delete_requisition'):
        workspace.requisitions = [row for row in workspace.requisitions if row.id != requisition_id]
        await store.delete_requisition(requisition_id)
        await sync_item_count(store, workspace)
    await log_audit(
        store,
        actor=principal.id,
        action='requisition.deleted',
        table_id=workspace.table.id,
        requisition_id=requisition_id,
        metadata={'requisition_number': requisition.requisition_number},
    )


async def clear_table(store: RecordStore, workspace: TableWorkspace, *, principal: Principal) -> int:
    """Delete every requisition in the table. Already-deleted requisitions stay deleted if a later one fails."""
    ensure_owner_or_admin(workspace, principal)
    ensure_accepts_requisitions(workspace)
    removed = 0
    for requisition in list(workspace.requisitions):
        async with optimistic(workspace, 'clear_table'):
            workspace.requisitions = [row for row in workspace.requisitions if row.id != requisition.id]
            await store.delete_requisition(requisition.id)
        removed += 1
    async with optimistic(workspace, 'clear_table'):
        await sync_item_count(store, workspace)
    await log_audit(store, actor=principal.id, action='table.cleared', table_id=workspace.table.id, metadata={'removed': removed})
    return removed


def _parse_served(raw) -> Decimal:
    try:
        served = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Served quantity must be a number') from exc
    if not served.is_finite() or served < 0:
        raise ValidationError('Served quantity cannot be negative')
    return served


async def record_serve(
    store: RecordStore,
    workspace: TableWorkspace,
    *,
    requisition_id: int,
    material_id: int,
    served_qty,
    principal: Principal,
    remarks: str | None = None,
    served_date: datetime | None = None,
) -> RequisitionRecord:
    ensure_owner_or_admin(workspace, principal)
    served = _parse_served(served_qty)
    requisition = workspace.find_requisition(requisition_id)
    if not can_serve(requisition):
        raise ValidationError(f'Requisition is {approval_axis(requisition).value} and cannot be served')
    if not any(line.id == material_id for line in requisition.materials):
        raise NotFoundError(f'Material {material_id} is not part of requisition {requisition_id}')

    async with optimistic(workspace, 'record_serve'):
        requisition = workspace.find_requisition(requisition_id)
        line = next(line for line in requisition.materials if line.id == material_id)
        line.served_qty = served
        if remarks is not None:
            line.remarks = remarks.strip() or None
        line.served_date = served_date or (_now() if served > 0 else None)
        previous_status = requisition.status
        requisition.status = derive_status(requisition.materials, approval_axis(requisition))

        await store.update_material(
            material_id,
            {'served_qty': served, 'remarks': line.remarks, 'served_date': line.served_date},
        )
        if requisition.status != previous_status:
            await store.update_requisition(requisition_id, {'status': requisition.status})

    logger.info(
        'material served',
        extra={
            'requisition_id': requisition_id,
            'material_id': material_id,
            'served_qty': str(served),
            'status': requisition.status.value,
        },
    )
    return requisition
