from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from rm_portal.errors import NotFoundError, ValidationError
from rm_portal.services.material_explosion_service import explode_materials, find_sku_rows
from rm_portal.services.record_store import CatalogRecord, MaterialLine, RecordStore, RequisitionRecord
from rm_portal.services.sort_utils import normalize_sort_text

logger = logging.getLogger(__name__)

OTHER_TYPE = 'Other'
PERCENT = Decimal('0.01')
SORT_KEYS = ('total', 'name', 'tables')

# Checked in order; the first list with a keyword inside the material name wins.
TYPE_KEYWORDS = (
    (
        'Meat & Poultry',
        ('meat', 'chicken', 'pork', 'beef', 'poultry', 'fish', 'turkey', 'duck', 'lamb', 'bacon', 'sausage', 'liempo'),
    ),
    (
        'Vegetables',
        (
            'vegetable',
            'veggie',
            'onion',
            'garlic',
            'carrot',
            'cabbage',
            'tomato',
            'potato',
            'celery',
            'lettuce',
            'bell pepper',
            'ginger',
            'leek',
            'mushroom',
            'spinach',
            'scallion',
        ),
    ),
    (
        'Spices & Seasonings',
        ('spice', 'seasoning', 'salt', 'pepper', 'sugar', 'msg', 'paprika', 'cumin', 'oregano', 'cinnamon', 'powder'),
    ),
    ('Packaging', ('packaging', 'pack', 'box', 'bag', 'container', 'label', 'wrap', 'tray', 'lid', 'sticker')),
    ('Liquids', ('liquid', 'oil', 'water', 'vinegar', 'sauce', 'milk', 'juice', 'syrup', 'broth')),
)


@dataclass(frozen=True)
class UsageRow:
    name: str
    unit: str
    type: str
    total_required: Decimal
    table_names: tuple[str, ...]
    sku_labels: tuple[str, ...]
    table_count: int
    requisition_count: int


@dataclass(frozen=True)
class TypeShare:
    type: str
    total_required: Decimal
    share_pct: Decimal
    material_count: int


@dataclass(frozen=True)
class UsageReport:
    rows: list[UsageRow]
    type_breakdown: list[TypeShare]
    grand_total: Decimal
    table_count: int
    requisition_count: int
    skipped_requisitions: int = 0


@dataclass
class _UsageGroup:
    name: str
    unit: str
    type: str
    total: Decimal = Decimal('0')
    table_ids: dict = field(default_factory=dict)
    sku_labels: dict = field(default_factory=dict)
    requisition_ids: set = field(default_factory=set)


def infer_material_type(name: str) -> str:
    lowered = normalize_sort_text(name)
    for type_name, keywords in TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return type_name
    return OTHER_TYPE


def classify_material(line: MaterialLine) -> str:
    explicit = (line.type or '').strip()
    if explicit and explicit.lower() != OTHER_TYPE.lower():
        return explicit
    return infer_material_type(line.name)


def _materials_for(requisition: RequisitionRecord, catalog: list[CatalogRecord] | None) -> list[MaterialLine] | None:
    if requisition.materials:
        return requisition.materials
    if not catalog:
        return None
    try:
        rows = find_sku_rows(catalog, sku_code=requisition.sku_code, sku_name=requisition.sku_name)
    except NotFoundError:
        return None
    return explode_materials(rows, requisition.qty_needed)


def _sort_rows(rows: list[UsageRow], sort_by: str) -> list[UsageRow]:
    if sort_by == 'name':
        return sorted(rows, key=lambda row: (normalize_sort_text(row.name), normalize_sort_text(row.unit)))
    if sort_by == 'tables':
        return sorted(rows, key=lambda row: (-row.table_count, -row.total_required, normalize_sort_text(row.name)))
    return sorted(rows, key=lambda row: (-row.total_required, normalize_sort_text(row.name)))


def _share(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return Decimal('0.00')
    return (part * 100 / whole).quantize(PERCENT, rounding=ROUND_HALF_UP)


def build_usage_report(
    requisitions: list[RequisitionRecord],
    *,
    table_names: dict[int, str],
    catalog: list[CatalogRecord] | None = None,
    sort_by: str = 'total',
) -> UsageReport:
    """Sum required quantities per (material, unit) across the given requisitions."""
    if sort_by not in SORT_KEYS:
        raise ValidationError(f'Unknown sort key: {sort_by}')

    groups: dict[tuple[str, str], _UsageGroup] = {}
    skipped = 0
    contributing_tables = set()
    for index, requisition in enumerate(requisitions):
        materials = _materials_for(requisition, catalog)
        if materials is None:
            skipped += 1
            continue
        contributing_tables.add(requisition.table_id)
        table_name = table_names.get(requisition.table_id, f'Table {requisition.table_id}')
        sku_label = f'{requisition.sku_name} ({requisition.qty_needed})'
        for line in materials:
            key = (normalize_sort_text(line.name), normalize_sort_text(line.unit))
            group = groups.get(key)
            if group is None:
                group = groups[key] = _UsageGroup(name=line.name.strip(), unit=line.unit.strip(), type=classify_material(line))
            group.total += line.required_qty
            group.table_ids.setdefault(requisition.table_id, table_name)
            group.sku_labels.setdefault(sku_label, None)
            group.requisition_ids.add(index)

    if skipped:
        logger.warning('requisitions skipped in usage report', extra={'skipped': skipped})

    rows = [
        UsageRow(
            name=group.name,
            unit=group.unit,
            type=group.type,
            total_required=group.total,
            table_names=tuple(group.table_ids.values()),
            sku_labels=tuple(group.sku_labels),
            table_count=len(group.table_ids),
            requisition_count=len(group.requisition_ids),
        )
        for group in groups.values()
    ]
    grand_total = sum((row.total_required for row in rows), Decimal('0'))

    by_type: dict[str, list[UsageRow]] = {}
    for row in rows:
        by_type.setdefault(row.type, []).append(row)
    breakdown = [
        TypeShare(
            type=type_name,
            total_required=sum((row.total_required for row in members), Decimal('0')),
            share_pct=_share(sum((row.total_required for row in members), Decimal('0')), grand_total),
            material_count=len(members),
        )
        for type_name, members in by_type.items()
    ]
    breakdown.sort(key=lambda share: (-share.total_required, share.type))

    return UsageReport(
        rows=_sort_rows(rows, sort_by),
        type_breakdown=breakdown,
        grand_total=grand_total,
        table_count=len(contributing_tables),
        requisition_count=len(requisitions) - skipped,
        skipped_requisitions=skipped,
    )


async def collect_usage(
    store: RecordStore,
    *,
    table_ids: list[int],
    requisition_ids: list[int] | None = None,
) -> tuple[list[RequisitionRecord], dict[int, str]]:
    if not table_ids:
        raise ValidationError('Select at least one table')
    wanted = set(requisition_ids or [])
    requisitions: list[RequisitionRecord] = []
    table_names: dict[int, str] = {}
    for table_id in dict.fromkeys(table_ids):
        table = await store.get_table(table_id)
        if table is None:
            raise NotFoundError(f'Table {table_id} not found')
        table_names[table_id] = table.name
        for requisition in await store.get_requisitions_by_table(table_id):
            if wanted and requisition.id not in wanted:
                continue
            requisitions.append(requisition)
    return requisitions, table_names


async def usage_report_for_tables(
    store: RecordStore,
    *,
    table_ids: list[int],
    requisition_ids: list[int] | None = None,
    sort_by: str = 'total',
) -> UsageReport:
    requisitions, table_names = await collect_usage(store, table_ids=table_ids, requisition_ids=requisition_ids)
    catalog = None
    if any(not requisition.materials for requisition in requisitions):
        catalog = await store.get_catalog()
    return build_usage_report(requisitions, table_names=table_names, catalog=catalog, sort_by=sort_by)
