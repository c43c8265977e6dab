from __future__ import annotations

from decimal import Decimal

from rm_portal.errors import NotFoundError, ValidationError
from rm_portal.services.record_store import CatalogRecord, MaterialLine
from rm_portal.services.sort_utils import leading_decimal, normalize_sort_text

MIN_QTY_NEEDED = 1
MAX_QTY_NEEDED = 999

FILTER_KEYWORDS = {
    'meat-veg': ('raw', 'meat', 'chicken', 'pork', 'beef', 'fish', 'veggies', 'vegetables', 'vegetable', 'veg'),
    'pre-mix': ('pre-mix', 'premix'),
    'packaging': ('packaging',),
}


def parse_quantity(raw: str | None) -> Decimal:
    value = leading_decimal(raw)
    return value if value is not None else Decimal('0')


def validate_qty_needed(qty_needed) -> int:
    if isinstance(qty_needed, bool):
        raise ValidationError('Quantity needed must be a whole number')
    if isinstance(qty_needed, str):
        qty_needed = qty_needed.strip()
    try:
        qty = int(qty_needed)
    except (TypeError, ValueError) as exc:
        raise ValidationError('Quantity needed must be a whole number') from exc
    # int() truncates 2.5 to 2
    if not isinstance(qty_needed, str) and qty != qty_needed:
        raise ValidationError('Quantity needed must be a whole number')
    if qty < MIN_QTY_NEEDED or qty > MAX_QTY_NEEDED:
        raise ValidationError(f'Quantity needed must be between {MIN_QTY_NEEDED} and {MAX_QTY_NEEDED}')
    return qty


def find_sku_rows(catalog: list[CatalogRecord], *, sku_code: str | None = None, sku_name: str | None = None) -> list[CatalogRecord]:
    code = (sku_code or '').strip()
    if code:
        rows = [row for row in catalog if row.sku_code.strip() == code]
        if rows:
            return rows
    name = normalize_sort_text(sku_name)
    if name:
        rows = [row for row in catalog if normalize_sort_text(row.sku_name) == name]
        if rows:
            return rows
    raise NotFoundError(f'No catalog rows for SKU {code or sku_name or "(blank)"}')


def explode_materials(rows: list[CatalogRecord], qty_needed: int) -> list[MaterialLine]:
    qty = validate_qty_needed(qty_needed)
    materials: list[MaterialLine] = []
    for row in rows:
        if not row.raw_material.strip() or not row.quantity_per_batch.strip():
            continue
        per_batch = parse_quantity(row.quantity_per_batch)
        materials.append(
            MaterialLine(
                name=row.raw_material.strip(),
                qty_per_batch=per_batch,
                unit=row.batch_unit,
                type=row.type,
                required_qty=per_batch * qty,
            )
        )
    return materials


def regenerate_materials(existing: list[MaterialLine], rows: list[CatalogRecord], qty_needed: int) -> list[MaterialLine]:
    """Re-explode from the catalog, keeping served state recorded against each material name."""
    previous = {normalize_sort_text(line.name): line for line in existing}
    regenerated = explode_materials(rows, qty_needed)
    for line in regenerated:
        before = previous.get(normalize_sort_text(line.name))
        if before is None:
            continue
        line.served_qty = before.served_qty
        line.remarks = before.remarks
        line.served_date = before.served_date
    return regenerated


def rescale_materials(materials: list[MaterialLine], qty_needed: int) -> list[MaterialLine]:
    qty = validate_qty_needed(qty_needed)
    for line in materials:
        line.required_qty = line.qty_per_batch * qty
    return materials


def material_filter_of(material_type: str | None) -> str:
    lowered = normalize_sort_text(material_type)
    if not lowered:
        return ''
    for filter_type, keywords in FILTER_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return filter_type
    return ''


def filter_materials_by_type(materials: list[MaterialLine], filter_type: str | None) -> list[MaterialLine]:
    if not filter_type or filter_type == 'all':
        return list(materials)
    if filter_type not in FILTER_KEYWORDS:
        raise ValidationError(f'Unknown material filter: {filter_type}')
    keywords = FILTER_KEYWORDS[filter_type]
    return [line for line in materials if any(keyword in normalize_sort_text(line.type) for keyword in keywords)]
