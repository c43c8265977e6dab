from __future__ import annotations

import csv
import re
from datetime import datetime, timezone
from io import StringIO

from rm_portal.errors import ValidationError
from rm_portal.services.material_explosion_service import material_filter_of
from rm_portal.services.record_store import RequisitionRecord, TableRecord

EXPORT_TYPE_LABELS = {
    'all': 'All Data',
    'meat-veg': 'Meat & Vegetables Only',
    'pre-mix': 'Pre-mix Only',
    'packaging': 'Packaging Only',
}
EXPORT_COLUMNS = [
    'SKU Code',
    'SKU',
    'Category',
    'Qty Needed',
    'Supplier',
    'Raw Material',
    'Qty/Batch',
    'Unit',
    'Type',
    'Total Required',
]


def _decimal_text(value) -> str:
    text = format(value, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text or '0'


def export_filename(*, user_name: str, table_name: str, export_type: str, now: datetime) -> str:
    label = 'All' if export_type == 'all' else re.sub(r'\s+', '', EXPORT_TYPE_LABELS[export_type].replace('&', 'and'))
    table_part = re.sub(r'\s+', '_', table_name.strip()) or 'Table'
    user_part = re.sub(r'\s+', '_', user_name.strip()) or 'User'
    return f'{user_part}_Requisition_{table_part}_{label}_{now:%Y%m%d}.csv'


def build_requisition_csv(
    table: TableRecord,
    requisitions: list[RequisitionRecord],
    *,
    export_type: str = 'all',
    user_name: str = 'User',
    master_file: str | None = None,
    now: datetime | None = None,
) -> str:
    """Render the requisition sheet: a header block, then one row per material with SKU cells on the first row only."""
    if export_type not in EXPORT_TYPE_LABELS:
        raise ValidationError(f'Unknown export type: {export_type}')
    moment = now or datetime.now(tz=timezone.utc)

    sio = StringIO()
    writer = csv.writer(sio)
    writer.writerow(['RAW MATERIAL REQUISITION'])
    writer.writerow(['Generated', moment.strftime('%Y-%m-%d %H:%M')])
    writer.writerow(['User', user_name])
    writer.writerow(['Master File', master_file or 'None'])
    writer.writerow(['Table', table.name])
    writer.writerow(['Export Type', EXPORT_TYPE_LABELS[export_type]])
    writer.writerow([])
    writer.writerow(EXPORT_COLUMNS)

    for requisition in requisitions:
        materials = requisition.materials
        if export_type != 'all':
            materials = [line for line in materials if material_filter_of(line.type) == export_type]
        for index, line in enumerate(materials):
            first = index == 0
            writer.writerow(
                [
                    requisition.sku_code if first else '',
                    requisition.sku_name if first else '',
                    (requisition.category or '') if first else '',
                    str(requisition.qty_needed) if first else '',
                    requisition.supplier if first else '',
                    line.name,
                    _decimal_text(line.qty_per_batch),
                    line.unit or '',
                    line.type or '',
                    _decimal_text(line.required_qty),
                ]
            )
    return sio.getvalue()
