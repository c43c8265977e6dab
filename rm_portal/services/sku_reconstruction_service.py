"""Rebuild (SKU, raw material) records from a flat sheet that uses blank-cell inheritance.

A row with an empty raw-material cell is a SKU header row and becomes the
current context. A row with a raw material is emitted as one record that takes
its SKU fields from the context, falling back to the row's own cells. The scan
is a fold over the rows, so the output depends on row order.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import reduce
from typing import Sequence

from rm_portal.services.column_mapper import MISSING
from rm_portal.services.record_store import CatalogRecord
from rm_portal.services.sort_utils import cell_text

DEFAULT_MATERIAL_TYPE = 'Other'
SKU_FIELDS = ('category', 'sku_code', 'sku_name', 'quantity_per_unit', 'unit', 'quantity_per_pack', 'pack_unit')


@dataclass(frozen=True)
class SkuContext:
    category: str = ''
    sku_code: str = ''
    sku_name: str = ''
    quantity_per_unit: str = ''
    unit: str = ''
    quantity_per_pack: str = ''
    pack_unit: str = ''


@dataclass(frozen=True)
class ReconstructionState:
    context: SkuContext = SkuContext()
    records: tuple[CatalogRecord, ...] = ()
    dropped: int = 0


def _cell(row: Sequence, column_map: dict[str, int], field: str) -> str:
    index = column_map.get(field, MISSING)
    if index == MISSING or index >= len(row):
        return ''
    return cell_text(row[index])


def _is_blank(row: Sequence) -> bool:
    return all(cell_text(value) == '' for value in row)


def _is_valid(record: CatalogRecord) -> bool:
    return all(
        (record.sku_code, record.sku_name, record.raw_material, record.quantity_per_batch, record.batch_unit)
    )


def _context_from_row(row: Sequence, column_map: dict[str, int]) -> SkuContext:
    return SkuContext(**{field: _cell(row, column_map, field) for field in SKU_FIELDS})


def _record_from_row(context: SkuContext, row: Sequence, column_map: dict[str, int]) -> CatalogRecord:
    sku = {field: getattr(context, field) or _cell(row, column_map, field) for field in SKU_FIELDS}
    return CatalogRecord(
        category=sku.pop('category') or None,
        **sku,
        raw_material=_cell(row, column_map, 'raw_material'),
        quantity_per_batch=_cell(row, column_map, 'quantity_per_batch'),
        batch_unit=_cell(row, column_map, 'batch_unit'),
        type=_cell(row, column_map, 'type') or DEFAULT_MATERIAL_TYPE,
    )


def reconstruction_step(column_map: dict[str, int]):
    def step(state: ReconstructionState, row: Sequence) -> ReconstructionState:
        if _is_blank(row):
            return state
        if not _cell(row, column_map, 'raw_material'):
            return replace(state, context=_context_from_row(row, column_map))
        record = _record_from_row(state.context, row, column_map)
        if not _is_valid(record):
            return replace(state, dropped=state.dropped + 1)
        return replace(state, records=state.records + (record,))

    return step


def reconstruct(rows: Sequence[Sequence], column_map: dict[str, int]) -> ReconstructionState:
    return reduce(reconstruction_step(column_map), rows, ReconstructionState())


def reconstruct_records(rows: Sequence[Sequence], column_map: dict[str, int]) -> list[CatalogRecord]:
    return list(reconstruct(rows, column_map).records)
