"""Locate the catalog fields in a spreadsheet header row.

Matching is case-insensitive after trimming and collapsing whitespace. Exact
rules run first and claim their columns; loose rules (prefix or token
matches) only look at unclaimed columns. A missing field maps to ``-1``;
rejecting a file without its mandatory columns is the caller's job.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

from rm_portal.services.sort_utils import normalize_header

MISSING = -1

FIELDS = (
    'category',
    'sku_code',
    'sku_name',
    'quantity_per_unit',
    'unit',
    'quantity_per_pack',
    'pack_unit',
    'raw_material',
    'quantity_per_batch',
    'batch_unit',
    'type',
)

REQUIRED_FIELD_LABELS = {
    'sku_code': 'SKU Code',
    'sku_name': 'SKU',
    'raw_material': 'Raw Material',
    'quantity_per_batch': 'Quantity/Batch',
    'batch_unit': 'Unit4',
}

_UNIT_SUFFIX = re.compile(r'^unit\s*\d+$')


@dataclass(frozen=True)
class ColumnRule:
    field: str
    exact: tuple[str, ...]
    loose: Callable[[str], bool] | None = None


def _has_tokens(*tokens: str) -> Callable[[str], bool]:
    return lambda header: all(token in header for token in tokens)


def _plain_unit(header: str) -> bool:
    # "unit2"/"unit 4" are positional variants with their own rules.
    return header.startswith('unit') and not _UNIT_SUFFIX.match(header)


RULES = (
    ColumnRule('category', ('category',), _has_tokens('category')),
    ColumnRule('sku_code', ('sku code', 'sku_code', 'skucode'), _has_tokens('sku', 'code')),
    ColumnRule('sku_name', ('sku', 'sku name', 'sku_name')),
    ColumnRule('quantity_per_unit', ('quantity per unit', 'qty per unit'), _has_tokens('quantity', 'per unit')),
    ColumnRule('quantity_per_pack', ('quantity per pack', 'qty per pack'), _has_tokens('quantity', 'per pack')),
    ColumnRule('pack_unit', ('unit2', 'unit 2')),
    ColumnRule('raw_material', ('raw material', 'raw materials'), _has_tokens('raw', 'material')),
    ColumnRule('quantity_per_batch', ('quantity/batch', 'quantity per batch', 'qty/batch'), _has_tokens('quantity', 'batch')),
    ColumnRule('batch_unit', ('unit4', 'unit 4')),
    ColumnRule('type', ('type', 'material type'), _has_tokens('type')),
    ColumnRule('unit', ('unit',), _plain_unit),
)


def map_columns(header_row: Sequence) -> dict[str, int]:
    headers = [normalize_header(cell) for cell in header_row]
    column_map = {field: MISSING for field in FIELDS}
    claimed: set[int] = set()

    for rule in RULES:
        for index, header in enumerate(headers):
            if index not in claimed and header in rule.exact:
                column_map[rule.field] = index
                claimed.add(index)
                break

    for rule in RULES:
        if column_map[rule.field] != MISSING or rule.loose is None:
            continue
        for index, header in enumerate(headers):
            if index not in claimed and header and rule.loose(header):
                column_map[rule.field] = index
                claimed.add(index)
                break

    return column_map


def missing_required_columns(column_map: dict[str, int]) -> list[str]:
    return [label for field, label in REQUIRED_FIELD_LABELS.items() if column_map.get(field, MISSING) == MISSING]
