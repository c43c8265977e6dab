from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from rm_portal.errors import ValidationError
from rm_portal.services.audit_service import log_audit
from rm_portal.services.column_mapper import map_columns, missing_required_columns
from rm_portal.services.record_store import CatalogRecord, RecordStore
from rm_portal.services.sku_reconstruction_service import reconstruct
from rm_portal.services.sort_utils import name_sort_key, normalize_sort_text
from rm_portal.services.spreadsheet_reader import read_rows

logger = logging.getLogger(__name__)

UNCATEGORIZED = 'Uncategorized'


@dataclass(frozen=True)
class IngestResult:
    filename: str
    rows_read: int
    records_built: int
    records_dropped: int
    records_persisted: int


@dataclass(frozen=True)
class SkuSummary:
    sku_code: str
    sku_name: str
    category: str
    unit: str
    quantity_per_unit: str
    quantity_per_pack: str
    pack_unit: str
    material_count: int


def dedupe_records(records: list[CatalogRecord]) -> list[CatalogRecord]:
    latest: dict[tuple[str, str], CatalogRecord] = {}
    for record in records:
        # Re-inserting moves the key to its last position.
        latest.pop(record.key, None)
        latest[record.key] = record
    return list(latest.values())


async def upsert_catalog(store: RecordStore, records: list[CatalogRecord]) -> int:
    unique = dedupe_records(records)
    if not unique:
        return 0
    persisted = await store.upsert_catalog(unique)
    logger.info('catalog upserted', extra={'input_rows': len(records), 'persisted_rows': persisted})
    return persisted


async def ingest_master_file(
    store: RecordStore,
    *,
    filename: str,
    payload: bytes,
    actor: str | None = None,
) -> IngestResult:
    rows = read_rows(filename=filename, payload=payload)
    if len(rows) < 2:
        raise ValidationError('File has no data rows')

    column_map = map_columns(rows[0])
    missing = missing_required_columns(column_map)
    if missing:
        raise ValidationError(f'Missing required columns: {", ".join(missing)}')

    state = reconstruct(rows[1:], column_map)
    if not state.records:
        raise ValidationError('No valid data found in the file')

    persisted = await upsert_catalog(store, list(state.records))
    result = IngestResult(
        filename=filename,
        rows_read=len(rows) - 1,
        records_built=len(state.records),
        records_dropped=state.dropped,
        records_persisted=persisted,
    )
    await log_audit(
        store,
        actor=actor,
        action='catalog.uploaded',
        metadata={'filename': filename, 'records_persisted': persisted, 'records_dropped': state.dropped},
    )
    logger.info(
        'master file ingested',
        extra={'upload_filename': filename, 'records_built': result.records_built, 'records_dropped': state.dropped},
    )
    return result


def _category_of(record: CatalogRecord) -> str:
    return (record.category or '').strip() or UNCATEGORIZED


async def list_catalog(store: RecordStore) -> list[CatalogRecord]:
    return await store.get_catalog()


async def list_catalog_by_category(store: RecordStore, category: str) -> list[CatalogRecord]:
    wanted = (category or '').strip() or UNCATEGORIZED
    return [record for record in await store.get_catalog() if _category_of(record) == wanted]


async def list_categories(store: RecordStore) -> list[str]:
    catalog = await store.get_catalog()
    named = sorted({(record.category or '').strip() for record in catalog if (record.category or '').strip()})
    if any(not (record.category or '').strip() for record in catalog):
        named.append(UNCATEGORIZED)
    return named


def summarize_skus(records: list[CatalogRecord]) -> list[SkuSummary]:
    by_name: dict[str, SkuSummary] = {}
    counts: dict[str, int] = {}
    for record in records:
        key = normalize_sort_text(record.sku_name)
        counts[key] = counts.get(key, 0) + 1
        if key not in by_name:
            by_name[key] = SkuSummary(
                sku_code=record.sku_code,
                sku_name=record.sku_name,
                category=_category_of(record),
                unit=record.unit,
                quantity_per_unit=record.quantity_per_unit,
                quantity_per_pack=record.quantity_per_pack,
                pack_unit=record.pack_unit,
                material_count=0,
            )
    summaries = [
        replace(summary, material_count=counts[key]) for key, summary in by_name.items()
    ]
    return sorted(summaries, key=lambda summary: name_sort_key(summary.sku_name))


async def list_skus_by_category(store: RecordStore, category: str) -> list[SkuSummary]:
    return summarize_skus(await list_catalog_by_category(store, category))
