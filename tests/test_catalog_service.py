from __future__ import annotations

import unittest
from io import BytesIO

from openpyxl import Workbook

from factories import catalog_row
from rm_portal.errors import PersistenceError, ValidationError
from rm_portal.services.catalog_service import (
    UNCATEGORIZED,
    dedupe_records,
    ingest_master_file,
    list_catalog_by_category,
    list_categories,
    list_skus_by_category,
    upsert_catalog,
)
from rm_portal.services.memory_record_store import InMemoryRecordStore

HEADER = [
    'Category',
    'SKU Code',
    'SKU',
    'Quantity Per Unit',
    'Unit',
    'Quantity Per Pack',
    'Unit2',
    'Raw Material',
    'Quantity/Batch',
    'Unit4',
    'Type',
]
ROWS = [
    ['Dimsum', 'SKU-001', 'Pork Siomai', '40', 'pcs', '1', 'pack', '', '', '', ''],
    ['', '', '', '', '', '', '', 'Ground Pork', '2.5', 'kg', 'Raw Meat'],
    ['', '', '', '', '', '', '', 'Salt', '0.15', 'kg', ''],
    ['', 'SKU-002', 'Chili Garlic Oil', '12', 'jar', '', '', '', '', '', ''],
    ['', '', '', '', '', '', '', 'Garlic', '1.2', 'kg', 'Vegetables'],
]


def csv_payload(header: list, rows: list) -> bytes:
    lines = [','.join(header)] + [','.join(row) for row in rows]
    return ('\n'.join(lines) + '\n').encode('utf-8')


def xlsx_payload(header: list, rows: list) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(header)
    for row in rows:
        sheet.append([cell or None for cell in row])
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class DedupeTests(unittest.TestCase):
    def test_last_occurrence_wins(self) -> None:
        first = catalog_row('SKU-1', 'Siomai', 'Salt', '0.1')
        second = catalog_row('SKU-1', 'Siomai', 'Salt', '0.2')
        other = catalog_row('SKU-1', 'Siomai', 'Pork', '2')

        result = dedupe_records([first, other, second])

        self.assertEqual(result, [other, second])


class CatalogServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemoryRecordStore()

    async def test_ingest_csv_reconstructs_and_persists(self) -> None:
        result = await ingest_master_file(self.store, filename='master.csv', payload=csv_payload(HEADER, ROWS), actor='user-1')

        self.assertEqual(result.records_persisted, 3)
        self.assertEqual(result.rows_read, 5)
        catalog = await self.store.get_catalog()
        self.assertEqual(
            sorted((row.sku_code, row.raw_material) for row in catalog),
            [('SKU-001', 'Ground Pork'), ('SKU-001', 'Salt'), ('SKU-002', 'Garlic')],
        )
        salt = next(row for row in catalog if row.raw_material == 'Salt')
        self.assertEqual(salt.type, 'Other')
        self.assertEqual(salt.pack_unit, 'pack')
        self.assertEqual(self.store.audit_events[-1].action, 'catalog.uploaded')

    async def test_ingest_xlsx_matches_csv(self) -> None:
        result = await ingest_master_file(self.store, filename='Master.XLSX', payload=xlsx_payload(HEADER, ROWS))

        self.assertEqual(result.records_persisted, 3)
        garlic = next(row for row in await self.store.get_catalog() if row.raw_material == 'Garlic')
        self.assertEqual(garlic.sku_name, 'Chili Garlic Oil')
        self.assertIsNone(garlic.category)

    async def test_missing_mandatory_columns_are_named(self) -> None:
        header = ['Category', 'SKU', 'Raw Material', 'Quantity/Batch']

        with self.assertRaises(ValidationError) as ctx:
            await ingest_master_file(self.store, filename='master.csv', payload=csv_payload(header, [['a', 'b', 'c', 'd']]))

        self.assertIn('SKU Code', str(ctx.exception))
        self.assertIn('Unit4', str(ctx.exception))
        self.assertEqual(await self.store.get_catalog(), [])

    async def test_header_only_file_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await ingest_master_file(self.store, filename='master.csv', payload=csv_payload(HEADER, []))

    async def test_file_without_valid_records_is_rejected(self) -> None:
        rows = [['Dimsum', 'SKU-001', 'Pork Siomai', '', '', '', '', 'Salt', '', '', '']]

        with self.assertRaises(ValidationError):
            await ingest_master_file(self.store, filename='master.csv', payload=csv_payload(HEADER, rows))

    async def test_unsupported_file_type_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await ingest_master_file(self.store, filename='master.pdf', payload=b'%PDF')

    async def test_corrupt_workbook_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            await ingest_master_file(self.store, filename='master.xlsx', payload=b'not a zip file')

    async def test_upsert_is_last_write_wins_and_idempotent(self) -> None:
        await upsert_catalog(self.store, [catalog_row('SKU-1', 'Siomai', 'Salt', '0.1')])
        await upsert_catalog(self.store, [catalog_row('SKU-1', 'Siomai', 'Salt', '0.2')])
        await upsert_catalog(self.store, [catalog_row('SKU-1', 'Siomai', 'Salt', '0.2')])

        catalog = await self.store.get_catalog()
        self.assertEqual(len(catalog), 1)
        self.assertEqual(catalog[0].quantity_per_batch, '0.2')

    async def test_upsert_failure_surfaces(self) -> None:
        self.store.fail_next('upsert_catalog')

        with self.assertRaises(PersistenceError):
            await upsert_catalog(self.store, [catalog_row('SKU-1', 'Siomai', 'Salt', '0.1')])

    async def test_categories_append_uncategorized(self) -> None:
        await upsert_catalog(
            self.store,
            [
                catalog_row('SKU-2', 'Oil', 'Garlic', '1', category='Sauces'),
                catalog_row('SKU-3', 'Bun', 'Flour', '1'),
                catalog_row('SKU-1', 'Siomai', 'Salt', '0.1', category='Dimsum'),
            ],
        )

        self.assertEqual(await list_categories(self.store), ['Dimsum', 'Sauces', UNCATEGORIZED])
        uncategorized = await list_catalog_by_category(self.store, UNCATEGORIZED)
        self.assertEqual([row.sku_code for row in uncategorized], ['SKU-3'])

    async def test_skus_by_category_are_unique_by_name(self) -> None:
        await upsert_catalog(
            self.store,
            [
                catalog_row('SKU-1', 'Siomai', 'Salt', '0.1', category='Dimsum'),
                catalog_row('SKU-1', 'Siomai', 'Pork', '2', category='Dimsum'),
                catalog_row('SKU-4', 'Hakaw', 'Shrimp', '1', category='Dimsum'),
            ],
        )

        skus = await list_skus_by_category(self.store, 'Dimsum')

        self.assertEqual([sku.sku_name for sku in skus], ['Hakaw', 'Siomai'])
        self.assertEqual(skus[1].material_count, 2)


if __name__ == '__main__':
    unittest.main()
