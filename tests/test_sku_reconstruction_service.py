from __future__ import annotations

import unittest

from rm_portal.services.column_mapper import map_columns
from rm_portal.services.sku_reconstruction_service import reconstruct, reconstruct_records

HEADER = ['Category', 'SKU Code', 'SKU', 'Unit', 'Raw Material', 'Quantity/Batch', 'Unit4', 'Type']
COLUMN_MAP = map_columns(HEADER)


def sku_row(category: str, code: str, name: str, unit: str = 'pcs') -> list:
    return [category, code, name, unit, '', '', '', '']


def material_row(material: str, qty: str, unit: str = 'kg', material_type: str = '', padding: str = '') -> list:
    return [padding, padding, padding, padding, material, qty, unit, material_type]


class SkuReconstructionTests(unittest.TestCase):
    def test_n_headers_with_m_materials_yield_n_times_m_records(self) -> None:
        rows = []
        for n in range(3):
            rows.append(sku_row('Dimsum', f'SKU-{n}', f'Product {n}'))
            for m in range(4):
                rows.append(material_row(f'Material {n}-{m}', '1.5', padding='   ' if m % 2 else ''))

        records = reconstruct_records(rows, COLUMN_MAP)

        self.assertEqual(len(records), 12)
        for record in records:
            n = record.raw_material.split()[1].split('-')[0]
            self.assertEqual(record.sku_code, f'SKU-{n}')
            self.assertEqual(record.sku_name, f'Product {n}')
            self.assertEqual(record.category, 'Dimsum')

    def test_material_row_falls_back_to_its_own_sku_fields(self) -> None:
        rows = [['Sauces', 'SKU-9', 'Chili Oil', 'jar', 'Garlic', '1.2', 'kg', 'Vegetables']]

        records = reconstruct_records(rows, COLUMN_MAP)

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].sku_code, 'SKU-9')
        self.assertEqual(records[0].unit, 'jar')
        self.assertEqual(records[0].type, 'Vegetables')

    def test_type_defaults_to_other(self) -> None:
        rows = [sku_row('Dimsum', 'SKU-1', 'Siomai'), material_row('Salt', '0.1')]

        records = reconstruct_records(rows, COLUMN_MAP)

        self.assertEqual(records[0].type, 'Other')

    def test_blank_rows_keep_the_current_context(self) -> None:
        rows = [
            sku_row('Dimsum', 'SKU-1', 'Siomai'),
            ['', '', '', '', '', '', '', ''],
            [None] * 8,
            material_row('Salt', '0.1'),
        ]

        records = reconstruct_records(rows, COLUMN_MAP)

        self.assertEqual([record.sku_code for record in records], ['SKU-1'])

    def test_invalid_records_are_dropped_and_counted(self) -> None:
        rows = [
            sku_row('Dimsum', 'SKU-1', 'Siomai'),
            material_row('Salt', ''),
            material_row('Pepper', '0.02', unit=''),
            material_row('Pork', '2'),
        ]

        state = reconstruct(rows, COLUMN_MAP)

        self.assertEqual([record.raw_material for record in state.records], ['Pork'])
        self.assertEqual(state.dropped, 2)

    def test_rows_before_any_sku_header_need_their_own_sku_fields(self) -> None:
        records = reconstruct_records([material_row('Salt', '0.1')], COLUMN_MAP)

        self.assertEqual(records, [])

    def test_order_matters(self) -> None:
        rows = [
            sku_row('Dimsum', 'SKU-1', 'Siomai'),
            material_row('Salt', '0.1'),
            sku_row('Dimsum', 'SKU-2', 'Dumpling'),
            material_row('Pork', '2'),
        ]

        forward = reconstruct_records(rows, COLUMN_MAP)
        backward = reconstruct_records([rows[0], rows[3], rows[2], rows[1]], COLUMN_MAP)

        self.assertEqual([(r.sku_code, r.raw_material) for r in forward], [('SKU-1', 'Salt'), ('SKU-2', 'Pork')])
        self.assertEqual([(r.sku_code, r.raw_material) for r in backward], [('SKU-1', 'Pork'), ('SKU-2', 'Salt')])

    def test_numeric_cells_are_stringified(self) -> None:
        rows = [[None, 1001, 'Siomai', 'pcs', 'Salt', 0.25, 'kg', None]]

        records = reconstruct_records(rows, COLUMN_MAP)

        self.assertEqual(records[0].sku_code, '1001')
        self.assertEqual(records[0].quantity_per_batch, '0.25')


if __name__ == '__main__':
    unittest.main()
