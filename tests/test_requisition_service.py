from __future__ import annotations

import random
import unittest
from decimal import Decimal

from factories import (
    ADMIN,
    CATALOG,
    CONFIG,
    MONDAY_AFTERNOON,
    MONDAY_MORNING,
    OTHER_USER,
    OWNER,
    approved_table,
    draft,
    table_with_requisitions,
)
from rm_portal.errors import NotFoundError, PermissionDeniedError, PersistenceError, PolicyWarning, ValidationError
from rm_portal.models import ReceiptStatus, RequisitionStatus
from rm_portal.services.memory_record_store import InMemoryRecordStore
from rm_portal.services.receipt_service import ReceiptDraft, add_receipt, review_receipt
from rm_portal.services.requisition_service import (
    CustomChoice,
    KnownChoice,
    RequisitionDetails,
    add_requisition,
    clear_table,
    delete_requisition,
    generate_requisition_number,
    record_serve,
    resolve_choice,
    update_requisition_details,
    update_requisition_quantity,
)
from rm_portal.services.table_service import create_table, submit_table


class ChoiceTests(unittest.TestCase):
    def test_known_value(self) -> None:
        self.assertEqual(resolve_choice(' Metro Meats '), KnownChoice('Metro Meats'))

    def test_other_uses_free_text(self) -> None:
        choice = resolve_choice('Other', ' Local Farm ', label='supplier')

        self.assertEqual(choice, CustomChoice('Local Farm'))
        self.assertEqual(choice.value, 'Local Farm')

    def test_other_without_text_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_choice('other', '  ', label='supplier')
        with self.assertRaises(ValidationError):
            resolve_choice('', None, label='brand')

    def test_requisition_number_format(self) -> None:
        number = generate_requisition_number(MONDAY_MORNING, random.Random(3))

        self.assertRegex(number, r'^MR-240101-\d{3}$')


class AddRequisitionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemoryRecordStore()

    async def _add(self, workspace, item=None, *, principal=OWNER, now=MONDAY_MORNING, confirm=False):
        return await add_requisition(
            self.store,
            workspace,
            catalog=CATALOG,
            draft=item or draft(),
            principal=principal,
            now=now,
            confirm=confirm,
            config=CONFIG,
        )

    async def test_add_explodes_materials_and_counts_items(self) -> None:
        workspace = await create_table(self.store, principal=OWNER, name='Week 1')

        record = await self._add(workspace)

        self.assertEqual(record.status, RequisitionStatus.DRAFT)
        self.assertEqual(record.category, 'Dimsum')
        self.assertEqual(
            [(line.name, line.required_qty) for line in record.materials],
            [('Ground Pork', Decimal('10.0')), ('Salt', Decimal('0.60')), ('Siomai Wrapper', Decimal('4'))],
        )
        self.assertEqual(len(self.store.materials[record.id]), 3)
        self.assertTrue(all(line.id is not None for line in record.materials))
        self.assertEqual(self.store.tables[workspace.table.id].item_count, 1)
        self.assertEqual(workspace.table.item_count, 1)

    async def test_unknown_sku_is_not_found(self) -> None:
        workspace = await create_table(self.store, principal=OWNER, name='Week 1')

        with self.assertRaises(NotFoundError):
            await self._add(workspace, draft(sku_code='SKU-404'))
        self.assertEqual(workspace.requisitions, [])

    async def test_past_cutoff_needs_confirmation(self) -> None:
        workspace = await create_table(self.store, principal=OWNER, name='Week 1')

        with self.assertRaises(PolicyWarning) as ctx:
            await self._add(workspace, now=MONDAY_AFTERNOON)

        self.assertEqual(ctx.exception.code, 'cutoff')
        self.assertFalse(ctx.exception.blocking)
        self.assertEqual(ctx.exception.cutoff.next_window.day_name, 'Thursday')
        self.assertEqual(self.store.requisitions, {})

        record = await self._add(workspace, now=MONDAY_AFTERNOON, confirm=True)
        self.assertIsNotNone(record.id)

    async def test_submitted_table_rejects_new_requisitions(self) -> None:
        workspace = await table_with_requisitions(self.store)
        await submit_table(self.store, workspace, principal=OWNER, now=MONDAY_MORNING, config=CONFIG)

        with self.assertRaises(ValidationError):
            await self._add(workspace)

    async def test_approved_table_requires_a_receipt(self) -> None:
        workspace = await approved_table(self.store)

        with self.assertRaises(PolicyWarning) as ctx:
            await self._add(workspace, confirm=True)

        self.assertEqual(ctx.exception.code, 'receipt_required')
        self.assertTrue(ctx.exception.blocking)

    async def test_rejected_receipt_does_not_open_the_gate(self) -> None:
        workspace = await approved_table(self.store)
        receipt = await add_receipt(self.store, workspace, draft=ReceiptDraft(po_number='PO-1'), principal=OWNER)
        await review_receipt(self.store, workspace, receipt_id=receipt.id, status=ReceiptStatus.REJECTED, principal=ADMIN)

        with self.assertRaises(PolicyWarning):
            await self._add(workspace)

    async def test_late_addition_to_approved_table_joins_approved(self) -> None:
        workspace = await approved_table(self.store)
        await add_receipt(self.store, workspace, draft=ReceiptDraft(po_number='PO-1', amount='150'), principal=OWNER)

        record = await self._add(workspace, draft(sku_code='SKU-002', qty_needed=2))

        self.assertEqual(record.status, RequisitionStatus.APPROVED)
        self.assertEqual(record.approved_by, 'Ana Reyes')
        self.assertEqual(len(workspace.requisitions), 2)

    async def test_store_failure_rolls_back_workspace(self) -> None:
        workspace = await create_table(self.store, principal=OWNER, name='Week 1')
        self.store.fail_next('create_requisition')

        with self.assertRaises(PersistenceError):
            await self._add(workspace)

        self.assertEqual(workspace.requisitions, [])
        self.assertEqual(workspace.table.item_count, 0)
        self.assertEqual(self.store.requisitions, {})

    async def test_only_owner_or_admin_can_add(self) -> None:
        workspace = await create_table(self.store, principal=OWNER, name='Week 1')

        with self.assertRaises(PermissionDeniedError):
            await self._add(workspace, principal=OTHER_USER)

        record = await self._add(workspace, principal=ADMIN)
        self.assertEqual(record.user_id, OWNER.id)


class EditRequisitionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryRecordStore()
        self.workspace = await table_with_requisitions(self.store)
        self.requisition = self.workspace.requisitions[0]

    async def test_quantity_change_regenerates_and_keeps_served(self) -> None:
        salt = self.requisition.materials[1]
        await record_serve(
            self.store,
            self.workspace,
            requisition_id=self.requisition.id,
            material_id=salt.id,
            served_qty='0.3',
            principal=OWNER,
        )

        record = await update_requisition_quantity(
            self.store,
            self.workspace,
            requisition_id=self.requisition.id,
            qty_needed=2,
            principal=OWNER,
            catalog=CATALOG,
        )

        self.assertEqual(record.qty_needed, 2)
        self.assertEqual([line.required_qty for line in record.materials], [Decimal('5.0'), Decimal('0.30'), Decimal('2')])
        self.assertEqual(record.materials[1].served_qty, Decimal('0.3'))
        # 0.3 of 0.30 salt is now fully served; the rest is pending.
        self.assertEqual(record.status, RequisitionStatus.PARTIALLY_SERVED)
        stored = await self.store.get_requisition(self.requisition.id)
        self.assertEqual(stored.qty_needed, 2)
        self.assertEqual(stored.materials[1].served_qty, Decimal('0.3'))

    async def test_quantity_change_without_catalog_rescales(self) -> None:
        record = await update_requisition_quantity(
            self.store,
            self.workspace,
            requisition_id=self.requisition.id,
            qty_needed=10,
            principal=OWNER,
        )

        self.assertEqual(record.materials[0].required_qty, Decimal('25.0'))
        stored = await self.store.get_requisition(self.requisition.id)
        self.assertEqual(stored.materials[0].required_qty, Decimal('25.0'))

    async def test_quantity_out_of_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await update_requisition_quantity(
                self.store,
                self.workspace,
                requisition_id=self.requisition.id,
                qty_needed=1000,
                principal=OWNER,
            )
        self.assertEqual(self.requisition.qty_needed, 4)

    async def test_failed_quantity_change_restores_materials(self) -> None:
        self.store.fail_next('replace_materials')

        with self.assertRaises(PersistenceError):
            await update_requisition_quantity(
                self.store,
                self.workspace,
                requisition_id=self.requisition.id,
                qty_needed=8,
                principal=OWNER,
                catalog=CATALOG,
            )

        restored = self.workspace.find_requisition(self.requisition.id)
        self.assertEqual(restored.qty_needed, 4)
        self.assertEqual(restored.materials[0].required_qty, Decimal('10.0'))

    async def test_details_update(self) -> None:
        record = await update_requisition_details(
            self.store,
            self.workspace,
            requisition_id=self.requisition.id,
            details=RequisitionDetails(supplier=CustomChoice('Local Farm'), remarks='  rush  '),
            principal=OWNER,
        )

        self.assertEqual(record.supplier, 'Local Farm')
        self.assertEqual(record.remarks, 'rush')
        self.assertEqual(self.store.requisitions[self.requisition.id].supplier, 'Local Farm')

    async def test_delete_requisition_updates_count_and_audits(self) -> None:
        await delete_requisition(self.store, self.workspace, requisition_id=self.requisition.id, principal=OWNER)

        self.assertEqual(self.workspace.requisitions, [])
        self.assertEqual(self.store.tables[self.workspace.table.id].item_count, 0)
        self.assertNotIn(self.requisition.id, self.store.materials)
        self.assertEqual(self.store.audit_events[-1].action, 'requisition.deleted')

    async def test_clear_table_removes_everything(self) -> None:
        await add_requisition(
            self.store,
            self.workspace,
            catalog=CATALOG,
            draft=draft(sku_code='SKU-002'),
            principal=OWNER,
            now=MONDAY_MORNING,
            config=CONFIG,
        )

        removed = await clear_table(self.store, self.workspace, principal=OWNER)

        self.assertEqual(removed, 2)
        self.assertEqual(self.store.requisitions, {})
        self.assertEqual(self.store.tables[self.workspace.table.id].item_count, 0)


class ServeTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryRecordStore()
        self.workspace = await approved_table(self.store)
        self.requisition = self.workspace.requisitions[0]

    async def _serve(self, index: int, qty):
        return await record_serve(
            self.store,
            self.workspace,
            requisition_id=self.requisition.id,
            material_id=self.requisition.materials[index].id,
            served_qty=qty,
            principal=OWNER,
        )

    async def test_serve_rolls_up_to_requisition(self) -> None:
        record = await self._serve(0, '4')

        self.assertEqual(record.status, RequisitionStatus.PARTIALLY_SERVED)
        self.assertIsNotNone(record.materials[0].served_date)

        await self._serve(0, '10')
        await self._serve(1, '0.6')
        record = await self._serve(2, '5')

        self.assertEqual(record.status, RequisitionStatus.FULLY_SERVED)
        self.assertEqual(self.store.requisitions[self.requisition.id].status, RequisitionStatus.FULLY_SERVED)

    async def test_unserving_returns_to_approved(self) -> None:
        await self._serve(0, '1')

        record = await self._serve(0, 0)

        self.assertEqual(record.status, RequisitionStatus.APPROVED)
        self.assertIsNone(record.materials[0].served_date)

    async def test_negative_served_quantity_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await self._serve(0, '-1')

    async def test_failed_serve_is_rolled_back(self) -> None:
        self.store.fail_next('update_material')

        with self.assertRaises(PersistenceError):
            await self._serve(0, '3')

        restored = self.workspace.find_requisition(self.requisition.id)
        self.assertEqual(restored.materials[0].served_qty, Decimal('0'))
        self.assertEqual(restored.status, RequisitionStatus.APPROVED)

    async def test_unknown_material_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            await record_serve(
                self.store,
                self.workspace,
                requisition_id=self.requisition.id,
                material_id=9999,
                served_qty='1',
                principal=OWNER,
            )

    async def test_submitted_requisition_cannot_be_served(self) -> None:
        store = InMemoryRecordStore()
        workspace = await table_with_requisitions(store)
        await submit_table(store, workspace, principal=OWNER, now=MONDAY_MORNING, config=CONFIG)
        requisition = workspace.requisitions[0]

        with self.assertRaises(ValidationError):
            await record_serve(
                store,
                workspace,
                requisition_id=requisition.id,
                material_id=requisition.materials[0].id,
                served_qty='1',
                principal=OWNER,
            )


if __name__ == '__main__':
    unittest.main()
