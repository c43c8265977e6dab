from __future__ import annotations

import copy
from dataclasses import replace
from datetime import datetime, timezone
from itertools import count

from rm_portal.errors import PersistenceError
from rm_portal.models import TableStatus
from rm_portal.services.record_store import (
    AuditEvent,
    CatalogRecord,
    MaterialLine,
    ReceiptRecord,
    RequisitionRecord,
    TableRecord,
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class InMemoryRecordStore:
    """Dict-backed record store used for local runs and tests.

    Records are copied on the way in and out so callers never share state with the store.
    ``fail_next`` makes the next call(s) of an operation raise ``PersistenceError``.
    """

    def __init__(self) -> None:
        self.catalog: dict[tuple[str, str], CatalogRecord] = {}
        self.tables: dict[int, TableRecord] = {}
        self.requisitions: dict[int, RequisitionRecord] = {}
        self.materials: dict[int, list[MaterialLine]] = {}
        self.receipts: dict[int, ReceiptRecord] = {}
        self.audit_events: list[AuditEvent] = []
        self._ids = count(1)
        self._failures: dict[str, int] = {}

    def fail_next(self, operation: str, times: int = 1) -> None:
        self._failures[operation] = self._failures.get(operation, 0) + times

    def _check(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining <= 0:
            return
        self._failures[operation] = remaining - 1
        raise PersistenceError(f'{operation} failed')

    def _patched(self, record, patch: dict, operation: str):
        try:
            return replace(record, **patch)
        except TypeError as exc:
            raise PersistenceError(f'{operation} failed: {exc}') from exc

    def _stored_lines(self, materials: list[MaterialLine]) -> list[MaterialLine]:
        lines = []
        for material in materials:
            material.id = next(self._ids)
            lines.append(copy.deepcopy(material))
        return lines

    async def upsert_catalog(self, rows: list[CatalogRecord]) -> int:
        self._check('upsert_catalog')
        for row in rows:
            self.catalog[row.key] = row
        return len(rows)

    async def get_catalog(self) -> list[CatalogRecord]:
        self._check('get_catalog')
        return sorted(self.catalog.values(), key=lambda row: (row.category or '', row.sku_name, row.raw_material))

    async def create_requisition(self, data: RequisitionRecord, materials: list[MaterialLine]) -> int:
        self._check('create_requisition')
        requisition_id = next(self._ids)
        stamped = replace(copy.deepcopy(data), id=requisition_id, materials=[])
        stamped.created_at = stamped.created_at or _now()
        stamped.updated_at = stamped.updated_at or stamped.created_at
        self.requisitions[requisition_id] = stamped
        self.materials[requisition_id] = self._stored_lines(materials)
        return requisition_id

    async def get_requisition(self, requisition_id: int) -> RequisitionRecord | None:
        self._check('get_requisition')
        record = self.requisitions.get(requisition_id)
        if record is None:
            return None
        return replace(copy.deepcopy(record), materials=copy.deepcopy(self.materials.get(requisition_id, [])))

    async def update_requisition(self, requisition_id: int, patch: dict) -> None:
        self._check('update_requisition')
        record = self.requisitions.get(requisition_id)
        if record is None:
            raise PersistenceError(f'Requisition {requisition_id} does not exist')
        updated = self._patched(record, {**patch, 'updated_at': patch.get('updated_at') or _now()}, 'update_requisition')
        self.requisitions[requisition_id] = updated

    async def update_material(self, material_id: int, patch: dict) -> None:
        self._check('update_material')
        for lines in self.materials.values():
            for index, line in enumerate(lines):
                if line.id == material_id:
                    lines[index] = self._patched(line, patch, 'update_material')
                    return
        raise PersistenceError(f'Material {material_id} does not exist')

    async def replace_materials(self, requisition_id: int, materials: list[MaterialLine]) -> None:
        self._check('replace_materials')
        if requisition_id not in self.requisitions:
            raise PersistenceError(f'Requisition {requisition_id} does not exist')
        self.materials[requisition_id] = self._stored_lines(materials)

    async def delete_requisition(self, requisition_id: int) -> None:
        self._check('delete_requisition')
        self.materials.pop(requisition_id, None)
        self.requisitions.pop(requisition_id, None)

    async def get_requisitions_by_table(self, table_id: int) -> list[RequisitionRecord]:
        self._check('get_requisitions_by_table')
        rows = [
            replace(copy.deepcopy(record), materials=copy.deepcopy(self.materials.get(record.id, [])))
            for record in self.requisitions.values()
            if record.table_id == table_id
        ]
        return sorted(rows, key=lambda row: row.id)

    async def create_table(self, data: TableRecord) -> int:
        self._check('create_table')
        table_id = next(self._ids)
        stamped = replace(copy.deepcopy(data), id=table_id)
        stamped.created_at = stamped.created_at or _now()
        stamped.updated_at = stamped.updated_at or stamped.created_at
        self.tables[table_id] = stamped
        return table_id

    async def get_table(self, table_id: int) -> TableRecord | None:
        self._check('get_table')
        record = self.tables.get(table_id)
        return copy.deepcopy(record) if record else None

    async def update_table(self, table_id: int, patch: dict) -> None:
        self._check('update_table')
        record = self.tables.get(table_id)
        if record is None:
            raise PersistenceError(f'Table {table_id} does not exist')
        self.tables[table_id] = self._patched(
            record, {**patch, 'updated_at': patch.get('updated_at') or _now()}, 'update_table'
        )

    async def delete_table(self, table_id: int) -> None:
        self._check('delete_table')
        self.tables.pop(table_id, None)

    async def get_tables_by_user(self, user_id: str) -> list[TableRecord]:
        self._check('get_tables_by_user')
        rows = [copy.deepcopy(t) for t in self.tables.values() if t.user_id == user_id]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    async def get_pending_approval_tables(self) -> list[TableRecord]:
        self._check('get_pending_approval_tables')
        rows = [copy.deepcopy(t) for t in self.tables.values() if t.status == TableStatus.SUBMITTED]
        return sorted(rows, key=lambda t: t.submitted_date or t.created_at)

    async def list_tables(self) -> list[TableRecord]:
        self._check('list_tables')
        return [copy.deepcopy(t) for t in sorted(self.tables.values(), key=lambda t: t.id)]

    async def create_receipt(self, data: ReceiptRecord) -> int:
        self._check('create_receipt')
        receipt_id = next(self._ids)
        stamped = replace(copy.deepcopy(data), id=receipt_id)
        stamped.created_at = stamped.created_at or _now()
        self.receipts[receipt_id] = stamped
        return receipt_id

    async def update_receipt(self, receipt_id: int, patch: dict) -> None:
        self._check('update_receipt')
        record = self.receipts.get(receipt_id)
        if record is None:
            raise PersistenceError(f'Receipt {receipt_id} does not exist')
        self.receipts[receipt_id] = self._patched(record, patch, 'update_receipt')

    async def delete_receipt(self, receipt_id: int) -> None:
        self._check('delete_receipt')
        self.receipts.pop(receipt_id, None)

    async def get_receipts_by_table(self, table_id: int) -> list[ReceiptRecord]:
        self._check('get_receipts_by_table')
        return [copy.deepcopy(r) for r in self.receipts.values() if r.table_id == table_id]

    async def detach_receipts(self, table_id: int) -> int:
        self._check('detach_receipts')
        detached = 0
        for receipt_id, receipt in self.receipts.items():
            if receipt.table_id == table_id:
                self.receipts[receipt_id] = replace(receipt, table_id=None)
                detached += 1
        return detached

    async def append_audit_event(self, event: AuditEvent) -> None:
        self._check('append_audit_event')
        self.audit_events.append(replace(event, created_at=event.created_at or _now()))
