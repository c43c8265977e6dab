from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rm_portal.errors import PersistenceError
from rm_portal.models import (
    AuditLog,
    MasterCatalogRow,
    POReceipt,
    Requisition,
    RequisitionMaterial,
    RequisitionTable,
    TableStatus,
)
from rm_portal.services.record_store import (
    AuditEvent,
    CatalogRecord,
    MaterialLine,
    ReceiptRecord,
    RequisitionRecord,
    TableRecord,
)

logger = logging.getLogger(__name__)

CATALOG_UPSERT_CHUNK = 500
CATALOG_COLUMNS = (
    'category',
    'sku_name',
    'quantity_per_unit',
    'unit',
    'quantity_per_pack',
    'pack_unit',
    'quantity_per_batch',
    'batch_unit',
    'type',
)
REQUISITION_FIELDS = (
    'requisition_number',
    'requisition_type',
    'table_id',
    'user_id',
    'sku_code',
    'sku_name',
    'category',
    'qty_needed',
    'date_needed',
    'supplier',
    'brand',
    'unit',
    'qty_per_unit',
    'qty_per_pack',
    'pack_unit',
    'status',
    'approval_status',
    'submitted_by',
    'submitted_date',
    'reviewed_by',
    'reviewed_date',
    'approved_by',
    'approved_date',
    'remarks',
)
TABLE_FIELDS = (
    'name',
    'user_id',
    'status',
    'item_count',
    'submitted_by',
    'submitted_date',
    'reviewed_by',
    'reviewed_date',
    'approved_by',
    'approved_date',
    'remarks',
    'date_needed',
)
RECEIPT_FIELDS = (
    'table_id',
    'requisition_id',
    'po_number',
    'supplier',
    'amount',
    'receipt_date',
    'file_name',
    'file_size',
    'content_type',
    'file_url',
    'status',
    'uploaded_by',
    'reviewed_by',
    'reviewed_date',
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _catalog_record(row: MasterCatalogRow) -> CatalogRecord:
    return CatalogRecord(
        category=row.category,
        sku_code=row.sku_code,
        sku_name=row.sku_name,
        quantity_per_unit=row.quantity_per_unit,
        unit=row.unit,
        quantity_per_pack=row.quantity_per_pack,
        pack_unit=row.pack_unit,
        raw_material=row.raw_material,
        quantity_per_batch=row.quantity_per_batch,
        batch_unit=row.batch_unit,
        type=row.type,
    )


def _material_line(row: RequisitionMaterial) -> MaterialLine:
    return MaterialLine(
        id=row.id,
        name=row.material_name,
        qty_per_batch=row.qty_per_batch,
        unit=row.unit,
        type=row.type,
        required_qty=row.required_qty,
        served_qty=row.served_qty,
        remarks=row.remarks,
        served_date=row.served_date,
    )


def _material_row(requisition_id: int, position: int, line: MaterialLine) -> RequisitionMaterial:
    return RequisitionMaterial(
        requisition_id=requisition_id,
        position=position,
        material_name=line.name,
        qty_per_batch=line.qty_per_batch,
        unit=line.unit,
        type=line.type,
        required_qty=line.required_qty,
        served_qty=line.served_qty,
        remarks=line.remarks,
        served_date=line.served_date,
    )


def _requisition_record(row: Requisition, materials: list[MaterialLine]) -> RequisitionRecord:
    values = {name: getattr(row, name) for name in REQUISITION_FIELDS}
    return RequisitionRecord(
        **values,
        id=row.id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        materials=materials,
    )


def _table_record(row: RequisitionTable) -> TableRecord:
    values = {name: getattr(row, name) for name in TABLE_FIELDS}
    return TableRecord(**values, id=row.id, created_at=row.created_at, updated_at=row.updated_at)


def _receipt_record(row: POReceipt) -> ReceiptRecord:
    values = {name: getattr(row, name) for name in RECEIPT_FIELDS}
    return ReceiptRecord(**values, id=row.id, created_at=row.created_at)


def _checked_patch(patch: dict, allowed: tuple[str, ...], operation: str) -> dict:
    unknown = sorted(set(patch) - set(allowed) - {'updated_at'})
    if unknown:
        raise PersistenceError(f'{operation} failed: unknown fields {", ".join(unknown)}')
    return dict(patch)


class SqlRecordStore:
    """Record store over SQLAlchemy's async ORM. One session and one commit per call."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)

    def _insert(self):
        if self.engine.dialect.name == 'sqlite':
            return sqlite_insert
        return pg_insert

    async def _run(self, operation: str, work):
        try:
            async with self.session_factory() as db:
                result = await work(db)
                await db.commit()
                return result
        except SQLAlchemyError as exc:
            logger.error('record store call failed', extra={'operation': operation})
            raise PersistenceError(f'{operation} failed: {exc}') from exc

    async def upsert_catalog(self, rows: list[CatalogRecord]) -> int:
        if not rows:
            return 0
        insert = self._insert()

        async def work(db: AsyncSession) -> int:
            for start in range(0, len(rows), CATALOG_UPSERT_CHUNK):
                chunk = rows[start : start + CATALOG_UPSERT_CHUNK]
                stmt = insert(MasterCatalogRow).values(
                    [
                        {'sku_code': row.sku_code, 'raw_material': row.raw_material}
                        | {column: getattr(row, column) for column in CATALOG_COLUMNS}
                        for row in chunk
                    ]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=['sku_code', 'raw_material'],
                    set_={column: stmt.excluded[column] for column in CATALOG_COLUMNS} | {'updated_at': func.now()},
                )
                await db.execute(stmt)
            return len(rows)

        return await self._run('upsert_catalog', work)

    async def get_catalog(self) -> list[CatalogRecord]:
        async def work(db: AsyncSession) -> list[CatalogRecord]:
            result = await db.execute(
                select(MasterCatalogRow).order_by(
                    MasterCatalogRow.category.asc(), MasterCatalogRow.sku_name.asc(), MasterCatalogRow.id.asc()
                )
            )
            return [_catalog_record(row) for row in result.scalars().all()]

        return await self._run('get_catalog', work)

    async def create_requisition(self, data: RequisitionRecord, materials: list[MaterialLine]) -> int:
        async def work(db: AsyncSession) -> int:
            now = _now()
            requisition = Requisition(
                **{name: getattr(data, name) for name in REQUISITION_FIELDS},
                created_at=data.created_at or now,
                updated_at=data.updated_at or now,
            )
            db.add(requisition)
            await db.flush()
            rows = [_material_row(requisition.id, position, line) for position, line in enumerate(materials)]
            db.add_all(rows)
            await db.flush()
            for line, row in zip(materials, rows):
                line.id = row.id
            return requisition.id

        return await self._run('create_requisition', work)

    async def _materials_for(self, db: AsyncSession, requisition_ids: list[int]) -> dict[int, list[MaterialLine]]:
        by_requisition: dict[int, list[MaterialLine]] = {rid: [] for rid in requisition_ids}
        if not requisition_ids:
            return by_requisition
        result = await db.execute(
            select(RequisitionMaterial)
            .where(RequisitionMaterial.requisition_id.in_(requisition_ids))
            .order_by(RequisitionMaterial.requisition_id.asc(), RequisitionMaterial.position.asc(), RequisitionMaterial.id.asc())
        )
        for row in result.scalars().all():
            by_requisition[row.requisition_id].append(_material_line(row))
        return by_requisition

    async def get_requisition(self, requisition_id: int) -> RequisitionRecord | None:
        async def work(db: AsyncSession) -> RequisitionRecord | None:
            row = (await db.execute(select(Requisition).where(Requisition.id == requisition_id))).scalar_one_or_none()
            if row is None:
                return None
            materials = await self._materials_for(db, [row.id])
            return _requisition_record(row, materials[row.id])

        return await self._run('get_requisition', work)

    async def update_requisition(self, requisition_id: int, patch: dict) -> None:
        values = _checked_patch(patch, REQUISITION_FIELDS, 'update_requisition')
        values.setdefault('updated_at', _now())

        async def work(db: AsyncSession) -> None:
            result = await db.execute(update(Requisition).where(Requisition.id == requisition_id).values(**values))
            if not result.rowcount:
                raise PersistenceError(f'Requisition {requisition_id} does not exist')

        await self._run('update_requisition', work)

    async def update_material(self, material_id: int, patch: dict) -> None:
        values = _checked_patch(
            patch,
            ('name', 'qty_per_batch', 'unit', 'type', 'required_qty', 'served_qty', 'remarks', 'served_date'),
            'update_material',
        )
        values.pop('updated_at', None)
        if 'name' in values:
            values['material_name'] = values.pop('name')

        async def work(db: AsyncSession) -> None:
            result = await db.execute(
                update(RequisitionMaterial).where(RequisitionMaterial.id == material_id).values(**values)
            )
            if not result.rowcount:
                raise PersistenceError(f'Material {material_id} does not exist')

        await self._run('update_material', work)

    async def replace_materials(self, requisition_id: int, materials: list[MaterialLine]) -> None:
        async def work(db: AsyncSession) -> None:
            await db.execute(delete(RequisitionMaterial).where(RequisitionMaterial.requisition_id == requisition_id))
            rows = [_material_row(requisition_id, position, line) for position, line in enumerate(materials)]
            db.add_all(rows)
            await db.flush()
            for line, row in zip(materials, rows):
                line.id = row.id

        await self._run('replace_materials', work)

    async def delete_requisition(self, requisition_id: int) -> None:
        async def work(db: AsyncSession) -> None:
            await db.execute(delete(RequisitionMaterial).where(RequisitionMaterial.requisition_id == requisition_id))
            await db.execute(delete(Requisition).where(Requisition.id == requisition_id))

        await self._run('delete_requisition', work)

    async def get_requisitions_by_table(self, table_id: int) -> list[RequisitionRecord]:
        async def work(db: AsyncSession) -> list[RequisitionRecord]:
            rows = (
                await db.execute(select(Requisition).where(Requisition.table_id == table_id).order_by(Requisition.id.asc()))
            ).scalars().all()
            materials = await self._materials_for(db, [row.id for row in rows])
            return [_requisition_record(row, materials[row.id]) for row in rows]

        return await self._run('get_requisitions_by_table', work)

    async def create_table(self, data: TableRecord) -> int:
        async def work(db: AsyncSession) -> int:
            now = _now()
            table = RequisitionTable(
                **{name: getattr(data, name) for name in TABLE_FIELDS},
                created_at=data.created_at or now,
                updated_at=data.updated_at or now,
            )
            db.add(table)
            await db.flush()
            return table.id

        return await self._run('create_table', work)

    async def get_table(self, table_id: int) -> TableRecord | None:
        async def work(db: AsyncSession) -> TableRecord | None:
            row = (
                await db.execute(select(RequisitionTable).where(RequisitionTable.id == table_id))
            ).scalar_one_or_none()
            return _table_record(row) if row else None

        return await self._run('get_table', work)

    async def update_table(self, table_id: int, patch: dict) -> None:
        values = _checked_patch(patch, TABLE_FIELDS, 'update_table')
        values.setdefault('updated_at', _now())

        async def work(db: AsyncSession) -> None:
            result = await db.execute(update(RequisitionTable).where(RequisitionTable.id == table_id).values(**values))
            if not result.rowcount:
                raise PersistenceError(f'Table {table_id} does not exist')

        await self._run('update_table', work)

    async def delete_table(self, table_id: int) -> None:
        async def work(db: AsyncSession) -> None:
            await db.execute(delete(RequisitionTable).where(RequisitionTable.id == table_id))

        await self._run('delete_table', work)

    async def _list_tables(self, operation: str, *conditions, order_by) -> list[TableRecord]:
        async def work(db: AsyncSession) -> list[TableRecord]:
            query = select(RequisitionTable).order_by(*order_by)
            if conditions:
                query = query.where(*conditions)
            return [_table_record(row) for row in (await db.execute(query)).scalars().all()]

        return await self._run(operation, work)

    async def get_tables_by_user(self, user_id: str) -> list[TableRecord]:
        return await self._list_tables(
            'get_tables_by_user',
            RequisitionTable.user_id == user_id,
            order_by=(RequisitionTable.created_at.desc(), RequisitionTable.id.desc()),
        )

    async def get_pending_approval_tables(self) -> list[TableRecord]:
        return await self._list_tables(
            'get_pending_approval_tables',
            RequisitionTable.status == TableStatus.SUBMITTED,
            order_by=(RequisitionTable.submitted_date.asc(), RequisitionTable.id.asc()),
        )

    async def list_tables(self) -> list[TableRecord]:
        return await self._list_tables('list_tables', order_by=(RequisitionTable.id.asc(),))

    async def create_receipt(self, data: ReceiptRecord) -> int:
        async def work(db: AsyncSession) -> int:
            receipt = POReceipt(
                **{name: getattr(data, name) for name in RECEIPT_FIELDS},
                created_at=data.created_at or _now(),
            )
            db.add(receipt)
            await db.flush()
            return receipt.id

        return await self._run('create_receipt', work)

    async def update_receipt(self, receipt_id: int, patch: dict) -> None:
        values = _checked_patch(patch, RECEIPT_FIELDS, 'update_receipt')
        values.pop('updated_at', None)

        async def work(db: AsyncSession) -> None:
            result = await db.execute(update(POReceipt).where(POReceipt.id == receipt_id).values(**values))
            if not result.rowcount:
                raise PersistenceError(f'Receipt {receipt_id} does not exist')

        await self._run('update_receipt', work)

    async def delete_receipt(self, receipt_id: int) -> None:
        async def work(db: AsyncSession) -> None:
            await db.execute(delete(POReceipt).where(POReceipt.id == receipt_id))

        await self._run('delete_receipt', work)

    async def get_receipts_by_table(self, table_id: int) -> list[ReceiptRecord]:
        async def work(db: AsyncSession) -> list[ReceiptRecord]:
            rows = (
                await db.execute(select(POReceipt).where(POReceipt.table_id == table_id).order_by(POReceipt.id.asc()))
            ).scalars().all()
            return [_receipt_record(row) for row in rows]

        return await self._run('get_receipts_by_table', work)

    async def detach_receipts(self, table_id: int) -> int:
        async def work(db: AsyncSession) -> int:
            result = await db.execute(update(POReceipt).where(POReceipt.table_id == table_id).values(table_id=None))
            return int(result.rowcount or 0)

        return await self._run('detach_receipts', work)

    async def append_audit_event(self, event: AuditEvent) -> None:
        async def work(db: AsyncSession) -> None:
            db.add(
                AuditLog(
                    actor=event.actor,
                    action=event.action,
                    table_id=event.table_id,
                    requisition_id=event.requisition_id,
                    meta=event.metadata or {},
                    created_at=event.created_at or _now(),
                )
            )

        await self._run('append_audit_event', work)
