from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from rm_portal.models import MaterialStatus, ReceiptStatus, RequisitionStatus, RequisitionType, TableStatus


@dataclass(frozen=True)
class CatalogRecord:
    sku_code: str
    sku_name: str
    raw_material: str
    quantity_per_batch: str
    batch_unit: str
    category: str | None = None
    quantity_per_unit: str = ''
    unit: str = ''
    quantity_per_pack: str = ''
    pack_unit: str = ''
    type: str = 'Other'

    @property
    def key(self) -> tuple[str, str]:
        return (self.sku_code, self.raw_material)


@dataclass
class MaterialLine:
    name: str
    qty_per_batch: Decimal
    unit: str
    type: str
    required_qty: Decimal
    served_qty: Decimal = Decimal('0')
    remarks: str | None = None
    served_date: datetime | None = None
    id: int | None = None

    @property
    def is_unserved(self) -> bool:
        return self.served_qty < self.required_qty

    @property
    def status(self) -> MaterialStatus:
        if self.served_qty <= 0:
            return MaterialStatus.PENDING
        if self.served_qty >= self.required_qty:
            return MaterialStatus.FULLY_SERVED
        return MaterialStatus.PARTIALLY_SERVED


@dataclass
class RequisitionRecord:
    requisition_number: str
    requisition_type: RequisitionType
    table_id: int
    user_id: str
    sku_code: str
    sku_name: str
    category: str
    qty_needed: int
    supplier: str = ''
    brand: str = ''
    unit: str = ''
    qty_per_unit: str = ''
    qty_per_pack: str = ''
    pack_unit: str = ''
    date_needed: date | None = None
    status: RequisitionStatus = RequisitionStatus.DRAFT
    approval_status: RequisitionStatus = RequisitionStatus.DRAFT
    submitted_by: str | None = None
    submitted_date: datetime | None = None
    reviewed_by: str | None = None
    reviewed_date: datetime | None = None
    approved_by: str | None = None
    approved_date: datetime | None = None
    remarks: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    materials: list[MaterialLine] = field(default_factory=list)
    id: int | None = None


@dataclass
class TableRecord:
    name: str
    user_id: str
    status: TableStatus = TableStatus.DRAFT
    item_count: int = 0
    submitted_by: str | None = None
    submitted_date: datetime | None = None
    reviewed_by: str | None = None
    reviewed_date: datetime | None = None
    approved_by: str | None = None
    approved_date: datetime | None = None
    remarks: str | None = None
    date_needed: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None


@dataclass
class ReceiptRecord:
    table_id: int | None
    po_number: str
    supplier: str = ''
    amount: Decimal = Decimal('0.00')
    receipt_date: date | None = None
    requisition_id: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    content_type: str | None = None
    file_url: str | None = None
    status: ReceiptStatus = ReceiptStatus.PENDING
    uploaded_by: str | None = None
    reviewed_by: str | None = None
    reviewed_date: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class AuditEvent:
    action: str
    actor: str | None = None
    table_id: int | None = None
    requisition_id: int | None = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime | None = None


class RecordStore(Protocol):
    """Persistence collaborator. Every call is one round trip; failures raise PersistenceError.

    ``create_requisition`` and ``replace_materials`` assign the new row ids onto the passed material lines.
    """

    async def upsert_catalog(self, rows: list[CatalogRecord]) -> int: ...

    async def get_catalog(self) -> list[CatalogRecord]: ...

    async def create_requisition(self, data: RequisitionRecord, materials: list[MaterialLine]) -> int: ...

    async def get_requisition(self, requisition_id: int) -> RequisitionRecord | None: ...

    async def update_requisition(self, requisition_id: int, patch: dict) -> None: ...

    async def update_material(self, material_id: int, patch: dict) -> None: ...

    async def replace_materials(self, requisition_id: int, materials: list[MaterialLine]) -> None: ...

    async def delete_requisition(self, requisition_id: int) -> None: ...

    async def get_requisitions_by_table(self, table_id: int) -> list[RequisitionRecord]: ...

    async def create_table(self, data: TableRecord) -> int: ...

    async def get_table(self, table_id: int) -> TableRecord | None: ...

    async def update_table(self, table_id: int, patch: dict) -> None: ...

    async def delete_table(self, table_id: int) -> None: ...

    async def get_tables_by_user(self, user_id: str) -> list[TableRecord]: ...

    async def get_pending_approval_tables(self) -> list[TableRecord]: ...

    async def list_tables(self) -> list[TableRecord]: ...

    async def create_receipt(self, data: ReceiptRecord) -> int: ...

    async def update_receipt(self, receipt_id: int, patch: dict) -> None: ...

    async def delete_receipt(self, receipt_id: int) -> None: ...

    async def get_receipts_by_table(self, table_id: int) -> list[ReceiptRecord]: ...

    async def detach_receipts(self, table_id: int) -> int: ...

    async def append_audit_event(self, event: AuditEvent) -> None: ...
