from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from rm_portal.models import ReceiptStatus, RequisitionType
from rm_portal.services.record_store import MaterialLine, ReceiptRecord, RequisitionRecord, TableRecord


class TableCreate(BaseModel):
    name: str
    date_needed: date | None = None


class TableRename(BaseModel):
    name: str


class RequisitionCreate(BaseModel):
    requisition_type: RequisitionType
    qty_needed: int
    sku_code: str = ''
    sku_name: str = ''
    supplier: str
    supplier_other: str | None = None
    brand: str
    brand_other: str | None = None
    unit: str = ''
    date_needed: date | None = None
    remarks: str | None = None
    confirm: bool = False


class RequisitionUpdate(BaseModel):
    qty_needed: int | None = None
    supplier: str | None = None
    supplier_other: str | None = None
    brand: str | None = None
    brand_other: str | None = None
    unit: str | None = None
    date_needed: date | None = None
    remarks: str | None = None


class ServeUpdate(BaseModel):
    served_qty: Decimal = Field(ge=0)
    remarks: str | None = None
    served_date: datetime | None = None


class SubmitRequest(BaseModel):
    confirm: bool = False


class ReviewRequest(BaseModel):
    remarks: str | None = None


class ReceiptCreate(BaseModel):
    po_number: str
    supplier: str = ''
    amount: Decimal = Decimal('0')
    receipt_date: date | None = None
    requisition_id: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    content_type: str | None = None
    file_url: str | None = None


class ReceiptReview(BaseModel):
    status: ReceiptStatus


def material_payload(line: MaterialLine) -> dict:
    payload = asdict(line)
    payload['status'] = line.status.value
    payload['is_unserved'] = line.is_unserved
    return payload


def requisition_payload(record: RequisitionRecord) -> dict:
    payload = asdict(record)
    payload['materials'] = [material_payload(line) for line in record.materials]
    return payload


def table_payload(record: TableRecord) -> dict:
    return asdict(record)


def receipt_payload(record: ReceiptRecord) -> dict:
    return asdict(record)
