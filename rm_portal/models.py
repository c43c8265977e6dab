from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
ID_TYPE = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'admin'
    USER = 'user'


class RequisitionType(str, Enum):
    PERISHABLE = 'perishable'
    SHELF_STABLE = 'shelf-stable'


class RequisitionStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    PARTIALLY_SERVED = 'partially-served'
    FULLY_SERVED = 'fully-served'


class TableStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class MaterialStatus(str, Enum):
    PENDING = 'pending'
    PARTIALLY_SERVED = 'partially-served'
    FULLY_SERVED = 'fully-served'


class ReceiptStatus(str, Enum):
    PENDING = 'pending'
    VERIFIED = 'verified'
    REJECTED = 'rejected'


class MasterCatalogRow(Base):
    __tablename__ = 'master_catalog'
    __table_args__ = (
        UniqueConstraint('sku_code', 'raw_material', name='master_catalog_sku_material_key'),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    category: Mapped[str | None] = mapped_column(Text)
    sku_code: Mapped[str] = mapped_column(Text, nullable=False)
    sku_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_per_unit: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    quantity_per_pack: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    pack_unit: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    raw_material: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_per_batch: Mapped[str] = mapped_column(Text, nullable=False)
    batch_unit: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False, default='Other', server_default='Other')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RequisitionTable(Base):
    __tablename__ = 'requisition_tables'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    status: Mapped[TableStatus] = mapped_column(
        SQLEnum(TableStatus, name='table_status'), nullable=False, default=TableStatus.DRAFT
    )
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    submitted_by: Mapped[str | None] = mapped_column(Text)
    submitted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(Text)
    reviewed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(Text)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    date_needed: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Requisition(Base):
    __tablename__ = 'requisitions'
    __table_args__ = (
        CheckConstraint('qty_needed >= 1 AND qty_needed <= 999', name='requisitions_qty_needed_range_ck'),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    requisition_number: Mapped[str] = mapped_column(Text, nullable=False)
    requisition_type: Mapped[RequisitionType] = mapped_column(
        SQLEnum(RequisitionType, name='requisition_type'), nullable=False
    )
    table_id: Mapped[int] = mapped_column(ID_TYPE, ForeignKey('requisition_tables.id'), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    sku_code: Mapped[str] = mapped_column(Text, nullable=False, default='')
    sku_name: Mapped[str] = mapped_column(Text, nullable=False, default='')
    category: Mapped[str] = mapped_column(Text, nullable=False, default='')
    qty_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    date_needed: Mapped[date | None] = mapped_column(Date)
    supplier: Mapped[str] = mapped_column(Text, nullable=False, default='')
    brand: Mapped[str] = mapped_column(Text, nullable=False, default='')
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='')
    qty_per_unit: Mapped[str] = mapped_column(Text, nullable=False, default='')
    qty_per_pack: Mapped[str] = mapped_column(Text, nullable=False, default='')
    pack_unit: Mapped[str] = mapped_column(Text, nullable=False, default='')
    status: Mapped[RequisitionStatus] = mapped_column(
        SQLEnum(RequisitionStatus, name='requisition_status'), nullable=False, default=RequisitionStatus.DRAFT
    )
    approval_status: Mapped[RequisitionStatus] = mapped_column(
        SQLEnum(RequisitionStatus, name='requisition_approval_status'),
        nullable=False,
        default=RequisitionStatus.DRAFT,
    )
    submitted_by: Mapped[str | None] = mapped_column(Text)
    submitted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(Text)
    reviewed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(Text)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RequisitionMaterial(Base):
    __tablename__ = 'requisition_materials'
    __table_args__ = (
        CheckConstraint('served_qty >= 0', name='requisition_materials_served_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    requisition_id: Mapped[int] = mapped_column(ID_TYPE, ForeignKey('requisitions.id'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    material_name: Mapped[str] = mapped_column(Text, nullable=False)
    qty_per_batch: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='')
    type: Mapped[str] = mapped_column(Text, nullable=False, default='')
    required_qty: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    served_qty: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal('0'))
    remarks: Mapped[str | None] = mapped_column(Text)
    served_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class POReceipt(Base):
    __tablename__ = 'po_receipts'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    table_id: Mapped[int | None] = mapped_column(ID_TYPE, ForeignKey('requisition_tables.id'), index=True)
    requisition_id: Mapped[int | None] = mapped_column(ID_TYPE)
    po_number: Mapped[str] = mapped_column(Text, nullable=False)
    supplier: Mapped[str] = mapped_column(Text, nullable=False, default='')
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    receipt_date: Mapped[date | None] = mapped_column(Date)
    file_name: Mapped[str | None] = mapped_column(Text)
    file_size: Mapped[int | None] = mapped_column(Integer)
    content_type: Mapped[str | None] = mapped_column(Text)
    file_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ReceiptStatus] = mapped_column(
        SQLEnum(ReceiptStatus, name='receipt_status'), nullable=False, default=ReceiptStatus.PENDING
    )
    uploaded_by: Mapped[str | None] = mapped_column(Text)
    reviewed_by: Mapped[str | None] = mapped_column(Text)
    reviewed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    actor: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    table_id: Mapped[int | None] = mapped_column(ID_TYPE)
    requisition_id: Mapped[int | None] = mapped_column(ID_TYPE)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
