from __future__ import annotations

from datetime import datetime

from rm_portal.auth import Principal, Role
from rm_portal.config import settings
from rm_portal.models import RequisitionType
from rm_portal.services.record_store import CatalogRecord
from rm_portal.services.requisition_service import KnownChoice, RequisitionDraft, add_requisition
from rm_portal.services.table_service import TableWorkspace, approve_table, create_table, submit_table

OWNER = Principal(id='user-1', username='maria', role=Role.USER, full_name='Maria Santos')
OTHER_USER = Principal(id='user-2', username='jun', role=Role.USER)
ADMIN = Principal(id='admin-1', username='ana', role=Role.ADMIN, full_name='Ana Reyes')

# 2024-01-01 is a Monday.
MONDAY_MORNING = datetime(2024, 1, 1, 9, 0)
MONDAY_AFTERNOON = datetime(2024, 1, 1, 14, 0)
TUESDAY_MORNING = datetime(2024, 1, 2, 9, 0)

# Perishable closes Mon/Thu 10:00, shelf-stable Tue/Fri 15:00, Manila time.
CONFIG = settings.model_copy(
    update={
        'cutoff_timezone': 'Asia/Manila',
        'cutoff_perishable_days': [1, 4],
        'cutoff_perishable_time': '10:00',
        'cutoff_shelf_stable_days': [2, 5],
        'cutoff_shelf_stable_time': '15:00',
        'cutoff_adjustment_hours': 0,
        'reject_resets_requisitions': True,
    }
)


def catalog_row(sku_code: str, sku_name: str, raw_material: str, quantity_per_batch: str, batch_unit: str = 'kg', **extra):
    return CatalogRecord(
        sku_code=sku_code,
        sku_name=sku_name,
        raw_material=raw_material,
        quantity_per_batch=quantity_per_batch,
        batch_unit=batch_unit,
        **extra,
    )


CATALOG = [
    catalog_row('SKU-001', 'Pork Siomai', 'Ground Pork', '2.5', category='Dimsum', unit='pcs', type='Raw Meat'),
    catalog_row('SKU-001', 'Pork Siomai', 'Salt', '0.15', category='Dimsum', unit='pcs'),
    catalog_row('SKU-001', 'Pork Siomai', 'Siomai Wrapper', '1 pack', 'pack', category='Dimsum', unit='pcs', type='Packaging'),
    catalog_row('SKU-002', 'Chili Garlic Oil', 'Garlic', '1.2', category='Sauces', unit='jar', type='Vegetables'),
    catalog_row('SKU-002', 'Chili Garlic Oil', 'Salt', '0.05', category='Sauces', unit='jar'),
]


def draft(**overrides) -> RequisitionDraft:
    values = {
        'requisition_type': RequisitionType.PERISHABLE,
        'qty_needed': 4,
        'sku_code': 'SKU-001',
        'supplier': KnownChoice('Metro Meats'),
        'brand': KnownChoice('House'),
        'unit': 'pcs',
    }
    values.update(overrides)
    return RequisitionDraft(**values)


async def table_with_requisitions(store, *drafts: RequisitionDraft, principal: Principal = OWNER, name: str = 'Week 1') -> TableWorkspace:
    workspace = await create_table(store, principal=principal, name=name)
    for item in drafts or (draft(),):
        await add_requisition(
            store,
            workspace,
            catalog=CATALOG,
            draft=item,
            principal=principal,
            now=MONDAY_MORNING,
            config=CONFIG,
        )
    return workspace


async def approved_table(store, *drafts: RequisitionDraft) -> TableWorkspace:
    workspace = await table_with_requisitions(store, *drafts)
    await submit_table(store, workspace, principal=OWNER, now=MONDAY_MORNING, config=CONFIG)
    await approve_table(store, workspace, principal=ADMIN, now=MONDAY_MORNING)
    return workspace
