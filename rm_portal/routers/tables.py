from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from rm_portal.auth import Principal, Role, assert_table_scope, get_current_principal, require_role
from rm_portal.dependencies import get_store, http_error
from rm_portal.errors import PortalError
from rm_portal.schemas import (
    ReceiptCreate,
    ReceiptReview,
    RequisitionCreate,
    RequisitionUpdate,
    ReviewRequest,
    ServeUpdate,
    SubmitRequest,
    TableCreate,
    TableRename,
    receipt_payload,
    requisition_payload,
    table_payload,
)
from rm_portal.services.export_service import build_requisition_csv, export_filename
from rm_portal.services.receipt_service import ReceiptDraft, add_receipt, delete_receipt, review_receipt
from rm_portal.services.record_store import RecordStore
from rm_portal.services.requisition_service import (
    RequisitionDetails,
    RequisitionDraft,
    add_requisition,
    clear_table,
    delete_requisition,
    record_serve,
    resolve_choice,
    update_requisition_details,
    update_requisition_quantity,
)
from rm_portal.services.requisition_status_service import table_serve_summary
from rm_portal.services.table_service import (
    TableWorkspace,
    approve_table,
    create_table,
    delete_table,
    list_pending_tables,
    list_user_tables,
    load_workspace,
    reject_table,
    rename_table,
    submit_table,
)

router = APIRouter(prefix='/tables', tags=['tables'])


def _workspace_payload(workspace: TableWorkspace) -> dict:
    return {
        'table': table_payload(workspace.table),
        'requisitions': [requisition_payload(row) for row in workspace.requisitions],
        'receipts': [receipt_payload(row) for row in workspace.receipts],
        'summary': table_serve_summary(workspace.requisitions),
    }


async def _scoped_workspace(store: RecordStore, table_id: int, principal: Principal) -> TableWorkspace:
    try:
        workspace = await load_workspace(store, table_id)
    except PortalError as exc:
        raise http_error(exc) from exc
    assert_table_scope(principal, workspace.table.user_id)
    return workspace


@router.get('')
async def my_tables(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        tables = await list_user_tables(store, principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return [table_payload(table) for table in tables]


@router.get('/pending')
async def pending_tables(
    principal: Principal = Depends(require_role(Role.ADMIN)),
    store: RecordStore = Depends(get_store),
):
    try:
        tables = await list_pending_tables(store, principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return [table_payload(table) for table in tables]


@router.post('', status_code=status.HTTP_201_CREATED)
async def new_table(
    body: TableCreate,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        workspace = await create_table(store, principal=principal, name=body.name, date_needed=body.date_needed)
    except PortalError as exc:
        raise http_error(exc) from exc
    return _workspace_payload(workspace)


@router.get('/{table_id}')
async def view_table(
    table_id: int,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    return _workspace_payload(workspace)


@router.patch('/{table_id}')
async def rename(
    table_id: int,
    body: TableRename,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await rename_table(store, workspace, principal=principal, name=body.name)
    except PortalError as exc:
        raise http_error(exc) from exc
    return table_payload(workspace.table)


@router.delete('/{table_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_table(
    table_id: int,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await delete_table(store, workspace, principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc


@router.post('/{table_id}/requisitions', status_code=status.HTTP_201_CREATED)
async def new_requisition(
    table_id: int,
    body: RequisitionCreate,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        draft = RequisitionDraft(
            requisition_type=body.requisition_type,
            qty_needed=body.qty_needed,
            sku_code=body.sku_code,
            sku_name=body.sku_name,
            supplier=resolve_choice(body.supplier, body.supplier_other, label='supplier'),
            brand=resolve_choice(body.brand, body.brand_other, label='brand'),
            unit=body.unit,
            date_needed=body.date_needed,
            remarks=body.remarks,
        )
        record = await add_requisition(
            store,
            workspace,
            catalog=await store.get_catalog(),
            draft=draft,
            principal=principal,
            confirm=body.confirm,
        )
    except PortalError as exc:
        raise http_error(exc) from exc
    return requisition_payload(record)


@router.patch('/{table_id}/requisitions/{requisition_id}')
async def edit_requisition(
    table_id: int,
    requisition_id: int,
    body: RequisitionUpdate,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        details = RequisitionDetails(
            supplier=resolve_choice(body.supplier, body.supplier_other, label='supplier') if body.supplier else None,
            brand=resolve_choice(body.brand, body.brand_other, label='brand') if body.brand else None,
            unit=body.unit,
            date_needed=body.date_needed,
            remarks=body.remarks,
        )
        record = await update_requisition_details(
            store,
            workspace,
            requisition_id=requisition_id,
            details=details,
            principal=principal,
        )
        if body.qty_needed is not None and body.qty_needed != record.qty_needed:
            record = await update_requisition_quantity(
                store,
                workspace,
                requisition_id=requisition_id,
                qty_needed=body.qty_needed,
                principal=principal,
                catalog=await store.get_catalog(),
            )
    except PortalError as exc:
        raise http_error(exc) from exc
    return requisition_payload(record)


@router.delete('/{table_id}/requisitions/{requisition_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_requisition(
    table_id: int,
    requisition_id: int,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await delete_requisition(store, workspace, requisition_id=requisition_id, principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc


@router.delete('/{table_id}/requisitions')
async def clear_requisitions(
    table_id: int,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        removed = await clear_table(store, workspace, principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return {'removed': removed}


@router.post('/{table_id}/requisitions/{requisition_id}/materials/{material_id}/serve')
async def serve_material(
    table_id: int,
    requisition_id: int,
    material_id: int,
    body: ServeUpdate,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        record = await record_serve(
            store,
            workspace,
            requisition_id=requisition_id,
            material_id=material_id,
            served_qty=body.served_qty,
            remarks=body.remarks,
            served_date=body.served_date,
            principal=principal,
        )
    except PortalError as exc:
        raise http_error(exc) from exc
    return requisition_payload(record)


@router.post('/{table_id}/submit')
async def submit(
    table_id: int,
    body: SubmitRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await submit_table(store, workspace, principal=principal, confirm=body.confirm)
    except PortalError as exc:
        raise http_error(exc) from exc
    return _workspace_payload(workspace)


@router.post('/{table_id}/approve')
async def approve(
    table_id: int,
    body: ReviewRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await approve_table(store, workspace, principal=principal, remarks=body.remarks)
    except PortalError as exc:
        raise http_error(exc) from exc
    return _workspace_payload(workspace)


@router.post('/{table_id}/reject')
async def reject(
    table_id: int,
    body: ReviewRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await reject_table(store, workspace, principal=principal, remarks=body.remarks or '')
    except PortalError as exc:
        raise http_error(exc) from exc
    return _workspace_payload(workspace)


@router.post('/{table_id}/receipts', status_code=status.HTTP_201_CREATED)
async def new_receipt(
    table_id: int,
    body: ReceiptCreate,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        record = await add_receipt(store, workspace, draft=ReceiptDraft(**body.model_dump()), principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return receipt_payload(record)


@router.post('/{table_id}/receipts/{receipt_id}/review')
async def review(
    table_id: int,
    receipt_id: int,
    body: ReceiptReview,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        record = await review_receipt(store, workspace, receipt_id=receipt_id, status=body.status, principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return receipt_payload(record)


@router.delete('/{table_id}/receipts/{receipt_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_receipt(
    table_id: int,
    receipt_id: int,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    try:
        await delete_receipt(store, workspace, receipt_id=receipt_id, principal=principal)
    except PortalError as exc:
        raise http_error(exc) from exc


@router.get('/{table_id}/export.csv')
async def export_csv(
    table_id: int,
    export_type: str = Query(default='all', alias='type'),
    master_file: str | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    workspace = await _scoped_workspace(store, table_id, principal)
    now = datetime.now(tz=timezone.utc)
    try:
        body = build_requisition_csv(
            workspace.table,
            workspace.requisitions,
            export_type=export_type,
            user_name=principal.display_name,
            master_file=master_file,
            now=now,
        )
        filename = export_filename(
            user_name=principal.display_name,
            table_name=workspace.table.name,
            export_type=export_type,
            now=now,
        )
    except PortalError as exc:
        raise http_error(exc) from exc
    return StreamingResponse(
        iter([body]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )
