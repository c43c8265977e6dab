from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from rm_portal.auth import Principal, assert_table_scope, get_current_principal
from rm_portal.dependencies import get_store, http_error
from rm_portal.errors import PortalError
from rm_portal.models import RequisitionType
from rm_portal.services.cutoff_service import evaluate_cutoff
from rm_portal.services.dashboard_service import build_dashboard
from rm_portal.services.record_store import RecordStore
from rm_portal.services.usage_report_service import usage_report_for_tables

router = APIRouter(prefix='/reports', tags=['reports'])


@router.get('/usage')
async def usage_report(
    table_ids: list[int] = Query(...),
    requisition_ids: list[int] | None = Query(default=None),
    sort_by: str = Query(default='total'),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        for table_id in table_ids:
            table = await store.get_table(table_id)
            if table is not None:
                assert_table_scope(principal, table.user_id)
        report = await usage_report_for_tables(
            store,
            table_ids=table_ids,
            requisition_ids=requisition_ids,
            sort_by=sort_by,
        )
    except PortalError as exc:
        raise http_error(exc) from exc
    return asdict(report)


@router.get('/dashboard')
async def dashboard(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
):
    try:
        summary = await build_dashboard(store, principal)
    except PortalError as exc:
        raise http_error(exc) from exc
    return asdict(summary)


@router.get('/cutoff')
async def cutoff_status(_: Principal = Depends(get_current_principal)):
    checks = []
    for requisition_type in RequisitionType:
        check = evaluate_cutoff(requisition_type)
        checks.append(
            {
                'requisition_type': requisition_type.value,
                'checked_at': check.checked_at,
                'permitted_today': check.permitted_today,
                'past_cutoff': check.past_cutoff,
                'message': check.message,
                'next_window': {
                    'day_name': check.next_window.day_name,
                    'date': check.next_window.date,
                    'cutoff': check.next_window.cutoff.strftime('%H:%M'),
                },
            }
        )
    return checks
