from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from rm_portal.auth import Principal, is_admin_role
from rm_portal.models import RequisitionStatus, TableStatus
from rm_portal.services.record_store import RecordStore
from rm_portal.services.requisition_status_service import table_serve_summary


@dataclass(frozen=True)
class DashboardSummary:
    total_tables: int
    tables_by_status: dict[str, int]
    pending_approvals: int
    total_users: int
    total_requisitions: int
    completed_requisitions: int
    requisitions_by_status: dict[str, int]


async def build_dashboard(store: RecordStore, principal: Principal) -> DashboardSummary:
    """Admins see every table; everyone else sees their own."""
    if is_admin_role(principal.role):
        tables = await store.list_tables()
    else:
        tables = await store.get_tables_by_user(principal.id)

    table_counts = Counter(table.status for table in tables)
    requisitions = []
    for table in tables:
        requisitions.extend(await store.get_requisitions_by_table(table.id))
    requisition_counts = table_serve_summary(requisitions)

    return DashboardSummary(
        total_tables=len(tables),
        tables_by_status={status.value: table_counts.get(status, 0) for status in TableStatus},
        pending_approvals=table_counts.get(TableStatus.SUBMITTED, 0),
        total_users=len({table.user_id for table in tables}),
        total_requisitions=requisition_counts['total'],
        completed_requisitions=requisition_counts[RequisitionStatus.FULLY_SERVED.value],
        requisitions_by_status={key: value for key, value in requisition_counts.items() if key != 'total'},
    )
