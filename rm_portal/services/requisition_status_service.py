from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Iterable

from rm_portal.models import MaterialStatus, RequisitionStatus, TableStatus
from rm_portal.services.record_store import MaterialLine, RequisitionRecord, TableRecord

EDITABLE_TABLE_STATUSES = (TableStatus.DRAFT, TableStatus.REJECTED)


def material_status(required: Decimal, served: Decimal) -> MaterialStatus:
    if served <= 0:
        return MaterialStatus.PENDING
    if served >= required:
        return MaterialStatus.FULLY_SERVED
    return MaterialStatus.PARTIALLY_SERVED


def approval_axis(requisition: RequisitionRecord) -> RequisitionStatus:
    """Where the requisition stands in review, whatever its serve state."""
    return requisition.approval_status


def derive_status(materials: list[MaterialLine], approval_status: RequisitionStatus) -> RequisitionStatus:
    """Roll material serve state up to one requisition status.

    Serve state wins once anything has been served; an all-pending requisition
    keeps its approval-axis value so an approved requisition never regresses.
    """
    if not materials:
        return approval_status
    counts = Counter(material_status(line.required_qty, line.served_qty) for line in materials)
    if counts[MaterialStatus.FULLY_SERVED] == len(materials):
        return RequisitionStatus.FULLY_SERVED
    if counts[MaterialStatus.PARTIALLY_SERVED] or counts[MaterialStatus.FULLY_SERVED]:
        return RequisitionStatus.PARTIALLY_SERVED
    return approval_status


def rollup_requisition(requisition: RequisitionRecord) -> RequisitionStatus:
    return derive_status(requisition.materials, approval_axis(requisition))


def is_editable(table: TableRecord) -> bool:
    return table.status in EDITABLE_TABLE_STATUSES


def can_serve(requisition: RequisitionRecord) -> bool:
    return approval_axis(requisition) in (RequisitionStatus.DRAFT, RequisitionStatus.APPROVED)


def table_serve_summary(requisitions: Iterable[RequisitionRecord]) -> dict[str, int]:
    counts = Counter(requisition.status for requisition in requisitions)
    summary = {status.value: counts.get(status, 0) for status in RequisitionStatus}
    summary['total'] = sum(counts.values())
    return summary
