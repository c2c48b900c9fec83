"""
Commission statistics for the reporting dashboard
"""
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from app.models.commission import DetailScope, HeaderStatus
from app.services.commission_resolver import HeaderSnapshot


def compute_commission_stats(headers: Sequence[HeaderSnapshot], at_time: datetime) -> Dict[str, Any]:
    """
    Derive dashboard counts from a configuration snapshot

    Header counts use the effective status at at_time. A header is
    "inactive" when it is anything but ACTIVE.
    """
    header_counts = {status: 0 for status in HeaderStatus}
    detail_active = detail_inactive = 0
    scope_counts = {scope: 0 for scope in DetailScope}
    last_updated: Optional[datetime] = None

    for header in headers:
        header_counts[header.effective_status(at_time)] += 1
        if header.updated_at and (last_updated is None or header.updated_at > last_updated):
            last_updated = header.updated_at

        for detail in header.details:
            if detail.is_active:
                detail_active += 1
            else:
                detail_inactive += 1
            scope_counts[detail.scope] += 1

    total_headers = len(headers)
    active_headers = header_counts[HeaderStatus.ACTIVE]
    total_details = detail_active + detail_inactive

    return {
        "summary": {
            "total_headers": total_headers,
            "active_headers": active_headers,
            "inactive_headers": total_headers - active_headers,
            "total_details": total_details,
            "active_details": detail_active,
            "last_updated": last_updated,
        },
        "headers": {
            "active": active_headers,
            "inactive": header_counts[HeaderStatus.INACTIVE],
            "scheduled": header_counts[HeaderStatus.SCHEDULED],
            "expired": header_counts[HeaderStatus.EXPIRED],
            "total": total_headers,
        },
        "details": {
            "active": detail_active,
            "inactive": detail_inactive,
            "total": total_details,
            "course_specific": scope_counts[DetailScope.COURSE],
            "category_specific": scope_counts[DetailScope.CATEGORY],
            "general": scope_counts[DetailScope.GENERAL],
        },
    }
