"""
Commission API endpoints
Header/detail configuration, resolution, statistics and activity
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from app.core.database import get_db
from app.models.commission import CommissionDetail, CommissionHeader, DetailScope, HeaderStatus
from app.schemas.commission import (
    DetailCreate,
    DetailResponse,
    DetailUpdate,
    HeaderCreate,
    HeaderResponse,
    HeaderStatusUpdate,
    HeaderUpdate,
    HeaderWithDetailsResponse,
    ResolveRequest,
)
from app.services.commission_service import CommissionService
from app.services.commission_stats import compute_commission_stats
from app.services.resolution_service import ResolutionService
from app.utils.pagination import get_pagination_params
from app.utils.responses import paginated_response
from app.utils.timeutils import utcnow

router = APIRouter()


def _header_data(header: CommissionHeader, now: datetime, with_details: bool = False) -> dict:
    schema = HeaderWithDetailsResponse if with_details else HeaderResponse
    status = CommissionService.effective_status(header, now)
    return schema.from_header(header, status).model_dump()


def _detail_data(detail: CommissionDetail) -> dict:
    return DetailResponse.model_validate(detail).model_dump()


# ============ Headers ============

@router.post("/commission/headers", response_model=dict)
async def create_header(
    header_data: HeaderCreate,
    db: Session = Depends(get_db)
):
    """
    Create a commission header

    - **name**: Header name
    - **description**: Optional description
    - **start_date** / **end_date**: Optional validity window (UTC)
    """
    now = utcnow()
    header = CommissionService.create_header(
        db,
        name=header_data.name,
        description=header_data.description,
        start_date=header_data.start_date,
        end_date=header_data.end_date,
        now=now,
    )

    return {
        "ok": True,
        "message": "Commission header created successfully",
        "data": _header_data(header, now)
    }


@router.get("/commission/headers", response_model=dict)
async def list_headers(
    status: Optional[HeaderStatus] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """
    List commission headers

    - **status**: Effective status filter
    - **search**: Name contains
    - **sort_by**: created_at, updated_at, name, start_date, end_date
    """
    now = utcnow()
    page, per_page = get_pagination_params(page, per_page)
    items, total = CommissionService.list_headers(
        db, status=status, search=search, sort_by=sort_by, sort_order=sort_order,
        page=page, per_page=per_page, now=now,
    )

    data = [_header_data(header, now) for header in items]
    return paginated_response(data, page, per_page, total)


@router.post("/commission/headers/refresh-status", response_model=dict)
async def refresh_header_statuses(db: Session = Depends(get_db)):
    """Persist SCHEDULED -> ACTIVE -> EXPIRED transitions that are due"""
    changed = CommissionService.refresh_statuses(db)
    return {
        "ok": True,
        "message": f"{len(changed)} header(s) updated",
        "data": {"updated_ids": changed}
    }


@router.get("/commission/headers/{header_id}", response_model=dict)
async def get_header(header_id: int, db: Session = Depends(get_db)):
    """Get a commission header with its details"""
    header = CommissionService.get_header(db, header_id)
    return {
        "ok": True,
        "data": _header_data(header, utcnow(), with_details=True)
    }


@router.patch("/commission/headers/{header_id}", response_model=dict)
async def update_header(
    header_id: int,
    header_data: HeaderUpdate,
    db: Session = Depends(get_db)
):
    """
    Update a commission header

    Only sent fields change. **status** accepts ACTIVE or INACTIVE.
    """
    now = utcnow()
    changes = header_data.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    new_status = changes.pop("status", None)

    header = CommissionService.get_header(db, header_id)
    if changes:
        header = CommissionService.update_header(db, header_id, changes, expected_version, now=now)
        expected_version = None
    if new_status is not None:
        header = CommissionService.set_status(db, header_id, new_status, expected_version, now=now)

    return {
        "ok": True,
        "message": "Commission header updated successfully",
        "data": _header_data(header, now)
    }


@router.patch("/commission/headers/{header_id}/status", response_model=dict)
async def set_header_status(
    header_id: int,
    status_data: HeaderStatusUpdate,
    db: Session = Depends(get_db)
):
    """Switch a header between ACTIVE and INACTIVE"""
    now = utcnow()
    header = CommissionService.set_status(db, header_id, status_data.status, status_data.version, now=now)
    return {
        "ok": True,
        "data": _header_data(header, now)
    }


@router.patch("/commission/headers/{header_id}/activate", response_model=dict)
async def activate_header(header_id: int, db: Session = Depends(get_db)):
    """Shortcut for status=ACTIVE"""
    now = utcnow()
    header = CommissionService.set_status(db, header_id, HeaderStatus.ACTIVE, now=now)
    return {"ok": True, "data": _header_data(header, now)}


@router.patch("/commission/headers/{header_id}/deactivate", response_model=dict)
async def deactivate_header(header_id: int, db: Session = Depends(get_db)):
    """Shortcut for status=INACTIVE"""
    now = utcnow()
    header = CommissionService.set_status(db, header_id, HeaderStatus.INACTIVE, now=now)
    return {"ok": True, "data": _header_data(header, now)}


@router.delete("/commission/headers/{header_id}", response_model=dict)
async def delete_header(header_id: int, db: Session = Depends(get_db)):
    """Delete a header and its details (rejected once any detail was used)"""
    CommissionService.delete_header(db, header_id)
    return {"ok": True, "message": "Commission header deleted successfully"}


@router.get("/commission/headers/{header_id}/history", response_model=dict)
async def get_header_history(header_id: int, db: Session = Depends(get_db)):
    """All recorded revisions of a header and its details"""
    return {
        "ok": True,
        "data": CommissionService.header_history(db, header_id)
    }


# ============ Details ============

@router.post("/commission/details", response_model=dict)
async def create_detail(
    detail_data: DetailCreate,
    db: Session = Depends(get_db)
):
    """
    Create a commission detail

    - **header_id**: Owning header
    - **course_id** / **category_id**: At most one; neither means general
    - **platform_rate**: 1-99; instructor rate is derived
    - **priority**: Higher wins within the same scope
    """
    detail = CommissionService.create_detail(
        db,
        header_id=detail_data.header_id,
        platform_rate=detail_data.platform_rate,
        instructor_rate=detail_data.instructor_rate,
        course_id=detail_data.course_id,
        category_id=detail_data.category_id,
        priority=detail_data.priority,
        is_active=detail_data.is_active,
    )

    return {
        "ok": True,
        "message": "Commission detail created successfully",
        "data": _detail_data(detail)
    }


@router.get("/commission/details", response_model=dict)
async def list_details(
    header_id: Optional[int] = None,
    scope: Optional[DetailScope] = None,
    course_id: Optional[str] = None,
    category_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    header_status: Optional[HeaderStatus] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """
    List commission details

    - **scope**: general, course or category
    - **header_status**: Effective status of the owning header
    - **sort_by**: created_at, updated_at, priority, platform_rate
    """
    page, per_page = get_pagination_params(page, per_page)
    items, total = CommissionService.list_details(
        db, header_id=header_id, scope=scope, course_id=course_id, category_id=category_id,
        is_active=is_active, header_status=header_status, sort_by=sort_by,
        sort_order=sort_order, page=page, per_page=per_page,
    )

    data = [_detail_data(detail) for detail in items]
    return paginated_response(data, page, per_page, total)


@router.get("/commission/details/course/{course_id}", response_model=dict)
async def list_course_details(course_id: str, db: Session = Depends(get_db)):
    """Details scoped to one course"""
    details = CommissionService.details_for_course(db, course_id)
    return {"ok": True, "data": [_detail_data(d) for d in details]}


@router.get("/commission/details/category/{category_id}", response_model=dict)
async def list_category_details(category_id: str, db: Session = Depends(get_db)):
    """Details scoped to one category"""
    details = CommissionService.details_for_category(db, category_id)
    return {"ok": True, "data": [_detail_data(d) for d in details]}


@router.get("/commission/details/{detail_id}", response_model=dict)
async def get_detail(detail_id: int, db: Session = Depends(get_db)):
    """Get a commission detail"""
    detail = CommissionService.get_detail(db, detail_id)
    return {"ok": True, "data": _detail_data(detail)}


@router.patch("/commission/details/{detail_id}", response_model=dict)
async def update_detail(
    detail_id: int,
    detail_data: DetailUpdate,
    db: Session = Depends(get_db)
):
    """
    Update rate, priority or active flag of a detail

    Header, course and category cannot change.
    """
    changes = detail_data.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    detail = CommissionService.update_detail(db, detail_id, changes, expected_version)

    return {
        "ok": True,
        "message": "Commission detail updated successfully",
        "data": _detail_data(detail)
    }


@router.delete("/commission/details/{detail_id}", response_model=dict)
async def delete_detail(detail_id: int, db: Session = Depends(get_db)):
    """Delete a detail that never resolved a transaction"""
    CommissionService.delete_detail(db, detail_id)
    return {"ok": True, "message": "Commission detail deleted successfully"}


# ============ Resolution ============

@router.post("/commission/resolve", response_model=dict)
async def resolve_commission(
    request: ResolveRequest,
    db: Session = Depends(get_db)
):
    """
    Resolve the commission split of a sale

    - **transaction_ref**: When set, the winning rule is recorded as used
    - **amount**: When set, the split amounts are returned too
    """
    resolution = ResolutionService.resolve(
        db,
        course_id=request.course_id,
        category_id=request.category_id,
        at_time=request.at_time,
        transaction_ref=request.transaction_ref,
    )

    if request.amount is not None:
        data = ResolutionService.preview(resolution, request.amount)
    else:
        data = resolution.to_dict()
    return {"ok": True, "data": data}


@router.get("/commission/resolve/audit", response_model=dict)
async def audit_resolution(
    at_time: datetime,
    course_id: Optional[str] = None,
    category_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
    db: Session = Depends(get_db)
):
    """
    Replay a resolution against historical configuration

    - **at_time**: Transaction timestamp
    - **as_of**: Configuration version to use (defaults to at_time)
    """
    resolution = ResolutionService.resolve_as_of(db, course_id, category_id, at_time, as_of)
    return {"ok": True, "data": resolution.to_dict()}


# ============ Reporting ============

@router.get("/commission/stats", response_model=dict)
async def get_commission_stats(db: Session = Depends(get_db)):
    """Header and detail counts for the dashboard"""
    snapshot = CommissionService.current_snapshot(db)
    return {
        "ok": True,
        "data": compute_commission_stats(snapshot, utcnow())
    }


@router.get("/commission/activity", response_model=dict)
async def get_recent_activity(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Latest configuration changes, newest first"""
    return {
        "ok": True,
        "data": CommissionService.recent_activity(db, limit)
    }
