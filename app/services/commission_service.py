"""
Commission Configuration Store
Validation gate and persistence for commission headers and details
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, not_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models.commission import (
    CommissionDetail,
    CommissionDetailRevision,
    CommissionHeader,
    CommissionHeaderRevision,
    CommissionUsage,
    DetailScope,
    HeaderStatus,
    build_scope_key,
)
from app.services.commission_resolver import (
    DetailSnapshot,
    HeaderSnapshot,
    Resolution,
    derive_status,
)
from app.services.rate_pair import RatePair
from app.utils.pagination import paginate
from app.utils.timeutils import to_utc, utcnow

logger = logging.getLogger(__name__)

OPERATOR_STATUSES = (HeaderStatus.ACTIVE, HeaderStatus.INACTIVE)

HEADER_SORT_FIELDS = {
    "created_at": CommissionHeader.created_at,
    "updated_at": CommissionHeader.updated_at,
    "name": CommissionHeader.name,
    "start_date": CommissionHeader.start_date,
    "end_date": CommissionHeader.end_date,
}

DETAIL_SORT_FIELDS = {
    "created_at": CommissionDetail.created_at,
    "updated_at": CommissionDetail.updated_at,
    "priority": CommissionDetail.priority,
    "platform_rate": CommissionDetail.platform_rate,
}

MUTABLE_DETAIL_FIELDS = {"platform_rate", "instructor_rate", "priority", "is_active"}
SCOPE_FIELDS = {"header_id", "course_id", "category_id"}

STATUS_ACTIONS = {
    HeaderStatus.ACTIVE: "activated",
    HeaderStatus.INACTIVE: "deactivated",
    HeaderStatus.SCHEDULED: "scheduled",
    HeaderStatus.EXPIRED: "expired",
}


def _normalize_scope_id(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        raise ValidationError(f"{field} must not be blank", field=field)
    return value


def _check_dates(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date is not None and end_date is not None and start_date >= end_date:
        raise ValidationError("Start date must be before end date", field="end_date")


def _check_priority(priority: Any) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("Priority must be an integer", field="priority")
    if priority < 0:
        raise ValidationError("Priority must not be negative", field="priority")
    return priority


def _rate_from_input(platform_rate: Any, instructor_rate: Optional[int]) -> RatePair:
    rate = RatePair(platform_rate)
    if instructor_rate is not None and instructor_rate != rate.instructor_rate:
        raise ValidationError(
            "Instructor rate is derived and must equal 100 - platform rate",
            field="instructor_rate",
            detail=f"expected {rate.instructor_rate}, got {instructor_rate}",
        )
    return rate


def _operator_default() -> HeaderStatus:
    status = HeaderStatus(settings.DEFAULT_HEADER_STATUS)
    if status not in OPERATOR_STATUSES:
        raise ValueError("DEFAULT_HEADER_STATUS must be ACTIVE or INACTIVE")
    return status


def _stored_status(
    status: str,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    now: datetime
) -> HeaderStatus:
    """Status to persist: time-derived, preserving the INACTIVE operator toggle"""
    effective = derive_status(status, start_date, end_date, now)
    if effective == HeaderStatus.EXPIRED:
        return HeaderStatus.EXPIRED
    if status == HeaderStatus.INACTIVE.value:
        return HeaderStatus.INACTIVE
    return effective


def _touch(header: CommissionHeader, now: datetime) -> None:
    """Force an UPDATE of the header row so its version counter moves"""
    header.updated_at = now
    flag_modified(header, "updated_at")


def _status_clause(status: HeaderStatus, now: datetime):
    """SQL equivalent of derive_status for list filtering"""
    H = CommissionHeader
    expired = or_(
        H.status == HeaderStatus.EXPIRED.value,
        and_(H.end_date.isnot(None), H.end_date < now),
    )
    if status == HeaderStatus.EXPIRED:
        return expired

    live = not_(expired)
    if status == HeaderStatus.INACTIVE:
        return and_(live, H.status == HeaderStatus.INACTIVE.value)

    enabled = and_(live, H.status != HeaderStatus.INACTIVE.value)
    if status == HeaderStatus.SCHEDULED:
        return and_(enabled, H.start_date.isnot(None), H.start_date > now)
    return and_(enabled, or_(H.start_date.is_(None), H.start_date <= now))


@contextmanager
def _write(db: Session, what: str):
    """Run a write as one transaction, failing fast on contention"""
    try:
        yield
        db.commit()
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        logger.warning(f"Commission write conflict while {what}: {e}")
        raise ConflictError(
            "Commission configuration was changed concurrently",
            detail=f"Reload and retry ({what})",
        )
    except Exception:
        db.rollback()
        raise


class CommissionService:
    """Service for commission configuration operations"""

    # ============ Revisions ============

    @staticmethod
    def _record_header_revision(
        db: Session,
        header: CommissionHeader,
        action: str,
        now: datetime,
        deleted: bool = False
    ) -> None:
        db.add(CommissionHeaderRevision(
            header_id=header.id,
            version=header.version + (1 if deleted else 0),
            action=action,
            name=header.name,
            description=header.description,
            status=header.status,
            start_date=header.start_date,
            end_date=header.end_date,
            deleted=deleted,
            recorded_at=now,
        ))

    @staticmethod
    def _record_detail_revision(
        db: Session,
        detail: CommissionDetail,
        action: str,
        now: datetime,
        deleted: bool = False
    ) -> None:
        db.add(CommissionDetailRevision(
            detail_id=detail.id,
            header_id=detail.header_id,
            version=detail.version + (1 if deleted else 0),
            action=action,
            course_id=detail.course_id,
            category_id=detail.category_id,
            platform_rate=detail.platform_rate,
            priority=detail.priority,
            is_active=detail.is_active,
            deleted=deleted,
            recorded_at=now,
        ))

    # ============ Headers ============

    @staticmethod
    def get_header(db: Session, header_id: int) -> CommissionHeader:
        header = db.query(CommissionHeader).filter(CommissionHeader.id == header_id).first()
        if not header:
            raise NotFoundError("Commission header not found", detail=f"id={header_id}")
        return header

    @staticmethod
    def effective_status(header: CommissionHeader, now: Optional[datetime] = None) -> HeaderStatus:
        return derive_status(header.status, header.start_date, header.end_date, now or utcnow())

    @staticmethod
    def _ensure_writable(header: CommissionHeader, now: datetime, expected_version: Optional[int] = None) -> None:
        if CommissionService.effective_status(header, now) == HeaderStatus.EXPIRED:
            raise ConflictError("Commission header is expired", detail=f"id={header.id}")
        if expected_version is not None and expected_version != header.version:
            raise ConflictError(
                "Commission header was modified by another operator",
                detail=f"expected version {expected_version}, current {header.version}",
            )

    @staticmethod
    def create_header(
        db: Session,
        name: str,
        description: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> CommissionHeader:
        """
        Create a commission header

        Status is SCHEDULED when start_date lies in the future, otherwise
        the configured operator default.

        Raises:
            ValidationError: Blank name, inverted or past date range
        """
        now = to_utc(now) or utcnow()
        start_date, end_date = to_utc(start_date), to_utc(end_date)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Header name is required", field="name")
        _check_dates(start_date, end_date)
        if end_date is not None and end_date <= now:
            raise ValidationError("End date must be in the future", field="end_date")

        if start_date is not None and start_date > now:
            status = HeaderStatus.SCHEDULED
        else:
            status = _operator_default()

        header = CommissionHeader(
            name=name,
            description=description,
            status=status.value,
            start_date=start_date,
            end_date=end_date,
            created_at=now,
            updated_at=now,
        )

        with _write(db, "creating header"):
            db.add(header)
            db.flush()
            CommissionService._record_header_revision(db, header, "created", now)

        db.refresh(header)
        logger.info(f"Created commission header {header.id} ({header.name}) status={header.status}")
        return header

    @staticmethod
    def update_header(
        db: Session,
        header_id: int,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CommissionHeader:
        """
        Edit header fields (name, description, start_date, end_date)

        Status is recomputed from the new dates; moving end_date into the
        past expires the header.

        Raises:
            ConflictError: Header expired or version mismatch
            ValidationError: Unknown field, blank name, inverted dates
        """
        now = to_utc(now) or utcnow()
        unknown = set(changes) - {"name", "description", "start_date", "end_date"}
        if unknown:
            raise ValidationError("Unknown header fields", field=sorted(unknown)[0])

        header = CommissionService.get_header(db, header_id)
        CommissionService._ensure_writable(header, now, expected_version)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Header name is required", field="name")
            header.name = name
        if "description" in changes:
            header.description = changes["description"]
        if "start_date" in changes:
            header.start_date = to_utc(changes["start_date"])
        if "end_date" in changes:
            header.end_date = to_utc(changes["end_date"])

        with _write(db, f"updating header {header_id}"):
            _check_dates(to_utc(header.start_date), to_utc(header.end_date))
            header.status = _stored_status(header.status, header.start_date, header.end_date, now).value
            _touch(header, now)
            db.flush()
            CommissionService._record_header_revision(db, header, "updated", now)

        db.refresh(header)
        logger.info(f"Updated commission header {header.id} status={header.status}")
        return header

    @staticmethod
    def set_status(
        db: Session,
        header_id: int,
        new_status: Any,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CommissionHeader:
        """
        Operator ACTIVE/INACTIVE toggle

        SCHEDULED and EXPIRED are derived from dates and cannot be set.

        Raises:
            ValidationError: Status other than ACTIVE/INACTIVE
            ConflictError: Header expired or version mismatch
        """
        now = to_utc(now) or utcnow()
        try:
            status = HeaderStatus(new_status)
        except ValueError:
            raise ValidationError("Unknown header status", field="status", detail=str(new_status))
        if status not in OPERATOR_STATUSES:
            raise ValidationError(
                "Only ACTIVE and INACTIVE can be set; SCHEDULED and EXPIRED follow the header dates",
                field="status",
            )

        header = CommissionService.get_header(db, header_id)
        CommissionService._ensure_writable(header, now, expected_version)

        previous = header.status
        stored = _stored_status(status.value, header.start_date, header.end_date, now)
        if stored.value == previous:
            return header

        with _write(db, f"setting status of header {header_id}"):
            header.status = stored.value
            _touch(header, now)
            db.flush()
            CommissionService._record_header_revision(db, header, STATUS_ACTIONS[status], now)

        db.refresh(header)
        logger.info(f"Commission header {header.id} status {previous} -> {header.status}")
        return header

    @staticmethod
    def delete_header(db: Session, header_id: int, now: Optional[datetime] = None) -> None:
        """
        Delete a header and all of its details

        Raises:
            ConflictError: If any detail already resolved a transaction
        """
        now = to_utc(now) or utcnow()
        header = CommissionService.get_header(db, header_id)

        used = db.query(CommissionUsage.id).filter(CommissionUsage.header_id == header_id).first()
        if used:
            raise ConflictError(
                "Commission header has details used by completed transactions",
                detail=f"id={header_id}",
            )

        with _write(db, f"deleting header {header_id}"):
            for detail in header.details:
                CommissionService._record_detail_revision(db, detail, "deleted", now, deleted=True)
            CommissionService._record_header_revision(db, header, "deleted", now, deleted=True)
            db.delete(header)

        logger.info(f"Deleted commission header {header_id}")

    @staticmethod
    def list_headers(
        db: Session,
        status: Optional[HeaderStatus] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        per_page: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Tuple[List[CommissionHeader], int]:
        """
        Filter, sort and paginate headers

        Args:
            status: Effective status at now
            search: Case-insensitive name substring

        Returns:
            Tuple of (headers, total_count)
        """
        now = to_utc(now) or utcnow()
        query = db.query(CommissionHeader)

        if status is not None:
            query = query.filter(_status_clause(HeaderStatus(status), now))
        if search:
            query = query.filter(CommissionHeader.name.ilike(f"%{search.strip()}%"))

        query = query.order_by(*_ordering(HEADER_SORT_FIELDS, sort_by, sort_order, CommissionHeader.id))
        return paginate(query, page, per_page)

    # ============ Details ============

    @staticmethod
    def get_detail(db: Session, detail_id: int) -> CommissionDetail:
        detail = db.query(CommissionDetail).filter(CommissionDetail.id == detail_id).first()
        if not detail:
            raise NotFoundError("Commission detail not found", detail=f"id={detail_id}")
        return detail

    @staticmethod
    def _ensure_unique_priority(
        db: Session,
        header_id: int,
        scope_key: str,
        priority: int,
        exclude_id: Optional[int] = None
    ) -> None:
        query = db.query(CommissionDetail.id).filter(
            CommissionDetail.header_id == header_id,
            CommissionDetail.scope_key == scope_key,
            CommissionDetail.priority == priority,
        )
        if exclude_id is not None:
            query = query.filter(CommissionDetail.id != exclude_id)
        if query.first():
            raise ValidationError(
                "Another detail of this header has the same scope and priority",
                field="priority",
                detail=f"scope={scope_key} priority={priority}",
            )

    @staticmethod
    def create_detail(
        db: Session,
        header_id: int,
        platform_rate: int,
        instructor_rate: Optional[int] = None,
        course_id: Optional[str] = None,
        category_id: Optional[str] = None,
        priority: int = 0,
        is_active: bool = True,
        now: Optional[datetime] = None
    ) -> CommissionDetail:
        """
        Add a commission rule to a header

        Raises:
            NotFoundError: Header does not exist
            ConflictError: Header expired or concurrently modified
            ValidationError: Both scopes set, bad rate, duplicate priority
        """
        now = to_utc(now) or utcnow()
        course_id = _normalize_scope_id(course_id, "course_id")
        category_id = _normalize_scope_id(category_id, "category_id")
        if course_id is not None and category_id is not None:
            raise ValidationError(
                "A detail is scoped to a course or a category, not both",
                field="scope",
            )
        rate = _rate_from_input(platform_rate, instructor_rate)
        priority = _check_priority(priority)

        header = CommissionService.get_header(db, header_id)
        CommissionService._ensure_writable(header, now)

        scope_key = build_scope_key(course_id, category_id)
        CommissionService._ensure_unique_priority(db, header_id, scope_key, priority)

        detail = CommissionDetail(
            header_id=header.id,
            course_id=course_id,
            category_id=category_id,
            scope_key=scope_key,
            platform_rate=rate.platform_rate,
            instructor_rate=rate.instructor_rate,
            priority=priority,
            is_active=bool(is_active),
            created_at=now,
            updated_at=now,
        )

        with _write(db, f"creating detail under header {header_id}"):
            db.add(detail)
            # Bump the header version so a concurrent expiry of the header conflicts
            _touch(header, now)
            db.flush()
            CommissionService._record_detail_revision(db, detail, "created", now)

        db.refresh(detail)
        logger.info(
            f"Created commission detail {detail.id} under header {header_id} "
            f"scope={scope_key} rate={rate.platform_rate}/{rate.instructor_rate} priority={priority}"
        )
        return detail

    @staticmethod
    def update_detail(
        db: Session,
        detail_id: int,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CommissionDetail:
        """
        Change rate, priority or active flag of a detail

        Scope (header, course, category) is immutable.

        Raises:
            ValidationError: Scope change, bad rate or priority
            ConflictError: Header expired or version mismatch
        """
        now = to_utc(now) or utcnow()

        scope_changes = set(changes) & SCOPE_FIELDS
        if scope_changes:
            raise ValidationError(
                "The scope of a commission detail cannot be changed",
                field=sorted(scope_changes)[0],
            )
        unknown = set(changes) - MUTABLE_DETAIL_FIELDS
        if unknown:
            raise ValidationError("Unknown detail fields", field=sorted(unknown)[0])

        detail = CommissionService.get_detail(db, detail_id)
        header = detail.header
        CommissionService._ensure_writable(header, now)
        if expected_version is not None and expected_version != detail.version:
            raise ConflictError(
                "Commission detail was modified by another operator",
                detail=f"expected version {expected_version}, current {detail.version}",
            )

        platform_rate = changes.get("platform_rate")
        if platform_rate is None:
            platform_rate = detail.platform_rate
        rate = _rate_from_input(platform_rate, changes.get("instructor_rate"))

        priority = detail.priority
        if changes.get("priority") is not None:
            priority = _check_priority(changes["priority"])
            if priority != detail.priority:
                CommissionService._ensure_unique_priority(
                    db, detail.header_id, detail.scope_key, priority, exclude_id=detail.id
                )

        is_active = detail.is_active
        if changes.get("is_active") is not None:
            is_active = bool(changes["is_active"])

        with _write(db, f"updating detail {detail_id}"):
            detail.platform_rate = rate.platform_rate
            detail.instructor_rate = rate.instructor_rate
            detail.priority = priority
            detail.is_active = is_active
            detail.updated_at = now
            _touch(header, now)
            db.flush()
            CommissionService._record_detail_revision(db, detail, "updated", now)

        db.refresh(detail)
        logger.info(f"Updated commission detail {detail.id}")
        return detail

    @staticmethod
    def delete_detail(db: Session, detail_id: int, now: Optional[datetime] = None) -> None:
        """
        Delete a detail that never resolved a transaction

        Raises:
            ConflictError: Detail already used, or header expired
        """
        now = to_utc(now) or utcnow()
        detail = CommissionService.get_detail(db, detail_id)
        header = detail.header
        CommissionService._ensure_writable(header, now)

        used = db.query(CommissionUsage.id).filter(CommissionUsage.detail_id == detail_id).first()
        if used:
            raise ConflictError(
                "Commission detail was used by completed transactions",
                detail=f"id={detail_id}",
            )

        with _write(db, f"deleting detail {detail_id}"):
            CommissionService._record_detail_revision(db, detail, "deleted", now, deleted=True)
            header.details.remove(detail)
            _touch(header, now)

        logger.info(f"Deleted commission detail {detail_id}")

    @staticmethod
    def list_details(
        db: Session,
        header_id: Optional[int] = None,
        scope: Optional[DetailScope] = None,
        course_id: Optional[str] = None,
        category_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        header_status: Optional[HeaderStatus] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        per_page: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Tuple[List[CommissionDetail], int]:
        """
        Filter, sort and paginate details

        Returns:
            Tuple of (details, total_count)
        """
        now = to_utc(now) or utcnow()
        query = db.query(CommissionDetail)

        if header_id is not None:
            query = query.filter(CommissionDetail.header_id == header_id)
        if scope is not None:
            scope = DetailScope(scope)
            if scope == DetailScope.COURSE:
                query = query.filter(CommissionDetail.course_id.isnot(None))
            elif scope == DetailScope.CATEGORY:
                query = query.filter(CommissionDetail.category_id.isnot(None))
            else:
                query = query.filter(
                    CommissionDetail.course_id.is_(None),
                    CommissionDetail.category_id.is_(None),
                )
        if course_id is not None:
            query = query.filter(CommissionDetail.course_id == course_id)
        if category_id is not None:
            query = query.filter(CommissionDetail.category_id == category_id)
        if is_active is not None:
            query = query.filter(CommissionDetail.is_active == is_active)
        if header_status is not None:
            query = query.join(CommissionDetail.header).filter(
                _status_clause(HeaderStatus(header_status), now)
            )

        query = query.order_by(*_ordering(DETAIL_SORT_FIELDS, sort_by, sort_order, CommissionDetail.id))
        return paginate(query, page, per_page)

    @staticmethod
    def details_for_course(db: Session, course_id: str) -> List[CommissionDetail]:
        return db.query(CommissionDetail).filter(
            CommissionDetail.course_id == course_id
        ).order_by(CommissionDetail.priority.desc(), CommissionDetail.id).all()

    @staticmethod
    def details_for_category(db: Session, category_id: str) -> List[CommissionDetail]:
        return db.query(CommissionDetail).filter(
            CommissionDetail.category_id == category_id
        ).order_by(CommissionDetail.priority.desc(), CommissionDetail.id).all()

    # ============ Status sweep ============

    @staticmethod
    def refresh_statuses(db: Session, now: Optional[datetime] = None) -> List[int]:
        """
        Persist time-driven transitions (SCHEDULED -> ACTIVE -> EXPIRED)

        Idempotent; read paths derive status lazily, so running this is optional.

        Returns:
            IDs of headers whose stored status changed
        """
        now = to_utc(now) or utcnow()
        changed = []

        headers = db.query(CommissionHeader).filter(
            CommissionHeader.status != HeaderStatus.EXPIRED.value
        ).all()

        with _write(db, "refreshing header statuses"):
            for header in headers:
                stored = _stored_status(header.status, header.start_date, header.end_date, now)
                if stored.value == header.status:
                    continue
                header.status = stored.value
                _touch(header, now)
                db.flush()
                CommissionService._record_header_revision(db, header, STATUS_ACTIONS[stored], now)
                changed.append(header.id)

        if changed:
            logger.info(f"Status sweep updated {len(changed)} commission headers: {changed}")
        return changed

    # ============ Usage ============

    @staticmethod
    def record_usage(
        db: Session,
        resolution: Resolution,
        transaction_ref: str,
        resolved_at: datetime
    ) -> CommissionUsage:
        """
        Mark the winning detail as used by a completed transaction

        Raises:
            ConflictError: The transaction was already resolved
        """
        transaction_ref = (transaction_ref or "").strip()
        if not transaction_ref:
            raise ValidationError("Transaction reference must not be blank", field="transaction_ref")

        existing = db.query(CommissionUsage.id).filter(
            CommissionUsage.transaction_ref == transaction_ref
        ).first()
        if existing:
            raise ConflictError("Transaction was already resolved", detail=f"ref={transaction_ref}")

        usage = CommissionUsage(
            detail_id=resolution.detail_id,
            header_id=resolution.header_id,
            transaction_ref=transaction_ref,
            resolved_at=to_utc(resolved_at),
        )
        with _write(db, f"recording usage for {transaction_ref}"):
            db.add(usage)

        db.refresh(usage)
        return usage

    # ============ Snapshots & history ============

    @staticmethod
    def current_snapshot(db: Session) -> List[HeaderSnapshot]:
        """Immutable view of the live configuration"""
        headers = db.query(CommissionHeader).options(
            selectinload(CommissionHeader.details)
        ).order_by(CommissionHeader.id).all()

        expired_ids = [h.id for h in headers if h.status == HeaderStatus.EXPIRED.value]
        live_status = CommissionService._pre_expiry_statuses(db, expired_ids)
        return [to_header_snapshot(header, live_status.get(header.id)) for header in headers]

    @staticmethod
    def _pre_expiry_statuses(db: Session, header_ids: List[int]) -> Dict[int, str]:
        """Last status each header held before it was stored as EXPIRED"""
        if not header_ids:
            return {}
        statuses: Dict[int, str] = {}
        for rev in db.query(CommissionHeaderRevision).filter(
            CommissionHeaderRevision.header_id.in_(header_ids),
            CommissionHeaderRevision.status != HeaderStatus.EXPIRED.value,
        ).order_by(CommissionHeaderRevision.recorded_at, CommissionHeaderRevision.id):
            statuses[rev.header_id] = rev.status
        return statuses

    @staticmethod
    def snapshot_as_of(db: Session, as_of: datetime) -> List[HeaderSnapshot]:
        """
        Configuration as it stood at as_of, rebuilt from revision history

        Used to re-run past resolutions after later edits.
        """
        as_of = to_utc(as_of)

        header_revisions: Dict[int, CommissionHeaderRevision] = {}
        live_status: Dict[int, str] = {}
        for rev in db.query(CommissionHeaderRevision).filter(
            CommissionHeaderRevision.recorded_at <= as_of
        ).order_by(CommissionHeaderRevision.recorded_at, CommissionHeaderRevision.id):
            header_revisions[rev.header_id] = rev
            if rev.status != HeaderStatus.EXPIRED.value:
                live_status[rev.header_id] = rev.status

        detail_revisions: Dict[int, CommissionDetailRevision] = {}
        for rev in db.query(CommissionDetailRevision).filter(
            CommissionDetailRevision.recorded_at <= as_of
        ).order_by(CommissionDetailRevision.recorded_at, CommissionDetailRevision.id):
            detail_revisions[rev.detail_id] = rev

        details_by_header: Dict[int, List[DetailSnapshot]] = {}
        for rev in detail_revisions.values():
            if rev.deleted:
                continue
            details_by_header.setdefault(rev.header_id, []).append(DetailSnapshot(
                id=rev.detail_id,
                header_id=rev.header_id,
                rate=RatePair(rev.platform_rate),
                priority=rev.priority,
                is_active=rev.is_active,
                course_id=rev.course_id,
                category_id=rev.category_id,
            ))

        snapshot = []
        for header_id in sorted(header_revisions):
            rev = header_revisions[header_id]
            if rev.deleted:
                continue
            details = sorted(details_by_header.get(header_id, []), key=lambda d: (-d.priority, d.id))
            snapshot.append(HeaderSnapshot(
                id=header_id,
                name=rev.name,
                status=live_status.get(header_id, rev.status),
                start_date=to_utc(rev.start_date),
                end_date=to_utc(rev.end_date),
                details=tuple(details),
                updated_at=to_utc(rev.recorded_at),
            ))
        return snapshot

    @staticmethod
    def header_history(db: Session, header_id: int) -> List[Dict[str, Any]]:
        """All revisions of a header and its details, oldest first"""
        headers = db.query(CommissionHeaderRevision).filter(
            CommissionHeaderRevision.header_id == header_id
        ).all()
        details = db.query(CommissionDetailRevision).filter(
            CommissionDetailRevision.header_id == header_id
        ).all()
        if not headers:
            raise NotFoundError("Commission header not found", detail=f"id={header_id}")

        entries = [_header_revision_entry(r) for r in headers] + [_detail_revision_entry(r) for r in details]
        entries.sort(key=lambda e: (e["recorded_at"], e["type"] != "header", e["revision_id"]))
        return entries

    @staticmethod
    def recent_activity(db: Session, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Latest configuration changes across headers and details, newest first"""
        limit = limit or settings.ACTIVITY_LIMIT

        headers = db.query(CommissionHeaderRevision).order_by(
            CommissionHeaderRevision.recorded_at.desc(), CommissionHeaderRevision.id.desc()
        ).limit(limit).all()
        details = db.query(CommissionDetailRevision).order_by(
            CommissionDetailRevision.recorded_at.desc(), CommissionDetailRevision.id.desc()
        ).limit(limit).all()

        entries = [_header_revision_entry(r) for r in headers] + [_detail_revision_entry(r) for r in details]
        entries.sort(key=lambda e: (e["recorded_at"], e["revision_id"]), reverse=True)
        return entries[:limit]


def _ordering(fields: Dict[str, Any], sort_by: str, sort_order: str, tiebreak):
    column = fields.get(sort_by)
    if column is None:
        raise ValidationError(
            f"Cannot sort by {sort_by}",
            field="sort_by",
            detail=f"choose one of {', '.join(sorted(fields))}",
        )
    if sort_order not in ("asc", "desc"):
        raise ValidationError("Sort order must be asc or desc", field="sort_order")
    if sort_order == "asc":
        return column.asc(), tiebreak.asc()
    return column.desc(), tiebreak.desc()


def to_detail_snapshot(detail: CommissionDetail) -> DetailSnapshot:
    return DetailSnapshot(
        id=detail.id,
        header_id=detail.header_id,
        rate=RatePair(detail.platform_rate),
        priority=detail.priority,
        is_active=detail.is_active,
        course_id=detail.course_id,
        category_id=detail.category_id,
    )


def to_header_snapshot(header: CommissionHeader, status: Optional[str] = None) -> HeaderSnapshot:
    """status overrides the stored one, e.g. the pre-expiry status of a swept header"""
    return HeaderSnapshot(
        id=header.id,
        name=header.name,
        status=status or header.status,
        start_date=to_utc(header.start_date),
        end_date=to_utc(header.end_date),
        details=tuple(to_detail_snapshot(d) for d in header.details),
        updated_at=to_utc(header.updated_at),
    )


def _header_revision_entry(rev: CommissionHeaderRevision) -> Dict[str, Any]:
    return {
        "type": "header",
        "revision_id": rev.id,
        "action": rev.action,
        "header_id": rev.header_id,
        "detail_id": None,
        "version": rev.version,
        "title": rev.name,
        "description": f"Header {rev.name} {rev.action} (status {rev.status})",
        "recorded_at": to_utc(rev.recorded_at),
    }


def _detail_revision_entry(rev: CommissionDetailRevision) -> Dict[str, Any]:
    scope = build_scope_key(rev.course_id, rev.category_id)
    rate = RatePair(rev.platform_rate)
    return {
        "type": "detail",
        "revision_id": rev.id,
        "action": rev.action,
        "header_id": rev.header_id,
        "detail_id": rev.detail_id,
        "version": rev.version,
        "title": f"Detail {rev.detail_id} ({scope})",
        "description": (
            f"{scope} rate {rate.platform_rate}/{rate.instructor_rate} "
            f"priority {rev.priority} {rev.action}"
        ),
        "recorded_at": to_utc(rev.recorded_at),
    }
