"""
Commission Resolution Engine
Picks exactly one applicable commission rule for a transaction context

Everything here is pure: it works on immutable snapshots of the
configuration and takes the evaluation time as an argument.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.exceptions import AmbiguousRuleError, NoApplicableRuleError
from app.models.commission import DetailScope, HeaderStatus
from app.services.rate_pair import RatePair
from app.utils.timeutils import to_utc

# Most specific first
SPECIFICITY: Tuple[DetailScope, ...] = (DetailScope.COURSE, DetailScope.CATEGORY, DetailScope.GENERAL)


def derive_status(
    stored_status: str,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    at_time: datetime
) -> HeaderStatus:
    """
    Effective header status at a point in time

    EXPIRED is terminal. INACTIVE is the operator toggle. SCHEDULED and
    the SCHEDULED -> ACTIVE -> EXPIRED progression come from the dates.
    Snapshots of swept headers carry their pre-expiry status, so the end
    date alone decides expiry for past evaluation times.

    Args:
        stored_status: Status persisted on the header
        start_date: Optional start of validity
        end_date: Optional end of validity
        at_time: Evaluation time

    Returns:
        HeaderStatus in effect at at_time
    """
    at_time = to_utc(at_time)
    stored = HeaderStatus(stored_status)

    if end_date is not None and at_time > to_utc(end_date):
        return HeaderStatus.EXPIRED
    if stored == HeaderStatus.EXPIRED:
        return HeaderStatus.EXPIRED
    if stored == HeaderStatus.INACTIVE:
        return HeaderStatus.INACTIVE
    if start_date is not None and at_time < to_utc(start_date):
        return HeaderStatus.SCHEDULED
    return HeaderStatus.ACTIVE


@dataclass(frozen=True)
class DetailSnapshot:
    """Read-only view of one commission detail"""
    id: int
    header_id: int
    rate: RatePair
    priority: int = 0
    is_active: bool = True
    course_id: Optional[str] = None
    category_id: Optional[str] = None

    @property
    def scope(self) -> DetailScope:
        if self.course_id is not None:
            return DetailScope.COURSE
        if self.category_id is not None:
            return DetailScope.CATEGORY
        return DetailScope.GENERAL


@dataclass(frozen=True)
class HeaderSnapshot:
    """Read-only view of one commission header and its details"""
    id: int
    name: str
    status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    details: Tuple[DetailSnapshot, ...] = field(default_factory=tuple)
    updated_at: Optional[datetime] = None

    def effective_status(self, at_time: datetime) -> HeaderStatus:
        return derive_status(self.status, self.start_date, self.end_date, at_time)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a resolution: the winning rule and its split"""
    rate: RatePair
    detail_id: int
    header_id: int
    scope: DetailScope
    priority: int

    def to_dict(self) -> dict:
        data = self.rate.to_dict()
        data.update({
            "detail_id": self.detail_id,
            "header_id": self.header_id,
            "scope": self.scope.value,
            "priority": self.priority,
        })
        return data


def _matches(detail: DetailSnapshot, course_id: Optional[str], category_id: Optional[str]) -> bool:
    scope = detail.scope
    if scope == DetailScope.COURSE:
        return course_id is not None and detail.course_id == course_id
    if scope == DetailScope.CATEGORY:
        return category_id is not None and detail.category_id == category_id
    return True


def collect_candidates(
    headers: Sequence[HeaderSnapshot],
    course_id: Optional[str],
    category_id: Optional[str],
    at_time: datetime
) -> Dict[DetailScope, List[DetailSnapshot]]:
    """
    Bucket every applicable detail by scope

    Only active details under headers that are ACTIVE at at_time are
    considered; details scoped to another course or category are dropped.
    """
    buckets: Dict[DetailScope, List[DetailSnapshot]] = {scope: [] for scope in SPECIFICITY}

    for header in headers:
        if header.effective_status(at_time) != HeaderStatus.ACTIVE:
            continue
        for detail in header.details:
            if not detail.is_active:
                continue
            if _matches(detail, course_id, category_id):
                buckets[detail.scope].append(detail)

    return buckets


def resolve_detail(
    headers: Sequence[HeaderSnapshot],
    course_id: Optional[str],
    category_id: Optional[str],
    at_time: datetime
) -> Resolution:
    """
    Select the single applicable detail for a transaction

    Specificity (course > category > general) decides first, then the
    highest priority within that bucket.

    Raises:
        NoApplicableRuleError: If no detail applies
        AmbiguousRuleError: If the best candidates tie on priority
    """
    buckets = collect_candidates(headers, course_id, category_id, at_time)

    for scope in SPECIFICITY:
        candidates = buckets[scope]
        if not candidates:
            continue

        top_priority = max(d.priority for d in candidates)
        winners = [d for d in candidates if d.priority == top_priority]
        if len(winners) > 1:
            ids = ", ".join(str(d.id) for d in sorted(winners, key=lambda d: d.id))
            raise AmbiguousRuleError(
                "Commission resolution is ambiguous",
                detail=f"{scope.value} details {ids} share priority {top_priority}",
            )

        winner = winners[0]
        return Resolution(
            rate=winner.rate,
            detail_id=winner.id,
            header_id=winner.header_id,
            scope=scope,
            priority=winner.priority,
        )

    raise NoApplicableRuleError(
        "No applicable commission rule",
        detail=f"course={course_id} category={category_id} at={to_utc(at_time).isoformat()}",
    )


def resolve(
    headers: Sequence[HeaderSnapshot],
    course_id: Optional[str],
    category_id: Optional[str],
    at_time: datetime
) -> RatePair:
    """Rate pair of the winning detail, see resolve_detail"""
    return resolve_detail(headers, course_id, category_id, at_time).rate
