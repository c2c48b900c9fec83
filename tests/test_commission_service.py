"""Tests for the configuration store: invariants, lifecycle, history and listing."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.database import Base
from app.core.exceptions import (
    ConflictError,
    NoApplicableRuleError,
    NotFoundError,
    ValidationError,
)
from app.models.commission import (
    CommissionDetail,
    CommissionHeaderRevision,
    DetailScope,
    HeaderStatus,
)
from app.services.commission_service import CommissionService
from app.services.rate_pair import RatePair
from app.services.resolution_service import ResolutionService

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
COURSE = "course-x"
CATEGORY = "cat-y"


def _header(db, name="H1", **kwargs):
    kwargs.setdefault("now", NOW)
    return CommissionService.create_header(db, name, **kwargs)


def _detail(db, header, platform_rate=30, **kwargs):
    kwargs.setdefault("now", NOW)
    return CommissionService.create_detail(db, header.id, platform_rate, **kwargs)


def _resolve(db, at_time=NOW, **kwargs):
    return ResolutionService.resolve(db, COURSE, CATEGORY, at_time, **kwargs)


# ── Scenarios ─────────────────────────────────────────────


def test_resolution_scenarios_end_to_end(db):
    h1 = _header(db)
    assert h1.status == HeaderStatus.ACTIVE.value

    _detail(db, h1, 30, priority=1)
    assert _resolve(db).rate == RatePair(30)

    _detail(db, h1, 25, category_id=CATEGORY, priority=1)
    assert _resolve(db).rate == RatePair(25)

    _detail(db, h1, 20, course_id=COURSE, priority=5)
    assert _resolve(db).rate.to_dict() == {"platform_rate": 20, "instructor_rate": 80}

    updated = CommissionService.update_header(db, h1.id, {"end_date": NOW - timedelta(days=1)}, now=NOW)
    assert updated.status == HeaderStatus.EXPIRED.value
    with pytest.raises(NoApplicableRuleError):
        _resolve(db)


@pytest.mark.parametrize("platform_rate", [0, 100])
def test_detail_rate_bounds(db, platform_rate):
    header = _header(db)
    with pytest.raises(ValidationError) as exc_info:
        _detail(db, header, platform_rate)
    assert exc_info.value.field == "platform_rate"


# ── Headers ───────────────────────────────────────────────


class TestCreateHeader:
    def test_future_start_is_scheduled(self, db):
        header = _header(db, start_date=NOW + timedelta(days=2))
        assert header.status == HeaderStatus.SCHEDULED.value
        assert header.version == 1

    def test_past_start_uses_operator_default(self, db, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_HEADER_STATUS", "INACTIVE")
        header = _header(db, start_date=NOW - timedelta(days=2))
        assert header.status == HeaderStatus.INACTIVE.value

    def test_blank_name_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            _header(db, name="   ")
        assert exc_info.value.field == "name"

    def test_inverted_dates_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            _header(db, start_date=NOW + timedelta(days=3), end_date=NOW + timedelta(days=1))
        assert exc_info.value.field == "end_date"

    def test_end_in_past_rejected(self, db):
        with pytest.raises(ValidationError):
            _header(db, end_date=NOW - timedelta(hours=1))

    def test_creation_recorded_in_history(self, db):
        header = _header(db)
        history = CommissionService.header_history(db, header.id)
        assert [(e["type"], e["action"]) for e in history] == [("header", "created")]


class TestHeaderStatus:
    def test_toggle_active_inactive(self, db):
        header = _header(db)
        header = CommissionService.set_status(db, header.id, "INACTIVE", now=NOW)
        assert header.status == HeaderStatus.INACTIVE.value
        header = CommissionService.set_status(db, header.id, HeaderStatus.ACTIVE, now=NOW)
        assert header.status == HeaderStatus.ACTIVE.value

    @pytest.mark.parametrize("status", ["SCHEDULED", "EXPIRED", "BOGUS"])
    def test_derived_statuses_cannot_be_set(self, db, status):
        header = _header(db)
        with pytest.raises(ValidationError) as exc_info:
            CommissionService.set_status(db, header.id, status, now=NOW)
        assert exc_info.value.field == "status"

    def test_activating_future_header_keeps_it_scheduled(self, db):
        header = _header(db, start_date=NOW + timedelta(days=1))
        header = CommissionService.set_status(db, header.id, "INACTIVE", now=NOW)
        header = CommissionService.set_status(db, header.id, "ACTIVE", now=NOW)
        assert header.status == HeaderStatus.SCHEDULED.value

    def test_expired_header_permits_no_transition(self, db):
        header = _header(db, end_date=NOW + timedelta(days=1))
        later = NOW + timedelta(days=2)
        with pytest.raises(ConflictError):
            CommissionService.set_status(db, header.id, "INACTIVE", now=later)
        with pytest.raises(ConflictError):
            CommissionService.update_header(db, header.id, {"name": "renamed"}, now=later)

    def test_inactive_header_is_skipped_by_resolution(self, db):
        first = _header(db, "first")
        _detail(db, first, 10, course_id=COURSE)
        second = _header(db, "second")
        _detail(db, second, 30)

        CommissionService.set_status(db, first.id, "INACTIVE", now=NOW)
        assert _resolve(db).rate == RatePair(30)

    def test_status_change_recorded(self, db):
        header = _header(db)
        CommissionService.set_status(db, header.id, "INACTIVE", now=NOW)
        actions = [e["action"] for e in CommissionService.header_history(db, header.id)]
        assert actions == ["created", "deactivated"]

    def test_unchanged_status_is_noop(self, db):
        header = _header(db)
        CommissionService.set_status(db, header.id, "ACTIVE", now=NOW)
        assert db.query(CommissionHeaderRevision).count() == 1


class TestUpdateHeader:
    def test_fields_change_and_version_moves(self, db):
        header = _header(db)
        updated = CommissionService.update_header(
            db, header.id, {"name": "Summer promo", "description": "June"}, expected_version=1, now=NOW
        )
        assert updated.name == "Summer promo"
        assert updated.description == "June"
        assert updated.version == 2

    def test_stale_expected_version_conflicts(self, db):
        header = _header(db)
        CommissionService.update_header(db, header.id, {"name": "a"}, now=NOW)
        with pytest.raises(ConflictError):
            CommissionService.update_header(db, header.id, {"name": "b"}, expected_version=1, now=NOW)

    def test_moving_start_into_future_schedules(self, db):
        header = _header(db)
        updated = CommissionService.update_header(
            db, header.id, {"start_date": NOW + timedelta(days=1)}, now=NOW
        )
        assert updated.status == HeaderStatus.SCHEDULED.value

    def test_unknown_field_rejected(self, db):
        header = _header(db)
        with pytest.raises(ValidationError):
            CommissionService.update_header(db, header.id, {"status": "EXPIRED"}, now=NOW)

    def test_inverted_dates_rejected_and_rolled_back(self, db):
        header = _header(db, end_date=NOW + timedelta(days=5))
        with pytest.raises(ValidationError):
            CommissionService.update_header(db, header.id, {"start_date": NOW + timedelta(days=6)}, now=NOW)
        assert CommissionService.get_header(db, header.id).start_date is None

    def test_missing_header(self, db):
        with pytest.raises(NotFoundError):
            CommissionService.update_header(db, 999, {"name": "x"}, now=NOW)


def test_concurrent_header_edit_fails_fast(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)

    setup = Session()
    header_id = _header(setup).id
    setup.close()

    first, second = Session(), Session()
    try:
        # Held so the session keeps the version 1 copy in its identity map
        stale = CommissionService.get_header(first, header_id)
        assert stale.version == 1

        CommissionService.update_header(second, header_id, {"name": "second"}, now=NOW)
        with pytest.raises(ConflictError):
            CommissionService.update_header(first, header_id, {"name": "first"}, now=NOW)

        assert CommissionService.get_header(first, header_id).name == "second"
    finally:
        first.close()
        second.close()
        engine.dispose()


class TestDeleteHeader:
    def test_delete_removes_details(self, db):
        header = _header(db)
        _detail(db, header, 30)
        CommissionService.delete_header(db, header.id, now=NOW)

        with pytest.raises(NotFoundError):
            CommissionService.get_header(db, header.id)
        assert db.query(CommissionDetail).count() == 0

    def test_delete_rejected_once_used(self, db):
        header = _header(db)
        _detail(db, header, 30)
        _resolve(db, transaction_ref="order-1")

        with pytest.raises(ConflictError):
            CommissionService.delete_header(db, header.id, now=NOW)
        assert CommissionService.get_header(db, header.id)


# ── Details ───────────────────────────────────────────────


class TestCreateDetail:
    def test_instructor_rate_is_derived(self, db):
        detail = _detail(db, _header(db), 35)
        assert detail.instructor_rate == 65
        assert detail.scope == DetailScope.GENERAL
        assert detail.scope_key == "general"

    def test_matching_instructor_rate_accepted(self, db):
        detail = _detail(db, _header(db), 35, instructor_rate=65)
        assert detail.instructor_rate == 65

    def test_mismatched_instructor_rate_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            _detail(db, _header(db), 35, instructor_rate=70)
        assert exc_info.value.field == "instructor_rate"

    def test_both_scopes_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            _detail(db, _header(db), 30, course_id=COURSE, category_id=CATEGORY)
        assert exc_info.value.field == "scope"

    def test_blank_scope_id_rejected(self, db):
        with pytest.raises(ValidationError):
            _detail(db, _header(db), 30, course_id="  ")

    def test_negative_priority_rejected(self, db):
        with pytest.raises(ValidationError):
            _detail(db, _header(db), 30, priority=-1)

    def test_duplicate_scope_priority_rejected(self, db):
        header = _header(db)
        _detail(db, header, 30, category_id=CATEGORY, priority=2)
        with pytest.raises(ValidationError) as exc_info:
            _detail(db, header, 40, category_id=CATEGORY, priority=2)
        assert exc_info.value.field == "priority"

        # Same priority in another scope is fine
        _detail(db, header, 40, category_id="other", priority=2)

    def test_expired_header_rejects_details(self, db):
        header = _header(db, end_date=NOW + timedelta(hours=1))
        with pytest.raises(ConflictError):
            _detail(db, header, 30, now=NOW + timedelta(hours=2))

    def test_unknown_header(self, db):
        with pytest.raises(NotFoundError):
            CommissionService.create_detail(db, 404, 30, now=NOW)

    def test_creating_detail_bumps_header_version(self, db):
        header = _header(db)
        _detail(db, header, 30)
        assert CommissionService.get_header(db, header.id).version == 2


class TestUpdateDetail:
    def test_rate_priority_and_flag_change(self, db):
        detail = _detail(db, _header(db), 30)
        updated = CommissionService.update_detail(
            db, detail.id, {"platform_rate": 45, "priority": 3, "is_active": False}, now=NOW
        )
        assert (updated.platform_rate, updated.instructor_rate) == (45, 55)
        assert updated.priority == 3
        assert updated.is_active is False
        assert updated.version == 2

    @pytest.mark.parametrize("field", ["course_id", "category_id", "header_id"])
    def test_scope_is_immutable(self, db, field):
        detail = _detail(db, _header(db), 30)
        with pytest.raises(ValidationError) as exc_info:
            CommissionService.update_detail(db, detail.id, {field: "x"}, now=NOW)
        assert exc_info.value.field == field

    def test_invalid_rate_leaves_detail_untouched(self, db):
        detail = _detail(db, _header(db), 30)
        with pytest.raises(ValidationError):
            CommissionService.update_detail(db, detail.id, {"platform_rate": 100}, now=NOW)
        assert CommissionService.get_detail(db, detail.id).platform_rate == 30

    def test_priority_collision_rejected(self, db):
        header = _header(db)
        _detail(db, header, 30, priority=1)
        second = _detail(db, header, 35, priority=2)
        with pytest.raises(ValidationError):
            CommissionService.update_detail(db, second.id, {"priority": 1}, now=NOW)

    def test_stale_version_conflicts(self, db):
        detail = _detail(db, _header(db), 30)
        CommissionService.update_detail(db, detail.id, {"priority": 4}, now=NOW)
        with pytest.raises(ConflictError):
            CommissionService.update_detail(db, detail.id, {"priority": 5}, expected_version=1, now=NOW)

    def test_deactivated_detail_stops_applying(self, db):
        header = _header(db)
        _detail(db, header, 30)
        course_detail = _detail(db, header, 20, course_id=COURSE)
        assert _resolve(db).rate == RatePair(20)

        CommissionService.update_detail(db, course_detail.id, {"is_active": False}, now=NOW)
        assert _resolve(db).rate == RatePair(30)


class TestDeleteDetail:
    def test_create_then_delete_leaves_resolution_unchanged(self, db):
        header = _header(db)
        _detail(db, header, 30)
        _detail(db, header, 25, category_id=CATEGORY)
        before = _resolve(db)

        extra = _detail(db, header, 10, course_id=COURSE, priority=9)
        assert _resolve(db).rate == RatePair(10)
        CommissionService.delete_detail(db, extra.id, now=NOW)

        assert _resolve(db) == before

    def test_used_detail_cannot_be_deleted(self, db):
        detail = _detail(db, _header(db), 30)
        _resolve(db, transaction_ref="order-7")
        with pytest.raises(ConflictError):
            CommissionService.delete_detail(db, detail.id, now=NOW)


# ── Usage ─────────────────────────────────────────────────


def test_transaction_resolved_once(db):
    _detail(db, _header(db), 30)
    _resolve(db, transaction_ref="order-1")
    with pytest.raises(ConflictError):
        _resolve(db, transaction_ref="order-1")


@pytest.mark.parametrize("transaction_ref", ["", "   "])
def test_blank_transaction_ref_rejected(db, transaction_ref):
    detail = _detail(db, _header(db), 30)
    with pytest.raises(ValidationError) as exc_info:
        _resolve(db, transaction_ref=transaction_ref)
    assert exc_info.value.field == "transaction_ref"

    # Nothing recorded, so the rule is still deletable
    CommissionService.delete_detail(db, detail.id, now=NOW)


# ── Status sweep ──────────────────────────────────────────


def test_refresh_statuses_is_idempotent(db):
    scheduled = _header(db, "later", start_date=NOW + timedelta(hours=1), end_date=NOW + timedelta(hours=3))
    _header(db, "steady")

    assert CommissionService.refresh_statuses(db, now=NOW) == []
    assert CommissionService.refresh_statuses(db, now=NOW + timedelta(hours=2)) == [scheduled.id]
    assert CommissionService.refresh_statuses(db, now=NOW + timedelta(hours=2)) == []
    assert CommissionService.get_header(db, scheduled.id).status == HeaderStatus.ACTIVE.value

    assert CommissionService.refresh_statuses(db, now=NOW + timedelta(hours=4)) == [scheduled.id]
    assert CommissionService.get_header(db, scheduled.id).status == HeaderStatus.EXPIRED.value

    actions = [e["action"] for e in CommissionService.header_history(db, scheduled.id)]
    assert actions == ["created", "activated", "expired"]


class TestSweptHeaders:
    def test_sweep_keeps_sales_before_end_date_resolvable(self, db):
        header = _header(db, end_date=NOW + timedelta(days=30))
        _detail(db, header, 30)
        last_day = NOW + timedelta(days=29)
        assert _resolve(db, at_time=last_day).rate == RatePair(30)

        swept_at = NOW + timedelta(days=31)
        assert CommissionService.refresh_statuses(db, now=swept_at) == [header.id]

        assert _resolve(db, at_time=last_day).rate == RatePair(30)
        with pytest.raises(NoApplicableRuleError):
            _resolve(db, at_time=swept_at)

    def test_audit_after_sweep_uses_end_date(self, db):
        header = _header(db, end_date=NOW + timedelta(days=30))
        _detail(db, header, 30)
        CommissionService.refresh_statuses(db, now=NOW + timedelta(days=31))

        replay = ResolutionService.resolve_as_of(
            db, COURSE, CATEGORY, NOW + timedelta(days=29), as_of=NOW + timedelta(days=32)
        )
        assert replay.rate == RatePair(30)

    def test_sweep_preserves_inactive_toggle(self, db):
        header = _header(db, end_date=NOW + timedelta(days=30))
        _detail(db, header, 30)
        CommissionService.set_status(db, header.id, "INACTIVE", now=NOW)
        CommissionService.refresh_statuses(db, now=NOW + timedelta(days=31))

        with pytest.raises(NoApplicableRuleError):
            _resolve(db, at_time=NOW + timedelta(days=29))

    def test_swept_header_stays_closed_to_writes(self, db):
        header = _header(db, end_date=NOW + timedelta(days=30))
        CommissionService.refresh_statuses(db, now=NOW + timedelta(days=31))

        with pytest.raises(ConflictError):
            _detail(db, header, 30, now=NOW + timedelta(days=32))
        assert CommissionService.get_header(db, header.id).status == HeaderStatus.EXPIRED.value


# ── History & audit ───────────────────────────────────────


class TestHistoricalResolution:
    def test_replay_uses_configuration_in_force_at_the_time(self, db):
        header = _header(db)
        detail = _detail(db, header, 30)

        later = NOW + timedelta(hours=1)
        CommissionService.update_detail(db, detail.id, {"platform_rate": 40}, now=later)

        sale_time = NOW + timedelta(minutes=30)
        assert ResolutionService.resolve_as_of(db, COURSE, CATEGORY, sale_time).rate == RatePair(30)
        assert ResolutionService.resolve_as_of(db, COURSE, CATEGORY, sale_time, as_of=later).rate == RatePair(40)
        assert _resolve(db, at_time=sale_time).rate == RatePair(40)

    def test_replay_sees_deleted_rules(self, db):
        header = _header(db)
        _detail(db, header, 30)
        course_detail = _detail(db, header, 15, course_id=COURSE)

        later = NOW + timedelta(hours=1)
        CommissionService.delete_detail(db, course_detail.id, now=later)

        assert ResolutionService.resolve_as_of(db, COURSE, CATEGORY, NOW).rate == RatePair(15)
        assert ResolutionService.resolve_as_of(db, COURSE, CATEGORY, later).rate == RatePair(30)

    def test_replay_before_any_configuration(self, db):
        _detail(db, _header(db), 30)
        with pytest.raises(NoApplicableRuleError):
            ResolutionService.resolve_as_of(db, COURSE, CATEGORY, NOW - timedelta(days=1))

    def test_replay_of_deleted_header(self, db):
        header = _header(db)
        _detail(db, header, 30)
        CommissionService.delete_header(db, header.id, now=NOW + timedelta(hours=1))

        assert ResolutionService.resolve_as_of(db, COURSE, CATEGORY, NOW).rate == RatePair(30)
        with pytest.raises(NoApplicableRuleError):
            ResolutionService.resolve_as_of(db, COURSE, CATEGORY, NOW + timedelta(hours=2))


def test_recent_activity_newest_first(db):
    header = _header(db)
    _detail(db, header, 30, now=NOW + timedelta(minutes=1))
    CommissionService.set_status(db, header.id, "INACTIVE", now=NOW + timedelta(minutes=2))

    activity = CommissionService.recent_activity(db, limit=2)
    assert [(e["type"], e["action"]) for e in activity] == [
        ("header", "deactivated"),
        ("detail", "created"),
    ]
    assert "30/70" in activity[1]["description"]


# ── Listing ───────────────────────────────────────────────


class TestListing:
    def test_headers_filtered_by_effective_status(self, db):
        active = _header(db, "active")
        scheduled = _header(db, "scheduled", start_date=NOW + timedelta(days=1))
        inactive = _header(db, "inactive")
        CommissionService.set_status(db, inactive.id, "INACTIVE", now=NOW)
        ending = _header(db, "ending", end_date=NOW + timedelta(hours=1))

        def ids(status, now=NOW):
            items, _ = CommissionService.list_headers(db, status=status, now=now)
            return {h.id for h in items}

        assert ids(HeaderStatus.ACTIVE) == {active.id, ending.id}
        assert ids(HeaderStatus.SCHEDULED) == {scheduled.id}
        assert ids(HeaderStatus.INACTIVE) == {inactive.id}
        assert ids(HeaderStatus.EXPIRED, now=NOW + timedelta(hours=2)) == {ending.id}

    def test_header_search_sort_and_pagination(self, db):
        for name in ("Beta promo", "Alpha promo", "Gamma base"):
            _header(db, name)

        items, total = CommissionService.list_headers(db, search="promo", sort_by="name", sort_order="asc", now=NOW)
        assert total == 2
        assert [h.name for h in items] == ["Alpha promo", "Beta promo"]

        items, total = CommissionService.list_headers(db, sort_by="name", page=2, per_page=2, now=NOW)
        assert total == 3
        assert [h.name for h in items] == ["Alpha promo"]

    def test_bad_sort_field_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            CommissionService.list_headers(db, sort_by="password", now=NOW)
        assert exc_info.value.field == "sort_by"

    def test_details_filtered_by_scope_flag_and_header_status(self, db):
        header = _header(db)
        general = _detail(db, header, 30)
        category = _detail(db, header, 25, category_id=CATEGORY)
        course = _detail(db, header, 20, course_id=COURSE, is_active=False)
        other = _header(db, "other")
        CommissionService.set_status(db, other.id, "INACTIVE", now=NOW)
        hidden = _detail(db, other, 50)

        def ids(**filters):
            items, _ = CommissionService.list_details(db, now=NOW, **filters)
            return {d.id for d in items}

        assert ids(scope=DetailScope.GENERAL) == {general.id, hidden.id}
        assert ids(scope=DetailScope.CATEGORY) == {category.id}
        assert ids(scope=DetailScope.COURSE) == {course.id}
        assert ids(is_active=False) == {course.id}
        assert ids(header_id=other.id) == {hidden.id}
        assert ids(header_status=HeaderStatus.ACTIVE) == {general.id, category.id, course.id}

    def test_details_sorted_by_priority(self, db):
        header = _header(db)
        for priority in (2, 9, 5):
            _detail(db, header, 30, priority=priority)
        items, _ = CommissionService.list_details(db, sort_by="priority", sort_order="desc", now=NOW)
        assert [d.priority for d in items] == [9, 5, 2]

    def test_details_for_course_and_category(self, db):
        header = _header(db)
        _detail(db, header, 30)
        course = _detail(db, header, 20, course_id=COURSE)
        category = _detail(db, header, 25, category_id=CATEGORY)

        assert [d.id for d in CommissionService.details_for_course(db, COURSE)] == [course.id]
        assert [d.id for d in CommissionService.details_for_category(db, CATEGORY)] == [category.id]
        assert CommissionService.details_for_course(db, "nope") == []

    def test_header_details_ordered_by_priority(self, db):
        header = _header(db)
        _detail(db, header, 30, priority=1)
        _detail(db, header, 31, priority=8)
        details = CommissionService.get_header(db, header.id).details
        assert [d.priority for d in details] == [8, 1]
