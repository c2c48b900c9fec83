"""
Commission configuration models - SQLAlchemy ORM
Headers own time-bounded sets of commission rules (details)
"""
import enum

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class HeaderStatus(str, enum.Enum):
    """Lifecycle status of a commission header"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SCHEDULED = "SCHEDULED"
    EXPIRED = "EXPIRED"


class DetailScope(str, enum.Enum):
    """Applicability domain of a detail, most specific first"""
    COURSE = "course"
    CATEGORY = "category"
    GENERAL = "general"


def build_scope_key(course_id=None, category_id=None) -> str:
    """Single-column scope identity used by the (header, scope, priority) unique key"""
    if course_id is not None:
        return f"course:{course_id}"
    if category_id is not None:
        return f"category:{category_id}"
    return "general"


class CommissionHeader(Base):
    """Named, time-bounded commission configuration"""

    __tablename__ = "commission_headers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=HeaderStatus.ACTIVE.value)  # ACTIVE, INACTIVE, SCHEDULED, EXPIRED
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # Optimistic lock counter, bumped on every UPDATE
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    details = relationship(
        "CommissionDetail",
        back_populates="header",
        cascade="all, delete-orphan",
        order_by=lambda: (CommissionDetail.priority.desc(), CommissionDetail.id),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<CommissionHeader(id={self.id}, name={self.name}, status={self.status})>"


class CommissionDetail(Base):
    """A single commission rule: rate, scope and priority under one header"""

    __tablename__ = "commission_details"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    header_id = Column(Integer, ForeignKey("commission_headers.id", ondelete="CASCADE"), nullable=False, index=True)

    # Scope: course, category or neither (general). Immutable after creation.
    course_id = Column(String(64), nullable=True, index=True)
    category_id = Column(String(64), nullable=True, index=True)
    scope_key = Column(String(80), nullable=False)

    platform_rate = Column(Integer, nullable=False)
    instructor_rate = Column(Integer, nullable=False)  # always 100 - platform_rate
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    header = relationship("CommissionHeader", back_populates="details")

    __table_args__ = (
        UniqueConstraint("header_id", "scope_key", "priority", name="uq_commission_detail_scope_priority"),
        CheckConstraint("course_id IS NULL OR category_id IS NULL", name="ck_commission_detail_single_scope"),
        CheckConstraint("platform_rate BETWEEN 1 AND 99", name="ck_commission_detail_platform_rate"),
        CheckConstraint("platform_rate + instructor_rate = 100", name="ck_commission_detail_rate_sum"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def scope(self) -> DetailScope:
        if self.course_id is not None:
            return DetailScope.COURSE
        if self.category_id is not None:
            return DetailScope.CATEGORY
        return DetailScope.GENERAL

    def __repr__(self):
        return (
            f"<CommissionDetail(id={self.id}, header_id={self.header_id}, "
            f"scope={self.scope_key}, platform_rate={self.platform_rate}, priority={self.priority})>"
        )


class CommissionUsage(Base):
    """Marks that a detail resolved a completed transaction"""

    __tablename__ = "commission_usages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    detail_id = Column(Integer, ForeignKey("commission_details.id"), nullable=False, index=True)
    header_id = Column(Integer, ForeignKey("commission_headers.id"), nullable=False, index=True)

    transaction_ref = Column(String(128), nullable=False, unique=True, index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=False)  # transaction timestamp used for resolution

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<CommissionUsage(id={self.id}, detail_id={self.detail_id}, ref={self.transaction_ref})>"


class CommissionHeaderRevision(Base):
    """Append-only copy of a header state, written on every change"""

    __tablename__ = "commission_header_revisions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    header_id = Column(Integer, nullable=False)  # no FK: survives header deletion
    version = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)  # created, updated, activated, deactivated, scheduled, expired, deleted

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_commission_header_revisions_lookup", "header_id", "recorded_at"),
    )

    def __repr__(self):
        return f"<CommissionHeaderRevision(header_id={self.header_id}, version={self.version}, action={self.action})>"


class CommissionDetailRevision(Base):
    """Append-only copy of a detail state, written on every change"""

    __tablename__ = "commission_detail_revisions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    detail_id = Column(Integer, nullable=False)
    header_id = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)  # created, updated, deleted

    course_id = Column(String(64), nullable=True)
    category_id = Column(String(64), nullable=True)
    platform_rate = Column(Integer, nullable=False)
    priority = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False)
    deleted = Column(Boolean, nullable=False, default=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_commission_detail_revisions_lookup", "detail_id", "recorded_at"),
    )

    def __repr__(self):
        return f"<CommissionDetailRevision(detail_id={self.detail_id}, version={self.version}, action={self.action})>"
