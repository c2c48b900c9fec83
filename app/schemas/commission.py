"""
Commission Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from app.models.commission import CommissionHeader, HeaderStatus
from app.schemas.common import ORMConfig
from app.utils.timeutils import to_utc


# ============ Request Schemas ============

class HeaderCreate(BaseModel):
    """Schema for creating a commission header"""
    name: str = Field(..., max_length=255, description="Header name")
    description: Optional[str] = Field(None, description="Free-text description")
    start_date: Optional[datetime] = Field(None, description="Start of validity (UTC)")
    end_date: Optional[datetime] = Field(None, description="End of validity (UTC)")


class HeaderUpdate(BaseModel):
    """Schema for editing a commission header; only sent fields change"""
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[HeaderStatus] = Field(None, description="ACTIVE or INACTIVE")
    version: Optional[int] = Field(None, description="Expected version for optimistic locking")


class HeaderStatusUpdate(BaseModel):
    """Schema for the ACTIVE/INACTIVE operator toggle"""
    status: HeaderStatus
    version: Optional[int] = None


class DetailCreate(BaseModel):
    """Schema for creating a commission detail"""
    header_id: int = Field(..., description="Owning header ID")
    course_id: Optional[str] = Field(None, description="Course scope")
    category_id: Optional[str] = Field(None, description="Category scope")
    platform_rate: int = Field(..., description="Platform percentage (1-99)")
    instructor_rate: Optional[int] = Field(None, description="Derived; if sent must equal 100 - platform_rate")
    priority: int = Field(0, description="Higher wins within the same scope")
    is_active: bool = True


class DetailUpdate(BaseModel):
    """Schema for editing a commission detail; scope fields are rejected"""
    platform_rate: Optional[int] = None
    instructor_rate: Optional[int] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    header_id: Optional[int] = None
    course_id: Optional[str] = None
    category_id: Optional[str] = None
    version: Optional[int] = Field(None, description="Expected version for optimistic locking")


class ResolveRequest(BaseModel):
    """Schema for resolving the commission of a sale"""
    course_id: Optional[str] = None
    category_id: Optional[str] = None
    at_time: Optional[datetime] = Field(None, description="Purchase timestamp; defaults to now")
    transaction_ref: Optional[str] = Field(None, max_length=128, description="Records usage when set")
    amount: Optional[int] = Field(None, ge=0, description="Amount to split")


# ============ Response Schemas ============

class DetailResponse(BaseModel):
    """Commission detail response schema"""
    id: int
    header_id: int
    course_id: Optional[str]
    category_id: Optional[str]
    scope: str
    platform_rate: int
    instructor_rate: int
    priority: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ORMConfig

    @field_validator("scope", mode="before")
    @classmethod
    def _scope_value(cls, v):
        return getattr(v, "value", v)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, v):
        return to_utc(v)


class HeaderResponse(BaseModel):
    """Commission header response schema"""
    id: int
    name: str
    description: Optional[str]
    status: str
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    version: int
    detail_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ORMConfig

    @field_validator("start_date", "end_date", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, v):
        return to_utc(v)

    @classmethod
    def from_header(cls, header: CommissionHeader, status: HeaderStatus) -> "HeaderResponse":
        """Build from ORM, replacing the stored status with the effective one"""
        data = cls.model_validate(header)
        return data.model_copy(update={"status": status.value, "detail_count": len(header.details)})


class HeaderWithDetailsResponse(HeaderResponse):
    """Header response including its details"""
    details: List[DetailResponse] = []
