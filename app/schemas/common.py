"""
Common/Shared Pydantic schemas
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Any


class ErrorResponse(BaseModel):
    """Error response schema"""
    ok: bool = False
    error: str
    detail: Optional[str] = None
    field: Optional[str] = None


class PaginationMeta(BaseModel):
    """Pagination metadata"""
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel):
    """Paginated response schema"""
    ok: bool = True
    data: List[Any]
    meta: PaginationMeta


# Config for all schemas
ORMConfig = ConfigDict(from_attributes=True)
