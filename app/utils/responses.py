"""
Utility functions for API responses
"""
from typing import Any, Optional, List, Dict
from fastapi import status
from fastapi.responses import JSONResponse
from app.schemas.common import ErrorResponse, PaginatedResponse, PaginationMeta


def error_response(
    error: str,
    detail: Optional[str] = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    field: Optional[str] = None
) -> JSONResponse:
    """
    Create error response

    Args:
        error: Error message
        detail: Optional error details
        status_code: HTTP status code
        field: Optional name of the offending input field

    Returns:
        JSONResponse object
    """
    response = ErrorResponse(error=error, detail=detail or None, field=field or None)
    return JSONResponse(content=response.model_dump(exclude_none=True), status_code=status_code)


def paginated_response(
    data: List[Any],
    page: int,
    per_page: int,
    total: int
) -> Dict:
    """
    Create paginated response

    Args:
        data: List of items
        page: Current page number
        per_page: Items per page
        total: Total number of items

    Returns:
        Dict with data and pagination meta
    """
    total_pages = (total + per_page - 1) // per_page  # Ceiling division

    meta = PaginationMeta(
        current_page=page,
        per_page=per_page,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1
    )

    return PaginatedResponse(data=data, meta=meta).model_dump()
