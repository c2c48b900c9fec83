"""
Course Commission API - FastAPI Application
Commission configuration and platform/instructor revenue split resolution
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.exceptions import CommissionError, NoApplicableRuleError
from app.utils.responses import error_response

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="API for commission rules splitting course sales between platform and instructor",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(CommissionError)
async def commission_exception_handler(request: Request, exc: CommissionError):
    """Render domain errors with the standard error envelope"""
    if isinstance(exc, NoApplicableRuleError):
        logger.error(f"{request.method} {request.url.path}: {exc.message} ({exc.detail})")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.message} ({exc.detail})")

    return error_response(
        exc.message,
        detail=exc.detail,
        status_code=exc.status_code,
        field=getattr(exc, "field", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Schema errors use the same envelope; field is the last element of the first error location"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ())]
    return error_response(
        "Invalid request",
        detail=first.get("msg"),
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        field=loc[-1] if len(loc) > 1 else None,
    )


# Global Exception Handler so unexpected failures keep the error envelope
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Internal Server Error", "detail": str(exc) if settings.DEBUG else None},
    )


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - health check"""
    return {
        "ok": True,
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": "1.0.0",
        "environment": settings.APP_ENV
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "environment": settings.APP_ENV
    }


@app.get("/health/db", tags=["Health"])
async def db_health_check():
    """Database connection health check"""
    from sqlalchemy import text
    from app.core.database import get_engine

    result = {"engine_created": False, "connection_test": False, "error": None}
    try:
        engine = get_engine()
        result["engine_created"] = engine is not None
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            result["connection_test"] = True
    except Exception as e:
        result["error"] = str(e)

    return result


# Import routers
from app.api import commissions  # noqa: E402

# Include routers
app.include_router(commissions.router, prefix="/api/v1", tags=["Commissions"])


if __name__ == "__main__":
    import uvicorn
    from app.core.database import init_db

    init_db()
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
