"""
Device Subscription Backend API - Main Application
"""
import logging
import sys
import traceback
import uuid
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.config import settings
from app.api.v1 import api_router
from app.core.exceptions import ErrorKind, ServiceError
from app.core.rate_limit import limiter
from app.database import init_db

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Device subscription provisioning: review queue, OTP onboarding and transaction ledger",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    redirect_slashes=False
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Map typed service errors onto HTTP status codes"""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies/params are reported like any other validation error"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "detail": f"{location}: {message}" if location else message,
            "error": ErrorKind.VALIDATION.value
        }
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Last-resort 500; full details only when DEBUG is on"""
    error_id = uuid.uuid4().hex[:8]
    logger.error(f"[{error_id}] Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=True)

    body = {
        "success": False,
        "detail": "Internal server error",
        "error": ErrorKind.INTERNAL.value,
        "error_id": error_id
    }
    if settings.DEBUG:
        body.update(detail=str(exc), exception=type(exc).__name__, traceback=traceback.format_exc())
    return JSONResponse(status_code=500, content=body)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize database, notifier and scheduler on startup"""
    print("=" * 70)
    print("[STARTUP] Starting Device Subscription API...")
    print("=" * 70)

    print(f"[DATABASE] {settings.DATABASE_HOST}:{settings.DATABASE_PORT}/{settings.DATABASE_NAME}")
    print(f"[DEBUG] Debug mode: {settings.DEBUG}")
    print(f"[STORAGE] FileRunner: {settings.FILERUNNER_BASE_URL}")

    try:
        init_db()
        print("[OK] Database initialized successfully")
    except Exception as e:
        print(f"[ERROR] Database initialization failed: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        from app.database import SessionLocal
        from app.utils.admin_setup import ensure_admin_user

        db = SessionLocal()
        try:
            ensure_admin_user(db)
        finally:
            db.close()
        print("[OK] Admin user verified")
    except Exception as e:
        print(f"[WARNING] Admin user setup warning: {e}")
        # Not fatal; the API can run without the seeded admin

    from app.services.email_service import init_notifier
    notifier = init_notifier()
    if notifier.is_configured:
        print(f"[OK] Email notifications via {settings.SMTP_HOST}:{settings.SMTP_PORT}")
    else:
        print("[WARNING] SMTP_HOST not set, emails will only be logged")

    if settings.SCHEDULER_ENABLED:
        from app.scheduler import start_scheduler
        start_scheduler()
        print("[OK] Expiration scheduler started")

    print("=" * 70)
    print(f"[API] Running at: http://{settings.HOST}:{settings.PORT}")
    print(f"[DOCS] API Docs: http://{settings.HOST}:{settings.PORT}/docs")
    print(f"[DOCS] ReDoc: http://{settings.HOST}:{settings.PORT}/redoc")
    print("=" * 70)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    print("[SHUTDOWN] Shutting down Device Subscription API...")

    from app.scheduler import stop_scheduler
    from app.services.email_service import shutdown_notifier
    from app.services.filerunner_service import filerunner_service

    stop_scheduler()
    shutdown_notifier()
    await filerunner_service.close()


@app.get("/health")
async def health_check():
    """Liveness probe"""
    return {
        "status": "healthy",
        "service": "device-subscription-api",
        "version": "1.0.0"
    }


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    return {
        "message": "Welcome to the Device Subscription API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "features": [
            "Email-verified accounts",
            "Per-device subscription review queue",
            "TOTP device onboarding",
            "Append-only transaction ledger",
            "Admin bulk review and reporting"
        ]
    }


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Device Subscription Backend API")
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload on file changes"
    )
    args = parser.parse_args()

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=not args.no_reload
    )
