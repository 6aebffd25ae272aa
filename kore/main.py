"""FastAPI application: auth routers, error rendering, metrics and lifecycle"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from pathlib import Path
from typing import Any, Dict, List
import logging
import time
import uuid

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from kore.config import settings
from kore.core.database import init_db, SessionLocal
from kore.core.exceptions import BaseAPIException, DuplicateEmailError, ValidationError
from kore.core.timeutils import utcnow
from kore.api.v1 import auth, users
from kore.services.token_cleanup import token_cleanup_worker


def configure_logging() -> None:
    log_file = Path(settings.get_log_file())
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )


configure_logging()
logger = logging.getLogger(__name__)

HTTP_REQUESTS = Counter(
    "kore_http_requests_total",
    "HTTP requests by route and status code",
    ["method", "route", "status"],
)
HTTP_LATENCY = Histogram(
    "kore_http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "route"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# Credentials are required for the auth cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)


def _route_label(request: Request) -> str:
    # Route templates keep label cardinality bounded (/users/{user_id})
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _error_body(request: Request, message: str, details=None) -> Dict[str, Any]:
    body = {
        "success": False,
        "error": message,
        "path": request.url.path,
        "timestamp": utcnow().isoformat(),
    }
    if details is not None:
        body["details"] = details
    return body


def _internal_error(request: Request, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, message),
    )


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag the request with an id, apply security headers and record metrics"""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update(SECURITY_HEADERS)
    response.headers["X-Request-ID"] = request_id

    route = _route_label(request)
    HTTP_REQUESTS.labels(request.method, route, str(response.status_code)).inc()
    HTTP_LATENCY.labels(request.method, route).observe(elapsed)

    if elapsed > 1.0:
        logger.warning("Slow request %s %s (%.2fs) id=%s", request.method, route, elapsed, request_id)

    return response


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render application errors with their own status code"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.message, exc.details),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten pydantic errors into field/message pairs"""
    errors: List[Dict[str, str]] = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info("Rejected input on %s: %s", request.url.path, [e["field"] for e in errors])

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, "Validation failed", errors),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error(request, "A database error occurred. Please try again later.")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.critical("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error(request, "An unexpected error occurred.")


def bootstrap_admin() -> None:
    """Create the configured admin account if it does not exist yet"""
    from kore.services.user_service import user_service

    db = SessionLocal()
    try:
        if user_service.get_user_by_email(db, settings.ADMIN_EMAIL):
            return
        user_service.create_user(
            db,
            settings.ADMIN_EMAIL,
            settings.ADMIN_PASSWORD,
            settings.ADMIN_NAME,
            role="admin",
        )
        logger.info("Created admin user: %s", settings.ADMIN_EMAIL)
    finally:
        db.close()


@app.on_event("startup")
async def startup_event():
    settings.validate_security_settings()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    try:
        init_db()
    except Exception:
        logger.exception("Database initialization failed")
        raise

    try:
        bootstrap_admin()
    except (SQLAlchemyError, DuplicateEmailError, ValidationError) as exc:
        logger.error("Admin bootstrap skipped: %s", exc)

    if settings.RUN_TOKEN_CLEANUP:
        token_cleanup_worker.start()


@app.on_event("shutdown")
async def shutdown_event():
    if token_cleanup_worker.is_running():
        token_cleanup_worker.stop()
    logger.info("%s stopped", settings.APP_NAME)


def _database_readiness() -> Dict[str, Any]:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "error": None}
    except SQLAlchemyError as exc:
        return {"ok": False, "error": str(exc)}
    finally:
        db.close()


@app.get("/health")
async def health_check():
    """Liveness plus database and cleanup worker readiness"""
    database = _database_readiness()
    return {
        "status": "healthy" if database["ok"] else "degraded",
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
        "readiness": {
            "database": database,
            "token_cleanup": token_cleanup_worker.status(),
        },
    }


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled",
    }


app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kore.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
    )
