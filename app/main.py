# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.routers.auth import auth_router
from app.api.routers.passkey import router as passkey_router
from app.core.config import settings
from app.core.rate_limit import get_real_client_ip, limiter
from app.core.security_logger import security_log

# Import all models to ensure they are registered in the registry
from app.db import base  # noqa: F401
from app.db.session import get_async_session, lifespan_db_manager
from app.exceptions import PasskeyAuthError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(_app_instance: FastAPI):
    logger.info("Starting up %s v%s...", settings.APP_NAME, settings.APP_VERSION)
    logger.info("Environment: %s", settings.ENVIRONMENT)
    logger.info("WebAuthn relying party: id=%s origin=%s", settings.RP_ID, settings.RP_ORIGIN)

    try:
        await lifespan_db_manager(_app_instance, "startup")
        logger.info("LIFESPAN_HOOK: Database resources initialized.")
    except Exception:
        logger.critical("LIFESPAN_HOOK: Failed to initialize database resources.", exc_info=True)
        raise

    yield

    logger.info("Shutting down %s...", settings.APP_NAME)
    try:
        await lifespan_db_manager(_app_instance, "shutdown")
        logger.info("LIFESPAN_HOOK: Database resources disposed.")
    except Exception:
        logger.error("LIFESPAN_HOOK: Error during database resource disposal.", exc_info=True)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
)

# --- Rate Limiting Setup ---
app.state.limiter = limiter


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    security_log.rate_limited(get_real_client_ip(request), request.url.path)
    return _rate_limit_exceeded_handler(request, exc)


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# --- Middleware ---
if settings.BACKEND_CORS_ORIGINS:
    origins = [
        str(origin).strip("/") for origin in settings.BACKEND_CORS_ORIGINS if str(origin).strip("/")
    ]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        logger.info("CORS enabled for origins: %s", origins)
    else:
        logger.warning("BACKEND_CORS_ORIGINS configured but resulted in an empty list.")
else:
    logger.info("CORS disabled (BACKEND_CORS_ORIGINS not configured).")


# --- Exception Handlers ---
@app.exception_handler(PasskeyAuthError)
async def passkey_auth_exception_handler(request: Request, exc: PasskeyAuthError):
    log = logger.error if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else logger.warning
    log(
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.detail,
    )
    headers = {"Retry-After": "1"} if exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def jsonable_errors(errors) -> list:
    # ctx may hold exception instances, which JSONResponse cannot render
    return [{k: v for k, v in error.items() if k != "ctx"} for error in errors]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error_details = exc.errors()
    logger.warning(
        "Request validation error: %s %s - Errors: %s",
        request.method,
        request.url.path,
        error_details,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(error_details)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler_custom(request: Request, exc: HTTPException):
    log_message = "HTTPException: Status=%s, Detail='%s' for %s %s"
    log_args = (exc.status_code, exc.detail, request.method, request.url.path)
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, *log_args)
    else:
        logger.warning(log_message, *log_args)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler_custom(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception during request: %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected internal server error occurred."},
    )


# --- API v1 Router Definition and Inclusions ---
api_v1_router = APIRouter()
api_v1_router.include_router(auth_router)  # prefix is already "/auth" in router
api_v1_router.include_router(passkey_router)  # prefix is already "/auth/passkey" in router


@api_v1_router.get("/", tags=["API Root"], summary="API v1 Root Endpoint")
async def api_v1_root_endpoint():
    return {
        "message": f"Welcome to {settings.APP_NAME} - API Version 1",
        "version": settings.APP_VERSION,
        "documentation_url": app.docs_url,
    }


@api_v1_router.get(
    "/healthz",
    tags=["Health Checks"],
    summary="API and Database Health Check",
    status_code=status.HTTP_200_OK,
)
async def health_check_api_v1_detailed(db: AsyncSession = Depends(get_async_session)):
    db_status = "unavailable"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        logger.error(
            "Health check (detailed): Database connection failed.", exc_info=settings.DEBUG
        )
    dependencies_status = {"database": db_status}
    if db_status == "connected":
        return {"status": "ok", "dependencies": dependencies_status}
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"status": "degraded", "dependencies": dependencies_status},
    )


app.include_router(api_v1_router, prefix=settings.API_V1_STR)


# --- Health Check Endpoint (at app root) ---
@app.get(
    "/health",
    tags=["System Health"],
    summary="Basic System Liveness Check",
    status_code=status.HTTP_200_OK,
    include_in_schema=False,
)
async def health_check_basic_system():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
