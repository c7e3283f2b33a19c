"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from talentree.api.applications import companies_router, processes_router, router as applications_router, workers_router
from talentree.api.auth import router as auth_router
from talentree.api.responses import router as responses_router
from talentree.api.tests import router as tests_router
from talentree.core.config import settings
from talentree.core.database import init_db
from talentree.core.errors import DomainError, TransientError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})...")
    init_db()
    yield
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

prefix = settings.API_V1_PREFIX
if settings.ENABLE_MOCK_LOGIN:
    app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(tests_router, prefix=f"{prefix}/tests", tags=["tests"])
app.include_router(responses_router, prefix=f"{prefix}/test-responses", tags=["test-responses"])
app.include_router(applications_router, prefix=f"{prefix}/applications", tags=["applications"])
app.include_router(workers_router, prefix=f"{prefix}/workers", tags=["workers"])
app.include_router(processes_router, prefix=f"{prefix}/processes", tags=["processes"])
app.include_router(companies_router, prefix=f"{prefix}/companies", tags=["companies"])


def error_response(status_code: int, message: str, error_type: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type, "status_code": status_code}},
        headers=headers,
    )


# Exception handlers
@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    headers = None
    if isinstance(exc, TransientError):
        headers = {"Retry-After": str(settings.TRANSIENT_RETRY_AFTER_SECONDS)}
        logger.warning(f"Transient failure on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.error_type, headers)


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def storage_exception_handler(request: Request, exc: Exception):
    """Lost connections, statement timeouts and pool exhaustion: safe to retry."""
    logger.error(f"Storage unavailable on {request.method} {request.url.path}: {exc}")
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Storage temporarily unavailable",
        TransientError.error_type,
        {"Retry-After": str(settings.TRANSIENT_RETRY_AFTER_SECONDS)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, exc.detail, "http_error", getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "type": "validation_error",
                "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "internal_error")


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "version": settings.APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "talentree.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
    )
