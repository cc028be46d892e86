"""
Document Moderation - Backend API
FastAPI with multiple storage backends: JSON file, SQLite and Google Sheets

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import contextvars
import logging
import os
import time
import uuid

from core.errors import DocumentModerationError
from dependencies import get_storage_adapter
from settings import get_settings

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)
request_start_time_var = contextvars.ContextVar('request_start_time', default=None)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STORAGE_BACKEND = settings.storage_backend.lower()
BLOB_BACKEND = settings.blob_backend.lower()
API_VERSION = "1.0"

logger.info(f"🔧 Storage Backend: {STORAGE_BACKEND.upper()}")

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Document Moderation API",
    description="Versioned document submissions with per-version moderation",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request: Request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    request_start_time_var.set(time.time())

    response = await call_next(request)

    latency = time.time() - request_start_time_var.get()
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({round(latency * 1000, 2)} ms) [{request_id}]"
    )

    response.headers["X-Request-ID"] = request_id
    return response


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocumentModerationError)
async def moderation_error_handler(request: Request, exc: DocumentModerationError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )

# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"ok": True, "backend": STORAGE_BACKEND}


@app.get("/healthz")
async def healthz():
    """
    Kubernetes-style liveness probe.
    Fast check - is the process alive and responding?
    """
    return {
        "status": "ok",
        "timestamp": time.time(),
        "version": API_VERSION
    }


@app.get("/readyz")
def readyz():
    """
    Kubernetes-style readiness probe.
    Returns 200 if the storage backend answers, 503 if not.
    """
    try:
        get_storage_adapter().ping()
        return {
            "status": "ready",
            "backend": STORAGE_BACKEND,
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "backend": STORAGE_BACKEND,
                "error": str(e),
                "timestamp": time.time()
            }
        )


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": "Document Moderation API",
        "version": API_VERSION,
        "backend": STORAGE_BACKEND,
        "blobs": BLOB_BACKEND,
        "status": "running",
        "docs": "/docs"
    }


# Locally stored uploads are served from here; references point at this mount.
if BLOB_BACKEND == "local":
    os.makedirs(settings.blob_dir, exist_ok=True)
    app.mount("/files", StaticFiles(directory=settings.blob_dir), name="files")

from routers import documents as documents_router
app.include_router(documents_router.router)

from routers import moderation as moderation_router
app.include_router(moderation_router.router)

from routers import analysis as analysis_router
app.include_router(analysis_router.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Document Moderation API starting up...")
    logger.info(f"Storage Backend: {STORAGE_BACKEND.upper()}")
    if STORAGE_BACKEND == "sqlite":
        logger.info(f"Database: {settings.db_url.split('://')[0]}")
    elif STORAGE_BACKEND == "sheets":
        logger.info(f"Spreadsheet ID: {settings.sheets_spreadsheet_id}")
    logger.info(f"Blob Backend: {BLOB_BACKEND.upper()}")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Document Moderation API shutting down...")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=False)
