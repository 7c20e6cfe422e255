# directory_admin/main.py
import logging
import psutil # For system metrics in health check
import time   # For uptime calculation
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Any
from datetime import datetime, timedelta, timezone
from fastapi import status
from pymongo.errors import OperationFailure

from .core.config import PROJECT_NAME, API_V1_PREFIX, VERSION, settings
from .core.exceptions import (
    DirectoryError,
    NotFound,
    InvalidRole,
    InvalidRequest,
    AlreadyExists,
    UpstreamRejected,
    UpstreamUnavailable,
    PartialFailure,
)
from .db.database import connect_to_mongo, close_mongo_connection, check_database_health, get_database
from .models.enums import USERS_COLLECTION

from .api.v1.endpoints.users import router as users_router
from .api.v1.endpoints.maintenance import router as maintenance_router
from .api.v1.endpoints.session import router as session_router

logger = logging.getLogger(__name__)

# Track application start time for uptime calculation
APP_START_TIME = time.time()

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidRole: status.HTTP_400_BAD_REQUEST,
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    AlreadyExists: status.HTTP_409_CONFLICT,
    UpstreamRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UpstreamUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    PartialFailure: status.HTTP_207_MULTI_STATUS,
}

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    description="Admin console API for the role-based user directory",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Handling ---
@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# --- Event Handlers for DB Connection ---
@app.on_event("startup")
async def startup_event():
    """Connect to MongoDB and ensure indexes on application startup."""
    logger.info("Executing startup event: Connecting to database...")
    connected = await connect_to_mongo()
    if not connected:
        logger.critical("FATAL: Database connection failed on startup. Application might not function correctly.")
        return

    logger.info("Startup event: Database connection successful.")
    db_instance = get_database()
    if db_instance is None:
        logger.error("Could not get database instance to ensure indexes.")
        return

    # Not unique: users/<uid> copies share the email of users/<emailKey>
    users_collection = db_instance.get_collection(USERS_COLLECTION)
    try:
        await users_collection.create_index("email", name="idx_users_email")
        logger.info(f"Index 'idx_users_email' on {USERS_COLLECTION}.email ensured.")
    except OperationFailure as e:
        logger.warning(f"Could not create index 'idx_users_email' on {USERS_COLLECTION}.email: {e.details}")
    except Exception as e:
        logger.error(f"Unexpected error creating index 'idx_users_email': {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    """Disconnect from MongoDB on application shutdown."""
    logger.info("Executing shutdown event: Disconnecting from database...")
    await close_mongo_connection()


# --- API Endpoints ---
@app.get("/", tags=["Root"], include_in_schema=False)
async def read_root():
    """Root endpoint welcome message."""
    return {"message": f"Welcome to {PROJECT_NAME}"}


@app.get("/health", status_code=200, tags=["Health Check"])
async def health_check() -> Dict[str, Any]:
    """
    Comprehensive health check endpoint that verifies:
    - Application status and metrics (uptime, memory)
    - Database connectivity and collections
    """
    db_health = await check_database_health()

    process = psutil.Process()
    memory_info = process.memory_info()

    uptime_seconds = time.time() - APP_START_TIME
    uptime = str(timedelta(seconds=int(uptime_seconds)))

    health_info = {
        "status": "OK",
        "application": {
            "name": PROJECT_NAME,
            "version": VERSION,
            "status": "OK",
            "uptime": uptime,
            "memory_usage": {
                "rss_bytes": memory_info.rss,
                "vms_bytes": memory_info.vms,
                "percent": f"{process.memory_percent():.2f}%"
            }
        },
        "database": db_health,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if db_health.get("status") in ("ERROR", "WARNING"):
        health_info["status"] = db_health["status"]

    return health_info


# --- Liveness and Readiness Probes ---
@app.get("/healthz", tags=["Probes"], status_code=status.HTTP_200_OK)
async def liveness_probe():
    """Liveness probe: Checks if the application process is running and responsive."""
    return {"status": "live"}


@app.get("/readyz", tags=["Probes"])
async def readiness_probe(response: Response):
    """Readiness probe: ready once the database answers. Missing role collections only warn."""
    db_health = await check_database_health()
    if db_health.get("status") == "ERROR":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "database": db_health}
    response.status_code = status.HTTP_200_OK
    return {"status": "ready", "database": db_health}


# --- Include API Routers ---
app.include_router(users_router, prefix=API_V1_PREFIX)
app.include_router(maintenance_router, prefix=API_V1_PREFIX)
app.include_router(session_router, prefix=API_V1_PREFIX)
