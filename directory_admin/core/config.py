# directory_admin/core/config.py
import os
import logging
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional, List
from pydantic_settings import BaseSettings

# --- Path Setup & .env Loading ---
# .env lives in the project root, two levels up from core
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_PATH = BASE_DIR / '.env'

if ENV_PATH.is_file():
    load_dotenv(dotenv_path=ENV_PATH)
else:
    # Logger is not configured yet at this point
    print(f"Warning: .env file not found at {ENV_PATH}. Relying on system environment variables.")

# --- Pydantic Settings Class ---
class Settings(BaseSettings):
    PROJECT_NAME: str = "Directory Admin API"
    DEBUG: bool = False
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api"

    # Database Settings
    MONGODB_URL: Optional[str] = None
    DB_NAME: str = "directory_dev"

    # Firebase Settings
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None # service-account JSON; ADC is used when unset
    FIREBASE_WEB_API_KEY: Optional[str] = None # only needed to send password reset emails

    # Console access
    ADMIN_EMAILS: List[str] = []

    # Login tracking
    LOGIN_HISTORY_LIMIT: int = 50

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",  # Vite frontend
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

settings = Settings()

# --- Logging Setup ---
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "WARNING").upper()
if settings.DEBUG:
    LOG_LEVEL_NAME = "DEBUG"

ACTUAL_LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.WARNING)

logging.basicConfig(
    level=ACTUAL_LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logging.getLogger('uvicorn').setLevel(logging.WARNING)
logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
logging.getLogger('fastapi').setLevel(logging.INFO if settings.DEBUG else logging.WARNING)
logging.getLogger('motor').setLevel(logging.WARNING)
logging.getLogger('pymongo').setLevel(logging.WARNING)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('firebase_admin').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# --- Validate critical settings after loading ---
if not settings.MONGODB_URL:
    logger.critical("CRITICAL: MONGODB_URL environment variable is not set and no default provided.")

if not settings.FIREBASE_PROJECT_ID:
    logger.warning("FIREBASE_PROJECT_ID environment variable is not set. Token validation will fail.")
if not settings.FIREBASE_WEB_API_KEY:
    logger.warning("FIREBASE_WEB_API_KEY environment variable is not set. Password reset emails will fail.")
if not settings.ADMIN_EMAILS:
    logger.warning("ADMIN_EMAILS is empty. Nobody will be able to use the console.")

if settings.DEBUG:
    logger.debug(f"PROJECT_NAME: {settings.PROJECT_NAME}")
    logger.debug(f"API_V1_PREFIX: {settings.API_V1_PREFIX}")
    logger.debug(f"DB_NAME: {settings.DB_NAME}")
    logger.debug(f"FIREBASE_PROJECT_ID: {settings.FIREBASE_PROJECT_ID}")
    logger.debug(f"FIREBASE_CREDENTIALS_PATH Set: {'Yes' if settings.FIREBASE_CREDENTIALS_PATH else 'No - using default credentials'}")
    logger.debug(f"MONGODB_URL Set: {'Yes' if settings.MONGODB_URL else 'No - CRITICAL'}")
    logger.debug(f"LOGIN_HISTORY_LIMIT: {settings.LOGIN_HISTORY_LIMIT}")

# Module-level aliases, mirroring the settings object
PROJECT_NAME = settings.PROJECT_NAME
DEBUG = settings.DEBUG
VERSION = settings.VERSION
API_V1_PREFIX = settings.API_V1_PREFIX
MONGODB_URL = settings.MONGODB_URL
DB_NAME = settings.DB_NAME
FIREBASE_PROJECT_ID = settings.FIREBASE_PROJECT_ID
FIREBASE_CREDENTIALS_PATH = settings.FIREBASE_CREDENTIALS_PATH
FIREBASE_WEB_API_KEY = settings.FIREBASE_WEB_API_KEY
