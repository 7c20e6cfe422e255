# directory_admin/migrations/common.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..core.exceptions import UpstreamUnavailable
from ..db.database import connect_to_mongo, close_mongo_connection, get_database
from ..db.store import MongoDocumentStore
from ..services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def reconciliation_service() -> AsyncIterator[ReconciliationService]:
    """Opens the database for a command-line repair run and closes it afterwards."""
    if not await connect_to_mongo():
        raise UpstreamUnavailable("Could not connect to MongoDB; check MONGODB_URL.")
    try:
        yield ReconciliationService(MongoDocumentStore(get_database()))
    finally:
        await close_mongo_connection()
