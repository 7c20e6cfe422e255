# directory_admin/api/deps.py
from typing import Annotated

from fastapi import Depends

from ..core.exceptions import UpstreamUnavailable
from ..db.database import get_database
from ..db.store import DocumentStore, MongoDocumentStore
from ..services.directory import DirectoryService
from ..services.identity import IdentityProvider, get_identity_provider
from ..services.reconciliation import ReconciliationService


def get_document_store() -> DocumentStore:
    """Document store over the connection opened at startup."""
    db = get_database()
    if db is None:
        raise UpstreamUnavailable("Database connection is not available.")
    return MongoDocumentStore(db)


def get_directory_service(
    store: Annotated[DocumentStore, Depends(get_document_store)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> DirectoryService:
    return DirectoryService(store, identity)


def get_reconciliation_service(
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> ReconciliationService:
    return ReconciliationService(store)
