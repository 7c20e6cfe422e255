# tests/conftest.py
import copy
import logging
import time
from typing import Any, AsyncGenerator, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pytest_mock import MockerFixture

from directory_admin.core.config import settings
from directory_admin.core.exceptions import AlreadyExists, NotFound, UpstreamUnavailable
from directory_admin.core.security import get_current_user_payload
from directory_admin.api.deps import get_document_store
from directory_admin.services.identity import get_identity_provider

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@school.example"


# --- In-memory capability fakes ---

class InMemoryDocumentStore:
    """
    DocumentStore over nested dicts. Scan order is insertion order.

    `fail_on` holds (operation, collection, key) triples; a key of None fails
    every key in that collection. Matching calls raise UpstreamUnavailable.
    """

    def __init__(self):
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail_on: Set[Tuple[str, str, Optional[str]]] = set()

    def _check(self, operation: str, collection: str, key: Optional[str] = None):
        if (operation, collection, key) in self.fail_on or (operation, collection, None) in self.fail_on:
            raise UpstreamUnavailable(f"injected {operation} failure on {collection}/{key}")

    # seeding / inspection helpers
    def put(self, collection: str, key: str, doc: Dict[str, Any]):
        self.data.setdefault(collection, {})[key] = copy.deepcopy(doc)

    def keys(self, collection: str) -> List[str]:
        return list(self.data.get(collection, {}))

    def doc(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        return self.data.get(collection, {}).get(key)

    # DocumentStore
    async def get(self, collection, key):
        self._check("get", collection, key)
        doc = self.data.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection, key, document, merge=False):
        self._check("set", collection, key)
        docs = self.data.setdefault(collection, {})
        if merge and key in docs:
            docs[key].update(copy.deepcopy(document))
        else:
            docs[key] = copy.deepcopy(document)

    async def update(self, collection, key, fields):
        self._check("update", collection, key)
        docs = self.data.get(collection, {})
        if key not in docs:
            raise NotFound(f"Document {collection}/{key} not found")
        docs[key].update(copy.deepcopy(fields))

    async def delete(self, collection, key):
        self._check("delete", collection, key)
        self.data.get(collection, {}).pop(key, None)

    async def scan(self, collection):
        self._check("scan", collection)
        return [(key, copy.deepcopy(doc)) for key, doc in self.data.get(collection, {}).items()]


class FakeIdentityProvider:
    """IdentityProvider keeping principals in a dict; uids are uid-1, uid-2, ..."""

    def __init__(self):
        self.principals: Dict[str, Dict[str, Any]] = {}
        self.claims: Dict[str, Dict[str, Any]] = {}
        self.reset_emails: List[str] = []
        self._counter = 0

    def add(self, email: str, uid: Optional[str] = None, **fields) -> str:
        if uid is None:
            self._counter += 1
            uid = f"uid-{self._counter}"
        self.principals[uid] = {"email": email, "disabled": False, **fields}
        return uid

    async def create_principal(self, email, secret, display_name):
        if any(p["email"].lower() == email.lower() for p in self.principals.values()):
            raise AlreadyExists(f"A principal with this email already exists: {email}")
        return self.add(email, password=secret, display_name=display_name)

    async def set_claims(self, principal_id, claims):
        if principal_id not in self.principals:
            raise NotFound(f"Principal not found: {principal_id}")
        self.claims[principal_id] = dict(claims)

    async def update_principal(self, principal_id, fields):
        if principal_id not in self.principals:
            raise NotFound(f"Principal not found: {principal_id}")
        self.principals[principal_id].update(fields)

    async def set_disabled(self, principal_id, disabled):
        await self.update_principal(principal_id, {"disabled": disabled})

    async def delete_principal(self, principal_id):
        if self.principals.pop(principal_id, None) is None:
            raise NotFound(f"Principal not found: {principal_id}")
        self.claims.pop(principal_id, None)

    async def send_credential_reset(self, email):
        if not any(p["email"] == email for p in self.principals.values()):
            raise NotFound(f"No principal with email {email}")
        self.reset_emails.append(email)


# --- Fixtures ---

@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def admin_payload() -> Dict[str, Any]:
    return {
        "sub": "admin-uid",
        "email": ADMIN_EMAIL,
        "iss": "https://securetoken.google.com/demo-project",
        "aud": "demo-project",
        "exp": time.time() + 3600,
        "iat": time.time(),
    }


@pytest_asyncio.fixture(scope="function")
async def app(
    mocker: MockerFixture,
    store: InMemoryDocumentStore,
    identity: FakeIdentityProvider,
    admin_payload: Dict[str, Any],
) -> AsyncGenerator[FastAPI, None]:
    """
    The application with its database lifecycle mocked out, the store and
    identity provider replaced by fakes, and an admin token accepted.
    """
    mocker.patch("directory_admin.main.connect_to_mongo", return_value=True)
    mocker.patch("directory_admin.main.close_mongo_connection", return_value=None)
    # None skips index creation during startup
    mocker.patch("directory_admin.main.get_database", return_value=None)
    mocker.patch.object(settings, "ADMIN_EMAILS", [ADMIN_EMAIL])

    from directory_admin.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_document_store] = lambda: store
    fastapi_app.dependency_overrides[get_identity_provider] = lambda: identity
    fastapi_app.dependency_overrides[get_current_user_payload] = lambda: admin_payload

    async with LifespanManager(fastapi_app, startup_timeout=15, shutdown_timeout=15):
        yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
