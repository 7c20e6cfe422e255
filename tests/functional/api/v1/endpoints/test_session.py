# tests/functional/api/v1/endpoints/test_session.py
import pytest
from fastapi import FastAPI, status
from httpx import AsyncClient

from directory_admin.core.config import settings
from directory_admin.core.security import get_current_user_payload

pytestmark = pytest.mark.asyncio

SIGN_IN = f"{settings.API_V1_PREFIX}/session/sign-in"


async def test_admin_sign_in_records_login(client: AsyncClient, store, admin_payload):
    store.put("users", "admin_school_example", {"email": admin_payload["email"], "role": "teacher"})

    response = await client.post(SIGN_IN, json={})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"authorized": True, "notify_unauthorized": False, "email": admin_payload["email"]}
    history = store.doc("users", "admin_school_example")["loginHistory"]
    assert history[0]["uid"] == admin_payload["sub"]


async def test_admin_sign_in_without_record_still_succeeds(client: AsyncClient, store):
    response = await client.post(SIGN_IN, json={})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["authorized"] is True
    assert store.keys("users") == []


async def test_unauthorized_sign_in_notifies(app: FastAPI, client: AsyncClient, store):
    app.dependency_overrides[get_current_user_payload] = lambda: {"sub": "kid-uid", "email": "kid@x.com"}
    store.put("users", "kid_x_com", {"email": "kid@x.com", "role": "student"})

    response = await client.post(SIGN_IN, json={})

    assert response.json() == {"authorized": False, "notify_unauthorized": True, "email": "kid@x.com"}
    assert "loginHistory" not in store.doc("users", "kid_x_com")


async def test_unauthorized_notice_can_be_suppressed(app: FastAPI, client: AsyncClient):
    app.dependency_overrides[get_current_user_payload] = lambda: {"sub": "new-uid", "email": "new@x.com"}

    suppressed = await client.post(SIGN_IN, json={"suppress_unauthorized_notice": True})
    assert suppressed.json()["notify_unauthorized"] is False

    # The flag applies to that one request only
    later = await client.post(SIGN_IN, json={})
    assert later.json()["notify_unauthorized"] is True


async def test_sign_in_requires_token(app: FastAPI, client: AsyncClient):
    del app.dependency_overrides[get_current_user_payload]
    response = await client.post(SIGN_IN, json={})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
