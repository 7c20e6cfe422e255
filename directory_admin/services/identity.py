# directory_admin/services/identity.py
"""
Identity provider capability: manages the authentication principals that
directory records point at through their `uid`.

FirebaseIdentityProvider wraps the (blocking) firebase-admin auth API in
worker threads. Credential-reset emails go through the Identity Toolkit
REST endpoint, the same one the web SDK's sendPasswordResetEmail calls.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Dict, Optional, Protocol

import firebase_admin
import httpx
from firebase_admin import auth, credentials
from firebase_admin import exceptions as firebase_exceptions

from ..core.config import settings
from ..core.exceptions import (
    AlreadyExists,
    NotFound,
    UpstreamRejected,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

SEND_OOB_CODE_URL = "https://identitytoolkit.googleapis.com/v1/accounts:sendOobCode"

# Keys accepted by update_principal, mapped to firebase-admin's update_user kwargs
PRINCIPAL_FIELDS = {
    "email": "email",
    "password": "password",
    "display_name": "display_name",
    "disabled": "disabled",
}


class IdentityProvider(Protocol):
    async def create_principal(self, email: str, secret: str, display_name: str) -> str: ...

    async def set_claims(self, principal_id: str, claims: Dict[str, Any]) -> None: ...

    async def update_principal(self, principal_id: str, fields: Dict[str, Any]) -> None: ...

    async def set_disabled(self, principal_id: str, disabled: bool) -> None: ...

    async def delete_principal(self, principal_id: str) -> None: ...

    async def send_credential_reset(self, email: str) -> None: ...


_UNAVAILABLE = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
    firebase_exceptions.InternalError,
    firebase_exceptions.UnknownError,
)


def translate_provider_errors(func):
    """Maps firebase-admin errors onto directory error kinds."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except auth.UserNotFoundError as e:
            raise NotFound(f"Principal not found: {e}") from e
        except auth.EmailAlreadyExistsError as e:
            raise AlreadyExists(f"A principal with this email already exists: {e}") from e
        except _UNAVAILABLE as e:
            logger.error(f"Identity provider unavailable during {func.__name__}: {e}", exc_info=True)
            raise UpstreamUnavailable(f"Identity provider unavailable: {e}") from e
        except firebase_exceptions.FirebaseError as e:
            logger.warning(f"Identity provider rejected {func.__name__}: {e}")
            raise UpstreamRejected(str(e)) from e
        except ValueError as e:
            # firebase-admin validates arguments client-side (password length, email format)
            raise UpstreamRejected(str(e)) from e
    return wrapper


class FirebaseIdentityProvider:
    def __init__(self, app: Optional[firebase_admin.App] = None, web_api_key: Optional[str] = None):
        self.app = app
        self.web_api_key = web_api_key

    @translate_provider_errors
    async def create_principal(self, email: str, secret: str, display_name: str) -> str:
        record = await asyncio.to_thread(
            auth.create_user,
            email=email,
            password=secret,
            email_verified=False,
            display_name=display_name,
            app=self.app,
        )
        logger.info(f"Identity provider principal created: {record.uid}")
        return record.uid

    @translate_provider_errors
    async def set_claims(self, principal_id: str, claims: Dict[str, Any]) -> None:
        await asyncio.to_thread(auth.set_custom_user_claims, principal_id, claims, app=self.app)
        logger.info(f"Custom claims set for {principal_id}: {claims}")

    @translate_provider_errors
    async def update_principal(self, principal_id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(PRINCIPAL_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported principal fields: {sorted(unknown)}")
        kwargs = {PRINCIPAL_FIELDS[name]: value for name, value in fields.items()}
        await asyncio.to_thread(auth.update_user, principal_id, app=self.app, **kwargs)
        logger.info(f"Principal {principal_id} updated: {sorted(k for k in fields if k != 'password')}")

    async def set_disabled(self, principal_id: str, disabled: bool) -> None:
        await self.update_principal(principal_id, {"disabled": disabled})

    @translate_provider_errors
    async def delete_principal(self, principal_id: str) -> None:
        await asyncio.to_thread(auth.delete_user, principal_id, app=self.app)
        logger.info(f"Principal {principal_id} deleted")

    async def send_credential_reset(self, email: str) -> None:
        if not self.web_api_key:
            raise UpstreamUnavailable("FIREBASE_WEB_API_KEY is not configured; cannot send reset emails.")

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    SEND_OOB_CODE_URL,
                    params={"key": self.web_api_key},
                    json={"requestType": "PASSWORD_RESET", "email": email},
                )
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"Network error sending password reset for {email}: {e}") from e

        if response.status_code >= 500:
            raise UpstreamUnavailable(f"Identity provider returned {response.status_code} for password reset")
        if response.status_code >= 400:
            try:
                reason = response.json().get("error", {}).get("message", "")
            except ValueError:
                reason = response.text
            if reason.startswith("EMAIL_NOT_FOUND"):
                raise NotFound(f"No principal with email {email}")
            raise UpstreamRejected(f"Password reset rejected: {reason or response.status_code}")

        logger.info(f"Password reset email sent to {email}")


_firebase_app: Optional[firebase_admin.App] = None


def init_firebase_app() -> firebase_admin.App:
    """Initializes (once) the firebase-admin app from settings."""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    if settings.FIREBASE_CREDENTIALS_PATH:
        credential = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        logger.info("Initializing Firebase Admin with service account credentials.")
    else:
        credential = credentials.ApplicationDefault()
        logger.info("Initializing Firebase Admin with application default credentials.")

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    _firebase_app = firebase_admin.initialize_app(credential, options)
    return _firebase_app


def get_identity_provider() -> FirebaseIdentityProvider:
    return FirebaseIdentityProvider(app=init_firebase_app(), web_api_key=settings.FIREBASE_WEB_API_KEY)
