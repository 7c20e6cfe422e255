# directory_admin/core/security.py
"""
Security module for Firebase ID token authentication.

Provides functionality for:
- JWKS (JSON Web Key Set) fetching and caching for the securetoken service account.
- ID token validation (signature, expiry, claims: iss, aud).
- FastAPI dependencies for authenticated and admin-only endpoints.
- Sign-in evaluation for the admin console.

Example Usage in Endpoints:
    ```python
    from fastapi import APIRouter, Depends
    from typing import Dict, Any
    from ...core.security import require_admin

    router = APIRouter()

    @router.get("/protected-resource")
    async def get_protected_resource(
        payload: Dict[str, Any] = Depends(require_admin)
    ):
        return {"message": f"Hello {payload.get('email')}"}
    ```
"""

import logging
import httpx
from typing import Dict, Any, Optional, Iterable
from datetime import datetime, timedelta, timezone

from jose import jwt, exceptions as jose_exceptions
from pydantic import BaseModel

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .config import FIREBASE_PROJECT_ID, settings

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class SecurityError(Exception):
    """Base class for security-related exceptions."""
    pass

class JWKSFetchError(SecurityError):
    """Raised when there is an error fetching or parsing the JWKS."""
    pass

class TokenValidationError(SecurityError):
    """Raised when token validation fails (expiry, signature, claims, etc.)."""
    pass


# --- JWKS Handling ---

# Public keys used to sign Firebase ID tokens
JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
TOKEN_ISSUER: Optional[str] = None
if FIREBASE_PROJECT_ID:
    TOKEN_ISSUER = f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}"
else:
    logger.error("FIREBASE_PROJECT_ID is not configured. Cannot validate ID tokens.")

_jwks_cache: Optional[Dict[str, Any]] = None
_jwks_cache_timestamp: Optional[datetime] = None
JWKS_CACHE_TTL = timedelta(hours=1)


async def get_jwks() -> Dict[str, Any]:
    """
    Fetches the JWKS keys used to sign ID tokens.
    Uses a simple time-based in-memory cache. Raises JWKSFetchError on failure.
    """
    global _jwks_cache, _jwks_cache_timestamp

    if _jwks_cache and _jwks_cache_timestamp and \
       (datetime.now(timezone.utc) - _jwks_cache_timestamp < JWKS_CACHE_TTL):
        logger.debug(f"Returning JWKS from cache (timestamp: {_jwks_cache_timestamp}, TTL: {JWKS_CACHE_TTL}).")
        return _jwks_cache

    logger.info(f"Attempting to fetch JWKS keys from {JWKS_URL}...")
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(JWKS_URL)
            response.raise_for_status()

            jwks = response.json()
            if "keys" not in jwks or not isinstance(jwks["keys"], list):
                raise JWKSFetchError("Invalid JWKS format received: 'keys' array not found.")

            logger.info(f"Successfully fetched {len(jwks['keys'])} JWKS keys. Updating cache.")
            _jwks_cache = jwks
            _jwks_cache_timestamp = datetime.now(timezone.utc)
            return jwks

    except httpx.TimeoutException as e:
        raise JWKSFetchError(f"Timeout while trying to fetch JWKS from {JWKS_URL}: {e}")
    except httpx.HTTPStatusError as e:
        raise JWKSFetchError(f"JWKS endpoint returned {e.response.status_code}: {e}")
    except httpx.RequestError as e:
        raise JWKSFetchError(f"Network error fetching JWKS from {JWKS_URL}: {e}")
    except ValueError as e:  # JSONDecodeError
        raise JWKSFetchError(f"Error parsing JWKS JSON response from {JWKS_URL}: {e}")


# --- JWT Validation Function ---

async def validate_token(token: str) -> Dict[str, Any]:
    """
    Decodes and validates a Firebase ID token.

    Args:
        token: The encoded JWT string (ID token).

    Returns:
        The decoded token payload (dictionary) if validation is successful.

    Raises:
        TokenValidationError: If the project id is missing or validation fails
                              (e.g., signature, expiry, claims).
    """
    if not FIREBASE_PROJECT_ID or not TOKEN_ISSUER:
        raise TokenValidationError("Firebase project id not configured.")

    try:
        jwks = await get_jwks()
    except JWKSFetchError as e:
        raise TokenValidationError(f"Token validation failed: Could not retrieve JWKS keys - {e}")

    try:
        unverified_header = jwt.get_unverified_header(token)
        if "kid" not in unverified_header:
            raise TokenValidationError("JWT header does not contain 'kid' (Key ID).")
        rsa_key_kid = unverified_header["kid"]
    except jose_exceptions.JWTError as e:
        raise TokenValidationError(f"Error getting unverified header from token: {e}")

    key_found = None
    for key in jwks["keys"]:
        if key.get("kid") == rsa_key_kid:
            key_found = key
            break

    if not key_found:
        # Keys rotate; the next request refetches
        clear_jwks_cache()
        logger.warning(f"Public key with kid '{rsa_key_kid}' not found in JWKS. Cache cleared.")
        raise TokenValidationError(f"Public key with kid '{rsa_key_kid}' not found in JWKS (cache cleared, retry might succeed).")

    try:
        payload = jwt.decode(
            token,
            key_found,
            algorithms=["RS256"],
            audience=FIREBASE_PROJECT_ID,
            issuer=TOKEN_ISSUER,
        )
    except jose_exceptions.ExpiredSignatureError:
        raise TokenValidationError("Token validation failed: Expired signature.")
    except jose_exceptions.JWTClaimsError as e:
        raise TokenValidationError(f"Token validation failed: Invalid claims - {e}")
    except jose_exceptions.JWTError as e:
        raise TokenValidationError(f"Token validation failed: Invalid token - {e}")

    if not payload.get("sub"):
        raise TokenValidationError("Token validation failed: empty 'sub' claim.")

    logger.debug("Token successfully validated.")
    return payload


# --- FastAPI Dependencies ---

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


async def get_current_user_payload(
    token: Optional[str] = Depends(oauth2_scheme)
) -> Dict[str, Any]:
    """
    FastAPI dependency to validate an ID token and return its payload.

    Raises:
        HTTPException(401): If token is missing, invalid, expired, or fails validation.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        logger.warning("Authentication attempt failed: No token provided.")
        raise credentials_exception

    try:
        return await validate_token(token)
    except TokenValidationError as e:
        logger.warning(f"Authentication failed: {e}")
        raise credentials_exception from e


def is_admin_email(email: Optional[str], admin_emails: Iterable[str]) -> bool:
    if not email:
        return False
    return email.lower() in {e.lower() for e in admin_emails}


async def require_admin(
    payload: Dict[str, Any] = Depends(get_current_user_payload)
) -> Dict[str, Any]:
    """Like get_current_user_payload, but only for principals listed in ADMIN_EMAILS."""
    email = payload.get("email")
    if not is_admin_email(email, settings.ADMIN_EMAILS):
        logger.warning(f"Admin access denied for {email or payload.get('sub')}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return payload


# --- Sign-in evaluation ---

class SignInOutcome(BaseModel):
    authorized: bool
    notify_unauthorized: bool
    email: Optional[str] = None


def evaluate_sign_in(
    payload: Dict[str, Any],
    admin_emails: Iterable[str],
    suppress_unauthorized_notice: bool = False,
) -> SignInOutcome:
    """
    Decides what the console does after a principal signs in.

    Creating a user through the client SDK signs the new, non-admin principal
    in. The create workflow passes suppress_unauthorized_notice=True so that
    sign-in does not raise an "unauthorized" notice.
    """
    email = payload.get("email")
    authorized = is_admin_email(email, admin_emails)
    return SignInOutcome(
        authorized=authorized,
        notify_unauthorized=not authorized and not suppress_unauthorized_notice,
        email=email,
    )


# --- Cache Management Functions ---

def clear_jwks_cache():
    """Clears the JWKS cache, forcing a fresh fetch on the next call to get_jwks."""
    global _jwks_cache, _jwks_cache_timestamp
    _jwks_cache = None
    _jwks_cache_timestamp = None
    logger.info("Manually cleared JWKS cache.")


def get_jwks_cache_info() -> Dict[str, Any]:
    """Gets information about the current JWKS cache state."""
    return {
        "cached": _jwks_cache is not None,
        "timestamp": _jwks_cache_timestamp.isoformat() if _jwks_cache_timestamp else None,
        "expires_in_seconds": (JWKS_CACHE_TTL - (datetime.now(timezone.utc) - _jwks_cache_timestamp)).total_seconds()
                               if _jwks_cache and _jwks_cache_timestamp else None,
        "ttl_seconds": JWKS_CACHE_TTL.total_seconds()
    }
