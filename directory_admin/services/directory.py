# directory_admin/services/directory.py
"""
Single-record directory operations.

A logical user may be stored several times: users/<emailKey>, users/<uid>
and the same two keys in its role collection. Every mutation here is applied
to each copy that currently exists. Writes are sequential and not
transactional; the first error propagates and earlier writes stay in place.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..core.config import settings
from ..core.exceptions import AlreadyExists, InvalidRequest, NotFound
from ..db.store import Document, DocumentStore
from ..models.enums import USERS_COLLECTION, UserRole
from ..models.reports import LoginHistory, LoginResult, MutationResult
from ..models.user import (
    DirectoryRecord,
    UserCreate,
    UserUpdate,
    UserView,
    derive_key,
    parse_role,
    stored_email,
    with_role,
    without_login,
)
from .identity import IdentityProvider

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def path(collection: str, key: str) -> str:
    return f"{collection}/{key}"


class DirectoryService:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        login_history_limit: Optional[int] = None,
    ):
        self.store = store
        self.identity = identity
        if login_history_limit is None:
            login_history_limit = settings.LOGIN_HISTORY_LIMIT
        self.login_history_limit = login_history_limit

    # --- helpers ---

    async def _load(self, email: str) -> Tuple[str, Document]:
        key = derive_key(email)
        doc = await self.store.get(USERS_COLLECTION, key)
        if doc is None:
            logger.warning(f"User document not found: {USERS_COLLECTION}/{key} ({email})")
            raise NotFound(f"User not found: {email}")
        return key, doc

    @staticmethod
    def _principal_copy(email_key: str, doc: Document) -> Optional[str]:
        """The uid-keyed fallback key, when the record has one distinct from the email key."""
        uid = doc.get("uid")
        if uid and uid != email_key:
            return uid
        return None

    async def _update_if_present(
        self, collection: str, key: str, fields: Dict[str, Any], result: MutationResult
    ) -> bool:
        try:
            await self.store.update(collection, key, fields)
        except NotFound:
            logger.debug(f"No copy at {path(collection, key)}; skipping update")
            return False
        result.written.append(path(collection, key))
        return True

    # --- reads ---

    async def get_user(self, email: str) -> UserView:
        key, doc = await self._load(email)
        return UserView.from_document(key, doc)

    async def list_users(self, role: Optional[str] = None) -> List[UserView]:
        """
        One entry per email, preferring the copy stored at the derived key.
        Documents without a usable email are listed under their own key.
        """
        role_filter = parse_role(role) if role is not None else None

        by_email: Dict[str, UserView] = {}
        for key, doc in await self.store.scan(USERS_COLLECTION):
            email = stored_email(doc)
            if role_filter is not None and doc.get("role") != role_filter.value:
                continue
            if email is None:
                by_email[key] = UserView.from_document(key, doc)
            elif email not in by_email or key == derive_key(email):
                by_email[email] = UserView.from_document(key, doc)

        logger.info(f"Listed {len(by_email)} users (role filter: {role_filter.value if role_filter else 'all'})")
        return list(by_email.values())

    async def get_login_history(self, email: str) -> LoginHistory:
        _, doc = await self._load(email)
        return LoginHistory(
            last_login=doc.get("lastLogin"),
            login_history=doc.get("loginHistory") or [],
        )

    # --- mutations ---

    async def create_user(self, user_in: UserCreate) -> MutationResult:
        role = parse_role(user_in.role)

        uid = await self.identity.create_principal(user_in.email, user_in.password, user_in.name)
        await self.identity.set_claims(uid, {"role": role.value})

        now = utc_now_iso()
        record = DirectoryRecord.new(
            user_in.email, user_in.name, role,
            principal_id=uid, created_at=now, updated_at=now,
        )
        email_key = record.key
        user_doc = record.to_document()
        role_doc = record.to_document(include_login=False)

        result = MutationResult(email_key=email_key, uid=uid)
        for collection, key, doc in (
            (USERS_COLLECTION, email_key, user_doc),
            (USERS_COLLECTION, uid, user_doc),
            (role.collection, email_key, role_doc),
            (role.collection, uid, role_doc),
        ):
            await self.store.set(collection, key, doc)
            result.written.append(path(collection, key))
            logger.info(f"Created {path(collection, key)}")

        logger.info(f"User created: {user_in.email} (uid={uid}, role={role.value})")
        return result

    async def change_password(self, email: str, password: Optional[str]) -> MutationResult:
        if not password:
            raise InvalidRequest("Password is required")

        email_key, doc = await self._load(email)
        uid = doc.get("uid")
        if not uid:
            raise InvalidRequest("User UID not found")

        await self.identity.update_principal(uid, {"password": password})

        result = MutationResult(email_key=email_key, uid=uid)
        fields = {"updatedAt": utc_now_iso()}
        await self.store.update(USERS_COLLECTION, email_key, fields)
        result.written.append(path(USERS_COLLECTION, email_key))
        copy_key = self._principal_copy(email_key, doc)
        if copy_key:
            await self._update_if_present(USERS_COLLECTION, copy_key, fields, result)

        logger.info(f"Password updated for: {email}")
        return result

    async def set_disabled(self, email: str, disabled: Any) -> MutationResult:
        if not isinstance(disabled, bool):
            raise InvalidRequest("disabled must be boolean")

        email_key, doc = await self._load(email)
        uid = doc.get("uid")
        if uid:
            await self.identity.set_disabled(uid, disabled)

        result = MutationResult(email_key=email_key, uid=uid)
        fields = {"disabled": disabled, "updatedAt": utc_now_iso()}
        await self.store.update(USERS_COLLECTION, email_key, fields)
        result.written.append(path(USERS_COLLECTION, email_key))

        copy_key = self._principal_copy(email_key, doc)
        if copy_key:
            await self._update_if_present(USERS_COLLECTION, copy_key, fields, result)

        role = UserRole.parse(doc.get("role"))
        if role is not None:
            for key in filter(None, (email_key, copy_key)):
                await self._update_if_present(role.collection, key, fields, result)

        logger.info(f"User {'disabled' if disabled else 'enabled'}: {email}")
        return result

    async def delete_user(self, email: str) -> MutationResult:
        """
        Removes the principal and every `users` copy. The role collection
        entry is left in place.
        """
        email_key, doc = await self._load(email)
        uid = doc.get("uid")
        if uid:
            try:
                await self.identity.delete_principal(uid)
            except NotFound:
                logger.warning(f"Principal {uid} for {email} was already gone; continuing with document cleanup")

        result = MutationResult(email_key=email_key, uid=uid)
        await self.store.delete(USERS_COLLECTION, email_key)
        result.deleted.append(path(USERS_COLLECTION, email_key))
        copy_key = self._principal_copy(email_key, doc)
        if copy_key:
            await self.store.delete(USERS_COLLECTION, copy_key)
            result.deleted.append(path(USERS_COLLECTION, copy_key))

        logger.info(f"User deleted: {email}")
        return result

    async def record_login(self, email: str, uid: Optional[str] = None) -> LoginResult:
        email_key = derive_key(email)
        doc = await self.store.get(USERS_COLLECTION, email_key)

        if doc is None and uid:
            # Pre-migration records may only exist under the principal id
            uid_doc = await self.store.get(USERS_COLLECTION, uid)
            uid_email = stored_email(uid_doc) if uid_doc else None
            if uid_email and derive_key(uid_email) != email_key:
                logger.info(f"Login for {email} resolved through users/{uid} to {uid_email}")
                return await self.record_login(uid_email, uid)

        if doc is None:
            logger.warning(f"User document not found for login tracking: {email}")
            raise NotFound(f"User not found: {email}")

        now = utc_now_iso()
        history = [{"timestamp": now, "uid": uid}] + list(doc.get("loginHistory") or [])
        history = history[:self.login_history_limit]
        fields = {"lastLogin": now, "loginHistory": history, "updatedAt": now}

        result = MutationResult(email_key=email_key, uid=doc.get("uid"))
        await self.store.update(USERS_COLLECTION, email_key, fields)
        copy_key = self._principal_copy(email_key, doc)
        if copy_key:
            await self._update_if_present(USERS_COLLECTION, copy_key, fields, result)

        logger.info(f"Login recorded for: {email}")
        return LoginResult(last_login=now, history_length=len(history))

    async def send_password_reset(self, email: str) -> MutationResult:
        email_key, doc = await self._load(email)
        await self.identity.send_credential_reset(stored_email(doc) or email)
        return MutationResult(email_key=email_key, uid=doc.get("uid"))

    async def update_user(self, original_email: str, changes: UserUpdate) -> MutationResult:
        """
        Applies email/name/role changes. A new email moves the record to the
        new derived key; a new role moves its role-collection entry and swaps
        the role-specific payload for the new role's defaults.
        """
        old_key, old_doc = await self._load(original_email)
        uid = old_doc.get("uid")
        old_email = stored_email(old_doc) or original_email
        new_email = changes.email or old_email
        new_key = derive_key(new_email)

        old_role = UserRole.parse(old_doc.get("role"))
        new_role = parse_role(changes.role) if changes.role is not None else old_role
        role_changed = new_role is not None and new_role != old_role

        if new_key != old_key and await self.store.get(USERS_COLLECTION, new_key) is not None:
            raise AlreadyExists(f"Another user is already stored under {path(USERS_COLLECTION, new_key)}")

        # Identity provider first: a rejected email change leaves the store untouched
        if uid:
            principal_fields: Dict[str, Any] = {}
            if new_email != old_email:
                principal_fields["email"] = new_email
            if changes.name is not None and changes.name != old_doc.get("name"):
                principal_fields["display_name"] = changes.name
            if principal_fields:
                await self.identity.update_principal(uid, principal_fields)
            if role_changed:
                await self.identity.set_claims(uid, {"role": new_role.value})

        merged = dict(old_doc)
        merged["email"] = new_email
        if changes.name is not None:
            merged["name"] = changes.name
        if role_changed:
            merged = with_role(merged, new_role)
        merged["updatedAt"] = utc_now_iso()

        result = MutationResult(email_key=new_key, uid=uid)
        copy_key = self._principal_copy(old_key, old_doc)
        if copy_key == new_key:
            copy_key = None

        # users collection
        await self.store.set(USERS_COLLECTION, new_key, merged)
        result.written.append(path(USERS_COLLECTION, new_key))
        if new_key != old_key:
            await self.store.delete(USERS_COLLECTION, old_key)
            result.deleted.append(path(USERS_COLLECTION, old_key))
        if copy_key and await self.store.get(USERS_COLLECTION, copy_key) is not None:
            await self.store.set(USERS_COLLECTION, copy_key, merged)
            result.written.append(path(USERS_COLLECTION, copy_key))

        # role collections
        role_doc = without_login(merged)
        old_collection = old_role.collection if old_role else None
        new_collection = new_role.collection if new_role else None
        had_copy_entry = bool(
            copy_key and old_collection
            and await self.store.get(old_collection, copy_key) is not None
        )

        if old_collection and (old_collection != new_collection or new_key != old_key):
            await self.store.delete(old_collection, old_key)
            result.deleted.append(path(old_collection, old_key))
        if old_collection and old_collection != new_collection and had_copy_entry:
            await self.store.delete(old_collection, copy_key)
            result.deleted.append(path(old_collection, copy_key))

        if new_collection:
            # In-place rewrite keeps fields other services added to the role entry
            merge = new_collection == old_collection and new_key == old_key
            await self.store.set(new_collection, new_key, role_doc, merge=merge)
            result.written.append(path(new_collection, new_key))
            if had_copy_entry:
                await self.store.set(new_collection, copy_key, role_doc, merge=merge)
                result.written.append(path(new_collection, copy_key))

        logger.info(
            f"User updated: {old_email} -> {new_email} "
            f"(role {old_role.value if old_role else None} -> {new_role.value if new_role else None})"
        )
        return result
