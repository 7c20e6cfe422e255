# tests/functional/services/test_reconciliation.py
from collections import Counter

import pytest

from directory_admin.core.exceptions import AlreadyExists, InvalidRole, PartialFailure
from directory_admin.models.enums import ROLE_COLLECTIONS, UserRole
from directory_admin.models.user import MissingRecordRequest, UserCreate, derive_key, stored_email
from directory_admin.services.directory import DirectoryService
from directory_admin.services.reconciliation import ReconciliationService

pytestmark = pytest.mark.asyncio


@pytest.fixture
def service(store) -> ReconciliationService:
    return ReconciliationService(store)


def user(email, role="teacher", **extra):
    return {"email": email, "name": email.split("@")[0], "role": role, **extra}


def assert_one_document_per_email(store):
    counts = Counter(filter(None, map(stored_email, store.data.get("users", {}).values())))
    assert all(count <= 1 for count in counts.values()), counts


def assert_role_collections_match_users(store):
    for role, collection in ROLE_COLLECTIONS.items():
        for doc in store.data.get(collection, {}).values():
            assert doc.get("role") == role.value
    for doc in store.data.get("users", {}).values():
        role = UserRole.parse(doc.get("role"))
        if role is not None and stored_email(doc):
            assert store.doc(role.collection, derive_key(doc["email"])) is not None


# --- Deduplicate-by-email ---

async def test_dedup_keeps_derived_key_document(service, store):
    store.put("users", "uid-1", user("a@x.com"))
    store.put("users", "a_x_com", user("a@x.com"))

    report = await service.deduplicate_by_email()

    assert store.keys("users") == ["a_x_com"]
    assert report.deleted_count == 1
    group = report.groups[0]
    assert group.email == "a@x.com"
    assert group.kept_key == "a_x_com"
    assert group.deleted_keys == ["uid-1"]
    assert group.kept_derived_key is True


async def test_dedup_keeps_first_when_no_derived_copy(service, store):
    store.put("users", "uid-1", user("a@x.com"))
    store.put("users", "uid-2", user("a@x.com"))

    report = await service.deduplicate_by_email()

    assert store.keys("users") == ["uid-1"]
    assert report.groups[0].kept_derived_key is False


async def test_dedup_leaves_documents_without_email(service, store):
    store.put("users", "anon-1", {"name": "x"})
    store.put("users", "anon-2", {"name": "x", "email": ""})
    store.put("users", "b_x_com", user("b@x.com"))

    report = await service.deduplicate_by_email()

    assert set(store.keys("users")) == {"anon-1", "anon-2", "b_x_com"}
    assert report.documents_without_email == ["anon-1", "anon-2"]
    assert report.groups == []
    assert report.scanned == 3
    assert report.unique_emails == 1


async def test_dedup_is_idempotent_and_restores_invariant(service, store, identity):
    directory = DirectoryService(store, identity)
    for email in ("a@x.com", "b@x.com", "c@x.com"):
        await directory.create_user(UserCreate(email=email, password="secret1", name="N", role="student"))
    store.put("users", "legacy-b", user("b@x.com", role="student"))

    first = await service.deduplicate_by_email()
    assert first.deleted_count == 4
    assert_one_document_per_email(store)

    second = await service.deduplicate_by_email()
    assert second.deleted_count == 0
    assert second.groups == []


async def test_dedup_continues_after_item_failure(service, store):
    store.put("users", "a_x_com", user("a@x.com"))
    store.put("users", "uid-a", user("a@x.com"))
    store.put("users", "b_x_com", user("b@x.com"))
    store.put("users", "uid-b", user("b@x.com"))
    store.fail_on.add(("delete", "users", "uid-a"))

    report = await service.deduplicate_by_email()

    assert report.error_count == 1
    assert report.errors[0].key == "uid-a"
    assert report.errors[0].operation == "delete"
    assert "uid-b" not in store.keys("users")
    assert report.deleted_count == 1
    with pytest.raises(PartialFailure) as exc_info:
        report.raise_for_errors("dedup")
    assert exc_info.value.to_dict()["errors"][0]["key"] == "uid-a"


# --- Reconcile-role-collections ---

async def test_reconcile_prunes_and_backfills(service, store):
    store.put("users", "t_x_com", user("t@x.com", "teacher"))
    store.put("users", "s_x_com", user("s@x.com", "student"))
    store.put("users", "odd_x_com", user("odd@x.com", "janitor"))
    # s@x.com used to be a teacher
    store.put("teachers", "s_x_com", user("s@x.com", "student"))
    store.put("teachers", "uid-t", user("t@x.com", "teacher"))

    report = await service.reconcile_role_collections()

    assert store.keys("teachers") == ["uid-t", "t_x_com"]
    assert store.keys("students") == ["s_x_com"]
    assert report.total_removed == 1
    assert report.added == 2
    teachers_stats = next(s for s in report.pruned if s.collection == "teachers")
    assert (teachers_stats.kept, teachers_stats.removed) == (1, 1)
    assert_role_collections_match_users(store)


async def test_reconcile_is_idempotent(service, store):
    store.put("users", "p_x_com", user("p@x.com", "parent"))
    store.put("users", "a_x_com", user("a@x.com", "assistant"))
    store.put("parents", "a_x_com", user("a@x.com", "assistant"))

    await service.reconcile_role_collections()
    second = await service.reconcile_role_collections()

    assert second.total_removed == 0
    assert second.added == 0
    assert_role_collections_match_users(store)


async def test_reconcile_records_backfill_failures(service, store):
    store.put("users", "p_x_com", user("p@x.com", "parent"))
    store.put("users", "q_x_com", user("q@x.com", "parent"))
    store.fail_on.add(("set", "parents", "p_x_com"))

    report = await service.reconcile_role_collections()

    assert report.added == 1
    assert [(e.collection, e.key) for e in report.errors] == [("parents", "p_x_com")]
    assert store.keys("parents") == ["q_x_com"]


# --- Manual repair ---

async def test_create_missing_record(service, store):
    result = await service.create_missing_record(MissingRecordRequest(email="m@x.com", name="Mo", role="parent"))

    assert result.email_key == "m_x_com"
    assert store.keys("users") == ["m_x_com"]
    assert store.keys("parents") == ["m_x_com"]
    doc = store.doc("users", "m_x_com")
    assert doc["childEmails"] == [] and doc["phone"] == ""
    assert "uid" not in doc


async def test_create_missing_record_defaults(service, store):
    await service.create_missing_record(MissingRecordRequest(email="d@x.com"))
    doc = store.doc("users", "d_x_com")
    assert doc["name"] == "Unknown"
    assert doc["role"] == "student"


async def test_create_missing_record_never_overwrites(service, store):
    store.put("users", "m_x_com", user("m@x.com"))
    with pytest.raises(AlreadyExists):
        await service.create_missing_record(MissingRecordRequest(email="m@x.com", role="student"))
    assert store.doc("users", "m_x_com")["role"] == "teacher"


async def test_create_missing_record_invalid_role(service, store):
    with pytest.raises(InvalidRole):
        await service.create_missing_record(MissingRecordRequest(email="m@x.com", role="admin"))
    assert store.data == {}


# --- Migrate to email keys ---

async def test_migrate_copies_uid_keyed_records(service, store):
    store.put("users", "uid-1", user("u@x.com", "student", uid="uid-1"))
    store.put("users", "v_x_com", user("v@x.com", "teacher"))
    store.put("users", "uid-no-email", {"role": "teacher"})

    report = await service.migrate_to_email_keys()

    assert report.scanned == 3
    assert report.migrated == 1
    assert report.skipped == 2
    assert store.doc("users", "u_x_com")["uid"] == "uid-1"
    assert store.doc("students", "u_x_com")["email"] == "u@x.com"
    assert store.doc("users", "uid-1") is not None


async def test_migrate_is_idempotent_and_never_overwrites(service, store):
    store.put("users", "uid-1", user("u@x.com", "student", name="Stale"))
    store.put("users", "u_x_com", user("u@x.com", "student", name="Current"))

    first = await service.migrate_to_email_keys()
    second = await service.migrate_to_email_keys()

    assert store.doc("users", "u_x_com")["name"] == "Current"
    assert store.doc("students", "u_x_com")["name"] == "Stale"
    assert first.migrated == 1
    assert second.migrated == 0


async def test_migrate_then_dedup_leaves_single_copy(service, store):
    store.put("users", "uid-1", user("u@x.com", "student"))

    await service.migrate_to_email_keys()
    await service.deduplicate_by_email()

    assert store.keys("users") == ["u_x_com"]



# --- Malformed emails ---

async def test_non_string_emails_are_skipped_by_every_pass(service, store):
    store.put("users", "legacy", {"email": 12345, "role": "student"})
    store.put("users", "legacy-2", {"email": 12345, "role": "student"})
    store.put("users", "uid-1", user("u@x.com", "student"))

    dedup = await service.deduplicate_by_email()
    migrated = await service.migrate_to_email_keys()
    reconciled = await service.reconcile_role_collections()

    assert dedup.documents_without_email == ["legacy", "legacy-2"]
    assert dedup.deleted_count == 0
    assert migrated.documents_without_email == ["legacy", "legacy-2"]
    assert migrated.migrated == 1
    assert reconciled.documents_without_email == ["legacy", "legacy-2"]
    assert reconciled.error_count == 0

    assert store.doc("users", "legacy") is not None
    assert store.doc("students", "u_x_com")["email"] == "u@x.com"
    assert_role_collections_match_users(store)
