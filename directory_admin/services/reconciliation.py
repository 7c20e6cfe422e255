# directory_admin/services/reconciliation.py
"""
Scan-and-correct repair passes over the document store.

Every pass checks current state before each write or delete, so re-running a
pass converges. Per-item failures are logged and recorded on the report; the
pass carries on with the remaining items.
"""

import logging
from typing import Dict, List, Tuple

from ..core.exceptions import AlreadyExists
from ..db.store import Document, DocumentStore
from ..models.enums import ROLE_COLLECTIONS, USERS_COLLECTION, UserRole
from ..models.reports import (
    CollectionPruneStats,
    DeduplicationReport,
    DuplicateGroup,
    MigrationReport,
    MissingRecordResult,
    RoleReconciliationReport,
)
from ..models.user import DirectoryRecord, MissingRecordRequest, derive_key, parse_role, stored_email
from .directory import utc_now_iso

logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def deduplicate_by_email(self) -> DeduplicationReport:
        """
        Keeps one `users` document per email: the one at the derived key if
        present, otherwise the first one scanned. Documents without an email
        (or with a non-string one) are never touched.
        """
        report = DeduplicationReport()
        by_email: Dict[str, List[str]] = {}

        for key, doc in await self.store.scan(USERS_COLLECTION):
            report.scanned += 1
            email = stored_email(doc)
            if email is None:
                report.documents_without_email.append(key)
                continue
            by_email.setdefault(email, []).append(key)

        report.unique_emails = len(by_email)
        logger.info(
            f"Deduplication scan: {report.scanned} documents, {report.unique_emails} unique emails, "
            f"{len(report.documents_without_email)} without email"
        )

        for email, keys in by_email.items():
            if len(keys) < 2:
                continue

            derived = derive_key(email)
            kept_key = derived if derived in keys else keys[0]
            group = DuplicateGroup(
                email=email,
                total=len(keys),
                kept_key=kept_key,
                kept_derived_key=kept_key == derived,
            )
            if not group.kept_derived_key:
                logger.warning(f"No copy of {email} at {derived}; keeping first document {kept_key}")

            for key in keys:
                if key == kept_key:
                    continue
                try:
                    await self.store.delete(USERS_COLLECTION, key)
                except Exception as e:
                    logger.error(f"Failed to delete duplicate {USERS_COLLECTION}/{key} ({email}): {e}", exc_info=True)
                    report.add_error(USERS_COLLECTION, key, "delete", e)
                    continue
                group.deleted_keys.append(key)
                report.deleted_count += 1
                logger.info(f"Deleted duplicate {USERS_COLLECTION}/{key} for {email} (kept {kept_key})")

            report.groups.append(group)

        logger.info(
            f"Deduplication complete: {len(report.groups)} duplicate groups, "
            f"{report.deleted_count} documents deleted, {report.error_count} errors"
        )
        return report

    async def reconcile_role_collections(self) -> RoleReconciliationReport:
        """Prunes misplaced role-collection entries, then backfills missing ones from `users`."""
        report = RoleReconciliationReport()

        # Prune
        for role, collection in ROLE_COLLECTIONS.items():
            stats = CollectionPruneStats(collection=collection, role=role.value)
            for key, doc in await self.store.scan(collection):
                if doc.get("role") == role.value:
                    stats.kept += 1
                    continue
                try:
                    await self.store.delete(collection, key)
                except Exception as e:
                    logger.error(f"Failed to prune {collection}/{key}: {e}", exc_info=True)
                    report.add_error(collection, key, "delete", e)
                    continue
                stats.removed += 1
                logger.info(f"Pruned {collection}/{key} (role={doc.get('role')!r}, expected {role.value})")
            report.pruned.append(stats)
            logger.info(f"{collection}: kept {stats.kept}, removed {stats.removed}")

        # Backfill
        for key, doc in await self.store.scan(USERS_COLLECTION):
            role = UserRole.parse(doc.get("role"))
            if role is None:
                continue
            email = stored_email(doc)
            if email is None:
                logger.warning(f"Cannot backfill {USERS_COLLECTION}/{key}: no usable email ({doc.get('email')!r})")
                report.documents_without_email.append(key)
                continue

            email_key = derive_key(email)
            try:
                if await self.store.get(role.collection, email_key) is not None:
                    continue
                await self.store.set(role.collection, email_key, doc)
            except Exception as e:
                logger.error(f"Failed to backfill {role.collection}/{email_key} from users/{key}: {e}", exc_info=True)
                report.add_error(role.collection, email_key, "set", e)
                continue
            report.added += 1
            logger.info(f"Added {email} to {role.collection}/{email_key}")

        logger.info(
            f"Role collection reconciliation complete: {report.total_removed} removed, "
            f"{report.added} added, {report.error_count} errors"
        )
        return report

    async def create_missing_record(self, request: MissingRecordRequest) -> MissingRecordResult:
        """
        Writes a `users` document (and its role-collection copy) for a principal
        that has none. Never overwrites, and writes no uid-keyed copy.
        """
        role = parse_role(request.role)
        email_key = derive_key(request.email)

        if await self.store.get(USERS_COLLECTION, email_key) is not None:
            raise AlreadyExists(f"Document already exists: {USERS_COLLECTION}/{email_key}")

        now = utc_now_iso()
        record = DirectoryRecord.new(request.email, request.name, role, created_at=now, updated_at=now)

        result = MissingRecordResult(email_key=email_key, role=role.value)
        await self.store.set(USERS_COLLECTION, email_key, record.to_document())
        result.written.append(f"{USERS_COLLECTION}/{email_key}")
        await self.store.set(role.collection, email_key, record.to_document(include_login=False))
        result.written.append(f"{role.collection}/{email_key}")

        logger.info(f"Created missing record for {request.email} at {USERS_COLLECTION}/{email_key} ({role.value})")
        return result

    async def migrate_to_email_keys(self) -> MigrationReport:
        """
        Copies records stored under a non-derived key (typically the uid) to
        their derived key in `users` and in the role collection. Source
        documents stay in place; deduplicate_by_email removes them afterwards.
        """
        report = MigrationReport()
        pending: List[Tuple[str, str, Document]] = []

        for key, doc in await self.store.scan(USERS_COLLECTION):
            report.scanned += 1
            email = stored_email(doc)
            if email is None:
                report.documents_without_email.append(key)
                report.skipped += 1
                continue
            if key == derive_key(email):
                report.skipped += 1
                continue
            pending.append((key, email, doc))

        for key, email, doc in pending:
            email_key = derive_key(email)
            role = UserRole.parse(doc.get("role"))
            targets = [USERS_COLLECTION] + ([role.collection] if role else [])
            wrote = False
            for collection in targets:
                try:
                    if await self.store.get(collection, email_key) is not None:
                        continue
                    await self.store.set(collection, email_key, doc)
                except Exception as e:
                    logger.error(f"Failed to migrate {USERS_COLLECTION}/{key} to {collection}/{email_key}: {e}", exc_info=True)
                    report.add_error(collection, email_key, "set", e)
                    continue
                wrote = True
                logger.info(f"Migrated {USERS_COLLECTION}/{key} -> {collection}/{email_key}")

            if wrote:
                report.migrated += 1
            else:
                report.skipped += 1

        logger.info(
            f"Email key migration complete: {report.scanned} scanned, {report.migrated} migrated, "
            f"{report.skipped} skipped, {report.error_count} errors"
        )
        return report
