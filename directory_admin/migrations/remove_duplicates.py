# directory_admin/migrations/remove_duplicates.py
"""
Deletes duplicate `users` documents, keeping one per email (the one stored
at the email-derived key when there is one).

Usage: python -m directory_admin.migrations.remove_duplicates
"""
import asyncio
import logging

from .common import reconciliation_service

logger = logging.getLogger(__name__)


async def remove_duplicates():
    logger.info("Starting duplicate removal")
    async with reconciliation_service() as service:
        report = await service.deduplicate_by_email()

    for group in report.groups:
        logger.info(f"{group.email}: kept {group.kept_key}, deleted {group.deleted_keys}")
    logger.info(
        f"Duplicate removal finished: {report.scanned} scanned, {report.unique_emails} unique emails, "
        f"{report.deleted_count} deleted"
    )
    if report.documents_without_email:
        logger.warning(f"Left untouched (no email): {report.documents_without_email}")
    report.raise_for_errors("Duplicate removal")
    return report


if __name__ == "__main__":
    logging.getLogger().setLevel(logging.INFO)
    asyncio.run(remove_duplicates())
