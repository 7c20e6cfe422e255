# directory_admin/migrations/migrate_email_keys.py
"""
Copies records stored under their uid to the email-derived key, in `users`
and in the role collection. Source documents are left in place; run
remove_duplicates afterwards to drop them.

Usage: python -m directory_admin.migrations.migrate_email_keys
"""
import asyncio
import logging

from .common import reconciliation_service

logger = logging.getLogger(__name__)


async def migrate_email_keys():
    logger.info("Starting email key migration")
    async with reconciliation_service() as service:
        report = await service.migrate_to_email_keys()

    logger.info(
        f"Email key migration finished: {report.scanned} scanned, {report.migrated} migrated, "
        f"{report.skipped} skipped"
    )
    report.raise_for_errors("Email key migration")
    return report


if __name__ == "__main__":
    logging.getLogger().setLevel(logging.INFO)
    asyncio.run(migrate_email_keys())
