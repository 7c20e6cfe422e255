# directory_admin/migrations/cleanup_role_collections.py
"""
Removes role-collection entries whose role does not match their collection,
then adds every `users` record that is missing from its role collection.

Usage: python -m directory_admin.migrations.cleanup_role_collections
"""
import asyncio
import logging

from .common import reconciliation_service

logger = logging.getLogger(__name__)


async def cleanup_role_collections():
    logger.info("Starting role collection cleanup")
    async with reconciliation_service() as service:
        report = await service.reconcile_role_collections()

    for stats in report.pruned:
        logger.info(f"{stats.collection}: kept {stats.kept}, removed {stats.removed}")
    logger.info(f"Role collection cleanup finished: {report.total_removed} removed, {report.added} added")
    report.raise_for_errors("Role collection cleanup")
    return report


if __name__ == "__main__":
    logging.getLogger().setLevel(logging.INFO)
    asyncio.run(cleanup_role_collections())
