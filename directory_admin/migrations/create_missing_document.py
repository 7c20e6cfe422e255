# directory_admin/migrations/create_missing_document.py
"""
Creates the `users` document for a principal that signed up but never got one.

Usage:
    python -m directory_admin.migrations.create_missing_document EMAIL [--name NAME] [--role ROLE]
"""
import argparse
import asyncio
import logging

from ..models.enums import VALID_ROLES
from ..models.user import MissingRecordRequest
from .common import reconciliation_service

logger = logging.getLogger(__name__)


async def create_missing_document(email: str, name: str, role: str):
    async with reconciliation_service() as service:
        result = await service.create_missing_record(MissingRecordRequest(email=email, name=name, role=role))
    logger.info(f"Created {', '.join(result.written)} for {email}")
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create a missing users document.")
    parser.add_argument("email")
    parser.add_argument("--name", default="Unknown")
    parser.add_argument("--role", default="student", help=f"One of: {', '.join(VALID_ROLES)}")
    return parser.parse_args(argv)


if __name__ == "__main__":
    logging.getLogger().setLevel(logging.INFO)
    args = parse_args()
    asyncio.run(create_missing_document(args.email, args.name, args.role))
