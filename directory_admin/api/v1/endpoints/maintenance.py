# directory_admin/api/v1/endpoints/maintenance.py
"""
Operator-triggered repair passes. Each pass is idempotent and safe to re-run.

A pass that finishes with per-item errors answers 207 Multi-Status with the
full report, so the operator sees what was applied and what failed.
"""

import logging
from fastapi import APIRouter, status, Depends
from fastapi.responses import JSONResponse

from ....models.user import MissingRecordRequest
from ....models.reports import (
    DeduplicationReport,
    RoleReconciliationReport,
    MissingRecordResult,
    MigrationReport,
    PassReport,
)
from ....services.reconciliation import ReconciliationService
from ....core.security import require_admin
from ...deps import get_reconciliation_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/maintenance",
    tags=["Maintenance"],
    dependencies=[Depends(require_admin)],
)

PARTIAL_RESPONSE = {207: {"description": "Pass completed with per-item errors; body carries the report"}}


def report_response(report: PassReport):
    if report.errors:
        logger.warning(f"{type(report).__name__} finished with {report.error_count} error(s)")
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=report.model_dump(mode="json", by_alias=True),
        )
    return report


@router.post(
    "/deduplicate",
    response_model=DeduplicationReport,
    summary="Deduplicate users by email (Admin Only)",
    description=(
        "Keeps one users document per email, preferring the one at the email-derived key, "
        "and deletes the rest. Documents without an email are left untouched."
    ),
    responses=PARTIAL_RESPONSE,
)
async def deduplicate_users(
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return report_response(await service.deduplicate_by_email())


@router.post(
    "/role-collections",
    response_model=RoleReconciliationReport,
    summary="Reconcile role collections (Admin Only)",
    description=(
        "Removes role-collection entries whose role does not match the collection, then "
        "adds every users record missing from its role collection."
    ),
    responses=PARTIAL_RESPONSE,
)
async def reconcile_role_collections(
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return report_response(await service.reconcile_role_collections())


@router.post(
    "/missing-records",
    response_model=MissingRecordResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create a missing users document (Admin Only)",
    description="For a principal with no users document. Never overwrites an existing document.",
    responses={
        400: {"description": "Invalid role"},
        409: {"description": "A users document already exists at the derived key"},
    },
)
async def create_missing_record(
    request: MissingRecordRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return await service.create_missing_record(request)


@router.post(
    "/email-keys",
    response_model=MigrationReport,
    summary="Migrate records to email-derived keys (Admin Only)",
    description=(
        "Copies records stored under another key (usually the uid) to the email-derived key "
        "in users and the role collection. Source documents are kept; run deduplicate afterwards."
    ),
    responses=PARTIAL_RESPONSE,
)
async def migrate_email_keys(
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return report_response(await service.migrate_to_email_keys())
