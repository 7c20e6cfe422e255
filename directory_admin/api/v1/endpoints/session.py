# directory_admin/api/v1/endpoints/session.py

import logging
from typing import Dict, Any
from fastapi import APIRouter, status, Depends
from pydantic import BaseModel

from ....core.config import settings
from ....core.exceptions import DirectoryError
from ....core.security import get_current_user_payload, evaluate_sign_in, SignInOutcome
from ....services.directory import DirectoryService
from ...deps import get_directory_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/session",
    tags=["Session"],
)


class SignInRequest(BaseModel):
    suppress_unauthorized_notice: bool = False


@router.post(
    "/sign-in",
    response_model=SignInOutcome,
    status_code=status.HTTP_200_OK,
    summary="Evaluate a console sign-in",
    description=(
        "Tells the console whether the signed-in principal may use it and whether to show the "
        "unauthorized notice. Set suppress_unauthorized_notice while a create-user workflow is "
        "signing in the principal it just created. Authorized sign-ins are recorded as logins."
    ),
)
async def sign_in(
    body: SignInRequest,
    payload: Dict[str, Any] = Depends(get_current_user_payload),
    service: DirectoryService = Depends(get_directory_service),
):
    outcome = evaluate_sign_in(payload, settings.ADMIN_EMAILS, body.suppress_unauthorized_notice)

    if outcome.authorized:
        try:
            await service.record_login(outcome.email, payload.get("sub"))
        except DirectoryError as e:
            # Login tracking never blocks sign-in
            logger.warning(f"Could not record login for {outcome.email}: {e.kind}: {e.message}")
    elif outcome.notify_unauthorized:
        logger.warning(f"Unauthorized console sign-in by {outcome.email or payload.get('sub')}")
    else:
        logger.info(f"Unauthorized notice suppressed for {outcome.email}")

    return outcome
