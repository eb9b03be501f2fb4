"""
MeshGate — Registration Route
=============================

POST /registration runs the registration saga and returns its summary.
`mode` overrides REGISTRATION_MODE for one call; `welcome=false` skips the
welcome notification.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from meshgate.gateway.dependencies import get_orchestrator
from meshgate.gateway.registration import RegistrationOrchestrator
from meshgate.schemas.common import ErrorResponse
from meshgate.schemas.registration import RegistrationMode, RegistrationSummary
from meshgate.schemas.user import CreateUserRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/registration", tags=["Registration"])


@router.post(
    "",
    response_model=RegistrationSummary,
    status_code=201,
    responses={500: {"description": "User creation or welcome delivery failed", "model": ErrorResponse}},
    summary="Register a user and send the welcome notification",
)
async def register(
    body: CreateUserRequest,
    mode: Optional[RegistrationMode] = Query(default=None),
    welcome: bool = Query(default=True),
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
) -> RegistrationSummary:
    logger.info("Received registration request for: %s", body.email)
    return await orchestrator.register(body, mode=mode, send_welcome=welcome)
