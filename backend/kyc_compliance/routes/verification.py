"""
Public Verification Routes — Anonymous, token-authenticated self-service link.
"""
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from kyc_compliance.config import get_settings
from kyc_compliance.database import get_db
from kyc_compliance.routes.deps import build_gateway, get_provider_client
from kyc_compliance.schemas.schemas import CaptureRequest, PublicSessionResponse
from kyc_compliance.services.errors import InvalidTransition
from kyc_compliance.services.evidence_store import EvidenceStore
from kyc_compliance.services.self_service import PublicVerificationSession, get_session, open_session
from kyc_compliance.utils.rate_limiter import rate_limit

settings = get_settings()
router = APIRouter(prefix="/api/verify", tags=["Public Verification"])

_throttle = rate_limit(
    requests=settings.PUBLIC_RATE_LIMIT_REQUESTS,
    window=settings.PUBLIC_RATE_LIMIT_WINDOW,
    scope="verify",
)


def _live_session(token: str) -> PublicVerificationSession:
    session = get_session(token)
    if session is None:
        raise HTTPException(status_code=404, detail="Verification session not started")
    return session


@router.get("/{token}", response_model=PublicSessionResponse)
def load_session(
    token: str,
    db: Session = Depends(get_db),
    _limit: bool = Depends(_throttle),
):
    """Open (or reopen) the self-service flow for a link."""
    return open_session(db, token).view()


@router.post("/{token}/capture", response_model=PublicSessionResponse)
def capture(
    token: str,
    payload: CaptureRequest,
    _limit: bool = Depends(_throttle),
):
    """Store the image for the current step and advance."""
    session = _live_session(token)
    try:
        session.capture(payload.image, payload.step)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
    return session.view()


@router.post("/{token}/restart", response_model=PublicSessionResponse)
def restart(token: str, _limit: bool = Depends(_throttle)):
    """Start the captures over from the selfie."""
    session = _live_session(token)
    try:
        session.restart()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
    return session.view()


@router.post("/{token}/submit", response_model=PublicSessionResponse)
async def submit(
    token: str,
    db: Session = Depends(get_db),
    client: Optional[httpx.AsyncClient] = Depends(get_provider_client),
    _limit: bool = Depends(_throttle),
):
    """Run the biometric match with the three captured images."""
    session = _live_session(token)
    try:
        await session.submit(db, build_gateway(db, client), EvidenceStore(db))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
    return session.view()
