"""
KYC Routes — Staff-operated credential validation and watchlist screening.
"""
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from kyc_compliance.database import get_db
from kyc_compliance.routes.deps import build_orchestrator, get_provider_client, get_tenant, load_subject
from kyc_compliance.schemas.schemas import (
    ValidationRunRequest, WatchlistCheckRequest, ResetRequest, ValidationStatusResponse, ValidationRecordEntry,
)
from kyc_compliance.services.audit_service import ValidationStore
from kyc_compliance.services.errors import InputIncomplete, RunInProgress, ResetNotConfirmed
from kyc_compliance.services.provider_gateway import TenantContext
from kyc_compliance.services.validation_orchestrator import ValidationTrigger

router = APIRouter(prefix="/api/kyc", tags=["KYC"])


@router.get("/{subject_id}", response_model=ValidationStatusResponse)
def mount_validation(
    subject_id: int,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
    client: Optional[httpx.AsyncClient] = Depends(get_provider_client),
):
    """Current validation state, restored from the audit trail."""
    subject = load_subject(db, subject_id, tenant)
    return build_orchestrator(db, subject, tenant, client).mount().to_dict()


@router.post("/{subject_id}/validate", response_model=ValidationStatusResponse)
async def run_validation(
    subject_id: int,
    payload: ValidationRunRequest,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
    client: Optional[httpx.AsyncClient] = Depends(get_provider_client),
):
    """Extract, validate against the electoral registry and screen watchlists."""
    subject = load_subject(db, subject_id, tenant)
    orchestrator = build_orchestrator(db, subject, tenant, client)
    orchestrator.mount()
    try:
        snapshot = await orchestrator.run(ValidationTrigger(**payload.model_dump()))
    except RunInProgress as e:
        raise HTTPException(status_code=409, detail=e.message)
    return snapshot.to_dict()


@router.post("/{subject_id}/watchlist", response_model=ValidationStatusResponse)
async def check_watchlist(
    subject_id: int,
    payload: WatchlistCheckRequest,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
    client: Optional[httpx.AsyncClient] = Depends(get_provider_client),
):
    """Standalone PLD/AML screening by name."""
    subject = load_subject(db, subject_id, tenant)
    orchestrator = build_orchestrator(db, subject, tenant, client)
    orchestrator.mount()
    try:
        snapshot = await orchestrator.check_watchlist(payload.full_name)
    except InputIncomplete as e:
        raise HTTPException(status_code=422, detail=e.message)
    return snapshot.to_dict()


@router.post("/{subject_id}/reset", response_model=ValidationStatusResponse)
def reset_validation(
    subject_id: int,
    payload: ResetRequest,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
    client: Optional[httpx.AsyncClient] = Depends(get_provider_client),
):
    """Destructive reset of one check kind. Needs both confirmations."""
    subject = load_subject(db, subject_id, tenant)
    orchestrator = build_orchestrator(db, subject, tenant, client)
    try:
        snapshot = orchestrator.reset(payload.kind, payload.confirm, payload.confirm_kind)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ResetNotConfirmed as e:
        raise HTTPException(status_code=400, detail=e.message)
    except RunInProgress as e:
        raise HTTPException(status_code=409, detail=e.message)
    return snapshot.to_dict()


@router.get("/{subject_id}/records", response_model=list[ValidationRecordEntry])
def list_records(
    subject_id: int,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Audit trail for a subject, newest first."""
    subject = load_subject(db, subject_id, tenant)
    return ValidationStore(db).list_records(subject.id, subject.subject_type)
