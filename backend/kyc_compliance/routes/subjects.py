"""
Subject Routes — Contact registration and verification links.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from kyc_compliance.database import get_db
from kyc_compliance.routes.deps import get_tenant, load_subject
from kyc_compliance.schemas.schemas import SubjectCreateRequest, SubjectResponse, VerificationLinkResponse
from kyc_compliance.services.provider_gateway import TenantContext
from kyc_compliance.services.subject_service import SubjectService

router = APIRouter(prefix="/api/subjects", tags=["Subjects"])


@router.post("", response_model=SubjectResponse)
def register_subject(
    payload: SubjectCreateRequest,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Register an owner or buyer for verification."""
    fields = payload.model_dump(exclude={"subject_type"})
    try:
        subject = SubjectService.register(db, tenant.tenant_id, payload.subject_type, fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return subject


@router.get("/{subject_id}", response_model=SubjectResponse)
def get_subject(
    subject_id: int,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Subject with its current verification flags."""
    return load_subject(db, subject_id, tenant)


@router.post("/{subject_id}/verification-link", response_model=VerificationLinkResponse)
def issue_verification_link(
    subject_id: int,
    tenant: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Issue a single-use token for the public self-service flow."""
    subject = load_subject(db, subject_id, tenant)
    token = SubjectService.issue_verification_token(db, subject)
    return VerificationLinkResponse(subject_id=subject.id, token=token, path=f"/verificar/{token}")
