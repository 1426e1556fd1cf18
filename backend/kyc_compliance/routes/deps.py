"""
Shared route dependencies — tenant resolution and service wiring.
"""
from typing import Optional

import httpx
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from kyc_compliance.database import get_db
from kyc_compliance.models.subject import Subject
from kyc_compliance.services.audit_service import ValidationStore
from kyc_compliance.services.evidence_store import EvidenceStore
from kyc_compliance.services.provider_gateway import ProviderGateway, TenantContext
from kyc_compliance.services.subject_service import SubjectService
from kyc_compliance.services.validation_orchestrator import ValidationOrchestrator


def get_provider_client() -> Optional[httpx.AsyncClient]:
    """HTTP client for the provider; None lets the gateway open one per call."""
    return None


def get_tenant(
    tenant_id: str = Header(..., alias="tenant-id"),
    db: Session = Depends(get_db),
) -> TenantContext:
    tenant = SubjectService.tenant_context(db, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


def load_subject(db: Session, subject_id: int, tenant: TenantContext) -> Subject:
    subject = SubjectService.get_for_tenant(db, subject_id, tenant.tenant_id)
    if not subject:
        raise HTTPException(status_code=404, detail="Subject not found")
    return subject


def build_gateway(db: Session, client: Optional[httpx.AsyncClient]) -> ProviderGateway:
    return ProviderGateway(store=ValidationStore(db), client=client)


def build_orchestrator(
    db: Session, subject: Subject, tenant: TenantContext, client: Optional[httpx.AsyncClient]
) -> ValidationOrchestrator:
    gateway = build_gateway(db, client)
    return ValidationOrchestrator(db, subject, tenant, gateway, gateway.store, EvidenceStore(db))
