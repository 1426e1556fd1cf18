"""
Subject Service — Registration, tenant lookup and single-use verification links.
"""
import logging
import secrets
from typing import Optional, Dict

from sqlalchemy.orm import Session

from kyc_compliance.models.subject import Subject
from kyc_compliance.models.tenant import Tenant
from kyc_compliance.services.credential_parser import normalize_date
from kyc_compliance.services.provider_gateway import TenantContext
from kyc_compliance.utils.validators import validate_clave_elector, validate_curp

logger = logging.getLogger(__name__)

SUBJECT_TYPES = ("owner", "buyer")


class SubjectService:
    """Thin persistence helpers around Subject and Tenant."""

    @staticmethod
    def tenant_context(db: Session, tenant_id: str) -> Optional[TenantContext]:
        """Resolve a tenant id into the credentials the gateway needs."""
        tenant = db.get(Tenant, tenant_id)
        if tenant is None:
            return None
        return TenantContext(tenant_id=tenant.id, api_keys=tuple(tenant.provider_api_keys or ()))

    @staticmethod
    def register(db: Session, tenant_id: str, subject_type: str, fields: Dict) -> Subject:
        """Create a Subject from the contact form fields."""
        if subject_type not in SUBJECT_TYPES:
            raise ValueError(f"subject_type must be one of {SUBJECT_TYPES}")

        data = {k: v for k, v in fields.items() if v not in (None, "")}
        if "birth_date" in data:
            data["birth_date"] = normalize_date(data["birth_date"])
        for key in ("curp", "rfc", "clave_de_elector", "credential_model"):
            if key in data:
                data[key] = str(data[key]).strip().upper()
        if "clave_de_elector" in data and not validate_clave_elector(data["clave_de_elector"]):
            raise ValueError("Invalid elector key format")
        if "curp" in data and not validate_curp(data["curp"]):
            raise ValueError("Invalid CURP format")

        subject = Subject(tenant_id=tenant_id, subject_type=subject_type, **data)
        db.add(subject)
        db.commit()
        db.refresh(subject)
        logger.info(f"Registered {subject_type} subject {subject.id} for tenant {tenant_id}")
        return subject

    @staticmethod
    def get_for_tenant(db: Session, subject_id: int, tenant_id: str) -> Optional[Subject]:
        return (
            db.query(Subject)
            .filter(Subject.id == subject_id, Subject.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def issue_verification_token(db: Session, subject: Subject) -> str:
        """Replace any previous link with a fresh single-use token."""
        subject.verification_token = secrets.token_urlsafe(24)
        subject.verification_token_used_at = None
        db.commit()
        return subject.verification_token

    @staticmethod
    def resolve_by_token(db: Session, token: str) -> Optional[Subject]:
        if not token:
            return None
        return db.query(Subject).filter(Subject.verification_token == token).first()
