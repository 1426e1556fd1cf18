"""
Tenant Model — A real estate agency using the CRM.
Only the provider credentials matter to the verification service.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON

from kyc_compliance.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(128), nullable=False)

    provider_api_keys = Column(JSON, default=list)   # Tried in order; empty → service-wide keys

    created_at = Column(DateTime, default=datetime.utcnow)
