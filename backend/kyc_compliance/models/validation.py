"""
Validation Record Model — Immutable audit row for each provider check.
The newest successful row of a kind is authoritative; older rows are kept.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from kyc_compliance.database import Base


class ValidationRecord(Base):
    __tablename__ = "validation_records"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
    subject_type = Column(String(16), nullable=False)

    kind = Column(String(16), nullable=False)      # document | watchlist | biometric
    outcome = Column(String(16), nullable=False)   # success | error

    provider_transaction_id = Column(String(64))
    api_response = Column(JSON, default=dict)
    response_hash = Column(String(64))             # SHA-256 of api_response
    evidence = Column(JSON, default=dict)          # side -> public URL

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
