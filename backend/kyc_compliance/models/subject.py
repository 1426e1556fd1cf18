"""
Subject Model — A property owner or buyer under identity verification.
Holds the raw KYC fields plus the verification flags set by the orchestrators.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean, Float, JSON

from kyc_compliance.database import Base


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)

    subject_type = Column(String(16), nullable=False)   # owner | buyer
    is_legal_entity = Column(Boolean, default=False)

    # Identity Fields
    full_name = Column(String(256))
    curp = Column(String(18))
    rfc = Column(String(13))
    birth_date = Column(String(10))                     # YYYY-MM-DD
    address = Column(String(512))
    phone = Column(String(32))
    email = Column(String(128))

    # Voter Credential (INE)
    clave_de_elector = Column(String(18))
    numero_de_emision = Column(String(2))
    ocr_number = Column(String(13))
    cic = Column(String(9))
    identificador_ciudadano = Column(String(9))
    credential_model = Column(String(1))                # A..H
    issue_year = Column(Integer)

    # Document Validation (issuing-authority registry)
    document_validated = Column(Boolean, default=False)
    document_record_id = Column(Integer, nullable=True)

    # Watchlist Screening (PLD/AML)
    watchlist_validated = Column(Boolean, default=False)
    watchlist_record_id = Column(Integer, nullable=True)
    watchlist_risk = Column(Boolean, default=False)

    # Biometric Match (selfie vs credential)
    biometric_status = Column(String(16), default="pending")   # pending | verified | rejected
    biometric_score = Column(Float, nullable=True)
    biometric_record_id = Column(Integer, nullable=True)

    # Staff resets: kind -> ISO timestamp; success records older than this are ignored
    check_resets = Column(JSON, default=dict)

    # Public self-service link
    verification_token = Column(String(64), unique=True, index=True, nullable=True)
    verification_token_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
