"""
Evidence Asset Model — An uploaded identity image with a durable public URL.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from kyc_compliance.database import Base


class EvidenceAsset(Base):
    __tablename__ = "evidence_assets"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
    record_id = Column(Integer, ForeignKey("validation_records.id"), nullable=True, index=True)

    side = Column(String(16), nullable=False)      # frente | reverso | selfie
    storage_path = Column(String(512), nullable=False)
    public_url = Column(String(512), nullable=False)
    size_bytes = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)
