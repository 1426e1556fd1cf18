"""
Audit Service — Append-mostly store of immutable validation records.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kyc_compliance.models.evidence import EvidenceAsset
from kyc_compliance.models.validation import ValidationRecord
from kyc_compliance.utils.hashing import generate_hash

logger = logging.getLogger(__name__)

KIND_DOCUMENT = "document"
KIND_WATCHLIST = "watchlist"
KIND_BIOMETRIC = "biometric"
CHECK_KINDS = (KIND_DOCUMENT, KIND_WATCHLIST, KIND_BIOMETRIC)


@dataclass(frozen=True)
class SubjectRef:
    """Who an audit row belongs to."""

    subject_id: int
    subject_type: str
    tenant_id: str


class ValidationStore:
    """Writes, lists and (on explicit reset) deletes validation records."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        subject: SubjectRef,
        kind: str,
        outcome: str,
        api_response: Optional[Dict] = None,
        evidence: Optional[Dict] = None,
    ) -> ValidationRecord:
        """Write one audit row.

        Args:
            subject: Subject the check was run for.
            kind: document | watchlist | biometric.
            outcome: success | error.
            api_response: Raw provider response.
            evidence: side -> public URL of the stored images.

        Returns:
            The created ValidationRecord.
        """
        response = api_response or {}
        entry = ValidationRecord(
            tenant_id=subject.tenant_id,
            subject_id=subject.subject_id,
            subject_type=subject.subject_type,
            kind=kind,
            outcome=outcome,
            provider_transaction_id=_transaction_id(response),
            api_response=response,
            response_hash=generate_hash(response),
            evidence=evidence or {},
            created_at=datetime.utcnow(),
        )

        try:
            self.db.add(entry)
            self.db.flush()
            if evidence:
                self._link_evidence(subject.subject_id, entry.id, evidence)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(entry)
        return entry

    def list_records(self, subject_id: int, subject_type: Optional[str] = None) -> List[ValidationRecord]:
        """All records for a subject, newest first."""
        query = self.db.query(ValidationRecord).filter(ValidationRecord.subject_id == subject_id)
        if subject_type:
            query = query.filter(ValidationRecord.subject_type == subject_type)
        return query.order_by(ValidationRecord.created_at.desc(), ValidationRecord.id.desc()).all()

    def latest_success(self, subject_id: int, kind: str) -> Optional[ValidationRecord]:
        """The authoritative record of a kind, if any."""
        return (
            self.db.query(ValidationRecord)
            .filter(
                ValidationRecord.subject_id == subject_id,
                ValidationRecord.kind == kind,
                ValidationRecord.outcome == "success",
            )
            .order_by(ValidationRecord.created_at.desc(), ValidationRecord.id.desc())
            .first()
        )

    def delete_record(self, record_id: int) -> bool:
        """Remove a record as part of an explicit staff reset.

        Returns:
            False if the row did not exist.
        """
        entry = self.db.get(ValidationRecord, record_id)
        if entry is None:
            return False
        try:
            (
                self.db.query(EvidenceAsset)
                .filter(EvidenceAsset.record_id == record_id)
                .update({EvidenceAsset.record_id: None}, synchronize_session=False)
            )
            self.db.delete(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info(f"Deleted {entry.kind} record {record_id} for subject {entry.subject_id}")
        return True

    def _link_evidence(self, subject_id: int, record_id: int, evidence: Dict):
        urls = [url for url in evidence.values() if url]
        if not urls:
            return
        (
            self.db.query(EvidenceAsset)
            .filter(
                EvidenceAsset.subject_id == subject_id,
                EvidenceAsset.public_url.in_(urls),
                EvidenceAsset.record_id.is_(None),
            )
            .update({EvidenceAsset.record_id: record_id}, synchronize_session=False)
        )


def _transaction_id(response: Dict) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    value = response.get("uuid") or response.get("transaction_id")
    return str(value) if value else None
