"""
Public Self-Service Session — Token-authenticated biometric capture flow.

    loading → selfie → ine_front → ine_back → confirmation → processing → success | error

The subject opens a single-use link, captures a selfie and both sides of the
credential, and submits once. There is no retry from `error`: the subject
reopens the link and starts over. Sessions are kept in-process, keyed by token.
"""
import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Dict

from sqlalchemy.orm import Session

from kyc_compliance.services.audit_service import SubjectRef
from kyc_compliance.services.credential_parser import strip_data_uri
from kyc_compliance.services.errors import InvalidTransition
from kyc_compliance.services.evidence_store import EvidenceStore
from kyc_compliance.services.provider_gateway import (
    ProviderGateway, TenantContext, ACTION_BIOMETRIC_MATCH, biometric_result,
)
from kyc_compliance.services.subject_service import SubjectService

logger = logging.getLogger(__name__)


class SessionStep(str, Enum):
    LOADING = "loading"
    SELFIE = "selfie"
    INE_FRONT = "ine_front"
    INE_BACK = "ine_back"
    CONFIRMATION = "confirmation"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    EXPIRED = "expired"


# capture step -> (image slot, next step)
CAPTURE_STEPS = {
    SessionStep.SELFIE: ("selfie", SessionStep.INE_FRONT),
    SessionStep.INE_FRONT: ("frente", SessionStep.INE_BACK),
    SessionStep.INE_BACK: ("reverso", SessionStep.CONFIRMATION),
}

_SESSIONS: Dict[str, "PublicVerificationSession"] = {}


class PublicVerificationSession:
    """One subject's walk through the self-service link."""

    def __init__(self, token: str):
        self.token = token
        self.step = SessionStep.LOADING
        self.client_name = ""
        self.error_message = ""
        self.score: Optional[float] = None
        self.images: Dict[str, str] = {}

    def load(self, db: Session) -> SessionStep:
        """Resolve the token to a subject. Failure is terminal."""
        subject = SubjectService.resolve_by_token(db, self.token)
        if subject is None:
            self._fail("The link is not valid or has expired.")
            return self.step

        self.client_name = subject.full_name or ""
        if subject.verification_token_used_at or subject.biometric_status == "verified":
            self.step = SessionStep.EXPIRED
        else:
            self.step = SessionStep.SELFIE
        return self.step

    def capture(self, image: str, step: Optional[str] = None) -> SessionStep:
        """Store the image for the current capture step and advance."""
        if self.step not in CAPTURE_STEPS:
            raise InvalidTransition(f"Nothing to capture in step '{self.step.value}'.")
        if step is not None and step != self.step.value:
            raise InvalidTransition(f"Expected a '{self.step.value}' capture, got '{step}'.")

        slot, next_step = CAPTURE_STEPS[self.step]
        self.images[slot] = image
        self.step = next_step
        return self.step

    def restart(self) -> SessionStep:
        """Discard every capture and go back to the selfie."""
        if self.step != SessionStep.CONFIRMATION:
            raise InvalidTransition("The flow can only be restarted from confirmation.")
        self.images = {}
        self.step = SessionStep.SELFIE
        return self.step

    async def submit(self, db: Session, gateway: ProviderGateway, evidence: EvidenceStore) -> SessionStep:
        """Send the selfie and both credential sides in a single biometric match."""
        if self.step != SessionStep.CONFIRMATION:
            raise InvalidTransition("Captures must be confirmed before submitting.")
        self.step = SessionStep.PROCESSING

        try:
            subject = SubjectService.resolve_by_token(db, self.token)
            if subject is None:
                self._fail("The link is not valid or has expired.")
                return self.step

            tenant = SubjectService.tenant_context(db, subject.tenant_id) or TenantContext(subject.tenant_id)
            payload = {
                "imagen_rostro": strip_data_uri(self.images.get("selfie")),
                "credencial_frente": strip_data_uri(self.images.get("frente")),
                "credencial_reverso": strip_data_uri(self.images.get("reverso")),
            }
            result = await gateway.execute(
                ACTION_BIOMETRIC_MATCH, payload, tenant,
                subject=SubjectRef(subject.id, subject.subject_type, subject.tenant_id),
                evidence_hook=self._evidence_hook(evidence, subject.id),
            )

            matched, score = biometric_result(result.data or {}) if result.ok else (False, None)
            self.score = score

            # Persisted by token: the session has no identity of its own.
            subject = SubjectService.resolve_by_token(db, self.token)
            if result.succeeded and matched:
                subject.biometric_status = "verified"
                subject.biometric_score = score
                subject.biometric_record_id = result.record_id
                subject.verification_token_used_at = datetime.utcnow()
                self.step = SessionStep.SUCCESS
                logger.info(f"Subject {subject.id}: biometric match confirmed (score {score})")
            elif result.ok:
                if subject.biometric_status != "verified":
                    subject.biometric_status = "rejected"
                    subject.biometric_score = score
                    subject.biometric_record_id = result.record_id
                similarity = f" Similarity: {score * 100:.1f}%" if score is not None else ""
                self._fail(f"The face does not match the credential.{similarity}")
            else:
                self._fail(f"Verification could not be completed: {result.message}")
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception(f"Self-service submission failed for token {self.token[:6]}...")
            self._fail(f"Error: {e}")

        return self.step

    def _evidence_hook(self, evidence: EvidenceStore, subject_id: int):
        async def upload(_response):
            slots = [slot for slot in ("selfie", "frente", "reverso") if self.images.get(slot)]
            urls = await asyncio.gather(*(evidence.upload(self.images[slot], subject_id, slot) for slot in slots))
            return dict(zip(slots, urls))
        return upload

    def _fail(self, message: str):
        self.step = SessionStep.ERROR
        self.error_message = message

    def view(self) -> Dict:
        return {
            "step": self.step.value,
            "client_name": self.client_name,
            "message": self.error_message,
            "score": self.score,
            "captured": sorted(self.images),
        }


def open_session(db: Session, token: str) -> PublicVerificationSession:
    """Return the live session for a token, or load a fresh one.

    A session that ended in error is replaced: the subject starts over.
    """
    session = _SESSIONS.get(token)
    if session is not None and session.step not in (SessionStep.ERROR, SessionStep.SUCCESS):
        return session

    session = PublicVerificationSession(token)
    session.load(db)
    if session.step == SessionStep.ERROR:
        _SESSIONS.pop(token, None)
    else:
        _SESSIONS[token] = session
    return session


def get_session(token: str) -> Optional[PublicVerificationSession]:
    return _SESSIONS.get(token)


def reset_session_registry():
    _SESSIONS.clear()
