"""
Validation Orchestrator — Staff-facing state machine for credential validation.

    idle → scanning → validating → success | error

`error` can be retried; `success` holds until an explicit reset. Extracted
fields travel in a WorkingRecord and reach the Subject only at checkpoints
(after scanning, after validation). Existing success records short-circuit the
flow so reopening a subject never spends provider quota twice.
"""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kyc_compliance.config import get_settings
from kyc_compliance.models.subject import Subject
from kyc_compliance.services.audit_service import (
    ValidationStore, SubjectRef, KIND_DOCUMENT, KIND_WATCHLIST, KIND_BIOMETRIC, CHECK_KINDS,
)
from kyc_compliance.services.credential_parser import (
    OCR_MODELS, CredentialFields, build_document_payload, build_watchlist_payload, normalize_date,
    normalize_name, parse_mrz, split_full_name, strip_data_uri,
)
from kyc_compliance.services.errors import (
    InputIncomplete, ProviderRejected, RunInProgress, ResetNotConfirmed,
)
from kyc_compliance.services.evidence_store import EvidenceStore
from kyc_compliance.services.provider_gateway import (
    ProviderGateway, GatewayResult, TenantContext, ACTION_EXTRACT_OCR, ACTION_VALIDATE_DOCUMENT,
    ACTION_CHECK_WATCHLIST, biometric_result, watchlist_hits,
)
from kyc_compliance.utils.validators import digits_only, validate_ocr_number

logger = logging.getLogger(__name__)


class ValidationState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    VALIDATING = "validating"
    SUCCESS = "success"
    ERROR = "error"


IN_PROGRESS = {ValidationState.SCANNING, ValidationState.VALIDATING}

# Watchlist status; "unknown" means the screening was attempted but gave no verdict.
WATCHLIST_UNCHECKED = "unchecked"
WATCHLIST_CLEAN = "clean"
WATCHLIST_RISK = "risk"
WATCHLIST_UNKNOWN = "unknown"


@dataclass
class RunStatus:
    state: ValidationState = ValidationState.IDLE
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    watchlist_status: str = WATCHLIST_UNCHECKED


# Runs currently scanning or validating, per subject. Entries leave when the run ends.
_RUNS: Dict[int, RunStatus] = {}

INTERRUPTED_MESSAGE = "Validation was interrupted before it finished. Please try again."
RETRY_HINT = "The provider is temporarily unavailable; try again later."


def reset_run_registry():
    _RUNS.clear()


@dataclass
class ValidationTrigger:
    """Images and any fields staff already typed in."""

    front_image: Optional[str] = None
    back_image: Optional[str] = None
    full_name: Optional[str] = None
    credential_code: Optional[str] = None
    issue_year: Optional[int] = None
    clave_de_elector: Optional[str] = None
    numero_de_emision: Optional[str] = None
    ocr_number: Optional[str] = None
    cic: Optional[str] = None
    identificador_ciudadano: Optional[str] = None
    mrz: Optional[str] = None


@dataclass
class ValidationSnapshot:
    subject_id: int
    state: str
    message: str
    warnings: List[str]
    document_validated: bool
    document_record_id: Optional[int]
    watchlist_validated: bool
    watchlist_risk: bool
    watchlist_status: str
    watchlist_record_id: Optional[int]
    biometric_status: str
    biometric_score: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _first(data: Dict[str, Any], *keys):
    """First non-empty value among the given keys."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            value = "".join(str(v) for v in value)
        if value not in (None, ""):
            return str(value).strip()
    return None


class WorkingRecord:
    """In-flight merge of subject fields and OCR output, committed at checkpoints."""

    SUBJECT_FIELDS = (
        "full_name", "curp", "birth_date", "address", "clave_de_elector", "numero_de_emision",
        "ocr_number", "cic", "identificador_ciudadano", "credential_model", "issue_year",
    )

    def __init__(self, subject: Subject, trigger: ValidationTrigger):
        self.front_image = trigger.front_image
        self.back_image = trigger.back_image
        self.fields: Dict[str, Any] = {name: getattr(subject, name) for name in self.SUBJECT_FIELDS}
        self.mrz = trigger.mrz
        self.model_code = trigger.credential_code or subject.credential_model

        for name in ("full_name", "clave_de_elector", "numero_de_emision", "ocr_number", "cic",
                     "identificador_ciudadano", "issue_year"):
            self._set(name, getattr(trigger, name))

    def _set(self, name: str, value):
        """Only non-empty values are taken; a populated field never goes blank."""
        if value in (None, ""):
            return
        self.fields[name] = value

    @property
    def credential(self) -> CredentialFields:
        return CredentialFields(
            clave_de_elector=self.fields["clave_de_elector"],
            numero_de_emision=self.fields["numero_de_emision"],
            ocr_number=self.fields["ocr_number"],
            cic=self.fields["cic"],
            identificador_ciudadano=self.fields["identificador_ciudadano"],
            model_code=self.model_code,
            issue_year=self.fields["issue_year"],
            mrz=self.mrz,
        )

    @property
    def full_name(self) -> str:
        return self.fields["full_name"] or ""

    def needs_front_scan(self) -> bool:
        return bool(self.front_image) and not self.fields["clave_de_elector"]

    def needs_back_scan(self) -> bool:
        """The back side is read unless the active model's back-side fields are already known."""
        if not self.back_image:
            return False
        if self.credential.model in OCR_MODELS:
            return not validate_ocr_number(digits_only(self.fields["ocr_number"]))
        if self.fields["cic"] and self.fields["identificador_ciudadano"]:
            return False
        return parse_mrz(self.mrz) is None

    def merge_front(self, data: Dict[str, Any]):
        name = _first(data, "nombre_completo") or split_full_name(
            _first(data, "nombre", "nombres"), _first(data, "apellido_paterno"), _first(data, "apellido_materno"),
        )
        self._set("full_name", name)
        self._set("curp", _first(data, "curp"))
        self._set("clave_de_elector", _first(data, "clave_de_elector", "clave_elector"))
        self._set("numero_de_emision", _first(data, "numero_de_emision", "numero_emision"))
        self._set("address", _first(data, "domicilio", "direccion"))
        self._set("birth_date", normalize_date(_first(data, "fecha_nacimiento", "fecha_de_nacimiento")))

        year = _first(data, "anio_emision", "anio_de_emision", "emision")
        if year and year[:4].isdigit():
            self._set("issue_year", int(year[:4]))
        if not self.model_code:
            self.model_code = _first(data, "tipo", "modelo", "tipo_credencial")

    def merge_back(self, data: Dict[str, Any]):
        mrz_text = _first(data, "mrz", "zona_lectura_mecanica")
        if mrz_text:
            self.mrz = mrz_text
        parsed = parse_mrz(mrz_text)
        self._set("cic", _first(data, "cic") or (parsed.cic if parsed else None))
        self._set("identificador_ciudadano",
                  _first(data, "identificador_del_ciudadano", "identificador_ciudadano")
                  or (parsed.identificador_ciudadano if parsed else None))
        self._set("ocr_number", _first(data, "ocr", "numero_ocr") or (parsed.ocr_number if parsed else None))

    def commit(self, subject: Subject):
        """Apply non-empty working values to the Subject."""
        self.fields["credential_model"] = self.credential.model or self.fields["credential_model"]
        for name, value in self.fields.items():
            if value not in (None, ""):
                setattr(subject, name, value)


class ValidationOrchestrator:
    """Drives OCR extraction, document validation and watchlist screening for one subject."""

    def __init__(
        self,
        db: Session,
        subject: Subject,
        tenant: TenantContext,
        gateway: ProviderGateway,
        store: ValidationStore,
        evidence: EvidenceStore,
    ):
        self.db = db
        self.subject = subject
        self.tenant = tenant
        self.gateway = gateway
        self.store = store
        self.evidence = evidence
        self.settings = get_settings()
        self._status = RunStatus()

    @property
    def ref(self) -> SubjectRef:
        return SubjectRef(self.subject.id, self.subject.subject_type, self.tenant.tenant_id)

    @property
    def status(self) -> RunStatus:
        """The live run for this subject if one is registered, else this orchestrator's own state."""
        return _RUNS.get(self.subject.id, self._status)

    # ─── Resumption ─────────────────────────────────────────────────

    def mount(self) -> ValidationSnapshot:
        """Restore state from the audit trail without calling the provider."""
        status = self.status
        if status.state in IN_PROGRESS:
            return self.snapshot()

        authoritative = self._authoritative_records()

        document = authoritative.get(KIND_DOCUMENT)
        if document is not None:
            self.subject.document_validated = True
            self.subject.document_record_id = document.id
        if self.subject.document_validated:
            status.state = ValidationState.SUCCESS
            status.message = ""
        elif status.state == ValidationState.SUCCESS:
            status.state = ValidationState.IDLE

        watchlist = authoritative.get(KIND_WATCHLIST)
        if watchlist is not None and not self.subject.watchlist_risk:
            self.subject.watchlist_validated = True
            self.subject.watchlist_record_id = watchlist.id
        if self.subject.watchlist_validated:
            status.watchlist_status = WATCHLIST_RISK if self.subject.watchlist_risk else WATCHLIST_CLEAN

        biometric = authoritative.get(KIND_BIOMETRIC)
        if biometric is not None and self.subject.biometric_status != "verified":
            self.subject.biometric_status = "verified"
            self.subject.biometric_score = biometric_result(biometric.api_response or {})[1]
            self.subject.biometric_record_id = biometric.id

        self.db.commit()
        return self.snapshot()

    def _authoritative_records(self):
        """Newest success record per kind, ignoring rows older than a staff reset."""
        resets = self.subject.check_resets or {}
        found = {}
        for record in self.store.list_records(self.subject.id, self.subject.subject_type):
            if record.outcome != "success" or record.kind in found:
                continue
            reset_at = resets.get(record.kind)
            if reset_at and record.created_at <= datetime.fromisoformat(reset_at):
                continue
            found[record.kind] = record
        return found

    # ─── Document flow ──────────────────────────────────────────────

    async def run(self, trigger: ValidationTrigger) -> ValidationSnapshot:
        """Extract (if needed), validate the credential and screen the name."""
        status = self.status
        if self.subject.id in _RUNS or status.state in IN_PROGRESS:
            raise RunInProgress(f"Validation already {status.state.value} for subject {self.subject.id}.")
        if status.state == ValidationState.SUCCESS or self.subject.document_validated:
            status.state = ValidationState.SUCCESS
            status.message = "Credential already validated."
            return self.snapshot()

        status.message = ""
        status.warnings = []
        work = WorkingRecord(self.subject, trigger)

        _RUNS[self.subject.id] = status
        try:
            await self._run_checks(work, status)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Subject {self.subject.id}: validation could not be saved")
            status.state = ValidationState.ERROR
            status.message = f"Validation result could not be saved: {e}"
        except Exception:
            logger.exception(f"Subject {self.subject.id}: validation run aborted")
            status.state = ValidationState.ERROR
            status.message = "Validation could not be completed. Please try again."
        finally:
            # Cancellation skips the handlers above; never leave the subject locked.
            if status.state in IN_PROGRESS:
                logger.warning(f"Subject {self.subject.id}: validation interrupted while {status.state.value}")
                status.state = ValidationState.ERROR
                status.message = INTERRUPTED_MESSAGE
            _RUNS.pop(self.subject.id, None)

        return self.snapshot()

    async def _run_checks(self, work: WorkingRecord, status: RunStatus):
        if work.needs_front_scan() or work.needs_back_scan():
            status.state = ValidationState.SCANNING
            await self._scan(work)

        work.commit(self.subject)
        self.db.commit()

        status.state = ValidationState.VALIDATING
        try:
            payload = build_document_payload(work.credential)
        except InputIncomplete as e:
            logger.info(f"Subject {self.subject.id}: validation blocked, missing {e.missing}")
            status.state = ValidationState.IDLE
            status.message = e.message
            return

        calls = [self.gateway.execute(
            ACTION_VALIDATE_DOCUMENT, payload, self.tenant,
            subject=self.ref, evidence_hook=self._document_evidence_hook(work),
        )]

        screen_name = normalize_name(work.full_name)
        screen = not self.subject.watchlist_validated and len(screen_name) >= self.settings.WATCHLIST_MIN_NAME_LENGTH
        if screen:
            calls.append(self.gateway.execute(
                ACTION_CHECK_WATCHLIST, build_watchlist_payload(screen_name), self.tenant, subject=self.ref,
            ))

        results = await asyncio.gather(*calls, return_exceptions=True)

        self._resolve_document(results[0], work)
        if screen:
            self._resolve_watchlist(results[1])

        work.commit(self.subject)
        self.db.commit()

    async def _scan(self, work: WorkingRecord):
        sides = []
        if work.needs_front_scan():
            sides.append(("frente", work.front_image))
        if work.needs_back_scan():
            sides.append(("reverso", work.back_image))

        results = await asyncio.gather(*(
            self.gateway.execute(ACTION_EXTRACT_OCR, {"side": side, "image_data": strip_data_uri(image)}, self.tenant)
            for side, image in sides
        ))

        for (side, _), result in zip(sides, results):
            if not result.ok:
                logger.warning(f"Subject {self.subject.id}: OCR {side} failed: {result.message}")
                continue
            body = (result.data or {}).get("data", result.data) or {}
            if not isinstance(body, dict):
                logger.warning(f"Subject {self.subject.id}: OCR {side} returned no fields")
                continue
            if side == "frente":
                work.merge_front(body)
            else:
                work.merge_back(body)

    def _document_evidence_hook(self, work: WorkingRecord):
        async def upload(_response):
            sides = [(side, image) for side, image in (("frente", work.front_image), ("reverso", work.back_image)) if image]
            urls = await asyncio.gather(*(self.evidence.upload(image, self.subject.id, side) for side, image in sides))
            return {side: url for (side, _), url in zip(sides, urls)}
        return upload

    def _resolve_document(self, result, work: WorkingRecord):
        status = self.status
        if isinstance(result, BaseException):
            logger.error(f"Subject {self.subject.id}: document validation crashed: {result!r}")
            status.state = ValidationState.ERROR
            status.message = "Document validation failed unexpectedly."
            return

        if result.persistence_error:
            status.warnings.append(result.persistence_error.message)

        if result.succeeded:
            self.subject.document_validated = True
            self.subject.document_record_id = result.record_id
            status.state = ValidationState.SUCCESS
            logger.info(f"Subject {self.subject.id}: credential active (record {result.record_id})")
            return

        status.state = ValidationState.ERROR
        status.message = result.message or "The credential is not active in the electoral registry."
        if result.error is not None and result.error.retryable:
            status.message = f"{status.message} {RETRY_HINT}"
        logger.warning(f"Subject {self.subject.id}: document validation failed: {status.message}")

    def _resolve_watchlist(self, result):
        status = self.status
        if isinstance(result, BaseException):
            logger.error(f"Subject {self.subject.id}: watchlist screening crashed: {result!r}")
            status.watchlist_status = WATCHLIST_UNKNOWN
            status.warnings.append("Watchlist screening failed unexpectedly.")
            return

        if isinstance(result.error, ProviderRejected) and result.error.malformed:
            # Advisory only: watchlist is a secondary gate.
            logger.info(f"Subject {self.subject.id}: watchlist request rejected as malformed, ignored")
            status.watchlist_status = WATCHLIST_UNKNOWN
            return

        if result.error:
            status.watchlist_status = WATCHLIST_UNKNOWN
            warning = f"Watchlist screening failed: {result.message}"
            if result.error.retryable:
                warning = f"{warning} {RETRY_HINT}"
            status.warnings.append(warning)
            return

        hits = watchlist_hits(result.data or {})
        self.subject.watchlist_validated = True
        self.subject.watchlist_risk = bool(hits)
        self.subject.watchlist_record_id = result.record_id
        if hits:
            status.watchlist_status = WATCHLIST_RISK
            status.warnings.append(f"Watchlist match: {len(hits)} entr{'y' if len(hits) == 1 else 'ies'} found.")
            logger.warning(f"Subject {self.subject.id}: {len(hits)} watchlist match(es)")
        else:
            status.watchlist_status = WATCHLIST_CLEAN

    # ─── Manual watchlist ───────────────────────────────────────────

    async def check_watchlist(self, name: Optional[str] = None) -> ValidationSnapshot:
        """Standalone screening from a name; leaves document state alone."""
        screen_name = normalize_name(name or self.subject.full_name)
        if len(screen_name) < self.settings.WATCHLIST_MIN_NAME_LENGTH:
            raise InputIncomplete("A name of at least 3 letters is required for screening.", missing=["full_name"])

        self.status.warnings = []
        result = await self.gateway.execute(
            ACTION_CHECK_WATCHLIST, build_watchlist_payload(screen_name), self.tenant, subject=self.ref,
        )
        self._resolve_watchlist(result)
        if result.persistence_error:
            self.status.warnings.append(result.persistence_error.message)
        self.db.commit()
        return self.snapshot()

    # ─── Reset ──────────────────────────────────────────────────────

    def reset(self, kind: str, confirm: bool, confirm_kind: Optional[str]) -> ValidationSnapshot:
        """Delete the authoritative record of a kind and clear its flag.

        Raises:
            ResetNotConfirmed: unless `confirm` is set and `confirm_kind` repeats `kind`.
            RunInProgress: while a run is scanning or validating.
        """
        if kind not in CHECK_KINDS:
            raise ValueError(f"Unknown check kind: {kind}")
        if not confirm or confirm_kind != kind:
            raise ResetNotConfirmed(f"Reset of '{kind}' needs both confirmations.")
        status = self.status
        if status.state in IN_PROGRESS:
            raise RunInProgress("Cannot reset while a validation is running.")

        record = self.store.latest_success(self.subject.id, kind)
        if record is not None:
            try:
                self.store.delete_record(record.id)
            except SQLAlchemyError as e:
                logger.warning(f"Subject {self.subject.id}: could not delete {kind} record {record.id}: {e}")

        resets = dict(self.subject.check_resets or {})
        resets[kind] = datetime.utcnow().isoformat()
        self.subject.check_resets = resets

        if kind == KIND_DOCUMENT:
            self.subject.document_validated = False
            self.subject.document_record_id = None
            status.state = ValidationState.IDLE
            status.message = ""
        elif kind == KIND_WATCHLIST:
            self.subject.watchlist_validated = False
            self.subject.watchlist_risk = False
            self.subject.watchlist_record_id = None
            status.watchlist_status = WATCHLIST_UNCHECKED
        else:
            self.subject.biometric_status = "pending"
            self.subject.biometric_score = None
            self.subject.biometric_record_id = None

        self.db.commit()
        logger.info(f"Subject {self.subject.id}: {kind} check reset by staff")
        return self.snapshot()

    def snapshot(self) -> ValidationSnapshot:
        status = self.status
        return ValidationSnapshot(
            subject_id=self.subject.id,
            state=status.state.value,
            message=status.message,
            warnings=list(status.warnings),
            document_validated=bool(self.subject.document_validated),
            document_record_id=self.subject.document_record_id,
            watchlist_validated=bool(self.subject.watchlist_validated),
            watchlist_risk=bool(self.subject.watchlist_risk),
            watchlist_status=status.watchlist_status,
            watchlist_record_id=self.subject.watchlist_record_id,
            biometric_status=self.subject.biometric_status or "pending",
            biometric_score=self.subject.biometric_score,
        )
