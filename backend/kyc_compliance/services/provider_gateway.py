"""
Provider Gateway — Single chokepoint for every call to the verification provider.

Maps an abstract action to the provider endpoint, the credential header and
the tenant's API keys; rotates keys on auth/quota rejections; converts every
transport problem into a structured result; and writes the audit row for the
checks that consume OCR output.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Awaitable, Callable, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError

from kyc_compliance.config import get_settings
from kyc_compliance.services.audit_service import (
    ValidationStore, SubjectRef, KIND_DOCUMENT, KIND_WATCHLIST, KIND_BIOMETRIC,
)
from kyc_compliance.services.errors import (
    ProviderError, ProviderUnavailable, ProviderRejected, ProviderResponseInvalid, PersistenceFailure,
)

logger = logging.getLogger(__name__)

ACTION_EXTRACT_OCR = "extract-ocr"
ACTION_VALIDATE_DOCUMENT = "validate-document"
ACTION_CHECK_WATCHLIST = "check-watchlist"
ACTION_BIOMETRIC_MATCH = "biometric-match"

# Audited actions and the record kind they produce. OCR extraction is not audited.
AUDITED_ACTIONS = {
    ACTION_VALIDATE_DOCUMENT: KIND_DOCUMENT,
    ACTION_CHECK_WATCHLIST: KIND_WATCHLIST,
    ACTION_BIOMETRIC_MATCH: KIND_BIOMETRIC,
}

ROTATE_STATUS_CODES = {401, 402, 403}
MALFORMED_STATUS_CODES = {400, 422}
MIN_IMAGE_CHARS = 100

EvidenceHook = Callable[[Dict[str, Any]], Awaitable[Dict[str, Optional[str]]]]


@dataclass(frozen=True)
class TenantContext:
    """Tenant identity plus the provider keys it pays for."""

    tenant_id: str
    api_keys: Tuple[str, ...] = ()


@dataclass
class GatewayResult:
    """Outcome of one gateway call. Provider errors live here, never raised."""

    action: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[ProviderError] = None
    outcome: Optional[str] = None                 # success | error, audited actions only
    record_id: Optional[int] = None
    evidence: Dict[str, Optional[str]] = field(default_factory=dict)
    persistence_error: Optional[PersistenceFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def succeeded(self) -> bool:
        return self.ok and self.outcome == "success"

    @property
    def message(self) -> str:
        if self.error:
            return self.error.message
        if isinstance(self.data, dict):
            return str(self.data.get("message") or "")
        return ""


# ─── Success predicates ─────────────────────────────────────────────

def _body(data: Dict[str, Any]):
    inner = data.get("data") if isinstance(data, dict) else None
    return inner if inner is not None else data


def _is_true(value) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


def document_is_active(data: Dict[str, Any]) -> bool:
    """Only an explicit active flag counts; anything else is a failure."""
    body = _body(data)
    if not isinstance(body, dict):
        return False
    return _is_true(body.get("activa", body.get("active")))


def watchlist_hits(data: Dict[str, Any]) -> List[Any]:
    """Matches reported by the screening provider."""
    body = _body(data)
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        return []
    for key in ("hits", "coincidencias", "resultados"):
        hits = body.get(key)
        if isinstance(hits, list) and hits:
            return hits
    return []


def biometric_result(data: Dict[str, Any]) -> Tuple[bool, Optional[float]]:
    """(face matched, similarity score in 0..1 when reported)."""
    body = _body(data)
    if not isinstance(body, dict):
        return False, None
    matched = _is_true(body.get("resultado_verificacion_rostro"))
    try:
        score = float(body.get("certeza_verificacion_rostro"))
    except (TypeError, ValueError):
        score = None
    return matched, score


SUCCESS_PREDICATES = {
    ACTION_VALIDATE_DOCUMENT: document_is_active,
    ACTION_CHECK_WATCHLIST: lambda data: not watchlist_hits(data),
    ACTION_BIOMETRIC_MATCH: lambda data: biometric_result(data)[0],
}


# ─── Endpoint resolution ────────────────────────────────────────────

def _only_present(body: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if v not in (None, "")}


def _route(action: str, payload: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    """Return (path, credential header, wire body). Values pass through unchanged."""
    if action == ACTION_VALIDATE_DOCUMENT:
        body = {
            "tipo_identificacion": payload.get("credential_type"),
            "clave_de_elector": payload.get("clave_de_elector"),
            "numero_de_emision": payload.get("numero_de_emision"),
        }
        body.update(_only_present({
            "ocr": payload.get("ocr"),
            "cic": payload.get("cic"),
            "identificador_del_ciudadano": payload.get("identificador_del_ciudadano"),
        }))
        return "/v1/lista_nominal/validar", "Ocp-Apim-Subscription-Key", body

    if action == ACTION_CHECK_WATCHLIST:
        return "/perfilamiento/v1/aml", "NUFI-API-KEY", {
            "nombre_completo": payload.get("full_name", ""),
            "primer_nombre": payload.get("first_name", ""),
            "segundo_nombre": payload.get("middle_name", ""),
            "apellidos": payload.get("surnames", ""),
            "fecha_nacimiento": payload.get("birth_date", ""),
            "lugar_nacimiento": payload.get("birth_place", ""),
        }

    if action == ACTION_BIOMETRIC_MATCH:
        return "/biometrico/v2/ine_vs_selfie", "NUFI-API-KEY", {
            "imagen_rostro": payload.get("imagen_rostro"),
            "credencial_frente": payload.get("credencial_frente"),
            "credencial_reverso": payload.get("credencial_reverso"),
        }

    if action == ACTION_EXTRACT_OCR:
        side = "frente" if payload.get("side") == "frente" else "reverso"
        return f"/ocr/v4/{side}", "NUFI-API-KEY", {
            f"base64_credencial_{side}": payload.get("image_data", ""),
        }

    raise ValueError(f"Unknown provider action: {action}")


class ProviderGateway:
    """Executes provider actions on behalf of a tenant."""

    def __init__(
        self,
        store: Optional[ValidationStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self._client = client
        self.base_url = (base_url or settings.NUFI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS

    async def execute(
        self,
        action: str,
        payload: Dict[str, Any],
        tenant: TenantContext,
        *,
        subject: Optional[SubjectRef] = None,
        evidence_hook: Optional[EvidenceHook] = None,
    ) -> GatewayResult:
        """Run one provider action.

        Args:
            action: extract-ocr | validate-document | check-watchlist | biometric-match.
            payload: Action-specific payload.
            tenant: Tenant whose credentials pay for the call.
            subject: Subject to attribute the audit row to (audited actions).
            evidence_hook: Awaited only on a successful outcome, before the
                audit row is written; returns side -> public URL.

        Returns:
            GatewayResult. Transport and provider failures are in `.error`.
        """
        path, header_name, body = _route(action, payload)

        if action == ACTION_EXTRACT_OCR and len(payload.get("image_data") or "") < MIN_IMAGE_CHARS:
            return GatewayResult(action, error=ProviderRejected("Image is empty or corrupt.", malformed=True))

        keys = [k for k in tenant.api_keys if k] or get_settings().provider_api_keys
        if not keys:
            logger.error(f"[Gateway] No provider API keys for tenant {tenant.tenant_id}")
            return GatewayResult(action, error=ProviderUnavailable("No provider API keys configured."))

        url = f"{self.base_url}{path}"
        logger.info(f"[Gateway] {action} -> {url} (tenant {tenant.tenant_id})")

        if self._client is not None:
            response, data, error = await self._post_rotating(self._client, url, header_name, body, keys)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response, data, error = await self._post_rotating(client, url, header_name, body, keys)

        if response is None:
            return GatewayResult(action, error=error)

        result = self._interpret(action, response, data)
        if action in AUDITED_ACTIONS and subject is not None and not isinstance(result.error, ProviderUnavailable):
            await self._audit(result, subject, evidence_hook)
        return result

    async def _post_rotating(self, client, url, header_name, body, keys):
        """POST with each key in turn until one is accepted.

        Returns:
            (response, parsed JSON or None, last error). response is None when
            every key failed.
        """
        last_error: ProviderError = ProviderUnavailable("No response from the provider.")

        for index, key in enumerate(keys, start=1):
            headers = {"Content-Type": "application/json", header_name: key}
            try:
                response = await client.post(url, json=body, headers=headers, timeout=self.timeout)
            except httpx.TimeoutException as e:
                logger.warning(f"[Gateway] Key #{index} timed out after {self.timeout}s: {e}")
                last_error = ProviderUnavailable(f"Provider timed out after {self.timeout}s.")
                continue
            except httpx.HTTPError as e:
                logger.warning(f"[Gateway] Key #{index} transport error: {e}")
                last_error = ProviderUnavailable(f"Provider unreachable: {e}")
                continue

            try:
                data = response.json()
            except ValueError:
                data = None

            if response.status_code in ROTATE_STATUS_CODES or (isinstance(data, dict) and data.get("code") == 403):
                logger.warning(f"[Gateway] Key #{index} rejected or exhausted ({response.status_code}). Rotating...")
                last_error = ProviderUnavailable(
                    "All provider API keys were rejected or exhausted.", status_code=response.status_code
                )
                continue

            return response, data, None

        return None, None, last_error

    def _interpret(self, action: str, response: httpx.Response, data) -> GatewayResult:
        status = response.status_code

        if status >= 500:
            return GatewayResult(action, data=data if isinstance(data, dict) else None,
                                 error=ProviderUnavailable(f"Provider error {status}.", status_code=status))

        if not isinstance(data, dict):
            raw = {"raw": response.text[:2000], "http_status": status}
            return GatewayResult(action, data=raw, outcome="error",
                                 error=ProviderResponseInvalid("Provider returned an unreadable response.", status))

        message = str(data.get("message") or data.get("error") or "")

        if status in MALFORMED_STATUS_CODES:
            return GatewayResult(action, data=data, outcome="error",
                                 error=ProviderRejected(message or "Malformed request.", status, malformed=True))

        if data.get("status") in ("error", "failure"):
            logger.warning(f"[Gateway] Provider declined {action}: {message}")
            return GatewayResult(action, data=data, outcome="error",
                                 error=ProviderRejected(message or "Provider declined the request.", status))

        if action not in SUCCESS_PREDICATES:
            return GatewayResult(action, data=data)

        outcome = "success" if SUCCESS_PREDICATES[action](data) else "error"
        return GatewayResult(action, data=data, outcome=outcome)

    async def _audit(self, result: GatewayResult, subject: SubjectRef, evidence_hook: Optional[EvidenceHook]):
        if result.outcome == "success" and evidence_hook is not None:
            try:
                result.evidence = await evidence_hook(result.data or {})
            except Exception as e:
                logger.exception(f"[Gateway] Evidence upload failed for subject {subject.subject_id}")
                result.persistence_error = PersistenceFailure(f"Evidence upload failed: {e}")

        if self.store is None:
            return

        try:
            entry = self.store.record(
                subject,
                kind=AUDITED_ACTIONS[result.action],
                outcome=result.outcome or "error",
                api_response=result.data or {"error": result.message},
                evidence=result.evidence,
            )
            result.record_id = entry.id
        except SQLAlchemyError as e:
            logger.error(f"[Gateway] Audit write failed for subject {subject.subject_id}: {e}")
            result.persistence_error = PersistenceFailure(f"Audit record not saved: {e}")
