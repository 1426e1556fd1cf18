"""
Tests for the provider gateway: routing, key rotation, error mapping and
audit side effects.
"""
import asyncio

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from kyc_compliance.models import ValidationRecord
from kyc_compliance.services.audit_service import SubjectRef
from kyc_compliance.services.errors import ProviderRejected, ProviderResponseInvalid, ProviderUnavailable
from kyc_compliance.services.provider_gateway import (
    ProviderGateway, TenantContext, document_is_active, watchlist_hits, biometric_result,
)

from conftest import (
    DOCUMENT_PATH, WATCHLIST_PATH, BIOMETRIC_PATH, OCR_FRONT_PATH, IMAGE_B64,
    DOCUMENT_INACTIVE, WATCHLIST_MATCH,
)

DOCUMENT_PAYLOAD = {
    "credential_type": "H",
    "clave_de_elector": "PRLPJN90030509H100",
    "numero_de_emision": "01",
    "cic": "123456789",
    "identificador_del_ciudadano": "987654321",
}


@pytest.fixture
def ref(subject, tenant):
    return SubjectRef(subject.id, subject.subject_type, tenant.tenant_id)


def _records(db):
    return db.query(ValidationRecord).all()


class TestRouting:

    def test_extract_ocr_is_not_audited(self, gateway, provider, tenant, ref, db):
        result = asyncio.run(gateway.execute(
            "extract-ocr", {"side": "frente", "image_data": IMAGE_B64}, tenant, subject=ref,
        ))
        assert result.ok
        call = provider.calls_to(OCR_FRONT_PATH)[0]
        assert call["body"] == {"base64_credencial_frente": IMAGE_B64}
        assert call["headers"]["nufi-api-key"] == "tenant-key"
        assert _records(db) == []

    def test_extract_ocr_rejects_tiny_image_locally(self, gateway, provider, tenant):
        result = asyncio.run(gateway.execute("extract-ocr", {"side": "reverso", "image_data": "abc"}, tenant))
        assert isinstance(result.error, ProviderRejected)
        assert provider.calls == []

    def test_document_payload_uses_wire_names(self, gateway, provider, tenant, ref):
        asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        call = provider.calls_to(DOCUMENT_PATH)[0]
        assert call["headers"]["ocp-apim-subscription-key"] == "tenant-key"
        assert call["body"] == {
            "tipo_identificacion": "H",
            "clave_de_elector": "PRLPJN90030509H100",
            "numero_de_emision": "01",
            "cic": "123456789",
            "identificador_del_ciudadano": "987654321",
        }

    def test_watchlist_payload_wire_names(self, gateway, provider, tenant, ref):
        payload = {"full_name": "JUAN PEREZ LOPEZ", "first_name": "", "middle_name": "",
                   "surnames": "", "birth_date": "", "birth_place": ""}
        asyncio.run(gateway.execute("check-watchlist", payload, tenant, subject=ref))
        body = provider.calls_to(WATCHLIST_PATH)[0]["body"]
        assert body["nombre_completo"] == "JUAN PEREZ LOPEZ"
        assert body["apellidos"] == ""

    def test_unknown_action(self, gateway, tenant):
        with pytest.raises(ValueError):
            asyncio.run(gateway.execute("delete-everything", {}, tenant))

    def test_service_keys_used_when_tenant_has_none(self, gateway, provider):
        asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, TenantContext("tenant-x")))
        assert provider.calls[0]["headers"]["ocp-apim-subscription-key"] == "service-key"


class TestAudit:

    def test_active_document_writes_success_record(self, gateway, tenant, ref, db):
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert result.succeeded
        record = db.get(ValidationRecord, result.record_id)
        assert record.kind == "document"
        assert record.outcome == "success"
        assert record.provider_transaction_id == "doc-tx-1"
        assert len(record.response_hash) == 64

    def test_inactive_document_writes_error_record(self, gateway, provider, tenant, ref, db):
        provider.respond(DOCUMENT_PATH, DOCUMENT_INACTIVE)
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert result.ok and not result.succeeded
        assert [r.outcome for r in _records(db)] == ["error"]

    def test_watchlist_match_is_not_success(self, gateway, provider, tenant, ref, db):
        provider.respond(WATCHLIST_PATH, WATCHLIST_MATCH)
        result = asyncio.run(gateway.execute("check-watchlist", {"full_name": "X"}, tenant, subject=ref))
        assert result.outcome == "error"
        assert _records(db)[0].kind == "watchlist"

    def test_evidence_hook_only_on_success(self, gateway, provider, tenant, ref, db):
        uploads = []

        async def hook(_data):
            uploads.append(True)
            return {"frente": "https://cdn.test/f.jpg"}

        provider.respond(DOCUMENT_PATH, DOCUMENT_INACTIVE)
        asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref, evidence_hook=hook))
        assert uploads == []

        provider.respond(DOCUMENT_PATH, {"status": "success", "data": {"activa": True}})
        result = asyncio.run(gateway.execute(
            "validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref, evidence_hook=hook,
        ))
        assert uploads == [True]
        assert db.get(ValidationRecord, result.record_id).evidence == {"frente": "https://cdn.test/f.jpg"}

    def test_audit_failure_keeps_provider_outcome(self, gateway, tenant, ref, store, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(store, "record", broken)
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert result.succeeded
        assert result.record_id is None
        assert "Audit record not saved" in result.persistence_error.message


class TestErrors:

    def test_key_rotation_on_auth_rejection(self, store, provider, ref, db):
        def by_key(request):
            if request.headers["ocp-apim-subscription-key"] == "spent-key":
                return httpx.Response(402, json={"message": "quota exceeded"})
            return httpx.Response(200, json={"status": "success", "data": {"activa": True}})

        provider.routes[DOCUMENT_PATH] = by_key
        gateway = ProviderGateway(store=store, client=provider.client())
        tenant = TenantContext("tenant-1", ("spent-key", "fresh-key"))

        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert result.succeeded
        assert len(provider.calls) == 2

    def test_all_keys_rejected(self, gateway, provider, ref, db):
        provider.respond(DOCUMENT_PATH, {"code": 403, "message": "forbidden"}, status=200)
        tenant = TenantContext("tenant-1", ("k1", "k2"))
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert isinstance(result.error, ProviderUnavailable)
        assert len(provider.calls) == 2
        assert _records(db) == []

    def test_timeout_maps_to_unavailable(self, gateway, provider, tenant, ref, db):
        provider.raise_on(DOCUMENT_PATH, httpx.ReadTimeout("slow"))
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert isinstance(result.error, ProviderUnavailable)
        assert result.error.retryable
        assert _records(db) == []

    def test_connection_error_maps_to_unavailable(self, gateway, provider, tenant):
        provider.raise_on(WATCHLIST_PATH, httpx.ConnectError("refused"))
        result = asyncio.run(gateway.execute("check-watchlist", {"full_name": "JUAN"}, tenant))
        assert isinstance(result.error, ProviderUnavailable)

    def test_server_error_maps_to_unavailable(self, gateway, provider, tenant, ref, db):
        provider.respond(DOCUMENT_PATH, {"message": "boom"}, status=503)
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert isinstance(result.error, ProviderUnavailable)
        assert _records(db) == []

    def test_bad_request_is_malformed_rejection(self, gateway, provider, tenant, ref, db):
        provider.respond(WATCHLIST_PATH, {"status": "error", "message": "campo requerido"}, status=400)
        result = asyncio.run(gateway.execute("check-watchlist", {"full_name": "JUAN"}, tenant, subject=ref))
        assert isinstance(result.error, ProviderRejected)
        assert result.error.malformed
        assert result.message == "campo requerido"
        assert [r.outcome for r in _records(db)] == ["error"]

    def test_soft_error_is_rejection(self, gateway, provider, tenant, ref):
        provider.respond(DOCUMENT_PATH, {"status": "error", "message": "Clave de elector inexistente"})
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert isinstance(result.error, ProviderRejected)
        assert not result.error.malformed
        assert result.message == "Clave de elector inexistente"

    def test_non_json_response_is_invalid(self, gateway, provider, tenant, ref, db):
        provider.respond(DOCUMENT_PATH, "<html>gateway</html>")
        result = asyncio.run(gateway.execute("validate-document", DOCUMENT_PAYLOAD, tenant, subject=ref))
        assert isinstance(result.error, ProviderResponseInvalid)
        assert _records(db)[0].api_response["raw"].startswith("<html>")


class TestPredicates:

    def test_document_active_requires_explicit_true(self):
        assert document_is_active({"data": {"activa": True}})
        assert document_is_active({"data": {"active": "true"}})
        assert not document_is_active({"data": {"activa": "si"}})
        assert not document_is_active({"data": {}})
        assert not document_is_active({"status": "success"})

    def test_watchlist_hits_shapes(self):
        assert watchlist_hits({"data": {"hits": []}}) == []
        assert len(watchlist_hits({"data": {"coincidencias": [{"lista": "PEP"}]}})) == 1
        assert len(watchlist_hits({"data": [{"lista": "OFAC"}]})) == 1

    def test_biometric_result(self):
        assert biometric_result({"data": {"resultado_verificacion_rostro": "True",
                                          "certeza_verificacion_rostro": "0.9"}}) == (True, 0.9)
        assert biometric_result({"data": {"resultado_verificacion_rostro": "False"}}) == (False, None)
