"""
Shared fixtures: in-memory database, a scripted verification provider and
wired-up services.
"""
import base64
import json
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="kyc-tests-")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("EVIDENCE_DIR", os.path.join(_TMP, "evidence"))
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("NUFI_API_KEYS", "service-key")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from kyc_compliance.database import Base  # noqa: E402
from kyc_compliance.models import Tenant, Subject  # noqa: E402
from kyc_compliance.services.audit_service import ValidationStore  # noqa: E402
from kyc_compliance.services.evidence_store import EvidenceStore  # noqa: E402
from kyc_compliance.services.provider_gateway import ProviderGateway, TenantContext  # noqa: E402
from kyc_compliance.services.self_service import reset_session_registry  # noqa: E402
from kyc_compliance.services.validation_orchestrator import (  # noqa: E402
    ValidationOrchestrator, reset_run_registry,
)
from kyc_compliance.utils.rate_limiter import reset_rate_limits  # noqa: E402

DOCUMENT_PATH = "/v1/lista_nominal/validar"
WATCHLIST_PATH = "/perfilamiento/v1/aml"
BIOMETRIC_PATH = "/biometrico/v2/ine_vs_selfie"
OCR_FRONT_PATH = "/ocr/v4/frente"
OCR_BACK_PATH = "/ocr/v4/reverso"

IMAGE_BYTES = b"\xff\xd8\xff\xe0" + b"jpeg-payload" * 20
IMAGE_B64 = base64.b64encode(IMAGE_BYTES).decode()
IMAGE = "data:image/jpeg;base64," + IMAGE_B64

DOCUMENT_ACTIVE = {"status": "success", "uuid": "doc-tx-1", "data": {"activa": True, "mensaje": "Vigente"}}
DOCUMENT_INACTIVE = {"status": "success", "uuid": "doc-tx-2", "data": {"activa": False, "mensaje": "No vigente"}}
WATCHLIST_CLEAN = {"status": "success", "uuid": "aml-tx-1", "data": {"hits": []}}
WATCHLIST_MATCH = {
    "status": "success",
    "uuid": "aml-tx-2",
    "data": {"hits": [{"lista": "OFAC SDN", "descripcion": "Sanctioned individual"}]},
}
BIOMETRIC_MATCH = {
    "status": "success",
    "uuid": "bio-tx-1",
    "data": {"resultado_verificacion_rostro": "True", "certeza_verificacion_rostro": "0.93"},
}
BIOMETRIC_NO_MATCH = {
    "status": "success",
    "uuid": "bio-tx-2",
    "data": {"resultado_verificacion_rostro": "False", "certeza_verificacion_rostro": "0.42"},
}


class FakeProvider:
    """Answers provider requests by URL path and records every call."""

    def __init__(self):
        self.routes = {
            DOCUMENT_PATH: (200, DOCUMENT_ACTIVE),
            WATCHLIST_PATH: (200, WATCHLIST_CLEAN),
            BIOMETRIC_PATH: (200, BIOMETRIC_MATCH),
            OCR_FRONT_PATH: (200, {"status": "success", "data": {}}),
            OCR_BACK_PATH: (200, {"status": "success", "data": {}}),
        }
        self.calls = []

    def respond(self, path, body, status=200):
        self.routes[path] = (status, body)

    def raise_on(self, path, exc):
        self.routes[path] = exc

    def calls_to(self, path):
        return [call for call in self.calls if call["path"] == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append({
            "path": request.url.path,
            "body": json.loads(request.content or b"{}"),
            "headers": dict(request.headers),
        })
        route = self.routes.get(request.url.path, (404, {"status": "error", "message": "not found"}))
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status, body = route
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def clean_registries():
    reset_run_registry()
    reset_session_registry()
    reset_rate_limits()
    yield
    reset_run_registry()
    reset_session_registry()
    reset_rate_limits()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    db.add(Tenant(id="tenant-1", name="Inmobiliaria Norte", provider_api_keys=["tenant-key"]))
    db.commit()
    return TenantContext(tenant_id="tenant-1", api_keys=("tenant-key",))


@pytest.fixture
def subject(db, tenant):
    subject = Subject(
        tenant_id=tenant.tenant_id,
        subject_type="owner",
        full_name="JUAN PEREZ LOPEZ",
        clave_de_elector="PRLPJN90030509H100",
        numero_de_emision="01",
        credential_model="H",
        issue_year=2020,
        cic="123456789",
        identificador_ciudadano="987654321",
        verification_token="tok-juan",
    )
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store(db):
    return ValidationStore(db)


@pytest.fixture
def evidence(db, tmp_path):
    return EvidenceStore(db, base_dir=str(tmp_path / "evidence"), base_url="https://cdn.test/evidence")


@pytest.fixture
def gateway(store, provider):
    return ProviderGateway(store=store, client=provider.client(), base_url="https://provider.test")


@pytest.fixture
def make_orchestrator(db, tenant, gateway, store, evidence):
    def factory(subject):
        return ValidationOrchestrator(db, subject, tenant, gateway, store, evidence)
    return factory
