"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, Field


# ──────────────── Subjects ────────────────

class SubjectCreateRequest(BaseModel):
    subject_type: str = Field(..., description="owner or buyer")
    is_legal_entity: bool = False
    full_name: Optional[str] = None
    curp: Optional[str] = None
    rfc: Optional[str] = None
    birth_date: Optional[str] = Field(None, description="DD/MM/YYYY or YYYY-MM-DD")
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    clave_de_elector: Optional[str] = None
    numero_de_emision: Optional[str] = None
    credential_model: Optional[str] = Field(None, description="Letter printed on the credential (A-H)")
    issue_year: Optional[int] = None


class SubjectResponse(BaseModel):
    id: int
    tenant_id: str
    subject_type: str
    full_name: Optional[str] = None
    curp: Optional[str] = None
    clave_de_elector: Optional[str] = None
    credential_model: Optional[str] = None
    issue_year: Optional[int] = None
    address: Optional[str] = None
    document_validated: bool = False
    watchlist_validated: bool = False
    watchlist_risk: bool = False
    biometric_status: str = "pending"
    biometric_score: Optional[float] = None
    created_at: datetime

    class Config:
        from_attributes = True


class VerificationLinkResponse(BaseModel):
    subject_id: int
    token: str
    path: str


# ──────────────── Staff Validation ────────────────

class ValidationRunRequest(BaseModel):
    front_image: Optional[str] = Field(None, description="Base64 (data URI allowed) credential front")
    back_image: Optional[str] = Field(None, description="Base64 (data URI allowed) credential back")
    full_name: Optional[str] = None
    credential_code: Optional[str] = Field(None, description="Model letter printed on the credential")
    issue_year: Optional[int] = None
    clave_de_elector: Optional[str] = None
    numero_de_emision: Optional[str] = None
    ocr_number: Optional[str] = None
    cic: Optional[str] = None
    identificador_ciudadano: Optional[str] = None
    mrz: Optional[str] = None


class WatchlistCheckRequest(BaseModel):
    full_name: Optional[str] = Field(None, description="Defaults to the subject's name")


class ResetRequest(BaseModel):
    kind: str = Field(..., description="document | watchlist | biometric")
    confirm: bool = False
    confirm_kind: Optional[str] = Field(None, description="Must repeat `kind`")


class ValidationStatusResponse(BaseModel):
    subject_id: int
    state: str
    message: str = ""
    warnings: List[str] = []
    document_validated: bool
    document_record_id: Optional[int] = None
    watchlist_validated: bool
    watchlist_risk: bool
    watchlist_status: str
    watchlist_record_id: Optional[int] = None
    biometric_status: str
    biometric_score: Optional[float] = None


class ValidationRecordEntry(BaseModel):
    id: int
    kind: str
    outcome: str
    subject_type: str
    provider_transaction_id: Optional[str] = None
    response_hash: Optional[str] = None
    evidence: Dict = {}
    api_response: Dict = {}
    created_at: datetime

    class Config:
        from_attributes = True


# ──────────────── Public Verification ────────────────

class CaptureRequest(BaseModel):
    image: str = Field(..., min_length=1, description="Base64 image, data URI allowed")
    step: Optional[str] = Field(None, description="selfie | ine_front | ine_back")


class PublicSessionResponse(BaseModel):
    step: str
    client_name: str = ""
    message: str = ""
    score: Optional[float] = None
    captured: List[str] = []
