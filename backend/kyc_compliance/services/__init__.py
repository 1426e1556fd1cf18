from kyc_compliance.services.audit_service import ValidationStore
from kyc_compliance.services.evidence_store import EvidenceStore
from kyc_compliance.services.provider_gateway import ProviderGateway, TenantContext, GatewayResult
from kyc_compliance.services.validation_orchestrator import ValidationOrchestrator
from kyc_compliance.services.self_service import PublicVerificationSession
from kyc_compliance.services.subject_service import SubjectService

__all__ = [
    "ValidationStore", "EvidenceStore", "ProviderGateway", "TenantContext", "GatewayResult",
    "ValidationOrchestrator", "PublicVerificationSession", "SubjectService",
]
