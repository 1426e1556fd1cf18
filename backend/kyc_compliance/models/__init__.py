from kyc_compliance.models.tenant import Tenant
from kyc_compliance.models.subject import Subject
from kyc_compliance.models.validation import ValidationRecord
from kyc_compliance.models.evidence import EvidenceAsset

__all__ = ["Tenant", "Subject", "ValidationRecord", "EvidenceAsset"]
