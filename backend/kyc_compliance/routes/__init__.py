from kyc_compliance.routes.subjects import router as subjects_router
from kyc_compliance.routes.kyc import router as kyc_router
from kyc_compliance.routes.verification import router as verification_router

__all__ = ["subjects_router", "kyc_router", "verification_router"]
