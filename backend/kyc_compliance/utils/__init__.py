from kyc_compliance.utils.hashing import generate_hash, hash_bytes
from kyc_compliance.utils.validators import (
    validate_clave_elector, validate_ocr_number, validate_curp, digits_only,
)

__all__ = [
    "generate_hash", "hash_bytes",
    "validate_clave_elector", "validate_ocr_number", "validate_curp", "digits_only",
]
