"""
Validators — Regex checks for Mexican voter-credential (INE) identifiers.
"""
import re


def validate_clave_elector(clave: str | None) -> bool:
    """Elector key: 6 letters, 8 digits (birth date + state), sex letter, 3 alphanumerics."""
    if not clave:
        return False
    return bool(re.match(r"^[A-Z]{6}\d{8}[HM][A-Z0-9]{3}$", clave.strip().upper()))


def validate_ocr_number(ocr: str | None) -> bool:
    """OCR / check-digit number printed on model C credentials: exactly 13 digits."""
    if not ocr:
        return False
    return bool(re.match(r"^\d{13}$", ocr.strip()))


def validate_curp(curp: str | None) -> bool:
    """CURP: 18 characters (4 letters, 6 digits, sex, 5 letters, 2 alphanumerics)."""
    if not curp:
        return False
    return bool(re.match(r"^[A-Z]{4}\d{6}[HMX][A-Z]{5}[A-Z0-9]\d$", curp.strip().upper()))


def digits_only(value: str | None) -> str:
    """Strip every non-digit character."""
    if not value:
        return ""
    return re.sub(r"\D", "", str(value))
