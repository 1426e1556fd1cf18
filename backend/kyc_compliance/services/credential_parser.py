"""
Credential Parser — MRZ parsing, date normalization and INE model classification.

The electoral authority reused the letter codes A/B/C across layout redesigns,
so the code printed on a credential only means something together with its
issuance year.
"""
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional, Dict

from kyc_compliance.services.errors import InputIncomplete
from kyc_compliance.utils.validators import digits_only, validate_ocr_number

_DATE_RE = re.compile(r"^(\d{2})[/-](\d{2})[/-](\d{4})$")
_MRZ_RE = re.compile(r"IDMEX(\d+)<+(\d+)")

REDESIGNED_CODES = {"A", "B", "C"}
OCR_MODELS = {"C", "D"}
CIC_MODELS = {"E", "F", "G", "H"}


@dataclass
class CredentialFields:
    """Structured credential data gathered from OCR, the MRZ or manual entry."""

    clave_de_elector: Optional[str] = None
    numero_de_emision: Optional[str] = None
    ocr_number: Optional[str] = None
    cic: Optional[str] = None
    identificador_ciudadano: Optional[str] = None
    model_code: Optional[str] = None
    issue_year: Optional[int] = None
    mrz: Optional[str] = None

    @property
    def model(self) -> Optional[str]:
        return classify_model(self.model_code, self.issue_year)


@dataclass
class MRZData:
    cic: str
    identificador_ciudadano: str
    ocr_number: str


def normalize_date(value):
    """DD/MM/YYYY or DD-MM-YYYY → YYYY-MM-DD. Anything else is returned unchanged."""
    if not isinstance(value, str):
        return value
    match = _DATE_RE.match(value.strip())
    if not match:
        return value
    day, month, year = match.groups()
    return f"{year}-{month}-{day}"


def parse_mrz(text: Optional[str]) -> Optional[MRZData]:
    """Extract CIC, citizen identifier and OCR number from the back-side MRZ.

    Returns None when no IDMEX line is present.
    """
    if not text:
        return None
    compact = re.sub(r"[ \t]+", "", text.upper())
    match = _MRZ_RE.search(compact)
    if not match:
        return None
    first_run, second_run = match.groups()
    return MRZData(
        cic=first_run[:9],
        identificador_ciudadano=second_run[-9:],
        ocr_number=second_run,
    )


def classify_model(code: Optional[str], year) -> Optional[str]:
    """Map a printed model letter plus issuance year to the layout generation."""
    if not code:
        return code
    letter = code.strip().upper()
    try:
        issued = int(year)
    except (TypeError, ValueError):
        return letter
    if letter in REDESIGNED_CODES:
        if issued >= 2019:
            return "H"
        if issued >= 2014:
            return "E"
    return letter


def normalize_name(name: Optional[str]) -> str:
    """Uppercase, strip diacritics, drop non-letters and collapse whitespace."""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name.upper())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    letters = re.sub(r"[^A-Z\s]", "", stripped)
    return re.sub(r"\s+", " ", letters).strip()


def split_full_name(nombre: Optional[str], paterno: Optional[str], materno: Optional[str]) -> str:
    """Join front-side name parts the way they are printed."""
    parts = [p.strip() for p in (nombre, paterno, materno) if p and p.strip()]
    return " ".join(parts)


def strip_data_uri(image: Optional[str]) -> str:
    """Drop a leading `data:image/...;base64,` prefix if present."""
    if not image:
        return ""
    return image.split(",")[-1] if "," in image else image


def build_watchlist_payload(full_name: str) -> Dict[str, str]:
    """Only full_name carries data; the remaining keys are required by the provider."""
    return {
        "full_name": full_name,
        "first_name": "",
        "middle_name": "",
        "surnames": "",
        "birth_date": "",
        "birth_place": "",
    }


def build_document_payload(fields: CredentialFields) -> Dict[str, str]:
    """Assemble the document-validation payload for the credential's model.

    Raises:
        InputIncomplete: if the fields required by the active model are absent.
    """
    clave = (fields.clave_de_elector or "").strip().upper()
    if not clave:
        raise InputIncomplete("Elector key is missing.", missing=["clave_de_elector"])

    model = fields.model
    if not model:
        raise InputIncomplete("Credential model could not be determined.", missing=["credential_type"])

    payload = {
        "credential_type": model,
        "clave_de_elector": clave,
        "numero_de_emision": digits_only(fields.numero_de_emision) or "00",
    }

    ocr = digits_only(fields.ocr_number)
    cic = digits_only(fields.cic)
    identificador = digits_only(fields.identificador_ciudadano)

    if model in OCR_MODELS:
        if not validate_ocr_number(ocr):
            raise InputIncomplete(
                f"Model {model} credentials require the 13-digit OCR number.", missing=["ocr"]
            )
        payload["ocr"] = ocr
        return payload

    if model in CIC_MODELS:
        if (not cic or not identificador) and fields.mrz:
            mrz = parse_mrz(fields.mrz)
            if mrz:
                cic = cic or mrz.cic
                identificador = identificador or mrz.identificador_ciudadano
                ocr = ocr or mrz.ocr_number
        missing = [name for name, value in (("cic", cic), ("identificador_del_ciudadano", identificador)) if not value]
        if missing:
            raise InputIncomplete(
                f"Model {model} credentials require the CIC and citizen identifier.", missing=missing
            )
        payload["cic"] = cic
        payload["identificador_del_ciudadano"] = identificador
        if ocr:
            payload["ocr"] = ocr
        return payload

    raise InputIncomplete(f"Unsupported credential model: {model}", missing=["credential_type"])
