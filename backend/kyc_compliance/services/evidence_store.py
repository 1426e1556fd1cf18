"""
Evidence Store — Persists identity images and returns durable public URLs.

Uploads are supplementary: a failure is logged and reported as None, never
raised, so it cannot turn a successful validation into a failed one.
"""
import base64
import binascii
import logging
import os
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kyc_compliance.config import get_settings
from kyc_compliance.models.evidence import EvidenceAsset
from kyc_compliance.services.credential_parser import strip_data_uri
from kyc_compliance.utils.hashing import hash_bytes

logger = logging.getLogger(__name__)

EVIDENCE_SIDES = ("frente", "reverso", "selfie")


class EvidenceStore:
    """Local-disk evidence bucket served under EVIDENCE_BASE_URL."""

    def __init__(self, db: Session, base_dir: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.db = db
        self.base_dir = base_dir or settings.EVIDENCE_DIR
        self.base_url = (base_url or settings.EVIDENCE_BASE_URL).rstrip("/")

    async def upload(self, image: str, subject_id: int, side: str) -> Optional[str]:
        """Store a base64 image (data-URI prefix allowed).

        Returns:
            The public URL, or None if the image could not be stored.
        """
        if side not in EVIDENCE_SIDES:
            logger.warning(f"Rejected evidence upload with unknown side '{side}'")
            return None

        try:
            content = base64.b64decode(strip_data_uri(image), validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Evidence for subject {subject_id} ({side}) is not valid base64: {e}")
            return None
        if not content:
            logger.warning(f"Evidence for subject {subject_id} ({side}) is empty")
            return None

        relative_path = f"kyc/{subject_id}/{int(time.time() * 1000)}_{side}_{hash_bytes(content)[:12]}.jpg"
        full_path = os.path.join(self.base_dir, relative_path)

        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Evidence write failed for subject {subject_id} ({side}): {e}")
            return None

        public_url = f"{self.base_url}/{relative_path}"

        try:
            self.db.add(EvidenceAsset(
                subject_id=subject_id,
                side=side,
                storage_path=relative_path,
                public_url=public_url,
                size_bytes=len(content),
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Evidence row for subject {subject_id} ({side}) not saved: {e}")
            return None

        logger.info(f"Stored {side} evidence for subject {subject_id} ({len(content)} bytes)")
        return public_url
