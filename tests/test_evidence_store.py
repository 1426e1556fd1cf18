"""
Tests for evidence image storage.
"""
import asyncio
import os

from kyc_compliance.models import EvidenceAsset
from kyc_compliance.services.evidence_store import EvidenceStore

from conftest import IMAGE, IMAGE_B64, IMAGE_BYTES


def _upload(evidence, image, subject_id=1, side="frente"):
    return asyncio.run(evidence.upload(image, subject_id, side))


def test_upload_writes_file_and_returns_public_url(evidence, db, subject):
    url = _upload(evidence, IMAGE, subject.id)

    assert url.startswith(f"https://cdn.test/evidence/kyc/{subject.id}/")
    assert url.endswith(".jpg")
    asset = db.query(EvidenceAsset).one()
    assert asset.public_url == url
    assert asset.size_bytes == len(IMAGE_BYTES)
    assert asset.record_id is None
    with open(os.path.join(evidence.base_dir, asset.storage_path), "rb") as f:
        assert f.read() == IMAGE_BYTES


def test_plain_base64_accepted(evidence, subject):
    assert _upload(evidence, IMAGE_B64, subject.id, "selfie") is not None


def test_invalid_base64_returns_none(evidence, db, subject):
    assert _upload(evidence, "data:image/jpeg;base64,@@not-base64@@", subject.id) is None
    assert db.query(EvidenceAsset).count() == 0


def test_empty_image_returns_none(evidence, subject):
    assert _upload(evidence, "", subject.id) is None


def test_unknown_side_returns_none(evidence, subject):
    assert _upload(evidence, IMAGE, subject.id, side="passport") is None


def test_write_failure_returns_none(db, subject, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("occupied")
    store = EvidenceStore(db, base_dir=str(blocker), base_url="https://cdn.test")
    assert asyncio.run(store.upload(IMAGE, subject.id, "frente")) is None
