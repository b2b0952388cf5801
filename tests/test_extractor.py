"""Unit tests for fingerprint extraction from captured frames."""

import numpy as np
from unittest.mock import patch

from cardscan.core.types import CardFrame, RegionFrame
from cardscan.fingerprint.extractor import FingerprintExtractor
from cardscan.fingerprint.hashing import derive_bucket16


class TestFingerprintExtractor:
    """Test FingerprintExtractor variant fingerprinting."""

    def setup_method(self):
        self.extractor = FingerprintExtractor(blur_floor=15.0, quad_rectify=False, workers=1)

    def test_extract_returns_variants_in_order(self, framed_photo):
        """Test that a sharp card yields fingerprints in seed order."""
        fingerprints = self.extractor.extract(framed_photo, CardFrame(), RegionFrame.full_card(), 5)

        tags = [fingerprint.variant_tag for fingerprint in fingerprints]
        assert tags == ["base", "left", "right", "up", "down"]
        assert [fingerprint.variant_index for fingerprint in fingerprints] == [0, 1, 2, 3, 4]

    def test_bucket_is_derived_from_phash(self, framed_photo):
        for fingerprint in self.extractor.extract(framed_photo, max_variants=3):
            assert fingerprint.bucket16 == derive_bucket16(fingerprint.phash_hi)
            assert len(fingerprint.phash64) == 16
            assert len(fingerprint.dhash64) == 16

    def test_single_variant(self, framed_photo):
        fingerprints = self.extractor.extract(framed_photo, max_variants=1)
        assert len(fingerprints) == 1
        assert fingerprints[0].variant_tag == "base"

    def test_extract_is_deterministic(self, framed_photo):
        first = self.extractor.extract(framed_photo, max_variants=3)
        second = self.extractor.extract(framed_photo, max_variants=3)
        assert first == second

    def test_worker_pool_gives_same_result(self, framed_photo):
        pooled = FingerprintExtractor(blur_floor=15.0, quad_rectify=False, workers=3)
        assert pooled.extract(framed_photo, max_variants=5) == self.extractor.extract(framed_photo, max_variants=5)

    def test_missing_frame(self):
        assert self.extractor.extract(None) == []
        assert self.extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8)) == []

    def test_flat_frame_is_rejected_by_blur_gate(self):
        flat = np.full((600, 600, 3), 127, dtype=np.uint8)
        assert self.extractor.extract(flat) == []

    def test_tiny_frame_is_rejected(self):
        rng = np.random.default_rng(0)
        tiny = rng.integers(0, 256, size=(20, 20, 3), dtype=np.uint8)
        assert self.extractor.extract(tiny) == []

    def test_crop_failure_returns_empty_list(self, framed_photo):
        with patch('cardscan.fingerprint.extractor.crop_card', side_effect=RuntimeError("bad frame")):
            assert self.extractor.extract(framed_photo) == []


class TestReferenceFingerprint:
    """Test fingerprint_image used when building the catalog."""

    def setup_method(self):
        self.extractor = FingerprintExtractor(blur_floor=15.0, quad_rectify=False, workers=1)

    def test_reference_fingerprint_is_deterministic(self, textured_card):
        first = self.extractor.fingerprint_image(textured_card)
        second = self.extractor.fingerprint_image(textured_card)
        assert first is not None
        assert first == second
        assert first.variant_tag == "base"

    def test_reference_fingerprint_skips_blur_gate(self):
        """Test that clean flat scans are still indexed."""
        flat = np.full((352, 256, 3), 200, dtype=np.uint8)
        assert self.extractor.fingerprint_image(flat) is not None

    def test_reference_matches_camera_base_variant(self, textured_card):
        """Test that an exactly framed card hashes like its reference image."""
        reference = self.extractor.fingerprint_image(textured_card)
        live = self.extractor.extract(textured_card, CardFrame.whole_image(), max_variants=1)[0]
        assert (live.phash_hi, live.phash_lo, live.dhash_hi, live.dhash_lo) == (
            reference.phash_hi, reference.phash_lo, reference.dhash_hi, reference.dhash_lo
        )

    def test_missing_image(self):
        assert self.extractor.fingerprint_image(None) is None

    def test_tiny_image(self):
        assert self.extractor.fingerprint_image(np.zeros((10, 10, 3), dtype=np.uint8)) is None

    def test_quad_rectify_still_hashes(self, textured_card):
        extractor = FingerprintExtractor(blur_floor=15.0, quad_rectify=True, workers=1)
        fingerprint = extractor.fingerprint_image(textured_card)
        assert fingerprint is not None
        assert len(fingerprint.phash64) == 16
