"""Tests for Tesseract text extraction with pytesseract mocked out."""

import numpy as np
import pytesseract
import pytest
from unittest.mock import patch

from cardscan.core.types import CardFrame, RegionFrame
from cardscan.ocr.extract import TesseractTextExtractor, normalize_recognized_text
from cardscan.utils.error_handler import OCRError


@pytest.fixture
def extractor():
    return TesseractTextExtractor(tesseract_cmd="/usr/bin/tesseract")


@pytest.fixture
def frame():
    rng = np.random.default_rng(3)
    return rng.integers(0, 256, size=(800, 600, 3), dtype=np.uint8)


class TestNormalizeRecognizedText:
    def test_whitespace_is_collapsed(self):
        assert normalize_recognized_text("  Sol   Ring \n\n  Artifact  ") == "Sol Ring\nArtifact"

    def test_non_string(self):
        assert normalize_recognized_text(None) == ""
        assert normalize_recognized_text(b"bytes") == ""


class TestTesseractTextExtractor:
    """Test region reads of TesseractTextExtractor."""

    def test_title_latin_pass(self, extractor, frame):
        with patch('cardscan.ocr.extract.pytesseract.image_to_string', return_value=" Sol  Ring \n") as mock_ocr:
            text = extractor.extract_title_text(frame, CardFrame())

        assert text == "Sol Ring"
        assert mock_ocr.call_count == 1
        assert mock_ocr.call_args.kwargs["lang"] == "eng"
        assert mock_ocr.call_args.kwargs["config"] == "--psm 7"

    def test_title_multilingual_fallback(self, extractor, frame):
        """Test that the Japanese model only runs after a short Latin read."""
        with patch('cardscan.ocr.extract.pytesseract.image_to_string', side_effect=["a", "稲妻"]) as mock_ocr:
            text = extractor.extract_title_text(frame, CardFrame(), enable_multilingual_fallback=True)

        assert text == "稲妻"
        assert [call.kwargs["lang"] for call in mock_ocr.call_args_list] == ["eng", "jpn"]

    def test_title_without_multilingual_fallback(self, extractor, frame):
        with patch('cardscan.ocr.extract.pytesseract.image_to_string', return_value="a") as mock_ocr:
            assert extractor.extract_title_text(frame, CardFrame()) == "a"
        assert mock_ocr.call_count == 1

    def test_footer_joins_regions(self, extractor, frame):
        with patch('cardscan.ocr.extract.pytesseract.image_to_string',
                   side_effect=["M 0096 BLC EN", "", "BLC 96"]) as mock_ocr:
            text = extractor.extract_footer_text(frame, CardFrame(), RegionFrame.edition())

        assert text == "M 0096 BLC EN\nBLC 96"
        assert mock_ocr.call_count == 3

    def test_card_text(self, extractor, frame):
        with patch('cardscan.ocr.extract.pytesseract.image_to_string', return_value="Lightning Bolt\nInstant"):
            assert extractor.extract_card_text(frame, CardFrame()) == "Lightning Bolt\nInstant"

    def test_tesseract_error_gives_empty_text(self, extractor, frame):
        with patch('cardscan.ocr.extract.pytesseract.image_to_string',
                   side_effect=pytesseract.TesseractError(1, "failed")):
            assert extractor.extract_title_text(frame, CardFrame()) == ""
            assert extractor.extract_card_text(frame, CardFrame()) == ""

    def test_missing_tesseract_gives_empty_text(self, frame):
        extractor = TesseractTextExtractor()
        with patch('cardscan.ocr.extract.resolve_tesseract_path', side_effect=FileNotFoundError("tesseract")):
            assert extractor.extract_footer_text(frame, CardFrame(), RegionFrame.edition()) == ""

    def test_missing_image(self, extractor):
        assert extractor.extract_title_text(None, CardFrame()) == ""
        assert extractor.extract_footer_text(None, CardFrame(), RegionFrame.edition()) == ""
        assert extractor.extract_card_text(None, CardFrame()) == ""

    def test_crop_grows_to_minimum_size(self, extractor, frame):
        roi = extractor._crop_card_roi(frame, CardFrame(), RegionFrame(0.0, 0.0, 0.01, 0.01), (120, 40))
        assert roi.shape[1] == 120
        assert roi.shape[0] == 40

    def test_rescale_bounds(self, extractor):
        small = np.zeros((20, 100), dtype=np.uint8)
        assert max(extractor._rescale(small, min_dimension=1200).shape) == 1200
        large = np.zeros((3000, 1000), dtype=np.uint8)
        assert max(extractor._rescale(large, max_dimension=1500).shape) == 1500

    def test_ensure_tesseract_raises_ocr_error(self):
        extractor = TesseractTextExtractor()
        with patch('cardscan.ocr.extract.resolve_tesseract_path', side_effect=FileNotFoundError("tesseract")):
            with pytest.raises(OCRError):
                extractor._ensure_tesseract()
        assert not extractor._configured
