"""Tesseract OCR for card title, footer (edition) and full-card text."""

import re
from typing import Optional, Tuple

import cv2
import numpy as np
import pytesseract

from ..core.constants import (
    FOOTER_REGIONS,
    OCR_MAX_CARD_DIMENSION,
    OCR_MIN_CARD_CROP,
    OCR_MIN_FOOTER_CROP,
    OCR_MIN_TITLE_CROP,
    TITLE_REGION,
)
from ..core.types import CardFrame, RegionFrame
from ..fingerprint.geometry import clamp01, resolve_card_frame
from ..utils.config import resolve_tesseract_path
from ..utils.error_handler import OCRError
from ..utils.log import LoggerMixin

MIN_LATIN_TITLE_LENGTH = 3


def normalize_recognized_text(value) -> str:
    """Collapse whitespace inside lines and drop empty lines."""
    if not isinstance(value, str):
        return ""
    lines = [re.sub(r"\s+", " ", line).strip() for line in value.split("\n")]
    return "\n".join(line for line in lines if line).strip()


class TesseractTextExtractor(LoggerMixin):
    """Extracts text regions of a card frame with Tesseract."""

    def __init__(self, tesseract_cmd: Optional[str] = None):
        self._tesseract_cmd = tesseract_cmd
        self._configured = False

    def _ensure_tesseract(self):
        if self._configured:
            return
        try:
            pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd or resolve_tesseract_path()
        except FileNotFoundError as e:
            raise OCRError("Tesseract is not installed", {"error": str(e)}) from e
        self._configured = True
        self.logger.info("Tesseract configured", tesseract_path=pytesseract.pytesseract.tesseract_cmd)

    def extract_title_text(
        self, image: np.ndarray, card_frame: CardFrame, *, enable_multilingual_fallback: bool = False
    ) -> str:
        """
        Read the title band (top 14% of the card).

        Latin recognition runs first; the Japanese model is only tried when
        enabled and the Latin pass produced fewer than three characters.
        """
        if image is None:
            return ""
        try:
            self._ensure_tesseract()
            roi = self._crop_card_roi(image, card_frame, RegionFrame(*TITLE_REGION), OCR_MIN_TITLE_CROP)
            roi = self._rescale(roi, min_dimension=1200, max_dimension=1800)
            prepared = self._preprocess_text_roi(roi)

            latin_text = self._recognize(prepared, config="--psm 7")
            if len(latin_text) >= MIN_LATIN_TITLE_LENGTH:
                return latin_text

            if enable_multilingual_fallback:
                japanese_text = self._recognize(prepared, config="--psm 7", lang="jpn")
                if japanese_text:
                    return japanese_text
            return latin_text

        except Exception as e:
            self.logger.error("Title extraction failed", error=str(e))
            return ""

    def extract_footer_text(
        self, image: np.ndarray, card_frame: CardFrame, edition_frame: RegionFrame
    ) -> str:
        """Read the edition line; three overlapping footer crops are recognised and joined."""
        if image is None:
            return ""
        try:
            self._ensure_tesseract()
            regions = [edition_frame] + [RegionFrame(*region) for region in FOOTER_REGIONS]
            texts = []
            for region in regions:
                roi = self._crop_card_roi(image, card_frame, region, OCR_MIN_FOOTER_CROP)
                roi = self._rescale(roi, min_dimension=1200, max_dimension=1500)
                text = self._recognize(self._preprocess_text_roi(roi), config="--psm 6")
                if text:
                    texts.append(text)

            footer_text = normalize_recognized_text("\n".join(texts))
            self.logger.debug("Footer text extracted", text=footer_text, regions=len(regions))
            return footer_text

        except Exception as e:
            self.logger.error("Footer extraction failed", error=str(e))
            return ""

    def extract_card_text(self, image: np.ndarray, card_frame: CardFrame) -> str:
        if image is None:
            return ""
        try:
            self._ensure_tesseract()
            whole_card = RegionFrame(0.0, 0.0, 1.0, 1.0)
            roi = self._crop_card_roi(image, card_frame, whole_card, OCR_MIN_CARD_CROP)
            roi = self._rescale(roi, max_dimension=OCR_MAX_CARD_DIMENSION)
            return self._recognize(self._to_gray(roi), config="--psm 3")

        except Exception as e:
            self.logger.error("Card text extraction failed", error=str(e))
            return ""

    def _recognize(self, roi: np.ndarray, config: str, lang: str = "eng") -> str:
        try:
            text = pytesseract.image_to_string(roi, lang=lang, config=config)
        except pytesseract.TesseractError as e:
            self.logger.warning("Tesseract recognition failed", lang=lang, error=str(e))
            return ""
        return normalize_recognized_text(text)

    def _crop_card_roi(
        self,
        image: np.ndarray,
        card_frame: CardFrame,
        region: RegionFrame,
        min_size: Tuple[int, int],
    ) -> np.ndarray:
        """Crop a card-relative region, growing it to a minimum pixel size."""
        image_height, image_width = image.shape[:2]
        card_left, card_top, card_width, card_height = resolve_card_frame(
            card_frame, image_width, image_height
        )

        left = clamp01(card_left + card_width * region.left, 0.0)
        top = clamp01(card_top + card_height * region.top, 0.0)
        width = clamp01(card_width * region.width, 1.0)
        height = clamp01(card_height * region.height, 1.0)

        origin_x = min(image_width - 1, max(0, int(np.floor(image_width * left + 0.5))))
        origin_y = min(image_height - 1, max(0, int(np.floor(image_height * top + 0.5))))
        crop_w = max(min_size[0], int(np.floor(image_width * width + 0.5)))
        crop_h = max(min_size[1], int(np.floor(image_height * height + 0.5)))
        safe_w = max(1, min(crop_w, image_width - origin_x))
        safe_h = max(1, min(crop_h, image_height - origin_y))
        return image[origin_y:origin_y + safe_h, origin_x:origin_x + safe_w]

    def _rescale(self, roi: np.ndarray, min_dimension: int = 0, max_dimension: int = 0) -> np.ndarray:
        height, width = roi.shape[:2]
        longest = max(height, width)
        if longest == 0:
            return roi

        if max_dimension and longest > max_dimension:
            target = max_dimension
            interpolation = cv2.INTER_AREA
        elif min_dimension and longest < min_dimension:
            target = min_dimension
            interpolation = cv2.INTER_CUBIC
        else:
            return roi

        scale = target / longest
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return cv2.resize(roi, size, interpolation=interpolation)

    def _to_gray(self, roi: np.ndarray) -> np.ndarray:
        if len(roi.shape) == 3:
            return cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)
        return roi

    def _preprocess_text_roi(self, roi: np.ndarray) -> np.ndarray:
        """Light denoising plus adaptive threshold for short printed text lines."""
        try:
            gray = self._to_gray(roi)
            filtered = cv2.bilateralFilter(gray, 9, 75, 75)
            return cv2.adaptiveThreshold(
                filtered, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2
            )
        except Exception as e:
            self.logger.error("Text ROI preprocessing failed", error=str(e))
            return roi
