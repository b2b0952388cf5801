"""OCR package for text extraction from card frames."""

from .extract import TesseractTextExtractor, normalize_recognized_text
from .regexes import (
    build_name_candidates,
    build_set_collector_candidates,
    normalize_collector_number,
    normalize_set_code,
)

__all__ = [
    "TesseractTextExtractor",
    "normalize_recognized_text",
    "build_name_candidates",
    "build_set_collector_candidates",
    "normalize_collector_number",
    "normalize_set_code",
]
