"""
Match module for fingerprint and OCR-text resolution against the catalog.
"""

from .resolver import FingerprintResolver, compute_confidence
from .text_resolver import CatalogTextResolver

__all__ = [
    "FingerprintResolver",
    "CatalogTextResolver",
    "compute_confidence",
]
