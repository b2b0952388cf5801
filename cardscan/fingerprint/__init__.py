"""Fingerprint package: perceptual hashing, frame geometry and extraction."""

from .extractor import FingerprintExtractor
from .geometry import GeometryVariant, build_variants, quad_detector
from .hashing import (
    compute_dhash64,
    compute_phash64,
    derive_bucket16,
    hamming_distance64,
    hi_lo_to_hex64,
    normalize_hex64,
    split_hex64_to_hi_lo,
)

__all__ = [
    "FingerprintExtractor",
    "GeometryVariant",
    "build_variants",
    "quad_detector",
    "compute_phash64",
    "compute_dhash64",
    "derive_bucket16",
    "hamming_distance64",
    "hi_lo_to_hex64",
    "normalize_hex64",
    "split_hex64_to_hi_lo",
]
