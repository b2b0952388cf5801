"""Perceptual hashing primitives for card fingerprints.

Every function here is deterministic: the same input bytes always give the same
hash bits, so hashes computed at index-build time stay comparable with hashes
computed from camera frames. Undersized inputs yield an empty hash string
instead of raising.
"""

import math
import re
from typing import Optional, Tuple

import numpy as np

from ..core.constants import (
    CONTRAST_HIGH_PCT,
    CONTRAST_LOW_PCT,
    DHASH_TILE,
    HASH_ENABLE_HIST_EQUALIZATION,
    PHASH_TILE,
)
from ..core.types import GrayscaleImage

_HEX64_PATTERN = re.compile(r"^[0-9a-f]{1,16}$")
_UINT32_MASK = 0xFFFFFFFF
_PHASH_SIZE = PHASH_TILE[0]
_PHASH_LOW_FREQ = 8


def round_half_up(values):
    """Round with ties going up, the way bytes are produced everywhere in the hash path."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def clamp_byte(values) -> np.ndarray:
    """Clamp to [0, 255] and round; non-finite values become 0."""
    array = np.asarray(values, dtype=np.float64)
    array = np.where(np.isfinite(array), array, 0.0)
    array = np.clip(array, 0.0, 255.0)
    return round_half_up(array).astype(np.uint8)


def to_grayscale(pixels, width: Optional[int] = None, height: Optional[int] = None,
                 channel_order: str = "rgb") -> GrayscaleImage:
    """
    Convert an RGB(A) buffer to luma using the BT.601 weights.

    Args:
        pixels: HxWxC array, HxW array, or flat buffer (then width/height are required)
        width: Image width for flat buffers
        height: Image height for flat buffers
        channel_order: "rgb" or "bgr" (OpenCV frames are BGR)

    Returns:
        GrayscaleImage with luma = 0.299R + 0.587G + 0.114B
    """
    array = np.asarray(pixels)
    if array.ndim == 1:
        if width is None or height is None:
            raise ValueError("width and height are required for flat pixel buffers")
        count = int(width) * int(height)
        if count <= 0 or array.size == 0:
            return GrayscaleImage(0, 0, np.zeros(0, dtype=np.uint8))
        channels = max(1, array.size // count)
        array = array[: count * channels].reshape(int(height), int(width), channels)

    if array.size == 0:
        return GrayscaleImage(0, 0, np.zeros(0, dtype=np.uint8))

    if array.ndim == 2 or array.shape[2] == 1:
        return GrayscaleImage.from_array(clamp_byte(array.reshape(array.shape[0], array.shape[1])))

    channels = clamp_byte(array[..., :3]).astype(np.float64)
    if channel_order.lower() == "bgr":
        blue, green, red = channels[..., 0], channels[..., 1], channels[..., 2]
    else:
        red, green, blue = channels[..., 0], channels[..., 1], channels[..., 2]

    luma = 0.299 * red + 0.587 * green + 0.114 * blue
    return GrayscaleImage.from_array(clamp_byte(luma))


def _first_bin_reaching(cumulative: np.ndarray, target: int) -> int:
    return int(np.argmax(cumulative >= target))


def _percentile(value, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number) or number == 0:
        return fallback
    return max(0.0, min(1.0, number))


def normalize_contrast(gray: GrayscaleImage, low_pct: float = CONTRAST_LOW_PCT,
                       high_pct: float = CONTRAST_HIGH_PCT, gamma: float = 1.0) -> GrayscaleImage:
    """
    Percentile-based histogram stretch.

    The low/high bounds are the first histogram bins whose cumulative count
    reaches floor(n * pct). When the bounds collapse the input is returned
    unchanged.
    """
    if gray.pixels.size == 0:
        return gray

    histogram = np.bincount(gray.pixels, minlength=256)
    cumulative = np.cumsum(histogram)
    total = gray.pixels.size

    low_target = math.floor(total * _percentile(low_pct, 0.0))
    high_target = math.floor(total * _percentile(high_pct, 1.0))
    low = _first_bin_reaching(cumulative, low_target)
    high = _first_bin_reaching(cumulative, high_target)

    if high <= low:
        return gray

    try:
        gamma_safe = float(gamma)
    except (TypeError, ValueError):
        gamma_safe = 1.0
    if not math.isfinite(gamma_safe) or gamma_safe <= 0:
        gamma_safe = 1.0

    inv_range = 1.0 / (high - low)
    normalized = np.clip((gray.pixels.astype(np.float64) - low) * inv_range, 0.0, 1.0)
    if gamma_safe != 1.0:
        normalized = np.power(normalized, gamma_safe)

    return GrayscaleImage(gray.width, gray.height, clamp_byte(normalized * 255))


def equalize_histogram(gray: GrayscaleImage) -> GrayscaleImage:
    """Classic CDF histogram equalisation."""
    if gray.pixels.size == 0:
        return gray

    histogram = np.bincount(gray.pixels, minlength=256)
    cdf = np.cumsum(histogram)
    nonzero = cdf[cdf > 0]
    cdf_min = int(nonzero[0]) if nonzero.size else 0
    denom = max(1, gray.pixels.size - cdf_min)

    mapped = ((cdf[gray.pixels].astype(np.float64) - cdf_min) / denom) * 255
    return GrayscaleImage(gray.width, gray.height, clamp_byte(mapped))


def preprocess_for_hash(gray: GrayscaleImage) -> GrayscaleImage:
    stretched = normalize_contrast(gray)
    if not HASH_ENABLE_HIST_EQUALIZATION:
        return stretched
    return equalize_histogram(stretched)


def resize_nearest(gray: GrayscaleImage, dst_width: int, dst_height: int) -> GrayscaleImage:
    """Nearest-neighbour resize; no interpolation so hash bits are reproducible."""
    if gray.width <= 0 or gray.height <= 0 or dst_width <= 0 or dst_height <= 0:
        return GrayscaleImage(0, 0, np.zeros(0, dtype=np.uint8))

    ys = np.arange(dst_height, dtype=np.float64)
    xs = np.arange(dst_width, dtype=np.float64)
    src_y = np.minimum(gray.height - 1, round_half_up((ys / dst_height) * gray.height)).astype(np.intp)
    src_x = np.minimum(gray.width - 1, round_half_up((xs / dst_width) * gray.width)).astype(np.intp)

    resized = gray.as_2d()[np.ix_(src_y, src_x)]
    return GrayscaleImage.from_array(resized)


def _dct_matrix(size: int) -> np.ndarray:
    u = np.arange(size, dtype=np.float64).reshape(-1, 1)
    x = np.arange(size, dtype=np.float64).reshape(1, -1)
    return np.cos((2 * x + 1) * u * math.pi / (2 * size))


_DCT_BASIS = _dct_matrix(_PHASH_SIZE)


def dct2_low_frequency(values: np.ndarray, keep: int = _PHASH_LOW_FREQ) -> np.ndarray:
    """
    Orthogonal-scaled DCT-II of a square block, restricted to the top-left
    ``keep`` x ``keep`` coefficients.
    """
    size = values.shape[0]
    basis = _DCT_BASIS if size == _PHASH_SIZE else _dct_matrix(size)
    basis = basis[:keep]
    coefficients = basis @ values.astype(np.float64) @ basis.T

    scale = np.ones(keep, dtype=np.float64)
    scale[0] = math.sqrt(0.5)
    return (2.0 / size) * np.outer(scale, scale) * coefficients


def bits_to_hex64(bits) -> str:
    value = 0
    for bit in bits:
        value = (value << 1) | (1 if bit else 0)
    return f"{value:016x}"


def compute_phash64(gray: GrayscaleImage) -> str:
    """
    DCT perceptual hash of a 32x32 tile.

    Bits come from the 8x8 low-frequency block, excluding the DC term, each
    set when the coefficient exceeds the median of the 63 collected values.
    The DC bit is always 0.

    Returns:
        16 lowercase hex characters, or "" when the tile is smaller than 32x32
    """
    if gray.width < PHASH_TILE[0] or gray.height < PHASH_TILE[1]:
        return ""

    block = gray.as_2d()[:_PHASH_SIZE, :_PHASH_SIZE]
    low_freq = dct2_low_frequency(block).reshape(-1)

    ac_terms = np.sort(low_freq[1:])
    median = ac_terms[len(ac_terms) // 2]
    bits = low_freq > median
    bits[0] = False
    return bits_to_hex64(bits)


def compute_dhash64(gray: GrayscaleImage) -> str:
    """
    Horizontal difference hash of a 9x8 tile: bit set when left > right.

    Returns:
        16 lowercase hex characters, or "" when the tile is smaller than 9x8
    """
    if gray.width < DHASH_TILE[0] or gray.height < DHASH_TILE[1]:
        return ""

    rows = gray.as_2d()[: DHASH_TILE[1], : DHASH_TILE[0]].astype(np.int16)
    bits = (rows[:, :-1] > rows[:, 1:]).reshape(-1)
    return bits_to_hex64(bits)


def normalize_hex64(value) -> str:
    hex_value = str(value if value is not None else "").strip().lower()
    hex_value = re.sub(r"^0x", "", hex_value)
    if not _HEX64_PATTERN.match(hex_value):
        return ""
    return hex_value.zfill(16)


def split_hex64_to_hi_lo(hex64) -> Optional[Tuple[int, int]]:
    """Split a 64-bit hex hash into unsigned 32-bit halves; None when invalid."""
    normalized = normalize_hex64(hex64)
    if not normalized:
        return None
    return int(normalized[:8], 16), int(normalized[8:], 16)


def to_uint32(value) -> int:
    number = float(value)
    if not math.isfinite(number):
        return 0
    return int(number) & _UINT32_MASK


def hi_lo_to_hex64(hi, lo) -> str:
    return f"{to_uint32(hi):08x}{to_uint32(lo):08x}"


def hi_lo_to_int(hi, lo) -> int:
    return (to_uint32(hi) << 32) | to_uint32(lo)


def _popcount(value: int) -> int:
    return bin(value).count("1")


def hamming_distance64(a_hi, a_lo, b_hi, b_lo) -> int:
    """Bit distance between two 64-bit hashes given as unsigned 32-bit halves."""
    return (
        _popcount(to_uint32(a_hi) ^ to_uint32(b_hi))
        + _popcount(to_uint32(a_lo) ^ to_uint32(b_lo))
    )


def derive_bucket16(hi) -> int:
    return (to_uint32(hi) >> 16) & 0xFFFF
