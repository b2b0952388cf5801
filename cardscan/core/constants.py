from typing import Final, Tuple

# Hash tile sizes (w, h)
PHASH_TILE: Final[Tuple[int, int]] = (32, 32)
DHASH_TILE: Final[Tuple[int, int]] = (9, 8)

# Contrast stretch percentiles
CONTRAST_LOW_PCT: Final[float] = 0.03
CONTRAST_HIGH_PCT: Final[float] = 0.97

# Histogram equalisation after the stretch; changing it changes every stored hash
HASH_ENABLE_HIST_EQUALIZATION: Final[bool] = False

# Geometry
MIN_TILE_SIDE: Final[int] = 16
QUAD_MIN_AREA_RATIO: Final[float] = 0.18
QUAD_CORNER_PENALTY: Final[float] = 0.5
MTG_CARD_ASPECT_RATIO: Final[float] = 63 / 88

# Region frames in card space (left, top, width, height)
FULL_CARD_REGION = (0.02, 0.02, 0.96, 0.96)
ARTWORK_REGION = (0.08, 0.18, 0.84, 0.46)
EDITION_REGION = (0.035, 0.91, 0.5, 0.065)

# Default card frame in image space
DEFAULT_CARD_FRAME = (0.18, 0.22, 0.64)

# Jitter seeds: (tag, dx, dy, scale)
VARIANT_SEEDS = (
    ("base", 0.0, 0.0, 1.0),
    ("left", -0.06, 0.0, 1.0),
    ("right", 0.06, 0.0, 1.0),
    ("up", 0.0, -0.05, 1.0),
    ("down", 0.0, 0.05, 1.0),
    ("tight", 0.0, 0.0, 0.92),
    ("wide", 0.0, 0.0, 1.08),
)
DEFAULT_MAX_VARIANTS: Final[int] = 5

# Fingerprint resolver thresholds
SHORTLIST_LIMIT: Final[int] = 72
SHORTLIST_NEIGHBOR_RANGE: Final[int] = 1
HARD_PHASH_MAX: Final[int] = 10
HARD_DHASH_MAX: Final[int] = 12
HARD_FILTER_CAP: Final[int] = 12
LOOSE_CAP: Final[int] = 8
LOOSE_SCORE_CEILING: Final[int] = 24
LOOSE_CONFIDENCE: Final[float] = 0.62
CONFIDENCE_SCORE_SPAN: Final[float] = 30.0
EXACT_MIN_CONFIDENCE: Final[float] = 0.86
CONFIDENT_MIN_CONFIDENCE: Final[float] = 0.83
CONFIDENT_MIN_SEPARATION: Final[int] = 2
CONFIDENT_PHASH_MAX: Final[int] = 12
CONFIDENT_DHASH_MAX: Final[int] = 14
EDITION_HINT_MIN_CONFIDENCE: Final[float] = 0.82
MAX_AMBIGUOUS_CANDIDATES: Final[int] = 12

# Orchestrator
EDITION_FAST_PATH_MIN_CONFIDENCE: Final[float] = 0.95
EDITION_RESOLVED_MIN_CONFIDENCE: Final[float] = 0.9

# Scan cycle timing (seconds)
HYBRID_SCAN_INTERVAL_S: Final[float] = 0.26
LEGACY_SCAN_INTERVAL_S: Final[float] = 1.2
INITIAL_SCAN_DELAY_S: Final[float] = 0.45
CAPTURE_TIMEOUT_S: Final[float] = 3.5
PROCESS_TIMEOUT_S: Final[float] = 7.0
WATCHDOG_GRACE_S: Final[float] = 2.5
NOT_FOUND_HINT_DELAY_S: Final[float] = 9.0

# Stability gate
FINGERPRINT_DECISION_THRESHOLD: Final[float] = 0.88
FINGERPRINT_STABLE_FRAMES: Final[int] = 1
DECISION_CONFIDENCE_THRESHOLD: Final[float] = 0.95
DECISION_STABLE_FRAMES: Final[int] = 2

# OCR regions in card space (left, top, width, height)
TITLE_REGION = (0.02, 0.02, 0.96, 0.14)
FOOTER_REGIONS = (
    (0.02, 0.88, 0.64, 0.09),
    (0.02, 0.85, 0.72, 0.12),
)
OCR_MIN_TITLE_CROP = (220, 90)
OCR_MIN_FOOTER_CROP = (140, 80)
OCR_MIN_CARD_CROP = (220, 280)
OCR_MAX_CARD_DIMENSION: Final[int] = 1280
