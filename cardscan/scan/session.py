"""Per-session scan state owned by the cycle controller."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..core.types import ScanResult, ScoredCandidate, StableMatchTracker
from ..utils.config import SCANNER_ENGINE_HYBRID, normalize_engine

HINT_READY = "Point your camera at a card"
HINT_RECOGNIZING = "Recognizing..."
HINT_RECOGNIZING_HYBRID = "Recognizing (Hybrid Hash)..."
HINT_MATCHED = "Matched"
HINT_NEED_SELECTION = "Need manual select"
HINT_HOLD_STEADY = "No confident hash match yet. Hold steady on artwork"
HINT_OCR_ENABLED = "Hash miss: OCR fallback enabled"
HINT_OCR_DELAYED = "Hash-first scan active (OCR fallback delayed)"


class ScanState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    DECIDING = "deciding"
    STABILIZING = "stabilizing"
    AMBIGUOUS_WAIT = "ambiguous_wait"
    NAVIGATED = "navigated"


@dataclass
class ScanSession:
    """Everything that survives from one scan cycle to the next."""

    engine: str = SCANNER_ENGINE_HYBRID
    state: ScanState = ScanState.IDLE
    tracker: StableMatchTracker = field(default_factory=StableMatchTracker)
    miss_streak: int = 0
    first_miss_at: Optional[float] = None
    cycle_id: int = 0
    in_flight: bool = False
    paused: bool = False
    navigated: bool = False
    navigated_card_id: Optional[str] = None
    hint_text: str = HINT_READY
    last_error: str = ""
    last_result: Optional[ScanResult] = None
    candidates: Tuple[ScoredCandidate, ...] = ()

    def __post_init__(self):
        self.engine = normalize_engine(self.engine)

    @property
    def uses_fingerprints(self) -> bool:
        return self.engine == SCANNER_ENGINE_HYBRID

    @property
    def allow_ocr_fallback(self) -> bool:
        """Text recognition joins in for text-only engines or after the first fingerprint miss."""
        return not self.uses_fingerprints or self.miss_streak >= 1

    @property
    def can_scan(self) -> bool:
        return not (self.paused or self.navigated or self.in_flight)

    def begin_cycle(self) -> int:
        self.cycle_id += 1
        self.in_flight = True
        self.state = ScanState.CAPTURING
        return self.cycle_id

    def register_miss(self, now: float) -> float:
        """Count a missed cycle; returns seconds since the first miss of the streak."""
        self.miss_streak += 1
        if self.first_miss_at is None:
            self.first_miss_at = now
        return now - self.first_miss_at

    def reset(self, now: Optional[float] = None):
        """Back to a fresh scanning session."""
        self.state = ScanState.IDLE
        self.tracker.reset()
        self.miss_streak = 0
        self.first_miss_at = now
        self.in_flight = False
        self.paused = False
        self.navigated = False
        self.navigated_card_id = None
        self.hint_text = HINT_READY
        self.last_error = ""
        self.candidates = ()
