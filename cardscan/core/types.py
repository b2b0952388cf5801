from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import numpy as np

from .constants import (
    ARTWORK_REGION,
    DEFAULT_CARD_FRAME,
    DEFAULT_MAX_VARIANTS,
    EDITION_REGION,
    FULL_CARD_REGION,
    MAX_AMBIGUOUS_CANDIDATES,
    MTG_CARD_ASPECT_RATIO,
)


@dataclass(frozen=True)
class GrayscaleImage:
    """Row-major luma buffer. The pixel array is flagged read-only."""
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.ascontiguousarray(self.pixels, dtype=np.uint8).reshape(-1)
        if pixels.size != self.width * self.height:
            raise ValueError(
                f"pixel buffer has {pixels.size} values, expected {self.width}x{self.height}"
            )
        pixels.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "GrayscaleImage":
        height, width = array.shape[:2]
        return cls(width=int(width), height=int(height), pixels=array)

    def as_2d(self) -> np.ndarray:
        return self.pixels.reshape(self.height, self.width)


@dataclass(frozen=True)
class Fingerprint:
    phash_hi: int
    phash_lo: int
    dhash_hi: int
    dhash_lo: int
    bucket16: int
    variant_tag: str = "base"
    variant_index: int = 0

    @property
    def phash64(self) -> str:
        return f"{int(self.phash_hi) & 0xFFFFFFFF:08x}{int(self.phash_lo) & 0xFFFFFFFF:08x}"

    @property
    def dhash64(self) -> str:
        return f"{int(self.dhash_hi) & 0xFFFFFFFF:08x}{int(self.dhash_lo) & 0xFFFFFFFF:08x}"


@dataclass(frozen=True)
class CatalogFingerprintRow:
    card_id: str
    set_code: Optional[str]
    collector_number: Optional[str]
    phash_hi: int
    phash_lo: int
    dhash_hi: int
    dhash_lo: int
    bucket16: int
    lang: str = "en"
    art_variant: str = ""
    name: Optional[str] = None


@dataclass(frozen=True)
class CardRow:
    id: str
    name: str
    set_code: Optional[str] = None
    collector_number: Optional[str] = None
    mana_cost: Optional[str] = None
    type_line: Optional[str] = None
    released_at: Optional[str] = None


@dataclass(frozen=True)
class ScoredCandidate:
    """A catalog card offered as a possible answer; OCR candidates carry no distances."""
    card_id: str
    name: Optional[str] = None
    set_code: Optional[str] = None
    collector_number: Optional[str] = None
    score: Optional[int] = None
    phash_distance: Optional[int] = None
    dhash_distance: Optional[int] = None

    @classmethod
    def from_card_row(cls, row: CardRow) -> "ScoredCandidate":
        return cls(
            card_id=row.id,
            name=row.name,
            set_code=row.set_code,
            collector_number=row.collector_number,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def dedupe_candidates(
    candidates, limit: int = MAX_AMBIGUOUS_CANDIDATES
) -> Tuple[ScoredCandidate, ...]:
    """Keep the first occurrence of every card id, up to ``limit`` entries."""
    seen = set()
    unique: List[ScoredCandidate] = []
    for candidate in candidates:
        if not candidate.card_id:
            continue
        key = str(candidate.card_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return tuple(unique[:limit])


@dataclass(frozen=True)
class Matched:
    card_id: str
    matched_by: str
    confidence: float
    evidence: Dict[str, Any] = field(default_factory=dict)
    card: Optional[ScoredCandidate] = None
    debug: Optional[Dict[str, Any]] = None
    status: str = field(default="matched", init=False)

    def __post_init__(self):
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "status": self.status,
            "card_id": self.card_id,
            "matched_by": self.matched_by,
            "confidence": self.confidence,
            "evidence": dict(self.evidence),
        }
        if self.card is not None:
            payload["card"] = self.card.to_dict()
        if self.debug is not None:
            payload["debug"] = dict(self.debug)
        return payload


@dataclass(frozen=True)
class Ambiguous:
    candidates: Tuple[ScoredCandidate, ...]
    confidence: float
    matched_by: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    debug: Optional[Dict[str, Any]] = None
    status: str = field(default="ambiguous", init=False)

    def __post_init__(self):
        candidates = dedupe_candidates(self.candidates)
        if not candidates:
            raise ValueError("ambiguous result needs at least one candidate")
        object.__setattr__(self, "candidates", candidates)
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    @property
    def min_hamming_distance(self) -> Optional[int]:
        if not self.debug:
            return None
        return self.debug.get("min_hamming_distance")

    def card_ids(self) -> List[str]:
        return [str(candidate.card_id) for candidate in self.candidates]

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "status": self.status,
            "matched_by": self.matched_by,
            "confidence": self.confidence,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "evidence": dict(self.evidence),
        }
        if self.debug is not None:
            payload["debug"] = dict(self.debug)
        return payload


@dataclass(frozen=True)
class NoMatch:
    reason: str
    debug: Optional[Dict[str, Any]] = None
    status: str = field(default="none", init=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"status": self.status, "reason": self.reason}
        if self.debug is not None:
            payload["debug"] = dict(self.debug)
        return payload


ScanResult = Union[Matched, Ambiguous, NoMatch]


@dataclass
class StableMatchTracker:
    """Counts consecutive cycles that returned the same winning card id."""
    card_id: str = ""
    count: int = 0

    def observe(self, card_id: str) -> int:
        if self.card_id == str(card_id):
            self.count += 1
        else:
            self.card_id = str(card_id)
            self.count = 1
        return self.count

    def reset(self):
        self.card_id = ""
        self.count = 0


@dataclass(frozen=True)
class EditionHint:
    set_code: str = ""
    collector_number: str = ""
    edition_text: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.set_code and self.collector_number)


@dataclass(frozen=True)
class CardFrame:
    """Card bounding box as ratios of the captured image."""
    left: float = DEFAULT_CARD_FRAME[0]
    top: float = DEFAULT_CARD_FRAME[1]
    width: float = DEFAULT_CARD_FRAME[2]
    height: Optional[float] = None
    aspect_ratio: Optional[float] = MTG_CARD_ASPECT_RATIO

    @classmethod
    def whole_image(cls) -> "CardFrame":
        return cls(left=0.0, top=0.0, width=1.0, height=1.0, aspect_ratio=None)


@dataclass(frozen=True)
class RegionFrame:
    """Sub-region as ratios of the card bounding box."""
    left: float
    top: float
    width: float
    height: float

    @classmethod
    def full_card(cls) -> "RegionFrame":
        return cls(*FULL_CARD_REGION)

    @classmethod
    def artwork(cls) -> "RegionFrame":
        return cls(*ARTWORK_REGION)

    @classmethod
    def edition(cls) -> "RegionFrame":
        return cls(*EDITION_REGION)


@dataclass
class FrameMeta:
    image: Optional[np.ndarray]
    card_frame: CardFrame = field(default_factory=CardFrame)
    edition_frame: RegionFrame = field(default_factory=RegionFrame.edition)
    region_mode: str = "full_card"
    region_frame: Optional[RegionFrame] = None
    allow_ocr_fallback: bool = False
    skip_edition_ocr_in_primary: bool = False
    enable_multilingual_fallback: bool = False
    max_variants: int = DEFAULT_MAX_VARIANTS

    def resolved_region(self) -> RegionFrame:
        if self.region_frame is not None:
            return self.region_frame
        if self.region_mode == "artwork":
            return RegionFrame.artwork()
        return RegionFrame.full_card()


class CatalogRepository(Protocol):
    def search_fingerprint_candidates_by_bucket(
        self,
        bucket16: int,
        *,
        set_code: str = "",
        collector_number: str = "",
        limit: int = 72,
        neighbor_range: int = 1,
    ) -> List[CatalogFingerprintRow]:
        ...

    def find_by_set_collector(self, set_code: str, collector_number: str) -> List[CardRow]:
        ...

    def search_by_name_normalized(
        self,
        name: str,
        *,
        allow_prefix: bool = True,
        allow_contains: bool = True,
        limit: int = 12,
    ) -> List[CardRow]:
        ...


class TextExtractor(Protocol):
    def extract_title_text(
        self, image: np.ndarray, card_frame: CardFrame, *, enable_multilingual_fallback: bool = False
    ) -> str:
        ...

    def extract_footer_text(
        self, image: np.ndarray, card_frame: CardFrame, edition_frame: RegionFrame
    ) -> str:
        ...

    def extract_card_text(self, image: np.ndarray, card_frame: CardFrame) -> str:
        ...


class FrameSource(Protocol):
    async def capture_frame(self) -> Optional[np.ndarray]:
        ...
