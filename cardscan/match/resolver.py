"""Fingerprint resolution: bucket shortlist, Hamming scoring and the decision ladder."""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.constants import (
    CONFIDENCE_SCORE_SPAN,
    CONFIDENT_DHASH_MAX,
    CONFIDENT_MIN_CONFIDENCE,
    CONFIDENT_MIN_SEPARATION,
    CONFIDENT_PHASH_MAX,
    EDITION_HINT_MIN_CONFIDENCE,
    EXACT_MIN_CONFIDENCE,
    HARD_DHASH_MAX,
    HARD_FILTER_CAP,
    HARD_PHASH_MAX,
    LOOSE_CAP,
    LOOSE_CONFIDENCE,
    LOOSE_SCORE_CEILING,
    SHORTLIST_LIMIT,
    SHORTLIST_NEIGHBOR_RANGE,
)
from ..core.types import (
    Ambiguous,
    CatalogFingerprintRow,
    CatalogRepository,
    EditionHint,
    Matched,
    NoMatch,
    ScanResult,
    ScoredCandidate,
)
from ..fingerprint.hashing import hamming_distance64, hi_lo_to_hex64, to_uint32
from ..ocr.regexes import edition_hints_from, row_matches_hint
from ..utils.log import LoggerMixin


@dataclass(frozen=True)
class ScoredRow:
    row: CatalogFingerprintRow
    phash_distance: int
    dhash_distance: int

    @property
    def score(self) -> int:
        return self.phash_distance + self.dhash_distance

    def to_candidate(self) -> ScoredCandidate:
        return ScoredCandidate(
            card_id=self.row.card_id,
            name=self.row.name,
            set_code=self.row.set_code,
            collector_number=self.row.collector_number,
            score=self.score,
            phash_distance=self.phash_distance,
            dhash_distance=self.dhash_distance,
        )


def _finite(value) -> bool:
    try:
        return value is not None and math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def compute_confidence(phash_distance: int, dhash_distance: int) -> float:
    return max(0.0, 1.0 - min(1.0, (phash_distance + dhash_distance) / CONFIDENCE_SCORE_SPAN))


def apply_edition_hint_filter(rows: List[ScoredRow], hints: List[EditionHint]) -> List[ScoredRow]:
    """Rows matching any hint; every row when no hint matches."""
    if not hints:
        return rows
    filtered = [
        scored for scored in rows
        if any(row_matches_hint(scored.row.set_code, scored.row.collector_number, hint) for hint in hints)
    ]
    return filtered or rows


class FingerprintResolver(LoggerMixin):
    """Resolves one fingerprint against the catalog's bucketed fingerprint index."""

    def __init__(self, repository: Optional[CatalogRepository] = None):
        self.repository = repository

    def resolve(
        self,
        fingerprint,
        repository: Optional[CatalogRepository] = None,
        edition_hint: Optional[EditionHint] = None,
    ) -> ScanResult:
        """
        Resolve a fingerprint to a card.

        Args:
            fingerprint: Fingerprint (or any object with the four hash halves and bucket16)
            repository: Catalog to shortlist from; defaults to the resolver's own
            edition_hint: Optional set/collector hint read from the card footer

        Returns:
            Matched, Ambiguous or NoMatch
        """
        repository = repository or self.repository
        if repository is None:
            raise ValueError("FingerprintResolver needs a catalog repository")

        fields = [getattr(fingerprint, name, None) for name in
                  ("phash_hi", "phash_lo", "dhash_hi", "dhash_lo", "bucket16")]
        if fingerprint is None or not all(_finite(value) for value in fields):
            return NoMatch("fingerprint_unavailable")

        phash_hi, phash_lo, dhash_hi, dhash_lo = (to_uint32(value) for value in fields[:4])
        bucket16 = to_uint32(fields[4]) & 0xFFFF
        debug: Dict[str, Any] = {
            "phash_hi": str(phash_hi),
            "phash_lo": str(phash_lo),
            "dhash_hi": str(dhash_hi),
            "dhash_lo": str(dhash_lo),
            "phash_hex": hi_lo_to_hex64(phash_hi, phash_lo),
            "dhash_hex": hi_lo_to_hex64(dhash_hi, dhash_lo),
            "bucket16": bucket16,
        }

        hint = edition_hint or EditionHint()
        hints = edition_hints_from(hint.set_code, hint.collector_number, hint.edition_text)
        shortlist = repository.search_fingerprint_candidates_by_bucket(
            bucket16,
            set_code=hint.set_code,
            collector_number=hint.collector_number,
            limit=SHORTLIST_LIMIT,
            neighbor_range=SHORTLIST_NEIGHBOR_RANGE,
        )
        if not shortlist:
            return NoMatch("no_bucket_hits", debug={**debug, "raw_hits_count": 0, "min_hamming_distance": None})

        scored_all = []
        for row in shortlist:
            row_fields = (row.phash_hi, row.phash_lo, row.dhash_hi, row.dhash_lo)
            if not all(_finite(value) for value in row_fields):
                continue
            scored_all.append(ScoredRow(
                row=row,
                phash_distance=hamming_distance64(phash_hi, phash_lo, row.phash_hi, row.phash_lo),
                dhash_distance=hamming_distance64(dhash_hi, dhash_lo, row.dhash_hi, row.dhash_lo),
            ))

        debug["raw_hits_count"] = len(shortlist)
        debug["min_hamming_distance"] = min((s.score for s in scored_all), default=None)

        scored = sorted(
            (s for s in scored_all
             if s.phash_distance <= HARD_PHASH_MAX and s.dhash_distance <= HARD_DHASH_MAX),
            key=lambda s: s.score,
        )[:HARD_FILTER_CAP]

        if not scored:
            return self._resolve_loose(scored_all, debug)

        hinted = apply_edition_hint_filter(scored, hints)
        top = hinted[0]
        second = hinted[1] if len(hinted) > 1 else None
        confidence = compute_confidence(top.phash_distance, top.dhash_distance)
        scores = {"top_score": top.score, "second_score": second.score if second else None}
        debug.update(scores)

        matched_by = None
        if (len(hinted) == 1 and confidence >= EXACT_MIN_CONFIDENCE
                and top.phash_distance <= HARD_PHASH_MAX and top.dhash_distance <= HARD_DHASH_MAX):
            matched_by = "fingerprint_exact"
        elif (second is not None and confidence >= CONFIDENT_MIN_CONFIDENCE
              and second.score - top.score >= CONFIDENT_MIN_SEPARATION
              and top.phash_distance <= CONFIDENT_PHASH_MAX and top.dhash_distance <= CONFIDENT_DHASH_MAX):
            matched_by = "fingerprint_confident"
        elif hints and len(hinted) == 1 and confidence >= EDITION_HINT_MIN_CONFIDENCE:
            matched_by = "fingerprint_with_edition_hint"

        if matched_by:
            self.logger.debug(
                "Fingerprint matched",
                card_id=top.row.card_id,
                matched_by=matched_by,
                confidence=round(confidence, 4),
                score=top.score,
            )
            return Matched(
                card_id=top.row.card_id,
                matched_by=matched_by,
                confidence=confidence,
                evidence={"phash_distance": top.phash_distance, "dhash_distance": top.dhash_distance},
                card=top.to_candidate(),
                debug=debug,
            )

        return Ambiguous(
            candidates=tuple(s.to_candidate() for s in hinted),
            confidence=confidence,
            matched_by="fingerprint_ambiguous",
            evidence=scores,
            debug=debug,
        )

    def _resolve_loose(self, scored_all: List[ScoredRow], debug: Dict[str, Any]) -> ScanResult:
        """Nothing passed the hard filter: offer the closest rows if they are not too far off."""
        loose = sorted(scored_all, key=lambda s: s.score)[:LOOSE_CAP]
        if not loose:
            return NoMatch("threshold_miss", debug=debug)

        scores = {
            "top_score": loose[0].score,
            "second_score": loose[1].score if len(loose) > 1 else None,
        }
        debug = {**debug, **scores}
        if loose[0].score > LOOSE_SCORE_CEILING:
            return NoMatch("similarity_too_low", debug=debug)

        return Ambiguous(
            candidates=tuple(s.to_candidate() for s in loose),
            confidence=LOOSE_CONFIDENCE,
            matched_by="loose_ambiguous",
            evidence=scores,
            debug=debug,
        )
