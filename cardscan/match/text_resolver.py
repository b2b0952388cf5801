"""Resolve OCR text (edition line plus title or card text) against the catalog."""

from typing import List, Optional

from ..core.types import Ambiguous, CardRow, CatalogRepository, Matched, NoMatch, ScanResult, ScoredCandidate
from ..ocr.regexes import (
    build_name_candidates,
    build_set_collector_candidates,
    disambiguate_by_edition_text,
    row_matches_edition_text,
)
from ..utils.log import LoggerMixin

NAME_SEARCH_LIMIT = 10

# (tier, allow_prefix, allow_contains, unique confidence, edition-hint confidence,
#  ambiguous confidence, single-row-needs-confirmation confidence)
_NAME_TIERS = (
    ("name_exact", False, False, 0.9, 0.92, 0.68, None),
    ("name_fuzzy", True, False, None, 0.79, 0.55, 0.5),
    ("name_contains", False, True, None, 0.72, 0.4, 0.45),
)


def _matched(row: CardRow, matched_by: str, confidence: float) -> Matched:
    return Matched(
        card_id=row.id,
        matched_by=matched_by,
        confidence=confidence,
        card=ScoredCandidate.from_card_row(row),
    )


def _ambiguous(rows: List[CardRow], matched_by: str, confidence: float) -> Ambiguous:
    return Ambiguous(
        candidates=tuple(ScoredCandidate.from_card_row(row) for row in rows),
        confidence=confidence,
        matched_by=matched_by,
    )


class CatalogTextResolver(LoggerMixin):
    """Text-only catalog lookup used by the edition fast path and the OCR fallback."""

    def __init__(self, repository: Optional[CatalogRepository] = None):
        self.repository = repository

    def resolve(
        self,
        card_text: str = "",
        edition_text: str = "",
        repository: Optional[CatalogRepository] = None,
    ) -> ScanResult:
        """
        Resolve recognised text to a card.

        Set/collector pairs found anywhere in the text win outright; otherwise
        each name candidate of ``card_text`` is tried against the exact, prefix
        and contains tiers in turn. Weak single hits are only auto-accepted
        when the edition text backs them up.
        """
        repository = repository or self.repository
        if repository is None:
            raise ValueError("CatalogTextResolver needs a catalog repository")

        merged_text = "\n".join(text for text in (edition_text, card_text) if text)
        for hint in build_set_collector_candidates(merged_text):
            rows = repository.find_by_set_collector(hint.set_code, hint.collector_number)
            if len(rows) == 1:
                return _matched(rows[0], "set_collector_exact", 0.99)
            if rows:
                return _ambiguous(rows, "set_collector_exact", 0.82)

        for candidate in build_name_candidates(card_text):
            result = self._resolve_name(repository, candidate, edition_text)
            if result is not None:
                self.logger.debug(
                    "Text resolved by name",
                    candidate=candidate,
                    status=result.status,
                    matched_by=result.matched_by,
                )
                return result

        return NoMatch("no_text_match")

    def _resolve_name(self, repository: CatalogRepository, name: str, edition_text: str) -> Optional[ScanResult]:
        for tier, allow_prefix, allow_contains, unique_conf, hint_conf, ambiguous_conf, confirm_conf in _NAME_TIERS:
            rows = repository.search_by_name_normalized(
                name,
                allow_prefix=allow_prefix,
                allow_contains=allow_contains,
                limit=NAME_SEARCH_LIMIT,
            )
            if not rows:
                continue

            if len(rows) == 1:
                if unique_conf is not None:
                    return _matched(rows[0], tier, unique_conf)
                if row_matches_edition_text(rows[0], edition_text):
                    return _matched(rows[0], f"{tier}_with_edition_hint", hint_conf)
                # partial names never auto-open without an edition match
                return _ambiguous(rows, f"{tier}_needs_confirmation", confirm_conf)

            resolved = disambiguate_by_edition_text(rows, edition_text)
            if resolved is not None:
                return _matched(resolved, f"{tier}_with_edition_hint", hint_conf)
            return _ambiguous(rows, tier, ambiguous_conf)

        return None
