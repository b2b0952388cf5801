"""Per-frame resolution: edition fast path, fingerprint-first matching, OCR fallback."""

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from ..core.constants import EDITION_FAST_PATH_MIN_CONFIDENCE, EDITION_RESOLVED_MIN_CONFIDENCE
from ..core.types import (
    Ambiguous,
    CatalogRepository,
    EditionHint,
    FrameMeta,
    Matched,
    NoMatch,
    ScanResult,
    ScoredCandidate,
    TextExtractor,
)
from ..fingerprint.extractor import FingerprintExtractor
from ..match.resolver import FingerprintResolver
from ..match.text_resolver import CatalogTextResolver
from ..ocr.regexes import edition_hints_from, first_edition_hint, row_matches_hint
from ..utils.error_handler import ErrorContext, safe_execute
from ..utils.log import LoggerMixin

StageCallback = Callable[[str], None]


def _min_hamming(debug: Optional[Dict[str, Any]]) -> float:
    if not debug or debug.get("min_hamming_distance") is None:
        return float("inf")
    return float(debug["min_hamming_distance"])


def disambiguate_candidates_by_edition(
    candidates, footer_hint: EditionHint, edition_text: str
) -> Optional[ScoredCandidate]:
    """The single candidate agreeing with the footer hint or any edition-text pair, else None."""
    hints = edition_hints_from(footer_hint.set_code, footer_hint.collector_number, edition_text)
    if not candidates or not hints:
        return None
    filtered = [
        candidate for candidate in candidates
        if any(row_matches_hint(candidate.set_code, candidate.collector_number, hint) for hint in hints)
    ]
    return filtered[0] if len(filtered) == 1 else None


def reconcile_with_fingerprint_ambiguous(
    result: ScanResult,
    fingerprint_ambiguous: Optional[Ambiguous],
    title_text: str,
    edition_text: str,
    source: str,
) -> Optional[ScanResult]:
    """
    Combine an OCR result with the carried fingerprint ambiguity.

    Fingerprints win on conflict: an OCR match outside the fingerprint
    candidates keeps the fingerprint ambiguity, relabelled. Returns None when
    the OCR result carries no signal.
    """
    if result is None or isinstance(result, NoMatch):
        return None

    fingerprint_debug = fingerprint_ambiguous.debug if fingerprint_ambiguous else None

    if fingerprint_ambiguous is None:
        return replace(
            result,
            evidence={"source": source, "title_text": title_text, "edition_text": edition_text},
            debug=None,
        )

    if isinstance(result, Matched):
        if str(result.card_id) in fingerprint_ambiguous.card_ids():
            return replace(
                result,
                matched_by="fingerprint_ocr_consensus",
                confidence=max(result.confidence, fingerprint_ambiguous.confidence),
                evidence={
                    "source": "fingerprint_ocr_consensus",
                    "title_text": title_text,
                    "edition_text": edition_text,
                },
                debug=fingerprint_debug,
            )
        return replace(fingerprint_ambiguous, matched_by="fingerprint_ocr_conflict")

    return Ambiguous(
        candidates=fingerprint_ambiguous.candidates + result.candidates,
        confidence=max(fingerprint_ambiguous.confidence, result.confidence),
        matched_by="fingerprint_ocr_ambiguous",
        evidence={
            "source": "fingerprint_ocr_ambiguous",
            "title_text": title_text,
            "edition_text": edition_text,
        },
        debug=fingerprint_debug,
    )


class ScanOrchestrator(LoggerMixin):
    """Resolves one captured frame to a ScanResult; never raises."""

    def __init__(
        self,
        repository: CatalogRepository,
        text_extractor: Optional[TextExtractor] = None,
        fingerprint_extractor: Optional[FingerprintExtractor] = None,
        fingerprint_resolver: Optional[FingerprintResolver] = None,
        text_resolver: Optional[CatalogTextResolver] = None,
    ):
        self.repository = repository
        self.text_extractor = text_extractor
        self.fingerprint_extractor = fingerprint_extractor or FingerprintExtractor()
        self.fingerprint_resolver = fingerprint_resolver or FingerprintResolver(repository)
        self.text_resolver = text_resolver or CatalogTextResolver(repository)

    def resolve_scan(self, frame_meta: FrameMeta, on_stage: Optional[StageCallback] = None) -> ScanResult:
        """
        Resolve a frame.

        Args:
            frame_meta: Captured image plus framing and fallback policy
            on_stage: Optional callback receiving "extracting", "resolving" and "ocr"

        Returns:
            Matched, Ambiguous or NoMatch
        """
        context = self.log_start("resolve_scan", allow_ocr=frame_meta.allow_ocr_fallback)
        try:
            result = self._resolve(frame_meta, on_stage or (lambda stage: None))
        except Exception as e:
            self.log_error(context, e)
            return NoMatch("scan_failed")

        self.log_success(
            context,
            status=result.status,
            matched_by=getattr(result, "matched_by", None),
            reason=getattr(result, "reason", None),
        )
        return result

    def _call(self, operation: str, func, *args, default_return=None, **kwargs):
        context = ErrorContext(operation=operation, module=__name__, function=getattr(func, "__name__", operation))
        return safe_execute(func, *args, context=context, logger=self.logger, default_return=default_return, **kwargs)

    def _resolve(self, frame_meta: FrameMeta, on_stage: StageCallback) -> ScanResult:
        image = frame_meta.image
        if image is None or getattr(image, "size", 0) == 0:
            return NoMatch("missing_image")

        edition_text = ""
        if not frame_meta.skip_edition_ocr_in_primary and self.text_extractor is not None:
            edition_text = self._call(
                "footer_ocr",
                self.text_extractor.extract_footer_text,
                image,
                frame_meta.card_frame,
                frame_meta.edition_frame,
                default_return="",
            ) or ""
        footer_hint = first_edition_hint(edition_text)

        if not frame_meta.skip_edition_ocr_in_primary and footer_hint.is_complete:
            fast = self._call(
                "edition_fast_path",
                self.text_resolver.resolve,
                card_text="",
                edition_text=edition_text,
                default_return=NoMatch("edition_lookup_failed"),
            )
            if isinstance(fast, Matched):
                return replace(
                    fast,
                    matched_by="set_collector_exact",
                    confidence=max(fast.confidence, EDITION_FAST_PATH_MIN_CONFIDENCE),
                    evidence={"source": "edition_fast_path", "edition_text": edition_text},
                )

        on_stage("extracting")
        fingerprints = self._call(
            "fingerprint_extract",
            self.fingerprint_extractor.extract,
            image,
            frame_meta.card_frame,
            frame_meta.resolved_region(),
            frame_meta.max_variants,
            default_return=[],
        ) or []

        on_stage("resolving")
        hint = EditionHint(footer_hint.set_code, footer_hint.collector_number, edition_text)
        best_matched: Optional[Matched] = None
        ambiguous_results: List[Ambiguous] = []
        best_none_debug: Optional[Dict[str, Any]] = None

        for fingerprint in fingerprints:
            result = self._call(
                "fingerprint_resolve",
                self.fingerprint_resolver.resolve,
                fingerprint,
                self.repository,
                hint,
                default_return=NoMatch("fingerprint_lookup_failed"),
            )
            variant = fingerprint.variant_tag
            debug = {**(result.debug or {}), "variant": variant}

            if isinstance(result, Matched):
                result = replace(
                    result,
                    evidence={**result.evidence, "source": "fingerprint", "edition_text": edition_text, "variant": variant},
                    debug=debug,
                )
                if best_matched is None or result.confidence > best_matched.confidence:
                    best_matched = result
            elif isinstance(result, Ambiguous):
                ambiguous_results.append(replace(
                    result,
                    evidence={**result.evidence, "source": "fingerprint", "edition_text": edition_text, "variant": variant},
                    debug=debug,
                ))
            elif best_none_debug is None or _min_hamming(debug) < _min_hamming(best_none_debug):
                best_none_debug = debug

        if best_matched is not None:
            return best_matched

        fingerprint_ambiguous: Optional[Ambiguous] = None
        for ambiguous in ambiguous_results:
            if fingerprint_ambiguous is None or _min_hamming(ambiguous.debug) < _min_hamming(fingerprint_ambiguous.debug):
                fingerprint_ambiguous = ambiguous

        for ambiguous in ambiguous_results:
            resolved = disambiguate_candidates_by_edition(ambiguous.candidates, footer_hint, edition_text)
            if resolved is not None:
                return Matched(
                    card_id=str(resolved.card_id),
                    matched_by="fingerprint_ambiguous_resolved_by_edition",
                    confidence=max(EDITION_RESOLVED_MIN_CONFIDENCE, ambiguous.confidence),
                    evidence=ambiguous.evidence,
                    card=resolved,
                    debug=ambiguous.debug,
                )

        if not frame_meta.allow_ocr_fallback:
            if fingerprint_ambiguous is not None:
                return fingerprint_ambiguous
            return NoMatch("fingerprint_no_confident_match", debug=best_none_debug)

        on_stage("ocr")
        title_text = ""
        if self.text_extractor is not None:
            title_text = self._call(
                "title_ocr",
                self.text_extractor.extract_title_text,
                image,
                frame_meta.card_frame,
                enable_multilingual_fallback=frame_meta.enable_multilingual_fallback,
                default_return="",
            ) or ""

        if title_text or edition_text:
            title_result = self._call(
                "title_resolve",
                self.text_resolver.resolve,
                card_text=title_text,
                edition_text=edition_text,
                default_return=None,
            )
            reconciled = reconcile_with_fingerprint_ambiguous(
                title_result, fingerprint_ambiguous, title_text, edition_text, "ocr_title_fallback"
            )
            if reconciled is not None:
                return reconciled

        card_text = ""
        if self.text_extractor is not None:
            card_text = self._call(
                "card_ocr",
                self.text_extractor.extract_card_text,
                image,
                frame_meta.card_frame,
                default_return="",
            ) or ""

        if card_text or title_text or edition_text:
            full_result = self._call(
                "full_resolve",
                self.text_resolver.resolve,
                card_text="\n".join(text for text in (title_text, card_text) if text),
                edition_text=edition_text,
                default_return=None,
            )
            reconciled = reconcile_with_fingerprint_ambiguous(
                full_result, fingerprint_ambiguous, title_text, edition_text, "ocr_full_fallback"
            )
            if reconciled is not None:
                return reconciled

        if fingerprint_ambiguous is not None:
            return fingerprint_ambiguous
        return NoMatch("no_confident_match", debug=best_none_debug)
