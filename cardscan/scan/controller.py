"""Scan loop state machine: capture, resolve, stabilise, then navigate or ask for a pick."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from ..core.constants import (
    CAPTURE_TIMEOUT_S,
    DECISION_CONFIDENCE_THRESHOLD,
    DECISION_STABLE_FRAMES,
    FINGERPRINT_DECISION_THRESHOLD,
    FINGERPRINT_STABLE_FRAMES,
    HYBRID_SCAN_INTERVAL_S,
    INITIAL_SCAN_DELAY_S,
    LEGACY_SCAN_INTERVAL_S,
    NOT_FOUND_HINT_DELAY_S,
    PROCESS_TIMEOUT_S,
    WATCHDOG_GRACE_S,
)
from ..core.types import (
    Ambiguous,
    CardFrame,
    FrameMeta,
    FrameSource,
    Matched,
    RegionFrame,
    ScanResult,
)
from ..utils.config import settings
from ..utils.error_handler import ScanTimeoutError
from ..utils.log import LoggerMixin
from .orchestrator import ScanOrchestrator
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle
from .session import (
    HINT_HOLD_STEADY,
    HINT_MATCHED,
    HINT_NEED_SELECTION,
    HINT_OCR_DELAYED,
    HINT_OCR_ENABLED,
    HINT_READY,
    HINT_RECOGNIZING,
    HINT_RECOGNIZING_HYBRID,
    ScanSession,
    ScanState,
)

ERROR_TIMEOUT = "Scanner temporarily slow. Retrying automatically."
ERROR_SCAN_FAILED = "Scan failed. Retrying."
ERROR_WATCHDOG = "Watchdog: scanner cycle stalled and was recovered."

_STAGE_STATES = {
    "extracting": ScanState.EXTRACTING,
    "resolving": ScanState.RESOLVING,
    "ocr": ScanState.RESOLVING,
}


def is_fingerprint_trusted(matched_by: Optional[str]) -> bool:
    """Fingerprint-driven matches (and OCR consensus with fingerprints) pass a lighter gate."""
    matched_by = str(matched_by or "")
    return matched_by.startswith("fingerprint") or "consensus" in matched_by


def decision_policy(matched_by: Optional[str]):
    """(confidence threshold, stable cycles required) for a match label."""
    if is_fingerprint_trusted(matched_by):
        return FINGERPRINT_DECISION_THRESHOLD, FINGERPRINT_STABLE_FRAMES
    return DECISION_CONFIDENCE_THRESHOLD, DECISION_STABLE_FRAMES


class ScanCycleController(LoggerMixin):
    """
    Drives one scan session.

    Only one cycle is in flight at a time. Every cycle runs under a capture
    timeout and a processing timeout, and a watchdog abandons a cycle that
    never finishes and schedules the next one. Results of abandoned cycles,
    or of cycles that finish after ``stop``/``pause``, are dropped. Matches
    must repeat for a number of cycles before ``on_navigate`` fires, and it
    fires once per session. Ambiguous results pause the loop until
    ``select_candidate`` or ``resume``.
    """

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        frame_source: FrameSource,
        *,
        session: Optional[ScanSession] = None,
        engine: Optional[str] = None,
        scheduler: Optional[Scheduler] = None,
        metrics_recorder=None,
        on_navigate: Optional[Callable[[str, Optional[ScanResult]], Any]] = None,
        on_ambiguous: Optional[Callable[[Ambiguous], Any]] = None,
        on_error: Optional[Callable[[str, Optional[Exception]], Any]] = None,
        on_hint: Optional[Callable[[str], Any]] = None,
        card_frame: Optional[CardFrame] = None,
        edition_frame: Optional[RegionFrame] = None,
        region_mode: str = "full_card",
        enable_multilingual_fallback: Optional[bool] = None,
        max_variants: Optional[int] = None,
        capture_timeout_s: float = CAPTURE_TIMEOUT_S,
        process_timeout_s: float = PROCESS_TIMEOUT_S,
        watchdog_timeout_s: Optional[float] = None,
        not_found_hint_delay_s: float = NOT_FOUND_HINT_DELAY_S,
    ):
        self.orchestrator = orchestrator
        self.frame_source = frame_source
        self.session = session or ScanSession(engine=engine or settings.SCANNER_ENGINE)
        self.scheduler = scheduler or AsyncioScheduler()
        self.metrics_recorder = metrics_recorder
        self.on_navigate = on_navigate
        self.on_ambiguous = on_ambiguous
        self.on_error = on_error
        self.on_hint = on_hint

        self.card_frame = card_frame or CardFrame()
        self.edition_frame = edition_frame or RegionFrame.edition()
        self.region_mode = region_mode
        self.enable_multilingual_fallback = (
            settings.MULTILINGUAL_FALLBACK if enable_multilingual_fallback is None else enable_multilingual_fallback
        )
        self.max_variants = max_variants or settings.MAX_VARIANTS

        self.capture_timeout_s = capture_timeout_s
        self.process_timeout_s = process_timeout_s
        self.watchdog_timeout_s = (
            process_timeout_s + WATCHDOG_GRACE_S if watchdog_timeout_s is None else watchdog_timeout_s
        )
        self.not_found_hint_delay_s = not_found_hint_delay_s

        self._tick_handle: Optional[TimerHandle] = None
        self._watchdog_handle: Optional[TimerHandle] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def interval_s(self) -> float:
        return HYBRID_SCAN_INTERVAL_S if self.session.uses_fingerprints else LEGACY_SCAN_INTERVAL_S

    # Lifecycle

    def start(self):
        """Reset the session and schedule the first cycle."""
        self._cancel_timers()
        self.session.reset(self.scheduler.now())
        self._set_hint(HINT_READY)
        self._schedule_tick(INITIAL_SCAN_DELAY_S)
        self.logger.info("Scan session started", engine=self.session.engine, interval_s=self.interval_s)

    def stop(self):
        self.session.paused = True
        self._cancel_timers()
        self.session.state = ScanState.IDLE
        self.logger.info("Scan session stopped", cycles=self.session.cycle_id)

    def pause(self):
        self.session.paused = True
        self._cancel_tick()

    def resume(self):
        """Dismiss pending candidates and keep scanning."""
        if self.session.navigated:
            return
        self.session.paused = False
        self.session.miss_streak = 0
        self.session.candidates = ()
        self.session.first_miss_at = self.scheduler.now()
        self.session.state = ScanState.IDLE
        self._set_hint(HINT_READY)
        self._schedule_tick(self.interval_s)

    def select_candidate(self, card_id: str) -> bool:
        """Manual pick from the ambiguous candidate list; navigates like a confirmed match."""
        if not card_id or self.session.navigated:
            return False
        candidate = next(
            (c for c in self.session.candidates if str(c.card_id) == str(card_id)), None
        )
        result = None
        if candidate is not None:
            result = Matched(
                card_id=str(card_id),
                matched_by="manual_selection",
                confidence=1.0,
                card=candidate,
            )
        return self._navigate(str(card_id), result)

    # Cycle

    async def run_scan_cycle(self) -> Optional[ScanResult]:
        """
        Run one capture-to-decision cycle.

        Returns:
            The cycle's ScanResult, or None when no cycle ran, the capture was
            empty or the cycle failed
        """
        session = self.session
        if not session.can_scan:
            return None

        cycle_id = session.begin_cycle()
        started = time.perf_counter()
        self._arm_watchdog(cycle_id)
        self.log_stage(cycle_id, "capturing:start")

        try:
            self._set_hint(HINT_RECOGNIZING_HYBRID if session.uses_fingerprints else HINT_RECOGNIZING)
            frame = await self._with_timeout(
                self.frame_source.capture_frame(), self.capture_timeout_s, "capture"
            )
            if frame is None:
                self.log_stage(cycle_id, "capture_empty")
                return None

            allow_ocr = session.allow_ocr_fallback
            frame_meta = FrameMeta(
                image=frame,
                card_frame=self.card_frame,
                edition_frame=self.edition_frame,
                region_mode=self.region_mode,
                allow_ocr_fallback=allow_ocr,
                skip_edition_ocr_in_primary=session.uses_fingerprints,
                enable_multilingual_fallback=self.enable_multilingual_fallback,
                max_variants=self.max_variants,
            )

            loop = asyncio.get_running_loop()
            result = await self._with_timeout(
                loop.run_in_executor(
                    None, self.orchestrator.resolve_scan, frame_meta, self._stage_reporter(cycle_id)
                ),
                self.process_timeout_s,
                "process_frame",
            )
            self.log_stage(cycle_id, "processing:done", status=result.status)
            return self._decide(cycle_id, result, started, allow_ocr)

        except ScanTimeoutError as e:
            self.logger.warning("Scan cycle timed out", cycle_id=cycle_id, stage=e.stage, timeout_s=e.timeout_s)
            if self._is_current(cycle_id):
                self._report_error(ERROR_TIMEOUT, e)
            return None
        except Exception as e:
            self.logger.error("Scan cycle failed", cycle_id=cycle_id, error=str(e), error_type=type(e).__name__)
            if self._is_current(cycle_id):
                self._report_error(ERROR_SCAN_FAILED, e)
            return None
        finally:
            if session.cycle_id == cycle_id:
                self._cancel_watchdog()
                session.in_flight = False
                if session.state in (ScanState.CAPTURING, ScanState.EXTRACTING,
                                     ScanState.RESOLVING, ScanState.DECIDING):
                    session.state = ScanState.IDLE

    def _is_current(self, cycle_id: int) -> bool:
        """False once the watchdog abandoned the cycle or a newer one started."""
        return self.session.cycle_id == cycle_id and self.session.in_flight

    def _decide(self, cycle_id: int, result: ScanResult, started: float, allow_ocr: bool) -> ScanResult:
        session = self.session
        if not self._is_current(cycle_id) or session.paused or session.navigated:
            self.log_stage(cycle_id, "result_dropped", status=result.status)
            return result

        session.state = ScanState.DECIDING
        session.last_result = result
        latency_ms = (time.perf_counter() - started) * 1000

        if isinstance(result, Matched) and result.card_id:
            threshold, required = decision_policy(result.matched_by)
            if result.confidence >= threshold:
                count = session.tracker.observe(result.card_id)
                if count >= required:
                    session.miss_streak = 0
                    self._record_metric("matched", result.matched_by, result.confidence, latency_ms)
                    self._navigate(str(result.card_id), result)
                    return result
                session.state = ScanState.STABILIZING
                self.logger.debug("Match stabilizing", card_id=result.card_id, count=count, required=required)
                return result
            session.tracker.reset()
        else:
            session.tracker.reset()

        if isinstance(result, Ambiguous):
            session.miss_streak = 0
            session.paused = True
            session.candidates = result.candidates
            session.state = ScanState.AMBIGUOUS_WAIT
            self._cancel_tick()
            self._record_metric("ambiguous", result.matched_by, result.confidence, latency_ms)
            self._set_hint(HINT_NEED_SELECTION)
            if self.on_ambiguous:
                self.on_ambiguous(result)
            return result

        self._record_metric(
            "none",
            getattr(result, "matched_by", None),
            getattr(result, "confidence", None),
            latency_ms,
        )
        elapsed = session.register_miss(self.scheduler.now())
        if elapsed >= self.not_found_hint_delay_s:
            self._set_hint(HINT_HOLD_STEADY)
        else:
            self._set_hint(HINT_OCR_ENABLED if allow_ocr else HINT_OCR_DELAYED)
        session.last_error = ""
        session.state = ScanState.IDLE
        return result

    def _navigate(self, card_id: str, result: Optional[ScanResult]) -> bool:
        session = self.session
        if session.navigated:
            return False

        session.paused = True
        session.miss_streak = 0
        self._cancel_timers()
        self._set_hint(HINT_MATCHED)
        session.navigated = True
        session.navigated_card_id = card_id
        session.state = ScanState.NAVIGATED
        self.logger.info("Card matched", card_id=card_id, matched_by=getattr(result, "matched_by", None))

        if self.on_navigate:
            try:
                self.on_navigate(card_id, result)
            except Exception as e:
                self.logger.error("Navigation callback failed", card_id=card_id, error=str(e))
                session.navigated = False
                return False
        return True

    # Timers

    def _schedule_tick(self, delay: float):
        self._cancel_tick()
        if self.session.paused or self.session.navigated:
            return
        self._tick_handle = self.scheduler.call_later(delay, self._on_tick)

    def _on_tick(self):
        self._tick_handle = None
        if self.session.paused or self.session.navigated:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run_and_reschedule())

    async def _run_and_reschedule(self):
        await self.run_scan_cycle()
        # a cycle abandoned by the watchdog leaves rescheduling to the recovery tick
        if self.session.in_flight or self._tick_handle is not None:
            return
        if not self.session.paused and not self.session.navigated:
            self._schedule_tick(self.interval_s)

    def _arm_watchdog(self, cycle_id: int):
        self._cancel_watchdog()
        self._watchdog_handle = self.scheduler.call_later(
            self.watchdog_timeout_s, lambda: self._on_watchdog(cycle_id)
        )

    def _on_watchdog(self, cycle_id: int):
        self._watchdog_handle = None
        if self.session.cycle_id != cycle_id or not self.session.in_flight:
            return
        self.session.in_flight = False
        self.session.state = ScanState.IDLE
        self.log_stage(cycle_id, "watchdog_recovered", level="warning")
        self._report_error(ERROR_WATCHDOG, None)
        self._schedule_tick(self.interval_s)

    def _cancel_tick(self):
        self.scheduler.cancel(self._tick_handle)
        self._tick_handle = None

    def _cancel_watchdog(self):
        self.scheduler.cancel(self._watchdog_handle)
        self._watchdog_handle = None

    def _cancel_timers(self):
        self._cancel_tick()
        self._cancel_watchdog()

    # Helpers

    async def _with_timeout(self, awaitable: Awaitable, timeout_s: float, stage: str):
        try:
            return await asyncio.wait_for(awaitable, timeout_s)
        except asyncio.TimeoutError as e:
            raise ScanTimeoutError(stage, timeout_s) from e

    def _stage_reporter(self, cycle_id: int) -> Callable[[str], None]:
        def report(stage: str):
            if self._is_current(cycle_id) and stage in _STAGE_STATES:
                self.session.state = _STAGE_STATES[stage]
            self.log_stage(cycle_id, stage)
        return report

    def _set_hint(self, text: str):
        if self.session.hint_text == text:
            return
        self.session.hint_text = text
        if self.on_hint:
            self.on_hint(text)

    def _report_error(self, message: str, error: Optional[Exception]):
        self.session.last_error = message
        if self.on_error:
            self.on_error(message, error)

    def _record_metric(self, status: str, matched_by, confidence, latency_ms: float):
        if self.metrics_recorder is None:
            return
        try:
            self.metrics_recorder.record(
                engine=self.session.engine,
                status=status,
                matched_by=matched_by,
                confidence=confidence,
                latency_ms=latency_ms,
            )
        except Exception as e:
            self.logger.warning("Scan metric not recorded", status=status, error=str(e))
