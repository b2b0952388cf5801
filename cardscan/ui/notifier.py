"""Audible and status feedback for the scan loop's navigation, ambiguity and error events."""

import subprocess
import sys
from typing import Optional

from ..core.types import Ambiguous, ScanResult
from ..utils.log import get_logger

MACOS_MATCH_SOUND = "/System/Library/Sounds/Glass.aiff"
MACOS_ATTENTION_SOUND = "/System/Library/Sounds/Tink.aiff"


class ScanNotifier:
    """Beeps and status messages wired to ScanCycleController callbacks."""

    def __init__(self, sound_enabled: bool = True):
        self.logger = get_logger(__name__)
        self.sound_enabled = sound_enabled
        self.last_message: Optional[str] = None

    def beep(self, sound: str = MACOS_MATCH_SOUND) -> bool:
        """Play a system sound on macOS, the terminal bell elsewhere."""
        if not self.sound_enabled:
            return False
        try:
            if sys.platform == "darwin":
                subprocess.run(["afplay", sound], capture_output=True, check=False)
            else:
                print("\a", end="", flush=True)
            return True
        except Exception as e:
            self.logger.debug("Error playing beep", error=str(e))
            return False

    def status_toast(self, message: str, level: str = "info"):
        self.last_message = message
        if level == "success":
            self.logger.info(f"SUCCESS: {message}")
        elif level == "error":
            self.logger.error(f"ERROR: {message}")
        elif level == "warning":
            self.logger.warning(f"WARNING: {message}")
        else:
            self.logger.info(f"INFO: {message}")

    def card_matched(self, card_id: str, result: Optional[ScanResult] = None):
        matched_by = getattr(result, "matched_by", "manual")
        self.beep()
        self.status_toast(f"Matched {card_id} ({matched_by})", level="success")

    def candidates_pending(self, result: Ambiguous):
        self.beep(MACOS_ATTENTION_SOUND)
        self.status_toast(
            f"{len(result.candidates)} possible cards ({result.matched_by}), pick one",
            level="warning",
        )

    def scan_error(self, message: str, error: Optional[Exception] = None):
        self.status_toast(message, level="error")
