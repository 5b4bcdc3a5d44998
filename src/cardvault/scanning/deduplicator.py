"""Rejection of repeated recognitions of the same card text."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

DEFAULT_COOLDOWN_MS = 1000
DEFAULT_MIN_LENGTH = 3
DEFAULT_RECENT_WINDOW_MS = 30_000


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def normalize_scan_text(text: str) -> str:
    return text.strip().lower()


class ScanVerdict(str, Enum):
    """Decision on a single recognized text."""

    ACCEPT = "accept"
    DUPLICATE = "duplicate"
    TOO_SHORT = "too_short"


@dataclass(frozen=True)
class LastScan:
    text: str
    timestamp_ms: int


class ScanDeduplicator:
    """Decides whether a recognized text is a new scan.

    Holds the last accepted text and a rolling set of texts seen in the current
    window. The set is emptied every recent_window_ms regardless of the last
    scan, so the two pieces of state age independently.
    """

    def __init__(
        self,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        min_length: int = DEFAULT_MIN_LENGTH,
        recent_window_ms: int = DEFAULT_RECENT_WINDOW_MS,
        clock: Callable[[], int] = _monotonic_ms,
    ):
        self.cooldown_ms = cooldown_ms
        self.min_length = min_length
        self.recent_window_ms = recent_window_ms
        self._clock = clock
        self.last_scanned: LastScan | None = None
        self._recent: set[str] = set()
        self._window_started_ms: int | None = None

    def check(self, text: str, now_ms: int | None = None) -> ScanVerdict:
        """Classify a recognized text, recording it when accepted.

        On ACCEPT the last scan is overwritten right away, before the caller
        starts any lookup, so a second frame arriving mid-lookup is rejected.
        """
        now_ms = self._clock() if now_ms is None else now_ms
        normalized = normalize_scan_text(text)
        if len(normalized) < self.min_length:
            return ScanVerdict.TOO_SHORT

        self._expire_recent(now_ms)
        last = self.last_scanned
        if (
            last is not None
            and last.text == normalized
            and 0 <= now_ms - last.timestamp_ms < self.cooldown_ms
        ):
            return ScanVerdict.DUPLICATE

        self.last_scanned = LastScan(normalized, now_ms)
        self._recent.add(normalized)
        return ScanVerdict.ACCEPT

    def clear_last(self) -> None:
        """Forget the last scan so the same text can be retried immediately."""
        self.last_scanned = None

    def seen_recently(self, text: str, now_ms: int | None = None) -> bool:
        """Whether the text was accepted in the current rolling window."""
        self._expire_recent(self._clock() if now_ms is None else now_ms)
        return normalize_scan_text(text) in self._recent

    def reset(self) -> None:
        self.last_scanned = None
        self._recent.clear()
        self._window_started_ms = None

    def _expire_recent(self, now_ms: int) -> None:
        if self._window_started_ms is None:
            self._window_started_ms = now_ms
        elif now_ms - self._window_started_ms >= self.recent_window_ms:
            self._recent.clear()
            self._window_started_ms = now_ms
