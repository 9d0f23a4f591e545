from __future__ import annotations

import time


class Clock:
    """Time source for debounce windows and pause detection."""

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000.0


CLOCK = Clock()


__all__ = ["Clock", "CLOCK"]
