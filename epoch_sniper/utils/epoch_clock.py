"""
Epoch Clock
============

5-minute market epochs are identified by their start timestamp,
aligned to multiples of 300 seconds since the unix epoch.
"""

import time
from typing import Optional

EPOCH_DURATION = 300


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def current_epoch(now: Optional[float] = None) -> int:
    """Start timestamp of the epoch containing `now`."""
    return (int(_now(now)) // EPOCH_DURATION) * EPOCH_DURATION


def epoch_end(epoch: int) -> int:
    """Close timestamp of an epoch."""
    return epoch + EPOCH_DURATION


def seconds_until_close(epoch: int, now: Optional[float] = None) -> int:
    """
    Whole seconds from `now` (floored) to the close of `epoch`.

    For the epoch containing `now` this is in [1, 300], with 300
    exactly at the opening boundary.
    """
    return epoch_end(epoch) - int(_now(now))


def seconds_remaining(now: Optional[float] = None) -> int:
    """
    Whole seconds left in the active epoch, in [0, 300).

    Equals `epoch_end - floor(now)` everywhere except the opening
    boundary instant itself, which reads 0 instead of 300.
    """
    now_s = int(_now(now))
    return seconds_until_close(current_epoch(now_s), now_s) % EPOCH_DURATION
