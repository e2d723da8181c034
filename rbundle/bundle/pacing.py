"""Pause policies between consecutive writes to a rate-limited target."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol


class Pacer(Protocol):
    def wait(self) -> None: ...


class FixedDelayPacer:
    """Sleep a fixed number of seconds on every wait()."""

    def __init__(self, seconds: float, *, sleep: Callable[[float], None] = time.sleep) -> None:
        if seconds < 0:
            raise ValueError(f"delay must be >= 0, got {seconds}")
        self.seconds = seconds
        self._sleep = sleep

    def wait(self) -> None:
        if self.seconds:
            self._sleep(self.seconds)


class NoPacer:
    def wait(self) -> None:
        return None
