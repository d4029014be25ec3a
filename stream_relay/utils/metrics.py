# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import time
from collections import deque


class RateMeter:
    """Frame rate and payload bitrate over a sliding time window."""

    def __init__(self, window_s: float = 2.5):
        self.window_s = float(window_s)
        self.samples: deque[tuple[float, int]] = deque()

    def tick(self, t: float, size: int = 0) -> None:
        """Record one arrival at time ``t`` carrying ``size`` bytes."""
        self.samples.append((t, size))
        horizon = t - self.window_s
        while self.samples[0][0] < horizon:
            self.samples.popleft()

    def _span(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return self.samples[-1][0] - self.samples[0][0]

    def rate_hz(self) -> float:
        span = self._span()
        return (len(self.samples) - 1) / span if span > 0 else 0.0

    def bitrate_kbps(self) -> float:
        span = self._span()
        if span <= 0:
            return 0.0
        # The oldest sample only opens the window
        payload = sum(size for _, size in self.samples) - self.samples[0][1]
        return payload * 8 / 1000.0 / span


class IngestStats:
    """Frame and byte counters for one relay session."""

    def __init__(self, window_s: float = 2.5):
        self.frame_count = 0
        self.bytes_received = 0
        self.dropped_frames = 0
        self.started_at: float | None = None
        self.meter = RateMeter(window_s)

    def start(self) -> None:
        """Mark the moment the session became configured."""
        self.started_at = time.monotonic()

    def record_frame(self, size: int) -> int:
        """Count one media frame; returns the new frame count."""
        self.frame_count += 1
        self.bytes_received += size
        self.meter.tick(time.perf_counter(), size)
        return self.frame_count

    def record_drop(self) -> None:
        self.dropped_frames += 1

    @property
    def duration_s(self) -> int:
        """Whole seconds since configuration."""
        if self.started_at is None:
            return 0
        return int(time.monotonic() - self.started_at)

    def snapshot(self) -> dict:
        """Counters as reported to clients in a stats message."""
        return {
            "frameCount": self.frame_count,
            "bytesReceived": self.bytes_received,
            "duration": self.duration_s,
        }
