# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import pytest

from stream_relay.utils.metrics import IngestStats, RateMeter


class TestRateMeter:
    def test_needs_two_samples(self):
        meter = RateMeter()
        assert meter.rate_hz() == 0.0
        meter.tick(1.0, 1000)
        assert meter.rate_hz() == 0.0
        assert meter.bitrate_kbps() == 0.0

    def test_steady_stream(self):
        meter = RateMeter(window_s=10.0)
        for i in range(31):
            meter.tick(i / 30, 1250)

        assert meter.rate_hz() == pytest.approx(30.0)
        # 30 chunks of 10 kbit per second
        assert meter.bitrate_kbps() == pytest.approx(300.0)

    def test_old_samples_leave_window(self):
        meter = RateMeter(window_s=1.0)
        for t in (0.0, 0.1, 0.2, 5.0, 5.5, 6.0):
            meter.tick(t, 100)

        assert len(meter.samples) == 3
        assert meter.rate_hz() == pytest.approx(2.0)


class TestIngestStats:
    def test_counts_frames_and_bytes(self):
        stats = IngestStats()
        stats.start()

        assert stats.record_frame(1000) == 1
        assert stats.record_frame(24) == 2
        stats.record_drop()

        assert stats.snapshot() == {"frameCount": 2, "bytesReceived": 1024, "duration": 0}
        assert stats.dropped_frames == 1

    def test_duration_before_start(self):
        assert IngestStats().duration_s == 0
