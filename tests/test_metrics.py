"""Tests for CPU/memory/disk sampling."""

import pytest

from portdeck.metrics import (
    MetricSnapshot,
    MetricsSampler,
    collect_snapshot,
    compute_cpu_percent,
    disk_used,
    memory_used,
)
from portdeck.provider import CpuTicks, DiskUsage, MemoryCounters
from tests.conftest import FakeProvider

GB = 1_000_000_000


class TestComputeCpuPercent:
    """Tests for the tick delta arithmetic."""

    def test_first_sample_is_zero(self):
        current = CpuTicks(100, 50, 800, 0)
        assert compute_cpu_percent(None, current) == (0.0, current)

    def test_busy_fraction(self):
        previous = CpuTicks(100, 50, 800, 10)
        current = CpuTicks(130, 60, 850, 10)
        percent, carry = compute_cpu_percent(previous, current)
        # 40 busy of 90 elapsed
        assert percent == pytest.approx(40 / 90 * 100)
        assert carry == current

    def test_nice_counts_as_busy(self):
        previous = CpuTicks(0, 0, 0, 0)
        current = CpuTicks(0, 0, 50, 50)
        assert compute_cpu_percent(previous, current)[0] == pytest.approx(50.0)

    def test_no_elapsed_ticks(self):
        ticks = CpuTicks(1, 1, 1, 1)
        assert compute_cpu_percent(ticks, ticks)[0] == 0.0

    def test_counter_wraparound(self):
        """A counter that wrapped past 2**64 still yields a small delta."""
        top = (1 << 64) - 10
        previous = CpuTicks(top, 0, 0, 0)
        current = CpuTicks(10, 0, 20, 0)
        percent, _ = compute_cpu_percent(previous, current)
        assert percent == pytest.approx(50.0)

    def test_unreadable_sample_keeps_previous(self):
        previous = CpuTicks(1, 2, 3, 4)
        assert compute_cpu_percent(previous, None) == (0.0, previous)

    def test_result_clamped(self):
        previous = CpuTicks(0, 0, 0, 0)
        current = CpuTicks(100, 0, 0, 0)
        assert compute_cpu_percent(previous, current)[0] == 100.0


class TestUsage:
    """Tests for memory and disk figures."""

    def test_memory_used_sums_counters(self):
        counters = MemoryCounters(active=4 * GB, wired=2 * GB, compressed=1 * GB, total=16 * GB)
        assert memory_used(counters) == 7 * GB

    def test_memory_used_capped_at_total(self):
        counters = MemoryCounters(active=10 * GB, wired=5 * GB, compressed=5 * GB, total=16 * GB)
        assert memory_used(counters) == 16 * GB

    def test_disk_used(self):
        assert disk_used(DiskUsage(total=500 * GB, free=120 * GB)) == 380 * GB

    def test_disk_used_never_negative(self):
        assert disk_used(DiskUsage(total=1, free=5)) == 0

    def test_percent_properties(self):
        snap = MetricSnapshot(10.0, 4 * GB, 16 * GB, 250 * GB, 500 * GB)
        assert snap.mem_percent == pytest.approx(25.0)
        assert snap.disk_percent == pytest.approx(50.0)

    def test_percent_with_zero_total(self):
        assert MetricSnapshot.empty().mem_percent == 0.0
        assert MetricSnapshot.empty().disk_percent == 0.0


class TestCollectSnapshot:
    """Tests for reading all gauges."""

    def test_unreadable_counters_are_zero(self):
        snap, carry = collect_snapshot(FakeProvider(), None)
        assert snap == MetricSnapshot.empty()
        assert carry is None

    def test_full_snapshot(self):
        provider = FakeProvider(
            ticks=[CpuTicks(10, 10, 80, 0)],
            memory=MemoryCounters(active=2 * GB, wired=1 * GB, compressed=0, total=8 * GB),
            disk=DiskUsage(total=100 * GB, free=40 * GB),
        )
        snap, _ = collect_snapshot(provider, CpuTicks(0, 0, 0, 0))
        assert snap.cpu_percent == pytest.approx(20.0)
        assert (snap.mem_used, snap.mem_total) == (3 * GB, 8 * GB)
        assert (snap.disk_used, snap.disk_total) == (60 * GB, 100 * GB)


class TestMetricsSampler:
    """Tests for the stateful sampler."""

    def test_carries_previous_between_ticks(self):
        provider = FakeProvider(
            ticks=[CpuTicks(0, 0, 100, 0), CpuTicks(50, 0, 150, 0)],
        )
        sampler = MetricsSampler(provider)
        assert sampler.tick().cpu_percent == 0.0
        assert sampler.tick().cpu_percent == pytest.approx(50.0)
        assert sampler.previous == CpuTicks(50, 0, 150, 0)

    def test_reset_restarts_baseline(self):
        provider = FakeProvider(
            ticks=[CpuTicks(0, 0, 100, 0), CpuTicks(50, 0, 150, 0)],
        )
        sampler = MetricsSampler(provider)
        sampler.tick()
        sampler.reset()
        assert sampler.previous is None
        assert sampler.tick().cpu_percent == 0.0
