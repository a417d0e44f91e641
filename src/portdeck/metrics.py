"""Live CPU, memory and disk gauges.

CPU usage is a delta between two tick readings, so the sampler carries the
previous reading from one tick to the next. The arithmetic itself is a pure
function taking and returning that reading.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from portdeck.provider import CpuTicks, DiskUsage, MemoryCounters

_COUNTER_MASK = (1 << 64) - 1


class MetricsProvider(Protocol):
    """The part of the System Query Provider the sampler needs."""

    @property
    def home_dir(self) -> Path: ...

    def cpu_ticks(self) -> CpuTicks | None: ...

    def memory_counters(self) -> MemoryCounters | None: ...

    def disk_usage(self, path: Path) -> DiskUsage | None: ...


def _clamp_percent(value: float) -> float:
    return min(max(value, 0.0), 100.0)


@dataclass(slots=True, frozen=True)
class MetricSnapshot:
    """System gauges at one tick. Byte counts are non-negative."""

    cpu_percent: float
    mem_used: int
    mem_total: int
    disk_used: int
    disk_total: int

    @classmethod
    def empty(cls) -> "MetricSnapshot":
        return cls(0.0, 0, 0, 0, 0)

    @property
    def mem_percent(self) -> float:
        if self.mem_total <= 0:
            return 0.0
        return _clamp_percent(self.mem_used / self.mem_total * 100)

    @property
    def disk_percent(self) -> float:
        if self.disk_total <= 0:
            return 0.0
        return _clamp_percent(self.disk_used / self.disk_total * 100)


def _counter_delta(current: int, previous: int) -> int:
    """Difference of two unsigned 64-bit counters, tolerating wraparound."""
    return (current - previous) & _COUNTER_MASK


def compute_cpu_percent(
    previous: CpuTicks | None,
    current: CpuTicks | None,
) -> tuple[float, CpuTicks | None]:
    """CPU busy percentage between two readings.

    Returns:
        (percent, sample to carry into the next call). The first reading
        yields 0.0. An unreadable current sample keeps the previous one.
    """
    if current is None:
        return 0.0, previous
    if previous is None:
        return 0.0, current

    user = _counter_delta(current.user, previous.user)
    system = _counter_delta(current.system, previous.system)
    idle = _counter_delta(current.idle, previous.idle)
    nice = _counter_delta(current.nice, previous.nice)

    total = user + system + idle + nice
    if total == 0:
        return 0.0, current

    return _clamp_percent((total - idle) / total * 100), current


def memory_used(counters: MemoryCounters) -> int:
    """Active + wired + compressed, never more than physical memory."""
    return min(counters.active + counters.wired + counters.compressed, counters.total)


def disk_used(usage: DiskUsage) -> int:
    return max(usage.total - usage.free, 0)


def collect_snapshot(
    provider: MetricsProvider,
    previous: CpuTicks | None,
) -> tuple[MetricSnapshot, CpuTicks | None]:
    """Read all gauges once. Blocking; run it on a worker thread."""
    cpu_percent, ticks = compute_cpu_percent(previous, provider.cpu_ticks())

    mem_used = mem_total = 0
    counters = provider.memory_counters()
    if counters is not None:
        mem_used, mem_total = memory_used(counters), counters.total

    used = total = 0
    usage = provider.disk_usage(provider.home_dir)
    if usage is not None:
        used, total = disk_used(usage), usage.total

    return MetricSnapshot(cpu_percent, mem_used, mem_total, used, total), ticks


class MetricsSampler:
    """Holds the one previous CPU reading carried between ticks.

    Ticks must not overlap; the owner awaits one before starting the next.
    """

    def __init__(self, provider: MetricsProvider):
        self._provider = provider
        self._previous: CpuTicks | None = None

    @property
    def previous(self) -> CpuTicks | None:
        return self._previous

    def reset(self) -> None:
        """Forget the previous reading; the next tick reports 0% CPU."""
        self._previous = None

    def tick(self) -> MetricSnapshot:
        snapshot, self._previous = collect_snapshot(self._provider, self._previous)
        return snapshot
