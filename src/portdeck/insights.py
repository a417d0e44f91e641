"""Top-N rankings: busiest processes by CPU and memory, largest home items.

Fetchers are blocking and distinguish "could not ask" (InsightResult.error)
from "nothing to show" (no rows, no error). InsightsPanel and HoverCloser
hold the UI-facing state on the event loop.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import structlog

from portdeck.formatting import format_bytes, format_percent
from portdeck.provider import CommandResult

log = structlog.get_logger()

DEFAULT_TOP_N = 7


class InsightMetric(Enum):
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"

    @property
    def title(self) -> str:
        return {"cpu": "CPU", "memory": "Memory", "disk": "Disk"}[self.value]

    @property
    def subtitle(self) -> str:
        return {
            "cpu": "Top processes by CPU usage",
            "memory": "Top processes by resident memory",
            "disk": "Largest items in the home directory",
        }[self.value]


class InsightsProvider(Protocol):
    """The part of the System Query Provider the rankings need."""

    def process_table(self, column: str) -> CommandResult: ...

    def home_entries(self) -> list[Path]: ...

    def directory_size_kb(self, path: Path) -> float | None: ...


@dataclass(slots=True, frozen=True)
class InsightRow:
    """One ranked entity."""

    identity: str
    title: str
    detail: str
    numeric_value: float
    display_value: str


@dataclass
class InsightResult:
    rows: list[InsightRow] = field(default_factory=list)
    error: str | None = None


def rank(rows: list[InsightRow], top_n: int) -> list[InsightRow]:
    """Sort descending by value and keep the first top_n."""
    return sorted(rows, key=lambda r: r.numeric_value, reverse=True)[: max(top_n, 0)]


def parse_process_rows(text: str, metric: InsightMetric) -> list[InsightRow]:
    """Parse "pid value name" lines from ps.

    Memory values are resident KB and become bytes. Rows with a missing or
    non-numeric pid, a non-numeric or negative value, or an empty name are
    skipped.
    """
    rows: list[InsightRow] = []
    for raw in text.splitlines():
        parts = raw.strip().split(None, 2)
        if len(parts) != 3:
            continue
        try:
            pid = int(parts[0])
            value = float(parts[1])
        except ValueError:
            continue
        name = parts[2].strip()
        if value < 0 or not name:
            continue

        if metric is InsightMetric.CPU:
            rows.append(InsightRow(f"cpu-{pid}", name, f"PID {pid}", value, format_percent(value)))
        else:
            size = value * 1024
            rows.append(InsightRow(f"mem-{pid}", name, f"PID {pid}", size, format_bytes(size)))
    return rows


_PS_COLUMNS = {InsightMetric.CPU: "pcpu", InsightMetric.MEMORY: "rss"}


def fetch_top_processes(
    provider: InsightsProvider,
    metric: InsightMetric,
    top_n: int = DEFAULT_TOP_N,
) -> InsightResult:
    """Top processes by CPU percent or resident memory."""
    result = provider.process_table(_PS_COLUMNS[metric])
    if not result.ok:
        log.warning("process_table_failed", metric=metric.value, error=result.error_text)
        message = result.error_text or f"Could not read {metric.title.lower()} usage"
        return InsightResult(error=message)
    return InsightResult(rows=rank(parse_process_rows(result.stdout, metric), top_n))


def fetch_top_disk(provider: InsightsProvider, top_n: int = DEFAULT_TOP_N) -> InsightResult:
    """Largest non-hidden items directly under the home directory."""
    try:
        entries = provider.home_entries()
    except OSError as e:
        log.warning("home_listing_failed", error=str(e))
        return InsightResult(error=f"Could not read disk usage: {e}")

    rows: list[InsightRow] = []
    for entry in entries:
        size_kb = provider.directory_size_kb(entry)
        if size_kb is None:
            continue
        size = size_kb * 1024
        rows.append(InsightRow(f"disk-{entry}", entry.name, str(entry), size, format_bytes(size)))
    return InsightResult(rows=rank(rows, top_n))


def fetch_insights(
    provider: InsightsProvider,
    metric: InsightMetric,
    top_n: int = DEFAULT_TOP_N,
) -> InsightResult:
    """Dispatch to the fetcher for a metric. Blocking."""
    if metric is InsightMetric.DISK:
        return fetch_top_disk(provider, top_n)
    return fetch_top_processes(provider, metric, top_n)


class InsightsPanel:
    """Currently shown ranking.

    A fetch whose metric is no longer selected when it completes is
    discarded rather than applied.
    """

    def __init__(self, provider: InsightsProvider, top_n: int = DEFAULT_TOP_N):
        self._provider = provider
        self.top_n = top_n
        self.selected_metric: InsightMetric | None = None
        self.rows: list[InsightRow] = []
        self.error: str | None = None
        self.is_loading = False

    async def show(self, metric: InsightMetric) -> bool:
        """Select a metric and fetch its ranking on a worker thread.

        Returns:
            True if the result was applied, False if it went stale.
        """
        self.selected_metric = metric
        self.is_loading = True
        self.error = None
        self.rows = []

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, fetch_insights, self._provider, metric, self.top_n)

        if self.selected_metric is not metric:
            log.debug("insight_result_stale", requested=metric.value)
            return False

        self.rows = result.rows
        self.error = result.error
        self.is_loading = False
        return True

    def close(self) -> None:
        self.selected_metric = None
        self.rows = []
        self.error = None
        self.is_loading = False


class HoverCloser:
    """Tracks hover and pin interest in the insight panel.

    Losing all interest schedules a close after `delay` seconds; any new
    interest before then cancels it.
    """

    def __init__(self, panel: InsightsPanel, delay: float = 0.18):
        self.panel = panel
        self.delay = delay
        self.pinned: InsightMetric | None = None
        self._hovered: dict[InsightMetric, None] = {}
        self._close_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._latest_metric: InsightMetric | None = None
        self._latest_task: asyncio.Task | None = None

    @property
    def hovered(self) -> list[InsightMetric]:
        return list(self._hovered)

    @property
    def close_pending(self) -> bool:
        return self._close_handle is not None

    def _cancel_close(self) -> None:
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None

    def _show_if_needed(self, metric: InsightMetric) -> None:
        task = self._latest_task
        if task is not None and not task.done():
            # queued or loading; the most recent request decides what shows
            if self._latest_metric is metric:
                return
        elif self.panel.selected_metric is metric and self.panel.rows:
            return
        task = asyncio.get_running_loop().create_task(self.panel.show(metric))
        self._latest_metric = metric
        self._latest_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _close_panel(self) -> None:
        self._latest_metric = None
        self._latest_task = None
        self.panel.close()

    def pin(self, metric: InsightMetric) -> None:
        self._cancel_close()
        self.pinned = metric
        self._show_if_needed(metric)

    def unpin(self) -> None:
        """Drop the pin; fall back to a hovered metric or close."""
        self.pinned = None
        if self._hovered:
            self._show_if_needed(next(iter(self._hovered)))
        else:
            self._close_panel()

    def hover(self, metric: InsightMetric, hovering: bool) -> None:
        self._cancel_close()

        if hovering:
            self._hovered[metric] = None
            if self.pinned is None:
                self._show_if_needed(metric)
            return

        self._hovered.pop(metric, None)
        if self.pinned is not None:
            return
        if self._hovered:
            self._show_if_needed(next(iter(self._hovered)))
            return

        loop = asyncio.get_running_loop()
        self._close_handle = loop.call_later(self.delay, self._close_if_idle)

    def _close_if_idle(self) -> None:
        self._close_handle = None
        if self.pinned is None and not self._hovered:
            self._close_panel()

    def cancel(self) -> None:
        """Cancel any pending close, e.g. on shutdown."""
        self._cancel_close()
