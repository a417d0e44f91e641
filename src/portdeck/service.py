"""Async controller tying the registry, termination and metrics together.

All provider work runs in the default executor so the event loop never
waits on a subprocess. Shared state (records, snapshot, status message) is
last-write-wins: whichever refresh finishes last is what is shown.
"""

import asyncio
from collections.abc import Callable
from functools import partial
from typing import Any

import structlog

from portdeck.config import Config
from portdeck.insights import HoverCloser, InsightsPanel
from portdeck.metrics import MetricSnapshot, MetricsSampler
from portdeck.provider import SystemProvider
from portdeck.query import (
    BandFilter,
    NoMatchingPort,
    NoNumericToken,
    ResolvedTargets,
    TargetResolution,
    filter_records,
    resolve_targets,
)
from portdeck.registry import PortRecord, build_registry
from portdeck.termination import (
    BatchSummary,
    PortTerminationResult,
    TerminationOutcome,
    describe_batch,
    describe_outcome,
    describe_port_result,
    terminate_pid,
    terminate_port,
    terminate_ports,
)

log = structlog.get_logger()

NO_NUMERIC_TOKEN_MESSAGE = (
    "Enter ports to terminate as numbers or ranges, e.g. 8000, 3000:3999, 8000,8080"
)
NO_MATCHING_PORT_MESSAGE = "No listening port matches the given ports or ranges"


def describe_resolution(resolution: TargetResolution) -> str | None:
    """Guidance for a query that produced no targets, else None."""
    match resolution:
        case NoNumericToken():
            return NO_NUMERIC_TOKEN_MESSAGE
        case NoMatchingPort():
            return NO_MATCHING_PORT_MESSAGE
        case _:
            return None


class PortDeck:
    """Listener registry plus termination actions."""

    def __init__(self, config: Config | None = None, provider: Any = None):
        self.config = config or Config()
        self.provider = provider or SystemProvider(self.config.provider)
        self.records: list[PortRecord] = []
        self.status_message: str | None = None
        self._refreshes_in_flight = 0

    @property
    def is_loading(self) -> bool:
        return self._refreshes_in_flight > 0

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def refresh(self) -> list[PortRecord]:
        """Rebuild the registry from scratch."""
        self._refreshes_in_flight += 1
        try:
            records = await self._run(build_registry, self.provider)
        finally:
            self._refreshes_in_flight -= 1
        self.records = records
        log.debug("registry_refreshed", count=len(records))
        return records

    def visible(self, query: str = "", band_filter: BandFilter = BandFilter.ALL) -> list[PortRecord]:
        """Current records under a query and band filter."""
        return filter_records(self.records, query, band_filter)

    def resolve(self, query: str) -> TargetResolution:
        return resolve_targets(query, self.records)

    # ─────────────────────────────────────────────────────────────────────────
    # Termination (each action ends with a refresh)
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def _grace(self) -> float:
        return self.config.termination.grace_seconds

    async def terminate_pid(self, pid: int) -> TerminationOutcome:
        self.status_message = None
        outcome = await self._run(terminate_pid, self.provider, pid, self._grace)
        self.status_message = describe_outcome(outcome)
        await self.refresh()
        return outcome

    async def terminate_port(self, port: int) -> PortTerminationResult:
        self.status_message = None
        result = await self._run(terminate_port, self.provider, port, self._grace)
        self.status_message = describe_port_result(result)
        await self.refresh()
        return result

    async def terminate_ports(self, ports: list[int]) -> BatchSummary:
        self.status_message = None
        summary = await self._run(terminate_ports, self.provider, ports, self._grace)
        self.status_message = describe_batch(summary, self.config.termination.not_found_preview)
        await self.refresh()
        return summary

    async def terminate_query(self, query: str) -> BatchSummary | None:
        """Terminate the ports a query resolves to.

        Returns None (with guidance in status_message) when the query has no
        numeric token or nothing it names is listening.
        """
        resolution = self.resolve(query)
        if isinstance(resolution, ResolvedTargets):
            return await self.terminate_ports(resolution.ports)
        self.status_message = describe_resolution(resolution)
        return None


class MetricsMonitor:
    """Periodically samples system gauges on a worker thread."""

    def __init__(self, provider: Any, interval: float = 1.0):
        self.sampler = MetricsSampler(provider)
        self.interval = interval
        self.snapshot = MetricSnapshot.empty()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self.sampler.reset()
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.sampler.reset()

    async def refresh(self) -> MetricSnapshot:
        """Take one sample now."""
        loop = asyncio.get_running_loop()
        self.snapshot = await loop.run_in_executor(None, self.sampler.tick)
        return self.snapshot

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception as e:
                log.error("sample_failed", error=str(e))
            await asyncio.sleep(self.interval)


class Dashboard:
    """Everything a front end needs: ports, gauges and rankings."""

    def __init__(self, config: Config | None = None, provider: Any = None):
        self.config = config or Config()
        self.provider = provider or SystemProvider(self.config.provider)
        self.ports = PortDeck(self.config, self.provider)
        self.metrics = MetricsMonitor(self.provider, self.config.system.sample_interval)
        self.insights = InsightsPanel(self.provider, self.config.insights.top_n)
        self.hover = HoverCloser(self.insights, self.config.insights.hover_close_delay)

    async def start(self) -> None:
        self.metrics.start()
        await self.ports.refresh()

    async def stop(self) -> None:
        self.hover.cancel()
        await self.metrics.stop()
