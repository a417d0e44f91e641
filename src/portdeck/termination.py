"""Termination engine: SIGTERM, verify, then SIGKILL only on survival.

Per pid:

    running -> TERM sent -> dead                      (TERM, ok)
                         -> alive -> KILL sent        (KILL, ok)
                                  -> KILL failed      (KILL, failed)
            -> TERM send failed                       (TERM, failed)

A failed TERM send stops there. KILL is never sent without a TERM that was
delivered and then outlived the grace interval.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from portdeck.provider import CommandResult

log = structlog.get_logger()

DEFAULT_GRACE_SECONDS = 0.35
DEFAULT_PREVIEW = 8


class Signal(Enum):
    TERM = "TERM"
    KILL = "KILL"


class TerminationProvider(Protocol):
    """The part of the System Query Provider termination needs."""

    def listeners_for_port(self, port: int) -> CommandResult: ...

    def send_terminate(self, pid: int) -> CommandResult: ...

    def send_force_kill(self, pid: int) -> CommandResult: ...

    def is_alive(self, pid: int) -> bool: ...


@dataclass(slots=True, frozen=True)
class TerminationOutcome:
    """Result of running the escalation protocol against one pid."""

    pid: int
    signal_used: Signal
    succeeded: bool
    error_detail: str | None = None


@dataclass(slots=True, frozen=True)
class PortTerminationResult:
    """Result of terminating every listener on one port.

    total == 0 with no error means nothing was listening; error is set when
    the listener lookup itself could not be performed.
    """

    port: int
    terminated: int
    total: int
    outcomes: tuple[TerminationOutcome, ...] = ()
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.total > 0


@dataclass
class BatchSummary:
    """Aggregate over a multi-port termination."""

    requested_ports: list[int]
    ports_with_processes: int = 0
    processes_terminated: int = 0
    processes_total: int = 0
    ports_not_found: list[int] = field(default_factory=list)
    ports_unavailable: list[int] = field(default_factory=list)
    results: list[PortTerminationResult] = field(default_factory=list)

    def not_found_preview(self, cap: int = DEFAULT_PREVIEW) -> tuple[list[int], int]:
        """First `cap` not-found ports and how many were left out."""
        shown = self.ports_not_found[:cap]
        return shown, len(self.ports_not_found) - len(shown)


def _failure_detail(result: CommandResult) -> str | None:
    return result.error_text or None


def _lookup_error(result: CommandResult) -> str | None:
    """Why a pid lookup failed, or None if it only found nothing.

    lsof exits 1 when nothing matches, possibly after "lsof: WARNING:"
    lines about unreadable mounts; those alone are not a failure.
    """
    if not result.launched:
        return result.error_text or "lookup failed"
    if result.ok:
        return None
    lines = [
        line for line in result.error_text.splitlines() if line.strip() and "WARNING" not in line
    ]
    return "\n".join(lines) or None


def terminate_pid(
    provider: TerminationProvider,
    pid: int,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> TerminationOutcome:
    """Terminate one pid, escalating to SIGKILL only if it outlives SIGTERM.

    Blocking: sleeps for the grace interval. Run it on a worker thread.
    """
    term = provider.send_terminate(pid)
    if not term.ok:
        log.warning("signal_failed", pid=pid, signal="TERM", error=term.error_text)
        return TerminationOutcome(pid, Signal.TERM, False, _failure_detail(term))

    sleep(grace_seconds)

    if not provider.is_alive(pid):
        log.info("process_terminated", pid=pid, signal="TERM")
        return TerminationOutcome(pid, Signal.TERM, True)

    kill = provider.send_force_kill(pid)
    if not kill.ok:
        log.warning("signal_failed", pid=pid, signal="KILL", error=kill.error_text)
        return TerminationOutcome(pid, Signal.KILL, False, _failure_detail(kill))

    log.info("process_terminated", pid=pid, signal="KILL")
    return TerminationOutcome(pid, Signal.KILL, True)


def parse_pid_lines(text: str) -> list[int]:
    """Unique pids from lsof -t output, sorted ascending."""
    pids: set[int] = set()
    for line in text.splitlines():
        try:
            pids.add(int(line.strip()))
        except ValueError:
            continue
    return sorted(pids)


def terminate_port(
    provider: TerminationProvider,
    port: int,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> PortTerminationResult:
    """Terminate every process currently listening on a port.

    The listener set is queried fresh rather than taken from a registry
    snapshot. A pid counts as terminated once it no longer resolves.
    """
    lookup = provider.listeners_for_port(port)
    pids = parse_pid_lines(lookup.stdout)

    if not pids:
        error = _lookup_error(lookup)
        if error is not None:
            log.warning("listener_lookup_failed", port=port, error=error)
        return PortTerminationResult(port, 0, 0, error=error)

    outcomes = tuple(terminate_pid(provider, pid, grace_seconds, sleep) for pid in pids)
    terminated = sum(1 for pid in pids if not provider.is_alive(pid))
    return PortTerminationResult(port, terminated, len(pids), outcomes)


def terminate_ports(
    provider: TerminationProvider,
    ports: Iterable[int],
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchSummary:
    """Terminate listeners on each port independently and aggregate.

    Ports are processed one after another with no rollback; a partial
    failure is reported in the summary.
    """
    requested = list(ports)
    summary = BatchSummary(requested_ports=requested)

    for port in requested:
        result = terminate_port(provider, port, grace_seconds, sleep)
        summary.results.append(result)
        if result.error is not None:
            summary.ports_unavailable.append(port)
        elif not result.found:
            summary.ports_not_found.append(port)
        else:
            summary.ports_with_processes += 1
            summary.processes_terminated += result.terminated
            summary.processes_total += result.total

    log.info(
        "batch_terminated",
        ports=len(requested),
        with_processes=summary.ports_with_processes,
        terminated=summary.processes_terminated,
        total=summary.processes_total,
    )
    return summary


# ─────────────────────────────────────────────────────────────────────────────
# Status strings
# ─────────────────────────────────────────────────────────────────────────────


def _suffix(detail: str | None) -> str:
    return f" ({detail})" if detail else ""


def describe_outcome(outcome: TerminationOutcome) -> str:
    """One-line status for a single pid."""
    pid = outcome.pid
    if outcome.signal_used is Signal.TERM:
        if outcome.succeeded:
            return f"PID {pid} terminated"
        return f"PID {pid}: terminate failed{_suffix(outcome.error_detail)}"
    if outcome.succeeded:
        return f"PID {pid} force-killed"
    return f"PID {pid}: force kill failed{_suffix(outcome.error_detail)}"


def describe_port_result(result: PortTerminationResult) -> str:
    """One-line status for a single port."""
    if result.error is not None:
        return f"Could not look up port {result.port}{_suffix(result.error)}"
    if not result.found:
        return f"No process found on port {result.port}"
    return f"Terminated {result.terminated}/{result.total} processes on port {result.port}"


def _port_list(shown: list[int], overflow: int) -> str:
    text = ", ".join(str(p) for p in shown)
    return f"{text} (+{overflow} more)" if overflow > 0 else text


def describe_batch(summary: BatchSummary, preview: int = DEFAULT_PREVIEW) -> str:
    """Status for a batch: targets, counts, and the ports with nothing found."""
    if len(summary.results) == 1:
        return describe_port_result(summary.results[0])

    parts = [
        f"{len(summary.requested_ports)} ports: terminated "
        f"{summary.processes_terminated}/{summary.processes_total} processes "
        f"on {summary.ports_with_processes} ports"
    ]
    if summary.ports_not_found:
        shown, overflow = summary.not_found_preview(preview)
        parts.append(f"nothing listening on {_port_list(shown, overflow)}")
    if summary.ports_unavailable:
        unavailable = summary.ports_unavailable
        overflow = max(len(unavailable) - preview, 0)
        parts.append(f"lookup failed on {_port_list(unavailable[:preview], overflow)}")
    return "; ".join(parts)
