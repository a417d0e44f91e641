"""Shared test fixtures for portdeck."""

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from portdeck.provider import (
    LAUNCH_FAILED,
    CommandResult,
    CpuTicks,
    DiskUsage,
    MemoryCounters,
)

# lsof -nP -iTCP -sTCP:LISTEN -FpcLun for three processes; node listens on
# IPv4 and IPv6 for the same port, which must collapse to one record
SAMPLE_LSOF = """\
p501
cnode
Lalice
u501
f23
n*:3000
f24
n[::1]:3000
f25
n127.0.0.1:9229
p88
claunchd
u0
f5
n*:22
p7001
cpython3.12
Lalice
u501
f3
n*:8000
"""

# ps -Ao pid=,pcpu=,comm=
PS_CPU_SAMPLE = """\
  101  12.5 Safari
  202   0.0 launchd
  303  55.1 node
"""


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(stdout, "", 0)


def failed(stderr: str = "", status: int = 1, stdout: str = "") -> CommandResult:
    return CommandResult(stdout, stderr, status)


def not_launched(reason: str = "No such file or directory") -> CommandResult:
    return CommandResult("", reason, LAUNCH_FAILED)


@dataclass
class FakeProvider:
    """Scriptable stand-in for SystemProvider.

    Processes listed in `alive` are running. A successful TERM kills a pid
    unless it is in `ignores_term`; a successful KILL always does. Every
    signal is recorded in `signals` as (signal, pid).
    """

    listing: CommandResult = field(default_factory=lambda: ok(SAMPLE_LSOF))
    command_lines: dict[int, str] = field(default_factory=dict)
    working_directories: dict[int, str] = field(default_factory=dict)
    port_listeners: dict[int, CommandResult] = field(default_factory=dict)
    alive: set[int] = field(default_factory=set)
    ignores_term: set[int] = field(default_factory=set)
    term_results: dict[int, CommandResult] = field(default_factory=dict)
    kill_results: dict[int, CommandResult] = field(default_factory=dict)
    tables: dict[str, CommandResult] = field(default_factory=dict)
    home: Path = Path("/Users/alice")
    entries: list[Path] = field(default_factory=list)
    entries_error: OSError | None = None
    sizes_kb: dict[Path, float] = field(default_factory=dict)
    ticks: list[CpuTicks | None] = field(default_factory=list)
    memory: MemoryCounters | None = None
    disk: DiskUsage | None = None
    signals: list[tuple[str, int]] = field(default_factory=list)
    enrichment_calls: list[tuple[str, int]] = field(default_factory=list)
    table_calls: list[str] = field(default_factory=list)

    # Registry

    def list_listening_endpoints(self) -> CommandResult:
        return self.listing

    def command_line_for(self, pid: int) -> str | None:
        self.enrichment_calls.append(("command", pid))
        return self.command_lines.get(pid)

    def working_directory_for(self, pid: int) -> str | None:
        self.enrichment_calls.append(("cwd", pid))
        return self.working_directories.get(pid)

    # Termination

    def listeners_for_port(self, port: int) -> CommandResult:
        return self.port_listeners.get(port, failed(status=1))

    def send_terminate(self, pid: int) -> CommandResult:
        self.signals.append(("TERM", pid))
        result = self.term_results.get(pid)
        if result is None:
            result = ok() if pid in self.alive else failed(f"kill: {pid}: No such process")
        if result.ok and pid not in self.ignores_term:
            self.alive.discard(pid)
        return result

    def send_force_kill(self, pid: int) -> CommandResult:
        self.signals.append(("KILL", pid))
        result = self.kill_results.get(pid, ok())
        if result.ok:
            self.alive.discard(pid)
        return result

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    # Insights

    def process_table(self, column: str) -> CommandResult:
        self.table_calls.append(column)
        return self.tables.get(column, ok())

    def home_entries(self) -> list[Path]:
        if self.entries_error is not None:
            raise self.entries_error
        return list(self.entries)

    def directory_size_kb(self, path: Path) -> float | None:
        return self.sizes_kb.get(path)

    # Metrics

    @property
    def home_dir(self) -> Path:
        return self.home

    def cpu_ticks(self) -> CpuTicks | None:
        if not self.ticks:
            return None
        return self.ticks.pop(0)

    def memory_counters(self) -> MemoryCounters | None:
        return self.memory

    def disk_usage(self, path: Path) -> DiskUsage | None:
        return self.disk


@pytest.fixture
def provider() -> FakeProvider:
    """Fake provider with the sample listing and enrichment data."""
    return FakeProvider(
        command_lines={
            501: "node /Users/alice/app/server.js",
            7001: "python3.12 -m uvicorn main:app --port 8000",
        },
        working_directories={501: "/Users/alice/app", 7001: "/Users/alice/api"},
    )


def no_sleep(seconds: float) -> None:
    """Grace-interval replacement for termination tests."""
