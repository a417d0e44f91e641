"""System Query Provider: the only place portdeck touches the OS.

Every probe shells out to a macOS command line tool (lsof, ps, kill, du,
vm_stat) or reads a psutil counter. Command failures never raise: a missing
binary, a permission error or a timeout comes back as a CommandResult with
status -1 and the reason in stderr, so callers can degrade to placeholders.
"""

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

from portdeck.config import ProviderConfig

log = structlog.get_logger()

# Status reported when the command could not be run at all
LAUNCH_FAILED = -1

_VM_PAGE_SIZE = re.compile(r"page size of (\d+) bytes")
_VM_LINE = re.compile(r"^(?P<key>[^:]+):\s+(?P<value>\d+)\.?\s*$")


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Captured output of one external command."""

    stdout: str
    stderr: str
    status: int

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.status == 0

    @property
    def launched(self) -> bool:
        """False when the binary was missing, unrunnable or timed out."""
        return self.status != LAUNCH_FAILED

    @property
    def error_text(self) -> str:
        """Trimmed stderr, for attaching to reports."""
        return self.stderr.strip()


@dataclass(slots=True, frozen=True)
class CpuTicks:
    """Cumulative CPU time counters in clock ticks (1/100 s)."""

    user: int
    system: int
    idle: int
    nice: int


@dataclass(slots=True, frozen=True)
class MemoryCounters:
    """Memory accounting in bytes."""

    active: int
    wired: int
    compressed: int
    total: int


@dataclass(slots=True, frozen=True)
class DiskUsage:
    """Filesystem capacity in bytes."""

    total: int
    free: int


def run_command(
    executable: str,
    args: list[str],
    timeout: float = 10.0,
    extra_path: str = "",
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        executable: Absolute path (or bare name) of the tool
        args: Arguments, without the executable
        timeout: Seconds before the command is killed
        extra_path: Appended to PATH so bare names and child tools resolve

    Returns:
        CommandResult; status is LAUNCH_FAILED if the command never completed.
    """
    env = dict(os.environ)
    if extra_path:
        current = env.get("PATH")
        env["PATH"] = f"{current}:{extra_path}" if current else extra_path

    try:
        result = subprocess.run(
            [executable, *args],
            capture_output=True,
            text=True,
            errors="replace",
            env=env,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log.warning("command_timeout", executable=executable, timeout=timeout)
        return CommandResult("", f"{executable} timed out after {timeout}s", LAUNCH_FAILED)
    except (FileNotFoundError, PermissionError, OSError) as e:
        log.warning("command_unavailable", executable=executable, error=str(e))
        return CommandResult("", str(e), LAUNCH_FAILED)

    return CommandResult(result.stdout, result.stderr, result.returncode)


def parse_vm_stat(text: str) -> dict[str, int]:
    """Parse vm_stat output into page counts keyed by label.

    The header's page size is returned under the "page_size" key.
    Lines that are not "<label>: <count>." are ignored.
    """
    counts: dict[str, int] = {}
    for line in text.splitlines():
        if match := _VM_PAGE_SIZE.search(line):
            counts["page_size"] = int(match.group(1))
            continue
        if match := _VM_LINE.match(line.strip()):
            counts[match.group("key").strip()] = int(match.group("value"))
    return counts


def first_field(text: str) -> str | None:
    """Return the first whitespace-separated field of text, if any."""
    parts = text.split()
    return parts[0] if parts else None


class SystemProvider:
    """Shells out to lsof/ps/kill/du and reads psutil counters."""

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or ProviderConfig()

    def _run(self, executable: str, args: list[str], timeout: float | None = None) -> CommandResult:
        return run_command(
            executable,
            args,
            timeout=timeout or self.config.command_timeout,
            extra_path=self.config.extra_path,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Listeners
    # ─────────────────────────────────────────────────────────────────────────

    def list_listening_endpoints(self) -> CommandResult:
        """All TCP listeners in lsof field format (p/c/L/u/n tags)."""
        return self._run(self.config.lsof_path, ["-w", "-nP", "-iTCP", "-sTCP:LISTEN", "-FpcLun"])

    def listeners_for_port(self, port: int) -> CommandResult:
        """PIDs listening on one port, one per line."""
        return self._run(self.config.lsof_path, ["-w", f"-tiTCP:{port}", "-sTCP:LISTEN"])

    def command_line_for(self, pid: int) -> str | None:
        """Full command line of a process, or None if unavailable."""
        result = self._run(self.config.ps_path, ["-p", str(pid), "-o", "command="])
        value = result.stdout.strip()
        return value or None

    def working_directory_for(self, pid: int) -> str | None:
        """Current working directory of a process, or None if unavailable."""
        result = self._run(self.config.lsof_path, ["-a", "-p", str(pid), "-d", "cwd", "-Fn"])
        for line in result.stdout.splitlines():
            if line.startswith("n"):
                return line[1:]
        return None

    # ─────────────────────────────────────────────────────────────────────────
    # Signals
    # ─────────────────────────────────────────────────────────────────────────

    def send_terminate(self, pid: int) -> CommandResult:
        """Send SIGTERM."""
        return self._run(self.config.kill_path, ["-TERM", str(pid)])

    def send_force_kill(self, pid: int) -> CommandResult:
        """Send SIGKILL."""
        return self._run(self.config.kill_path, ["-KILL", str(pid)])

    def is_alive(self, pid: int) -> bool:
        """True if ps still resolves the pid to a process.

        A ps that could not run proves nothing, so the pid is assumed alive.
        """
        result = self._run(self.config.ps_path, ["-p", str(pid), "-o", "pid="])
        if not result.launched:
            log.warning("liveness_unknown", pid=pid, error=result.error_text)
            return True
        return bool(result.stdout.strip())

    # ─────────────────────────────────────────────────────────────────────────
    # Process and filesystem usage
    # ─────────────────────────────────────────────────────────────────────────

    def process_table(self, column: str) -> CommandResult:
        """Rows of "pid value name" for every process.

        Args:
            column: ps keyword for the value column ("pcpu" or "rss")
        """
        return self._run(self.config.ps_path, ["-Ao", f"pid=,{column}=,comm="])

    def directory_size_kb(self, path: Path) -> float | None:
        """Recursive size of path in KB via du, or None on failure."""
        result = self._run(self.config.du_path, ["-sk", str(path)], timeout=self.config.du_timeout)
        if not result.ok:
            log.debug("du_failed", path=str(path), error=result.error_text)
            return None
        token = first_field(result.stdout)
        try:
            return float(token) if token is not None else None
        except ValueError:
            return None

    @property
    def home_dir(self) -> Path:
        """The user's home directory."""
        return Path.home()

    def home_entries(self) -> list[Path]:
        """Non-hidden immediate entries of the home directory.

        Raises:
            OSError: If the home directory cannot be listed.
        """
        return sorted(p for p in self.home_dir.iterdir() if not p.name.startswith("."))

    # ─────────────────────────────────────────────────────────────────────────
    # System counters
    # ─────────────────────────────────────────────────────────────────────────

    def cpu_ticks(self) -> CpuTicks | None:
        """Cumulative system-wide CPU ticks, or None if unreadable."""
        try:
            times = psutil.cpu_times()
        except (OSError, RuntimeError) as e:
            log.warning("cpu_times_failed", error=str(e))
            return None
        return CpuTicks(
            user=round(times.user * 100),
            system=round(times.system * 100),
            idle=round(times.idle * 100),
            nice=round(getattr(times, "nice", 0.0) * 100),
        )

    def memory_counters(self) -> MemoryCounters | None:
        """Active/wired/compressed bytes from vm_stat plus physical total.

        Falls back to psutil's active/wired figures (no compressor count)
        where vm_stat is not available.
        """
        try:
            vm = psutil.virtual_memory()
        except (OSError, RuntimeError) as e:
            log.warning("virtual_memory_failed", error=str(e))
            return None

        result = self._run(self.config.vm_stat_path, [])
        counts = parse_vm_stat(result.stdout) if result.ok else {}
        page = counts.get("page_size")
        if page:
            return MemoryCounters(
                active=counts.get("Pages active", 0) * page,
                wired=counts.get("Pages wired down", 0) * page,
                compressed=counts.get("Pages occupied by compressor", 0) * page,
                total=vm.total,
            )

        return MemoryCounters(
            active=getattr(vm, "active", 0),
            wired=getattr(vm, "wired", 0),
            compressed=0,
            total=vm.total,
        )

    def disk_usage(self, path: Path) -> DiskUsage | None:
        """Capacity of the filesystem holding path, or None if unreadable."""
        try:
            usage = psutil.disk_usage(str(path))
        except OSError as e:
            log.warning("disk_usage_failed", path=str(path), error=str(e))
            return None
        return DiskUsage(total=usage.total, free=usage.free)
