"""Port registry: listening TCP ports and the processes that own them."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from portdeck.provider import CommandResult

log = structlog.get_logger()

UNKNOWN = "unknown"
NO_DIRECTORY = "-"

MIN_PORT = 1
MAX_PORT = 65535


class PortBand(Enum):
    """Conventional port-number partitions."""

    SYSTEM = "system"
    REGISTERED = "registered"
    DYNAMIC = "dynamic"

    @classmethod
    def from_port(cls, port: int) -> "PortBand":
        """Band for a port number. Boundaries are closed on both ends."""
        if port <= 1023:
            return cls.SYSTEM
        if port <= 49151:
            return cls.REGISTERED
        return cls.DYNAMIC

    @property
    def title(self) -> str:
        """Section heading for this band."""
        return _BAND_TITLES[self]


_BAND_TITLES = {
    PortBand.SYSTEM: "System ports (1-1023)",
    PortBand.REGISTERED: "Registered ports (1024-49151)",
    PortBand.DYNAMIC: "Dynamic ports (49152-65535)",
}


@dataclass(slots=True, frozen=True)
class PortRecord:
    """One (pid, port) listener, enriched with process details."""

    pid: int
    port: int
    process_name: str
    command_line: str
    working_directory: str
    owner_name: str

    @property
    def key(self) -> tuple[int, int]:
        """Identity within a registry snapshot."""
        return (self.pid, self.port)

    @property
    def band(self) -> PortBand:
        return PortBand.from_port(self.port)


@dataclass(slots=True, frozen=True)
class ListenerEntry:
    """A parsed listener before enrichment."""

    pid: int
    port: int
    process_name: str
    owner_name: str


class RegistryProvider(Protocol):
    """The part of the System Query Provider the registry needs."""

    def list_listening_endpoints(self) -> CommandResult: ...

    def command_line_for(self, pid: int) -> str | None: ...

    def working_directory_for(self, pid: int) -> str | None: ...


def parse_port(endpoint: str) -> int | None:
    """Extract the trailing :port of an lsof endpoint, e.g. "*:8000"."""
    _, sep, tail = endpoint.rpartition(":")
    if not sep:
        return None
    try:
        return int(tail)
    except ValueError:
        return None


def parse_listing(text: str) -> list[ListenerEntry]:
    """Parse lsof -F pcLun output into deduplicated listener entries.

    Each line is a one-character tag followed by its value. A "p" line starts
    a new process block; "c", "L" and "u" describe it; every "n" line is one
    endpoint of that process. Unknown tags and unparseable values are skipped.
    """
    entries: list[ListenerEntry] = []
    seen: set[tuple[int, int]] = set()
    pid: int | None = None
    name = ""
    login = ""
    uid = ""

    for line in text.splitlines():
        if not line:
            continue
        tag, value = line[0], line[1:]

        if tag == "p":
            try:
                pid = int(value)
            except ValueError:
                pid = None
            name = login = uid = ""
        elif tag == "c":
            name = value
        elif tag == "L":
            login = value
        elif tag == "u":
            uid = value
        elif tag == "n":
            port = parse_port(value)
            if pid is None or port is None:
                continue
            if (pid, port) in seen:
                continue
            seen.add((pid, port))
            entries.append(
                ListenerEntry(
                    pid=pid,
                    port=port,
                    process_name=name or UNKNOWN,
                    owner_name=login or uid or UNKNOWN,
                )
            )

    return entries


@dataclass
class EnrichmentCache:
    """Per-build cache of pid lookups. Never shared between builds."""

    command_lines: dict[int, str | None] = field(default_factory=dict)
    working_directories: dict[int, str | None] = field(default_factory=dict)

    def command_line(self, provider: RegistryProvider, pid: int) -> str | None:
        if pid not in self.command_lines:
            self.command_lines[pid] = _lookup(provider.command_line_for, pid, "command_line")
        return self.command_lines[pid]

    def working_directory(self, provider: RegistryProvider, pid: int) -> str | None:
        if pid not in self.working_directories:
            self.working_directories[pid] = _lookup(provider.working_directory_for, pid, "cwd")
        return self.working_directories[pid]


def _lookup(fetch, pid: int, what: str) -> str | None:
    try:
        return fetch(pid)
    except Exception as e:
        # A single failed lookup only costs its field
        log.warning("enrichment_failed", pid=pid, field=what, error=str(e))
        return None


def build_registry(
    provider: RegistryProvider,
    cache: EnrichmentCache | None = None,
) -> list[PortRecord]:
    """Build a fresh registry snapshot sorted by (port, pid).

    An empty list is returned when the listing failed without output; a
    failed probe with no data is treated as nothing listening.
    """
    try:
        listing = provider.list_listening_endpoints()
    except Exception as e:
        log.warning("lsof_failed", error=str(e))
        return []

    if not listing.ok and not listing.stdout.strip():
        if listing.error_text:
            log.warning("lsof_failed", status=listing.status, error=listing.error_text)
        return []

    entries = parse_listing(listing.stdout)
    if not entries:
        return []

    cache = cache if cache is not None else EnrichmentCache()
    records = [
        PortRecord(
            pid=entry.pid,
            port=entry.port,
            process_name=entry.process_name,
            command_line=cache.command_line(provider, entry.pid) or entry.process_name,
            working_directory=cache.working_directory(provider, entry.pid) or NO_DIRECTORY,
            owner_name=entry.owner_name,
        )
        for entry in entries
    ]
    records.sort(key=lambda r: (r.port, r.pid))
    return records
