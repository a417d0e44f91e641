"""Search grammar for filtering listeners and picking termination targets.

A query is a comma-separated list of tokens combined with OR:

    8000            exact port
    3000:3999       inclusive range (either order)
    uvicorn         case-insensitive text match

Parsing never fails. Anything that is not a valid port or range is a text
term, so "70000" or "a:80" simply search text.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from portdeck.registry import MAX_PORT, MIN_PORT, PortBand, PortRecord


@dataclass(slots=True, frozen=True)
class ExactPort:
    port: int


@dataclass(slots=True, frozen=True)
class PortRange:
    low: int
    high: int

    def __contains__(self, port: int) -> bool:
        return self.low <= port <= self.high


@dataclass(slots=True, frozen=True)
class TextTerm:
    text: str


SearchToken = ExactPort | PortRange | TextTerm


def _parse_port_number(text: str) -> int | None:
    text = text.strip()
    # int() would also accept "+80" and "8_000"
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if MIN_PORT <= value <= MAX_PORT else None


def _parse_segment(segment: str) -> SearchToken:
    if segment.count(":") == 1:
        left, right = segment.split(":")
        start = _parse_port_number(left)
        end = _parse_port_number(right)
        if start is not None and end is not None:
            return PortRange(min(start, end), max(start, end))

    port = _parse_port_number(segment)
    if port is not None:
        return ExactPort(port)

    return TextTerm(segment.casefold())


def parse_query(raw: str) -> list[SearchToken]:
    """Split a query on commas into tokens, dropping empty segments."""
    return [_parse_segment(seg) for seg in (s.strip() for s in raw.split(",")) if seg]


def token_matches(token: SearchToken, record: PortRecord) -> bool:
    """Whether a single token selects a record."""
    match token:
        case ExactPort(port=port):
            return record.port == port
        case PortRange():
            return record.port in token
        case TextTerm(text=text):
            if text in str(record.port):
                return True
            fields = (
                record.process_name,
                record.owner_name,
                record.command_line,
                record.working_directory,
            )
            return any(text in f.casefold() for f in fields)
        case _:
            assert_never(token)


def query_matches(tokens: list[SearchToken], record: PortRecord) -> bool:
    """OR across tokens. An empty query matches everything."""
    if not tokens:
        return True
    return any(token_matches(t, record) for t in tokens)


class BandFilter(Enum):
    """Band selector for the listener view."""

    ALL = "all"
    SYSTEM = "system"
    REGISTERED = "registered"
    DYNAMIC = "dynamic"

    @property
    def band(self) -> PortBand | None:
        if self is BandFilter.ALL:
            return None
        return PortBand(self.value)

    @property
    def label(self) -> str:
        return _FILTER_LABELS[self]

    def next(self) -> "BandFilter":
        """The following filter, wrapping around."""
        members = list(BandFilter)
        return members[(members.index(self) + 1) % len(members)]


_FILTER_LABELS = {
    BandFilter.ALL: "All",
    BandFilter.SYSTEM: "1-1023",
    BandFilter.REGISTERED: "1024-49151",
    BandFilter.DYNAMIC: "49152-65535",
}


def filter_records(
    records: Iterable[PortRecord],
    query: str = "",
    band_filter: BandFilter = BandFilter.ALL,
) -> list[PortRecord]:
    """Records visible under a band filter and query.

    System ports (1-1023) are mostly OS daemons, so they only show when the
    SYSTEM filter is picked explicitly.
    """
    tokens = parse_query(query)
    selected = band_filter.band
    result = []
    for record in records:
        if band_filter is not BandFilter.SYSTEM and record.band is PortBand.SYSTEM:
            continue
        if selected is not None and record.band is not selected:
            continue
        if query_matches(tokens, record):
            result.append(record)
    return result


@dataclass(slots=True, frozen=True)
class ResolvedTargets:
    """Ports to terminate, sorted ascending and deduplicated."""

    ports: list[int]


@dataclass(slots=True, frozen=True)
class NoNumericToken:
    """The query had no port or range token to act on."""


@dataclass(slots=True, frozen=True)
class NoMatchingPort:
    """Numeric tokens were given but no listening port fell in any range."""


TargetResolution = ResolvedTargets | NoNumericToken | NoMatchingPort


def resolve_targets(query: str, records: Iterable[PortRecord]) -> TargetResolution:
    """Resolve a query into termination target ports.

    Exact ports are taken as given; ranges only select ports currently in
    the registry; text terms contribute nothing.
    """
    direct: set[int] = set()
    ranges: list[PortRange] = []
    for token in parse_query(query):
        match token:
            case ExactPort(port=port):
                direct.add(port)
            case PortRange():
                ranges.append(token)
            case TextTerm():
                continue
            case _:
                assert_never(token)

    if not direct and not ranges:
        return NoNumericToken()

    resolved = set(direct)
    if ranges:
        live = {r.port for r in records}
        resolved.update(p for p in live if any(p in rng for rng in ranges))

    if not resolved:
        return NoMatchingPort()
    return ResolvedTargets(sorted(resolved))
