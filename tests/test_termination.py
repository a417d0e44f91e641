"""Tests for the TERM/KILL termination engine."""

from portdeck.termination import (
    BatchSummary,
    PortTerminationResult,
    Signal,
    TerminationOutcome,
    describe_batch,
    describe_outcome,
    describe_port_result,
    parse_pid_lines,
    terminate_pid,
    terminate_port,
    terminate_ports,
)
from tests.conftest import FakeProvider, failed, no_sleep, not_launched, ok


class TestTerminatePid:
    """Tests for single-pid escalation."""

    def test_dies_on_term(self):
        provider = FakeProvider(alive={42})
        outcome = terminate_pid(provider, 42, sleep=no_sleep)
        assert outcome == TerminationOutcome(42, Signal.TERM, True)
        assert provider.signals == [("TERM", 42)]

    def test_escalates_to_kill(self):
        provider = FakeProvider(alive={42}, ignores_term={42})
        outcome = terminate_pid(provider, 42, sleep=no_sleep)
        assert outcome == TerminationOutcome(42, Signal.KILL, True)
        assert provider.signals == [("TERM", 42), ("KILL", 42)]

    def test_term_failure_stops(self):
        """KILL is never sent when TERM could not be delivered."""
        provider = FakeProvider(alive={42}, term_results={42: failed("Operation not permitted")})
        outcome = terminate_pid(provider, 42, sleep=no_sleep)
        assert outcome.signal_used is Signal.TERM
        assert outcome.succeeded is False
        assert outcome.error_detail == "Operation not permitted"
        assert provider.signals == [("TERM", 42)]

    def test_term_failure_without_stderr(self):
        provider = FakeProvider(term_results={42: failed("")})
        outcome = terminate_pid(provider, 42, sleep=no_sleep)
        assert outcome.error_detail is None

    def test_kill_failure(self):
        provider = FakeProvider(
            alive={42},
            ignores_term={42},
            kill_results={42: failed("kill: 42: Operation not permitted\n")},
        )
        outcome = terminate_pid(provider, 42, sleep=no_sleep)
        assert outcome == TerminationOutcome(
            42, Signal.KILL, False, "kill: 42: Operation not permitted"
        )

    def test_waits_grace_interval(self):
        waits: list[float] = []
        provider = FakeProvider(alive={42})
        terminate_pid(provider, 42, grace_seconds=0.5, sleep=waits.append)
        assert waits == [0.5]

    def test_no_wait_when_term_fails(self):
        waits: list[float] = []
        provider = FakeProvider(term_results={42: failed("nope")})
        terminate_pid(provider, 42, sleep=waits.append)
        assert waits == []


class TestParsePidLines:
    def test_unique_sorted(self):
        assert parse_pid_lines("300\n100\n\n300\nabc\n 200 \n") == [100, 200, 300]


class TestTerminatePort:
    """Tests for per-port termination."""

    def test_all_listeners_terminated(self):
        provider = FakeProvider(
            alive={10, 11},
            ignores_term={11},
            port_listeners={8000: ok("11\n10\n")},
        )
        result = terminate_port(provider, 8000, sleep=no_sleep)
        assert result.terminated == 2
        assert result.total == 2
        assert [o.pid for o in result.outcomes] == [10, 11]
        assert [o.signal_used for o in result.outcomes] == [Signal.TERM, Signal.KILL]

    def test_survivor_not_counted(self):
        provider = FakeProvider(
            alive={10, 11},
            port_listeners={8000: ok("10\n11\n")},
            term_results={11: failed("Operation not permitted")},
        )
        result = terminate_port(provider, 8000, sleep=no_sleep)
        assert (result.terminated, result.total) == (1, 2)
        assert result.error is None

    def test_nothing_listening(self):
        """lsof exit 1 with no output is "not found", not an error."""
        provider = FakeProvider(port_listeners={9999: failed("", status=1)})
        result = terminate_port(provider, 9999, sleep=no_sleep)
        assert result == PortTerminationResult(9999, 0, 0)
        assert not result.found

    def test_lookup_not_launched(self):
        provider = FakeProvider(port_listeners={8000: not_launched("lsof timed out after 10.0s")})
        result = terminate_port(provider, 8000, sleep=no_sleep)
        assert result.total == 0
        assert result.error == "lsof timed out after 10.0s"

    def test_lsof_warnings_are_not_found(self):
        """Mount warnings on stderr do not turn "nothing listening" into a failure."""
        provider = FakeProvider(
            port_listeners={
                9999: failed("lsof: WARNING: can't stat() nfs file system /Volumes/x\n"),
            }
        )
        result = terminate_port(provider, 9999, sleep=no_sleep)
        assert result == PortTerminationResult(9999, 0, 0)

    def test_warning_kept_out_of_real_error(self):
        provider = FakeProvider(
            port_listeners={
                8000: failed("lsof: WARNING: can't stat() /Volumes/x\nlsof: unsupported option"),
            }
        )
        result = terminate_port(provider, 8000, sleep=no_sleep)
        assert result.error == "lsof: unsupported option"

    def test_lookup_failed_with_stderr(self):
        provider = FakeProvider(port_listeners={8000: failed("lsof: unsupported option")})
        result = terminate_port(provider, 8000, sleep=no_sleep)
        assert result.error == "lsof: unsupported option"
        assert provider.signals == []


class TestTerminatePorts:
    """Tests for batch termination."""

    def test_summary_counts(self):
        provider = FakeProvider(
            alive={10, 20, 21},
            port_listeners={
                3000: ok("10\n"),
                8000: ok("20\n21\n"),
                9000: not_launched("boom"),
            },
            term_results={21: failed("Operation not permitted")},
        )
        summary = terminate_ports(provider, [3000, 8000, 8080, 9000], sleep=no_sleep)
        assert summary.requested_ports == [3000, 8000, 8080, 9000]
        assert summary.ports_with_processes == 2
        assert summary.processes_terminated == 2
        assert summary.processes_total == 3
        assert summary.ports_not_found == [8080]
        assert summary.ports_unavailable == [9000]
        assert [r.port for r in summary.results] == [3000, 8000, 8080, 9000]

    def test_warning_only_lookup_counts_as_not_found(self):
        provider = FakeProvider(
            port_listeners={
                9999: failed("lsof: WARNING: can't stat() nfs file system /Volumes/x"),
            }
        )
        summary = terminate_ports(provider, [9999, 80], sleep=no_sleep)
        assert summary.ports_not_found == [9999, 80]
        assert summary.ports_unavailable == []

    def test_processed_in_order(self):
        provider = FakeProvider(
            alive={1, 2},
            port_listeners={5000: ok("2\n"), 4000: ok("1\n")},
        )
        terminate_ports(provider, [5000, 4000], sleep=no_sleep)
        assert provider.signals == [("TERM", 2), ("TERM", 1)]

    def test_not_found_preview(self):
        summary = BatchSummary(requested_ports=list(range(1, 11)), ports_not_found=list(range(1, 11)))
        shown, overflow = summary.not_found_preview(8)
        assert shown == [1, 2, 3, 4, 5, 6, 7, 8]
        assert overflow == 2


class TestDescriptions:
    """Tests for status strings."""

    def test_describe_outcome(self):
        assert describe_outcome(TerminationOutcome(5, Signal.TERM, True)) == "PID 5 terminated"
        assert describe_outcome(TerminationOutcome(5, Signal.KILL, True)) == "PID 5 force-killed"
        assert (
            describe_outcome(TerminationOutcome(5, Signal.TERM, False, "denied"))
            == "PID 5: terminate failed (denied)"
        )
        assert (
            describe_outcome(TerminationOutcome(5, Signal.KILL, False))
            == "PID 5: force kill failed"
        )

    def test_describe_port_result(self):
        assert describe_port_result(PortTerminationResult(80, 0, 0)) == "No process found on port 80"
        assert (
            describe_port_result(PortTerminationResult(80, 1, 2))
            == "Terminated 1/2 processes on port 80"
        )
        assert (
            describe_port_result(PortTerminationResult(80, 0, 0, error="timeout"))
            == "Could not look up port 80 (timeout)"
        )

    def test_single_port_batch_uses_port_description(self):
        summary = BatchSummary(
            requested_ports=[80],
            ports_not_found=[80],
            results=[PortTerminationResult(80, 0, 0)],
        )
        assert describe_batch(summary) == "No process found on port 80"

    def test_batch_with_overflow(self):
        missing = list(range(100, 110))
        summary = BatchSummary(
            requested_ports=[3000, *missing],
            ports_with_processes=1,
            processes_terminated=1,
            processes_total=1,
            ports_not_found=missing,
            results=[PortTerminationResult(3000, 1, 1)]
            + [PortTerminationResult(p, 0, 0) for p in missing],
        )
        text = describe_batch(summary, preview=3)
        assert text == (
            "11 ports: terminated 1/1 processes on 1 ports; "
            "nothing listening on 100, 101, 102 (+7 more)"
        )

    def test_batch_with_unavailable(self):
        summary = BatchSummary(
            requested_ports=[3000, 4000],
            ports_unavailable=[4000],
            ports_not_found=[3000],
            results=[
                PortTerminationResult(3000, 0, 0),
                PortTerminationResult(4000, 0, 0, error="boom"),
            ],
        )
        assert describe_batch(summary).endswith("lookup failed on 4000")
