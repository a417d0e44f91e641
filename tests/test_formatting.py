"""Tests for formatting utilities."""

from portdeck.formatting import (
    format_bytes,
    format_gauge,
    format_percent,
    format_usage,
    truncate,
)


class TestFormatBytes:
    """Tests for format_bytes (decimal units)."""

    def test_kilobytes_whole(self) -> None:
        assert format_bytes(512_000) == "512 KB"

    def test_small_values_stay_in_kb(self) -> None:
        assert format_bytes(0) == "0 KB"
        assert format_bytes(100) == "0 KB"

    def test_megabytes(self) -> None:
        assert format_bytes(1_500_000) == "1.5 MB"

    def test_gigabytes(self) -> None:
        assert format_bytes(12_300_000_000) == "12.3 GB"

    def test_terabytes(self) -> None:
        assert format_bytes(2_500_000_000_000) == "2.50 TB"

    def test_negative_clamped(self) -> None:
        assert format_bytes(-5) == "0 KB"


class TestFormatGauge:
    """Tests for block bars."""

    def test_half(self) -> None:
        assert format_gauge(50.0, width=10) == "█████░░░░░"

    def test_clamped(self) -> None:
        assert format_gauge(150.0, width=4) == "████"
        assert format_gauge(-3.0, width=4) == "░░░░"


def test_format_percent() -> None:
    assert format_percent(12.345) == "12.3%"


def test_format_usage() -> None:
    assert format_usage(8_200_000_000, 16_000_000_000) == "8.2 GB / 16.0 GB"


class TestTruncate:
    """Tests for truncate."""

    def test_short_text_unchanged(self) -> None:
        assert truncate("node", 10) == "node"

    def test_marked_cut(self) -> None:
        assert truncate("python -m uvicorn", 8) == "python.."

    def test_tiny_length(self) -> None:
        assert truncate("abcdef", 2) == "ab"
