"""Formatting utilities for consistent output across CLI and TUI."""


def format_bytes(bytes_val: float) -> str:
    """Format a byte count the way Finder does (decimal units, KB minimum).

    Returns:
        e.g. "512 KB", "1.5 MB", "12.3 GB"
    """
    value = max(bytes_val, 0) / 1000
    for unit in ("KB", "MB", "GB"):
        if value < 1000:
            return f"{value:.0f} {unit}" if unit == "KB" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.2f} TB"


def format_percent(value: float) -> str:
    """Format a percentage with one decimal, e.g. "12.5%"."""
    return f"{value:.1f}%"


def format_gauge(percent: float, width: int = 20) -> str:
    """Render a percentage as a block bar of fixed width."""
    clamped = min(max(percent, 0.0), 100.0)
    filled = int(clamped / 100 * width)
    return "█" * filled + "░" * (width - filled)


def format_usage(used: int, total: int) -> str:
    """Format a used/total pair, e.g. "8.2 GB / 16.0 GB"."""
    return f"{format_bytes(used)} / {format_bytes(total)}"


def truncate(text: str, length: int) -> str:
    """Shorten text to length characters, marking the cut with "..".

    Lengths of 2 or less cut without a marker.
    """
    if len(text) <= length:
        return text
    if length <= 2:
        return text[:length]
    return text[: length - 2] + ".."
