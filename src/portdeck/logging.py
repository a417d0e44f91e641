"""Console and file logging.

Two outputs that never mix:

- the console, for people: short timestamped lines with Rich markup and an
  icon per outcome (helpers below)
- the log file, for tools: structlog events as JSON Lines in a rotating file
  under the state directory (configure)

Library modules only ever call structlog.get_logger(); the CLI and TUI
decide what reaches the console.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from portdeck.config import Config

_console = Console(highlight=False)


class Icon:
    """Outcome markers for console lines."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    SIGNAL = "[yellow]⚡[/]"
    LISTEN = "[cyan]◉[/]"


_LEVEL_TAGS = {
    "info": "[blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/]",
}


# ─────────────────────────────────────────────────────────────────────────────
# Console
# ─────────────────────────────────────────────────────────────────────────────


def _emit(level: str, msg: str, icon: str) -> None:
    stamp = datetime.now().strftime("%H:%M:%S")
    parts = [f"[dim]{stamp}[/]", _LEVEL_TAGS.get(level, f"\\[{level}]")]
    if icon:
        parts.append(icon)
    parts.append(msg)
    _console.print(" ".join(parts))


def info(msg: str, icon: str = "") -> None:
    _emit("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    _emit("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    _emit("error", msg, icon)


def registry_refreshed(count: int) -> None:
    """Report how many listeners a refresh found."""
    noun = "port" if count == 1 else "ports"
    info(f"[cyan]{count}[/] listening {noun}", Icon.LISTEN)


def termination_started(target: str) -> None:
    info(f"Terminating [bold]{target}[/]", Icon.SIGNAL)


def termination_reported(message: str, ok: bool) -> None:
    """Print the status line of a finished termination.

    Anything short of full success is a warning so it stands out.
    """
    if ok:
        info(message, Icon.OK)
    else:
        warn(message, Icon.FAIL)


def query_guidance(message: str) -> None:
    warn(message)


def insight_failed(metric: str, message: str) -> None:
    error(f"{metric}: {message}", Icon.FAIL)


def config_created(path: str) -> None:
    info(f"Wrote default config to [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# JSON log file
# ─────────────────────────────────────────────────────────────────────────────


def _tag_source(source: str) -> structlog.types.Processor:
    """Processor stamping every event with where it came from (cli, tui)."""

    def tag(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return tag


def _common_processors(source: str) -> list[structlog.types.Processor]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _tag_source(source),
    ]


def _rotating_handler(config: Config, source: str) -> logging.Handler:
    config.state_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                *_common_processors(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    return handler


def configure(config: Config, source: str = "cli", level: int = logging.INFO) -> None:
    """Send structlog events to the rotating JSON Lines log file.

    Args:
        config: Supplies the state directory and rotation limits
        source: Value of the "source" field on every record
        level: Minimum level written to the file
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_rotating_handler(config, source))
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_common_processors(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
