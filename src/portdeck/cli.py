"""CLI commands for portdeck."""

import click

BAND_CHOICES = ["all", "system", "registered", "dynamic"]
METRIC_CHOICES = ["cpu", "memory", "disk"]


def _setup():
    """Load config and route structlog output to the JSON log file."""
    from portdeck import logging as console
    from portdeck.config import Config

    config = Config.load()
    console.configure(config)
    return config


def _make_deck(config):
    from portdeck.service import PortDeck

    return PortDeck(config)


@click.group()
@click.version_option(package_name="portdeck")
def main() -> None:
    """Find what is listening on your TCP ports and stop it."""
    pass


@main.command()
@click.argument("query", required=False, default="")
@click.option(
    "--band",
    "-b",
    type=click.Choice(BAND_CHOICES),
    default="all",
    help="Port band to show (all hides 1-1023)",
)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def ports(query: str, band: str, as_json: bool) -> None:
    """List listening TCP ports matching QUERY.

    QUERY is comma-separated: 8000, 3000:3999, or text such as uvicorn.
    """
    import asyncio
    import json

    from portdeck import logging as console
    from portdeck.formatting import truncate
    from portdeck.query import BandFilter
    from portdeck.registry import PortBand

    config = _setup()
    deck = _make_deck(config)
    asyncio.run(deck.refresh())
    records = deck.visible(query, BandFilter(band))

    if as_json:
        data = [
            {
                "pid": r.pid,
                "port": r.port,
                "band": r.band.value,
                "process": r.process_name,
                "owner": r.owner_name,
                "command": r.command_line,
                "cwd": r.working_directory,
            }
            for r in records
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not deck.records:
        click.echo("No TCP ports are listening.")
        return
    console.registry_refreshed(len(deck.records))
    if not records:
        click.echo("Nothing matches the current filter.")
        return

    width = config.tui.command_truncate_length
    for port_band in PortBand:
        section = [r for r in records if r.band is port_band]
        if not section:
            continue
        click.echo(f"{port_band.title} ({len(section)})")
        click.echo(f"  {'Port':>6}  {'PID':>7}  {'Process':16}  {'Owner':10}  Command")
        for r in section:
            click.echo(
                f"  {r.port:>6}  {r.pid:>7}  {truncate(r.process_name, 16):16}  "
                f"{truncate(r.owner_name, 10):10}  {truncate(r.command_line, width)}"
            )
            click.echo(f"  {'':>6}  {'':>7}  cwd: {r.working_directory}")
    click.echo(f"\n{len(records)}/{len(deck.records)} listeners shown")


@main.command()
@click.argument("pid", type=int)
def kill(pid: int) -> None:
    """Terminate PID: SIGTERM, then SIGKILL if it survives."""
    import asyncio

    from portdeck import logging as console

    config = _setup()
    deck = _make_deck(config)

    console.termination_started(f"PID {pid}")
    outcome = asyncio.run(deck.terminate_pid(pid))
    console.termination_reported(deck.status_message or "", outcome.succeeded)
    if not outcome.succeeded:
        raise SystemExit(1)


@main.command("kill-port")
@click.argument("query")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def kill_port(query: str, yes: bool) -> None:
    """Terminate every process listening on the ports QUERY names.

    QUERY accepts ports and ranges: 8000, 3000:3999, 8000,8080. Ranges only
    select ports that are listening right now.
    """
    import asyncio

    from portdeck import logging as console
    from portdeck.query import ResolvedTargets
    from portdeck.service import describe_resolution

    config = _setup()
    deck = _make_deck(config)

    async def run() -> int:
        await deck.refresh()
        resolution = deck.resolve(query)
        if not isinstance(resolution, ResolvedTargets):
            console.query_guidance(describe_resolution(resolution) or "")
            return 2

        targets = ", ".join(str(p) for p in resolution.ports)
        if not yes and not click.confirm(f"Terminate processes on port(s) {targets}?"):
            return 1

        console.termination_started(f"port(s) {targets}")
        summary = await deck.terminate_ports(resolution.ports)
        ok = summary.processes_total > 0 and (
            summary.processes_terminated == summary.processes_total
        )
        console.termination_reported(deck.status_message or "", ok)
        return 0 if ok else 1

    code = asyncio.run(run())
    if code:
        raise SystemExit(code)


@main.command()
def stats() -> None:
    """Show CPU, memory and disk gauges."""
    import time

    from portdeck.formatting import format_gauge, format_usage
    from portdeck.metrics import MetricsSampler
    from portdeck.provider import SystemProvider

    config = _setup()
    sampler = MetricsSampler(SystemProvider(config.provider))

    # CPU needs two readings one interval apart
    sampler.tick()
    time.sleep(config.system.sample_interval)
    snap = sampler.tick()

    click.echo(f"CPU   {format_gauge(snap.cpu_percent)} {snap.cpu_percent:5.1f}%")
    click.echo(
        f"MEM   {format_gauge(snap.mem_percent)} {snap.mem_percent:5.1f}%  "
        f"{format_usage(snap.mem_used, snap.mem_total)}"
    )
    click.echo(
        f"DISK  {format_gauge(snap.disk_percent)} {snap.disk_percent:5.1f}%  "
        f"{format_usage(snap.disk_used, snap.disk_total)}"
    )


@main.command()
@click.argument("metric", type=click.Choice(METRIC_CHOICES))
@click.option(
    "--limit",
    "-n",
    default=None,
    type=click.IntRange(min=1),
    help="Number of rows (default from config)",
)
def top(metric: str, limit: int | None) -> None:
    """Rank processes by cpu or memory, or home directory items by disk."""
    from portdeck import logging as console
    from portdeck.insights import InsightMetric, fetch_insights
    from portdeck.provider import SystemProvider

    config = _setup()
    top_n = limit if limit is not None else config.insights.top_n
    insight = InsightMetric(metric)

    result = fetch_insights(SystemProvider(config.provider), insight, top_n)
    if result.error is not None:
        console.insight_failed(insight.title, result.error)
        raise SystemExit(1)

    click.echo(f"{insight.title} TOP {top_n} - {insight.subtitle}")
    if not result.rows:
        click.echo("Nothing to show.")
        return
    for i, row in enumerate(result.rows, start=1):
        click.echo(f"{i:>3}. {row.display_value:>10}  {row.title}  [{row.detail}]")


@main.command()
def tui() -> None:
    """Launch interactive dashboard."""
    from portdeck import logging as console
    from portdeck.config import Config
    from portdeck.tui.app import run_tui

    config = Config.load()
    console.configure(config, source="tui")
    run_tui(config)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from portdeck.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  sample_interval = {cfg.system.sample_interval}")
    click.echo()
    click.echo("[provider]")
    click.echo(f"  command_timeout = {cfg.provider.command_timeout}")
    click.echo(f"  lsof_path = {cfg.provider.lsof_path}")
    click.echo()
    click.echo("[termination]")
    click.echo(f"  grace_seconds = {cfg.termination.grace_seconds}")
    click.echo(f"  not_found_preview = {cfg.termination.not_found_preview}")
    click.echo()
    click.echo("[insights]")
    click.echo(f"  top_n = {cfg.insights.top_n}")
    click.echo(f"  hover_close_delay = {cfg.insights.hover_close_delay}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from portdeck import logging as console
    from portdeck.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        console.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from portdeck.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


if __name__ == "__main__":
    main()
