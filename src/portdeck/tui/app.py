"""Interactive dashboard for portdeck.

One screen: system gauges on top, the listener table in the middle, the
insight ranking and status line at the bottom. All provider work goes
through Dashboard so the event loop never blocks on a subprocess.
"""

from typing import Any

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Input, Label, Static
from textual.widgets.data_table import CellDoesNotExist

from portdeck.config import Config
from portdeck.formatting import format_gauge, format_usage, truncate
from portdeck.insights import InsightMetric, InsightsPanel
from portdeck.metrics import MetricSnapshot
from portdeck.query import BandFilter
from portdeck.registry import PortBand, PortRecord
from portdeck.service import Dashboard

SECTION_KEY_PREFIX = "band:"

_BAND_STYLES = {
    PortBand.SYSTEM: "bold red",
    PortBand.REGISTERED: "bold cyan",
    PortBand.DYNAMIC: "bold magenta",
}


def row_key_for(record: PortRecord) -> str:
    return f"{record.pid}:{record.port}"


def pid_from_row_key(key: str | None) -> int | None:
    """PID encoded in a listener row key; None for section headings."""
    if not key or key.startswith(SECTION_KEY_PREFIX):
        return None
    try:
        return int(key.split(":", 1)[0])
    except ValueError:
        return None


def gauge_line(label: str, percent: float, detail: str = "") -> str:
    """e.g. "CPU  ████░░░░  21.4%  8.2 GB / 16.0 GB"."""
    line = f"{label:<4} {format_gauge(percent, 16)} {percent:5.1f}%"
    return f"{line}  {detail}" if detail else line


class Gauge(Label):
    """One metric gauge. Hover previews its ranking, click pins it."""

    def __init__(self, metric: InsightMetric, **kwargs: Any) -> None:
        super().__init__("", **kwargs)
        self.metric = metric

    def on_enter(self, event: events.Enter) -> None:
        self.app.dashboard.hover.hover(self.metric, True)

    def on_leave(self, event: events.Leave) -> None:
        self.app.dashboard.hover.hover(self.metric, False)

    def on_click(self, event: events.Click) -> None:
        self.app.action_insight(self.metric.value)


class MetricsHeader(Static):
    """Header showing CPU, memory and disk gauges."""

    DEFAULT_CSS = """
    MetricsHeader {
        height: 3;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }

    MetricsHeader Horizontal {
        height: 1;
        width: 100%;
    }

    MetricsHeader Gauge {
        width: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Gauge(InsightMetric.CPU, id="gauge-cpu"),
            Gauge(InsightMetric.MEMORY, id="gauge-memory"),
            Gauge(InsightMetric.DISK, id="gauge-disk"),
        )

    def on_mount(self) -> None:
        self.border_title = "SYSTEM"
        self.update_snapshot(MetricSnapshot.empty())

    def update_snapshot(self, snap: MetricSnapshot) -> None:
        try:
            cpu = self.query_one("#gauge-cpu", Gauge)
            mem = self.query_one("#gauge-memory", Gauge)
            disk = self.query_one("#gauge-disk", Gauge)
        except NoMatches:
            return

        cpu.update(gauge_line("CPU", snap.cpu_percent))
        mem.update(gauge_line("MEM", snap.mem_percent, format_usage(snap.mem_used, snap.mem_total)))
        disk.update(
            gauge_line("DISK", snap.disk_percent, format_usage(snap.disk_used, snap.disk_total))
        )


class PortTable(Static):
    """Listeners grouped by port band, one row per (pid, port)."""

    DEFAULT_CSS = """
    PortTable {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }

    PortTable DataTable {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._table: DataTable | None = None

    def compose(self) -> ComposeResult:
        yield DataTable(id="port-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        self.border_title = "LISTENING"
        self._table = self.query_one("#port-table", DataTable)
        self._table.add_columns("Port", "PID", "Process", "Owner", "Command", "Directory")

    def update_records(
        self,
        records: list[PortRecord],
        band_filter: BandFilter,
        total: int,
        loading: bool = False,
    ) -> None:
        if not self._table:
            return

        suffix = "  (refreshing)" if loading else ""
        self.border_title = f"LISTENING [{band_filter.label}] {len(records)}/{total}{suffix}"

        width = self.app.config.tui.command_truncate_length
        self._table.clear()
        for band in PortBand:
            section = [r for r in records if r.band is band]
            if not section:
                continue
            style = _BAND_STYLES[band]
            self._table.add_row(
                Text(f"{band.title} ({len(section)})", style=style),
                key=f"{SECTION_KEY_PREFIX}{band.value}",
            )
            for r in section:
                self._table.add_row(
                    Text(str(r.port), style="bold"),
                    Text(str(r.pid), style="dim"),
                    Text(r.process_name),
                    Text(r.owner_name, style="dim"),
                    Text(truncate(r.command_line, width)),
                    Text(r.working_directory, style="dim"),
                    key=row_key_for(r),
                )

    def selected_pid(self) -> int | None:
        if not self._table or self._table.row_count == 0:
            return None
        try:
            cell = self._table.coordinate_to_cell_key(self._table.cursor_coordinate)
        except CellDoesNotExist:
            return None
        return pid_from_row_key(cell.row_key.value)


class InsightView(Static):
    """Top-N ranking for the pinned or hovered gauge."""

    DEFAULT_CSS = """
    InsightView {
        height: auto;
        max-height: 11;
        border: solid $secondary;
        border-title-align: left;
        padding: 0 1;
    }
    """

    def render_panel(self, panel: InsightsPanel) -> None:
        metric = panel.selected_metric
        self.display = metric is not None
        if metric is None:
            return

        self.border_title = f"{metric.title} TOP {panel.top_n}"
        self.border_subtitle = metric.subtitle

        if panel.is_loading:
            self.update(Text("Loading...", style="dim"))
        elif panel.error is not None:
            self.update(Text(panel.error, style="red"))
        elif not panel.rows:
            self.update(Text("Nothing to show.", style="dim"))
        else:
            body = Text()
            for i, row in enumerate(panel.rows, start=1):
                if i > 1:
                    body.append("\n")
                body.append(f"{i:>2}. ", style="dim")
                body.append(f"{row.display_value:>10}  ", style="bold")
                body.append(row.title)
                body.append(f"  {row.detail}", style="dim")
            self.update(body)


class PortDeckApp(App):
    """Interactive port inspector and terminator."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #search {
        height: 3;
    }

    #status {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("b", "cycle_band", "Band"),
        ("k", "kill_selected", "Kill PID"),
        ("K", "kill_query", "Kill ports"),
        ("c", "insight('cpu')", "CPU"),
        ("m", "insight('memory')", "Mem"),
        ("d", "insight('disk')", "Disk"),
        ("slash", "focus_search", "Search"),
        ("escape", "focus_table", "Table"),
    ]

    def __init__(self, config: Config | None = None, provider: Any = None):
        super().__init__()
        self.config = config or Config.load()
        # write defaults on first launch
        if not self.config.config_path.exists():
            self.config.save()
        self.dashboard = Dashboard(self.config, provider)
        self.band_filter = (
            BandFilter.SYSTEM if self.config.tui.show_system_ports else BandFilter.ALL
        )

    def compose(self) -> ComposeResult:
        yield MetricsHeader(id="header")
        yield Input(placeholder="Filter: 8000, 3000:3999, node", id="search")
        yield PortTable(id="ports")
        yield InsightView(id="insight")
        yield Label("", id="status")
        yield Footer()

    async def on_mount(self) -> None:
        self.title = "portdeck"
        self.sub_title = "Listening TCP ports"
        self.set_interval(self.config.system.sample_interval, self._sync_metrics)
        self.set_interval(self.config.tui.refresh_interval, self.action_refresh)
        self.set_interval(0.1, self._sync_insights)
        self.action_focus_table()
        self.run_worker(self._start(), group="refresh")

    async def on_unmount(self) -> None:
        await self.dashboard.stop()

    async def _start(self) -> None:
        await self.dashboard.start()
        self._render_ports()

    @property
    def query_text(self) -> str:
        try:
            return self.query_one("#search", Input).value
        except NoMatches:
            return ""

    def _render_ports(self) -> None:
        deck = self.dashboard.ports
        try:
            table = self.query_one("#ports", PortTable)
        except NoMatches:
            return
        visible = deck.visible(self.query_text, self.band_filter)
        table.update_records(visible, self.band_filter, len(deck.records), deck.is_loading)

    def _set_status(self, message: str | None) -> None:
        try:
            self.query_one("#status", Label).update(message or "")
        except NoMatches:
            pass

    def _sync_metrics(self) -> None:
        try:
            self.query_one("#header", MetricsHeader).update_snapshot(self.dashboard.metrics.snapshot)
        except NoMatches:
            pass

    def _sync_insights(self) -> None:
        try:
            self.query_one("#insight", InsightView).render_panel(self.dashboard.insights)
        except NoMatches:
            pass

    def on_input_changed(self, event: Input.Changed) -> None:
        self._render_ports()

    # ─────────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────────

    def action_refresh(self) -> None:
        self.run_worker(self._refresh(), group="refresh")

    async def _refresh(self) -> None:
        await self.dashboard.ports.refresh()
        self._render_ports()

    def action_cycle_band(self) -> None:
        self.band_filter = self.band_filter.next()
        self._render_ports()

    def action_focus_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_focus_table(self) -> None:
        self.query_one("#port-table", DataTable).focus()

    def action_insight(self, metric: str) -> None:
        """Pin a ranking, or unpin it if it is already pinned."""
        selected = InsightMetric(metric)
        hover = self.dashboard.hover
        if hover.pinned is selected:
            hover.unpin()
        else:
            hover.pin(selected)

    def action_kill_selected(self) -> None:
        try:
            pid = self.query_one("#ports", PortTable).selected_pid()
        except NoMatches:
            return
        if pid is None:
            self._set_status("Select a listener row first")
            return
        self._set_status(f"Terminating PID {pid}...")
        self.run_worker(self._kill_pid(pid), group="terminate")

    async def _kill_pid(self, pid: int) -> None:
        deck = self.dashboard.ports
        outcome = await deck.terminate_pid(pid)
        self._set_status(deck.status_message)
        self.notify(deck.status_message or "", severity="information" if outcome.succeeded else "error")
        self._render_ports()

    def action_kill_query(self) -> None:
        self._set_status("Terminating...")
        self.run_worker(self._kill_query(self.query_text), group="terminate")

    async def _kill_query(self, query: str) -> None:
        deck = self.dashboard.ports
        summary = await deck.terminate_query(query)
        self._set_status(deck.status_message)
        if summary is None:
            self.notify(deck.status_message or "", severity="warning")
        self._render_ports()


def run_tui(config: Config | None = None) -> None:
    """Start the dashboard and block until it exits."""
    app = PortDeckApp(config)
    app.run()
