"""Configuration system for portdeck."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class SystemConfig:
    """Sampling and logging configuration."""

    sample_interval: float = 1.0  # Seconds between live metric ticks
    log_max_bytes: int = 5 * 1024 * 1024  # Rotate the JSON log at 5 MB
    log_backup_count: int = 3  # Rotated files kept beside the live one


@dataclass
class ProviderConfig:
    """External tool locations and limits.

    Tools are looked up by absolute path first; extra_path is appended to
    PATH for anything the tools themselves spawn.
    """

    command_timeout: float = 10.0  # Seconds before a probe is abandoned
    du_timeout: float = 60.0  # du can be slow on large home directories
    lsof_path: str = "/usr/sbin/lsof"
    ps_path: str = "/bin/ps"
    kill_path: str = "/bin/kill"
    du_path: str = "/usr/bin/du"
    vm_stat_path: str = "/usr/bin/vm_stat"
    extra_path: str = "/usr/bin:/bin:/usr/sbin:/sbin:/usr/local/bin:/opt/homebrew/bin"


@dataclass
class TerminationConfig:
    """Signal escalation configuration."""

    grace_seconds: float = 0.35  # Wait between SIGTERM and the liveness check
    not_found_preview: int = 8  # Ports listed before "+N more"


@dataclass
class InsightsConfig:
    """Top-N ranking configuration."""

    top_n: int = 7
    hover_close_delay: float = 0.18  # Debounce before an unhovered panel closes


@dataclass
class TUIConfig:
    """Dashboard refresh and display settings."""

    refresh_interval: float = 5.0  # Seconds between automatic port refreshes
    command_truncate_length: int = 48  # Max chars for command column
    show_system_ports: bool = False  # Start with the 1-1023 band selected


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Render a (possibly nested) dataclass as a tomlkit table."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """All portdeck settings, one attribute per TOML section."""

    system: SystemConfig = field(default_factory=SystemConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    termination: TerminationConfig = field(default_factory=TerminationConfig)
    insights: InsightsConfig = field(default_factory=InsightsConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Directory holding config.toml."""
        return Path.home() / ".config" / "portdeck"

    @property
    def config_path(self) -> Path:
        """Location of the TOML file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "portdeck"

    @property
    def log_path(self) -> Path:
        """JSON log path."""
        return self.state_dir / "portdeck.log"

    def save(self, path: Path | None = None) -> None:
        """Write every section to TOML, creating parent directories."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["system", "provider", "termination", "insights", "tui"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Read settings from TOML; absent files, sections and keys keep defaults.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            system=_load_system_config(data.get("system", {})),
            provider=_load_provider_config(data.get("provider", {})),
            termination=_load_termination_config(data.get("termination", {})),
            insights=_load_insights_config(data.get("insights", {})),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    sample_interval = data.get("sample_interval", d.sample_interval)
    if sample_interval <= 0:
        raise ValueError(f"sample_interval must be > 0, got {sample_interval}")
    return SystemConfig(
        sample_interval=sample_interval,
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


def _load_provider_config(data: dict) -> ProviderConfig:
    """Load provider config from TOML data."""
    d = ProviderConfig()
    command_timeout = data.get("command_timeout", d.command_timeout)
    du_timeout = data.get("du_timeout", d.du_timeout)
    if command_timeout <= 0:
        raise ValueError(f"command_timeout must be > 0, got {command_timeout}")
    if du_timeout <= 0:
        raise ValueError(f"du_timeout must be > 0, got {du_timeout}")
    return ProviderConfig(
        command_timeout=command_timeout,
        du_timeout=du_timeout,
        lsof_path=data.get("lsof_path", d.lsof_path),
        ps_path=data.get("ps_path", d.ps_path),
        kill_path=data.get("kill_path", d.kill_path),
        du_path=data.get("du_path", d.du_path),
        vm_stat_path=data.get("vm_stat_path", d.vm_stat_path),
        extra_path=data.get("extra_path", d.extra_path),
    )


def _load_termination_config(data: dict) -> TerminationConfig:
    """Load termination config from TOML data."""
    d = TerminationConfig()
    grace_seconds = data.get("grace_seconds", d.grace_seconds)
    not_found_preview = data.get("not_found_preview", d.not_found_preview)
    if grace_seconds < 0:
        raise ValueError(f"grace_seconds must be >= 0, got {grace_seconds}")
    if not_found_preview < 1:
        raise ValueError(f"not_found_preview must be >= 1, got {not_found_preview}")
    return TerminationConfig(grace_seconds=grace_seconds, not_found_preview=not_found_preview)


def _load_insights_config(data: dict) -> InsightsConfig:
    """Load insights config from TOML data."""
    d = InsightsConfig()
    top_n = data.get("top_n", d.top_n)
    hover_close_delay = data.get("hover_close_delay", d.hover_close_delay)
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")
    if hover_close_delay <= 0:
        raise ValueError(f"hover_close_delay must be > 0, got {hover_close_delay}")
    return InsightsConfig(top_n=top_n, hover_close_delay=hover_close_delay)


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data."""
    d = TUIConfig()
    refresh_interval = data.get("refresh_interval", d.refresh_interval)
    truncate_length = data.get("command_truncate_length", d.command_truncate_length)
    if refresh_interval <= 0:
        raise ValueError(f"refresh_interval must be > 0, got {refresh_interval}")
    if truncate_length < 1:
        raise ValueError(f"command_truncate_length must be >= 1, got {truncate_length}")
    return TUIConfig(
        refresh_interval=refresh_interval,
        command_truncate_length=truncate_length,
        show_system_ports=data.get("show_system_ports", d.show_system_ports),
    )
