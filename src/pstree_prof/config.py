"""Configuration system for pstree-prof."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

OUTPUT_MODES = ("count", "trace", "json")

# Record fields the parser understands, mapped to the ps keyword that produces them
DEFAULT_PS_KEYWORDS = {
    "owner": "user",
    "pid": "pid",
    "parent_pid": "ppid",
    "process_group": "pgid",
    "command": "command",
}


@dataclass
class SamplingConfig:
    """Sampler loop configuration."""

    interval_ms: int = 100  # Milliseconds to sleep between samples
    strict_identity: bool = False  # Track PID + start time instead of PID alone


@dataclass
class OutputConfig:
    """How the samples are summarized."""

    mode: str = "count"  # count | trace | json


@dataclass
class TableConfig:
    """Process-table source configuration.

    `columns` lists record fields in the order ps prints them. The last column
    is taken verbatim, so it has to be the command.
    """

    ps_path: str = "ps"
    columns: list[str] = field(
        default_factory=lambda: ["owner", "pid", "parent_pid", "process_group", "command"]
    )
    keywords: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PS_KEYWORDS))

    def ps_args(self) -> list[str]:
        """Return the full ps invocation for the configured column list."""
        keyword_list = ",".join(self.keywords[name] for name in self.columns)
        return [self.ps_path, "-axwwo", keyword_list]


@dataclass
class TraceConfig:
    """OpenTelemetry export configuration for trace mode."""

    service_name: str = "pstree-prof"
    environment: str = "local"
    otlp_endpoint: str = ""  # Empty: print spans to stderr
    pretty: bool = True


@dataclass
class SystemConfig:
    """Log file rotation."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
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
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    table: TableConfig = field(default_factory=TableConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "pstree-prof"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "pstree-prof"

    @property
    def log_path(self) -> Path:
        """JSON Lines log path."""
        return self.state_dir / "pstree-prof.log"

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises:
            ValueError: If any setting is unusable.
        """
        if self.sampling.interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {self.sampling.interval_ms}")
        if self.output.mode not in OUTPUT_MODES:
            raise ValueError(
                f"Unknown output mode: {self.output.mode!r}. Must be one of {list(OUTPUT_MODES)}"
            )

        columns = self.table.columns
        missing = set(DEFAULT_PS_KEYWORDS) - set(columns)
        if missing:
            raise ValueError(f"table.columns is missing {sorted(missing)}")
        unknown = set(columns) - set(DEFAULT_PS_KEYWORDS)
        if unknown:
            raise ValueError(f"table.columns has unknown fields {sorted(unknown)}")
        if len(set(columns)) != len(columns):
            raise ValueError(f"table.columns has duplicates: {columns}")
        if columns[-1] != "command":
            raise ValueError("table.columns must end with 'command'")
        for name in columns:
            if not self.table.keywords.get(name):
                raise ValueError(f"table.keywords has no ps keyword for {name!r}")

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "output", "table", "trace", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree when no file exists. An explicitly given path
        must exist.

        Raises:
            ValueError: If the file is missing (explicit path only), is not
                valid TOML, holds a value of the wrong type or fails validate().
        """
        defaults = cls()
        if path is not None and not path.exists():
            raise ValueError(f"Config file not found: {path}")
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        config = cls(
            sampling=_load_sampling_config(_section(data, "sampling")),
            output=_load_output_config(_section(data, "output")),
            table=_load_table_config(_section(data, "table")),
            trace=_load_trace_config(_section(data, "trace")),
            system=_load_system_config(_section(data, "system")),
        )
        config.validate()
        return config


def _section(data: dict, name: str) -> dict:
    """Return a top-level table, or {} when absent."""
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"[{name}] must be a table, got {value!r}")
    return value


def _typed(data: dict, section: str, key: str, default):
    """Return data[key] (or the default), requiring the default's type."""
    value = data.get(key, default)
    expected = type(default)
    # bool is an int subclass; TOML keeps them apart
    if isinstance(value, bool) != (expected is bool) or not isinstance(value, expected):
        raise ValueError(
            f"{section}.{key} must be {expected.__name__}, got {type(value).__name__} {value!r}"
        )
    return value


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data."""
    d = SamplingConfig()
    return SamplingConfig(
        interval_ms=_typed(data, "sampling", "interval_ms", d.interval_ms),
        strict_identity=_typed(data, "sampling", "strict_identity", d.strict_identity),
    )


def _load_output_config(data: dict) -> OutputConfig:
    d = OutputConfig()
    return OutputConfig(mode=_typed(data, "output", "mode", d.mode))


def _load_table_config(data: dict) -> TableConfig:
    """Load table config, merging keyword overrides over the defaults."""
    d = TableConfig()
    columns = _typed(data, "table", "columns", d.columns)
    if not all(isinstance(c, str) for c in columns):
        raise ValueError(f"table.columns must be a list of strings, got {columns!r}")
    overrides = _typed(data, "table", "keywords", d.keywords)
    if not all(isinstance(v, str) for v in overrides.values()):
        raise ValueError(f"table.keywords values must be strings, got {overrides!r}")
    keywords = dict(d.keywords)
    keywords.update(overrides)
    return TableConfig(
        ps_path=_typed(data, "table", "ps_path", d.ps_path),
        columns=list(columns),
        keywords=keywords,
    )


def _load_trace_config(data: dict) -> TraceConfig:
    """Load trace export config from TOML data."""
    d = TraceConfig()
    return TraceConfig(
        service_name=_typed(data, "trace", "service_name", d.service_name),
        environment=_typed(data, "trace", "environment", d.environment),
        otlp_endpoint=_typed(data, "trace", "otlp_endpoint", d.otlp_endpoint),
        pretty=_typed(data, "trace", "pretty", d.pretty),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load log rotation config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=_typed(data, "system", "log_max_bytes", d.log_max_bytes),
        log_backup_count=_typed(data, "system", "log_backup_count", d.log_backup_count),
    )
