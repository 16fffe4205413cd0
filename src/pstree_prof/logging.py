"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Core log functions (log, info, warn, error)
3. Domain-specific helpers (profiling_started, process_started, etc.)
4. Structlog configuration (configure)

Console lines go to stderr so stdout stays clean for the count table and
JSON samples. The JSON file log via structlog is separate (machine-parseable,
no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from pstree_prof.formatting import truncate_command

if TYPE_CHECKING:
    from pstree_prof.config import Config

_console = Console(stderr=True, highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SIGNAL = "⚡"
    PROC_START = "[bright_green]▲[/]"
    PROC_END = "[bright_red]▼[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def profiling_started(target: str, interval_ms: int, mode: str) -> None:
    """Log sampler startup."""
    info(
        f"Profiling [cyan]{target}[/] every [cyan]{interval_ms}ms[/] [dim]({mode} mode)[/]",
        Icon.OK,
    )


def command_started(argv: list[str], pid: int) -> None:
    """Log the profiled command starting; its own output follows."""
    info(f"Started [cyan]{truncate_command(' '.join(argv))}[/] [dim]({pid})[/]")


def command_exited(pid: int, returncode: int) -> None:
    """Log the profiled command exiting."""
    style = "green" if returncode == 0 else "red"
    info(f"Command [dim]({pid})[/] exited with [{style}]{returncode}[/]")


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def process_started(cmd: str, pid: int) -> None:
    """Log a process entering the selected subtree."""
    info(f"[cyan]{truncate_command(cmd)}[/] [dim]({pid})[/]", Icon.PROC_START)


def process_ended(cmd: str, pid: int) -> None:
    """Log a process leaving the selected subtree."""
    info(f"[cyan]{truncate_command(cmd)}[/] [dim]({pid})[/]", Icon.PROC_END)


def profiling_stopping() -> None:
    """Log sampler shutdown initiated."""
    info("Stopping...", Icon.WAIT)


def profiling_stopped(ticks: int, elapsed: str) -> None:
    """Log sampler shutdown complete."""
    info(f"Stopped after [cyan]{ticks}[/] samples [dim]({elapsed})[/]", Icon.OK)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, verbose: bool = False) -> None:
    """Configure structlog to write JSON Lines to the rotating log file.

    Args:
        config: Application config with paths
        verbose: Record debug events (every tick) as well
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(level)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("pstree-prof"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.add_log_level,
            _add_source("pstree-prof"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )