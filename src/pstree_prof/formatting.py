"""Formatting utilities shared by the console log and the sinks."""

from datetime import datetime


def truncate_command(command: str, limit: int = 40) -> str:
    """Shorten a command line for one-line console display."""
    if len(command) <= limit:
        return command
    return command[: limit - 2] + ".."


def format_duration(start: float, end: float) -> str:
    """Format a span length compactly: "850ms", "1.5s", "2m05s"."""
    duration = max(0.0, end - start)
    if duration < 1:
        return f"{duration * 1000:.0f}ms"
    if duration < 60:
        return f"{duration:.1f}s"
    minutes, seconds = divmod(int(duration), 60)
    return f"{minutes}m{seconds:02d}s"


def format_timestamp(at: float) -> str:
    """Format an epoch timestamp as local ISO 8601 with milliseconds."""
    return datetime.fromtimestamp(at).isoformat(timespec="milliseconds")


def to_nanoseconds(at: float) -> int:
    """Convert epoch seconds to the integer nanoseconds OpenTelemetry expects."""
    return int(at * 1e9)
