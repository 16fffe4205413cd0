"""CLI commands for pstree-prof."""

import click

from pstree_prof.config import OUTPUT_MODES


@click.group()
@click.version_option(package_name="pstree-prof")
def main() -> None:
    """Profile the process tree of a command by sampling ps."""
    pass


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("argv", nargs=-1, type=click.UNPROCESSED)
@click.option("--command", "-c", "command_str", help="Command to run, as one quoted string")
@click.option("--pattern", "-p", help="Profile processes whose command contains this text")
@click.option(
    "--sampling-interval",
    "-i",
    type=int,
    default=None,
    help="Milliseconds to sleep between samples",
)
@click.option(
    "--output-mode",
    "-o",
    type=click.Choice(OUTPUT_MODES),
    default=None,
    help="How to summarize the samples",
)
@click.option("--strict-identity", is_flag=True, default=None, help="Track PID + start time")
@click.option("--quiet", "-q", is_flag=True, help="Don't log each process start/end")
@click.option("--verbose", "-v", is_flag=True, help="Log every sample to the log file")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file to load instead of the default",
)
def run(
    argv: tuple[str, ...],
    command_str: str | None,
    pattern: str | None,
    sampling_interval: int | None,
    output_mode: str | None,
    strict_identity: bool | None,
    quiet: bool,
    verbose: bool,
    config_path: str | None,
) -> None:
    """Run COMMAND and profile its process tree.

    Pass the command after "--" (pstree-prof run -- make -j8) or as one string
    with --command. With --pattern alone, profiles already-running processes
    until interrupted.
    """
    import asyncio
    import shlex
    from pathlib import Path

    from pstree_prof import logging as console
    from pstree_prof.collector import ProcessTableUnavailable
    from pstree_prof.config import Config
    from pstree_prof.launcher import LaunchError
    from pstree_prof.profiler import run_profiler
    from pstree_prof.snapshot import ProcessTableError

    if argv and command_str:
        raise click.UsageError("give the command either as arguments or with --command, not both")
    command = list(argv) if argv else shlex.split(command_str or "")
    if not command and not pattern:
        raise click.UsageError("a non-empty command or --pattern must be specified")

    try:
        config = Config.load(Path(config_path) if config_path else None)
        if sampling_interval is not None:
            config.sampling.interval_ms = sampling_interval
        if output_mode is not None:
            config.output.mode = output_mode
        if strict_identity is not None:
            config.sampling.strict_identity = strict_identity
        config.validate()
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    console.configure(config, verbose=verbose)

    try:
        asyncio.run(run_profiler(config, command or None, pattern, quiet=quiet))
    except (ProcessTableError, ProcessTableUnavailable, LaunchError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from pstree_prof.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo(f"Log file: {cfg.log_path}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  interval_ms = {cfg.sampling.interval_ms}")
    click.echo(f"  strict_identity = {str(cfg.sampling.strict_identity).lower()}")
    click.echo()
    click.echo("[output]")
    click.echo(f"  mode = {cfg.output.mode}")
    click.echo()
    click.echo("[table]")
    click.echo(f"  ps_path = {cfg.table.ps_path}")
    click.echo(f"  columns = {', '.join(cfg.table.columns)}")
    click.echo(f"  invocation = {' '.join(cfg.table.ps_args())}")
    click.echo()
    click.echo("[trace]")
    click.echo(f"  service_name = {cfg.trace.service_name}")
    click.echo(f"  environment = {cfg.trace.environment}")
    click.echo(f"  otlp_endpoint = {cfg.trace.otlp_endpoint or '(stderr)'}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from pstree_prof.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from pstree_prof.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


if __name__ == "__main__":
    main()
