"""
Command-line interface for cpap-export.

Provides commands for listing the therapy sessions in a CPAP or oximeter
data directory and exporting them as EDF+ files.
"""

import logging

from collections.abc import Iterator
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

import click

from cpap_export.config import get_config_path, load_config, load_settings, save_settings
from cpap_export.constants import SECONDS_PER_HOUR
from cpap_export.logging_config import get_log_path, setup_logging
from cpap_export.parsers.base import DeviceLoader, ParserError
from cpap_export.parsers.register_all import register_all_loaders
from cpap_export.parsers.types import ProgressCallback, Session
from cpap_export.service import ExportService

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("cpap-export")
except PackageNotFoundError:
    __version__ = "dev"


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Show version."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"cpap-export, version {__version__}")
    ctx.exit()


@contextmanager
def progress_bar(label: str) -> Iterator[ProgressCallback]:
    """Yield a 0..100 progress callback drawn as a click progress bar."""
    with click.progressbar(
        length=100, label=label, file=click.get_text_stream("stderr")
    ) as bar:
        state = {"done": 0}

        def report(percent: int) -> None:
            percent = max(0, min(100, percent))
            if percent > state["done"]:
                bar.update(percent - state["done"])
                state["done"] = percent

        yield report


def format_duration(seconds: float) -> str:
    hours, remainder = divmod(int(seconds), SECONDS_PER_HOUR)
    return f"{hours}h {remainder // 60:02d}m"


def open_sessions(path: Path) -> tuple[ExportService, DeviceLoader, list[Session]]:
    """
    Detect the loader and list sessions, newest first.

    Raises:
        click.ClickException: If the directory is unsupported or empty
    """
    service = ExportService(register_all_loaders())
    try:
        loader, directory = service.open_directory(path)
        click.echo(f"✓ Detected: {loader.name} ({loader.loader_id})", err=True)
        with progress_bar("Scanning sessions") as report:
            sessions = service.list_sessions(loader, directory, report)
    except ParserError as e:
        raise click.ClickException(str(e)) from e
    return service, loader, sessions


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """cpap-export: CPAP and oximetry session export tool"""
    setup_logging(verbose=verbose)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
def sessions(path: Path) -> None:
    """List the sessions in a data directory, newest first."""
    _, _, found = open_sessions(path)

    click.echo(f"\nFound {len(found)} session(s):\n")
    for index, session in enumerate(found, start=1):
        click.echo(
            f"  {index:>3}. {session.start:%Y-%m-%d %H:%M:%S} -> "
            f"{session.end:%Y-%m-%d %H:%M:%S}  "
            f"({format_duration(session.duration_seconds)}, "
            f"{len(session.files)} file(s))"
        )


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--session",
    "-s",
    "session_number",
    type=click.IntRange(min=1),
    help="Session number from 'cpap-export sessions' (default: newest)",
)
@click.option("--all", "export_all", is_flag=True, help="Export every session")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (default: configured output dir, else current directory)",
)
def export(
    path: Path,
    session_number: int | None,
    export_all: bool,
    output_dir: Path | None,
) -> None:
    """Export sessions as EDF+ files."""
    if session_number is not None and export_all:
        raise click.UsageError("--session and --all are mutually exclusive")

    if output_dir is None:
        output_dir = load_settings().output_dir or Path.cwd()

    service, loader, found = open_sessions(path)

    if export_all:
        selected = found
    else:
        number = session_number or 1
        if number > len(found):
            raise click.ClickException(
                f"Session {number} does not exist ({len(found)} session(s) found)"
            )
        selected = [found[number - 1]]

    failures = 0
    for session in selected:
        label = f"Exporting {session.start:%Y-%m-%d %H:%M:%S}"
        try:
            with progress_bar(label) as report:
                written = service.export_session(loader, session, output_dir, report)
        except ParserError as e:
            if not export_all:
                raise click.ClickException(str(e)) from e
            failures += 1
            click.echo(f"✗ {session.start:%Y-%m-%d %H:%M:%S}: {e}", err=True)
            continue
        click.echo(f"✓ {written}")

    if failures:
        raise click.ClickException(f"{failures} of {len(selected)} session(s) failed")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
def show_config_cmd() -> None:
    """Show all configuration settings."""
    config_path = get_config_path()
    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    click.echo("Settings:")
    for section, values in config_data.items():
        if not isinstance(values, dict):
            click.echo(f"  {section} = {values!r}")
            continue
        click.echo(f"  [{section}]")
        for key, value in values.items():
            click.echo(f"    {key} = {value!r}")


@config.command("set-output-dir")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
def set_output_dir_cmd(directory: Path) -> None:
    """Set the default export directory."""
    resolved = directory.expanduser().resolve()
    save_settings(load_settings().model_copy(update={"output_dir": resolved}))
    click.echo(f"✓ Output directory: {resolved}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset-output-dir")
def unset_output_dir_cmd() -> None:
    """Remove the default export directory setting."""
    settings = load_settings()
    current = settings.output_dir
    if current:
        save_settings(settings.model_copy(update={"output_dir": None}))
        click.echo(f"✓ Removed output directory: {current}")
    else:
        click.echo("No output directory was configured.")


@cli.group()
def logs() -> None:
    """Log file management commands."""
    pass


@logs.command("path")
def logs_path() -> None:
    """Show log file location."""
    log_path = get_log_path()
    click.echo(f"Log file: {log_path}")

    if log_path.exists():
        size_mb = log_path.stat().st_size / (1024 * 1024)
        click.echo(f"Size: {size_mb:.2f} MB")
    else:
        click.echo("(File does not exist yet)")


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
