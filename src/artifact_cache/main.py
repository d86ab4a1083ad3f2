"""Main entry point for the artifact-cache CLI.

Provides a Typer-based CLI for rebuilding, restoring and flushing build
caches stored in S3-compatible or local storage.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from artifact_cache import __version__
from artifact_cache.config import (
    CacheConfig,
    config_keys,
    ensure_config_exists,
    get_config_path,
)
from artifact_cache.errors import CacheError, CacheMissError
from artifact_cache.logging_config import setup_logging
from artifact_cache.plugin import CacheMode, CachePlugin, PluginResult
from artifact_cache.storage import create_storage

console = Console()

# Create the main Typer app
app = typer.Typer(
    name="artifact-cache",
    help="Cache build artifacts in object storage",
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"artifact-cache version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write a debug log to this file",
    ),
) -> None:
    """artifact-cache: Cache build artifacts in object storage.

    Packs build directories into a tar archive stored under a templated
    key, restores it on later builds and expires old archives.

    ## Commands

    * [bold cyan]rebuild[/bold cyan] - Pack mounts and upload the archive
    * [bold cyan]restore[/bold cyan] - Download and extract the archive
    * [bold cyan]flush[/bold cyan] - Delete archives older than N days
    * [bold cyan]config[/bold cyan] - Show or change configuration

    ## Example

    [dim]$ artifact-cache rebuild --path "ci-cache/{{ branch }}" \\
        --filename "deps-{{ checksum('poetry.lock') }}.tgz" \\
        --mount .venv --meta branch=main[/dim]
    """
    setup_logging(level=logging.DEBUG if verbose else logging.INFO, log_file=log_file)


def _parse_metadata(items: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated KEY=VALUE options into template metadata."""
    metadata = {}
    for item in items or []:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--meta")
        metadata[name] = value
    return metadata


def _load_config(config_path: Optional[Path]) -> CacheConfig:
    """Load the config file if there is one, else defaults plus environment."""
    if config_path is not None:
        return CacheConfig.load(config_path)

    default_path = get_config_path()
    if default_path.exists():
        return CacheConfig.load(default_path)

    config = CacheConfig()
    config.apply_env()
    return config


def _run(
    mode: CacheMode,
    config_path: Optional[Path],
    workdir: Optional[Path],
    meta: Optional[List[str]],
    **overrides,
) -> PluginResult:
    """Build a plugin from config plus command options and run it."""
    try:
        config = _load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)

    for name, value in overrides.items():
        if value:
            setattr(config, name, value)

    try:
        storage = create_storage(config)
        plugin = CachePlugin.from_config(
            config,
            storage,
            root=workdir,
            metadata=_parse_metadata(meta),
        )
        return plugin.exec(mode)
    except CacheMissError as e:
        console.print(f"[yellow]{escape(str(e))}[/yellow]")
        raise typer.Exit(0)
    except (CacheError, ClientError, BotoCoreError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config file")
WORKDIR_OPTION = typer.Option(
    None,
    "--workdir",
    "-w",
    help="Directory mounts are relative to (default: current directory)",
)
PATH_OPTION = typer.Option(None, "--path", "-p", help="Cache path template, <bucket>/<prefix>")
FILENAME_OPTION = typer.Option(
    None,
    "--filename",
    "-f",
    help="Archive file name template (.tar, .tgz or .tar.gz)",
)
META_OPTION = typer.Option(None, "--meta", "-e", help="Template variable as KEY=VALUE (repeatable)")


@app.command()
def rebuild(
    path: Optional[str] = PATH_OPTION,
    filename: Optional[str] = FILENAME_OPTION,
    mount: Optional[List[str]] = typer.Option(
        None,
        "--mount",
        "-m",
        help="Path to cache (repeatable)",
    ),
    meta: Optional[List[str]] = META_OPTION,
    workdir: Optional[Path] = WORKDIR_OPTION,
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Pack the mounts and upload the archive.

    When the path or file name uses checksum(), an existing archive is
    left alone and the rebuild is skipped.
    """
    result = _run(
        CacheMode.REBUILD,
        config_path,
        workdir,
        meta,
        path=path,
        filename=filename,
        mount=mount,
    )

    if result.skipped:
        console.print(f"[yellow]Cache skipped, {result.key} already exists[/yellow]")
    else:
        console.print(f"[green]Cache rebuilt at {result.key}[/green]")


@app.command()
def restore(
    path: Optional[str] = PATH_OPTION,
    filename: Optional[str] = FILENAME_OPTION,
    fallback_path: Optional[str] = typer.Option(
        None,
        "--fallback-path",
        help="Cache path template tried when --path has no archive",
    ),
    meta: Optional[List[str]] = META_OPTION,
    workdir: Optional[Path] = WORKDIR_OPTION,
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Download the archive and extract it into the working directory."""
    result = _run(
        CacheMode.RESTORE,
        config_path,
        workdir,
        meta,
        path=path,
        filename=filename,
        fallback_path=fallback_path,
    )
    console.print(f"[green]Cache restored from {result.restored_from}[/green]")


@app.command()
def flush(
    flush_path: Optional[str] = typer.Option(
        None,
        "--flush-path",
        help="Storage prefix template to flush (default: the cache path)",
    ),
    flush_age: Optional[int] = typer.Option(
        None,
        "--flush-age",
        help="Delete items older than this many days",
        min=1,
    ),
    path: Optional[str] = PATH_OPTION,
    meta: Optional[List[str]] = META_OPTION,
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Delete cache items older than the flush age."""
    result = _run(
        CacheMode.FLUSH,
        config_path,
        None,
        meta,
        path=path,
        flush_path=flush_path,
        flush_age=flush_age,
    )
    console.print(f"[green]Cache flushed, {len(result.flushed)} item(s) deleted[/green]")


@app.command()
def config(
    action: str = typer.Argument(
        ...,
        help="Action to perform (show, set, path)",
    ),
    key: str = typer.Argument(
        None,
        help="Configuration key (for set action)",
    ),
    value: str = typer.Argument(
        None,
        help="Configuration value (for set action)",
    ),
) -> None:
    """Manage configuration.

    Show, set, or display the path to the configuration file.

    Examples:
        artifact-cache config show          # Show all configuration
        artifact-cache config set s3.endpoint_url https://minio.local:9000
        artifact-cache config path          # Show config file path
    """
    if action == "show":
        try:
            cfg = ensure_config_exists()
        except OSError as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            raise typer.Exit(1)

        lines = []
        for dotted in config_keys():
            current = cfg.get(dotted)
            if isinstance(current, list):
                current = ", ".join(current)
            lines.append(f"[cyan]{dotted}:[/cyan] {escape(str(current)) if current != '' else '(not set)'}")

        console.print(Panel.fit("\n".join(lines), title="Configuration", border_style="green"))

    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage: artifact-cache config set <key> <value>[/red]")
            raise typer.Exit(1)

        try:
            cfg = ensure_config_exists()
            cfg.set(key, value)
            cfg.save()
            console.print(f"[green]Set {key} = {value}[/green]")
        except ValueError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    elif action == "path":
        console.print(get_config_path())

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Valid actions: show, set, path")
        raise typer.Exit(1)


# Entry point for the CLI
def cli_entry() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    cli_entry()
