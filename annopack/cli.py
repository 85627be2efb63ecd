"""Command-line interface for annopack."""

import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from annopack import __version__
from annopack.errors import ConfigurationError, ProviderError
from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationConfig,
    AnnotationPackage,
    ObjectClass,
)
from annopack.services.download import DownloadOutcome
from annopack.services.export_service import ExportService
from annopack.services.filesystem_provider import FileSystemPackageProvider
from annopack.services.session import AnnotationSession
from annopack.services.sync import SyncStatus
from annopack.settings import (
    configure_logging,
    get_cache_dir,
    get_remote_dir,
    get_sync_workers,
)

app = typer.Typer(
    name="annopack",
    help="Browse, download, edit and sync annotation packages.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

AnnotatedOption = Annotated[
    bool,
    typer.Option("--annotated", "-a", help="Use the annotated category."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]annopack[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    remote_dir: Annotated[
        Path | None,
        typer.Option("--remote-dir", help="Remote storage root (defaults to ./remote)."),
    ] = None,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", help="Local cache directory (defaults to ./cache)."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level, e.g. INFO or DEBUG."),
    ] = None,
) -> None:
    """Annopack - annotation package browser and sync tool."""
    os.environ.update(_configure_environment(remote_dir, cache_dir))
    configure_logging(log_level)


def _configure_environment(
    remote_dir: Path | None, cache_dir: Path | None
) -> dict[str, str]:
    """Build environment variables for the storage directories."""
    env = {}
    if remote_dir:
        env["ANNOPACK_REMOTE_DIR"] = str(remote_dir.resolve())
    if cache_dir:
        env["ANNOPACK_CACHE_DIR"] = str(cache_dir.resolve())
    return env


def _category(annotated: bool) -> AnnotationCategory:
    if annotated:
        return AnnotationCategory.ANNOTATED
    return AnnotationCategory.UNANNOTATED


def _open_provider() -> FileSystemPackageProvider:
    try:
        return FileSystemPackageProvider(get_remote_dir(), get_cache_dir())
    except ConfigurationError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(1) from None


def _open_session(annotated: bool) -> AnnotationSession:
    """Open a session and load the requested category."""
    provider = _open_provider()
    try:
        session = AnnotationSession.open(
            provider, lambda: None, sync_workers=get_sync_workers()
        )
    except ConfigurationError as err:
        console.print(
            f"[red]Error:[/red] {err}. Run [bold]annopack init[/bold] first."
        )
        raise typer.Exit(1) from None

    try:
        session.select_category(_category(annotated))
    except ProviderError as err:
        session.close()
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(1) from None
    return session


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _package_table(title: str, packages: list[AnnotationPackage]) -> Table:
    table = Table(title=title)
    table.add_column("Package", style="bold")
    table.add_column("User")
    table.add_column("Local")
    table.add_column("Dirty")
    table.add_column("Annotated", justify="right")
    table.add_column("Tags")
    for package in packages:
        table.add_row(
            package.id,
            package.user,
            "yes" if package.available_locally else "no",
            "[yellow]*[/yellow]" if package.is_dirty else "",
            f"{package.annotation_percentage:.0f}%",
            ", ".join(package.tags),
        )
    return table


@app.command()
def init(
    classes: Annotated[
        str | None,
        typer.Option("--classes", "-c", help="Comma separated object classes."),
    ] = None,
    tags: Annotated[
        str | None,
        typer.Option("--tags", "-t", help="Comma separated allowed tags."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Replace an existing config."),
    ] = False,
) -> None:
    """Create the annotation config of the remote storage."""
    provider = _open_provider()
    try:
        existing = provider.get_annotation_config()
    except ProviderError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(1) from None
    if existing is not None and not force:
        console.print(
            f"[yellow]A config with {len(existing.object_classes)} object classes "
            "already exists.[/yellow] Use --force to replace it."
        )
        return

    if classes is None:
        classes = typer.prompt("Object classes (comma separated)")
    if tags is None:
        tags = typer.prompt("Allowed tags (comma separated, empty for any)", default="")

    names = _parse_list(classes)
    if not names:
        console.print("[red]Error:[/red] at least one object class is required.")
        raise typer.Exit(1)

    config = AnnotationConfig(
        object_classes=[ObjectClass(id=i, name=name) for i, name in enumerate(names)],
        tags=_parse_list(tags),
    )
    try:
        provider.set_annotation_config(config)
    except ProviderError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(1) from None
    console.print(f"[green]✓[/green] Saved config with {len(names)} object classes")


@app.command()
def packages(annotated: AnnotatedOption = False) -> None:
    """List the packages of a category."""
    session = _open_session(annotated)
    try:
        loaded = session.registry.all_packages()
        title = f"{_category(annotated).value.capitalize()} packages"
        console.print(_package_table(title, loaded))
    finally:
        session.close()


@app.command()
def download(
    package_id: Annotated[str, typer.Argument(help="ID of the package.")],
    annotated: AnnotatedOption = False,
) -> None:
    """Download the assets of a package."""
    session = _open_session(annotated)
    try:
        package = session.get_package(package_id)
        if package is None:
            console.print(f"[red]Error:[/red] package {package_id} not found.")
            raise typer.Exit(1)
        try:
            outcome = session.download(package)
        except ProviderError as err:
            console.print(f"[red]Download failed:[/red] {err}")
            raise typer.Exit(1) from None
        if outcome is DownloadOutcome.ALREADY_LOCAL:
            console.print(f"[yellow]{package_id} is already available locally.[/yellow]")
        else:
            console.print(
                f"[green]✓[/green] Downloaded {package_id} ({len(package.images)} images)"
            )
    finally:
        session.close()


@app.command()
def sync(
    annotated: AnnotatedOption = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation."),
    ] = False,
) -> None:
    """Push local edits of every changed package."""
    session = _open_session(annotated)

    def confirm(dirty: list[AnnotationPackage]) -> bool:
        console.print(_package_table("Unsynced packages", dirty))
        return yes or typer.confirm(f"Sync {len(dirty)} package(s)?")

    try:
        report = session.sync(confirm)
    finally:
        session.close()

    if report.status is SyncStatus.NOTHING_TO_SYNC:
        console.print("[yellow]There are no changed packages to sync.[/yellow]")
        return
    if report.status is SyncStatus.DECLINED:
        console.print("Sync cancelled.")
        return

    table = Table(title="Sync Result")
    table.add_column("Package", style="bold")
    table.add_column("Result")
    table.add_column("Details")
    for result in report.results:
        state = "[green]synced[/green]" if result.success else "[red]failed[/red]"
        details = result.error or ("edited during sync" if result.still_dirty else "")
        table.add_row(result.package_id, state, details)
    console.print(table)

    if report.status is not SyncStatus.COMPLETED:
        raise typer.Exit(1)


@app.command()
def export(
    output: Annotated[Path, typer.Argument(help="Destination ZIP file.")],
    annotated: AnnotatedOption = False,
    train_split: Annotated[
        float,
        typer.Option("--train-split", min=0.01, max=1.0, help="Training fraction."),
    ] = 0.8,
) -> None:
    """Export downloaded packages in YOLO format."""
    session = _open_session(annotated)
    try:
        zip_path = ExportService(session.registry, session.config).export_yolo_zip(
            output, train_split
        )
    finally:
        session.close()
    console.print(f"[green]✓[/green] Exported to {zip_path}")


@app.command()
def serve(
    host: Annotated[
        str,
        typer.Option("--host", "-h", help="Host to bind the server to."),
    ] = "127.0.0.1",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to bind the server to."),
    ] = 8000,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development."),
    ] = False,
) -> None:
    """Start the annopack API server."""
    url = f"http://{host}:{port}"
    console.print(
        Panel(
            f"[bold green]Starting annopack server[/bold green]\n\n"
            f"  URL: [link={url}]{url}[/link]\n"
            f"  Remote: {get_remote_dir()}\n"
            f"  Cache: {get_cache_dir()}\n"
            f"  Reload: {'enabled' if reload else 'disabled'}",
            title="Annopack",
            border_style="blue",
        )
    )

    import uvicorn

    uvicorn.run(
        "annopack.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def info() -> None:
    """Show information about the current installation."""
    remote_dir = get_remote_dir()
    config_status = "Found" if (remote_dir / "config.json").exists() else "Missing"
    console.print(
        Panel(
            f"[bold blue]annopack[/bold blue] v{__version__}\n\n"
            f"[bold]Python:[/bold] {sys.version}\n"
            f"[bold]Remote:[/bold] {remote_dir}\n"
            f"[bold]Cache:[/bold] {get_cache_dir()}\n"
            f"[bold]Config:[/bold] {config_status}",
            title="Installation Info",
            border_style="blue",
        )
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
