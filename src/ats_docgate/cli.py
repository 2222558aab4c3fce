"""
CLI Entrypoint for the ATS document gate

Works on a local JSON workspace (processes and candidates) and the Google
Drive connection stored in settings.yaml.

Usage:
    ats-docgate checklist CANDIDATE_ID [OPTIONS]
    ats-docgate move CANDIDATE_ID... --to STAGE_ID [OPTIONS]
    ats-docgate upload CANDIDATE_ID FILE [OPTIONS]
    ats-docgate resolve-folder KIND NAME [OPTIONS]
    ats-docgate whoami
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx
import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ats_docgate.config import Settings
from ats_docgate.documents import DocumentService
from ats_docgate.gdrive import (
    AuthenticationError,
    DriveError,
    DuplicatePolicy,
    FolderKind,
    RemoteFileRegistry,
    RemoteFolderRegistry,
    RemoteObjectClient,
    TokenSession,
)
from ats_docgate.stage_gate import CategoryStatus, build_checklist, category_label
from ats_docgate.store import JsonFileCandidateStore, RecordNotFoundError
from ats_docgate.transitions import TransitionCoordinator, UnknownProcessError, UnknownStageError

app = typer.Typer(
    name="ats-docgate",
    help="Document-gated candidate pipeline backed by Google Drive",
    add_completion=False,
)

console = Console()

_STATUS_STYLE = {
    CategoryStatus.COMPLETE: "[green]complete[/]",
    CategoryStatus.MISSING: "[red]missing[/]",
    CategoryStatus.OPTIONAL_COMPLETE: "[green]complete[/] [dim](optional)[/]",
    CategoryStatus.OPTIONAL_EMPTY: "[dim]empty (optional)[/]",
}

@dataclass
class DriveContext:
    """Drive objects shared by one CLI command."""

    client: RemoteObjectClient
    folders: RemoteFolderRegistry
    files: RemoteFileRegistry


def _load_settings(config: Optional[Path]) -> Settings:
    return Settings(config if config else Path("settings.yaml"))


def _make_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client used for Drive and token endpoint calls."""
    return httpx.AsyncClient(timeout=settings.drive.api.timeout_seconds)


@asynccontextmanager
async def _drive(settings: Settings) -> AsyncIterator[DriveContext]:
    """Open a Drive client whose refreshed tokens are saved back to settings."""
    http_client = _make_http_client(settings)
    session = TokenSession.from_config(
        settings.drive, http_client=http_client, on_refresh=settings.save_connection
    )
    client = RemoteObjectClient(session, http_client=http_client, api_config=settings.drive.api)
    try:
        yield DriveContext(client, RemoteFolderRegistry(client), RemoteFileRegistry(client))
    finally:
        await http_client.aclose()


def _run_drive_command(coro_factory, settings: Settings):  # type: ignore[no-untyped-def]
    """Run an async Drive command, turning Drive errors into CLI exits."""
    try:
        return asyncio.run(coro_factory())
    except AuthenticationError as e:
        settings.drive.connection.connected = False
        settings.save_connection()
        console.print(f"[red]Google Drive authorization failed:[/] {e}")
        console.print("[yellow]Reconnect your Google Drive account from the settings page.[/]")
        raise typer.Exit(1) from e
    except DriveError as e:
        console.print(f"[red]Google Drive error:[/] {e}")
        raise typer.Exit(1) from e


@app.command()
def checklist(
    candidate_id: str = typer.Argument(..., help="Candidate id"),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings.yaml configuration file",
    ),
) -> None:
    """
    Show a candidate's document checklist for their current stage.
    """
    settings = _load_settings(config)
    store = JsonFileCandidateStore(settings.workspace_path)

    async def load():  # type: ignore[no-untyped-def]
        candidate = await store.get_candidate(candidate_id)
        if candidate is None:
            return None, None
        return candidate, await store.get_process(candidate.process_id)

    candidate, process = asyncio.run(load())
    if candidate is None or process is None:
        console.print(f"[red]Candidate not found:[/] {candidate_id}")
        raise typer.Exit(1)

    stage = process.get_stage(candidate.stage_id)
    result = build_checklist(process, candidate.stage_id, candidate.attachments)

    console.print(f"[bold blue]{candidate.name}[/] - {process.title}")
    console.print(f"[dim]Stage: {stage.name if stage else candidate.stage_id}[/]")

    table = Table(title="Documents")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Stage requirement")
    for entry in result.entries:
        table.add_row(
            entry.category.name,
            _STATUS_STYLE[entry.status],
            str(len(entry.attachments)),
            "yes" if entry.required_for_stage else "",
        )
    console.print(table)

    if result.uncategorized:
        console.print(f"[yellow]Uncategorized:[/] {', '.join(a.name for a in result.uncategorized)}")

    if result.can_advance:
        console.print("[bold green]All documents required for this stage are present.[/]")
    else:
        missing = ", ".join(category_label(process, cid) for cid in result.gate.missing)
        console.print(f"[bold red]Missing for this stage:[/] {missing}")


@app.command()
def move(
    candidate_ids: List[str] = typer.Argument(..., help="Candidates to move, in order"),
    to: str = typer.Option(..., "--to", "-t", help="Target stage id"),
    user: str = typer.Option("System", "--user", "-u", help="Name recorded in the history"),
    drive_check: bool = typer.Option(
        False,
        "--drive-check",
        help="Only count documents still present in the candidate's Drive folder",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings.yaml configuration file",
    ),
) -> None:
    """
    Move candidates to another stage, enforcing the stage's document requirements.

    Candidates with every required document are moved; the others stay
    where they are and are listed with what they are missing.

    Examples:
        ats-docgate move cand-1 cand-2 --to offer --user "Maria"
    """
    settings = _load_settings(config)
    store = JsonFileCandidateStore(settings.workspace_path)

    async def run():  # type: ignore[no-untyped-def]
        if not drive_check:
            return await TransitionCoordinator(store).attempt_move(candidate_ids, to, user)
        async with _drive(settings) as drive:
            service = DocumentService(store, drive.folders, drive.files, settings.drive)
            coordinator = TransitionCoordinator(
                store, attachment_source=service.drive_attachment_source()
            )
            return await coordinator.attempt_move(candidate_ids, to, user)

    try:
        result = _run_drive_command(run, settings)
    except (UnknownStageError, UnknownProcessError) as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e

    for cid in result.moved:
        console.print(f"  [green]Moved:[/] {cid}")
    for cid in result.unchanged:
        console.print(f"  [dim]Already in stage:[/] {cid}")
    for blocked in result.blocked:
        console.print(f"  [red]Blocked:[/] {blocked.describe()}")

    if result.blocked:
        console.print(f"\n[bold red]{result.failure_message}[/]")
        raise typer.Exit(1)
    console.print("\n[bold green]Move complete![/]")


@app.command()
def upload(
    candidate_id: str = typer.Argument(..., help="Candidate id"),
    file: Path = typer.Argument(..., help="File to upload", exists=True, dir_okay=False),
    category: Optional[str] = typer.Option(
        None, "--category", "-k", help="Document category id"
    ),
    policy: DuplicatePolicy = typer.Option(
        DuplicatePolicy.KEEP_BOTH,
        "--policy",
        "-p",
        help="What to do if the folder already has a file with this name",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings.yaml configuration file",
    ),
) -> None:
    """
    Upload a document to the candidate's Drive folder and attach it.
    """
    settings = _load_settings(config)
    store = JsonFileCandidateStore(settings.workspace_path)

    async def run():  # type: ignore[no-untyped-def]
        async with _drive(settings) as drive:
            service = DocumentService(store, drive.folders, drive.files, settings.drive)
            attachment = await service.attach_document(
                candidate_id, file.read_bytes(), file.name, category=category, policy=policy
            )
        return attachment

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Uploading {file.name}...", total=None)
        try:
            attachment = _run_drive_command(run, settings)
        except (RecordNotFoundError, ValueError) as e:
            console.print(f"[red]{e}[/]")
            raise typer.Exit(1) from e

    # A root folder resolved by name is remembered for next time
    settings.save_connection()

    console.print(f"[green]Uploaded:[/] {attachment.name}")
    console.print(f"  {attachment.url}")


@app.command("resolve-folder")
def resolve_folder(
    kind: FolderKind = typer.Argument(..., help="root, section or entity"),
    name: str = typer.Argument(..., help="Folder or entity name"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Parent folder id"),
    known_id: Optional[str] = typer.Option(
        None, "--known-id", help="Previously known folder id (entity folders)"
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings.yaml configuration file",
    ),
) -> None:
    """
    Find or create a Drive folder and print its id.
    """
    settings = _load_settings(config)

    async def run():  # type: ignore[no-untyped-def]
        async with _drive(settings) as drive:
            return await drive.folders.resolve_folder(kind, name, parent, known_id)

    try:
        folder = _run_drive_command(run, settings)
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e

    console.print(f"[bold]{folder.name}[/] {folder.id}")


@app.command()
def whoami(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to settings.yaml configuration file",
    ),
) -> None:
    """
    Show the Google Drive account the stored connection belongs to.
    """
    settings = _load_settings(config)

    async def run():  # type: ignore[no-untyped-def]
        async with _drive(settings) as drive:
            return await drive.client.get_user_info()

    info = _run_drive_command(run, settings)
    console.print(f"[green]Connected as:[/] {info['name']} <{info['email']}>")


if __name__ == "__main__":
    app()
