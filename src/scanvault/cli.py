"""Typer-based CLI for scanvault."""

import json
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from .apply import VaultApplyService
from .bootstrap import bootstrap_if_needed, reset_vault
from .config import ProcessingQualityMode, ScanVaultConfig
from .errors import (
    FolderSyncError,
    PartialBatchError,
    ScanVaultError,
)
from .extractor import decode_response
from .ledger import LedgerWriter, read_ledger_tail
from .models.payloads import StructurePayload, TranscriptionPayload
from .models.vault import VaultFileOperation, VaultWriterInput
from .paths import VaultPaths
from .pipeline import (
    MODEL_ENGINES,
    ScanImage,
    ScanProcessingPipeline,
    build_writer_input,
    get_model_client,
    validate_structure,
    validate_transcript,
)
from .sync import FolderSyncer
from .writer import VaultWriter

app = typer.Typer(
    name="scanvault",
    help="scanvault - file scanned notebook pages into a Markdown vault",
    add_completion=False,
)

console = Console()

VAULT_OPTION_HELP = "Path to vault directory (default: SCANVAULT_VAULT env or ./scanvault_vault)"

_operations_adapter = TypeAdapter(list[VaultFileOperation])


def _load_config(
    vault_path: Optional[str],
    mode: Literal["use_existing", "create_ok"] = "use_existing",
) -> ScanVaultConfig:
    """Resolve configuration and set up logging, exiting on a missing vault."""
    try:
        config = ScanVaultConfig.from_env(cli_vault_path=vault_path, mode=mode)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[yellow]Run 'scanvault init' first[/yellow]")
        raise typer.Exit(code=1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _ledger(config: ScanVaultConfig) -> Optional[LedgerWriter]:
    if not config.ledger_enabled:
        return None
    return LedgerWriter(VaultPaths.from_config(config).ledger_file)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error: cannot read {path}: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def init(
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Initialize a vault with the folder taxonomy and system folder.

    Idempotent: existing folders and files are left untouched.
    """
    config = _load_config(vault_path, mode="create_ok")
    vault_root = config.vault_path
    paths = VaultPaths.from_config(config)

    if paths.system.exists():
        console.print(f"[yellow]Vault already exists at:[/yellow] {vault_root}")
    else:
        console.print(f"[green]Initializing new vault at:[/green] {vault_root}")

    created = bootstrap_if_needed(vault_root)
    if created:
        console.print(f"[green]+[/green] Created {len(created)} directories")
        ledger_writer = _ledger(config)
        if ledger_writer:
            ledger_writer.append_event(
                event_type="VAULT_BOOTSTRAPPED",
                payload={"created": [str(path) for path in created]},
            )
    else:
        console.print("[dim]All directories already exist[/dim]")

    console.print()
    console.print("[bold green]Vault initialization complete![/bold green]")
    console.print(f"[dim]Vault location:[/dim] {vault_root.absolute()}")


@app.command()
def write(
    transcript_file: Path = typer.Option(
        ...,
        "--transcript",
        "-t",
        help="File holding the transcription model response",
    ),
    structure_file: Path = typer.Option(
        ...,
        "--structure",
        "-s",
        help="File holding the structuring model response",
    ),
    captured_at: str = typer.Option(
        None,
        "--captured-at",
        help="Capture time, ISO 8601 (default: now, UTC)",
    ),
    image_path: str = typer.Option("", "--image-path", help="Path of the scanned image"),
    scan_id: str = typer.Option(None, "--scan-id", help="Scan ID (default: new uuid4)"),
    batch_id: str = typer.Option(None, "--batch-id", help="Batch ID"),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """File one scan into the vault from saved model responses.

    Both responses may wrap their JSON in prose; the first JSON object in
    each is decoded and validated.
    """
    config = _load_config(vault_path)

    try:
        transcript = decode_response(TranscriptionPayload, _read_text(transcript_file))
        structured = decode_response(StructurePayload, _read_text(structure_file))
        validate_transcript(transcript.value)
        validate_structure(structured.value)

        if captured_at is None:
            captured_at = datetime.now(timezone.utc).isoformat()

        writer_input = VaultWriterInput(
            scan_id=scan_id or str(uuid.uuid4()),
            batch_id=batch_id,
            captured_at=captured_at,
            image_path=image_path,
            transcript=transcript.value,
            transcript_json=transcript.raw_json,
            structured=structured.value,
            structured_json=structured.raw_json,
        )
        writer = VaultWriter(config.vault_path, ledger_writer=_ledger(config))
        result = writer.apply(writer_input)
    except PartialBatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        for path in e.applied_paths:
            console.print(f"  [dim]applied:[/dim] {path}")
        raise typer.Exit(code=1)
    except ScanVaultError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]+[/green] Filed scan {writer_input.scan_id} into {result.note_path}")
    console.print(f"[dim]Metadata:[/dim] {result.metadata_path}")
    for path in result.entity_paths:
        console.print(f"[green]+[/green] Created entity: {path}")


@app.command()
def process(
    image_file: Path = typer.Argument(..., help="Scanned page image"),
    mode: str = typer.Option(
        None,
        "--mode",
        "-m",
        help="Quality mode: 'fast', 'balanced' or 'best' (default: SCANVAULT_QUALITY_MODE or balanced)",
    ),
    engine: str = typer.Option(
        "auto",
        "--engine",
        help="Model engine: 'fake' or 'auto' (default: auto)",
    ),
    rules_file: Path = typer.Option(
        None,
        "--rules",
        help="File with system rules appended to the structuring prompts",
    ),
    captured_at: str = typer.Option(
        None,
        "--captured-at",
        help="Capture time, ISO 8601 (default: now, UTC)",
    ),
    scan_id: str = typer.Option(None, "--scan-id", help="Scan ID (default: new uuid4)"),
    batch_id: str = typer.Option(None, "--batch-id", help="Batch ID"),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Run the model pipeline on a page image and file the result.

    The quality mode decides the passes: fast (one request), balanced
    (transcribe, then structure) or best (adds a refine pass).
    """
    config = _load_config(vault_path)

    valid_modes = [m.value for m in ProcessingQualityMode]
    if mode is not None and mode not in valid_modes:
        console.print(f"[red]Error: Invalid mode '{mode}'. Must be one of: {', '.join(valid_modes)}[/red]")
        raise typer.Exit(code=1)
    quality_mode = ProcessingQualityMode(mode) if mode else config.quality_mode

    try:
        client = get_model_client(engine)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[yellow]Available engines: {', '.join(MODEL_ENGINES)}[/yellow]")
        raise typer.Exit(code=1)

    try:
        data = image_file.read_bytes()
    except OSError as e:
        console.print(f"[red]Error: cannot read {image_file}: {e}[/red]")
        raise typer.Exit(code=1)
    mime_type = mimetypes.guess_type(image_file.name)[0] or "image/jpeg"
    system_rules = _read_text(rules_file) if rules_file else ""

    console.print(f"[dim]Processing {image_file.name} with {client.engine_name} ({quality_mode.value})[/dim]")
    pipeline = ScanProcessingPipeline(client, quality_mode, system_rules=system_rules)
    try:
        output = pipeline.process(ScanImage(data=data, mime_type=mime_type))
        writer_input = build_writer_input(
            output,
            scan_id=scan_id or str(uuid.uuid4()),
            captured_at=captured_at or datetime.now(timezone.utc).isoformat(),
            image_path=str(image_file),
            batch_id=batch_id,
        )
        writer = VaultWriter(config.vault_path, ledger_writer=_ledger(config))
        result = writer.apply(writer_input)
    except PartialBatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        for path in e.applied_paths:
            console.print(f"  [dim]applied:[/dim] {path}")
        raise typer.Exit(code=1)
    except ScanVaultError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]+[/green] Filed scan {writer_input.scan_id} into {result.note_path}")
    console.print(f"[dim]Folder:[/dim] {output.structured.classification.folder}")
    for path in result.entity_paths:
        console.print(f"[green]+[/green] Created entity: {path}")


@app.command()
def apply(
    ops_file: Path = typer.Argument(
        ...,
        help="JSON file with a list of operations or an object with a fileOps list",
    ),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Apply a batch of create/update/delete operations to the vault."""
    config = _load_config(vault_path)

    try:
        data = json.loads(_read_text(ops_file))
        if isinstance(data, dict):
            data = data.get("fileOps", [])
        operations = _operations_adapter.validate_python(data)
    except (json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Error: invalid operations file {ops_file}: {e}[/red]")
        raise typer.Exit(code=1)

    service = VaultApplyService(config.vault_path, ledger_writer=_ledger(config))
    try:
        summary = service.apply(operations)
    except PartialBatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        for path in e.applied_paths:
            console.print(f"  [dim]applied:[/dim] {path}")
        raise typer.Exit(code=1)
    except ScanVaultError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Applied {len(operations)} operation(s)")
    table.add_column("Path", style="cyan")
    table.add_column("Result", style="magenta")
    for path in summary.created_or_updated:
        table.add_row(path, "written")
    for path in summary.deleted:
        table.add_row(path, "deleted")
    console.print(table)


@app.command()
def sync(
    destination: Path = typer.Option(
        None,
        "--to",
        help="Destination folder (default: SCANVAULT_SYNC_DESTINATION)",
    ),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Mirror the vault into an external folder."""
    config = _load_config(vault_path)
    target = destination or config.sync_destination
    if target is None:
        console.print("[red]Error: No destination given (use --to or SCANVAULT_SYNC_DESTINATION)[/red]")
        raise typer.Exit(code=1)

    syncer = FolderSyncer(config.vault_path, ledger_writer=_ledger(config))
    try:
        result = syncer.sync_vault(target)
    except (FolderSyncError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]+[/green] Copied {len(result.copied)} file(s) to {target}")
    if result.skipped:
        console.print(f"[yellow]Skipped {len(result.skipped)} non-regular path(s)[/yellow]")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", help="Confirm deleting the whole vault"),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Delete the vault folder and everything in it (debug/testing only)."""
    config = _load_config(vault_path, mode="create_ok")
    if not yes:
        console.print(f"[red]Refusing to delete {config.vault_path} without --yes[/red]")
        raise typer.Exit(code=1)

    if reset_vault(config.vault_path):
        console.print(f"[green]Removed vault at {config.vault_path}[/green]")
    else:
        console.print(f"[dim]Nothing to remove at {config.vault_path}[/dim]")


ledger_app = typer.Typer(help="Ledger commands")
app.add_typer(ledger_app, name="ledger")


@ledger_app.command("tail")
def ledger_tail(
    n: int = typer.Option(20, "--n", help="Number of recent events to display"),
    full: bool = typer.Option(False, "--full", help="Show full payloads with JSON pretty-print"),
    vault_path: str = typer.Option(None, "--vault", "-v", help=VAULT_OPTION_HELP),
):
    """Display the last N events from the ledger.

    Malformed lines are skipped with warnings.
    """
    config = _load_config(vault_path)
    paths = VaultPaths.from_config(config)

    events = read_ledger_tail(paths.ledger_file, n=n)
    if not events:
        console.print("[dim]No events in ledger[/dim]")
        return

    if full:
        console.print(f"[bold]Last {len(events)} Ledger Event(s)[/bold]\n")
        for i, event in enumerate(events, 1):
            console.print(f"[cyan]Event {i}/{len(events)}[/cyan]")
            console.print(f"  [dim]Event ID:[/dim]    {event.event_id}")
            console.print(f"  [dim]Run ID:[/dim]      {event.run_id}")
            console.print(f"  [dim]Timestamp:[/dim]   {event.ts.strftime('%Y-%m-%d %H:%M:%S')} UTC")
            console.print(f"  [dim]Event Type:[/dim]  [magenta]{event.event_type}[/magenta]")
            console.print(f"  [dim]Scan ID:[/dim]     {event.scan_id or '-'}")
            console.print("  [dim]Payload:[/dim]")
            for line in json.dumps(event.payload, indent=2).split("\n"):
                console.print(f"    {line}")
            console.print()
        return

    table = Table(title=f"Last {len(events)} Ledger Event(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Event Type", style="magenta")
    table.add_column("Scan ID", style="yellow")
    table.add_column("Payload", style="dim")
    for event in events:
        scan_id_str = event.scan_id[:8] + "..." if event.scan_id else "-"
        payload_str = str(event.payload)
        if len(payload_str) > 60:
            payload_str = payload_str[:57] + "..."
        table.add_row(event.ts.strftime("%Y-%m-%d %H:%M:%S"), event.event_type, scan_id_str, payload_str)
    console.print(table)


@app.command()
def version():
    """Show scanvault version."""
    from . import __version__
    console.print(f"scanvault v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
