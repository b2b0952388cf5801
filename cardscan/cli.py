"""Command-line interface for the card scanner."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .capture.camera import CameraFrameSource, ImageFileFrameSource
from .core.types import Ambiguous, FrameMeta, Matched, NoMatch, RegionFrame, ScanResult
from .ocr.extract import TesseractTextExtractor
from .reference.build_index import build_catalog_index
from .scan.controller import ScanCycleController
from .scan.orchestrator import ScanOrchestrator
from .store.catalog import (
    META_CATALOG_SOURCE,
    META_CATALOG_UPDATED_AT,
    META_CATALOG_VERSION,
    CatalogStore,
    get_catalog_store,
)
from .store.metrics import ScanMetricsStore, get_metrics_store
from .ui.notifier import ScanNotifier
from .utils.config import ensure_cache_dir, normalize_engine, settings, SCANNER_ENGINE_HYBRID
from .utils.error_handler import ConfigurationError
from .utils.log import configure_logging, get_logger
from .utils.validation import validate_file_path, validate_numeric_range

logger = get_logger(__name__)

# Rich console
console = Console()

app = typer.Typer(
    name="cardscan",
    help="Card Scanner - identify trading cards from a camera or image by perceptual fingerprint",
    add_completion=False
)


@app.callback()
def setup(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL (DEBUG, INFO, ...)"),
):
    """Configure logging before any command runs."""
    configure_logging(log_level)
    logger.debug("CLI started", log_level=log_level or settings.LOG_LEVEL)

REGION_MODES = ("full_card", "artwork")
SESSION_POLL_S = 0.1


def _open_catalog(db_path: Optional[str]) -> CatalogStore:
    ensure_cache_dir()
    return CatalogStore(db_path) if db_path else get_catalog_store()


def _check_region(region: str) -> str:
    if region not in REGION_MODES:
        raise typer.BadParameter(f"region must be one of: {', '.join(REGION_MODES)}")
    return region


def render_result(result: ScanResult, title: str = "Scan Result") -> Table:
    """Rich table describing a scan result."""
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", result.status)

    if isinstance(result, Matched):
        card = result.card
        table.add_row("Card ID", str(result.card_id))
        table.add_row("Name", (card.name if card else None) or "[dim]unknown[/dim]")
        if card and card.set_code:
            table.add_row("Set / Number", f"{card.set_code.upper()} {card.collector_number or ''}".strip())
        table.add_row("Matched By", result.matched_by)
        table.add_row("Confidence", f"{result.confidence:.2f}")
        for key, value in result.evidence.items():
            table.add_row(f"Evidence: {key}", str(value))
    elif isinstance(result, Ambiguous):
        table.add_row("Matched By", result.matched_by)
        table.add_row("Confidence", f"{result.confidence:.2f}")
        table.add_row("Candidates", str(len(result.candidates)))
    elif isinstance(result, NoMatch):
        table.add_row("Reason", result.reason)

    return table


def render_candidates(candidates) -> Table:
    table = Table(title="Possible Cards")
    table.add_column("#", style="dim")
    table.add_column("Card ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Set", style="magenta")
    table.add_column("Number", style="magenta")
    table.add_column("Score", style="green")
    for index, candidate in enumerate(candidates, start=1):
        table.add_row(
            str(index),
            str(candidate.card_id),
            candidate.name or "",
            (candidate.set_code or "").upper(),
            candidate.collector_number or "",
            "" if candidate.score is None else str(candidate.score),
        )
    return table


@app.command()
def identify(
    image: Path = typer.Argument(..., help="Photo or scan of a single card"),
    engine: Optional[str] = typer.Option(None, "--engine", "-e", help="hybrid_hash or legacy_ocr"),
    region: str = typer.Option("full_card", "--region", "-r", help="Fingerprint region: full_card or artwork"),
    ocr: bool = typer.Option(True, "--ocr/--no-ocr", help="Allow text recognition fallback"),
    variants: Optional[int] = typer.Option(None, "--variants", help="Geometry variants to try (1-7)"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Catalog database path"),
):
    """Identify the card in a single image."""
    try:
        image_path = validate_file_path(image, must_exist=True)
        if variants is not None:
            validate_numeric_range(variants, 1, 7, "variants")
        frame = ImageFileFrameSource(image_path).read_frame()
        if frame is None:
            console.print(f"[red]❌ Could not read image: {image_path}[/red]")
            raise typer.Exit(1)

        engine_name = normalize_engine(engine or settings.SCANNER_ENGINE)
        uses_fingerprints = engine_name == SCANNER_ENGINE_HYBRID
        orchestrator = ScanOrchestrator(
            _open_catalog(db_path),
            text_extractor=TesseractTextExtractor() if ocr or not uses_fingerprints else None,
        )
        frame_meta = FrameMeta(
            image=frame,
            region_mode=_check_region(region),
            allow_ocr_fallback=ocr or not uses_fingerprints,
            skip_edition_ocr_in_primary=uses_fingerprints and not ocr,
            enable_multilingual_fallback=settings.MULTILINGUAL_FALLBACK,
            max_variants=variants or settings.MAX_VARIANTS,
        )
        with console.status("[bold green]Identifying card...", spinner="dots"):
            result = orchestrator.resolve_scan(frame_meta)

        if as_json:
            console.print_json(json.dumps(result.to_dict(), default=str))
            return

        console.print(render_result(result, title=image_path.name))
        if isinstance(result, Ambiguous):
            console.print(render_candidates(result.candidates))

    except ConfigurationError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)


async def _run_scan_session(controller: ScanCycleController, max_seconds: float) -> Optional[str]:
    """Run the scan loop until a card is chosen or the time limit passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_seconds
    controller.start()
    try:
        while loop.time() < deadline:
            session = controller.session
            if session.navigated:
                return session.navigated_card_id

            if session.paused and session.candidates:
                console.print(render_candidates(session.candidates))
                choice = await loop.run_in_executor(
                    None, lambda: typer.prompt("Pick a number (Enter to keep scanning)", default="", show_default=False)
                )
                choice = str(choice).strip()
                if choice.isdigit() and 1 <= int(choice) <= len(session.candidates):
                    controller.select_candidate(session.candidates[int(choice) - 1].card_id)
                else:
                    controller.resume()
                continue

            await asyncio.sleep(SESSION_POLL_S)
        return None
    finally:
        controller.stop()


@app.command()
def scan(
    camera: Optional[int] = typer.Option(None, "--camera", "-c", help="Camera index"),
    engine: Optional[str] = typer.Option(None, "--engine", "-e", help="hybrid_hash or legacy_ocr"),
    region: str = typer.Option("full_card", "--region", "-r", help="Fingerprint region: full_card or artwork"),
    max_seconds: float = typer.Option(120.0, "--max-seconds", "-t", help="Give up after this many seconds"),
    sound: bool = typer.Option(True, "--sound/--no-sound", help="Beep on match"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Catalog database path"),
):
    """Scan continuously from the camera until a card is identified."""
    try:
        validate_numeric_range(max_seconds, 1, None, "max_seconds")
    except ConfigurationError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit(
        "[bold blue]Card Scanner[/bold blue]\n"
        "[dim]Hold a card steady inside the frame[/dim]",
        border_style="blue"
    ))

    catalog = _open_catalog(db_path)
    notifier = ScanNotifier(sound_enabled=sound)
    source = CameraFrameSource(camera_index=camera)

    with console.status("[bold green]Initializing camera...", spinner="dots"):
        if not source.initialize():
            console.print("[red]❌ Failed to initialize camera[/red]")
            raise typer.Exit(1)
    console.print("[green]✓ Camera initialized successfully[/green]")

    matched = {}

    def on_navigate(card_id, result):
        matched["result"] = result
        notifier.card_matched(card_id, result)

    controller = ScanCycleController(
        ScanOrchestrator(catalog, text_extractor=TesseractTextExtractor()),
        source,
        engine=engine or settings.SCANNER_ENGINE,
        metrics_recorder=get_metrics_store(),
        on_navigate=on_navigate,
        on_ambiguous=notifier.candidates_pending,
        on_error=notifier.scan_error,
        on_hint=lambda text: console.print(f"[dim]{text}[/dim]"),
        region_mode=_check_region(region),
    )

    try:
        card_id = asyncio.run(_run_scan_session(controller, max_seconds))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠ Scanning interrupted by user[/yellow]")
        card_id = None
    finally:
        source.release()

    if card_id is None:
        console.print("[yellow]No card identified[/yellow]")
        raise typer.Exit(1)

    result = matched.get("result")
    if result is not None:
        console.print(render_result(result, title="Identified Card"))
    else:
        console.print(f"[green]✓ Identified {card_id}[/green]")


@app.command("build-index")
def build_index(
    manifest: Path = typer.Argument(..., help="CSV manifest of reference images"),
    artwork_only: bool = typer.Option(False, "--artwork-only", help="Fingerprint the artwork box instead of the full card"),
    source: str = typer.Option("manifest", "--source", help="Catalog source label stored in metadata"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Catalog database path"),
):
    """Fingerprint reference images into the local catalog."""
    try:
        manifest_path = validate_file_path(manifest, must_exist=True)
        region = RegionFrame.artwork() if artwork_only else RegionFrame.full_card()
        with console.status("[bold green]Fingerprinting reference images...", spinner="dots"):
            stats = build_catalog_index(manifest_path, _open_catalog(db_path), region=region, source=source)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)

    table = Table(title="Catalog Index")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="white")
    for key, value in stats.items():
        table.add_row(key.capitalize(), str(value))
    console.print(table)


@app.command()
def catalog(
    db_path: Optional[str] = typer.Option(None, "--db", help="Catalog database path"),
):
    """Show catalog size and metadata."""
    store = _open_catalog(db_path)
    table = Table(title="Catalog")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Database", str(store.db_path))
    for key, value in store.stats().items():
        table.add_row(key.capitalize(), str(value))
    for key in (META_CATALOG_VERSION, META_CATALOG_SOURCE, META_CATALOG_UPDATED_AT):
        table.add_row(key, store.get_meta(key) or "[dim]unset[/dim]")
    console.print(table)


@app.command()
def metrics(
    days: int = typer.Option(7, "--days", "-d", help="Summarize the last N days"),
    export: Optional[Path] = typer.Option(None, "--export", help="Write raw metric rows to this CSV file"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Metrics database path"),
):
    """Summarize scan outcomes and latency."""
    ensure_cache_dir()
    store = ScanMetricsStore(db_path) if db_path else get_metrics_store()
    summary = store.summary(days)

    table = Table(title=f"Scan Metrics (last {max(1, days)} days)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Total scans", str(summary.total))
    table.add_row("Matched", str(summary.matched))
    table.add_row("Ambiguous", str(summary.ambiguous))
    table.add_row("False positives", str(summary.false_positive))
    table.add_row("Direct match rate", f"{summary.direct_match_rate:.1%}")
    table.add_row("Ambiguous rate", f"{summary.ambiguous_rate:.1%}")
    table.add_row("False positive rate", f"{summary.false_positive_rate:.1%}")
    table.add_row(
        "Avg latency",
        "n/a" if summary.avg_latency_ms is None else f"{summary.avg_latency_ms}ms",
    )
    console.print(table)

    if export is not None:
        rows = store.export_csv(export, days)
        console.print(f"[green]✓ Exported {rows} rows to {export}[/green]")


if __name__ == "__main__":
    app()
