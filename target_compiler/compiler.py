"""
Main Compiler Orchestrator

Coordinates compilation of reference images into a .mind archive:
greyscale conversion, matching phase (0-50% progress), tracking phase
(50-100% progress), merge, and archive export/import.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
import typer

from .clustering import build as build_clusters
from .codec import CURRENT_VERSION, decode, encode
from .detector import detect
from .dispatcher import PyramidBuilder, make_tracking_strategy
from .errors import CompilerError, NotCompiled, VersionMismatch, WorkerFailure
from .greyscale import to_grey
from .matching import ClusterBuilder, Detector, extract_matching_features
from .progress import MATCHING_SHARE, MonotonicProgress, PhaseProgress, ProgressCallback
from .pyramid import build_matching_pyramid, build_tracking_pyramid
from .records import CompiledTarget, RawImage
from .tracking import TrackingExtractor
from .tracking_points import extract as extract_tracking_points

app = typer.Typer(help="Image Target Compiler")


@dataclass
class CompilerConfig:
    """Configuration for a compiler instance."""
    # Tracking phase
    avoid_worker: bool = False  # Run tracking on the caller's thread instead of a worker process
    worker_start_method: str = "spawn"
    worker_timeout: Optional[float] = None  # Seconds; None waits indefinitely

    # Matching phase
    yield_between_levels: bool = True

    # Output
    verbose: bool = True


@dataclass
class Collaborators:
    """Pyramid builders and feature extractors used by the pipeline."""
    matching_pyramid: PyramidBuilder = build_matching_pyramid
    tracking_pyramid: PyramidBuilder = build_tracking_pyramid
    detector: Detector = detect
    cluster_builder: ClusterBuilder = build_clusters
    tracking_extractor: TrackingExtractor = extract_tracking_points


@dataclass
class CompileStats:
    """Statistics collected during one compilation."""
    start_time: float = 0
    end_time: float = 0
    phases: Dict = field(default_factory=dict)

    def start(self):
        self.start_time = time.time()

    def stop(self):
        self.end_time = time.time()

    def record_phase(self, name: str, duration: float, **kwargs):
        self.phases[name] = {"duration_seconds": duration, **kwargs}

    @property
    def total_duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict:
        return {
            "total_duration_seconds": self.total_duration,
            "phases": self.phases,
        }


class Compiler:
    """
    Compiles reference images and holds the latest compiled targets.

    The latest successful compile or import becomes the state used by
    export; a failed compile or import leaves the previous state in place.
    """

    def __init__(self, config: Optional[CompilerConfig] = None,
                 collaborators: Optional[Collaborators] = None):
        self.config = config or CompilerConfig()
        self.collaborators = collaborators or Collaborators()
        self.console = Console(quiet=not self.config.verbose)
        self.data: Optional[List[CompiledTarget]] = None
        self.stats: Optional[CompileStats] = None
        self.last_import_error: Optional[VersionMismatch] = None

    async def compile_async(
        self,
        images: List[RawImage],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[CompiledTarget]:
        """
        Compile images into targets.

        Args:
            images: Reference images in the order targets should appear
            progress_callback: Receives non-decreasing percentages, 0 to 100

        Returns:
            One compiled target per image, in input order
        """
        progress = MonotonicProgress(progress_callback)
        progress.report(0.0)

        stats = CompileStats()
        stats.start()

        grey_images = [to_grey(image) for image in images]
        if not grey_images:
            progress.report(100.0)
            self.data = []
            return []

        # Phase 1: matching
        self.console.print(f"[blue]Matching phase: {len(grey_images)} target(s)...[/blue]")
        phase_start = time.time()
        matching_phase = PhaseProgress(progress.report, len(grey_images),
                                       offset=0.0, span=MATCHING_SHARE)
        matching_datasets = []
        for index, grey in enumerate(grey_images):
            levels = self.collaborators.matching_pyramid(grey)
            keyframes = await extract_matching_features(
                levels,
                self.collaborators.detector,
                self.collaborators.cluster_builder,
                on_level_done=matching_phase.for_target(index, len(levels)),
                yield_between_levels=self.config.yield_between_levels,
            )
            matching_datasets.append(keyframes)
        stats.record_phase("matching", time.time() - phase_start,
                           keyframes=sum(len(k) for k in matching_datasets))

        # Phase 2: tracking
        strategy = make_tracking_strategy(
            self.config.avoid_worker,
            self.collaborators.tracking_pyramid,
            self.collaborators.tracking_extractor,
            start_method=self.config.worker_start_method,
            timeout=self.config.worker_timeout,
        )
        self.console.print(f"[blue]Tracking phase ({type(strategy).__name__})...[/blue]")
        phase_start = time.time()
        tracking_datasets = await strategy.run(grey_images, progress.report)
        if len(tracking_datasets) != len(grey_images):
            raise WorkerFailure(
                f"Tracking returned {len(tracking_datasets)} datasets "
                f"for {len(grey_images)} targets"
            )
        stats.record_phase("tracking", time.time() - phase_start,
                           feature_sets=sum(len(t) for t in tracking_datasets))

        targets = [
            CompiledTarget(image=grey.dims_only(), matching_data=matching, tracking_data=tracking)
            for grey, matching, tracking in zip(grey_images, matching_datasets, tracking_datasets)
        ]

        if progress.percent < 100.0:
            progress.report(100.0)

        stats.stop()
        self.stats = stats
        self.data = targets
        self.console.print(f"[green]Compiled {len(targets)} target(s) "
                           f"in {stats.total_duration:.1f}s[/green]")
        return targets

    def compile(
        self,
        images: List[RawImage],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[CompiledTarget]:
        """Synchronous wrapper around compile_async (not for use inside a running event loop)."""
        return asyncio.run(self.compile_async(images, progress_callback))

    def export_data(self) -> bytes:
        """Encode the current targets as archive bytes."""
        if self.data is None:
            raise NotCompiled("Nothing to export: compile or import targets first")
        return encode(self.data, CURRENT_VERSION)

    def import_data(self, blob: bytes) -> List[CompiledTarget]:
        """
        Load targets from archive bytes.

        Returns an empty list on version mismatch, leaving the current state
        untouched; the mismatch is kept in `last_import_error`.
        """
        try:
            targets = decode(blob, CURRENT_VERSION)
        except VersionMismatch as e:
            self.last_import_error = e
            self.console.print(f"[yellow]Your compiled .mind might be outdated. "
                               f"Please recompile ({e})[/yellow]")
            return []

        self.last_import_error = None
        self.data = targets
        return targets

    def save(self, output_path: Path) -> Path:
        """Write the current targets to a .mind file."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.export_data())
        return output_path

    def load(self, archive_path: Path) -> List[CompiledTarget]:
        """Read targets from a .mind file."""
        return self.import_data(archive_path.read_bytes())


@app.command("compile")
def compile_command(
    images: List[Path] = typer.Argument(..., help="Reference image files, in target order"),
    output: Path = typer.Option(Path("targets.mind"), "--output", "-o", help="Output archive"),
    no_worker: bool = typer.Option(False, "--no-worker", help="Run tracking in-process"),
    worker_timeout: Optional[float] = typer.Option(None, help="Tracking worker timeout (seconds)"),
):
    """
    Compile reference images into a .mind archive.
    """
    from utils.image import load_raw_image
    from utils.validation import validate_image_file

    console = Console()
    errors = []
    for image_path in images:
        _, _, image_errors = validate_image_file(image_path)
        errors.extend(image_errors)
    if errors:
        for error in errors:
            console.print(f"[bold red]Invalid image:[/bold red] {error}")
        raise typer.Exit(1)

    console.print(Panel.fit(
        "[bold blue]Image Target Compiler[/bold blue]\n"
        f"Images: {len(images)}\n"
        f"Output: {output}",
        border_style="blue"
    ))

    config = CompilerConfig(avoid_worker=no_worker, worker_timeout=worker_timeout, verbose=False)
    compiler = Compiler(config)

    try:
        raw_images = [load_raw_image(p) for p in images]
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Compiling", total=100)
            compiler.compile(raw_images, lambda percent: progress.update(task, completed=percent))
        compiler.save(output)
    except CompilerError as e:
        console.print(f"[bold red]Compilation failed:[/bold red] {e}")
        raise typer.Exit(1)

    size_kb = output.stat().st_size / 1024
    console.print(Panel.fit(
        f"[bold green]Compilation Complete![/bold green]\n\n"
        f"Targets: {len(compiler.data)}\n"
        f"Total time: {compiler.stats.total_duration:.1f}s\n"
        f"Output: {output} ({size_kb:.1f} KB)",
        border_style="green"
    ))


@app.command("info")
def info_command(archive_path: Path = typer.Argument(..., help=".mind archive to inspect")):
    """Show compiled archive information."""
    from utils.validation import validate_archive

    console = Console()
    is_valid, info, errors = validate_archive(archive_path, CURRENT_VERSION)
    if not is_valid:
        for error in errors:
            console.print(f"[bold red]Error:[/bold red] {error}")
        raise typer.Exit(1)

    console.print(f"[bold]Archive: {archive_path.name}[/bold]")
    console.print(f"  Version: {info['version']}")
    console.print(f"  Size: {info['file_size'] / 1024:.1f} KB")
    for index, target in enumerate(info["targets"]):
        console.print(
            f"  [blue]Target {index}[/blue]: {target['width']}x{target['height']}, "
            f"{target['keyframes']} keyframes ({target['feature_points']} points), "
            f"{target['tracking_levels']} tracking levels ({target['tracking_points']} points)"
        )


@app.command("stages")
def list_stages():
    """List all compilation stages."""
    stages = [
        ("1. Greyscale", "Convert images to single-channel intensity"),
        ("2. Matching", "Detect and cluster feature points per pyramid level"),
        ("3. Tracking", "Extract tracking points per pyramid level"),
        ("4. Encode", "Write the versioned .mind archive"),
    ]

    console = Console()
    console.print("[bold]Compilation Stages:[/bold]\n")
    for name, desc in stages:
        console.print(f"  [blue]{name}[/blue]: {desc}")


if __name__ == "__main__":
    app()
