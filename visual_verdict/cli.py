"""CLI entry point for the visual verdict engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from visual_verdict.ai.similarity import SimilarityModelAdapter, shared_model_handle
from visual_verdict.baseline.store import BaselineStore, read_image
from visual_verdict.capture import FileCaptureProvider
from visual_verdict.comparator.hybrid import HybridDecisionEngine
from visual_verdict.comparator.regions import parse_ignore_regions
from visual_verdict.models.config import VisualConfig
from visual_verdict.models.verdict import BaselineIdentity, ValidationStatus
from visual_verdict.orchestrator import ValidationOrchestrator
from visual_verdict.reporter.json_report import write_json_report

console = Console()

DEFAULT_CONFIG = "visual-config.json"

STATUS_STYLES = {
    ValidationStatus.SUCCESS: "green",
    ValidationStatus.BASELINE_CREATED: "blue",
    ValidationStatus.SKIPPED: "yellow",
    ValidationStatus.IGNORED: "yellow",
    ValidationStatus.WARNING: "yellow",
    ValidationStatus.FAILURE: "red",
    ValidationStatus.ERROR: "red",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str, **overrides) -> VisualConfig:
    """Load the config file if present, then env vars, then CLI overrides."""
    config_path = Path(path)
    if config_path.exists():
        cfg = VisualConfig.load(config_path)
    elif path != DEFAULT_CONFIG:
        console.print(f"[red]Config file not found: {path}[/red]")
        sys.exit(2)
    else:
        cfg = VisualConfig()
    cfg = VisualConfig.from_env(cfg)
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return cfg.with_overrides(**overrides) if overrides else cfg


def identity_options(func):
    func = click.option("--suffix", default=None, help="Optional checkpoint suffix")(func)
    func = click.option("--step", "-s", "step_id", required=True, help="Test step identifier")(func)
    func = click.option("--class", "-k", "class_id", required=True, help="Test class identifier")(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression verdict engine"""
    setup_logging(verbose)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def init(config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config} already exists. Overwrite?"):
            return
    VisualConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False))
@click.argument("actual", type=click.Path(exists=True, dir_okay=False))
@click.option("--tolerance", "-t", type=float, default=None, help="Max acceptable diff fraction")
@click.option("--ignore", "-i", default=None, help='Ignore regions, e.g. "10,20,30,40;50,60,70,80"')
@click.option("--diff-out", "-o", type=click.Path(dir_okay=False), default=None, help="Where to write the diff image")
@click.option("--no-model", is_flag=True, help="Disable the similarity model")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def compare(baseline: str, actual: str, tolerance, ignore, diff_out, no_model: bool, config: str) -> None:
    """Compare two image files and print the hybrid verdict."""
    cfg = load_config(config, model_enabled=False if no_model else None)
    engine = HybridDecisionEngine.from_config(cfg)
    result = engine.compare(
        read_image(Path(baseline)),
        read_image(Path(actual)),
        cfg.tolerance if tolerance is None else tolerance,
        parse_ignore_regions(ignore),
    )

    table = Table(title="Comparison")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Match", "[green]yes[/green]" if result.match else "[red]no[/red]")
    table.add_row("Strategy", result.strategy.name)
    table.add_row("Diff", f"{result.diff_percentage:.4%}")
    table.add_row("Tolerance", f"{result.tolerance:.4%}")
    table.add_row("Pixels", f"{result.pixel_result.diff_pixel_count}/{result.pixel_result.total_pixel_count}")
    if result.was_scaled:
        table.add_row("Scaled", f"{result.scale_factor:.2f}x")
    if result.similarity_result is not None:
        sim = result.similarity_result
        table.add_row("AI similarity", f"{sim.similarity:.4f}" if sim.ok else f"[red]{sim.error}[/red]")
    console.print(table)

    if diff_out:
        Path(diff_out).parent.mkdir(parents=True, exist_ok=True)
        result.diff_image.save(diff_out, format="PNG")
        console.print(f"  Diff image: [blue]{diff_out}[/blue]")
    if not result.match:
        sys.exit(1)


@cli.command()
@click.argument("actual", type=click.Path(exists=True, dir_okay=False))
@identity_options
@click.option("--tolerance", "-t", type=float, default=None, help="Max acceptable diff fraction")
@click.option("--policy", "-p", default="DEFAULT", help="FAIL, WARN, IGNORE or DEFAULT")
@click.option("--ignore", "-i", default=None, help='Ignore regions, e.g. "10,20,30,40;50,60,70,80"')
@click.option("--report", "-r", type=click.Path(dir_okay=False), default=None, help="Write a JSON report")
@click.option("--record", is_flag=True, help="Re-baseline: store the screenshot as the new baseline")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def validate(
    actual: str, class_id: str, step_id: str, suffix, tolerance, policy: str, ignore, report, record: bool, config: str
) -> None:
    """Validate a captured screenshot against its baseline."""
    cfg = load_config(config, record_baselines=True if record else None)
    orchestrator = ValidationOrchestrator(cfg)
    identity = BaselineIdentity(class_id=class_id, step_id=step_id, suffix=suffix)
    verdict = orchestrator.validate(FileCaptureProvider(actual), identity, tolerance, policy, ignore)

    style = STATUS_STYLES[verdict.status]
    console.print(f"[{style}]{verdict.status.value}[/{style}] {escape(verdict.message)}")
    if verdict.diff_path:
        console.print(f"  Diff image: [blue]{verdict.diff_path}[/blue]")
    if report:
        write_json_report([verdict], Path(report))
        console.print(f"  JSON report: [blue]{report}[/blue]")
    if verdict.should_fail:
        sys.exit(1)


@cli.command("update-baseline")
@click.argument("actual", type=click.Path(exists=True, dir_okay=False))
@identity_options
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def update_baseline(actual: str, class_id: str, step_id: str, suffix, config: str) -> None:
    """Replace a baseline with a new screenshot, archiving the old one."""
    cfg = load_config(config)
    store = BaselineStore(cfg.baseline_root, cfg.channel, cfg.locale)
    identity = BaselineIdentity(class_id=class_id, step_id=step_id, suffix=suffix)
    path = store.update_baseline(identity, read_image(Path(actual)))
    console.print(f"[green]Baseline updated:[/green] {path}")


@cli.command()
@click.option("--days", "-d", type=float, default=7.0, help="Delete artifacts older than this many days")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def cleanup(days: float, config: str) -> None:
    """Delete old actual/diff artifacts (baselines are kept)."""
    cfg = load_config(config)
    store = BaselineStore(cfg.baseline_root, cfg.channel, cfg.locale)
    deleted = store.cleanup(days)
    console.print(f"[green]Deleted {deleted} old artifact(s)[/green]")


@cli.command("model-status")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def model_status(config: str) -> None:
    """Report whether the similarity model can be loaded."""
    cfg = load_config(config)
    if not cfg.model_enabled:
        console.print("[yellow]Similarity model disabled by configuration[/yellow]")
        return
    adapter = SimilarityModelAdapter(shared_model_handle(cfg.model_weights_path), cfg.model_threshold)
    if adapter.available():
        console.print("[green]Similarity model available[/green]")
    else:
        console.print(f"[red]Similarity model unavailable:[/red] {adapter.init_error}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
