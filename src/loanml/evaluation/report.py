"""
Result tables.

Prints frame summaries, per-model results and leaderboards as rich
tables, and exports result tables to CSV.
"""

import math
from datetime import datetime
from pathlib import Path

import pandas as pd
from rich.console import Console
from rich.table import Table

from loanml.backend.frame import Frame
from loanml.utils.logging import get_logger

log = get_logger(__name__)

_TYPE_STYLES = {"numeric": "green", "categorical": "yellow", "text": "magenta"}


def _fmt(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        if math.isnan(value):
            return "-"
        return f"{value:.4f}" if abs(value) < 100 else f"{value:.1f}"
    return str(value)


def print_frame_summary(frame: Frame, console: Console) -> None:
    """Print one row per column: type, missing values, distinct values, mean."""
    summary = frame.describe()
    rows, cols = frame.dim

    table = Table(title=f"Frame '{frame.frame_id}' ({rows} rows x {cols} columns)")
    table.add_column("Column", style="cyan")
    table.add_column("Type")
    table.add_column("Missing", justify="right")
    table.add_column("Distinct", justify="right")
    table.add_column("Mean", justify="right", style="dim")

    for row in summary.itertuples(index=False):
        style = _TYPE_STYLES.get(row.type, "white")
        table.add_row(
            row.column,
            f"[{style}]{row.type}[/{style}]",
            str(row.missing),
            str(row.distinct),
            _fmt(row.mean),
        )

    console.print(table)


def print_results_table(
    results: pd.DataFrame,
    console: Console,
    *,
    title: str = "Test Set Results",
    highlight: str | None = "auc",
) -> None:
    """
    Print a results or leaderboard DataFrame.

    Args:
        results: One row per model; 'model_id' and 'algorithm' first.
        console: Rich console for output.
        title: Table title.
        highlight: Metric column shown in bold green.
    """
    if results.empty:
        console.print(f"[yellow]{title}: no models[/yellow]")
        return

    table = Table(title=title)
    for column in results.columns:
        if column == "model_id":
            table.add_column("Model", style="cyan")
        elif column in ("algorithm", "source"):
            table.add_column(column.capitalize())
        elif column == highlight:
            table.add_column(column.upper(), style="bold green", justify="right")
        else:
            table.add_column(column, style="dim" if column.endswith("_s") else None, justify="right")

    for row in results.itertuples(index=False):
        table.add_row(*(_fmt(value) for value in row))

    console.print(table)


def export_table(df: pd.DataFrame, output_dir: Path, name: str, *, timestamp: str | None = None) -> Path:
    """
    Write a table to ``{output_dir}/{name}_{timestamp}.csv``.

    Args:
        df: Table to write.
        output_dir: Target directory (created if missing).
        name: File name prefix.
        timestamp: Optional timestamp string. If None, uses current time.

    Returns:
        Path of the written file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    path = output_dir / f"{name}_{timestamp}.csv"
    df.to_csv(path, index=False)
    log.info("Saved table", path=str(path), rows=len(df))
    return path
