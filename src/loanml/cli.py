"""Command-line interface for the loanml walkthrough."""

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.table import Table

from loanml.config.settings import Algorithm

if TYPE_CHECKING:
    from loanml.config.settings import PipelineConfig
    from loanml.walkthrough import WalkthroughResult

app = typer.Typer(
    name="loanml",
    help="Loan default classification walkthrough across model families.",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration YAML file.",
        exists=True,
        dir_okay=False,
    ),
]


def _load_pipeline_config(config: Path, output: Path | None = None) -> "PipelineConfig":
    """Load configuration, configure logging and apply the output override."""
    from loanml.config.loader import load_config
    from loanml.config.settings import OutputConfig
    from loanml.utils.logging import configure_logging

    console.print(f"[blue]Loading configuration from {config}[/blue]")
    try:
        pipeline_config = load_config(config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from e

    configure_logging(pipeline_config.session.log_level, json_output=pipeline_config.session.json_logs)
    if output is not None:
        pipeline_config = pipeline_config.model_copy(
            update={"output": OutputConfig(output_root=output)}
        )
    return pipeline_config


def _run(
    pipeline_config: "PipelineConfig",
    *,
    algorithms: list[Algorithm] | None = None,
    skip_grid: bool = False,
    skip_automl: bool = False,
) -> "WalkthroughResult":
    """Run the walkthrough in a fresh session, mapping failures to exit code 1."""
    from loanml.backend.session import init_session
    from loanml.exceptions import LoanMLError
    from loanml.walkthrough import run_walkthrough

    session = init_session(pipeline_config.session)
    try:
        return run_walkthrough(
            pipeline_config,
            session=session,
            algorithms=algorithms,
            skip_grid=skip_grid,
            skip_automl=skip_automl,
        )
    except (LoanMLError, FileNotFoundError) as e:
        session.shutdown()
        console.print(f"[red]Walkthrough failed: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def run(
    config: ConfigOption,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output root for saved models and result tables.",
        ),
    ] = None,
    no_mlflow: Annotated[
        bool,
        typer.Option("--no-mlflow", help="Skip MLflow tracking."),
    ] = False,
    skip_automl: Annotated[
        bool,
        typer.Option("--skip-automl", help="Skip the automated search."),
    ] = False,
    skip_grid: Annotated[
        bool,
        typer.Option("--skip-grid", help="Skip the grid search."),
    ] = False,
) -> None:
    """Run the full walkthrough: import, split, train every family, score on test."""
    from loanml.evaluation.experiment import track_walkthrough
    from loanml.evaluation.report import export_table, print_results_table
    from loanml.modeling.persistence import save_model

    pipeline_config = _load_pipeline_config(config, output)
    console.print(f"[blue]Running walkthrough for project '{pipeline_config.project}'[/blue]")

    result = _run(pipeline_config, skip_automl=skip_automl, skip_grid=skip_grid)
    try:
        console.print()
        results = result.results()
        print_results_table(results, console)

        artifacts = [export_table(results, pipeline_config.reports_dir, "results")]
        if result.automl is not None:
            leaderboard = result.automl.leaderboard
            print_results_table(leaderboard, console, title="AutoML Leaderboard")
            artifacts.append(export_table(leaderboard, pipeline_config.reports_dir, "leaderboard"))

        for model in result.models.values():
            model_path, _ = save_model(model, pipeline_config.models_dir)
            artifacts.append(model_path)
        console.print(f"\n[green]Saved {len(result.models)} models to: {pipeline_config.models_dir}[/green]")
        console.print(f"[green]Saved tables to: {pipeline_config.reports_dir}[/green]")

        if not no_mlflow:
            if track_walkthrough(pipeline_config, result, artifacts):
                console.print(f"[green]Logged to MLflow experiment '{pipeline_config.experiment_name}'[/green]")
            else:
                console.print("[yellow]MLflow tracking failed, see log for details[/yellow]")
    finally:
        result.session.shutdown()


@app.command()
def train(
    config: ConfigOption,
    algorithm: Annotated[
        Algorithm,
        typer.Option("--algorithm", "-a", help="Model family to train."),
    ] = Algorithm.GBM,
) -> None:
    """Train a single model family and print its test metrics."""
    pipeline_config = _load_pipeline_config(config)

    if algorithm == Algorithm.STACKEDENSEMBLE:
        console.print("[red]Error: stacked ensembles need base models; use 'loanml run'.[/red]")
        raise typer.Exit(code=1)

    result = _run(pipeline_config, algorithms=[algorithm], skip_grid=True, skip_automl=True)
    try:
        model = next(iter(result.models.values()))
        metrics = result.test_metrics[model.model_id]

        console.print()
        table = Table(title=f"{model.model_id} on test frame ({metrics.n_samples} rows)")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green", justify="right")
        for name, value in metrics.values.items():
            table.add_row(name, f"{value:.4f}")
        if model.actual_iterations is not None:
            table.add_row("iterations", str(model.actual_iterations))
        table.add_row("training time (s)", f"{model.training_time_s:.1f}")
        console.print(table)
    finally:
        result.session.shutdown()


@app.command()
def automl(
    config: ConfigOption,
    max_models: Annotated[
        int | None,
        typer.Option("--max-models", help="Base models to build (overrides config)."),
    ] = None,
    max_runtime_secs: Annotated[
        float | None,
        typer.Option("--max-runtime-secs", help="Time budget in seconds (overrides config)."),
    ] = None,
) -> None:
    """Run only the automated search and print its leaderboard."""
    from loanml.evaluation.report import print_results_table

    pipeline_config = _load_pipeline_config(config)
    overrides: dict[str, object] = {"enabled": True}
    if max_models is not None:
        overrides["max_models"] = max_models
    if max_runtime_secs is not None:
        overrides["max_runtime_secs"] = max_runtime_secs
    pipeline_config = pipeline_config.model_copy(
        update={"automl": pipeline_config.automl.model_copy(update=overrides)}
    )

    result = _run(pipeline_config, algorithms=[], skip_grid=True)
    try:
        aml = result.automl
        if aml is None or aml.leader is None:
            console.print("[red]AutoML built no models[/red]")
            raise typer.Exit(code=1)

        console.print()
        print_results_table(aml.leaderboard, console, title="AutoML Leaderboard")
        leader = aml.leader
        test_auc = result.test_metrics[leader.model_id].values.get("auc")
        if test_auc is not None:
            console.print(f"\n[green]Leader {leader.model_id}: test AUC {test_auc:.4f}[/green]")
        else:
            console.print(f"\n[green]Leader: {leader.model_id}[/green]")
    finally:
        result.session.shutdown()


@app.command()
def inspect(config: ConfigOption) -> None:
    """Import the dataset and print its column types."""
    from loanml.backend.session import init_session
    from loanml.evaluation.report import print_frame_summary
    from loanml.exceptions import LoanMLError
    from loanml.ingestion.loader import import_file

    pipeline_config = _load_pipeline_config(config)

    with init_session(pipeline_config.session) as session:
        try:
            loans = import_file(session, config=pipeline_config.data, destination_frame="loans")
            for column in pipeline_config.columns.as_factor:
                loans.asfactor(column)
        except (LoanMLError, FileNotFoundError) as e:
            console.print(f"[red]Import failed: {e}[/red]")
            raise typer.Exit(code=1) from e

        console.print()
        print_frame_summary(loans, console)

        target = pipeline_config.columns.target
        if target in loans.types and loans.types[target] == "categorical":
            counts = loans.data[target].value_counts(dropna=False)
            console.print(f"\n[blue]Target '{target}':[/blue]")
            for level, count in counts.items():
                console.print(f"  {level}: {count} ({count / loans.nrows:.1%})")


@app.command()
def version() -> None:
    """Show version information."""
    from loanml import __version__

    console.print(f"loanml version {__version__}")


if __name__ == "__main__":
    app()
