"""
MLflow experiment tracking.

One parent run per walkthrough, with a nested run per model holding its
hyperparameters and test metrics. Tracking is best effort: a tracking
failure is logged as a warning and never fails the walkthrough.
"""

import math
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import mlflow
from mlflow.exceptions import MlflowException

from loanml import __version__
from loanml.config.settings import PipelineConfig
from loanml.evaluation.metrics import ModelMetrics
from loanml.utils.logging import get_logger

if TYPE_CHECKING:
    from loanml.modeling.training import Model
    from loanml.walkthrough import WalkthroughResult

log = get_logger(__name__)

# Errors that mean the tracking server or store is unusable
TRACKING_ERRORS = (MlflowException, OSError)


def _flatten_params(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """MLflow params are flat strings."""
    flat: dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten_params(value, prefix=f"{name}."))
        else:
            flat[name] = str(value)
    return flat


def _finite(metrics: ModelMetrics, prefix: str) -> dict[str, float]:
    return {f"{prefix}{k}": v for k, v in metrics.values.items() if math.isfinite(v)}


class Experiment:
    """
    MLflow experiment for walkthrough runs.

    Each walkthrough answers one question: which model family separates
    good from bad loans best on held-out data?
    """

    def __init__(self, config: PipelineConfig) -> None:
        """
        Initialize experiment.

        Args:
            config: Pipeline configuration.
        """
        self.config = config
        self._run_id: str | None = None

    def setup(self) -> None:
        """Point MLflow at the tracking server and experiment."""
        mlflow.set_tracking_uri(self.config.mlflow.tracking_uri)
        mlflow.set_experiment(self.config.experiment_name)

        log.info(
            "Experiment setup",
            name=self.config.experiment_name,
            tracking_uri=self.config.mlflow.tracking_uri,
        )

    def start_run(self, run_name: str | None = None) -> str:
        """
        Start the parent run.

        Args:
            run_name: Optional run name.

        Returns:
            Run ID.
        """
        self.setup()
        tags = {
            "project": self.config.project,
            "target": self.config.columns.target,
            "loanml_version": __version__,
        }
        run = mlflow.start_run(run_name=run_name, tags=tags)
        self._run_id = run.info.run_id
        log.info("Started MLflow run", run_id=self._run_id)
        return self._run_id

    def end_run(self) -> None:
        """End the current MLflow run."""
        mlflow.end_run()
        log.info("Ended MLflow run", run_id=self._run_id)

    def log_model_run(self, model: "Model", source: str, test_metrics: ModelMetrics | None) -> None:
        """Log one model as a nested run."""
        with mlflow.start_run(run_name=model.model_id, nested=True):
            mlflow.set_tags({"algorithm": model.algorithm, "source": source, "task": model.task})
            mlflow.log_params(_flatten_params(model.params))
            mlflow.log_metrics(_finite(model.metrics(), "train_"))
            if model.validation_metrics is not None:
                mlflow.log_metrics(_finite(model.validation_metrics, "valid_"))
            if test_metrics is not None:
                mlflow.log_metrics(_finite(test_metrics, "test_"))
            for step, entry in enumerate(model.scoring_history):
                mlflow.log_metrics(
                    {k: v for k, v in entry.items() if k != "iterations" and math.isfinite(v)},
                    step=int(entry.get("iterations", step)),
                )

    def log_artifact(self, path: Path, artifact_path: str | None = None) -> None:
        """Log an artifact."""
        mlflow.log_artifact(str(path), artifact_path)

    def log_walkthrough(self, result: "WalkthroughResult", artifacts: list[Path] | None = None) -> None:
        """
        Log a complete walkthrough: parent run, one nested run per model.

        Args:
            result: Walkthrough result.
            artifacts: Files (saved models, exported tables) to attach.
        """
        self.start_run(f"walkthrough-{datetime.now():%Y%m%d-%H%M}")
        try:
            frames = result.frames
            mlflow.log_params(
                {
                    "n_rows": frames["loans"].nrows,
                    "n_train": frames["train"].nrows,
                    "n_test": frames["test"].nrows,
                    "n_predictors": len(result.x),
                    "excluded": ",".join(self.config.columns.exclude),
                    "split_seed": self.config.split.seed,
                }
            )
            for model_id, model in result.models.items():
                self.log_model_run(model, result.sources[model_id], result.test_metrics.get(model_id))
            if result.automl is not None and result.automl.leader is not None:
                mlflow.set_tag("automl_leader", result.automl.leader.model_id)
            for path in artifacts or []:
                self.log_artifact(path)
        finally:
            self.end_run()


def track_walkthrough(
    config: PipelineConfig,
    result: "WalkthroughResult",
    artifacts: list[Path] | None = None,
) -> bool:
    """
    Log a walkthrough to MLflow, downgrading tracking failures to warnings.

    Returns:
        True if the run was logged.
    """
    try:
        Experiment(config).log_walkthrough(result, artifacts)
    except TRACKING_ERRORS as e:
        log.warning(
            "MLflow tracking failed, continuing without it",
            tracking_uri=config.mlflow.tracking_uri,
            error=str(e),
        )
        return False
    return True
