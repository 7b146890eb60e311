"""
End-to-end loan default walkthrough.

Runs every step in order: session bootstrap, CSV import, recasting,
partitioning, column selection, one model per enabled family, a stacked
ensemble, a grid search, an automated search, and test-set scoring.
"""

from dataclasses import dataclass, field

import pandas as pd

from loanml.backend.frame import Frame
from loanml.backend.session import Session, init_session
from loanml.config.settings import Algorithm, PipelineConfig
from loanml.evaluation.metrics import TASK_METRICS, ModelMetrics
from loanml.ingestion.loader import import_file
from loanml.modeling.automl import AutoML
from loanml.modeling.columns import select_columns
from loanml.modeling.early_stopping import EarlyStopping
from loanml.modeling.ensemble import stack
from loanml.modeling.grid import Grid, SearchCriteria, grid_search
from loanml.modeling.training import Model, TrainingRequest, train
from loanml.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class WalkthroughResult:
    """
    Everything produced by a walkthrough run.

    Attributes:
        session: Session owning all frames and models (still running).
        frames: Frames by role: 'loans', 'train', 'valid' (if any), 'test'.
        x: Predictor names.
        y: Target name.
        models: Trained models in training order, by model id.
        sources: Origin of each model: 'family', 'grid' or 'automl'.
        test_metrics: Test-set metrics by model id.
        grid: Grid search result, if run.
        automl: Automated search, if run.
    """

    session: Session
    frames: dict[str, Frame]
    x: list[str]
    y: str
    models: dict[str, Model] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)
    test_metrics: dict[str, ModelMetrics] = field(default_factory=dict)
    grid: Grid | None = None
    automl: AutoML | None = None

    def add(self, model: Model, source: str) -> None:
        """Record a model and where it came from."""
        self.models[model.model_id] = model
        self.sources[model.model_id] = source

    def results(self) -> pd.DataFrame:
        """One row per model with its test-set metrics, in training order."""
        rows = []
        for model_id, model in self.models.items():
            metrics = self.test_metrics.get(model_id)
            row = {
                "model_id": model_id,
                "algorithm": model.algorithm,
                "source": self.sources[model_id],
                "training_time_s": round(model.training_time_s, 3),
            }
            if metrics is not None:
                row.update({name: metrics.values.get(name) for name in TASK_METRICS[metrics.task]})
            rows.append(row)
        return pd.DataFrame(rows)


def _partition(frames: list[Frame]) -> dict[str, Frame]:
    """Map split outputs to train / valid / test roles."""
    roles = {"train": frames[0], "test": frames[-1]}
    if len(frames) >= 3:
        roles["valid"] = frames[1]
    return roles


def run_walkthrough(
    config: PipelineConfig,
    *,
    session: Session | None = None,
    skip_grid: bool = False,
    skip_automl: bool = False,
    algorithms: list[Algorithm] | None = None,
) -> WalkthroughResult:
    """
    Run the walkthrough described by a configuration.

    Args:
        config: Pipeline configuration.
        session: Running session to use; a new one is started if omitted.
        skip_grid: Skip the grid search even if enabled in config.
        skip_automl: Skip the automated search even if enabled in config.
        algorithms: Families to train; defaults to ``config.models.enabled``.

    Returns:
        WalkthroughResult. The session stays alive; shutting it down is
        the caller's job.
    """
    session = session or init_session(config.session)
    log.info("Starting walkthrough", project=config.project, session_id=session.session_id)

    loans = import_file(session, config=config.data, destination_frame="loans")
    for column in config.columns.as_factor:
        loans.asfactor(column)

    parts = loans.split_frame(
        config.split.ratios,
        destination_frames=config.split.destination_frames,
        seed=config.split.seed,
    )
    roles = _partition(parts)
    train_frame, valid_frame, test_frame = roles["train"], roles.get("valid"), roles["test"]

    x, y = select_columns(train_frame, config.columns.target, config.columns.exclude)
    result = WalkthroughResult(
        session=session,
        frames={"loans": loans, **roles},
        x=x,
        y=y,
    )

    models_cfg = config.models
    policy = (
        EarlyStopping.from_config(models_cfg.early_stopping)
        if models_cfg.early_stopping is not None
        else None
    )
    enabled = algorithms if algorithms is not None else models_cfg.enabled

    base_models: list[Model] = []
    for algorithm in enabled:
        if algorithm == Algorithm.STACKEDENSEMBLE:
            continue
        model = train(
            TrainingRequest(
                y=y,
                training_frame=train_frame,
                algorithm=algorithm.value,
                x=x,
                validation_frame=valid_frame,
                params=models_cfg.hyperparameters.get(algorithm.value, {}),
                early_stopping=policy,
                nfolds=models_cfg.nfolds,
                seed=models_cfg.seed,
            )
        )
        base_models.append(model)
        result.add(model, "family")

    if Algorithm.STACKEDENSEMBLE in enabled:
        if len(base_models) >= 2:
            ensemble = stack(
                base_models,
                train_frame,
                validation_frame=valid_frame,
                metalearner_params=models_cfg.hyperparameters.get(Algorithm.STACKEDENSEMBLE.value),
                nfolds=models_cfg.nfolds,
                seed=models_cfg.seed,
            )
            result.add(ensemble, "family")
        else:
            log.warning("Skipping stacked ensemble", reason="fewer than 2 base models")

    if config.grid.enabled and not skip_grid:
        grid_cfg = config.grid
        fixed = {
            k: v
            for k, v in models_cfg.hyperparameters.get(grid_cfg.algorithm.value, {}).items()
            if k not in grid_cfg.hyper_params
        }
        grid = grid_search(
            TrainingRequest(
                y=y,
                training_frame=train_frame,
                algorithm=grid_cfg.algorithm.value,
                x=x,
                validation_frame=valid_frame,
                params=fixed,
                nfolds=models_cfg.nfolds,
                seed=models_cfg.seed,
            ),
            grid_cfg.hyper_params,
            SearchCriteria.from_config(grid_cfg.search_criteria),
        )
        result.grid = grid
        if grid.best_model is not None:
            result.add(grid.best_model, "grid")

    if config.automl.enabled and not skip_automl:
        automl = AutoML.from_config(config.automl)
        leader = automl.train(y=y, training_frame=train_frame, x=x, validation_frame=valid_frame)
        result.automl = automl
        if leader is not None:
            result.add(leader, "automl")

    for model_id, model in result.models.items():
        result.test_metrics[model_id] = model.model_performance(test_frame)
        log.info(
            "Scored on test frame",
            model_id=model_id,
            **{k: round(v, 4) for k, v in result.test_metrics[model_id].values.items()},
        )

    log.info("Walkthrough complete", models=len(result.models))
    return result
