"""
Hyperparameter grid search.

Trains one model per hyperparameter combination of a family, either every
combination (Cartesian) or a seeded sample without replacement
(RandomDiscrete), within a model-count and runtime budget.
"""

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import pandas as pd
from sklearn.model_selection import ParameterGrid, ParameterSampler

from loanml.config.settings import SearchCriteriaConfig
from loanml.evaluation.metrics import Task, is_maximized, resolve_metric
from loanml.exceptions import EvaluationError, InvalidParameterError, SchemaError
from loanml.modeling.columns import detect_task
from loanml.modeling.early_stopping import stop_early
from loanml.modeling.training import Model, TrainingRequest, train
from loanml.utils.logging import get_logger, log_context

log = get_logger(__name__)


@dataclass(frozen=True)
class SearchCriteria:
    """
    Search strategy and budget.

    Attributes:
        strategy: 'Cartesian' walks every combination in order;
            'RandomDiscrete' samples combinations without replacement.
        max_models: Stop after this many models were built.
        max_runtime_secs: Stop starting new models after this many seconds.
        seed: Sampling seed for RandomDiscrete.
        stopping_rounds: Grid-level score keeper patience (0 disables).
        stopping_metric: Metric the score keeper watches ('auto' per task).
        stopping_tolerance: Relative improvement threshold.
    """

    strategy: Literal["Cartesian", "RandomDiscrete"] = "Cartesian"
    max_models: int | None = None
    max_runtime_secs: float | None = None
    seed: int | None = None
    stopping_rounds: int = 0
    stopping_metric: str = "auto"
    stopping_tolerance: float = 1e-3

    def __post_init__(self) -> None:
        if self.strategy not in ("Cartesian", "RandomDiscrete"):
            msg = f"Unknown search strategy '{self.strategy}'"
            raise InvalidParameterError(msg)
        if self.max_models is not None and self.max_models < 1:
            msg = "max_models must be >= 1"
            raise InvalidParameterError(msg)
        if self.max_runtime_secs is not None and self.max_runtime_secs <= 0:
            msg = "max_runtime_secs must be > 0"
            raise InvalidParameterError(msg)

    @classmethod
    def from_config(cls, config: SearchCriteriaConfig) -> "SearchCriteria":
        """Build search criteria from the grid configuration section."""
        return cls(
            strategy=config.strategy,
            max_models=config.max_models,
            max_runtime_secs=config.max_runtime_secs,
            seed=config.seed,
            stopping_rounds=config.stopping_rounds,
            stopping_metric=config.stopping_metric,
            stopping_tolerance=config.stopping_tolerance,
        )


@dataclass
class Grid:
    """
    Result of a grid search.

    Attributes:
        grid_id: Key of the search.
        algorithm: Family that was searched.
        task: Task of the searched target.
        hyper_params: Searched values per hyperparameter.
        sort_metric: Default ranking metric.
        models: Successfully trained models in training order.
        model_params: Searched combination of each model, by model id.
        failed_params: Combinations whose training failed, with the error.
    """

    grid_id: str
    algorithm: str
    task: Task
    hyper_params: dict[str, list[Any]]
    sort_metric: str
    models: list[Model] = field(default_factory=list)
    model_params: dict[str, dict[str, Any]] = field(default_factory=dict)
    failed_params: list[dict[str, Any]] = field(default_factory=list)

    def get_grid(self, sort_by: str | None = None, decreasing: bool | None = None) -> list[Model]:
        """
        Models sorted by a metric.

        Args:
            sort_by: Metric name; defaults to the grid's sort metric.
            decreasing: Sort order; defaults to best first.

        Returns:
            New list of models.
        """
        metric = resolve_metric(sort_by or self.sort_metric, self.task)
        if decreasing is None:
            decreasing = is_maximized(metric)
        return sorted(
            self.models,
            key=lambda m: m.ranking_metrics.metric(metric),
            reverse=decreasing,
        )

    @property
    def best_model(self) -> Model | None:
        """Top model by the sort metric, or None if nothing was built."""
        ranked = self.get_grid()
        return ranked[0] if ranked else None

    def summary(self, sort_by: str | None = None) -> pd.DataFrame:
        """One row per model: searched hyperparameters and the ranking metric."""
        metric = resolve_metric(sort_by or self.sort_metric, self.task)
        rows = [
            {
                **self.model_params.get(m.model_id, {}),
                "model_id": m.model_id,
                metric: m.ranking_metrics.metric(metric),
            }
            for m in self.get_grid(metric)
        ]
        return pd.DataFrame(rows, columns=[*self.hyper_params, "model_id", metric])


def _enumerate(hyper_params: dict[str, list[Any]], criteria: SearchCriteria) -> list[dict[str, Any]]:
    """Combinations in training order; the search loop applies the budget."""
    grid = ParameterGrid(hyper_params)
    if criteria.strategy == "Cartesian":
        return list(grid)
    # seeded permutation of every combination
    return list(ParameterSampler(hyper_params, n_iter=len(grid), random_state=criteria.seed))


def grid_search(
    request: TrainingRequest,
    hyper_params: dict[str, list[Any]],
    search_criteria: SearchCriteria | None = None,
    *,
    grid_id: str | None = None,
) -> Grid:
    """
    Train one model per hyperparameter combination.

    ``request`` supplies everything except the searched hyperparameters;
    its ``params`` are fixed for every model. Combinations that fail with
    a parameter or evaluation error are recorded in ``failed_params`` and
    the search continues.

    Args:
        request: Base training request.
        hyper_params: Hyperparameter name -> candidate values.
        search_criteria: Strategy and budget; Cartesian without limits
            if omitted.
        grid_id: Key of the search; generated when omitted.

    Returns:
        Grid holding the trained models.

    Raises:
        InvalidParameterError: If the search space is empty or overlaps
            the fixed parameters.
        SchemaError: If the target column is missing.
    """
    criteria = search_criteria or SearchCriteria()
    frame = request.training_frame
    session = frame.session
    session.ensure_alive()

    if not hyper_params or any(not values for values in hyper_params.values()):
        msg = f"Every hyperparameter needs at least one value: {hyper_params}"
        raise InvalidParameterError(msg)
    overlap = sorted(set(hyper_params) & set(request.params))
    if overlap:
        msg = f"Hyperparameters both fixed and searched: {overlap}"
        raise InvalidParameterError(msg)
    if request.y not in frame.types:
        msg = f"Response column '{request.y}' not found in frame '{frame.frame_id}'"
        raise SchemaError(msg)

    task = detect_task(frame, request.y)
    grid = Grid(
        grid_id=grid_id or session.next_key(f"{request.algorithm}_grid"),
        algorithm=request.algorithm,
        task=task,
        hyper_params={k: list(v) for k, v in hyper_params.items()},
        sort_metric=resolve_metric("auto", task),
    )
    combinations = _enumerate(hyper_params, criteria)

    stopping_metric = resolve_metric(criteria.stopping_metric, task, for_stopping=True)
    maximize = is_maximized(stopping_metric)
    best_scores: list[float] = []

    start = time.perf_counter()
    with log_context(grid_id=grid.grid_id, algorithm=request.algorithm):
        log.info(
            "Starting grid search",
            strategy=criteria.strategy,
            combinations=len(combinations),
            max_models=criteria.max_models,
            max_runtime_secs=criteria.max_runtime_secs,
        )
        for i, combination in enumerate(combinations, start=1):
            if criteria.max_models is not None and len(grid.models) >= criteria.max_models:
                log.info("Model budget reached", built=len(grid.models))
                break
            elapsed = time.perf_counter() - start
            if criteria.max_runtime_secs is not None and elapsed >= criteria.max_runtime_secs:
                log.info("Runtime budget reached", elapsed_s=round(elapsed, 1))
                break

            model_request = dataclasses.replace(
                request,
                params={**request.params, **combination},
                model_id=f"{grid.grid_id}_model_{i}",
            )
            try:
                model = train(model_request)
            except (InvalidParameterError, EvaluationError) as e:
                log.warning("Grid model failed", params=combination, error=str(e))
                grid.failed_params.append({"params": combination, "error": str(e)})
                continue

            grid.models.append(model)
            grid.model_params[model.model_id] = combination

            score = model.ranking_metrics.metric(stopping_metric)
            if best_scores:
                previous = best_scores[-1]
                score = max(score, previous) if maximize else min(score, previous)
            best_scores.append(score)
            if stop_early(
                best_scores,
                criteria.stopping_rounds,
                criteria.stopping_tolerance,
                maximize=maximize,
            ):
                log.info("Grid stopped improving", built=len(grid.models), metric=stopping_metric)
                break

        log.info(
            "Grid search complete",
            built=len(grid.models),
            failed=len(grid.failed_params),
            elapsed_s=round(time.perf_counter() - start, 1),
        )
    return grid
