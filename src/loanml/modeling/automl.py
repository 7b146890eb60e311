"""
Automated model search.

Runs a fixed plan within a model-count and runtime budget:

1. one model with default hyperparameters per enabled family,
2. an Optuna TPE search over family and hyperparameters while budget
   remains,
3. two stacked ensembles, one over all models and one over the best model
   of each family.

Every model is ranked on a leaderboard by the sort metric.
"""

import time
from typing import Any

import optuna
import pandas as pd
from optuna.samplers import TPESampler
from optuna.trial import TrialState

from loanml.backend.frame import Frame
from loanml.config.settings import AutoMLConfig
from loanml.evaluation.metrics import TASK_METRICS, Task, is_maximized, resolve_metric
from loanml.exceptions import EvaluationError, InvalidParameterError, SchemaError
from loanml.modeling.columns import detect_task
from loanml.modeling.ensemble import stack
from loanml.modeling.estimators import list_algorithms
from loanml.modeling.training import Model, TrainingRequest, train
from loanml.utils.logging import get_logger, log_context

log = get_logger(__name__)

DEFAULT_MAX_RUNTIME_SECS = 3600.0

ENSEMBLE_FAMILY = "stackedensemble"


def suggest_params(trial: optuna.Trial, algorithm: str, task: Task) -> dict[str, Any]:
    """
    Sample hyperparameters for a family.

    Parameter names in the study are prefixed with the family so each
    family keeps its own search space.
    """
    p = f"{algorithm}."
    if algorithm == "glm":
        if task == "regression":
            return {
                "alpha": trial.suggest_float(p + "alpha", 1e-4, 1.0, log=True),
                "l1_ratio": trial.suggest_float(p + "l1_ratio", 0.0, 1.0),
            }
        return {"C": trial.suggest_float(p + "C", 1e-3, 1e2, log=True)}
    if algorithm == "drf":
        return {
            "n_estimators": trial.suggest_int(p + "n_estimators", 20, 100, step=10),
            "max_depth": trial.suggest_int(p + "max_depth", 5, 30),
            "min_samples_leaf": trial.suggest_int(p + "min_samples_leaf", 1, 10),
            "max_features": trial.suggest_float(p + "max_features", 0.3, 1.0),
        }
    if algorithm == "gbm":
        return {
            "n_estimators": trial.suggest_int(p + "n_estimators", 30, 150, step=10),
            "max_depth": trial.suggest_int(p + "max_depth", 3, 8),
            "learning_rate": trial.suggest_float(p + "learning_rate", 0.01, 0.3, log=True),
            "subsample": trial.suggest_float(p + "subsample", 0.6, 1.0),
        }
    if algorithm == "deeplearning":
        width = trial.suggest_int(p + "width", 32, 256, log=True)
        depth = trial.suggest_int(p + "depth", 1, 3)
        return {
            "hidden_layer_sizes": tuple([width] * depth),
            "alpha": trial.suggest_float(p + "alpha", 1e-5, 1e-2, log=True),
            "max_iter": trial.suggest_int(p + "max_iter", 10, 50, step=10),
        }
    if algorithm == "xgboost":
        return {
            "n_estimators": trial.suggest_int(p + "n_estimators", 30, 200, step=10),
            "max_depth": trial.suggest_int(p + "max_depth", 3, 10),
            "learning_rate": trial.suggest_float(p + "learning_rate", 0.01, 0.3, log=True),
            "subsample": trial.suggest_float(p + "subsample", 0.6, 1.0),
            "colsample_bytree": trial.suggest_float(p + "colsample_bytree", 0.5, 1.0),
            "min_child_weight": trial.suggest_int(p + "min_child_weight", 1, 10),
        }
    msg = f"No search space for algorithm '{algorithm}'"
    raise InvalidParameterError(msg)


class AutoML:
    """
    Automated search over model families.

    Example:
        aml = AutoML(max_models=10, seed=1)
        aml.train(x=x, y="bad_loan", training_frame=train)
        print(aml.leaderboard)
    """

    def __init__(
        self,
        *,
        max_models: int | None = None,
        max_runtime_secs: float | None = None,
        nfolds: int = 5,
        sort_metric: str = "auto",
        include_algos: list[str] | None = None,
        exclude_algos: list[str] | None = None,
        seed: int | None = None,
        project_name: str | None = None,
    ) -> None:
        """
        Initialize the search.

        Args:
            max_models: Base models to build (ensembles not counted).
            max_runtime_secs: Time budget for base models. Defaults to one
                hour when neither budget is given.
            nfolds: Cross-validation folds per model (0 disables).
            sort_metric: Leaderboard metric; 'auto' picks it per task.
            include_algos: Families to run (all if omitted).
            exclude_algos: Families to skip.
            seed: Seed for models, folds and the sampler.
            project_name: Key used in model ids; generated if omitted.
        """
        if nfolds < 0 or nfolds == 1:
            msg = f"nfolds must be 0 or >= 2, got {nfolds}"
            raise InvalidParameterError(msg)
        if max_models is not None and max_models < 1:
            msg = "max_models must be >= 1"
            raise InvalidParameterError(msg)

        known = [*list_algorithms(), ENSEMBLE_FAMILY]
        families = list(include_algos) if include_algos is not None else known
        unknown = sorted((set(families) | set(exclude_algos or [])) - set(known))
        if unknown:
            msg = f"Unknown algorithms: {unknown}. Available: {', '.join(known)}"
            raise InvalidParameterError(msg)

        self.families = [f for f in families if f not in set(exclude_algos or [])]
        self.max_models = max_models
        self.max_runtime_secs = max_runtime_secs
        if max_models is None and max_runtime_secs is None:
            self.max_runtime_secs = DEFAULT_MAX_RUNTIME_SECS
        self.nfolds = nfolds
        self.sort_metric = sort_metric
        self.seed = seed
        self.project_name = project_name

        self.models: list[Model] = []
        self.events: list[dict[str, Any]] = []
        self._counters: dict[str, int] = {}
        self._leaderboard = pd.DataFrame()

    @classmethod
    def from_config(cls, config: AutoMLConfig, project_name: str | None = None) -> "AutoML":
        """Create a search from its configuration section."""
        return cls(
            max_models=config.max_models,
            max_runtime_secs=config.max_runtime_secs,
            nfolds=config.nfolds,
            sort_metric=config.sort_metric,
            include_algos=[a.value for a in config.include_algos] if config.include_algos else None,
            exclude_algos=[a.value for a in config.exclude_algos],
            seed=config.seed,
            project_name=project_name,
        )

    def _event(self, stage: str, message: str, **details: Any) -> None:
        self.events.append({"timestamp": time.time(), "stage": stage, "message": message, **details})

    @property
    def event_log(self) -> pd.DataFrame:
        """Chronological record of what the search did."""
        return pd.DataFrame(self.events)

    @property
    def leaderboard(self) -> pd.DataFrame:
        """Models ranked best first by the sort metric."""
        return self._leaderboard.copy()

    @property
    def leader(self) -> Model | None:
        """Top model of the leaderboard, or None before training."""
        if self._leaderboard.empty:
            return None
        leader_id = self._leaderboard.iloc[0]["model_id"]
        return next(m for m in self.models if m.model_id == leader_id)

    def train(
        self,
        y: str,
        training_frame: Frame,
        x: list[str] | None = None,
        validation_frame: Frame | None = None,
        leaderboard_frame: Frame | None = None,
    ) -> Model | None:
        """
        Run the search.

        Args:
            y: Target column.
            training_frame: Frame every model is trained on.
            x: Predictors; all other columns if omitted.
            validation_frame: Frame used for validation metrics.
            leaderboard_frame: Frame the leaderboard is scored on. Without
                one, models are ranked by cross-validation, then validation,
                then training metrics.

        Returns:
            The leader, or None if no model could be built.
        """
        session = training_frame.session
        session.ensure_alive()
        if y not in training_frame.types:
            msg = f"Response column '{y}' not found in frame '{training_frame.frame_id}'"
            raise SchemaError(msg)

        task = detect_task(training_frame, y)
        metric = resolve_metric(self.sort_metric, task)
        self.project_name = self.project_name or session.next_key("automl")
        base_families = [f for f in self.families if f != ENSEMBLE_FAMILY]

        counters = self._counters
        attempts = 0
        deadline = (
            time.perf_counter() + self.max_runtime_secs if self.max_runtime_secs is not None else None
        )

        def within_budget() -> bool:
            if self.max_models is not None and attempts >= self.max_models:
                return False
            return deadline is None or time.perf_counter() < deadline

        def build(algorithm: str, params: dict[str, Any], stage: str) -> Model | None:
            counters[algorithm] = counters.get(algorithm, 0) + 1
            request = TrainingRequest(
                y=y,
                training_frame=training_frame,
                algorithm=algorithm,
                x=x,
                validation_frame=validation_frame,
                params=params,
                nfolds=self.nfolds,
                seed=self.seed,
                model_id=f"{algorithm}_{counters[algorithm]}_{self.project_name}",
            )
            try:
                model = train(request)
            except (InvalidParameterError, EvaluationError) as e:
                log.warning("AutoML model failed", algorithm=algorithm, error=str(e))
                self._event(stage, "Model failed", algorithm=algorithm, error=str(e))
                return None
            self.models.append(model)
            self._event(stage, "Model built", algorithm=algorithm, model_id=model.model_id)
            return model

        with log_context(automl=self.project_name):
            log.info(
                "Starting AutoML",
                families=self.families,
                max_models=self.max_models,
                max_runtime_secs=self.max_runtime_secs,
                sort_metric=metric,
            )
            self._event("start", "AutoML started", sort_metric=metric)

            for algorithm in base_families:
                if not within_budget():
                    break
                attempts += 1
                build(algorithm, {}, "defaults")

            if base_families:
                study = optuna.create_study(
                    direction="maximize" if is_maximized(metric) else "minimize",
                    sampler=TPESampler(seed=self.seed),
                )
                while within_budget():
                    attempts += 1
                    trial = study.ask()
                    algorithm = trial.suggest_categorical("algorithm", base_families)
                    model = build(algorithm, suggest_params(trial, algorithm, task), "random_search")
                    if model is None:
                        study.tell(trial, state=TrialState.FAIL)
                    else:
                        study.tell(trial, model.ranking_metrics.metric(metric))

            if ENSEMBLE_FAMILY in self.families:
                self._build_ensembles(training_frame, validation_frame, metric)

            self._leaderboard = self._rank(task, metric, leaderboard_frame)
            leader = self.leader
            log.info(
                "AutoML complete",
                models=len(self.models),
                leader=leader.model_id if leader else None,
            )
            self._event("end", "AutoML finished", models=len(self.models))
        return leader

    def _build_ensembles(
        self,
        training_frame: Frame,
        validation_frame: Frame | None,
        metric: str,
    ) -> None:
        """Stack all models, then the best model of each family."""
        base = [m for m in self.models if m.algorithm != ENSEMBLE_FAMILY]
        if len(base) < 2:
            self._event("ensembles", "Skipped stacked ensembles", reason="fewer than 2 models")
            return

        maximize = is_maximized(metric)
        best_of_family: dict[str, Model] = {}
        for model in base:
            current = best_of_family.get(model.algorithm)
            score = model.ranking_metrics.metric(metric)
            if current is None:
                best_of_family[model.algorithm] = model
                continue
            current_score = current.ranking_metrics.metric(metric)
            if (score > current_score) if maximize else (score < current_score):
                best_of_family[model.algorithm] = model

        candidates = [("AllModels", base)]
        if len(best_of_family) >= 2:
            candidates.append(("BestOfFamily", list(best_of_family.values())))

        for name, members in candidates:
            try:
                model = stack(
                    members,
                    training_frame,
                    validation_frame=validation_frame,
                    nfolds=self.nfolds,
                    seed=self.seed,
                    model_id=f"{ENSEMBLE_FAMILY}_{name}_{self.project_name}",
                )
            except (InvalidParameterError, EvaluationError) as e:
                log.warning("Stacked ensemble failed", ensemble=name, error=str(e))
                self._event("ensembles", "Ensemble failed", ensemble=name, error=str(e))
                continue
            # a repeated search rebuilds its ensembles under the same ids
            self.models = [m for m in self.models if m.model_id != model.model_id]
            self.models.append(model)
            self._event("ensembles", "Ensemble built", model_id=model.model_id)

    def _rank(self, task: Task, metric: str, leaderboard_frame: Frame | None) -> pd.DataFrame:
        """Build the leaderboard table, best first."""
        columns = list(TASK_METRICS[task])
        sort_column = metric
        if metric == "deviance":
            sort_column = "mean_residual_deviance" if task == "regression" else "logloss"

        rows = []
        for model in self.models:
            if leaderboard_frame is not None:
                scored = model.model_performance(leaderboard_frame)
            else:
                scored = model.ranking_metrics
            rows.append(
                {
                    "model_id": model.model_id,
                    "algorithm": model.algorithm,
                    **{c: scored.values.get(c) for c in columns},
                    "training_time_s": round(model.training_time_s, 3),
                }
            )

        board = pd.DataFrame(rows, columns=["model_id", "algorithm", *columns, "training_time_s"])
        if board.empty:
            return board
        board = board.sort_values(sort_column, ascending=not is_maximized(metric), kind="mergesort")
        return board.reset_index(drop=True)
