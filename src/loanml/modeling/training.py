"""
Model training functionality.

Turns a training request into a fitted preprocessing + estimator pipeline
wrapped in an immutable Model handle registered in the session. Iterative
families can be grown step by step under an early-stopping policy, and
k-fold cross-validation metrics are attached when requested.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, clone
from sklearn.model_selection import KFold, StratifiedKFold, cross_validate
from sklearn.pipeline import Pipeline

from loanml.backend.frame import Frame, to_level_strings
from loanml.backend.session import Session
from loanml.evaluation.metrics import (
    ModelMetrics,
    Task,
    compute_metrics,
    is_maximized,
    mean_metrics,
    resolve_metric,
)
from loanml.exceptions import (
    EvaluationError,
    InvalidParameterError,
    SchemaError,
    SessionClosedError,
)
from loanml.modeling.columns import detect_task
from loanml.modeling.early_stopping import EarlyStopping, stop_early
from loanml.modeling.estimators import (
    ITERATION_PARAMS,
    SCALED_FAMILIES,
    get_defaults,
    get_estimator,
    supports_early_stopping,
)
from loanml.modeling.preprocessing import build_preprocessor
from loanml.utils.logging import get_logger, log_context

log = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class Model:
    """
    Handle to a trained model.

    Attributes:
        model_id: Key of the model inside its session.
        algorithm: Family name ('glm', 'gbm', ..., 'stackedensemble').
        task: 'binomial', 'multinomial' or 'regression'.
        x: Predictor names.
        y: Target name.
        params: Hyperparameters used (defaults merged with overrides).
        estimator: Fitted preprocessing + estimator pipeline.
        session: Owning session.
        domain: Class levels for classification (index = class code).
        training_frame_id: Key of the training frame.
        validation_frame_id: Key of the validation frame, if any.
        training_metrics: Metrics on the training frame.
        validation_metrics: Metrics on the validation frame, if any.
        cross_validation_metrics: Per-fold holdout metrics.
        scoring_history: One record per scoring event during growth.
        actual_iterations: Iterations built under early stopping.
        training_time_s: Wall time of the final fit in seconds.
    """

    model_id: str
    algorithm: str
    task: Task
    x: list[str]
    y: str
    params: dict[str, Any]
    estimator: BaseEstimator = field(repr=False)
    session: Session = field(repr=False)
    domain: list[str] | None = None
    training_frame_id: str = ""
    validation_frame_id: str | None = None
    training_metrics: ModelMetrics | None = field(default=None, repr=False)
    validation_metrics: ModelMetrics | None = field(default=None, repr=False)
    cross_validation_metrics: list[ModelMetrics] = field(default_factory=list, repr=False)
    scoring_history: list[dict[str, float]] = field(default_factory=list, repr=False)
    actual_iterations: int | None = None
    training_time_s: float = 0.0

    def _check(self) -> None:
        self.session.ensure_alive()
        if not self.session.holds_model(self):
            msg = f"Model '{self.model_id}' was removed or replaced in session {self.session.session_id}"
            raise SessionClosedError(msg)

    def _features(self, frame: Frame) -> pd.DataFrame:
        self._check()
        types = frame.types
        missing = [c for c in self.x if c not in types]
        if missing:
            msg = f"Frame '{frame.frame_id}' is missing predictors: {missing}"
            raise SchemaError(msg)
        return frame.data[self.x]

    def predict(self, frame: Frame) -> pd.DataFrame:
        """
        Predict every row of a frame.

        Returns:
            DataFrame with a ``predict`` column, plus one probability
            column per class level for classification models.
        """
        X = self._features(frame)
        if self.task == "regression":
            return pd.DataFrame({"predict": self.estimator.predict(X)})

        domain = self.domain or []
        proba = full_proba(self.estimator, X, len(domain))
        out = pd.DataFrame(proba, columns=domain)
        out.insert(0, "predict", np.asarray(domain, dtype=object)[proba.argmax(axis=1)])
        return out

    def model_performance(self, frame: Frame) -> ModelMetrics:
        """
        Score the model against a frame holding the target column.

        Raises:
            SchemaError: If predictors or the target are missing, or the
                target holds levels outside the training domain.
            EvaluationError: If a metric is undefined for the frame.
        """
        X = self._features(frame)
        if self.y not in frame.types:
            msg = f"Frame '{frame.frame_id}' is missing the target column '{self.y}'"
            raise SchemaError(msg)
        X_scored, y_scored = encode_rows(X, frame.data[self.y], self.task, self.domain)
        return evaluate(self.estimator, X_scored, y_scored, self.task, self.domain)

    def metrics(self, *, train: bool = False, valid: bool = False, xval: bool = False) -> ModelMetrics:
        """
        Stored metrics for one source.

        With no flag set, returns the training metrics.
        """
        if train + valid + xval > 1:
            msg = "Pick at most one of train, valid and xval"
            raise InvalidParameterError(msg)
        if valid:
            if self.validation_metrics is None:
                msg = f"Model '{self.model_id}' was trained without a validation frame"
                raise EvaluationError(msg)
            return self.validation_metrics
        if xval:
            if not self.cross_validation_metrics:
                msg = f"Model '{self.model_id}' was trained without cross-validation"
                raise EvaluationError(msg)
            return mean_metrics(self.cross_validation_metrics)
        if self.training_metrics is None:
            msg = f"Model '{self.model_id}' has no training metrics"
            raise EvaluationError(msg)
        return self.training_metrics

    def auc(self, *, train: bool = False, valid: bool = False, xval: bool = False) -> float:
        """AUC from stored training, validation or cross-validation metrics."""
        return self.metrics(train=train, valid=valid, xval=xval).auc()

    @property
    def ranking_metrics(self) -> ModelMetrics:
        """Best available holdout estimate: cross-validation, then validation, then training."""
        if self.cross_validation_metrics:
            return mean_metrics(self.cross_validation_metrics)
        if self.validation_metrics is not None:
            return self.validation_metrics
        return self.metrics()

    def summary(self) -> dict[str, Any]:
        """Flat description of the model for tables and tracking."""
        return {
            "model_id": self.model_id,
            "algorithm": self.algorithm,
            "task": self.task,
            "n_predictors": len(self.x),
            "iterations": self.actual_iterations,
            "nfolds": len(self.cross_validation_metrics),
            "training_time_s": round(self.training_time_s, 3),
        }


@dataclass
class TrainingRequest:
    """
    Everything needed to train one model.

    Attributes:
        y: Target column.
        training_frame: Frame to fit on.
        algorithm: Family name from the estimator registry.
        x: Predictor columns; all columns except ``y`` when omitted.
        validation_frame: Frame scored after fitting and during growth.
        params: Hyperparameter overrides (backend parameter names).
        early_stopping: Growth policy for iterative families.
        nfolds: Cross-validation folds (0 disables).
        seed: Random seed for the estimator and the fold assignment.
        model_id: Key of the model; generated when omitted.
    """

    y: str
    training_frame: Frame
    algorithm: str
    x: list[str] | None = None
    validation_frame: Frame | None = None
    params: dict[str, Any] = field(default_factory=dict)
    early_stopping: EarlyStopping | None = None
    nfolds: int = 0
    seed: int | None = None
    model_id: str | None = None


def full_proba(estimator: BaseEstimator, X: Any, n_classes: int) -> np.ndarray:
    """Class probabilities with one column per domain level."""
    proba = np.asarray(estimator.predict_proba(X), dtype=float)
    if proba.shape[1] == n_classes:
        return proba
    # a fold model may not have seen every class
    out = np.zeros((proba.shape[0], n_classes))
    out[:, np.asarray(estimator.classes_, dtype=int)] = proba
    return out


def encode_target(values: pd.Series, domain: list[str]) -> np.ndarray:
    """Map target levels to class codes in domain order."""
    if pd.api.types.is_numeric_dtype(values):
        values = to_level_strings(values)
    codes = pd.Categorical(values, categories=domain).codes
    if (codes < 0).any():
        unseen = sorted(set(values[codes < 0].astype(str)))
        msg = f"Target levels not in the training domain {domain}: {unseen}"
        raise SchemaError(msg)
    return np.asarray(codes, dtype=int)


def encode_rows(
    X: pd.DataFrame,
    y: pd.Series,
    task: Task,
    domain: list[str] | None,
) -> tuple[pd.DataFrame, np.ndarray]:
    """Drop rows with a missing target and encode the target for fitting."""
    mask = y.notna().to_numpy()
    X, y = X.loc[mask], y.loc[mask]
    if task == "regression":
        return X, y.to_numpy(dtype=float)
    return X, encode_target(y, domain or [])


def evaluate(
    estimator: BaseEstimator,
    X: Any,
    y: np.ndarray,
    task: Task,
    domain: list[str] | None,
) -> ModelMetrics:
    """Score a fitted estimator on encoded data."""
    if task == "regression":
        return compute_metrics(y, estimator.predict(X), task)
    n_classes = len(domain or [])
    return compute_metrics(y, full_proba(estimator, X, n_classes), task, n_classes)


def fit_estimator(
    estimator: BaseEstimator,
    X: Any,
    y: np.ndarray,
    algorithm: str,
    **fit_params: Any,
) -> None:
    """Fit an estimator, wrapping backend errors into InvalidParameterError."""
    # sklearn's own InvalidParameterError and XGBoostError derive from ValueError
    try:
        estimator.fit(X, y, **fit_params)
    except (TypeError, ValueError) as e:
        msg = f"{algorithm} training failed: {e}"
        raise InvalidParameterError(msg) from e


def _validate_request(request: TrainingRequest) -> tuple[list[str], Task, list[str] | None]:
    """Check columns and frames; return predictors, task and class domain."""
    frame = request.training_frame
    types = frame.types

    if request.y not in types:
        msg = f"Response column '{request.y}' not found in frame '{frame.frame_id}'"
        raise SchemaError(msg)

    x = list(request.x) if request.x is not None else [c for c in frame.columns if c != request.y]
    if request.y in x:
        msg = f"Response column '{request.y}' is also listed as a predictor"
        raise SchemaError(msg)
    missing = [c for c in x if c not in types]
    if missing:
        msg = f"Predictors not found in frame '{frame.frame_id}': {missing}"
        raise SchemaError(msg)
    if not x:
        msg = "At least one predictor is required"
        raise SchemaError(msg)

    if request.nfolds < 0 or request.nfolds == 1:
        msg = f"nfolds must be 0 or >= 2, got {request.nfolds}"
        raise InvalidParameterError(msg)

    task = detect_task(frame, request.y)
    domain = frame.levels(request.y) if task != "regression" else None

    valid = request.validation_frame
    if valid is not None:
        if valid.session is not frame.session:
            msg = "Training and validation frames belong to different sessions"
            raise SchemaError(msg)
        valid_types = valid.types
        for col in [*x, request.y]:
            if col not in valid_types:
                msg = f"Validation frame '{valid.frame_id}' is missing column '{col}'"
                raise SchemaError(msg)
            if valid_types[col] != types[col]:
                msg = (
                    f"Column '{col}' is {types[col]} in the training frame "
                    f"but {valid_types[col]} in the validation frame"
                )
                raise SchemaError(msg)

    return x, task, domain


def _grow(estimator: BaseEstimator, algorithm: str, X: np.ndarray, y: np.ndarray, built: int, step: int) -> None:
    """Add ``step`` iterations to a partially built estimator."""
    if algorithm in ("gbm", "drf"):
        estimator.set_params(warm_start=True, n_estimators=built + step)
        fit_estimator(estimator, X, y, algorithm)
    elif algorithm == "deeplearning":
        estimator.set_params(warm_start=True, max_iter=step, early_stopping=False)
        fit_estimator(estimator, X, y, algorithm)
    elif algorithm == "xgboost":
        estimator.set_params(n_estimators=step)
        booster = estimator.get_booster() if built > 0 else None
        fit_estimator(estimator, X, y, algorithm, xgb_model=booster)
    else:
        msg = f"{algorithm} cannot be grown iteratively"
        raise InvalidParameterError(msg)


def _fit_with_early_stopping(
    preprocessor: BaseEstimator,
    estimator: BaseEstimator,
    algorithm: str,
    task: Task,
    domain: list[str] | None,
    train_data: tuple[pd.DataFrame, np.ndarray],
    valid_data: tuple[pd.DataFrame, np.ndarray] | None,
    policy: EarlyStopping,
    metric: str,
) -> tuple[Pipeline, list[dict[str, float]], int]:
    """
    Grow an iterative estimator in scoring intervals until the score keeper stops it.

    The preprocessor is fitted once; each step adds ``score_interval``
    iterations and scores the validation data (training data if none).

    Returns:
        Tuple of (fitted pipeline, scoring history, iterations built).
    """
    X_train = preprocessor.fit_transform(train_data[0])
    y_train = train_data[1]
    X_valid = preprocessor.transform(valid_data[0]) if valid_data is not None else None

    maximize = is_maximized(metric)
    start = time.perf_counter()
    history: list[dict[str, float]] = []
    scores: list[float] = []
    built = 0

    while built < policy.max_iterations:
        step = min(policy.score_interval, policy.max_iterations - built)
        _grow(estimator, algorithm, X_train, y_train, built, step)
        built += step

        entry = {
            "iterations": float(built),
            "duration_s": time.perf_counter() - start,
            f"training_{metric}": evaluate(estimator, X_train, y_train, task, domain).metric(metric),
        }
        score = entry[f"training_{metric}"]
        if X_valid is not None and valid_data is not None:
            valid_score = evaluate(estimator, X_valid, valid_data[1], task, domain).metric(metric)
            entry[f"validation_{metric}"] = valid_score
            score = valid_score
        history.append(entry)
        scores.append(score)

        if stop_early(scores, policy.rounds, policy.tolerance, maximize=maximize):
            log.info("Early stopping triggered", iterations=built, metric=metric, score=round(score, 5))
            break

    # Freeze the final size so a refit of this estimator rebuilds the same model
    final_params: dict[str, Any] = {ITERATION_PARAMS[algorithm]: built}
    if "warm_start" in estimator.get_params():
        final_params["warm_start"] = False
    estimator.set_params(**final_params)

    pipeline = Pipeline(steps=[("preprocessor", preprocessor), ("model", estimator)])
    return pipeline, history, built


def cross_validate_model(
    template: BaseEstimator,
    X: pd.DataFrame,
    y: np.ndarray,
    task: Task,
    domain: list[str] | None,
    *,
    nfolds: int,
    seed: int | None,
) -> list[ModelMetrics]:
    """
    Run k-fold cross-validation and score each holdout fold.

    Folds are stratified on the class for classification tasks.

    Returns:
        One ModelMetrics per fold.
    """
    if task == "regression":
        splitter: KFold = KFold(n_splits=nfolds, shuffle=True, random_state=seed)
    else:
        splitter = StratifiedKFold(n_splits=nfolds, shuffle=True, random_state=seed)

    try:
        result = cross_validate(
            template,
            X,
            y,
            cv=splitter,
            return_estimator=True,
            return_indices=True,
            error_score="raise",
        )
    except (TypeError, ValueError) as e:
        msg = f"Cross-validation failed: {e}"
        raise InvalidParameterError(msg) from e

    folds = []
    for fold_estimator, test_idx in zip(result["estimator"], result["indices"]["test"], strict=True):
        folds.append(evaluate(fold_estimator, X.iloc[test_idx], y[test_idx], task, domain))
    return folds


def build_model(
    *,
    session: Session,
    model_id: str,
    algorithm: str,
    task: Task,
    domain: list[str] | None,
    x: list[str],
    y: str,
    params: dict[str, Any],
    pipeline: BaseEstimator,
    training_frame: Frame,
    validation_frame: Frame | None,
    nfolds: int = 0,
    seed: int | None = None,
    scoring_history: list[dict[str, float]] | None = None,
    actual_iterations: int | None = None,
    training_time_s: float = 0.0,
) -> Model:
    """
    Score a fitted pipeline, cross-validate it if asked and register the handle.

    Shared by single-family training and stacked ensembles.
    """
    X_train, y_train = encode_rows(training_frame.data[x], training_frame.data[y], task, domain)
    training_metrics = evaluate(pipeline, X_train, y_train, task, domain)

    validation_metrics = None
    if validation_frame is not None:
        X_valid, y_valid = encode_rows(
            validation_frame.data[x], validation_frame.data[y], task, domain
        )
        validation_metrics = evaluate(pipeline, X_valid, y_valid, task, domain)

    cv_metrics: list[ModelMetrics] = []
    if nfolds >= 2:
        log.info("Cross-validating", nfolds=nfolds)
        cv_metrics = cross_validate_model(
            clone(pipeline), X_train, y_train, task, domain, nfolds=nfolds, seed=seed
        )

    model = Model(
        model_id=model_id,
        algorithm=algorithm,
        task=task,
        x=list(x),
        y=y,
        params=params,
        estimator=pipeline,
        session=session,
        domain=domain,
        training_frame_id=training_frame.frame_id,
        validation_frame_id=validation_frame.frame_id if validation_frame is not None else None,
        training_metrics=training_metrics,
        validation_metrics=validation_metrics,
        cross_validation_metrics=cv_metrics,
        scoring_history=scoring_history or [],
        actual_iterations=actual_iterations,
        training_time_s=training_time_s,
    )
    session.register_model(model)

    headline = "auc" if task == "binomial" else "logloss" if task == "multinomial" else "rmse"
    log.info(
        "Trained model",
        model_id=model_id,
        training_time_s=round(training_time_s, 2),
        **{f"train_{headline}": round(training_metrics.metric(headline), 4)},
        **(
            {f"valid_{headline}": round(validation_metrics.metric(headline), 4)}
            if validation_metrics is not None
            else {}
        ),
    )
    return model


def train(request: TrainingRequest) -> Model:
    """
    Train one model of a family.

    Args:
        request: Training request.

    Returns:
        Registered, immutable Model handle.

    Raises:
        SessionClosedError: If the session is not alive.
        SchemaError: On missing or inconsistent columns, or an unusable target.
        InvalidParameterError: On unknown or invalid hyperparameters.
    """
    training_frame = request.training_frame
    session = training_frame.session
    session.ensure_alive()

    x, task, domain = _validate_request(request)
    algorithm = request.algorithm
    overrides = dict(request.params)

    policy = request.early_stopping
    if policy is not None and algorithm == "glm":
        overrides.setdefault("max_iter", policy.max_iterations)
        policy = None
    elif policy is not None and not supports_early_stopping(algorithm):
        log.warning("Early stopping not supported, ignoring policy", algorithm=algorithm)
        policy = None
    stopping_metric = resolve_metric(policy.metric, task, for_stopping=True) if policy else None

    estimator = get_estimator(algorithm, task, overrides, seed=request.seed, n_jobs=session.n_jobs)
    params = {**get_defaults(algorithm, task), **overrides}
    model_id = request.model_id or session.next_key(algorithm)

    with log_context(model_id=model_id, algorithm=algorithm):
        log.info(
            "Training model",
            task=task,
            n_predictors=len(x),
            rows=training_frame.nrows,
            early_stopping=policy is not None,
        )
        train_data = encode_rows(
            training_frame.data[x], training_frame.data[request.y], task, domain
        )
        valid_data = None
        if request.validation_frame is not None:
            valid_frame = request.validation_frame
            valid_data = encode_rows(valid_frame.data[x], valid_frame.data[request.y], task, domain)

        preprocessor = build_preprocessor(
            training_frame.types, x, scale_numeric=algorithm in SCALED_FAMILIES
        )

        start = time.perf_counter()
        history: list[dict[str, float]] = []
        iterations = None
        if policy is not None and stopping_metric is not None:
            pipeline, history, iterations = _fit_with_early_stopping(
                preprocessor,
                estimator,
                algorithm,
                task,
                domain,
                train_data,
                valid_data,
                policy,
                stopping_metric,
            )
            params[ITERATION_PARAMS[algorithm]] = iterations
        else:
            pipeline = Pipeline(steps=[("preprocessor", preprocessor), ("model", estimator)])
            fit_estimator(pipeline, train_data[0], train_data[1], algorithm)
        training_time_s = time.perf_counter() - start

        return build_model(
            session=session,
            model_id=model_id,
            algorithm=algorithm,
            task=task,
            domain=domain,
            x=x,
            y=request.y,
            params=params,
            pipeline=pipeline,
            training_frame=training_frame,
            validation_frame=request.validation_frame,
            nfolds=request.nfolds,
            seed=request.seed,
            scoring_history=history,
            actual_iterations=iterations,
            training_time_s=training_time_s,
        )
