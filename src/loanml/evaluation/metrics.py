"""
Evaluation metrics for classification and regression models.

Provides the read-only metrics bundle returned when a model is scored
against a frame, plus the metric direction table used for ranking and
early stopping.
"""

import math
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    average_precision_score,
    balanced_accuracy_score,
    log_loss,
    mean_absolute_error,
    mean_squared_error,
    r2_score,
    roc_auc_score,
)

from loanml.exceptions import EvaluationError, InvalidParameterError
from loanml.utils.logging import get_logger

log = get_logger(__name__)

Task = Literal["binomial", "multinomial", "regression"]

# Metric name -> True if larger values are better
METRIC_DIRECTIONS: dict[str, bool] = {
    "auc": True,
    "aucpr": True,
    "gini": True,
    "accuracy": True,
    "r2": True,
    "logloss": False,
    "mse": False,
    "rmse": False,
    "mae": False,
    "rmsle": False,
    "mean_per_class_error": False,
    "mean_residual_deviance": False,
    "deviance": False,
}

TASK_METRICS: dict[str, tuple[str, ...]] = {
    "binomial": (
        "auc",
        "aucpr",
        "gini",
        "logloss",
        "mse",
        "rmse",
        "accuracy",
        "mean_per_class_error",
    ),
    "multinomial": ("logloss", "mse", "rmse", "accuracy", "mean_per_class_error"),
    "regression": ("mse", "rmse", "mae", "r2", "mean_residual_deviance", "rmsle"),
}


def is_maximized(metric: str) -> bool:
    """
    Whether larger values of a metric are better.

    Raises:
        InvalidParameterError: For unknown metric names.
    """
    if metric not in METRIC_DIRECTIONS:
        available = ", ".join(sorted(METRIC_DIRECTIONS))
        msg = f"Unknown metric '{metric}'. Available: {available}"
        raise InvalidParameterError(msg)
    return METRIC_DIRECTIONS[metric]


def resolve_metric(metric: str, task: Task, *, for_stopping: bool = False) -> str:
    """
    Resolve 'auto' and check the metric exists for the task.

    'auto' means AUC (binomial), mean per-class error (multinomial) or
    deviance (regression) for ranking, and logloss / deviance for early
    stopping.
    """
    metric = metric.lower()
    if metric == "auto":
        if task == "regression":
            return "deviance"
        if for_stopping:
            return "logloss"
        return "auc" if task == "binomial" else "mean_per_class_error"

    if metric == "deviance":
        return metric
    if metric not in TASK_METRICS[task]:
        msg = f"Metric '{metric}' is not defined for {task} models"
        raise InvalidParameterError(msg)
    return metric


@dataclass(frozen=True)
class ModelMetrics:
    """
    Metrics bundle from scoring a model against a frame.

    Attributes:
        task: Task type the metrics belong to.
        n_samples: Number of scored rows.
        values: Metric name -> value.
    """

    task: Task
    n_samples: int
    values: dict[str, float] = field(default_factory=dict)

    def metric(self, name: str) -> float:
        """Look up a metric by name ('deviance' resolves per task)."""
        key = name.lower()
        if key == "deviance":
            key = "mean_residual_deviance" if self.task == "regression" else "logloss"
        if key not in self.values:
            msg = f"Metric '{name}' not available for {self.task} model"
            raise KeyError(msg)
        return self.values[key]

    def auc(self) -> float:
        """Area under the ROC curve (binomial only)."""
        if self.task != "binomial":
            msg = f"AUC is only defined for binomial models, not {self.task}"
            raise EvaluationError(msg)
        return self.values["auc"]

    @property
    def logloss(self) -> float:
        """Log loss (classification only)."""
        return self.metric("logloss")

    @property
    def rmse(self) -> float:
        """Root mean squared error."""
        return self.metric("rmse")

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {**self.values, "n_samples": self.n_samples}

    def __str__(self) -> str:
        """String representation."""
        parts = [f"{name}={value:.4f}" for name, value in self.values.items()]
        return f"{self.task} ({self.n_samples} rows): " + ", ".join(parts)


def compute_classification_metrics(
    y_true: np.ndarray,
    proba: np.ndarray,
    n_classes: int,
) -> ModelMetrics:
    """
    Compute binomial or multinomial metrics.

    Args:
        y_true: Class indices (0 .. n_classes - 1).
        proba: Class probabilities, shape (n, n_classes).
        n_classes: Number of classes in the model domain.

    Returns:
        ModelMetrics for the matching task.

    Raises:
        EvaluationError: If there are no rows, or a binomial target has a
            single class so AUC is undefined.
    """
    y_true = np.asarray(y_true).ravel().astype(int)
    proba = np.asarray(proba, dtype=float)

    if len(y_true) == 0:
        msg = "Cannot compute metrics on an empty frame"
        raise EvaluationError(msg)

    labels = list(range(n_classes))
    y_pred = proba.argmax(axis=1)
    p_actual = proba[np.arange(len(y_true)), y_true]
    mse = float(np.mean((1.0 - p_actual) ** 2))

    values: dict[str, float] = {}
    if n_classes == 2:
        if len(np.unique(y_true)) < 2:
            msg = "AUC is undefined: scored frame contains a single class"
            raise EvaluationError(msg)
        auc = float(roc_auc_score(y_true, proba[:, 1]))
        values["auc"] = auc
        values["aucpr"] = float(average_precision_score(y_true, proba[:, 1]))
        values["gini"] = 2.0 * auc - 1.0

    values["logloss"] = float(log_loss(y_true, proba, labels=labels))
    values["mse"] = mse
    values["rmse"] = math.sqrt(mse)
    values["accuracy"] = float(accuracy_score(y_true, y_pred))
    values["mean_per_class_error"] = 1.0 - float(balanced_accuracy_score(y_true, y_pred))

    task: Task = "binomial" if n_classes == 2 else "multinomial"
    return ModelMetrics(task=task, n_samples=len(y_true), values=values)


def compute_regression_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> ModelMetrics:
    """
    Compute regression metrics.

    RMSLE is NaN when any actual or predicted value is negative.

    Args:
        y_true: True values.
        y_pred: Predicted values.

    Returns:
        ModelMetrics with task 'regression'.
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()

    if len(y_true) == 0:
        msg = "Cannot compute metrics on an empty frame"
        raise EvaluationError(msg)

    mse = float(mean_squared_error(y_true, y_pred))
    if (y_true < 0).any() or (y_pred < 0).any():
        rmsle = float("nan")
    else:
        rmsle = float(np.sqrt(np.mean((np.log1p(y_pred) - np.log1p(y_true)) ** 2)))

    values = {
        "mse": mse,
        "rmse": math.sqrt(mse),
        "mae": float(mean_absolute_error(y_true, y_pred)),
        "r2": float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float("nan"),
        "mean_residual_deviance": mse,
        "rmsle": rmsle,
    }
    return ModelMetrics(task="regression", n_samples=len(y_true), values=values)


def mean_metrics(folds: list[ModelMetrics]) -> ModelMetrics:
    """Average per-fold metrics into a single cross-validation summary."""
    if not folds:
        msg = "No fold metrics to average"
        raise EvaluationError(msg)
    names = folds[0].values.keys()
    values = {name: float(np.mean([f.values[name] for f in folds])) for name in names}
    return ModelMetrics(
        task=folds[0].task,
        n_samples=sum(f.n_samples for f in folds),
        values=values,
    )


def compute_metrics(
    y_true: np.ndarray,
    predictions: np.ndarray,
    task: Task,
    n_classes: int | None = None,
) -> ModelMetrics:
    """
    Compute the metrics bundle for a task.

    Args:
        y_true: Class indices for classification, values for regression.
        predictions: Class probabilities for classification, predicted
            values for regression.
        task: Task type.
        n_classes: Domain size (classification only).

    Returns:
        ModelMetrics for the task.
    """
    if task == "regression":
        return compute_regression_metrics(y_true, predictions)
    if n_classes is None:
        n_classes = np.asarray(predictions).shape[1]
    return compute_classification_metrics(y_true, predictions, n_classes)
