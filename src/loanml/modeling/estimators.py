"""
Model family registry and factory.

Maps each algorithm family to its backend estimator classes (one for
classification, one for regression) and default hyperparameters.
Hyperparameter names are the backend's own (scikit-learn / XGBoost).
"""

from typing import Any

from sklearn.base import BaseEstimator
from sklearn.ensemble import (
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import ElasticNet, LogisticRegression
from sklearn.neural_network import MLPClassifier, MLPRegressor
from xgboost import XGBClassifier, XGBRegressor

from loanml.evaluation.metrics import Task
from loanml.exceptions import InvalidParameterError
from loanml.utils.logging import get_logger

log = get_logger(__name__)

EstimatorSpec = tuple[type[BaseEstimator], dict[str, Any]]

# family -> {"classification": spec, "regression": spec}
# Defaults mirror common cluster-engine defaults: 50 trees, depth 5 for
# boosting, depth 20 for forests, two 200-unit hidden layers for 10 epochs.
MODEL_REGISTRY: dict[str, dict[str, EstimatorSpec]] = {
    "glm": {
        "classification": (LogisticRegression, {"C": 1.0, "max_iter": 1000}),
        "regression": (ElasticNet, {"alpha": 1e-3, "l1_ratio": 0.5, "max_iter": 5000}),
    },
    "drf": {
        "classification": (RandomForestClassifier, {"n_estimators": 50, "max_depth": 20}),
        "regression": (RandomForestRegressor, {"n_estimators": 50, "max_depth": 20}),
    },
    "gbm": {
        "classification": (
            GradientBoostingClassifier,
            {"n_estimators": 50, "max_depth": 5, "learning_rate": 0.1},
        ),
        "regression": (
            GradientBoostingRegressor,
            {"n_estimators": 50, "max_depth": 5, "learning_rate": 0.1},
        ),
    },
    "deeplearning": {
        "classification": (
            MLPClassifier,
            {"hidden_layer_sizes": (200, 200), "max_iter": 10, "learning_rate_init": 0.005},
        ),
        "regression": (
            MLPRegressor,
            {"hidden_layer_sizes": (200, 200), "max_iter": 10, "learning_rate_init": 0.005},
        ),
    },
    "xgboost": {
        "classification": (
            XGBClassifier,
            {"n_estimators": 50, "max_depth": 6, "learning_rate": 0.3, "tree_method": "hist"},
        ),
        "regression": (
            XGBRegressor,
            {"n_estimators": 50, "max_depth": 6, "learning_rate": 0.3, "tree_method": "hist"},
        ),
    },
}

# Hyperparameter that counts trees, boosting rounds or epochs
ITERATION_PARAMS: dict[str, str] = {
    "drf": "n_estimators",
    "gbm": "n_estimators",
    "xgboost": "n_estimators",
    "deeplearning": "max_iter",
}

# Families whose inputs are standard-scaled before fitting
SCALED_FAMILIES = frozenset({"glm", "deeplearning"})


def list_algorithms() -> list[str]:
    """List all trainable families (stacked ensembles are built separately)."""
    return list(MODEL_REGISTRY)


def supports_early_stopping(algorithm: str) -> bool:
    """Whether the family can be grown iteratively under a stopping policy."""
    return algorithm in ITERATION_PARAMS


def get_defaults(algorithm: str, task: Task) -> dict[str, Any]:
    """Default hyperparameters of a family for a task."""
    _, defaults = _lookup(algorithm, task)
    return dict(defaults)


def _lookup(algorithm: str, task: Task) -> EstimatorSpec:
    if algorithm not in MODEL_REGISTRY:
        available = ", ".join(MODEL_REGISTRY)
        msg = f"Unknown algorithm '{algorithm}'. Available: {available}"
        raise InvalidParameterError(msg)
    kind = "regression" if task == "regression" else "classification"
    return MODEL_REGISTRY[algorithm][kind]


def get_estimator(
    algorithm: str,
    task: Task,
    params: dict[str, Any] | None = None,
    *,
    seed: int | None = None,
    n_jobs: int | None = None,
) -> BaseEstimator:
    """
    Create an unfitted estimator for a family.

    Args:
        algorithm: Family name from the registry.
        task: Task type; picks the classifier or regressor.
        params: Overrides for the default hyperparameters.
        seed: Random seed, applied where the estimator accepts one.
        n_jobs: Parallel jobs, applied where the estimator accepts them.

    Returns:
        Estimator instance.

    Raises:
        InvalidParameterError: If the family or any hyperparameter is unknown.
    """
    model_class, defaults = _lookup(algorithm, task)
    merged = {**defaults, **(params or {})}

    valid = set(model_class().get_params())
    unknown = sorted(set(merged) - valid)
    if unknown:
        msg = f"Unknown hyperparameters for {algorithm}: {unknown}"
        raise InvalidParameterError(msg)

    if seed is not None and "random_state" in valid and "random_state" not in merged:
        merged["random_state"] = seed
    if n_jobs is not None and "n_jobs" in valid and "n_jobs" not in merged:
        merged["n_jobs"] = n_jobs
    if algorithm == "xgboost":
        merged.setdefault("verbosity", 0)

    try:
        estimator = model_class(**merged)
    except (TypeError, ValueError) as e:
        msg = f"Invalid hyperparameters for {algorithm}: {e}"
        raise InvalidParameterError(msg) from e

    log.debug("Creating estimator", algorithm=algorithm, task=task, params=merged)
    return estimator
