"""
Stacked ensembles.

Combines trained base models through a metalearner fitted on their
out-of-fold predictions. Fitting is delegated to scikit-learn's stacking
estimators; this module checks that the base models are compatible.
"""

import time
from typing import Any

from sklearn.base import clone
from sklearn.ensemble import StackingClassifier, StackingRegressor
from sklearn.model_selection import KFold, StratifiedKFold

from loanml.backend.frame import Frame
from loanml.exceptions import SchemaError, SessionClosedError
from loanml.modeling.estimators import get_estimator
from loanml.modeling.training import Model, build_model, encode_rows, fit_estimator
from loanml.utils.logging import get_logger, log_context

log = get_logger(__name__)


def _check_base_models(base_models: list[Model], training_frame: Frame) -> Model:
    """Validate base model compatibility and return the reference model."""
    if len(base_models) < 2:
        msg = f"A stacked ensemble needs at least 2 base models, got {len(base_models)}"
        raise SchemaError(msg)

    session = training_frame.session
    for model in base_models:
        if not session.holds_model(model):
            msg = f"Base model '{model.model_id}' is not registered in session {session.session_id}"
            raise SessionClosedError(msg)

    reference = base_models[0]
    for model in base_models[1:]:
        if model.y != reference.y:
            msg = f"Base models predict different targets: '{reference.y}' and '{model.y}'"
            raise SchemaError(msg)
        if model.task != reference.task or model.domain != reference.domain:
            msg = f"Base models '{reference.model_id}' and '{model.model_id}' solve different tasks"
            raise SchemaError(msg)
        if model.training_frame_id != reference.training_frame_id:
            msg = (
                f"Base models were trained on different frames: "
                f"'{reference.training_frame_id}' and '{model.training_frame_id}'"
            )
            raise SchemaError(msg)

    if reference.training_frame_id != training_frame.frame_id:
        msg = (
            f"Base models were trained on '{reference.training_frame_id}', "
            f"not on '{training_frame.frame_id}'"
        )
        raise SchemaError(msg)
    return reference


def stack(
    base_models: list[Model],
    training_frame: Frame,
    *,
    validation_frame: Frame | None = None,
    metalearner_algorithm: str = "glm",
    metalearner_params: dict[str, Any] | None = None,
    metalearner_nfolds: int = 5,
    nfolds: int = 0,
    seed: int | None = None,
    model_id: str | None = None,
) -> Model:
    """
    Train a stacked ensemble over existing models.

    Args:
        base_models: At least two models trained on ``training_frame``
            with the same target.
        training_frame: Frame the base models were trained on.
        validation_frame: Optional frame for validation metrics.
        metalearner_algorithm: Family of the metalearner.
        metalearner_params: Hyperparameters of the metalearner.
        metalearner_nfolds: Folds for the out-of-fold level-one predictions.
        nfolds: Cross-validation folds for the ensemble's own metrics.
        seed: Random seed for fold assignment and the metalearner.
        model_id: Key of the ensemble; generated when omitted.

    Returns:
        Registered Model with algorithm 'stackedensemble'.

    Raises:
        SchemaError: If base models are incompatible.
    """
    session = training_frame.session
    session.ensure_alive()
    reference = _check_base_models(base_models, training_frame)
    task, domain, y = reference.task, reference.domain, reference.y

    x: list[str] = []
    for model in base_models:
        x.extend(c for c in model.x if c not in x)

    metalearner = get_estimator(
        metalearner_algorithm,
        task,
        metalearner_params,
        seed=seed,
        n_jobs=session.n_jobs,
    )
    estimators = [(m.model_id, clone(m.estimator)) for m in base_models]
    if task == "regression":
        ensemble: Any = StackingRegressor(
            estimators=estimators,
            final_estimator=metalearner,
            cv=KFold(n_splits=metalearner_nfolds, shuffle=True, random_state=seed),
        )
    else:
        ensemble = StackingClassifier(
            estimators=estimators,
            final_estimator=metalearner,
            cv=StratifiedKFold(n_splits=metalearner_nfolds, shuffle=True, random_state=seed),
        )

    model_id = model_id or session.next_key("stackedensemble")
    with log_context(model_id=model_id, algorithm="stackedensemble"):
        log.info(
            "Training stacked ensemble",
            base_models=[m.model_id for m in base_models],
            metalearner=metalearner_algorithm,
        )
        start = time.perf_counter()
        X_train, y_train = encode_rows(training_frame.data[x], training_frame.data[y], task, domain)
        fit_estimator(ensemble, X_train, y_train, "stackedensemble")
        training_time_s = time.perf_counter() - start

        params = {
            "base_models": [m.model_id for m in base_models],
            "metalearner_algorithm": metalearner_algorithm,
            "metalearner_params": dict(metalearner_params or {}),
            "metalearner_nfolds": metalearner_nfolds,
        }
        return build_model(
            session=session,
            model_id=model_id,
            algorithm="stackedensemble",
            task=task,
            domain=domain,
            x=x,
            y=y,
            params=params,
            pipeline=ensemble,
            training_frame=training_frame,
            validation_frame=validation_frame,
            nfolds=nfolds,
            seed=seed,
            training_time_s=training_time_s,
        )
