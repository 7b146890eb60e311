"""
Model persistence (save/load).

A saved model is two files in one directory:
    - {model_id}.model.joblib: fitted estimator and metadata
    - {model_id}.model.json: human-readable metadata
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import joblib

from loanml.backend.session import Session
from loanml.evaluation.metrics import ModelMetrics
from loanml.modeling.training import Model
from loanml.utils.logging import get_logger

log = get_logger(__name__)

_SUFFIX = ".model.joblib"


def _metrics_to_dict(metrics: ModelMetrics | None) -> dict[str, Any] | None:
    if metrics is None:
        return None
    return {"task": metrics.task, "n_samples": metrics.n_samples, "values": dict(metrics.values)}


def _metrics_from_dict(data: dict[str, Any] | None) -> ModelMetrics | None:
    if data is None:
        return None
    return ModelMetrics(task=data["task"], n_samples=data["n_samples"], values=data["values"])


def save_model(model: Model, directory: Path | str) -> tuple[Path, Path]:
    """Save a model and its metadata to a directory.

    Args:
        model: Trained model handle.
        directory: Output directory (created if missing).

    Returns:
        Tuple of (model_path, metadata_path).
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    model_path = directory / f"{model.model_id}{_SUFFIX}"
    metadata_path = directory / f"{model.model_id}.model.json"

    metadata: dict[str, Any] = {
        "model_id": model.model_id,
        "algorithm": model.algorithm,
        "task": model.task,
        "x": model.x,
        "y": model.y,
        "domain": model.domain,
        "params": model.params,
        "training_frame_id": model.training_frame_id,
        "validation_frame_id": model.validation_frame_id,
        "actual_iterations": model.actual_iterations,
        "training_time_s": model.training_time_s,
        "training_metrics": _metrics_to_dict(model.training_metrics),
        "validation_metrics": _metrics_to_dict(model.validation_metrics),
        "cross_validation_metrics": [_metrics_to_dict(m) for m in model.cross_validation_metrics],
        "scoring_history": model.scoring_history,
        "saved_at": datetime.now(timezone.utc).isoformat(),
    }

    joblib.dump({"estimator": model.estimator, "metadata": metadata}, model_path)
    log.info("Saved model", model_id=model.model_id, path=str(model_path))

    with open(metadata_path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2, default=str)
    log.info("Saved model metadata", path=str(metadata_path))

    return model_path, metadata_path


def load_model(path: Path | str, session: Session) -> Model:
    """Load a saved model and register it in a running session.

    Accepts either the ``.model.joblib`` file or the path without that
    suffix.

    Args:
        path: Saved model path.
        session: Session the model handle will belong to.

    Returns:
        Registered model handle.

    Raises:
        FileNotFoundError: If the model file doesn't exist.
    """
    session.ensure_alive()
    path = Path(path)
    model_path = path if path.name.endswith(_SUFFIX) else path.with_name(path.name + _SUFFIX)
    if not model_path.exists():
        msg = f"Model file not found: {model_path}"
        raise FileNotFoundError(msg)

    payload = joblib.load(model_path)
    metadata = payload["metadata"]

    model = Model(
        model_id=metadata["model_id"],
        algorithm=metadata["algorithm"],
        task=metadata["task"],
        x=metadata["x"],
        y=metadata["y"],
        params=metadata["params"],
        estimator=payload["estimator"],
        session=session,
        domain=metadata["domain"],
        training_frame_id=metadata["training_frame_id"],
        validation_frame_id=metadata["validation_frame_id"],
        training_metrics=_metrics_from_dict(metadata["training_metrics"]),
        validation_metrics=_metrics_from_dict(metadata["validation_metrics"]),
        cross_validation_metrics=[
            m for m in map(_metrics_from_dict, metadata["cross_validation_metrics"]) if m
        ],
        scoring_history=metadata["scoring_history"],
        actual_iterations=metadata["actual_iterations"],
        training_time_s=metadata["training_time_s"],
    )
    session.register_model(model)
    log.info("Loaded model", model_id=model.model_id, path=str(model_path))
    return model
