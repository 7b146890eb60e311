"""
Configuration loading utilities.

Supports environment variable interpolation and config inheritance.
A minimal config only needs a project name; every section has defaults
matching the loan default walkthrough.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from loanml.config.settings import (
    AutoMLConfig,
    ColumnsConfig,
    DataConfig,
    EarlyStoppingConfig,
    GridConfig,
    MLflowConfig,
    ModelConfig,
    OutputConfig,
    PipelineConfig,
    SearchCriteriaConfig,
    SessionConfig,
    SplitConfig,
)


def _interpolate_env_vars(value: str) -> str:
    """
    Interpolate environment variables in string values.

    Supports ${VAR} and ${VAR:default} syntax.
    """
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        return os.environ.get(var_name, default if default is not None else "")

    return re.sub(pattern, replacer, value)


def _process_config_values(obj: Any) -> Any:
    """Recursively process config values for env var interpolation."""
    if isinstance(obj, str):
        return _interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _process_config_values(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_process_config_values(item) for item in obj]
    return obj


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and process environment variables."""
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return _process_config_values(data) if data else {}


def _build_data_config(data: dict[str, Any]) -> DataConfig:
    """Build data config; an explicit null disables the local path or URL."""
    kwargs: dict[str, Any] = {}
    if "path" in data:
        kwargs["path"] = Path(data["path"]) if data["path"] else None
    if "url" in data:
        kwargs["url"] = data["url"] or None
    if data.get("nrows") is not None:
        kwargs["nrows"] = int(data["nrows"])
    for key in ("max_categorical_levels", "validate_schema"):
        if key in data:
            kwargs[key] = data[key]
    return DataConfig(**kwargs)


def _build_model_config(models: dict[str, Any]) -> ModelConfig:
    """Build model config, including the optional early-stopping policy."""
    kwargs: dict[str, Any] = {
        key: models[key]
        for key in ("enabled", "hyperparameters", "nfolds", "seed")
        if key in models
    }
    early_stopping = models.get("early_stopping")
    if early_stopping:
        kwargs["early_stopping"] = EarlyStoppingConfig(**early_stopping)
    return ModelConfig(**kwargs)


def _build_grid_config(grid: dict[str, Any]) -> GridConfig:
    """Build grid config with nested search criteria."""
    kwargs: dict[str, Any] = {
        key: grid[key] for key in ("enabled", "algorithm", "hyper_params") if key in grid
    }
    if "search_criteria" in grid:
        kwargs["search_criteria"] = SearchCriteriaConfig(**grid["search_criteria"])
    return GridConfig(**kwargs)


def load_config(
    config_path: Path,
    base_path: Path | None = None,
) -> PipelineConfig:
    """
    Load walkthrough configuration from YAML file(s).

    Minimal config requires only:
        - project: str

    Args:
        config_path: Path to the main configuration file.
        base_path: Optional path to base configuration for inheritance.

    Returns:
        Fully validated PipelineConfig instance.
    """
    # Load base config if provided
    if base_path is not None:
        base_data = load_yaml(base_path)
    else:
        # Try to find base.yaml in same directory
        potential_base = config_path.parent / "base.yaml"
        base_data = (
            load_yaml(potential_base)
            if potential_base.exists() and potential_base != config_path
            else {}
        )

    main_data = load_yaml(config_path)

    # Merge configs (main overrides base)
    merged = _deep_merge(base_data, main_data)

    project = merged.get("project")
    if not project:
        msg = "Config must specify 'project' name"
        raise ValueError(msg)

    mlflow_data = merged.get("mlflow", {})
    output_data = merged.get("output", {})

    return PipelineConfig(
        project=project,
        session=SessionConfig(**merged.get("session", {})),
        data=_build_data_config(merged.get("data", {})),
        columns=ColumnsConfig(**merged.get("columns", {})),
        split=SplitConfig(**merged.get("split", {})),
        models=_build_model_config(merged.get("models", {})),
        grid=_build_grid_config(merged.get("grid", {})),
        automl=AutoMLConfig(**merged.get("automl", {})),
        mlflow=MLflowConfig(
            tracking_uri=mlflow_data.get("tracking_uri", "http://127.0.0.1:5000"),
            experiment_name=mlflow_data.get("experiment_name"),  # None = use project
        ),
        output=OutputConfig(
            output_root=Path(output_data.get("root", "./output")),
        ),
    )
