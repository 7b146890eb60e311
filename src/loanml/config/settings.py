"""
Typed configuration models using Pydantic.

All configuration is defined here with explicit typing and validation.
Processing code receives these models and never reads YAML directly.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LOAN_CSV_URL = "https://raw.githubusercontent.com/h2oai/app-consumer-loan/master/data/loan.csv"


class Algorithm(str, Enum):
    """Model families the backend can train."""

    GLM = "glm"  # regularized linear model
    DRF = "drf"  # distributed random forest
    GBM = "gbm"  # gradient boosting machine
    DEEPLEARNING = "deeplearning"  # feed-forward network
    XGBOOST = "xgboost"
    STACKEDENSEMBLE = "stackedensemble"


class SessionConfig(BaseModel):
    """Backend session configuration."""

    model_config = ConfigDict(frozen=True)

    n_jobs: int = Field(default=-1, description="Parallel jobs for estimators (-1 = all cores)")
    show_progress: bool = Field(
        default=False, description="Show backend progress output (trial logs, warnings)"
    )
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """Reject zero, which joblib does not accept."""
        if v == 0:
            msg = "n_jobs must be a positive integer or -1"
            raise ValueError(msg)
        return v


class DataConfig(BaseModel):
    """Dataset source configuration.

    The local path is tried first; the URL is the fallback when the file
    does not exist.
    """

    model_config = ConfigDict(frozen=True)

    path: Path | None = Field(
        default=Path("data/loan.csv"), description="Local CSV path"
    )
    url: str | None = Field(default=LOAN_CSV_URL, description="Remote CSV fallback")
    nrows: int | None = Field(
        default=None, ge=1, description="Truncate to the first n rows for faster iteration"
    )
    max_categorical_levels: int = Field(
        default=1000,
        ge=2,
        description="String columns with more distinct values are typed as text",
    )
    validate_schema: bool = Field(
        default=True, description="Validate against the loan schema on import"
    )

    @model_validator(mode="after")
    def validate_source(self) -> "DataConfig":
        """Ensure at least one source is configured."""
        if self.path is None and not self.url:
            msg = "Data config needs a 'path' or a 'url'"
            raise ValueError(msg)
        return self


class ColumnsConfig(BaseModel):
    """Column roles and semantic type adjustments."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(default="bad_loan", description="Prediction target column")
    as_factor: list[str] = Field(
        default_factory=lambda: ["bad_loan"],
        description="Numeric columns recast to categorical",
    )
    exclude: list[str] = Field(
        default_factory=lambda: ["int_rate"],
        description="Columns removed from the predictor set (leakage-prone)",
    )


class SplitConfig(BaseModel):
    """Train/validation/test partitioning configuration."""

    model_config = ConfigDict(frozen=True)

    ratios: list[float] = Field(default_factory=lambda: [0.7, 0.15])
    destination_frames: list[str] = Field(
        default_factory=lambda: ["train", "valid", "test"]
    )
    seed: int = Field(default=1)

    @field_validator("ratios")
    @classmethod
    def validate_ratios(cls, v: list[float]) -> list[float]:
        """Ensure every ratio is in (0, 1) and the total leaves a remainder."""
        if not v:
            msg = "At least one split ratio is required"
            raise ValueError(msg)
        if any(r <= 0 or r >= 1 for r in v):
            msg = f"Split ratios must be in (0, 1), got: {v}"
            raise ValueError(msg)
        if sum(v) >= 1:
            msg = f"Split ratios must sum to less than 1, got: {sum(v):.3f}"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_destinations(self) -> "SplitConfig":
        """One destination name per output frame."""
        if len(self.destination_frames) != len(self.ratios) + 1:
            msg = (
                f"Expected {len(self.ratios) + 1} destination frames, "
                f"got {len(self.destination_frames)}"
            )
            raise ValueError(msg)
        return self


class EarlyStoppingConfig(BaseModel):
    """Early-stopping policy applied to iterative model families."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=500, ge=1, description="Trees, rounds or epochs")
    score_interval: int = Field(default=10, ge=1, description="Iterations between scorings")
    metric: str = Field(default="auc", description="Metric to watch ('auto' per task)")
    tolerance: float = Field(default=1e-3, ge=0.0, description="Relative improvement")
    rounds: int = Field(default=3, ge=0, description="Patience in scoring events (0 = off)")


class ModelConfig(BaseModel):
    """Model families to run and their hyperparameters."""

    model_config = ConfigDict(frozen=True)

    enabled: list[Algorithm] = Field(
        default_factory=lambda: [
            Algorithm.GLM,
            Algorithm.DRF,
            Algorithm.GBM,
            Algorithm.DEEPLEARNING,
            Algorithm.XGBOOST,
            Algorithm.STACKEDENSEMBLE,
        ]
    )
    hyperparameters: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-family overrides (backend parameter names)"
    )
    early_stopping: EarlyStoppingConfig | None = Field(default=None)
    nfolds: int = Field(default=0, ge=0, le=20)
    seed: int = Field(default=1)

    @field_validator("nfolds")
    @classmethod
    def validate_nfolds(cls, v: int) -> int:
        """Cross-validation needs at least two folds."""
        if v == 1:
            msg = "nfolds must be 0 (disabled) or >= 2"
            raise ValueError(msg)
        return v

    @field_validator("hyperparameters")
    @classmethod
    def validate_hyperparameter_keys(cls, v: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """Hyperparameter sections must name known families."""
        known = {a.value for a in Algorithm}
        unknown = sorted(set(v) - known)
        if unknown:
            msg = f"Unknown algorithms in hyperparameters: {unknown}"
            raise ValueError(msg)
        return v


class SearchCriteriaConfig(BaseModel):
    """Grid search strategy and budget."""

    model_config = ConfigDict(frozen=True)

    strategy: Literal["Cartesian", "RandomDiscrete"] = Field(default="RandomDiscrete")
    max_models: int | None = Field(default=10, ge=1)
    max_runtime_secs: float | None = Field(default=None, gt=0)
    seed: int = Field(default=1)
    stopping_rounds: int = Field(default=0, ge=0)
    stopping_metric: str = Field(default="auto")
    stopping_tolerance: float = Field(default=1e-3, ge=0.0)


class GridConfig(BaseModel):
    """Hyperparameter grid search configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True)
    algorithm: Algorithm = Field(default=Algorithm.GBM)
    hyper_params: dict[str, list[Any]] = Field(
        default_factory=lambda: {
            "learning_rate": [0.01, 0.05, 0.1],
            "max_depth": [3, 5, 7],
            "subsample": [0.8, 1.0],
        }
    )
    search_criteria: SearchCriteriaConfig = Field(default_factory=SearchCriteriaConfig)

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: Algorithm) -> Algorithm:
        """Stacked ensembles are not grid-searchable."""
        if v == Algorithm.STACKEDENSEMBLE:
            msg = "Grid search does not support stacked ensembles"
            raise ValueError(msg)
        return v


class AutoMLConfig(BaseModel):
    """Automated model search configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True)
    max_models: int | None = Field(default=20, ge=1)
    max_runtime_secs: float | None = Field(default=None, gt=0)
    nfolds: int = Field(default=5, ge=0, le=20)
    sort_metric: str = Field(default="auto")
    include_algos: list[Algorithm] | None = Field(default=None)
    exclude_algos: list[Algorithm] = Field(default_factory=list)
    seed: int = Field(default=1)


class MLflowConfig(BaseModel):
    """MLflow experiment tracking configuration."""

    model_config = ConfigDict(frozen=True)

    tracking_uri: str = Field(default="http://127.0.0.1:5000")
    # experiment_name is optional; derived from project if not set
    experiment_name: str | None = Field(
        default=None, description="MLflow experiment name (defaults to project name)"
    )


class OutputConfig(BaseModel):
    """Output paths configuration.

    Structure: ./output/{project}/models, ./output/{project}/reports
    """

    model_config = ConfigDict(frozen=True)

    output_root: Path = Field(
        default=Path("./output"), description="Root directory for all outputs"
    )


class PipelineConfig(BaseModel):
    """Complete walkthrough configuration.

    The project name drives:
    - MLflow experiment name (if not explicitly set)
    - Output directory structure: ./output/{project}/
    """

    model_config = ConfigDict(frozen=True)

    project: str = Field(description="Project identifier (e.g., 'loan-default')")

    session: SessionConfig = Field(default_factory=SessionConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    columns: ColumnsConfig = Field(default_factory=ColumnsConfig)
    split: SplitConfig = Field(default_factory=SplitConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    grid: GridConfig = Field(default_factory=GridConfig)
    automl: AutoMLConfig = Field(default_factory=AutoMLConfig)
    mlflow: MLflowConfig = Field(default_factory=MLflowConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @model_validator(mode="after")
    def validate_target_not_excluded(self) -> "PipelineConfig":
        """The target cannot also be an excluded predictor."""
        if self.columns.target in self.columns.exclude:
            msg = f"Target '{self.columns.target}' is listed in columns.exclude"
            raise ValueError(msg)
        return self

    @property
    def experiment_name(self) -> str:
        """MLflow experiment name (derived from project if not set)."""
        return self.mlflow.experiment_name or self.project

    @property
    def models_dir(self) -> Path:
        """Path to saved models directory."""
        return self.output.output_root / self.project / "models"

    @property
    def reports_dir(self) -> Path:
        """Path to result tables directory."""
        return self.output.output_root / self.project / "reports"
