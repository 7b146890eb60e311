"""
Configuration management with typed Pydantic models.

Provides environment-aware YAML loading with base-file inheritance.
"""

from loanml.config.loader import load_config
from loanml.config.settings import (
    Algorithm,
    AutoMLConfig,
    ColumnsConfig,
    DataConfig,
    EarlyStoppingConfig,
    GridConfig,
    MLflowConfig,
    ModelConfig,
    PipelineConfig,
    SearchCriteriaConfig,
    SessionConfig,
    SplitConfig,
)

__all__ = [
    "Algorithm",
    "AutoMLConfig",
    "ColumnsConfig",
    "DataConfig",
    "EarlyStoppingConfig",
    "GridConfig",
    "MLflowConfig",
    "ModelConfig",
    "PipelineConfig",
    "SearchCriteriaConfig",
    "SessionConfig",
    "SplitConfig",
    "load_config",
]
