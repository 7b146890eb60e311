"""
Preprocessing pipeline construction.

Builds an sklearn ColumnTransformer from the semantic column types of a
frame, so every family sees the same encoding of the same predictors.
"""

from typing import Any

from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from loanml.backend.frame import ColumnType
from loanml.exceptions import SchemaError
from loanml.utils.logging import get_logger

log = get_logger(__name__)

MISSING_LEVEL = "NA"


def build_preprocessor(
    types: dict[str, ColumnType],
    x: list[str],
    *,
    scale_numeric: bool = False,
) -> ColumnTransformer:
    """
    Build the preprocessing ColumnTransformer for a predictor set.

    Feature groups:
    - numeric: median imputation, plus standard scaling for linear and
      neural families
    - categorical: missing values become their own level, then one-hot
      encoding; levels unseen at training time encode to all zeros
    - text: dropped (no text featurization is done)

    Args:
        types: Semantic column types of the training frame.
        x: Predictor column names.
        scale_numeric: Whether to standard-scale numeric columns.

    Returns:
        Configured ColumnTransformer.

    Raises:
        SchemaError: If no usable predictor remains.
    """
    numeric_features = [c for c in x if types[c] == "numeric"]
    categorical_features = [c for c in x if types[c] == "categorical"]
    text_features = [c for c in x if types[c] == "text"]

    if text_features:
        log.warning("Dropping text predictors", columns=text_features)

    if not numeric_features and not categorical_features:
        msg = f"No numeric or categorical predictors among: {x}"
        raise SchemaError(msg)

    transformers: list[tuple[str, Any, list[str]]] = []

    if numeric_features:
        numeric_steps: list[tuple[str, Any]] = [("impute", SimpleImputer(strategy="median"))]
        if scale_numeric:
            numeric_steps.append(("scale", StandardScaler()))
        transformers.append(("numeric", Pipeline(numeric_steps), numeric_features))

    if categorical_features:
        categorical_pipeline = Pipeline(
            [
                ("impute", SimpleImputer(strategy="constant", fill_value=MISSING_LEVEL)),
                ("encode", OneHotEncoder(handle_unknown="ignore", sparse_output=False)),
            ]
        )
        transformers.append(("categorical", categorical_pipeline, categorical_features))

    log.debug(
        "Built preprocessor",
        numeric=len(numeric_features),
        categorical=len(categorical_features),
        scaled=scale_numeric,
    )
    return ColumnTransformer(transformers=transformers, remainder="drop")
