"""
Dataset handles.

A Frame is a reference to a tabular dataset owned by a backend session.
It carries a semantic type per column (numeric, categorical, text) that
decides how the column is encoded for training and which task a target
implies. Categorical values are stored as strings.
"""

from typing import TYPE_CHECKING, Literal

import numpy as np
import pandas as pd

from loanml.exceptions import InvalidParameterError, SchemaError, SessionClosedError
from loanml.utils.logging import get_logger

if TYPE_CHECKING:
    from loanml.backend.session import Session

log = get_logger(__name__)

ColumnType = Literal["numeric", "categorical", "text"]


def infer_column_types(
    df: pd.DataFrame,
    max_categorical_levels: int = 1000,
) -> dict[str, ColumnType]:
    """
    Infer semantic column types from pandas dtypes.

    Numeric dtypes map to numeric. String-like and boolean columns map to
    categorical, unless they have more than ``max_categorical_levels``
    distinct values, in which case they are text.

    Args:
        df: Source DataFrame.
        max_categorical_levels: Cardinality limit for categorical columns.

    Returns:
        Mapping column name -> semantic type.
    """
    types: dict[str, ColumnType] = {}
    for col in df.columns:
        series = df[col]
        if pd.api.types.is_bool_dtype(series):
            types[col] = "categorical"
        elif pd.api.types.is_numeric_dtype(series):
            types[col] = "numeric"
        elif series.nunique(dropna=True) > max_categorical_levels:
            types[col] = "text"
        else:
            types[col] = "categorical"
    return types


def to_level_strings(series: pd.Series) -> pd.Series:
    """Convert values to string levels, keeping missing values as NaN."""
    if pd.api.types.is_float_dtype(series):
        non_null = series.dropna()
        if (non_null == np.floor(non_null)).all():
            series = series.astype("Int64")
    return series.astype("string").astype(object).where(series.notna(), np.nan)


class Frame:
    """
    Handle to a session-managed tabular dataset.

    Attributes:
        frame_id: Key of the frame inside its session.
    """

    def __init__(
        self,
        session: "Session",
        frame_id: str,
        data: pd.DataFrame,
        types: dict[str, ColumnType],
    ) -> None:
        self._session = session
        self.frame_id = frame_id
        self._data = data
        self._types = dict(types)

    def __repr__(self) -> str:
        return f"Frame(frame_id={self.frame_id!r}, rows={len(self._data)}, cols={len(self._types)})"

    def _check(self) -> None:
        """Raise if this handle is no longer valid."""
        self._session.ensure_alive()
        if not self._session.holds_frame(self):
            msg = f"Frame '{self.frame_id}' was removed or replaced in session {self._session.session_id}"
            raise SessionClosedError(msg)

    def _require_column(self, column: str) -> None:
        if column not in self._types:
            msg = f"Column '{column}' not found in frame '{self.frame_id}'"
            raise SchemaError(msg)

    @property
    def session(self) -> "Session":
        """Owning session."""
        return self._session

    @property
    def data(self) -> pd.DataFrame:
        """Backing DataFrame. Treat as read-only; use as_data_frame() for a copy."""
        self._check()
        return self._data

    @property
    def nrows(self) -> int:
        """Number of rows."""
        self._check()
        return len(self._data)

    @property
    def ncols(self) -> int:
        """Number of columns."""
        self._check()
        return len(self._types)

    @property
    def dim(self) -> tuple[int, int]:
        """(rows, columns)."""
        return (self.nrows, self.ncols)

    @property
    def columns(self) -> list[str]:
        """Column names in frame order."""
        self._check()
        return list(self._data.columns)

    @property
    def types(self) -> dict[str, ColumnType]:
        """Semantic type per column."""
        self._check()
        return dict(self._types)

    def levels(self, column: str) -> list[str]:
        """Sorted levels of a categorical column."""
        self._check()
        self._require_column(column)
        if self._types[column] != "categorical":
            msg = f"Column '{column}' is {self._types[column]}, not categorical"
            raise SchemaError(msg)
        return sorted(self._data[column].dropna().unique().tolist())

    def asfactor(self, column: str) -> "Frame":
        """
        Recast a column to categorical in place.

        Integral floats become integer strings, so a 0/1 column gets the
        levels "0" and "1".

        Returns:
            This frame, for chaining.
        """
        self._check()
        self._require_column(column)
        if self._types[column] != "categorical":
            self._data[column] = to_level_strings(self._data[column])
            previous = self._types[column]
            self._types[column] = "categorical"
            log.info(
                "Recast column",
                frame_id=self.frame_id,
                column=column,
                from_type=previous,
                to_type="categorical",
                levels=self._data[column].nunique(),
            )
        return self

    def asnumeric(self, column: str) -> "Frame":
        """
        Recast a column to numeric in place.

        Levels that all parse as numbers keep their value. Otherwise the
        column is replaced by the index of each level in sorted order.
        """
        self._check()
        self._require_column(column)
        if self._types[column] == "numeric":
            return self

        series = self._data[column]
        parsed = pd.to_numeric(series, errors="coerce")
        if parsed.notna().sum() == series.notna().sum():
            self._data[column] = parsed.astype(float)
        else:
            levels = sorted(series.dropna().unique().tolist())
            codes = {level: float(i) for i, level in enumerate(levels)}
            self._data[column] = series.map(codes)
            log.warning(
                "Non-numeric levels replaced by level codes",
                frame_id=self.frame_id,
                column=column,
                n_levels=len(levels),
            )
        self._types[column] = "numeric"
        return self

    def ascharacter(self, column: str) -> "Frame":
        """Recast a column to free text in place."""
        self._check()
        self._require_column(column)
        if self._types[column] == "numeric":
            self._data[column] = to_level_strings(self._data[column])
        self._types[column] = "text"
        return self

    def split_frame(
        self,
        ratios: list[float],
        destination_frames: list[str] | None = None,
        seed: int | None = None,
    ) -> list["Frame"]:
        """
        Split into approximately sized random partitions.

        Each row draws a uniform number and lands in the partition whose
        cumulative ratio bracket contains it, so partition sizes are
        approximate. The remainder ``1 - sum(ratios)`` forms the last
        partition. A fixed seed gives identical partitions on every call.

        Args:
            ratios: Fractions for all but the last partition.
            destination_frames: Optional names for the ``len(ratios) + 1``
                output frames.
            seed: Random seed.

        Returns:
            ``len(ratios) + 1`` new frames, registered in the session.
        """
        self._check()
        if not ratios or any(r <= 0 or r >= 1 for r in ratios) or sum(ratios) >= 1:
            msg = f"Ratios must be in (0, 1) and sum to less than 1, got: {ratios}"
            raise InvalidParameterError(msg)

        n_parts = len(ratios) + 1
        if destination_frames is not None and len(destination_frames) != n_parts:
            msg = f"Expected {n_parts} destination frames, got {len(destination_frames)}"
            raise InvalidParameterError(msg)

        rng = np.random.default_rng(seed)
        draws = rng.random(len(self._data))
        assignment = np.searchsorted(np.cumsum(ratios), draws, side="right")

        parts = []
        for i in range(n_parts):
            part = self._data.loc[assignment == i].reset_index(drop=True)
            frame_id = destination_frames[i] if destination_frames else None
            parts.append(self._session.upload_frame(part, frame_id=frame_id, types=self._types))

        log.info(
            "Split frame",
            frame_id=self.frame_id,
            seed=seed,
            sizes={p.frame_id: len(p._data) for p in parts},
        )
        return parts

    def as_data_frame(self) -> pd.DataFrame:
        """Return a pandas copy of the frame."""
        self._check()
        return self._data.copy()

    def head(self, n: int = 10) -> pd.DataFrame:
        """Return the first n rows as a pandas DataFrame."""
        self._check()
        return self._data.head(n).copy()

    def describe(self) -> pd.DataFrame:
        """Per-column summary: type, missing count, distinct values, mean."""
        self._check()
        rows = []
        for col in self._data.columns:
            series = self._data[col]
            col_type = self._types[col]
            rows.append(
                {
                    "column": col,
                    "type": col_type,
                    "missing": int(series.isna().sum()),
                    "distinct": int(series.nunique(dropna=True)),
                    "mean": float(series.mean()) if col_type == "numeric" else np.nan,
                }
            )
        return pd.DataFrame(rows)
