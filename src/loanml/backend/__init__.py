"""
In-process backend: sessions and dataset handles.
"""

from loanml.backend.frame import ColumnType, Frame, infer_column_types
from loanml.backend.session import Session, init_session

__all__ = ["ColumnType", "Frame", "Session", "infer_column_types", "init_session"]
