"""
Column role selection.

Splits the columns of a frame into a target and a predictor set, and
derives the task type a target implies.
"""

from loanml.backend.frame import Frame
from loanml.evaluation.metrics import Task
from loanml.exceptions import SchemaError
from loanml.utils.logging import get_logger

log = get_logger(__name__)


def select_columns(
    frame: Frame,
    target: str,
    exclude: list[str] | None = None,
) -> tuple[list[str], str]:
    """
    Select predictors as every column except the target and exclusions.

    Excluded names that are not in the frame are ignored with a warning.

    Args:
        frame: Frame whose columns are split into roles.
        target: Target column name.
        exclude: Columns kept out of the predictor set.

    Returns:
        Tuple of (predictor names in frame order, target name).

    Raises:
        SchemaError: If the target is missing or no predictor remains.
    """
    columns = frame.columns
    if target not in columns:
        msg = f"Target column '{target}' not found in frame '{frame.frame_id}'"
        raise SchemaError(msg)

    excluded = set(exclude or [])
    unknown = sorted(excluded - set(columns))
    if unknown:
        log.warning("Excluded columns not in frame", columns=unknown)

    x = [c for c in columns if c != target and c not in excluded]
    if not x:
        msg = f"No predictor columns left after excluding {sorted(excluded)}"
        raise SchemaError(msg)

    log.info("Selected columns", target=target, n_predictors=len(x), excluded=sorted(excluded))
    return x, target


def detect_task(frame: Frame, y: str) -> Task:
    """
    Derive the task type from the semantic type of the target.

    Raises:
        SchemaError: For text targets and categorical targets with a
            single level.
    """
    col_type = frame.types[y]
    if col_type == "numeric":
        return "regression"
    if col_type == "text":
        msg = f"Response column '{y}' is text; recast it with asfactor() first"
        raise SchemaError(msg)

    n_levels = len(frame.levels(y))
    if n_levels < 2:
        msg = f"Response column '{y}' has {n_levels} level(s); at least 2 are needed"
        raise SchemaError(msg)
    return "binomial" if n_levels == 2 else "multinomial"
