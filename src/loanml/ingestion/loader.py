"""
CSV ingestion into backend frames.

Reads a local CSV, falling back to a remote URL when the local file is
missing, and registers the result as a session frame.
"""

from pathlib import Path

import pandas as pd

from loanml.backend.frame import Frame
from loanml.backend.session import Session
from loanml.config.settings import DataConfig
from loanml.exceptions import DataImportError
from loanml.ingestion.base import DataLoader
from loanml.schemas.loan import LoanSchema
from loanml.utils.logging import get_logger

log = get_logger(__name__)


class CSVLoader(DataLoader[LoanSchema]):
    """Loader for a CSV file with URL fallback."""

    def __init__(self, config: DataConfig, *, validate_loans: bool | None = None) -> None:
        """
        Initialize CSV loader.

        Args:
            config: Data source configuration.
            validate_loans: Check rows against LoanSchema (defaults to
                ``config.validate_schema``).
        """
        use_schema = config.validate_schema if validate_loans is None else validate_loans
        super().__init__(config, LoanSchema if use_schema else None)

    def _load_raw(self) -> pd.DataFrame:
        """Read the local file if present, otherwise the URL."""
        path = self.config.path
        if path is not None and Path(path).exists():
            log.info("Reading local CSV", path=str(path), nrows=self.config.nrows)
            return self._read(str(path))

        if not self.config.url:
            msg = f"Data file not found and no URL fallback configured: {path}"
            raise DataImportError(msg)

        if path is not None:
            log.warning("Local CSV not found, using URL fallback", path=str(path))
        log.info("Reading remote CSV", url=self.config.url, nrows=self.config.nrows)
        return self._read(self.config.url)

    def _read(self, source: str) -> pd.DataFrame:
        try:
            return pd.read_csv(source, nrows=self.config.nrows)
        except (OSError, ValueError) as e:
            msg = f"Could not read {source}: {e}"
            raise DataImportError(msg) from e


def import_file(
    session: Session,
    path: Path | str | None = None,
    *,
    url: str | None = None,
    nrows: int | None = None,
    destination_frame: str | None = None,
    config: DataConfig | None = None,
    validate: bool | None = None,
) -> Frame:
    """
    Import a CSV into the session.

    Explicit arguments override the matching fields of ``config``.

    Args:
        session: Running backend session.
        path: Local CSV path.
        url: Remote CSV used when the local file is missing.
        nrows: Keep only the first n rows.
        destination_frame: Key of the new frame.
        config: Base data configuration.
        validate: Validate against LoanSchema (defaults to config).

    Returns:
        Frame handle with inferred column types.

    Raises:
        DataImportError: If neither source can be read.
        SchemaError: If validation is enabled and fails.
    """
    session.ensure_alive()
    if config is None:
        if path is None and url is None:
            msg = "import_file needs a path, a url or a data config"
            raise DataImportError(msg)
        config = DataConfig(path=Path(path) if path is not None else None, url=url)
    overrides: dict[str, object] = {}
    if path is not None:
        overrides["path"] = Path(path)
    if url is not None:
        overrides["url"] = url
    if nrows is not None:
        overrides["nrows"] = nrows
    if overrides:
        config = config.model_copy(update=overrides)

    loader = CSVLoader(config, validate_loans=validate)
    df = loader.load()

    frame = session.upload_frame(
        df,
        frame_id=destination_frame,
        max_categorical_levels=config.max_categorical_levels,
    )
    log.info(
        "Imported frame",
        frame_id=frame.frame_id,
        rows=frame.nrows,
        cols=frame.ncols,
    )
    return frame
