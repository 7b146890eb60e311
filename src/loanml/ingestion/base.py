"""
Base classes and utilities for data ingestion.

Provides common functionality for all data loaders.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

import pandas as pd
import pandera.errors
import pandera.pandas as pa

from loanml.config.settings import DataConfig
from loanml.exceptions import SchemaError
from loanml.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T", bound=pa.DataFrameModel)


class DataLoader(ABC, Generic[T]):
    """
    Abstract base class for data loaders.

    All data loaders inherit from this class to ensure consistent
    schema validation at system boundaries.
    """

    def __init__(self, config: DataConfig, schema: type[T] | None = None) -> None:
        """
        Initialize data loader.

        Args:
            config: Data source configuration.
            schema: Pandera schema for validation (None skips validation).
        """
        self.config = config
        self.schema = schema

    @abstractmethod
    def _load_raw(self) -> pd.DataFrame:
        """Load raw data from source. Implemented by subclasses."""
        ...

    def load(self, *, validate: bool = True) -> pd.DataFrame:
        """
        Load and optionally validate data.

        Args:
            validate: Whether to validate against schema.

        Returns:
            Loaded (and optionally validated) DataFrame.

        Raises:
            DataImportError: If no source could be read.
            SchemaError: If validation fails.
        """
        log.info("Loading data", loader=self.__class__.__name__)

        df = self._load_raw()
        log.info("Loaded raw data", rows=len(df), columns=len(df.columns))

        if validate and self.schema is not None:
            df = self._validate(df)
            log.info("Schema validation passed", schema=self.schema.__name__)

        return df

    def _validate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Validate DataFrame against schema.

        Args:
            df: DataFrame to validate.

        Returns:
            Validated DataFrame.
        """
        if self.schema is None:
            return df
        try:
            return self.schema.validate(df)
        except pandera.errors.SchemaError as e:
            msg = f"{self.schema.__name__} validation failed: {e}"
            raise SchemaError(msg) from e
