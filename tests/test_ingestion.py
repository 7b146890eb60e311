"""Tests for CSV ingestion and the loan schema."""

from pathlib import Path

import pandas as pd
import pandera.errors
import pytest

from loanml.backend.session import Session
from loanml.config.settings import DataConfig
from loanml.exceptions import DataImportError, SchemaError, SessionClosedError
from loanml.ingestion import CSVLoader, import_file
from loanml.schemas import LOAN_COLUMNS, LoanSchema


class TestLoanSchema:
    """Tests for LoanSchema."""

    def test_valid_data(self, loan_df: pd.DataFrame) -> None:
        """Test validation of a well-formed loan table."""
        validated = LoanSchema.validate(loan_df)
        assert list(validated.columns) == LOAN_COLUMNS

    def test_invalid_target(self, loan_df: pd.DataFrame) -> None:
        """Test that a default flag outside {0, 1} fails."""
        loan_df.loc[0, "bad_loan"] = 2
        with pytest.raises(pandera.errors.SchemaError):
            LoanSchema.validate(loan_df)

    def test_negative_amount(self, loan_df: pd.DataFrame) -> None:
        """Test that negative loan amounts fail."""
        loan_df.loc[0, "loan_amnt"] = -5.0
        with pytest.raises(pandera.errors.SchemaError):
            LoanSchema.validate(loan_df)


class TestCSVLoader:
    """Tests for CSVLoader."""

    def test_load_local(self, loan_csv: Path) -> None:
        """Test reading the local file."""
        df = CSVLoader(DataConfig(path=loan_csv, url=None)).load()
        assert df.shape == (400, 15)

    def test_url_fallback(self, tmp_path: Path, loan_csv: Path) -> None:
        """Test that the URL is read when the local file is missing."""
        config = DataConfig(path=tmp_path / "missing.csv", url=loan_csv.as_uri())
        df = CSVLoader(config).load()
        assert len(df) == 400

    def test_no_source(self, tmp_path: Path) -> None:
        """Test that a missing file without fallback raises error."""
        config = DataConfig(path=tmp_path / "missing.csv", url=None)
        with pytest.raises(DataImportError, match="no URL fallback"):
            CSVLoader(config).load()

    def test_unreadable_url(self, tmp_path: Path) -> None:
        """Test that a failing fallback raises error."""
        config = DataConfig(
            path=tmp_path / "missing.csv", url=(tmp_path / "also-missing.csv").as_uri()
        )
        with pytest.raises(DataImportError, match="Could not read"):
            CSVLoader(config).load()

    def test_schema_violation(self, tmp_path: Path, loan_df: pd.DataFrame) -> None:
        """Test that schema failures surface as SchemaError."""
        loan_df.loc[0, "bad_loan"] = 2
        path = tmp_path / "bad.csv"
        loan_df.to_csv(path, index=False)
        with pytest.raises(SchemaError, match="LoanSchema validation failed"):
            CSVLoader(DataConfig(path=path, url=None)).load()

    def test_validation_disabled(self, tmp_path: Path) -> None:
        """Test that arbitrary CSVs load without the loan schema."""
        path = tmp_path / "other.csv"
        pd.DataFrame({"a": [1, 2], "b": ["x", "y"]}).to_csv(path, index=False)
        df = CSVLoader(DataConfig(path=path, url=None), validate_loans=False).load()
        assert list(df.columns) == ["a", "b"]

    def test_validate_without_schema(self, tmp_path: Path) -> None:
        """Test that validation is a no-op when no schema is set."""
        loader = CSVLoader(DataConfig(path=tmp_path / "any.csv", url=None), validate_loans=False)
        df = pd.DataFrame({"a": [1, 2]})
        assert loader._validate(df) is df


class TestImportFile:
    """Tests for import_file."""

    def test_import_types(self, session: Session, loan_csv: Path) -> None:
        """Test that imported frames carry inferred column types."""
        frame = import_file(session, loan_csv, destination_frame="loans")
        assert frame.frame_id == "loans"
        assert frame.dim == (400, 15)
        assert frame.types["loan_amnt"] == "numeric"
        assert frame.types["bad_loan"] == "numeric"
        assert frame.types["term"] == "categorical"
        assert frame.types["addr_state"] == "categorical"
        assert session.frames() == ["loans"]

    def test_missing_values_preserved(self, session: Session, loan_csv: Path, loan_df: pd.DataFrame) -> None:
        """Test that missing categorical values stay missing."""
        frame = import_file(session, loan_csv)
        assert frame.data["home_ownership"].isna().sum() == loan_df["home_ownership"].isna().sum()
        assert "NA" not in frame.levels("home_ownership")

    def test_nrows(self, session: Session, loan_csv: Path) -> None:
        """Test truncating to the first rows."""
        frame = import_file(session, loan_csv, nrows=50)
        assert frame.nrows == 50

    def test_url_only(self, session: Session, loan_csv: Path) -> None:
        """Test importing from a URL without a local path."""
        frame = import_file(session, url=loan_csv.as_uri())
        assert frame.nrows == 400

    def test_config_overrides(self, session: Session, loan_csv: Path) -> None:
        """Test that explicit arguments override the config."""
        config = DataConfig(path=loan_csv, url=None, nrows=10)
        frame = import_file(session, config=config, nrows=20)
        assert frame.nrows == 20

    def test_requires_a_source(self, session: Session) -> None:
        """Test that calling without any source raises error."""
        with pytest.raises(DataImportError, match="needs a path"):
            import_file(session)

    def test_closed_session(self, session: Session, loan_csv: Path) -> None:
        """Test that importing into a closed session raises error."""
        session.shutdown()
        with pytest.raises(SessionClosedError):
            import_file(session, loan_csv)
