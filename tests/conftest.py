"""Pytest configuration and shared fixtures."""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import pytest
import yaml

from loanml.backend.frame import Frame
from loanml.backend.session import Session, init_session
from loanml.config.settings import SessionConfig
from loanml.ingestion.loader import import_file
from loanml.modeling.columns import select_columns

# Small models keep the suite fast; keys are backend parameter names
SMALL_PARAMS: dict[str, dict[str, Any]] = {
    "glm": {"max_iter": 500},
    "drf": {"n_estimators": 10, "max_depth": 5},
    "gbm": {"n_estimators": 10, "max_depth": 3},
    "deeplearning": {"hidden_layer_sizes": [16], "max_iter": 30},
    "xgboost": {"n_estimators": 10, "max_depth": 3},
}


def make_loans(n: int = 400, seed: int = 0) -> pd.DataFrame:
    """Synthetic loans with the 15 columns of the reference file and a learnable default flag."""
    rng = np.random.default_rng(seed)

    term = rng.choice(["36 months", "60 months"], n, p=[0.7, 0.3])
    annual_inc = rng.lognormal(11.0, 0.5, n).round(0)
    dti = rng.uniform(0, 35, n).round(2)
    revol_util = rng.uniform(0, 100, n).round(1)
    emp_length = rng.integers(0, 11, n).astype(float)
    emp_length[rng.random(n) < 0.05] = np.nan
    home_ownership = rng.choice(["RENT", "MORTGAGE", "OWN"], n).astype(object)
    home_ownership[rng.random(n) < 0.03] = np.nan

    logit = (
        -1.2
        + 0.05 * (dti - 17)
        + 0.02 * (revol_util - 50)
        + 1.0 * (term == "60 months")
        - 0.8 * np.log(annual_inc / 60000)
    )
    p_bad = 1 / (1 + np.exp(-logit))
    bad_loan = (rng.random(n) < p_bad).astype(int)

    return pd.DataFrame(
        {
            "loan_amnt": rng.uniform(1000, 35000, n).round(-2),
            "term": term,
            "int_rate": (6 + 14 * p_bad + rng.normal(0, 1, n)).clip(5, 30).round(2),
            "emp_length": emp_length,
            "home_ownership": home_ownership,
            "annual_inc": annual_inc,
            "purpose": rng.choice(
                ["debt_consolidation", "credit_card", "home_improvement", "other"], n
            ),
            "addr_state": rng.choice(["CA", "NY", "TX", "FL", "IL"], n),
            "dti": dti,
            "delinq_2yrs": rng.poisson(0.3, n).astype(float),
            "revol_util": revol_util,
            "total_acc": rng.integers(3, 50, n).astype(float),
            "bad_loan": bad_loan,
            "longest_credit_length": rng.integers(2, 40, n).astype(float),
            "verification_status": rng.choice(["verified", "not verified"], n),
        }
    )


@pytest.fixture
def loan_df() -> pd.DataFrame:
    """Synthetic loan-shaped DataFrame."""
    return make_loans()


@pytest.fixture
def loan_csv(tmp_path: Path, loan_df: pd.DataFrame) -> Path:
    """Synthetic loan data written to a CSV file."""
    path = tmp_path / "loan.csv"
    loan_df.to_csv(path, index=False)
    return path


@pytest.fixture
def session() -> Iterator[Session]:
    """Running backend session, shut down after the test."""
    s = init_session(SessionConfig(n_jobs=1))
    yield s
    s.shutdown()


@pytest.fixture
def loans(session: Session, loan_csv: Path) -> Frame:
    """Imported loan frame with the target recast to categorical."""
    frame = import_file(session, loan_csv, destination_frame="loans")
    return frame.asfactor("bad_loan")


@pytest.fixture
def splits(loans: Frame) -> tuple[Frame, Frame, Frame]:
    """Train / valid / test frames from a seeded split."""
    train, valid, test = loans.split_frame(
        [0.7, 0.15], destination_frames=["train", "valid", "test"], seed=1
    )
    return train, valid, test


@pytest.fixture
def predictors(splits: tuple[Frame, Frame, Frame]) -> list[str]:
    """Predictor names without the target and the leakage column."""
    x, _ = select_columns(splits[0], "bad_loan", ["int_rate"])
    return x


@pytest.fixture
def config_dict(loan_csv: Path, tmp_path: Path) -> dict[str, Any]:
    """Minimal fast walkthrough configuration as a dictionary."""
    return {
        "project": "test-loans",
        "session": {"n_jobs": 1},
        "data": {"path": str(loan_csv), "url": None},
        "columns": {"target": "bad_loan", "as_factor": ["bad_loan"], "exclude": ["int_rate"]},
        "split": {"ratios": [0.7, 0.15], "destination_frames": ["train", "valid", "test"], "seed": 1},
        "models": {"hyperparameters": SMALL_PARAMS, "seed": 1},
        "grid": {
            "algorithm": "gbm",
            "hyper_params": {"max_depth": [2, 3], "learning_rate": [0.1]},
            "search_criteria": {"strategy": "Cartesian", "max_models": 2},
        },
        "automl": {"max_models": 2, "nfolds": 0, "include_algos": ["glm", "gbm"], "seed": 1},
        "mlflow": {"tracking_uri": str(tmp_path / "mlruns")},
        "output": {"root": str(tmp_path / "output")},
    }


@pytest.fixture
def config_file(tmp_path: Path, config_dict: dict[str, Any]) -> Path:
    """Walkthrough configuration written to YAML."""
    path = tmp_path / "config.yaml"
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config_dict, f)
    return path
