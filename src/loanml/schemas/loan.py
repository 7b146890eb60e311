"""
Pandera schema for the lending club loan dataset.

One row per issued loan; ``bad_loan`` flags loans that defaulted.
"""

import pandas as pd
import pandera.pandas as pa
from pandera.typing import Series


class LoanSchema(pa.DataFrameModel):
    """
    Schema for the raw loan CSV (163,987 rows x 15 columns in the reference file).

    Every column is coerced. String columns become the pandas string
    dtype, which keeps missing values missing.
    """

    loan_amnt: Series[float] = pa.Field(ge=0, coerce=True, description="Requested amount")
    term: Series[pd.StringDtype] = pa.Field(coerce=True, description="Loan term, e.g. '36 months'")
    int_rate: Series[float] = pa.Field(
        ge=0, coerce=True, description="Interest rate (percent); leaks the risk grade"
    )
    emp_length: Series[float] = pa.Field(
        ge=0, nullable=True, coerce=True, description="Employment length in years"
    )
    home_ownership: Series[pd.StringDtype] = pa.Field(nullable=True, coerce=True)
    annual_inc: Series[float] = pa.Field(ge=0, nullable=True, coerce=True)
    purpose: Series[pd.StringDtype] = pa.Field(nullable=True, coerce=True)
    addr_state: Series[pd.StringDtype] = pa.Field(
        nullable=True, coerce=True, str_length={"min_value": 2, "max_value": 2}
    )
    dti: Series[float] = pa.Field(nullable=True, coerce=True, description="Debt-to-income ratio")
    delinq_2yrs: Series[float] = pa.Field(ge=0, nullable=True, coerce=True)
    revol_util: Series[float] = pa.Field(ge=0, nullable=True, coerce=True)
    total_acc: Series[float] = pa.Field(ge=0, nullable=True, coerce=True)
    bad_loan: Series[int] = pa.Field(isin=[0, 1], coerce=True, description="Default flag (target)")
    longest_credit_length: Series[float] = pa.Field(nullable=True, coerce=True)
    verification_status: Series[pd.StringDtype] = pa.Field(nullable=True, coerce=True)

    class Config:
        """Schema configuration."""

        name = "LoanSchema"
        strict = False  # Allow extra columns


LOAN_COLUMNS = list(LoanSchema.to_schema().columns)
