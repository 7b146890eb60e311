"""
Schema definitions using Pandera for data validation.

Data contracts are checked at the import boundary.
"""

from loanml.schemas.loan import LOAN_COLUMNS, LoanSchema

__all__ = ["LOAN_COLUMNS", "LoanSchema"]
