"""
loanml: Loan default classification walkthrough.

This package wraps an in-process machine-learning backend (scikit-learn,
XGBoost, Optuna) behind dataset and model handles, and orchestrates
ingestion, splitting, training, ensembling, automated search and evaluation.
"""

from importlib.metadata import version

__version__ = version("loanml")

__all__ = ["__version__"]
