"""
Data ingestion layer.

Loads CSV sources with schema validation into backend frames.
"""

from loanml.ingestion.loader import CSVLoader, import_file

__all__ = ["CSVLoader", "import_file"]
