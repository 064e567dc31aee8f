"""Spreadsheet ingestion and budget-tree reconciliation for ERP cost exports."""

__version__ = "0.3.0"
