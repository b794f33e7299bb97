"""Contract lifecycle and document reconciliation for a brokerage back office."""

__version__ = "0.1.0"
