"""Fleet ledger backend: trip integrity checks and KPI rollups."""

__version__ = "0.1.0"
