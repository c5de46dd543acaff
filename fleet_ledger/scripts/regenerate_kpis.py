"""
One-shot KPI regeneration.

Usage:
    python -m fleet_ledger.scripts.regenerate_kpis [--org ORG_ID ...]
"""

from __future__ import annotations

import argparse
import json
import logging

from ..core.db import SessionLocal
from ..core.logging_config import setup_logging
from ..services.kpi_rollup import run_kpi_rollup


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute KPI cards for one or all organizations.")
    parser.add_argument("--org", action="append", dest="orgs", help="Organization id (repeatable)")
    parser.add_argument("--budget-sec", type=float, default=None, help="Per-tenant time budget override")
    args = parser.parse_args(argv)

    setup_logging()
    report = run_kpi_rollup(SessionLocal, organization_ids=args.orgs, budget_sec=args.budget_sec)
    print(json.dumps(report.to_dict(), indent=2))
    if report.retry_ids:
        logging.getLogger("regenerate_kpis").warning("Tenants not refreshed: %s", report.retry_ids)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
