#!/usr/bin/env python3
"""Reconcile a stock snapshot file against the yarn lot ledger.

Prints the import preview as JSON. With --commit the preview is applied
after an interactive confirmation (or immediately with --yes).

Examples:
  python backend/scripts/run_reconciliation.py stock_count.xlsx --pretty
  python backend/scripts/run_reconciliation.py stock_count.xlsx --commit
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from reconciliation.errors import ReconciliationError
from reconciliation.plan import PlanRegistry, ReconciliationPlan
from reconciliation.service import confirm_reconciliation, prepare_reconciliation


def summarize_plan(plan: ReconciliationPlan) -> dict[str, Any]:
    return {
        "plan_id": plan.plan_id,
        "file": plan.source_filename,
        "added": len(plan.additions),
        "updated": len(plan.updates),
        "unchanged": plan.unchanged_count,
        "duplicates": plan.duplicate_count,
        "skipped": plan.skipped,
        "discrepancies": [
            {
                "kind": u.discrepancy.kind.value,
                "yarn_name": u.yarn_name,
                "lot_number": u.lot_number,
                "allocated": u.discrepancy.allocated,
                "consumption": u.discrepancy.consumption,
                "reason": u.discrepancy.reason,
            }
            for u in plan.discrepancies
        ],
    }


def _confirm(prompt: str) -> bool:
    return input(f"{prompt} [y/N] ").strip().lower() in {"y", "yes"}


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    path = Path(args.file)
    content = path.read_bytes()

    engine = create_async_engine(args.database_url or settings.database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    registry = PlanRegistry()
    try:
        async with session_factory() as db:
            plan = await prepare_reconciliation(db, registry, content, filename=path.name, settings=settings)
            output: dict[str, Any] = {"preview": summarize_plan(plan), "committed": None}

            if not args.commit or plan.is_empty:
                return output
            if not args.yes:
                print(json.dumps(output["preview"], indent=2))
                prompt = f"Apply {len(plan.additions)} additions and {len(plan.updates)} updates?"
                # input() blocks, so it runs off the event loop
                if not await asyncio.to_thread(_confirm, prompt):
                    registry.discard(plan.plan_id)
                    return output

            result = await confirm_reconciliation(db, registry, plan.plan_id, settings=settings)
            output["committed"] = {"added": result.added, "updated": result.updated, "batches": result.batches}
            return output
    finally:
        await engine.dispose()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile a stock snapshot file against the yarn ledger.")
    parser.add_argument("file", help="Snapshot file (.xlsx, .xls or .csv)")
    parser.add_argument("--commit", action="store_true", help="Apply the plan after confirmation")
    parser.add_argument("--yes", action="store_true", help="Skip the interactive confirmation")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        result = asyncio.run(_run(args))
    except ReconciliationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"error: cannot read {args.file}: {exc.strerror or exc}", file=sys.stderr)
        return 1
    if args.pretty:
        print(json.dumps(result, indent=2, sort_keys=True))
    else:
        print(json.dumps(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
