#!/usr/bin/env python3
"""
Run one ads budget pass and print the JSON report.

Run from backend directory:
  python scripts/run_budget_pass.py

Or as if it were a given moment (useful for checking a schedule):
  python scripts/run_budget_pass.py --at 2026-03-02T09:00:00+07:00
"""

import asyncio
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from shopads.engine import get_engine


async def main(at: datetime | None):
    engine = get_engine()
    report = await engine.dispatcher.run(now=at)
    print(json.dumps(report.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Apply the scheduled ads budgets that are active now")
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate schedules at this ISO8601 time instead of now (naive = UTC)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.at))
