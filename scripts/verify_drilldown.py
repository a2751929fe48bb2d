#!/usr/bin/env python3
"""Verify parent/child trial consistency across drill-down levels.

This script:
1. Connects to both stores using DRILLNAV_* / GCP environment variables
2. Runs the root level of each scenario through the attribution engine
3. Expands the top parent rows and checks that the children's trials add
   up to the parent's trials within a small tolerance

Usage:
    python scripts/verify_drilldown.py 2026-02-04 2026-02-06
"""

import asyncio
import logging
import sys

from drillnav.attribution import (
    AttributionConfig,
    DrilldownAttributionEngine,
    DrilldownRequest,
    StoreQueryError,
)
from drillnav.stores import ConversionStoreClient, VisitStoreClient

# (parent dimension, child dimension)
SCENARIOS = [
    ("utm_source", "campaign"),
    ("utm_source", "device_type"),
    ("country", "url_path"),
    ("campaign", "os_name"),
    ("date", "device_type"),
    ("device_type", "utm_source"),
]

TOLERANCE = 2
TOP_PARENTS = 3


def sep(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def rounded_trials(rows) -> int:
    return sum(row.to_dict()["metrics"]["trials"] for row in rows)


async def check_scenario(engine, start: str, end: str, parent_dim: str, child_dim: str) -> list[str]:
    """Expand the top parent rows of one scenario and compare trial totals."""
    sep(f"{parent_dim} -> {child_dim}")
    issues = []

    parent = await engine.run(DrilldownRequest.from_dict({
        "date_range": {"start": start, "end": end},
        "dimensions": [parent_dim, child_dim],
        "depth": 0,
        "sort_by": "trials",
    }))
    print(f"  Parent mode: {parent.mode.value}, rows: {len(parent.rows)}")

    for parent_row in parent.rows[:TOP_PARENTS]:
        child = await engine.run(DrilldownRequest.from_dict({
            "date_range": {"start": start, "end": end},
            "dimensions": [parent_dim, child_dim],
            "depth": 1,
            "parent_filters": {parent_dim: parent_row.attribute},
            "limit": AttributionConfig().max_limit,
        }))

        parent_trials = rounded_trials([parent_row])
        child_trials = rounded_trials(child.rows)
        diff = abs(parent_trials - child_trials)
        status = "OK" if diff <= TOLERANCE else "MISMATCH"
        print(
            f"  {parent_row.attribute:30} parent={parent_trials:6} "
            f"children={child_trials:6} ({child.mode.value}) {status}"
        )
        if diff > TOLERANCE:
            issues.append(
                f"{parent_dim}={parent_row.attribute} -> {child_dim}: "
                f"parent={parent_trials} children={child_trials} diff={diff}"
            )
    return issues


async def main(start: str, end: str) -> int:
    config = AttributionConfig.from_env()
    visit_client = VisitStoreClient()
    with ConversionStoreClient() as conversion_client:
        engine = DrilldownAttributionEngine.from_clients(visit_client, conversion_client, config)

        issues = []
        for parent_dim, child_dim in SCENARIOS:
            try:
                issues += await check_scenario(engine, start, end, parent_dim, child_dim)
            except StoreQueryError as e:
                issues.append(f"{parent_dim} -> {child_dim}: {e}")

    sep("Summary")
    if not issues:
        print("  All parent-child consistency checks passed!")
        return 0
    for issue in issues:
        print(f"  {issue}")
    return 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
