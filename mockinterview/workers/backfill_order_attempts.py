"""
Backfill attempts_total on legacy orders to the current attempt cap.

Orders that already consumed (or reserved) more attempts than the cap keep
attempts_total at that count, so consumed attempts are never revoked and no
extra attempts are granted.

Run this before adding ck_orders_attempts_within_total to a legacy schema:
legacy rows may carry attempts_used above attempts_total, which the
constraint rejects. A row whose update still violates the constraint (for
example a reservation landed on it mid-run) is reported under "failed" and
the run continues.

Dry-run by default. Use --live to apply updates.
"""
from __future__ import annotations

import argparse
import logging
import os
from typing import Dict, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError

from mockinterview.core.database import get_db_session, orders
from mockinterview.models.order import ATTEMPTS_PER_ORDER


logger = logging.getLogger(__name__)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def backfilled_total(attempts_used: int, attempts_reserved: int, target_total: int) -> int:
    return max(target_total, attempts_used + attempts_reserved)


def backfill_attempts_total(*, dry_run: bool, target_total: int = ATTEMPTS_PER_ORDER) -> Dict:
    report = {
        "scanned": 0,
        "updated": 0,
        "preserved_above_cap": 0,
        "failed": 0,
        "failed_order_ids": [],
        "dry_run": dry_run,
        "target_total": target_total,
    }

    with get_db_session() as session:
        rows = session.execute(
            select(orders.c.id, orders.c.attempts_used, orders.c.attempts_reserved, orders.c.attempts_total)
            .where(orders.c.attempts_total != target_total)
            .order_by(orders.c.created_at, orders.c.id)
        ).fetchall()

    for order_id, used, reserved, current_total in rows:
        report["scanned"] += 1
        new_total = backfilled_total(used or 0, reserved or 0, target_total)
        if new_total > target_total:
            report["preserved_above_cap"] += 1
        if new_total == current_total:
            continue

        if not dry_run:
            try:
                with get_db_session() as session:
                    session.execute(
                        update(orders)
                        .where(and_(orders.c.id == order_id, orders.c.attempts_total == current_total))
                        .values(attempts_total=new_total)
                    )
            except IntegrityError as exc:
                report["failed"] += 1
                report["failed_order_ids"].append(order_id)
                logger.warning(f"order {order_id}: attempts_total {current_total} -> {new_total} rejected: {exc.orig}")
                continue
        report["updated"] += 1
        logger.info(f"order {order_id}: attempts_total {current_total} -> {new_total}")

    return report


def main() -> int:
    parser = argparse.ArgumentParser(description="Backfill orders.attempts_total to the attempt cap.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Apply updates to orders.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Run without writes.")
    parser.add_argument("--target-total", type=int, default=ATTEMPTS_PER_ORDER)
    parser.set_defaults(dry_run=_parse_bool(os.getenv("ORDER_BACKFILL_DRY_RUN", "1"), True))
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    report = backfill_attempts_total(dry_run=args.dry_run, target_total=args.target_total)
    print(report)
    return 1 if report["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
