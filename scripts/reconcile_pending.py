#!/usr/bin/env python3
"""
Reconcile stale pending credit transactions.

A precharge that stays pending past the TTL is a leaked hold: the request
died between the provider call and settlement. This lists them and, with
--refund, returns the held credits.

Usage:
    # List holds older than the configured TTL
    python3 scripts/reconcile_pending.py

    # List holds older than one hour
    python3 scripts/reconcile_pending.py --older-than 3600

    # Refund them
    python3 scripts/reconcile_pending.py --refund
"""

import argparse
import asyncio
import sys
from datetime import timedelta

from app.db.session import close_engines, get_write_session
from app.observability import get_logger, setup_logging
from app.services.ledger import LedgerService

logger = get_logger("reconcile_pending")


async def reconcile(older_than: timedelta | None, limit: int, refund: bool) -> int:
    """Returns the number of stale holds found (or refunded)."""
    try:
        async with get_write_session() as session:
            service = LedgerService(session)

            if refund:
                refunded = await service.refund_stale_pending(older_than, limit)
                for transaction in refunded:
                    print(
                        f"refunded {transaction.transaction_id} user={transaction.user_id} "
                        f"credits={abs(transaction.delta)} reason={transaction.reason}"
                    )
                return len(refunded)

            stale = await service.find_stale_pending(older_than, limit)
            for transaction in stale:
                print(
                    f"pending {transaction.transaction_id} user={transaction.user_id} "
                    f"credits={abs(transaction.delta)} created_at={transaction.created_at.isoformat()}"
                )
            return len(stale)
    finally:
        await close_engines()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Find and refund stale pending credit transactions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry listing (for cron alerts)
  python3 scripts/reconcile_pending.py

  # Refund holds older than 30 minutes
  python3 scripts/reconcile_pending.py --older-than 1800 --refund
        """,
    )
    parser.add_argument(
        "--older-than",
        type=int,
        help="Age in seconds (default: PENDING_TRANSACTION_TTL_SECONDS)",
    )
    parser.add_argument("--limit", type=int, default=100, help="Maximum rows per run")
    parser.add_argument("--refund", action="store_true", help="Refund the stale holds")

    args = parser.parse_args()

    if args.older_than is not None and args.older_than <= 0:
        logger.error("invalid_older_than", older_than=args.older_than)
        sys.exit(2)

    setup_logging()
    older_than = timedelta(seconds=args.older_than) if args.older_than else None

    count = asyncio.run(reconcile(older_than, args.limit, args.refund))
    logger.info("reconcile_pending_finished", count=count, refund=args.refund)


if __name__ == "__main__":
    main()
