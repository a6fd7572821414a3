#!/usr/bin/env python3
"""
Run one Stripe subscription sync pass from the command line (cron / Render job).

Mirrors every Stripe subscription, records commissions for active attributed
subscriptions and cancels pending ones on terminal failures, then prints the
summary as JSON.

Run from project root with DATABASE_URL and STRIPE_SECRET_KEY set:
  python sync_subscriptions.py
  python sync_subscriptions.py --customer cus_123

Exit codes: 0 done (per-subscription errors are in the summary), 1 Stripe
unavailable, 2 another sync pass is already running.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv(project_root / ".env")

from app.db.session import SessionLocal
from app.services.billing_client import BillingClient, get_billing_client
from app.services.subscription_sync import (
    BillingUnavailableError,
    SyncAlreadyRunningError,
    sync_all_subscriptions,
    sync_lock,
)

EXIT_OK = 0
EXIT_BILLING_UNAVAILABLE = 1
EXIT_ALREADY_RUNNING = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Stripe subscriptions and reconcile reseller commissions.")
    parser.add_argument("--customer", help="Only sync the subscriptions of this Stripe customer id")
    parser.add_argument("--page-size", type=int, default=None, help="Subscriptions per Stripe page (max 100)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None, session_factory=SessionLocal, billing: BillingClient | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    billing = billing or get_billing_client()
    options = {"customer_id": args.customer}
    if args.page_size:
        options["page_size"] = args.page_size

    db = session_factory()
    try:
        with sync_lock(db):
            summary = sync_all_subscriptions(db, billing, **options)
    except SyncAlreadyRunningError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ALREADY_RUNNING
    except BillingUnavailableError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_BILLING_UNAVAILABLE
    finally:
        db.close()

    print(json.dumps(summary.to_dict(), indent=2))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
