#!/usr/bin/env python3
"""
Reconcile pending payments against Stripe.

Picks up payments still pending after the given age (a webhook that never
arrived, or a checkout the member abandoned): completed and paid sessions are
fulfilled, expired sessions are marked failed.

Usage:
    uv run python scripts/reconcile_payments.py --env dev
    uv run python scripts/reconcile_payments.py --env prod --older-than-minutes 120
"""

import argparse
import datetime as dt
import logging
import os
import sys

from portal_shared.config import get_settings
from portal_shared.services.dynamodb import get_dynamodb_service
from portal_shared.services.reconciliation import ReconciliationService
from portal_shared.services.record_store import ServiceStore
from portal_shared.services.stripe_service import StripeService
from portal_shared.utils.logging import configure_logging, set_correlation_id

DEFAULT_OLDER_THAN_MINUTES = 60


def run(older_than_minutes: int) -> int:
    """Run one sweep. Returns the process exit code."""
    set_correlation_id(f"reconcile-{dt.datetime.now(dt.UTC):%Y%m%dT%H%M%S}")
    service = ReconciliationService(
        stripe_service=StripeService(),
        store=ServiceStore(get_dynamodb_service()),
    )
    report = service.reconcile_pending(dt.timedelta(minutes=older_than_minutes))

    print(
        f"Checked {report.checked} pending payment(s): "
        f"{report.fulfilled} fulfilled, {report.expired} expired, "
        f"{report.unchanged} unchanged, {report.errors} error(s)"
    )
    return 1 if report.errors else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile pending payments against Stripe checkout sessions"
    )
    parser.add_argument(
        "--env",
        help="Environment name (sets ENVIRONMENT; table prefix defaults to membership-<env>)",
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=DEFAULT_OLDER_THAN_MINUTES,
        help=f"Only consider payments pending longer than this (default: {DEFAULT_OLDER_THAN_MINUTES})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    args = parser.parse_args(argv)

    if args.older_than_minutes < 0:
        parser.error("--older-than-minutes must not be negative")

    if args.env:
        os.environ["ENVIRONMENT"] = args.env
        get_settings.cache_clear()

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    return run(args.older_than_minutes)


if __name__ == "__main__":
    sys.exit(main())
