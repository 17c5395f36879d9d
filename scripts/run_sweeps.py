#!/usr/bin/env python3
"""Scheduled maintenance jobs.

Meant for cron or a platform scheduler, e.g. hourly:

    python scripts/run_sweeps.py recovery
    python scripts/run_sweeps.py auto-expire
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from storefront.core.config import get_settings  # noqa: E402
from storefront.core.database import SessionLocal  # noqa: E402
from storefront.core.logging_setup import configure_logging  # noqa: E402
from storefront.core.request_context import job_context  # noqa: E402
from storefront.services.checkout_recovery import CheckoutRecoveryService  # noqa: E402
from storefront.services.coupon_auto_expire import auto_expire_underperforming_coupons  # noqa: E402

logger = logging.getLogger("storefront.sweeps")

JOBS = ("auto-expire", "recovery", "detect-abandoned", "expire-recoveries")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run storefront maintenance sweeps.")
    parser.add_argument("job", choices=JOBS, help="Sweep to run")
    return parser.parse_args(argv)


def run_job(job: str, db, settings) -> dict:
    if job == "auto-expire":
        expired = auto_expire_underperforming_coupons(db, settings=settings)
        return {"expired_count": len(expired), "expired_coupons": expired}

    service = CheckoutRecoveryService(settings=settings)
    if job == "recovery":
        results = service.run_recovery_email_job(db)
        return {name: {"sent": batch.sent, "errors": len(batch.errors)} for name, batch in results.items()}
    if job == "detect-abandoned":
        detected = service.detect_abandoned_carts(db)
        db.commit()
        return {"detected": len(detected)}

    expired_count = service.expire_old_recoveries(db)
    db.commit()
    return {"expired": expired_count}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    with job_context(args.job):
        db = SessionLocal()
        try:
            summary = run_job(args.job, db, get_settings())
        except Exception:
            db.rollback()
            logger.exception("sweep failed")
            return 1
        finally:
            db.close()

        logger.info("sweep finished %s", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
