# scripts/sync_subscriptions.py
# Cron / support tool: reconcile every connected business's subscriptions
# with Stripe.

import os
import sys
import json
import argparse
import logging

from dotenv import load_dotenv
from sqlmodel import Session

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import engine
from models.models import Business
from services.reconciliation import sync_all_businesses, sync_business_subscriptions

# ✅ Load environment variables
load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconcile local subscriptions with Stripe.")
    parser.add_argument("--business-id", type=int, default=None, help="Only sync this business")
    parser.add_argument(
        "--create-missing",
        action="store_true",
        help="Create local rows for Stripe subscriptions that resolve to a known plan",
    )
    args = parser.parse_args()

    with Session(engine) as session:
        if args.business_id is not None:
            business = session.get(Business, args.business_id)
            if not business:
                print(f"❌ Business {args.business_id} not found")
                return 1
            report = sync_business_subscriptions(session, business, create_missing=args.create_missing)
            summary = {"business_id": business.id, "report": report.model_dump(mode="json")}
            failed = len(report.failures)
        else:
            summary = sync_all_businesses(session, create_missing=args.create_missing)
            failed = summary["totals"].get("failed", 0) + sum(1 for b in summary["businesses"] if "error" in b)

    print(json.dumps(summary, indent=2, default=str))
    if failed:
        print(f"⚠️ Sync finished with {failed} failure(s)")
        return 1
    print("✅ Sync finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
