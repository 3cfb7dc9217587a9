# scripts/apply_dynamic_prices.py
# Cron: run on the 1st of each month (and safe to re-run) to turn queued
# monthly prices into live Stripe prices.

import os
import sys
import json
import logging

from dotenv import load_dotenv
from sqlmodel import Session

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import engine
from services.price_queue import apply_due_prices

# ✅ Load environment variables
load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main() -> int:
    print("💲 Applying due dynamic prices...")
    with Session(engine) as session:
        summary = apply_due_prices(session)

    print(json.dumps(summary, indent=2, default=str))
    if summary["failures"]:
        print(f"❌ {len(summary['failures'])} price(s) failed to apply")
        return 1
    print(f"✅ Applied {len(summary['applied'])} price(s), skipped {len(summary['skipped'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
