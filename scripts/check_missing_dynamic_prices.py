# scripts/check_missing_dynamic_prices.py
# Cron: run daily. Alerts owners whose dynamic plans have no price queued
# for next month, escalating at 7, 3 and 1 day(s) before month end.

import os
import sys
import json
import logging

from dotenv import load_dotenv
from sqlmodel import Session

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import engine
from services.price_queue import check_missing_dynamic_prices

# ✅ Load environment variables
load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main() -> int:
    print("🔍 Checking for missing dynamic prices...")
    with Session(engine) as session:
        summary = check_missing_dynamic_prices(session)

    print(json.dumps(summary, indent=2, default=str))
    print("✅ Missing price check complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
