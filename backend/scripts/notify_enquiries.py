#!/usr/bin/env python3
"""
Send the hourly WhatsApp enquiry summary to every flagged CRM account.
Same sweep as POST /api/cron/notify-enquiries.

Run from backend directory:
  python scripts/notify_enquiries.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from budgetbot.config import get_settings
from budgetbot.services.enquiry_notifier import EnquiryNotifier
from budgetbot.services.gateway import create_gateway

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("notify_enquiries")


async def main() -> int:
    settings = get_settings()
    async with create_gateway(settings) as gateway:
        report = await EnquiryNotifier.from_settings(gateway, settings).run()

    print(f"Sent: {len(report.sent)}  Skipped: {len(report.skipped)}  Failed: {len(report.failures)}")
    for failure in report.failures:
        print(f"  {failure.account_id}: {failure.error}")
    return 1 if report.failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
