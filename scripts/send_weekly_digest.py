"""Build the weekly digest once and email it, outside the scheduler.

Run: uv run python scripts/send_weekly_digest.py [--dry-run] [--to team@example.com ...]

Without --to, the digest goes to DIGEST_RECIPIENTS (or ADMIN_EMAILS).
"""

import argparse
import asyncio
import sys

from waitlist.channels.factory import build_notification_sink
from waitlist.clock import utc_now
from waitlist.config import get_settings
from waitlist.db.connection import dispose_engine, get_sessionmaker
from waitlist.db.store import SqlRecordStore
from waitlist.handlers.digest import build_weekly_digest, send_weekly_digest


async def main(recipients: list[str], dry_run: bool) -> int:
    settings = get_settings()
    store = SqlRecordStore(get_sessionmaker())
    try:
        digest = await build_weekly_digest(store, now=utc_now(), top_n=settings.digest_top_referrers)
    finally:
        await dispose_engine()

    print(digest.model_dump_json(indent=2))
    if dry_run:
        return 0

    targets = recipients or settings.digest_recipient_list()
    if not targets:
        print("ERROR: no recipients; pass --to or set DIGEST_RECIPIENTS", file=sys.stderr)
        return 1
    delivery = await send_weekly_digest(build_notification_sink(settings), targets, digest)
    print(f"Sent to {len(delivery.sent)} recipient(s); failed: {delivery.failed or 'none'}")
    return 0 if not delivery.failed else 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send the weekly waitlist digest")
    parser.add_argument("--to", action="append", default=[], help="recipient email (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="print the digest without sending")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.to, args.dry_run)))
