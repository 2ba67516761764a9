#!/usr/bin/env python
"""Delete consumed or expired delivery OTP challenges.

Usage:
    python backend/scripts/purge_otps.py                       # purge everything dead
    python backend/scripts/purge_otps.py --older-than-hours 48 # keep recent rows for support lookups
    python backend/scripts/purge_otps.py --dry-run             # only report how many would go
"""
from __future__ import annotations
import os, sys, argparse
from datetime import timedelta

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from repairdesk import create_app, get_db  # type: ignore
from repairdesk.services.otp import OtpChallengeManager


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Purge consumed/expired delivery OTP challenges')
    parser.add_argument('--older-than-hours', type=int, default=None,
                        help='only purge challenges created more than N hours ago')
    parser.add_argument('--dry-run', action='store_true', help='count matching rows without deleting')
    args = parser.parse_args(argv)
    if args.older_than_hours is not None and args.older_than_hours < 0:
        parser.error('--older-than-hours must be >= 0')

    app = create_app({'NOTIFY_ASYNC': False})
    with app.app_context():
        session = get_db()
        older_than = timedelta(hours=args.older_than_hours) if args.older_than_hours is not None else None
        count = OtpChallengeManager().purge(session, older_than=older_than, dry_run=args.dry_run)
        verb = 'Would purge' if args.dry_run else 'Purged'
        print(f'{verb} {count} OTP challenge(s)')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
