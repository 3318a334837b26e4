"""
Renew Gmail watches and Graph subscriptions that are about to expire.

Registrations are otherwise only renewed when the user opens the app;
run this periodically (e.g. daily from cron) so that users who do not open
the app for a few days keep receiving notifications.
"""
import asyncio
import sys

from mailpush.infrastructure.persistence.database import dispose_engine
from mailpush.presentation.api.dependencies import get_lifecycle_service
from mailpush.shared.telemetry.logging import setup_logging


async def renew_subscriptions(within_hours: int) -> int:
    setup_logging()
    try:
        summary = await get_lifecycle_service().renew_expiring_registrations(within_hours)
    finally:
        await dispose_engine()

    print(f"Checked {summary.checked} registrations expiring within {within_hours}h")
    print(f"  Renewed: {summary.renewed}")
    print(f"  Failed:  {summary.failed}")
    return 1 if summary.failed else 0


def main():
    """CLI entry point"""
    import argparse

    parser = argparse.ArgumentParser(
        description="Renew push subscriptions that expire soon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--within-hours",
        type=int,
        default=48,
        help="Renew registrations expiring within this many hours (default: 48)",
    )

    args = parser.parse_args()

    sys.exit(asyncio.run(renew_subscriptions(args.within_hours)))


if __name__ == "__main__":
    main()
