"""
Release stale stock reservations.

A checkout that crashes between reserving stock and settling its payment
leaves reservations held. This sweep releases every held reservation older
than the configured age so the stock becomes available again. Run it from
cron every few minutes.
"""

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fulfillment.api.container import build_container
from fulfillment.config import Settings
from fulfillment.domain.errors import TransientStorageError


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Release held stock reservations older than a maximum age",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Use RESERVATION_MAX_AGE_SECONDS from the environment
  python sweep_reservations.py

  # Release anything held for more than 10 minutes
  python sweep_reservations.py --max-age-seconds 600
        """
    )

    parser.add_argument(
        "--max-age-seconds",
        type=int,
        default=None,
        help="Release holds older than this (default: RESERVATION_MAX_AGE_SECONDS, 1800)"
    )

    args = parser.parse_args()
    settings = Settings.from_env()
    max_age_seconds = (
        args.max_age_seconds
        if args.max_age_seconds is not None
        else settings.reservation_max_age_seconds
    )

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if max_age_seconds <= 0:
        print("ERROR: --max-age-seconds must be positive")
        return 2

    container = build_container(settings)

    try:
        released = container.reservations.release_stale(timedelta(seconds=max_age_seconds))
    except TransientStorageError as e:
        print(f"ERROR: storage unavailable: {e}")
        return 1

    print("=" * 50)
    print("STALE RESERVATION SWEEP")
    print("=" * 50)
    print(f"Max age:                   {max_age_seconds}s")
    print(f"Reservations released:     {len(released)}")
    for reservation_id in released:
        print(f"  - {reservation_id}")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(main())
