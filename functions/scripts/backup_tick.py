"""
Run one backup tick. Intended to be invoked from cron every few minutes.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spot_tracker.dependencies import get_backup_scheduler

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="SPOT feed daily backup tick")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the backup window and the once-per-day gate",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    outcome = get_backup_scheduler().run_backup_if_due(force=args.force)
    print(json.dumps(outcome.as_dict(), indent=2))
    if outcome.failed:
        logger.error("Backup failed: %s", outcome.error)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
