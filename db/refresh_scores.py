# db/refresh_scores.py
"""
Recompute and persist every active client's performance score.

Meant for cron: `python db/refresh_scores.py`. Exits non-zero when any
client failed, so the scheduler can alert on it.
"""

import argparse
import logging
import os
from pathlib import Path

import sys
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from backend.db import SessionLocal
from backend.services.performance import refresh_all_scores

logger = logging.getLogger("refresh_scores")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Recompute cached performance scores for all active clients.")
    p.add_argument("--quiet", action="store_true", help="only log warnings and errors")
    return p.parse_args()

def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level="WARNING" if args.quiet else os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    session = SessionLocal()
    try:
        scores = refresh_all_scores(session)
    finally:
        session.close()

    failed = sorted(cid for cid, score in scores.items() if score is None)
    if failed:
        logger.error("Score refresh failed for %d client(s): %s", len(failed), failed)
        return 1
    logger.info("Score refresh complete for %d client(s)", len(scores))
    return 0

if __name__ == "__main__":
    sys.exit(main())
