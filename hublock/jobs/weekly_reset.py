"""
Weekly reset job.

Zeroes every hero's weekly XP at the start of the week (Monday 00:00 in the
showdown timezone). Lifetime XP, balance and reliability are untouched.

Run with: python -m hublock.jobs.weekly_reset
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..services.leaderboard import reset_weekly_scores
from ..services.showdown import format_countdown, time_until_weekly_reset

logger = logging.getLogger(__name__)


def run_weekly_reset(db: Session, now: Optional[datetime] = None) -> dict:
    """Reset weekly scores; returns a summary for the job log."""
    now = now or datetime.utcnow()
    reset_count = reset_weekly_scores(db, now=now)
    return {
        "users_reset": reset_count,
        "reset_at": now.isoformat(),
        "next_reset_in": format_countdown(time_until_weekly_reset()),
    }


def main():
    """Main entry point for the weekly reset job"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    db = SessionLocal()
    try:
        logger.info("Starting weekly reset job...")
        results = run_weekly_reset(db)
        logger.info(f"Weekly reset job completed: {results}")
    except Exception as e:
        logger.error(f"Weekly reset job failed: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
