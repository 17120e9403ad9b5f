"""
huddle.jobs.__main__ — Entry point for ``python -m huddle.jobs``
=================================================================

Scheduled batch recompute of popularity scores.  Recounts every user whose
received votes changed inside the lookback window, which repairs any score
the background queue missed (process restart, failed drain).

Wiring:
1. Load .env (secrets).
2. Load config.yaml (lookback window).
3. Create the SQLAlchemy engine.
4. Recompute every touched user.

Run with::

    python -m huddle.jobs                 # lookback from config.yaml
    python -m huddle.jobs --hours 72      # explicit window
"""

from __future__ import annotations

import argparse
import logging
from datetime import UTC, datetime, timedelta

from dotenv import load_dotenv

from huddle.config import load_config
from huddle.database.engine import create_db_engine
from huddle.services.score_service import recompute_recent

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("huddle")


def main(argv: list[str] | None = None) -> None:
    """Run one batch recompute and exit."""
    parser = argparse.ArgumentParser(prog="python -m huddle.jobs")
    parser.add_argument(
        "--hours", type=int, default=None,
        help="Lookback window in hours (default: recompute_lookback_hours from config.yaml)",
    )
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(args.config)
    hours = args.hours if args.hours is not None else cfg.recompute_lookback_hours

    # 3. Database.
    engine = create_db_engine()

    # 4. Recompute.
    since = datetime.now(UTC) - timedelta(hours=hours)
    results = recompute_recent(engine, since)
    logger.info(
        "Batch recompute finished for %s — %d user(s) since %s",
        cfg.community_name, len(results), since.isoformat(timespec="seconds"),
    )
    engine.dispose()


if __name__ == "__main__":
    main()
