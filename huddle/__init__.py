"""
Huddle — Community Meetup Platform Core
=========================================
Users create gatherings, others join freely or by approval, gatherings
spawn scheduled events, and after an event completes participants rate
each other anonymously.  Member counts and popularity scores are kept
consistent with the rows they summarize.

Package layout::

    huddle/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Vote category labels + defaults
    ├── errors.py          # HuddleError taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   └── scoring.py     # Category weights → score tally
    ├── services/
    │   ├── gathering_service.py  # Gathering membership state machine
    │   ├── schedule_service.py   # Schedule join/leave/complete/cancel
    │   ├── vote_quota.py         # Per-UTC-day new-target quota
    │   ├── vote_service.py       # Toggleable vote ledger
    │   ├── score_service.py      # Ledger → popularity score
    │   ├── recompute_queue.py    # Background recompute drain
    │   └── notifications.py      # Notification sink
    ├── api/
    │   ├── main.py        # FastAPI app
    │   ├── __main__.py    # uvicorn entry point
    │   └── routes/        # Gathering, schedule and popularity endpoints
    └── jobs/
        └── __main__.py    # Batch score recompute
"""

__version__ = "0.1.0"
