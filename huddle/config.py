"""
huddle.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for deployment tuning (API port, vote quota,
recompute cadence).  Secrets (``DATABASE_URL``, ``JWT_SECRET``) stay in the
environment / ``.env``.

Usage::

    from huddle.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.daily_new_target_quota)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from huddle.constants import (
    DEFAULT_DAILY_NEW_TARGET_QUOTA,
    DEFAULT_RECENT_VOTES_LIMIT,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HuddleConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # API
    api_port: int = 8000

    # Popularity votes
    daily_new_target_quota: int = DEFAULT_DAILY_NEW_TARGET_QUOTA
    recent_votes_limit: int = DEFAULT_RECENT_VOTES_LIMIT

    # Score recompute
    recompute_drain_seconds: int = 10  # Background queue drain interval
    recompute_lookback_hours: int = 24  # Window for the batch job


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HuddleConfig:
    """Read *path* and return a :class:`HuddleConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return HuddleConfig(
        community_name=raw["community_name"],
        api_port=int(raw.get("api_port", 8000)),
        daily_new_target_quota=int(
            raw.get("daily_new_target_quota", DEFAULT_DAILY_NEW_TARGET_QUOTA)
        ),
        recent_votes_limit=int(raw.get("recent_votes_limit", DEFAULT_RECENT_VOTES_LIMIT)),
        recompute_drain_seconds=int(raw.get("recompute_drain_seconds", 10)),
        recompute_lookback_hours=int(raw.get("recompute_lookback_hours", 24)),
    )
