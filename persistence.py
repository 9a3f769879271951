from __future__ import annotations

import json
import logging
from pathlib import Path

from combo_stats import ComboStats

logger = logging.getLogger(__name__)

STATS_VERSION = 1


def load_stats(path: str | Path) -> ComboStats:
    """
    Load persisted statistics from `path`.

    A missing file yields empty stats. An unreadable or malformed file is logged
    and also yields empty stats, so a damaged file never blocks a session.
    Sanitization of individual entries lives in `ComboStats.from_dict()`.
    """
    p = Path(path)
    try:
        if not p.exists():
            return ComboStats()
        data = json.loads(p.read_text(encoding="utf-8"))
        return ComboStats.from_dict(data.get("stats") if isinstance(data, dict) else None)
    except (OSError, ValueError):
        logger.exception("Failed to load stats from %s; starting with empty stats", p)
        return ComboStats()


def save_stats(stats: ComboStats, path: str | Path) -> bool:
    """
    Persist statistics to `path`. Combo definitions are never written here.

    Returns False (after logging) when the file could not be written.
    """
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": STATS_VERSION,
            "stats": stats.to_dict(),
        }
        p.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return True
    except OSError:
        logger.exception("Failed to save stats to %s", p)
        return False
