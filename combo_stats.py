from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# Keep only recent fail events to cap memory and file growth.
MAX_FAIL_EVENTS = 100


def _as_int(x: Any, default: int) -> int:
    try:
        return int(float(x))
    except (TypeError, ValueError):
        return int(default)


def _format_ms_brief(ms: float | int | None) -> str:
    if ms is None:
        return "—"
    if ms >= 1000:
        return f"{ms / 1000.0:.2f}s"
    return f"{int(round(ms))}ms"


def _format_percent(success: int, fail: int) -> str:
    total = success + fail
    if total <= 0:
        return "—"
    return f"{(success / total) * 100:.1f}%"


@dataclass
class ComboStats:
    """
    Session statistics for a combo tracker.

    Successes are tracked per combo (count, best and total completion time).
    Failures cannot be pinned on a single combo once a sequence stops being
    viable, so they are counted globally by reset reason, with a bounded list
    of recent fail events for inspection.
    """

    combos: dict[str, dict[str, Any]] = field(default_factory=dict)
    fail_by_reason: dict[str, int] = field(default_factory=dict)
    fail_events: list[dict[str, Any]] = field(default_factory=list)

    def _ensure_combo(self, combo_id: str) -> dict[str, Any]:
        entry = self.combos.get(combo_id)
        if not isinstance(entry, dict):
            entry = {"success": 0, "best_ms": None, "total_success_ms": 0}
            self.combos[combo_id] = entry
        else:
            entry.setdefault("success", 0)
            entry.setdefault("best_ms", None)
            entry.setdefault("total_success_ms", 0)
        return entry

    # -------------------------
    # Recording
    # -------------------------

    def record_success(self, combo_id: str, completion_ms: float | int | None = None):
        entry = self._ensure_combo(combo_id)
        entry["success"] += 1

        try:
            ms = int(round(float(completion_ms))) if completion_ms is not None else None
        except (TypeError, ValueError):
            ms = None
        if ms is not None and ms > 0:
            entry["total_success_ms"] = int(entry.get("total_success_ms", 0) or 0) + ms
            best = entry.get("best_ms")
            if best is None or ms < int(best):
                entry["best_ms"] = ms

    def record_fail(self, reason: str, pending: Iterable[Any] = (), *, ts: int | None = None):
        r = (str(reason or "").strip().lower()) or "unknown"
        self.fail_by_reason[r] = int(self.fail_by_reason.get(r, 0) or 0) + 1

        self.fail_events.append(
            {
                "ts": int(ts if ts is not None else time.time()),
                "pending": [str(x) for x in pending],
                "reason": r,
            }
        )
        if len(self.fail_events) > MAX_FAIL_EVENTS:
            self.fail_events = self.fail_events[-MAX_FAIL_EVENTS:]

    def clear(self):
        self.combos.clear()
        self.fail_by_reason.clear()
        self.fail_events.clear()

    # -------------------------
    # Queries
    # -------------------------

    @property
    def total_success(self) -> int:
        return sum(int(e.get("success", 0) or 0) for e in self.combos.values())

    @property
    def total_fail(self) -> int:
        return sum(self.fail_by_reason.values())

    def success_count(self, combo_id: str) -> int:
        entry = self.combos.get(combo_id)
        return int(entry.get("success", 0) or 0) if entry else 0

    def best_ms(self, combo_id: str) -> int | None:
        entry = self.combos.get(combo_id)
        return entry.get("best_ms") if entry else None

    def avg_ms(self, combo_id: str) -> float | None:
        entry = self.combos.get(combo_id)
        if not entry:
            return None
        s = int(entry.get("success", 0) or 0)
        total = int(entry.get("total_success_ms", 0) or 0)
        if s <= 0 or total <= 0:
            return None
        return total / float(s)

    def stats_text(self, combo_id: str | None = None) -> str:
        if combo_id is None:
            s, f = self.total_success, self.total_fail
            return f"Stats: {s} success / {f} fail ({_format_percent(s, f)})"

        s = self.success_count(combo_id)
        return (
            f"{combo_id}: {s} success"
            f" | Best: {_format_ms_brief(self.best_ms(combo_id))}"
            f" | Avg: {_format_ms_brief(self.avg_ms(combo_id))}"
        )

    # -------------------------
    # Serialization
    # -------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "combos": {k: dict(v) for k, v in self.combos.items()},
            "fail_by_reason": dict(self.fail_by_reason),
            "fail_events": [dict(ev) for ev in self.fail_events],
        }

    @classmethod
    def from_dict(cls, data: Any) -> ComboStats:
        """Build stats from persisted data, dropping anything malformed."""
        stats = cls()
        if not isinstance(data, dict):
            return stats

        combos = data.get("combos", {})
        if isinstance(combos, dict):
            for k, v in combos.items():
                name = str(k).strip()
                if not name or not isinstance(v, dict):
                    continue
                best_raw = v.get("best_ms")
                best_ms = _as_int(best_raw, 0) if best_raw is not None else None
                stats.combos[name] = {
                    "success": max(0, _as_int(v.get("success", 0), 0)),
                    "best_ms": best_ms if best_ms and best_ms > 0 else None,
                    "total_success_ms": max(0, _as_int(v.get("total_success_ms", 0), 0)),
                }

        by_reason = data.get("fail_by_reason", {})
        if isinstance(by_reason, dict):
            for k, v in by_reason.items():
                reason = str(k).strip().lower()
                cnt = _as_int(v, 0)
                if reason and cnt > 0:
                    stats.fail_by_reason[reason] = cnt

        events = data.get("fail_events", [])
        if isinstance(events, list):
            for ev in events[-MAX_FAIL_EVENTS:]:
                if not isinstance(ev, dict):
                    continue
                pending = ev.get("pending", [])
                stats.fail_events.append(
                    {
                        "ts": max(0, _as_int(ev.get("ts", 0), 0)),
                        "pending": [str(x) for x in pending] if isinstance(pending, list) else [],
                        "reason": str(ev.get("reason", "") or "").strip().lower() or "unknown",
                    }
                )
        return stats
