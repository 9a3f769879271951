from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from combo_engine import (
    STILL_PENDING,
    ComboEngine,
    ComboSet,
    Completed,
    MatchOutcome,
    Reset,
    ResetReason,
)
from combo_stats import ComboStats

logger = logging.getLogger(__name__)


@dataclass
class Status:
    text: str
    color: str  # ready|recording|success|fail|neutral


class ComboTracker:
    """
    Wall-clock host around a `ComboEngine`:
    - Stamps every input with `clock()` and forwards it to the engine
    - Serializes input and tick calls behind one lock (single writer)
    - Records outcomes in `ComboStats`
    - Emits JSON-ready events via a callback (WebSocket, etc.)
    """

    def __init__(
        self,
        combo_set: ComboSet,
        *,
        clock: Callable[[], float] = time.perf_counter,
        stats: ComboStats | None = None,
    ):
        # Mutated from the WebSocket handler and the tick thread.
        self._lock = threading.RLock()
        self.engine = ComboEngine(combo_set)
        self.clock = clock
        self.stats = stats if stats is not None else ComboStats()

        # Time of the first symbol in the current attempt (for completion times).
        self.start_time: float | None = None

        self._emit: Callable[[dict[str, Any]], None] | None = None

    @property
    def combo_set(self) -> ComboSet:
        return self.engine.combo_set

    # -------------------------
    # Emission helpers
    # -------------------------

    def set_emitter(self, emit_func: Callable[[dict[str, Any]], None] | None):
        """Set an event emitter callback. It must be thread-safe."""
        self._emit = emit_func

    def _send(self, msg: dict[str, Any]):
        if self._emit:
            try:
                self._emit(msg)
            except Exception:
                # Never let sink plumbing crash input processing
                logger.debug("Emitter raised while sending message", exc_info=True)

    # -------------------------
    # Normalization
    # -------------------------

    def normalize_symbol(self, symbol: Hashable) -> Hashable:
        if isinstance(symbol, str):
            return symbol.strip().lower()
        return symbol

    # -------------------------
    # Input processing
    # -------------------------

    def process_press(self, symbol: Hashable) -> MatchOutcome:
        # Thread-safe wrapper
        with self._lock:
            return self._process_press_unlocked(symbol)

    def _process_press_unlocked(self, symbol: Hashable) -> MatchOutcome:
        symbol = self.normalize_symbol(symbol)
        if symbol == "" or symbol is None:
            return STILL_PENDING

        now = self.clock()
        if self.engine.is_idle:
            self.start_time = now
        attempt = self.engine.pending + (symbol,)

        outcome = self.engine.submit(symbol, now)
        self._dispatch(outcome, attempt, now)
        if not outcome.is_terminal:
            deadline = self.engine.deadline()
            self._send(
                {
                    "type": "step",
                    "symbol": str(symbol),
                    "pending": [str(x) for x in self.engine.pending],
                    "deadline_in_ms": round((deadline - now) * 1000.0, 1) if deadline is not None else None,
                }
            )
        return outcome

    def tick(self) -> MatchOutcome:
        # Thread-safe wrapper
        with self._lock:
            if self.engine.is_idle:
                return STILL_PENDING
            attempt = self.engine.pending
            now = self.clock()
            outcome = self.engine.tick(now)
            self._dispatch(outcome, attempt, now)
            return outcome

    def reset(self) -> MatchOutcome:
        """
        Abandon the sequence in progress.

        Reported as `Reset(EXPLICIT_RESET)` only when something was pending;
        resetting an idle tracker is a silent no-op.
        """
        with self._lock:
            attempt = self.engine.pending
            self.engine.reset()
            if not attempt:
                self.start_time = None
                return STILL_PENDING
            outcome = Reset(ResetReason.EXPLICIT_RESET)
            self._dispatch(outcome, attempt, self.clock())
            return outcome

    def _dispatch(self, outcome: MatchOutcome, attempt: tuple[Hashable, ...], now: float):
        if isinstance(outcome, Completed):
            elapsed_ms = (now - self.start_time) * 1000.0 if self.start_time is not None else None
            self.start_time = None
            self.stats.record_success(outcome.combo.id, elapsed_ms)
            logger.info("Combo '%s' complete", outcome.combo.id)
            self._send(
                {
                    "type": "combo_completed",
                    "id": outcome.combo.id,
                    "steps": [str(x) for x in outcome.combo.steps],
                    "elapsed_ms": round(elapsed_ms, 1) if elapsed_ms is not None else None,
                }
            )
            self._send({"type": "stat_update", "stats": self.stats.stats_text(outcome.combo.id)})
        elif isinstance(outcome, Reset):
            self.start_time = None
            self.stats.record_fail(outcome.reason.value, attempt)
            logger.info("Sequence %s reset: %s", [str(x) for x in attempt], outcome.reason.value)
            self._send(
                {
                    "type": "sequence_reset",
                    "reason": outcome.reason.value,
                    "pending": [str(x) for x in attempt],
                }
            )
            self._send({"type": "fail_update", "failures": dict(self.stats.fail_by_reason)})

    # -------------------------
    # Snapshots
    # -------------------------

    def get_status(self) -> Status:
        with self._lock:
            if not len(self.combo_set):
                return Status("Status: No combos configured", "neutral")
            pending = self.engine.pending
            if not pending:
                return Status("Ready!", "ready")
            ids = ", ".join(c.id for c in self.engine.viable_combos())
            return Status(f"Recording... ({ids})", "recording")

    def init_payload(self) -> dict[str, Any]:
        with self._lock:
            st = self.get_status()
            return {
                "type": "init",
                "combos": [
                    {
                        "id": c.id,
                        "steps": [str(x) for x in c.steps],
                        "max_gap": self.combo_set.gap_for(c),
                    }
                    for c in self.combo_set
                ],
                "pending": [str(x) for x in self.engine.pending],
                "status": {"text": st.text, "color": st.color},
                "stats": self.stats.to_dict(),
            }
