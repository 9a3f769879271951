from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Iterator, Sequence, Union

logger = logging.getLogger(__name__)


class ComboConfigError(ValueError):
    """Raised when a combo definition or combo set is malformed."""


def _is_positive_number(value: Any) -> bool:
    # bool is an int subclass; True must not read as a 1 second gap.
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


# -------------------------
# Data model
# -------------------------


@dataclass(frozen=True)
class ComboDefinition:
    """
    One named combo: an ordered, non-empty sequence of action symbols.

    `max_gap` overrides the set-wide default maximum gap (seconds) between two
    consecutive symbols while this combo is still reachable.
    """

    id: str
    steps: tuple[Hashable, ...]
    max_gap: float | None = None

    def __post_init__(self):
        # Accept any iterable of steps but always store a tuple.
        object.__setattr__(self, "steps", tuple(self.steps))
        if not str(self.id or "").strip():
            raise ComboConfigError("Combo id must be a non-empty string.")
        if not self.steps:
            raise ComboConfigError(f"Combo '{self.id}' has no steps.")
        if self.max_gap is not None and not _is_positive_number(self.max_gap):
            raise ComboConfigError(f"Combo '{self.id}' has a non-positive max_gap ({self.max_gap!r}).")

    def __len__(self) -> int:
        return len(self.steps)

    def matches(self, pending: Sequence[Hashable]) -> bool:
        return len(pending) == len(self.steps) and tuple(pending) == self.steps

    def starts_with(self, pending: Sequence[Hashable]) -> bool:
        n = len(pending)
        return n <= len(self.steps) and tuple(pending) == self.steps[:n]


@dataclass(frozen=True)
class ComboSet:
    """
    Ordered collection of combos plus the default maximum inter-step gap.

    Order is priority: when several combos match the pending sequence exactly,
    the first one wins. Duplicates and prefix overlaps are allowed.
    """

    combos: tuple[ComboDefinition, ...]
    default_max_gap: float

    def __post_init__(self):
        object.__setattr__(self, "combos", tuple(self.combos))
        for c in self.combos:
            if not isinstance(c, ComboDefinition):
                raise ComboConfigError(f"Expected ComboDefinition, got {type(c).__name__}.")
        if not _is_positive_number(self.default_max_gap):
            raise ComboConfigError(f"default_max_gap must be a number > 0 (got {self.default_max_gap!r}).")
        object.__setattr__(self, "default_max_gap", float(self.default_max_gap))

    def __iter__(self) -> Iterator[ComboDefinition]:
        return iter(self.combos)

    def __len__(self) -> int:
        return len(self.combos)

    @property
    def max_steps(self) -> int:
        return max((len(c) for c in self.combos), default=0)

    def get(self, combo_id: str) -> ComboDefinition | None:
        for c in self.combos:
            if c.id == combo_id:
                return c
        return None

    def gap_for(self, combo: ComboDefinition) -> float:
        return combo.max_gap if combo.max_gap is not None else self.default_max_gap

    # -------------------------
    # Matching helpers
    # -------------------------

    def find_exact(self, pending: Sequence[Hashable]) -> ComboDefinition | None:
        for c in self.combos:
            if c.matches(pending):
                return c
        return None

    def viable(self, pending: Sequence[Hashable]) -> list[ComboDefinition]:
        return [c for c in self.combos if c.starts_with(pending)]

    def is_viable(self, pending: Sequence[Hashable]) -> bool:
        return any(c.starts_with(pending) for c in self.combos)

    def allowed_gap(self, pending: Sequence[Hashable]) -> float:
        """
        Largest gap among the combos `pending` can still grow into.

        A short, strict combo must not expire a sequence that is still a valid
        prefix of a longer, more lenient one. With nothing viable this falls
        back to `default_max_gap`.
        """
        gaps = [self.gap_for(c) for c in self.viable(pending)]
        if not gaps:
            return self.default_max_gap
        return max(gaps)


# -------------------------
# Outcomes
# -------------------------


class ResetReason(str, enum.Enum):
    NO_LONGER_VIABLE = "no_longer_viable"
    TIMED_OUT = "timed_out"
    EXPLICIT_RESET = "explicit_reset"


@dataclass(frozen=True)
class Completed:
    combo: ComboDefinition

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class StillPending:
    @property
    def is_terminal(self) -> bool:
        return False


@dataclass(frozen=True)
class Reset:
    reason: ResetReason

    @property
    def is_terminal(self) -> bool:
        return True


MatchOutcome = Union[Completed, StillPending, Reset]

STILL_PENDING = StillPending()


# -------------------------
# Engine
# -------------------------


@dataclass
class ComboEngine:
    """
    Headless combo matcher.

    - `submit()` feeds one symbol and returns the outcome for it
    - `tick()` expires a stalled sequence once its allowed gap has elapsed
    - `reset()` abandons whatever is in progress

    The engine holds no clock and does no I/O or locking: callers pass `now`
    and must serialize calls themselves.
    """

    combo_set: ComboSet
    _pending: list[Hashable] = field(default_factory=list, init=False, repr=False)
    _last_event_time: float | None = field(default=None, init=False, repr=False)

    @property
    def pending(self) -> tuple[Hashable, ...]:
        return tuple(self._pending)

    @property
    def last_event_time(self) -> float | None:
        return self._last_event_time

    @property
    def is_idle(self) -> bool:
        return not self._pending

    def _clear(self):
        self._pending.clear()
        self._last_event_time = None

    def submit(self, symbol: Hashable, now: float) -> MatchOutcome:
        self._pending.append(symbol)
        self._last_event_time = now

        # Greedy: a complete match fires even if it also prefixes a longer combo.
        winner = self.combo_set.find_exact(self._pending)
        if winner is not None:
            logger.debug("Combo '%s' completed", winner.id)
            self._clear()
            return Completed(winner)

        if self.combo_set.is_viable(self._pending):
            return STILL_PENDING

        logger.debug("Sequence %r matches no combo; resetting", self._pending)
        self._clear()
        return Reset(ResetReason.NO_LONGER_VIABLE)

    def tick(self, now: float) -> MatchOutcome:
        if not self._pending or self._last_event_time is None:
            return STILL_PENDING

        allowed = self.combo_set.allowed_gap(self._pending)
        if now - self._last_event_time > allowed:
            logger.debug(
                "Sequence %r timed out (%.3fs > %.3fs)",
                self._pending,
                now - self._last_event_time,
                allowed,
            )
            self._clear()
            return Reset(ResetReason.TIMED_OUT)
        return STILL_PENDING

    def reset(self) -> None:
        self._clear()

    # -------------------------
    # Introspection
    # -------------------------

    def viable_combos(self) -> list[ComboDefinition]:
        if not self._pending:
            return []
        return self.combo_set.viable(self._pending)

    def allowed_gap(self) -> float | None:
        if not self._pending:
            return None
        return self.combo_set.allowed_gap(self._pending)

    def deadline(self) -> float | None:
        """Time after which `tick()` will report a timeout, or None while idle."""
        gap = self.allowed_gap()
        if gap is None or self._last_event_time is None:
            return None
        return self._last_event_time + gap


def build_combo_set(
    combos: Iterable[ComboDefinition | tuple[str, Sequence[Hashable]] | dict[str, Any]],
    default_max_gap: float,
) -> ComboSet:
    """
    Convenience constructor accepting definitions, `(id, steps)` pairs, or
    `{"id", "steps", "max_gap"}` dicts.
    """
    out: list[ComboDefinition] = []
    for c in combos:
        if isinstance(c, ComboDefinition):
            out.append(c)
        elif isinstance(c, dict):
            out.append(ComboDefinition(str(c.get("id") or ""), tuple(c.get("steps") or ()), c.get("max_gap")))
        else:
            combo_id, steps = c
            out.append(ComboDefinition(combo_id, tuple(steps)))
    return ComboSet(tuple(out), default_max_gap)
