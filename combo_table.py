from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from combo_engine import ComboConfigError, ComboDefinition, ComboSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_GAP = 0.5


def split_inputs(keys_str: str) -> list[str]:
    """
    Split a user-entered steps string into top-level comma-separated tokens.

    Commas nested inside `(...)`, `{...}` or `[...]` are kept with their token so
    symbols such as `hold(e, 0.3)` survive as a single step.

    Examples:

    - `split_inputs("e, 3, r") -> ["e", "3", "r"]`
    - `split_inputs("lmb, hold(lmb, 0.30), rmb") -> ["lmb", "hold(lmb, 0.30)", "rmb"]`
    - `split_inputs("[q, e], 2") -> ["[q, e]", "2"]`
    """
    s = keys_str or ""
    out: list[str] = []
    buf: list[str] = []
    depth = {"(": 0, "{": 0, "[": 0}
    closers = {")": "(", "}": "{", "]": "["}

    for ch in s:
        if ch in depth:
            depth[ch] += 1
        elif ch in closers:
            opener = closers[ch]
            depth[opener] = max(0, depth[opener] - 1)

        if ch == "," and not any(depth.values()):
            token = "".join(buf).strip()
            if token:
                out.append(token)
            buf = []
            continue
        buf.append(ch)

    token = "".join(buf).strip()
    if token:
        out.append(token)
    return out


def parse_duration(raw: Any) -> float | None:
    """
    Parse a gap into seconds.

    `"350ms"` -> 0.35, `"0.35s"` -> 0.35, `"2"` -> 2.0, `0.5` -> 0.5.
    Returns None for anything unparsable or non-positive.
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if value > 0 else None

    token = str(raw or "").lower().strip()
    if not token:
        return None

    if token.endswith("ms"):
        token = token[:-2].strip()
        multiplier = 0.001
    elif token.endswith("s"):
        token = token[:-1].strip()
        multiplier = 1.0
    else:
        multiplier = 1.0

    try:
        value = float(token)
    except ValueError:
        return None

    seconds = value * multiplier
    if seconds <= 0:
        return None
    return seconds


def normalize_symbol(raw: Any) -> str:
    return str(raw or "").strip().lower()


def _parse_steps(raw: Any, *, combo_id: str) -> tuple[str, ...]:
    if isinstance(raw, str):
        tokens = split_inputs(raw)
    elif isinstance(raw, (list, tuple)):
        tokens = [str(x) for x in raw if x is not None]
    else:
        raise ComboConfigError(f"Combo '{combo_id}': steps must be a string or a list.")
    steps = tuple(s for s in (normalize_symbol(t) for t in tokens) if s)
    if not steps:
        raise ComboConfigError(f"Combo '{combo_id}' has no steps.")
    return steps


def _parse_combo(entry: Any, index: int) -> ComboDefinition:
    if not isinstance(entry, dict):
        raise ComboConfigError(f"Combo #{index + 1} must be an object.")

    combo_id = str(entry.get("id") or entry.get("name") or "").strip()
    if not combo_id:
        raise ComboConfigError(f"Combo #{index + 1} is missing an id.")

    steps = _parse_steps(entry.get("steps"), combo_id=combo_id)

    max_gap = None
    raw_gap = entry.get("max_gap")
    if raw_gap is not None and raw_gap != "":
        max_gap = parse_duration(raw_gap)
        if max_gap is None:
            raise ComboConfigError(f"Combo '{combo_id}': invalid max_gap {raw_gap!r}. Examples: 0.3, 0.3s or 300ms")

    return ComboDefinition(combo_id, steps, max_gap)


def combo_set_from_dict(data: Any) -> ComboSet:
    """
    Build a `ComboSet` from a host-authored table.

    Accepted shapes:

    - `{"default_max_gap": "500ms", "combos": [{"id": "light", "steps": "hit"}, ...]}`
    - `{"combos": {"light": "hit", "launcher": ["up", "hit"]}}` (mapping form, no per-combo gap)

    Raises `ComboConfigError` on any structural problem.
    """
    if not isinstance(data, dict):
        raise ComboConfigError("Combo table must be an object.")

    raw_default = data.get("default_max_gap", DEFAULT_MAX_GAP)
    default_max_gap = parse_duration(raw_default)
    if default_max_gap is None:
        raise ComboConfigError(f"default_max_gap must be > 0 (got {raw_default!r}).")

    combos_raw = data.get("combos", [])
    if isinstance(combos_raw, dict):
        combos_raw = [{"id": k, "steps": v} for k, v in combos_raw.items()]
    if not isinstance(combos_raw, list):
        raise ComboConfigError("'combos' must be a list or an object.")

    combos = [_parse_combo(entry, i) for i, entry in enumerate(combos_raw)]
    if not combos:
        logger.warning("Combo table defines no combos; every input will reset")
    return ComboSet(tuple(combos), default_max_gap)


def load_combo_set(path: str | Path) -> ComboSet:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except ValueError as exc:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors.
        raise ComboConfigError(f"{p}: unreadable combo table ({exc})") from exc
    combo_set = combo_set_from_dict(data)
    logger.info("Loaded %d combo(s) from %s", len(combo_set), p)
    return combo_set
