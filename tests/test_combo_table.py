import json
from pathlib import Path

import pytest

from combo_engine import ComboConfigError, ComboEngine, Completed
from combo_table import (
    DEFAULT_MAX_GAP,
    combo_set_from_dict,
    load_combo_set,
    parse_duration,
    split_inputs,
)

EXAMPLE_TABLE = Path(__file__).resolve().parents[1] / "examples" / "combos.json"


def test_split_inputs_basic() -> None:
    assert split_inputs("e, 3, r") == ["e", "3", "r"]
    assert split_inputs("") == []
    assert split_inputs(" , a,, b ,") == ["a", "b"]


def test_split_inputs_respects_nesting() -> None:
    assert split_inputs("lmb, hold(lmb, 0.30), rmb") == ["lmb", "hold(lmb, 0.30)", "rmb"]
    assert split_inputs("e{350ms}, q") == ["e{350ms}", "q"]
    assert split_inputs("[q, e], 2") == ["[q, e]", "2"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("350ms", 0.35),
        ("0.35s", 0.35),
        ("2", 2.0),
        (" 1.5 S ", 1.5),
        (0.25, 0.25),
        (3, 3.0),
    ],
)
def test_parse_duration(raw, expected) -> None:
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", None, "abc", "0", "-1s", 0, -2.0, True])
def test_parse_duration_rejects_invalid(raw) -> None:
    assert parse_duration(raw) is None


def test_combo_set_from_dict_list_form() -> None:
    combos = combo_set_from_dict(
        {
            "default_max_gap": "400ms",
            "combos": [
                {"id": "light", "steps": "Hit"},
                {"id": "launcher", "steps": [" UP ", "hit"], "max_gap": 0.3},
            ],
        }
    )

    assert combos.default_max_gap == pytest.approx(0.4)
    assert [c.id for c in combos] == ["light", "launcher"]
    assert combos.get("light").steps == ("hit",)
    assert combos.get("launcher").steps == ("up", "hit")
    assert combos.get("launcher").max_gap == pytest.approx(0.3)
    assert combos.get("light").max_gap is None


def test_combo_set_from_dict_mapping_form_keeps_order() -> None:
    combos = combo_set_from_dict({"combos": {"b": "x, y", "a": ["z"]}})

    assert [c.id for c in combos] == ["b", "a"]
    assert combos.default_max_gap == DEFAULT_MAX_GAP


def test_name_is_accepted_as_id() -> None:
    combos = combo_set_from_dict({"combos": [{"name": "legacy", "steps": "a"}]})
    assert combos.get("legacy") is not None


@pytest.mark.parametrize(
    "table",
    [
        [],
        {"combos": "nope"},
        {"combos": [{"id": "x", "steps": ""}]},
        {"combos": [{"id": "x", "steps": 5}]},
        {"combos": [{"steps": "a"}]},
        {"combos": ["a"]},
        {"combos": [{"id": "x", "steps": "a", "max_gap": "fast"}]},
        {"default_max_gap": 0, "combos": [{"id": "x", "steps": "a"}]},
    ],
)
def test_malformed_tables_rejected(table) -> None:
    with pytest.raises(ComboConfigError):
        combo_set_from_dict(table)


def test_load_combo_set_from_file(tmp_path: Path) -> None:
    path = tmp_path / "combos.json"
    path.write_text(json.dumps({"combos": [{"id": "ab", "steps": "a, b"}]}), encoding="utf-8")

    combos = load_combo_set(path)
    engine = ComboEngine(combos)
    engine.submit("a", 0.0)

    assert engine.submit("b", 0.1) == Completed(combos.get("ab"))


def test_load_combo_set_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "combos.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ComboConfigError):
        load_combo_set(path)


def test_load_combo_set_invalid_utf8(tmp_path: Path) -> None:
    path = tmp_path / "combos.json"
    path.write_bytes(b'{"combos": [{"id": "\xff", "steps": "a"}]}')

    with pytest.raises(ComboConfigError):
        load_combo_set(path)


def test_bundled_example_table_loads() -> None:
    combos = load_combo_set(EXAMPLE_TABLE)

    assert combos.get("light").steps == ("hit",)
    assert combos.get("uppercut").max_gap == pytest.approx(0.3)
    assert combos.max_steps == 3
