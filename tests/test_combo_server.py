import asyncio
import json
import threading
from pathlib import Path

import pytest

import combo_server
from combo_engine import ComboDefinition, ComboSet
from combo_server import broadcast_dict, handle_message, make_ws_handler, run_tick_loop
from combo_tracker import ComboTracker


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeClient:
    def __init__(self, incoming=(), *, fail: bool = False):
        self.sent: list[str] = []
        self._incoming = list(incoming)
        self._fail = fail

    async def send(self, msg: str):
        if self._fail:
            raise ConnectionError("gone")
        self.sent.append(msg)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._incoming:
            raise StopAsyncIteration
        return self._incoming.pop(0)


@pytest.fixture(autouse=True)
def _clean_clients():
    combo_server.connected_clients.clear()
    yield
    combo_server.connected_clients.clear()


def _tracker(clock=None) -> ComboTracker:
    combos = ComboSet((ComboDefinition("ab", ("a", "b"), max_gap=0.2),), 0.5)
    return ComboTracker(combos, clock=clock or FakeClock())


def test_press_messages_drive_the_tracker() -> None:
    tracker = _tracker()
    sent: list[dict] = []
    tracker.set_emitter(sent.append)

    assert handle_message(tracker, {"type": "press", "symbol": "A"}) is None
    assert handle_message(tracker, {"type": "press", "symbol": "b"}) is None

    assert [m["type"] for m in sent] == ["step", "combo_completed", "stat_update"]
    assert tracker.stats.success_count("ab") == 1


def test_press_without_symbol_replies_with_error() -> None:
    reply = handle_message(_tracker(), {"type": "press"})
    assert reply["type"] == "status" and reply["color"] == "fail"


def test_reset_and_stats_messages() -> None:
    tracker = _tracker()
    handle_message(tracker, {"type": "press", "symbol": "a"})

    assert handle_message(tracker, {"type": "reset"}) is None
    assert tracker.engine.is_idle

    reply = handle_message(tracker, {"type": "stats"})
    assert reply["type"] == "stats"
    assert reply["stats"]["fail_by_reason"] == {"explicit_reset": 1}
    assert reply["text"] == "Stats: 0 success / 1 fail (0.0%)"


def test_init_message_returns_snapshot() -> None:
    reply = handle_message(_tracker(), {"type": "init"})
    assert reply["type"] == "init"
    assert reply["combos"][0]["id"] == "ab"


def test_unknown_and_malformed_messages() -> None:
    tracker = _tracker()

    assert handle_message(tracker, None) is None
    assert handle_message(tracker, ["press"]) is None
    reply = handle_message(tracker, {"type": "fly"})
    assert reply["color"] == "fail"
    assert "fly" in reply["text"]


def test_broadcast_drops_broken_clients() -> None:
    good = FakeClient()
    bad = FakeClient(fail=True)
    combo_server.connected_clients.update({good, bad})

    asyncio.run(broadcast_dict({"type": "ping"}))

    assert good.sent == [json.dumps({"type": "ping"})]
    assert combo_server.connected_clients == {good}


def test_broadcast_without_clients_is_noop() -> None:
    asyncio.run(broadcast_dict({"type": "ping"}))


def test_ws_handler_sends_init_then_replies() -> None:
    tracker = _tracker()
    client = FakeClient([json.dumps({"type": "stats"}), "not json", json.dumps({"type": "press", "symbol": "a"})])

    asyncio.run(make_ws_handler(tracker)(client))

    replies = [json.loads(m) for m in client.sent]
    assert [r["type"] for r in replies] == ["init", "stats"]
    assert tracker.engine.pending == ("a",)
    assert client not in combo_server.connected_clients


def test_tick_loop_expires_sequence_and_stops() -> None:
    clock = FakeClock()
    tracker = _tracker(clock)
    tracker.process_press("a")
    clock.now = 1.0

    stop = threading.Event()
    t = threading.Thread(target=run_tick_loop, args=(tracker, stop, 200.0))
    t.start()
    try:
        for _ in range(200):
            if tracker.engine.is_idle:
                break
            threading.Event().wait(0.01)
    finally:
        stop.set()
        t.join(timeout=2.0)

    assert tracker.engine.is_idle
    assert tracker.stats.fail_by_reason == {"timed_out": 1}
    assert not t.is_alive()


def test_main_rejects_bad_table(tmp_path: Path) -> None:
    table = tmp_path / "combos.json"
    table.write_text(json.dumps({"combos": [{"id": "x", "steps": ""}]}), encoding="utf-8")

    assert combo_server.main([str(table)]) == 2


def test_main_rejects_missing_table(tmp_path: Path) -> None:
    assert combo_server.main([str(tmp_path / "absent.json")]) == 2


def test_main_rejects_undecodable_table(tmp_path: Path) -> None:
    table = tmp_path / "combos.json"
    table.write_bytes(b'{"combos": [{"id": "\xff", "steps": "a"}]}')

    assert combo_server.main([str(table)]) == 2
