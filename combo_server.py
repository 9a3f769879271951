from __future__ import annotations

import argparse
import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

import websockets

from combo_engine import ComboConfigError
from combo_table import load_combo_set
from combo_tracker import ComboTracker
from persistence import load_stats, save_stats

logger = logging.getLogger(__name__)

HOST_WS = "localhost"
PORT_WS = 8765
# Ticks per second driving timeouts when no input arrives.
TICK_HZ = 50


connected_clients: set[Any] = set()


async def broadcast_dict(payload: dict[str, Any]):
    if not connected_clients:
        return
    msg = json.dumps(payload)
    clients = list(connected_clients)
    results = await asyncio.gather(*(c.send(msg) for c in clients), return_exceptions=True)
    # Drop broken clients
    for c, r in zip(clients, results):
        if isinstance(r, Exception):
            logger.debug("Dropping client after failed send: %r", r)
            connected_clients.discard(c)


def make_threadsafe_emitter(loop: asyncio.AbstractEventLoop) -> Callable[[dict[str, Any]], None]:
    def emit(payload: dict[str, Any]):
        if loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(broadcast_dict(payload), loop)

    return emit


def _safe_json_load(s: str | bytes):
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        return None


def handle_message(tracker: ComboTracker, msg: Any) -> dict[str, Any] | None:
    """
    Dispatch one decoded client message.

    Returns a reply for the sending client only, or None. Outcomes of presses
    and resets reach every client through the tracker's emitter.
    """
    if not isinstance(msg, dict):
        logger.debug("Ignoring malformed message: %r", msg)
        return None

    mtype = msg.get("type")
    if mtype == "press":
        symbol = str(msg.get("symbol") or "")
        if not symbol.strip():
            return {"type": "status", "text": "Missing symbol.", "color": "fail"}
        tracker.process_press(symbol)
        return None
    if mtype == "reset":
        tracker.reset()
        return None
    if mtype == "stats":
        return {"type": "stats", "stats": tracker.stats.to_dict(), "text": tracker.stats.stats_text()}
    if mtype == "init":
        return tracker.init_payload()
    return {"type": "status", "text": f"Unknown message type: {mtype!r}", "color": "fail"}


def make_ws_handler(tracker: ComboTracker):
    async def ws_handler(websocket, _path=None):
        connected_clients.add(websocket)
        logger.info("Client connected. Total: %d", len(connected_clients))

        # Send initial state
        await websocket.send(json.dumps(tracker.init_payload()))

        try:
            async for message in websocket:
                reply = handle_message(tracker, _safe_json_load(message))
                if reply is not None:
                    await websocket.send(json.dumps(reply))
        finally:
            connected_clients.discard(websocket)
            logger.info("Client disconnected. Total: %d", len(connected_clients))

    return ws_handler


def run_tick_loop(tracker: ComboTracker, stop: threading.Event, hz: float = TICK_HZ):
    """Call `tracker.tick()` at `hz` until `stop` is set."""
    interval = 1.0 / float(hz)
    while not stop.wait(interval):
        try:
            tracker.tick()
        except Exception:
            logger.exception("Tick failed")


def start_tick_thread(tracker: ComboTracker, hz: float = TICK_HZ) -> tuple[threading.Thread, threading.Event]:
    stop = threading.Event()
    t = threading.Thread(target=run_tick_loop, args=(tracker, stop, hz), name="combo-tick", daemon=True)
    t.start()
    return t, stop


async def serve(tracker: ComboTracker, host: str = HOST_WS, port: int = PORT_WS):
    loop = asyncio.get_running_loop()
    # Hook tracker emitter to this loop (thread-safe)
    tracker.set_emitter(make_threadsafe_emitter(loop))
    try:
        async with websockets.serve(make_ws_handler(tracker), host, port):
            logger.info("WebSocket server running at ws://%s:%d", host, port)
            await asyncio.Future()  # run forever
    finally:
        tracker.set_emitter(None)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="combo-server", description="Serve combo detection over WebSocket.")
    parser.add_argument("table", type=Path, help="JSON combo table")
    parser.add_argument("--host", default=HOST_WS)
    parser.add_argument("--port", type=int, default=PORT_WS)
    parser.add_argument("--tick-hz", type=float, default=TICK_HZ)
    parser.add_argument("--stats", type=Path, default=None, help="Load/save session statistics here")
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        combo_set = load_combo_set(args.table)
    except (OSError, ComboConfigError) as exc:
        logger.error("Cannot load combo table: %s", exc)
        return 2

    stats = load_stats(args.stats) if args.stats else None
    tracker = ComboTracker(combo_set, stats=stats)
    _tick_thread, stop = start_tick_thread(tracker, args.tick_hz)

    logger.info("Press Ctrl+C to exit")
    try:
        asyncio.run(serve(tracker, args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        stop.set()
        if args.stats:
            save_stats(tracker.stats, args.stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
