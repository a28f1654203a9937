import asyncio
import json
import logging
import sys
import threading
import time
from pathlib import Path

import websockets
from pynput import keyboard, mouse

import input_buffer_ui as ui
from frame_driver import TICK_HZ, FrameDriver
from input_buffer import DEFAULT_BUFFER_WINDOW, InputBufferTracker
from input_map import normalize_key
from persistence import load_config, save_config

logger = logging.getLogger(__name__)

HOST_WS = "localhost"
PORT_WS = 8765
CONFIG_FILENAME = "input_config.json"


def get_data_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def normalize_mouse(button) -> str:
    if button == mouse.Button.left:
        return "lmb"
    if button == mouse.Button.right:
        return "rmb"
    if button == mouse.Button.middle:
        return "mmb"
    return "mouse_extra"


connected_clients: set = set()


async def broadcast_dict(payload: dict):
    if not connected_clients:
        return
    msg = json.dumps(payload)
    clients = list(connected_clients)
    results = await asyncio.gather(*(c.send(msg) for c in clients), return_exceptions=True)
    # Drop broken clients
    for c, r in zip(clients, results):
        if isinstance(r, Exception):
            connected_clients.discard(c)


def make_threadsafe_emitter(loop: asyncio.AbstractEventLoop):
    def emit(payload: dict):
        try:
            asyncio.run_coroutine_threadsafe(broadcast_dict(payload), loop)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug("Dropping event, event loop is closed", exc_info=True)

    return emit


def _safe_json_load(s: str):
    try:
        return json.loads(s)
    except Exception:
        return None


def handle_message(msg: dict) -> dict | None:
    """Apply one client request to the tracker. Returns a reply payload, if any."""
    mtype = msg.get("type")
    action = str(msg.get("action") or "")
    try:
        window = float(msg.get("window", DEFAULT_BUFFER_WINDOW))
    except (TypeError, ValueError):
        window = DEFAULT_BUFFER_WINDOW

    if mtype == "consume":
        return {"type": "consume_result", "action": action, "ok": tracker.consume_buffered_input(action, window)}
    if mtype == "peek":
        return {"type": "peek_result", "action": action, "ok": tracker.peek_buffered_input(action, window)}
    if mtype == "register_action":
        return {"type": "register_result", "action": action, "ok": tracker.register_action(action)}
    if mtype == "unregister_action":
        return {"type": "unregister_result", "action": action, "ok": tracker.unregister_action(action)}
    if mtype == "register_sequence":
        ok = tracker.register_sequence(
            msg.get("actions") or "",
            msg.get("timeout"),
            name=str(msg.get("name") or "") or None,
        )
        if not ok:
            return {"type": "status", "text": "Sequence rejected (empty or unknown action)", "color": "fail"}
        return ui.init_payload(tracker)
    if mtype == "unregister_sequence":
        tracker.unregister_sequence(msg.get("actions") or "")
        return ui.init_payload(tracker)
    if mtype == "clear":
        tracker.clear_all()
        return ui.init_payload(tracker)
    if mtype == "snapshot":
        return ui.init_payload(tracker)
    if mtype == "save":
        save_config(tracker, config_path)
        return {"type": "status", "text": "Saved", "color": "ready"}
    return None


async def ws_handler(websocket, _path=None):
    connected_clients.add(websocket)
    print(f"Client connected. Total: {len(connected_clients)}")

    # Send initial state
    await websocket.send(json.dumps(ui.init_payload(tracker)))

    try:
        async for message in websocket:
            msg = _safe_json_load(message)
            if not isinstance(msg, dict):
                continue
            reply = handle_message(msg)
            if reply is not None:
                await websocket.send(json.dumps(reply))
    finally:
        connected_clients.discard(websocket)
        print(f"Client disconnected. Total: {len(connected_clients)}")


def run_ws_server():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Hook tracker emitter to this loop (thread-safe)
    tracker.set_emitter(make_threadsafe_emitter(loop))

    async def _main():
        async with websockets.serve(ws_handler, HOST_WS, PORT_WS):
            print(f"WebSocket server running at ws://{HOST_WS}:{PORT_WS}")
            await asyncio.Future()  # run forever

    loop.run_until_complete(_main())


def start_input_listeners():
    # Input callbacks run off-thread; they only queue keys for the next frame.
    def on_key_press(key):
        driver.press(normalize_key(key))

    def on_key_release(key):
        driver.release(normalize_key(key))

    def on_mouse_click(_x, _y, button, pressed):
        btn = normalize_mouse(button)
        if pressed:
            driver.press(btn)
        else:
            driver.release(btn)

    kl = keyboard.Listener(on_press=on_key_press, on_release=on_key_release)
    ml = mouse.Listener(on_click=on_mouse_click)
    kl.start()
    ml.start()
    return kl, ml


tracker = InputBufferTracker()
driver = FrameDriver(tracker)
config_path = get_data_dir() / CONFIG_FILENAME


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    load_config(tracker, config_path)

    # WebSocket server (owns its asyncio loop)
    ws_thread = threading.Thread(target=run_ws_server, daemon=True)
    ws_thread.start()

    # Frame tick
    stop = threading.Event()
    tick_thread = threading.Thread(target=driver.run, args=(stop, TICK_HZ), daemon=True)
    tick_thread.start()

    # Input listeners
    kl, ml = start_input_listeners()

    print("Press Ctrl+C to exit")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nShutting down...")
        stop.set()
        kl.stop()
        ml.stop()
        save_config(tracker, config_path)


if __name__ == "__main__":
    main()
