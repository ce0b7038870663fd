"""
Flask front door for the pairing client.

User intents arrive as HTTP POSTs and are forwarded to the `PeerClient`;
everything the client reports (status, chat lines, partner changes) is
pushed to the browser over the ``/ws`` WebSocket as ``{"kind", "data"}``
JSON objects. Rendering is left to the browser.
"""
import argparse
import json
import logging
import os
import threading
from dataclasses import replace

from flask import Flask, jsonify, request
from flask_sock import Sock
from simple_websocket import ConnectionClosed

from .client import PeerClient
from .config import ClientConfig, NEGOTIATION_TIMEOUT, SIGNAL_URL
from .coordinator import PairingMode
from .log import configure_logging

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['SECRET_KEY'] = os.urandom(24)
app.config['PAIRCHAT'] = ClientConfig()
sock = Sock(app)

# one browser session per process
client_factory = PeerClient
peer_client = None
ui_sock = None
_sock_lock = threading.Lock()


def post(kind, data=""):
    """Push a UI event to the connected browser, if any."""
    with _sock_lock:
        ws = ui_sock
    if ws is None:
        logger.debug("No UI socket, dropping %s event", kind)
        return
    try:
        ws.send(json.dumps({"kind": kind, "data": data}))
    except Exception as e:
        logger.warning("Error sending %s event to UI: %s", kind, e)


def _require_client():
    if peer_client is None:
        return jsonify({"status": "error", "message": "Join first"}), 409
    return None


# --- WebSocket Route ---
@sock.route('/ws')
def ws_events(ws):
    """Keep the browser's event socket open; answers JSON pings."""
    global ui_sock
    with _sock_lock:
        ui_sock = ws
    logger.info("UI WebSocket connected")
    try:
        while True:
            data = ws.receive(timeout=None)
            if data is None:
                break
            try:
                if json.loads(data).get("type") == "ping":
                    post("pong", "PONG from server")
            except (ValueError, AttributeError):
                pass
    except ConnectionClosed:
        logger.info("UI WebSocket closed by client")
    finally:
        with _sock_lock:
            if ui_sock is ws:
                ui_sock = None


# --- Action Routes (HTTP POST) ---
@app.route('/join', methods=['POST'])
def join_route():
    """
    Connect to the relay.
    Expects JSON: {"username": "...", "mode": "auto-find" | "directory"}
    """
    global peer_client
    data = request.get_json(silent=True) or {}
    mode = data.get('mode') or app.config['PAIRCHAT'].mode
    try:
        mode = PairingMode(mode).value
    except ValueError:
        return jsonify({"status": "error", "message": f"Unknown mode {mode!r}"}), 400
    username = (data.get('username') or '').strip() or None
    if mode == PairingMode.DIRECTORY.value and not username:
        return jsonify({"status": "error", "message": "Username required in directory mode"}), 400

    if peer_client is not None:
        peer_client.disconnect()
    base = app.config['PAIRCHAT']
    config = replace(base, mode=mode, username=username)
    peer_client = client_factory(post, config)
    return jsonify({"status": "joining", "username": peer_client.username, "mode": mode})


@app.route('/call', methods=['POST'])
def call_route():
    """Call a user by name (directory mode). Expects JSON: {"name": "..."}"""
    error = _require_client()
    if error:
        return error
    name = ((request.get_json(silent=True) or {}).get('name') or '').strip()
    if not name:
        return jsonify({"status": "error", "message": "Name not provided"}), 400
    peer_client.call(name)
    return jsonify({"status": "calling", "name": name})


@app.route('/next', methods=['POST'])
def next_route():
    error = _require_client()
    if error:
        return error
    peer_client.next()
    return jsonify({"status": "next requested"})


@app.route('/send-message', methods=['POST'])
def send_message_route():
    """Expects JSON: {"message": "text"}; blank messages are ignored."""
    error = _require_client()
    if error:
        return error
    message = (request.get_json(silent=True) or {}).get('message')
    if message is None:
        return jsonify({"status": "error", "message": "Message not provided"}), 400
    if not str(message).strip():
        return jsonify({"status": "ignored"})
    peer_client.send_message(str(message))
    return jsonify({"status": "message sent"})


@app.route('/disconnect', methods=['POST'])
def disconnect_route():
    global peer_client
    if peer_client is not None:
        peer_client.disconnect()
        peer_client = None
    return jsonify({"status": "disconnecting"})


@app.route('/state')
def state_route():
    if peer_client is None:
        return jsonify({"state": "offline"})
    try:
        return jsonify(peer_client.snapshot())
    except Exception as e:
        logger.warning("State snapshot failed: %s", e)
        return jsonify({"status": "error", "message": "Client not responding"}), 503


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Pairing video chat client')
    parser.add_argument('--port', type=int, default=5000, help='Port to run the server on')
    parser.add_argument('--signal-url', default=SIGNAL_URL, help='Relay WebSocket URL')
    parser.add_argument('--mode', default=PairingMode.AUTO_FIND.value,
                        choices=[m.value for m in PairingMode], help='Pairing policy')
    parser.add_argument('--stun', action='append', default=None, help='ICE server URL (repeatable)')
    parser.add_argument('--timeout', type=float, default=NEGOTIATION_TIMEOUT,
                        help='Seconds before an unanswered negotiation is dropped (0 disables)')
    parser.add_argument('--video-device', default=None, help='Capture device, e.g. /dev/video0')
    parser.add_argument('--video-format', default=None, help='Capture format, e.g. v4l2')
    parser.add_argument('--audio-device', default=None, help='Audio capture device')
    parser.add_argument('--audio-format', default=None, help='Audio capture format, e.g. pulse')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
    return parser.parse_args(argv)


def config_from_args(args) -> ClientConfig:
    config = ClientConfig(
        signal_url=args.signal_url,
        mode=args.mode,
        negotiation_timeout=args.timeout or None,
        video_device=args.video_device,
        video_format=args.video_format,
        audio_device=args.audio_device,
        audio_format=args.audio_format,
    )
    if args.stun:
        config.ice_servers = list(args.stun)
    return config


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.log_level)
    app.config['PAIRCHAT'] = config_from_args(args)
    logger.info("Starting UI bridge on port %d (relay %s)", args.port, args.signal_url)
    app.run(host='0.0.0.0', port=args.port, debug=False, use_reloader=False)


if __name__ == '__main__':
    main()
