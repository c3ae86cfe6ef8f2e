"""
WebSocket hub

Web clients connect here to receive everything the ESP32 sends and to
push commands back to it. Runs the websockets sync server on its own
port in a background thread, next to the Flask HTTP API.
"""

import json
import logging
import threading

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import serve

from .config import DEFAULT_WS_PORT
from .messages import CommandError, command_response, connection_status, normalize_command

logger = logging.getLogger(__name__)


class WebSocketHub:
    """Fans ESP32 messages out to every connected WebSocket client"""

    def __init__(self, host="0.0.0.0", port=DEFAULT_WS_PORT):
        self.host = host
        self.port = port
        self.link = None
        self.clients = []
        self.lock = threading.Lock()
        self.server = None
        self._thread = None

    def attach(self, link):
        """Attach the ESP32Interface commands are forwarded to"""
        self.link = link

    @property
    def client_count(self):
        with self.lock:
            return len(self.clients)

    def register(self, websocket):
        with self.lock:
            if websocket not in self.clients:
                self.clients.append(websocket)

    def unregister(self, websocket):
        with self.lock:
            if websocket in self.clients:
                self.clients.remove(websocket)

    # ------------------------------ Server -------------------------------
    def start(self):
        self.server = serve(self.handle_client, self.host, self.port)
        self._thread = threading.Thread(target=self.server.serve_forever, name="ws-hub", daemon=True)
        self._thread.start()
        logger.info(f"🌐 WebSocket server listening on port {self.port}")

    def stop(self):
        server, self.server = self.server, None
        if server is None:
            return
        server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("🌐 WebSocket server stopped")

    def handle_client(self, websocket):
        """Serve one client connection until it closes"""
        logger.info(f"🔗 WebSocket client connected from {websocket.remote_address}")
        self.register(websocket)
        try:
            for text in self.welcome_messages():
                websocket.send(text)
            for message in websocket:
                reply = self.handle_message(message)
                if reply is not None:
                    websocket.send(reply)
        except ConnectionClosed as e:
            logger.debug(f"WebSocket connection closed: {e}")
        finally:
            self.unregister(websocket)
            logger.info("🔗 WebSocket client disconnected")

    # ------------------------------ Messages -----------------------------
    def welcome_messages(self):
        """Connection status followed by the latest cached device payloads"""
        link = self.link
        connected = link.is_connected if link else False
        port = link.port if link else None
        messages = [json.dumps(connection_status(connected, port))]

        if link is not None:
            for cached in (link.last_sensor_data, link.last_device_status):
                if cached:
                    messages.append(json.dumps(cached))
        return messages

    def handle_message(self, raw):
        """Forward a client command to the ESP32, return the reply text"""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        try:
            body = json.loads(raw)
        except ValueError as e:
            logger.error(f"❌ Invalid WebSocket message: {e}")
            return None

        try:
            command, data = normalize_command(body)
        except CommandError as e:
            logger.warning(f"⚠️ Ignoring WebSocket message: {e}")
            return None

        logger.info(f"📥 WebSocket → {command}")
        success = self.link.send_command(command, data) if self.link else False
        return json.dumps(command_response(command, success))

    def broadcast(self, text):
        """Send text to every client, dropping the ones that have gone away"""
        with self.lock:
            clients = list(self.clients)

        for websocket in clients:
            try:
                websocket.send(text)
            except ConnectionClosed:
                self.unregister(websocket)
