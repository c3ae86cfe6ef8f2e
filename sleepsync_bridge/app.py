#!/usr/bin/env python3
"""
SleepSync Bridge API

Local relay between the SleepSync web app and the ESP32 smart alarm:
- HTTP endpoints for status, health and one-shot commands
- WebSocket hub streaming ESP32 events and accepting commands
- ESP32 serial auto-discovery with automatic reconnection

The bridge serves one device and keeps no state beyond the latest
sensor and device status payloads.
"""

import argparse
import atexit
import logging
import signal
import sys
import threading
import time

import psutil
from flask import Flask, jsonify, request

from . import __version__
from .config import load_config
from .device_manager import ESP32DeviceManager
from .esp32_interface import ESP32Interface
from .messages import CommandError, normalize_command, utc_now
from .ws_server import WebSocketHub

bridge_config = load_config()

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024  # 1 MB max request body

logging.basicConfig(
    level=getattr(logging, bridge_config.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

START_TIME = time.time()

# cpu_percent(None) compares against the previous call on the same Process
PROCESS = psutil.Process()
PROCESS.cpu_percent(interval=None)

device_manager = None
ws_hub = None
esp32 = None


def init_bridge(config):
    """Build the device manager, serial link and WebSocket hub for a config"""
    global bridge_config, device_manager, ws_hub, esp32

    bridge_config = config
    device_manager = ESP32DeviceManager(preferred_port=config.serial_port)
    ws_hub = WebSocketHub(host=config.host, port=config.ws_port)
    esp32 = ESP32Interface(
        device_manager,
        baud_rate=config.baud_rate,
        reconnect_delay=config.reconnect_delay,
        on_message=ws_hub.broadcast,
    )
    ws_hub.attach(esp32)


init_bridge(bridge_config)


def collect_process_metrics():
    try:
        with PROCESS.oneshot():
            return {
                "cpu_percent": PROCESS.cpu_percent(interval=None),
                "memory_mb": round(PROCESS.memory_info().rss / (1024 * 1024), 1),
                "threads": PROCESS.num_threads(),
            }
    except psutil.Error as e:
        logger.error(f"Metric collection error: {e}")
        return None

# ------------------------------ CORS Middleware -------------------------------
@app.after_request
def after_request(response):
    """Add CORS headers"""
    origin = request.headers.get("Origin")
    if origin and bridge_config.origin_allowed(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    return response

@app.before_request
def handle_preflight():
    if request.method == "OPTIONS":
        return "", 200

# ------------------------------ Bridge Routes --------------------------------
@app.route("/")
def index():
    return jsonify({
        "name": "SleepSync Bridge",
        "version": __version__,
        "status": "operational",
        "websocket_port": bridge_config.ws_port,
        "endpoints": {
            "/health": "Bridge health check",
            "/status": "ESP32 link status and latest device payloads",
            "/command": "Send a command to the ESP32",
            "/api/esp32": "Send a command to the ESP32 (web app route)",
            "/ports": "List serial ports",
            "/discover": "Rescan serial ports for the ESP32",
            "/serial-history": "Recent serial traffic",
            "/reconnect": "Re-open the ESP32 serial link",
        }
    })

@app.route("/health")
def health():
    """Bridge health check"""
    try:
        return jsonify({
            "status": "ok",
            "esp32_connected": esp32.is_connected,
            "websocket_clients": ws_hub.client_count,
            "uptime": round(time.time() - START_TIME, 1),
            "process": collect_process_metrics(),
            "timestamp": utc_now(),
        })
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "unhealthy", "error": str(e)}), 500

@app.route("/status")
def status():
    """ESP32 link status with the latest cached payloads"""
    try:
        return jsonify({
            "esp32_connected": esp32.is_connected,
            "websocket_clients": ws_hub.client_count,
            "bridge": esp32.get_status(),
            "last_sensor_data": esp32.last_sensor_data,
            "last_device_status": esp32.last_device_status,
            "timestamp": utc_now(),
        })
    except Exception as e:
        logger.error(f"Status check failed: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route("/command", methods=["POST"])
@app.route("/api/esp32", methods=["POST"])
def esp32_command():
    """Send a command to the ESP32 over serial"""
    try:
        command, data = normalize_command(request.get_json(silent=True))
    except CommandError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    try:
        logger.info(f"🌐 HTTP → ESP32: {command}")
        success = esp32.send_command(command, data)
        return jsonify({
            "success": success,
            "command": command,
            "timestamp": utc_now(),
        })
    except Exception as e:
        logger.error(f"ESP32 command error: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route("/ports", methods=["GET"])
def ports():
    """List available serial ports"""
    try:
        return jsonify(device_manager.scan_ports())
    except Exception as e:
        logger.error(f"Port listing failed: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route("/discover", methods=["POST"])
def discover():
    """Rescan serial ports for the ESP32"""
    try:
        logger.info("ESP32 discovery requested")
        port = device_manager.find_esp32_port()
        return jsonify({
            "success": port is not None,
            "port": port,
            "status": device_manager.get_status(),
        })
    except Exception as e:
        logger.error(f"ESP32 discovery failed: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

@app.route("/serial-history", methods=["GET"])
def serial_history():
    """Get ESP32 serial communication history"""
    try:
        return jsonify({
            "history": esp32.get_serial_history(),
            "connected": esp32.is_connected,
            "last_message_at": esp32.last_message_at,
        })
    except Exception as e:
        logger.error(f"Serial history error: {e}")
        return jsonify({"history": [], "connected": False, "error": str(e)}), 500

@app.route("/reconnect", methods=["POST"])
def reconnect():
    """Drop and re-open the ESP32 serial link"""
    try:
        logger.info("ESP32 reconnect requested")
        connected = esp32.reconnect()
        return jsonify({
            "success": connected,
            "bridge": esp32.get_status(),
        })
    except Exception as e:
        logger.error(f"ESP32 reconnect failed: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

# ------------------------------ Cleanup -----------------------------------
_cleanup_lock = threading.Lock()
_cleaned_up = False

def cleanup_on_exit():
    """Stop the serial link and WebSocket hub (runs once)"""
    global _cleaned_up
    with _cleanup_lock:
        if _cleaned_up:
            return
        _cleaned_up = True

    logger.info("🛑 Shutting down bridge server...")
    try:
        esp32.stop()
        ws_hub.stop()
        logger.info("✅ Bridge cleanup completed")
    except Exception as e:
        logger.error(f"❌ Bridge cleanup error: {e}")

def _handle_sigterm(signum, frame):
    logger.info("🛑 Bridge server terminated")
    cleanup_on_exit()
    sys.exit(0)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="SleepSync ESP32 bridge server")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="HTTP port to run on")
    parser.add_argument("--ws-port", type=int, help="WebSocket port to run on")
    parser.add_argument("--serial-port", help="ESP32 serial port (skips auto-discovery)")
    parser.add_argument("--baud", type=int, help="Serial baud rate")
    parser.add_argument("--reconnect-delay", type=float, help="Seconds between reconnect attempts")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    return parser.parse_args(argv)

def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    config = bridge_config.with_overrides(
        host=args.host,
        http_port=args.port,
        ws_port=args.ws_port,
        serial_port=args.serial_port,
        baud_rate=args.baud,
        reconnect_delay=args.reconnect_delay,
        log_level="DEBUG" if args.debug else None,
    )
    logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))
    init_bridge(config)

    atexit.register(cleanup_on_exit)
    signal.signal(signal.SIGTERM, _handle_sigterm)

    logger.info("🚀 SleepSync Bridge Server Starting...")
    ws_hub.start()
    esp32.start()

    logger.info("✅ Bridge server ready!")
    logger.info(f"📡 WebSocket: ws://localhost:{config.ws_port}")
    logger.info(f"🌐 HTTP: http://localhost:{config.http_port}")

    try:
        app.run(
            host=config.host,
            port=config.http_port,
            debug=args.debug,
            use_reloader=False,
            threaded=True,
        )
    except KeyboardInterrupt:
        logger.info("🛑 Bridge server stopped by user")
    finally:
        cleanup_on_exit()
    return 0

if __name__ == "__main__":
    main()
