"""
ESP32 Serial Interface

Owns the single serial connection to the ESP32 smart alarm: opening it,
reading frames off it in a background thread, writing commands to it,
and reconnecting on a fixed timer after the link drops.
"""

import json
import logging
import threading
from datetime import datetime

import serial

from .config import DEFAULT_BAUD_RATE, DEFAULT_RECONNECT_DELAY
from .framing import JsonLineAssembler, decode_frame
from .messages import bridge_status, encode_command, utc_now

logger = logging.getLogger(__name__)

READ_TIMEOUT = 0.5
WRITE_TIMEOUT = 2
DEVICE_LOG_TAG = "SLEEPSYNC_ESP32"


class ESP32Interface:
    """Serial link to the ESP32 with automatic reconnection"""

    def __init__(self, device_manager, baud_rate=DEFAULT_BAUD_RATE,
                 reconnect_delay=DEFAULT_RECONNECT_DELAY, on_message=None, max_history=100):
        self.device_manager = device_manager
        self.baud_rate = baud_rate
        self.reconnect_delay = reconnect_delay
        self.on_message = on_message
        self.serial = None
        self.port = None
        self.connected = False
        self.connection_attempts = 0
        self.assembler = JsonLineAssembler()

        # Latest cached payloads, replayed to newly connected clients
        self.last_sensor_data = None
        self.last_device_status = None
        self.last_message_at = None

        # Serial history buffer - store last N messages
        self.serial_history = []
        self.max_history = max_history

        self.lock = threading.RLock()
        self._reader = None
        self._reconnect_timer = None
        self._generation = 0
        self._stopping = threading.Event()

    # ------------------------------ History ------------------------------
    def _add_to_history(self, message, direction="system"):
        """Add message to serial history with timestamp"""
        entry = {
            "timestamp": datetime.now().strftime("%H:%M:%S"),
            "message": message,
            "direction": direction,  # "system", "sent", "received"
        }
        with self.lock:
            self.serial_history.append(entry)
            if len(self.serial_history) > self.max_history:
                self.serial_history = self.serial_history[-self.max_history:]

    def get_serial_history(self):
        """Get formatted serial history for the frontend"""
        with self.lock:
            entries = list(self.serial_history)

        formatted_history = []
        for entry in entries:
            if entry["direction"] == "sent":
                formatted_history.append(f"[{entry['timestamp']}] > {entry['message']}")
            else:
                formatted_history.append(f"[{entry['timestamp']}] {entry['message']}")
        return formatted_history

    # ------------------------------ Lifecycle ----------------------------
    @property
    def is_connected(self):
        ser = self.serial
        return self.connected and ser is not None and ser.is_open

    @property
    def reconnect_pending(self):
        return self._reconnect_timer is not None

    def start(self):
        """Open the link, retrying in the background until it comes up"""
        self._stopping.clear()
        if not self.connect():
            logger.warning(f"⚠️ ESP32 not available yet, retrying every {self.reconnect_delay:g}s")

    def connect(self):
        """Discover the ESP32 and open its serial port"""
        with self.lock:
            if self._stopping.is_set():
                return False
            if self.is_connected:
                return True

            self._cancel_reconnect()
            self.connection_attempts += 1

            port = self.device_manager.find_esp32_port()
            if not port:
                self._add_to_history("❌ No ESP32 device found")
                self._schedule_reconnect()
                return False

            connect_msg = (f"Connecting to ESP32 at {port} at {self.baud_rate} baud "
                           f"(attempt {self.connection_attempts})")
            logger.info(f"🔌 {connect_msg}")
            self._add_to_history(f"🔌 {connect_msg}")

            try:
                ser = serial.Serial(
                    port=port,
                    baudrate=self.baud_rate,
                    timeout=READ_TIMEOUT,
                    write_timeout=WRITE_TIMEOUT,
                )
                ser.reset_input_buffer()
            except (serial.SerialException, OSError, ValueError) as e:
                logger.error(f"❌ Failed to open ESP32 port: {e}")
                self._add_to_history(f"❌ Failed to open {port}: {e}")
                self._schedule_reconnect()
                return False

            self.serial = ser
            self.port = port
            self.connected = True
            self.assembler.reset()
            self._generation += 1
            self._start_reader(ser, self._generation)

        logger.info(f"✅ ESP32 connected on {port}")
        self._add_to_history(f"✅ ESP32 connected on {port}")
        self._publish(bridge_status(True, port))
        return True

    def ensure_connected(self):
        if self.is_connected:
            return True
        logger.info("ℹ️ Ensuring ESP32 connection...")
        return self.connect()

    def reconnect(self):
        """Drop the current link and open it again straight away"""
        self._handle_link_lost(reschedule=False)
        return self.connect()

    def stop(self):
        """Close the port and cancel any pending reconnect"""
        self._stopping.set()
        with self.lock:
            self._cancel_reconnect()
            ser, self.serial = self.serial, None
            was_connected = self.connected
            self.connected = False
            self._generation += 1
            reader, self._reader = self._reader, None

        self._close_port(ser)
        if reader is not None and reader is not threading.current_thread() and reader.is_alive():
            reader.join(timeout=READ_TIMEOUT * 4)
        if was_connected:
            logger.info("🔌 ESP32 serial port closed")

    def _handle_link_lost(self, error=None, reschedule=True):
        with self.lock:
            if not self.connected:
                return
            self.connected = False
            ser, self.serial = self.serial, None
            self._generation += 1
            self.assembler.reset()
            port = self.port

        self._close_port(ser)
        if error:
            logger.error(f"❌ ESP32 port error: {error}")
        logger.info("🔌 ESP32 disconnected")
        self._add_to_history(f"⚠️ ESP32 disconnected: {error}" if error else "⚠️ ESP32 disconnected")
        self._publish(bridge_status(False, port, error=error))

        if reschedule:
            self._schedule_reconnect()

    def _close_port(self, ser):
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError) as e:
            logger.warning(f"⚠️ Serial close warning: {e}")

    def _schedule_reconnect(self):
        with self.lock:
            if self._stopping.is_set() or self._reconnect_timer is not None:
                return
            logger.info(f"🔄 Reconnecting in {self.reconnect_delay:g} seconds...")
            timer = threading.Timer(self.reconnect_delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
            timer.start()

    def _cancel_reconnect(self):
        with self.lock:
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None

    def _reconnect(self):
        with self.lock:
            self._reconnect_timer = None
        self.connect()

    # ------------------------------ Reading ------------------------------
    def _start_reader(self, ser, generation):
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(ser, generation),
            name="esp32-reader",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, ser, generation):
        while not self._stopping.is_set() and generation == self._generation:
            try:
                raw = ser.readline()
            except (serial.SerialException, OSError) as e:
                if generation == self._generation and not self._stopping.is_set():
                    self._handle_link_lost(str(e))
                return

            if not raw:
                continue

            try:
                frame = self.assembler.feed(raw.decode("utf-8", errors="replace"))
                if frame is not None:
                    self.handle_frame(frame)
            except Exception as e:
                logger.error(f"❌ Failed to handle ESP32 frame: {e}")

    def handle_frame(self, text):
        """Cache, log and forward one frame received from the ESP32"""
        self.last_message_at = utc_now()
        message = decode_frame(text)

        if message is None:
            if DEVICE_LOG_TAG in text:
                logger.info(f"📟 ESP32: {text}")
            else:
                logger.info(f"📨 ESP32 → {text}")
            self._add_to_history(text, "received")
            self._emit(text)
            return

        if isinstance(message, dict):
            message_type = message.get("type")
            if message_type == "sensor_data":
                self.last_sensor_data = message
            elif message_type == "device_status":
                self.last_device_status = message
            logger.info(f"📨 ESP32 → {message_type or 'message'}")

        compact = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
        self._add_to_history(compact, "received")
        self._emit(compact)

    # ------------------------------ Writing ------------------------------
    def send_command(self, command, data=None):
        """Write one command line to the ESP32. Returns False if it could not be sent"""
        if not self.ensure_connected():
            logger.warning("⚠️ Cannot send command: ESP32 not connected")
            return False

        payload = encode_command(command, data)
        with self.lock:
            ser = self.serial
        if ser is None:
            logger.warning("⚠️ Cannot send command: ESP32 not connected")
            return False

        # The write may block for up to WRITE_TIMEOUT; the lock is not held
        try:
            ser.write(payload)
            ser.flush()
        except (serial.SerialException, OSError) as e:
            logger.error(f"❌ Failed to send command to ESP32: {e}")
            self._handle_link_lost(str(e))
            return False

        text = payload.decode("utf-8").rstrip("\n")
        logger.info(f"📤 → ESP32: {text}")
        self._add_to_history(text, "sent")
        return True

    # ------------------------------ Publishing ---------------------------
    def _publish(self, message):
        self._emit(json.dumps(message))

    def _emit(self, text):
        if self.on_message is not None:
            self.on_message(text)

    def get_status(self):
        return {
            "connected": self.is_connected,
            "port": self.port,
            "baud_rate": self.baud_rate,
            "last_message_at": self.last_message_at,
            "reconnect_pending": self.reconnect_pending,
            "connection_attempts": self.connection_attempts,
        }
