"""
ESP32 Device Manager

Finds the serial port the ESP32 smart alarm is attached to.
"""

import logging
import threading

import serial.tools.list_ports

from .messages import utc_now

logger = logging.getLogger(__name__)

# USB-UART bridges found on ESP32 dev boards
ESP32_IDENTIFIERS = [
    "CP210x",
    "CP210",
    "CH340",
    "CH9102",
    "FT232",
    "FTDI",
    "ESP32",
    "USB-SERIAL",
    "Silicon Labs",
    "Espressif",
]

ESP32_VENDOR_IDS = {
    0x10C4: "Silicon Labs",
    0x1A86: "WCH",
    0x0403: "FTDI",
    0x303A: "Espressif",
}

FALLBACK_PORTS = ["COM3", "COM4", "COM5", "/dev/ttyUSB0", "/dev/ttyACM0"]


def _format_id(value):
    return f"{value:04x}" if isinstance(value, int) else "----"


class ESP32DeviceManager:
    """Scans serial ports and picks the one most likely to be the ESP32"""

    def __init__(self, preferred_port=None):
        self.preferred_port = preferred_port
        self.lock = threading.Lock()
        self.last_scan = []
        self.last_scan_at = None
        self.selected_port = None
        self.selection_reason = None

    def scan_ports(self):
        """Enumerate serial ports and tag the ones that look like an ESP32"""
        devices = []

        for port in serial.tools.list_ports.comports():
            identified = self._matches_signature(port)
            devices.append({
                "port": port.device,
                "description": port.description,
                "manufacturer": port.manufacturer,
                "vid": port.vid,
                "pid": port.pid,
                "serial_number": port.serial_number,
                "product": port.product,
                "identified_as": "esp32" if identified else None,
            })
            logger.info(
                f"  📍 Found: {port.device} - {port.manufacturer or 'Unknown'} "
                f"({_format_id(port.vid)}:{_format_id(port.pid)})"
            )

        with self.lock:
            self.last_scan = devices
            self.last_scan_at = utc_now()

        return devices

    def _matches_signature(self, port):
        if port.vid in ESP32_VENDOR_IDS:
            return True

        fields = (port.manufacturer, port.description, port.product, port.serial_number)
        haystack = " ".join(str(value) for value in fields if value).upper()
        return any(identifier.upper() in haystack for identifier in ESP32_IDENTIFIERS)

    def find_esp32_port(self):
        """Return the device path to open, or None when nothing is attached"""
        logger.info("🔍 Scanning for ESP32...")
        devices = self.scan_ports()
        port, reason = self._select_port(devices)

        with self.lock:
            self.selected_port = port
            self.selection_reason = reason

        if port is None:
            logger.error("❌ No serial ports found")
        elif reason == "identified":
            logger.info(f"✅ ESP32 detected at {port}")
        elif reason == "configured":
            logger.info(f"📌 Using configured serial port {port}")
        else:
            logger.warning(f"⚠️ No ESP32-specific port found, trying: {port}")

        return port

    def _select_port(self, devices):
        paths = [device["port"] for device in devices]

        if self.preferred_port:
            if self.preferred_port not in paths:
                logger.warning(f"⚠️ Configured port {self.preferred_port} not listed, opening it anyway")
            return self.preferred_port, "configured"

        for device in devices:
            if device["identified_as"] == "esp32":
                return device["port"], "identified"

        for path in FALLBACK_PORTS:
            if path in paths:
                return path, "fallback"

        if paths:
            return paths[0], "first_available"

        return None, None

    def get_status(self):
        with self.lock:
            return {
                "preferred_port": self.preferred_port,
                "selected_port": self.selected_port,
                "selection_reason": self.selection_reason,
                "last_scan_at": self.last_scan_at,
                "ports": list(self.last_scan),
            }
