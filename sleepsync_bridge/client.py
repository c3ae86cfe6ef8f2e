"""
Bridge HTTP client

Thin requests wrapper for talking to a running bridge, e.g. from the web
app's server side or from scripts. Also has shortcuts for the commands the
smart-alarm firmware understands.
"""

import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_BRIDGE_URL = "http://127.0.0.1:3001"


class BridgeClientError(Exception):
    """Raised when the bridge is unreachable or rejects a request"""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class BridgeClient:
    def __init__(self, base_url=DEFAULT_BRIDGE_URL, timeout=5, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise BridgeClientError(f"Bridge unreachable at {url}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise BridgeClientError(error or f"HTTP {response.status_code}", response.status_code)
        return payload

    def send_command(self, command, data=None):
        """Send a command to the ESP32 through the bridge"""
        body = {"command": command}
        if data is not None:
            body["data"] = data

        result = self._request("POST", "/command", json=body)
        if not result or not result.get("success"):
            raise BridgeClientError(f"Bridge could not deliver command '{command}' to the ESP32")
        logger.info(f"✅ Command '{command}' sent to ESP32")
        return result

    def status(self):
        return self._request("GET", "/status")

    def health(self):
        return self._request("GET", "/health")

    def ports(self):
        return self._request("GET", "/ports")

    # Light simulation
    def start_sunrise(self):
        return self.send_command("start_sunrise")

    def start_sunset(self):
        return self.send_command("start_sunset")

    def night_light(self):
        return self.send_command("night_light")

    def set_rgb(self, r, g, b):
        return self.send_command("set_rgb", {"r": r, "g": g, "b": b})

    def set_brightness(self, brightness):
        return self.send_command("set_brightness", {"brightness": brightness})

    # Alarm control
    def start_alarm(self):
        return self.send_command("start_alarm")

    def stop_alarm(self):
        return self.send_command("stop_alarm")

    def enable_alarm(self):
        return self.send_command("enable_alarm")

    def disable_alarm(self):
        return self.send_command("disable_alarm")

    def set_bedtime(self, hour, minute):
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Invalid bedtime {hour}:{minute:02d}")
        return self.send_command("set_bedtime", {"hour": hour, "minute": minute})

    def test_buzzer(self, frequency=None, volume=None, duration=None):
        options = {"frequency": frequency, "volume": volume, "duration": duration}
        data = {key: value for key, value in options.items() if value is not None}
        return self.send_command("test_buzzer", data or None)

    # Device
    def get_status(self):
        return self.send_command("get_status")

    def get_sensors(self):
        return self.send_command("get_sensors")

    def stop_all(self):
        return self.send_command("stop_all")

    def reset(self):
        return self.send_command("reset")
