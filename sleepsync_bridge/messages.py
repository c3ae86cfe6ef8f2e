"""
Bridge message formats

Commands go to the firmware as {"command": ..., "data": ...} JSON lines.
The firmware reads only those two fields; every inbound
shape the web app uses is normalised to them here.
"""

import json
from datetime import datetime, timezone

RESERVED_FIELDS = {"command", "type", "payload", "data", "timestamp"}


class CommandError(ValueError):
    """Raised when a request does not name a command"""


def utc_now():
    return datetime.now(timezone.utc).isoformat()


def normalize_command(body):
    """Return (command, data) from any of the accepted request shapes.

    Accepts {command, data}, {command, payload}, {type, payload} and
    {type, data}. Loose top-level fields (e.g. {"command": "set_rgb",
    "r": 255, "g": 0, "b": 0}) become the data when no data is given.
    """
    if not isinstance(body, dict):
        raise CommandError("Request body must be a JSON object")

    command = body.get("command") or body.get("type")
    if not isinstance(command, str) or not command.strip():
        raise CommandError("Command or type is required")

    if "payload" in body:
        data = body["payload"]
    elif "data" in body:
        data = body["data"]
    else:
        extras = {key: value for key, value in body.items() if key not in RESERVED_FIELDS}
        data = extras or None

    return command.strip(), data


def encode_command(command, data=None) -> bytes:
    message = {"command": command}
    if data is not None:
        message["data"] = data
    return (json.dumps(message, separators=(",", ":"), ensure_ascii=False) + "\n").encode("utf-8")


def connection_status(connected, port=None):
    return {
        "type": "connection_status",
        "esp32_connected": bool(connected),
        "port": port,
        "timestamp": utc_now(),
    }


def bridge_status(connected, port=None, error=None):
    message = {
        "type": "bridge_status",
        "connected": bool(connected),
        "port": port,
        "timestamp": utc_now(),
    }
    if error:
        message["error"] = error
    return message


def command_response(command, success):
    return {
        "type": "command_response",
        "success": bool(success),
        "command": command,
        "timestamp": utc_now(),
    }
