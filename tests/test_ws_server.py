#!/usr/bin/env python3
import json
import unittest
from unittest.mock import MagicMock

from websockets.exceptions import ConnectionClosed

from sleepsync_bridge.ws_server import WebSocketHub


def make_link(connected=True):
    link = MagicMock()
    link.is_connected = connected
    link.port = "/dev/ttyUSB0" if connected else None
    link.last_sensor_data = None
    link.last_device_status = None
    link.send_command.return_value = True
    return link


def make_client(messages=()):
    websocket = MagicMock()
    websocket.remote_address = ("127.0.0.1", 50123)
    websocket.__iter__.return_value = iter(messages)
    return websocket


class WelcomeMessageTests(unittest.TestCase):
    """Test what a newly connected client receives"""

    def test_status_only(self):
        hub = WebSocketHub()
        hub.attach(make_link(connected=False))

        messages = [json.loads(text) for text in hub.welcome_messages()]

        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["type"], "connection_status")
        self.assertFalse(messages[0]["esp32_connected"])

    def test_cached_payloads_replayed(self):
        link = make_link()
        link.last_sensor_data = {"type": "sensor_data", "data": {"humidity": 41}}
        link.last_device_status = {"type": "device_status", "alarm_enabled": False}
        hub = WebSocketHub()
        hub.attach(link)

        messages = [json.loads(text) for text in hub.welcome_messages()]

        self.assertEqual([m["type"] for m in messages], ["connection_status", "sensor_data", "device_status"])
        self.assertTrue(messages[0]["esp32_connected"])
        self.assertEqual(messages[0]["port"], "/dev/ttyUSB0")

    def test_without_link(self):
        messages = WebSocketHub().welcome_messages()
        self.assertEqual(len(messages), 1)


class HandleMessageTests(unittest.TestCase):
    """Test commands arriving from WebSocket clients"""

    def setUp(self):
        self.link = make_link()
        self.hub = WebSocketHub()
        self.hub.attach(self.link)

    def test_command_forwarded(self):
        reply = json.loads(self.hub.handle_message('{"command": "start_sunrise"}'))

        self.link.send_command.assert_called_once_with("start_sunrise", None)
        self.assertEqual(reply["type"], "command_response")
        self.assertTrue(reply["success"])
        self.assertEqual(reply["command"], "start_sunrise")

    def test_type_payload_shape(self):
        self.hub.handle_message(b'{"type": "set_bedtime", "payload": {"hour": 23, "minute": 0}}')
        self.link.send_command.assert_called_once_with("set_bedtime", {"hour": 23, "minute": 0})

    def test_failed_send_reported(self):
        self.link.send_command.return_value = False
        reply = json.loads(self.hub.handle_message('{"command": "stop_alarm"}'))
        self.assertFalse(reply["success"])

    def test_invalid_json_ignored(self):
        self.assertIsNone(self.hub.handle_message("not json"))
        self.link.send_command.assert_not_called()

    def test_missing_command_ignored(self):
        self.assertIsNone(self.hub.handle_message('{"data": {"hour": 7}}'))
        self.link.send_command.assert_not_called()

    def test_no_link_attached(self):
        reply = json.loads(WebSocketHub().handle_message('{"command": "get_status"}'))
        self.assertFalse(reply["success"])


class BroadcastTests(unittest.TestCase):
    """Test fan-out to connected clients"""

    def test_broadcast_to_all_clients(self):
        hub = WebSocketHub()
        first, second = make_client(), make_client()
        hub.register(first)
        hub.register(second)

        hub.broadcast('{"type":"sensor_data"}')

        first.send.assert_called_once_with('{"type":"sensor_data"}')
        second.send.assert_called_once_with('{"type":"sensor_data"}')

    def test_closed_client_dropped(self):
        hub = WebSocketHub()
        alive, gone = make_client(), make_client()
        gone.send.side_effect = ConnectionClosed(None, None)
        hub.register(gone)
        hub.register(alive)

        hub.broadcast("hello")

        alive.send.assert_called_once_with("hello")
        self.assertEqual(hub.client_count, 1)

    def test_register_twice(self):
        hub = WebSocketHub()
        client = make_client()
        hub.register(client)
        hub.register(client)
        self.assertEqual(hub.client_count, 1)
        hub.unregister(client)
        hub.unregister(client)
        self.assertEqual(hub.client_count, 0)


class HandleClientTests(unittest.TestCase):
    """Test a full client session"""

    def test_session(self):
        link = make_link()
        hub = WebSocketHub()
        hub.attach(link)
        client = make_client(['{"command": "get_sensors"}', "garbage"])

        hub.handle_client(client)

        sent = [json.loads(call.args[0]) for call in client.send.call_args_list]
        self.assertEqual([m["type"] for m in sent], ["connection_status", "command_response"])
        link.send_command.assert_called_once_with("get_sensors", None)
        self.assertEqual(hub.client_count, 0)

    def test_abnormal_close_unregisters(self):
        hub = WebSocketHub()
        hub.attach(make_link())
        client = make_client()
        client.__iter__.side_effect = ConnectionClosed(None, None)

        hub.handle_client(client)

        self.assertEqual(hub.client_count, 0)


if __name__ == "__main__":
    unittest.main()
