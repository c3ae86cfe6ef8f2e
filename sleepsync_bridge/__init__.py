"""
SleepSync Bridge

Relays JSON commands and events between the SleepSync web app
(WebSocket/HTTP) and the ESP32 smart alarm (USB serial).
"""

__version__ = "1.0.0"
