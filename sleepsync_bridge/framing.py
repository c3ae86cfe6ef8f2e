"""
Serial message framing

The ESP32 firmware writes one message per line, except that some builds
pretty-print their JSON across several lines. JsonLineAssembler stitches
those lines back together by tracking bracket depth.
"""

import json
import logging

logger = logging.getLogger(__name__)

MAX_BUFFER_CHARS = 16384

OPENERS = "{["
CLOSERS = "}]"


class JsonLineAssembler:
    """Rebuilds complete frames from a line-oriented serial stream"""

    def __init__(self, max_buffer=MAX_BUFFER_CHARS):
        self.max_buffer = max_buffer
        self.reset()

    def reset(self):
        """Discard any partially received frame"""
        self._lines = []
        self._size = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def pending(self):
        return bool(self._lines)

    def feed(self, line):
        """Feed one serial line, return a complete frame or None"""
        text = line.rstrip()

        if not self._lines:
            text = text.strip()
            if not text:
                return None
            if text[0] not in OPENERS:
                return text

        self._lines.append(text)
        self._size += len(text) + 1
        self._scan(text)

        if self._depth <= 0:
            frame = "\n".join(self._lines)
            self.reset()
            return frame

        if self._size > self.max_buffer:
            logger.warning(f"⚠️ Dropping unterminated JSON frame ({self._size} chars buffered)")
            self.reset()

        return None

    def _scan(self, text):
        # Brackets inside string literals don't count; string state spans lines.
        for ch in text:
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in OPENERS:
                self._depth += 1
            elif ch in CLOSERS:
                self._depth -= 1


def decode_frame(text):
    """Parse a JSON frame, or return None for raw text"""
    if not text or text[0] not in OPENERS:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
