#!/usr/bin/env python3
import unittest

from sleepsync_bridge.framing import JsonLineAssembler, decode_frame


class JsonLineAssemblerTests(unittest.TestCase):
    """Test reassembly of JSON frames from serial lines"""

    def setUp(self):
        self.assembler = JsonLineAssembler()

    def test_single_line_object(self):
        """A complete object on one line is emitted straight away"""
        frame = self.assembler.feed('{"type": "sensor_data", "data": {"temperature": 21.5}}\n')
        self.assertEqual(decode_frame(frame), {"type": "sensor_data", "data": {"temperature": 21.5}})
        self.assertFalse(self.assembler.pending)

    def test_pretty_printed_object(self):
        """Multi-line pretty-printed JSON is stitched back together"""
        lines = [
            "{\n",
            '  "type": "device_status",\n',
            '  "alarm": {\n',
            '    "enabled": true,\n',
            '    "hour": 7\n',
            "  }\n",
        ]
        for line in lines:
            self.assertIsNone(self.assembler.feed(line))
            self.assertTrue(self.assembler.pending)

        frame = self.assembler.feed("}\n")
        self.assertEqual(decode_frame(frame), {
            "type": "device_status",
            "alarm": {"enabled": True, "hour": 7},
        })
        self.assertFalse(self.assembler.pending)

    def test_array_frame(self):
        """Arrays are framed the same way as objects"""
        self.assertIsNone(self.assembler.feed("["))
        self.assertIsNone(self.assembler.feed("  1,"))
        frame = self.assembler.feed("  2]")
        self.assertEqual(decode_frame(frame), [1, 2])

    def test_raw_text_line(self):
        """Log lines pass through as raw text frames"""
        self.assertEqual(self.assembler.feed("  SLEEPSYNC_ESP32 boot ok \r\n"), "SLEEPSYNC_ESP32 boot ok")
        self.assertIsNone(decode_frame("SLEEPSYNC_ESP32 boot ok"))

    def test_blank_lines_ignored(self):
        self.assertIsNone(self.assembler.feed("\r\n"))
        self.assertIsNone(self.assembler.feed("   "))
        self.assertFalse(self.assembler.pending)

    def test_carriage_return_stripped(self):
        self.assertEqual(self.assembler.feed('{"a": 1}\r\n'), '{"a": 1}')

    def test_brackets_inside_strings(self):
        """Brackets inside string literals do not affect depth"""
        frame = self.assembler.feed('{"msg": "a { b [ c"}')
        self.assertEqual(decode_frame(frame), {"msg": "a { b [ c"})

        self.assertIsNone(self.assembler.feed("{"))
        self.assertIsNone(self.assembler.feed('  "note": "closing } here",'))
        frame = self.assembler.feed('  "ok": true}')
        self.assertEqual(decode_frame(frame), {"note": "closing } here", "ok": True})

    def test_escaped_quotes_inside_strings(self):
        frame = self.assembler.feed('{"q": "say \\"}\\" now"}')
        self.assertEqual(decode_frame(frame), {"q": 'say "}" now'})

    def test_text_inside_frame_is_kept(self):
        """Lines that don't start with a bracket are part of an open frame"""
        self.assertIsNone(self.assembler.feed("{"))
        self.assertIsNone(self.assembler.feed('"light_level": 512'))
        frame = self.assembler.feed("}")
        self.assertEqual(decode_frame(frame), {"light_level": 512})

    def test_oversized_frame_dropped(self):
        """An unterminated frame past the buffer limit is discarded"""
        assembler = JsonLineAssembler(max_buffer=16)
        self.assertIsNone(assembler.feed("{"))
        self.assertIsNone(assembler.feed('  "padding": "xxxxxxxxxxxxxxxx",'))
        self.assertFalse(assembler.pending)
        self.assertEqual(assembler.feed("next line"), "next line")

    def test_reset_discards_partial_frame(self):
        self.assertIsNone(self.assembler.feed("{"))
        self.assembler.reset()
        self.assertFalse(self.assembler.pending)
        self.assertEqual(self.assembler.feed('{"b": 2}'), '{"b": 2}')


class DecodeFrameTests(unittest.TestCase):
    """Test frame decoding"""

    def test_invalid_json_is_raw(self):
        self.assertIsNone(decode_frame("{not json"))
        self.assertIsNone(decode_frame('{"a": 1}{"b": 2}'))

    def test_empty_frame(self):
        self.assertIsNone(decode_frame(""))

    def test_plain_text(self):
        self.assertIsNone(decode_frame("hello"))


if __name__ == "__main__":
    unittest.main()
