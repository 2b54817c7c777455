"""Tests for the nginx escape re-encoding."""

import json

import pytest

from protocol.escape_codec import unescape


class TestPassThrough:
    def test_no_backslash_is_unchanged(self):
        data = b'127.0.0.1 - - "GET /index.html HTTP/1.1" 200 612'
        assert unescape(data) is data

    def test_empty_input(self):
        assert unescape(b"") == b""

    def test_escaped_backslash_is_kept(self):
        assert unescape(b"a\\\\x41b") == b"a\\\\x41b"


class TestProtectedBytes:
    @pytest.mark.parametrize("token", [b"\\x22", b"\\x5C", b"\\x5c", b"\\x00", b"\\x0a", b"\\x1F"])
    def test_token_keeps_hex_form_with_doubled_backslash(self, token):
        assert unescape(b"pre" + token + b"post") == b"pre\\" + token + b"post"

    def test_no_raw_quote_is_produced(self):
        out = unescape(b'agent \\x22curl\\x22 end')
        assert b'"' not in out
        assert out == b'agent \\\\x22curl\\\\x22 end'

    def test_result_is_valid_json_string_content(self):
        out = unescape(b"ua=\\x22Mozilla\\x22 tab=\\x09 caf\\xC3\\xA9")
        decoded = json.loads(b'"' + out + b'"')
        assert decoded == "ua=\\x22Mozilla\\x22 tab=\\x09 café"


class TestUnescape:
    def test_utf8_sequence_is_restored(self):
        assert unescape(b"caf\\xC3\\xA9") == "café".encode("utf-8")

    def test_lowercase_hex_digits(self):
        assert unescape(b"\\x7e") == b"~"

    def test_token_at_exact_end(self):
        assert unescape(b"\\x41") == b"A"

    def test_raw_byte_replaces_whole_token(self):
        out = unescape(b"x\\x41y")
        assert out == b"xAy"
        assert b"\\" not in out


class TestMalformed:
    def test_non_hex_digits_get_doubled_backslash(self):
        assert unescape(b"a\\xZZb") == b"a\\\\xZZb"

    def test_plus_sign_is_not_hex(self):
        assert unescape(b"\\x+1z") == b"\\\\x+1z"

    def test_lone_backslash_is_doubled(self):
        assert unescape(b"C:\\temp\\dir") == b"C:\\\\temp\\\\dir"

    def test_trailing_partial_token_passes_through(self):
        assert unescape(b"abc\\x4") == b"abc\\x4"

    def test_trailing_backslash_passes_through(self):
        assert unescape(b"abc\\") == b"abc\\"

    def test_scan_continues_after_malformed_token(self):
        # the digits of a malformed token are scanned again
        assert unescape(b"\\x\\x41zz") == b"\\\\xAzz"
