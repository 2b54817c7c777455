"""Re-encoding of nginx style ``\\xHH`` escapes into JSON safe text.

nginx escapes non-ASCII bytes, control characters, ``"`` and ``\\`` in its
access log as ``\\xHH``. The resulting lines are no longer valid JSON string
content, so before a line is shipped we unescape the harmless tokens back to
their raw byte (restoring UTF-8 sequences) and, for the tokens that would
break JSON if emitted raw, only double the backslash so the escape survives
as literal text.
"""

BACKSLASH = 0x5C
ESCAPE_MARKER = 0x78  # 'x'
HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")

# bytes that must never be emitted raw: control chars, '"' and '\'
PROTECTED_BYTES = frozenset(range(0x20)) | {0x22, BACKSLASH}

# a minimal token is '\', 'x' and two hex digits
TOKEN_LENGTH = 4


def _parse_hex(token: bytes):
    if len(token) != 2 or not all(b in HEX_DIGITS for b in token):
        return None
    return int(token, 16)


def unescape(data: bytes) -> bytes:
    """Return *data* with its ``\\xHH`` escapes made JSON safe.

    Never raises: malformed escapes are kept as literal text with the
    backslash doubled. Input without a backslash is returned unchanged.
    """
    if b"\\" not in data:
        return data

    out = bytearray()
    i = 0
    last_start = len(data) - (TOKEN_LENGTH - 1)

    while i < last_start:
        byte = data[i]
        if byte != BACKSLASH:
            out.append(byte)
            i += 1
            continue

        following = data[i + 1]
        if following == BACKSLASH:
            # already escaped backslash, keep both
            out += data[i:i + 2]
            i += 2
        elif following == ESCAPE_MARKER:
            value = _parse_hex(data[i + 2:i + 4])
            if value is None or value in PROTECTED_BYTES:
                # keep the escaped notation, only fix '\' to '\\'
                out += b"\\\\x"
                i += 2
            else:
                out.append(value)
                i += TOKEN_LENGTH
        else:
            out += b"\\\\"
            i += 1

    out += data[i:]
    return bytes(out)
