"""RFC 2047 encoded-word decoding for header values.

Only UTF-8 encoded words are recognised::

    =?UTF-8?B?<base64>?=
    =?UTF-8?Q?<quoted-printable>?=

Each run is decoded on its own and spliced back in place. Text around the
runs is left alone, and a run that does not decode is kept verbatim.
"""

import base64
import binascii
import re

from mailfetch.utils.logging import get_logger

logger = get_logger(__name__)

ENCODED_WORD_RE = re.compile(r"=\?(UTF-8)\?([BQ])\?([^?\s]*)\?=", re.IGNORECASE)

# Linear whitespace between two adjacent encoded words is not displayed
_ADJACENT_GAP_RE = re.compile(
    r"(=\?UTF-8\?[BQ]\?[^?\s]*\?=)\s+(?==\?UTF-8\?[BQ]\?)", re.IGNORECASE
)
_QP_ESCAPE_RE = re.compile(r"=([0-9A-Fa-f]{2})")


def decode_base64_word(payload: str) -> str:
    """Decode a B-encoded payload. Missing padding is tolerated."""
    padded = payload + "=" * (-len(payload) % 4)
    raw = base64.b64decode(padded, validate=True)
    return raw.decode("utf-8")


def decode_q_word(payload: str) -> str:
    """Decode a Q-encoded payload: ``_`` is a space, ``=HH`` is byte HH."""
    raw = bytearray()
    pos = 0
    text = payload.replace("_", " ")

    for match in _QP_ESCAPE_RE.finditer(text):
        raw.extend(text[pos:match.start()].encode("latin-1"))
        raw.append(int(match.group(1), 16))
        pos = match.end()
    raw.extend(text[pos:].encode("latin-1"))

    return bytes(raw).decode("utf-8")


def _decode_match(match: re.Match) -> str:
    encoding = match.group(2).upper()
    payload = match.group(3)

    try:
        if encoding == "B":
            return decode_base64_word(payload)
        return decode_q_word(payload)

    except (binascii.Error, ValueError, UnicodeError) as e:
        logger.debug(f"Leaving undecodable encoded word as-is: {e}")
        return match.group(0)


def decode_encoded_words(value: str) -> str:
    """Decode every UTF-8 encoded word in a header value.

    Args:
        value: Raw header value, e.g. ``"=?UTF-8?B?Q2lhbw==?= Mario"``

    Returns:
        The decoded, trimmed value
    """
    if not value:
        return ""
    if "=?" not in value:
        return value.strip()

    joined = _ADJACENT_GAP_RE.sub(r"\1", value)
    return ENCODED_WORD_RE.sub(_decode_match, joined).strip()
