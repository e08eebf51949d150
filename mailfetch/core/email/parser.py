"""FETCH response parsing.

Turns the untagged ``* n FETCH (...)`` response for one message into a
``MailMessage``. The attribute list is tokenized into a nested structure
(lists, atoms, strings, literals, NIL) so quoted values and literals are
never confused with delimiters. Header fields are then read line by line
from the ``BODY[HEADER]`` section.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from mailfetch.core.email.constants import IMAPFlags
from mailfetch.core.email.encoded_words import decode_encoded_words
from mailfetch.core.email.imap.responses import (
    CommandResponse,
    Literal,
    UntaggedResponse,
)
from mailfetch.core.models.email import Envelope, MailMessage, make_message_id
from mailfetch.core.validation import DateTimeParser
from mailfetch.utils.errors import IMAPProtocolError, MissingRequiredFieldError
from mailfetch.utils.logging import get_logger

logger = get_logger(__name__)

HEADER_FIELDS = ("subject", "from", "to", "date", "content-type")

_HTML_RE = re.compile(r"<\s*[a-zA-Z!/][^>]*>")
_LITERAL_MARKER_RE = re.compile(r"\{(\d+)\+?\}\s*$")
_PARTIAL_RE = re.compile(r"<\d+>$")


## Tokenizer


class _Atom(str):
    """An unquoted token, kept apart from quoted strings so NIL is unambiguous."""


_OPEN = object()
_CLOSE = object()

Token = Union[object, str]


def _read_quoted(text: str, start: int) -> tuple[str, int]:
    out = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
            continue
        if ch == '"':
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    raise IMAPProtocolError("Unterminated quoted string in FETCH response")


def _read_atom(text: str, start: int) -> tuple[str, int]:
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth = max(depth - 1, 0)
        elif depth == 0 and ch in ' ()"\r\n\t':
            break
        i += 1
    return text[start:i], i


def tokenize(parts: List[Union[str, Literal]]) -> List[Token]:
    """Flatten an untagged response's text and literal parts into tokens."""
    tokens: List[Token] = []

    for part in parts:
        if isinstance(part, Literal):
            tokens.append(part.text())
            continue

        text = part
        marker = _LITERAL_MARKER_RE.search(text)
        if marker is not None:
            text = text[: marker.start()]

        i = 0
        while i < len(text):
            ch = text[i]
            if ch in " \t\r\n":
                i += 1
            elif ch == "(":
                tokens.append(_OPEN)
                i += 1
            elif ch == ")":
                tokens.append(_CLOSE)
                i += 1
            elif ch == '"':
                value, i = _read_quoted(text, i)
                tokens.append(value)
            else:
                value, i = _read_atom(text, i)
                tokens.append(_Atom(value))

    return tokens


def build_tree(tokens: List[Token]) -> List[Any]:
    """Nest tokens by parentheses. NIL atoms become None."""
    stack: List[List[Any]] = [[]]

    for token in tokens:
        if token is _OPEN:
            stack.append([])
        elif token is _CLOSE:
            if len(stack) == 1:
                raise IMAPProtocolError("Unbalanced ')' in FETCH response")
            closed = stack.pop()
            stack[-1].append(closed)
        elif isinstance(token, _Atom) and token.upper() == "NIL":
            stack[-1].append(None)
        else:
            stack[-1].append(token)

    if len(stack) != 1:
        raise IMAPProtocolError("Unbalanced '(' in FETCH response")
    return stack[0]


## FETCH attributes


def _attribute_name(raw: Any) -> str:
    name = str(raw).upper().replace("BODY.PEEK[", "BODY[")
    return _PARTIAL_RE.sub("", name)


def fetch_attributes(item: UntaggedResponse) -> Dict[str, Any]:
    """Map of attribute name -> value for one ``* n FETCH (...)`` response."""
    tree = build_tree(tokenize(item.parts))

    if len(tree) < 4 or str(tree[2]).upper() != "FETCH" or not isinstance(tree[3], list):
        raise IMAPProtocolError(
            "Malformed FETCH response", details={"head": item.head[:80]}
        )

    pairs = tree[3]
    attributes: Dict[str, Any] = {}
    for i in range(0, len(pairs) - 1, 2):
        attributes[_attribute_name(pairs[i])] = pairs[i + 1]
    return attributes


def _format_address(address: Any) -> Optional[str]:
    # (name adl mailbox host)
    if not isinstance(address, list) or len(address) < 4:
        return None
    name, _, mailbox, host = address[:4]
    if not mailbox:
        return None
    addr = f"{mailbox}@{host}" if host else str(mailbox)
    if name:
        return f"{decode_encoded_words(str(name))} <{addr}>"
    return addr


def _format_address_list(value: Any) -> Optional[str]:
    if not isinstance(value, list):
        return None
    formatted = [a for a in (_format_address(entry) for entry in value) if a]
    return ", ".join(formatted) or None


def parse_envelope(value: Any) -> Envelope:
    """Read date, subject, from and to out of an ENVELOPE list."""
    if not isinstance(value, list) or len(value) < 6:
        return Envelope()

    date, subject, sender = value[0], value[1], value[2]
    recipients = value[5]

    return Envelope(
        date=str(date) if date else None,
        subject=decode_encoded_words(str(subject)) if subject else None,
        sender=_format_address_list(sender),
        recipient=_format_address_list(recipients),
    )


## Header section


def parse_header_lines(header_text: str) -> Dict[str, str]:
    """Scan a header block line by line for the fields we keep.

    Folded continuation lines are joined to the field they continue. The
    first occurrence of a field wins.
    """
    fields: Dict[str, str] = {}
    current: Optional[str] = None
    started = False

    for line in header_text.splitlines():
        if not line.strip():
            if started:
                # blank line ends the header block
                break
            continue

        if line[0] in " \t":
            if current is not None:
                fields[current] = f"{fields[current]} {line.strip()}".strip()
            continue

        started = True
        current = None
        name, sep, value = line.partition(":")
        if not sep:
            continue

        key = name.strip().lower()
        if key in HEADER_FIELDS and key not in fields:
            fields[key] = value.strip()
            current = key

    return fields


def _section_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        raise IMAPProtocolError("Body section is not a string")
    return str(value)


def looks_like_html(text: str) -> bool:
    return bool(_HTML_RE.search(text))


def _has_attachments(flags: List[str], body: str, content_type: str) -> bool:
    if any("attachment" in flag.lower() for flag in flags):
        return True
    if "attachment" in body.lower():
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("multipart/")


## Entry point


def find_fetch_item(response: CommandResponse, sequence: int) -> UntaggedResponse:
    """The FETCH response for ``sequence``.

    Unsolicited FETCH data and late data for a message whose FETCH timed out
    can share the response; only the item for ``sequence`` is used.
    """
    for item in response.of_kind("FETCH"):
        tokens = item.head.split(None, 1)
        if tokens and tokens[0] == str(sequence):
            return item

    raise IMAPProtocolError(
        f"No FETCH data for message {sequence}", details={"sequence": sequence}
    )


def parse_fetch_response(
    response: CommandResponse, sequence: int, batch_timestamp: datetime
) -> MailMessage:
    """Build a MailMessage from one message's FETCH response.

    Raises:
        IMAPProtocolError: If the response is malformed
        MissingRequiredFieldError: If Subject or From is missing
    """
    attributes = fetch_attributes(find_fetch_item(response, sequence))

    raw_flags = attributes.get("FLAGS") or []
    if not isinstance(raw_flags, list):
        raise IMAPProtocolError("FLAGS is not a list", details={"sequence": sequence})
    flags = [str(flag) for flag in raw_flags]

    envelope = parse_envelope(attributes.get("ENVELOPE"))
    headers = parse_header_lines(_section_text(attributes.get("BODY[HEADER]")))

    subject = decode_encoded_words(headers.get("subject", ""))
    sender = decode_encoded_words(headers.get("from", ""))

    if not subject or not sender:
        raise MissingRequiredFieldError(
            f"Message {sequence} has no {'Subject' if not subject else 'From'}",
            details={"sequence": sequence},
        )

    recipient = decode_encoded_words(headers.get("to", "")) or envelope.recipient or ""
    date = DateTimeParser.to_iso(headers.get("date"), envelope.date)

    body = _section_text(attributes.get("BODY[TEXT]")).strip()
    html_body = None

    first_part = _section_text(attributes.get("BODY[1]")).strip()
    if first_part:
        if looks_like_html(first_part):
            html_body = first_part
        elif not body:
            body = first_part

    return MailMessage(
        id=make_message_id(sequence, batch_timestamp),
        sender=sender,
        recipient=recipient,
        subject=subject,
        body=body,
        date=date,
        read=IMAPFlags.UNSEEN not in flags,
        starred=IMAPFlags.FLAGGED in flags,
        has_attachments=_has_attachments(
            flags, body, headers.get("content-type", "")
        ),
        html_body=html_body,
    )
