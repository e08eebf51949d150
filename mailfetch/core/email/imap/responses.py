"""IMAP response model.

A server response to one command is a sequence of:

- ``UntaggedResponse``: a ``*`` data line, possibly spanning literal blocks.
  Its ``parts`` alternate between text (``str``) and ``Literal`` blocks, in
  the order they arrived on the wire.
- ``ContinuationRequest``: a ``+`` line asking for more client data.
- ``TaggedCompletion``: the final ``<tag> OK|NO|BAD text`` line.

``CommandResponse`` bundles them for a single tagged command.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from mailfetch.core.email.constants import IMAPResponse

_LITERAL_RE = re.compile(rb"\{(\d+)\+?\}\r?\n?$")


@dataclass(frozen=True)
class Literal:
    """A byte-counted block announced with ``{n}``."""

    data: bytes

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@dataclass
class UntaggedResponse:
    """A ``*`` data response."""

    parts: List[Union[str, Literal]] = field(default_factory=list)

    @property
    def head(self) -> str:
        """First text part without the leading ``* ``."""
        first = self.parts[0] if self.parts else ""
        if isinstance(first, Literal):
            return ""
        return first[2:] if first.startswith("* ") else first

    @property
    def literals(self) -> List[Literal]:
        return [p for p in self.parts if isinstance(p, Literal)]

    def render(self) -> str:
        """Flatten back to text, literal contents inlined after their marker."""
        out = []
        for part in self.parts:
            if isinstance(part, Literal):
                out.append("\r\n" + part.text())
            else:
                out.append(part)
        return "".join(out)

    def kind(self) -> str:
        """Response keyword: ``SEARCH``, ``FETCH``, ``EXISTS``, ``OK``..."""
        tokens = self.head.split(None, 2)
        if not tokens:
            return ""
        if tokens[0].isdigit() and len(tokens) > 1:
            return tokens[1].upper()
        return tokens[0].upper()


@dataclass
class ContinuationRequest:
    """A ``+`` line."""

    text: str = ""


@dataclass
class TaggedCompletion:
    """The tagged status line that ends a command."""

    tag: str
    status: str
    text: str = ""

    @property
    def ok(self) -> bool:
        return self.status == IMAPResponse.OK.value

    def render(self) -> str:
        return f"{self.tag} {self.status} {self.text}".rstrip()


ResponseItem = Union[UntaggedResponse, ContinuationRequest, TaggedCompletion]


@dataclass
class CommandResponse:
    """Everything the server sent in reply to one tagged command."""

    tag: str
    untagged: List[UntaggedResponse] = field(default_factory=list)
    completion: Optional[TaggedCompletion] = None

    @property
    def ok(self) -> bool:
        return self.completion is not None and self.completion.ok

    @property
    def status(self) -> str:
        return self.completion.status if self.completion else ""

    @property
    def text(self) -> str:
        """Full response as text, untagged lines first, completion last."""
        lines = [u.render() for u in self.untagged]
        if self.completion is not None:
            lines.append(self.completion.render())
        return "\r\n".join(lines)

    def of_kind(self, kind: str) -> Iterator[UntaggedResponse]:
        kind = kind.upper()
        return (u for u in self.untagged if u.kind() == kind)


def literal_size(line: bytes) -> Optional[int]:
    """Size announced by a trailing ``{n}`` marker, or None."""
    match = _LITERAL_RE.search(line)
    if match is None:
        return None
    return int(match.group(1))
