import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Pattern, Tuple


class SignatureKind(str, Enum):
    OPENED = "opened"
    FATAL = "fatal"


@dataclass(frozen=True)
class Signature:
    name: str
    kind: SignatureKind
    pattern: Pattern[str]

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


def _signature(name: str, kind: SignatureKind, pattern: str) -> Signature:
    return Signature(name=name, kind=kind, pattern=re.compile(pattern))


OPENED_SIGNATURES: Tuple[Signature, ...] = (
    _signature("output_opened", SignatureKind.OPENED, r"^Output #0\b"),
    _signature("stream_mapping", SignatureKind.OPENED, r"^Stream mapping:"),
    _signature(
        "segment_opened", SignatureKind.OPENED, r"Opening '[^']+' for writing"
    ),
    _signature(
        "non_seekable_output",
        SignatureKind.OPENED,
        r"muxer does not support non seekable output",
    ),
)

FATAL_SIGNATURES: Tuple[Signature, ...] = (
    _signature("invalid_argument", SignatureKind.FATAL, r"Invalid argument"),
    _signature("missing_input", SignatureKind.FATAL, r"No such file or directory"),
    _signature("parse_error", SignatureKind.FATAL, r"Error parsing"),
    _signature("bad_option", SignatureKind.FATAL, r"No option name"),
    _signature("connection_refused", SignatureKind.FATAL, r"Connection refused"),
    _signature("unknown_protocol", SignatureKind.FATAL, r"Protocol not found"),
    _signature("invalid_data", SignatureKind.FATAL, r"Invalid data found"),
    _signature("address_in_use", SignatureKind.FATAL, r"Address already in use"),
)

DEFAULT_SIGNATURES: Tuple[Signature, ...] = FATAL_SIGNATURES + OPENED_SIGNATURES


class OutputClassifier:
    """Matches diagnostic lines against a signature table.

    Fatal signatures take precedence over opened ones on the same line.
    """

    def __init__(self, signatures: Iterable[Signature] = DEFAULT_SIGNATURES):
        signatures = tuple(signatures)
        self._fatal = tuple(s for s in signatures if s.kind is SignatureKind.FATAL)
        self._opened = tuple(
            s for s in signatures if s.kind is SignatureKind.OPENED
        )

    def classify(self, line: str) -> Optional[Signature]:
        text = line.strip()
        if not text:
            return None
        for signature in self._fatal:
            if signature.matches(text):
                return signature
        for signature in self._opened:
            if signature.matches(text):
                return signature
        return None
