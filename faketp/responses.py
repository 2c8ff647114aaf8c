"""
Response framing for the control channel.

Single line:  "<code> <message>\r\n"
Multi-line:   "<code>-<first>\r\n" ... "<code> <last>\r\n"
"""

import logging
from typing import Sequence

logger = logging.getLogger(__name__)

CRLF = "\r\n"


def format_response(code: int, msg: str) -> str:
    return f"{code} {msg}{CRLF}"


def format_multiline(code: int, lines: Sequence[str]) -> str:
    """
    Formate une réponse multi-ligne.

    A one-element sequence collapses to single-line framing, and an empty
    one produces "<code> " with no text. The input is never modified.
    """
    lines = list(lines)
    if len(lines) <= 1:
        return format_response(code, lines[0] if lines else "")

    framed = [f"{code}-{lines[0]}"] + lines[1:-1] + [f"{code} {lines[-1]}"]
    return CRLF.join(framed) + CRLF


class ResponseWriter:
    """Writes framed replies to a connected socket (anything with sendall)"""

    def __init__(self, sock, encoding: str = 'utf-8'):
        self.sock = sock
        self.encoding = encoding

    def _write(self, payload: str):
        try:
            self.sock.sendall(payload.encode(self.encoding, errors='replace'))
        except OSError as e:
            # The read loop notices a dead peer on its own
            logger.warning(f"Failed to send response: {e}")

    def send(self, code: int, msg: str):
        self._write(format_response(code, msg))

    def send_lines(self, code: int, lines: Sequence[str]):
        self._write(format_multiline(code, lines))
