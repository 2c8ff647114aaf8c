"""
Connection Handler - drives one control connection until it terminates
"""

import socket
import logging

from faketp.core import banner
from faketp.responses import ResponseWriter
from faketp.session import Session

logger = logging.getLogger(__name__)

# A dead socket keeps failing; stop instead of spinning forever
MAX_CONSECUTIVE_READ_ERRORS = 10


class LineTooLong(Exception):
    pass


def format_host(address) -> str:
    """('1.2.3.4', 21) -> '1.2.3.4:21', IPv6 hosts bracketed"""
    host, port = address[0], address[1]
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class ConnectionHandler:

    def __init__(self, sock: socket.socket, address, dispatcher, config):
        self.sock = sock
        self.address = address
        self.dispatcher = dispatcher
        self.config = config
        self.writer = ResponseWriter(sock)

        try:
            local_host = sock.getsockname()[0]
        except OSError:
            local_host = ''
        self.session = Session(host=format_host(address), local_host=local_host)

        self._reader = None

    def greet(self):
        lines = [banner()] + (self.config.motd.splitlines() or [''])
        self.writer.send_lines(220, lines)

    def read_line(self):
        """
        Read one newline-terminated line, decoded. Returns None at EOF.
        Raises LineTooLong after discarding an oversized line.
        """
        limit = self.config.max_line_length
        data = self._reader.readline(limit + 1)
        if not data:
            return None
        if len(data) > limit and not data.endswith(b'\n'):
            # Drop the rest of the line
            while True:
                chunk = self._reader.readline(limit + 1)
                if not chunk or chunk.endswith(b'\n'):
                    break
            raise LineTooLong()
        return data.decode('utf-8', errors='replace')

    def run(self):
        host = self.session.host
        logger.info(f"[{host}] Connection accepted")
        read_errors = 0
        try:
            if self.config.idle_timeout:
                self.sock.settimeout(self.config.idle_timeout)
            self._reader = self.sock.makefile('rb')
            self.greet()

            while True:
                try:
                    line = self.read_line()
                except socket.timeout:
                    logger.info(f"[{host}] Idle timeout")
                    self.writer.send(421, "Idle timeout, closing control connection")
                    break
                except LineTooLong:
                    logger.warning(f"[{host}] Line longer than {self.config.max_line_length} bytes discarded")
                    self.writer.send(500, "Line too long")
                    continue
                except OSError as e:
                    read_errors += 1
                    logger.error(f"[{host}] ERROR: bad command: {e}")
                    if read_errors >= MAX_CONSECUTIVE_READ_ERRORS:
                        logger.error(f"[{host}] Too many read errors, closing")
                        break
                    continue

                if line is None:
                    logger.info(f"[{host}] Connection closed by peer")
                    break
                read_errors = 0

                if not self.dispatcher.dispatch(self.session, line, self.writer):
                    break
        finally:
            self.close()
            logger.info(f"[{host}] Connection closed")

    def close(self):
        self.dispatcher.release_session(self.session)
        if self._reader:
            try:
                self._reader.close()
            except OSError:
                pass
        try:
            self.sock.close()
        except OSError:
            pass
