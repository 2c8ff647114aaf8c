"""
FTP listener - accepts control connections, one thread per session
"""

import socket
import threading
import logging

from faketp.connection import ConnectionHandler, format_host

logger = logging.getLogger(__name__)


class FTPServer:

    def __init__(self, config, dispatcher, backlog: int = 16):
        self.config = config
        self.dispatcher = dispatcher
        self.backlog = backlog
        self.stop_flag = threading.Event()
        self.sessions = []
        self._sessions_lock = threading.Lock()
        self.socket = None

    @property
    def server_address(self):
        return self.socket.getsockname()[:2]

    def bind(self):
        """Open the listening socket (raises OSError on failure)"""
        family = socket.AF_INET6 if ':' in self.config.address else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.config.address, self.config.insecure_port))
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise
        # Lets serve_forever notice shutdown()
        sock.settimeout(0.5)
        self.socket = sock
        logger.info(f"Listening on: {format_host(self.server_address)}")
        return self

    def _handle(self, conn, address):
        handler = ConnectionHandler(conn, address, self.dispatcher, self.config)
        try:
            handler.run()
        except Exception as e:
            logger.exception(f"[{handler.session.host}] Unexpected error in session: {e}")
        finally:
            with self._sessions_lock:
                self.sessions.remove(threading.current_thread())

    def serve_forever(self):
        if self.socket is None:
            self.bind()
        self.stop_flag.clear()
        try:
            while not self.stop_flag.is_set():
                try:
                    conn, address = self.socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self.stop_flag.is_set():
                        break
                    logger.error(f"Error accepting tcp connection: {e}")
                    continue

                conn.settimeout(None)
                worker = threading.Thread(
                    target=self._handle,
                    args=(conn, address),
                    daemon=True,
                    name=f"FTPSession-{format_host(address)}"
                )
                with self._sessions_lock:
                    self.sessions.append(worker)
                worker.start()
        finally:
            self.socket.close()

    def shutdown(self):
        self.stop_flag.set()

    def active_sessions(self) -> int:
        with self._sessions_lock:
            return len(self.sessions)
