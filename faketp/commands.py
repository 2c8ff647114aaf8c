"""
Command Dispatcher - FTP control-channel command handling
Parses one line, runs the matching handler against the session and answers it
"""

import time
import logging
from typing import Callable, Dict, List, Mapping, Optional

from faketp.config import ServerConfig
from faketp.port_pool import NO_PORT, PortProvider
from faketp.responses import ResponseWriter
from faketp.session import Session
from faketp.transfer import TransferBackend

logger = logging.getLogger(__name__)

FEATURES = [
    "Features:",
    " UTF8",
    " PASV",
    " REST STREAM",
    "End",
]

NOT_LOGGED_IN = "Not logged in"


class CommandDispatcher:
    """
    One instance serves every connection: it only holds read-only config,
    the credential mapping and the shared port pools. All per-connection
    state lives in the Session passed to dispatch().
    """

    def __init__(self,
                 config: ServerConfig,
                 credentials: Mapping[str, str],
                 passive_pool: PortProvider,
                 active_pool: Optional[PortProvider] = None,
                 transfer: Optional[TransferBackend] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.credentials = credentials
        self.passive_pool = passive_pool
        self.active_pool = active_pool if active_pool is not None else passive_pool
        self.transfer = transfer or TransferBackend(config.pull, config.push)
        self.sleep = sleep

        # Commands that need a logged-in session
        self._authenticated: Dict[str, Callable] = {
            'PWD': self.cmd_pwd,
            'TYPE': self.cmd_type,
            'LIST': self.cmd_list,
            'FEAT': self.cmd_feat,
            'STRU': self.cmd_stru,
            'SYST': self.cmd_syst,
            'STAT': self.cmd_stat,
            'PASV': self.cmd_pasv,
            'PORT': self.cmd_port,
            'RETR': self.cmd_retr,
            'STOR': self.cmd_stor,
        }
        self._anonymous: Dict[str, Callable] = {
            'USER': self.cmd_user,
            'PASS': self.cmd_pass,
            'REIN': self.cmd_rein,
            'HELP': self.cmd_help,
            'NOOP': self.cmd_noop,
        }

    # --- PARSING ---

    @staticmethod
    def parse(line: str):
        """Return (VERB, args); VERB is '' for an empty line"""
        tokens = line.strip().split()
        if not tokens:
            return '', []
        return tokens[0].upper(), tokens[1:]

    def dispatch(self, session: Session, line: str, writer: ResponseWriter) -> bool:
        """
        Handle one command line. Returns True while the connection should
        stay open, False after QUIT or once the failure limit is reached.
        """
        cmd, args = self.parse(line)
        logger.info(f"[{session.host}] {cmd} {'****' if cmd == 'PASS' else ' '.join(args)}".rstrip())

        if cmd == 'QUIT':
            writer.send(221, "Goodbye")
            return False

        if cmd in self._anonymous:
            self._anonymous[cmd](session, args, writer)
        elif cmd in self._authenticated:
            if session.authenticated:
                self._authenticated[cmd](session, args, writer)
            else:
                writer.send(500, NOT_LOGGED_IN)
        elif self.config.permissive:
            writer.send(200, "OK (not supported but faking it)")
        else:
            writer.send(500, "Bad Command")

        if session.failures >= self.config.failure_limit:
            logger.warning(f"[{session.host}] failure limit ({self.config.failure_limit}) reached, closing session")
            return False
        return True

    def _auth_failed(self, session: Session, code: int, msg: str, writer: ResponseWriter):
        session.failures += 1
        logger.warning(f"[{session.host}] authentication failure {session.failures}: {msg}")
        # Throttle brute force; only this connection's thread sleeps
        self.sleep(self.config.auth_delay)
        writer.send(code, msg)

    # --- AUTHENTICATION ---

    def cmd_user(self, session: Session, args: List[str], writer: ResponseWriter):
        if len(args) != 1:
            return self._auth_failed(session, 500, "Bad USER command", writer)
        if session.authenticated:
            return self._auth_failed(session, 500, "Already logged in", writer)
        if args[0] not in self.credentials:
            return self._auth_failed(session, 530, "Bad or Unknown User", writer)

        session.username = args[0]
        session.authenticated = False
        writer.send(331, "User OK, specify password")

    def cmd_pass(self, session: Session, args: List[str], writer: ResponseWriter):
        if len(args) != 1:
            return self._auth_failed(session, 500, "Bad PASS command", writer)
        if session.authenticated:
            return self._auth_failed(session, 500, "Already logged in", writer)
        if not session.username:
            return self._auth_failed(session, 530, "Not logged in (need username)", writer)
        if session.username not in self.credentials:
            return self._auth_failed(session, 530, "Bad User", writer)
        if args[0] != self.credentials[session.username]:
            session.authenticated = False
            return self._auth_failed(session, 530, "Bad Password", writer)

        session.authenticated = True
        logger.info(f"[{session.host}] {session.username} logged in")
        writer.send(230, "OK (login successful)")

    def cmd_rein(self, session: Session, args: List[str], writer: ResponseWriter):
        self.release_session(session)
        session.reinitialize()
        writer.send(200, "OK Session Reinitialized")

    # --- FAKE FILESYSTEM ---

    def cmd_pwd(self, session, args, writer):
        writer.send(200, self.config.fakedir_root)

    def cmd_list(self, session, args, writer):
        writer.send_lines(200, self.config.fakedir_list)

    def cmd_type(self, session, args, writer):
        if len(args) != 1:
            writer.send(500, "Bad TYPE command")
        elif args[0] != 'I':
            writer.send(510, "Only binary mode is supported (I)")
        else:
            writer.send(200, "OK (Binary mode)")

    def cmd_stru(self, session, args, writer):
        if len(args) != 1:
            writer.send(500, "Bad STRU command")
        elif args[0] != 'FILE':
            writer.send(510, "Only FILE structure supported")
        else:
            writer.send(211, "OK")

    # --- SYSTEM ---

    def cmd_feat(self, session, args, writer):
        writer.send_lines(211, FEATURES)

    def cmd_syst(self, session, args, writer):
        writer.send(215, "UNIX")

    def cmd_stat(self, session, args, writer):
        writer.send(200, "Rad. Yourself?")

    def cmd_help(self, session, args, writer):
        writer.send(200, self.config.help)

    def cmd_noop(self, session, args, writer):
        writer.send(200, "OK")

    # --- TRANSFERS ---

    def cmd_retr(self, session: Session, args: List[str], writer: ResponseWriter):
        if len(args) != 1:
            return writer.send(500, "Bad RETR command")
        session.download_requested = True
        session.upload_requested = False
        _, code, msg = self.transfer.retrieve(session, args[0])
        writer.send(code, msg)

    def cmd_stor(self, session: Session, args: List[str], writer: ResponseWriter):
        if len(args) != 1:
            return writer.send(500, "Bad STOR command")
        session.upload_requested = True
        session.download_requested = False
        _, code, msg = self.transfer.store(session, args[0])
        writer.send(code, msg)

    # --- DATA PORTS ---

    def release_session(self, session: Session):
        """Give back any data port the session holds"""
        if not session.has_data_port():
            return
        pool = self.passive_pool if session.passive_mode else self.active_pool
        pool.release(session.data_port)
        session.data_port = 0
        session.passive_mode = False
        session.active_address = None

    def _pasv_host(self, session: Session) -> str:
        for candidate in (session.local_host, self.config.address):
            parts = candidate.split('.')
            if len(parts) == 4 and all(p.isdigit() for p in parts) and candidate != '0.0.0.0':
                return candidate
        return '127.0.0.1'

    def cmd_pasv(self, session: Session, args: List[str], writer: ResponseWriter):
        self.release_session(session)
        port = self.passive_pool.request()
        if port == NO_PORT:
            return writer.send(425, "No data port available")

        session.passive_mode = True
        session.data_port = port
        h = self._pasv_host(session).replace('.', ',')
        writer.send(227, f"Entering Passive Mode ({h},{port >> 8},{port & 0xff})")

    def cmd_port(self, session: Session, args: List[str], writer: ResponseWriter):
        if len(args) != 1:
            return writer.send(500, "Bad PORT command")
        fields = args[0].split(',')
        try:
            numbers = [int(f) for f in fields]
        except ValueError:
            return writer.send(500, "Bad PORT command")
        if len(numbers) != 6 or any(n < 0 or n > 255 for n in numbers):
            return writer.send(500, "Bad PORT command")

        client_host = '.'.join(str(n) for n in numbers[:4])
        client_port = (numbers[4] << 8) + numbers[5]
        if not self.config.promiscuous_active_mode and client_host != session.client_ip:
            logger.warning(f"[{session.host}] PORT to foreign host {client_host} refused")
            return writer.send(500, "PORT address does not match client")

        self.release_session(session)
        port = self.active_pool.request()
        if port == NO_PORT:
            return writer.send(425, "No data port available")

        session.passive_mode = False
        session.data_port = port
        session.active_address = (client_host, client_port)
        writer.send(200, "PORT command successful")
