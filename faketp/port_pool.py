"""
Port Provider - Data port allocation shared by every FTP session
A single worker thread owns the port sets; sessions talk to it through a queue
"""

import queue
import threading
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

logger = logging.getLogger(__name__)

NO_PORT = -1

ACTION_REQUEST = 'request'
ACTION_RELEASE = 'release'
ACTION_SNAPSHOT = 'snapshot'
_ACTION_STOP = 'stop'

# Seconds a caller waits for the worker before giving up
REPLY_TIMEOUT = 5.0

_FALLBACK = {
    ACTION_REQUEST: NO_PORT,
    ACTION_RELEASE: False,
    ACTION_SNAPSHOT: None,
}


class PortRangeError(ValueError):
    """Raised at construction when port_start > port_end"""


@dataclass
class PortRequest:
    """Message envoyé au worker du pool"""
    action: str
    port: int = 0
    reply: queue.Queue = field(default_factory=lambda: queue.Queue(maxsize=1))
    # Held by the worker while it answers; a caller that stops waiting marks it abandoned
    lock: threading.Lock = field(default_factory=threading.Lock)
    abandoned: bool = False


class PortProvider:
    """
    Pool de ports pour les connexions de données.

    Every operation is handled by the worker thread one at a time, so a
    request never observes a half-finished release. Which free port a
    request gets is arbitrary; callers must not rely on any ordering.
    """

    def __init__(self, port_start: int, port_end: int, name: str = 'passive',
                 reply_timeout: float = REPLY_TIMEOUT):
        if port_start > port_end:
            raise PortRangeError(
                f"PortProvider {name}: port_start ({port_start}) > port_end ({port_end})"
            )
        self.port_start = port_start
        self.port_end = port_end
        self.name = name
        self.reply_timeout = reply_timeout

        # Only ever touched from the worker thread
        self._available = set(range(port_start, port_end + 1))
        self._reserved = set()

        self._requests = queue.Queue()
        self._worker = None
        self._start_lock = threading.Lock()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    @property
    def size(self) -> int:
        return self.port_end - self.port_start + 1

    def start(self):
        """Démarre le worker (idempotent)"""
        with self._start_lock:
            if self._worker and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._serve,
                daemon=True,
                name=f"PortProvider-{self.name}"
            )
            self._worker.start()
        logger.debug(f"PortProvider {self.name}: serving ports {self.port_start}-{self.port_end}")

    def stop(self, timeout: float = 5):
        """Arrête le worker"""
        if not self._worker:
            return
        self._requests.put(PortRequest(_ACTION_STOP))
        self._worker.join(timeout=timeout)
        self._worker = None

    def _call(self, action: str, port: int = 0):
        if not self._worker or not self._worker.is_alive():
            raise RuntimeError(f"PortProvider {self.name} is not running")
        req = PortRequest(action, port)
        self._requests.put(req)
        try:
            return req.reply.get(timeout=self.reply_timeout)
        except queue.Empty:
            pass
        with req.lock:
            try:
                # Answered while we were timing out
                return req.reply.get_nowait()
            except queue.Empty:
                req.abandoned = True
        logger.error(f"PortProvider {self.name}: no answer to {action} within {self.reply_timeout}s")
        return _FALLBACK.get(action)

    def request(self) -> int:
        """Reserve a free port, or return NO_PORT when none is left"""
        return self._call(ACTION_REQUEST)

    def release(self, port: int) -> bool:
        """Return a reserved port; False (and a warning) for misuse"""
        return self._call(ACTION_RELEASE, port)

    def snapshot(self) -> Tuple[FrozenSet[int], FrozenSet[int]]:
        """(available, reserved) as seen by the worker at one instant"""
        return self._call(ACTION_SNAPSHOT)

    def _serve(self):
        while True:
            req = self._requests.get()
            if req.action == _ACTION_STOP:
                break
            with req.lock:
                if req.abandoned:
                    logger.warning(f"PortProvider {self.name}: dropping abandoned {req.action}")
                    continue
                try:
                    req.reply.put(self._handle(req))
                except Exception as e:
                    logger.error(f"PortProvider {self.name}: failed to handle {req.action}: {e}")
                    req.reply.put(None)

    def _handle(self, req: PortRequest):
        if req.action == ACTION_REQUEST:
            return self._reserve()
        if req.action == ACTION_RELEASE:
            return self._release(req.port)
        if req.action == ACTION_SNAPSHOT:
            return frozenset(self._available), frozenset(self._reserved)

        logger.warning(f"PortProvider {self.name}: bad action! {req.action}")
        return None

    def _reserve(self) -> int:
        if not self._available:
            logger.info(f"PortProvider {self.name}: no ports available")
            return NO_PORT
        port = self._available.pop()
        self._reserved.add(port)
        logger.debug(f"PortProvider {self.name}: reserved {port}")
        return port

    def _release(self, port: int) -> bool:
        if port < self.port_start or port > self.port_end:
            logger.warning(f"PortProvider {self.name}: release request for port number that's out of range! {port}")
            return False
        if port not in self._reserved:
            logger.warning(f"PortProvider {self.name}: release request for port that is not reserved! {port}")
            return False
        self._reserved.discard(port)
        self._available.add(port)
        logger.debug(f"PortProvider {self.name}: released {port}")
        return True


def build_pools(config) -> Tuple[PortProvider, PortProvider]:
    """
    Passive pool over data_ports; with strict_active_mode a second pool holding
    only port 20, otherwise active requests share the passive pool.
    """
    passive = PortProvider(config.data_port_begin, config.data_port_end, name='passive')
    if config.strict_active_mode:
        active = PortProvider(20, 20, name='active')
    else:
        active = passive
    return passive, active


def start_pools(*pools: Optional[PortProvider]):
    for pool in {id(p): p for p in pools if p is not None}.values():
        pool.start()


def stop_pools(*pools: Optional[PortProvider]):
    for pool in {id(p): p for p in pools if p is not None}.values():
        pool.stop()
