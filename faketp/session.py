"""
Session - Per-connection FTP state
Owned by the connection thread that created it; never shared
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass
class Session:
    """État d'une connexion de contrôle"""
    host: str
    local_host: str = ''
    authenticated: bool = False
    username: str = ''
    failures: int = 0
    upload_requested: bool = False
    download_requested: bool = False
    passive_mode: bool = False
    data_port: int = 0
    active_address: Optional[Tuple[str, int]] = field(default=None)

    @property
    def client_ip(self) -> str:
        """Host part of "ip:port" (IPv6 brackets stripped)"""
        ip = self.host.rsplit(':', 1)[0] if ':' in self.host else self.host
        return ip.strip('[]')

    def reinitialize(self):
        """REIN: forget the login; the failure count survives"""
        self.authenticated = False
        self.username = ''

    def has_data_port(self) -> bool:
        return self.data_port > 0
