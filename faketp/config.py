"""
Configuration - YAML config file with environment overrides
Produces one immutable ServerConfig shared by every session
"""

import os
import logging
import yaml
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_FILE = 'config.yaml'

DATA_PORT_MIN = 1024
DATA_PORT_MAX = 65535

DEFAULT_FAKEDIR_ROOT = '/'
DEFAULT_AUTH_DELAY = 1.0
DEFAULT_FAILURE_LIMIT = 3
DEFAULT_MAX_LINE_LENGTH = 4096


class ConfigError(Exception):
    """Invalid or missing configuration; the server refuses to start"""


@dataclass(frozen=True)
class ApiEndpoint:
    url: str = ''
    params: Tuple[Tuple[str, str], ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()
    body_name: str = ''

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class ServerConfig:
    user_auth_file: str
    data_port_begin: int
    data_port_end: int
    address: str = '0.0.0.0'
    insecure_port: int = 21
    secure_port: Optional[int] = None
    motd: str = ''
    help: str = ''
    fakedir_root: str = DEFAULT_FAKEDIR_ROOT
    fakedir_list: Tuple[str, ...] = ()
    permissive: bool = False
    strict_active_mode: bool = False
    promiscuous_active_mode: bool = False
    user_auth_endpoint: ApiEndpoint = field(default_factory=ApiEndpoint)
    pull: ApiEndpoint = field(default_factory=ApiEndpoint)
    push: ApiEndpoint = field(default_factory=ApiEndpoint)
    auth_delay: float = DEFAULT_AUTH_DELAY
    failure_limit: int = DEFAULT_FAILURE_LIMIT
    idle_timeout: Optional[float] = None
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH


def _pairs(value, what: str) -> Tuple[Tuple[str, str], ...]:
    """
    Params/headers are written either as a mapping or as a list of
    one-key mappings (the format used by older config files).
    """
    if value is None:
        return ()
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"{what} must be a mapping or a list of mappings")
    pairs = []
    for item in value:
        if not isinstance(item, dict):
            raise ConfigError(f"{what} must be a mapping or a list of mappings")
        pairs.extend((str(k), str(v)) for k, v in item.items())
    return tuple(pairs)


def _endpoint(raw, what: str) -> ApiEndpoint:
    if raw is None:
        return ApiEndpoint()
    if not isinstance(raw, dict):
        raise ConfigError(f"{what} must be a mapping")
    return ApiEndpoint(
        url=str(raw.get('url') or ''),
        params=_pairs(raw.get('params'), f"{what}.params"),
        headers=_pairs(raw.get('headers'), f"{what}.headers"),
        body_name=str(raw.get('body_name') or ''),
    )


def _int(value, what: str, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Bad {what} value: {value!r}")
    if isinstance(value, bool) or number < low or number > high:
        raise ConfigError(f"Bad {what} value: {value!r}")
    return number


def _bool(value, what: str, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"Bad {what} value: {value!r} (expected true or false)")
    return value


def _number(value, what: str, minimum: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Bad {what} value: {value!r}")
    if number < minimum:
        raise ConfigError(f"Bad {what} value: {value!r}")
    return number


def parse_config(raw) -> ServerConfig:
    """Validate a decoded YAML document and build the ServerConfig"""
    if not isinstance(raw, dict):
        raise ConfigError("Config must be a YAML mapping")

    # Data ports
    data_ports = raw.get('data_ports')
    if not isinstance(data_ports, dict):
        raise ConfigError("Missing data_ports option")
    bounds = {}
    for param in ('begin', 'end'):
        if param not in data_ports:
            raise ConfigError(f"Missing data_ports option: {param}")
        bounds[param] = _int(data_ports[param], f"data_ports {param}", DATA_PORT_MIN, DATA_PORT_MAX)
    if bounds['begin'] > bounds['end']:
        raise ConfigError("Bad data_ports values (begin must be <= end)")

    # User auth
    user_auth = raw.get('user_auth') or {}
    if not isinstance(user_auth, dict):
        raise ConfigError("user_auth must be a mapping")
    user_auth_file = user_auth.get('file') or ''
    if not user_auth_file:
        raise ConfigError("user_auth.file missing: only file-based authentication supported for now")

    # Fake filesystem
    fakedir_list = raw.get('fakedir_list') or []
    if not isinstance(fakedir_list, list) or not all(isinstance(l, str) for l in fakedir_list):
        raise ConfigError("fakedir_list must be a list of strings")

    secure_port = raw.get('secure_port')
    if secure_port is not None:
        secure_port = _int(secure_port, 'secure_port', 0, 65535)

    idle_timeout = raw.get('idle_timeout')
    if idle_timeout is not None:
        idle_timeout = _number(idle_timeout, 'idle_timeout', 0.001)

    return ServerConfig(
        user_auth_file=str(user_auth_file),
        data_port_begin=bounds['begin'],
        data_port_end=bounds['end'],
        address=str(raw.get('address') or '0.0.0.0'),
        insecure_port=_int(raw.get('insecure_port', 21), 'insecure_port', 0, 65535),
        secure_port=secure_port,
        motd=str(raw.get('motd') or ''),
        help=str(raw.get('help') or ''),
        fakedir_root=str(raw.get('fakedir_root') or DEFAULT_FAKEDIR_ROOT),
        fakedir_list=tuple(fakedir_list),
        permissive=_bool(raw.get('permissive'), 'permissive'),
        strict_active_mode=_bool(raw.get('strict_active_mode'), 'strict_active_mode'),
        promiscuous_active_mode=_bool(raw.get('promiscuous_active_mode'), 'promiscuous_active_mode'),
        user_auth_endpoint=_endpoint(user_auth.get('endpoint'), 'user_auth.endpoint'),
        pull=_endpoint(raw.get('pull'), 'pull'),
        push=_endpoint(raw.get('push'), 'push'),
        auth_delay=_number(raw.get('auth_delay', DEFAULT_AUTH_DELAY), 'auth_delay', 0),
        failure_limit=_int(raw.get('failure_limit', DEFAULT_FAILURE_LIMIT), 'failure_limit', 1, 1000),
        idle_timeout=idle_timeout,
        max_line_length=_int(raw.get('max_line_length', DEFAULT_MAX_LINE_LENGTH), 'max_line_length', 64, 1 << 20),
    )


def load_config(config_path=CONFIG_FILE) -> ServerConfig:
    if not os.path.exists(config_path):
        raise ConfigError(f"Error reading config file: {config_path} not found")
    try:
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading config file: {e}") from e

    config = parse_config(raw)
    logger.info(f"Configuration loaded from {config_path}")
    return config


def apply_env_overrides(config: ServerConfig, environ=None) -> ServerConfig:
    """FAKETP_ADDRESS / FAKETP_PORT / FAKETP_USER_FILE take precedence over the file"""
    environ = os.environ if environ is None else environ
    changes = {}
    if environ.get('FAKETP_ADDRESS'):
        changes['address'] = environ['FAKETP_ADDRESS']
    if environ.get('FAKETP_PORT'):
        changes['insecure_port'] = _int(environ['FAKETP_PORT'], 'FAKETP_PORT', 0, 65535)
    if environ.get('FAKETP_USER_FILE'):
        changes['user_auth_file'] = environ['FAKETP_USER_FILE']
    if changes:
        logger.info(f"Environment overrides: {', '.join(sorted(changes))}")
        return replace(config, **changes)
    return config
