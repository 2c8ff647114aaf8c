"""
Credential file reader
One account per line: username and password separated by exactly one space
"""
import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """The credential file could not be read"""


def parse_credentials(lines) -> Dict[str, str]:
    """Build the username -> password mapping, skipping malformed lines"""
    credentials = {}
    for lineno, line in enumerate(lines, start=1):
        line = line.rstrip('\r\n')
        if not line.strip():
            continue
        parts = line.split(' ')
        if len(parts) != 2 or not parts[0] or not parts[1]:
            logger.warning(f"Bad user credential line ({lineno}): {line!r}; skipped")
            continue
        credentials[parts[0]] = parts[1]
    return credentials


def load_credentials(file_path: str) -> Dict[str, str]:
    if not file_path:
        raise CredentialError("only file-based authentication supported for now")
    if not os.path.exists(file_path):
        raise CredentialError(f"User auth file not found: {file_path}")

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            credentials = parse_credentials(f)
    except OSError as e:
        raise CredentialError(f"Error opening user auth file: {e}") from e

    logger.info(f"{len(credentials)} user credentials read from {file_path}")
    return credentials
