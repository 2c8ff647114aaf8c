"""
Transfer backend - pull (RETR) and push (STOR) endpoints
The data channel is not implemented, so every transfer reports failure
"""

import logging
from typing import Tuple

from faketp.config import ApiEndpoint

logger = logging.getLogger(__name__)


class TransferBackend:

    def __init__(self, pull: ApiEndpoint, push: ApiEndpoint):
        self.pull = pull
        self.push = push

    def _unavailable(self, direction: str, endpoint: ApiEndpoint, session, path: str) -> Tuple[bool, int, str]:
        if endpoint.configured:
            # TODO: stream the endpoint body over the negotiated data connection once PASV/PORT open real sockets
            logger.info(
                f"{direction} {path} for {session.username}@{session.host} "
                f"would use {endpoint.url} ({len(endpoint.headers)} headers); data channel not implemented"
            )
        else:
            logger.info(f"{direction} {path} for {session.username}@{session.host}: no endpoint configured")
        return False, 500, "error"

    def retrieve(self, session, path: str) -> Tuple[bool, int, str]:
        return self._unavailable('RETR', self.pull, session, path)

    def store(self, session, path: str) -> Tuple[bool, int, str]:
        return self._unavailable('STOR', self.push, session, path)
