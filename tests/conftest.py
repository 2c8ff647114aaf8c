import threading
from dataclasses import replace

import pytest

from faketp.config import ServerConfig
from faketp.port_pool import PortProvider
from faketp.commands import CommandDispatcher
from faketp.responses import ResponseWriter
from faketp.session import Session
from faketp.server import FTPServer

CREDENTIALS = {'alice': 'secret', 'bob': 'hunter2'}


class FakeSocket:
    """Collects whatever the server writes"""

    def __init__(self):
        self.data = bytearray()

    def sendall(self, payload):
        self.data.extend(payload)

    def text(self):
        return self.data.decode('utf-8')

    def replies(self):
        return self.text().split('\r\n')[:-1]

    def clear(self):
        self.data.clear()


class SleepRecorder:

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def config():
    return ServerConfig(
        user_auth_file='users.txt',
        data_port_begin=50000,
        data_port_end=50004,
        address='127.0.0.1',
        insecure_port=0,
        motd='Welcome to the test server',
        help='Try USER and PASS',
        fakedir_root='/srv/fake',
        fakedir_list=('drwxr-xr-x pub', '-rw-r--r-- README', '-rw-r--r-- notes.txt'),
        auth_delay=0,
    )


@pytest.fixture
def pool(config):
    with PortProvider(config.data_port_begin, config.data_port_end) as p:
        yield p


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_dispatcher(pool, sleeper):
    def factory(config, active_pool=None):
        return CommandDispatcher(config, CREDENTIALS, pool, active_pool, sleep=sleeper)
    return factory


@pytest.fixture
def dispatcher(make_dispatcher, config):
    return make_dispatcher(config)


@pytest.fixture
def sock():
    return FakeSocket()


@pytest.fixture
def writer(sock):
    return ResponseWriter(sock)


@pytest.fixture
def session():
    return Session(host='127.0.0.1:40000', local_host='127.0.0.1')


@pytest.fixture
def logged_in(dispatcher, session, writer, sock):
    dispatcher.dispatch(session, 'USER alice\r\n', writer)
    dispatcher.dispatch(session, 'PASS secret\r\n', writer)
    assert session.authenticated
    sock.clear()
    return session


@pytest.fixture
def start_server(pool):
    """Run an FTPServer on an ephemeral port; yields a starter taking config overrides"""
    started = []

    def starter(config, **overrides):
        cfg = replace(config, **overrides)
        server = FTPServer(cfg, CommandDispatcher(cfg, CREDENTIALS, pool)).bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        started.append((server, thread))
        return server

    yield starter

    for server, thread in started:
        server.shutdown()
        thread.join(timeout=5)
