import socket
import threading

import pytest

from timerpc.registry import Registry
from timerpc.server import Server
from timerpc.timeserver import TimeServer


class ServerThread:
    """ Run a Server on an ephemeral localhost port in a background thread. """

    def __init__(self, registry):
        self.server = Server(registry, host='127.0.0.1', port=0)
        self.port = None
        self._ready = threading.Event()
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        with self.server:
            self.port = self.server.port
            self._ready.set()
            while not self._done.is_set():
                self.server.run_once(timeout=0.05)

    def __enter__(self):
        self._thread.start()
        assert self._ready.wait(5)
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        self._done.set()
        self._thread.join(5)


class RejectingArgs:
    """ Args type whose constructor raises ValueError. """

    def __init__(self, **fields):
        raise ValueError('rejected')


def unused_port():
    with socket.socket() as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


@pytest.fixture
def gate():
    """ Released by tests to let `Test.Wait` calls return. """
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def entered():
    """ Set when a `Test.Wait` call has started on the server. """
    return threading.Event()


@pytest.fixture
def registry(gate, entered):
    def fail(args):
        raise ValueError('boom')

    def wait(args):
        entered.set()
        return gate.wait(5)

    registry = Registry()
    registry.register_service(TimeServer())
    registry.register('Test.Fail', fail)
    registry.register('Test.Wait', wait)
    registry.register('Test.Unserializable', lambda args: object())
    registry.register('Test.RejectArgs', lambda args: None,
                      args_type=RejectingArgs)
    return registry


@pytest.fixture
def server(registry):
    with ServerThread(registry) as server_thread:
        yield server_thread
