#!/usr/bin/env python3

import socket
import threading
import time

import pytest
import zmq

from timerpc.client import Client, State, connect
from timerpc.registry import Args
from timerpc.timeserver import PROCEDURE
from timerpc.utils.exceptions import (
        ConnectError,
        InvocationError,
        RPCTimeoutError,
        TransportError,
)

from conftest import unused_port


def test_basic_rpc(server):
    """
    Call GiveServerTime and compare with the local clock.
    """
    with connect(port=server.port) as client:
        result = client.call(PROCEDURE, Args())
        now = time.time()

    assert isinstance(result, int)
    assert abs(result - now) <= 5


def test_reused_connection(server):
    """
    Test sequential calls on a single connection.
    """
    with connect(port=server.port) as client:
        first = client.call(PROCEDURE)
        second = client.call(PROCEDURE)
        assert client.state is State.CONNECTED

    assert first <= second


def test_unknown_procedure(server):
    with connect(port=server.port) as client:
        with pytest.raises(InvocationError) as exc_info:
            client.call('TimeServer.GiveClientTime')

        assert exc_info.value.kind == 'UnknownProcedure'
        assert client.state is State.CONNECTED
        assert isinstance(client.call(PROCEDURE), int)


def test_handler_error(server):
    with connect(port=server.port) as client:
        with pytest.raises(InvocationError) as exc_info:
            client.call('Test.Fail')

    assert exc_info.value.kind == 'HandlerError'
    assert exc_info.value.message == 'ValueError: boom'


def test_invalid_arguments(server):
    with connect(port=server.port) as client:
        with pytest.raises(InvocationError) as exc_info:
            client.call(PROCEDURE, {'unexpected': True})

    assert exc_info.value.kind == 'InvalidArguments'


def test_unserializable_result(server):
    with connect(port=server.port) as client:
        with pytest.raises(InvocationError) as exc_info:
            client.call('Test.Unserializable')

    assert exc_info.value.kind == 'HandlerError'


def test_parallel_connections(server, gate, entered):
    """
    A blocked call on one connection does not hold up another connection.
    """
    results = []

    def run_blocked_client():
        with connect(port=server.port) as client:
            results.append(client.call('Test.Wait'))

    thread = threading.Thread(target=run_blocked_client, daemon=True)
    thread.start()
    assert entered.wait(5)

    with connect(port=server.port) as client:
        assert isinstance(client.call(PROCEDURE), int)

    gate.set()
    thread.join(5)
    assert results == [True]


def test_proxy(server):
    with connect(port=server.port) as client:
        proxy = client.get_proxy()
        assert abs(proxy.TimeServer.GiveServerTime() - time.time()) <= 5
        assert abs(proxy.TimeServer.GiveServerTime[5]() - time.time()) <= 5


def test_client_timeout(server, gate, entered):
    """
    Test whether client raises RPCTimeoutError on `call()` timeout.
    """
    client = connect(port=server.port)

    with pytest.raises(RPCTimeoutError):
        client.call('Test.Wait', timeout=0.1)

    assert client.state is State.FAILED
    with pytest.raises(TransportError):
        client.call(PROCEDURE)

    gate.set()


def test_connect_refused():
    client = Client(port=unused_port())

    with pytest.raises(ConnectError):
        client.connect()

    assert client.state is State.FAILED
    assert client._socket is None
    assert client._monitor is None


def test_call_before_connect():
    with pytest.raises(RuntimeError):
        Client().call(PROCEDURE)


def test_server_drops_connection():
    """
    The server goes away after receiving the request: the pending call fails
    with TransportError rather than returning anything.
    """
    ready = threading.Event()
    ports = []

    def run_server():
        socket = zmq.Context.instance().socket(zmq.ROUTER)
        ports.append(socket.bind_to_random_port('tcp://127.0.0.1'))
        ready.set()
        socket.recv_multipart()
        socket.close(linger=0)

    threading.Thread(target=run_server, daemon=True).start()
    assert ready.wait(5)

    client = connect(port=ports[0])
    with pytest.raises(TransportError):
        client.call(PROCEDURE, timeout=10)

    assert client.state is State.FAILED
    with pytest.raises(TransportError):
        client.call(PROCEDURE)


def worker_threads():
    return [thread for thread in threading.enumerate()
            if thread.name.startswith('timerpc-worker-')]


def test_workers_retired_after_calls(server):
    """
    One-shot clients do not leave worker threads behind on the server.
    """
    for i in range(30):
        with connect(port=server.port) as client:
            client.call(PROCEDURE)

    deadline = time.monotonic() + 5
    while worker_threads() and time.monotonic() < deadline:
        time.sleep(0.05)

    assert worker_threads() == []
    assert server.server.active_connections == 0


def test_rejected_arguments_do_not_stall_connection(server):
    """
    An Args type failing with a non-TypeError still yields one response per
    request on the same connection.
    """
    with connect(port=server.port) as client:
        for i in range(2):
            with pytest.raises(InvocationError) as exc_info:
                client.call('Test.RejectArgs', timeout=5)
            assert exc_info.value.kind == 'InvalidArguments'
        assert isinstance(client.call(PROCEDURE, timeout=5), int)


def test_connect_handshake_failure():
    """
    A TCP listener that does not speak ZMTP is a connection failure.
    """
    listener = socket.socket()
    listener.bind(('127.0.0.1', 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    def run_listener():
        conn, _ = listener.accept()
        conn.sendall(b'HTTP/1.1 400 Bad Request\r\n\r\n')
        conn.close()

    threading.Thread(target=run_listener, daemon=True).start()

    client = Client(port=port, connect_timeout=2)
    try:
        with pytest.raises(ConnectError):
            client.connect()
    finally:
        listener.close()

    assert client.state is State.FAILED
    assert client._socket is None
    assert client._monitor is None
