#!/usr/bin/env python3

import time

import pytest
import zmq

from timerpc.__main__ import main

from conftest import unused_port


def test_call(server, capsys):
    main(['call', '--port', str(server.port)])

    result = int(capsys.readouterr().out.strip())
    assert abs(result - time.time()) <= 5


def test_call_unknown_procedure(server):
    with pytest.raises(SystemExit) as exc_info:
        main(['call', '--port', str(server.port), 'TimeServer.Nope'])
    assert exc_info.value.code == 1


def test_call_no_server():
    with pytest.raises(SystemExit) as exc_info:
        main(['call', '--port', str(unused_port())])
    assert exc_info.value.code == 1


def test_serve_address_in_use(server):
    with pytest.raises(SystemExit) as exc_info:
        main(['serve', '--host', '127.0.0.1', '--port', str(server.port)])
    assert exc_info.value.code == 1


def test_no_command():
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1


def test_serve_listener_fatal(monkeypatch):
    def broken_poll(self, timeout=None):
        raise zmq.ZMQError(zmq.EINVAL)

    monkeypatch.setattr(zmq.Poller, 'poll', broken_poll)

    with pytest.raises(SystemExit) as exc_info:
        main(['serve', '--host', '127.0.0.1', '--port', str(unused_port())])
    assert exc_info.value.code == 1
