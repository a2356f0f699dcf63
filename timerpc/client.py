"""
Synchronous timerpc client.

Instantiate this class, `connect()` and use the `.call` method to call an RPC
method.

User API:

  Client(host='127.0.0.1', port=1234, connect_timeout=3, context=None):
    |- connect()
    |- call(procedure, args=None, timeout=None)
    |- close()
    |- get_proxy()
    |- state

  connect(host='127.0.0.1', port=1234, connect_timeout=3,
          context=None) -> connected Client

  Proxy:

    >> client.get_proxy().TimeServer.GiveServerTime[3](args)
    is equivalent to:
    >> client.call("TimeServer.GiveServerTime", args, timeout=3)

    The "[3]" can be ommited, in which case, timeout is None.

A call blocks until the response arrives: there is no timeout unless one is
passed explicitly. A client whose connection has failed must be discarded;
it never reconnects.
"""

import dataclasses
import enum
import logging
import time
import uuid

import zmq
from zmq.utils.monitor import recv_monitor_message

from timerpc.protocol import Request, decode_response, encode_request
from timerpc.utils.address import (
        DEFAULT_CONNECT_HOST,
        DEFAULT_PORT,
        format_endpoint,
)
from timerpc.utils.exceptions import (
        ConnectError,
        InvocationError,
        ProtocolError,
        RPCTimeoutError,
        SerializationError,
        TransportError,
)


logger = logging.getLogger(__name__)

_CONNECT_FAILED_EVENTS = (
        zmq.EVENT_CLOSED,
        zmq.EVENT_CONNECT_RETRIED,
        zmq.EVENT_DISCONNECTED,
        zmq.EVENT_HANDSHAKE_FAILED_NO_DETAIL,
        zmq.EVENT_HANDSHAKE_FAILED_PROTOCOL,
        zmq.EVENT_HANDSHAKE_FAILED_AUTH,
)
_CONNECTION_LOST_EVENTS = (zmq.EVENT_DISCONNECTED, zmq.EVENT_CLOSED)


class State(enum.Enum):
    UNCONNECTED = 'unconnected'
    CONNECTED = 'connected'
    AWAITING_RESPONSE = 'awaiting_response'
    FAILED = 'failed'


class Client:
    def __init__(self, host=DEFAULT_CONNECT_HOST, port=DEFAULT_PORT,
                 connect_timeout=3, context=None):
        self._endpoint = format_endpoint(host, port)
        self._connect_timeout = connect_timeout
        self._context = context

        self._socket = None
        self._monitor = None
        self._poller = None

        self.state = State.UNCONNECTED

    def __del__(self):
        try:
            self.__close_sockets()
        except AttributeError:
            pass

    def __enter__(self):
        if self.state is State.UNCONNECTED:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        self.close()

    def connect(self):
        """
        Open the connection and wait until it is established.

        The connection counts as established once the ZeroMQ handshake with
        the server succeeds. Raises ConnectError if the server refuses the
        connection, the handshake fails, or neither happens
        within `connect_timeout` seconds.
        """
        if self.state is not State.UNCONNECTED:
            raise RuntimeError('Client already connected')

        context = self._context or zmq.Context.instance()
        socket = context.socket(zmq.DEALER)
        monitor = socket.get_monitor_socket()

        self._socket = socket
        self._monitor = monitor

        try:
            socket.connect(self._endpoint)
            self.__wait_connected()
        except (zmq.ZMQError, ConnectError) as exc:
            self.__close_sockets()
            self.state = State.FAILED
            if isinstance(exc, ConnectError):
                raise
            raise ConnectError('Cannot connect to %s' % self._endpoint) \
                from exc

        poller = zmq.Poller()
        poller.register(socket, zmq.POLLIN)
        poller.register(monitor, zmq.POLLIN)
        self._poller = poller

        self.state = State.CONNECTED
        logger.debug('Connected to %s', self._endpoint)

    def __wait_connected(self):
        poller = zmq.Poller()
        poller.register(self._monitor, zmq.POLLIN)

        deadline = time.monotonic() + self._connect_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConnectError('Timed out connecting to %s'
                                   % self._endpoint)
            if not poller.poll(timeout=1000 * remaining):
                continue
            event = recv_monitor_message(self._monitor)['event']
            if event == zmq.EVENT_HANDSHAKE_SUCCEEDED:
                return
            if event in _CONNECT_FAILED_EVENTS:
                raise ConnectError('Cannot connect to %s (%s)'
                                   % (self._endpoint, event))

    def call(self, procedure, args=None, timeout=None):
        """
        Call `procedure` with `args` and return its result.

        `args` may be None, a mapping or a dataclass instance.
        If `timeout` is None, blocks indefinitely.
        If `timeout` is a number, blocks `timeout` seconds and raises
        RPCTimeoutError on timeout; the client is unusable afterwards.
        """
        if self.state is State.FAILED:
            raise TransportError('Client has failed; create a new one')
        if self.state is not State.CONNECTED:
            raise RuntimeError('Client not connected')

        if args is None:
            args = {}
        elif dataclasses.is_dataclass(args):
            args = dataclasses.asdict(args)
        else:
            args = dict(args)

        request_id = str(uuid.uuid4())
        request_data = encode_request(Request(request_id, procedure, args))

        self.state = State.AWAITING_RESPONSE
        try:
            self._socket.send_multipart([b'', request_data])
            response_data = self.__wait_response(timeout)
            response = decode_response(response_data)
            if response.request_id != request_id:
                raise ProtocolError('Internal error (request ID does not match)')
        except (zmq.ZMQError, SerializationError, ProtocolError) as exc:
            self.__fail()
            raise TransportError('Invalid response from %s: %s'
                                 % (self._endpoint, exc)) from exc
        except TransportError:
            self.__fail()
            raise

        self.state = State.CONNECTED

        if response.error is not None:
            kind, message = response.error
            raise InvocationError(kind, message)

        return response.result

    def __wait_response(self, timeout):
        if timeout is None or timeout < 0:
            timeout = float('inf')

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RPCTimeoutError('Server at %s not responding'
                                      % self._endpoint)

            timeout_ms = None if remaining == float('inf') else 1000 * remaining
            events = dict(self._poller.poll(timeout=timeout_ms))

            if self._socket in events:
                frames = self._socket.recv_multipart()
                if len(frames) != 2 or frames[0] != b'':
                    raise ProtocolError('Unexpected response framing')
                return frames[1]

            if self._monitor in events:
                event = recv_monitor_message(self._monitor)['event']
                if event in _CONNECTION_LOST_EVENTS:
                    raise TransportError('Connection to %s lost'
                                         % self._endpoint)

    def __fail(self):
        logger.debug('Connection to %s failed', self._endpoint)
        self.__close_sockets()
        self.state = State.FAILED

    def __close_sockets(self):
        if self._socket is not None:
            self._socket.disable_monitor()
            self._socket.close(linger=0)
        if self._monitor is not None:
            self._monitor.close(linger=0)
        self._socket = None
        self._monitor = None
        self._poller = None

    def close(self):
        self.__close_sockets()
        if self.state is not State.FAILED:
            self.state = State.UNCONNECTED

    def get_proxy(self):
        return Proxy(self)


def connect(host=DEFAULT_CONNECT_HOST, port=DEFAULT_PORT, connect_timeout=3,
            context=None):
    """ Create a client and connect it; raises ConnectError on failure. """
    client = Client(host=host, port=port, connect_timeout=connect_timeout,
                    context=context)
    client.connect()
    return client


class Proxy:
    """ Attribute access front end: `proxy.Service.Method(args)`. """

    def __init__(self, client):
        self.client = client
        self._cached_subproxies = {}

    def __getattr__(self, service):
        if service in self._cached_subproxies:
            return self._cached_subproxies[service]
        subproxy = _ServiceProxy(service, self.client)
        self._cached_subproxies[service] = subproxy
        return subproxy


class _ServiceProxy:
    def __init__(self, service, client):
        self.service = service
        self.client = client
        self._cached_subproxies = {}

    def __getattr__(self, method):
        if method in self._cached_subproxies:
            return self._cached_subproxies[method]
        subproxy = _MethodProxy('%s.%s' % (self.service, method), self.client)
        self._cached_subproxies[method] = subproxy
        return subproxy


class _MethodProxy:
    """ Callable for one procedure; indexing it sets the call timeout. """

    def __init__(self, procedure, client, timeout=None):
        self.procedure = procedure
        self.client = client
        self.timeout = timeout

    def __call__(self, args=None):
        return self.client.call(self.procedure, args, timeout=self.timeout)

    def __getitem__(self, timeout):
        return _MethodProxy(self.procedure, self.client, timeout)
