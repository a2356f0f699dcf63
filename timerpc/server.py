"""
Synchronous timerpc server.

Build a `Registry`, hand it to a `Server` and run it. The server listens on a
ZeroMQ ROUTER socket over TCP; a peer with calls in flight has its own worker
thread, so calls on one connection are handled in order while different
connections are handled in parallel. A worker is retired as soon as its peer
has no outstanding calls and is started again on the peer's next request.

User API:

  Server(registry, host='0.0.0.0', port=1234, name=None, context=None):
    |- start()
    |- stop()
    |
    |- run()
    |- run_once(timeout=None)
    |
    |- endpoint
    |- port
    |- active_connections

  listen(registry, host='0.0.0.0', port=1234) -> started Server
"""


import collections
import itertools
import logging
import queue
import re
import threading

import zmq

from timerpc.protocol import (
        MALFORMED_REQUEST,
        Response,
        decode_request,
        encode_response,
)
from timerpc.utils.address import (
        DEFAULT_HOST,
        DEFAULT_PORT,
        endpoint_port,
        format_endpoint,
)
from timerpc.utils.exceptions import (
        BindError,
        DispatchError,
        HandlerError,
        ListenerFatalError,
        ProtocolError,
        SerializationError,
)


logger = logging.getLogger(__name__)

_inproc_ids = itertools.count()


def _failure(request_id, message):
    return encode_response(Response(request_id, [HandlerError.kind, message],
                                    None))


def handle_request(registry, request_data, logger=logger):
    """ Turn one encoded request into exactly one encoded response. """
    try:
        request = decode_request(request_data)
    except (SerializationError, ProtocolError) as exc:
        logger.error('Received malformed RPC request!')
        return encode_response(Response(None, [MALFORMED_REQUEST, str(exc)],
                                        None))

    try:
        return _dispatch(registry, request, logger)
    except Exception as exc:
        logger.error('--- RPC REQUEST FAILURE ---', exc_info=True)
        return _failure(request.request_id,
                        'Internal server error: %s' % type(exc).__name__)


def _dispatch(registry, request, logger):
    try:
        result = registry.dispatch(request.procedure, request.args)
    except DispatchError as exc:
        logger.warning('Call to "%s" failed: %s', request.procedure, exc)
        error = [exc.kind, str(exc)]
        result = None
    else:
        error = None

    logger.debug('Serializing RPC response %.50r...', result)
    try:
        return encode_response(Response(request.request_id, error, result))
    except SerializationError as exc:
        logger.error('Cannot serialize result of "%s"', request.procedure,
                     exc_info=True)
        return _failure(request.request_id,
                        'Cannot serialize result: %s' % exc.__cause__)


class _ConnectionWorker(threading.Thread):
    """ Services the requests of a single peer, one at a time. """

    def __init__(self, peer, registry, context, results_endpoint, logger):
        super().__init__(name='timerpc-worker-%s' % peer.hex(), daemon=True)
        self.peer = peer
        self.requests = queue.Queue()
        self.__registry = registry
        self.__context = context
        self.__results_endpoint = results_endpoint
        self.__logger = logger

    def run(self):
        socket = self.__context.socket(zmq.PUSH)
        socket.connect(self.__results_endpoint)
        try:
            while True:
                request_data = self.requests.get()
                if request_data is None:
                    break
                try:
                    response_data = handle_request(self.__registry,
                                                   request_data,
                                                   self.__logger)
                except Exception:
                    self.__logger.error('--- RPC WORKER FAILURE ---',
                                        exc_info=True)
                    response_data = _failure(None, 'Internal server error')
                socket.send_multipart([self.peer, b'', response_data])
        finally:
            socket.close(linger=0)


class Server:

    def __init__(self, registry, host=DEFAULT_HOST, port=DEFAULT_PORT,
                 name=None, context=None):
        if name is None:
            # Convert CamelCase class name into snake_case
            class_name = self.__class__.__name__
            name = re.sub('([A-Z]+)', r'_\1', class_name).strip('_').lower()

        self.__logger = logging.getLogger(__name__ + '.' + name)

        self.__name = name
        self.__registry = registry
        self.__host = host
        self.__port = port
        self.__context = context

        self.__endpoint = None
        self.__socket = None
        self.__results = None
        self.__results_endpoint = None
        self.__poller = None
        self.__workers = {}
        self.__pending = collections.Counter()

        self.__started = False

    def __del__(self):
        try:
            if self.__started:
                Server.stop(self)
        except AttributeError:
            pass

    def __enter__(self):
        Server.start(self)
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        if self.__started:
            Server.stop(self)

    @property
    def endpoint(self):
        """ Bound endpoint, e.g. "tcp://0.0.0.0:1234"; None until started. """
        return self.__endpoint

    @property
    def port(self):
        """ Bound port; differs from the requested one when that was 0. """
        if self.__endpoint is None:
            return None
        return endpoint_port(self.__endpoint)

    @property
    def active_connections(self):
        """ Number of peers that currently have a worker. """
        return len(self.__workers)

    def start(self):
        if self.__started:
            raise RuntimeError('Server already started')

        self.__logger.info('Starting RPC server "%s"...', self.__name)

        procedures = self.__registry.freeze()

        context = self.__context or zmq.Context.instance()
        socket = context.socket(zmq.ROUTER)
        socket.setsockopt(zmq.ROUTER_MANDATORY, 1)
        results = context.socket(zmq.PULL)
        results_endpoint = 'inproc://timerpc-results-%d' % next(_inproc_ids)
        poller = zmq.Poller()

        try:
            socket.bind(format_endpoint(self.__host, self.__port))
            results.bind(results_endpoint)
        except zmq.ZMQError as exc:
            socket.close(linger=0)
            results.close(linger=0)
            raise BindError('Cannot listen on %s:%s'
                            % (self.__host, self.__port)) from exc

        poller.register(socket, zmq.POLLIN)
        poller.register(results, zmq.POLLIN)

        self.__endpoint = socket.getsockopt_string(zmq.LAST_ENDPOINT)
        self.__socket = socket
        self.__results = results
        self.__results_endpoint = results_endpoint
        self.__poller = poller
        self.__started = True

        self.__logger.info('Listening on %s', self.__endpoint)
        self.__logger.info('RPC methods: %s', list(procedures.keys()))

    def stop(self):
        if not self.__started:
            raise RuntimeError('Server not started')

        workers = list(self.__workers.values())
        for worker in workers:
            worker.requests.put(None)
        for worker in workers:
            worker.join()

        self.__socket.close(linger=0)
        self.__results.close(linger=0)

        self.__endpoint = None
        self.__socket = None
        self.__results = None
        self.__results_endpoint = None
        self.__poller = None
        self.__workers = {}
        self.__pending = collections.Counter()
        self.__started = False

        self.__logger.info('Stopped RPC server "%s"', self.__name)

    def run(self):
        """
        Serve until the ZeroMQ context is terminated.

        Raises ListenerFatalError if the listener breaks.
        """
        if not self.__started:
            raise RuntimeError('Server not started')

        self.__logger.info('Running "%s" forever...', self.__name)

        try:
            while True:
                Server.run_once(self)
        except zmq.ContextTerminated:
            self.__logger.info('Context terminated, closing listener')
            Server.stop(self)

    def run_once(self, timeout=None):
        """ Run service once (process ready sockets or wait for timeout) """
        if not self.__started:
            raise RuntimeError('Server not started')

        if timeout is not None:
            timeout = int(1000 * timeout)

        try:
            ready_sockets = dict(self.__poller.poll(timeout=timeout))
            if self.__socket in ready_sockets:
                Server.__receive_request(self)
            if self.__results in ready_sockets:
                Server.__send_response(self)
        except zmq.ContextTerminated:
            raise
        except zmq.ZMQError as exc:
            self.__logger.error('Listener failure: %s', exc)
            raise ListenerFatalError('Listener on %s failed'
                                     % self.__endpoint) from exc

    def __receive_request(self):
        frames = self.__socket.recv_multipart()

        if len(frames) != 3 or frames[1] != b'':
            self.__logger.error('Received malformed RPC request!')
            return

        peer, _, request_data = frames
        worker = self.__workers.get(peer)
        if worker is None:
            self.__logger.debug('Starting worker for %s', peer.hex())
            worker = _ConnectionWorker(peer, self.__registry,
                                       self.__context or zmq.Context.instance(),
                                       self.__results_endpoint, self.__logger)
            self.__workers[peer] = worker
            worker.start()

        self.__logger.debug('Received RPC request %.50r from %s',
                            request_data, peer.hex())
        self.__pending[peer] += 1
        worker.requests.put(request_data)

    def __send_response(self):
        frames = self.__results.recv_multipart()
        peer = frames[0]

        self.__logger.debug('Sending RPC response %.50r to %s',
                            frames[-1], peer.hex())
        try:
            self.__socket.send_multipart(frames)
        except zmq.ZMQError as exc:
            if exc.errno != zmq.EHOSTUNREACH:
                raise
            self.__logger.warning('Peer %s disconnected, dropping response',
                                  peer.hex())
        finally:
            self.__pending[peer] -= 1
            if self.__pending[peer] <= 0:
                Server.__retire_worker(self, peer)

    def __retire_worker(self, peer):
        del self.__pending[peer]
        worker = self.__workers.pop(peer, None)
        if worker is not None:
            self.__logger.debug('Retiring worker for %s', peer.hex())
            worker.requests.put(None)


def listen(registry, host=DEFAULT_HOST, port=DEFAULT_PORT, name=None,
           context=None):
    """ Create and start a server; raises BindError if it cannot bind. """
    server = Server(registry, host=host, port=port, name=name, context=context)
    server.start()
    return server
