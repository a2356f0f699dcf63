#!/usr/bin/env python3

import argparse
import logging
import os
import signal
import sys

from timerpc.client import Client
from timerpc.server import Server
from timerpc.timeserver import PROCEDURE, build_registry
from timerpc.utils.address import DEFAULT_CONNECT_HOST, DEFAULT_HOST, DEFAULT_PORT
from timerpc.utils.exceptions import TimeRPCError


def signal_handler(*args, **kwargs):
    raise KeyboardInterrupt


def main(argv=None):
    arguments = parse_args(argv)

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logging.basicConfig(level=logging.DEBUG
                            if arguments.debug
                            else logging.INFO)
        getattr(Commands, arguments.command)(arguments)
    except KeyboardInterrupt:
        pass
    except BrokenPipeError:
        # Python flushes standard streams on exit; redirect remaining output
        # to devnull to avoid another BrokenPipeError at shutdown
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(1)
    except TimeRPCError as exc:
        logging.error(exc, exc_info=arguments.debug)
        sys.exit(1)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='timerpc',
                                     description='Time server RPC over TCP')

    parser.add_argument('-d', '--debug',
                        help='Turn on debug logs',
                        action='store_true')

    subparsers = parser.add_subparsers(title='command',
                                       dest='command')

    serve_parser = subparsers.add_parser(name='serve',
                                         description='Run the time server.')
    serve_parser.add_argument('--host',
                              help='Address to listen on (default: %(default)s)',
                              default=DEFAULT_HOST)
    serve_parser.add_argument('--port',
                              help='Port to listen on (default: %(default)s)',
                              default=DEFAULT_PORT,
                              type=int)

    call_parser = subparsers.add_parser(name='call',
                                        description='Call an RPC method once '
                                                    'and print the result.')
    call_parser.add_argument('--host',
                             help='Server address (default: %(default)s)',
                             default=DEFAULT_CONNECT_HOST)
    call_parser.add_argument('--port',
                             help='Server port (default: %(default)s)',
                             default=DEFAULT_PORT,
                             type=int)
    call_parser.add_argument('-t', '--timeout',
                             help='Time to wait for response before giving up',
                             default=None,
                             type=float)
    call_parser.add_argument('procedure',
                             help='Procedure to call (default: %(default)s)',
                             metavar='PROCEDURE',
                             nargs='?',
                             default=PROCEDURE)

    arguments = parser.parse_args(argv)

    if arguments.command is None:
        parser.print_help()
        sys.exit(1)

    return arguments


class Commands:

    @staticmethod
    def serve(arguments):
        server = Server(build_registry(),
                        host=arguments.host,
                        port=arguments.port,
                        name='time_server')
        with server:
            server.run()

    @staticmethod
    def call(arguments):
        client = Client(host=arguments.host, port=arguments.port)
        with client:
            response = client.call(arguments.procedure,
                                   timeout=arguments.timeout)
        print(response)


if __name__ == '__main__':
    main()
