"""
Default addresses and ZeroMQ endpoint helpers.
"""

DEFAULT_HOST = '0.0.0.0'
DEFAULT_CONNECT_HOST = '127.0.0.1'
DEFAULT_PORT = 1234


def format_endpoint(host: str, port: int) -> str:
    """ Build a `tcp://` endpoint; port 0 asks for an ephemeral port. """
    return 'tcp://%s:%s' % (host, '*' if port == 0 else port)


def endpoint_port(endpoint: str) -> int:
    """ Extract the port from a bound endpoint such as `tcp://0.0.0.0:1234`. """
    return int(endpoint.rsplit(':', 1)[1])
