"""
Request and response envelopes.

A request is the msgpack array `[request_id, procedure, args]` and a response
is `[request_id, error, result]`, where `error` is either None or the pair
`[kind, message]`.

Module API:

    - encode_request(request) -> bytes
    - decode_request(bytes) -> Request
    - encode_response(response) -> bytes
    - decode_response(bytes) -> Response
"""

import collections

from timerpc.utils.exceptions import ProtocolError
from timerpc.utils.serialization import serialize, deserialize


Request = collections.namedtuple('Request', 'request_id procedure args')

Response = collections.namedtuple('Response', 'request_id error result')

MALFORMED_REQUEST = 'MalformedRequest'


def encode_request(request: Request) -> bytes:
    return serialize(list(request))


def decode_request(data: bytes) -> Request:
    try:
        [request_id, procedure, args] = deserialize(data)
    except (TypeError, ValueError) as exc:
        raise ProtocolError('Request is not a 3-element array') from exc
    if not isinstance(request_id, str) or not isinstance(procedure, str):
        raise ProtocolError('Request ID and procedure must be strings')
    if args is not None and not isinstance(args, dict):
        raise ProtocolError('Request arguments must be a map')
    return Request(request_id, procedure, args)


def encode_response(response: Response) -> bytes:
    return serialize(list(response))


def decode_response(data: bytes) -> Response:
    try:
        [request_id, error, result] = deserialize(data)
    except (TypeError, ValueError) as exc:
        raise ProtocolError('Response is not a 3-element array') from exc
    if error is not None:
        try:
            [kind, message] = error
        except (TypeError, ValueError) as exc:
            raise ProtocolError('Response error must be [kind, message]') from exc
        error = (kind, message)
    return Response(request_id, error, result)
