"""
msgpack codec for timerpc envelopes.

Requests and responses travel as msgpack arrays (see `timerpc.protocol`);
this module is the only place that touches msgpack. Anything it cannot
encode or decode surfaces as `SerializationError`, which the server turns
into an error response and the client into a `TransportError`.

    - serialize(obj) -> bytes
    - deserialize(bytes) -> obj
"""

import typing
import msgpack

from timerpc.utils.exceptions import SerializationError


Payload = typing.Union[
        str,
        int,
        float,
        bool,
        None,
        typing.Mapping[str, 'Payload'],
        typing.List['Payload']
]


def serialize(obj: Payload) -> bytes:
    try:
        return msgpack.dumps(obj)
    except (TypeError, ValueError, OverflowError) as exc:
        raise SerializationError('Cannot encode object') from exc


def deserialize(data: bytes) -> Payload:
    try:
        return msgpack.loads(data)
    except (TypeError,
            UnicodeDecodeError,
            ValueError,
            msgpack.exceptions.ExtraData,
            msgpack.exceptions.FormatError,
            msgpack.exceptions.StackError,
            msgpack.exceptions.UnpackException) as exc:
        raise SerializationError('Cannot decode object') from exc
