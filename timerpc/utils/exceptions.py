"""
This module contains timerpc-specific exceptions.
"""


class TimeRPCError(Exception):
    """ Base class for all timerpc exceptions """


class SerializationError(TimeRPCError):
    """ Raised on serialization error """


class ProtocolError(TimeRPCError):
    """ Raised when a message is not a valid request/response envelope """


class DuplicateRegistrationError(TimeRPCError):
    """ Raised when a procedure name is registered twice """


class DispatchError(TimeRPCError):
    """ Base class for errors reported back to the caller of a procedure """

    kind = None


class UnknownProcedureError(DispatchError):
    """ Raised when no handler is bound to the requested name """

    kind = 'UnknownProcedure'


class InvalidArgumentsError(DispatchError):
    """ Raised when the argument payload does not fit the Args type """

    kind = 'InvalidArguments'


class HandlerError(DispatchError):
    """ Raised when the procedure body fails """

    kind = 'HandlerError'


class BindError(TimeRPCError):
    """ Raised when the listener cannot bind its address """


class ListenerFatalError(TimeRPCError):
    """ Raised when the listener loop breaks """


class ConnectError(TimeRPCError):
    """ Raised when the client cannot reach the server """


class TransportError(TimeRPCError):
    """ Raised when the connection is lost before a response arrives """


class RPCTimeoutError(TransportError):
    """ Raised on RPC method call timeout """


class InvocationError(TimeRPCError):
    """ Raised on the client when the server reports a failed call """

    def __init__(self, kind, message):
        super().__init__('%s: %s' % (kind, message))
        self.kind = kind
        self.message = message
