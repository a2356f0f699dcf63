"""
Procedure registry and dispatcher.

Subclass the `Service` class and use the `rpc_method` decorator to make a
method available to timerpc clients, then register an instance:

    class TimeServer(Service):
        @rpc_method(name='GiveServerTime')
        def give_server_time(self, args):
            return int(time.time())

    registry = Registry()
    registry.register_service(TimeServer())   # "TimeServer.GiveServerTime"

User API:

  Registry:
    |- register(name, handler, args_type=Args)
    |- register_service(service, name=None)
    |- freeze()
    |- dispatch(name, args_payload)

  Service:     <base class for rpc_method holders>
  rpc_method:  <decorator for Service methods>
"""

import collections
import dataclasses
import logging
import types

from timerpc.utils.exceptions import (
        DuplicateRegistrationError,
        HandlerError,
        InvalidArgumentsError,
        UnknownProcedureError,
)


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Args:
    """ Empty argument payload; every call carries one. """


Procedure = collections.namedtuple('Procedure', 'name handler args_type')


class Registry:

    def __init__(self):
        self.__procedures = {}
        self.__frozen = False

    def __contains__(self, name):
        return name in self.__procedures

    def __len__(self):
        return len(self.__procedures)

    def names(self):
        return sorted(self.__procedures)

    def register(self, name, handler, args_type=Args):
        """
        Bind `name` to `handler`, a callable taking an `args_type` instance.

        Raises DuplicateRegistrationError if `name` is already bound; the
        original binding is left intact.
        """
        if self.__frozen:
            raise RuntimeError('Registry is frozen')
        if name in self.__procedures:
            raise DuplicateRegistrationError(
                    'Procedure already registered: %s' % name)
        self.__procedures[name] = Procedure(name, handler, args_type)
        logger.debug('Registered procedure "%s"', name)

    def register_service(self, service, name=None):
        """
        Register every `rpc_method` of `service` as "<name>.<method>".

        `name` defaults to the service name. Either all methods are
        registered or none is.
        """
        name = name or service.service_name
        methods = service.rpc_methods()
        names = ['%s.%s' % (name, method_name) for method_name in methods]
        duplicates = [n for n in names if n in self.__procedures]
        if duplicates:
            raise DuplicateRegistrationError(
                    'Procedures already registered: %s' % ', '.join(duplicates))
        for full_name, (handler, args_type) in zip(names, methods.values()):
            self.register(full_name, handler, args_type)

    def freeze(self):
        """ Make the registry read-only and return a read-only view of it. """
        self.__frozen = True
        return types.MappingProxyType(self.__procedures)

    def dispatch(self, name, args_payload):
        """
        Call the handler bound to `name` with `args_payload` loaded into its
        Args type and return the handler's result.
        """
        try:
            procedure = self.__procedures[name]
        except KeyError:
            raise UnknownProcedureError('Invalid RPC method name: %s' % name) \
                from None

        args = _load_args(procedure.args_type, args_payload)

        logger.debug('Executing "%s" with args "%s"...',
                     name, str(args)[:50])
        try:
            return procedure.handler(args)
        except Exception as exc:
            logger.error('--- RPC METHOD EXCEPTION ---', exc_info=True)
            raise HandlerError('%s: %s' % (type(exc).__name__, exc)) from exc


def _load_args(args_type, args_payload):
    if args_payload is None:
        args_payload = {}
    if not isinstance(args_payload, dict):
        raise InvalidArgumentsError('Arguments must be a map, got %s'
                                    % type(args_payload).__name__)
    try:
        return args_type(**args_payload)
    except Exception as exc:
        raise InvalidArgumentsError(str(exc)) from exc


class Service:
    """
    Base class for objects whose `rpc_method`s are registered together.

    The service name defaults to the class name.
    """
    _rpc_methods: dict = None

    def __init__(self, name=None):
        self.service_name = name or self.__class__.__name__

    def rpc_methods(self):
        """ Return {method name: (bound handler, args type)}. """
        return {name: (getattr(self, attr), args_type)
                for name, (attr, args_type)
                in (self._rpc_methods or {}).items()}


class _RPCMethod:
    """
    When we decorate a method with an ordinary function decorator, the
    decorator receives the method (function object) as an argument.
    However, the owner class cannot be determined from the function object
    alone.

    `__set_name__` is called with the owner class once the class body has
    been executed, which is where the method gets recorded. The attribute is
    then replaced with the plain function.
    """

    def __init__(self, func, name=None, args_type=Args):
        self.func = func
        self.name = name
        self.args_type = args_type

    def __set_name__(self, owner, name):
        # Copy the parent's table so that subclasses do not leak into it
        if '_rpc_methods' not in owner.__dict__:
            owner._rpc_methods = dict(owner._rpc_methods or {})
        owner._rpc_methods[self.name or name] = (name, self.args_type)
        setattr(owner, name, self.func)


def rpc_method(func=None, *, name=None, args_type=Args):
    """
    Mark a `Service` method as a procedure.

    Usable bare (`@rpc_method`) or with options
    (`@rpc_method(name='GiveServerTime', args_type=Args)`).
    """
    if func is None:
        return lambda f: _RPCMethod(f, name=name, args_type=args_type)
    return _RPCMethod(func, name=name, args_type=args_type)
