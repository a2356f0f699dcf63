"""
The time service: a single procedure returning the server's wall-clock time.
"""

import time

from timerpc.registry import Registry, Service, rpc_method


PROCEDURE = 'TimeServer.GiveServerTime'


class TimeServer(Service):

    @rpc_method(name='GiveServerTime')
    def give_server_time(self, args):
        """ Return seconds since the Unix epoch; `args` is ignored. """
        return int(time.time())


def build_registry():
    """ Registry holding the TimeServer procedures. """
    registry = Registry()
    registry.register_service(TimeServer())
    return registry
