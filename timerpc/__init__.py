"""
Minimal synchronous RPC over ZeroMQ/TCP, serving the time of day.
"""

from timerpc.client import Client, connect
from timerpc.registry import Args, Registry, Service, rpc_method
from timerpc.server import Server, listen
