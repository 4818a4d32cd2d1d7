"""
Protocol Adapters - OPC UA client for the CNC fleet.

Discovery -> Monitor -> Invoker, run over a supervised connection.
"""

from .discovery import InstanceRef, discover, find_child
from .monitor import ChangeHandler, MonitoredItem, setup_monitoring, dump_all_statuses
from .invoker import InvocationResult, invoke, run_demo
from .reconnect import BackoffEvent, ExponentialBackoff, ReconnectReporter, ConnectionSupervisor
from .opcua_adapter import ClientContext, CNCFleetClient

__all__ = [
    'InstanceRef',
    'discover',
    'find_child',
    'ChangeHandler',
    'MonitoredItem',
    'setup_monitoring',
    'dump_all_statuses',
    'InvocationResult',
    'invoke',
    'run_demo',
    'BackoffEvent',
    'ExponentialBackoff',
    'ReconnectReporter',
    'ConnectionSupervisor',
    'ClientContext',
    'CNCFleetClient',
]
