"""
Pytest configuration and fixtures for the CNC fleet test suite.

The client-side tests run against an in-memory fleet of fake nodes that
mimic the asyncua Node/Client/Subscription surface used by the client
(browse, read, call, subscribe). Fake method nodes evaluate calls with
the real state & energy engine.
"""

import pytest
import sys
import os
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

from asyncua import ua

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cnc_fleet.config import TestingConfig
from cnc_fleet.services.machines import (
    MachineKind,
    TypeRegistry,
    InstanceManager,
    apply_operation,
    initial_state,
    kind_from_name,
)
from cnc_fleet.services.machines.type_registry import (
    AI_STATUS,
    CHANGE_SPINDLE_SPEED,
    CHANGE_STATUS,
    DEFAULT_TOOL,
    ENERGY_DRAW,
    PARTS_PRODUCED,
    PREDICTIVE_MAINTENANCE,
    SPEED,
    SPINDLE,
    STATUS,
    TOOL,
)
from cnc_fleet.services.edge.opcua_server import OUTCOME_STATUS_CODES


# ============================================================================
# Fake asyncua surface
# ============================================================================

class FakeNode:
    """Minimal stand-in for asyncua.Node."""

    def __init__(self, name: str, node_class=ua.NodeClass.Object, value: Any = None,
                 path: Optional[str] = None, method: Optional[Callable] = None):
        self.name = name
        self.node_class = node_class
        self.value = value
        self.nodeid = ua.NodeId(path or name, 2)
        self.method = method
        self.children: List["FakeNode"] = []
        self.calls: List[tuple] = []

    def add(self, name: str, node_class=ua.NodeClass.Object, value: Any = None,
            method: Optional[Callable] = None) -> "FakeNode":
        child = FakeNode(name, node_class, value,
                         path=f"{self.nodeid.Identifier}.{name}", method=method)
        self.children.append(child)
        return child

    def add_variable(self, name: str, value: Any) -> "FakeNode":
        return self.add(name, ua.NodeClass.Variable, value)

    def add_method(self, name: str, method: Callable) -> "FakeNode":
        return self.add(name, ua.NodeClass.Method, method=method)

    def remove(self, name: str) -> None:
        self.children = [c for c in self.children if c.name != name]

    async def get_children(self, refs=None, nodeclassmask=ua.NodeClass.Unspecified):
        if not nodeclassmask:
            return list(self.children)
        return [c for c in self.children if c.node_class == nodeclassmask]

    async def read_browse_name(self):
        return ua.QualifiedName(self.name, 2)

    async def read_value(self):
        if isinstance(self.value, Exception):
            raise self.value
        return self.value

    async def call_method(self, method: "FakeNode", *args):
        values = [arg.Value if isinstance(arg, ua.Variant) else arg for arg in args]
        self.calls.append((method.name, values))
        return method.method(*values)

    def __repr__(self):
        return f"FakeNode({self.nodeid.Identifier!r})"


class FakeSubscription:
    """Records monitored items and delivers notifications on demand."""

    def __init__(self, period: float, handler: Any):
        self.period = period
        self.handler = handler
        self.items: List[Dict[str, Any]] = []
        self.rejected: set = set()

    async def subscribe_data_change(self, node, attr=None, queuesize=0,
                                    monitoring=None, sampling_interval=0.0):
        if node.nodeid in self.rejected:
            raise ua.UaStatusCodeError(ua.StatusCodes.BadNodeIdUnknown)
        self.items.append({
            'node': node,
            'queuesize': queuesize,
            'sampling_interval': sampling_interval,
        })
        return len(self.items)

    def publish(self, node: FakeNode, values: List[Any], queuesize: int) -> None:
        """Deliver a burst of values through a queue of the given depth (oldest dropped)."""
        for value in list(values)[-queuesize:]:
            self.handler.datachange_notification(node, value, SimpleNamespace())

    def monitored_names(self) -> List[str]:
        return [str(item['node'].nodeid.Identifier) for item in self.items]


class FakeClient:
    """Connected client exposing nodes.root and create_subscription."""

    def __init__(self, root: FakeNode):
        self.nodes = SimpleNamespace(root=root)
        self.subscriptions: List[FakeSubscription] = []
        self.connect = AsyncMock()
        self.disconnect = AsyncMock()
        self.check_connection = AsyncMock()

    async def create_subscription(self, period, handler):
        subscription = FakeSubscription(period, handler)
        self.subscriptions.append(subscription)
        return subscription


class FakeMachine:
    """A machine in the fake address space, backed by the real engine."""

    def __init__(self, objects: FakeNode, machine_id: str):
        self.machine_id = machine_id
        self.kind = kind_from_name(machine_id)
        self.state = initial_state(self.kind)

        self.node = objects.add(machine_id)
        self.status = self.node.add_variable(STATUS, 0)
        self.tool = self.node.add_variable(TOOL, DEFAULT_TOOL)
        self.parts = self.node.add_variable(PARTS_PRODUCED, 0)
        self.energy = self.node.add_variable(ENERGY_DRAW, 0.0)
        self.node.add_method(CHANGE_STATUS, lambda value: self._call(CHANGE_STATUS, value))

        self.spindle = self.node.add(SPINDLE)
        self.speed = self.spindle.add_variable(SPEED, 1)
        self.spindle.add_method(
            CHANGE_SPINDLE_SPEED, lambda value: self._call(CHANGE_SPINDLE_SPEED, value)
        )

        self.ai_status = None
        if self.kind is MachineKind.PRO:
            self.ai_status = self.node.add_variable(AI_STATUS, False)
            self.node.add_method(
                PREDICTIVE_MAINTENANCE, lambda: self._call(PREDICTIVE_MAINTENANCE)
            )

    def _call(self, operation: str, *args):
        state, outcome = apply_operation(self.state, operation, *args)
        if not outcome.success:
            raise ua.UaStatusCodeError(OUTCOME_STATUS_CODES[outcome.code])
        self.state = state
        self.status.value = state.status.value
        self.energy.value = state.energy_draw
        self.speed.value = state.speed_level.value
        if self.ai_status is not None:
            self.ai_status.value = state.ai_active
        return True


class FakeFleet:
    """Root -> Objects -> machines, plus unrelated objects."""

    def __init__(self, machine_ids: List[str]):
        self.root = FakeNode("Root")
        self.objects = self.root.add("Objects")
        self.objects.add("Server")
        self.objects.add("Conveyor1")
        self.objects.add("CNCX")
        self.objects.add_variable("CNC9", 0)  # not an object
        self.machines: Dict[str, FakeMachine] = {
            machine_id: FakeMachine(self.objects, machine_id) for machine_id in machine_ids
        }
        self.client = FakeClient(self.root)

    def __getitem__(self, machine_id: str) -> FakeMachine:
        return self.machines[machine_id]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_config():
    """Testing configuration."""
    return TestingConfig


@pytest.fixture
def registry():
    """Frozen type registry with the full CNC type set."""
    registry = TypeRegistry()
    registry.define_all()
    return registry


@pytest.fixture
def instance_manager(registry):
    """Instance manager over the default fleet."""
    manager = InstanceManager(registry)
    manager.instantiate_fleet(["CNC1", "CNC2", "CNC3", "CNCPro1"])
    return manager


@pytest.fixture
def fake_fleet():
    """Fake address space with CNC1, CNC2, CNC3, CNCPro1."""
    return FakeFleet(["CNC1", "CNC2", "CNC3", "CNCPro1"])
