"""
OPC UA Server - CNC Fleet Information Model

Exposes the CNC fleet over OPC UA:

    Objects
      ├── CNC1 (MacchinaCNCType)
      │     ├── Status, Utensile, PezziProdotti, ConsumoEnergetico
      │     ├── ChangeStatus(NewStatus: Int32) -> Success: Boolean
      │     └── Mandrino (MandrinoType)
      │           ├── Velocita
      │           └── CambiareVelocita(NewSpeed: Int32) -> Success: Boolean
      └── CNCPro1 (MacchinaCNCProType, subtype of MacchinaCNCType)
            ├── ...all of the above
            ├── StatusAI
            └── ManutenzionePredittiva() -> Success: Boolean

Method calls are serialized per machine (the machine and its spindle
share one lock) and evaluated by the state & energy engine; the
resulting state is then mirrored into the address space.

Requirements:
    pip install asyncua>=1.0.0

Usage:
    python -m cnc_fleet.services.edge.opcua_server
"""

import asyncio
import logging
import signal
import socket
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from asyncua import Server, ua
from asyncua.common.methods import uamethod

from ... import __version__
from ...config import get_config
from ..machines import (
    ConfigurationError,
    InstanceManager,
    MachineInstance,
    MachineState,
    ObjectTypeSpec,
    Outcome,
    OutcomeCode,
    TypeRegistry,
    apply_operation,
)
from ..machines.type_registry import (
    AI_STATUS,
    AttributeSpec,
    ArgumentSpec,
    OperationSpec,
    ENERGY_DRAW,
    SPEED,
    SPINDLE,
    STATUS,
)

logger = logging.getLogger(__name__)


VARIANT_TYPES: Dict[str, ua.VariantType] = {
    'Boolean': ua.VariantType.Boolean,
    'Int32': ua.VariantType.Int32,
    'UInt32': ua.VariantType.UInt32,
    'Double': ua.VariantType.Double,
    'String': ua.VariantType.String,
}

OUTCOME_STATUS_CODES: Dict[OutcomeCode, int] = {
    OutcomeCode.INVALID_ARGUMENT: ua.StatusCodes.BadInvalidArgument,
    OutcomeCode.INVALID_STATE: ua.StatusCodes.BadInvalidState,
    OutcomeCode.INTERNAL_ERROR: ua.StatusCodes.BadInternalError,
    OutcomeCode.NOT_FOUND: ua.StatusCodes.BadNotFound,
}


def _variant(spec: AttributeSpec, value: Any) -> ua.Variant:
    return ua.Variant(value, VARIANT_TYPES[spec.data_type])


def _ua_argument(spec: ArgumentSpec) -> ua.Argument:
    """Build a method argument description."""
    argument = ua.Argument()
    argument.Name = spec.name
    argument.DataType = ua.NodeId(getattr(ua.ObjectIds, spec.data_type))
    argument.ValueRank = -1
    argument.ArrayDimensions = []
    argument.Description = ua.LocalizedText(spec.description)
    return argument


class CNCFleetServer:
    """
    OPC UA server for the CNC fleet.

    Lifecycle:
        server = CNCFleetServer()
        await server.initialize()      # catalog, types, instances, address space
        url = await server.start()     # accept connections
        ...
        await server.shutdown()

    or `await server.serve(stop_event)` to run until the event is set.
    """

    def __init__(self, config=None):
        self.config = config or get_config()
        self.endpoint = self.config.listen_endpoint()
        self.server_name = self.config.PRODUCT_NAME
        self.namespace_uri = self.config.NAMESPACE_URI

        self.registry = TypeRegistry()
        self.instances = InstanceManager(self.registry)

        # Server state
        self._server: Optional[Server] = None
        self._running = False
        self._namespace_idx: int = 0

        # One lock per machine, covering its spindle
        self._locks: Dict[str, asyncio.Lock] = {}

        # Protocol boundary lookup tables
        self._type_nodes: Dict[str, Any] = {}
        self._machine_nodes: Dict[str, Any] = {}
        self._machine_by_node: Dict[ua.NodeId, str] = {}
        self._variables: Dict[str, Dict[str, Any]] = {}

        logger.info(f"OPC UA Server configured: {self.endpoint}")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def namespace_index(self) -> int:
        return self._namespace_idx

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def build_model(self) -> None:
        """Define the type registry and create the configured fleet."""
        if self.registry.frozen:
            raise ConfigurationError("Model already built")

        self.registry.define_all()
        for instance in self.instances.instantiate_fleet(self.config.fleet()):
            self._locks[instance.machine_id] = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Build the model and materialize it in the OPC UA address space.

        Raises:
            ConfigurationError: inconsistent model definition
        """
        logger.info("Initializing OPC UA server...")
        self.build_model()

        self._server = Server()
        await self._server.init()
        self._server.set_endpoint(self.endpoint)
        self._server.set_server_name(self.server_name)
        await self._server.set_build_info(
            self.config.PRODUCT_URI,
            self.config.MANUFACTURER_NAME,
            self.config.PRODUCT_NAME,
            __version__,
            self.config.BUILD_NUMBER,
            self.config.BUILD_DATE,
        )

        self._namespace_idx = await self._server.register_namespace(self.namespace_uri)

        await self._create_information_model()
        await self._create_machine_nodes()
        await self._log_initial_spindle_speed()

        logger.info("OPC UA server initialized")

    async def start(self) -> str:
        """
        Start accepting connections.

        Returns:
            Reachable endpoint URL
        """
        if self._server is None:
            raise RuntimeError("Server not initialized")

        await self._server.start()
        self._running = True

        endpoint_url = self.reachable_endpoint()
        logger.info(f"OPC UA server listening on: {endpoint_url}")
        return endpoint_url

    async def shutdown(self) -> None:
        """Stop accepting work and release the runtime."""
        if not self._running:
            return

        self._running = False
        if self._server is not None:
            await self._server.stop()

        logger.info("OPC UA server stopped")

    async def serve(self, stop_event: asyncio.Event) -> None:
        """Initialize, start, and run until stop_event is set."""
        await self.initialize()
        await self.start()
        logger.info("Press Ctrl+C to stop.")

        try:
            await stop_event.wait()
            logger.info("Stop requested, shutting down server...")
        finally:
            await self.shutdown()

    def reachable_endpoint(self) -> str:
        """Endpoint URL with the wildcard bind address replaced by the host name."""
        host = self.config.OPCUA_HOST
        if host in ('0.0.0.0', ''):
            host = socket.gethostname()
        return f"opc.tcp://{host}:{self.config.OPCUA_PORT}{self.config.OPCUA_RESOURCE_PATH}"

    # =========================================================================
    # ADDRESS SPACE
    # =========================================================================

    async def _create_information_model(self) -> None:
        """
        Create the object types:
        - MandrinoType
        - MacchinaCNCType (with a Mandrino component)
        - MacchinaCNCProType (HasSubtype of MacchinaCNCType)
        """
        base_object_type = self._server.nodes.base_object_type

        for spec in (
            self.registry.spindle_type(),
            self.registry.get('MacchinaCNCType'),
            self.registry.get('MacchinaCNCProType'),
        ):
            parent = (
                self._type_nodes[spec.supertype]
                if spec.supertype else base_object_type
            )
            self._type_nodes[spec.browse_name] = await self._create_type_node(parent, spec)

        logger.info("CNC information model created")

    async def _create_type_node(self, parent: Any, spec: ObjectTypeSpec) -> Any:
        """Create an ObjectType node with its mandatory variables and methods."""
        idx = self._namespace_idx
        type_node = await parent.add_object_type(idx, spec.browse_name)

        for attribute in spec.attributes:
            variable = await type_node.add_variable(
                idx, attribute.browse_name, _variant(attribute, attribute.default)
            )
            await variable.set_modelling_rule(True)

        for name, labels in spec.enum_labels.items():
            await type_node.add_property(
                idx, name, ua.Variant(list(labels), ua.VariantType.String)
            )

        for operation in spec.operations:
            await self._add_method(type_node, operation)

        for component in spec.components:
            await type_node.add_object(
                idx, component.browse_name,
                objecttype=self._type_nodes[component.type_name].nodeid,
            )

        return type_node

    async def _add_method(self, parent: Any, op_spec: OperationSpec) -> Any:
        return await parent.add_method(
            self._namespace_idx,
            op_spec.browse_name,
            self._method_handler(op_spec.browse_name),
            [_ua_argument(arg) for arg in op_spec.inputs],
            [_ua_argument(arg) for arg in op_spec.outputs],
        )

    async def _create_machine_nodes(self) -> None:
        for instance in self.instances:
            await self._create_machine_node(instance)

    async def _create_machine_node(self, instance: MachineInstance) -> None:
        """
        Create the object tree for one machine under Objects.

        Variables come from type instantiation; the Mandrino object and
        the methods are added per instance and bound to this server.
        """
        idx = self._namespace_idx
        objects = self._server.nodes.objects
        machine_type = instance.type_spec
        spindle_type = self.registry.spindle_type()

        try:
            machine_node = await objects.add_object(
                ua.NodeId(instance.machine_id, idx),
                ua.QualifiedName(instance.machine_id, idx),
                objecttype=self._type_nodes[machine_type.browse_name].nodeid,
            )
            variables = {}
            for attribute in self.registry.attributes(machine_type):
                variables[attribute.browse_name] = await self._ensure_variable(
                    machine_node, attribute
                )

            spindle_node = await machine_node.add_object(
                ua.NodeId(instance.spindle_id, idx),
                ua.QualifiedName(SPINDLE, idx),
                objecttype=self._type_nodes[spindle_type.browse_name].nodeid,
            )
            for attribute in spindle_type.attributes:
                variables[attribute.browse_name] = await self._ensure_variable(
                    spindle_node, attribute
                )

            for operation in self.registry.operations(machine_type):
                await self._add_method(machine_node, operation)
            for operation in spindle_type.operations:
                await self._add_method(spindle_node, operation)

        except ua.UaError as e:
            raise ConfigurationError(
                f"Failed to create OPC UA nodes for {instance.machine_id}: {e}"
            ) from e

        self._machine_nodes[instance.machine_id] = machine_node
        self._machine_by_node[machine_node.nodeid] = instance.machine_id
        self._machine_by_node[spindle_node.nodeid] = instance.machine_id
        self._variables[instance.machine_id] = variables

        logger.info(f"Created OPC UA node for: {instance.machine_id}")

    async def _ensure_variable(self, parent: Any, attribute: AttributeSpec) -> Any:
        """Instantiated child variable, added if the runtime did not copy it."""
        try:
            return await parent.get_child(f"{self._namespace_idx}:{attribute.browse_name}")
        except ua.UaStatusCodeError:
            logger.debug(f"Adding {attribute.browse_name} to instance explicitly")
            return await parent.add_variable(
                self._namespace_idx, attribute.browse_name,
                _variant(attribute, attribute.default),
            )

    async def _log_initial_spindle_speed(self) -> None:
        instances = self.instances.all()
        if not instances:
            return
        first = instances[0]
        speed = await self._variables[first.machine_id][SPEED].read_value()
        logger.info(f"Initial spindle speed of {first.machine_id}: {speed}")

    # =========================================================================
    # METHODS
    # =========================================================================

    def _method_handler(self, operation: str):
        """
        OPC UA callback for an operation.

        The calling object (machine or spindle node) identifies the machine.
        Failed outcomes are returned as the matching Bad status code,
        which the runtime sets as the call result status.
        """

        @uamethod
        async def handler(parent, *args):
            machine_id = self._machine_by_node.get(parent)
            if machine_id is None:
                logger.warning(f"{operation} called on unknown object {parent}")
                return ua.StatusCode(ua.StatusCodes.BadNotFound)

            outcome = await self.execute(machine_id, operation, *args)
            if not outcome.success:
                return ua.StatusCode(OUTCOME_STATUS_CODES[outcome.code])
            return True

        return handler

    async def execute(self, machine_id: str, operation: str, *args: Any) -> Outcome:
        """
        Run an operation on a machine under that machine's lock.

        The new state is committed only on success and then mirrored
        into the address space.
        """
        instance = self.instances.get(machine_id)
        if instance is None:
            return Outcome(OutcomeCode.NOT_FOUND, f"Unknown machine: {machine_id}")

        async with self._locks[machine_id]:
            logger.info(f"Called {operation} on {machine_id} with {list(args)}")
            previous = instance.state
            new_state, outcome = apply_operation(previous, operation, *args)
            if not outcome.success:
                logger.warning(f"{operation} on {machine_id} rejected: {outcome.code.name} {outcome.message}")
                return outcome

            instance.state = new_state
            try:
                await self._publish_state(machine_id, previous, new_state)
            except Exception as e:
                logger.error(f"Failed to update OPC UA nodes of {machine_id}: {e}")
                return Outcome(OutcomeCode.INTERNAL_ERROR, str(e))

        logger.info(f"{machine_id} updated: {new_state.to_dict()}")
        return outcome

    async def _publish_state(
        self,
        machine_id: str,
        previous: MachineState,
        current: MachineState,
    ) -> None:
        """Write the changed attributes to their OPC UA variables."""
        variables = self._variables.get(machine_id)
        if not variables:
            return

        for name, value in self._changed_values(previous, current):
            await variables[name].write_value(value)

    @staticmethod
    def _changed_values(
        previous: MachineState,
        current: MachineState,
    ) -> List[Tuple[str, ua.Variant]]:
        changes = []
        if previous.status != current.status:
            changes.append((STATUS, ua.Variant(current.status.value, ua.VariantType.Int32)))
        if previous.speed_level != current.speed_level:
            changes.append((SPEED, ua.Variant(current.speed_level.value, ua.VariantType.Int32)))
        if previous.energy_draw != current.energy_draw:
            changes.append((ENERGY_DRAW, ua.Variant(current.energy_draw, ua.VariantType.Double)))
        if previous.ai_active != current.ai_active:
            changes.append((AI_STATUS, ua.Variant(current.ai_active, ua.VariantType.Boolean)))
        return changes

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_machine_node(self, machine_id: str) -> Optional[Any]:
        return self._machine_nodes.get(machine_id)

    def get_server_status(self) -> Dict[str, Any]:
        """Get server status summary."""
        return {
            'endpoint': self.endpoint,
            'server_name': self.server_name,
            'running': self._running,
            'namespace_uri': self.namespace_uri,
            'namespace_index': self._namespace_idx,
            'machine_count': len(self.instances),
            'machines': [instance.to_dict() for instance in self.instances],
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }


# =============================================================================
# ENTRY POINT
# =============================================================================

async def main() -> int:
    """Run the server until SIGINT/SIGTERM."""
    config = get_config()
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    server = CNCFleetServer(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.serve(stop_event)
    except Exception as e:
        logger.error(f"Fatal error while starting OPC UA server: {e}")
        return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
