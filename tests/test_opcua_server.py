"""
OPC UA Server Tests

The address-space tests initialize a real asyncua Server in-process
(no network listener is started).
"""

import asyncio
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

from asyncua import ua

from cnc_fleet.config import TestingConfig
from cnc_fleet.services.edge.opcua_server import CNCFleetServer, OUTCOME_STATUS_CODES
from cnc_fleet.services.machines import (
    ConfigurationError,
    MachineStatus,
    OutcomeCode,
    SpindleSpeed,
    energy_for,
)


class LocalhostConfig(TestingConfig):
    OPCUA_HOST = "127.0.0.1"
    OPCUA_PORT = 48400


@pytest.fixture
def model_server():
    """Server with the model built but no address space."""
    server = CNCFleetServer(TestingConfig)
    server.build_model()
    return server


@pytest_asyncio.fixture
async def ua_server():
    """Server with a fully materialized address space."""
    server = CNCFleetServer(TestingConfig)
    await server.initialize()
    return server


async def _child(node, *names):
    for name in names:
        node = await node.get_child(f"2:{name}")
    return node


class TestModel:
    """Fleet construction and configuration."""

    def test_default_fleet(self, model_server):
        assert [i.machine_id for i in model_server.instances] == [
            "CNC1", "CNC2", "CNC3", "CNCPro1"
        ]
        assert model_server.registry.frozen

    def test_build_model_twice(self, model_server):
        with pytest.raises(ConfigurationError):
            model_server.build_model()

    def test_bad_fleet_entry(self):
        class BadFleet(TestingConfig):
            FLEET_MACHINES = "CNC1,Press1"

        with pytest.raises(ConfigurationError):
            CNCFleetServer(BadFleet).build_model()

    def test_endpoint(self, model_server):
        assert model_server.endpoint == "opc.tcp://0.0.0.0:4334/UA/CNC"

    def test_reachable_endpoint_uses_hostname_for_wildcard(self, model_server):
        with patch("cnc_fleet.services.edge.opcua_server.socket.gethostname",
                   return_value="cell-7"):
            assert model_server.reachable_endpoint() == "opc.tcp://cell-7:4334/UA/CNC"

    def test_reachable_endpoint_explicit_host(self):
        server = CNCFleetServer(LocalhostConfig)
        assert server.reachable_endpoint() == "opc.tcp://127.0.0.1:48400/UA/CNC"

    def test_server_status(self, model_server):
        status = model_server.get_server_status()

        assert status['running'] is False
        assert status['machine_count'] == 4
        assert status['machines'][3]['machine_id'] == "CNCPro1"


class TestExecute:
    """Operation execution against the model."""

    @pytest.mark.asyncio
    async def test_status_then_speed(self, model_server):
        outcome = await model_server.execute("CNC1", "ChangeStatus", 1)
        assert outcome.success

        outcome = await model_server.execute("CNC1", "CambiareVelocita", 3)
        assert outcome.success

        state = model_server.instances.get("CNC1").state
        assert state.status is MachineStatus.ON
        assert state.speed_level is SpindleSpeed.SPEED_3
        assert state.energy_draw == 170.5

    @pytest.mark.asyncio
    async def test_failed_outcome_does_not_commit(self, model_server):
        before = model_server.instances.get("CNCPro1").state

        outcome = await model_server.execute("CNCPro1", "CambiareVelocita", 2)

        assert outcome.code is OutcomeCode.INVALID_STATE
        assert model_server.instances.get("CNCPro1").state is before

    @pytest.mark.asyncio
    async def test_maintenance_on_pro(self, model_server):
        outcome = await model_server.execute("CNCPro1", "ManutenzionePredittiva")

        assert outcome.success
        assert model_server.instances.get("CNCPro1").state.ai_active is True

    @pytest.mark.asyncio
    async def test_maintenance_on_base(self, model_server):
        outcome = await model_server.execute("CNC2", "ManutenzionePredittiva")
        assert outcome.code is OutcomeCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_machine(self, model_server):
        outcome = await model_server.execute("CNC99", "ChangeStatus", 1)
        assert outcome.code is OutcomeCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_concurrent_calls_keep_energy_consistent(self, model_server):
        calls = []
        for i in range(40):
            if i % 3 == 0:
                calls.append(model_server.execute("CNC1", "ChangeStatus", i % 2))
            else:
                calls.append(model_server.execute("CNC1", "CambiareVelocita", (i % 5) + 1))
        calls.append(model_server.execute("CNC2", "ChangeStatus", 2))

        await asyncio.gather(*calls)

        state = model_server.instances.get("CNC1").state
        allowed = {energy_for(state.status)}
        if state.status is MachineStatus.ON:
            allowed.add(energy_for(MachineStatus.ON, state.speed_level))
        assert state.energy_draw in allowed
        assert model_server.instances.get("CNC2").state.energy_draw == 25.0

    @pytest.mark.asyncio
    async def test_calls_on_one_machine_are_serialized(self, model_server):
        active = []
        overlaps = []

        async def slow_publish(machine_id, previous, current):
            if machine_id in active:
                overlaps.append(machine_id)
            active.append(machine_id)
            await asyncio.sleep(0.01)
            active.remove(machine_id)

        with patch.object(model_server, "_publish_state", side_effect=slow_publish):
            await asyncio.gather(
                model_server.execute("CNC1", "ChangeStatus", 1),
                model_server.execute("CNC1", "CambiareVelocita", 4),
                model_server.execute("CNC1", "ChangeStatus", 2),
                model_server.execute("CNC3", "ChangeStatus", 1),
            )

        assert overlaps == []

    @pytest.mark.asyncio
    async def test_publish_failure_is_internal_error(self, model_server):
        with patch.object(model_server, "_publish_state",
                          AsyncMock(side_effect=RuntimeError("node gone"))):
            outcome = await model_server.execute("CNC1", "ChangeStatus", 1)

        assert outcome.code is OutcomeCode.INTERNAL_ERROR

    def test_status_code_mapping(self):
        assert OUTCOME_STATUS_CODES[OutcomeCode.INVALID_ARGUMENT] == ua.StatusCodes.BadInvalidArgument
        assert OUTCOME_STATUS_CODES[OutcomeCode.INVALID_STATE] == ua.StatusCodes.BadInvalidState
        assert OUTCOME_STATUS_CODES[OutcomeCode.INTERNAL_ERROR] == ua.StatusCodes.BadInternalError
        assert OUTCOME_STATUS_CODES[OutcomeCode.NOT_FOUND] == ua.StatusCodes.BadNotFound


class TestAddressSpace:
    """Nodes created in a real asyncua address space."""

    @pytest.mark.asyncio
    async def test_machine_variables(self, ua_server):
        cnc = ua_server.get_machine_node("CNC1")

        assert await (await _child(cnc, "Status")).read_value() == 0
        assert await (await _child(cnc, "Utensile")).read_value() == "Default Utensile"
        assert await (await _child(cnc, "PezziProdotti")).read_value() == 0
        assert await (await _child(cnc, "ConsumoEnergetico")).read_value() == 0.0
        assert await (await _child(cnc, "Mandrino", "Velocita")).read_value() == 1

    @pytest.mark.asyncio
    async def test_pro_machine_extras(self, ua_server):
        pro = ua_server.get_machine_node("CNCPro1")

        assert await (await _child(pro, "StatusAI")).read_value() is False
        assert await _child(pro, "ManutenzionePredittiva") is not None
        assert await _child(pro, "Mandrino", "CambiareVelocita") is not None

    @pytest.mark.asyncio
    async def test_base_machine_has_no_pro_members(self, ua_server):
        cnc = ua_server.get_machine_node("CNC2")

        with pytest.raises(ua.UaStatusCodeError):
            await _child(cnc, "StatusAI")

    @pytest.mark.asyncio
    async def test_machines_live_under_objects(self, ua_server):
        objects = ua_server._server.nodes.objects
        names = [(await child.read_browse_name()).Name for child in await objects.get_children()]

        for machine_id in ("CNC1", "CNC2", "CNC3", "CNCPro1"):
            assert machine_id in names

    @pytest.mark.asyncio
    async def test_execute_mirrors_state(self, ua_server):
        await ua_server.execute("CNC1", "ChangeStatus", 1)
        await ua_server.execute("CNC1", "CambiareVelocita", 3)
        await ua_server.execute("CNCPro1", "ManutenzionePredittiva")

        cnc = ua_server.get_machine_node("CNC1")
        assert await (await _child(cnc, "Status")).read_value() == 1
        assert await (await _child(cnc, "ConsumoEnergetico")).read_value() == 170.5
        assert await (await _child(cnc, "Mandrino", "Velocita")).read_value() == 3

        pro = ua_server.get_machine_node("CNCPro1")
        assert await (await _child(pro, "StatusAI")).read_value() is True

    @pytest.mark.asyncio
    async def test_method_call_through_runtime(self, ua_server):
        cnc = ua_server.get_machine_node("CNC1")
        method = await _child(cnc, "ChangeStatus")

        result = await cnc.call_method(method, ua.Variant(1, ua.VariantType.Int32))

        assert result is True
        assert ua_server.instances.get("CNC1").state.status is MachineStatus.ON

    @pytest.mark.asyncio
    async def test_rejected_call_returns_bad_status(self, ua_server):
        spindle = await _child(ua_server.get_machine_node("CNC3"), "Mandrino")
        method = await _child(spindle, "CambiareVelocita")

        with pytest.raises(ua.UaStatusCodeError) as excinfo:
            await spindle.call_method(method, ua.Variant(2, ua.VariantType.Int32))

        assert excinfo.value.code == ua.StatusCodes.BadInvalidState

    @pytest.mark.asyncio
    async def test_invalid_status_returns_bad_invalid_argument(self, ua_server):
        cnc = ua_server.get_machine_node("CNC1")
        method = await _child(cnc, "ChangeStatus")

        with pytest.raises(ua.UaStatusCodeError) as excinfo:
            await cnc.call_method(method, ua.Variant(7, ua.VariantType.Int32))

        assert excinfo.value.code == ua.StatusCodes.BadInvalidArgument
        assert ua_server.instances.get("CNC1").state.status is MachineStatus.OFF

    @pytest.mark.asyncio
    async def test_handler_on_unknown_object_returns_bad_not_found(self, ua_server):
        handler = ua_server._method_handler("ChangeStatus")

        result = await handler(ua.NodeId("Lathe1", ua_server.namespace_index),
                               ua.Variant(1, ua.VariantType.Int32))

        assert result == ua.StatusCode(ua.StatusCodes.BadNotFound)

    @pytest.mark.asyncio
    async def test_shutdown_before_start_is_noop(self, ua_server):
        await ua_server.shutdown()
        await ua_server.shutdown()
        assert ua_server.running is False
