"""
Instance Manager

Creates machine instances from the type registry. Each machine owns
exactly one spindle; both live for the whole process and are indexed
by their stable instance id.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional
import logging

from .enums import MachineStatus, SpindleSpeed
from .type_registry import (
    ConfigurationError,
    DEFAULT_TOOL,
    MachineKind,
    ObjectTypeSpec,
    SPINDLE,
    TypeRegistry,
    kind_from_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpindleState:
    """Spindle (Mandrino) state."""
    speed_level: SpindleSpeed = SpindleSpeed.SPEED_1


@dataclass(frozen=True)
class ProPayload:
    """State that only Pro machines carry."""
    ai_active: bool = False


@dataclass(frozen=True)
class MachineState:
    """
    Immutable snapshot of a machine and its spindle.

    `pro` is None for base machines; its presence is the Pro capability.
    """
    status: MachineStatus = MachineStatus.OFF
    tool: str = DEFAULT_TOOL
    parts_produced: int = 0
    energy_draw: float = 0.0
    spindle: SpindleState = field(default_factory=SpindleState)
    pro: Optional[ProPayload] = None

    @property
    def speed_level(self) -> SpindleSpeed:
        return self.spindle.speed_level

    @property
    def ai_active(self) -> Optional[bool]:
        return self.pro.ai_active if self.pro is not None else None

    def supports_predictive_maintenance(self) -> bool:
        return self.pro is not None

    def with_status(self, status: MachineStatus, energy_draw: float) -> "MachineState":
        return replace(self, status=status, energy_draw=energy_draw)

    def with_speed(self, speed: SpindleSpeed, energy_draw: float) -> "MachineState":
        return replace(self, spindle=SpindleState(speed_level=speed), energy_draw=energy_draw)

    def with_ai_active(self, ai_active: bool) -> "MachineState":
        return replace(self, pro=ProPayload(ai_active=ai_active))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status.name,
            'tool': self.tool,
            'parts_produced': self.parts_produced,
            'energy_draw': self.energy_draw,
            'speed_level': self.speed_level.value,
        }
        if self.pro is not None:
            data['ai_active'] = self.pro.ai_active
        return data


def initial_state(kind: MachineKind) -> MachineState:
    """Default state of a freshly created machine."""
    return MachineState(pro=ProPayload() if kind is MachineKind.PRO else None)


class MachineInstance:
    """
    A machine in the fleet.

    Identity (id, kind, type) is fixed at construction; only `state`
    changes, and only through the state & energy engine.
    """

    __slots__ = ('_machine_id', '_kind', '_type_spec', 'state')

    def __init__(self, machine_id: str, kind: MachineKind, type_spec: ObjectTypeSpec):
        self._machine_id = machine_id
        self._kind = kind
        self._type_spec = type_spec
        self.state = initial_state(kind)

    @property
    def machine_id(self) -> str:
        return self._machine_id

    @property
    def kind(self) -> MachineKind:
        return self._kind

    @property
    def type_spec(self) -> ObjectTypeSpec:
        return self._type_spec

    @property
    def spindle_id(self) -> str:
        return f"{self._machine_id}.{SPINDLE}"

    def supports_predictive_maintenance(self) -> bool:
        return self._kind.supports_predictive_maintenance()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine_id': self._machine_id,
            'kind': self._kind.value,
            'type': self._type_spec.browse_name,
            'spindle_id': self.spindle_id,
            **self.state.to_dict(),
        }

    def __repr__(self) -> str:
        return f"MachineInstance({self._machine_id!r}, {self._kind.name})"


class InstanceManager:
    """Arena of machine instances indexed by instance id."""

    def __init__(self, registry: TypeRegistry):
        self.registry = registry
        self._instances: Dict[str, MachineInstance] = {}

    def instantiate(self, kind: MachineKind, machine_id: str) -> MachineInstance:
        """
        Create a machine of the given kind with default state and its spindle.

        Raises:
            ConfigurationError: duplicate id, or id not following the
                CNC<N> / CNCPro<N> naming convention for its kind
        """
        if machine_id in self._instances:
            raise ConfigurationError(f"Duplicate machine id: {machine_id}")
        if kind_from_name(machine_id) is not kind:
            raise ConfigurationError(
                f"Machine id {machine_id!r} does not follow the naming convention "
                f"for {kind.name} machines"
            )

        instance = MachineInstance(machine_id, kind, self.registry.machine_type(kind))
        self._instances[machine_id] = instance
        logger.info(f"Created machine {machine_id} ({instance.type_spec.browse_name})")
        return instance

    def instantiate_fleet(self, machine_ids: List[str]) -> List[MachineInstance]:
        """Create every machine in the list, deriving kind from the id."""
        created = []
        for machine_id in machine_ids:
            kind = kind_from_name(machine_id)
            if kind is None:
                raise ConfigurationError(
                    f"Cannot infer machine kind from id {machine_id!r}"
                )
            created.append(self.instantiate(kind, machine_id))
        return created

    def get(self, machine_id: str) -> Optional[MachineInstance]:
        return self._instances.get(machine_id)

    def all(self) -> List[MachineInstance]:
        return list(self._instances.values())

    def __iter__(self) -> Iterator[MachineInstance]:
        return iter(list(self._instances.values()))

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, machine_id: object) -> bool:
        return machine_id in self._instances
