"""
State & Energy Engine

Guarded state transitions for CNC machines. Each operation is a pure
function `(state, *args) -> (new_state, outcome)`; callers commit the
new state only when the outcome is successful. Energy draw is derived
from status and, while On, from spindle speed:

    Off   -> 0.0 kW
    On    -> 150.5 kW at speed 1, +10.0 kW per level above 1
    Alarm -> 25.0 kW

Any status may follow any other status.
"""

from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple
import logging

from .enums import MachineStatus, SpindleSpeed, parse_speed, parse_status
from .instance_manager import MachineState
from .type_registry import (
    CHANGE_SPINDLE_SPEED,
    CHANGE_STATUS,
    PREDICTIVE_MAINTENANCE,
)

logger = logging.getLogger(__name__)


ENERGY_BY_STATUS: Dict[MachineStatus, float] = {
    MachineStatus.OFF: 0.0,
    MachineStatus.ON: 150.5,
    MachineStatus.ALARM: 25.0,
}

ENERGY_PER_SPEED_LEVEL = 10.0


class OutcomeCode(Enum):
    """Result classification of an operation."""
    GOOD = "good"
    INVALID_ARGUMENT = "invalid_argument"
    INVALID_STATE = "invalid_state"
    INTERNAL_ERROR = "internal_error"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Outcome:
    """Structured success/failure result of an operation."""
    code: OutcomeCode
    message: str = ""

    @property
    def success(self) -> bool:
        return self.code is OutcomeCode.GOOD

    @classmethod
    def ok(cls) -> "Outcome":
        return cls(OutcomeCode.GOOD)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'code': self.code.name,
            'message': self.message,
        }


OperationResult = Tuple[MachineState, Outcome]


def energy_for(status: MachineStatus, speed: Optional[SpindleSpeed] = None) -> float:
    """Energy draw in kW for a status (and spindle speed while On)."""
    if status is MachineStatus.ON and speed is not None:
        return ENERGY_BY_STATUS[MachineStatus.ON] + (speed.value - 1) * ENERGY_PER_SPEED_LEVEL
    return ENERGY_BY_STATUS[status]


def guarded(operation: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
    """Convert unexpected faults into an INTERNAL_ERROR outcome."""

    @wraps(operation)
    def wrapper(state: MachineState, *args: Any) -> OperationResult:
        try:
            return operation(state, *args)
        except Exception as e:
            logger.error(f"Error in {operation.__name__}: {e}")
            return state, Outcome(OutcomeCode.INTERNAL_ERROR, str(e))

    return wrapper


@guarded
def change_status(state: MachineState, new_status: Any) -> OperationResult:
    """
    Set the machine status and recompute energy draw from the status table.

    The status table value replaces any speed-derived energy draw.
    """
    try:
        status = parse_status(new_status)
    except ValueError:
        logger.warning(f"Rejected invalid status: {new_status}")
        return state, Outcome(
            OutcomeCode.INVALID_ARGUMENT, f"Invalid status: {new_status!r}"
        )

    return state.with_status(status, energy_for(status)), Outcome.ok()


@guarded
def change_spindle_speed(state: MachineState, new_speed: Any) -> OperationResult:
    """
    Set the spindle speed; only allowed while the owning machine is On.

    Energy draw becomes 150.5 + (speed - 1) * 10.0.
    """
    try:
        speed = parse_speed(new_speed)
    except ValueError:
        logger.warning(f"Rejected invalid spindle speed: {new_speed}")
        return state, Outcome(
            OutcomeCode.INVALID_ARGUMENT, f"Invalid spindle speed: {new_speed!r}"
        )

    if state.status is not MachineStatus.ON:
        logger.warning(
            f"Cannot change spindle speed: CNC is not ON "
            f"(current status: {state.status.name})"
        )
        return state, Outcome(
            OutcomeCode.INVALID_STATE, "CNC is not ON to change spindle speed"
        )

    return state.with_speed(speed, energy_for(MachineStatus.ON, speed)), Outcome.ok()


@guarded
def run_predictive_maintenance(state: MachineState) -> OperationResult:
    """Toggle the AI predictive-maintenance flag of a Pro machine."""
    if state.pro is None:
        return state, Outcome(
            OutcomeCode.NOT_FOUND, "Predictive maintenance is only available on Pro machines"
        )

    return state.with_ai_active(not state.pro.ai_active), Outcome.ok()


# Operation browse name -> handler
OPERATIONS: Dict[str, Callable[..., OperationResult]] = {
    CHANGE_STATUS: change_status,
    CHANGE_SPINDLE_SPEED: change_spindle_speed,
    PREDICTIVE_MAINTENANCE: run_predictive_maintenance,
}


def apply_operation(state: MachineState, operation: str, *args: Any) -> OperationResult:
    """Dispatch an operation by browse name."""
    handler = OPERATIONS.get(operation)
    if handler is None:
        return state, Outcome(OutcomeCode.NOT_FOUND, f"Unknown operation: {operation}")
    return handler(state, *args)
