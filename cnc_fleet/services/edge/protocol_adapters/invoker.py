"""
Client Invoker

Calls machine methods and runs the demonstration sequence:
CNC On, spindle to speed 3, predictive maintenance on a Pro machine.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from asyncua import ua

from ...machines import MachineKind, MachineStatus, SpindleSpeed
from ...machines.type_registry import (
    CHANGE_SPINDLE_SPEED,
    CHANGE_STATUS,
    PREDICTIVE_MAINTENANCE,
    SPINDLE,
)
from .discovery import InstanceRef, find_child

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    """Outcome of one method call."""
    machine_id: str
    operation: str
    success: bool
    value: Any = None
    status: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine_id': self.machine_id,
            'operation': self.operation,
            'success': self.success,
            'value': self.value,
            'status': self.status,
        }


async def invoke(ref: InstanceRef, operation: str, *args: int,
                 on_spindle: bool = False) -> Optional[InvocationResult]:
    """
    Call `operation` on an instance (or its Mandrino).

    Returns:
        InvocationResult, or None if the object or method does not exist
    """
    target = ref.node
    target_name = ref.machine_id
    if on_spindle:
        target = await find_child(ref.node, SPINDLE)
        target_name = f"{ref.machine_id}.{SPINDLE}"
        if target is None:
            logger.warning(f"{SPINDLE} not found on {ref.machine_id}")
            return None

    method = await find_child(target, operation, ua.NodeClass.Method)
    if method is None:
        logger.warning(f"Method {operation} not found on {target_name}")
        return None

    logger.info(f"Calling {operation}{list(args)} on {target_name}")
    try:
        value = await target.call_method(
            method, *[ua.Variant(arg, ua.VariantType.Int32) for arg in args]
        )
    except ua.UaStatusCodeError as e:
        status = ua.StatusCode(e.code).name
        logger.warning(f"Step skipped: {operation} on {target_name} failed with {status}")
        return InvocationResult(ref.machine_id, operation, success=False, status=status)

    logger.info(f"Result: {value}")
    return InvocationResult(ref.machine_id, operation, success=True, value=value)


async def run_demo(instances: List[InstanceRef]) -> List[Optional[InvocationResult]]:
    """Drive the first base machine and the first Pro machine through the demo steps."""
    base = next((ref for ref in instances if ref.kind is MachineKind.BASE), None)
    pro = next((ref for ref in instances if ref.kind is MachineKind.PRO), None)
    results: List[Optional[InvocationResult]] = []

    if base is None:
        logger.warning("No base CNC discovered, skipping status and spindle steps")
    else:
        results.append(await invoke(base, CHANGE_STATUS, MachineStatus.ON.value))
        results.append(await invoke(
            base, CHANGE_SPINDLE_SPEED, SpindleSpeed.SPEED_3.value, on_spindle=True
        ))

    if pro is None:
        logger.warning("No CNC Pro discovered, skipping predictive maintenance step")
    else:
        results.append(await invoke(pro, PREDICTIVE_MAINTENANCE))

    return results
