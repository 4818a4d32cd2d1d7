"""
Client Discovery

Browses Objects for machine instances named CNC<N> (base) or
CNCPro<N> (Pro) and returns references to them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from asyncua import ua

from ...machines import MachineKind, kind_from_name

logger = logging.getLogger(__name__)

OBJECTS_FOLDER = "Objects"


@dataclass(frozen=True)
class InstanceRef:
    """A discovered machine instance."""
    machine_id: str
    kind: MachineKind
    node: Any = field(compare=False, repr=False)

    @property
    def supports_predictive_maintenance(self) -> bool:
        return self.kind.supports_predictive_maintenance()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine_id': self.machine_id,
            'kind': self.kind.value,
            'node_id': str(self.node.nodeid),
            'predictive_maintenance': self.supports_predictive_maintenance,
        }


async def find_child(node: Any, name: str, nodeclass: int = ua.NodeClass.Unspecified) -> Optional[Any]:
    """Child of `node` with the given browse name, None if absent."""
    for child in await node.get_children(nodeclassmask=nodeclass):
        browse_name = await child.read_browse_name()
        if browse_name.Name == name:
            return child
    return None


async def discover(root: Any) -> List[InstanceRef]:
    """
    Find the CNC instances under root/Objects.

    Only browse names that match CNC<N> or CNCPro<N> exactly (N digits
    only) are instances. A shared "CNC" prefix is not enough, so names
    such as "CNCX", "CNC1a" or "CNCPro" are ignored.
    A missing Objects folder or an empty fleet gives an empty list.
    """
    objects = await find_child(root, OBJECTS_FOLDER)
    if objects is None:
        logger.warning("Objects folder not found, no instances discovered")
        return []

    instances = []
    for child in await objects.get_children(nodeclassmask=ua.NodeClass.Object):
        name = (await child.read_browse_name()).Name
        kind = kind_from_name(name)
        if kind is None:
            continue
        instances.append(InstanceRef(machine_id=name, kind=kind, node=child))
        logger.info(f"Found {kind.name} instance: {name}")

    if not instances:
        logger.warning("No CNC instances found under Objects")

    return instances
