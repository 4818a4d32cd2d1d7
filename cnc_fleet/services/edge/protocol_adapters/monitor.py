"""
Client Monitor

Subscribes to the live attributes of every discovered machine and logs
each change with its decoded display label:

    [CNC1 CHANGE] Status: On at 10:15:02
    [CNC1 Mandrino CHANGE] Velocità: Speed 3 at 10:15:03

Also provides a one-shot snapshot of all machines read directly.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from asyncua import ua

from ...machines import decode_attribute
from ...machines.type_registry import (
    AI_STATUS,
    ENERGY_DRAW,
    PARTS_PRODUCED,
    SPEED,
    SPINDLE,
    STATUS,
    TOOL,
)
from .discovery import InstanceRef, find_child

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

# (browse name, display label, Pro only)
MACHINE_ATTRIBUTES: List[Tuple[str, str, bool]] = [
    (STATUS, "Status", False),
    (ENERGY_DRAW, "Energia", False),
    (AI_STATUS, "Status AI", True),
]

SPINDLE_ATTRIBUTE: Tuple[str, str] = (SPEED, "Velocità")


@dataclass(frozen=True)
class MonitoredItem:
    """What a monitored node represents."""
    machine_id: str
    attribute: str
    label: str
    spindle: bool = False

    @property
    def prefix(self) -> str:
        if self.spindle:
            return f"[{self.machine_id} {SPINDLE} CHANGE]"
        return f"[{self.machine_id} CHANGE]"


class ChangeHandler:
    """
    Subscription handler for asyncua.

    Keeps the latest decoded value per (machine, attribute); with a
    bounded queue intermediate values may be dropped but the newest
    one always ends up here.
    """

    def __init__(self):
        self._items: Dict[Any, MonitoredItem] = {}
        self.latest: Dict[Tuple[str, str], Any] = {}

    def register(self, node: Any, item: MonitoredItem) -> None:
        self._items[node.nodeid] = item

    def datachange_notification(self, node: Any, val: Any, data: Any) -> None:
        item = self._items.get(node.nodeid)
        if item is None:
            logger.debug(f"Notification for unregistered node {node}")
            return

        value = decode_attribute(item.attribute, val)
        self.latest[(item.machine_id, item.attribute)] = value
        logger.info(f"{item.prefix} {item.label}: {value} at {datetime.now():%H:%M:%S}")

    def status_change_notification(self, status: Any) -> None:
        logger.warning(f"Subscription status changed: {status}")

    def latest_value(self, machine_id: str, attribute: str) -> Optional[Any]:
        return self.latest.get((machine_id, attribute))

    @property
    def item_count(self) -> int:
        return len(self._items)


async def _monitor(subscription: Any, handler: ChangeHandler, node: Any,
                   item: MonitoredItem, config: Any) -> bool:
    handler.register(node, item)
    try:
        await subscription.subscribe_data_change(
            node,
            queuesize=config.QUEUE_SIZE,
            sampling_interval=config.SAMPLING_INTERVAL_MS,
        )
    except ua.UaStatusCodeError as e:
        logger.warning(f"Cannot monitor {item.attribute} on {item.machine_id}: {e}")
        return False
    return True


async def setup_monitoring(client: Any, instances: List[InstanceRef],
                           handler: ChangeHandler, config: Any) -> Any:
    """
    Create one subscription and monitor Status, ConsumoEnergetico,
    StatusAI (Pro only) and Mandrino/Velocita for each instance.

    Missing attributes are skipped with a warning.
    """
    subscription = await client.create_subscription(config.PUBLISHING_INTERVAL_MS, handler)

    for ref in instances:
        for attribute, label, pro_only in MACHINE_ATTRIBUTES:
            if pro_only and not ref.supports_predictive_maintenance:
                logger.debug(f"{attribute} not available on {ref.kind.name} instance "
                             f"{ref.machine_id}, not monitored")
                continue
            node = await find_child(ref.node, attribute)
            if node is None:
                logger.warning(f"Attribute {attribute} not found on {ref.machine_id}")
                continue
            await _monitor(subscription, handler, node,
                           MonitoredItem(ref.machine_id, attribute, label), config)

        spindle = await find_child(ref.node, SPINDLE)
        if spindle is None:
            logger.warning(f"{SPINDLE} not found on {ref.machine_id}")
            continue

        attribute, label = SPINDLE_ATTRIBUTE
        node = await find_child(spindle, attribute)
        if node is None:
            logger.warning(f"Attribute {SPINDLE}/{attribute} not found on {ref.machine_id}")
            continue
        await _monitor(subscription, handler, node,
                       MonitoredItem(ref.machine_id, attribute, label, spindle=True), config)

    logger.info(f"Monitoring {handler.item_count} attributes on {len(instances)} instances")
    return subscription


async def _read_attribute(parent: Optional[Any], attribute: str) -> Any:
    if parent is None:
        return NOT_AVAILABLE
    node = await find_child(parent, attribute)
    if node is None:
        return NOT_AVAILABLE
    try:
        value = await node.read_value()
    except ua.UaStatusCodeError as e:
        logger.warning(f"Cannot read {attribute}: {e}")
        return NOT_AVAILABLE
    return decode_attribute(attribute, value)


async def dump_all_statuses(instances: List[InstanceRef]) -> List[Dict[str, Any]]:
    """
    Read the current attributes of every instance and log one line each.

    Returns:
        One row per instance; unresolvable attributes are "N/A"
    """
    logger.info("--- Current status of all CNC machines ---")
    rows = []

    for ref in instances:
        spindle = await find_child(ref.node, SPINDLE)
        row = {
            'machine_id': ref.machine_id,
            STATUS: await _read_attribute(ref.node, STATUS),
            TOOL: await _read_attribute(ref.node, TOOL),
            PARTS_PRODUCED: await _read_attribute(ref.node, PARTS_PRODUCED),
            ENERGY_DRAW: await _read_attribute(ref.node, ENERGY_DRAW),
            SPEED: await _read_attribute(spindle, SPEED),
        }
        line = (
            f"{ref.machine_id}: Status={row[STATUS]}, Utensile={row[TOOL]}, "
            f"Pezzi={row[PARTS_PRODUCED]}, Energia={row[ENERGY_DRAW]} kW, "
            f"Mandrino={row[SPEED]}"
        )
        if ref.supports_predictive_maintenance:
            row[AI_STATUS] = await _read_attribute(ref.node, AI_STATUS)
            line += f", AI={row[AI_STATUS]}"

        logger.info(line)
        rows.append(row)

    logger.info("----------------------------------------")
    return rows
