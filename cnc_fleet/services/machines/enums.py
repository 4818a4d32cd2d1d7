"""
Enumeration Catalog

Closed value sets used by the CNC information model and the display
labels clients use to decode them.
"""

from enum import IntEnum
from typing import Any, Callable, Dict, List

UNKNOWN_LABEL = "Unknown"


class MachineStatus(IntEnum):
    """Machine status (CNCTypeEnum)."""
    OFF = 0
    ON = 1
    ALARM = 2


class SpindleSpeed(IntEnum):
    """Spindle speed levels (VelocitaMandrinoEnum)."""
    SPEED_1 = 1
    SPEED_2 = 2
    SPEED_3 = 3
    SPEED_4 = 4
    SPEED_5 = 5


STATUS_LABELS: Dict[int, str] = {
    MachineStatus.OFF: "Off",
    MachineStatus.ON: "On",
    MachineStatus.ALARM: "Alarm",
}

SPEED_LABELS: Dict[int, str] = {
    speed.value: f"Speed {speed.value}" for speed in SpindleSpeed
}


def _is_plain_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def status_label(value: Any) -> str:
    """Display label for a status value, "Unknown" outside the closed set."""
    if not _is_plain_int(value):
        return UNKNOWN_LABEL
    return STATUS_LABELS.get(value, UNKNOWN_LABEL)


def speed_label(value: Any) -> str:
    """Display label for a spindle speed value, "Unknown" outside the closed set."""
    if not _is_plain_int(value):
        return UNKNOWN_LABEL
    return SPEED_LABELS.get(value, UNKNOWN_LABEL)


def parse_status(value: Any) -> MachineStatus:
    """
    Convert a raw integer to MachineStatus.

    Raises:
        ValueError: if the value is not a member of the closed set
    """
    if not _is_plain_int(value):
        raise ValueError(f"Status must be an integer, got {value!r}")
    return MachineStatus(value)


def parse_speed(value: Any) -> SpindleSpeed:
    """
    Convert a raw integer to SpindleSpeed.

    Raises:
        ValueError: if the value is not a member of the closed set
    """
    if not _is_plain_int(value):
        raise ValueError(f"Speed must be an integer, got {value!r}")
    return SpindleSpeed(value)


def status_display_names() -> List[str]:
    """Status labels in value order, as published on the type node."""
    return [STATUS_LABELS[status] for status in MachineStatus]


def speed_display_names() -> List[str]:
    """Speed labels in value order, as published on the type node."""
    return [str(speed.value) for speed in SpindleSpeed]


# Attribute browse name -> decoder for enumerated attributes
DECODERS: Dict[str, Callable[[Any], str]] = {
    "Status": status_label,
    "Velocita": speed_label,
}


def decode_attribute(attribute: str, value: Any) -> Any:
    """Decode an attribute value to its display label if it is enumerated."""
    decoder = DECODERS.get(attribute)
    if decoder is None:
        return value
    return decoder(value)
