"""
CNC Machine Model

Components:
- Enumeration catalog: MachineStatus, SpindleSpeed and display labels
- TypeRegistry: MacchinaCNCType, MacchinaCNCProType, MandrinoType
- InstanceManager: machine instances and their spindles
- Energy engine: guarded status/speed/maintenance transitions
"""

from .enums import (
    MachineStatus,
    SpindleSpeed,
    UNKNOWN_LABEL,
    STATUS_LABELS,
    SPEED_LABELS,
    status_label,
    speed_label,
    decode_attribute,
)

from .type_registry import (
    ConfigurationError,
    MachineKind,
    ObjectTypeSpec,
    AttributeSpec,
    OperationSpec,
    ArgumentSpec,
    ComponentSpec,
    TypeRegistry,
    kind_from_name,
)

from .instance_manager import (
    MachineState,
    SpindleState,
    ProPayload,
    MachineInstance,
    InstanceManager,
    initial_state,
)

from .energy_engine import (
    Outcome,
    OutcomeCode,
    ENERGY_BY_STATUS,
    energy_for,
    change_status,
    change_spindle_speed,
    run_predictive_maintenance,
    apply_operation,
    OPERATIONS,
)

__all__ = [
    # Enumerations
    'MachineStatus',
    'SpindleSpeed',
    'UNKNOWN_LABEL',
    'STATUS_LABELS',
    'SPEED_LABELS',
    'status_label',
    'speed_label',
    'decode_attribute',
    # Types
    'ConfigurationError',
    'MachineKind',
    'ObjectTypeSpec',
    'AttributeSpec',
    'OperationSpec',
    'ArgumentSpec',
    'ComponentSpec',
    'TypeRegistry',
    'kind_from_name',
    # Instances
    'MachineState',
    'SpindleState',
    'ProPayload',
    'MachineInstance',
    'InstanceManager',
    'initial_state',
    # Engine
    'Outcome',
    'OutcomeCode',
    'ENERGY_BY_STATUS',
    'energy_for',
    'change_status',
    'change_spindle_speed',
    'run_predictive_maintenance',
    'apply_operation',
    'OPERATIONS',
]
