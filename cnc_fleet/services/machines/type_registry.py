"""
Type Registry

Defines the object types of the CNC information model:

- MacchinaCNCType: base machine (status, tool, parts counter, energy draw)
- MacchinaCNCProType: Pro machine, everything the base has plus the
  AI predictive-maintenance capability
- MandrinoType: spindle owned by every machine

The hierarchy is closed: a machine is either BASE or PRO. Types are
defined once at startup and the registry is frozen before serving.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from .enums import MachineStatus, SpindleSpeed, speed_display_names, status_display_names

logger = logging.getLogger(__name__)


# Attribute browse names
STATUS = "Status"
TOOL = "Utensile"
PARTS_PRODUCED = "PezziProdotti"
ENERGY_DRAW = "ConsumoEnergetico"
AI_STATUS = "StatusAI"
SPINDLE = "Mandrino"
SPEED = "Velocita"

# Operation browse names
CHANGE_STATUS = "ChangeStatus"
CHANGE_SPINDLE_SPEED = "CambiareVelocita"
PREDICTIVE_MAINTENANCE = "ManutenzionePredittiva"

# Type browse names
BASE_TYPE_NAME = "MacchinaCNCType"
PRO_TYPE_NAME = "MacchinaCNCProType"
SPINDLE_TYPE_NAME = "MandrinoType"

DEFAULT_TOOL = "Default Utensile"

# Instance naming convention: CNC<N> for base, CNCPro<N> for Pro
BASE_NAME_PATTERN = re.compile(r"^CNC(\d+)$")
PRO_NAME_PATTERN = re.compile(r"^CNCPro(\d+)$")


class ConfigurationError(Exception):
    """Raised at startup when the model definition is inconsistent."""


class MachineKind(Enum):
    """Machine type tag."""
    BASE = "base"
    PRO = "pro"

    def supports_predictive_maintenance(self) -> bool:
        """Only Pro machines carry the AI maintenance capability."""
        return self is MachineKind.PRO


def kind_from_name(name: str) -> Optional[MachineKind]:
    """Machine kind implied by an instance name, None if it is not a machine name."""
    if PRO_NAME_PATTERN.match(name):
        return MachineKind.PRO
    if BASE_NAME_PATTERN.match(name):
        return MachineKind.BASE
    return None


@dataclass(frozen=True)
class AttributeSpec:
    """A typed variable declared on an object type."""
    browse_name: str
    data_type: str  # Int32, UInt32, Double, String, Boolean
    default: Any
    description: str = ""


@dataclass(frozen=True)
class ArgumentSpec:
    """Input or output argument of an operation."""
    name: str
    data_type: str
    description: str = ""


@dataclass(frozen=True)
class OperationSpec:
    """A method declared on an object type."""
    browse_name: str
    inputs: Tuple[ArgumentSpec, ...] = ()
    outputs: Tuple[ArgumentSpec, ...] = ()


@dataclass(frozen=True)
class ComponentSpec:
    """An owned child object (composition)."""
    browse_name: str
    type_name: str


@dataclass(frozen=True)
class ObjectTypeSpec:
    """
    Opaque type handle returned by the registry.

    Only the members declared directly on this type are listed here;
    use TypeRegistry.attributes()/operations() for the inherited view.
    """
    browse_name: str
    attributes: Tuple[AttributeSpec, ...] = ()
    operations: Tuple[OperationSpec, ...] = ()
    components: Tuple[ComponentSpec, ...] = ()
    supertype: Optional[str] = None
    enum_labels: Dict[str, Tuple[str, ...]] = field(default_factory=dict, compare=False)


SUCCESS_OUTPUT = ArgumentSpec(
    name="Success",
    data_type="Boolean",
    description="Indica se l'operazione ha avuto successo",
)


class TypeRegistry:
    """
    Registry of the CNC object types.

    Usage:
        registry = TypeRegistry()
        base = registry.define_base_type()
        pro = registry.define_pro_type(extends=base)
        spindle = registry.define_spindle_type()
        registry.freeze()
    """

    def __init__(self):
        self._types: Dict[str, ObjectTypeSpec] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Reject any further definition."""
        self._frozen = True
        logger.info(f"Type registry frozen with {len(self._types)} types")

    def _register(self, spec: ObjectTypeSpec) -> ObjectTypeSpec:
        if self._frozen:
            raise ConfigurationError(
                f"Cannot define {spec.browse_name}: type registry is frozen"
            )
        if spec.browse_name in self._types:
            raise ConfigurationError(f"Type already defined: {spec.browse_name}")
        self._types[spec.browse_name] = spec
        logger.debug(f"Defined object type {spec.browse_name}")
        return spec

    # =========================================================================
    # DEFINITIONS
    # =========================================================================

    def define_base_type(self) -> ObjectTypeSpec:
        """Define MacchinaCNCType."""
        return self._register(ObjectTypeSpec(
            browse_name=BASE_TYPE_NAME,
            attributes=(
                AttributeSpec(STATUS, "Int32", MachineStatus.OFF.value,
                              "Stato della CNC (0=Off, 1=On, 2=Alarm)"),
                AttributeSpec(TOOL, "String", DEFAULT_TOOL, "Utensile montato"),
                AttributeSpec(PARTS_PRODUCED, "UInt32", 0, "Pezzi prodotti"),
                AttributeSpec(ENERGY_DRAW, "Double", 0.0, "Consumo energetico (kW)"),
            ),
            operations=(
                OperationSpec(
                    browse_name=CHANGE_STATUS,
                    inputs=(ArgumentSpec(
                        "NewStatus", "Int32",
                        "Nuovo stato per la CNC (0=Off, 1=On, 2=Alarm)",
                    ),),
                    outputs=(SUCCESS_OUTPUT,),
                ),
            ),
            components=(ComponentSpec(SPINDLE, SPINDLE_TYPE_NAME),),
            enum_labels={"StatusValues": tuple(status_display_names())},
        ))

    def define_pro_type(self, extends: ObjectTypeSpec) -> ObjectTypeSpec:
        """Define MacchinaCNCProType as a subtype of the base type."""
        if extends.browse_name != BASE_TYPE_NAME or extends.browse_name not in self._types:
            raise ConfigurationError(
                f"Pro type must extend a registered {BASE_TYPE_NAME}"
            )
        return self._register(ObjectTypeSpec(
            browse_name=PRO_TYPE_NAME,
            attributes=(
                AttributeSpec(AI_STATUS, "Boolean", False,
                              "Manutenzione predittiva AI attiva"),
            ),
            operations=(
                OperationSpec(
                    browse_name=PREDICTIVE_MAINTENANCE,
                    outputs=(SUCCESS_OUTPUT,),
                ),
            ),
            supertype=extends.browse_name,
        ))

    def define_spindle_type(self) -> ObjectTypeSpec:
        """Define MandrinoType."""
        return self._register(ObjectTypeSpec(
            browse_name=SPINDLE_TYPE_NAME,
            attributes=(
                AttributeSpec(SPEED, "Int32", SpindleSpeed.SPEED_1.value,
                              "Velocita del mandrino (1-5)"),
            ),
            operations=(
                OperationSpec(
                    browse_name=CHANGE_SPINDLE_SPEED,
                    inputs=(ArgumentSpec(
                        "NewSpeed", "Int32",
                        "Nuova velocita per il Mandrino (1-5)",
                    ),),
                    outputs=(SUCCESS_OUTPUT,),
                ),
            ),
            enum_labels={"SpeedValues": tuple(speed_display_names())},
        ))

    def define_all(self) -> None:
        """Define the full CNC type set and freeze the registry."""
        base = self.define_base_type()
        self.define_pro_type(extends=base)
        self.define_spindle_type()
        self.freeze()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, type_name: str) -> ObjectTypeSpec:
        """Get a type by browse name."""
        try:
            return self._types[type_name]
        except KeyError:
            raise ConfigurationError(f"Unknown object type: {type_name}") from None

    def machine_type(self, kind: MachineKind) -> ObjectTypeSpec:
        """Type handle for a machine kind."""
        return self.get(PRO_TYPE_NAME if kind is MachineKind.PRO else BASE_TYPE_NAME)

    def spindle_type(self) -> ObjectTypeSpec:
        return self.get(SPINDLE_TYPE_NAME)

    def lineage(self, spec: ObjectTypeSpec) -> List[ObjectTypeSpec]:
        """The type followed by its supertypes, most derived first."""
        chain = [spec]
        while chain[-1].supertype is not None:
            chain.append(self.get(chain[-1].supertype))
        return chain

    def attributes(self, spec: ObjectTypeSpec) -> List[AttributeSpec]:
        """All attributes of a type including inherited ones, base first."""
        result: List[AttributeSpec] = []
        for type_spec in reversed(self.lineage(spec)):
            result.extend(type_spec.attributes)
        return result

    def operations(self, spec: ObjectTypeSpec) -> List[OperationSpec]:
        """All operations of a type including inherited ones, base first."""
        result: List[OperationSpec] = []
        for type_spec in reversed(self.lineage(spec)):
            result.extend(type_spec.operations)
        return result

    def components(self, spec: ObjectTypeSpec) -> List[ComponentSpec]:
        """All owned components of a type including inherited ones."""
        result: List[ComponentSpec] = []
        for type_spec in reversed(self.lineage(spec)):
            result.extend(type_spec.components)
        return result

    def is_subtype(self, spec: ObjectTypeSpec, of: ObjectTypeSpec) -> bool:
        """True if spec is `of` or derives from it."""
        return any(t.browse_name == of.browse_name for t in self.lineage(spec))

    def all_types(self) -> List[ObjectTypeSpec]:
        return list(self._types.values())
