"""
Master Data Models

Defines data structures for:
- Separation-type tags (handling circuits)
- Master materials (material registry)
- Stores (store registry, zone/subzone ordering)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TypeSeparation(str, Enum):
    """Handling circuit a material is separated in."""
    SECO = "SECO"
    FRIO = "FRIO"
    ORGANICO = "ORGANICO"
    OVO = "OVO"
    REFORCO = "REFORÇO"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["TypeSeparation"]:
        """Parse a registry/operator value, tolerating case and the unaccented spelling."""
        if value is None:
            return None
        text = str(value).strip().upper()
        if not text:
            return None
        if text == "REFORCO":
            return cls.REFORCO
        try:
            return cls(text)
        except ValueError:
            return None


class Circuit(str, Enum):
    """Store grouping circuit used by aggregation views."""
    SECO = "seco"
    FRIO = "frio"

    @classmethod
    def for_type(cls, type_separation: Optional[str]) -> "Circuit":
        """FRIO materials travel on the frio circuit, everything else on seco."""
        if TypeSeparation.parse(type_separation) == TypeSeparation.FRIO:
            return cls.FRIO
        return cls.SECO


@dataclass
class MasterMaterial:
    """
    A material in the master registry.

    Attributes:
        material_code: Stable material identifier
        description: Registry description
        type_separation: Default handling circuit (None when not classified)
    """
    material_code: str
    description: str = ""
    type_separation: Optional[TypeSeparation] = None

    def __post_init__(self):
        self.material_code = str(self.material_code).strip()
        if not isinstance(self.type_separation, TypeSeparation):
            self.type_separation = TypeSeparation.parse(self.type_separation)


@dataclass
class Store:
    """
    A store in the master registry.

    Attributes:
        prefix: Store code used as sheet column header
        name: Display name
        uf: State
        zona_seco / subzona_seco / ordem_seco: Seco circuit grouping and order
        zona_frio / ordem_frio: Frio circuit grouping and order
    """
    prefix: str
    name: str = ""
    uf: Optional[str] = None
    zona_seco: Optional[str] = None
    subzona_seco: Optional[str] = None
    zona_frio: Optional[str] = None
    ordem_seco: Optional[int] = None
    ordem_frio: Optional[int] = None

    def __post_init__(self):
        self.prefix = str(self.prefix).strip()

    def zone(self, circuit: Circuit) -> Optional[str]:
        value = self.zona_frio if circuit == Circuit.FRIO else self.zona_seco
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    def subzone(self, circuit: Circuit) -> str:
        # The frio circuit has no subzones
        if circuit == Circuit.FRIO or not self.subzona_seco:
            return ""
        return str(self.subzona_seco).strip()

    def order(self, circuit: Circuit) -> Optional[int]:
        value = self.ordem_frio if circuit == Circuit.FRIO else self.ordem_seco
        return value or None
