"""
Report Models

Defines data structures for post-invoicing stock comparison.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict

from separation_engine.normalize import clean_code, normalize_quantity


class StockStatus(str, Enum):
    """Comparison outcome; equal non-zero quantities are the anomaly"""
    DIVERGENTE = "Divergente"
    OK = "OK"


@dataclass
class StockCount:
    """Post-invoicing count of one material"""
    material_code: str
    description: str = ""
    quantity_kg: float = 0.0
    current_quantity: float = 0.0

    def __post_init__(self):
        self.material_code = clean_code(self.material_code)
        self.quantity_kg = normalize_quantity(self.quantity_kg)
        self.current_quantity = normalize_quantity(self.current_quantity)


@dataclass
class StockReference:
    """Pre-invoicing reference quantity of one material"""
    material_code: str
    description: str = ""
    reference_quantity: float = 0.0

    def __post_init__(self):
        self.material_code = clean_code(self.material_code)
        self.reference_quantity = normalize_quantity(self.reference_quantity)


@dataclass
class StockComparison:
    material_code: str
    description: str
    reference_quantity: float
    current_quantity: float
    quantity_kg: float
    delta: float
    status: StockStatus

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
