# shopfloor/catalog.py
from dataclasses import dataclass
from enum import Enum

from shopfloor.config import FIND_MATERIAL_PHASES
from shopfloor.errors import ValidationError


class Requirement(str, Enum):
    NONE = "none"
    MANUAL_PRODUCT = "manual-product-required"
    PRODUCT_OR_SHEET = "product-or-sheet-required"


@dataclass(frozen=True)
class DeadCode:
    code: int
    label: str
    requirement: Requirement = Requirement.NONE

    def to_dict(self):
        return {"code": self.code, "label": self.label, "requirement": self.requirement.value}


DEAD_CODES = (
    DeadCode(10, "MATERIAL SHORTAGE"),
    DeadCode(20, "WORK SHORTAGE"),
    DeadCode(30, "AUXILIARY WORK"),
    DeadCode(40, "MACHINE BREAKDOWN"),
    DeadCode(50, "MAINTENANCE - GRINDING"),
    DeadCode(60, "SAMPLE PRODUCTION", Requirement.MANUAL_PRODUCT),
    DeadCode(70, "QUALITY PROBLEMS", Requirement.PRODUCT_OR_SHEET),
    DeadCode(80, "REWORK"),
    DeadCode(90, "LOADING - UNLOADING - MATERIAL HANDLING"),
    DeadCode(100, "OVEN UNLOADING", Requirement.PRODUCT_OR_SHEET),
    DeadCode(110, "RACKS"),
    DeadCode(120, "MATERIAL CUTTING"),
    DeadCode(130, "PACKAGING FOR SUBCONTRACTING", Requirement.PRODUCT_OR_SHEET),
    DeadCode(140, "TOOL WORK FOR OVEN", Requirement.PRODUCT_OR_SHEET),
    DeadCode(150, "ADDITIONAL WORK ON PRODUCTION ORDER", Requirement.PRODUCT_OR_SHEET),
    DeadCode(160, "TRAINING - MEETINGS"),
    DeadCode(170, "TOOL SHORTAGE"),
    DeadCode(180, "SIGNS WITHOUT ORDER"),
)


class PhaseCatalog:
    """
    Referência estática das fases: nomes vindos do banco, quais fases exigem
    busca de material e a tabela de códigos de tempo morto.
    """

    def __init__(self, store=None, find_material_phases=FIND_MATERIAL_PHASES, dead_codes=DEAD_CODES):
        self.store = store
        self.find_material_phases = frozenset(str(p) for p in find_material_phases)
        self._dead_codes = {c.code: c for c in dead_codes}

    def requires_find(self, phase_id) -> bool:
        return str(phase_id) in self.find_material_phases

    def names(self) -> dict:
        if self.store is None:
            return {}
        return {p["id"]: p["name"] for p in self.store.list_phases()}

    def name(self, phase_id) -> str:
        return self.names().get(phase_id) or f"Phase {phase_id}"

    def dead_codes(self):
        return sorted(self._dead_codes.values(), key=lambda c: c.code)

    def dead_code(self, code) -> DeadCode:
        try:
            return self._dead_codes[int(code)]
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Unknown dead-time code: {code}", code=code)
