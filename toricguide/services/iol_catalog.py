"""
Toric IOL Catalog
Static catalog of toric lens models with cylinder powers at the IOL and corneal planes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


class IOLManufacturer(str, Enum):
    ALCON = "Alcon"
    JOHNSON_JOHNSON = "J&J Vision"
    ZEISS = "Zeiss"
    BAUSCH_LOMB = "Bausch+Lomb"


@dataclass(frozen=True)
class ToricIOL:
    """A toric IOL catalog entry. Never mutated."""
    manufacturer: IOLManufacturer
    model: str
    platform: str
    cylinder_power_at_iol: float     # diopters, lens plane
    cylinder_power_at_cornea: float  # diopters, corneal plane (clinically comparable)
    toricity: str
    a_constant: float = 118.7
    spherical_power_range: Tuple[float, float] = (6.0, 30.0)

    @property
    def full_name(self) -> str:
        return f"{self.manufacturer.value} {self.model} {self.toricity}"

    @property
    def short_name(self) -> str:
        return f"{self.platform}{self.toricity}"

    def to_dict(self) -> dict:
        return {
            "manufacturer": self.manufacturer.value,
            "model": self.model,
            "platform": self.platform,
            "cylinder_power_at_iol": self.cylinder_power_at_iol,
            "cylinder_power_at_cornea": self.cylinder_power_at_cornea,
            "toricity": self.toricity,
            "a_constant": self.a_constant,
            "full_name": self.full_name,
        }


def _family(manufacturer: IOLManufacturer, model: str, platform: str, a_constant: float,
            powers: List[Tuple[float, float, str]]) -> List[ToricIOL]:
    return [
        ToricIOL(manufacturer=manufacturer, model=model, platform=platform,
                 cylinder_power_at_iol=at_iol, cylinder_power_at_cornea=at_cornea,
                 toricity=code, a_constant=a_constant)
        for at_iol, at_cornea, code in powers
    ]


ALCON_ACRYSOF_TORIC = _family(IOLManufacturer.ALCON, "AcrySof IQ Toric", "SN6AT", 118.7, [
    (1.03, 0.69, "T3"), (1.55, 1.03, "T4"), (2.06, 1.38, "T5"), (2.57, 1.72, "T6"),
    (3.08, 2.06, "T7"), (3.60, 2.41, "T8"), (4.11, 2.75, "T9"),
])

ALCON_CLAREON_TORIC = _family(IOLManufacturer.ALCON, "Clareon Toric", "CNWTT", 119.1, [
    (1.00, 0.68, "T3"), (1.50, 1.01, "T4"), (2.25, 1.52, "T5"), (3.00, 2.03, "T6"),
    (3.75, 2.53, "T7"), (4.50, 3.04, "T8"), (5.25, 3.55, "T9"),
])

TECNIS_TORIC_II = _family(IOLManufacturer.JOHNSON_JOHNSON, "Tecnis Toric II", "ZCT", 119.3, [
    (1.00, 0.69, "100"), (1.50, 1.03, "150"), (2.25, 1.55, "225"),
    (3.00, 2.06, "300"), (3.75, 2.58, "375"), (4.00, 2.75, "400"),
])

ZEISS_AT_TORBI = _family(IOLManufacturer.ZEISS, "AT TORBI 709M", "709M", 118.3, [
    (1.00, 0.67, "T10"), (1.50, 1.00, "T15"), (2.00, 1.33, "T20"), (2.50, 1.67, "T25"),
    (3.00, 2.00, "T30"), (4.00, 2.67, "T40"), (5.00, 3.33, "T50"), (6.00, 4.00, "T60"),
    (9.00, 6.00, "T90"), (12.00, 8.00, "T120"),
])

BAUSCH_LOMB_ENVISTA = _family(IOLManufacturer.BAUSCH_LOMB, "enVista Toric", "MX60T", 118.0, [
    (1.25, 0.86, "T1"), (2.00, 1.38, "T2"), (2.75, 1.89, "T3"), (3.50, 2.41, "T4"),
    (4.25, 2.93, "T5"), (5.00, 3.44, "T6"), (5.75, 3.96, "T7"),
])

ALL_TORIC_IOLS: List[ToricIOL] = (
    ALCON_ACRYSOF_TORIC + ALCON_CLAREON_TORIC + TECNIS_TORIC_II
    + ZEISS_AT_TORBI + BAUSCH_LOMB_ENVISTA
)


def models_for(manufacturer: IOLManufacturer) -> List[ToricIOL]:
    return [iol for iol in ALL_TORIC_IOLS if iol.manufacturer == manufacturer]


def _candidates(manufacturer: Optional[IOLManufacturer]) -> List[ToricIOL]:
    return models_for(manufacturer) if manufacturer else list(ALL_TORIC_IOLS)


def find_best_match(target_corneal_cylinder: float,
                    manufacturer: Optional[IOLManufacturer] = None) -> Optional[ToricIOL]:
    """Lens whose corneal-plane cylinder is closest to the target."""
    candidates = _candidates(manufacturer)
    if not candidates:
        return None
    return min(candidates, key=lambda iol: abs(iol.cylinder_power_at_cornea - target_corneal_cylinder))


def find_options(target_corneal_cylinder: float,
                 manufacturer: Optional[IOLManufacturer] = None,
                 count: int = 3) -> List[ToricIOL]:
    candidates = sorted(
        _candidates(manufacturer),
        key=lambda iol: abs(iol.cylinder_power_at_cornea - target_corneal_cylinder),
    )
    return candidates[:count]


def find_by_model(model: str, toricity: str) -> Optional[ToricIOL]:
    """Look up a lens by model name or platform plus toricity code (case-insensitive)."""
    wanted = model.strip().lower()
    code = toricity.strip().lower()
    for iol in ALL_TORIC_IOLS:
        if wanted in (iol.model.lower(), iol.platform.lower()) and iol.toricity.lower() == code:
            return iol
    return None
