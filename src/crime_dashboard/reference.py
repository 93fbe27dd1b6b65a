"""
reference.py
-------------
Static reference data shared by the importer and the read side:
crime categories, police units, unit operating areas (city coordinates),
municipality spelling variants and the four time-of-day brackets.
"""

import re
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

SENTINEL = "N/A"


class CrimeCategory(Enum):
    """The four strategic indicators tracked by the command."""
    LETALIDADE_VIOLENTA = ("letalidade_violenta", "Letalidade Violenta")
    ROUBO_DE_VEICULO = ("roubo_de_veiculo", "Roubo de Veículo")
    ROUBO_DE_RUA = ("roubo_de_rua", "Roubo de Rua")
    ROUBO_DE_CARGA = ("roubo_de_carga", "Roubo de Carga")

    def __init__(self, key, label):
        self.key = key
        self.label = label

    @property
    def target_name(self) -> str:
        """Name used in the targets table's crime_type column."""
        return self.label.lower()


# Display/sort order used everywhere
CATEGORIES: List[CrimeCategory] = list(CrimeCategory)

CATEGORY_COLORS: Dict[CrimeCategory, str] = {
    CrimeCategory.LETALIDADE_VIOLENTA: "#ff7f0e",
    CrimeCategory.ROUBO_DE_VEICULO: "#2ca02c",
    CrimeCategory.ROUBO_DE_RUA: "#d62728",
    CrimeCategory.ROUBO_DE_CARGA: "#9467bd",
}

_WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


_CATEGORY_LOOKUP: Dict[str, CrimeCategory] = {c.label.casefold(): c for c in CATEGORIES}


def match_category(text: Optional[str]) -> Optional[CrimeCategory]:
    """
    Map free-text indicator to a category.

    The one matching policy of the project: case-insensitive exact match on
    the whitespace-collapsed text. "ROUBO DE RUA" matches, "roubo de rua
    (tentado)" and "assalto" don't.
    """
    if text is None:
        return None
    return _CATEGORY_LOOKUP.get(collapse_whitespace(str(text)).casefold())


# Units
COMMAND_UNIT = "RISP 5"
UNITS: List[str] = ["AISP 10", "AISP 28", "AISP 33", "AISP 37", "AISP 43"]
COMMAND_UNITS: Dict[str, List[str]] = {COMMAND_UNIT: UNITS}

# Every unit that carries targets: the AISPs plus the command itself
TARGET_UNITS: List[str] = UNITS + [COMMAND_UNIT]


class CityLocation(NamedTuple):
    city: str
    lat: float
    lng: float


UNIT_AREAS: Dict[str, List[CityLocation]] = {
    "AISP 10": [
        CityLocation("Barra do Piraí", -22.4714, -43.8269),
        CityLocation("Valença", -22.2445, -43.7022),
        CityLocation("Rio das Flores", -22.1692, -43.5856),
        CityLocation("Piraí", -22.6276, -43.8982),
        CityLocation("Vassouras", -22.4039, -43.6634),
        CityLocation("Miguel Pereira", -22.4572, -43.4803),
        CityLocation("Paty do Alferes", -22.4309, -43.4285),
        CityLocation("Mendes", -22.5245, -43.7312),
        CityLocation("Engenheiro Paulo de Frontin", -22.5498, -43.6827),
    ],
    "AISP 28": [
        CityLocation("Volta Redonda", -22.5202, -44.0996),
        CityLocation("Barra Mansa", -22.5446, -44.1751),
        CityLocation("Pinheiral", -22.5172, -44.0022),
    ],
    "AISP 33": [
        CityLocation("Mangaratiba", -22.9594, -44.0409),
        CityLocation("Angra dos Reis", -23.0067, -44.3181),
        CityLocation("Rio Claro", -22.7205, -44.1419),
    ],
    "AISP 37": [
        CityLocation("Resende", -22.4705, -44.4509),
        CityLocation("Itatiaia", -22.4897, -44.5634),
        CityLocation("Porto Real", -22.4175, -44.2873),
        CityLocation("Quatis", -22.4043, -44.2597),
    ],
    "AISP 43": [
        CityLocation("Paraty", -23.2178, -44.7131),
    ],
}

UNIT_CENTERS: Dict[str, CityLocation] = {
    "AISP 10": CityLocation("Vassouras", -22.4039, -43.6634),
    "AISP 28": CityLocation("Volta Redonda", -22.5202, -44.0996),
    "AISP 33": CityLocation("Mangaratiba", -22.9594, -44.0409),
    "AISP 37": CityLocation("Resende", -22.4705, -44.4509),
    "AISP 43": CityLocation("Paraty", -23.2178, -44.7131),
}

UNIT_ZOOM: Dict[str, int] = {
    "AISP 10": 10,
    "AISP 28": 11,
    "AISP 33": 10,
    "AISP 37": 10,
    "AISP 43": 11,
}

# Spelling variants → canonical city. Keys are already in normalized form
# (lowercase, no accents, letters and single spaces only).
CITY_ALIASES: Dict[str, str] = {
    "barra do pirai": "Barra do Piraí",
    "barradopirai": "Barra do Piraí",
    "valenca": "Valença",
    "rio das flores": "Rio das Flores",
    "riodasflores": "Rio das Flores",
    "pirai": "Piraí",
    "vassouras": "Vassouras",
    "miguel pereira": "Miguel Pereira",
    "miguelpereira": "Miguel Pereira",
    "paty do alferes": "Paty do Alferes",
    "patydoalferes": "Paty do Alferes",
    "paty de alferes": "Paty do Alferes",
    "mendes": "Mendes",
    "engenheiro paulo de frontin": "Engenheiro Paulo de Frontin",
    "eng paulo de frontin": "Engenheiro Paulo de Frontin",
    "paulo de frontin": "Engenheiro Paulo de Frontin",
    "volta redonda": "Volta Redonda",
    "voltaredonda": "Volta Redonda",
    "barra mansa": "Barra Mansa",
    "barramansa": "Barra Mansa",
    "pinheiral": "Pinheiral",
    "mangaratiba": "Mangaratiba",
    "angra dos reis": "Angra dos Reis",
    "angradosreis": "Angra dos Reis",
    "angra": "Angra dos Reis",
    "rio claro": "Rio Claro",
    "rioclaro": "Rio Claro",
    "resende": "Resende",
    "itatiaia": "Itatiaia",
    "porto real": "Porto Real",
    "portoreal": "Porto Real",
    "quatis": "Quatis",
    "paraty": "Paraty",
    "parati": "Paraty",
}


class TimeBracket(Enum):
    MADRUGADA = ("00h às 05h59", 0)
    MANHA = ("06h às 11h59", 6)
    TARDE = ("12h às 17h59", 12)
    NOITE = ("18h às 23h59", 18)

    def __init__(self, label, start_hour):
        self.label = label
        self.start_hour = start_hour

    @classmethod
    def for_hour(cls, hour: int) -> "TimeBracket":
        if not 0 <= hour <= 23:
            raise ValueError(f"hour out of range: {hour}")
        return [b for b in cls if b.start_hour <= hour][-1]
