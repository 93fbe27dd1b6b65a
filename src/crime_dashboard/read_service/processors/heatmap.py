# src/crime_dashboard/read_service/processors/heatmap.py

"""
Heat-map buckets: incident counts per (city, category) inside a unit's
operating area, anchored to fixed city coordinates.

Municipality text is free-form, so it is normalized first and looked up
in the alias table. Records whose municipality does not resolve to a city
of the unit are left out of the map (they still count in the totals).
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from crime_dashboard.exceptions import RecordNotFoundError
from crime_dashboard.reference import (
    CATEGORIES, CATEGORY_COLORS, CITY_ALIASES, SENTINEL, UNIT_AREAS, UNIT_CENTERS, UNIT_ZOOM,
    CrimeCategory, match_category
)

BASE_RADIUS = 300
RADIUS_PER_INCIDENT = 300
MAX_RADIUS = 3000
FILL_OPACITY = 0.4
NEARBY_THRESHOLD = 0.02

_NON_LETTERS = re.compile(r"[^a-z\s]")
_SPACES = re.compile(r"\s+")


def normalize_city_name(name: Optional[str]) -> str:
    """'  Barra do PIRAÍ-RJ ' -> 'barra do pirairj'. Lowercase, no accents, letters and single spaces."""
    if not name:
        return ""
    text = unicodedata.normalize("NFD", str(name).lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_LETTERS.sub("", text)
    return _SPACES.sub(" ", text).strip()


def resolve_city(unit: str, municipality: Optional[str]) -> Optional[str]:
    """Canonical city name for a municipality, or None if it isn't in the unit's area."""
    normalized = normalize_city_name(municipality)
    if not normalized:
        return None
    city = CITY_ALIASES.get(normalized) or CITY_ALIASES.get(normalized.replace(" ", ""))
    if city is None:
        return None
    area = {loc.city for loc in UNIT_AREAS.get(unit, [])}
    return city if city in area else None


@dataclass
class HeatMapBucket:
    city: str
    category: CrimeCategory
    lat: float
    lng: float
    count: int = 0
    neighborhoods: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return f"{self.city}-{self.category.label}"

    def to_dict(self, nearby: List[str] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "city": self.city,
            "category": self.category.key,
            "label": self.category.label,
            "count": self.count,
            "neighborhoods": self.neighborhoods,
            "lat": self.lat,
            "lng": self.lng,
            "style": circle_style(self.count, self.category),
            "nearby": nearby if nearby is not None else [self.id],
        }


def build_heatmap_buckets(unit: str, records: Iterable[Mapping[str, Any]]) -> List[HeatMapBucket]:
    """
    One bucket per (city, category) with at least one record, ordered by the
    unit's city list and then category order.

    Raises:
        RecordNotFoundError: the unit has no operating area.
    """
    area = UNIT_AREAS.get(unit)
    if area is None:
        raise RecordNotFoundError(f"No operating area for {unit}")

    counts: Dict[Tuple[str, CrimeCategory], int] = {}
    neighborhoods: Dict[Tuple[str, CrimeCategory], set] = {}

    for record in records:
        if record.get("aisp", unit) != unit:
            continue
        category = match_category(record.get("strategic_indicator"))
        if category is None:
            continue
        city = resolve_city(unit, record.get("municipality"))
        if city is None:
            continue

        key = (city, category)
        counts[key] = counts.get(key, 0) + 1
        neighborhood = record.get("neighborhood")
        if neighborhood and neighborhood != SENTINEL:
            neighborhoods.setdefault(key, set()).add(neighborhood)

    buckets = []
    for location in area:
        for category in CATEGORIES:
            key = (location.city, category)
            if key in counts:
                buckets.append(HeatMapBucket(
                    city=location.city,
                    category=category,
                    lat=location.lat,
                    lng=location.lng,
                    count=counts[key],
                    neighborhoods=sorted(neighborhoods.get(key, ())),
                ))
    return buckets


def circle_style(count: int, category: CrimeCategory) -> Dict[str, Any]:
    color = CATEGORY_COLORS[category]
    return {
        "radius": min(BASE_RADIUS + count * RADIUS_PER_INCIDENT, MAX_RADIUS),
        "color": color,
        "fillColor": color,
        "fillOpacity": FILL_OPACITY,
    }


def nearby_buckets(buckets: List[HeatMapBucket], bucket: HeatMapBucket,
                   threshold: float = NEARBY_THRESHOLD) -> List[HeatMapBucket]:
    """Buckets whose coordinates are within threshold degrees of bucket (itself included)."""
    return [
        b for b in buckets
        if abs(b.lat - bucket.lat) < threshold and abs(b.lng - bucket.lng) < threshold
    ]


def heatmap_payload(unit: str, records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Buckets plus the unit's map centre and zoom, as served by the API."""
    buckets = build_heatmap_buckets(unit, records)
    center = UNIT_CENTERS[unit]
    return {
        "unit": unit,
        "center": {"city": center.city, "lat": center.lat, "lng": center.lng},
        "zoom": UNIT_ZOOM[unit],
        "buckets": [
            b.to_dict(nearby=[n.id for n in nearby_buckets(buckets, b)]) for b in buckets
        ],
    }
