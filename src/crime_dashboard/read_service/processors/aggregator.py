# src/crime_dashboard/read_service/processors/aggregator.py

"""
Per-unit / per-category totals and target deltas.

Everything here is a pure function of its input rows: no database access,
so the same record set always yields the same totals.

Category matching goes through reference.match_category (case-insensitive
exact match). A record of a known unit whose indicator matches none of the
four categories is ignored, so a unit's total is always the sum of its
category counts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from crime_dashboard.reference import CATEGORIES, COMMAND_UNIT, UNITS, CrimeCategory, match_category


@dataclass
class UnitTotals:
    unit: str
    counts: Dict[str, int] = field(default_factory=lambda: {c.key: 0 for c in CATEGORIES})

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count_for(self, category: CrimeCategory) -> int:
        return self.counts[category.key]

    def to_dict(self) -> Dict[str, Any]:
        return {"unit": self.unit, **self.counts, "total": self.total}


def aggregate_by_unit(records: Iterable[Mapping[str, Any]], units: List[str] = None) -> Dict[str, UnitTotals]:
    """
    {unit: UnitTotals} for every unit in `units` (default: all AISPs).

    Each unit starts with every category at zero; records of units outside
    the set are skipped.
    """
    units = UNITS if units is None else units
    totals = {unit: UnitTotals(unit) for unit in units}

    for record in records:
        unit_totals = totals.get(record.get("aisp"))
        if unit_totals is None:
            continue
        category = match_category(record.get("strategic_indicator"))
        if category is None:
            continue
        unit_totals.counts[category.key] += 1

    return totals


def command_totals(unit_totals: Mapping[str, UnitTotals], command: str = COMMAND_UNIT) -> UnitTotals:
    """Whole-command aggregate: category-wise sum over the units."""
    summed = UnitTotals(command)
    for totals in unit_totals.values():
        for key, n in totals.counts.items():
            summed.counts[key] += n
    return summed


@dataclass(frozen=True)
class TargetDelta:
    unit: str
    category: CrimeCategory
    actual: int
    target: int

    @property
    def delta(self) -> int:
        return self.actual - self.target

    @property
    def over_target(self) -> bool:
        return self.delta > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit,
            "category": self.category.key,
            "label": self.category.label,
            "actual": self.actual,
            "target": self.target,
            "delta": self.delta,
            "over_target": self.over_target,
        }


def compute_deltas(totals: UnitTotals, unit_targets: Optional[Mapping[str, int]] = None) -> List[TargetDelta]:
    """
    One TargetDelta per category, in category order.

    unit_targets maps crime_type ("roubo de rua") to target_value; a
    category with no target counts as a target of 0.
    """
    by_category: Dict[CrimeCategory, int] = {}
    for crime_type, value in (unit_targets or {}).items():
        category = match_category(crime_type)
        if category is not None:
            by_category[category] = value or 0

    return [
        TargetDelta(totals.unit, category, totals.count_for(category), by_category.get(category, 0))
        for category in CATEGORIES
    ]


def trend_percentage(actual: int, target: int) -> float:
    """(actual - target) / target, in percent. 0 when there is no target."""
    if not target:
        return 0.0
    return round((actual - target) / target * 100, 1)


@dataclass
class CommandSummary:
    units: Dict[str, UnitTotals]
    command: UnitTotals
    deltas: List[TargetDelta]
    comparison: List[Dict[str, Any]]

    @property
    def trend(self) -> Dict[str, float]:
        return {d.category.key: trend_percentage(d.actual, d.target) for d in self.deltas}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "units": [t.to_dict() for t in self.units.values()],
            "deltas": [d.to_dict() for d in self.deltas],
            "trend": self.trend,
            "comparison": self.comparison,
        }


def build_command_summary(records: Iterable[Mapping[str, Any]],
                          targets: Optional[Mapping[str, Mapping[str, int]]] = None,
                          command: str = COMMAND_UNIT) -> CommandSummary:
    """
    Totals for every unit of the command plus the command itself.

    targets is {unit: {crime_type: value}}; the command's own targets are
    the ones stored under the command unit.
    """
    targets = targets or {}
    units = aggregate_by_unit(records)
    summed = command_totals(units, command)

    comparison = []
    for unit, totals in units.items():
        unit_target = sum(d.target for d in compute_deltas(totals, targets.get(unit)))
        comparison.append({
            "unit": unit,
            "total": totals.total,
            "target": unit_target,
            "difference": totals.total - unit_target,
            "over_target": totals.total > unit_target,
        })

    return CommandSummary(
        units=units,
        command=summed,
        deltas=compute_deltas(summed, targets.get(command)),
        comparison=comparison,
    )
