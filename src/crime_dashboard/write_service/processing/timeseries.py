"""Daily incident count per unit, derived from freshly imported records."""

from collections import Counter
from typing import Dict, Iterable, List

from crime_dashboard.write_service.processing.incident_normalizer import IncidentRecord


def daily_counts_by_unit(records: Iterable[IncidentRecord]) -> List[Dict]:
    """
    Rows for the crime_timeseries table: {"date", "unit", "count"}.

    Records without a usable registration date can't be placed on the
    series and are skipped. Output is sorted by date, then unit.
    """
    counts = Counter(
        (r.registration_date, r.aisp) for r in records if r.registration_date is not None
    )
    return [
        {"date": day, "unit": unit, "count": n}
        for (day, unit), n in sorted(counts.items())
    ]
