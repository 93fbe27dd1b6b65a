import pytest

from crime_dashboard.exceptions import RecordNotFoundError
from crime_dashboard.read_service.processors.heatmap import (
    build_heatmap_buckets, circle_style, heatmap_payload, nearby_buckets, normalize_city_name, resolve_city
)
from crime_dashboard.reference import CrimeCategory


def _record(municipality, indicator="Roubo de Rua", neighborhood="Centro", aisp="AISP 10"):
    return {"aisp": aisp, "municipality": municipality, "strategic_indicator": indicator,
            "neighborhood": neighborhood}


@pytest.mark.parametrize("raw,expected", [
    ("Barra do Piraí", "barra do pirai"),
    ("  VALENÇA ", "valenca"),
    ("Eng. Paulo de  Frontin", "eng paulo de frontin"),
    ("Paty-do-Alferes", "patydoalferes"),
    (None, ""),
])
def test_normalize_city_name(raw, expected):
    assert normalize_city_name(raw) == expected


@pytest.mark.parametrize("unit,municipality,expected", [
    ("AISP 10", "BARRA DO PIRAÍ", "Barra do Piraí"),
    ("AISP 10", "Barra do  Pirai", "Barra do Piraí"),
    ("AISP 10", "Eng. Paulo de Frontin", "Engenheiro Paulo de Frontin"),
    ("AISP 43", "Parati", "Paraty"),
    ("AISP 33", "Angra", "Angra dos Reis"),
    ("AISP 10", "Resende", None),         # real city, other unit
    ("AISP 10", "Niterói", None),
    ("AISP 10", "N/A", None),
])
def test_resolve_city(unit, municipality, expected):
    assert resolve_city(unit, municipality) == expected


def test_buckets_count_and_collect_neighborhoods():
    records = [
        _record("Vassouras", neighborhood="Centro"),
        _record("VASSOURAS", neighborhood="Madruga"),
        _record("Vassouras", neighborhood="Centro"),
        _record("Vassouras", indicator="Letalidade Violenta", neighborhood="N/A"),
        _record("Barra do Pirai", indicator="Roubo de Carga"),
        _record("Niterói"),                              # not in the area
        _record("Vassouras", indicator="furto"),         # unknown category
        _record("Vassouras", aisp="AISP 28"),            # other unit
    ]
    buckets = build_heatmap_buckets("AISP 10", records)

    # unit city order (Barra do Piraí first), then category order
    assert [(b.city, b.category, b.count) for b in buckets] == [
        ("Barra do Piraí", CrimeCategory.ROUBO_DE_CARGA, 1),
        ("Vassouras", CrimeCategory.LETALIDADE_VIOLENTA, 1),
        ("Vassouras", CrimeCategory.ROUBO_DE_RUA, 3),
    ]
    street = buckets[2]
    assert street.id == "Vassouras-Roubo de Rua"
    assert street.neighborhoods == ["Centro", "Madruga"]
    assert (street.lat, street.lng) == (-22.4039, -43.6634)
    assert buckets[1].neighborhoods == []


def test_bucket_count_matches_resolved_records():
    records = [_record("Valença")] * 4 + [_record("Valenca", indicator="Roubo de Veículo")] * 2
    by_id = {b.id: b.count for b in build_heatmap_buckets("AISP 10", records)}
    assert by_id == {"Valença-Roubo de Rua": 4, "Valença-Roubo de Veículo": 2}


def test_unknown_unit():
    with pytest.raises(RecordNotFoundError):
        build_heatmap_buckets("RISP 5", [])


def test_circle_style_clamped():
    assert circle_style(1, CrimeCategory.ROUBO_DE_RUA)["radius"] == 600
    assert circle_style(50, CrimeCategory.ROUBO_DE_RUA)["radius"] == 3000
    style = circle_style(2, CrimeCategory.LETALIDADE_VIOLENTA)
    assert style["fillColor"] == "#ff7f0e"
    assert style["fillOpacity"] == 0.4


def test_nearby_buckets():
    buckets = build_heatmap_buckets("AISP 10", [
        _record("Vassouras"),
        _record("Vassouras", indicator="Roubo de Carga"),
        _record("Valença"),
    ])
    vassouras = buckets[-1]
    assert {b.id for b in nearby_buckets(buckets, vassouras)} == {
        "Vassouras-Roubo de Rua", "Vassouras-Roubo de Carga"
    }


def test_payload_carries_center_and_zoom():
    payload = heatmap_payload("AISP 28", [_record("Volta Redonda", aisp="AISP 28")])
    assert payload["center"]["city"] == "Volta Redonda"
    assert payload["zoom"] == 11
    assert payload["buckets"][0]["style"]["radius"] == 600


def test_payload_groups_nearby_buckets():
    payload = heatmap_payload("AISP 10", [
        _record("Vassouras"),
        _record("Vassouras", indicator="Roubo de Carga"),
        _record("Valença"),
    ])
    nearby = {b["id"]: set(b["nearby"]) for b in payload["buckets"]}
    assert nearby["Vassouras-Roubo de Rua"] == {"Vassouras-Roubo de Rua", "Vassouras-Roubo de Carga"}
    assert nearby["Valença-Roubo de Rua"] == {"Valença-Roubo de Rua"}
