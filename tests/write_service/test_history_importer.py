import pytest
from sqlalchemy import select

from crime_dashboard.exceptions import SpreadsheetFormatError
from crime_dashboard.write_service.consumers.history_importer import HistoryImporter
from crime_dashboard.write_service.consumers.incident_importer import IncidentImporter


@pytest.fixture
def seeded(engine, tables, make_row, make_xlsx):
    IncidentImporter(engine, tables).import_file(make_xlsx([
        make_row(**{"RO": "001-00001/2025"}),
        make_row(**{"RO": "001-00002/2025"}),
    ]))


def test_rows_matched_by_ro(seeded, engine, tables, make_xlsx):
    content = make_xlsx([
        {"RO": "001-00001/2025", "Historico": "Autor preso em flagrante"},
        {"RO": "999-99999/2025", "Historico": "RO inexistente"},
        {"RO": "001-00002/2025", "Historico": None},
        {"RO": "001-00002/2025", "Historico": "Veículo recuperado"},
    ])
    result = HistoryImporter(engine, tables).import_file(content, "historico.xlsx")

    assert result.success
    assert (result.imported, result.failed) == (2, 2)
    assert [e["row"] for e in result.errors] == [2, 3]
    assert result.errors[0]["reason"] == "RO not found"

    with engine.connect() as conn:
        crimes = {r.ro: r.id for r in conn.execute(select(tables.crimes))}
        stored = conn.execute(select(tables.history).order_by(tables.history.c.id)).fetchall()
    assert [(h.ro, h.record_id, h.text) for h in stored] == [
        ("001-00001/2025", crimes["001-00001/2025"], "Autor preso em flagrante"),
        ("001-00002/2025", crimes["001-00002/2025"], "Veículo recuperado"),
    ]


def test_nothing_imported_is_not_success(seeded, engine, tables, make_xlsx):
    content = make_xlsx([{"RO": "nope", "Historico": "x"}])
    result = HistoryImporter(engine, tables).import_file(content).to_dict()
    assert result == {
        "success": False,
        "imported": 0,
        "failed": 1,
        "errors": [{"row": 1, "ro": "nope", "reason": "RO not found"}],
    }


@pytest.mark.parametrize("rows,columns", [
    ([{"RO": "1"}], None),
    ([{"RO": "1", "Historico": "x", "Bairro": "Centro"}], None),
    ([], ["RO", "Historico"]),
])
def test_wrong_layout_rejected(engine, tables, make_xlsx, rows, columns):
    with pytest.raises(SpreadsheetFormatError):
        HistoryImporter(engine, tables).import_file(make_xlsx(rows, columns=columns))
