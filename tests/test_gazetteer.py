import json
from pathlib import Path

import pytest
from openpyxl import Workbook

from batchroute.data.gazetteer_repository import BUILTIN_ZONES, load_gazetteer


@pytest.fixture(autouse=True)
def clear_gazetteer_cache():
    load_gazetteer.cache_clear()
    yield
    load_gazetteer.cache_clear()


def test_builtin_table_is_default(monkeypatch):
    from batchroute.data import gazetteer_repository

    monkeypatch.setattr(gazetteer_repository.settings, "gazetteer_file", None)

    assert load_gazetteer() == BUILTIN_ZONES


def test_loads_json_gazetteer(tmp_path: Path):
    path = tmp_path / "zones.json"
    path.write_text(
        json.dumps(
            {
                "zones": [
                    {"name": "Harbor", "aliases": ["Pier 1", "Fish Port"]},
                    {"name": "Hill", "aliases": "Lookout; Tower", "boundary": [[0, 0], [0, 1], [1, 1]]},
                    {"name": ""},
                ]
            }
        ),
        encoding="utf-8",
    )

    zones = load_gazetteer(path)

    assert [zone.name for zone in zones] == ["Harbor", "Hill"]
    assert zones[0].aliases == ("Pier 1", "Fish Port")
    assert zones[1].aliases == ("Lookout", "Tower")
    assert zones[1].boundary == ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0))


def test_loads_workbook_gazetteer(tmp_path: Path):
    path = tmp_path / "zones.xlsx"
    wb = Workbook()
    sheet = wb.active
    sheet.append(["Zone", "Aliases", "Boundary"])
    sheet.append(["Harbor", "Pier 1;Fish Port", None])
    sheet.append(["Hill", None, "[[0, 0], [0, 1], [1, 1]]"])
    wb.save(path)

    zones = load_gazetteer(path)

    assert [zone.name for zone in zones] == ["Harbor", "Hill"]
    assert zones[0].aliases == ("Pier 1", "Fish Port")
    assert len(zones[1].boundary) == 3


def test_workbook_without_zone_column_is_rejected(tmp_path: Path):
    path = tmp_path / "zones.xlsx"
    wb = Workbook()
    wb.active.append(["Name"])
    wb.active.append(["Harbor"])
    wb.save(path)

    with pytest.raises(ValueError, match="Zone"):
        load_gazetteer(path)


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_gazetteer(tmp_path / "missing.json")
