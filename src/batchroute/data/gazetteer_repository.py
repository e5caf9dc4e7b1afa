"""Zone gazetteer loader: built-in table, or a JSON/Excel file when configured."""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from openpyxl import load_workbook

from ..config import settings


@dataclass(slots=True, frozen=True)
class ZoneEntry:
    """A known zone with keyword aliases and an optional boundary of (lat, lon) pairs."""

    name: str
    aliases: tuple[str, ...] = ()
    boundary: tuple[tuple[float, float], ...] = field(default=())


# Barangays of Cagayan de Oro and nearby cities, with landmark aliases for
# addresses that omit the barangay name.
BUILTIN_ZONES: tuple[ZoneEntry, ...] = (
    ZoneEntry("Lapasan", ("SM City Cagayan de Oro", "SM Uptown", "Centrio", "Xavier University")),
    ZoneEntry("Carmen", ("Carmen Market", "Carmen Public Market")),
    ZoneEntry("Nazareth", ("USTP", "Nazareth General Hospital", "Limketkai", "J.R. Borja Extension")),
    ZoneEntry("Gusa", ("Gusa Regional High School", "Upper Gusa")),
    ZoneEntry("Bulua", ("Bulua National High School", "Malasag")),
    ZoneEntry("Macasandig", ("Macasandig River",)),
    ZoneEntry("Kauswagan", ()),
    ZoneEntry("Puerto", ("Cagayan de Oro Port",)),
    ZoneEntry("Macabalan", ("Macabalan Wharf",)),
    ZoneEntry("Balulang", ("Lumbia Airport",)),
    ZoneEntry("Barangay 1", ("City Hall", "Plaza Divisoria", "St. Augustine Cathedral")),
    ZoneEntry("Barangay 9", ("Gaston Park", "Rotunda")),
    ZoneEntry("Barangay 17", ("Divisoria Night Market", "Cogon Public Market", "Cogon Market")),
    ZoneEntry("Patag", ()),
    ZoneEntry("Tablon", ()),
    ZoneEntry("Bonbon", ()),
    ZoneEntry("Consolacion", ()),
    ZoneEntry("Iponan", ()),
    ZoneEntry("Puntod", ()),
    ZoneEntry("San Antonio", ()),
    ZoneEntry("Tignapoloan", ()),
    ZoneEntry("Tuburan", ()),
    ZoneEntry("Bayabas", ()),
    ZoneEntry("Bugo", ()),
    ZoneEntry("Camaman-an", ()),
    ZoneEntry("Cugman", ()),
    ZoneEntry("Dansolihon", ()),
    ZoneEntry("Indahag", ()),
    ZoneEntry("Mambuaya", ()),
    ZoneEntry("Pagatpat", ()),
    ZoneEntry("Pigsag-an", ()),
    ZoneEntry("Taglimao", ()),
    ZoneEntry("Tagpangi", ()),
    ZoneEntry("Poblacion", ("Iligan City Hall", "Malaybalay City Hall")),
    ZoneEntry("Tibanga", ("MSU-Iligan Institute of Technology", "MSU-IIT")),
)


def _split_aliases(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return tuple(part.strip() for part in str(value).split(";") if part.strip())


def _parse_boundary(value: object) -> tuple[tuple[float, float], ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = json.loads(value)
    return tuple((float(lat), float(lon)) for lat, lon in value)


def _load_json(path: Path) -> tuple[ZoneEntry, ...]:
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    rows = payload.get("zones", []) if isinstance(payload, dict) else payload
    zones: list[ZoneEntry] = []
    for row in rows:
        name = str(row.get("name") or "").strip()
        if not name:
            continue
        zones.append(
            ZoneEntry(
                name=name,
                aliases=_split_aliases(row.get("aliases")),
                boundary=_parse_boundary(row.get("boundary")),
            )
        )
    return tuple(zones)


def _load_workbook(path: Path) -> tuple[ZoneEntry, ...]:
    wb = load_workbook(path, data_only=True, read_only=True)
    sheet = wb.active
    rows = sheet.iter_rows(min_row=1, values_only=True)
    header = next(rows, None)
    if header is None:
        raise ValueError(f"Gazetteer workbook '{path}' is empty.")

    header_map = {str(name).strip(): idx for idx, name in enumerate(header) if name is not None}
    if "Zone" not in header_map:
        raise ValueError("Gazetteer workbook missing column: Zone")

    zones: list[ZoneEntry] = []
    for row in rows:
        name = row[header_map["Zone"]]
        if not name:
            continue
        aliases = row[header_map["Aliases"]] if "Aliases" in header_map else None
        boundary = row[header_map["Boundary"]] if "Boundary" in header_map else None
        zones.append(
            ZoneEntry(
                name=str(name).strip(),
                aliases=_split_aliases(aliases),
                boundary=_parse_boundary(boundary),
            )
        )
    return tuple(zones)


@functools.lru_cache(maxsize=4)
def load_gazetteer(source: Optional[Path] = None) -> tuple[ZoneEntry, ...]:
    """Load the zone table once; read-mostly and shared across threads."""

    path = source or settings.gazetteer_file
    if path is None:
        return BUILTIN_ZONES
    if not path.exists():
        raise FileNotFoundError(f"Gazetteer file not found: {path}")

    if path.suffix.lower() == ".json":
        zones = _load_json(path)
    elif path.suffix.lower() in {".xlsx", ".xlsm"}:
        zones = _load_workbook(path)
    else:
        raise ValueError(f"Unsupported gazetteer format '{path.suffix}'")

    logging.info(f"Loaded {len(zones)} zones from {path}")
    return zones
