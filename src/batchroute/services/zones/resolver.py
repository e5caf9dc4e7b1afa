"""Best-effort zone resolution from structured hints, address text and coordinates.

Resolution order, first match wins:

1. an explicit, non-empty zone field;
2. a known zone name found in the address (indicator tokens such as
   "barangay" or "brgy" are ignored when comparing);
3. a landmark or area alias from the gazetteer;
4. a zone boundary that contains the coordinates;
5. the sentinel zone.

The resolver never raises: an unmatched order lands in the sentinel zone and
is batched on its own rather than being pushed into a wrong zone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from ...config import settings
from ...data.gazetteer_repository import ZoneEntry, load_gazetteer
from ...errors import ZoneUnresolved
from ...models.domain import Coordinates
from ..geospatial import point_in_polygon

logger = logging.getLogger(__name__)

_INDICATOR = r"(?:barangay|brgy|bgy)\.?"
_INDICATOR_TOKEN = re.compile(rf"\b{_INDICATOR}(?=\s|$|\d)", re.IGNORECASE)
_INDICATOR_SUFFIX = re.compile(rf"\b{_INDICATOR}\s*$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def strip_indicators(text: str) -> str:
    """Remove zone-indicator tokens and collapse whitespace."""

    stripped = _INDICATOR_TOKEN.sub(" ", text)
    return _WHITESPACE.sub(" ", stripped).strip(" ,.-")


def _key(text: str) -> str:
    return strip_indicators(text).casefold()


def _word_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![\w-]){re.escape(phrase)}(?![\w-])")


@dataclass(slots=True)
class _CompiledZone:
    entry: ZoneEntry
    key: str
    pattern: re.Pattern[str]
    numeric: bool


class ZoneResolver:
    """Maps raw addresses to canonical zone keys using a read-only gazetteer."""

    def __init__(self, zones: Sequence[ZoneEntry] | None = None, unknown_zone: str | None = None) -> None:
        self.zones = tuple(zones if zones is not None else load_gazetteer())
        self.unknown_zone = unknown_zone or settings.unknown_zone
        self._by_key: dict[str, ZoneEntry] = {}
        self._compiled: list[_CompiledZone] = []
        self._aliases: list[tuple[str, re.Pattern[str], ZoneEntry]] = []

        for entry in self.zones:
            key = _key(entry.name)
            if not key:
                continue
            self._by_key.setdefault(key, entry)
            numeric = key.isdigit()
            if numeric:
                # bare numbers only count when written with an indicator, e.g. "Brgy 17"
                pattern = re.compile(rf"\b{_INDICATOR}\s*{re.escape(key)}(?!\d)")
            else:
                pattern = _word_pattern(key)
            self._compiled.append(_CompiledZone(entry=entry, key=key, pattern=pattern, numeric=numeric))
            for alias in entry.aliases:
                alias_key = _WHITESPACE.sub(" ", alias).strip().casefold()
                if alias_key:
                    self._aliases.append((alias_key, _word_pattern(alias_key), entry))

        # longest aliases first so "Iligan City Hall" wins over "City Hall"
        self._aliases.sort(key=lambda item: len(item[0]), reverse=True)

    def resolve(
        self,
        address_text: str | None,
        coordinates: Optional[Coordinates] = None,
        zone_hint: str | None = None,
    ) -> str:
        try:
            return self.resolve_strict(address_text, coordinates, zone_hint)
        except ZoneUnresolved as exc:
            logger.info(f"{exc}; using sentinel zone '{self.unknown_zone}'")
            return self.unknown_zone

    def resolve_strict(
        self,
        address_text: str | None,
        coordinates: Optional[Coordinates] = None,
        zone_hint: str | None = None,
    ) -> str:
        explicit = self.normalize(zone_hint)
        if explicit:
            return explicit

        address = _WHITESPACE.sub(" ", address_text or "").strip().casefold()
        if address:
            matched = self._match_name(address) or self._match_alias(address)
            if matched:
                return matched

        if coordinates is not None:
            matched = self._match_boundary(coordinates)
            if matched:
                return matched

        raise ZoneUnresolved(f"No zone matched address '{address_text or ''}'")

    def normalize(self, zone: str | None) -> str | None:
        """Canonicalize a zone label; known zones map to their gazetteer spelling."""

        if zone is None:
            return None
        cleaned = strip_indicators(str(zone))
        if not cleaned or cleaned.casefold() in {"null", "none", "unknown", "unknown location"}:
            return None
        entry = self._by_key.get(cleaned.casefold())
        if entry is not None:
            return entry.name
        return cleaned.title()

    def _match_name(self, address: str) -> str | None:
        best: tuple[bool, int, int] | None = None
        best_entry: ZoneEntry | None = None
        for compiled in self._compiled:
            for match in compiled.pattern.finditer(address):
                indicated = compiled.numeric or bool(_INDICATOR_SUFFIX.search(address[: match.start()]))
                rank = (indicated, match.start(), len(compiled.key))
                if best is None or rank > best:
                    best = rank
                    best_entry = compiled.entry
        return best_entry.name if best_entry else None

    def _match_alias(self, address: str) -> str | None:
        for _alias, pattern, entry in self._aliases:
            if pattern.search(address):
                return entry.name
        return None

    def _match_boundary(self, coordinates: Coordinates) -> str | None:
        hits = [
            entry.name
            for entry in self.zones
            if len(entry.boundary) >= 3
            and point_in_polygon(coordinates.latitude, coordinates.longitude, entry.boundary)
        ]
        if len(hits) == 1:
            return hits[0]
        if len(hits) > 1:
            logger.info(f"Coordinates {coordinates} fall inside {len(hits)} zone boundaries; ignoring")
        return None
