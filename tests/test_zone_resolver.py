import pytest

from batchroute.data.gazetteer_repository import BUILTIN_ZONES, ZoneEntry
from batchroute.errors import ZoneUnresolved
from batchroute.models.domain import Coordinates
from batchroute.services.zones import ZoneResolver, strip_indicators


@pytest.fixture
def resolver() -> ZoneResolver:
    return ZoneResolver(zones=BUILTIN_ZONES, unknown_zone="unknown")


def test_strip_indicators_removes_barangay_tokens():
    assert strip_indicators("Brgy. San Antonio") == "San Antonio"
    assert strip_indicators("Barangay  Carmen") == "Carmen"
    assert strip_indicators("bgy 17") == "17"


def test_explicit_zone_hint_wins_over_address(resolver):
    zone = resolver.resolve("Zone 2, Lapasan, Cagayan de Oro", zone_hint="Barangay Carmen")

    assert zone == "Carmen"


def test_placeholder_hint_falls_through_to_address(resolver):
    assert resolver.resolve("123 Main St, Carmen", zone_hint="Unknown") == "Carmen"
    assert resolver.resolve("123 Main St, Carmen", zone_hint="   ") == "Carmen"


def test_known_name_in_address_is_case_insensitive(resolver):
    assert resolver.resolve("Purok 5, BRGY. LAPASAN, CDO") == "Lapasan"
    assert resolver.resolve("Blk 3 Lot 4, nazareth") == "Nazareth"


def test_indicator_preceded_name_beats_plain_mention(resolver):
    zone = resolver.resolve("Brgy. Carmen, near Lapasan highway")

    assert zone == "Carmen"


def test_numbered_zone_requires_indicator(resolver):
    assert resolver.resolve("Purok 3, Brgy 17, Cagayan de Oro") == "Barangay 17"
    assert resolver.resolve("House 17, Carmen") == "Carmen"


def test_alias_resolves_landmark_addresses(resolver):
    assert resolver.resolve("Near SM Uptown, CDO") == "Lapasan"
    assert resolver.resolve("Across Cogon Market") == "Barangay 17"


def test_longest_alias_wins(resolver):
    assert resolver.resolve("In front of Iligan City Hall") == "Poblacion"


def test_unmatched_address_lands_in_sentinel_zone(resolver):
    assert resolver.resolve("somewhere far away") == "unknown"
    assert resolver.resolve(None) == "unknown"


def test_resolve_strict_raises_zone_unresolved(resolver):
    with pytest.raises(ZoneUnresolved):
        resolver.resolve_strict("somewhere far away")


def test_boundary_polygon_resolves_coordinates():
    zones = (
        ZoneEntry("Square", (), ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0))),
        ZoneEntry("Elsewhere", (), ((5.0, 5.0), (5.0, 6.0), (6.0, 6.0), (6.0, 5.0))),
    )
    resolver = ZoneResolver(zones=zones, unknown_zone="unknown")

    assert resolver.resolve("", Coordinates(0.5, 0.5)) == "Square"
    assert resolver.resolve("", Coordinates(3.0, 3.0)) == "unknown"


def test_overlapping_boundaries_are_ambiguous():
    square = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0))
    zones = (ZoneEntry("A", (), square), ZoneEntry("B", (), square))
    resolver = ZoneResolver(zones=zones, unknown_zone="unknown")

    assert resolver.resolve("", Coordinates(0.5, 0.5)) == "unknown"


def test_normalize_keeps_unknown_zone_names_title_cased(resolver):
    assert resolver.normalize("brgy. new town") == "New Town"
    assert resolver.normalize("lapasan") == "Lapasan"
    assert resolver.normalize(None) is None
