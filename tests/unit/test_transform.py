from __future__ import annotations

import pytest

from building_import.models.import_batch import ImportKind
from building_import.models.records import SourceRow
from building_import.services.column_mapper import ColumnMapping
from building_import.services.transform import (
    parse_bool,
    parse_rollout_status,
    parse_rollout_type,
    parse_units,
    transform_building,
    transform_k7_service,
)

BUILDING_HEADERS = [
    "Strasse", "Hausnummer", "PLZ", "Stadt", "Wohneinheiten", "Ausbauart",
    "Ausbaustatus", "Tiefbau", "APL", "Kabel TV",
]


def _resolved(headers, kind=ImportKind.BUILDINGS):
    return ColumnMapping.auto(headers, kind).resolve()


def test_scenario_a_new_record():
    resolved = _resolved(["Strasse", "Hausnummer", "PLZ", "Ausbauart"])
    record = transform_building(SourceRow(2, ("Lindenweg", "5", "85053", "FTTH")), resolved)
    assert record is not None
    assert record.street == "Lindenweg"
    assert record.house_number == "5"
    assert record.postal_code == "85053"
    assert record.rollout_type == "ftth"
    assert record.provided == {"street", "house_number", "postal_code", "rollout_type"}


def test_full_row_coercion():
    resolved = _resolved(BUILDING_HEADERS)
    row = SourceRow(2, ('"Am Bach"', "3a", "85049", "Ingolstadt", "12", "FTTB Glasfaser",
                        "Im Ausbau", "ja", "x", "nein"))
    record = transform_building(row, resolved)
    assert record is not None
    assert record.street == "Am Bach"
    assert record.residential_units == 12
    assert record.rollout_type == "fttb"
    assert record.rollout_status == "im_ausbau"
    assert (record.civil_works_done, record.apl_set, record.cable_tv_available) == (True, True, False)


def test_missing_identity_is_invalid():
    resolved = _resolved(["Strasse", "Hausnummer"])
    assert transform_building(SourceRow(2, ("Lindenweg", "")), resolved) is None
    assert transform_building(SourceRow(3, ("", "5")), resolved) is None


def test_default_city_only_when_absent():
    resolved = _resolved(["Strasse", "Hausnummer", "Stadt"])
    record = transform_building(SourceRow(2, ("Lindenweg", "5", "")), resolved, "Ingolstadt")
    assert record.city == "Ingolstadt"
    assert "city" not in record.provided
    record = transform_building(SourceRow(3, ("Lindenweg", "5", "Gaimersheim")), resolved, "Ingolstadt")
    assert record.city == "Gaimersheim"


def test_defaults_for_unprovided_fields():
    record = transform_building(SourceRow(2, ("Lindenweg", "5")), _resolved(["Strasse", "Hausnummer"]))
    assert record.residential_units == 1
    assert record.rollout_status == "geplant"
    assert record.rollout_type is None


@pytest.mark.parametrize("value,expected", [("1", True), ("TRUE", True), ("Ja", True), ("yes", True),
                                            ("x", True), ("0", False), ("nein", False), ("", False)])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_parse_units_fallback():
    assert parse_units("4") == 4
    assert parse_units("vier") == 1
    assert parse_units("0") == 1


def test_parse_rollout_values():
    assert parse_rollout_type("FTTH") == "ftth"
    assert parse_rollout_type("fttb") == "fttb"
    assert parse_rollout_type("Kupfer") is None
    assert parse_rollout_status("Abgeschlossen") == "abgeschlossen"
    assert parse_rollout_status("fertig") == "abgeschlossen"
    assert parse_rollout_status("in_progress") == "im_ausbau"
    assert parse_rollout_status("irgendwas") == "geplant"


def test_transform_k7_service():
    headers = ["Strasse", "Hausnummer", "PLZ", "STD_Kabel_Gebaeude_ID", "Leistungsprodukt_ID",
               "Leistungsprodukt", "Bandbreite_ID", "Bandbreite"]
    resolved = _resolved(headers, ImportKind.K7_SERVICES)
    record = transform_k7_service(
        SourceRow(2, ("Lindenweg", "5", "85053", "K7-1", "LP1", "Internet 100", "BW1", "100 Mbit")), resolved
    )
    assert record is not None
    assert record.has_service_data
    assert record.service_values("b-1") == {
        "building_id": "b-1",
        "k7_building_id": "K7-1",
        "service_product_id": "LP1",
        "service_product": "Internet 100",
        "bandwidth_id": "BW1",
        "bandwidth": "100 Mbit",
    }


def test_k7_row_without_service_data():
    resolved = _resolved(["Strasse", "Hausnummer", "Leistungsprodukt"], ImportKind.K7_SERVICES)
    record = transform_k7_service(SourceRow(2, ("Lindenweg", "5", "Internet")), resolved)
    assert record is not None
    assert not record.has_service_data
