import json

import pytest

from reconciliation_service.surcharge import DEFAULT_ZONES, DeliveryZone, compute_surcharge, load_zones

ZONE = DeliveryZone("z", "Zone", fee_under_threshold=500, free_from_threshold=5000)


@pytest.mark.parametrize("subtotal, slot, expected", [
    (3000, "10:00-12:00", 500),
    (3000, "night", 1000),
    (6000, "10:00-12:00", 0),
    (6000, "night", 500),
    (5000, None, 0),
    (4999, None, 500),
])
def test_zone_surcharge(subtotal, slot, expected):
    assert compute_surcharge(subtotal, ZONE, False, slot, night_slot="night") == expected


@pytest.mark.parametrize("subtotal", [0, 3000, 6000])
@pytest.mark.parametrize("slot", [None, "night"])
def test_pickup_is_free(subtotal, slot):
    assert compute_surcharge(subtotal, ZONE, True, slot, night_slot="night") == 0


def test_no_zone_selected_is_free():
    assert compute_surcharge(3000, None, False, "night", night_slot="night") == 0


def test_load_zones_defaults_to_builtin_table():
    zones = load_zones("")
    assert set(zones) == {zone.id for zone in DEFAULT_ZONES}


def test_load_zones_from_file(tmp_path):
    path = tmp_path / "zones.json"
    path.write_text(json.dumps([
        {"id": "center", "title": "Centre", "feeUnderThreshold": 30000, "freeFromThreshold": 400000},
    ]))
    zones = load_zones(str(path))
    assert zones == {"center": DeliveryZone("center", "Centre", 30000, 400000)}
