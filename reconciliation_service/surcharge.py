"""
surcharge.py — Delivery Surcharge Calculator and Delivery Zone Table

The zone table is an input of order creation; it is loaded once from
DELIVERY_ZONES_PATH (JSON list) or falls back to the built-in table.
All fees and thresholds are in minor currency units.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from . import config

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryZone:
    id: str
    title: str
    fee_under_threshold: int
    free_from_threshold: int


DEFAULT_ZONES = (
    DeliveryZone("center", "Sochi centre", 30000, 400000),
    DeliveryZone("dagomys_matsesta", "Dagomys, Matsesta", 50000, 500000),
    DeliveryZone("khosta", "Khosta", 70000, 700000),
    DeliveryZone("adler", "Adler", 90000, 900000),
    DeliveryZone("sirius_loo", "Sirius, Loo", 120000, 1200000),
    DeliveryZone("krasnaya_polyana", "Krasnaya Polyana", 180000, 1800000),
    DeliveryZone("esto_sadok", "Esto-Sadok", 200000, 2000000),
    DeliveryZone("roza_hutor", "Roza Khutor", 220000, 2200000),
    DeliveryZone("height_960", "Altitude 960 m (Roza Khutor / Gorki Gorod)", 240000, 2400000),
)


def compute_surcharge(
        subtotal: int,
        zone: Optional[DeliveryZone],
        is_pickup: bool,
        delivery_time_slot: Optional[str],
        night_slot: str = config.NIGHT_DELIVERY_SLOT
) -> int:
    """
    Computes the delivery surcharge for an order.

    Args:
        subtotal (int): Sum of all line items in minor units.
        zone (DeliveryZone | None): Selected delivery zone.
        is_pickup (bool): Buyer collects the order themselves.
        delivery_time_slot (str | None): Requested time slot; `night_slot` selects the night tariff.

    Returns:
        int: Surcharge in minor units.
    """
    if is_pickup or zone is None:
        return 0

    above_free_threshold = subtotal >= zone.free_from_threshold
    if delivery_time_slot == night_slot:
        # Night tariff: flat fee even for free orders, doubled otherwise
        return zone.fee_under_threshold if above_free_threshold else zone.fee_under_threshold * 2

    return 0 if above_free_threshold else zone.fee_under_threshold


def load_zones(path: str = config.DELIVERY_ZONES_PATH) -> Dict[str, DeliveryZone]:
    """
    Loads the delivery zone table keyed by zone id.

    The JSON file is a list of objects with `id`, `title`, `feeUnderThreshold`
    and `freeFromThreshold`. Without a path the built-in table is used.
    """
    if not path:
        return {zone.id: zone for zone in DEFAULT_ZONES}

    with open(path, encoding="utf-8") as fh:
        rows = json.load(fh)

    zones = {}
    for row in rows:
        zone = DeliveryZone(
            id=str(row["id"]),
            title=row["title"],
            fee_under_threshold=int(row["feeUnderThreshold"]),
            free_from_threshold=int(row["freeFromThreshold"]),
        )
        zones[zone.id] = zone
    log.info(f"{len(zones)} delivery zones loaded from {path}.")
    return zones
