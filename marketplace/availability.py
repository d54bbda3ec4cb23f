"""
Availability matching rules.

Pure functions over time windows and coordinates. Windows are inclusive on
both ends: a window ending on June 5th and another starting on June 5th
overlap. Callers are responsible for passing well-formed windows
(start <= end).
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class TimeSlot:
    start: date
    end: date

    @classmethod
    def of(cls, obj):
        """Build a slot from any object exposing ``start_date``/``end_date``."""
        return cls(obj.start_date, obj.end_date)


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    """Return True when the two windows share at least one day."""
    return a.start <= b.end and b.start <= a.end


def contains(slot: TimeSlot, window: TimeSlot) -> bool:
    """Return True when ``window`` lies entirely inside ``slot``."""
    return window.start >= slot.start and window.end <= slot.end


def fits_availability(slots: Iterable[TimeSlot], window: TimeSlot) -> bool:
    """Return True when some published slot fully contains ``window``."""
    return any(contains(slot, window) for slot in slots)


def duration_days(window: TimeSlot) -> int:
    """Number of billable calendar days in ``window``, both ends included."""
    return (window.end - window.start).days + 1


def distance_km(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lon) points using haversine."""
    lat1, lon1 = float(p1[0]), float(p1[1])
    lat2, lon2 = float(p2[0]), float(p2[1])
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _coordinates(obj) -> Optional[Tuple[float, float]]:
    if obj.latitude is None or obj.longitude is None:
        return None
    return float(obj.latitude), float(obj.longitude)


def rank_offers_for_demand(demand, offers, max_distance_km=None) -> List[Tuple[object, Optional[float]]]:
    """
    Rank candidate offers for a demand.

    Keeps offers that publish at least one availability slot overlapping the
    demand's required window, drops offers farther than ``max_distance_km``
    (when both sides have coordinates), and sorts by distance. Offers without
    coordinates sort last.

    Args:
        demand: Demand-like object with start_date, end_date, latitude, longitude
        offers: iterable of Offer-like objects with ``availability_slots``
        max_distance_km: optional radius filter

    Returns:
        list of (offer, distance_km or None) tuples
    """
    wanted = TimeSlot.of(demand)
    origin = _coordinates(demand)
    ranked = []

    for offer in offers:
        slots = [TimeSlot.of(slot) for slot in offer.availability_slots.all()]
        if not any(overlaps(slot, wanted) for slot in slots):
            continue

        target = _coordinates(offer)
        distance = None
        if origin is not None and target is not None:
            distance = distance_km(origin, target)
            if max_distance_km is not None and distance > max_distance_km:
                continue
        ranked.append((offer, distance))

    ranked.sort(key=lambda item: (item[1] is None, item[1] or 0.0))
    return ranked
