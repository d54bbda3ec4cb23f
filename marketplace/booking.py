"""
Reservation booking engine.

A farmer books a window inside one of an Offer's availability slots. The
provider validates the request, then the farmer gives the final validation,
which approves the reservation. Pending reservations may overlap each other;
approved ones may not, so overlap with approved siblings is checked both
when a reservation is created and when it is approved.

Every operation runs in one transaction scoped to the reservation and its
offer; the offer row is always locked before the reservation row.
"""

import logging

from django.db import transaction
from django.utils import timezone

from .availability import TimeSlot, duration_days, fits_availability, overlaps
from .exceptions import (
    AlreadyResolved,
    InvalidState,
    InvalidWindow,
    NotAuthorized,
    SlotUnavailable,
)
from .models import Offer, Reservation
from .projection import project_offer
from .repository import check_version, load_aggregate, save_aggregate
from .signals import emit_reservation_approved

logger = logging.getLogger(__name__)

RESERVATION_FIELDS = [
    'status',
    'provider_validated',
    'farmer_validated',
    'provider_validated_at',
    'farmer_validated_at',
    'approved_at',
]


def _approved_conflicts(offer_id, window, exclude_pk=None):
    """Approved reservations on ``offer_id`` whose window overlaps ``window``."""
    approved = Reservation.objects.filter(
        offer_id=offer_id,
        status=Reservation.STATUS_APPROVED,
    )
    if exclude_pk is not None:
        approved = approved.exclude(pk=exclude_pk)
    return [other for other in approved if overlaps(other.time_slot, window)]


def _require_pending(reservation):
    if reservation.status != Reservation.STATUS_PENDING:
        raise AlreadyResolved(f'This reservation is already {reservation.status}.')


def _require_party(reservation, actor, field):
    if actor is None or getattr(reservation, f'{field}_id') != actor.pk:
        logger.warning(
            f"Unauthorized reservation action. "
            f"Reservation ID: {reservation.pk}, "
            f"Required Party: {field}, "
            f"User ID: {getattr(actor, 'pk', None)}"
        )
        raise NotAuthorized(f'Only the {field} of this reservation can do this.')


def _lock(reservation_id):
    """
    Lock a reservation's offer, then the reservation itself.

    Returns:
        tuple: (offer, reservation, version)
    """
    offer_id = Reservation.objects.values_list('offer_id', flat=True).get(pk=reservation_id)
    offer = Offer.objects.select_for_update().get(pk=offer_id)
    reservation, version = load_aggregate(Reservation, reservation_id)
    return offer, reservation, version


def _save_and_project(reservation, version, offer):
    save_aggregate(reservation, version, RESERVATION_FIELDS)
    project_offer(offer)


def create_reservation(offer_id, farmer, start_date, end_date):
    """
    Book a window on an offer.

    Args:
        offer_id: Offer to book
        farmer: Authenticated farmer User
        start_date / end_date: Requested window, both days included

    Returns:
        Reservation: The pending reservation

    Raises:
        InvalidWindow: If start_date is after end_date
        InvalidState: If the actor is not a farmer or owns the offer
        SlotUnavailable: If the window is not inside a published slot or
            overlaps an approved reservation
        Offer.DoesNotExist: If the offer does not exist
    """
    if start_date is None or end_date is None or start_date > end_date:
        raise InvalidWindow()
    if farmer is None or not farmer.is_farmer():
        raise InvalidState('Only farmers can book equipment.')

    window = TimeSlot(start_date, end_date)

    with transaction.atomic():
        offer = Offer.objects.select_for_update().get(pk=offer_id)

        if offer.provider_id == farmer.pk:
            raise InvalidState('You cannot book your own equipment.')

        if not fits_availability(offer.time_slots(), window):
            logger.warning(
                f"Reservation outside availability. "
                f"Offer ID: {offer.pk}, "
                f"Window: {start_date} -> {end_date}, "
                f"Farmer ID: {farmer.pk}"
            )
            raise SlotUnavailable(
                'The selected dates do not fit inside the availability of this equipment.'
            )

        conflicts = _approved_conflicts(offer.pk, window)
        if conflicts:
            logger.warning(
                f"Reservation conflicts with approved booking. "
                f"Offer ID: {offer.pk}, "
                f"Window: {start_date} -> {end_date}, "
                f"Conflicting Reservation ID: {conflicts[0].pk}"
            )
            raise SlotUnavailable('The equipment is already booked during the requested dates.')

        reservation = Reservation.objects.create(
            offer=offer,
            farmer=farmer,
            provider_id=offer.provider_id,
            start_date=start_date,
            end_date=end_date,
            price_rate=offer.price_rate,
            total_cost=offer.price_rate * duration_days(window),
        )

        project_offer(offer)

    logger.info(
        f"Reservation created. "
        f"Reservation ID: {reservation.pk}, "
        f"Offer ID: {offer.pk}, "
        f"Farmer: {farmer.email} (ID: {farmer.pk}), "
        f"Window: {start_date} -> {end_date}, "
        f"Total Cost: {reservation.total_cost}"
    )
    return reservation


def provider_validate_reservation(reservation_id, actor, expected_version=None):
    """
    First half of the double validation, given by the provider.

    Raises:
        NotAuthorized: If the actor is not the provider
        AlreadyResolved: If the reservation is no longer pending
    """
    with transaction.atomic():
        offer, reservation, version = _lock(reservation_id)
        check_version(reservation, expected_version)
        _require_party(reservation, actor, 'provider')
        _require_pending(reservation)

        if not reservation.provider_validated:
            reservation.provider_validated = True
            reservation.provider_validated_at = timezone.now()

        _save_and_project(reservation, version, offer)

    logger.info(
        f"Reservation validated by provider. "
        f"Reservation ID: {reservation.pk}, "
        f"Offer ID: {reservation.offer_id}"
    )
    return reservation


def farmer_final_validate_reservation(reservation_id, actor, expected_version=None):
    """
    Second half of the double validation; approves the reservation.

    Raises:
        NotAuthorized: If the actor is not the farmer
        AlreadyResolved: If the reservation is no longer pending
        InvalidState: If the provider has not validated yet
        SlotUnavailable: If an approved reservation now overlaps the window
    """
    with transaction.atomic():
        offer, reservation, version = _lock(reservation_id)
        check_version(reservation, expected_version)
        _require_party(reservation, actor, 'farmer')
        _require_pending(reservation)

        if not reservation.provider_validated:
            raise InvalidState('The provider must validate the reservation first.')

        conflicts = _approved_conflicts(
            reservation.offer_id, reservation.time_slot, exclude_pk=reservation.pk
        )
        if conflicts:
            logger.warning(
                f"Approval refused, window already booked. "
                f"Reservation ID: {reservation.pk}, "
                f"Offer ID: {reservation.offer_id}, "
                f"Conflicting Reservation ID: {conflicts[0].pk}"
            )
            raise SlotUnavailable('The equipment has already been booked for an overlapping window.')

        now = timezone.now()
        reservation.farmer_validated = True
        reservation.farmer_validated_at = now
        reservation.status = Reservation.STATUS_APPROVED
        reservation.approved_at = now

        _save_and_project(reservation, version, offer)
        emit_reservation_approved(reservation)

    logger.info(
        f"Reservation approved. "
        f"Reservation ID: {reservation.pk}, "
        f"Offer ID: {reservation.offer_id}, "
        f"Window: {reservation.start_date} -> {reservation.end_date}"
    )
    return reservation


def reject_reservation(reservation_id, actor, expected_version=None):
    """
    Provider turns a pending reservation down.

    Raises:
        NotAuthorized: If the actor is not the provider
        AlreadyResolved: If the reservation is no longer pending
    """
    with transaction.atomic():
        offer, reservation, version = _lock(reservation_id)
        check_version(reservation, expected_version)
        _require_party(reservation, actor, 'provider')
        _require_pending(reservation)

        reservation.status = Reservation.STATUS_REJECTED
        _save_and_project(reservation, version, offer)

    logger.info(
        f"Reservation rejected. "
        f"Reservation ID: {reservation.pk}, "
        f"Offer ID: {reservation.offer_id}"
    )
    return reservation


def cancel_reservation(reservation_id, actor, expected_version=None):
    """
    Farmer withdraws a pending reservation.

    Raises:
        NotAuthorized: If the actor is not the farmer
        AlreadyResolved: If the reservation is no longer pending
    """
    with transaction.atomic():
        offer, reservation, version = _lock(reservation_id)
        check_version(reservation, expected_version)
        _require_party(reservation, actor, 'farmer')
        _require_pending(reservation)

        reservation.status = Reservation.STATUS_CANCELLED
        _save_and_project(reservation, version, offer)

    logger.info(
        f"Reservation cancelled. "
        f"Reservation ID: {reservation.pk}, "
        f"Offer ID: {reservation.offer_id}"
    )
    return reservation


def get_contract_terms(reservation):
    """
    Terms of an approved reservation, as read by contract generation.

    Raises:
        InvalidState: If the reservation is not approved
    """
    if not reservation.is_finalized:
        raise InvalidState('The contract is only available once the reservation is approved.')

    offer = reservation.offer
    return {
        'kind': 'reservation',
        'reservation_id': reservation.pk,
        'offer_id': offer.pk,
        'farmer': {'id': reservation.farmer_id, 'email': reservation.farmer.email},
        'provider': {'id': reservation.provider_id, 'email': reservation.provider.email},
        'equipment_type': offer.equipment_type,
        'start_date': reservation.start_date.isoformat(),
        'end_date': reservation.end_date.isoformat(),
        'days': duration_days(reservation.time_slot),
        'price_rate': str(reservation.price_rate),
        'total_cost': str(reservation.total_cost),
        'approved_at': reservation.approved_at.isoformat(),
    }
