"""
Status projection for Demands and Offers.

The coarse status of a parent is always recomputed from its children rather
than patched incrementally, so it cannot drift from the proposals or
reservations it summarizes.
"""

import logging

from .models import ParentStatus, Proposal, Reservation

logger = logging.getLogger(__name__)


def compute_demand_status(demand):
    """
    Derive a Demand's status from its proposals.

    matched if a proposal is finalized, negotiating if any proposal is
    still live, waiting otherwise.
    """
    proposals = Proposal.objects.filter(demand_id=demand.pk)
    finalized = proposals.filter(
        status=Proposal.STATUS_ACCEPTED,
        farmer_validated=True,
        provider_validated=True,
    )
    if finalized.exists():
        return ParentStatus.MATCHED
    if proposals.exclude(status=Proposal.STATUS_REJECTED).exists():
        return ParentStatus.NEGOTIATING
    return ParentStatus.WAITING


def compute_offer_status(offer):
    """
    Derive an Offer's booking status from its reservations.

    matched if a reservation is approved, negotiating if one is pending,
    waiting otherwise.
    """
    reservations = Reservation.objects.filter(offer_id=offer.pk)
    if reservations.filter(status=Reservation.STATUS_APPROVED).exists():
        return ParentStatus.MATCHED
    if reservations.filter(status=Reservation.STATUS_PENDING).exists():
        return ParentStatus.NEGOTIATING
    return ParentStatus.WAITING


def project_demand(demand, save=True):
    """
    Recompute and store a Demand's status.

    Returns:
        bool: True if the stored status changed
    """
    new_status = compute_demand_status(demand)
    if demand.status == new_status:
        return False

    old_status = demand.status
    demand.status = new_status
    if save:
        demand.save(update_fields=['status', 'updated_at'])
    logger.info(
        f"Demand status projected. "
        f"Demand ID: {demand.pk}, "
        f"Old Status: {old_status}, "
        f"New Status: {new_status}"
    )
    return True


def project_offer(offer, save=True):
    """
    Recompute and store an Offer's booking status.

    Returns:
        bool: True if the stored status changed
    """
    new_status = compute_offer_status(offer)
    if offer.booking_status == new_status:
        return False

    old_status = offer.booking_status
    offer.booking_status = new_status
    if save:
        offer.save(update_fields=['booking_status', 'updated_at'])
    logger.info(
        f"Offer booking status projected. "
        f"Offer ID: {offer.pk}, "
        f"Old Status: {old_status}, "
        f"New Status: {new_status}"
    )
    return True
