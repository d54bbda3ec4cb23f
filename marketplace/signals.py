"""
Domain events emitted by the negotiation and booking engines.

Events are sent only after the finalizing transaction commits, so receivers
(notifications, contract generation) never observe a rolled-back agreement.
"""

import logging

from django.db import transaction
from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent with demand_id and proposal_id once a proposal is finalized.
proposal_finalized = Signal()

# Sent with offer_id and reservation_id once a reservation is approved.
reservation_approved = Signal()


def emit_proposal_finalized(proposal):
    """Schedule ``proposal_finalized`` for after the current transaction commits."""
    demand_id = proposal.demand_id
    proposal_id = proposal.pk
    transaction.on_commit(
        lambda: proposal_finalized.send(
            sender=type(proposal),
            demand_id=demand_id,
            proposal_id=proposal_id,
        )
    )


def emit_reservation_approved(reservation):
    """Schedule ``reservation_approved`` for after the current transaction commits."""
    offer_id = reservation.offer_id
    reservation_id = reservation.pk
    transaction.on_commit(
        lambda: reservation_approved.send(
            sender=type(reservation),
            offer_id=offer_id,
            reservation_id=reservation_id,
        )
    )


@receiver(proposal_finalized)
def log_proposal_finalized(sender, demand_id, proposal_id, **kwargs):
    """Record the agreement so the contract can be generated downstream."""
    logger.info(
        f"Proposal finalized. "
        f"Demand ID: {demand_id}, "
        f"Proposal ID: {proposal_id}"
    )


@receiver(reservation_approved)
def log_reservation_approved(sender, offer_id, reservation_id, **kwargs):
    """Record the booking so the contract can be generated downstream."""
    logger.info(
        f"Reservation approved. "
        f"Offer ID: {offer_id}, "
        f"Reservation ID: {reservation_id}"
    )
