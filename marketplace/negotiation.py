"""
Proposal negotiation engine.

A provider bids on an open Demand; farmer and provider then alternate
counter-offers (farmer on even rounds, provider on odd rounds) until one of
them accepts or rejects. Acceptance starts the double validation: the
proposal is finalized only once both the farmer and the provider have
validated it. Finalizing a proposal rejects every sibling proposal on the
same demand and moves the demand to ``matched`` in the same transaction.

Every operation runs in one transaction scoped to the proposal and its
demand, locks the demand row before the proposal row, and raises a
``marketplace.exceptions`` error on any violation.
"""

import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import (
    AlreadyResolved,
    ConcurrentModification,
    InvalidPrice,
    InvalidState,
    NotAuthorized,
    NotYourTurn,
    RoundLimitExceeded,
)
from .models import Demand, Proposal
from .projection import project_demand
from .repository import check_version, load_aggregate, save_aggregate
from .signals import emit_proposal_finalized

logger = logging.getLogger(__name__)

PROPOSAL_FIELDS = [
    'status',
    'current_price',
    'negotiation_round',
    'last_counter_by',
    'counter_offer_history',
    'farmer_validated',
    'provider_validated',
    'farmer_validated_at',
    'provider_validated_at',
]


def max_negotiation_round():
    return getattr(settings, 'MARKETPLACE_MAX_NEGOTIATION_ROUND', Proposal.MAX_NEGOTIATION_ROUND)


def parse_price(value):
    """
    Coerce a client supplied price to a positive 2-place Decimal.

    Raises:
        InvalidPrice: If the value is not a number, not strictly positive,
            or has more digits than a stored price can hold
    """
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPrice()
    if not price.is_finite() or price <= 0:
        raise InvalidPrice()

    max_digits = Proposal._meta.get_field('current_price').max_digits
    try:
        price = price.quantize(Decimal('0.01'))
    except InvalidOperation:
        raise InvalidPrice(f'Prices are limited to {max_digits} digits.')
    if len(price.as_tuple().digits) > max_digits:
        raise InvalidPrice(f'Prices are limited to {max_digits} digits.')
    return price


def can_counter(proposal, role):
    """True when ``role`` may make the next counter-offer on ``proposal``."""
    return (
        proposal.status == Proposal.STATUS_PENDING
        and proposal.negotiation_round < max_negotiation_round()
        and proposal.whose_turn() == role
    )


def _resolve_role(proposal, actor):
    role = proposal.role_of(actor)
    if role is None:
        logger.warning(
            f"Unauthorized proposal action. "
            f"Proposal ID: {proposal.pk}, "
            f"User ID: {getattr(actor, 'pk', None)}"
        )
        raise NotAuthorized('You are neither the farmer nor the provider of this proposal.')
    return role


def _sign(proposal, role, now):
    if role == Proposal.ROLE_FARMER:
        if not proposal.farmer_validated:
            proposal.farmer_validated = True
            proposal.farmer_validated_at = now
    else:
        if not proposal.provider_validated:
            proposal.provider_validated = True
            proposal.provider_validated_at = now


def _lock(proposal_id):
    """
    Lock a proposal's demand, then the proposal itself.

    Every write to a proposal takes the two locks in this order, so writers
    on sibling proposals queue on the demand instead of on each other.

    Returns:
        tuple: (demand, proposal, version)
    """
    demand_id = Proposal.objects.values_list('demand_id', flat=True).get(pk=proposal_id)
    demand = Demand.objects.select_for_update().get(pk=demand_id)
    proposal, version = load_aggregate(Proposal, proposal_id)
    return demand, proposal, version


def _save_and_project(proposal, version, demand):
    save_aggregate(proposal, version, PROPOSAL_FIELDS)
    project_demand(demand)


def _finalize(proposal, version, demand, now):
    """
    Persist a proposal whose two validation flags are set.

    With the demand locked, makes sure no sibling got there first, then
    rejects every live sibling and projects the demand to ``matched``.
    """

    already_finalized = Proposal.objects.filter(
        demand_id=demand.pk,
        status=Proposal.STATUS_ACCEPTED,
        farmer_validated=True,
        provider_validated=True,
    ).exclude(pk=proposal.pk)
    if already_finalized.exists():
        logger.warning(
            f"Second finalization refused. "
            f"Demand ID: {demand.pk}, "
            f"Proposal ID: {proposal.pk}"
        )
        raise InvalidState('Another proposal has already been finalized for this demand.')

    save_aggregate(proposal, version, PROPOSAL_FIELDS)

    siblings = Proposal.objects.filter(demand_id=demand.pk).exclude(
        pk=proposal.pk
    ).exclude(status=Proposal.STATUS_REJECTED)
    rejected_ids = list(siblings.values_list('pk', flat=True))
    if rejected_ids:
        Proposal.objects.filter(pk__in=rejected_ids).update(
            status=Proposal.STATUS_REJECTED,
            version=F('version') + 1,
            updated_at=now,
        )

    project_demand(demand)
    emit_proposal_finalized(proposal)

    logger.info(
        f"Proposal finalized. "
        f"Proposal ID: {proposal.pk}, "
        f"Demand ID: {demand.pk}, "
        f"Final Price: {proposal.current_price}, "
        f"Auto-rejected Siblings: {rejected_ids}"
    )


def submit_proposal(demand_id, provider, price, description=''):
    """
    Submit a provider's bid on an open demand.

    Args:
        demand_id: Target demand
        provider: Authenticated provider User
        price: Initial price (positive)
        description: Free text shown to the farmer

    Returns:
        Proposal: The created proposal, at round 0 and pending

    Raises:
        InvalidState: If the actor is not a provider, owns the demand, or
            already has a live proposal on it, or if the demand is closed
        InvalidPrice: If the price is not positive
        Demand.DoesNotExist: If the demand does not exist
    """
    if provider is None or not provider.is_provider():
        raise InvalidState('Only providers can submit proposals.')

    amount = parse_price(price)

    with transaction.atomic():
        demand = Demand.objects.select_for_update().get(pk=demand_id)

        if demand.farmer_id == provider.pk:
            raise InvalidState('You cannot bid on your own demand.')

        if not demand.is_open():
            raise InvalidState('This demand is no longer accepting proposals.')

        duplicate = Proposal.objects.filter(
            demand_id=demand.pk,
            provider_id=provider.pk,
        ).exclude(status=Proposal.STATUS_REJECTED)
        if duplicate.exists():
            raise InvalidState('You already have an active proposal on this demand.')

        proposal = Proposal.objects.create(
            demand=demand,
            provider=provider,
            price=amount,
            current_price=amount,
            description=(description or '').strip(),
        )

        project_demand(demand)

    logger.info(
        f"Proposal submitted. "
        f"Proposal ID: {proposal.pk}, "
        f"Demand ID: {demand.pk}, "
        f"Provider: {provider.email} (ID: {provider.pk}), "
        f"Price: {amount}"
    )
    return proposal


def counter_offer(proposal_id, actor, new_price, expected_version):
    """
    Answer the current price with a new one.

    ``expected_version`` is mandatory, so the loser of a race on the same
    round gets ConcurrentModification rather than NotYourTurn.

    Raises:
        ConcurrentModification: If ``expected_version`` is missing or stale,
            or another write won the race
        AlreadyResolved: If the proposal was rejected
        InvalidState: If the proposal already left the negotiation phase
        RoundLimitExceeded: If the round cap has been reached
        NotYourTurn: If the actor is not the one expected to answer
        InvalidPrice: If the new price is not positive
    """
    if expected_version is None:
        raise ConcurrentModification('Re-read the proposal and send the version you are answering.')

    with transaction.atomic():
        _, proposal, version = _lock(proposal_id)
        check_version(proposal, expected_version)
        role = _resolve_role(proposal, actor)

        if proposal.status == Proposal.STATUS_REJECTED:
            raise AlreadyResolved('This proposal has been rejected.')
        if proposal.status != Proposal.STATUS_PENDING:
            raise InvalidState('This proposal is no longer open to counter-offers.')

        current_round = proposal.negotiation_round
        if current_round >= max_negotiation_round():
            raise RoundLimitExceeded()
        if proposal.whose_turn() != role:
            logger.warning(
                f"Counter-offer out of turn. "
                f"Proposal ID: {proposal.pk}, "
                f"Round: {current_round}, "
                f"Actor Role: {role}"
            )
            raise NotYourTurn()

        amount = parse_price(new_price)
        now = timezone.now()

        proposal.counter_offer_history = list(proposal.counter_offer_history or []) + [{
            'round': current_round + 1,
            'by': role,
            'price': str(amount),
            'at': now.isoformat(),
        }]
        previous_price = proposal.current_price
        proposal.current_price = amount
        proposal.negotiation_round = current_round + 1
        proposal.last_counter_by = role

        save_aggregate(proposal, version, PROPOSAL_FIELDS)

    logger.info(
        f"Counter-offer recorded. "
        f"Proposal ID: {proposal.pk}, "
        f"By: {role}, "
        f"Round: {proposal.negotiation_round}, "
        f"Price: {previous_price} -> {amount}"
    )
    return proposal


def accept_proposal(proposal_id, actor, expected_version=None):
    """
    Accept the price currently on the table.

    The first acceptance must come from the party whose turn it is (you
    cannot accept a price you named yourself); it moves the proposal to
    ``accepted`` and sets that party's validation flag. Accepting an
    already accepted proposal signs it for the caller. When both flags end
    up set the proposal is finalized.

    Raises:
        AlreadyResolved: If the proposal is rejected or finalized
        NotYourTurn: If the caller named the current price
        InvalidState: If a sibling proposal is already finalized
    """
    with transaction.atomic():
        demand, proposal, version = _lock(proposal_id)
        check_version(proposal, expected_version)
        role = _resolve_role(proposal, actor)

        if proposal.status == Proposal.STATUS_REJECTED or proposal.is_finalized:
            raise AlreadyResolved()

        if proposal.status == Proposal.STATUS_PENDING:
            if proposal.whose_turn() != role:
                raise NotYourTurn('You cannot accept a price you proposed yourself.')
            proposal.status = Proposal.STATUS_ACCEPTED

        now = timezone.now()
        _sign(proposal, role, now)

        if proposal.is_finalized:
            _finalize(proposal, version, demand, now)
        else:
            _save_and_project(proposal, version, demand)

    logger.info(
        f"Proposal accepted. "
        f"Proposal ID: {proposal.pk}, "
        f"By: {role}, "
        f"Price: {proposal.current_price}, "
        f"Finalized: {proposal.is_finalized}"
    )
    return proposal


def reject_proposal(proposal_id, actor, expected_version=None):
    """
    Reject a proposal at any round. Rejecting twice is a no-op.

    Raises:
        AlreadyResolved: If the proposal is finalized
    """
    with transaction.atomic():
        demand, proposal, version = _lock(proposal_id)
        role = _resolve_role(proposal, actor)

        if proposal.status == Proposal.STATUS_REJECTED:
            return proposal

        check_version(proposal, expected_version)

        if proposal.is_finalized:
            raise AlreadyResolved('A finalized proposal cannot be rejected.')

        proposal.status = Proposal.STATUS_REJECTED
        _save_and_project(proposal, version, demand)

    logger.info(
        f"Proposal rejected. "
        f"Proposal ID: {proposal.pk}, "
        f"By: {role}, "
        f"Round: {proposal.negotiation_round}"
    )
    return proposal


def final_validate_proposal(proposal_id, actor, expected_version=None):
    """
    Give the caller's final sign-off on an accepted proposal.

    Raises:
        AlreadyResolved: If the proposal is rejected or already finalized
        InvalidState: If nobody has accepted the proposal yet, or a sibling
            proposal is already finalized
    """
    with transaction.atomic():
        demand, proposal, version = _lock(proposal_id)
        check_version(proposal, expected_version)
        role = _resolve_role(proposal, actor)

        if proposal.status == Proposal.STATUS_REJECTED or proposal.is_finalized:
            raise AlreadyResolved()
        if proposal.status != Proposal.STATUS_ACCEPTED:
            raise InvalidState('The proposal must be accepted before it can be validated.')

        now = timezone.now()
        _sign(proposal, role, now)

        if proposal.is_finalized:
            _finalize(proposal, version, demand, now)
        else:
            _save_and_project(proposal, version, demand)

    logger.info(
        f"Proposal validated. "
        f"Proposal ID: {proposal.pk}, "
        f"By: {role}, "
        f"Finalized: {proposal.is_finalized}"
    )
    return proposal


def get_contract_terms(proposal):
    """
    Terms of a finalized proposal, as read by contract generation.

    Raises:
        InvalidState: If the proposal is not finalized
    """
    if not proposal.is_finalized:
        raise InvalidState('The contract is only available once both parties have validated.')

    demand = proposal.demand
    signed_at = max(proposal.farmer_validated_at, proposal.provider_validated_at)
    return {
        'kind': 'proposal',
        'proposal_id': proposal.pk,
        'demand_id': demand.pk,
        'farmer': {'id': demand.farmer_id, 'email': demand.farmer.email},
        'provider': {'id': proposal.provider_id, 'email': proposal.provider.email},
        'service': demand.required_service,
        'start_date': demand.start_date.isoformat(),
        'end_date': demand.end_date.isoformat(),
        'location': demand.city,
        'initial_price': str(proposal.price),
        'final_price': str(proposal.current_price),
        'negotiation_rounds': proposal.negotiation_round,
        'signed_at': signed_at.isoformat(),
    }
