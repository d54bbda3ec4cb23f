"""
Concurrency tests for proposals and reservations.

Tests cover:
- Two clients countering from the same version: exactly one wins
- Stale clients after auto-rejection of sibling proposals
- Threaded counter-offers, finalizations and approvals: exactly one winner
"""

import random
import time

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from django.contrib.auth import get_user_model
from django.db import OperationalError, connection

from marketplace import booking, negotiation
from marketplace.exceptions import (
    AlreadyResolved,
    ConcurrentModification,
    MarketplaceError,
    SlotUnavailable,
)
from marketplace.models import AvailabilitySlot, Demand, Offer, ParentStatus, Proposal, Reservation

User = get_user_model()


def create_user(email, user_type):
    return User.objects.create_user(
        email=email,
        username=email.split('@')[0],
        password='TestPass123!',
        user_type=user_type
    )


@pytest.fixture
def farmer(db):
    return create_user('farmer@test.com', 'farmer')


@pytest.fixture
def provider(db):
    return create_user('provider@test.com', 'provider')


@pytest.fixture
def demand(farmer):
    return Demand.objects.create(
        farmer=farmer,
        title='Spraying',
        required_service='spraying',
        start_date=date(2024, 5, 10),
        end_date=date(2024, 5, 12)
    )


@pytest.mark.django_db
class TestOptimisticVersioning:

    def test_two_counters_from_same_version(self, demand, farmer, provider):
        """Both clients read version 0; only the first write is applied."""
        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        seen_version = Proposal.objects.get(pk=proposal.pk).version

        winner = negotiation.counter_offer(proposal.pk, farmer, Decimal('800.00'), seen_version)

        with pytest.raises(ConcurrentModification):
            negotiation.counter_offer(proposal.pk, farmer, Decimal('750.00'), seen_version)

        stored = Proposal.objects.get(pk=proposal.pk)
        assert stored.negotiation_round == 1
        assert stored.current_price == Decimal('800.00')
        assert stored.version == winner.version == 1
        assert len(stored.counter_offer_history) == 1

    def test_retry_with_fresh_version_succeeds(self, demand, farmer, provider):
        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        negotiation.counter_offer(proposal.pk, farmer, Decimal('800.00'), 0)

        with pytest.raises(ConcurrentModification):
            negotiation.counter_offer(proposal.pk, provider, Decimal('900.00'), 0)

        fresh = Proposal.objects.get(pk=proposal.pk)
        updated = negotiation.counter_offer(proposal.pk, provider, Decimal('900.00'), fresh.version)
        assert updated.negotiation_round == 2

    def test_auto_rejected_sibling_refuses_stale_client(self, demand, farmer, provider):
        other = create_user('provider2@test.com', 'provider')
        winner = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        loser = negotiation.submit_proposal(demand.pk, other, Decimal('900.00'))

        negotiation.accept_proposal(winner.pk, farmer)
        negotiation.final_validate_proposal(winner.pk, provider)

        with pytest.raises(ConcurrentModification):
            negotiation.counter_offer(loser.pk, farmer, Decimal('850.00'), expected_version=0)

    def test_save_aggregate_detects_lost_race(self, demand, farmer, provider):
        """A write computed from an old version is refused even without a client version."""
        from django.db import transaction
        from marketplace.repository import save_aggregate

        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        stale = Proposal.objects.get(pk=proposal.pk)

        negotiation.counter_offer(proposal.pk, farmer, Decimal('800.00'), 0)

        stale.current_price = Decimal('1.00')
        with pytest.raises(ConcurrentModification):
            with transaction.atomic():
                save_aggregate(stale, 0, ['current_price'])

        assert Proposal.objects.get(pk=proposal.pk).current_price == Decimal('800.00')


LOCKED_RETRIES = 50


def _run_in_thread(func, *args):
    """
    Run an engine call on its own connection.

    SQLite reports a concurrent writer as a locked database rather than
    blocking, so that error restarts the whole transaction. Domain errors
    are returned so the caller can inspect how each loser failed.
    """
    try:
        for attempt in range(LOCKED_RETRIES):
            try:
                return func(*args)
            except OperationalError:
                if attempt == LOCKED_RETRIES - 1:
                    raise
                time.sleep(random.uniform(0.01, 0.05))
    except MarketplaceError as e:
        return e
    finally:
        connection.close()


@pytest.mark.django_db(transaction=True)
class TestThreadedRaces:
    """Races across real transactions: exactly one winner, typed errors for the rest."""

    def test_concurrent_counter_offers(self, demand, farmer, provider):
        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        prices = [Decimal('800.00'), Decimal('750.00'), Decimal('700.00')]

        with ThreadPoolExecutor(max_workers=3) as executor:
            futures = [
                executor.submit(_run_in_thread, negotiation.counter_offer, proposal.pk, farmer, price, 0)
                for price in prices
            ]
            results = [future.result() for future in futures]

        winners = [r for r in results if isinstance(r, Proposal)]
        losers = [r for r in results if not isinstance(r, Proposal)]
        assert len(winners) == 1
        assert len(losers) == 2
        assert all(isinstance(e, ConcurrentModification) for e in losers)

        stored = Proposal.objects.get(pk=proposal.pk)
        assert stored.negotiation_round == 1
        assert stored.version == 1
        assert len(stored.counter_offer_history) == 1
        assert stored.current_price == winners[0].current_price

    def test_concurrent_finalizations_on_one_demand(self, demand, farmer, provider):
        other = create_user('provider2@test.com', 'provider')
        first = negotiation.submit_proposal(demand.pk, provider, Decimal('1000.00'))
        second = negotiation.submit_proposal(demand.pk, other, Decimal('950.00'))
        negotiation.accept_proposal(first.pk, farmer)
        negotiation.accept_proposal(second.pk, farmer)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(_run_in_thread, negotiation.final_validate_proposal, proposal_id, actor)
                for proposal_id, actor in [(first.pk, provider), (second.pk, other)]
            ]
            results = [future.result() for future in futures]

        winners = [r for r in results if isinstance(r, Proposal)]
        losers = [r for r in results if not isinstance(r, Proposal)]
        assert len(winners) == 1
        assert winners[0].is_finalized
        assert len(losers) == 1
        assert isinstance(losers[0], AlreadyResolved)

        finalized = Proposal.objects.filter(
            demand=demand, farmer_validated=True, provider_validated=True
        ).exclude(status=Proposal.STATUS_REJECTED)
        assert finalized.count() == 1
        assert Proposal.objects.filter(demand=demand, status=Proposal.STATUS_REJECTED).count() == 1

        demand.refresh_from_db()
        assert demand.status == ParentStatus.MATCHED

    def test_concurrent_approvals_of_overlapping_reservations(self, provider):
        farmers = [create_user(f'farmer{i}@test.com', 'farmer') for i in range(3)]
        offer = Offer.objects.create(
            provider=provider,
            equipment_type='Sprayer',
            price_rate=Decimal('90.00')
        )
        AvailabilitySlot.objects.create(offer=offer, start_date=date(2024, 5, 1), end_date=date(2024, 5, 31))

        # Every pair of windows shares at least one day
        reservations = []
        for i, farmer in enumerate(farmers):
            reservation = booking.create_reservation(
                offer.pk, farmer, date(2024, 5, 10 + i), date(2024, 5, 12 + i)
            )
            booking.provider_validate_reservation(reservation.pk, provider)
            reservations.append((reservation, farmer))

        with ThreadPoolExecutor(max_workers=3) as executor:
            futures = [
                executor.submit(
                    _run_in_thread, booking.farmer_final_validate_reservation, reservation.pk, farmer
                )
                for reservation, farmer in reservations
            ]
            results = [future.result() for future in futures]

        winners = [r for r in results if isinstance(r, Reservation)]
        losers = [r for r in results if not isinstance(r, Reservation)]
        assert len(winners) == 1
        assert all(isinstance(e, SlotUnavailable) for e in losers)

        approved = Reservation.objects.filter(offer=offer, status=Reservation.STATUS_APPROVED)
        assert list(approved.values_list('pk', flat=True)) == [winners[0].pk]

        offer.refresh_from_db()
        assert offer.booking_status == ParentStatus.MATCHED
