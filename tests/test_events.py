"""
Tests for the domain events sent after finalization and approval.

Events are scheduled with transaction.on_commit, so each test captures the
on-commit callbacks and runs them explicitly.
"""

import pytest
from datetime import date
from decimal import Decimal
from django.contrib.auth import get_user_model

from marketplace import booking, negotiation
from marketplace.exceptions import SlotUnavailable
from marketplace.models import AvailabilitySlot, Demand, Offer
from marketplace.signals import proposal_finalized, reservation_approved

User = get_user_model()


@pytest.fixture
def farmer(db):
    return User.objects.create_user(
        email='farmer@test.com',
        username='farmer',
        password='TestPass123!',
        user_type='farmer'
    )


@pytest.fixture
def provider(db):
    return User.objects.create_user(
        email='provider@test.com',
        username='provider',
        password='TestPass123!',
        user_type='provider'
    )


@pytest.fixture
def demand(farmer):
    return Demand.objects.create(
        farmer=farmer,
        title='Baling',
        required_service='baling',
        start_date=date(2024, 8, 1),
        end_date=date(2024, 8, 2)
    )


@pytest.fixture
def offer(provider):
    offer = Offer.objects.create(
        provider=provider,
        equipment_type='Round baler',
        price_rate=Decimal('200.00')
    )
    AvailabilitySlot.objects.create(offer=offer, start_date=date(2024, 8, 1), end_date=date(2024, 8, 31))
    return offer


@pytest.fixture
def received():
    """Collect every domain event sent during the test."""
    events = []

    def on_proposal_finalized(sender, **kwargs):
        events.append(('proposal_finalized', kwargs['demand_id'], kwargs['proposal_id']))

    def on_reservation_approved(sender, **kwargs):
        events.append(('reservation_approved', kwargs['offer_id'], kwargs['reservation_id']))

    proposal_finalized.connect(on_proposal_finalized)
    reservation_approved.connect(on_reservation_approved)
    yield events
    proposal_finalized.disconnect(on_proposal_finalized)
    reservation_approved.disconnect(on_reservation_approved)


@pytest.mark.django_db
class TestProposalFinalizedEvent:

    def test_sent_once_on_finalization(
        self, demand, farmer, provider, received, django_capture_on_commit_callbacks
    ):
        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('700.00'))

        with django_capture_on_commit_callbacks(execute=True):
            negotiation.accept_proposal(proposal.pk, farmer)
        assert received == []

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            negotiation.final_validate_proposal(proposal.pk, provider)

        assert len(callbacks) == 1
        assert received == [('proposal_finalized', demand.pk, proposal.pk)]

    def test_not_sent_before_commit(self, demand, farmer, provider, received, django_capture_on_commit_callbacks):
        proposal = negotiation.submit_proposal(demand.pk, provider, Decimal('700.00'))
        negotiation.accept_proposal(proposal.pk, farmer)

        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            negotiation.final_validate_proposal(proposal.pk, provider)

        assert len(callbacks) == 1
        assert received == []


@pytest.mark.django_db
class TestReservationApprovedEvent:

    def test_sent_on_approval(self, offer, farmer, provider, received, django_capture_on_commit_callbacks):
        reservation = booking.create_reservation(offer.pk, farmer, date(2024, 8, 3), date(2024, 8, 4))

        with django_capture_on_commit_callbacks(execute=True):
            booking.provider_validate_reservation(reservation.pk, provider)
        assert received == []

        with django_capture_on_commit_callbacks(execute=True):
            booking.farmer_final_validate_reservation(reservation.pk, farmer)

        assert received == [('reservation_approved', offer.pk, reservation.pk)]

    def test_not_sent_when_approval_fails(
        self, offer, farmer, provider, received, django_capture_on_commit_callbacks
    ):
        first = booking.create_reservation(offer.pk, farmer, date(2024, 8, 3), date(2024, 8, 4))
        second = booking.create_reservation(offer.pk, farmer, date(2024, 8, 4), date(2024, 8, 5))
        booking.provider_validate_reservation(first.pk, provider)
        booking.provider_validate_reservation(second.pk, provider)

        with django_capture_on_commit_callbacks(execute=True):
            booking.farmer_final_validate_reservation(first.pk, farmer)

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(SlotUnavailable):
                booking.farmer_final_validate_reservation(second.pk, farmer)

        assert callbacks == []
        assert received == [('reservation_approved', offer.pk, first.pk)]
