"""
Test suite for authentication, demand and offer endpoints.

Tests cover:
- JWT login with email and password
- Demand creation (farmers only) and list visibility
- Offer creation with nested availability slots
- Matching offers for a demand: ownership, radius filter and ordering
"""

import pytest
from datetime import date
from decimal import Decimal
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from marketplace import negotiation
from marketplace.models import AvailabilitySlot, Demand, Offer

User = get_user_model()


@pytest.fixture(autouse=True)
def clear_cache(db):
    """Reset throttle counters between tests."""
    cache.clear()


@pytest.fixture
def api_client():
    return APIClient()


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


def auth(user):
    client = APIClient()
    token = RefreshToken.for_user(user).access_token
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
    return client


def make_demand(farmer, **overrides):
    fields = {
        'farmer': farmer,
        'title': 'Wheat harvest',
        'required_service': 'harvesting',
        'start_date': date(2024, 7, 1),
        'end_date': date(2024, 7, 5),
        'city': 'Chartres',
        'latitude': Decimal('48.446000'),
        'longitude': Decimal('1.489000'),
    }
    fields.update(overrides)
    return Demand.objects.create(**fields)


def make_offer(provider, equipment_type, slot, latitude=None, longitude=None):
    offer = Offer.objects.create(
        provider=provider,
        equipment_type=equipment_type,
        price_rate=Decimal('300.00'),
        latitude=latitude,
        longitude=longitude
    )
    AvailabilitySlot.objects.create(offer=offer, start_date=slot[0], end_date=slot[1])
    return offer


@pytest.mark.django_db
class TestTokenLogin:

    def test_login_with_email(self, api_client, farmer):
        response = api_client.post(
            '/api/auth/token/',
            {'email': 'farmer@test.com', 'password': 'TestPass123!'},
            format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert 'access' in response.data
        assert 'refresh' in response.data

    def test_login_email_is_case_insensitive(self, api_client, farmer):
        response = api_client.post(
            '/api/auth/token/',
            {'email': 'FARMER@test.com', 'password': 'TestPass123!'},
            format='json'
        )
        assert response.status_code == status.HTTP_200_OK

    def test_wrong_password(self, api_client, farmer):
        response = api_client.post(
            '/api/auth/token/',
            {'email': 'farmer@test.com', 'password': 'WrongPass123!'},
            format='json'
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert 'access' not in response.data

    def test_inactive_user_cannot_login(self, api_client, farmer):
        User.objects.filter(pk=farmer.pk).update(is_active=False)
        response = api_client.post(
            '/api/auth/token/',
            {'email': 'farmer@test.com', 'password': 'TestPass123!'},
            format='json'
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_refresh(self, api_client, farmer):
        login = api_client.post(
            '/api/auth/token/',
            {'email': 'farmer@test.com', 'password': 'TestPass123!'},
            format='json'
        )
        response = api_client.post(
            '/api/auth/token/refresh/',
            {'refresh': login.data['refresh']},
            format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert 'access' in response.data


@pytest.mark.django_db
class TestDemandEndpoints:

    def test_requires_authentication(self, api_client):
        response = api_client.get('/api/demands/')
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_farmer_creates_demand(self, farmer):
        response = auth(farmer).post(
            '/api/demands/',
            {
                'title': '  Wheat harvest  ',
                'required_service': 'harvesting',
                'start_date': '2024-07-01',
                'end_date': '2024-07-05',
                'city': 'Chartres',
            },
            format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['title'] == 'Wheat harvest'
        assert response.data['status'] == 'waiting'
        assert response.data['farmer']['email'] == 'farmer@test.com'
        assert Demand.objects.filter(farmer=farmer).count() == 1

    def test_status_is_read_only(self, farmer):
        response = auth(farmer).post(
            '/api/demands/',
            {
                'title': 'Baling',
                'required_service': 'baling',
                'start_date': '2024-07-01',
                'end_date': '2024-07-01',
                'status': 'matched',
            },
            format='json'
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == 'waiting'

    def test_provider_cannot_create_demand(self, provider):
        response = auth(provider).post(
            '/api/demands/',
            {
                'title': 'Wheat harvest',
                'required_service': 'harvesting',
                'start_date': '2024-07-01',
                'end_date': '2024-07-05',
            },
            format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'not_authorized'

    def test_inverted_window_rejected(self, farmer):
        response = auth(farmer).post(
            '/api/demands/',
            {
                'title': 'Wheat harvest',
                'required_service': 'harvesting',
                'start_date': '2024-07-05',
                'end_date': '2024-07-01',
            },
            format='json'
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'end_date' in response.data

    def test_farmer_lists_own_demands(self, farmer):
        other = User.objects.create_user(
            email='other@test.com',
            username='other',
            password='TestPass123!',
            user_type='farmer'
        )
        mine = make_demand(farmer)
        make_demand(other)

        response = auth(farmer).get('/api/demands/')
        assert response.status_code == status.HTTP_200_OK
        assert [d['id'] for d in response.data['results']] == [mine.pk]

    def test_provider_sees_open_and_own_bids(self, farmer, provider):
        rival = User.objects.create_user(
            email='rival@test.com',
            username='rival',
            password='TestPass123!',
            user_type='provider'
        )
        open_demand = make_demand(farmer, title='Open')
        won_by_me = make_demand(farmer, title='Mine')
        won_by_rival = make_demand(farmer, title='Theirs')

        for demand, bidder in ((won_by_me, provider), (won_by_rival, rival)):
            proposal = negotiation.submit_proposal(demand.pk, bidder, Decimal('500.00'))
            negotiation.accept_proposal(proposal.pk, farmer)
            negotiation.final_validate_proposal(proposal.pk, bidder)

        response = auth(provider).get('/api/demands/')
        ids = {d['id'] for d in response.data['results']}
        assert ids == {open_demand.pk, won_by_me.pk}

    def test_status_filter(self, farmer, provider):
        make_demand(farmer)
        bid_on = make_demand(farmer)
        negotiation.submit_proposal(bid_on.pk, provider, Decimal('500.00'))

        response = auth(farmer).get('/api/demands/?status=negotiating')
        assert [d['id'] for d in response.data['results']] == [bid_on.pk]

    def test_detail(self, farmer, provider):
        demand = make_demand(farmer)
        response = auth(provider).get(f'/api/demands/{demand.pk}/')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['required_service'] == 'harvesting'

    def test_detail_not_found(self, farmer):
        response = auth(farmer).get('/api/demands/999999/')
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'not_found'


@pytest.mark.django_db
class TestOfferEndpoints:

    def offer_payload(self, slots):
        return {
            'equipment_type': 'Combine harvester',
            'price_rate': '350.00',
            'city': 'Chartres',
            'availability_slots': slots,
        }

    def test_provider_creates_offer_with_slots(self, provider):
        payload = self.offer_payload([
            {'start_date': '2024-07-01', 'end_date': '2024-07-10'},
            {'start_date': '2024-07-15', 'end_date': '2024-07-20'},
        ])
        response = auth(provider).post('/api/offers/', payload, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['booking_status'] == 'waiting'
        assert len(response.data['availability_slots']) == 2
        offer = Offer.objects.get(pk=response.data['id'])
        assert offer.provider == provider
        assert offer.availability_slots.count() == 2

    def test_overlapping_slots_rejected(self, provider):
        payload = self.offer_payload([
            {'start_date': '2024-07-01', 'end_date': '2024-07-10'},
            {'start_date': '2024-07-10', 'end_date': '2024-07-20'},
        ])
        response = auth(provider).post('/api/offers/', payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'availability_slots' in response.data
        assert Offer.objects.count() == 0

    def test_slots_required(self, provider):
        response = auth(provider).post('/api/offers/', self.offer_payload([]), format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'availability_slots' in response.data

    def test_non_positive_rate_rejected(self, provider):
        payload = self.offer_payload([{'start_date': '2024-07-01', 'end_date': '2024-07-10'}])
        payload['price_rate'] = '0.00'
        response = auth(provider).post('/api/offers/', payload, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'price_rate' in response.data

    def test_farmer_cannot_create_offer(self, farmer):
        payload = self.offer_payload([{'start_date': '2024-07-01', 'end_date': '2024-07-10'}])
        response = auth(farmer).post('/api/offers/', payload, format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_list_visibility(self, farmer, provider):
        rival = User.objects.create_user(
            email='rival@test.com',
            username='rival',
            password='TestPass123!',
            user_type='provider'
        )
        mine = make_offer(provider, 'Tractor', (date(2024, 7, 1), date(2024, 7, 10)))
        make_offer(rival, 'Sprayer', (date(2024, 7, 1), date(2024, 7, 10)))

        provider_ids = {o['id'] for o in auth(provider).get('/api/offers/').data['results']}
        assert provider_ids == {mine.pk}
        assert auth(farmer).get('/api/offers/').data['count'] == 2

    def test_equipment_type_filter(self, farmer, provider):
        tractor = make_offer(provider, 'Tractor', (date(2024, 7, 1), date(2024, 7, 10)))
        make_offer(provider, 'Sprayer', (date(2024, 7, 1), date(2024, 7, 10)))

        response = auth(farmer).get('/api/offers/?equipment_type=tract')
        assert [o['id'] for o in response.data['results']] == [tractor.pk]


@pytest.mark.django_db
class TestMatchingOffers:

    @pytest.fixture
    def offers(self, provider):
        july = (date(2024, 6, 25), date(2024, 7, 2))
        return {
            'near': make_offer(provider, 'Combine', july, Decimal('48.450000'), Decimal('1.490000')),
            'paris': make_offer(provider, 'Combine', july, Decimal('48.856600'), Decimal('2.352200')),
            'lyon': make_offer(provider, 'Combine', july, Decimal('45.764000'), Decimal('4.835700')),
            'nowhere': make_offer(provider, 'Combine', july),
            'august': make_offer(
                provider, 'Combine', (date(2024, 8, 1), date(2024, 8, 31)),
                Decimal('48.450000'), Decimal('1.490000')
            ),
        }

    def test_ranked_nearest_first(self, farmer, offers):
        demand = make_demand(farmer)
        response = auth(farmer).get(f'/api/demands/{demand.pk}/matching-offers/')

        assert response.status_code == status.HTTP_200_OK
        ids = [item['offer']['id'] for item in response.data]
        assert ids == [
            offers['near'].pk,
            offers['paris'].pk,
            offers['lyon'].pk,
            offers['nowhere'].pk,
        ]
        assert response.data[0]['distance_km'] < 1
        assert response.data[-1]['distance_km'] is None

    def test_radius_filter(self, farmer, offers):
        demand = make_demand(farmer)
        response = auth(farmer).get(f'/api/demands/{demand.pk}/matching-offers/?max_distance_km=100')

        ids = [item['offer']['id'] for item in response.data]
        assert ids == [offers['near'].pk, offers['paris'].pk, offers['nowhere'].pk]

    @pytest.mark.parametrize('value', ['far', '-1'])
    def test_invalid_radius(self, farmer, offers, value):
        demand = make_demand(farmer)
        response = auth(farmer).get(f'/api/demands/{demand.pk}/matching-offers/?max_distance_km={value}')
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'max_distance_km' in response.data

    def test_only_owner(self, farmer, provider, offers):
        demand = make_demand(farmer)
        response = auth(provider).get(f'/api/demands/{demand.pk}/matching-offers/')
        assert response.status_code == status.HTTP_403_FORBIDDEN
