"""
API views for the Farm Equipment Rental Marketplace.

Views authenticate the actor, validate the payload and hand over to the
negotiation and booking engines. Domain errors raised by the engines are
translated to ``{"detail": ..., "code": ...}`` responses by
``MarketplaceAPIView.handle_exception``.
"""

import logging

from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.db.models import Q
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from . import booking, negotiation
from .availability import rank_offers_for_demand
from .exceptions import MarketplaceError, NotAuthorized
from .models import Demand, Offer, ParentStatus, Proposal, Reservation
from .permissions import IsFarmer, IsProvider
from .serializers import (
    DemandSerializer,
    EmailTokenObtainPairSerializer,
    MatchingOfferSerializer,
    OfferSerializer,
    ProposalActionSerializer,
    ProposalCreateSerializer,
    ProposalSerializer,
    ReservationActionSerializer,
    ReservationCreateSerializer,
    ReservationSerializer,
)

logger = logging.getLogger(__name__)


class EmailTokenObtainPairView(TokenObtainPairView):
    """
    Obtain a JWT pair with email and password.

    POST /api/auth/token/
    Request body: {"email": "farmer@example.com", "password": "..."}
    """
    serializer_class = EmailTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'


class MarketplaceAPIView(APIView):
    """
    Base view: JWT authentication required, domain errors mapped to HTTP.
    """
    permission_classes = [IsAuthenticated]

    def get_client_ip(self, request):
        """
        Get client IP address from request.
        Handles proxy headers for accurate IP detection.
        """
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')

    def handle_exception(self, exc):
        request = self.request
        user = getattr(request, 'user', None)

        if isinstance(exc, MarketplaceError):
            logger.warning(
                f"Request refused. "
                f"Code: {exc.code}, "
                f"Detail: {exc.detail}, "
                f"Path: {request.path}, "
                f"User ID: {getattr(user, 'pk', None)}, "
                f"IP: {self.get_client_ip(request)}"
            )
            return Response(exc.as_dict(), status=exc.status_code)

        if isinstance(exc, ObjectDoesNotExist):
            return Response(
                {'detail': 'Not found.', 'code': 'not_found'},
                status=status.HTTP_404_NOT_FOUND
            )

        if isinstance(exc, DjangoValidationError):
            detail = exc.message_dict if hasattr(exc, 'error_dict') else {'detail': exc.messages}
            return Response(detail, status=status.HTTP_400_BAD_REQUEST)

        return super().handle_exception(exc)

    def require(self, permission_class, request):
        """Check a role permission, raising NotAuthorized with its message."""
        permission = permission_class()
        if not permission.has_permission(request, self):
            raise NotAuthorized(permission.message)

    def paginate(self, request, queryset, serializer_class):
        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = serializer_class(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)


def _int_param(request, name):
    """Read an optional integer query parameter; invalid values are ignored."""
    value = request.query_params.get(name)
    try:
        return int(value) if value not in (None, '') else None
    except ValueError:
        return None


# ============================================================================
# Demand Views
# ============================================================================

class DemandListCreateView(MarketplaceAPIView):
    """
    GET /api/demands/
    Farmers see their own demands. Providers see the demands still open for
    bids, plus the ones they have bid on.

    POST /api/demands/ (farmers only)
    Request body: {
        "title": "Wheat harvest",
        "required_service": "harvesting",
        "start_date": "2026-07-01",
        "end_date": "2026-07-05",
        "city": "Chartres",
        "latitude": "48.446",
        "longitude": "1.489"
    }
    """

    def get(self, request, *args, **kwargs):
        user = request.user
        if user.is_farmer():
            queryset = Demand.objects.filter(farmer=user)
        elif user.is_provider():
            queryset = Demand.objects.filter(
                Q(status__in=[ParentStatus.WAITING, ParentStatus.NEGOTIATING])
                | Q(proposals__provider=user)
            ).distinct()
        else:
            queryset = Demand.objects.none()

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        queryset = queryset.select_related('farmer').order_by('-created_at')
        return self.paginate(request, queryset, DemandSerializer)

    def post(self, request, *args, **kwargs):
        self.require(IsFarmer, request)

        serializer = DemandSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        demand = serializer.save()

        logger.info(
            f"Demand created. "
            f"Demand ID: {demand.pk}, "
            f"Farmer: {request.user.email} (ID: {request.user.pk}), "
            f"Window: {demand.start_date} -> {demand.end_date}, "
            f"IP: {self.get_client_ip(request)}"
        )
        return Response(DemandSerializer(demand).data, status=status.HTTP_201_CREATED)


class DemandDetailView(MarketplaceAPIView):
    """GET /api/demands/<id>/"""

    def get(self, request, pk, *args, **kwargs):
        demand = Demand.objects.select_related('farmer').get(pk=pk)
        return Response(DemandSerializer(demand).data)


class DemandMatchingOffersView(MarketplaceAPIView):
    """
    Offers whose availability overlaps the demand window, nearest first.

    GET /api/demands/<id>/matching-offers/?max_distance_km=50
    Only the farmer who owns the demand may query it.
    """

    def get(self, request, pk, *args, **kwargs):
        demand = Demand.objects.get(pk=pk)
        if demand.farmer_id != request.user.pk:
            raise NotAuthorized('Only the owner of this demand can look for matching offers.')

        max_distance_km = request.query_params.get('max_distance_km')
        if max_distance_km not in (None, ''):
            try:
                max_distance_km = float(max_distance_km)
            except ValueError:
                return Response(
                    {'max_distance_km': ['A valid number is required.']},
                    status=status.HTTP_400_BAD_REQUEST
                )
            if max_distance_km < 0:
                return Response(
                    {'max_distance_km': ['Must be zero or greater.']},
                    status=status.HTTP_400_BAD_REQUEST
                )
        else:
            max_distance_km = None

        offers = (
            Offer.objects.exclude(provider=request.user)
            .select_related('provider')
            .prefetch_related('availability_slots')
        )
        ranked = rank_offers_for_demand(demand, offers, max_distance_km=max_distance_km)
        payload = [{'offer': offer, 'distance_km': distance} for offer, distance in ranked]
        return Response(MatchingOfferSerializer(payload, many=True).data)


# ============================================================================
# Offer Views
# ============================================================================

class OfferListCreateView(MarketplaceAPIView):
    """
    GET /api/offers/
    Providers see their own offers; farmers browse every offer.

    POST /api/offers/ (providers only)
    Request body: {
        "equipment_type": "combine harvester",
        "price_rate": "350.00",
        "city": "Chartres",
        "availability_slots": [
            {"start_date": "2026-07-01", "end_date": "2026-07-15"}
        ]
    }
    """

    def get(self, request, *args, **kwargs):
        user = request.user
        if user.is_provider():
            queryset = Offer.objects.filter(provider=user)
        else:
            queryset = Offer.objects.all()

        equipment_type = request.query_params.get('equipment_type')
        if equipment_type:
            queryset = queryset.filter(equipment_type__icontains=equipment_type)

        queryset = (
            queryset.select_related('provider')
            .prefetch_related('availability_slots')
            .order_by('-created_at')
        )
        return self.paginate(request, queryset, OfferSerializer)

    def post(self, request, *args, **kwargs):
        self.require(IsProvider, request)

        serializer = OfferSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        offer = serializer.save()

        logger.info(
            f"Offer created. "
            f"Offer ID: {offer.pk}, "
            f"Provider: {request.user.email} (ID: {request.user.pk}), "
            f"Slots: {offer.availability_slots.count()}, "
            f"IP: {self.get_client_ip(request)}"
        )
        return Response(OfferSerializer(offer).data, status=status.HTTP_201_CREATED)


class OfferDetailView(MarketplaceAPIView):
    """GET /api/offers/<id>/"""

    def get(self, request, pk, *args, **kwargs):
        offer = Offer.objects.select_related('provider').get(pk=pk)
        return Response(OfferSerializer(offer).data)


# ============================================================================
# Proposal Views
# ============================================================================

def _proposal_for(user, pk):
    """Load a proposal visible to ``user``; strangers get NotAuthorized."""
    proposal = Proposal.objects.select_related('demand', 'provider').get(pk=pk)
    if proposal.role_of(user) is None:
        raise NotAuthorized('You are neither the farmer nor the provider of this proposal.')
    return proposal


class ProposalListCreateView(MarketplaceAPIView):
    """
    GET /api/proposals/?demand=<id>&provider=<id>
    Farmers see proposals on their demands; providers see their own bids.

    POST /api/proposals/ (providers only)
    Request body: {"demand": 1, "price": "1200.00", "description": "..."}
    """

    def get(self, request, *args, **kwargs):
        user = request.user
        queryset = Proposal.objects.filter(
            Q(demand__farmer=user) | Q(provider=user)
        )

        demand_id = _int_param(request, 'demand')
        if demand_id is not None:
            queryset = queryset.filter(demand_id=demand_id)

        provider_id = _int_param(request, 'provider')
        if provider_id is not None:
            queryset = queryset.filter(provider_id=provider_id)

        queryset = queryset.select_related('provider').order_by('-created_at')
        return self.paginate(request, queryset, ProposalSerializer)

    def post(self, request, *args, **kwargs):
        self.require(IsProvider, request)

        serializer = ProposalCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        proposal = negotiation.submit_proposal(
            data['demand'],
            request.user,
            data['price'],
            data.get('description', ''),
        )
        return Response(ProposalSerializer(proposal).data, status=status.HTTP_201_CREATED)


class ProposalDetailView(MarketplaceAPIView):
    """
    GET /api/proposals/<id>/

    PATCH /api/proposals/<id>/
    Request body: {"action": "counter", "price": "1100.00", "version": 3}
    Actions: counter, accept, reject, validate. ``version`` is the value
    last read by the client, required for counter; a stale one is answered
    with 409.
    """

    def get(self, request, pk, *args, **kwargs):
        proposal = _proposal_for(request.user, pk)
        return Response(ProposalSerializer(proposal).data)

    def patch(self, request, pk, *args, **kwargs):
        serializer = ProposalActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        action = data['action']
        version = data.get('version')

        if action == ProposalActionSerializer.ACTION_COUNTER:
            proposal = negotiation.counter_offer(pk, request.user, data['price'], version)
        elif action == ProposalActionSerializer.ACTION_ACCEPT:
            proposal = negotiation.accept_proposal(pk, request.user, version)
        elif action == ProposalActionSerializer.ACTION_REJECT:
            proposal = negotiation.reject_proposal(pk, request.user, version)
        else:
            proposal = negotiation.final_validate_proposal(pk, request.user, version)

        logger.info(
            f"Proposal action applied. "
            f"Proposal ID: {pk}, "
            f"Action: {action}, "
            f"Status: {proposal.status}, "
            f"Round: {proposal.negotiation_round}, "
            f"User: {request.user.email} (ID: {request.user.pk}), "
            f"IP: {self.get_client_ip(request)}"
        )
        return Response(ProposalSerializer(proposal).data)


class ProposalContractView(MarketplaceAPIView):
    """GET /api/proposals/<id>/contract/ (finalized proposals only)"""

    def get(self, request, pk, *args, **kwargs):
        proposal = _proposal_for(request.user, pk)
        return Response(negotiation.get_contract_terms(proposal))


# ============================================================================
# Reservation Views
# ============================================================================

def _reservation_for(user, pk):
    """Load a reservation visible to ``user``; strangers get NotAuthorized."""
    reservation = Reservation.objects.select_related('offer', 'farmer', 'provider').get(pk=pk)
    if user.pk not in (reservation.farmer_id, reservation.provider_id):
        raise NotAuthorized('You are neither the farmer nor the provider of this reservation.')
    return reservation


class ReservationListCreateView(MarketplaceAPIView):
    """
    GET /api/reservations/?offer=<id>&status=<status>
    Farmers see their reservations; providers see reservations on their offers.

    POST /api/reservations/ (farmers only)
    Request body: {"offer": 1, "start_date": "2026-07-02", "end_date": "2026-07-04"}
    """

    def get(self, request, *args, **kwargs):
        user = request.user
        queryset = Reservation.objects.filter(Q(farmer=user) | Q(provider=user))

        offer_id = _int_param(request, 'offer')
        if offer_id is not None:
            queryset = queryset.filter(offer_id=offer_id)

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        queryset = queryset.select_related('farmer', 'provider').order_by('-created_at')
        return self.paginate(request, queryset, ReservationSerializer)

    def post(self, request, *args, **kwargs):
        self.require(IsFarmer, request)

        serializer = ReservationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        reservation = booking.create_reservation(
            data['offer'],
            request.user,
            data['start_date'],
            data['end_date'],
        )
        return Response(ReservationSerializer(reservation).data, status=status.HTTP_201_CREATED)


class ReservationDetailView(MarketplaceAPIView):
    """
    GET /api/reservations/<id>/

    PATCH /api/reservations/<id>/
    Request body: {"action": "provider_validate", "version": 0}
    Actions: provider_validate, farmer_final_validate, reject, cancel.
    """

    ACTIONS = {
        ReservationActionSerializer.ACTION_PROVIDER_VALIDATE: booking.provider_validate_reservation,
        ReservationActionSerializer.ACTION_FARMER_FINAL_VALIDATE: booking.farmer_final_validate_reservation,
        ReservationActionSerializer.ACTION_REJECT: booking.reject_reservation,
        ReservationActionSerializer.ACTION_CANCEL: booking.cancel_reservation,
    }

    def get(self, request, pk, *args, **kwargs):
        reservation = _reservation_for(request.user, pk)
        return Response(ReservationSerializer(reservation).data)

    def patch(self, request, pk, *args, **kwargs):
        serializer = ReservationActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        action = serializer.validated_data['action']

        operation = self.ACTIONS[action]
        reservation = operation(pk, request.user, serializer.validated_data.get('version'))

        logger.info(
            f"Reservation action applied. "
            f"Reservation ID: {pk}, "
            f"Action: {action}, "
            f"Status: {reservation.status}, "
            f"User: {request.user.email} (ID: {request.user.pk}), "
            f"IP: {self.get_client_ip(request)}"
        )
        return Response(ReservationSerializer(reservation).data)


class ReservationContractView(MarketplaceAPIView):
    """GET /api/reservations/<id>/contract/ (approved reservations only)"""

    def get(self, request, pk, *args, **kwargs):
        reservation = _reservation_for(request.user, pk)
        return Response(booking.get_contract_terms(reservation))
