"""
URL configuration for farm_rental_marketplace project.
"""
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from marketplace.views import (
    DemandDetailView,
    DemandListCreateView,
    DemandMatchingOffersView,
    EmailTokenObtainPairView,
    OfferDetailView,
    OfferListCreateView,
    ProposalContractView,
    ProposalDetailView,
    ProposalListCreateView,
    ReservationContractView,
    ReservationDetailView,
    ReservationListCreateView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/token/', EmailTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    # Demand endpoints
    path('api/demands/', DemandListCreateView.as_view(), name='demand_list'),
    path('api/demands/<int:pk>/', DemandDetailView.as_view(), name='demand_detail'),
    path(
        'api/demands/<int:pk>/matching-offers/',
        DemandMatchingOffersView.as_view(),
        name='demand_matching_offers'
    ),

    # Offer endpoints
    path('api/offers/', OfferListCreateView.as_view(), name='offer_list'),
    path('api/offers/<int:pk>/', OfferDetailView.as_view(), name='offer_detail'),

    # Proposal endpoints
    path('api/proposals/', ProposalListCreateView.as_view(), name='proposal_list'),
    path('api/proposals/<int:pk>/', ProposalDetailView.as_view(), name='proposal_detail'),
    path('api/proposals/<int:pk>/contract/', ProposalContractView.as_view(), name='proposal_contract'),

    # Reservation endpoints
    path('api/reservations/', ReservationListCreateView.as_view(), name='reservation_list'),
    path('api/reservations/<int:pk>/', ReservationDetailView.as_view(), name='reservation_detail'),
    path(
        'api/reservations/<int:pk>/contract/',
        ReservationContractView.as_view(),
        name='reservation_contract'
    ),
]
