"""
Django admin configuration for the marketplace models.

State fields (statuses, validation flags, negotiation rounds, versions) are
read-only here: they only change through the negotiation and booking
engines.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import AvailabilitySlot, Demand, Offer, Proposal, Reservation, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Extends Django's UserAdmin with the marketplace fields.
    """

    list_display = [
        'email',
        'username',
        'user_type',
        'phone_number',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = ['user_type', 'is_staff', 'is_superuser', 'is_active', 'created_at']

    search_fields = ['email', 'username', 'first_name', 'last_name']

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('first_name', 'last_name', 'email', 'phone_number')
        }),
        (_('Marketplace Role'), {
            'fields': ('user_type',)
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'password1', 'password2', 'user_type'),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined']

    list_per_page = 25


class AvailabilitySlotInline(admin.TabularInline):
    model = AvailabilitySlot
    extra = 0


@admin.register(Demand)
class DemandAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'required_service', 'farmer', 'start_date', 'end_date', 'status']
    list_filter = ['status', 'required_service']
    search_fields = ['title', 'required_service', 'city', 'farmer__email']
    readonly_fields = ['status', 'created_at', 'updated_at']
    date_hierarchy = 'start_date'
    list_per_page = 25


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ['id', 'equipment_type', 'provider', 'price_rate', 'city', 'booking_status']
    list_filter = ['booking_status', 'equipment_type']
    search_fields = ['equipment_type', 'city', 'provider__email']
    readonly_fields = ['booking_status', 'created_at', 'updated_at']
    inlines = [AvailabilitySlotInline]
    list_per_page = 25


@admin.register(Proposal)
class ProposalAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'demand',
        'provider',
        'current_price',
        'status',
        'negotiation_round',
        'farmer_validated',
        'provider_validated',
    ]
    list_filter = ['status', 'farmer_validated', 'provider_validated']
    search_fields = ['demand__title', 'provider__email']
    readonly_fields = [
        'current_price',
        'status',
        'negotiation_round',
        'last_counter_by',
        'counter_offer_history',
        'farmer_validated',
        'provider_validated',
        'farmer_validated_at',
        'provider_validated_at',
        'version',
        'created_at',
        'updated_at',
    ]
    list_per_page = 25


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'offer',
        'farmer',
        'start_date',
        'end_date',
        'total_cost',
        'status',
    ]
    list_filter = ['status', 'provider_validated', 'farmer_validated']
    search_fields = ['offer__equipment_type', 'farmer__email', 'provider__email']
    readonly_fields = [
        'price_rate',
        'total_cost',
        'status',
        'provider_validated',
        'farmer_validated',
        'provider_validated_at',
        'farmer_validated_at',
        'approved_at',
        'version',
        'created_at',
        'updated_at',
    ]
    date_hierarchy = 'start_date'
    list_per_page = 25
