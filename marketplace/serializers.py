"""
Serializers for the Farm Equipment Rental Marketplace API.

Read serializers expose Demands, Offers, Proposals and Reservations; write
serializers only validate the payload shape. State transitions themselves
are performed by ``marketplace.negotiation`` and ``marketplace.booking``.
"""

from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .availability import TimeSlot, overlaps
from .models import AvailabilitySlot, Demand, Offer, Proposal, Reservation

User = get_user_model()


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Token serializer that takes an email instead of a username.
    """
    username_field = 'email'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if 'username' in self.fields:
            del self.fields['username']
        if 'email' not in self.fields:
            self.fields['email'] = serializers.EmailField()


class UserSummarySerializer(serializers.ModelSerializer):
    """Minimal public view of a user, nested in other resources."""

    class Meta:
        model = User
        fields = ['id', 'email', 'user_type']
        read_only_fields = fields


# ============================================================================
# Demand Serializers
# ============================================================================

class DemandSerializer(serializers.ModelSerializer):
    """
    Serializer for farmer demands.

    The farmer is taken from the authenticated request and the status is
    always projected from proposals, so both are read-only.
    """

    farmer = UserSummarySerializer(read_only=True)

    class Meta:
        model = Demand
        fields = [
            'id',
            'farmer',
            'title',
            'required_service',
            'description',
            'start_date',
            'end_date',
            'city',
            'latitude',
            'longitude',
            'status',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'farmer', 'status', 'created_at', 'updated_at']

    def validate_title(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Title cannot be empty or whitespace only.")
        return value.strip()

    def validate_required_service(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Required service cannot be empty or whitespace only.")
        return value.strip()

    def validate(self, attrs):
        """Reject windows that end before they start."""
        start_date = attrs.get('start_date')
        end_date = attrs.get('end_date')
        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({
                'end_date': 'End date must be on or after the start date.'
            })
        return attrs

    def create(self, validated_data):
        request = self.context.get('request')
        validated_data['farmer'] = request.user
        return Demand.objects.create(**validated_data)


# ============================================================================
# Offer Serializers
# ============================================================================

class AvailabilitySlotSerializer(serializers.ModelSerializer):

    class Meta:
        model = AvailabilitySlot
        fields = ['id', 'start_date', 'end_date']
        read_only_fields = ['id']

    def validate(self, attrs):
        if attrs['start_date'] > attrs['end_date']:
            raise serializers.ValidationError({
                'end_date': 'End date must be on or after the start date.'
            })
        return attrs


class OfferSerializer(serializers.ModelSerializer):
    """
    Serializer for equipment offers with their availability slots.

    Slots are written together with the offer and must not overlap each
    other.
    """

    provider = UserSummarySerializer(read_only=True)
    availability_slots = AvailabilitySlotSerializer(many=True)

    class Meta:
        model = Offer
        fields = [
            'id',
            'provider',
            'equipment_type',
            'description',
            'price_rate',
            'city',
            'latitude',
            'longitude',
            'availability_slots',
            'booking_status',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'provider', 'booking_status', 'created_at', 'updated_at']

    def validate_equipment_type(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Equipment type cannot be empty or whitespace only.")
        return value.strip()

    def validate_price_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Price rate must be greater than 0.")
        return value

    def validate_availability_slots(self, value):
        """
        Require at least one slot and pairwise disjoint windows.
        """
        if not value:
            raise serializers.ValidationError("At least one availability slot is required.")

        windows = sorted(
            (TimeSlot(slot['start_date'], slot['end_date']) for slot in value),
            key=lambda window: window.start,
        )
        for previous, current in zip(windows, windows[1:]):
            if overlaps(previous, current):
                raise serializers.ValidationError(
                    f"Availability slots overlap: {previous.start} -> {previous.end} "
                    f"and {current.start} -> {current.end}."
                )
        return value

    def create(self, validated_data):
        request = self.context.get('request')
        slots = validated_data.pop('availability_slots')

        with transaction.atomic():
            offer = Offer.objects.create(provider=request.user, **validated_data)
            for slot in slots:
                AvailabilitySlot.objects.create(offer=offer, **slot)

        return offer


class MatchingOfferSerializer(serializers.Serializer):
    """An offer ranked for a demand, with its distance when known."""

    offer = OfferSerializer(read_only=True)
    distance_km = serializers.FloatField(read_only=True, allow_null=True)


# ============================================================================
# Proposal Serializers
# ============================================================================

class ProposalSerializer(serializers.ModelSerializer):
    """
    Read serializer for proposals.

    ``version`` must be echoed back on PATCH to detect stale writes.
    """

    provider = UserSummarySerializer(read_only=True)
    whose_turn = serializers.SerializerMethodField()
    is_finalized = serializers.BooleanField(read_only=True)

    class Meta:
        model = Proposal
        fields = [
            'id',
            'demand',
            'provider',
            'price',
            'current_price',
            'description',
            'status',
            'negotiation_round',
            'last_counter_by',
            'counter_offer_history',
            'whose_turn',
            'farmer_validated',
            'provider_validated',
            'farmer_validated_at',
            'provider_validated_at',
            'is_finalized',
            'version',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_whose_turn(self, obj):
        if obj.status != Proposal.STATUS_PENDING:
            return None
        return obj.whose_turn()


class ProposalCreateSerializer(serializers.Serializer):
    demand = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    description = serializers.CharField(required=False, allow_blank=True, default='')


class ProposalActionSerializer(serializers.Serializer):
    """
    Payload of PATCH /api/proposals/<id>/.

    Fields:
    - action: counter, accept, reject or validate
    - price: Required for counter
    - version: Version the client last read (required for counter)
    """

    ACTION_COUNTER = 'counter'
    ACTION_ACCEPT = 'accept'
    ACTION_REJECT = 'reject'
    ACTION_VALIDATE = 'validate'

    ACTION_CHOICES = [ACTION_COUNTER, ACTION_ACCEPT, ACTION_REJECT, ACTION_VALIDATE]

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    version = serializers.IntegerField(min_value=0, required=False)

    def validate(self, attrs):
        if attrs['action'] == self.ACTION_COUNTER:
            errors = {}
            if attrs.get('price') is None:
                errors['price'] = 'A price is required to make a counter-offer.'
            if attrs.get('version') is None:
                errors['version'] = 'The version being answered is required to make a counter-offer.'
            if errors:
                raise serializers.ValidationError(errors)
        return attrs


# ============================================================================
# Reservation Serializers
# ============================================================================

class ReservationSerializer(serializers.ModelSerializer):
    farmer = UserSummarySerializer(read_only=True)
    provider = UserSummarySerializer(read_only=True)
    is_finalized = serializers.BooleanField(read_only=True)

    class Meta:
        model = Reservation
        fields = [
            'id',
            'offer',
            'farmer',
            'provider',
            'start_date',
            'end_date',
            'price_rate',
            'total_cost',
            'status',
            'provider_validated',
            'farmer_validated',
            'provider_validated_at',
            'farmer_validated_at',
            'approved_at',
            'is_finalized',
            'version',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ReservationCreateSerializer(serializers.Serializer):
    offer = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()


class ReservationActionSerializer(serializers.Serializer):
    """Payload of PATCH /api/reservations/<id>/."""

    ACTION_PROVIDER_VALIDATE = 'provider_validate'
    ACTION_FARMER_FINAL_VALIDATE = 'farmer_final_validate'
    ACTION_REJECT = 'reject'
    ACTION_CANCEL = 'cancel'

    ACTION_CHOICES = [
        ACTION_PROVIDER_VALIDATE,
        ACTION_FARMER_FINAL_VALIDATE,
        ACTION_REJECT,
        ACTION_CANCEL,
    ]

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    version = serializers.IntegerField(min_value=0, required=False)
