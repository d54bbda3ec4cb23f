"""
Data model for the Farm Equipment Rental Marketplace.

Farmers post Demands and book Offers through Reservations; providers post
Offers and bid on Demands through Proposals. State transitions on
Proposals and Reservations are driven by the engines in
``marketplace.negotiation`` and ``marketplace.booking``; the coarse status of
the parent Demand/Offer is projected by ``marketplace.projection``.
"""

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

from .availability import TimeSlot, overlaps
from .validators import (
    validate_date_window,
    validate_latitude,
    validate_longitude,
    validate_phone_number,
    validate_positive_amount,
)


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Additional fields:
    - email: Required, unique email address (used to log in)
    - phone_number: Optional phone number with validation
    - user_type: Either 'farmer' or 'provider'
    - created_at / updated_at: Audit timestamps
    """

    USER_TYPE_FARMER = 'farmer'
    USER_TYPE_PROVIDER = 'provider'

    USER_TYPE_CHOICES = [
        (USER_TYPE_FARMER, 'Farmer'),
        (USER_TYPE_PROVIDER, 'Equipment Provider'),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in international format.')
    )

    user_type = models.CharField(
        _('user type'),
        max_length=10,
        choices=USER_TYPE_CHOICES,
        blank=False,
        null=False,
        help_text=_('Required. Select whether you are a farmer or an equipment provider.')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email'], name='user_email_idx'),
            models.Index(fields=['user_type'], name='user_type_idx'),
        ]

    def __str__(self):
        """Return email as string representation."""
        return self.email or self.username

    def is_farmer(self):
        return self.user_type == self.USER_TYPE_FARMER

    def is_provider(self):
        return self.user_type == self.USER_TYPE_PROVIDER

    def clean(self):
        """
        Validate model fields.

        Ensures the email is present and lower-cased, and a user type is set.

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.email:
            self.email = self.email.lower()

        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

        if not self.user_type:
            raise ValidationError({
                'user_type': _('User type is required.')
            })

    def save(self, *args, **kwargs):
        """
        Normalize email and validate updates.

        Creation skips full_clean so duplicate emails surface as
        IntegrityError from the database.
        """
        if self.email:
            self.email = self.email.lower()

        if self.pk is not None:
            self.full_clean()

        super().save(*args, **kwargs)


class ParentStatus(models.TextChoices):
    """Coarse status shared by Demands and Offers."""

    WAITING = 'waiting', _('Waiting')
    NEGOTIATING = 'negotiating', _('Negotiating')
    MATCHED = 'matched', _('Matched')


class Demand(models.Model):
    """
    A farmer's request for a service or machine in a date window.

    Fields:
    - farmer: Foreign key to User (must be farmer type)
    - title / required_service / description: What is needed
    - start_date / end_date: Required time slot (inclusive)
    - city, latitude, longitude: Where the work happens
    - status: waiting, negotiating or matched (projected from proposals)
    """

    farmer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='demands',
        help_text=_('Farmer who posted the demand')
    )

    title = models.CharField(_('title'), max_length=200)

    required_service = models.CharField(
        _('required service'),
        max_length=200,
        help_text=_('Kind of machine or service needed (e.g. harvesting)')
    )

    description = models.TextField(_('description'), blank=True, default='')

    start_date = models.DateField(_('start date'))

    end_date = models.DateField(_('end date'))

    city = models.CharField(_('city'), max_length=120, blank=True, default='')

    latitude = models.DecimalField(
        _('latitude'),
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[validate_latitude]
    )

    longitude = models.DecimalField(
        _('longitude'),
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[validate_longitude]
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=ParentStatus.choices,
        default=ParentStatus.WAITING,
        help_text=_('Derived from the state of the proposals')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('demand')
        verbose_name_plural = _('demands')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['farmer'], name='demand_farmer_idx'),
            models.Index(fields=['status'], name='demand_status_idx'),
            models.Index(fields=['start_date', 'end_date'], name='demand_window_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.required_service})"

    @property
    def time_slot(self):
        return TimeSlot.of(self)

    def is_open(self):
        """Demands accept proposals until one of them is finalized."""
        return self.status in (ParentStatus.WAITING, ParentStatus.NEGOTIATING)

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Farmer is a user with user_type='farmer'
        - Title and required service are not empty
        - The required window is well-formed

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.farmer_id and not self.farmer.is_farmer():
            raise ValidationError({
                'farmer': _('Only users with user_type="farmer" can post demands.')
            })

        if not self.title or not self.title.strip():
            raise ValidationError({
                'title': _('Title cannot be empty.')
            })

        if not self.required_service or not self.required_service.strip():
            raise ValidationError({
                'required_service': _('Required service cannot be empty.')
            })

        validate_date_window(self.start_date, self.end_date)

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Offer(models.Model):
    """
    A provider's published machine with a daily rate and availability.

    Fields:
    - provider: Foreign key to User (must be provider type)
    - equipment_type / description: What is offered
    - price_rate: Price per day
    - city, latitude, longitude: Where the machine is based
    - booking_status: waiting, negotiating or matched (projected from reservations)

    Availability windows live in AvailabilitySlot rows.
    """

    provider = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='offers',
        help_text=_('Provider renting out the equipment')
    )

    equipment_type = models.CharField(_('equipment type'), max_length=200)

    description = models.TextField(_('description'), blank=True, default='')

    price_rate = models.DecimalField(
        _('price rate'),
        max_digits=10,
        decimal_places=2,
        validators=[validate_positive_amount],
        help_text=_('Rental price per day')
    )

    city = models.CharField(_('city'), max_length=120, blank=True, default='')

    latitude = models.DecimalField(
        _('latitude'),
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[validate_latitude]
    )

    longitude = models.DecimalField(
        _('longitude'),
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[validate_longitude]
    )

    booking_status = models.CharField(
        _('booking status'),
        max_length=20,
        choices=ParentStatus.choices,
        default=ParentStatus.WAITING,
        help_text=_('Derived from the state of the reservations')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('offer')
        verbose_name_plural = _('offers')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['provider'], name='offer_provider_idx'),
            models.Index(fields=['booking_status'], name='offer_status_idx'),
        ]

    def __str__(self):
        return f"{self.equipment_type} by {self.provider}"

    def time_slots(self):
        """Published availability as TimeSlot values, ordered by start date."""
        return [TimeSlot.of(slot) for slot in self.availability_slots.all()]

    def clean(self):
        super().clean()

        if self.provider_id and not self.provider.is_provider():
            raise ValidationError({
                'provider': _('Only users with user_type="provider" can publish offers.')
            })

        if not self.equipment_type or not self.equipment_type.strip():
            raise ValidationError({
                'equipment_type': _('Equipment type cannot be empty.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class AvailabilitySlot(models.Model):
    """
    One published availability window of an Offer.

    Slots of the same offer are pairwise disjoint.
    """

    offer = models.ForeignKey(
        Offer,
        on_delete=models.CASCADE,
        related_name='availability_slots'
    )

    start_date = models.DateField(_('start date'))

    end_date = models.DateField(_('end date'))

    class Meta:
        verbose_name = _('availability slot')
        verbose_name_plural = _('availability slots')
        ordering = ['start_date']
        indexes = [
            models.Index(fields=['offer', 'start_date'], name='slot_offer_start_idx'),
        ]

    def __str__(self):
        return f"{self.start_date} → {self.end_date}"

    @property
    def time_slot(self):
        return TimeSlot.of(self)

    def clean(self):
        """
        Validate the window and its disjointness from sibling slots.

        Raises:
            ValidationError: If the window is inverted or overlaps another slot
        """
        super().clean()

        validate_date_window(self.start_date, self.end_date)

        if self.offer_id and self.start_date and self.end_date:
            siblings = AvailabilitySlot.objects.filter(offer_id=self.offer_id)
            if self.pk:
                siblings = siblings.exclude(pk=self.pk)
            for sibling in siblings:
                if overlaps(sibling.time_slot, self.time_slot):
                    raise ValidationError({
                        'start_date': _('Availability slots of an offer cannot overlap.')
                    })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Proposal(models.Model):
    """
    A provider's bid against a Demand.

    Negotiation alternates turns: the farmer answers at even rounds, the
    provider at odd rounds, up to MAX_NEGOTIATION_ROUND counter-offers. A
    proposal is finalized once it is accepted and both parties have
    validated it.

    Fields:
    - demand / provider: The bid target and its author
    - price: Original price; current_price: price after counter-offers
    - status: pending, accepted or rejected
    - negotiation_round: Number of counter-offers made so far (0-4)
    - counter_offer_history: Ordered list of {round, by, price, at}
    - farmer_validated / provider_validated: Double validation flags
    - version: Optimistic concurrency token, bumped on every write
    """

    ROLE_FARMER = 'farmer'
    ROLE_PROVIDER = 'provider'

    ROLE_CHOICES = [
        (ROLE_FARMER, 'Farmer'),
        (ROLE_PROVIDER, 'Provider'),
    ]

    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    MAX_NEGOTIATION_ROUND = 4

    demand = models.ForeignKey(
        Demand,
        on_delete=models.CASCADE,
        related_name='proposals'
    )

    provider = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='proposals'
    )

    price = models.DecimalField(
        _('price'),
        max_digits=10,
        decimal_places=2,
        validators=[validate_positive_amount],
        help_text=_('Price of the initial bid')
    )

    current_price = models.DecimalField(
        _('current price'),
        max_digits=10,
        decimal_places=2,
        validators=[validate_positive_amount],
        help_text=_('Price on the table after counter-offers')
    )

    description = models.TextField(_('description'), blank=True, default='')

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    negotiation_round = models.PositiveSmallIntegerField(
        _('negotiation round'),
        default=0,
        validators=[MaxValueValidator(MAX_NEGOTIATION_ROUND)]
    )

    last_counter_by = models.CharField(
        _('last counter by'),
        max_length=10,
        choices=ROLE_CHOICES,
        blank=True,
        default=''
    )

    counter_offer_history = models.JSONField(
        _('counter-offer history'),
        default=list,
        blank=True
    )

    farmer_validated = models.BooleanField(_('farmer validated'), default=False)

    provider_validated = models.BooleanField(_('provider validated'), default=False)

    farmer_validated_at = models.DateTimeField(null=True, blank=True)

    provider_validated_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(_('version'), default=0)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('proposal')
        verbose_name_plural = _('proposals')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['demand', 'status'], name='proposal_demand_status_idx'),
            models.Index(fields=['provider'], name='proposal_provider_idx'),
        ]

    def __str__(self):
        return f"Proposal #{self.pk} on demand #{self.demand_id} ({self.status})"

    @property
    def is_finalized(self):
        return (
            self.status == self.STATUS_ACCEPTED
            and self.farmer_validated
            and self.provider_validated
        )

    def role_of(self, user):
        """
        Return the role ``user`` plays on this proposal.

        Returns:
            str or None: 'farmer' for the demand owner, 'provider' for the
            bid author, None for anybody else
        """
        if user is None or user.pk is None:
            return None
        if user.pk == self.demand.farmer_id:
            return self.ROLE_FARMER
        if user.pk == self.provider_id:
            return self.ROLE_PROVIDER
        return None

    def whose_turn(self):
        """The farmer answers even rounds, the provider odd rounds."""
        return self.ROLE_FARMER if self.negotiation_round % 2 == 0 else self.ROLE_PROVIDER

    def clean(self):
        super().clean()

        if self.provider_id and not self.provider.is_provider():
            raise ValidationError({
                'provider': _('Only users with user_type="provider" can submit proposals.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Reservation(models.Model):
    """
    A farmer's booking request against an Offer.

    Fields:
    - offer / farmer / provider: The booked equipment and both parties
    - start_date / end_date: Reserved window (inclusive)
    - price_rate: Daily rate copied from the offer at creation
    - total_cost: Billable days times price_rate
    - status: pending, rejected, cancelled or approved
    - provider_validated / farmer_validated: Double validation flags
    - version: Optimistic concurrency token, bumped on every write
    """

    STATUS_PENDING = 'pending'
    STATUS_REJECTED = 'rejected'
    STATUS_CANCELLED = 'cancelled'
    STATUS_APPROVED = 'approved'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_APPROVED, 'Approved'),
    ]

    TERMINAL_STATUSES = (STATUS_REJECTED, STATUS_CANCELLED, STATUS_APPROVED)

    offer = models.ForeignKey(
        Offer,
        on_delete=models.CASCADE,
        related_name='reservations'
    )

    farmer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='reservations'
    )

    provider = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='provider_reservations'
    )

    start_date = models.DateField(_('start date'))

    end_date = models.DateField(_('end date'))

    price_rate = models.DecimalField(
        _('price rate'),
        max_digits=10,
        decimal_places=2,
        validators=[validate_positive_amount]
    )

    total_cost = models.DecimalField(
        _('total cost'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    provider_validated = models.BooleanField(_('provider validated'), default=False)

    farmer_validated = models.BooleanField(_('farmer validated'), default=False)

    provider_validated_at = models.DateTimeField(null=True, blank=True)

    farmer_validated_at = models.DateTimeField(null=True, blank=True)

    approved_at = models.DateTimeField(_('approved at'), null=True, blank=True)

    version = models.PositiveIntegerField(_('version'), default=0)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('reservation')
        verbose_name_plural = _('reservations')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['offer', 'status'], name='reservation_offer_status_idx'),
            models.Index(fields=['farmer'], name='reservation_farmer_idx'),
            models.Index(fields=['provider'], name='reservation_provider_idx'),
        ]

    def __str__(self):
        return f"Reservation #{self.pk} on offer #{self.offer_id} ({self.status})"

    @property
    def time_slot(self):
        return TimeSlot.of(self)

    @property
    def is_finalized(self):
        return self.status == self.STATUS_APPROVED

    def clean(self):
        super().clean()

        if self.farmer_id and not self.farmer.is_farmer():
            raise ValidationError({
                'farmer': _('Only users with user_type="farmer" can make reservations.')
            })

        validate_date_window(self.start_date, self.end_date)

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)
