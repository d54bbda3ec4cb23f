import os
import sys
import django
import random
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'farm_rental_marketplace.settings')
django.setup()

from marketplace import booking, negotiation
from marketplace.exceptions import MarketplaceError
from marketplace.models import AvailabilitySlot, Demand, Offer, User

fake = Faker('fr_FR')

SERVICES = [
    "Harvesting", "Ploughing", "Seeding", "Spraying", "Baling", "Mowing"
]

EQUIPMENT = [
    "Combine Harvester", "Tractor 120hp", "Seed Drill", "Field Sprayer",
    "Round Baler", "Disc Mower", "Telehandler"
]


def random_point():
    # Somewhere in the Beauce plain
    return (
        Decimal(random.uniform(47.9, 48.6)).quantize(Decimal('0.000001')),
        Decimal(random.uniform(1.0, 2.2)).quantize(Decimal('0.000001')),
    )


def create_users(num_farmers=10, num_providers=5):
    print(f"Creating {num_farmers} farmers and {num_providers} providers...")

    farmers = []
    providers = []

    for user_type, count, bucket in (
        ('farmer', num_farmers, farmers),
        ('provider', num_providers, providers),
    ):
        for _ in range(count):
            email = fake.unique.email()
            user = User.objects.create_user(
                username=email.split('@')[0][:30],
                email=email,
                password='password123',
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                phone_number=fake.numerify('+33 6## ## ## ##'),
                user_type=user_type
            )
            bucket.append(user)

    print(f"Created {len(farmers)} farmers and {len(providers)} providers.")
    return farmers, providers


def create_offers(providers):
    print("Creating offers...")
    offers = []
    today = timezone.localdate()

    for provider in providers:
        # Each provider rents out 1-3 machines
        for equipment_type in random.sample(EQUIPMENT, random.randint(1, 3)):
            latitude, longitude = random_point()
            offer = Offer.objects.create(
                provider=provider,
                equipment_type=equipment_type,
                description=fake.paragraph(),
                price_rate=Decimal(random.uniform(80.0, 600.0)).quantize(Decimal('0.01')),
                city=fake.city(),
                latitude=latitude,
                longitude=longitude
            )

            # Two disjoint availability windows
            start = today + timedelta(days=random.randint(1, 10))
            first_end = start + timedelta(days=random.randint(7, 20))
            second_start = first_end + timedelta(days=random.randint(5, 15))
            AvailabilitySlot.objects.create(offer=offer, start_date=start, end_date=first_end)
            AvailabilitySlot.objects.create(
                offer=offer,
                start_date=second_start,
                end_date=second_start + timedelta(days=random.randint(7, 20))
            )
            offers.append(offer)

    print(f"Created {len(offers)} offers.")
    return offers


def create_demands(farmers):
    print("Creating demands...")
    demands = []
    today = timezone.localdate()

    for farmer in farmers:
        # Each farmer posts 0-2 demands
        for _ in range(random.randint(0, 2)):
            service = random.choice(SERVICES)
            start = today + timedelta(days=random.randint(3, 40))
            latitude, longitude = random_point()
            demand = Demand.objects.create(
                farmer=farmer,
                title=f"{service} of {random.randint(5, 80)} ha",
                required_service=service,
                description=fake.text(),
                start_date=start,
                end_date=start + timedelta(days=random.randint(0, 6)),
                city=fake.city(),
                latitude=latitude,
                longitude=longitude
            )
            demands.append(demand)

    print(f"Created {len(demands)} demands.")
    return demands


def negotiate(demands, providers):
    print("Negotiating proposals...")
    finalized = 0

    for demand in demands:
        bidders = random.sample(providers, min(len(providers), random.randint(0, 3)))
        proposals = [
            negotiation.submit_proposal(
                demand.pk,
                provider,
                Decimal(random.uniform(300.0, 3000.0)).quantize(Decimal('0.01')),
                fake.sentence()
            )
            for provider in bidders
        ]
        if not proposals or random.random() < 0.3:
            continue

        # The farmer counters once, the provider accepts, both validate
        proposal = random.choice(proposals)
        lower = (proposal.current_price * Decimal('0.9')).quantize(Decimal('0.01'))
        proposal = negotiation.counter_offer(proposal.pk, demand.farmer, lower, proposal.version)
        proposal = negotiation.accept_proposal(proposal.pk, proposal.provider)
        negotiation.final_validate_proposal(proposal.pk, demand.farmer)
        finalized += 1

    print(f"Finalized {finalized} proposals.")


def book(offers, farmers):
    print("Creating reservations...")
    created = 0
    approved = 0

    for offer in offers:
        slot = random.choice(list(offer.availability_slots.all()))
        start = slot.start_date + timedelta(days=random.randint(0, 3))
        end = min(slot.end_date, start + timedelta(days=random.randint(0, 4)))
        farmer = random.choice(farmers)

        try:
            reservation = booking.create_reservation(offer.pk, farmer, start, end)
        except MarketplaceError as e:
            print(f"  Skipped offer {offer.pk}: {e.detail}")
            continue
        created += 1

        outcome = random.choice(['pending', 'approved', 'rejected', 'cancelled'])
        if outcome == 'approved':
            booking.provider_validate_reservation(reservation.pk, offer.provider)
            booking.farmer_final_validate_reservation(reservation.pk, farmer)
            approved += 1
        elif outcome == 'rejected':
            booking.reject_reservation(reservation.pk, offer.provider)
        elif outcome == 'cancelled':
            booking.cancel_reservation(reservation.pk, farmer)

    print(f"Created {created} reservations, {approved} approved.")


def main():
    print("Starting database population...")

    farmers, providers = create_users(num_farmers=20, num_providers=10)
    offers = create_offers(providers)
    demands = create_demands(farmers)
    negotiate(demands, providers)
    book(offers, farmers)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
