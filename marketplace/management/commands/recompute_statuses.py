# Recompute Statuses Management Command
from django.core.management.base import BaseCommand, CommandError

from marketplace.models import Demand, Offer
from marketplace.projection import compute_demand_status, compute_offer_status


class Command(BaseCommand):
    help = 'Re-projects Demand and Offer statuses from their proposals and reservations.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report drift without saving changes to the database.',
        )
        parser.add_argument(
            '--demands-only',
            action='store_true',
            help='Recompute only demand statuses.',
        )
        parser.add_argument(
            '--offers-only',
            action='store_true',
            help='Recompute only offer booking statuses.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=500,
            help='Batch size for bulk processing.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        demands_only = options['demands_only']
        offers_only = options['offers_only']
        batch_size = options['batch_size']

        if demands_only and offers_only:
            raise CommandError('--demands-only and --offers-only are mutually exclusive.')
        if batch_size < 1:
            raise CommandError('--batch-size must be a positive integer.')

        drifted = 0
        if not offers_only:
            drifted += self.recompute(
                Demand, 'status', compute_demand_status, dry_run, batch_size
            )
        if not demands_only:
            drifted += self.recompute(
                Offer, 'booking_status', compute_offer_status, dry_run, batch_size
            )

        if dry_run:
            self.stdout.write(self.style.SUCCESS(
                f'Dry run completed. {drifted} status(es) out of date, no changes saved.'
            ))
        else:
            self.stdout.write(self.style.SUCCESS(
                f'Recomputation completed successfully. {drifted} status(es) fixed.'
            ))

    def recompute(self, model, field, compute, dry_run, batch_size):
        label = model._meta.verbose_name_plural
        self.stdout.write(f'Recomputing {label}...')
        updates = []
        drifted = 0
        count = 0

        for obj in model.objects.order_by('pk').iterator(chunk_size=batch_size):
            current = getattr(obj, field)
            expected = compute(obj)

            if current != expected:
                drifted += 1
                if dry_run:
                    self.stdout.write(
                        f'  [DRY-RUN] {model.__name__} {obj.pk}: {current} -> {expected}'
                    )
                else:
                    setattr(obj, field, expected)
                    updates.append(obj)

            if len(updates) >= batch_size:
                model.objects.bulk_update(updates, [field])
                updates = []

            count += 1
            if count % 100 == 0:
                self.stdout.write(f'Processed {count} {label}...')

        if updates:
            model.objects.bulk_update(updates, [field])

        self.stdout.write(f'Processed {count} {label} total, {drifted} out of date.')
        return drifted
