"""
Mark pending installments past their due date as overdue
"""
from datetime import date

from django.core.management.base import BaseCommand, CommandError

from agencies.models import Agency
from payment_plans.overdue import run_overdue_sweep


class Command(BaseCommand):
    help = 'Run the overdue installment sweep for one or all agencies'

    def add_arguments(self, parser):
        parser.add_argument(
            '--agency-id',
            type=int,
            help='Only sweep this agency (default: all active agencies)'
        )
        parser.add_argument(
            '--as-of',
            type=str,
            help='Local date to sweep as of, YYYY-MM-DD (default: now, with cut-off times applied)'
        )

    def handle(self, *args, **options):
        agency = None
        if options.get('agency_id'):
            try:
                agency = Agency.objects.get(id=options['agency_id'])
            except Agency.DoesNotExist:
                raise CommandError(f'Agency with ID {options["agency_id"]} does not exist')
            self.stdout.write(f"Sweeping agency: {agency.name}")

        as_of = None
        if options.get('as_of'):
            try:
                as_of = date.fromisoformat(options['as_of'])
            except ValueError:
                raise CommandError(f'Invalid --as-of date: {options["as_of"]}')

        result = run_overdue_sweep(as_of=as_of, agency=agency)

        for agency_id, count in result.per_agency.items():
            self.stdout.write(f"  Agency {agency_id}: {count} installments marked overdue")
        for agency_id in result.skipped_agencies:
            self.stdout.write(self.style.WARNING(f"  Agency {agency_id}: sweep already running, skipped"))

        self.stdout.write(self.style.SUCCESS(f"Done: {result.transitioned} installments marked overdue"))
