from __future__ import annotations

import logging
from datetime import date

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from billing.models import BillingPeriod, Property
from billing.services.periods import PeriodGenerator, rolling_window_months

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Extends payable billing periods of every active payable template to a rolling window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--property",
            type=int,
            help="Optional property ID; defaults to all properties.",
        )
        parser.add_argument(
            "--months",
            type=int,
            help="Window length in months, starting with the current month.",
        )
        parser.add_argument(
            "--today",
            type=str,
            help="Reference date in the format YYYY-MM-DD (e.g. 2026-02-15).",
        )

    def handle(self, *args, **options):
        today = self._parse_date(options.get("today"))
        months = options.get("months") or rolling_window_months()
        if months < 1:
            raise CommandError("--months must be at least 1.")

        properties = Property.objects.order_by("id")
        if options.get("property"):
            properties = properties.filter(pk=options["property"])
            if not properties.exists():
                raise CommandError(f"Property {options['property']} does not exist.")

        generator = PeriodGenerator(generation_source=BillingPeriod.GenerationSource.CRON)
        created_total = 0
        failed_templates = 0
        failed_properties = 0
        for property_obj in properties:
            try:
                outcome = generator.ensure_payable_rolling_window(
                    property_obj=property_obj,
                    months=months,
                    today=today,
                )
            except ValidationError as exc:
                failed_properties += 1
                self.stderr.write(f"{property_obj}: {exc}")
                continue
            except Exception:
                failed_properties += 1
                logger.exception("Rolling window generation failed for property %s", property_obj.pk)
                self.stderr.write(f"{property_obj}: unexpected error, see log.")
                continue

            created = sum(len(periods) for periods in outcome.values())
            created_total += created
            for item in outcome.failed:
                failed_templates += 1
                self.stderr.write(f"{property_obj}: payable template {item.key[1]}: {item.error}")
            if created:
                self.stdout.write(f"{property_obj}: {created} period(s) created.")

        summary = f"{created_total} payable period(s) created through {months} month(s) from {today.isoformat()}."
        if failed_templates or failed_properties:
            self.stdout.write(
                self.style.WARNING(
                    f"{summary} {failed_templates} template(s) and {failed_properties} property(ies) failed."
                )
            )
            return
        self.stdout.write(self.style.SUCCESS(summary))

    @staticmethod
    def _parse_date(value) -> date:
        if not value:
            return timezone.localdate()
        try:
            return date.fromisoformat(value)
        except (ValueError, TypeError):
            raise CommandError("Invalid format. Expected: YYYY-MM-DD")
