from __future__ import annotations

import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.exceptions import ConflictError, NotFoundError
from billing.models import BillingPeriod, InvoiceTemplate, PayableTemplate, Property
from billing.services.dependencies import DerivedTemplate, dependencies, validate_dependency_set
from billing.services.outcomes import BatchOutcome

logger = logging.getLogger(__name__)

DEFAULT_ROLLING_WINDOW_MONTHS = 24
EDITABLE_PERIOD_FIELDS = (
    "period_start_date",
    "period_end_date",
    "scheduled_generation_day",
    "scheduled_payment_day",
    "is_active",
)


def add_months(input_date: date, months: int) -> date:
    year = input_date.year + (input_date.month - 1 + months) // 12
    month = (input_date.month - 1 + months) % 12 + 1
    day = min(input_date.day, monthrange(year, month)[1])
    return date(year, month, day)


def month_bounds(check_date: date) -> tuple[date, date]:
    month_start = date(check_date.year, check_date.month, 1)
    last_day = monthrange(month_start.year, month_start.month)[1]
    return month_start, date(month_start.year, month_start.month, last_day)


def month_range(start_date: date, end_date: date) -> list[date]:
    if end_date < start_date:
        return []
    values: list[date] = []
    current = date(start_date.year, start_date.month, 1)
    end = date(end_date.year, end_date.month, 1)
    while current <= end:
        values.append(current)
        current = add_months(current, 1)
    return values


def clamp_day(year: int, month: int, day: int) -> int:
    return min(day, monthrange(year, month)[1])


def validate_schedule_day(schedule_day: object) -> int:
    if isinstance(schedule_day, bool) or not isinstance(schedule_day, int):
        raise ValidationError({"schedule_day": "Schedule day must be a whole number between 1 and 31."})
    if schedule_day < 1 or schedule_day > 31:
        raise ValidationError({"schedule_day": f"Schedule day {schedule_day} is outside 1–31."})
    return schedule_day


def validate_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError(
            {"end_date": f"End date {end_date.isoformat()} is before start date {start_date.isoformat()}."}
        )


def _template_filter(template: DerivedTemplate) -> dict[str, object]:
    if isinstance(template, InvoiceTemplate):
        return {"invoice_template": template}
    if isinstance(template, PayableTemplate):
        return {"payable_template": template}
    raise TypeError(f"Unsupported template type: {type(template).__name__}")


def rolling_window_months() -> int:
    return int(getattr(settings, "BILLING_ROLLING_WINDOW_MONTHS", DEFAULT_ROLLING_WINDOW_MONTHS))


@dataclass(slots=True)
class TemplateScheduleConfig:
    template: DerivedTemplate
    schedule_day: int | None = None


class PeriodGenerator:
    def __init__(self, *, generation_source: str = BillingPeriod.GenerationSource.MANUAL):
        self.generation_source = generation_source

    def _build_period(
        self,
        *,
        template: DerivedTemplate,
        month_start: date,
        schedule_day: int,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> BillingPeriod:
        default_start, default_end = month_bounds(month_start)
        day = clamp_day(month_start.year, month_start.month, schedule_day)
        is_invoice = isinstance(template, InvoiceTemplate)
        return BillingPeriod(
            property_id=template.property_id,
            period_type=template.period_type,
            tenant_id=template.tenant_id if is_invoice else None,
            period_year=month_start.year,
            period_month=month_start.month,
            period_start_date=period_start or default_start,
            period_end_date=period_end or default_end,
            scheduled_generation_day=day if is_invoice else None,
            scheduled_payment_day=None if is_invoice else day,
            generation_source=self.generation_source,
            **_template_filter(template),
        )

    @staticmethod
    def _existing_months(template: DerivedTemplate) -> set[tuple[int, int]]:
        return set(
            BillingPeriod.objects.filter(**_template_filter(template)).values_list(
                "period_year", "period_month"
            )
        )

    def generate(
        self,
        *,
        template: DerivedTemplate,
        start_date: date,
        end_date: date,
        schedule_day: int | None = None,
    ) -> list[BillingPeriod]:
        """Create one period per calendar month in range, skipping months that already exist.

        ``end_date`` is inclusive. Returns only the periods created by this call.
        """
        validate_range(start_date, end_date)
        day = validate_schedule_day(template.schedule_day if schedule_day is None else schedule_day)
        validate_dependency_set(template, dependencies(template))

        created: list[BillingPeriod] = []
        with transaction.atomic():
            existing = self._existing_months(template)
            for month_start in month_range(start_date, end_date):
                if (month_start.year, month_start.month) in existing:
                    continue
                period = self._build_period(template=template, month_start=month_start, schedule_day=day)
                try:
                    with transaction.atomic():
                        period.save()
                except IntegrityError:
                    # A concurrent run created the same month between our read and insert.
                    logger.info(
                        "Skipped %s period %02d/%d for template %s: already exists",
                        template.period_type,
                        month_start.month,
                        month_start.year,
                        template.pk,
                    )
                    continue
                existing.add((month_start.year, month_start.month))
                created.append(period)

        logger.info(
            "Generated %d %s period(s) for template %s (%s – %s)",
            len(created),
            template.period_type,
            template.pk,
            start_date.isoformat(),
            end_date.isoformat(),
        )
        return created

    def generate_many(
        self,
        *,
        configs: Iterable[TemplateScheduleConfig],
        start_date: date,
        end_date: date,
    ) -> BatchOutcome[list[BillingPeriod]]:
        outcome: BatchOutcome[list[BillingPeriod]] = BatchOutcome()
        for config in configs:
            key = (config.template.period_type, config.template.pk)
            try:
                created = self.generate(
                    template=config.template,
                    start_date=start_date,
                    end_date=end_date,
                    schedule_day=config.schedule_day,
                )
            except (ValidationError, NotFoundError) as exc:
                logger.warning("Period generation for %s %s failed: %s", key[0], key[1], exc)
                outcome.add_failure(key, exc)
                continue
            except Exception as exc:
                logger.exception("Period generation for %s %s failed unexpectedly", key[0], key[1])
                outcome.add_failure(key, exc)
                continue
            outcome.add_success(key, created)
        return outcome

    def create_period(
        self,
        *,
        template: DerivedTemplate,
        year: int,
        month: int,
        schedule_day: int | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> BillingPeriod:
        if month < 1 or month > 12:
            raise ValidationError({"month": f"Month {month} is outside 1–12."})
        day = validate_schedule_day(template.schedule_day if schedule_day is None else schedule_day)
        validate_dependency_set(template, dependencies(template))
        period = self._build_period(
            template=template,
            month_start=date(year, month, 1),
            schedule_day=day,
            period_start=period_start,
            period_end=period_end,
        )
        period.full_clean(validate_unique=False, validate_constraints=False)
        try:
            with transaction.atomic():
                period.save()
        except IntegrityError as exc:
            raise ConflictError(
                f"A {template.period_type} period for template {template.pk} in {month:02d}/{year} already exists."
            ) from exc
        return period

    def ensure_payable_rolling_window(
        self,
        *,
        property_obj: Property,
        months: int | None = None,
        today: date | None = None,
    ) -> BatchOutcome[list[BillingPeriod]]:
        """Extend every active payable template of the property up to ``months`` ahead."""
        today = today or timezone.localdate()
        months = rolling_window_months() if months is None else months
        if months < 1:
            raise ValidationError({"months": "Rolling window must cover at least one month."})
        current_month, _ = month_bounds(today)
        _, target_end = month_bounds(add_months(current_month, months - 1))

        templates = list(
            PayableTemplate.objects.filter(property=property_obj, is_active=True).order_by("name", "id")
        )
        outcome: BatchOutcome[list[BillingPeriod]] = BatchOutcome()
        for template in templates:
            start = current_month
            latest = (
                BillingPeriod.objects.filter(payable_template=template)
                .order_by("-period_year", "-period_month")
                .values_list("period_year", "period_month")
                .first()
            )
            if latest is not None:
                start = max(start, add_months(date(latest[0], latest[1], 1), 1))
            if start > target_end:
                continue
            single = self.generate_many(
                configs=[TemplateScheduleConfig(template=template)],
                start_date=start,
                end_date=target_end,
            )
            outcome.items.extend(single.items)
        return outcome


def generate_periods(
    *,
    template: DerivedTemplate,
    start_date: date,
    end_date: date,
    schedule_day: int | None = None,
    generation_source: str = BillingPeriod.GenerationSource.MANUAL,
) -> list[BillingPeriod]:
    return PeriodGenerator(generation_source=generation_source).generate(
        template=template,
        start_date=start_date,
        end_date=end_date,
        schedule_day=schedule_day,
    )


def generate_periods_for_templates(
    *,
    configs: Iterable[TemplateScheduleConfig | tuple[DerivedTemplate, int | None]],
    start_date: date,
    end_date: date,
) -> BatchOutcome[list[BillingPeriod]]:
    normalized = [
        config if isinstance(config, TemplateScheduleConfig) else TemplateScheduleConfig(*config)
        for config in configs
    ]
    return PeriodGenerator(generation_source=BillingPeriod.GenerationSource.BATCH).generate_many(
        configs=normalized,
        start_date=start_date,
        end_date=end_date,
    )


def get_period(period_id: int) -> BillingPeriod:
    try:
        return BillingPeriod.objects.select_related("invoice_template", "payable_template").get(pk=period_id)
    except BillingPeriod.DoesNotExist as exc:
        raise NotFoundError("BillingPeriod", period_id) from exc


def periods_for_property(property_obj: Property, period_type: str | None = None):
    queryset = BillingPeriod.objects.filter(property=property_obj).select_related(
        "invoice_template", "payable_template", "tenant"
    )
    if period_type:
        queryset = queryset.filter(period_type=period_type)
    return queryset.order_by("period_year", "period_month", "period_type", "id")


def update_period(period: BillingPeriod, **changes) -> BillingPeriod:
    unknown = sorted(set(changes) - set(EDITABLE_PERIOD_FIELDS))
    if unknown:
        raise ValidationError({field: "This field cannot be changed on a billing period." for field in unknown})
    for field_name in ("scheduled_generation_day", "scheduled_payment_day"):
        if changes.get(field_name) is not None:
            validate_schedule_day(changes[field_name])
    for field_name, value in changes.items():
        setattr(period, field_name, value)
    period.full_clean(validate_unique=False, validate_constraints=False)
    with transaction.atomic():
        period.save(update_fields=list(changes))
    return period


def delete_period(period: BillingPeriod) -> None:
    period_id = period.pk
    period.delete()
    logger.info("Deleted billing period %s and its bill matches", period_id)


def delete_all_periods(property_obj: Property, period_type: str) -> int:
    if period_type not in BillingPeriod.PeriodType.values:
        raise ValidationError({"period_type": f"Unknown period type {period_type!r}."})
    with transaction.atomic():
        _total, per_model = BillingPeriod.objects.filter(
            property=property_obj,
            period_type=period_type,
        ).delete()
    deleted = per_model.get(BillingPeriod._meta.label, 0)
    logger.info("Deleted %d %s period(s) for property %s", deleted, period_type, property_obj.pk)
    return deleted
