from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from django.db import models

from billing.exceptions import NotFoundError
from billing.models import Bill, BillingPeriod, BillTemplate, PeriodBillMatch
from billing.services.dependencies import DependencySet, dependencies_for_many
from billing.services.outcomes import BatchOutcome

logger = logging.getLogger(__name__)

UNKNOWN_TEMPLATE_NAME = "Unknown template"


class DependencyState(models.TextChoices):
    NO_DEPENDENCIES = "no_dependencies", "No dependencies"
    WAITING = "waiting", "Waiting for bills"
    READY = "ready", "All bills arrived"


@dataclass(frozen=True, slots=True)
class RequiredBillTemplate:
    id: int
    name: str
    is_active: bool
    exists: bool = True


@dataclass(slots=True)
class PeriodDependencyStatus:
    period_id: int
    period_type: str
    template_id: int | None
    required_bill_templates: list[RequiredBillTemplate] = field(default_factory=list)
    arrived_bills: list[Bill] = field(default_factory=list)
    missing_bill_templates: list[RequiredBillTemplate] = field(default_factory=list)

    @property
    def has_dependencies(self) -> bool:
        return bool(self.required_bill_templates)

    @property
    def all_met(self) -> bool:
        return self.has_dependencies and not self.missing_bill_templates

    @property
    def state(self) -> str:
        if not self.has_dependencies:
            return DependencyState.NO_DEPENDENCIES
        if self.missing_bill_templates:
            return DependencyState.WAITING
        return DependencyState.READY

    @property
    def inactive_required_templates(self) -> list[RequiredBillTemplate]:
        return [template for template in self.required_bill_templates if not template.is_active]


def _required_templates(
    dependency_set: DependencySet,
    bill_templates: dict[int, BillTemplate],
) -> list[RequiredBillTemplate]:
    required: list[RequiredBillTemplate] = []
    for bill_template_id in dependency_set:
        bill_template = bill_templates.get(bill_template_id)
        if bill_template is None:
            required.append(
                RequiredBillTemplate(id=bill_template_id, name=UNKNOWN_TEMPLATE_NAME, is_active=False, exists=False)
            )
            continue
        required.append(
            RequiredBillTemplate(id=bill_template.pk, name=bill_template.name, is_active=bill_template.is_active)
        )
    return required


def build_status(
    period: BillingPeriod,
    dependency_set: DependencySet,
    matched_bills: Iterable[Bill],
    bill_templates: dict[int, BillTemplate],
) -> PeriodDependencyStatus:
    """Partition the dependency set of ``period`` into arrived and missing templates.

    Bills in error status never count as arrived. Unclassified bills or bills of
    templates outside the set stay matched but do not satisfy a dependency.
    """
    arrived_bills = [
        bill
        for bill in matched_bills
        if bill.status != Bill.Status.ERROR and bill.bill_template_id in dependency_set
    ]
    covered = {bill.bill_template_id for bill in arrived_bills}
    required = _required_templates(dependency_set, bill_templates)
    return PeriodDependencyStatus(
        period_id=period.pk,
        period_type=period.period_type,
        template_id=period.template_id,
        required_bill_templates=required,
        arrived_bills=arrived_bills,
        missing_bill_templates=[template for template in required if template.id not in covered],
    )


def status_for_many(period_ids: Iterable[int]) -> BatchOutcome[PeriodDependencyStatus]:
    """Dependency status for several periods with a fixed number of queries.

    One item per distinct id in input order; unknown ids carry a ``NotFoundError``.
    """
    period_ids = list(dict.fromkeys(period_ids))
    periods = BillingPeriod.objects.in_bulk(period_ids)
    outcome: BatchOutcome[PeriodDependencyStatus] = BatchOutcome()
    if not periods:
        for period_id in period_ids:
            outcome.add_failure(period_id, NotFoundError("BillingPeriod", period_id))
        return outcome

    found = list(periods.values())
    sets = dependencies_for_many(
        invoice_template_ids=[period.invoice_template_id for period in found if period.invoice_template_id],
        payable_template_ids=[period.payable_template_id for period in found if period.payable_template_id],
    )
    wanted_template_ids: set[int] = set()
    for dependency_set in sets.values():
        wanted_template_ids |= dependency_set.ids
    bill_templates = BillTemplate.objects.in_bulk(wanted_template_ids)

    bills_by_period: dict[int, list[Bill]] = {pk: [] for pk in periods}
    matches = (
        PeriodBillMatch.objects.filter(period_id__in=bills_by_period)
        .select_related("bill")
        .order_by("bill__created_at", "bill_id")
    )
    for match in matches:
        bills_by_period[match.period_id].append(match.bill)

    for period_id in period_ids:
        period = periods.get(period_id)
        if period is None:
            outcome.add_failure(period_id, NotFoundError("BillingPeriod", period_id))
            continue
        dependency_set = sets.get((period.period_type, period.template_id), DependencySet())
        outcome.add_success(period_id, build_status(period, dependency_set, bills_by_period[period.pk], bill_templates))
    logger.debug("Resolved dependency status for %d of %d period(s)", len(found), len(period_ids))
    return outcome


def status(period_id: int) -> PeriodDependencyStatus:
    item = status_for_many([period_id]).items[0]
    if not item.ok:
        raise item.error
    return item.value
