from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from django.db import transaction

from billing.exceptions import IncompatibleMatchError, NotFoundError
from billing.models import Bill, BillingPeriod, PeriodBillMatch, Property
from billing.services.dependencies import DependencySet, dependencies_for_many
from billing.services.outcomes import BatchOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Compatibility:
    can_match: bool
    reason: str = ""


@dataclass(slots=True)
class BillMatchSummary:
    bill: Bill
    matched_period_ids: list[int] = field(default_factory=list)

    @property
    def matched_period_count(self) -> int:
        return len(self.matched_period_ids)

    @property
    def is_matched(self) -> bool:
        return bool(self.matched_period_ids)


def evaluate_compatibility(bill: Bill, period: BillingPeriod, dependency_set: DependencySet) -> Compatibility:
    if bill.property_id != period.property_id:
        return Compatibility(False, "Bill and period belong to different properties.")
    if bill.bill_template_id is None:
        return Compatibility(True, "Bill is unclassified; confirm the match manually.")
    if bill.bill_template_id in dependency_set:
        return Compatibility(True)
    if dependency_set.is_empty:
        return Compatibility(False, f"The {period.period_type} template has no bill template dependencies.")
    return Compatibility(
        False,
        f"Bill template {bill.bill_template_id} is not a dependency of the {period.period_type} template.",
    )


def _dependency_sets_for(periods: Iterable[BillingPeriod]) -> dict[tuple[str, int], DependencySet]:
    periods = list(periods)
    return dependencies_for_many(
        invoice_template_ids=[p.invoice_template_id for p in periods if p.invoice_template_id],
        payable_template_ids=[p.payable_template_id for p in periods if p.payable_template_id],
    )


def _dependency_set_for(period: BillingPeriod, sets: dict[tuple[str, int], DependencySet]) -> DependencySet:
    return sets.get((period.period_type, period.template_id), DependencySet())


def period_dependency_set(period: BillingPeriod) -> DependencySet:
    return _dependency_set_for(period, _dependency_sets_for([period]))


def get_bill(bill_id: int) -> Bill:
    try:
        return Bill.objects.get(pk=bill_id)
    except Bill.DoesNotExist as exc:
        raise NotFoundError("Bill", bill_id) from exc


class BillPeriodMatcher:
    def __init__(self, *, matched_by=None):
        self.matched_by = matched_by

    def check_compatibility(self, bill_id: int, period_ids: Iterable[int]) -> dict[int, Compatibility]:
        bill = get_bill(bill_id)
        period_ids = list(dict.fromkeys(period_ids))
        periods = {period.pk: period for period in BillingPeriod.objects.filter(pk__in=period_ids)}
        sets = _dependency_sets_for(periods.values())

        verdicts: dict[int, Compatibility] = {}
        for period_id in period_ids:
            period = periods.get(period_id)
            if period is None:
                verdicts[period_id] = Compatibility(False, "Period not found.")
                continue
            verdicts[period_id] = evaluate_compatibility(bill, period, _dependency_set_for(period, sets))
        return verdicts

    def _match_loaded(
        self,
        *,
        bill: Bill,
        period: BillingPeriod,
        dependency_set: DependencySet,
        match_type: str,
    ) -> PeriodBillMatch:
        verdict = evaluate_compatibility(bill, period, dependency_set)
        if not verdict.can_match:
            raise IncompatibleMatchError(bill.pk, period.pk, verdict.reason)
        with transaction.atomic():
            match, created = PeriodBillMatch.objects.get_or_create(
                period=period,
                bill=bill,
                defaults={"match_type": match_type, "matched_by": self.matched_by},
            )
        if created:
            logger.info("Matched bill %s to %s period %s (%s)", bill.pk, period.period_type, period.pk, match_type)
        return match

    def match(
        self,
        bill_id: int,
        period_id: int,
        *,
        match_type: str = PeriodBillMatch.MatchType.MANUAL,
    ) -> PeriodBillMatch:
        """Link a bill to a period; an existing link is returned unchanged."""
        bill = get_bill(bill_id)
        try:
            period = BillingPeriod.objects.get(pk=period_id)
        except BillingPeriod.DoesNotExist as exc:
            raise NotFoundError("BillingPeriod", period_id) from exc
        sets = _dependency_sets_for([period])
        return self._match_loaded(
            bill=bill,
            period=period,
            dependency_set=_dependency_set_for(period, sets),
            match_type=match_type,
        )

    def match_many(
        self,
        bill_id: int,
        period_ids: Iterable[int],
        *,
        match_type: str = PeriodBillMatch.MatchType.MANUAL,
    ) -> BatchOutcome[PeriodBillMatch]:
        bill = get_bill(bill_id)
        period_ids = list(dict.fromkeys(period_ids))
        periods = {period.pk: period for period in BillingPeriod.objects.filter(pk__in=period_ids)}
        sets = _dependency_sets_for(periods.values())

        outcome: BatchOutcome[PeriodBillMatch] = BatchOutcome()
        for period_id in period_ids:
            period = periods.get(period_id)
            if period is None:
                outcome.add_failure(period_id, NotFoundError("BillingPeriod", period_id))
                continue
            try:
                match = self._match_loaded(
                    bill=bill,
                    period=period,
                    dependency_set=_dependency_set_for(period, sets),
                    match_type=match_type,
                )
            except IncompatibleMatchError as exc:
                logger.info("Rejected match of bill %s to period %s: %s", bill.pk, period_id, exc.reason)
                outcome.add_failure(period_id, exc)
                continue
            outcome.add_success(period_id, match)
        return outcome

    @staticmethod
    def unmatch(bill_id: int, period_id: int) -> bool:
        deleted, _ = PeriodBillMatch.objects.filter(bill_id=bill_id, period_id=period_id).delete()
        if deleted:
            logger.info("Unmatched bill %s from period %s", bill_id, period_id)
        return bool(deleted)

    @staticmethod
    def unmatch_all(bill_id: int) -> int:
        deleted, _ = PeriodBillMatch.objects.filter(bill_id=bill_id).delete()
        logger.info("Unmatched bill %s from %d period(s)", bill_id, deleted)
        return deleted

    @staticmethod
    def suggest_periods(bill: Bill) -> list[BillingPeriod]:
        """Periods of the bill's property in its extracted month that would accept it.

        This is a convenience for pre-selection only; it never creates matches.
        """
        extracted = bill.extracted_period
        if extracted is None:
            return []
        year, month = extracted
        candidates = list(
            BillingPeriod.objects.filter(
                property_id=bill.property_id,
                period_year=year,
                period_month=month,
                is_active=True,
            ).order_by("period_type", "id")
        )
        sets = _dependency_sets_for(candidates)
        return [
            period
            for period in candidates
            if evaluate_compatibility(bill, period, _dependency_set_for(period, sets)).can_match
        ]

    def auto_match(self, bill: Bill) -> BatchOutcome[PeriodBillMatch]:
        if bill.bill_template_id is None:
            # Unclassified bills fit everywhere; they need a human decision.
            return BatchOutcome()
        suggested = self.suggest_periods(bill)
        return self.match_many(
            bill.pk,
            [period.pk for period in suggested],
            match_type=PeriodBillMatch.MatchType.AUTOMATIC,
        )


def bills_for_period(period_id: int) -> list[Bill]:
    return list(
        Bill.objects.filter(period_matches__period_id=period_id)
        .select_related("bill_template")
        .order_by("created_at", "id")
    )


def bills_with_match_status(property_obj: Property) -> list[BillMatchSummary]:
    bills = list(Bill.objects.filter(property=property_obj).select_related("bill_template"))
    matches: dict[int, list[int]] = {}
    for bill_id, period_id in PeriodBillMatch.objects.filter(bill__property=property_obj).values_list(
        "bill_id", "period_id"
    ):
        matches.setdefault(bill_id, []).append(period_id)
    return [BillMatchSummary(bill=bill, matched_period_ids=sorted(matches.get(bill.pk, []))) for bill in bills]


def unmatched_bills(property_obj: Property):
    return (
        Bill.objects.filter(property=property_obj, period_matches__isnull=True)
        .select_related("bill_template")
        .distinct()
    )


def check_compatibility(bill_id: int, period_ids: Iterable[int]) -> dict[int, Compatibility]:
    return BillPeriodMatcher().check_compatibility(bill_id, period_ids)


def match_bill(bill_id: int, period_id: int, *, matched_by=None) -> PeriodBillMatch:
    return BillPeriodMatcher(matched_by=matched_by).match(bill_id, period_id)


def match_bill_many(bill_id: int, period_ids: Iterable[int], *, matched_by=None) -> BatchOutcome[PeriodBillMatch]:
    return BillPeriodMatcher(matched_by=matched_by).match_many(bill_id, period_ids)


def unmatch_bill(bill_id: int, period_id: int) -> bool:
    return BillPeriodMatcher.unmatch(bill_id, period_id)
