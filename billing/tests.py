from datetime import date
from io import StringIO
from unittest.mock import patch

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db.models import ProtectedError
from django.forms import inlineformset_factory
from django.test import TestCase, override_settings

from .admin import BillTemplateDependencyFormSet, PeriodBillMatchAdmin
from .exceptions import ConflictError, IncompatibleMatchError, NotFoundError, PartialBatchFailure
from .models import (
    Bill,
    BillingPeriod,
    BillTemplate,
    InvoiceTemplate,
    PayableTemplate,
    PayableTemplateDependency,
    PeriodBillMatch,
    Property,
    Tenant,
)
from .services import dependency_status
from .services.dependencies import (
    DependencySet,
    add_dependency,
    dependencies,
    dependents,
    remove_dependency,
    set_dependencies,
)
from .services.dependency_status import DependencyState
from .services.matching import (
    BillPeriodMatcher,
    bills_for_period,
    bills_with_match_status,
    check_compatibility,
    match_bill,
    match_bill_many,
    unmatch_bill,
    unmatched_bills,
)
from .services.periods import (
    PeriodGenerator,
    TemplateScheduleConfig,
    delete_all_periods,
    generate_periods,
    generate_periods_for_templates,
    periods_for_property,
    update_period,
)


class BillingFixturesMixin:
    def create_property(self, name="Harbour View"):
        return Property.objects.create(
            name=name,
            street_address="12 Dock Road",
            city="Cape Town",
            zip_code="8001",
        )

    def setUp(self):
        self.property = self.create_property()
        self.tenant = Tenant.objects.create(property=self.property, name="Ada Tenant")
        self.municipality = BillTemplate.objects.create(
            property=self.property,
            name="City rates",
            bill_type=BillTemplate.BillType.MUNICIPALITY,
        )
        self.levy = BillTemplate.objects.create(
            property=self.property,
            name="Body corporate levy",
            bill_type=BillTemplate.BillType.LEVY,
        )
        self.electricity = BillTemplate.objects.create(
            property=self.property,
            name="Electricity",
            bill_type=BillTemplate.BillType.UTILITY,
        )
        self.payable_template = PayableTemplate.objects.create(
            property=self.property,
            name="Owner payout",
            scheduled_payment_day=31,
        )
        set_dependencies(self.payable_template, [self.municipality, self.levy])
        self.invoice_template = InvoiceTemplate.objects.create(
            property=self.property,
            tenant=self.tenant,
            name="Monthly rent invoice",
            generation_day_of_month=5,
        )
        set_dependencies(self.invoice_template, [self.municipality])

    def create_bill(self, bill_template=None, *, year=2026, month=1, status=Bill.Status.PROCESSED, property_obj=None):
        return Bill.objects.create(
            property=property_obj or self.property,
            bill_template=bill_template,
            file_name=f"{bill_template.name if bill_template else 'unknown'}-{year}-{month:02d}.pdf",
            billing_year=year,
            billing_month=month,
            status=status,
        )


class DependencySetTests(TestCase):
    def test_from_stored_accepts_loosely_typed_shapes(self):
        self.assertEqual(DependencySet.from_stored(None).ids, frozenset())
        self.assertEqual(DependencySet.from_stored(7).ids, frozenset({7}))
        self.assertEqual(DependencySet.from_stored(["3", 4, None]).ids, frozenset({3, 4}))
        self.assertEqual(DependencySet.from_stored('[3, "4", x]').ids, frozenset({3, 4}))

    def test_membership_union_and_difference(self):
        first = DependencySet.of([1, 2])
        second = DependencySet.of([2, 3])

        self.assertIn(2, first)
        self.assertIn("2", first)
        self.assertNotIn(3, first)
        self.assertEqual(list(first | second), [1, 2, 3])
        self.assertEqual(list(first - second), [1])
        self.assertTrue(DependencySet().is_empty)


class ModelAccessorTests(BillingFixturesMixin, TestCase):
    def test_templates_expose_their_schedule_day(self):
        self.assertEqual(self.invoice_template.schedule_day, 5)
        self.assertEqual(self.payable_template.schedule_day, 31)

    def test_period_resolves_template_by_type(self):
        period = generate_periods(
            template=self.invoice_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]
        self.assertEqual(period.template, self.invoice_template)
        self.assertEqual(period.template_id, self.invoice_template.pk)
        self.assertEqual(period.schedule_day, 5)
        self.assertEqual(period.scheduled_date, date(2026, 1, 5))

    def test_bill_extracted_period(self):
        self.assertEqual(self.create_bill(self.levy, year=2026, month=3).extracted_period, (2026, 3))
        undated = Bill.objects.create(property=self.property, file_name="scan.pdf")
        self.assertIsNone(undated.extracted_period)


class TemplateDependencyModelTests(BillingFixturesMixin, TestCase):
    def test_dependencies_returns_bill_template_ids(self):
        self.assertEqual(
            dependencies(self.payable_template).ids,
            frozenset({self.municipality.pk, self.levy.pk}),
        )

    def test_dependents_lists_invoice_and_payable_templates(self):
        result = dependents(self.municipality)
        self.assertEqual(result.invoice_templates, [self.invoice_template])
        self.assertEqual(result.payable_templates, [self.payable_template])

        levy_dependents = dependents(self.levy.pk)
        self.assertEqual(levy_dependents.invoice_templates, [])
        self.assertEqual(levy_dependents.payable_templates, [self.payable_template])

        self.assertTrue(dependents(self.electricity).is_empty)

    def test_set_dependencies_replaces_edges(self):
        set_dependencies(self.payable_template, [self.levy.pk, self.electricity.pk])
        self.assertEqual(
            dependencies(self.payable_template).ids,
            frozenset({self.levy.pk, self.electricity.pk}),
        )
        self.assertEqual(self.payable_template.dependency_edges.count(), 2)

    def test_set_dependencies_accepts_stored_id_string(self):
        set_dependencies(self.invoice_template, f" {self.levy.pk}, {self.electricity.pk} ")
        self.assertEqual(
            dependencies(self.invoice_template).ids,
            frozenset({self.levy.pk, self.electricity.pk}),
        )

    def test_payable_template_requires_dependencies(self):
        with self.assertRaises(ValidationError):
            set_dependencies(self.payable_template, [])
        remove_dependency(self.payable_template, self.levy)
        with self.assertRaises(ValidationError):
            remove_dependency(self.payable_template, self.municipality)
        self.assertEqual(dependencies(self.payable_template).ids, frozenset({self.municipality.pk}))

    def test_invoice_template_may_have_no_dependencies(self):
        set_dependencies(self.invoice_template, [])
        self.assertTrue(dependencies(self.invoice_template).is_empty)

    def test_add_dependency_is_idempotent(self):
        add_dependency(self.invoice_template, self.levy)
        add_dependency(self.invoice_template, self.levy)
        self.assertEqual(self.invoice_template.dependency_edges.count(), 2)

    def test_unknown_bill_template_is_not_found(self):
        with self.assertRaises(NotFoundError):
            set_dependencies(self.invoice_template, [self.municipality.pk, 999999])

    def test_bill_template_of_other_property_is_rejected(self):
        other = self.create_property("Other block")
        foreign = BillTemplate.objects.create(property=other, name="Foreign rates")
        with self.assertRaises(ValidationError):
            add_dependency(self.invoice_template, foreign)

    def test_referenced_bill_template_cannot_be_deleted(self):
        with self.assertRaises(ProtectedError):
            self.levy.delete()
        self.electricity.delete()


class PeriodGeneratorTests(BillingFixturesMixin, TestCase):
    def test_generates_one_period_per_month_with_clamped_day(self):
        created = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 15),
            end_date=date(2026, 3, 2),
        )

        self.assertEqual([(p.period_year, p.period_month) for p in created], [(2026, 1), (2026, 2), (2026, 3)])
        february = created[1]
        self.assertEqual(february.period_start_date, date(2026, 2, 1))
        self.assertEqual(february.period_end_date, date(2026, 2, 28))
        self.assertEqual(february.scheduled_payment_day, 28)
        self.assertIsNone(february.scheduled_generation_day)
        self.assertEqual(february.scheduled_date, date(2026, 2, 28))
        self.assertEqual(february.period_type, BillingPeriod.PeriodType.PAYABLE)
        self.assertEqual(created[0].scheduled_payment_day, 31)

    def test_leap_year_february_uses_day_29(self):
        created = generate_periods(
            template=self.payable_template,
            start_date=date(2028, 2, 1),
            end_date=date(2028, 2, 1),
        )
        self.assertEqual(created[0].scheduled_payment_day, 29)

    def test_invoice_periods_carry_tenant_and_generation_day(self):
        created = generate_periods(
            template=self.invoice_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )
        period = created[0]
        self.assertEqual(period.tenant, self.tenant)
        self.assertEqual(period.scheduled_generation_day, 5)
        self.assertIsNone(period.scheduled_payment_day)
        self.assertEqual(period.template, self.invoice_template)

    def test_generation_is_idempotent_for_overlapping_ranges(self):
        first = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 3, 31),
        )
        second = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 2, 1),
            end_date=date(2026, 4, 30),
        )
        third = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 4, 30),
        )

        self.assertEqual(len(first), 3)
        self.assertEqual([(p.period_year, p.period_month) for p in second], [(2026, 4)])
        self.assertEqual(third, [])
        self.assertEqual(BillingPeriod.objects.filter(payable_template=self.payable_template).count(), 4)

    def test_month_inserted_concurrently_is_skipped(self):
        generate_periods(template=self.payable_template, start_date=date(2026, 1, 1), end_date=date(2026, 1, 31))

        # The existing-month read misses January, so the insert hits the unique constraint.
        with patch.object(PeriodGenerator, "_existing_months", return_value=set()):
            created = generate_periods(
                template=self.payable_template,
                start_date=date(2026, 1, 1),
                end_date=date(2026, 2, 28),
            )

        self.assertEqual([(p.period_year, p.period_month) for p in created], [(2026, 2)])
        self.assertEqual(BillingPeriod.objects.filter(payable_template=self.payable_template).count(), 2)

    def test_schedule_override_is_used(self):
        created = generate_periods(
            template=self.invoice_template,
            start_date=date(2026, 4, 1),
            end_date=date(2026, 4, 1),
            schedule_day=31,
        )
        self.assertEqual(created[0].scheduled_generation_day, 30)

    def test_end_before_start_is_rejected(self):
        with self.assertRaises(ValidationError):
            generate_periods(
                template=self.payable_template,
                start_date=date(2026, 3, 1),
                end_date=date(2026, 2, 1),
            )
        self.assertFalse(BillingPeriod.objects.exists())

    def test_schedule_day_outside_range_is_rejected(self):
        for invalid_day in (0, 32, "5"):
            with self.assertRaises(ValidationError):
                generate_periods(
                    template=self.invoice_template,
                    start_date=date(2026, 1, 1),
                    end_date=date(2026, 1, 31),
                    schedule_day=invalid_day,
                )

    def test_payable_template_without_dependencies_cannot_generate(self):
        bare = PayableTemplate.objects.create(property=self.property, name="Bare payable")
        with self.assertRaises(ValidationError):
            generate_periods(template=bare, start_date=date(2026, 1, 1), end_date=date(2026, 1, 31))

    def test_batch_generation_isolates_failures(self):
        bare = PayableTemplate.objects.create(property=self.property, name="Bare payable")
        outcome = generate_periods_for_templates(
            configs=[
                TemplateScheduleConfig(template=self.invoice_template, schedule_day=10),
                (bare, None),
                (self.payable_template, None),
            ],
            start_date=date(2026, 1, 1),
            end_date=date(2026, 2, 28),
        )

        self.assertFalse(outcome.ok)
        self.assertEqual(len(outcome.items), 3)
        self.assertEqual(len(outcome.succeeded), 2)
        failure = outcome.by_key()[("payable", bare.pk)]
        self.assertIsInstance(failure.error, ValidationError)
        self.assertEqual(len(outcome.by_key()[("invoice", self.invoice_template.pk)].value), 2)
        self.assertEqual(BillingPeriod.objects.filter(generation_source=BillingPeriod.GenerationSource.BATCH).count(), 4)
        with self.assertRaises(PartialBatchFailure):
            outcome.raise_for_failures()

    def test_force_create_of_existing_month_conflicts(self):
        generator = PeriodGenerator()
        generator.create_period(template=self.payable_template, year=2026, month=6)
        with self.assertRaises(ConflictError):
            generator.create_period(template=self.payable_template, year=2026, month=6)
        self.assertEqual(BillingPeriod.objects.count(), 1)

    def test_create_period_accepts_explicit_boundaries(self):
        period = PeriodGenerator().create_period(
            template=self.invoice_template,
            year=2026,
            month=6,
            period_start=date(2026, 6, 15),
            period_end=date(2026, 7, 14),
        )
        self.assertEqual(period.period_start_date, date(2026, 6, 15))
        self.assertEqual(period.period_end_date, date(2026, 7, 14))

    def test_rolling_window_starts_after_latest_period(self):
        generate_periods(
            template=self.payable_template,
            start_date=date(2026, 4, 1),
            end_date=date(2026, 4, 30),
        )
        outcome = PeriodGenerator(generation_source=BillingPeriod.GenerationSource.CRON).ensure_payable_rolling_window(
            property_obj=self.property,
            months=3,
            today=date(2026, 3, 15),
        )

        self.assertTrue(outcome.ok)
        months = sorted(
            BillingPeriod.objects.filter(payable_template=self.payable_template).values_list(
                "period_year", "period_month"
            )
        )
        self.assertEqual(months, [(2026, 4), (2026, 5)])
        self.assertEqual(
            BillingPeriod.objects.get(period_month=5).generation_source,
            BillingPeriod.GenerationSource.CRON,
        )

    def test_update_period_validates_and_records_history(self):
        period = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]

        update_period(period, period_end_date=date(2026, 2, 5), scheduled_payment_day=2)
        period.refresh_from_db()
        self.assertEqual(period.period_end_date, date(2026, 2, 5))
        self.assertEqual(period.history.count(), 2)

        with self.assertRaises(ValidationError):
            update_period(period, period_end_date=date(2025, 12, 1))
        with self.assertRaises(ValidationError):
            update_period(period, period_year=2027)

    def test_delete_all_periods_cascades_matches_only_for_type(self):
        payable_periods = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 2, 28),
        )
        generate_periods(template=self.invoice_template, start_date=date(2026, 1, 1), end_date=date(2026, 1, 31))
        bill = self.create_bill(self.municipality)
        match_bill(bill.pk, payable_periods[0].pk)

        deleted = delete_all_periods(self.property, BillingPeriod.PeriodType.PAYABLE)

        self.assertEqual(deleted, 2)
        self.assertFalse(PeriodBillMatch.objects.exists())
        self.assertTrue(Bill.objects.filter(pk=bill.pk).exists())
        self.assertEqual(
            list(periods_for_property(self.property).values_list("period_type", flat=True)),
            [BillingPeriod.PeriodType.INVOICE],
        )

    def test_delete_all_periods_rejects_unknown_type(self):
        with self.assertRaises(ValidationError):
            delete_all_periods(self.property, "weekly")


class BillPeriodMatcherTests(BillingFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.payable_period = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]
        self.invoice_period = generate_periods(
            template=self.invoice_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]

    def test_check_compatibility_reports_verdict_per_period(self):
        levy_bill = self.create_bill(self.levy)

        verdicts = check_compatibility(levy_bill.pk, [self.payable_period.pk, self.invoice_period.pk, 999999])

        self.assertTrue(verdicts[self.payable_period.pk].can_match)
        self.assertFalse(verdicts[self.invoice_period.pk].can_match)
        self.assertIn("not a dependency", verdicts[self.invoice_period.pk].reason)
        self.assertFalse(verdicts[999999].can_match)
        self.assertFalse(PeriodBillMatch.objects.exists())

    def test_unclassified_bill_is_compatible_with_every_period(self):
        bill = self.create_bill(None)
        verdicts = check_compatibility(bill.pk, [self.payable_period.pk, self.invoice_period.pk])
        self.assertTrue(all(verdict.can_match for verdict in verdicts.values()))
        self.assertIn("manually", verdicts[self.payable_period.pk].reason)

    def test_classified_bill_cannot_match_period_without_dependencies(self):
        set_dependencies(self.invoice_template, [])
        bill = self.create_bill(self.municipality)
        verdict = check_compatibility(bill.pk, [self.invoice_period.pk])[self.invoice_period.pk]
        self.assertFalse(verdict.can_match)

    def test_bill_of_other_property_is_incompatible(self):
        other = self.create_property("Other block")
        bill = self.create_bill(None, property_obj=other)
        with self.assertRaises(IncompatibleMatchError):
            match_bill(bill.pk, self.payable_period.pk)

    def test_match_is_idempotent(self):
        bill = self.create_bill(self.municipality)

        first = match_bill(bill.pk, self.payable_period.pk)
        second = match_bill(bill.pk, self.payable_period.pk)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.match_type, PeriodBillMatch.MatchType.MANUAL)
        self.assertEqual(PeriodBillMatch.objects.count(), 1)

    def test_bill_may_satisfy_several_periods(self):
        bill = self.create_bill(self.municipality)
        outcome = match_bill_many(bill.pk, [self.payable_period.pk, self.invoice_period.pk])
        self.assertTrue(outcome.ok)
        self.assertEqual(PeriodBillMatch.objects.filter(bill=bill).count(), 2)
        self.assertEqual(bills_for_period(self.invoice_period.pk), [bill])

    def test_match_many_returns_failures_per_period(self):
        bill = self.create_bill(self.levy)

        outcome = match_bill_many(bill.pk, [self.payable_period.pk, self.invoice_period.pk, 999999])

        self.assertEqual(len(outcome.succeeded), 1)
        failures = {item.key: item.error for item in outcome.failed}
        self.assertIsInstance(failures[self.invoice_period.pk], IncompatibleMatchError)
        self.assertIsInstance(failures[999999], NotFoundError)
        self.assertEqual(PeriodBillMatch.objects.filter(bill=bill).count(), 1)

    def test_match_with_unknown_bill_is_not_found(self):
        with self.assertRaises(NotFoundError):
            match_bill(999999, self.payable_period.pk)

    def test_unmatch_keeps_bill_and_period(self):
        bill = self.create_bill(self.municipality)
        match_bill(bill.pk, self.payable_period.pk)

        self.assertTrue(unmatch_bill(bill.pk, self.payable_period.pk))
        self.assertFalse(unmatch_bill(bill.pk, self.payable_period.pk))
        self.assertTrue(Bill.objects.filter(pk=bill.pk).exists())
        self.assertTrue(BillingPeriod.objects.filter(pk=self.payable_period.pk).exists())

    def test_unmatch_all_removes_every_link(self):
        bill = self.create_bill(self.municipality)
        match_bill_many(bill.pk, [self.payable_period.pk, self.invoice_period.pk])
        self.assertEqual(BillPeriodMatcher.unmatch_all(bill.pk), 2)

    def test_suggest_periods_uses_extracted_month_and_compatibility(self):
        generate_periods(template=self.payable_template, start_date=date(2026, 2, 1), end_date=date(2026, 2, 28))
        levy_bill = self.create_bill(self.levy)
        rates_bill = self.create_bill(self.municipality)
        undated = Bill.objects.create(property=self.property, bill_template=self.levy)

        self.assertEqual(BillPeriodMatcher.suggest_periods(levy_bill), [self.payable_period])
        self.assertEqual(
            BillPeriodMatcher.suggest_periods(rates_bill),
            [self.invoice_period, self.payable_period],
        )
        self.assertEqual(BillPeriodMatcher.suggest_periods(undated), [])
        self.assertFalse(PeriodBillMatch.objects.exists())

    def test_auto_match_links_suggested_periods(self):
        rates_bill = self.create_bill(self.municipality)

        outcome = BillPeriodMatcher().auto_match(rates_bill)

        self.assertEqual(len(outcome.succeeded), 2)
        self.assertEqual(
            set(PeriodBillMatch.objects.values_list("match_type", flat=True)),
            {PeriodBillMatch.MatchType.AUTOMATIC},
        )
        self.assertEqual(BillPeriodMatcher().auto_match(self.create_bill(None)).items, [])

    def test_match_status_listing(self):
        matched = self.create_bill(self.municipality)
        unmatched = self.create_bill(self.levy)
        match_bill(matched.pk, self.payable_period.pk)

        summaries = {summary.bill.pk: summary for summary in bills_with_match_status(self.property)}
        self.assertEqual(summaries[matched.pk].matched_period_ids, [self.payable_period.pk])
        self.assertFalse(summaries[unmatched.pk].is_matched)
        self.assertEqual(list(unmatched_bills(self.property)), [unmatched])


class DependencyStatusTests(BillingFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.payable_period = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]
        self.invoice_period = generate_periods(
            template=self.invoice_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]

    def test_waits_until_every_dependency_has_arrived(self):
        result = dependency_status.status(self.payable_period.pk)
        self.assertEqual(result.state, DependencyState.WAITING)
        self.assertFalse(result.all_met)
        self.assertEqual(
            {template.id for template in result.missing_bill_templates},
            {self.municipality.pk, self.levy.pk},
        )

        rates_bill = self.create_bill(self.municipality)
        match_bill(rates_bill.pk, self.payable_period.pk)
        result = dependency_status.status(self.payable_period.pk)
        self.assertFalse(result.all_met)
        self.assertEqual([template.id for template in result.missing_bill_templates], [self.levy.pk])
        self.assertEqual(result.arrived_bills, [rates_bill])

        levy_bill = self.create_bill(self.levy)
        match_bill(levy_bill.pk, self.payable_period.pk)
        result = dependency_status.status(self.payable_period.pk)
        self.assertTrue(result.all_met)
        self.assertEqual(result.state, DependencyState.READY)
        self.assertEqual(result.missing_bill_templates, [])

    def test_error_bills_and_unclassified_bills_do_not_count(self):
        failed = self.create_bill(self.municipality, status=Bill.Status.ERROR)
        unclassified = self.create_bill(None)
        match_bill(failed.pk, self.invoice_period.pk)
        match_bill(unclassified.pk, self.invoice_period.pk)

        result = dependency_status.status(self.invoice_period.pk)

        self.assertFalse(result.all_met)
        self.assertEqual(result.arrived_bills, [])

    def test_empty_dependency_set_is_reported_as_distinct_state(self):
        set_dependencies(self.invoice_template, [])
        result = dependency_status.status(self.invoice_period.pk)
        self.assertEqual(result.state, DependencyState.NO_DEPENDENCIES)
        self.assertFalse(result.all_met)
        self.assertEqual(result.required_bill_templates, [])

    def test_deactivated_bill_template_stays_required(self):
        self.levy.is_active = False
        self.levy.save()

        result = dependency_status.status(self.payable_period.pk)

        self.assertEqual([template.id for template in result.inactive_required_templates], [self.levy.pk])
        self.assertIn(self.levy.pk, {template.id for template in result.missing_bill_templates})

    def test_status_for_many_fetches_in_fixed_number_of_queries(self):
        generate_periods(template=self.payable_template, start_date=date(2026, 2, 1), end_date=date(2026, 3, 31))
        period_ids = list(BillingPeriod.objects.values_list("pk", flat=True))
        bill = self.create_bill(self.municipality)
        match_bill_many(bill.pk, period_ids)

        with self.assertNumQueries(5):
            outcome = dependency_status.status_for_many(period_ids + [999999])

        self.assertEqual([item.key for item in outcome.items], period_ids + [999999])
        statuses = outcome.by_key()
        self.assertTrue(statuses[self.invoice_period.pk].value.all_met)
        self.assertFalse(statuses[self.payable_period.pk].value.all_met)
        self.assertEqual([item.key for item in outcome.failed], [999999])
        self.assertIsInstance(statuses[999999].error, NotFoundError)

    def test_status_for_many_reports_every_unknown_period(self):
        outcome = dependency_status.status_for_many([999998, 999999])

        self.assertFalse(outcome.ok)
        self.assertEqual([item.key for item in outcome.failed], [999998, 999999])
        self.assertTrue(all(isinstance(item.error, NotFoundError) for item in outcome.failed))

    def test_unknown_period_is_not_found(self):
        with self.assertRaises(NotFoundError):
            dependency_status.status(999999)



class BillingAdminFormTests(BillingFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.period = generate_periods(
            template=self.payable_template,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )[0]

    def match_form(self, bill):
        return PeriodBillMatchAdmin.PeriodBillMatchAdminForm(
            data={"period": self.period.pk, "bill": bill.pk, "match_type": PeriodBillMatch.MatchType.MANUAL}
        )

    def dependency_formset(self, template, rows):
        formset_class = inlineformset_factory(
            PayableTemplate,
            PayableTemplateDependency,
            formset=BillTemplateDependencyFormSet,
            fields=("bill_template",),
            extra=0,
        )
        edges = list(template.dependency_edges.order_by("pk"))
        data = {
            "dependency_edges-TOTAL_FORMS": str(len(rows)),
            "dependency_edges-INITIAL_FORMS": str(len(edges)),
        }
        for index, (bill_template, delete) in enumerate(rows):
            if index < len(edges):
                data[f"dependency_edges-{index}-id"] = str(edges[index].pk)
            data[f"dependency_edges-{index}-bill_template"] = str(bill_template.pk)
            if delete:
                data[f"dependency_edges-{index}-DELETE"] = "on"
        return formset_class(data=data, instance=template)

    def test_match_form_rejects_bill_outside_dependencies(self):
        form = self.match_form(self.create_bill(self.electricity))
        self.assertFalse(form.is_valid())
        self.assertIn("not a dependency", str(form.non_field_errors()))

    def test_match_form_rejects_bill_of_other_property(self):
        other = self.create_property("Other block")
        form = self.match_form(self.create_bill(self.levy, property_obj=other))
        self.assertFalse(form.is_valid())
        self.assertIn("different properties", str(form.non_field_errors()))

    def test_match_form_accepts_dependency_bill(self):
        form = self.match_form(self.create_bill(self.levy))
        self.assertTrue(form.is_valid(), form.errors)

    def test_payable_dependency_inline_cannot_remove_every_edge(self):
        edges = list(self.payable_template.dependency_edges.order_by("pk"))
        formset = self.dependency_formset(
            self.payable_template,
            [(edge.bill_template, True) for edge in edges],
        )
        self.assertFalse(formset.is_valid())
        self.assertIn("at least one bill template", str(formset.non_form_errors()))

        first, second = edges
        formset = self.dependency_formset(
            self.payable_template,
            [(first.bill_template, False), (second.bill_template, True)],
        )
        self.assertTrue(formset.is_valid(), formset.non_form_errors())

    def test_dependency_inline_rejects_bill_template_of_other_property(self):
        foreign = BillTemplate.objects.create(property=self.create_property("Other block"), name="Foreign rates")
        bare = PayableTemplate.objects.create(property=self.property, name="Bare payable")
        formset = self.dependency_formset(bare, [(foreign, False)])
        self.assertFalse(formset.is_valid())
        self.assertIn("must belong to the template", str(formset.non_form_errors()))

class EnsurePayablePeriodsCommandTests(BillingFixturesMixin, TestCase):
    def test_command_fills_rolling_window(self):
        output = StringIO()
        call_command("ensure_payable_periods", months=2, today="2026-03-15", stdout=output)

        months = sorted(BillingPeriod.objects.values_list("period_year", "period_month"))
        self.assertEqual(months, [(2026, 3), (2026, 4)])
        self.assertIn("2 payable period(s) created", output.getvalue())

    def test_command_is_idempotent(self):
        call_command("ensure_payable_periods", months=2, today="2026-03-15", stdout=StringIO())
        call_command("ensure_payable_periods", months=2, today="2026-03-15", stdout=StringIO())
        self.assertEqual(BillingPeriod.objects.count(), 2)

    @override_settings(BILLING_ROLLING_WINDOW_MONTHS=4)
    def test_command_uses_configured_window(self):
        call_command("ensure_payable_periods", today="2026-11-01", stdout=StringIO())
        self.assertEqual(
            sorted(BillingPeriod.objects.values_list("period_year", "period_month")),
            [(2026, 11), (2026, 12), (2027, 1), (2027, 2)],
        )

    def test_command_reports_failing_template_and_continues(self):
        bare = PayableTemplate.objects.create(property=self.property, name="Bare payable")
        output = StringIO()
        errors = StringIO()

        call_command("ensure_payable_periods", months=1, today="2026-03-15", stdout=output, stderr=errors)

        self.assertIn(f"payable template {bare.pk}", errors.getvalue())
        self.assertEqual(BillingPeriod.objects.filter(payable_template=self.payable_template).count(), 1)

    def test_invalid_date_raises_command_error(self):
        with self.assertRaises(CommandError):
            call_command("ensure_payable_periods", today="15.03.2026", stdout=StringIO())

    def test_unknown_property_raises_command_error(self):
        with self.assertRaises(CommandError):
            call_command("ensure_payable_periods", property=999999, stdout=StringIO())
