from datetime import date
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase, override_settings
from django.urls import reverse

from billing.exceptions import NotFoundError
from billing.models import FixedCost, Property, Tenant, VariableCost, VariableCostAllocation
from billing.services.variable_costs import (
    EqualSplitStrategy,
    ProportionalByRentStrategy,
    VariableCostAllocator,
    create_variable_cost,
    delete_variable_cost,
    distribute_with_rounding_correction,
    list_allocations_for_tenant,
    resolve_tenant_rent,
    resolve_tenant_rents,
    select_strategy,
    update_variable_cost,
    variable_costs_for_property,
)


class VariableCostTestMixin:
    def setUp(self):
        self.property = Property.objects.create(
            name="Oak Court",
            street_address="4 Oak Lane",
            city="Durban",
            zip_code="4001",
        )

    def create_tenant(self, name, rental_amount=None, *, is_active=True, property_obj=None):
        return Tenant.objects.create(
            property=property_obj or self.property,
            name=name,
            rental_amount=rental_amount,
            is_active=is_active,
        )

    def create_cost(self, amount, *, period_start=date(2026, 1, 1), period_end=date(2026, 1, 31)):
        return create_variable_cost(
            property_obj=self.property,
            amount=Decimal(amount),
            period_start=period_start,
            period_end=period_end,
            description="Water",
        )

    def allocations_by_tenant(self, cost):
        return {allocation.tenant.name: allocation for allocation in cost.allocations.select_related("tenant")}


class RentResolutionTests(VariableCostTestMixin, TestCase):
    def test_active_rent_fixed_cost_takes_priority(self):
        tenant = self.create_tenant("Bea", Decimal("3000.00"))
        FixedCost.objects.create(
            tenant=tenant,
            cost_type=FixedCost.CostType.RENT,
            amount=Decimal("4500.00"),
            start_date=date(2025, 1, 1),
        )
        FixedCost.objects.create(
            tenant=tenant,
            cost_type=FixedCost.CostType.PARKING,
            amount=Decimal("9999.00"),
        )

        figure = resolve_tenant_rent(tenant)

        self.assertEqual(figure.amount, Decimal("4500.00"))
        self.assertEqual(figure.source, VariableCostAllocation.RentSource.FIXED_COST)

    def test_latest_active_rent_cost_wins(self):
        tenant = self.create_tenant("Bea")
        FixedCost.objects.create(tenant=tenant, amount=Decimal("1000.00"), start_date=date(2024, 1, 1))
        FixedCost.objects.create(tenant=tenant, amount=Decimal("1200.00"), start_date=date(2025, 1, 1))
        FixedCost.objects.create(
            tenant=tenant,
            amount=Decimal("5000.00"),
            start_date=date(2026, 1, 1),
            is_active=False,
        )
        self.assertEqual(resolve_tenant_rent(tenant).amount, Decimal("1200.00"))

    def test_falls_back_to_rental_amount_then_zero(self):
        with_amount = self.create_tenant("Cal", Decimal("1500.00"))
        without = self.create_tenant("Dee")

        figures = resolve_tenant_rents([with_amount, without])

        self.assertEqual(figures[0].amount, Decimal("1500.00"))
        self.assertEqual(figures[0].source, VariableCostAllocation.RentSource.RENTAL_AMOUNT)
        self.assertEqual(figures[1].amount, Decimal("0.00"))
        self.assertEqual(figures[1].source, VariableCostAllocation.RentSource.NONE)

    def test_negative_rent_is_clamped_to_zero(self):
        tenant = self.create_tenant("Eve", Decimal("-200.00"))
        self.assertEqual(resolve_tenant_rent(tenant).amount, Decimal("0.00"))

    def test_strategy_selection(self):
        zero = self.create_tenant("Zed")
        paying = self.create_tenant("Pat", Decimal("100.00"))
        self.assertIsInstance(select_strategy(resolve_tenant_rents([zero])), EqualSplitStrategy)
        self.assertIsInstance(select_strategy(resolve_tenant_rents([zero, paying])), ProportionalByRentStrategy)


class RoundingCorrectionTests(TestCase):
    def test_cents_add_up_to_total(self):
        shares = distribute_with_rounding_correction(Decimal("100.00"), [Decimal("1")] * 3)
        self.assertEqual(sum(shares), Decimal("100.00"))
        self.assertEqual(sorted(shares), [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])

    def test_negative_difference_is_taken_back(self):
        shares = distribute_with_rounding_correction(Decimal("0.05"), [Decimal("1")] * 6)
        self.assertEqual(sum(shares), Decimal("0.05"))
        self.assertTrue(all(share >= Decimal("0.00") for share in shares))

    def test_zero_weights_distribute_nothing(self):
        self.assertEqual(
            distribute_with_rounding_correction(Decimal("10.00"), [Decimal("0"), Decimal("0")]),
            [Decimal("0.00"), Decimal("0.00")],
        )


class VariableCostAllocatorTests(VariableCostTestMixin, TestCase):
    def test_equal_split_when_no_tenant_has_rent(self):
        for name in ("Ann", "Ben", "Cid"):
            self.create_tenant(name)

        cost = self.create_cost("300.00")

        allocations = list(cost.allocations.all())
        self.assertEqual(len(allocations), 3)
        for allocation in allocations:
            self.assertEqual(allocation.amount, Decimal("100.00"))
            self.assertEqual(allocation.rental_amount, Decimal("0.00"))
            self.assertEqual(allocation.total_rental_amount, Decimal("0.00"))
            self.assertEqual(allocation.allocation_ratio, Decimal("0.3333333333"))
            self.assertEqual(allocation.strategy, VariableCostAllocation.Strategy.EQUAL_SPLIT)

    def test_proportional_split_by_rent(self):
        self.create_tenant("Ann", Decimal("1000.00"))
        self.create_tenant("Ben", Decimal("2000.00"))
        self.create_tenant("Cid", Decimal("3000.00"))

        cost = self.create_cost("600.00")

        allocations = self.allocations_by_tenant(cost)
        self.assertEqual(allocations["Ann"].amount, Decimal("100.00"))
        self.assertEqual(allocations["Ben"].amount, Decimal("200.00"))
        self.assertEqual(allocations["Cid"].amount, Decimal("300.00"))
        self.assertEqual(allocations["Ann"].allocation_ratio, Decimal("0.1666666667"))
        self.assertEqual(allocations["Cid"].allocation_ratio, Decimal("0.5000000000"))
        self.assertEqual(allocations["Ben"].total_rental_amount, Decimal("6000.00"))
        self.assertEqual(allocations["Ben"].strategy, VariableCostAllocation.Strategy.PROPORTIONAL_BY_RENT)

    def test_fixed_cost_rent_overrides_rental_amount(self):
        self.create_tenant("T1", Decimal("1500.00"))
        second = self.create_tenant("T2", Decimal("2000.00"))
        FixedCost.objects.create(tenant=second, cost_type=FixedCost.CostType.RENT, amount=Decimal("4500.00"))

        cost = self.create_cost("1000.00")

        allocations = self.allocations_by_tenant(cost)
        self.assertEqual(allocations["T1"].allocation_ratio, Decimal("0.25"))
        self.assertEqual(allocations["T1"].amount, Decimal("250.00"))
        self.assertEqual(allocations["T2"].allocation_ratio, Decimal("0.75"))
        self.assertEqual(allocations["T2"].amount, Decimal("750.00"))
        self.assertEqual(allocations["T2"].rental_amount, Decimal("4500.00"))
        self.assertEqual(allocations["T2"].rent_source, VariableCostAllocation.RentSource.FIXED_COST)
        self.assertEqual(allocations["T1"].rent_source, VariableCostAllocation.RentSource.RENTAL_AMOUNT)

    def test_tenant_without_rent_gets_nothing_in_proportional_split(self):
        self.create_tenant("Ann", Decimal("1000.00"))
        self.create_tenant("Ben")

        cost = self.create_cost("80.00")

        allocations = self.allocations_by_tenant(cost)
        self.assertEqual(allocations["Ann"].amount, Decimal("80.00"))
        self.assertEqual(allocations["Ben"].amount, Decimal("0.00"))
        self.assertEqual(allocations["Ben"].allocation_ratio, Decimal("0"))

    def test_amounts_and_ratios_are_conserved(self):
        self.create_tenant("Ann", Decimal("1234.56"))
        self.create_tenant("Ben", Decimal("789.01"))
        self.create_tenant("Cid", Decimal("2345.67"))

        cost = self.create_cost("1000.01")

        allocations = list(cost.allocations.all())
        self.assertEqual(sum(allocation.amount for allocation in allocations), Decimal("1000.01"))
        ratio_sum = sum(allocation.allocation_ratio for allocation in allocations)
        self.assertLessEqual(abs(ratio_sum - Decimal("1")), Decimal("0.000001"))

    def test_inactive_tenants_and_other_properties_are_ignored(self):
        self.create_tenant("Ann", Decimal("1000.00"))
        self.create_tenant("Gone", Decimal("1000.00"), is_active=False)
        other = Property.objects.create(name="Elm Court")
        self.create_tenant("Elsewhere", Decimal("1000.00"), property_obj=other)

        cost = self.create_cost("50.00")

        self.assertEqual(list(self.allocations_by_tenant(cost)), ["Ann"])

    def test_no_active_tenants_is_a_no_op(self):
        cost = self.create_cost("300.00")
        self.assertTrue(VariableCost.objects.filter(pk=cost.pk).exists())
        self.assertFalse(cost.allocations.exists())

    def test_invalid_cost_is_rejected_before_writing(self):
        self.create_tenant("Ann")
        with self.assertRaises(ValidationError):
            self.create_cost("100.00", period_start=date(2026, 2, 1), period_end=date(2026, 1, 1))
        with self.assertRaises(ValidationError):
            self.create_cost("-1.00")
        self.assertFalse(VariableCost.objects.exists())
        self.assertFalse(VariableCostAllocation.objects.exists())

    def test_malformed_amount_is_a_validation_error(self):
        self.create_tenant("Ann")
        for amount in ("abc", "Infinity", [1, 2]):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError) as raised:
                    create_variable_cost(
                        property_obj=self.property,
                        amount=amount,
                        period_start=date(2026, 1, 1),
                        period_end=date(2026, 1, 31),
                    )
                self.assertIn("amount", raised.exception.message_dict)
        self.assertFalse(VariableCost.objects.exists())

        cost = self.create_cost("100.00")
        with self.assertRaises(ValidationError) as raised:
            update_variable_cost(cost.pk, amount="12,50")
        self.assertIn("amount", raised.exception.message_dict)
        cost.refresh_from_db()
        self.assertEqual(cost.amount, Decimal("100.00"))

    def test_failed_allocation_keeps_previous_rows(self):
        self.create_tenant("Ann")
        self.create_tenant("Ben")
        cost = self.create_cost("100.00")
        old_ids = set(cost.allocations.values_list("pk", flat=True))

        with patch.object(
            VariableCostAllocation.objects, "bulk_create", side_effect=IntegrityError("insert failed")
        ):
            with self.assertRaises(IntegrityError):
                VariableCostAllocator().allocate(cost)

        self.assertEqual(set(cost.allocations.values_list("pk", flat=True)), old_ids)

    def test_amount_change_replaces_allocations(self):
        ann = self.create_tenant("Ann", Decimal("1000.00"))
        self.create_tenant("Ben", Decimal("3000.00"))
        cost = self.create_cost("400.00")
        old_ids = set(cost.allocations.values_list("pk", flat=True))
        ann.rental_amount = Decimal("3000.00")
        ann.save()

        update_variable_cost(cost.pk, amount=Decimal("900.00"))

        allocations = self.allocations_by_tenant(cost)
        self.assertEqual(len(allocations), 2)
        self.assertTrue(old_ids.isdisjoint({allocation.pk for allocation in allocations.values()}))
        self.assertEqual(allocations["Ann"].amount, Decimal("450.00"))
        self.assertEqual(allocations["Ben"].amount, Decimal("450.00"))
        self.assertEqual(cost.history.count(), 2)

    def test_update_without_amount_change_keeps_allocations(self):
        self.create_tenant("Ann", Decimal("1000.00"))
        cost = self.create_cost("400.00")
        old_ids = set(cost.allocations.values_list("pk", flat=True))

        update_variable_cost(cost.pk, description="Water and sewage")

        self.assertEqual(set(cost.allocations.values_list("pk", flat=True)), old_ids)

    def test_update_unknown_cost_is_not_found(self):
        with self.assertRaises(NotFoundError):
            update_variable_cost(999999, amount=Decimal("1.00"))

    def test_delete_removes_allocations(self):
        self.create_tenant("Ann")
        cost = self.create_cost("10.00")
        delete_variable_cost(cost.pk)
        self.assertFalse(VariableCostAllocation.objects.exists())
        with self.assertRaises(NotFoundError):
            delete_variable_cost(cost.pk)


class VariableCostListingTests(VariableCostTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.create_tenant("Ann", Decimal("1000.00"))
        self.january = self.create_cost("100.00", period_start=date(2026, 1, 1), period_end=date(2026, 1, 31))
        self.quarter = self.create_cost("300.00", period_start=date(2026, 1, 1), period_end=date(2026, 3, 31))
        self.april = self.create_cost("50.00", period_start=date(2026, 4, 1), period_end=date(2026, 4, 30))

    def test_allocations_for_tenant_filter_by_overlapping_window(self):
        allocations = list(list_allocations_for_tenant(self.tenant.pk, date(2026, 2, 1), date(2026, 2, 28)))
        self.assertEqual([allocation.variable_cost for allocation in allocations], [self.quarter])

        everything = list_allocations_for_tenant(self.tenant.pk)
        self.assertEqual(everything.count(), 3)

    def test_costs_for_property_filter_by_window(self):
        costs = list(variable_costs_for_property(self.property, period_start=date(2026, 3, 15)))
        self.assertEqual(costs, [self.quarter, self.april])


class TenantChangeReallocationTests(VariableCostTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.ann = self.create_tenant("Ann", Decimal("1000.00"))
        self.ben = self.create_tenant("Ben", Decimal("1000.00"))
        self.open_cost = self.create_cost("100.00", period_start=date(2020, 1, 1), period_end=date(2099, 12, 31))
        self.closed_cost = self.create_cost("100.00", period_start=date(2020, 1, 1), period_end=date(2020, 1, 31))

    def test_new_rent_fixed_cost_reallocates_open_costs(self):
        with self.captureOnCommitCallbacks(execute=True):
            FixedCost.objects.create(tenant=self.ben, cost_type=FixedCost.CostType.RENT, amount=Decimal("3000.00"))

        open_allocations = self.allocations_by_tenant(self.open_cost)
        self.assertEqual(open_allocations["Ann"].amount, Decimal("25.00"))
        self.assertEqual(open_allocations["Ben"].amount, Decimal("75.00"))
        closed_allocations = self.allocations_by_tenant(self.closed_cost)
        self.assertEqual(closed_allocations["Ben"].amount, Decimal("50.00"))

    def test_rent_fixed_cost_changed_to_other_type_reallocates_open_costs(self):
        with self.captureOnCommitCallbacks(execute=True):
            ann_rent = FixedCost.objects.create(
                tenant=self.ann, cost_type=FixedCost.CostType.RENT, amount=Decimal("3000.00")
            )
        self.assertEqual(self.allocations_by_tenant(self.open_cost)["Ann"].amount, Decimal("75.00"))

        ann_rent.cost_type = FixedCost.CostType.SERVICE
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            ann_rent.save()

        self.assertEqual(len(callbacks), 1)
        self.assertFalse(hasattr(ann_rent, "_rent_state_before_save"))
        open_allocations = self.allocations_by_tenant(self.open_cost)
        self.assertEqual(open_allocations["Ann"].amount, Decimal("50.00"))
        self.assertEqual(open_allocations["Ben"].amount, Decimal("50.00"))

    def test_non_rent_fixed_cost_change_does_not_reallocate(self):
        service = FixedCost.objects.create(
            tenant=self.ann, cost_type=FixedCost.CostType.SERVICE, amount=Decimal("80.00")
        )
        service.amount = Decimal("90.00")
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            service.save()

        self.assertEqual(callbacks, [])

    def test_deactivated_tenant_drops_out_of_open_costs(self):
        self.ben.is_active = False
        with self.captureOnCommitCallbacks(execute=True):
            self.ben.save()

        self.assertEqual(list(self.allocations_by_tenant(self.open_cost)), ["Ann"])
        self.assertEqual(self.open_cost.allocations.get().amount, Decimal("100.00"))

    @override_settings(BILLING_REALLOCATE_ON_TENANT_CHANGE=False)
    def test_reallocation_can_be_switched_off(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.create_tenant("Cid", Decimal("1000.00"))

        self.assertEqual(callbacks, [])
        self.assertEqual(self.open_cost.allocations.count(), 2)


class ReallocateVariableCostsCommandTests(VariableCostTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.ann = self.create_tenant("Ann", Decimal("1000.00"))
        self.cost = self.create_cost("100.00")
        # Added after allocation; only a rebuild picks it up.
        Tenant.objects.create(property=self.property, name="Ben", rental_amount=Decimal("1000.00"))

    def test_dry_run_writes_nothing(self):
        output = StringIO()
        call_command("reallocate_variable_costs", "--dry-run", stdout=output)

        self.assertIn("Ben: 50.00", output.getvalue())
        self.assertIn("Proportional by rent", output.getvalue())
        self.assertEqual(self.cost.allocations.count(), 1)

    def test_command_rebuilds_allocations(self):
        output = StringIO()
        call_command("reallocate_variable_costs", cost=self.cost.pk, stdout=output)

        self.assertEqual(self.cost.allocations.count(), 2)
        self.assertIn("1 variable cost(s) re-allocated", output.getvalue())


class VariableCostAdminTests(VariableCostTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.user = get_user_model().objects.create_superuser("admin", "admin@example.com", "secret")
        self.client.force_login(self.user)
        self.create_tenant("Ann")
        self.cost = self.create_cost("90.00")
        Tenant.objects.create(property=self.property, name="Ben")

    def test_reallocate_action(self):
        response = self.client.post(
            reverse("admin:billing_variablecost_changelist"),
            {"action": "reallocate_selected", "_selected_action": [self.cost.pk]},
        )

        self.assertEqual(response.status_code, 302)
        self.assertEqual(
            sorted(self.cost.allocations.values_list("amount", flat=True)),
            [Decimal("45.00"), Decimal("45.00")],
        )
