from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Protocol

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Prefetch
from django.utils import timezone

from billing.exceptions import NotFoundError
from billing.models import Bill, FixedCost, Property, Tenant, VariableCost, VariableCostAllocation

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
RAW_SHARE_PRECISION = Decimal("0.0000001")
RATIO_PRECISION = Decimal("0.0000000001")


def quantize_cent(value: Decimal | str | int | None) -> Decimal:
    return Decimal(value or ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_ratio(value: Decimal) -> Decimal:
    return value.quantize(RATIO_PRECISION, rounding=ROUND_HALF_UP)


def parse_amount(value: Decimal | str | int) -> Decimal:
    try:
        return quantize_cent(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError({"amount": f"{value!r} is not a valid amount."}) from exc


@dataclass(frozen=True, slots=True)
class RentFigure:
    tenant: Tenant
    amount: Decimal
    source: str


def _rent_figure(tenant: Tenant, rent_cost: FixedCost | None) -> RentFigure:
    if rent_cost is not None:
        amount, source = rent_cost.amount, VariableCostAllocation.RentSource.FIXED_COST
    elif tenant.rental_amount is not None:
        amount, source = tenant.rental_amount, VariableCostAllocation.RentSource.RENTAL_AMOUNT
    else:
        amount, source = ZERO, VariableCostAllocation.RentSource.NONE
    # Negative rent figures would invert shares; they count as no rent.
    return RentFigure(tenant=tenant, amount=max(quantize_cent(amount), ZERO), source=source)


def resolve_tenant_rents(tenants: Iterable[Tenant]) -> list[RentFigure]:
    """Rent figure per tenant in input order.

    Precedence: the tenant's active ``rent`` fixed cost (latest start date wins),
    then ``Tenant.rental_amount``, then zero.
    """
    tenants = list(tenants)
    rent_costs: dict[int, FixedCost] = {}
    queryset = FixedCost.objects.filter(
        tenant__in=tenants,
        cost_type=FixedCost.CostType.RENT,
        is_active=True,
    ).order_by("tenant_id", "-start_date", "-id")
    for fixed_cost in queryset:
        rent_costs.setdefault(fixed_cost.tenant_id, fixed_cost)
    return [_rent_figure(tenant, rent_costs.get(tenant.pk)) for tenant in tenants]


def resolve_tenant_rent(tenant: Tenant) -> RentFigure:
    return resolve_tenant_rents([tenant])[0]


class AllocationStrategy(Protocol):
    key: str
    label: str

    def weights(self, rents: list[RentFigure]) -> list[Decimal]:
        ...

    def ratio(self, rent: RentFigure, total_rent: Decimal, tenant_count: int) -> Decimal:
        ...


class EqualSplitStrategy:
    key = VariableCostAllocation.Strategy.EQUAL_SPLIT
    label = "Equal split"

    def weights(self, rents: list[RentFigure]) -> list[Decimal]:
        return [Decimal("1") for _ in rents]

    def ratio(self, rent: RentFigure, total_rent: Decimal, tenant_count: int) -> Decimal:
        return quantize_ratio(Decimal("1") / Decimal(tenant_count))


class ProportionalByRentStrategy:
    key = VariableCostAllocation.Strategy.PROPORTIONAL_BY_RENT
    label = "Proportional by rent"

    def weights(self, rents: list[RentFigure]) -> list[Decimal]:
        return [rent.amount for rent in rents]

    def ratio(self, rent: RentFigure, total_rent: Decimal, tenant_count: int) -> Decimal:
        return quantize_ratio(rent.amount / total_rent)


ALLOCATION_STRATEGIES: dict[str, AllocationStrategy] = {
    strategy.key: strategy for strategy in (EqualSplitStrategy(), ProportionalByRentStrategy())
}


def select_strategy(rents: list[RentFigure]) -> AllocationStrategy:
    total_rent = sum((rent.amount for rent in rents), ZERO)
    if total_rent > ZERO:
        return ALLOCATION_STRATEGIES[VariableCostAllocation.Strategy.PROPORTIONAL_BY_RENT]
    return ALLOCATION_STRATEGIES[VariableCostAllocation.Strategy.EQUAL_SPLIT]


def distribute_with_rounding_correction(total_amount: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """Split ``total_amount`` by ``weights`` into cents that add up to the total.

    Leftover cents go to the shares that lost the most to rounding.
    """
    total_weight = sum((Decimal(weight) for weight in weights), ZERO)
    if total_weight <= ZERO or not weights:
        return [ZERO for _ in weights]

    raw_shares = [
        (total_amount * Decimal(weight) / total_weight).quantize(RAW_SHARE_PRECISION, rounding=ROUND_HALF_UP)
        for weight in weights
    ]
    shares = [quantize_cent(raw) for raw in raw_shares]

    diff = quantize_cent(total_amount - sum(shares, ZERO))
    if diff != ZERO:
        step = CENT if diff > ZERO else -CENT
        cents_to_allocate = int((diff.copy_abs() / CENT).to_integral_value())
        order = sorted(
            range(len(shares)),
            key=lambda index: raw_shares[index] - shares[index],
            reverse=diff > ZERO,
        )
        for offset in range(cents_to_allocate):
            index = order[offset % len(order)]
            shares[index] = (shares[index] + step).quantize(CENT)
    return shares


class VariableCostAllocator:
    def active_tenants(self, property_id: int) -> list[Tenant]:
        return list(Tenant.objects.filter(property_id=property_id, is_active=True).order_by("name", "id"))

    def build_allocations(self, cost: VariableCost, tenants: list[Tenant]) -> list[VariableCostAllocation]:
        if not tenants:
            return []
        rents = resolve_tenant_rents(tenants)
        strategy = select_strategy(rents)
        total_rent = sum((rent.amount for rent in rents), ZERO)
        amount = quantize_cent(cost.amount)
        shares = distribute_with_rounding_correction(amount, strategy.weights(rents))

        is_equal_split = strategy.key == VariableCostAllocation.Strategy.EQUAL_SPLIT
        allocations: list[VariableCostAllocation] = []
        for rent, share in zip(rents, shares):
            allocations.append(
                VariableCostAllocation(
                    variable_cost=cost,
                    tenant=rent.tenant,
                    amount=share,
                    rental_amount=ZERO if is_equal_split else rent.amount,
                    total_rental_amount=ZERO if is_equal_split else total_rent,
                    allocation_ratio=strategy.ratio(rent, total_rent, len(rents)),
                    strategy=strategy.key,
                    rent_source=rent.source,
                )
            )
        return allocations

    def allocate(self, cost: VariableCost) -> list[VariableCostAllocation]:
        """Replace every allocation row of ``cost`` with a freshly computed set."""
        with transaction.atomic():
            deleted, _ = VariableCostAllocation.objects.filter(variable_cost=cost).delete()
            tenants = self.active_tenants(cost.property_id)
            allocations = self.build_allocations(cost, tenants)
            if allocations:
                VariableCostAllocation.objects.bulk_create(allocations)

        if not allocations:
            logger.info(
                "Variable cost %s has no active tenants on property %s; nothing allocated",
                cost.pk,
                cost.property_id,
            )
            return []
        logger.info(
            "Allocated variable cost %s (%s) across %d tenant(s) using %s, replaced %d row(s)",
            cost.pk,
            quantize_cent(cost.amount),
            len(allocations),
            ALLOCATION_STRATEGIES[allocations[0].strategy].label,
            deleted,
        )
        return list(
            VariableCostAllocation.objects.filter(variable_cost=cost)
            .select_related("tenant")
            .order_by("tenant__name", "id")
        )


def get_variable_cost(cost_id: int) -> VariableCost:
    try:
        return VariableCost.objects.get(pk=cost_id)
    except VariableCost.DoesNotExist as exc:
        raise NotFoundError("VariableCost", cost_id) from exc


def create_variable_cost(
    *,
    property_obj: Property,
    amount: Decimal | str | int,
    period_start: date,
    period_end: date,
    description: str = "",
    bill: Bill | None = None,
) -> VariableCost:
    cost = VariableCost(
        property=property_obj,
        bill=bill,
        description=description,
        amount=parse_amount(amount) if amount is not None else None,
        period_start=period_start,
        period_end=period_end,
    )
    cost.full_clean()
    with transaction.atomic():
        cost.save()
        VariableCostAllocator().allocate(cost)
    logger.info("Created variable cost %s for property %s", cost.pk, property_obj.pk)
    return cost


def update_variable_cost(
    cost_id: int,
    *,
    amount: Decimal | str | int | None = None,
    description: str | None = None,
    period_start: date | None = None,
    period_end: date | None = None,
) -> VariableCost:
    """Apply changes and re-allocate when the amount changed."""
    cost = get_variable_cost(cost_id)
    previous_amount = quantize_cent(cost.amount)
    if amount is not None:
        cost.amount = parse_amount(amount)
    if description is not None:
        cost.description = description
    if period_start is not None:
        cost.period_start = period_start
    if period_end is not None:
        cost.period_end = period_end
    cost.full_clean()

    amount_changed = quantize_cent(cost.amount) != previous_amount
    with transaction.atomic():
        cost.save()
        if amount_changed:
            VariableCostAllocator().allocate(cost)
    return cost


def reallocate(cost: VariableCost) -> list[VariableCostAllocation]:
    return VariableCostAllocator().allocate(cost)


def delete_variable_cost(cost_id: int) -> None:
    cost = get_variable_cost(cost_id)
    with transaction.atomic():
        cost.delete()
    logger.info("Deleted variable cost %s and its allocations", cost_id)


def _overlapping(queryset, *, prefix: str, period_start: date | None, period_end: date | None):
    if period_start is not None:
        queryset = queryset.filter(**{f"{prefix}period_end__gte": period_start})
    if period_end is not None:
        queryset = queryset.filter(**{f"{prefix}period_start__lte": period_end})
    return queryset


def variable_costs_for_property(
    property_obj: Property,
    period_start: date | None = None,
    period_end: date | None = None,
):
    queryset = VariableCost.objects.filter(property=property_obj).prefetch_related(
        Prefetch("allocations", queryset=VariableCostAllocation.objects.select_related("tenant"))
    )
    return _overlapping(queryset, prefix="", period_start=period_start, period_end=period_end).order_by(
        "period_start", "id"
    )


def list_allocations_for_tenant(
    tenant_id: int,
    period_start: date | None = None,
    period_end: date | None = None,
):
    queryset = VariableCostAllocation.objects.filter(tenant_id=tenant_id).select_related(
        "variable_cost", "variable_cost__bill"
    )
    return _overlapping(
        queryset,
        prefix="variable_cost__",
        period_start=period_start,
        period_end=period_end,
    ).order_by("variable_cost__period_start", "variable_cost_id")


def reallocate_open_costs_for_property(property_id: int, today: date | None = None) -> int:
    """Rebuild allocations of costs whose window has not ended yet."""
    today = today or timezone.localdate()
    allocator = VariableCostAllocator()
    count = 0
    for cost in VariableCost.objects.filter(property_id=property_id, period_end__gte=today).order_by("id"):
        allocator.allocate(cost)
        count += 1
    if count:
        logger.info("Re-allocated %d open variable cost(s) for property %s", count, property_id)
    return count
