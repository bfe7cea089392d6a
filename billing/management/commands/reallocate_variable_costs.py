from django.core.management.base import BaseCommand, CommandError

from billing.models import VariableCost
from billing.services.variable_costs import ALLOCATION_STRATEGIES, VariableCostAllocator, quantize_cent


class Command(BaseCommand):
    help = "Rebuilds tenant allocations of variable costs from current tenant and rent data."

    def add_arguments(self, parser):
        parser.add_argument(
            "--property",
            type=int,
            help="Optional property ID for the selection.",
        )
        parser.add_argument(
            "--cost",
            type=int,
            help="Optional variable cost ID for the selection.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only print the computed allocations without writing them.",
        )

    def handle(self, *args, **options):
        dry_run = bool(options.get("dry_run"))
        queryset = VariableCost.objects.select_related("property").order_by("id")
        if options.get("property"):
            queryset = queryset.filter(property_id=options["property"])
        if options.get("cost"):
            queryset = queryset.filter(pk=options["cost"])
            if not queryset.exists():
                raise CommandError(f"Variable cost {options['cost']} does not exist.")

        allocator = VariableCostAllocator()
        count = 0
        for cost in queryset:
            count += 1
            if dry_run:
                allocations = allocator.build_allocations(cost, allocator.active_tenants(cost.property_id))
                self.stdout.write(f"{cost}:")
                for allocation in allocations:
                    self.stdout.write(
                        f"  {allocation.tenant}: {quantize_cent(allocation.amount)} "
                        f"(ratio {allocation.allocation_ratio}, "
                        f"{ALLOCATION_STRATEGIES[allocation.strategy].label})"
                    )
                continue
            allocator.allocate(cost)

        if dry_run:
            self.stdout.write(self.style.WARNING(f"Dry run: {count} variable cost(s) checked, nothing written."))
            return
        self.stdout.write(self.style.SUCCESS(f"{count} variable cost(s) re-allocated."))
