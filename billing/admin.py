from django import forms
from django.contrib import admin, messages
from django.core.exceptions import ValidationError
from simple_history.admin import SimpleHistoryAdmin

from .models import (
    Bill,
    BillingPeriod,
    BillTemplate,
    FixedCost,
    InvoiceTemplate,
    InvoiceTemplateDependency,
    PayableTemplate,
    PayableTemplateDependency,
    PeriodBillMatch,
    Property,
    Tenant,
    VariableCost,
    VariableCostAllocation,
)
from .services.dependencies import DependencySet, validate_dependency_set
from .services.matching import evaluate_compatibility, period_dependency_set
from .services.variable_costs import VariableCostAllocator


class FixedCostInline(admin.TabularInline):
    model = FixedCost
    extra = 0


class BillTemplateDependencyFormSet(forms.BaseInlineFormSet):
    """Applies the rules of ``set_dependencies`` to the dependency edges edited inline."""

    def clean(self):
        super().clean()
        if any(self.errors):
            return
        kept = [
            form.cleaned_data["bill_template"]
            for form in self.forms
            if form.cleaned_data.get("bill_template") and not form.cleaned_data.get("DELETE")
        ]
        foreign = [bill_template for bill_template in kept if bill_template.property_id != self.instance.property_id]
        if foreign:
            raise ValidationError(
                "Bill templates must belong to the template's property: "
                + ", ".join(str(bill_template) for bill_template in foreign)
            )
        try:
            validate_dependency_set(self.instance, DependencySet.of(kept))
        except ValidationError as exc:
            raise ValidationError(exc.messages) from exc


class InvoiceTemplateDependencyInline(admin.TabularInline):
    model = InvoiceTemplateDependency
    formset = BillTemplateDependencyFormSet
    extra = 0
    autocomplete_fields = ("bill_template",)


class PayableTemplateDependencyInline(admin.TabularInline):
    model = PayableTemplateDependency
    formset = BillTemplateDependencyFormSet
    extra = 0
    autocomplete_fields = ("bill_template",)


class PeriodBillMatchInline(admin.TabularInline):
    model = PeriodBillMatch
    extra = 0
    readonly_fields = ("bill", "match_type", "matched_by", "created_at")

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class VariableCostAllocationInline(admin.TabularInline):
    model = VariableCostAllocation
    extra = 0
    can_delete = False
    readonly_fields = (
        "tenant",
        "amount",
        "rental_amount",
        "total_rental_amount",
        "allocation_ratio",
        "strategy",
        "rent_source",
        "created_at",
    )

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = ("name", "city", "zip_code", "street_address")
    search_fields = ("name", "city", "zip_code", "street_address")


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "property", "email", "rental_amount", "is_active")
    list_filter = ("is_active", "property")
    search_fields = ("name", "email", "property__name")
    inlines = (FixedCostInline,)


@admin.register(FixedCost)
class FixedCostAdmin(admin.ModelAdmin):
    list_display = ("tenant", "cost_type", "amount", "start_date", "end_date", "is_active")
    list_filter = ("cost_type", "is_active")
    search_fields = ("tenant__name", "description")


@admin.register(BillTemplate)
class BillTemplateAdmin(admin.ModelAdmin):
    list_display = ("name", "property", "bill_type", "is_active")
    list_filter = ("bill_type", "is_active", "property")
    search_fields = ("name", "property__name")


@admin.register(InvoiceTemplate)
class InvoiceTemplateAdmin(admin.ModelAdmin):
    list_display = ("name", "property", "tenant", "generation_day_of_month", "is_active")
    list_filter = ("is_active", "property")
    search_fields = ("name", "tenant__name", "property__name")
    inlines = (InvoiceTemplateDependencyInline,)


@admin.register(PayableTemplate)
class PayableTemplateAdmin(admin.ModelAdmin):
    list_display = ("name", "property", "scheduled_payment_day", "is_active")
    list_filter = ("is_active", "property")
    search_fields = ("name", "property__name")
    inlines = (PayableTemplateDependencyInline,)


@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = ("__str__", "property", "bill_template", "billing_year", "billing_month", "status", "created_at")
    list_filter = ("status", "bill_type", "property")
    search_fields = ("file_name", "bill_template__name", "property__name")


@admin.register(BillingPeriod)
class BillingPeriodAdmin(SimpleHistoryAdmin):
    list_display = (
        "property",
        "period_type",
        "template",
        "period_year",
        "period_month",
        "period_start_date",
        "period_end_date",
        "generation_source",
        "is_active",
    )
    list_filter = ("period_type", "generation_source", "is_active", "property")
    search_fields = ("invoice_template__name", "payable_template__name", "property__name")
    inlines = (PeriodBillMatchInline,)
    history_list_display = ("period_start_date", "period_end_date", "is_active", "history_user", "history_date")


@admin.register(PeriodBillMatch)
class PeriodBillMatchAdmin(admin.ModelAdmin):
    class PeriodBillMatchAdminForm(forms.ModelForm):
        class Meta:
            model = PeriodBillMatch
            fields = ("period", "bill", "match_type")

        def clean(self):
            cleaned_data = super().clean()
            period = cleaned_data.get("period")
            bill = cleaned_data.get("bill")
            if period is None or bill is None:
                return cleaned_data
            compatibility = evaluate_compatibility(bill, period, period_dependency_set(period))
            if not compatibility.can_match:
                raise ValidationError(compatibility.reason)
            return cleaned_data

    form = PeriodBillMatchAdminForm
    list_display = ("period", "bill", "match_type", "matched_by", "created_at")
    list_filter = ("match_type",)
    raw_id_fields = ("period", "bill")
    readonly_fields = ("matched_by", "created_at")

    def save_model(self, request, obj, form, change):
        if not change:
            obj.matched_by = request.user
        super().save_model(request, obj, form, change)


@admin.register(VariableCost)
class VariableCostAdmin(SimpleHistoryAdmin):
    list_display = ("description", "property", "amount", "period_start", "period_end", "created_at")
    list_filter = ("property",)
    search_fields = ("description", "property__name")
    inlines = (VariableCostAllocationInline,)
    history_list_display = ("amount", "period_start", "period_end", "history_user", "history_date")
    actions = ("reallocate_selected",)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        if not change or "amount" in form.changed_data:
            VariableCostAllocator().allocate(form.instance)

    @admin.action(description="Re-allocate selected variable costs")
    def reallocate_selected(self, request, queryset):
        allocator = VariableCostAllocator()
        count = 0
        for cost in queryset:
            allocator.allocate(cost)
            count += 1
        if count:
            self.message_user(request, f"{count} variable cost(s) re-allocated.", level=messages.SUCCESS)
        else:
            self.message_user(request, "No variable costs re-allocated.", level=messages.WARNING)
