from builtins import property as builtin_property
from calendar import monthrange
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _
from simple_history.models import HistoricalRecords

day_of_month_validators = [MinValueValidator(1), MaxValueValidator(31)]


class Property(models.Model):
    name = models.CharField(max_length=255, verbose_name=_("Name"))
    street_address = models.CharField(max_length=255, blank=True, verbose_name=_("Street address"))
    city = models.CharField(max_length=100, blank=True, verbose_name=_("City"))
    zip_code = models.CharField(max_length=20, blank=True, verbose_name=_("Postal code"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    class Meta:
        verbose_name = _("Property")
        verbose_name_plural = _("Properties")
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return self.name


class Tenant(models.Model):
    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="tenants",
        verbose_name=_("Property"),
    )
    name = models.CharField(max_length=255, verbose_name=_("Name"))
    email = models.EmailField(blank=True, verbose_name=_("Email"))
    rental_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name=_("Rental amount"),
        help_text=_("Fallback rent figure when no active rent fixed cost exists."),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    class Meta:
        verbose_name = _("Tenant")
        verbose_name_plural = _("Tenants")
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return self.name


class FixedCost(models.Model):
    class CostType(models.TextChoices):
        RENT = "rent", _("Rent")
        SERVICE = "service", _("Service fee")
        PARKING = "parking", _("Parking")
        OTHER = "other", _("Other")

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="fixed_costs",
        verbose_name=_("Tenant"),
    )
    cost_type = models.CharField(
        max_length=20,
        choices=CostType.choices,
        default=CostType.RENT,
        verbose_name=_("Cost type"),
    )
    description = models.CharField(max_length=255, blank=True, verbose_name=_("Description"))
    amount = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Amount"))
    start_date = models.DateField(default=date.today, verbose_name=_("Start date"))
    end_date = models.DateField(null=True, blank=True, verbose_name=_("End date"))
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    class Meta:
        verbose_name = _("Fixed cost")
        verbose_name_plural = _("Fixed costs")
        indexes = [
            models.Index(fields=["tenant", "cost_type", "is_active"], name="fixedcost_tenant_type_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.tenant} · {self.get_cost_type_display()} · {self.amount}"


class BillTemplate(models.Model):
    class BillType(models.TextChoices):
        MUNICIPALITY = "municipality", _("Municipality")
        LEVY = "levy", _("Levy")
        UTILITY = "utility", _("Utility")
        OTHER = "other", _("Other")

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="bill_templates",
        verbose_name=_("Property"),
    )
    name = models.CharField(max_length=255, verbose_name=_("Name"))
    bill_type = models.CharField(
        max_length=20,
        choices=BillType.choices,
        default=BillType.OTHER,
        verbose_name=_("Bill type"),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    class Meta:
        verbose_name = _("Bill template")
        verbose_name_plural = _("Bill templates")
        ordering = ["property", "name", "id"]

    def __str__(self) -> str:
        return f"{self.name} ({self.get_bill_type_display()})"


class InvoiceTemplate(models.Model):
    period_type = "invoice"

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="invoice_templates",
        verbose_name=_("Property"),
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="invoice_templates",
        verbose_name=_("Tenant"),
    )
    name = models.CharField(max_length=255, verbose_name=_("Name"))
    generation_day_of_month = models.PositiveSmallIntegerField(
        default=1,
        validators=day_of_month_validators,
        verbose_name=_("Generation day of month"),
    )
    depends_on_bill_templates = models.ManyToManyField(
        BillTemplate,
        through="InvoiceTemplateDependency",
        related_name="invoice_templates",
        blank=True,
        verbose_name=_("Depends on bill templates"),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    class Meta:
        verbose_name = _("Invoice template")
        verbose_name_plural = _("Invoice templates")
        ordering = ["property", "name", "id"]

    def __str__(self) -> str:
        return f"{self.name} · {self.tenant}"

    @builtin_property
    def schedule_day(self) -> int:
        return self.generation_day_of_month


class PayableTemplate(models.Model):
    period_type = "payable"

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="payable_templates",
        verbose_name=_("Property"),
    )
    name = models.CharField(max_length=255, verbose_name=_("Name"))
    scheduled_payment_day = models.PositiveSmallIntegerField(
        default=1,
        validators=day_of_month_validators,
        verbose_name=_("Scheduled payment day"),
    )
    depends_on_bill_templates = models.ManyToManyField(
        BillTemplate,
        through="PayableTemplateDependency",
        related_name="payable_templates",
        blank=True,
        verbose_name=_("Depends on bill templates"),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    class Meta:
        verbose_name = _("Payable template")
        verbose_name_plural = _("Payable templates")
        ordering = ["property", "name", "id"]

    def __str__(self) -> str:
        return self.name

    @builtin_property
    def schedule_day(self) -> int:
        return self.scheduled_payment_day


class InvoiceTemplateDependency(models.Model):
    invoice_template = models.ForeignKey(
        InvoiceTemplate,
        on_delete=models.CASCADE,
        related_name="dependency_edges",
        verbose_name=_("Invoice template"),
    )
    bill_template = models.ForeignKey(
        BillTemplate,
        on_delete=models.PROTECT,
        related_name="invoice_dependency_edges",
        verbose_name=_("Bill template"),
    )

    class Meta:
        verbose_name = _("Invoice template dependency")
        verbose_name_plural = _("Invoice template dependencies")
        constraints = [
            models.UniqueConstraint(
                fields=["invoice_template", "bill_template"],
                name="uniq_invoice_template_dependency",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_template} → {self.bill_template}"


class PayableTemplateDependency(models.Model):
    payable_template = models.ForeignKey(
        PayableTemplate,
        on_delete=models.CASCADE,
        related_name="dependency_edges",
        verbose_name=_("Payable template"),
    )
    bill_template = models.ForeignKey(
        BillTemplate,
        on_delete=models.PROTECT,
        related_name="payable_dependency_edges",
        verbose_name=_("Bill template"),
    )

    class Meta:
        verbose_name = _("Payable template dependency")
        verbose_name_plural = _("Payable template dependencies")
        constraints = [
            models.UniqueConstraint(
                fields=["payable_template", "bill_template"],
                name="uniq_payable_template_dependency",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.payable_template} → {self.bill_template}"


class Bill(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PROCESSING = "processing", _("Processing")
        PROCESSED = "processed", _("Processed")
        ERROR = "error", _("Error")

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="bills",
        verbose_name=_("Property"),
    )
    bill_template = models.ForeignKey(
        BillTemplate,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bills",
        verbose_name=_("Bill template"),
    )
    bill_type = models.CharField(
        max_length=20,
        choices=BillTemplate.BillType.choices,
        default=BillTemplate.BillType.OTHER,
        verbose_name=_("Bill type"),
    )
    file_name = models.CharField(max_length=255, blank=True, verbose_name=_("File name"))
    billing_year = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1900), MaxValueValidator(2200)],
        verbose_name=_("Billing year"),
    )
    billing_month = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(12)],
        verbose_name=_("Billing month"),
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        verbose_name=_("Status"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created at"))

    class Meta:
        verbose_name = _("Bill")
        verbose_name_plural = _("Bills")
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return self.file_name or f"Bill {self.pk}"

    @builtin_property
    def extracted_period(self) -> tuple[int, int] | None:
        if self.billing_year and self.billing_month:
            return int(self.billing_year), int(self.billing_month)
        return None


class BillingPeriod(models.Model):
    class PeriodType(models.TextChoices):
        INVOICE = "invoice", _("Invoice")
        PAYABLE = "payable", _("Payable")

    class GenerationSource(models.TextChoices):
        MANUAL = "manual", _("Manual")
        BATCH = "batch", _("Batch")
        CRON = "cron", _("Scheduled job")

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="billing_periods",
        verbose_name=_("Property"),
    )
    period_type = models.CharField(
        max_length=10,
        choices=PeriodType.choices,
        verbose_name=_("Period type"),
    )
    invoice_template = models.ForeignKey(
        InvoiceTemplate,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="periods",
        verbose_name=_("Invoice template"),
    )
    payable_template = models.ForeignKey(
        PayableTemplate,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="periods",
        verbose_name=_("Payable template"),
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_periods",
        verbose_name=_("Tenant"),
    )
    period_year = models.PositiveSmallIntegerField(verbose_name=_("Year"))
    period_month = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(12)],
        verbose_name=_("Month"),
    )
    period_start_date = models.DateField(verbose_name=_("Period start"))
    period_end_date = models.DateField(verbose_name=_("Period end"))
    scheduled_generation_day = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=day_of_month_validators,
        verbose_name=_("Scheduled generation day"),
    )
    scheduled_payment_day = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=day_of_month_validators,
        verbose_name=_("Scheduled payment day"),
    )
    generation_source = models.CharField(
        max_length=10,
        choices=GenerationSource.choices,
        default=GenerationSource.MANUAL,
        verbose_name=_("Generation source"),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created at"))
    history = HistoricalRecords()

    class Meta:
        verbose_name = _("Billing period")
        verbose_name_plural = _("Billing periods")
        ordering = ["period_year", "period_month", "period_type", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["invoice_template", "period_year", "period_month"],
                condition=models.Q(invoice_template__isnull=False),
                name="uniq_billing_period_invoice_template_month",
            ),
            models.UniqueConstraint(
                fields=["payable_template", "period_year", "period_month"],
                condition=models.Q(payable_template__isnull=False),
                name="uniq_billing_period_payable_template_month",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        period_type="invoice",
                        invoice_template__isnull=False,
                        payable_template__isnull=True,
                    )
                    | models.Q(
                        period_type="payable",
                        payable_template__isnull=False,
                        invoice_template__isnull=True,
                    )
                ),
                name="billing_period_single_owning_template",
            ),
        ]
        indexes = [
            models.Index(
                fields=["property", "period_year", "period_month"],
                name="period_property_month_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_period_type_display()} {self.period_month:02d}/{self.period_year} · {self.template}"

    def clean(self):
        super().clean()
        if self.period_start_date and self.period_end_date and self.period_end_date < self.period_start_date:
            raise ValidationError(
                {"period_end_date": _("Period end must not be before period start.")}
            )

    @builtin_property
    def template(self):
        if self.period_type == self.PeriodType.INVOICE:
            return self.invoice_template
        return self.payable_template

    @builtin_property
    def template_id(self) -> int | None:
        if self.period_type == self.PeriodType.INVOICE:
            return self.invoice_template_id
        return self.payable_template_id

    @builtin_property
    def schedule_day(self) -> int | None:
        if self.period_type == self.PeriodType.INVOICE:
            return self.scheduled_generation_day
        return self.scheduled_payment_day

    @builtin_property
    def scheduled_date(self) -> date | None:
        day = self.schedule_day
        if not day:
            return None
        last_day = monthrange(self.period_year, self.period_month)[1]
        return date(self.period_year, self.period_month, min(day, last_day))


class PeriodBillMatch(models.Model):
    class MatchType(models.TextChoices):
        AUTOMATIC = "automatic", _("Automatic")
        MANUAL = "manual", _("Manual")

    period = models.ForeignKey(
        BillingPeriod,
        on_delete=models.CASCADE,
        related_name="bill_matches",
        verbose_name=_("Billing period"),
    )
    bill = models.ForeignKey(
        Bill,
        on_delete=models.CASCADE,
        related_name="period_matches",
        verbose_name=_("Bill"),
    )
    match_type = models.CharField(
        max_length=10,
        choices=MatchType.choices,
        default=MatchType.MANUAL,
        verbose_name=_("Match type"),
    )
    matched_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Matched by"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created at"))

    class Meta:
        verbose_name = _("Period bill match")
        verbose_name_plural = _("Period bill matches")
        constraints = [
            models.UniqueConstraint(fields=["period", "bill"], name="uniq_period_bill_match"),
        ]

    def __str__(self) -> str:
        return f"{self.bill} ↔ {self.period}"


class VariableCost(models.Model):
    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="variable_costs",
        verbose_name=_("Property"),
    )
    bill = models.ForeignKey(
        Bill,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="variable_costs",
        verbose_name=_("Source bill"),
    )
    description = models.CharField(max_length=255, blank=True, verbose_name=_("Description"))
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        verbose_name=_("Amount"),
    )
    period_start = models.DateField(verbose_name=_("Period start"))
    period_end = models.DateField(verbose_name=_("Period end"))
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created at"))
    history = HistoricalRecords()

    class Meta:
        verbose_name = _("Variable cost")
        verbose_name_plural = _("Variable costs")
        ordering = ["period_start", "id"]

    def __str__(self) -> str:
        label = self.description or _("Variable cost")
        return f"{label} · {self.period_start} – {self.period_end} · {self.amount}"

    def clean(self):
        super().clean()
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValidationError({"period_end": _("Period end must not be before period start.")})


class VariableCostAllocation(models.Model):
    class Strategy(models.TextChoices):
        EQUAL_SPLIT = "equal_split", _("Equal split")
        PROPORTIONAL_BY_RENT = "proportional_by_rent", _("Proportional by rent")

    class RentSource(models.TextChoices):
        FIXED_COST = "fixed_cost", _("Rent fixed cost")
        RENTAL_AMOUNT = "rental_amount", _("Tenant rental amount")
        NONE = "none", _("No rent figure")

    variable_cost = models.ForeignKey(
        VariableCost,
        on_delete=models.CASCADE,
        related_name="allocations",
        verbose_name=_("Variable cost"),
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="variable_cost_allocations",
        verbose_name=_("Tenant"),
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Allocated amount"))
    rental_amount = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Rent figure"))
    total_rental_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        verbose_name=_("Total rent pool"),
    )
    allocation_ratio = models.DecimalField(
        max_digits=12,
        decimal_places=10,
        verbose_name=_("Allocation ratio"),
    )
    strategy = models.CharField(
        max_length=30,
        choices=Strategy.choices,
        verbose_name=_("Strategy"),
    )
    rent_source = models.CharField(
        max_length=20,
        choices=RentSource.choices,
        default=RentSource.NONE,
        verbose_name=_("Rent source"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created at"))

    class Meta:
        verbose_name = _("Variable cost allocation")
        verbose_name_plural = _("Variable cost allocations")
        ordering = ["variable_cost", "tenant__name", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["variable_cost", "tenant"],
                name="uniq_variable_cost_allocation_tenant",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.tenant} · {self.amount}"
