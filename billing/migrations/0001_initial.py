import datetime
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import simple_history.models
from django.conf import settings
from django.db import migrations, models


def day_of_month_validators():
    return [
        django.core.validators.MinValueValidator(1),
        django.core.validators.MaxValueValidator(31),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Property",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                ("street_address", models.CharField(blank=True, max_length=255, verbose_name="Street address")),
                ("city", models.CharField(blank=True, max_length=100, verbose_name="City")),
                ("zip_code", models.CharField(blank=True, max_length=20, verbose_name="Postal code")),
                ("notes", models.TextField(blank=True, verbose_name="Notes")),
            ],
            options={
                "verbose_name": "Property",
                "verbose_name_plural": "Properties",
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="BillTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                (
                    "bill_type",
                    models.CharField(
                        choices=[
                            ("municipality", "Municipality"),
                            ("levy", "Levy"),
                            ("utility", "Utility"),
                            ("other", "Other"),
                        ],
                        default="other",
                        max_length=20,
                        verbose_name="Bill type",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bill_templates",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "Bill template",
                "verbose_name_plural": "Bill templates",
                "ordering": ["property", "name", "id"],
            },
        ),
        migrations.CreateModel(
            name="Tenant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="Email")),
                (
                    "rental_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Fallback rent figure when no active rent fixed cost exists.",
                        max_digits=12,
                        null=True,
                        verbose_name="Rental amount",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tenants",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "Tenant",
                "verbose_name_plural": "Tenants",
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="FixedCost",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "cost_type",
                    models.CharField(
                        choices=[
                            ("rent", "Rent"),
                            ("service", "Service fee"),
                            ("parking", "Parking"),
                            ("other", "Other"),
                        ],
                        default="rent",
                        max_length=20,
                        verbose_name="Cost type",
                    ),
                ),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="Description")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Amount")),
                ("start_date", models.DateField(default=datetime.date.today, verbose_name="Start date")),
                ("end_date", models.DateField(blank=True, null=True, verbose_name="End date")),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="fixed_costs",
                        to="billing.tenant",
                        verbose_name="Tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Fixed cost",
                "verbose_name_plural": "Fixed costs",
                "indexes": [
                    models.Index(fields=["tenant", "cost_type", "is_active"], name="fixedcost_tenant_type_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Bill",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "bill_type",
                    models.CharField(
                        choices=[
                            ("municipality", "Municipality"),
                            ("levy", "Levy"),
                            ("utility", "Utility"),
                            ("other", "Other"),
                        ],
                        default="other",
                        max_length=20,
                        verbose_name="Bill type",
                    ),
                ),
                ("file_name", models.CharField(blank=True, max_length=255, verbose_name="File name")),
                (
                    "billing_year",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(1900),
                            django.core.validators.MaxValueValidator(2200),
                        ],
                        verbose_name="Billing year",
                    ),
                ),
                (
                    "billing_month",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(12),
                        ],
                        verbose_name="Billing month",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("error", "Error"),
                        ],
                        default="pending",
                        max_length=20,
                        verbose_name="Status",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Created at")),
                (
                    "bill_template",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bills",
                        to="billing.billtemplate",
                        verbose_name="Bill template",
                    ),
                ),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bills",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "Bill",
                "verbose_name_plural": "Bills",
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="InvoiceTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                (
                    "generation_day_of_month",
                    models.PositiveSmallIntegerField(
                        default=1,
                        validators=day_of_month_validators(),
                        verbose_name="Generation day of month",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="invoice_templates",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="invoice_templates",
                        to="billing.tenant",
                        verbose_name="Tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice template",
                "verbose_name_plural": "Invoice templates",
                "ordering": ["property", "name", "id"],
            },
        ),
        migrations.CreateModel(
            name="PayableTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                (
                    "scheduled_payment_day",
                    models.PositiveSmallIntegerField(
                        default=1,
                        validators=day_of_month_validators(),
                        verbose_name="Scheduled payment day",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payable_templates",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payable template",
                "verbose_name_plural": "Payable templates",
                "ordering": ["property", "name", "id"],
            },
        ),
        migrations.CreateModel(
            name="InvoiceTemplateDependency",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "bill_template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice_dependency_edges",
                        to="billing.billtemplate",
                        verbose_name="Bill template",
                    ),
                ),
                (
                    "invoice_template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dependency_edges",
                        to="billing.invoicetemplate",
                        verbose_name="Invoice template",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice template dependency",
                "verbose_name_plural": "Invoice template dependencies",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("invoice_template", "bill_template"),
                        name="uniq_invoice_template_dependency",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayableTemplateDependency",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "bill_template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payable_dependency_edges",
                        to="billing.billtemplate",
                        verbose_name="Bill template",
                    ),
                ),
                (
                    "payable_template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dependency_edges",
                        to="billing.payabletemplate",
                        verbose_name="Payable template",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payable template dependency",
                "verbose_name_plural": "Payable template dependencies",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("payable_template", "bill_template"),
                        name="uniq_payable_template_dependency",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="invoicetemplate",
            name="depends_on_bill_templates",
            field=models.ManyToManyField(
                blank=True,
                related_name="invoice_templates",
                through="billing.InvoiceTemplateDependency",
                to="billing.billtemplate",
                verbose_name="Depends on bill templates",
            ),
        ),
        migrations.AddField(
            model_name="payabletemplate",
            name="depends_on_bill_templates",
            field=models.ManyToManyField(
                blank=True,
                related_name="payable_templates",
                through="billing.PayableTemplateDependency",
                to="billing.billtemplate",
                verbose_name="Depends on bill templates",
            ),
        ),
        migrations.CreateModel(
            name="BillingPeriod",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "period_type",
                    models.CharField(
                        choices=[("invoice", "Invoice"), ("payable", "Payable")],
                        max_length=10,
                        verbose_name="Period type",
                    ),
                ),
                ("period_year", models.PositiveSmallIntegerField(verbose_name="Year")),
                (
                    "period_month",
                    models.PositiveSmallIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(12),
                        ],
                        verbose_name="Month",
                    ),
                ),
                ("period_start_date", models.DateField(verbose_name="Period start")),
                ("period_end_date", models.DateField(verbose_name="Period end")),
                (
                    "scheduled_generation_day",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=day_of_month_validators(),
                        verbose_name="Scheduled generation day",
                    ),
                ),
                (
                    "scheduled_payment_day",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=day_of_month_validators(),
                        verbose_name="Scheduled payment day",
                    ),
                ),
                (
                    "generation_source",
                    models.CharField(
                        choices=[("manual", "Manual"), ("batch", "Batch"), ("cron", "Scheduled job")],
                        default="manual",
                        max_length=10,
                        verbose_name="Generation source",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Created at")),
                (
                    "invoice_template",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="periods",
                        to="billing.invoicetemplate",
                        verbose_name="Invoice template",
                    ),
                ),
                (
                    "payable_template",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="periods",
                        to="billing.payabletemplate",
                        verbose_name="Payable template",
                    ),
                ),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="billing_periods",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="billing_periods",
                        to="billing.tenant",
                        verbose_name="Tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Billing period",
                "verbose_name_plural": "Billing periods",
                "ordering": ["period_year", "period_month", "period_type", "id"],
                "indexes": [
                    models.Index(
                        fields=["property", "period_year", "period_month"],
                        name="period_property_month_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("invoice_template__isnull", False)),
                        fields=("invoice_template", "period_year", "period_month"),
                        name="uniq_billing_period_invoice_template_month",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("payable_template__isnull", False)),
                        fields=("payable_template", "period_year", "period_month"),
                        name="uniq_billing_period_payable_template_month",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("invoice_template__isnull", False),
                                ("payable_template__isnull", True),
                                ("period_type", "invoice"),
                            ),
                            models.Q(
                                ("invoice_template__isnull", True),
                                ("payable_template__isnull", False),
                                ("period_type", "payable"),
                            ),
                            _connector="OR",
                        ),
                        name="billing_period_single_owning_template",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PeriodBillMatch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "match_type",
                    models.CharField(
                        choices=[("automatic", "Automatic"), ("manual", "Manual")],
                        default="manual",
                        max_length=10,
                        verbose_name="Match type",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Created at")),
                (
                    "bill",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="period_matches",
                        to="billing.bill",
                        verbose_name="Bill",
                    ),
                ),
                (
                    "matched_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Matched by",
                    ),
                ),
                (
                    "period",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bill_matches",
                        to="billing.billingperiod",
                        verbose_name="Billing period",
                    ),
                ),
            ],
            options={
                "verbose_name": "Period bill match",
                "verbose_name_plural": "Period bill matches",
                "constraints": [
                    models.UniqueConstraint(fields=("period", "bill"), name="uniq_period_bill_match"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VariableCost",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="Description")),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                        verbose_name="Amount",
                    ),
                ),
                ("period_start", models.DateField(verbose_name="Period start")),
                ("period_end", models.DateField(verbose_name="Period end")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Created at")),
                (
                    "bill",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="variable_costs",
                        to="billing.bill",
                        verbose_name="Source bill",
                    ),
                ),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="variable_costs",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "Variable cost",
                "verbose_name_plural": "Variable costs",
                "ordering": ["period_start", "id"],
            },
        ),
        migrations.CreateModel(
            name="VariableCostAllocation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Allocated amount")),
                ("rental_amount", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Rent figure")),
                (
                    "total_rental_amount",
                    models.DecimalField(decimal_places=2, max_digits=14, verbose_name="Total rent pool"),
                ),
                (
                    "allocation_ratio",
                    models.DecimalField(decimal_places=10, max_digits=12, verbose_name="Allocation ratio"),
                ),
                (
                    "strategy",
                    models.CharField(
                        choices=[
                            ("equal_split", "Equal split"),
                            ("proportional_by_rent", "Proportional by rent"),
                        ],
                        max_length=30,
                        verbose_name="Strategy",
                    ),
                ),
                (
                    "rent_source",
                    models.CharField(
                        choices=[
                            ("fixed_cost", "Rent fixed cost"),
                            ("rental_amount", "Tenant rental amount"),
                            ("none", "No rent figure"),
                        ],
                        default="none",
                        max_length=20,
                        verbose_name="Rent source",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Created at")),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="variable_cost_allocations",
                        to="billing.tenant",
                        verbose_name="Tenant",
                    ),
                ),
                (
                    "variable_cost",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="allocations",
                        to="billing.variablecost",
                        verbose_name="Variable cost",
                    ),
                ),
            ],
            options={
                "verbose_name": "Variable cost allocation",
                "verbose_name_plural": "Variable cost allocations",
                "ordering": ["variable_cost", "tenant__name", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("variable_cost", "tenant"),
                        name="uniq_variable_cost_allocation_tenant",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="HistoricalBillingPeriod",
            fields=[
                ("id", models.BigIntegerField(auto_created=True, blank=True, db_index=True, verbose_name="ID")),
                (
                    "period_type",
                    models.CharField(
                        choices=[("invoice", "Invoice"), ("payable", "Payable")],
                        max_length=10,
                        verbose_name="Period type",
                    ),
                ),
                ("period_year", models.PositiveSmallIntegerField(verbose_name="Year")),
                (
                    "period_month",
                    models.PositiveSmallIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(12),
                        ],
                        verbose_name="Month",
                    ),
                ),
                ("period_start_date", models.DateField(verbose_name="Period start")),
                ("period_end_date", models.DateField(verbose_name="Period end")),
                (
                    "scheduled_generation_day",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=day_of_month_validators(),
                        verbose_name="Scheduled generation day",
                    ),
                ),
                (
                    "scheduled_payment_day",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=day_of_month_validators(),
                        verbose_name="Scheduled payment day",
                    ),
                ),
                (
                    "generation_source",
                    models.CharField(
                        choices=[("manual", "Manual"), ("batch", "Batch"), ("cron", "Scheduled job")],
                        default="manual",
                        max_length=10,
                        verbose_name="Generation source",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="Active")),
                ("created_at", models.DateTimeField(blank=True, editable=False, verbose_name="Created at")),
                ("history_id", models.AutoField(primary_key=True, serialize=False)),
                ("history_date", models.DateTimeField(db_index=True)),
                ("history_change_reason", models.CharField(max_length=100, null=True)),
                (
                    "history_type",
                    models.CharField(
                        choices=[("+", "Created"), ("~", "Changed"), ("-", "Deleted")],
                        max_length=1,
                    ),
                ),
                (
                    "history_user",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "invoice_template",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.invoicetemplate",
                        verbose_name="Invoice template",
                    ),
                ),
                (
                    "payable_template",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.payabletemplate",
                        verbose_name="Payable template",
                    ),
                ),
                (
                    "property",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.tenant",
                        verbose_name="Tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "historical Billing period",
                "verbose_name_plural": "historical Billing periods",
                "ordering": ("-history_date", "-history_id"),
                "get_latest_by": ("history_date", "history_id"),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
        migrations.CreateModel(
            name="HistoricalVariableCost",
            fields=[
                ("id", models.BigIntegerField(auto_created=True, blank=True, db_index=True, verbose_name="ID")),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="Description")),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                        verbose_name="Amount",
                    ),
                ),
                ("period_start", models.DateField(verbose_name="Period start")),
                ("period_end", models.DateField(verbose_name="Period end")),
                ("created_at", models.DateTimeField(blank=True, editable=False, verbose_name="Created at")),
                ("history_id", models.AutoField(primary_key=True, serialize=False)),
                ("history_date", models.DateTimeField(db_index=True)),
                ("history_change_reason", models.CharField(max_length=100, null=True)),
                (
                    "history_type",
                    models.CharField(
                        choices=[("+", "Created"), ("~", "Changed"), ("-", "Deleted")],
                        max_length=1,
                    ),
                ),
                (
                    "bill",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.bill",
                        verbose_name="Source bill",
                    ),
                ),
                (
                    "history_user",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "property",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="billing.property",
                        verbose_name="Property",
                    ),
                ),
            ],
            options={
                "verbose_name": "historical Variable cost",
                "verbose_name_plural": "historical Variable costs",
                "ordering": ("-history_date", "-history_id"),
                "get_latest_by": ("history_date", "history_id"),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
    ]
