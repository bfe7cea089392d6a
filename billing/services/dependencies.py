from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Union

from django.core.exceptions import ValidationError
from django.db import transaction

from billing.exceptions import NotFoundError
from billing.models import (
    BillTemplate,
    InvoiceTemplate,
    InvoiceTemplateDependency,
    PayableTemplate,
    PayableTemplateDependency,
)

logger = logging.getLogger(__name__)

DerivedTemplate = Union[InvoiceTemplate, PayableTemplate]


def _parse_id(raw: object) -> int | None:
    if isinstance(raw, BillTemplate):
        return raw.pk
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    text = str(raw or "").strip().strip('"').strip("'")
    if text.isdigit() and int(text) > 0:
        return int(text)
    return None


@dataclass(frozen=True, slots=True)
class DependencySet:
    """Bill template ids a derived template waits for."""

    ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def of(cls, values: Iterable[object]) -> "DependencySet":
        parsed = (_parse_id(value) for value in values)
        return cls(frozenset(value for value in parsed if value is not None))

    @classmethod
    def from_stored(cls, raw: object) -> "DependencySet":
        # Legacy rows kept ids as null, a single id, a list or a comma separated string.
        if raw is None:
            return cls()
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            text = raw.strip().lstrip("[{").rstrip("]}")
            return cls.of(part for part in text.split(",") if part.strip())
        try:
            values = iter(raw)
        except TypeError:
            return cls.of([raw])
        return cls.of(values)

    def __contains__(self, bill_template_id: object) -> bool:
        parsed = _parse_id(bill_template_id)
        return parsed is not None and parsed in self.ids

    def __iter__(self):
        return iter(sorted(self.ids))

    def __len__(self) -> int:
        return len(self.ids)

    def __bool__(self) -> bool:
        return bool(self.ids)

    def __or__(self, other: "DependencySet") -> "DependencySet":
        return self.union(other)

    def __sub__(self, other: "DependencySet") -> "DependencySet":
        return self.difference(other)

    def union(self, other: "DependencySet") -> "DependencySet":
        return DependencySet(self.ids | other.ids)

    def difference(self, other: "DependencySet") -> "DependencySet":
        return DependencySet(self.ids - other.ids)

    @property
    def is_empty(self) -> bool:
        return not self.ids


@dataclass(slots=True)
class DependentTemplates:
    invoice_templates: list[InvoiceTemplate]
    payable_templates: list[PayableTemplate]

    @property
    def is_empty(self) -> bool:
        return not self.invoice_templates and not self.payable_templates


def _edge_model(template: DerivedTemplate):
    if isinstance(template, InvoiceTemplate):
        return InvoiceTemplateDependency, "invoice_template"
    if isinstance(template, PayableTemplate):
        return PayableTemplateDependency, "payable_template"
    raise TypeError(f"Unsupported template type: {type(template).__name__}")


def dependencies(template: DerivedTemplate) -> DependencySet:
    edge_model, template_field = _edge_model(template)
    return DependencySet.of(
        edge_model.objects.filter(**{template_field: template}).values_list("bill_template_id", flat=True)
    )


def dependencies_for_many(
    *,
    invoice_template_ids: Iterable[int] = (),
    payable_template_ids: Iterable[int] = (),
) -> dict[tuple[str, int], DependencySet]:
    """Dependency sets for several templates in two queries."""
    grouped: dict[tuple[str, int], set[int]] = {}
    invoice_ids = set(invoice_template_ids)
    payable_ids = set(payable_template_ids)
    for template_id in invoice_ids:
        grouped[(InvoiceTemplate.period_type, template_id)] = set()
    for template_id in payable_ids:
        grouped[(PayableTemplate.period_type, template_id)] = set()

    if invoice_ids:
        edges = InvoiceTemplateDependency.objects.filter(invoice_template_id__in=invoice_ids)
        for template_id, bill_template_id in edges.values_list("invoice_template_id", "bill_template_id"):
            grouped[(InvoiceTemplate.period_type, template_id)].add(bill_template_id)
    if payable_ids:
        edges = PayableTemplateDependency.objects.filter(payable_template_id__in=payable_ids)
        for template_id, bill_template_id in edges.values_list("payable_template_id", "bill_template_id"):
            grouped[(PayableTemplate.period_type, template_id)].add(bill_template_id)

    return {key: DependencySet(frozenset(values)) for key, values in grouped.items()}


def dependents(bill_template: BillTemplate | int) -> DependentTemplates:
    bill_template_id = _parse_id(bill_template)
    invoice_templates = list(
        InvoiceTemplate.objects.filter(dependency_edges__bill_template=bill_template_id)
        .select_related("tenant")
        .distinct()
        .order_by("name", "id")
    )
    payable_templates = list(
        PayableTemplate.objects.filter(dependency_edges__bill_template=bill_template_id)
        .distinct()
        .order_by("name", "id")
    )
    return DependentTemplates(invoice_templates=invoice_templates, payable_templates=payable_templates)


def validate_dependency_set(template: DerivedTemplate, dependency_set: DependencySet) -> None:
    if isinstance(template, PayableTemplate) and dependency_set.is_empty:
        raise ValidationError(
            {"depends_on_bill_templates": "A payable template requires at least one bill template dependency."}
        )


def _resolve_bill_templates(template: DerivedTemplate, dependency_set: DependencySet) -> list[BillTemplate]:
    bill_templates = list(BillTemplate.objects.filter(pk__in=dependency_set.ids))
    found_ids = {bill_template.pk for bill_template in bill_templates}
    missing_ids = sorted(dependency_set.ids - found_ids)
    if missing_ids:
        raise NotFoundError("BillTemplate", missing_ids[0])
    foreign = [bill_template for bill_template in bill_templates if bill_template.property_id != template.property_id]
    if foreign:
        raise ValidationError(
            {
                "depends_on_bill_templates": (
                    "Bill templates must belong to the template's property: "
                    + ", ".join(str(bill_template.pk) for bill_template in foreign)
                )
            }
        )
    return bill_templates


def set_dependencies(template: DerivedTemplate, bill_templates: object) -> DependencySet:
    """Replace the full dependency set of ``template``.

    ``bill_templates`` may be anything ``DependencySet.from_stored`` reads, such as
    model instances, ids or a comma separated string of ids.
    """
    wanted = DependencySet.from_stored(bill_templates)
    validate_dependency_set(template, wanted)
    _resolve_bill_templates(template, wanted)

    edge_model, template_field = _edge_model(template)
    with transaction.atomic():
        current = dependencies(template)
        edge_model.objects.filter(
            **{template_field: template, "bill_template_id__in": (current - wanted).ids}
        ).delete()
        edge_model.objects.bulk_create(
            [
                edge_model(**{template_field: template, "bill_template_id": bill_template_id})
                for bill_template_id in sorted((wanted - current).ids)
            ]
        )
    logger.info(
        "Dependencies of %s %s set to %s",
        template.period_type,
        template.pk,
        sorted(wanted.ids),
    )
    return wanted


def add_dependency(template: DerivedTemplate, bill_template: BillTemplate | int) -> DependencySet:
    current = dependencies(template)
    if bill_template in current:
        return current
    return set_dependencies(template, current | DependencySet.of([bill_template]))


def remove_dependency(template: DerivedTemplate, bill_template: BillTemplate | int) -> DependencySet:
    current = dependencies(template)
    if bill_template not in current:
        return current
    return set_dependencies(template, current - DependencySet.of([bill_template]))
