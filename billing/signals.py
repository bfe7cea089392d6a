from django.conf import settings
from django.db import transaction
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from billing.models import FixedCost, Tenant
from billing.services.variable_costs import reallocate_open_costs_for_property

_RENT_STATE_BEFORE_SAVE_ATTR = "_rent_state_before_save"


def _reallocation_enabled() -> bool:
    return bool(getattr(settings, "BILLING_REALLOCATE_ON_TENANT_CHANGE", True))


def _property_id_for_tenant(tenant_id):
    return Tenant.objects.filter(pk=tenant_id).values_list("property_id", flat=True).first()


def _schedule_reallocation(*, property_id) -> None:
    if property_id is None or not _reallocation_enabled():
        return
    property_id = int(property_id)
    transaction.on_commit(lambda: reallocate_open_costs_for_property(property_id))


@receiver(post_save, sender=Tenant)
def tenant_saved_reallocate(sender, instance, raw=False, **kwargs):
    if raw:
        return
    _schedule_reallocation(property_id=instance.property_id)


@receiver(post_delete, sender=Tenant)
def tenant_deleted_reallocate(sender, instance, **kwargs):
    _schedule_reallocation(property_id=instance.property_id)


@receiver(pre_save, sender=FixedCost)
def rent_cost_remember_state(sender, instance, raw=False, **kwargs):
    if raw or instance.pk is None:
        return
    setattr(
        instance,
        _RENT_STATE_BEFORE_SAVE_ATTR,
        FixedCost.objects.filter(pk=instance.pk).values_list("cost_type", "tenant_id").first(),
    )


@receiver(post_save, sender=FixedCost)
def rent_cost_saved_reallocate(sender, instance, raw=False, **kwargs):
    previous = getattr(instance, _RENT_STATE_BEFORE_SAVE_ATTR, None)
    if hasattr(instance, _RENT_STATE_BEFORE_SAVE_ATTR):
        delattr(instance, _RENT_STATE_BEFORE_SAVE_ATTR)
    if raw:
        return

    # A cost that stops being rent changes the rent figure just like a new one.
    tenant_ids = set()
    if instance.cost_type == FixedCost.CostType.RENT:
        tenant_ids.add(instance.tenant_id)
    if previous is not None and previous[0] == FixedCost.CostType.RENT:
        tenant_ids.add(previous[1])

    property_ids = {_property_id_for_tenant(tenant_id) for tenant_id in tenant_ids}
    for property_id in sorted(pid for pid in property_ids if pid is not None):
        _schedule_reallocation(property_id=property_id)


@receiver(post_delete, sender=FixedCost)
def rent_cost_deleted_reallocate(sender, instance, **kwargs):
    if instance.cost_type != FixedCost.CostType.RENT:
        return
    _schedule_reallocation(property_id=_property_id_for_tenant(instance.tenant_id))
