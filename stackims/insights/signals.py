"""
Context cache invalidation signals
Drop the cached inventory context when the records it is derived from change
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
import logging
import threading
from contextlib import contextmanager

from stackims.catalog.models import Category, Product, ProductUsage
from stackims.core.models import Setting
from stackims.inventory.models import InventoryMovement
from stackims.parties.models import Vendor
from stackims.purchasing.models import PurchaseOrder, PurchaseOrderItem

from .context_cache import get_context_cache
from .models import AIInsight, ProductForecast

logger = logging.getLogger(__name__)

# Thread-local storage to track signal suspension
_thread_locals = threading.local()

INVENTORY_SOURCE_MODELS = [
    Product,
    ProductUsage,
    Category,
    Vendor,
    InventoryMovement,
    PurchaseOrder,
    PurchaseOrderItem,
    AIInsight,
    ProductForecast,
    Setting,
]


@contextmanager
def suspend_cache_signals():
    """
    Temporarily suspend context cache invalidation for bulk operations.
    Call invalidate_inventory_context() once after the block.
    """
    previous = is_suspended()
    _thread_locals.suspended = True
    try:
        yield
    finally:
        _thread_locals.suspended = previous


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


def invalidate_inventory_context():
    """Manually invalidate the cached inventory context and the per-user prompts built from it"""
    cache = get_context_cache()
    removed = cache.invalidate_inventory_cache() + cache.invalidate_user_contexts()
    logger.debug(f"Invalidated inventory context ({removed} entries)")
    return removed


def invalidate_inventory_context_on_change(sender, instance, **kwargs):
    """Invalidate the inventory context once the write that changed its source data commits"""
    if is_suspended():
        return
    # Invalidate after commit; a build already in flight is discarded by the
    # cache generation check instead of being stored
    transaction.on_commit(invalidate_inventory_context)


def connect_signals():
    for model in INVENTORY_SOURCE_MODELS:
        uid = f"insights_invalidate_{model._meta.label_lower}"
        post_save.connect(invalidate_inventory_context_on_change, sender=model, dispatch_uid=f"{uid}_save")
        post_delete.connect(invalidate_inventory_context_on_change, sender=model, dispatch_uid=f"{uid}_delete")
