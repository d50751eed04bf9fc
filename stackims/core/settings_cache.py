"""
Cached access to system settings rows.

Settings are read on every context build (stock thresholds, backup time), so
they are cached in the Django cache and refreshed by signals when a row
changes.
"""
from django.core.cache import cache
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging

from .models import Setting

logger = logging.getLogger(__name__)

SETTING_KEY_PREFIX = 'setting:'
SETTING_CATEGORY_KEY_PREFIX = 'setting_category:'

# Settings change rarely
SETTING_CACHE_TTL = 600  # 10 minutes

_MISSING = '__missing__'


def get_setting_cache_key(key: str) -> str:
    """Get cache key for a single setting"""
    return f"{SETTING_KEY_PREFIX}{key}"


def get_setting_category_cache_key(category: str) -> str:
    """Get cache key for all settings of a category"""
    return f"{SETTING_CATEGORY_KEY_PREFIX}{category or 'all'}"


def get_setting(key, default=''):
    """Return the value of a setting, or default when the row does not exist"""
    cache_key = get_setting_cache_key(key)
    cached = cache.get(cache_key)
    if cached is not None:
        logger.debug(f"Cache hit for setting: {key}")
        return default if cached == _MISSING else cached

    try:
        value = Setting.objects.values_list('value', flat=True).get(key=key)
    except Setting.DoesNotExist:
        cache.set(cache_key, _MISSING, SETTING_CACHE_TTL)
        return default
    cache.set(cache_key, value, SETTING_CACHE_TTL)
    return value


def get_settings(category=None):
    """Return settings as a {key: value} dict, optionally for one category"""
    cache_key = get_setting_category_cache_key(category)
    cached = cache.get(cache_key)
    if cached is not None:
        return dict(cached)

    queryset = Setting.objects.all()
    if category:
        queryset = queryset.filter(category=category)
    values = dict(queryset.values_list('key', 'value'))
    cache.set(cache_key, values, SETTING_CACHE_TTL)
    return dict(values)


def get_int_setting(key, default, settings_map=None):
    """Parse an integer setting, falling back to default on missing or bad values"""
    raw = settings_map.get(key) if settings_map is not None else get_setting(key, None)
    if raw in (None, ''):
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning(f"Setting {key} has non-integer value {raw!r}, using {default}")
        return default


def invalidate_setting_cache(setting_obj):
    """Invalidate cache entries for a setting and its category"""
    if not setting_obj:
        return
    cache.delete_many([
        get_setting_cache_key(setting_obj.key),
        get_setting_category_cache_key(setting_obj.category),
        get_setting_category_cache_key(None),
    ])
    logger.debug(f"Invalidated cache for setting: {setting_obj.key}")


@receiver([post_save, post_delete], sender=Setting)
def setting_changed(sender, instance, **kwargs):
    """Drop cached settings when a row is saved or deleted"""
    invalidate_setting_cache(instance)
