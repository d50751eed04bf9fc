"""
Usage forecasting for products

Average-daily-usage model: predicted usage is the mean of the recent usage
records times the horizon, with confidence growing with the number of
records (capped at 0.9).
"""
import logging
import math
from datetime import timedelta

from django.utils import timezone

from stackims.inventory.models import InventoryMovement

from .models import ProductForecast

logger = logging.getLogger(__name__)

MIN_RECORDS = 5
HISTORY_LIMIT = 30
MAX_CONFIDENCE = 0.9
USAGE_MOVEMENT_TYPES = ['SALE', 'ADJUSTMENT', 'LOSS']


def forecast_usage(quantities, days):
    """Return (predicted_usage, confidence); (None, 0) with fewer than 5 records"""
    if len(quantities) < MIN_RECORDS:
        return None, 0
    avg_daily_usage = sum(quantities) / len(quantities)
    confidence = min(MAX_CONFIDENCE, len(quantities) / HISTORY_LIMIT)
    return avg_daily_usage * days, confidence


def usage_history(product):
    """Recent daily usage quantities, topped up from outgoing stock movements when history is thin"""
    quantities = list(
        product.usage_history.order_by('-date').values_list('quantity', flat=True)[:HISTORY_LIMIT]
    )
    if len(quantities) < MIN_RECORDS:
        movements = InventoryMovement.objects.filter(
            product=product,
            type__in=USAGE_MOVEMENT_TYPES,
            quantity__lt=0,
        ).order_by('-created_at').values_list('quantity', flat=True)[:HISTORY_LIMIT]
        quantities.extend(abs(q) for q in movements)
    return quantities


def generate_product_forecast(product, days=30, now=None):
    """
    Forecast a product's usage over `days` and persist a ProductForecast.

    The forecast date is the estimated stock-out date: on-hand quantity
    divided by average daily usage, or the end of the horizon when usage is
    zero. Returns a summary dict; `forecast_id` is None when there was not
    enough history to forecast.
    """
    now = now or timezone.now()
    quantities = usage_history(product)
    predicted_usage, confidence = forecast_usage(quantities, days)

    summary = {
        'product': product.id,
        'product_name': product.name,
        'days': days,
        'sample_size': len(quantities),
        'predicted_usage': predicted_usage,
        'confidence': confidence,
        'forecast_date': None,
        'forecast_id': None,
    }
    if predicted_usage is None:
        logger.info(f"Not enough usage history to forecast {product.name} ({len(quantities)} records)")
        return summary

    avg_daily_usage = predicted_usage / days if days else 0
    if avg_daily_usage > 0:
        days_of_stock = math.ceil(max(product.quantity, 0) / avg_daily_usage)
    else:
        days_of_stock = days
    forecast_date = now + timedelta(days=days_of_stock)

    forecast = ProductForecast.objects.create(
        product=product,
        forecast_date=forecast_date,
        predicted_usage=predicted_usage,
        horizon_days=days,
        confidence=confidence,
    )
    logger.info(
        f"Forecast for {product.name}: {predicted_usage:.1f} units over {days} days, "
        f"stock-out {forecast_date:%Y-%m-%d} ({confidence:.0%} confidence)"
    )
    summary.update({'forecast_date': forecast_date.isoformat(), 'forecast_id': forecast.id})
    return summary
