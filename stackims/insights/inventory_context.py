"""
Inventory context builder

Fans out the independent inventory reads, derives scores and predictions
from them and caches the resulting InventoryContext under the `inventory`
TTL. A failed read leaves its section empty and is listed in
`failed_sections`; the builder itself always returns a context.
"""
import logging
from collections import OrderedDict
from datetime import timedelta

from django.conf import settings
from django.db.models import Count, F, Prefetch, Q
from django.utils import timezone

from stackims.catalog.models import Category, Product, ProductUsage
from stackims.core.models import ActivityLog
from stackims.core.settings_cache import get_int_setting, get_settings
from stackims.inventory.models import InventoryMovement
from stackims.parties.models import Vendor
from stackims.purchasing.models import PurchaseOrder

from . import analysis
from .context_cache import INVENTORY_CONTEXT_KEY
from .contexts import InventoryContext
from .fanout import run_all
from .models import AIInsight, ProductForecast

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10
DEFAULT_CRITICAL_STOCK_THRESHOLD = 2
USAGE_HISTORY_LENGTH = 30


def _display_name(user):
    if user is None:
        return 'Unknown'
    return user.get_full_name() or user.username


class InventoryContextBuilder:
    """Builds (or returns the cached) InventoryContext"""

    def __init__(self, cache, max_workers=None, now=None):
        self.cache = cache
        if max_workers is None:
            max_workers = getattr(settings, 'INSIGHTS_FANOUT_WORKERS', 8)
        self.max_workers = max_workers
        self._now = now or timezone.now

    def build(self, force_refresh=False) -> InventoryContext:
        if force_refresh:
            self.cache.invalidate(INVENTORY_CONTEXT_KEY)
        return self.cache.get_or_build(INVENTORY_CONTEXT_KEY, self._build, 'inventory')

    def thresholds(self):
        """(low, critical) stock thresholds from the inventory settings"""
        inventory_settings = get_settings('inventory')
        low = get_int_setting('globalLowStockThreshold', DEFAULT_LOW_STOCK_THRESHOLD, inventory_settings)
        critical = get_int_setting('criticalStockThreshold', DEFAULT_CRITICAL_STOCK_THRESHOLD, inventory_settings)
        return low, critical

    def _build(self) -> InventoryContext:
        now = self._now()
        try:
            low, critical = self.thresholds()
            results = run_all(self._tasks(now, low, critical), self.max_workers)
            context = self._assemble(results, now, low, critical)
        except Exception:
            logger.exception("Error building inventory context")
            return InventoryContext.empty(last_updated=now.isoformat())

        if context.degraded:
            logger.warning(f"Inventory context built with failed sections: {', '.join(context.failed_sections)}")
        else:
            logger.info(f"Inventory context built (health score {context.overview['health_score']})")
        return context

    # --- Fan-out reads ---

    def _tasks(self, now, low, critical):
        month_ago = now - timedelta(days=30)
        week_ago = now - timedelta(days=7)
        month_ahead = now + timedelta(days=30)
        recent_usage = ProductUsage.objects.order_by('-date', '-id')[:USAGE_HISTORY_LENGTH]

        def product_count():
            return Product.objects.count()

        def stock_alert_rows(queryset, limit):
            return [
                {
                    'name': p.name,
                    'quantity': p.quantity,
                    'price': float(p.price),
                    'minimum_order_quantity': p.minimum_order_quantity,
                    'category': p.category.name if p.category else None,
                    'vendor': p.vendor.name if p.vendor else None,
                    'usage': [u.quantity for u in p.recent_usage],
                }
                for p in queryset.select_related('category', 'vendor')
                .prefetch_related(Prefetch('usage_history', queryset=recent_usage, to_attr='recent_usage'))
                .order_by('quantity', 'id')[:limit]
            ]

        def low_stock():
            return stock_alert_rows(Product.objects.filter(quantity__lte=low, quantity__gt=critical), 15)

        def critical_stock():
            return stock_alert_rows(Product.objects.filter(quantity__lte=critical), 10)

        def expiring_soon():
            return list(
                Product.objects.filter(expiration_date__lte=month_ahead)
                .order_by('expiration_date')
                .values('name', 'quantity', 'expiration_date')[:10]
            )

        def categories():
            products = Product.objects.annotate(
                monthly_movements=Count(
                    'inventory_movements',
                    filter=Q(inventory_movements__created_at__gte=month_ago),
                )
            )
            return [
                {
                    'name': category.name,
                    'products': [
                        {
                            'name': p.name,
                            'price': float(p.price),
                            'quantity': p.quantity,
                            'updated_at': p.updated_at,
                            'monthly_movements': p.monthly_movements,
                        }
                        for p in category.products.all()
                    ],
                }
                for category in Category.objects.prefetch_related(Prefetch('products', queryset=products))
            ]

        def vendors():
            order_stats = {
                row['vendor_id']: row
                for row in PurchaseOrder.objects.values('vendor_id').annotate(
                    total=Count('id'),
                    on_time=Count('id', filter=Q(status='RECEIVED', received_at__lte=F('expected_date'))),
                )
            }
            vendor_qs = (
                Vendor.objects.annotate(product_count=Count('products'))
                .prefetch_related(
                    Prefetch(
                        'products',
                        queryset=Product.objects.order_by('-updated_at', '-id')[:5],
                        to_attr='recent_products',
                    ),
                    Prefetch(
                        'purchase_orders',
                        queryset=PurchaseOrder.objects.order_by('-created_at', '-id')[:3],
                        to_attr='recent_orders',
                    ),
                )
                .order_by('-product_count', 'name')
            )
            rows = []
            for vendor in vendor_qs:
                stats = order_stats.get(vendor.id, {'total': 0, 'on_time': 0})
                rows.append({
                    'name': vendor.name,
                    'product_count': vendor.product_count,
                    'order_count': stats['total'],
                    'on_time_count': stats['on_time'],
                    'recent_products': [
                        {'name': p.name, 'price': p.price, 'lead_time': p.lead_time}
                        for p in vendor.recent_products
                    ],
                    'recent_orders': [
                        {'created_at': o.created_at, 'status': o.status}
                        for o in vendor.recent_orders
                    ],
                })
            return rows

        def movements():
            return [
                {
                    'type': m.type,
                    'product': m.product.name,
                    'product_price': float(m.product.price),
                    'product_quantity': m.product.quantity,
                    'quantity': m.quantity,
                    'reason': m.reason,
                    'created_at': m.created_at,
                    'user': _display_name(m.performed_by),
                }
                for m in InventoryMovement.objects.select_related('product', 'performed_by').order_by('-created_at')[:20]
            ]

        def orders():
            return list(
                PurchaseOrder.objects.annotate(item_count=Count('items'))
                .order_by('-created_at')
                .values(
                    'vendor__name', 'status', 'item_count', 'total_amount',
                    'created_at', 'expected_date',
                )[:10]
            )

        def insights():
            return list(
                AIInsight.objects.order_by('-created_at')
                .values('insight_type', 'content', 'confidence', 'entity_type', 'applied')[:10]
            )

        def activity():
            return [
                {
                    'user_id': log.user_id,
                    'user': _display_name(log.user),
                    'role': log.user.role if log.user else 'USER',
                    'action': log.action,
                    'created_at': log.created_at,
                }
                for log in ActivityLog.objects.filter(created_at__gte=week_ago)
                .select_related('user').order_by('-created_at')[:50]
            ]

        def forecasts():
            return list(
                ProductForecast.objects.filter(forecast_date__gte=now, forecast_date__lte=month_ahead)
                .order_by('-confidence')
                .values('product__name', 'forecast_date', 'confidence')[:15]
            )

        return OrderedDict([
            ('product_count', product_count),
            ('low_stock', low_stock),
            ('critical_stock', critical_stock),
            ('expiring_soon', expiring_soon),
            ('categories', categories),
            ('vendors', vendors),
            ('movements', movements),
            ('orders', orders),
            ('insights', insights),
            ('activity', activity),
            ('forecasts', forecasts),
        ])

    # --- Derivation ---

    def _assemble(self, results, now, low, critical) -> InventoryContext:
        failed = [name for name, result in results.items() if not result.ok]
        total_products = results['product_count'].value_or(0)
        low_stock = results['low_stock'].value_or([])
        critical_stock = results['critical_stock'].value_or([])
        expiring = results['expiring_soon'].value_or([])
        categories = results['categories'].value_or([])
        vendors = results['vendors'].value_or([])
        movements = results['movements'].value_or([])
        orders = results['orders'].value_or([])
        insights = results['insights'].value_or([])
        activity = results['activity'].value_or([])
        forecasts = results['forecasts'].value_or([])

        category_performance = self._category_performance(categories, now, low)
        vendor_performance = self._vendor_performance(vendors)

        month_ago = now - timedelta(days=30)
        monthly_usage_value = sum(
            abs(m['quantity']) * m['product_price']
            for m in movements
            if m['type'] == 'SALE' and m['created_at'] > month_ago
        )

        overview = {
            'total_products': total_products,
            'low_stock_count': len(low_stock),
            'critical_stock_count': len(critical_stock),
            'total_categories': len(categories),
            'total_vendors': len(vendors),
            'estimated_total_value': sum(c['total_value'] for c in category_performance),
            'monthly_usage_value': monthly_usage_value,
            'last_updated': now.isoformat(),
            'health_score': analysis.health_score(
                len(critical_stock), len(categories), len(vendors), len(movements)
            ),
            'low_stock_threshold': low,
            'critical_stock_threshold': critical,
        }

        stock_alerts = {
            'critical': [
                {
                    'name': p['name'],
                    'quantity': p['quantity'],
                    'days_remaining': analysis.days_remaining(p['quantity'], p['usage']),
                    'category': p['category'],
                    'vendor': p['vendor'],
                    'price': p['price'],
                    'average_daily_usage': analysis.average_daily_usage(p['usage']),
                }
                for p in critical_stock
            ],
            'low_stock': [
                {
                    'name': p['name'],
                    'quantity': p['quantity'],
                    'reorder_threshold': p['minimum_order_quantity'],
                    'category': p['category'],
                    'vendor': p['vendor'],
                    'price': p['price'],
                    'average_daily_usage': analysis.average_daily_usage(p['usage']),
                }
                for p in low_stock
            ],
            'expiring_soon': [
                {
                    'name': p['name'],
                    'expiration_date': p['expiration_date'].date().isoformat(),
                    'days_until_expiry': analysis.days_until(p['expiration_date'], now),
                    'quantity': p['quantity'],
                }
                for p in expiring
            ],
        }

        recent_activity = {
            'movements': [
                {
                    'type': m['type'],
                    'product': m['product'],
                    'quantity': m['quantity'],
                    'reason': m['reason'],
                    'date': m['created_at'].date().isoformat(),
                    'user': m['user'],
                    'impact': analysis.movement_impact(m['quantity'], m['product_price'], m['product_quantity']),
                }
                for m in movements[:10]
            ],
            'orders': [
                {
                    'vendor': o['vendor__name'],
                    'status': o['status'],
                    'item_count': o['item_count'],
                    'total_value': float(o['total_amount']),
                    'date': o['created_at'].date().isoformat(),
                    'expected_delivery': o['expected_date'].date().isoformat() if o['expected_date'] else None,
                    'urgency': analysis.order_urgency(
                        o['status'], o['created_at'], o['expected_date'], o['total_amount'], now
                    ),
                }
                for o in orders
            ],
            'ai_insights': [
                {
                    'type': i['insight_type'],
                    'content': i['content'],
                    'confidence': analysis.round_half_up(i['confidence'] * 100),
                    'entity_type': i['entity_type'],
                    'applied': i['applied'],
                }
                for i in insights
            ],
        }

        predictions = {
            'stockouts': [
                {
                    'product': f['product__name'],
                    'estimated_date': f['forecast_date'].date().isoformat(),
                    'confidence': analysis.round_half_up(f['confidence'] * 100),
                    'recommendation': analysis.stockout_recommendation(f['forecast_date'], now),
                }
                for f in forecasts
                if f['confidence'] > analysis.STOCKOUT_MIN_CONFIDENCE
            ][:5],
            'demand_spikes': analysis.demand_spikes(category_performance, now),
            'cost_optimizations': analysis.cost_optimizations(vendor_performance, category_performance),
        }

        return InventoryContext(
            overview=overview,
            stock_alerts=stock_alerts,
            category_performance=category_performance,
            vendor_performance=vendor_performance,
            recent_activity=recent_activity,
            user_behavior=self._user_behavior(activity),
            predictions=predictions,
            degraded=bool(failed),
            failed_sections=failed,
        )

    def _category_performance(self, categories, now, low):
        week_ago = now - timedelta(days=7)
        performance = []
        for category in categories:
            products = category['products']
            values = sorted(products, key=lambda p: p['price'] * p['quantity'], reverse=True)
            low_count = sum(1 for p in products if p['quantity'] <= low)
            performance.append({
                'name': category['name'],
                'product_count': len(products),
                'total_value': sum(p['price'] * p['quantity'] for p in products),
                'average_price': sum(p['price'] for p in products) / len(products) if products else 0,
                'recent_activity': sum(1 for p in products if p['updated_at'] > week_ago),
                'monthly_growth': sum(p['monthly_movements'] for p in products),
                'top_products': [p['name'] for p in values[:3]],
                'low_stock_count': low_count,
                'stock_health': analysis.stock_health(low_count, len(products)),
            })
        performance.sort(key=lambda c: c['total_value'], reverse=True)
        return performance

    def _vendor_performance(self, vendors):
        performance = []
        for vendor in vendors:
            products = vendor['recent_products']
            orders = vendor['recent_orders']
            performance.append({
                'name': vendor['name'],
                'product_count': vendor['product_count'],
                'order_count': vendor['order_count'],
                'average_product_value': (
                    sum(float(p['price']) for p in products) / len(products) if products else 0
                ),
                'recent_products': [p['name'] for p in products],
                'reliability': analysis.vendor_reliability(vendor['on_time_count'], vendor['order_count']),
                'average_lead_time': analysis.round_half_up(
                    sum(p['lead_time'] or 0 for p in products) / len(products) if products else 0
                ),
                'last_order_date': orders[0]['created_at'].isoformat() if orders else None,
            })
        return performance

    def _user_behavior(self, activity):
        per_user = OrderedDict()
        for entry in activity:
            user = per_user.setdefault(entry['user'], {'role': entry['role'], 'actions': []})
            user['actions'].append(entry['action'])

        most_active = sorted(per_user.items(), key=lambda item: len(item[1]['actions']), reverse=True)[:5]
        unique_users = {entry['user_id'] for entry in activity}
        return {
            'most_active_users': [
                {
                    'name': name,
                    'role': data['role'],
                    'recent_actions': len(data['actions']),
                    'focus': analysis.most_frequent(data['actions']) or 'Various tasks',
                }
                for name, data in most_active
            ],
            'system_usage': {
                'daily_active_users': analysis.round_half_up(len(unique_users) / 7),
                'most_used_features': analysis.most_used_features(entry['action'] for entry in activity),
                'peak_usage_hours': analysis.peak_usage_hours(entry['created_at'] for entry in activity),
            },
        }
