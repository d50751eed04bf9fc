"""
Derived statistics used by the context builders

Everything here is a pure function of already-fetched values and an explicit
`now`, so the scoring rules can be tested without a database.
"""
import math
from collections import Counter
from datetime import timedelta

from django.utils import timezone

DAY_SECONDS = 24 * 60 * 60

# Days of stock assumed when a product has no usage history
DEFAULT_DAYS_REMAINING = 30

# Share of low-stock products at which a category turns CRITICAL
CRITICAL_LOW_STOCK_SHARE = 0.3

STOCKOUT_MIN_CONFIDENCE = 0.7
DEMAND_SPIKE_MIN_GROWTH = 5
DEMAND_SPIKE_LEAD_DAYS = 14
UNRELIABLE_VENDOR_THRESHOLD = 80
VENDOR_CONSOLIDATION_SAVINGS = 500
BULK_DISCOUNT_MIN_VALUE = 10000
BULK_DISCOUNT_RATE = 0.05

ACTION_FEATURES = {
    'PRODUCT_CREATED': 'Product Management',
    'PRODUCT_UPDATED': 'Product Management',
    'INVENTORY_ADJUSTMENT': 'Inventory Tracking',
    'ORDER_CREATED': 'Purchase Orders',
    'ORDER_APPROVED': 'Purchase Orders',
    'USER_LOGIN': 'Authentication',
    'REPORT_GENERATED': 'Analytics',
}

ROLE_CAPABILITIES = {
    'SUPER_ADMIN': 'Full system access, user management, system configuration, advanced analytics, all AI insights',
    'ADMIN': 'Inventory management, reporting, vendor relations, bulk operations, AI recommendations, user oversight',
    'MODERATOR': 'Content review, inventory operations, category management, basic AI insights, reporting',
    'VENDOR': 'Own product management, sales analytics, restock notifications, order tracking, limited AI insights',
    'USER': 'Basic inventory viewing, personal notifications, limited reporting, basic AI insights',
}

MARKET_TRENDS = [
    'AI-driven inventory automation gaining adoption',
    'Supply chain resilience focus increasing',
    'Sustainable packaging demand rising',
    'Real-time inventory visibility becoming standard',
    'Predictive analytics reducing stockouts by 30%',
    'Multi-channel inventory management essential',
]


def round_half_up(value):
    """Round to the nearest integer, halves away from zero"""
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def clamp(value, low=0, high=100):
    return max(low, min(high, value))


def health_score(critical_count, category_count, vendor_count, movement_count):
    """
    0-100 system health: mean of four sub-scores, each clamped to [0, 100].

    - stock levels: 100 minus 20 per critical product
    - category balance: 10 per category
    - vendor diversity: 5 per vendor
    - recent activity: 2 per recent movement
    """
    factors = [
        clamp(100 - critical_count * 20),
        clamp(category_count * 10),
        clamp(vendor_count * 5),
        clamp(movement_count * 2),
    ]
    return round_half_up(sum(factors) / len(factors))


def stock_health(low_stock_count, product_count):
    if low_stock_count == 0:
        return 'HEALTHY'
    if low_stock_count < product_count * CRITICAL_LOW_STOCK_SHARE:
        return 'ATTENTION'
    return 'CRITICAL'


def vendor_reliability(on_time_count, order_count):
    """Percentage of orders received by their expected date; 100 for a vendor with no orders"""
    if not order_count:
        return 100
    return round_half_up(on_time_count / order_count * 100)


def average_daily_usage(usage_quantities):
    if not usage_quantities:
        return 0
    return sum(usage_quantities) / len(usage_quantities)


def days_remaining(quantity, usage_quantities):
    avg_usage = average_daily_usage(usage_quantities)
    if avg_usage <= 0:
        return DEFAULT_DAYS_REMAINING
    return math.ceil(quantity / avg_usage)


def days_until(moment, now):
    return math.ceil((moment - now).total_seconds() / DAY_SECONDS)


def movement_impact(quantity, unit_price, on_hand):
    value_impact = abs(quantity) * float(unit_price or 0)
    share_impact = abs(quantity) / (on_hand or 1)
    if value_impact > 1000 or share_impact > 0.5:
        return 'HIGH'
    if value_impact > 100 or share_impact > 0.1:
        return 'MEDIUM'
    return 'LOW'


def order_urgency(status, created_at, expected_date, total_amount, now):
    if status == 'PENDING_APPROVAL' and (now - created_at) > timedelta(days=3):
        return 'HIGH'
    if status == 'ORDERED' and expected_date and now > expected_date:
        return 'HIGH'
    if float(total_amount or 0) > 5000:
        return 'MEDIUM'
    return 'LOW'


def most_frequent(items):
    if not items:
        return None
    return Counter(items).most_common(1)[0][0]


def action_to_feature(action):
    return ACTION_FEATURES.get(action, 'General Activity')


def most_used_features(actions, limit=5):
    counts = Counter(action_to_feature(action) for action in actions)
    return [feature for feature, _ in counts.most_common(limit)]


def peak_usage_hours(timestamps, limit=3):
    counts = Counter(timezone.localtime(ts).hour for ts in timestamps)
    return [f"{hour}:00-{hour}:59" for hour, _ in counts.most_common(limit)]


def stockout_recommendation(forecast_date, now):
    days = days_until(forecast_date, now)
    if days <= 7:
        return 'URGENT: Place emergency order immediately'
    if days <= 14:
        return 'HIGH PRIORITY: Initiate reorder process within 2-3 days'
    return 'PLANNED: Schedule reorder for next week'


def demand_spikes(category_performance, now, limit=3):
    expected_date = (now + timedelta(days=DEMAND_SPIKE_LEAD_DAYS)).date().isoformat()
    growing = [c for c in category_performance if c['monthly_growth'] > DEMAND_SPIKE_MIN_GROWTH]
    return [
        {
            'category': category['name'],
            'expected_date': expected_date,
            'confidence': min(85, 60 + category['monthly_growth'] * 2),
            'prepared_actions': [
                'Increase safety stock levels',
                'Contact vendors for bulk pricing',
                'Monitor competitor activity',
            ],
        }
        for category in growing[:limit]
    ]


def cost_optimizations(vendor_performance, category_performance, limit=3):
    optimizations = []

    unreliable = [v for v in vendor_performance if v['reliability'] < UNRELIABLE_VENDOR_THRESHOLD]
    if unreliable:
        optimizations.append({
            'area': 'Vendor Optimization',
            'potential_savings': float(len(unreliable) * VENDOR_CONSOLIDATION_SAVINGS),
            'implementation': 'Consolidate with high-reliability vendors',
        })

    high_value = [c for c in category_performance if c['total_value'] > BULK_DISCOUNT_MIN_VALUE]
    if high_value:
        optimizations.append({
            'area': 'Bulk Purchase Discounts',
            'potential_savings': sum(c['total_value'] * BULK_DISCOUNT_RATE for c in high_value),
            'implementation': 'Negotiate volume discounts for high-value categories',
        })

    return optimizations[:limit]


# --- Calendar and market heuristics ---

def season_for(moment):
    month = moment.month
    if 3 <= month <= 5:
        return 'Spring'
    if 6 <= month <= 8:
        return 'Summer'
    if 9 <= month <= 11:
        return 'Fall'
    return 'Winter'


def retail_season(moment):
    month = moment.month
    if month >= 11 or month <= 2:
        return 'Holiday/Winter Shopping Season'
    if 3 <= month <= 5:
        return 'Spring Refresh Period'
    if 6 <= month <= 8:
        return 'Summer Season'
    return 'Back-to-School/Fall Preparation'


def demand_forecast(moment):
    month = moment.month
    if month >= 11 or month <= 2:
        return 'High demand for seasonal items, holiday surge expected'
    if 6 <= month <= 8:
        return 'Summer product demand increasing, outdoor equipment trending'
    if 9 <= month <= 10:
        return 'Back-to-school demand, office supplies surge'
    return 'Moderate demand with seasonal variations, spring cleaning trends'


def weather_impact(condition, season):
    if condition in ('Rain', 'Snow'):
        return 'Increased demand for indoor products, delivery delays possible'
    if condition == 'Clear' and season == 'Summer':
        return 'High demand for cooling products, outdoor equipment'
    if season == 'Winter':
        return 'Seasonal demand shifts, heating products in demand'
    return 'Normal seasonal patterns expected'


def market_trend(eur_rate):
    if eur_rate is None:
        return 'Stable currency - normal operations'
    if eur_rate > 0.9:
        return 'Strong USD - good for imports'
    if eur_rate < 0.8:
        return 'Weak USD - focus on domestic suppliers'
    return 'Stable currency - normal operations'


def role_capabilities(role):
    return ROLE_CAPABILITIES.get(role, ROLE_CAPABILITIES['USER'])
