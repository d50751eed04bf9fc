"""
Prompt assembly for the AI insights feature

Renders the inventory and external contexts into the fixed-structure text
prompt handed to the AI provider. Missing or failed context renders as
"data unavailable" instead of failing the request.
"""
import logging

from django.utils import timezone

from . import analysis
from .fanout import run_all
from .query_hints import render_hints

logger = logging.getLogger(__name__)

AVAILABLE_FEATURES = [
    'Real-time inventory tracking with predictive alerts',
    'Automated reorder point optimization',
    'AI-powered demand forecasting and trend analysis',
    'Smart vendor performance evaluation',
    'Cost optimization recommendations',
    'Seasonal demand pattern recognition',
    'Comprehensive reporting and analytics dashboard',
    'External market data integration',
    'User behavior analysis and system optimization',
]


def _lines(items, render, empty=''):
    rendered = [render(item) for item in items]
    return '\n'.join(rendered) if rendered else empty


def _date(value):
    return value[:10] if value else 'Never'


class PromptAssembler:
    def __init__(self, inventory_builder, external_builder, now=None):
        self.inventory_builder = inventory_builder
        self.external_builder = external_builder
        self._now = now or timezone.now

    def load_contexts(self):
        """Build both contexts side by side; a builder that raises yields None"""
        workers = 2 if min(self.inventory_builder.max_workers, self.external_builder.max_workers) > 1 else 1
        results = run_all(
            {
                'inventory': self.inventory_builder.build,
                'external': self.external_builder.build,
            },
            workers,
        )
        return results['inventory'].value_or(None), results['external'].value_or(None)

    def build(self, role, query=None):
        inventory, external = self.load_contexts()
        prompt = self.render(role, inventory, external)
        if query:
            hints = render_hints(query, inventory)
            if hints:
                prompt += "\n\nQUERY-SPECIFIC CONTEXT:\n" + '\n'.join(hints)
        return prompt

    def render(self, role, inventory, external):
        now = timezone.localtime(self._now())
        health_score = None
        if inventory is not None and not inventory.is_empty:
            health_score = inventory.overview.get('health_score')

        sections = [
            '\n'.join([
                'SYSTEM INFORMATION:',
                f"- Current Date: {now:%Y-%m-%d}",
                f"- Current Time: {now:%H:%M:%S}",
                f"- User Role: {role}",
                '- System: Stack Inventory Management (AI-Enhanced)',
                f"- System Health Score: {health_score if health_score is not None else 'N/A'}/100",
            ]),
            'INVENTORY OVERVIEW:\n' + self.render_inventory(inventory),
            'EXTERNAL CONTEXT & MARKET CONDITIONS:\n' + self.render_external(external),
            f"USER CAPABILITIES ({role}):\n{analysis.role_capabilities(role)}",
            'AVAILABLE AI FEATURES:\n' + '\n'.join(f"- {feature}" for feature in AVAILABLE_FEATURES),
        ]
        return '\n\n'.join(sections)

    def render_inventory(self, ctx):
        if ctx is None or ctx.is_empty:
            return 'Inventory data unavailable'

        overview = ctx.overview
        alerts = ctx.stock_alerts
        activity = ctx.recent_activity
        predictions = ctx.predictions
        usage = ctx.user_behavior['system_usage']

        parts = [
            '\n'.join([
                f"- Total Products: {overview['total_products']}",
                f"- Critical Stock Items: {overview['critical_stock_count']} (URGENT ATTENTION NEEDED)",
                f"- Low Stock Items: {overview['low_stock_count']}",
                f"- Categories: {overview['total_categories']}",
                f"- Vendors: {overview['total_vendors']}",
                f"- Total Inventory Value: ${overview['estimated_total_value']:.2f}",
                f"- Monthly Usage Value: ${overview['monthly_usage_value']:.2f}",
            ]),
        ]
        if ctx.degraded:
            parts.append(f"- Data Completeness: partial (unavailable: {', '.join(ctx.failed_sections)})")

        parts.append('CRITICAL ALERTS (IMMEDIATE ACTION REQUIRED):\n' + _lines(
            alerts['critical'],
            lambda item: (
                f"- {item['name']}: Only {item['quantity']} units left ({item['days_remaining']} days remaining), "
                f"Category: {item['category'] or 'Uncategorized'}, Vendor: {item['vendor'] or 'Unknown'}, "
                f"Daily Usage: {item['average_daily_usage']:.2f}"
            ),
            'No critical stock alerts',
        ))
        parts.append('EXPIRING PRODUCTS (ATTENTION NEEDED):\n' + _lines(
            alerts['expiring_soon'],
            lambda item: (
                f"- {item['name']}: Expires in {item['days_until_expiry']} days "
                f"({item['expiration_date']}), Quantity: {item['quantity']}"
            ),
            'No products expiring soon',
        ))
        parts.append('LOW STOCK ALERTS:\n' + _lines(
            alerts['low_stock'][:8],
            lambda item: (
                f"- {item['name']}: {item['quantity']} units (reorder at {item['reorder_threshold']}), "
                f"Category: {item['category'] or 'Uncategorized'}, Vendor: {item['vendor'] or 'Unknown'}, "
                f"Price: ${item['price']:.2f}"
            ),
            'No low stock alerts',
        ))
        parts.append('CATEGORY PERFORMANCE ANALYSIS:\n' + _lines(
            ctx.category_performance,
            lambda cat: (
                f"- {cat['name']}: {cat['product_count']} products, ${cat['total_value']:.2f} value, "
                f"Stock Health: {cat['stock_health']}, Growth: {cat['monthly_growth']} movements/month\n"
                f"    Top Products: {', '.join(cat['top_products'])}"
            ),
            'No categories',
        ))
        parts.append('VENDOR RELATIONSHIP STATUS:\n' + _lines(
            ctx.vendor_performance,
            lambda vendor: (
                f"- {vendor['name']}: {vendor['product_count']} products, {vendor['order_count']} orders, "
                f"Reliability: {vendor['reliability']}%, Avg Lead Time: {vendor['average_lead_time']} days\n"
                f"    Last Order: {_date(vendor['last_order_date'])}"
            ),
            'No vendors',
        ))
        parts.append('\n'.join([
            'RECENT ACTIVITY & INSIGHTS:',
            'High Impact Movements:',
            _lines(
                [m for m in activity['movements'] if m['impact'] == 'HIGH'][:3],
                lambda m: (
                    f"- {m['type']}: {m['product']} ({m['quantity']:+d}) by {m['user']} - "
                    f"{m['reason'] or 'No reason'} [{m['impact']} IMPACT]"
                ),
                'None',
            ),
            '',
            'Urgent Orders:',
            _lines(
                [o for o in activity['orders'] if o['urgency'] == 'HIGH'][:3],
                lambda o: f"- {o['vendor']}: {o['status']} (${o['total_value']:.2f}) - {o['urgency']} URGENCY",
                'None',
            ),
            '',
            'AI-Generated Insights:',
            _lines(
                activity['ai_insights'][:3],
                lambda i: (
                    f"- {i['type']}: {i['content']} ({i['confidence']}% confidence) "
                    f"{'[APPLIED]' if i['applied'] else '[PENDING]'}"
                ),
                'None',
            ),
        ]))
        parts.append('\n'.join([
            'PREDICTIVE ANALYTICS:',
            'Stockout Predictions:',
            _lines(
                predictions['stockouts'],
                lambda p: (
                    f"- {p['product']}: Expected stockout {p['estimated_date']} "
                    f"({p['confidence']}% confidence) - {p['recommendation']}"
                ),
                'None',
            ),
            '',
            'Demand Spike Forecasts:',
            _lines(
                predictions['demand_spikes'],
                lambda s: f"- {s['category']}: Expected spike {s['expected_date']} ({s['confidence']}% confidence)",
                'None',
            ),
            '',
            'Cost Optimization Opportunities:',
            _lines(
                predictions['cost_optimizations'],
                lambda o: f"- {o['area']}: Potential savings ${o['potential_savings']:.2f} - {o['implementation']}",
                'None',
            ),
        ]))
        parts.append('\n'.join([
            'USER ACTIVITY INSIGHTS:',
            'Most Active Users (Last 7 Days):',
            _lines(
                ctx.user_behavior['most_active_users'],
                lambda u: f"- {u['name']} ({u['role']}): {u['recent_actions']} actions, Focus: {u['focus']}",
                'None',
            ),
            '',
            'System Usage:',
            f"- Daily Active Users: {usage['daily_active_users']}",
            f"- Peak Hours: {', '.join(usage['peak_usage_hours']) or 'N/A'}",
            f"- Most Used Features: {', '.join(usage['most_used_features']) or 'N/A'}",
        ]))
        return '\n\n'.join(parts)

    def render_external(self, ctx):
        if ctx is None or ctx.is_empty:
            return 'External data unavailable'

        weather = ctx.weather or {}
        economic = ctx.economic or {}
        industry = ctx.industry or {}
        health = ctx.system_health or {}
        return '\n'.join([
            f"Weather & Seasonal Impact: {weather.get('condition', 'Unknown')} "
            f"({weather.get('season', analysis.season_for(self._now()))})",
            f"- Inventory Impact: {weather.get('impact', 'Normal operations expected')}",
            '',
            'Economic Environment:',
            f"- Market Trend: {economic.get('market_trend', 'Stable')}",
            f"- USD/EUR Rate: {economic.get('usd_rate', 'N/A')}",
            '',
            'Industry Context:',
            f"- Retail Season: {industry.get('retail_season', 'Unknown')}",
            f"- Demand Forecast: {industry.get('demand_forecast', 'Unknown')}",
            f"- Market Trends: {', '.join(industry.get('market_trends', []))}",
            '',
            'System Health:',
            f"- Database Performance: {health.get('db_performance', 'Unknown')}",
            f"- Active Users (24h): {health.get('active_users', 0)}",
            f"- Last Backup: {health.get('last_backup', 'Unknown')}",
        ])
