"""
Query-specific hint rules for the AI prompt

A hint rule matches when any of its keywords occurs in the lower-cased
query. Rules are evaluated in table order and every matching rule renders
its block from the inventory context (which may be None or empty).
"""
from collections import namedtuple

HintRule = namedtuple('HintRule', ['name', 'keywords', 'render'])


def _section(context, name):
    if context is None:
        return {}
    return getattr(context, name)


def _critical(context):
    critical = _section(context, 'stock_alerts').get('critical', [])
    lines = [f"CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION: {len(critical)} products critically low"]
    for item in critical[:3]:
        lines.append(f"   - {item['name']}: {item['quantity']} units, {item['days_remaining']} days remaining")
    return lines


def _reorder(context):
    low_stock = _section(context, 'stock_alerts').get('low_stock', [])
    stockouts = _section(context, 'predictions').get('stockouts', [])
    lines = [f"REORDER STATUS: {len(low_stock)} products below reorder threshold"]
    if stockouts:
        lines.append(f"   Predicted stockouts: {', '.join(s['product'] for s in stockouts[:2])}")
    return lines


def _category(context):
    categories = _section(context, 'category_performance') or []
    lines = [f"CATEGORY STATUS: {len(categories)} categories tracked"]
    critical = [c['name'] for c in categories if c['stock_health'] == 'CRITICAL']
    if critical:
        lines.append(f"   Categories needing attention: {', '.join(critical)}")
    if categories:
        top = categories[0]
        lines.append(
            f"   Top performing category: {top['name']} "
            f"(${top['total_value']:.2f} value, {top['stock_health']} health)"
        )
    return lines


def _vendor(context):
    vendors = _section(context, 'vendor_performance') or []
    lines = [f"VENDOR RELIABILITY: {len(vendors)} vendors tracked"]
    unreliable = [v for v in vendors if v['reliability'] < 80]
    if unreliable:
        lines.append(
            "   Reliability issues: "
            + ', '.join(f"{v['name']} ({v['reliability']}%)" for v in unreliable)
        )
    if vendors:
        top = vendors[0]
        lines.append(
            f"   Primary vendor: {top['name']} - {top['product_count']} products, "
            f"{top['reliability']}% reliability"
        )
    return lines


def _financial(context):
    overview = _section(context, 'overview')
    optimizations = _section(context, 'predictions').get('cost_optimizations', [])
    total_value = overview.get('estimated_total_value')
    usage_value = overview.get('monthly_usage_value')
    lines = [
        "FINANCIAL STATUS: "
        f"Total inventory value {_money(total_value)}, Monthly usage {_money(usage_value)}"
    ]
    if optimizations:
        savings = sum(opt['potential_savings'] for opt in optimizations)
        lines.append(f"   Potential savings identified: ${savings:.2f}")
    return lines


def _trend(context):
    overview = _section(context, 'overview')
    spikes = _section(context, 'predictions').get('demand_spikes', [])
    score = overview.get('health_score')
    lines = [f"TREND ANALYSIS: System health score {score if score is not None else 'N/A'}/100"]
    if spikes:
        lines.append(f"   Upcoming demand spikes: {', '.join(s['category'] for s in spikes)}")
    return lines


def _expiration(context):
    expiring = _section(context, 'stock_alerts').get('expiring_soon', [])
    lines = [f"EXPIRATION ALERTS: {len(expiring)} products expiring within 30 days"]
    for item in expiring[:3]:
        lines.append(f"   - {item['name']}: {item['days_until_expiry']} days until expiry")
    return lines


def _user_activity(context):
    behavior = _section(context, 'user_behavior')
    usage = behavior.get('system_usage', {})
    active = behavior.get('most_active_users', [])
    lines = [f"USER ACTIVITY: {usage.get('daily_active_users', 0)} daily active users"]
    if active:
        lines.append(f"   Most active: {', '.join(u['name'] for u in active[:2])}")
    return lines


def _money(value):
    return f"${value:.2f}" if value is not None else 'N/A'


HINT_RULES = [
    HintRule('critical', ('critical', 'urgent', 'emergency'), _critical),
    HintRule('reorder', ('reorder', 'stock', 'low'), _reorder),
    HintRule('category', ('category', 'categories'), _category),
    HintRule('vendor_reliability', ('vendor', 'supplier'), _vendor),
    HintRule('financial', ('cost', 'price', 'budget', 'savings'), _financial),
    HintRule('trend', ('trend', 'forecast', 'predict', 'future'), _trend),
    HintRule('expiration', ('expir', 'shelf', 'perishable'), _expiration),
    HintRule('user_activity', ('user', 'activity', 'usage'), _user_activity),
]


def matching_rules(query, rules=None):
    """Rules whose keywords occur in the query, in table order"""
    query_lower = (query or '').lower()
    return [rule for rule in (rules or HINT_RULES) if any(k in query_lower for k in rule.keywords)]


def render_hints(query, context, rules=None):
    """Hint lines for every rule the query triggers"""
    lines = []
    for rule in matching_rules(query, rules):
        lines.extend(rule.render(context))
    return lines
