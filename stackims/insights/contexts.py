"""
Snapshot types returned by the context builders

Both snapshots are plain values: built on a cache miss, shared read-only
between requests until their TTL runs out, never persisted.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Marks a snapshot whose derivation failed as a whole
WHOLE_CONTEXT = 'context'


def empty_overview(last_updated=None):
    return {
        'total_products': 0,
        'low_stock_count': 0,
        'critical_stock_count': 0,
        'total_categories': 0,
        'total_vendors': 0,
        'estimated_total_value': 0.0,
        'monthly_usage_value': 0.0,
        'last_updated': last_updated,
        'health_score': None,
    }


@dataclass
class InventoryContext:
    overview: Dict[str, Any] = field(default_factory=empty_overview)
    stock_alerts: Dict[str, List[dict]] = field(
        default_factory=lambda: {'critical': [], 'low_stock': [], 'expiring_soon': []}
    )
    category_performance: List[dict] = field(default_factory=list)
    vendor_performance: List[dict] = field(default_factory=list)
    recent_activity: Dict[str, List[dict]] = field(
        default_factory=lambda: {'movements': [], 'orders': [], 'ai_insights': []}
    )
    user_behavior: Dict[str, Any] = field(
        default_factory=lambda: {
            'most_active_users': [],
            'system_usage': {
                'daily_active_users': 0,
                'most_used_features': [],
                'peak_usage_hours': [],
            },
        }
    )
    predictions: Dict[str, List[dict]] = field(
        default_factory=lambda: {'stockouts': [], 'demand_spikes': [], 'cost_optimizations': []}
    )
    degraded: bool = False
    failed_sections: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls, last_updated=None):
        """Placeholder returned when the snapshot could not be derived at all"""
        return cls(
            overview=empty_overview(last_updated),
            degraded=True,
            failed_sections=[WHOLE_CONTEXT],
        )

    @property
    def is_empty(self) -> bool:
        return WHOLE_CONTEXT in self.failed_sections

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExternalContext:
    weather: Optional[Dict[str, Any]] = None
    economic: Optional[Dict[str, Any]] = None
    industry: Dict[str, Any] = field(default_factory=dict)
    system_health: Optional[Dict[str, Any]] = None
    degraded: bool = False
    failed_sections: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls):
        return cls(degraded=True, failed_sections=[WHOLE_CONTEXT])

    @property
    def is_empty(self) -> bool:
        return WHOLE_CONTEXT in self.failed_sections

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
