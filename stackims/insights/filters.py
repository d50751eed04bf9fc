import django_filters
from .models import AIInsight


class AIInsightFilter(django_filters.FilterSet):
    """Filter saved insights by entity, type and whether they were applied"""

    entity_type = django_filters.CharFilter(field_name='entity_type', lookup_expr='iexact')
    entity_id = django_filters.CharFilter(field_name='entity_id', lookup_expr='exact')
    insight_type = django_filters.CharFilter(field_name='insight_type', lookup_expr='iexact')
    applied = django_filters.BooleanFilter(field_name='applied')
    min_confidence = django_filters.NumberFilter(field_name='confidence', lookup_expr='gte')

    class Meta:
        model = AIInsight
        fields = ['entity_type', 'entity_id', 'insight_type', 'applied', 'min_confidence']
