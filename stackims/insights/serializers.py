import re

from rest_framework import serializers

from stackims.catalog.models import Product
from .models import AIInsight


class AIInsightSerializer(serializers.ModelSerializer):
    created_by_username = serializers.SerializerMethodField()

    class Meta:
        model = AIInsight
        fields = ['id', 'entity_type', 'entity_id', 'insight_type', 'content', 'confidence',
                  'applied', 'created_by', 'created_by_username', 'created_at']
        read_only_fields = ['created_by', 'created_at']

    def validate_confidence(self, value):
        if not 0 <= value <= 1:
            raise serializers.ValidationError('Confidence must be between 0 and 1.')
        return value

    def get_created_by_username(self, obj):
        return obj.created_by.username if obj.created_by else None


class ForecastRequestSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    days = serializers.IntegerField(min_value=1, max_value=365, default=30)


class PromptRequestSerializer(serializers.Serializer):
    query = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class CacheInvalidateSerializer(serializers.Serializer):
    pattern = serializers.CharField(required=False, allow_blank=True, max_length=200)

    def validate_pattern(self, value):
        try:
            re.compile(value)
        except re.error as e:
            raise serializers.ValidationError(f'Invalid pattern: {e}')
        return value
