from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser
from django_filters import utils as filters_utils
import logging

from stackims.core.utils import log_activity
from .context_cache import get_context_cache
from .external_context import ExternalContextBuilder
from .filters import AIInsightFilter
from .forecasting import generate_product_forecast
from .inventory_context import InventoryContextBuilder
from .models import AIInsight
from .prompt_builder import PromptAssembler
from .serializers import (
    AIInsightSerializer,
    CacheInvalidateSerializer,
    ForecastRequestSerializer,
    PromptRequestSerializer,
)

logger = logging.getLogger(__name__)


def get_inventory_builder():
    return InventoryContextBuilder(get_context_cache())


def get_external_builder():
    return ExternalContextBuilder(get_context_cache())


def _is_refresh(request):
    return request.query_params.get('refresh', '').lower() in ('1', 'true', 'yes')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def inventory_context(request):
    """Aggregated inventory context (cached for 5 minutes, ?refresh=1 rebuilds)"""
    try:
        context = get_inventory_builder().build(force_refresh=_is_refresh(request))
        return Response(context.to_dict())
    except Exception as e:
        logger.error(f"Error building inventory context for {request.user.username}: {e}", exc_info=True)
        return Response({'error': 'Failed to build inventory context'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def external_context(request):
    """Weather, economic, industry and system health context (cached for 15 minutes)"""
    try:
        context = get_external_builder().build(force_refresh=_is_refresh(request))
        return Response(context.to_dict())
    except Exception as e:
        logger.error(f"Error building external context for {request.user.username}: {e}", exc_info=True)
        return Response({'error': 'Failed to build external context'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def ai_prompt(request):
    """
    Assemble the AI prompt for the current user's role

    Without a query the prompt is cached per user for 2 minutes; a query
    adds query-specific hints and is always rendered fresh.
    """
    serializer = PromptRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    query = serializer.validated_data.get('query') or None
    role = getattr(request.user, 'role', 'USER')
    cache = get_context_cache()

    try:
        if query is None:
            cached = cache.get_user_context(request.user.id)
            if cached and cached.get('role') == role:
                return Response({**cached, 'cached': True})

        assembler = PromptAssembler(get_inventory_builder(), get_external_builder())
        prompt = assembler.build(role, query=query)
        payload = {'role': role, 'query': query, 'prompt': prompt}
        if query is None:
            cache.set_user_context(request.user.id, payload)
        return Response({**payload, 'cached': False})
    except Exception as e:
        logger.error(f"Error assembling AI prompt for {request.user.username}: {e}", exc_info=True)
        return Response({'error': 'Failed to assemble AI prompt'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAdminUser])
def cache_stats(request):
    """Context cache statistics (staff only)"""
    return Response(get_context_cache().get_stats())


@api_view(['POST'])
@permission_classes([IsAdminUser])
def cache_invalidate(request):
    """Invalidate context cache entries matching a pattern, or everything (staff only)"""
    serializer = CacheInvalidateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    cache = get_context_cache()
    pattern = serializer.validated_data.get('pattern') or None
    if pattern:
        removed = cache.invalidate_pattern(pattern)
    else:
        removed = cache.get_stats()['total_entries']
        cache.clear()

    log_activity(
        request=request,
        action='CACHE_INVALIDATED',
        model_name='ContextCache',
        changes={'pattern': pattern, 'removed': removed},
    )
    return Response({'pattern': pattern, 'removed': removed})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def insight_list_create(request):
    """List saved AI insights, or save a new one"""
    if request.method == 'GET':
        queryset = AIInsight.objects.select_related('created_by')

        # Use django-filter for filtering
        filterset = AIInsightFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            raise filters_utils.translate_validation(filterset.errors)

        queryset = filterset.qs.order_by('-created_at')[:100]
        return Response(AIInsightSerializer(queryset, many=True).data)

    serializer = AIInsightSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    insight = serializer.save(created_by=request.user)
    log_activity(
        request=request,
        action='INSIGHT_SAVED',
        model_name='AIInsight',
        object_id=insight.id,
        object_name=f"{insight.insight_type} for {insight.entity_type} {insight.entity_id}",
    )
    return Response(AIInsightSerializer(insight).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def forecast_generate(request):
    """Forecast a product's usage and store the estimated stock-out date"""
    serializer = ForecastRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    product = serializer.validated_data['product']
    days = serializer.validated_data['days']
    try:
        summary = generate_product_forecast(product, days)
    except Exception as e:
        logger.error(f"Error generating forecast for product {product.id}: {e}", exc_info=True)
        return Response({'error': 'Failed to generate forecast'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if summary['forecast_id'] is not None:
        log_activity(
            request=request,
            action='FORECAST_GENERATED',
            model_name='ProductForecast',
            object_id=summary['forecast_id'],
            object_name=product.name,
            changes={'days': days, 'confidence': summary['confidence']},
        )
        return Response(summary, status=status.HTTP_201_CREATED)
    return Response(summary)
