"""
Test suite for the AI insights pipeline
Tests: context cache, derived statistics, context builders, prompt assembly,
forecasting, cache invalidation signals and API endpoints
"""
import json
import threading
import time
from datetime import datetime, timedelta
from decimal import Decimal
from unittest import mock

import requests
from django.core.cache import cache as django_cache
from django.db import DatabaseError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework import status

from stackims.core.models import ActivityLog
from stackims.core.test_utils import AuthenticatedAPIClient, FakeClock, TestDataFactory
from stackims.insights import analysis
from stackims.insights.context_cache import (
    EXTERNAL_CONTEXT_KEY,
    INVENTORY_CONTEXT_KEY,
    ContextCache,
    get_context_cache,
)
from stackims.insights.contexts import InventoryContext
from stackims.insights.external_context import EXCHANGE_RATE_URL, WEATHER_URL, ExternalContextBuilder
from stackims.insights.fanout import FetchResult, run_all
from stackims.insights.forecasting import forecast_usage, generate_product_forecast
from stackims.insights.inventory_context import InventoryContextBuilder
from stackims.insights.models import AIInsight, ProductForecast
from stackims.insights.prompt_builder import PromptAssembler
from stackims.insights.query_hints import HINT_RULES, matching_rules, render_hints
from stackims.insights.signals import suspend_cache_signals


def json_response(payload, status_code=200):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f'{status_code} Error')
    else:
        response.raise_for_status.return_value = None
    return response


WEATHER_PAYLOAD = {'weather': [{'main': 'Rain'}], 'main': {'temp': 12.5}}
EXCHANGE_PAYLOAD = {
    'result': 'success',
    'time_last_update_utc': 'Mon, 01 Jan 2024 00:00:01 +0000',
    'conversion_rates': {'USD': 1, 'EUR': 0.92},
}


class ContextCacheTests(SimpleTestCase):
    """Test TTL cache semantics"""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = ContextCache(clock=self.clock)

    def test_set_then_get_returns_value_for_every_kind(self):
        for kind in ('inventory', 'external', 'user_specific'):
            value = {'kind': kind}
            self.cache.set(f'key_{kind}', value, kind)
            self.assertIs(self.cache.get(f'key_{kind}'), value)

    def test_unknown_kind_raises(self):
        with self.assertRaises(ValueError):
            self.cache.set('key', 1, 'forever')

    def test_missing_key_returns_none(self):
        self.assertIsNone(self.cache.get('nothing'))

    def test_entry_valid_up_to_ttl(self):
        self.cache.set('key', 'value', 'inventory')
        self.clock.advance(300)
        self.assertEqual(self.cache.get('key'), 'value')

    def test_entry_expires_after_ttl(self):
        self.cache.set('key', 'value', 'inventory')
        self.clock.advance(301)
        self.assertIsNone(self.cache.get('key'))

    def test_expired_entry_stays_in_memory_until_read(self):
        self.cache.set('key', 'value', 'user_specific')
        self.clock.advance(121)
        stats = self.cache.get_stats()
        self.assertEqual(stats['total_entries'], 1)
        self.assertEqual(stats['expired_entries'], 1)

        self.assertIsNone(self.cache.get('key'))
        self.assertEqual(self.cache.get_stats()['total_entries'], 0)

    def test_ttl_by_kind(self):
        self.cache.set('inv', 1, 'inventory')
        self.cache.set('ext', 2, 'external')
        self.cache.set('usr', 3, 'user_specific')
        self.clock.advance(200)
        self.assertIsNone(self.cache.get('usr'))
        self.assertEqual(self.cache.get('inv'), 1)
        self.clock.advance(200)
        self.assertIsNone(self.cache.get('inv'))
        self.assertEqual(self.cache.get('ext'), 2)
        self.clock.advance(501)
        self.assertIsNone(self.cache.get('ext'))

    def test_set_overwrites_and_restarts_ttl(self):
        self.cache.set('key', 'old', 'inventory')
        self.clock.advance(200)
        self.cache.set('key', 'new', 'inventory')
        self.clock.advance(200)
        self.assertEqual(self.cache.get('key'), 'new')

    def test_invalidate(self):
        self.cache.set('key', 'value', 'external')
        self.cache.invalidate('key')
        self.assertIsNone(self.cache.get('key'))
        # Invalidating a missing key is a no-op
        self.cache.invalidate('key')

    def test_invalidate_pattern_removes_exactly_matching_keys(self):
        for key in ('inventory_context', 'inventory_summary', 'external_context', 'user_context_1'):
            self.cache.set(key, key, 'inventory')

        removed = self.cache.invalidate_pattern('^inventory_')

        self.assertEqual(removed, 2)
        self.assertIsNone(self.cache.get('inventory_context'))
        self.assertIsNone(self.cache.get('inventory_summary'))
        self.assertEqual(self.cache.get('external_context'), 'external_context')
        self.assertEqual(self.cache.get('user_context_1'), 'user_context_1')

    def test_invalidate_pattern_searches_anywhere_in_key(self):
        self.cache.set('user_context_12', 1, 'user_specific')
        self.cache.set('user_context_3', 2, 'user_specific')
        self.assertEqual(self.cache.invalidate_pattern(r'context_1\d'), 1)
        self.assertEqual(self.cache.get('user_context_3'), 2)

    def test_clear(self):
        self.cache.set('a', 1)
        self.cache.set('b', 2, 'external')
        self.cache.clear()
        self.assertEqual(self.cache.get_stats()['total_entries'], 0)

    def test_get_with_stats_counts_hits_and_misses(self):
        self.cache.set('key', 'value')
        self.cache.get_with_stats('key')
        self.cache.get_with_stats('key')
        self.cache.get_with_stats('other')

        stats = self.cache.get_stats()
        self.assertEqual(stats['hits'], 2)
        self.assertEqual(stats['misses'], 1)
        self.assertAlmostEqual(stats['cache_hit_rate'], 2 / 3)

    def test_hit_rate_without_lookups_is_zero(self):
        self.assertEqual(self.cache.get_stats()['cache_hit_rate'], 0)

    def test_memory_usage_estimate(self):
        self.assertEqual(self.cache.get_stats()['memory_usage'], 0)
        self.cache.set('key', {'a': 'b' * 100})
        self.assertGreater(self.cache.get_stats()['memory_usage'], 100)

    def test_memory_usage_handles_context_objects(self):
        self.cache.set(INVENTORY_CONTEXT_KEY, InventoryContext())
        self.assertGreater(self.cache.get_stats()['memory_usage'], 0)

    def test_cleanup_expired(self):
        self.cache.set('short', 1, 'user_specific')
        self.cache.set('long', 2, 'external')
        self.clock.advance(121)
        self.assertEqual(self.cache.cleanup_expired(), 1)
        self.assertEqual(self.cache.get_stats()['total_entries'], 1)

    def test_get_or_build_builds_on_miss_only(self):
        builder = mock.Mock(return_value={'built': True})
        first = self.cache.get_or_build('key', builder, 'inventory')
        second = self.cache.get_or_build('key', builder, 'inventory')
        self.assertIs(first, second)
        builder.assert_called_once_with()

    def test_get_or_build_rebuilds_after_expiry(self):
        builder = mock.Mock(side_effect=[1, 2])
        self.assertEqual(self.cache.get_or_build('key', builder, 'user_specific'), 1)
        self.clock.advance(121)
        self.assertEqual(self.cache.get_or_build('key', builder, 'user_specific'), 2)

    def test_get_or_build_concurrent_misses_build_once(self):
        cache = ContextCache()
        calls = []
        start = threading.Barrier(5)

        def builder():
            calls.append(1)
            time.sleep(0.05)
            return 'value'

        results = []

        def worker():
            start.wait()
            results.append(cache.get_or_build('shared', builder, 'inventory'))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, ['value'] * 5)

    def _build_in_background(self, invalidate):
        """Run get_or_build on a thread, call invalidate() while its builder is running"""
        started = threading.Event()
        release = threading.Event()
        results = []

        def builder():
            started.set()
            release.wait(5)
            return 'snapshot'

        worker = threading.Thread(
            target=lambda: results.append(self.cache.get_or_build(INVENTORY_CONTEXT_KEY, builder, 'inventory'))
        )
        worker.start()
        self.assertTrue(started.wait(5))
        invalidate()
        release.set()
        worker.join(5)
        self.assertFalse(worker.is_alive())
        return results

    def test_pattern_invalidation_during_build_discards_result(self):
        results = self._build_in_background(lambda: self.cache.invalidate_pattern('inventory_'))

        self.assertEqual(results, ['snapshot'])
        self.assertIsNone(self.cache.get(INVENTORY_CONTEXT_KEY))

    def test_key_invalidation_during_build_discards_result(self):
        results = self._build_in_background(lambda: self.cache.invalidate(INVENTORY_CONTEXT_KEY))

        self.assertEqual(results, ['snapshot'])
        self.assertIsNone(self.cache.get(INVENTORY_CONTEXT_KEY))

    def test_clear_during_build_discards_result(self):
        self._build_in_background(self.cache.clear)
        self.assertIsNone(self.cache.get(INVENTORY_CONTEXT_KEY))

    def test_build_after_invalidation_is_stored(self):
        self._build_in_background(lambda: self.cache.invalidate_pattern('inventory_'))

        self.assertEqual(self.cache.get_or_build(INVENTORY_CONTEXT_KEY, lambda: 'fresh', 'inventory'), 'fresh')
        self.assertEqual(self.cache.get(INVENTORY_CONTEXT_KEY), 'fresh')

    def test_invalidating_other_key_keeps_build(self):
        self._build_in_background(lambda: self.cache.invalidate(EXTERNAL_CONTEXT_KEY))
        self.assertEqual(self.cache.get(INVENTORY_CONTEXT_KEY), 'snapshot')

    def test_invalidate_user_contexts(self):
        self.cache.set_user_context(1, 'a')
        self.cache.set_user_context(2, 'b')
        self.cache.set_inventory_context('inv')

        self.assertEqual(self.cache.invalidate_user_contexts(), 2)
        self.assertIsNone(self.cache.get_user_context(1))
        self.assertIsNone(self.cache.get_user_context(2))
        self.assertEqual(self.cache.get_inventory_context(), 'inv')

    def test_named_context_helpers(self):
        self.cache.set_inventory_context('inv')
        self.cache.set_external_context('ext')
        self.cache.set_user_context(7, {'role': 'ADMIN'})

        self.assertEqual(self.cache.get_inventory_context(), 'inv')
        self.assertEqual(self.cache.get_external_context(), 'ext')
        self.assertEqual(self.cache.get_user_context(7), {'role': 'ADMIN'})

        self.cache.invalidate_inventory_cache()
        self.assertIsNone(self.cache.get_inventory_context())
        self.assertEqual(self.cache.get_external_context(), 'ext')

        self.cache.invalidate_user_cache(7)
        self.assertIsNone(self.cache.get_user_context(7))

    def test_user_context_uses_user_specific_ttl(self):
        self.cache.set_user_context(1, 'x')
        self.clock.advance(121)
        self.assertIsNone(self.cache.get_user_context(1))


class FanoutTests(SimpleTestCase):
    """Test settle-all task fan-out"""

    def test_inline_fanout_settles_every_task(self):
        def fail():
            raise RuntimeError('boom')

        results = run_all({'ok': lambda: 1, 'bad': fail}, max_workers=1)
        self.assertTrue(results['ok'].ok)
        self.assertEqual(results['ok'].value, 1)
        self.assertFalse(results['bad'].ok)
        self.assertEqual(results['bad'].error, 'boom')
        self.assertEqual(results['bad'].value_or([]), [])

    def test_fetch_result_value_or(self):
        self.assertEqual(FetchResult(name='x', value=3).value_or(0), 3)
        self.assertEqual(FetchResult(name='x', error='nope').value_or(0), 0)


class ThreadedFanoutTests(SimpleTestCase):
    """Test fan-out on the worker pool"""

    def test_pooled_fanout_settles_every_task(self):
        main_thread = threading.get_ident()
        rendezvous = threading.Barrier(2, timeout=5)

        def fail():
            raise RuntimeError('boom')

        def meet():
            rendezvous.wait()
            return threading.get_ident()

        with self.assertLogs('stackims.insights.fanout', level='WARNING'):
            results = run_all(
                {'ok': threading.get_ident, 'bad': fail, 'left': meet, 'right': meet},
                max_workers=4,
            )

        self.assertEqual(set(results), {'ok', 'bad', 'left', 'right'})
        self.assertFalse(results['bad'].ok)
        self.assertEqual(results['bad'].error, 'boom')
        for name in ('ok', 'left', 'right'):
            self.assertTrue(results[name].ok)
            self.assertNotEqual(results[name].value, main_thread)
        # Both halves of the barrier ran at the same time, on different workers
        self.assertNotEqual(results['left'].value, results['right'].value)

    def test_single_task_runs_inline(self):
        results = run_all({'only': threading.get_ident}, max_workers=4)
        self.assertEqual(results['only'].value, threading.get_ident())


class AnalysisTests(SimpleTestCase):
    """Test derived statistics"""

    def setUp(self):
        self.now = timezone.now()

    def test_health_score_all_zero_inputs(self):
        self.assertEqual(analysis.health_score(0, 0, 0, 0), 25)

    def test_health_score_is_bounded_integer(self):
        for critical in (0, 1, 5, 1000):
            for categories in (0, 3, 10, 500):
                for vendors in (0, 7, 20, 500):
                    for movements in (0, 20, 50, 500):
                        score = analysis.health_score(critical, categories, vendors, movements)
                        self.assertIsInstance(score, int)
                        self.assertGreaterEqual(score, 0)
                        self.assertLessEqual(score, 100)

    def test_health_score_maximum(self):
        self.assertEqual(analysis.health_score(0, 10, 20, 50), 100)

    def test_health_score_sub_scores_clamped(self):
        # stock levels bottom out at 0 instead of going negative
        self.assertEqual(analysis.health_score(10, 10, 20, 50), 75)

    def test_round_half_up(self):
        self.assertEqual(analysis.round_half_up(62.5), 63)
        self.assertEqual(analysis.round_half_up(66.666), 67)
        self.assertEqual(analysis.round_half_up(0.4), 0)

    def test_stock_health(self):
        self.assertEqual(analysis.stock_health(0, 10), 'HEALTHY')
        self.assertEqual(analysis.stock_health(2, 10), 'ATTENTION')
        self.assertEqual(analysis.stock_health(3, 10), 'CRITICAL')
        self.assertEqual(analysis.stock_health(4, 10), 'CRITICAL')
        self.assertEqual(analysis.stock_health(0, 0), 'HEALTHY')

    def test_vendor_reliability(self):
        self.assertEqual(analysis.vendor_reliability(0, 0), 100)
        self.assertEqual(analysis.vendor_reliability(2, 3), 67)
        self.assertEqual(analysis.vendor_reliability(1, 2), 50)
        self.assertEqual(analysis.vendor_reliability(0, 4), 0)

    def test_days_remaining(self):
        self.assertEqual(analysis.days_remaining(10, []), 30)
        self.assertEqual(analysis.days_remaining(10, [2, 3]), 4)
        self.assertEqual(analysis.days_remaining(10, [0, 0]), 30)

    def test_average_daily_usage(self):
        self.assertEqual(analysis.average_daily_usage([]), 0)
        self.assertEqual(analysis.average_daily_usage([1, 2, 3]), 2)

    def test_movement_impact(self):
        self.assertEqual(analysis.movement_impact(-5, Decimal('10.00'), 100), 'LOW')
        self.assertEqual(analysis.movement_impact(-20, Decimal('10.00'), 1000), 'MEDIUM')
        self.assertEqual(analysis.movement_impact(-15, Decimal('1.00'), 100), 'MEDIUM')
        self.assertEqual(analysis.movement_impact(-60, Decimal('1.00'), 100), 'HIGH')
        self.assertEqual(analysis.movement_impact(200, Decimal('6.00'), 10000), 'HIGH')
        self.assertEqual(analysis.movement_impact(1, Decimal('1.00'), 0), 'HIGH')

    def test_order_urgency(self):
        old = self.now - timedelta(days=4)
        self.assertEqual(analysis.order_urgency('PENDING_APPROVAL', old, None, 10, self.now), 'HIGH')
        self.assertEqual(analysis.order_urgency('PENDING_APPROVAL', self.now, None, 10, self.now), 'LOW')
        self.assertEqual(
            analysis.order_urgency('ORDERED', old, self.now - timedelta(days=1), 10, self.now), 'HIGH'
        )
        self.assertEqual(analysis.order_urgency('DRAFT', self.now, None, Decimal('6000'), self.now), 'MEDIUM')

    def test_stockout_recommendation(self):
        self.assertTrue(
            analysis.stockout_recommendation(self.now + timedelta(days=5), self.now).startswith('URGENT')
        )
        self.assertTrue(
            analysis.stockout_recommendation(self.now + timedelta(days=10), self.now).startswith('HIGH PRIORITY')
        )
        self.assertTrue(
            analysis.stockout_recommendation(self.now + timedelta(days=20), self.now).startswith('PLANNED')
        )

    def test_demand_spikes(self):
        categories = [
            {'name': 'Tools', 'monthly_growth': 6, 'total_value': 0},
            {'name': 'Paint', 'monthly_growth': 5, 'total_value': 0},
            {'name': 'Garden', 'monthly_growth': 20, 'total_value': 0},
        ]
        spikes = analysis.demand_spikes(categories, self.now)
        self.assertEqual([s['category'] for s in spikes], ['Tools', 'Garden'])
        self.assertEqual(spikes[0]['confidence'], 72)
        self.assertEqual(spikes[1]['confidence'], 85)
        self.assertEqual(spikes[0]['expected_date'], (self.now + timedelta(days=14)).date().isoformat())

    def test_cost_optimizations(self):
        vendors = [{'reliability': 50}, {'reliability': 70}, {'reliability': 90}]
        categories = [{'total_value': 20000.0}, {'total_value': 500.0}]
        optimizations = analysis.cost_optimizations(vendors, categories)
        self.assertEqual(optimizations[0]['area'], 'Vendor Optimization')
        self.assertEqual(optimizations[0]['potential_savings'], 1000.0)
        self.assertEqual(optimizations[1]['area'], 'Bulk Purchase Discounts')
        self.assertAlmostEqual(optimizations[1]['potential_savings'], 1000.0)

    def test_cost_optimizations_empty(self):
        self.assertEqual(analysis.cost_optimizations([{'reliability': 100}], [{'total_value': 10}]), [])

    def test_feature_usage(self):
        actions = ['PRODUCT_CREATED', 'PRODUCT_UPDATED', 'USER_LOGIN', 'SOMETHING_ELSE']
        self.assertEqual(analysis.most_used_features(actions)[0], 'Product Management')
        self.assertEqual(analysis.action_to_feature('SOMETHING_ELSE'), 'General Activity')
        self.assertEqual(analysis.most_frequent(['a', 'b', 'b']), 'b')
        self.assertIsNone(analysis.most_frequent([]))

    def test_peak_usage_hours(self):
        stamps = [
            timezone.make_aware(datetime(2024, 1, 1, 9, 15)),
            timezone.make_aware(datetime(2024, 1, 2, 9, 45)),
            timezone.make_aware(datetime(2024, 1, 2, 14, 5)),
        ]
        self.assertEqual(analysis.peak_usage_hours(stamps), ['9:00-9:59', '14:00-14:59'])

    def test_seasons(self):
        self.assertEqual(analysis.season_for(datetime(2024, 4, 1)), 'Spring')
        self.assertEqual(analysis.season_for(datetime(2024, 7, 1)), 'Summer')
        self.assertEqual(analysis.season_for(datetime(2024, 10, 1)), 'Fall')
        self.assertEqual(analysis.season_for(datetime(2024, 1, 1)), 'Winter')
        self.assertEqual(analysis.retail_season(datetime(2024, 12, 1)), 'Holiday/Winter Shopping Season')
        self.assertEqual(analysis.retail_season(datetime(2024, 9, 1)), 'Back-to-School/Fall Preparation')
        self.assertIn('Back-to-school', analysis.demand_forecast(datetime(2024, 9, 1)))
        self.assertIn('spring cleaning', analysis.demand_forecast(datetime(2024, 4, 1)))

    def test_weather_impact(self):
        self.assertIn('indoor', analysis.weather_impact('Snow', 'Winter'))
        self.assertIn('cooling', analysis.weather_impact('Clear', 'Summer'))
        self.assertIn('heating', analysis.weather_impact('Clouds', 'Winter'))
        self.assertEqual(analysis.weather_impact('Clouds', 'Spring'), 'Normal seasonal patterns expected')

    def test_market_trend(self):
        self.assertEqual(analysis.market_trend(0.95), 'Strong USD - good for imports')
        self.assertEqual(analysis.market_trend(0.75), 'Weak USD - focus on domestic suppliers')
        self.assertEqual(analysis.market_trend(0.85), 'Stable currency - normal operations')

    def test_role_capabilities(self):
        self.assertIn('Full system access', analysis.role_capabilities('SUPER_ADMIN'))
        self.assertEqual(analysis.role_capabilities('GUEST'), analysis.role_capabilities('USER'))


class InventoryContextBuilderTests(TestCase):
    """Test the inventory context builder against the database"""

    def setUp(self):
        django_cache.clear()
        self.now = timezone.now()
        self.clock = FakeClock()
        self.cache = ContextCache(clock=self.clock)
        self.builder = InventoryContextBuilder(self.cache, max_workers=1, now=lambda: self.now)
        self.user = TestDataFactory.create_user(username='ops', first_name='Olive', role='ADMIN')

    def test_empty_database_builds_context(self):
        context = self.builder.build()
        self.assertFalse(context.degraded)
        self.assertEqual(context.failed_sections, [])
        self.assertEqual(context.overview['total_products'], 0)
        self.assertEqual(context.overview['health_score'], 25)
        self.assertEqual(context.vendor_performance, [])

    def test_default_thresholds(self):
        self.assertEqual(self.builder.thresholds(), (10, 2))

    def test_thresholds_from_settings(self):
        TestDataFactory.create_setting('globalLowStockThreshold', '20')
        TestDataFactory.create_setting('criticalStockThreshold', '5')
        self.assertEqual(self.builder.thresholds(), (20, 5))

    def test_stock_alerts(self):
        category = TestDataFactory.create_category(name='Fasteners')
        critical = TestDataFactory.create_product(name='Bolt', quantity=1, category=category)
        TestDataFactory.create_product(name='Nut', quantity=5, category=category)
        TestDataFactory.create_product(name='Washer', quantity=50, category=category)
        TestDataFactory.create_usage(critical, [2, 2, 2])

        context = self.builder.build()

        self.assertEqual(context.overview['total_products'], 3)
        self.assertEqual(context.overview['critical_stock_count'], 1)
        self.assertEqual(context.overview['low_stock_count'], 1)
        alert = context.stock_alerts['critical'][0]
        self.assertEqual(alert['name'], 'Bolt')
        self.assertEqual(alert['days_remaining'], 1)
        self.assertEqual(alert['category'], 'Fasteners')
        self.assertEqual(context.stock_alerts['low_stock'][0]['name'], 'Nut')

    def test_category_with_forty_percent_low_stock_is_critical(self):
        category = TestDataFactory.create_category(name='Hardware')
        for _ in range(4):
            TestDataFactory.create_product(quantity=5, category=category)
        for _ in range(6):
            TestDataFactory.create_product(quantity=50, category=category)

        context = self.builder.build()

        performance = context.category_performance[0]
        self.assertEqual(performance['name'], 'Hardware')
        self.assertEqual(performance['product_count'], 10)
        self.assertEqual(performance['low_stock_count'], 4)
        self.assertEqual(performance['stock_health'], 'CRITICAL')

    def test_category_without_low_stock_is_healthy(self):
        category = TestDataFactory.create_category(name='Paint')
        TestDataFactory.create_product(quantity=100, price=Decimal('5.00'), category=category)

        context = self.builder.build()
        performance = context.category_performance[0]
        self.assertEqual(performance['stock_health'], 'HEALTHY')
        self.assertEqual(performance['total_value'], 500.0)
        self.assertEqual(context.overview['estimated_total_value'], 500.0)

    def test_category_performance_sorted_by_value(self):
        small = TestDataFactory.create_category(name='Small')
        large = TestDataFactory.create_category(name='Large')
        TestDataFactory.create_product(quantity=20, price=Decimal('1.00'), category=small)
        TestDataFactory.create_product(quantity=20, price=Decimal('100.00'), category=large)

        context = self.builder.build()
        self.assertEqual([c['name'] for c in context.category_performance], ['Large', 'Small'])

    def test_vendor_without_orders_is_fully_reliable(self):
        vendor = TestDataFactory.create_vendor(name='Quiet Supply')
        TestDataFactory.create_product(vendor=vendor, lead_time=4)

        context = self.builder.build()

        performance = context.vendor_performance[0]
        self.assertEqual(performance['order_count'], 0)
        self.assertEqual(performance['reliability'], 100)
        self.assertEqual(performance['average_lead_time'], 4)
        self.assertIsNone(performance['last_order_date'])

    def test_vendor_recent_products_capped_and_last_order_newest(self):
        vendor = TestDataFactory.create_vendor(name='Bulk Co')
        for _ in range(7):
            TestDataFactory.create_product(vendor=vendor, lead_time=2)
        TestDataFactory.create_purchase_order(vendor, status='ORDERED', created_at=self.now - timedelta(days=9))
        newest = TestDataFactory.create_purchase_order(vendor, status='ORDERED', created_at=self.now - timedelta(days=1))
        TestDataFactory.create_purchase_order(vendor, status='DRAFT', created_at=self.now - timedelta(days=4))

        context = self.builder.build()

        performance = context.vendor_performance[0]
        self.assertEqual(performance['product_count'], 7)
        self.assertEqual(len(performance['recent_products']), 5)
        self.assertEqual(performance['average_lead_time'], 2)
        self.assertEqual(performance['last_order_date'], newest.created_at.isoformat())

    def test_stock_alert_usage_limited_to_recent_history(self):
        product = TestDataFactory.create_product(name='Pin', quantity=1)
        TestDataFactory.create_usage(product, [3] * 30 + [99] * 5)

        rows = self.builder._tasks(self.now, 10, 2)['critical_stock']()

        self.assertEqual(rows[0]['name'], 'Pin')
        self.assertEqual(rows[0]['usage'], [3] * 30)

    def test_query_count_independent_of_vendor_and_alert_count(self):
        def add_vendor(name):
            vendor = TestDataFactory.create_vendor(name=name)
            critical = TestDataFactory.create_product(quantity=1, vendor=vendor, lead_time=3)
            low = TestDataFactory.create_product(quantity=5, vendor=vendor)
            TestDataFactory.create_usage(critical, [1, 2, 3])
            TestDataFactory.create_usage(low, [1])
            TestDataFactory.create_purchase_order(vendor, status='ORDERED')

        def queries_for_build():
            with CaptureQueriesContext(connection) as queries:
                self.builder.build(force_refresh=True)
            return len(queries)

        add_vendor('First')
        self.builder.thresholds()
        baseline = queries_for_build()

        for i in range(4):
            add_vendor(f'Extra {i}')
        self.builder.thresholds()

        self.assertEqual(queries_for_build(), baseline)

    def test_vendor_reliability_counts_on_time_receipts(self):
        vendor = TestDataFactory.create_vendor(name='Acme')
        expected = self.now - timedelta(days=2)
        TestDataFactory.create_purchase_order(
            vendor, status='RECEIVED', expected_date=expected, received_at=expected - timedelta(days=1)
        )
        TestDataFactory.create_purchase_order(
            vendor, status='RECEIVED', expected_date=expected, received_at=expected
        )
        TestDataFactory.create_purchase_order(
            vendor, status='RECEIVED', expected_date=expected, received_at=expected + timedelta(days=1)
        )
        TestDataFactory.create_purchase_order(vendor, status='ORDERED', expected_date=self.now + timedelta(days=3))

        context = self.builder.build()

        performance = next(v for v in context.vendor_performance if v['name'] == 'Acme')
        self.assertEqual(performance['order_count'], 4)
        self.assertEqual(performance['reliability'], 50)
        self.assertIsNotNone(performance['last_order_date'])

    def test_recent_activity(self):
        product = TestDataFactory.create_product(name='Drill', quantity=50, price=Decimal('10.00'))
        TestDataFactory.create_movement(product, -30, 'SALE', user=self.user, reason='Bulk sale')
        vendor = TestDataFactory.create_vendor(name='Slow Co')
        TestDataFactory.create_purchase_order(
            vendor, status='PENDING_APPROVAL', total_amount='120.00',
            created_at=self.now - timedelta(days=5)
        )
        TestDataFactory.create_insight(content='Reorder drills', confidence=0.9, user=self.user)

        context = self.builder.build()

        movement = context.recent_activity['movements'][0]
        self.assertEqual(movement['impact'], 'HIGH')
        self.assertEqual(movement['user'], 'Olive')
        self.assertEqual(context.overview['monthly_usage_value'], 300.0)
        order = context.recent_activity['orders'][0]
        self.assertEqual(order['vendor'], 'Slow Co')
        self.assertEqual(order['urgency'], 'HIGH')
        insight = context.recent_activity['ai_insights'][0]
        self.assertEqual(insight['confidence'], 90)
        self.assertFalse(insight['applied'])

    def test_user_behavior(self):
        other = TestDataFactory.create_user(username='bob')
        for _ in range(3):
            TestDataFactory.create_activity(self.user, action='PRODUCT_UPDATED')
        TestDataFactory.create_activity(self.user, action='USER_LOGIN')
        TestDataFactory.create_activity(other, action='ORDER_CREATED')
        TestDataFactory.create_activity(other, action='ORDER_CREATED', created_at=self.now - timedelta(days=10))

        context = self.builder.build()

        users = context.user_behavior['most_active_users']
        self.assertEqual(users[0]['name'], 'Olive')
        self.assertEqual(users[0]['recent_actions'], 4)
        self.assertEqual(users[0]['focus'], 'PRODUCT_UPDATED')
        self.assertEqual(users[1]['name'], 'bob')
        self.assertEqual(users[1]['recent_actions'], 1)
        usage = context.user_behavior['system_usage']
        self.assertEqual(usage['daily_active_users'], 0)
        self.assertEqual(usage['most_used_features'][0], 'Product Management')

    def test_predictions(self):
        category = TestDataFactory.create_category(name='Busy')
        product = TestDataFactory.create_product(name='Glue', quantity=40, category=category)
        for _ in range(6):
            TestDataFactory.create_movement(product, -1, 'SALE')
        TestDataFactory.create_forecast(product, self.now + timedelta(days=5), confidence=0.9)
        TestDataFactory.create_forecast(product, self.now + timedelta(days=6), confidence=0.5)

        context = self.builder.build()

        stockouts = context.predictions['stockouts']
        self.assertEqual(len(stockouts), 1)
        self.assertEqual(stockouts[0]['product'], 'Glue')
        self.assertEqual(stockouts[0]['confidence'], 90)
        self.assertTrue(stockouts[0]['recommendation'].startswith('URGENT'))
        spikes = context.predictions['demand_spikes']
        self.assertEqual(spikes[0]['category'], 'Busy')
        self.assertEqual(spikes[0]['confidence'], 72)

    def test_expiring_soon(self):
        TestDataFactory.create_product(name='Milk', expiration_date=self.now + timedelta(days=3))
        TestDataFactory.create_product(name='Cheese', expiration_date=self.now + timedelta(days=90))

        context = self.builder.build()

        expiring = context.stock_alerts['expiring_soon']
        self.assertEqual([p['name'] for p in expiring], ['Milk'])
        self.assertEqual(expiring[0]['days_until_expiry'], 3)

    def test_cache_scenario_hit_within_ttl_and_rebuild_after(self):
        TestDataFactory.create_product(quantity=1)

        first = self.builder.build()
        self.clock.advance(4 * 60)
        with self.assertNumQueries(0):
            second = self.builder.build()
        self.assertIs(second, first)

        self.clock.advance(2 * 60)
        third = self.builder.build()
        self.assertIsNot(third, first)
        self.assertEqual(third.overview, first.overview)

    def test_force_refresh_rebuilds(self):
        first = self.builder.build()
        second = self.builder.build(force_refresh=True)
        self.assertIsNot(first, second)

    def test_failed_query_degrades_section(self):
        TestDataFactory.create_product(name='Hammer', quantity=1)
        with mock.patch.object(AIInsight.objects, 'order_by', side_effect=DatabaseError('no such table')):
            with self.assertLogs('stackims.insights', level='WARNING'):
                context = self.builder.build()

        self.assertTrue(context.degraded)
        self.assertEqual(context.failed_sections, ['insights'])
        self.assertEqual(context.recent_activity['ai_insights'], [])
        self.assertEqual(context.overview['total_products'], 1)
        self.assertEqual(context.stock_alerts['critical'][0]['name'], 'Hammer')

    def test_derivation_failure_returns_empty_degraded_context(self):
        with mock.patch.object(InventoryContextBuilder, '_assemble', side_effect=ValueError('bad data')):
            with self.assertLogs('stackims.insights.inventory_context', level='ERROR'):
                context = self.builder.build()

        self.assertIsInstance(context, InventoryContext)
        self.assertTrue(context.degraded)
        self.assertTrue(context.is_empty)
        self.assertIsNone(context.overview['health_score'])
        # Degraded contexts are cached like any other
        self.assertIs(self.cache.get(INVENTORY_CONTEXT_KEY), context)

    def test_context_is_json_serializable(self):
        category = TestDataFactory.create_category()
        vendor = TestDataFactory.create_vendor()
        product = TestDataFactory.create_product(category=category, vendor=vendor, quantity=2,
                                                 expiration_date=self.now + timedelta(days=1))
        TestDataFactory.create_movement(product, -1, user=self.user)
        TestDataFactory.create_purchase_order(vendor, status='ORDERED', expected_date=self.now)
        TestDataFactory.create_activity(self.user)

        payload = json.dumps(self.builder.build().to_dict())
        self.assertIn('health_score', payload)


@override_settings(WEATHER_API_KEY='', EXCHANGE_RATE_API_KEY='', WEATHER_CITY='Springfield')
class ExternalContextBuilderTests(TestCase):
    """Test third-party lookups with a mocked HTTP session"""

    def setUp(self):
        django_cache.clear()
        self.now = timezone.make_aware(datetime(2024, 7, 15, 12, 0))
        self.clock = FakeClock()
        self.cache = ContextCache(clock=self.clock)
        self.session = mock.Mock()
        self.builder = ExternalContextBuilder(
            self.cache, session=self.session, timeout=2.5, max_workers=1, now=lambda: self.now
        )

    @override_settings(EXCHANGE_RATE_API_KEY='rate-key')
    def test_weather_key_unset_other_fields_still_populate(self):
        user = TestDataFactory.create_user()
        TestDataFactory.create_activity(user)
        self.session.get.return_value = json_response(EXCHANGE_PAYLOAD)

        context = self.builder.build()

        self.assertIsNone(context.weather)
        self.assertEqual(context.economic['usd_rate'], 0.92)
        self.assertEqual(context.economic['market_trend'], 'Strong USD - good for imports')
        self.assertEqual(context.system_health['active_users'], 1)
        self.assertEqual(context.system_health['db_performance'], 'Optimal')
        self.assertFalse(context.degraded)
        self.session.get.assert_called_once_with(
            EXCHANGE_RATE_URL.format(api_key='rate-key'), params=None, timeout=2.5
        )

    def test_no_keys_makes_no_requests(self):
        context = self.builder.build()
        self.assertIsNone(context.weather)
        self.assertIsNone(context.economic)
        self.session.get.assert_not_called()
        self.assertEqual(context.industry['retail_season'], 'Summer Season')
        self.assertEqual(len(context.industry['market_trends']), 6)

    @override_settings(WEATHER_API_KEY='weather-key', EXCHANGE_RATE_API_KEY='rate-key')
    def test_both_sources_populate(self):
        def fake_get(url, params=None, timeout=None):
            return json_response(WEATHER_PAYLOAD if url == WEATHER_URL else EXCHANGE_PAYLOAD)

        self.session.get.side_effect = fake_get
        context = self.builder.build()

        self.assertEqual(context.weather['condition'], 'Rain')
        self.assertEqual(context.weather['temp'], 12.5)
        self.assertEqual(context.weather['season'], 'Summer')
        self.assertEqual(context.weather['city'], 'Springfield')
        self.assertIn('indoor', context.weather['impact'])
        self.assertEqual(context.economic['last_updated'], EXCHANGE_PAYLOAD['time_last_update_utc'])
        weather_call = [c for c in self.session.get.call_args_list if c.args[0] == WEATHER_URL][0]
        self.assertEqual(weather_call.kwargs['params']['q'], 'Springfield')
        self.assertEqual(weather_call.kwargs['timeout'], 2.5)

    @override_settings(WEATHER_API_KEY='weather-key', EXCHANGE_RATE_API_KEY='rate-key')
    def test_timeout_leaves_field_empty(self):
        def fake_get(url, params=None, timeout=None):
            if url == WEATHER_URL:
                raise requests.exceptions.Timeout('slow')
            return json_response(EXCHANGE_PAYLOAD)

        self.session.get.side_effect = fake_get
        with self.assertLogs('stackims.insights', level='WARNING'):
            context = self.builder.build()

        self.assertIsNone(context.weather)
        self.assertIsNotNone(context.economic)
        self.assertTrue(context.degraded)
        self.assertEqual(context.failed_sections, ['weather'])

    @override_settings(EXCHANGE_RATE_API_KEY='rate-key')
    def test_non_2xx_leaves_field_empty(self):
        self.session.get.return_value = json_response({'result': 'error'}, status_code=503)
        with self.assertLogs('stackims.insights', level='WARNING'):
            context = self.builder.build()
        self.assertIsNone(context.economic)
        self.assertEqual(context.failed_sections, ['economic'])

    @override_settings(EXCHANGE_RATE_API_KEY='bad-key')
    def test_api_error_payload_leaves_field_empty(self):
        self.session.get.return_value = json_response({'result': 'error', 'error-type': 'invalid-key'})
        with self.assertLogs('stackims.insights', level='WARNING'):
            context = self.builder.build()
        self.assertIsNone(context.economic)

    @override_settings(EXCHANGE_RATE_API_KEY='rate-key')
    def test_failures_are_not_retried_until_expiry(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError('down')
        with self.assertLogs('stackims.insights', level='WARNING'):
            self.builder.build()
        self.builder.build()
        self.assertEqual(self.session.get.call_count, 1)

        self.clock.advance(901)
        with self.assertLogs('stackims.insights', level='WARNING'):
            self.builder.build()
        self.assertEqual(self.session.get.call_count, 2)

    def test_system_health_reads_backup_setting(self):
        TestDataFactory.create_setting('lastBackupTime', '2024-07-15T02:00:00Z', category='backup')
        context = self.builder.build()
        self.assertEqual(context.system_health['last_backup'], '2024-07-15T02:00:00Z')

    def test_system_health_counts_only_recent_activity(self):
        recent = TestDataFactory.create_user()
        stale = TestDataFactory.create_user()
        TestDataFactory.create_activity(recent, created_at=self.now - timedelta(hours=2))
        TestDataFactory.create_activity(recent, created_at=self.now - timedelta(hours=3))
        TestDataFactory.create_activity(stale, created_at=self.now - timedelta(days=2))

        context = self.builder.build()
        self.assertEqual(context.system_health['active_users'], 1)

    def test_result_cached_under_external_key(self):
        context = self.builder.build()
        self.assertIs(self.cache.get(EXTERNAL_CONTEXT_KEY), context)
        self.clock.advance(600)
        self.assertIs(self.builder.build(), context)


class QueryHintTests(SimpleTestCase):
    """Test the hint rule table"""

    def test_rules_evaluated_in_table_order(self):
        names = [rule.name for rule in matching_rules('Vendor cost of critical stock')]
        self.assertEqual(names, ['critical', 'reorder', 'vendor_reliability', 'financial'])

    def test_rule_names(self):
        self.assertEqual(
            [rule.name for rule in HINT_RULES],
            ['critical', 'reorder', 'category', 'vendor_reliability', 'financial', 'trend',
             'expiration', 'user_activity'],
        )

    def test_unrelated_query_matches_nothing(self):
        self.assertEqual(matching_rules('tell me a joke'), [])
        self.assertEqual(render_hints('tell me a joke', None), [])

    def test_rules_render_without_context(self):
        for rule in HINT_RULES:
            lines = rule.render(None)
            self.assertTrue(lines)

    def test_critical_hint_lists_items(self):
        context = InventoryContext()
        context.stock_alerts['critical'] = [
            {'name': 'Bolt', 'quantity': 1, 'days_remaining': 2},
        ]
        lines = render_hints('URGENT help', context)
        self.assertEqual(lines[0], 'CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION: 1 products critically low')
        self.assertIn('Bolt: 1 units, 2 days remaining', lines[1])

    def test_vendor_hint_flags_unreliable_vendors(self):
        context = InventoryContext()
        context.vendor_performance = [
            {'name': 'Acme', 'product_count': 3, 'reliability': 60},
            {'name': 'Best', 'product_count': 1, 'reliability': 100},
        ]
        text = '\n'.join(render_hints('which supplier?', context))
        self.assertIn('VENDOR RELIABILITY: 2 vendors tracked', text)
        self.assertIn('Acme (60%)', text)
        self.assertIn('Primary vendor: Acme', text)


@override_settings(WEATHER_API_KEY='', EXCHANGE_RATE_API_KEY='')
class PromptAssemblerTests(TestCase):
    """Test prompt rendering"""

    def setUp(self):
        django_cache.clear()
        cache = ContextCache(clock=FakeClock())
        self.assembler = PromptAssembler(
            InventoryContextBuilder(cache, max_workers=1),
            ExternalContextBuilder(cache, session=mock.Mock(), max_workers=1),
        )
        category = TestDataFactory.create_category(name='Fasteners')
        vendor = TestDataFactory.create_vendor(name='Acme')
        TestDataFactory.create_product(name='Bolt', quantity=1, category=category, vendor=vendor)

    def test_prompt_structure(self):
        prompt = self.assembler.build('ADMIN')
        for heading in ('SYSTEM INFORMATION:', 'INVENTORY OVERVIEW:', 'CRITICAL ALERTS',
                        'CATEGORY PERFORMANCE ANALYSIS:', 'VENDOR RELATIONSHIP STATUS:',
                        'PREDICTIVE ANALYTICS:', 'USER ACTIVITY INSIGHTS:',
                        'EXTERNAL CONTEXT & MARKET CONDITIONS:', 'USER CAPABILITIES (ADMIN):',
                        'AVAILABLE AI FEATURES:'):
            self.assertIn(heading, prompt)
        self.assertIn('- Bolt: Only 1 units left', prompt)
        self.assertIn('- User Role: ADMIN', prompt)
        self.assertIn(analysis.role_capabilities('ADMIN'), prompt)
        self.assertNotIn('QUERY-SPECIFIC CONTEXT', prompt)

    def test_critical_query_adds_critical_hint(self):
        prompt = self.assembler.build('USER', query='what is critical')
        self.assertIn('QUERY-SPECIFIC CONTEXT:', prompt)
        self.assertIn('CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION: 1 products critically low', prompt)
        self.assertNotIn('VENDOR RELIABILITY:', prompt)

    def test_vendor_query_adds_vendor_hint(self):
        prompt = self.assembler.build('USER', query='vendor reliability')
        self.assertIn('VENDOR RELIABILITY: 1 vendors tracked', prompt)
        self.assertNotIn('CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION', prompt)

    def test_unrelated_query_adds_no_hints(self):
        prompt = self.assembler.build('USER', query='tell me a joke')
        self.assertNotIn('QUERY-SPECIFIC CONTEXT', prompt)

    def test_missing_contexts_render_unavailable(self):
        inventory = mock.Mock(max_workers=1)
        inventory.build.return_value = None
        external = mock.Mock(max_workers=1)
        external.build.side_effect = RuntimeError('down')
        assembler = PromptAssembler(inventory, external)

        with self.assertLogs('stackims.insights', level='WARNING'):
            prompt = assembler.build('VENDOR', query='critical')

        self.assertIn('Inventory data unavailable', prompt)
        self.assertIn('External data unavailable', prompt)
        self.assertIn('System Health Score: N/A/100', prompt)
        self.assertIn('CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION: 0 products', prompt)
        self.assertIn(analysis.role_capabilities('VENDOR'), prompt)

    def test_empty_context_renders_unavailable(self):
        inventory = mock.Mock(max_workers=1)
        inventory.build.return_value = InventoryContext.empty()
        assembler = PromptAssembler(inventory, self.assembler.external_builder)
        self.assertIn('Inventory data unavailable', assembler.build('USER'))

    def test_degraded_context_notes_missing_sections(self):
        context = InventoryContext(degraded=True, failed_sections=['movements'])
        context.overview.update({'health_score': 50})
        inventory = mock.Mock(max_workers=1)
        inventory.build.return_value = context
        assembler = PromptAssembler(inventory, self.assembler.external_builder)
        prompt = assembler.build('USER')
        self.assertIn('Data Completeness: partial (unavailable: movements)', prompt)
        self.assertIn('System Health Score: 50/100', prompt)


@override_settings(WEATHER_API_KEY='', EXCHANGE_RATE_API_KEY='')
class ThreadedContextBuildTests(TransactionTestCase):
    """Test context builds whose reads run on worker threads with their own connections"""

    def setUp(self):
        django_cache.clear()
        category = TestDataFactory.create_category(name='Fasteners')
        vendor = TestDataFactory.create_vendor(name='Acme')
        TestDataFactory.create_product(name='Bolt', quantity=1, category=category, vendor=vendor)
        TestDataFactory.create_product(name='Nut', quantity=5, category=category, vendor=vendor)

    def test_inventory_context_with_worker_pool(self):
        context = InventoryContextBuilder(ContextCache(), max_workers=4).build()

        self.assertFalse(context.degraded)
        self.assertEqual(context.failed_sections, [])
        self.assertEqual(context.overview['total_products'], 2)
        self.assertEqual(context.overview['critical_stock_count'], 1)
        self.assertEqual(context.overview['low_stock_count'], 1)
        self.assertEqual(context.vendor_performance[0]['name'], 'Acme')

    def test_prompt_with_worker_pool(self):
        cache = ContextCache()
        assembler = PromptAssembler(
            InventoryContextBuilder(cache, max_workers=8),
            ExternalContextBuilder(cache, session=mock.Mock(), max_workers=8),
        )

        prompt = assembler.build('ADMIN')

        self.assertIn('- Bolt: Only 1 units left', prompt)
        self.assertNotIn('Inventory data unavailable', prompt)
        self.assertNotIn('Data Completeness: partial', prompt)


class ForecastingTests(TestCase):
    """Test usage forecasting"""

    def setUp(self):
        self.now = timezone.now()
        self.product = TestDataFactory.create_product(name='Tape', quantity=20)

    def test_forecast_usage_needs_five_records(self):
        self.assertEqual(forecast_usage([1, 2, 3, 4], 30), (None, 0))

    def test_forecast_usage(self):
        predicted, confidence = forecast_usage([2] * 6, 30)
        self.assertEqual(predicted, 60)
        self.assertAlmostEqual(confidence, 0.2)

    def test_forecast_confidence_is_capped(self):
        _, confidence = forecast_usage([1] * 30, 7)
        self.assertEqual(confidence, 0.9)

    def test_generate_product_forecast_persists(self):
        TestDataFactory.create_usage(self.product, [2] * 6)

        summary = generate_product_forecast(self.product, days=30, now=self.now)

        self.assertEqual(summary['sample_size'], 6)
        self.assertEqual(summary['predicted_usage'], 60)
        forecast = ProductForecast.objects.get(pk=summary['forecast_id'])
        self.assertEqual(forecast.horizon_days, 30)
        self.assertAlmostEqual(forecast.confidence, 0.2)
        # 20 on hand at 2 per day
        self.assertEqual(forecast.forecast_date, self.now + timedelta(days=10))

    def test_movements_top_up_thin_history(self):
        TestDataFactory.create_usage(self.product, [3, 3])
        for _ in range(3):
            TestDataFactory.create_movement(self.product, -3, 'LOSS')
        TestDataFactory.create_movement(self.product, 10, 'PURCHASE')

        summary = generate_product_forecast(self.product, days=10, now=self.now)

        self.assertEqual(summary['sample_size'], 5)
        self.assertEqual(summary['predicted_usage'], 30)
        self.assertIsNotNone(summary['forecast_id'])

    def test_not_enough_history(self):
        TestDataFactory.create_usage(self.product, [1, 1])
        summary = generate_product_forecast(self.product, days=30, now=self.now)
        self.assertIsNone(summary['predicted_usage'])
        self.assertIsNone(summary['forecast_id'])
        self.assertEqual(ProductForecast.objects.count(), 0)


class CacheSignalTests(TestCase):
    """Test inventory context invalidation on writes"""

    def setUp(self):
        self.cache = get_context_cache()
        self.cache.clear()

    def test_product_save_invalidates_after_commit(self):
        self.cache.set_inventory_context('stale')
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            TestDataFactory.create_product()
        self.assertTrue(callbacks)
        self.assertIsNone(self.cache.get(INVENTORY_CONTEXT_KEY))

    def test_invalidation_waits_for_commit(self):
        self.cache.set_inventory_context('stale')
        with self.captureOnCommitCallbacks(execute=False):
            TestDataFactory.create_product()
            self.assertEqual(self.cache.get(INVENTORY_CONTEXT_KEY), 'stale')

    def test_external_context_untouched(self):
        self.cache.set_inventory_context('inv')
        self.cache.set_external_context('ext')
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_vendor()
        self.assertEqual(self.cache.get(EXTERNAL_CONTEXT_KEY), 'ext')

    def test_suspended_signals_keep_cache(self):
        self.cache.set_inventory_context('kept')
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with suspend_cache_signals():
                TestDataFactory.create_product()
        self.assertEqual(callbacks, [])
        self.assertEqual(self.cache.get(INVENTORY_CONTEXT_KEY), 'kept')

    def test_product_save_invalidates_cached_user_prompts(self):
        self.cache.set_user_context(1, {'role': 'USER', 'prompt': 'stale'})
        self.cache.set_user_context(2, {'role': 'ADMIN', 'prompt': 'stale'})
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_product()
        self.assertIsNone(self.cache.get_user_context(1))
        self.assertIsNone(self.cache.get_user_context(2))

    def test_untracked_model_does_not_invalidate(self):
        self.cache.set_inventory_context('kept')
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_user()
        self.assertEqual(self.cache.get(INVENTORY_CONTEXT_KEY), 'kept')


@override_settings(INSIGHTS_FANOUT_WORKERS=1, WEATHER_API_KEY='', EXCHANGE_RATE_API_KEY='')
class InsightsAPITests(TestCase):
    """Test insights endpoints"""

    def setUp(self):
        django_cache.clear()
        get_context_cache().clear()
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(role='MODERATOR')
        self.staff = TestDataFactory.create_user(role='ADMIN', is_staff=True)
        self.client.authenticate_user(self.user)
        self.product = TestDataFactory.create_product(name='Rope', quantity=1)

    def test_endpoints_require_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/insights/context/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_inventory_context(self):
        response = self.client.get('/api/v1/insights/context/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['overview']['total_products'], 1)
        self.assertFalse(response.data['degraded'])

    def test_inventory_context_is_cached_until_refresh(self):
        self.client.get('/api/v1/insights/context/')
        TestDataFactory.create_product()  # on_commit invalidation never fires inside the test transaction

        cached = self.client.get('/api/v1/insights/context/')
        self.assertEqual(cached.data['overview']['total_products'], 1)

        refreshed = self.client.get('/api/v1/insights/context/?refresh=1')
        self.assertEqual(refreshed.data['overview']['total_products'], 2)

    def test_inventory_context_unexpected_error(self):
        with mock.patch('stackims.insights.views.get_inventory_builder', side_effect=RuntimeError('boom')):
            with self.assertLogs('stackims.insights.views', level='ERROR'):
                response = self.client.get('/api/v1/insights/context/')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertIn('error', response.data)

    def test_external_context(self):
        response = self.client.get('/api/v1/insights/external-context/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['weather'])
        self.assertIn('retail_season', response.data['industry'])

    def test_prompt_uses_caller_role(self):
        response = self.client.post('/api/v1/insights/prompt/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], 'MODERATOR')
        self.assertIn('USER CAPABILITIES (MODERATOR):', response.data['prompt'])
        self.assertFalse(response.data['cached'])

        again = self.client.post('/api/v1/insights/prompt/', {}, format='json')
        self.assertTrue(again.data['cached'])
        self.assertEqual(again.data['prompt'], response.data['prompt'])

    def test_cached_prompt_rebuilt_after_inventory_write(self):
        self.client.post('/api/v1/insights/prompt/', {}, format='json')
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_product(name='Anchor', quantity=0)

        response = self.client.post('/api/v1/insights/prompt/', {}, format='json')
        self.assertFalse(response.data['cached'])
        self.assertIn('- Anchor: Only 0 units left', response.data['prompt'])

    def test_prompt_with_query(self):
        response = self.client.post('/api/v1/insights/prompt/', {'query': 'anything urgent?'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('CRITICAL ITEMS REQUIRE IMMEDIATE ATTENTION: 1 products', response.data['prompt'])
        self.assertFalse(response.data['cached'])

    def test_cache_stats_staff_only(self):
        response = self.client.get('/api/v1/insights/cache/stats/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.staff)
        self.client.get('/api/v1/insights/context/')
        response = self.client.get('/api/v1/insights/cache/stats/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['valid_entries'], 1)
        self.assertEqual(response.data['misses'], 1)

    def test_cache_invalidate_pattern(self):
        cache = get_context_cache()
        cache.set_inventory_context('inv')
        cache.set_external_context('ext')

        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/v1/insights/cache/invalidate/', {'pattern': '^inventory_'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['removed'], 1)
        self.assertIsNone(cache.get(INVENTORY_CONTEXT_KEY))
        self.assertEqual(cache.get(EXTERNAL_CONTEXT_KEY), 'ext')
        self.assertTrue(ActivityLog.objects.filter(action='CACHE_INVALIDATED', user=self.staff).exists())

    def test_cache_invalidate_everything(self):
        cache = get_context_cache()
        cache.set_inventory_context('inv')
        cache.set_external_context('ext')

        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/v1/insights/cache/invalidate/', {}, format='json')
        self.assertEqual(response.data['removed'], 2)
        self.assertEqual(cache.get_stats()['total_entries'], 0)

    def test_cache_invalidate_rejects_bad_pattern(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/v1/insights/cache/invalidate/', {'pattern': '(['}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cache_invalidate_staff_only(self):
        response = self.client.post('/api/v1/insights/cache/invalidate/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_save_insight(self):
        data = {
            'entity_type': 'PRODUCT',
            'entity_id': str(self.product.id),
            'insight_type': 'RECOMMENDATION',
            'content': 'Reorder rope before the weekend',
            'confidence': 0.8,
        }
        response = self.client.post('/api/v1/insights/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['created_by'], self.user.id)
        self.assertEqual(response.data['created_by_username'], self.user.username)
        self.assertTrue(ActivityLog.objects.filter(action='INSIGHT_SAVED', user=self.user).exists())

    def test_save_insight_validation(self):
        data = {'entity_type': 'PRODUCT', 'entity_id': '1', 'insight_type': 'ALERT',
                'content': 'x', 'confidence': 1.5}
        response = self.client.post('/api/v1/insights/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('confidence', response.data)

    def test_list_insights_with_filters(self):
        TestDataFactory.create_insight(insight_type='ALERT', entity_type='VENDOR', entity_id='3')
        TestDataFactory.create_insight(insight_type='TREND', applied=True)

        response = self.client.get('/api/v1/insights/?insight_type=ALERT')
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['entity_type'], 'VENDOR')
        self.assertIsNone(response.data[0]['created_by_username'])

        response = self.client.get('/api/v1/insights/?applied=true')
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['insight_type'], 'TREND')

    def test_list_insights_by_entity_and_confidence(self):
        TestDataFactory.create_insight(entity_type='VENDOR', entity_id='3', confidence=0.95)
        TestDataFactory.create_insight(entity_type='VENDOR', entity_id='4', confidence=0.95)
        TestDataFactory.create_insight(entity_type='VENDOR', entity_id='3', confidence=0.4)

        response = self.client.get('/api/v1/insights/?entity_type=VENDOR&entity_id=3&min_confidence=0.9')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['confidence'], 0.95)

    def test_list_insights_rejects_bad_filter(self):
        response = self.client.get('/api/v1/insights/?min_confidence=high')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_generate_forecast(self):
        TestDataFactory.create_usage(self.product, [1] * 10)
        response = self.client.post(
            '/api/v1/insights/forecasts/generate/', {'product': self.product.id, 'days': 14}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['predicted_usage'], 14)
        self.assertTrue(ProductForecast.objects.filter(pk=response.data['forecast_id']).exists())
        self.assertTrue(ActivityLog.objects.filter(action='FORECAST_GENERATED').exists())

    def test_generate_forecast_without_history(self):
        response = self.client.post(
            '/api/v1/insights/forecasts/generate/', {'product': self.product.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['forecast_id'])
        self.assertEqual(response.data['days'], 30)

    def test_generate_forecast_unknown_product(self):
        response = self.client.post(
            '/api/v1/insights/forecasts/generate/', {'product': 99999}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
