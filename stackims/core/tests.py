"""
Test suite for core: settings cache, activity logging and auth endpoints
"""
from django.core.cache import cache
from django.test import TestCase, RequestFactory
from rest_framework import status
from stackims.core.models import ActivityLog, Setting
from stackims.core.settings_cache import get_int_setting, get_setting, get_settings
from stackims.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from stackims.core.utils import get_client_ip, log_activity


class SettingsCacheTests(TestCase):
    """Test cached access to Setting rows"""

    def setUp(self):
        cache.clear()

    def test_missing_setting_returns_default(self):
        self.assertEqual(get_setting('doesNotExist', 'fallback'), 'fallback')

    def test_missing_setting_is_cached(self):
        get_setting('doesNotExist', 'fallback')
        with self.assertNumQueries(0):
            self.assertEqual(get_setting('doesNotExist', 'other'), 'other')

    def test_setting_value_is_cached(self):
        TestDataFactory.create_setting('lastBackupTime', '2024-01-01T02:00:00Z', category='backup')
        self.assertEqual(get_setting('lastBackupTime'), '2024-01-01T02:00:00Z')
        with self.assertNumQueries(0):
            self.assertEqual(get_setting('lastBackupTime'), '2024-01-01T02:00:00Z')

    def test_save_invalidates_cached_value(self):
        setting = TestDataFactory.create_setting('globalLowStockThreshold', '10')
        self.assertEqual(get_setting('globalLowStockThreshold'), '10')
        setting.value = '25'
        setting.save()
        self.assertEqual(get_setting('globalLowStockThreshold'), '25')

    def test_delete_invalidates_cached_value(self):
        setting = TestDataFactory.create_setting('globalLowStockThreshold', '10')
        self.assertEqual(get_setting('globalLowStockThreshold', 'none'), '10')
        setting.delete()
        self.assertEqual(get_setting('globalLowStockThreshold', 'none'), 'none')

    def test_get_settings_by_category(self):
        TestDataFactory.create_setting('globalLowStockThreshold', '12', category='inventory')
        TestDataFactory.create_setting('criticalStockThreshold', '3', category='inventory')
        TestDataFactory.create_setting('lastBackupTime', 'yesterday', category='backup')

        values = get_settings('inventory')
        self.assertEqual(values, {'globalLowStockThreshold': '12', 'criticalStockThreshold': '3'})

    def test_category_cache_invalidated_on_new_setting(self):
        TestDataFactory.create_setting('globalLowStockThreshold', '12')
        self.assertEqual(len(get_settings('inventory')), 1)
        TestDataFactory.create_setting('criticalStockThreshold', '3')
        self.assertEqual(len(get_settings('inventory')), 2)

    def test_get_int_setting(self):
        self.assertEqual(get_int_setting('x', 10, {'x': '7'}), 7)
        self.assertEqual(get_int_setting('x', 10, {'x': ' 8 '}), 8)
        self.assertEqual(get_int_setting('x', 10, {}), 10)
        self.assertEqual(get_int_setting('x', 10, {'x': ''}), 10)

    def test_get_int_setting_bad_value_falls_back(self):
        with self.assertLogs('stackims.core.settings_cache', level='WARNING'):
            self.assertEqual(get_int_setting('x', 10, {'x': 'ten'}), 10)

    def test_get_int_setting_reads_database_without_map(self):
        TestDataFactory.create_setting('criticalStockThreshold', '4')
        self.assertEqual(get_int_setting('criticalStockThreshold', 2), 4)


class ActivityLogTests(TestCase):
    """Test the log_activity helper"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.factory = RequestFactory()

    def test_log_activity_with_user(self):
        log = log_activity(action='PRODUCT_CREATED', user=self.user, model_name='Product', object_id=5)
        self.assertIsNotNone(log)
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.object_id, '5')
        self.assertEqual(log.changes, {})

    def test_log_activity_from_request(self):
        request = self.factory.post('/', REMOTE_ADDR='10.0.0.5')
        request.user = self.user
        log = log_activity(request=request, action='INSIGHT_SAVED', changes={'a': 1})
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.ip_address, '10.0.0.5')
        self.assertEqual(log.changes, {'a': 1})

    def test_log_activity_without_action_is_skipped(self):
        self.assertIsNone(log_activity(user=self.user))
        self.assertEqual(ActivityLog.objects.count(), 0)

    def test_client_ip_prefers_forwarded_header(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1', REMOTE_ADDR='10.0.0.1')
        self.assertEqual(get_client_ip(request), '203.0.113.9')

    def test_client_ip_without_request(self):
        self.assertIsNone(get_client_ip(None))


class AuthAPITests(TestCase):
    """Test login, current user and activity log endpoints"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(username='alice', password='s3cret-pass', role='ADMIN')

    def test_login_returns_tokens_and_logs_activity(self):
        response = self.client.post('/api/v1/auth/login/', {'username': 'alice', 'password': 's3cret-pass'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertTrue(ActivityLog.objects.filter(user=self.user, action='USER_LOGIN').exists())

    def test_login_with_wrong_password(self):
        response = self.client.post('/api/v1/auth/login/', {'username': 'alice', 'password': 'nope'})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_returns_role(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], 'ADMIN')

    def test_activity_logs_are_scoped_for_non_staff(self):
        other = TestDataFactory.create_user()
        TestDataFactory.create_activity(self.user, action='PRODUCT_CREATED')
        TestDataFactory.create_activity(other, action='PRODUCT_UPDATED')

        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/activity-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['action'], 'PRODUCT_CREATED')

    def test_activity_logs_visible_to_staff(self):
        staff = TestDataFactory.create_user(is_staff=True)
        TestDataFactory.create_activity(self.user)
        TestDataFactory.create_activity(staff)

        self.client.authenticate_user(staff)
        response = self.client.get('/api/v1/activity-logs/?action=PRODUCT_UPDATED')
        self.assertEqual(len(response.data), 2)


class SettingModelTests(TestCase):
    def test_str(self):
        self.assertEqual(str(Setting(key='lastBackupTime', value='x')), 'lastBackupTime')
