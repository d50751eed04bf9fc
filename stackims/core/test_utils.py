"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from stackims.core.models import Setting, ActivityLog
from stackims.catalog.models import Category, Product, ProductUsage
from stackims.parties.models import Vendor
from stackims.inventory.models import InventoryMovement
from stackims.purchasing.models import PurchaseOrder, PurchaseOrderItem
from stackims.insights.models import AIInsight, ProductForecast
from datetime import timedelta
from decimal import Decimal
from django.utils import timezone
import random
import string

User = get_user_model()


class FakeClock:
    """Monotonic clock for cache tests, advanced by hand"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role='USER',
                    is_staff=False, is_superuser=False, first_name=''):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            first_name=first_name,
            is_staff=is_staff,
            is_superuser=is_superuser
        )

    @staticmethod
    def create_setting(key, value, category='inventory'):
        """Create or update a system setting"""
        setting, _ = Setting.objects.update_or_create(
            key=key, defaults={'value': str(value), 'category': category}
        )
        return setting

    @staticmethod
    def create_category(name=None, description=None):
        """Create a test category"""
        if not name:
            name = f'Category_{TestDataFactory.random_string(6)}'
        return Category.objects.create(
            name=name,
            description=description or f'Test description for {name}'
        )

    @staticmethod
    def create_vendor(name=None, email=None):
        """Create a test vendor"""
        if not name:
            name = f'Vendor_{TestDataFactory.random_string(6)}'
        return Vendor.objects.create(
            name=name,
            email=email or f'{TestDataFactory.random_string(6).lower()}@vendor.test',
            phone='1234567890'
        )

    @staticmethod
    def create_product(name=None, sku=None, category=None, vendor=None, quantity=50,
                       price=Decimal('10.00'), lead_time=None, expiration_date=None):
        """Create a test product"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        if not sku:
            sku = f'SKU_{TestDataFactory.random_string(8).upper()}'
        return Product.objects.create(
            name=name,
            sku=sku,
            category=category,
            vendor=vendor,
            quantity=quantity,
            price=Decimal(str(price)),
            lead_time=lead_time,
            expiration_date=expiration_date
        )

    @staticmethod
    def create_usage(product, quantities, start=None):
        """Create one daily usage record per quantity, most recent first"""
        start = start or timezone.now()
        return [
            ProductUsage.objects.create(
                product=product,
                quantity=quantity,
                date=start - timedelta(days=offset)
            )
            for offset, quantity in enumerate(quantities)
        ]

    @staticmethod
    def create_movement(product, quantity, movement_type='SALE', user=None, reason=None, created_at=None):
        """Create an inventory movement"""
        return InventoryMovement.objects.create(
            product=product,
            type=movement_type,
            quantity=quantity,
            reason=reason,
            performed_by=user,
            created_at=created_at or timezone.now()
        )

    @staticmethod
    def create_purchase_order(vendor, user=None, status='DRAFT', total_amount=Decimal('0.00'),
                              expected_date=None, received_at=None, created_at=None):
        """Create a purchase order"""
        return PurchaseOrder.objects.create(
            vendor=vendor,
            requested_by=user,
            status=status,
            total_amount=Decimal(str(total_amount)),
            expected_date=expected_date,
            received_at=received_at,
            created_at=created_at or timezone.now()
        )

    @staticmethod
    def create_purchase_order_item(order, product, quantity=None, unit_price=None):
        """Create a purchase order line"""
        return PurchaseOrderItem.objects.create(
            order=order,
            product=product,
            quantity=quantity or random.randint(1, 10),
            unit_price=unit_price or Decimal('25.00')
        )

    @staticmethod
    def create_activity(user, action='PRODUCT_UPDATED', created_at=None):
        """Create an activity log entry, optionally backdated"""
        log = ActivityLog.objects.create(user=user, action=action, model_name='Product')
        if created_at is not None:
            # created_at is auto_now_add, so backdate with an update
            ActivityLog.objects.filter(pk=log.pk).update(created_at=created_at)
            log.refresh_from_db()
        return log

    @staticmethod
    def create_insight(content=None, insight_type='RECOMMENDATION', entity_type='PRODUCT',
                       entity_id='1', confidence=0.85, applied=False, user=None):
        """Create a saved AI insight"""
        return AIInsight.objects.create(
            entity_type=entity_type,
            entity_id=entity_id,
            insight_type=insight_type,
            content=content or f'Insight {TestDataFactory.random_string(6)}',
            confidence=confidence,
            applied=applied,
            created_by=user
        )

    @staticmethod
    def create_forecast(product, forecast_date, confidence=0.8, predicted_usage=None):
        """Create a product forecast"""
        return ProductForecast.objects.create(
            product=product,
            forecast_date=forecast_date,
            confidence=confidence,
            predicted_usage=predicted_usage
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
