"""
Test suite for Purchasing models
Tests: order totals, on-time delivery and receiving
"""
from django.test import TestCase
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from stackims.core.test_utils import TestDataFactory
from stackims.insights.context_cache import get_context_cache


class PurchaseOrderModelTests(TestCase):
    """Test PurchaseOrder and PurchaseOrderItem model methods"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.vendor = TestDataFactory.create_vendor()
        self.product = TestDataFactory.create_product()
        self.now = timezone.now()

    def test_order_str(self):
        """Test order string representation"""
        order = TestDataFactory.create_purchase_order(self.vendor, user=self.user)
        order.order_number = "PO-2024-001"
        order.save()
        self.assertEqual(str(order), "PO-2024-001")

    def test_order_str_without_number(self):
        """Test order string representation without order_number"""
        order = TestDataFactory.create_purchase_order(self.vendor)
        self.assertEqual(str(order), f"PO-{order.id}")

    def test_order_subtotal(self):
        """Test order subtotal calculation"""
        order = TestDataFactory.create_purchase_order(self.vendor, user=self.user)
        TestDataFactory.create_purchase_order_item(order, self.product, quantity=10, unit_price=Decimal('100.00'))
        TestDataFactory.create_purchase_order_item(order, self.product, quantity=5, unit_price=Decimal('50.00'))
        self.assertEqual(order.get_subtotal(), Decimal('1250.00'))
        self.assertEqual(order.get_total(), Decimal('1250.00'))

    def test_empty_order_subtotal(self):
        order = TestDataFactory.create_purchase_order(self.vendor)
        self.assertEqual(order.get_subtotal(), Decimal('0.00'))

    def test_item_line_total(self):
        """Test order item line total calculation"""
        order = TestDataFactory.create_purchase_order(self.vendor)
        item = TestDataFactory.create_purchase_order_item(order, self.product, quantity=3, unit_price=Decimal('99.99'))
        self.assertEqual(item.get_line_total(), Decimal('299.97'))

    def test_delivered_on_time(self):
        expected = self.now - timedelta(days=1)
        early = TestDataFactory.create_purchase_order(
            self.vendor, status='RECEIVED', expected_date=expected, received_at=expected - timedelta(hours=5)
        )
        late = TestDataFactory.create_purchase_order(
            self.vendor, status='RECEIVED', expected_date=expected, received_at=self.now
        )
        self.assertTrue(early.is_delivered_on_time())
        self.assertFalse(late.is_delivered_on_time())

    def test_open_order_is_not_on_time(self):
        order = TestDataFactory.create_purchase_order(
            self.vendor, status='ORDERED', expected_date=self.now + timedelta(days=2)
        )
        self.assertFalse(order.is_delivered_on_time())

    def test_received_without_expected_date_is_not_on_time(self):
        order = TestDataFactory.create_purchase_order(self.vendor, status='RECEIVED', received_at=self.now)
        self.assertFalse(order.is_delivered_on_time())

    def test_mark_received(self):
        order = TestDataFactory.create_purchase_order(
            self.vendor, status='ORDERED', expected_date=self.now + timedelta(days=2)
        )
        order.mark_received(when=self.now)
        order.refresh_from_db()
        self.assertEqual(order.status, 'RECEIVED')
        self.assertEqual(order.received_at, self.now)
        self.assertTrue(order.is_delivered_on_time())

    def test_mark_received_invalidates_inventory_context(self):
        order = TestDataFactory.create_purchase_order(self.vendor, status='ORDERED')
        cache = get_context_cache()
        cache.set_inventory_context('stale')
        with self.captureOnCommitCallbacks(execute=True):
            order.mark_received()
        self.assertIsNone(cache.get_inventory_context())

    def test_orders_newest_first(self):
        older = TestDataFactory.create_purchase_order(self.vendor, created_at=self.now - timedelta(days=3))
        newer = TestDataFactory.create_purchase_order(self.vendor, created_at=self.now)
        self.assertEqual(list(self.vendor.purchase_orders.all()), [newer, older])
