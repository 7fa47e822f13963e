import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from storefront.services import discount_s

NOW = datetime(2026, 3, 10, 12, 0, 0)


class DiscountPricingTests(unittest.TestCase):
    def test_round_money_rounds_half_up_on_cents(self) -> None:
        self.assertEqual(discount_s.round_money(2.675), 2.68)
        self.assertEqual(discount_s.round_money(2.665), 2.67)
        self.assertEqual(discount_s.round_money(10), 10.0)

    def test_percentage_campaign_price(self) -> None:
        self.assertEqual(discount_s.calculate_campaign_price(1000, "PERCENTAGE", 20), 800.0)
        self.assertEqual(discount_s.calculate_campaign_price(19.99, "PERCENTAGE", 15), 16.99)

    def test_fixed_campaign_price_never_negative(self) -> None:
        self.assertEqual(discount_s.calculate_campaign_price(30, "FIXED", 45), 0.0)

    def test_unknown_discount_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            discount_s.calculate_campaign_price(10, "BOGO", 1)

    def test_rule_is_active_only_inside_window(self) -> None:
        rule = {
            "is_active": True,
            "start_date": NOW - timedelta(hours=1),
            "end_date": NOW + timedelta(hours=1),
        }
        self.assertTrue(discount_s.is_rule_currently_active(rule, NOW))
        self.assertTrue(discount_s.is_rule_currently_active(rule, rule["end_date"]))
        self.assertFalse(discount_s.is_rule_currently_active(rule, NOW + timedelta(hours=2)))
        self.assertFalse(discount_s.is_rule_currently_active({**rule, "is_active": False}, NOW))

    def test_select_winning_rule_orders_by_priority_price_then_id(self) -> None:
        low = {"id": 1, "priority": 5}
        high = {"id": 2, "priority": 10}
        self.assertIs(discount_s.select_winning_rule([(low, 50.0), (high, 90.0)])[0], high)

        cheap = {"id": 7, "priority": 1}
        pricey = {"id": 3, "priority": 1}
        self.assertIs(discount_s.select_winning_rule([(pricey, 80.0), (cheap, 70.0)])[0], cheap)

        self.assertIs(discount_s.select_winning_rule([(cheap, 70.0), (pricey, 70.0)])[0], pricey)
        self.assertIsNone(discount_s.select_winning_rule([]))

    def test_coerce_datetime_normalizes_aware_values_to_naive_utc(self) -> None:
        aware = datetime(2026, 3, 10, 18, 0, tzinfo=timezone(timedelta(hours=6)))
        self.assertEqual(discount_s.coerce_datetime(aware), NOW)
        self.assertEqual(discount_s.coerce_datetime("2026-03-10T12:00:00Z"), NOW)
        self.assertIsNone(discount_s.coerce_datetime("not a date"))

    def test_date_window_requires_end_after_start(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            discount_s.validate_date_window(NOW, NOW)
        self.assertEqual(str(ctx.exception), "End date must be after start date")

    def test_percentage_terms_cannot_exceed_hundred(self) -> None:
        with self.assertRaises(ValueError):
            discount_s.validate_discount_terms("PERCENTAGE", 120)
        discount_s.validate_discount_terms("FIXED", 120)

    def test_coupon_percentage_discount_is_capped(self) -> None:
        coupon = {"discount_type": "PERCENTAGE", "discount_amount": 50, "max_discount": 100}
        self.assertEqual(discount_s.calculate_coupon_discount(500, coupon), 100.0)

    def test_coupon_fixed_discount_is_capped_at_cart_total(self) -> None:
        coupon = {"discount_type": "FIXED", "discount_amount": 300, "max_discount": None}
        self.assertEqual(discount_s.calculate_coupon_discount(200, coupon), 200.0)

    def test_coupon_percentage_discount_rounds_half_cent_up(self) -> None:
        coupon = {"discount_type": "PERCENTAGE", "discount_amount": 15, "max_discount": None}
        self.assertEqual(discount_s.calculate_coupon_discount(4.10, coupon), 0.62)
        self.assertEqual(discount_s.calculate_coupon_discount(33.30, coupon), 5.0)


if __name__ == "__main__":
    unittest.main()
