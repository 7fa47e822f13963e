import os
import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from storefront.db.models import Base, Category, DiscountLog, DiscountRule, Product
from storefront.repositories.campaigns_repo import SqlAlchemyCampaignRepository
from storefront.services.discount_engine_s import clear_expired_campaigns, run_discount_engine

NOW = datetime(2026, 3, 10, 12, 0, 0)
YESTERDAY = NOW - timedelta(days=1)
TOMORROW = NOW + timedelta(days=1)


class CatalogTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine("sqlite:///:memory:")
        cls.TestSession = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=cls.engine,
        )
        Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        cls.engine.dispose()

    def setUp(self) -> None:
        Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

        session = self.TestSession()
        try:
            session.add_all(
                [
                    Category(id="cat-123", name="Pain relief"),
                    Category(id="cat-456", name="Vitamins"),
                ]
            )
            session.commit()
        finally:
            session.close()

    def _add_product(self, **overrides) -> int:
        values = {
            "name": "Napa 500mg",
            "slug": f"product-{uuid4().hex}",
            "category_id": "cat-123",
            "brand_name": "Beximco",
            "selling_price": 1000.0,
            "mrp": 1100.0,
            "is_active": True,
        }
        values.update(overrides)
        session = self.TestSession()
        try:
            product = Product(**values)
            session.add(product)
            session.commit()
            return int(product.id)
        finally:
            session.close()

    def _add_rule(self, **overrides) -> int:
        values = {
            "name": "Category sale",
            "rule_type": "CATEGORY",
            "target_value": "cat-123",
            "discount_type": "PERCENTAGE",
            "discount_amount": 20.0,
            "start_date": YESTERDAY,
            "end_date": TOMORROW,
            "priority": 1,
            "is_active": True,
        }
        values.update(overrides)
        session = self.TestSession()
        try:
            rule = DiscountRule(**values)
            session.add(rule)
            session.commit()
            return int(rule.id)
        finally:
            session.close()

    def _run(self, now: datetime = NOW) -> dict:
        session = self.TestSession()
        try:
            result = run_discount_engine(now=now, repo=SqlAlchemyCampaignRepository(session))
            session.commit()
            return result
        finally:
            session.close()

    def _get_product(self, product_id: int) -> Product:
        session = self.TestSession()
        try:
            product = session.query(Product).filter(Product.id == product_id).first()
            assert product is not None
            session.expunge(product)
            return product
        finally:
            session.close()


class DiscountEngineTests(CatalogTestCase):
    def test_category_percentage_rule_sets_campaign_price(self) -> None:
        product_id = self._add_product(selling_price=1000.0)
        rule_id = self._add_rule()

        result = self._run()

        self.assertTrue(result["success"])
        self.assertEqual(result["rules_processed"], 1)
        self.assertEqual(result["products_updated"], 1)
        self.assertEqual(result["errors"], [])

        product = self._get_product(product_id)
        self.assertEqual(product.campaign_price, 800.0)
        self.assertEqual(product.campaign_start, NOW)
        self.assertEqual(product.campaign_end, TOMORROW)
        self.assertEqual(product.campaign_rule_id, rule_id)

    def test_campaign_start_uses_later_of_now_and_rule_start(self) -> None:
        product_id = self._add_product()
        rule_start = NOW - timedelta(minutes=5)
        self._add_rule(start_date=rule_start)

        self._run(now=NOW)

        self.assertEqual(self._get_product(product_id).campaign_start, NOW)

    def test_fixed_discount_is_clamped_at_zero(self) -> None:
        product_id = self._add_product(selling_price=40.0)
        self._add_rule(discount_type="FIXED", discount_amount=75.0)

        self._run()

        self.assertEqual(self._get_product(product_id).campaign_price, 0.0)

    def test_second_run_without_changes_updates_nothing(self) -> None:
        self._add_product()
        self._add_product(category_id="cat-456")
        self._add_rule()
        self._add_rule(name="Vitamin week", target_value="cat-456", discount_type="FIXED", discount_amount=50)

        first = self._run()
        second = self._run(now=NOW + timedelta(minutes=30))

        self.assertEqual(first["products_updated"], 2)
        self.assertEqual(second["products_updated"], 0)
        self.assertEqual(second["products_cleared"], 0)
        self.assertTrue(second["success"])

    def test_second_run_in_same_session_updates_nothing(self) -> None:
        self._add_product()
        self._add_rule()

        session = self.TestSession()
        try:
            repo = SqlAlchemyCampaignRepository(session)
            first = run_discount_engine(now=NOW, repo=repo)
            second = run_discount_engine(now=NOW, repo=repo)
            session.commit()
        finally:
            session.close()

        self.assertEqual(first["products_updated"], 1)
        self.assertEqual(second["products_updated"], 0)

    def test_higher_priority_rule_wins(self) -> None:
        product_id = self._add_product(selling_price=1000.0)
        self._add_rule(name="Small but important", discount_amount=10.0, priority=10)
        self._add_rule(name="Big but minor", discount_amount=30.0, priority=5)

        self._run()

        self.assertEqual(self._get_product(product_id).campaign_price, 900.0)

    def test_equal_priority_prefers_lower_price(self) -> None:
        product_id = self._add_product(selling_price=1000.0)
        self._add_rule(name="Category 10%", discount_amount=10.0, priority=3)
        winner_id = self._add_rule(
            name="Brand 150 off",
            rule_type="BRAND",
            target_value="Beximco",
            discount_type="FIXED",
            discount_amount=150.0,
            priority=3,
        )

        self._run()

        product = self._get_product(product_id)
        self.assertEqual(product.campaign_price, 850.0)
        self.assertEqual(product.campaign_rule_id, winner_id)

    def test_full_tie_is_resolved_by_rule_id(self) -> None:
        product_id = self._add_product(selling_price=500.0)
        first_id = self._add_rule(name="First", discount_amount=10.0)
        self._add_rule(name="Second", discount_type="FIXED", discount_amount=50.0)

        self._run()
        self._run()

        product = self._get_product(product_id)
        self.assertEqual(product.campaign_price, 450.0)
        self.assertEqual(product.campaign_rule_id, first_id)

    def test_brand_match_uses_stored_casing(self) -> None:
        exact_id = self._add_product(brand_name="Square")
        other_case_id = self._add_product(brand_name="SQUARE")
        self._add_rule(rule_type="BRAND", target_value="Square")

        self._run()

        self.assertEqual(self._get_product(exact_id).campaign_price, 800.0)
        self.assertIsNone(self._get_product(other_case_id).campaign_price)

    def test_inactive_rules_and_products_are_ignored(self) -> None:
        inactive_product_id = self._add_product(is_active=False)
        product_id = self._add_product(category_id="cat-456")
        self._add_rule(is_active=False, target_value="cat-456")
        self._add_rule(name="Future", target_value="cat-456", start_date=TOMORROW, end_date=TOMORROW + timedelta(days=3))
        self._add_rule(name="Catches inactive product")

        result = self._run()

        self.assertEqual(result["rules_processed"], 1)
        self.assertIsNone(self._get_product(inactive_product_id).campaign_price)
        self.assertIsNone(self._get_product(product_id).campaign_price)

    def test_checkout_rule_types_are_not_applied_to_products(self) -> None:
        product_id = self._add_product()
        self._add_rule(rule_type="CART_AMOUNT", target_value=None, min_cart_amount=500.0)
        self._add_rule(rule_type="USER_GROUP", target_value="cat-123")

        result = self._run()

        self.assertEqual(result["rules_processed"], 0)
        self.assertIsNone(self._get_product(product_id).campaign_price)

    def test_changed_rule_end_date_is_written_again(self) -> None:
        product_id = self._add_product()
        rule_id = self._add_rule()
        self._run()

        session = self.TestSession()
        try:
            rule = session.query(DiscountRule).filter(DiscountRule.id == rule_id).first()
            assert rule is not None
            rule.end_date = TOMORROW + timedelta(days=7)
            session.commit()
        finally:
            session.close()

        result = self._run()

        self.assertEqual(result["products_updated"], 1)
        self.assertEqual(self._get_product(product_id).campaign_end, TOMORROW + timedelta(days=7))

    def test_discount_log_recorded_per_updated_product(self) -> None:
        product_id = self._add_product(selling_price=250.0)
        rule_id = self._add_rule(discount_amount=10.0)

        self._run()
        self._run()

        session = self.TestSession()
        try:
            logs = session.query(DiscountLog).all()
        finally:
            session.close()

        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].rule_id, rule_id)
        self.assertEqual(logs[0].product_id, product_id)
        self.assertEqual(logs[0].old_price, 250.0)
        self.assertEqual(logs[0].new_price, 225.0)
        self.assertEqual(logs[0].discount_amount, 25.0)

    def test_result_logs_list_every_processed_rule(self) -> None:
        self._add_product()
        rule_id = self._add_rule(name="Pain relief week")
        empty_rule_id = self._add_rule(name="Vitamins", target_value="cat-456")

        result = self._run()

        logs_by_rule = {log["rule_id"]: log for log in result["logs"]}
        self.assertEqual(logs_by_rule[rule_id]["products_affected"], 1)
        self.assertEqual(logs_by_rule[rule_id]["rule_name"], "Pain relief week")
        self.assertEqual(logs_by_rule[empty_rule_id]["products_affected"], 0)


class FailingReadRepository(SqlAlchemyCampaignRepository):
    """Writes a stray row while loading one rule's products, then fails."""

    def __init__(self, db, failing_rule_id: int):
        super().__init__(db)
        self.failing_rule_id = failing_rule_id

    def _load_candidates(self, rule):
        if rule["id"] == self.failing_rule_id:
            self.db.add(Category(id="cat-stray", name="Written by failed read"))
            self.db.flush()
            raise SQLAlchemyError("canceling statement due to statement timeout")
        return super()._load_candidates(rule)


class CandidateReadIsolationTests(CatalogTestCase):
    def test_failed_read_is_rolled_back_and_other_rules_commit(self) -> None:
        failing_product_id = self._add_product()
        brand_product_id = self._add_product(category_id="cat-456", brand_name="Square")
        failing_rule_id = self._add_rule(name="Broken read")
        self._add_rule(name="Square week", rule_type="BRAND", target_value="Square")

        session = self.TestSession()
        try:
            result = run_discount_engine(
                now=NOW,
                repo=FailingReadRepository(session, failing_rule_id=failing_rule_id),
            )
            session.commit()
        finally:
            session.close()

        self.assertFalse(result["success"])
        self.assertEqual(len(result["errors"]), 1)
        self.assertIn(f"Broken read ({failing_rule_id})", result["errors"][0])
        self.assertEqual(result["products_updated"], 1)
        self.assertIsNone(self._get_product(failing_product_id).campaign_price)
        self.assertEqual(self._get_product(brand_product_id).campaign_price, 800.0)

        session = self.TestSession()
        try:
            self.assertIsNone(session.query(Category).filter(Category.id == "cat-stray").first())
        finally:
            session.close()


class CampaignExpiryTests(CatalogTestCase):
    def test_sweep_clears_campaign_that_ended_yesterday(self) -> None:
        product_id = self._add_product(
            campaign_price=700.0,
            campaign_start=NOW - timedelta(days=5),
            campaign_end=YESTERDAY,
        )
        active_id = self._add_product(
            campaign_price=900.0,
            campaign_start=YESTERDAY,
            campaign_end=TOMORROW,
        )

        session = self.TestSession()
        try:
            cleared = clear_expired_campaigns(now=NOW, repo=SqlAlchemyCampaignRepository(session))
            session.commit()
        finally:
            session.close()

        self.assertEqual(cleared, 1)
        product = self._get_product(product_id)
        self.assertIsNone(product.campaign_price)
        self.assertIsNone(product.campaign_start)
        self.assertIsNone(product.campaign_end)
        self.assertEqual(self._get_product(active_id).campaign_price, 900.0)

    def test_engine_reports_cleared_and_reapplies_matching_rule(self) -> None:
        matched_id = self._add_product(
            campaign_price=700.0,
            campaign_start=NOW - timedelta(days=5),
            campaign_end=YESTERDAY,
        )
        unmatched_id = self._add_product(
            category_id="cat-456",
            campaign_price=700.0,
            campaign_start=NOW - timedelta(days=5),
            campaign_end=YESTERDAY,
        )
        self._add_rule()

        result = self._run()

        self.assertEqual(result["products_cleared"], 2)
        self.assertEqual(result["products_updated"], 1)
        self.assertEqual(self._get_product(matched_id).campaign_price, 800.0)
        self.assertIsNone(self._get_product(unmatched_id).campaign_price)

    def test_engine_expires_campaign_once_rule_window_passes(self) -> None:
        product_id = self._add_product()
        self._add_rule(end_date=NOW + timedelta(hours=1))
        self._run()

        result = self._run(now=NOW + timedelta(hours=2))

        self.assertEqual(result["products_cleared"], 1)
        self.assertEqual(result["rules_processed"], 0)
        self.assertIsNone(self._get_product(product_id).campaign_price)


if __name__ == "__main__":
    unittest.main()
